"""Tests for message composition and the SMTP sender."""

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from mailpool_mcp.core.errors import TransportError
from mailpool_mcp.mail.models import SendRequest
from mailpool_mcp.mail.smtp import SmtpSender, compose_message
from tests.conftest import make_details


class TestComposeMessage:
    def test_headers(self):
        request = SendRequest(
            to=["a@x.com", "b@y.com"],
            subject="Demo",
            text="Hello",
            cc=["c@z.com"],
            bcc=["secret@z.com"],
        )

        msg = compose_message(make_details(), request)

        assert msg["From"] == "Ada Lovelace <ada@example.com>"
        assert msg["To"] == "a@x.com, b@y.com"
        assert msg["Cc"] == "c@z.com"
        assert msg["Bcc"] is None
        assert msg["Message-ID"].endswith("@example.com>")
        assert b"secret@z.com" not in msg.as_bytes()

    def test_text_and_html_alternative(self):
        msg = compose_message(
            make_details(),
            SendRequest(to=["a@x.com"], subject="s", text="plain", html="<b>rich</b>"),
        )

        assert msg.get_content_type() == "multipart/alternative"
        assert msg.get_body(("html",)).get_content().strip() == "<b>rich</b>"

    def test_html_only(self):
        request = SendRequest(to=["a@x.com"], subject="s", html="<p>x</p>")
        msg = compose_message(make_details(), request)
        assert msg.get_content_type() == "text/html"

    def test_requires_recipient(self):
        with pytest.raises(ValueError, match="recipient"):
            compose_message(make_details(), SendRequest(to=[], subject="s", text="x"))

    def test_requires_body(self):
        with pytest.raises(ValueError, match="body"):
            compose_message(make_details(), SendRequest(to=["a@x.com"], subject="s"))


class TestSmtpSender:
    def test_send_over_ssl(self):
        request = SendRequest(to=["a@x.com"], subject="Demo", text="Hi", bcc=["b@y.com"])

        with patch("mailpool_mcp.mail.smtp.smtplib.SMTP_SSL") as ssl_cls:
            server = ssl_cls.return_value.__enter__.return_value
            server.send_message.return_value = {}
            result = SmtpSender(timeout=5).send(make_details(), request)

        ssl_cls.assert_called_once_with("smtp.example.com", 465, timeout=5)
        server.login.assert_called_once_with("ada@example.com", "smtp-secret")
        assert server.send_message.call_args.kwargs["to_addrs"] == ["a@x.com", "b@y.com"]
        assert result.accepted == ["a@x.com", "b@y.com"]
        assert result.rejected == []
        assert b"Subject: Demo" in result.raw

    def test_partial_refusal(self):
        request = SendRequest(to=["a@x.com", "bad@x.com"], subject="Demo", text="Hi")

        with patch("mailpool_mcp.mail.smtp.smtplib.SMTP_SSL") as ssl_cls:
            server = ssl_cls.return_value.__enter__.return_value
            server.send_message.return_value = {"bad@x.com": (550, b"No such user")}
            result = SmtpSender().send(make_details(), request)

        assert result.accepted == ["a@x.com"]
        assert result.rejected == ["bad@x.com"]

    def test_all_refused(self):
        request = SendRequest(to=["bad@x.com"], subject="Demo", text="Hi")

        with patch("mailpool_mcp.mail.smtp.smtplib.SMTP_SSL") as ssl_cls:
            server = ssl_cls.return_value.__enter__.return_value
            server.send_message.side_effect = smtplib.SMTPRecipientsRefused(
                {"bad@x.com": (550, b"No such user")}
            )
            result = SmtpSender().send(make_details(), request)

        assert result.accepted == []
        assert result.rejected == ["bad@x.com"]
        assert result.raw == b""

    def test_auth_failure_raises_transport_error(self):
        request = SendRequest(to=["a@x.com"], subject="Demo", text="Hi")

        with patch("mailpool_mcp.mail.smtp.smtplib.SMTP_SSL") as ssl_cls:
            server = ssl_cls.return_value.__enter__.return_value
            server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
            with pytest.raises(TransportError) as exc_info:
                SmtpSender().send(make_details(), request)

        assert exc_info.value.operation == "send"

    def test_plain_connection_uses_starttls(self):
        request = SendRequest(to=["a@x.com"], subject="Demo", text="Hi")
        details = make_details(smtp_tls=False, smtp_port=0)

        with patch("mailpool_mcp.mail.smtp.smtplib.SMTP") as plain_cls:
            server: MagicMock = plain_cls.return_value
            server.has_extn.return_value = True
            server.__enter__.return_value = server
            server.send_message.return_value = {}
            SmtpSender().send(details, request)

        plain_cls.assert_called_once_with("smtp.example.com", 587, timeout=30.0)
        server.starttls.assert_called_once()
