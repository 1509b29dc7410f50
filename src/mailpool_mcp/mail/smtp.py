"""SMTP message sender.

Composes a message from a SendRequest, sends it through the mailbox's SMTP
server and returns the raw bytes so the caller can append them to the sent
folder (SMTP servers do not do that themselves).

Usage:
    from mailpool_mcp.mail.smtp import SmtpSender

    request = SendRequest(to=["a@x.com"], subject="Hi", text="...")
    result = SmtpSender().send(mailbox_details, request)
"""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import TYPE_CHECKING

from mailpool_mcp.core.errors import TransportError
from mailpool_mcp.core.logging import get_logger
from mailpool_mcp.mail.models import SendRequest, SendResult

if TYPE_CHECKING:
    from mailpool_mcp.directory.models import MailboxDetails

logger = get_logger(__name__)


def compose_message(mailbox: MailboxDetails, request: SendRequest) -> EmailMessage:
    """Build the MIME message for a send request.

    Bcc recipients are delivered through the SMTP envelope only and never
    appear in the headers.
    """
    if not request.to:
        raise ValueError("At least one 'to' recipient is required")
    if request.text is None and request.html is None:
        raise ValueError("Either text or html body is required")

    msg = EmailMessage()
    msg["From"] = mailbox.display_from
    msg["To"] = ", ".join(request.to)
    if request.cc:
        msg["Cc"] = ", ".join(request.cc)
    msg["Subject"] = request.subject
    msg["Date"] = formatdate(localtime=True)
    domain = mailbox.email.rpartition("@")[2] or None
    msg["Message-ID"] = make_msgid(domain=domain)

    if request.text is not None:
        msg.set_content(request.text)
        if request.html is not None:
            msg.add_alternative(request.html, subtype="html")
    else:
        msg.set_content(request.html, subtype="html")
    return msg


class SmtpSender:
    """Sends mail through a directory mailbox's SMTP server."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def _connect(self, mailbox: MailboxDetails) -> smtplib.SMTP:
        if mailbox.smtp_tls:
            return smtplib.SMTP_SSL(
                mailbox.smtp_host, mailbox.smtp_port or 465, timeout=self.timeout
            )
        server = smtplib.SMTP(mailbox.smtp_host, mailbox.smtp_port or 587, timeout=self.timeout)
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls()
            server.ehlo()
        return server

    def send(self, mailbox: MailboxDetails, request: SendRequest) -> SendResult:
        """Send a message.

        Raises:
            ValueError: If the request has no recipients or no body
            TransportError: If the SMTP exchange fails
        """
        msg = compose_message(mailbox, request)
        recipients = request.recipients

        try:
            with self._connect(mailbox) as server:
                server.login(mailbox.smtp_username, mailbox.smtp_password)
                refused = server.send_message(msg, from_addr=mailbox.email, to_addrs=recipients)
        except smtplib.SMTPRecipientsRefused as e:
            logger.warning("smtp_all_recipients_refused", account=mailbox.email)
            refused = e.recipients
            return SendResult(
                message_id=msg["Message-ID"],
                accepted=[],
                rejected=[r for r in recipients if r in refused],
                raw=b"",
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error("smtp_send_failed", account=mailbox.email, error=str(e))
            raise TransportError(
                f"SMTP send via {mailbox.smtp_host} failed: {e}", operation="send"
            ) from e

        rejected = [r for r in recipients if r in refused]
        accepted = [r for r in recipients if r not in refused]
        logger.info(
            "email_sent",
            account=mailbox.email,
            accepted=len(accepted),
            rejected=len(rejected),
        )
        return SendResult(
            message_id=msg["Message-ID"],
            accepted=accepted,
            rejected=rejected,
            raw=msg.as_bytes(),
        )
