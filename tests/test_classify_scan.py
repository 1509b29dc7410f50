"""Tests for the classification scan engine.

Uses an in-memory mailbox that keeps flags between scans, so the effect of
tagging on later scans can be checked end to end.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from mailpool_mcp.classifier.categories import ReplyCategory
from mailpool_mcp.config_schema import AppConfig
from mailpool_mcp.core.errors import ClassificationError, DirectoryError, TransportError
from mailpool_mcp.core.logging import get_scan_id
from mailpool_mcp.directory.models import Mailbox
from mailpool_mcp.engine.classify_scan import (
    AccountScanResult,
    ClassificationScanEngine,
    ScanReport,
    summarize,
)
from mailpool_mcp.mail.models import Message, MessagePage
from tests.conftest import make_details, make_message

SENT_FOLDER = "Sent Items"


# =============================================================================
# Fakes
# =============================================================================


class FakeSession:
    """In-memory INBOX + sent folder that records every flag write."""

    def __init__(self, inbox: list[Message], sent: list[Message]):
        self.folders: dict[str, dict[int, Message]] = {
            "INBOX": {m.uid: m for m in inbox},
            SENT_FOLDER: {m.uid: m for m in sent},
        }
        self.flag_writes: list[tuple[str, int, str]] = []
        self.fail_on_set_flag: TransportError | None = None
        self.fail_once_in_folder: str | None = None

    def fetch_unclassified(self, folder: str, limit: int) -> list[Message]:
        messages = sorted(self.folders[folder].values(), key=lambda m: m.uid, reverse=True)
        return [m for m in messages if "classified" not in m.flags][:limit]

    def fetch_messages(self, folder: str, limit: int, page: int = 1) -> MessagePage:
        messages = sorted(self.folders[folder].values(), key=lambda m: m.uid, reverse=True)
        return MessagePage(messages=messages[:limit], total=len(messages), page=1, total_pages=1)

    def resolve_folder_alias(self, alias: str) -> str:
        return SENT_FOLDER if alias == "SENT" else alias

    def set_flag(self, folder: str, uid: int, flag: str) -> None:
        if self.fail_on_set_flag is not None:
            raise self.fail_on_set_flag
        if folder == self.fail_once_in_folder:
            self.fail_once_in_folder = None
            raise TransportError(f"STORE rejected on {folder}")
        self.flag_writes.append((folder, uid, flag))
        message = self.folders[folder][uid]
        self.folders[folder][uid] = replace(message, flags=message.flags | {flag})

    def flags(self, folder: str, uid: int) -> frozenset[str]:
        return self.folders[folder][uid].flags


class FakeTransport:
    def __init__(self, sessions: dict[str, FakeSession]):
        self.sessions = sessions
        self.opened: list[str] = []

    @contextmanager
    def open(self, mailbox: Any):
        self.opened.append(mailbox.email)
        if isinstance(self.sessions.get(mailbox.email), Exception):
            raise self.sessions[mailbox.email]
        yield self.sessions[mailbox.email]


def _directory(*emails: str) -> MagicMock:
    mailboxes = [Mailbox(id=i, email=email) for i, email in enumerate(emails, start=1)]
    directory = MagicMock()
    directory.list_mailboxes = MagicMock(return_value=mailboxes)
    directory.get_mailbox = MagicMock(
        side_effect=lambda mailbox_id: make_details(mailbox_id, mailboxes[mailbox_id - 1].email)
    )
    return directory


def _classifier(*categories: ReplyCategory) -> AsyncMock:
    classifier = AsyncMock()
    classifier.classify = AsyncMock(side_effect=list(categories))
    return classifier


@pytest.fixture
def config(sample_config: AppConfig) -> AppConfig:
    return sample_config


# =============================================================================
# Tests
# =============================================================================


class TestAccountScanResult:
    def test_to_dict_has_every_category(self):
        result = AccountScanResult(account="ada@example.com")
        result.record(ReplyCategory.INTERESTED)
        result.record(ReplyCategory.NONE)

        data = result.to_dict()

        assert data["account"] == "ada@example.com"
        assert data["total"] == 2
        assert data["interested"] == 1
        assert data["none"] == 1
        assert data["bounced"] == 0
        assert "error" not in data

    def test_error_included_when_set(self):
        result = AccountScanResult(account="a@x.com", error="boom")
        assert result.to_dict()["error"] == "boom"

    def test_summarize(self):
        first = AccountScanResult(account="a@x.com")
        first.record(ReplyCategory.BOUNCED)
        second = AccountScanResult(account="b@x.com")
        second.record(ReplyCategory.BOUNCED)
        second.record(ReplyCategory.COMPLAINED)

        totals = summarize([first, second])

        assert totals["bounced"] == 2
        assert totals["complained"] == 1
        assert totals["total"] == 3

    def test_report_to_dict(self):
        report = ScanReport(scan_id="scan-1", results=[AccountScanResult(account="a@x.com")])
        data = report.to_dict()
        assert data["scanId"] == "scan-1"
        assert data["results"][0]["account"] == "a@x.com"


class TestClassificationScan:
    @pytest.mark.asyncio
    async def test_matched_reply_tags_both_sides(self, config: AppConfig):
        session = FakeSession(
            inbox=[make_message(10, subject="Re: Demo", sender="Ann <a@x.com>", preview="Yes!")],
            sent=[make_message(99, subject="Demo", to="a@x.com, b@y.com")],
        )
        engine = ClassificationScanEngine(
            directory=_directory("ada@example.com"),
            transport=FakeTransport({"ada@example.com": session}),
            classifier=_classifier(ReplyCategory.INTERESTED),
            config=config,
        )

        report = await engine.run_scan()

        assert session.flags("INBOX", 10) >= {"interested", "classified"}
        assert session.flags(SENT_FOLDER, 99) >= {"interested", "classified"}
        result = report.results[0]
        assert result.counts[ReplyCategory.INTERESTED] == 1
        assert result.matched == 1
        assert result.unmatched == 0
        assert result.error is None

    @pytest.mark.asyncio
    async def test_classifier_sees_subject_and_preview(self, config: AppConfig):
        session = FakeSession(
            inbox=[make_message(10, subject="Re: Demo", sender="a@x.com", preview="Call me")],
            sent=[],
        )
        classifier = _classifier(ReplyCategory.INTERESTED)
        engine = ClassificationScanEngine(
            _directory("ada@example.com"),
            FakeTransport({"ada@example.com": session}),
            classifier,
            config,
        )

        await engine.run_scan()

        classifier.classify.assert_awaited_once_with("Re: Demo", "Call me")

    @pytest.mark.asyncio
    async def test_reply_marker_written_last(self, config: AppConfig):
        session = FakeSession(
            inbox=[make_message(10, subject="Re: Demo", sender="a@x.com")],
            sent=[make_message(99, subject="Demo", to="a@x.com")],
        )
        engine = ClassificationScanEngine(
            _directory("ada@example.com"),
            FakeTransport({"ada@example.com": session}),
            _classifier(ReplyCategory.BOUNCED),
            config,
        )

        await engine.run_scan()

        assert session.flag_writes == [
            ("INBOX", 10, "bounced"),
            (SENT_FOLDER, 99, "bounced"),
            (SENT_FOLDER, 99, "classified"),
            ("INBOX", 10, "classified"),
        ]

    @pytest.mark.asyncio
    async def test_unmatched_reply_tags_inbox_only(self, config: AppConfig):
        session = FakeSession(
            inbox=[make_message(10, subject="Out of office", sender="a@x.com")],
            sent=[make_message(99, subject="Demo", to="a@x.com")],
        )
        engine = ClassificationScanEngine(
            _directory("ada@example.com"),
            FakeTransport({"ada@example.com": session}),
            _classifier(ReplyCategory.OUT_OF_OFFICE),
            config,
        )

        report = await engine.run_scan()

        assert session.flags("INBOX", 10) == {"out_of_office", "classified"}
        assert session.flags(SENT_FOLDER, 99) == frozenset()
        assert report.results[0].unmatched == 1

    @pytest.mark.asyncio
    async def test_none_writes_only_marker(self, config: AppConfig):
        session = FakeSession(
            inbox=[make_message(10, subject="Re: Demo", sender="a@x.com")],
            sent=[make_message(99, subject="Demo", to="a@x.com")],
        )
        engine = ClassificationScanEngine(
            _directory("ada@example.com"),
            FakeTransport({"ada@example.com": session}),
            _classifier(ReplyCategory.NONE),
            config,
        )

        report = await engine.run_scan()

        assert session.flags("INBOX", 10) == {"classified"}
        assert session.flags(SENT_FOLDER, 99) == {"classified"}
        assert report.results[0].counts[ReplyCategory.NONE] == 1
        assert report.results[0].total == 1

    @pytest.mark.asyncio
    async def test_already_classified_messages_skipped(self, config: AppConfig):
        session = FakeSession(
            inbox=[
                make_message(10, subject="Re: Demo", sender="a@x.com", flags={"classified"}),
                make_message(11, subject="Re: Demo", sender="b@y.com"),
            ],
            sent=[],
        )
        classifier = _classifier(ReplyCategory.COMPLAINED)
        engine = ClassificationScanEngine(
            _directory("ada@example.com"),
            FakeTransport({"ada@example.com": session}),
            classifier,
            config,
        )

        report = await engine.run_scan()

        assert classifier.classify.await_count == 1
        assert report.results[0].total == 1
        assert all(uid == 11 for _, uid, _ in session.flag_writes)

    @pytest.mark.asyncio
    async def test_second_scan_classifies_nothing(self, config: AppConfig):
        session = FakeSession(
            inbox=[
                make_message(10, subject="Re: Demo", sender="a@x.com"),
                make_message(11, subject="Unrelated", sender="c@z.com"),
            ],
            sent=[make_message(99, subject="Demo", to="a@x.com")],
        )
        classifier = _classifier(ReplyCategory.INTERESTED, ReplyCategory.NONE)
        engine = ClassificationScanEngine(
            _directory("ada@example.com"),
            FakeTransport({"ada@example.com": session}),
            classifier,
            config,
        )

        first = await engine.run_scan()
        second = await engine.run_scan()

        assert first.results[0].total == 2
        assert second.results[0].total == 0
        assert classifier.classify.await_count == 2

    @pytest.mark.asyncio
    async def test_reused_outbound_tagged_by_each_reply(self, config: AppConfig):
        session = FakeSession(
            inbox=[
                make_message(11, subject="Re: Launch", sender="b@y.com"),
                make_message(10, subject="Re: Launch", sender="a@x.com"),
            ],
            sent=[make_message(99, subject="Launch", to="a@x.com, b@y.com")],
        )
        engine = ClassificationScanEngine(
            _directory("ada@example.com"),
            FakeTransport({"ada@example.com": session}),
            _classifier(ReplyCategory.INTERESTED, ReplyCategory.UNSUBSCRIBED),
            config,
        )

        report = await engine.run_scan()

        # The sent message carries both outcomes
        assert session.flags(SENT_FOLDER, 99) == {"interested", "unsubscribed", "classified"}
        assert report.results[0].matched == 2

    @pytest.mark.asyncio
    async def test_inbox_limit_applied(self, sample_config_dict: dict[str, Any]):
        sample_config_dict["scan"]["inbox_limit"] = 2
        config = AppConfig(**sample_config_dict)
        session = FakeSession(
            inbox=[make_message(uid, sender="a@x.com") for uid in range(1, 6)],
            sent=[],
        )
        classifier = _classifier(*[ReplyCategory.NONE] * 5)
        engine = ClassificationScanEngine(
            _directory("ada@example.com"),
            FakeTransport({"ada@example.com": session}),
            classifier,
            config,
        )

        report = await engine.run_scan()

        assert report.results[0].total == 2
        assert {uid for _, uid, _ in session.flag_writes} == {5, 4}

    @pytest.mark.asyncio
    async def test_empty_inbox_skips_sent_folder(self, config: AppConfig):
        session = MagicMock()
        session.fetch_unclassified = MagicMock(return_value=[])
        transport = MagicMock()
        transport.open.return_value.__enter__.return_value = session
        engine = ClassificationScanEngine(
            _directory("ada@example.com"), transport, _classifier(), config
        )

        report = await engine.run_scan()

        session.resolve_folder_alias.assert_not_called()
        session.fetch_messages.assert_not_called()
        assert report.results[0].total == 0


class TestScanErrors:
    @pytest.mark.asyncio
    async def test_classifier_failure_isolated_to_account(self, config: AppConfig):
        first = FakeSession(
            inbox=[
                make_message(11, subject="Re: A", sender="a@x.com"),
                make_message(10, subject="Re: B", sender="a@x.com"),
            ],
            sent=[],
        )
        second = FakeSession(inbox=[make_message(20, sender="c@z.com")], sent=[])
        classifier = AsyncMock()
        classifier.classify = AsyncMock(
            side_effect=[
                ReplyCategory.INTERESTED,
                ClassificationError("API down"),
                ReplyCategory.BOUNCED,
            ]
        )
        engine = ClassificationScanEngine(
            _directory("one@example.com", "two@example.com"),
            FakeTransport({"one@example.com": first, "two@example.com": second}),
            classifier,
            config,
        )

        report = await engine.run_scan()

        failed, ok = report.results
        assert failed.error == "API down"
        # Flags written before the failure stay
        assert failed.counts[ReplyCategory.INTERESTED] == 1
        assert first.flags("INBOX", 11) == {"interested", "classified"}
        assert first.flags("INBOX", 10) == frozenset()
        assert failed.to_dict()["error"] == "API down"
        assert ok.error is None
        assert ok.counts[ReplyCategory.BOUNCED] == 1
        assert report.failed_accounts == ["one@example.com"]

    @pytest.mark.asyncio
    async def test_transport_failure_on_open(self, config: AppConfig):
        healthy = FakeSession(inbox=[make_message(1, sender="a@x.com")], sent=[])
        engine = ClassificationScanEngine(
            _directory("down@example.com", "up@example.com"),
            FakeTransport(
                {
                    "down@example.com": TransportError("IMAP login failed"),
                    "up@example.com": healthy,
                }
            ),
            _classifier(ReplyCategory.NONE),
            config,
        )

        report = await engine.run_scan()

        assert report.results[0].error == "IMAP login failed"
        assert report.results[0].total == 0
        assert report.results[1].total == 1

    @pytest.mark.asyncio
    async def test_flag_write_failure_recorded(self, config: AppConfig):
        session = FakeSession(inbox=[make_message(1, sender="a@x.com")], sent=[])
        session.fail_on_set_flag = TransportError("STORE rejected")
        engine = ClassificationScanEngine(
            _directory("ada@example.com"),
            FakeTransport({"ada@example.com": session}),
            _classifier(ReplyCategory.INTERESTED),
            config,
        )

        report = await engine.run_scan()

        assert report.results[0].error == "STORE rejected"
        assert report.results[0].total == 0

    @pytest.mark.asyncio
    async def test_failed_sent_write_leaves_reply_for_next_scan(self, config: AppConfig):
        session = FakeSession(
            inbox=[make_message(10, subject="Re: Demo", sender="a@x.com")],
            sent=[make_message(99, subject="Demo", to="a@x.com")],
        )
        session.fail_once_in_folder = SENT_FOLDER
        engine = ClassificationScanEngine(
            _directory("ada@example.com"),
            FakeTransport({"ada@example.com": session}),
            _classifier(ReplyCategory.INTERESTED, ReplyCategory.INTERESTED),
            config,
        )

        first = await engine.run_scan()

        assert first.results[0].error is not None
        assert get_scan_id() is None
        assert "classified" not in session.flags("INBOX", 10)

        second = await engine.run_scan()

        assert second.results[0].error is None
        assert second.results[0].counts[ReplyCategory.INTERESTED] == 1
        assert session.flags("INBOX", 10) == {"interested", "classified"}
        assert session.flags(SENT_FOLDER, 99) == {"interested", "classified"}

    @pytest.mark.asyncio
    async def test_directory_listing_failure_propagates(self, config: AppConfig):
        directory = MagicMock()
        directory.list_mailboxes = MagicMock(side_effect=DirectoryError("401", status_code=401))
        engine = ClassificationScanEngine(directory, FakeTransport({}), _classifier(), config)

        with pytest.raises(DirectoryError):
            await engine.run_scan()


class TestAccountFilter:
    @pytest.mark.asyncio
    async def test_only_requested_account_scanned(self, config: AppConfig):
        transport = FakeTransport(
            {
                "one@example.com": FakeSession(inbox=[], sent=[]),
                "two@example.com": FakeSession(inbox=[], sent=[]),
            }
        )
        engine = ClassificationScanEngine(
            _directory("one@example.com", "two@example.com"), transport, _classifier(), config
        )

        report = await engine.run_scan("Two@Example.com")

        assert transport.opened == ["two@example.com"]
        assert [r.account for r in report.results] == ["two@example.com"]

    @pytest.mark.asyncio
    async def test_unknown_account_raises(self, config: AppConfig):
        engine = ClassificationScanEngine(
            _directory("one@example.com"), FakeTransport({}), _classifier(), config
        )

        with pytest.raises(DirectoryError, match="nobody@example.com") as exc_info:
            await engine.run_scan("nobody@example.com")
        assert exc_info.value.status_code == 404
