"""Classification scan engine.

Walks every directory mailbox, classifies unclassified inbox replies and
writes the outcome back as IMAP keywords.

Per account:
1. Fetch mailbox credentials and open one IMAP session
2. Pull the newest inbox messages lacking the 'classified' marker
3. Resolve the sent folder and pair replies with sent messages
4. Matched replies: classify, then tag the reply AND the sent message
5. Unmatched replies: classify, then tag the reply only
6. Count outcomes per category

Messages are processed strictly one at a time. A failure aborts the current
account, is recorded on its result and the scan moves on to the next account.
Flags already written stay written. The reply's marker is always the last
write, so a reply left half-tagged is picked up again by the next scan.

Usage:
    from mailpool_mcp.engine.classify_scan import ClassificationScanEngine

    engine = ClassificationScanEngine(directory, transport, classifier, config)
    report = await engine.run_scan()
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from mailpool_mcp.classifier.categories import ReplyCategory
from mailpool_mcp.core.errors import (
    ClassificationError,
    DirectoryError,
    TransportError,
)
from mailpool_mcp.core.logging import get_logger, set_scan_id
from mailpool_mcp.engine.tag_filter import filter_messages, parse_filter
from mailpool_mcp.engine.thread_matcher import match_replies_to_sent
from mailpool_mcp.mail.imap import INBOX_ALIAS, SENT_ALIAS
from mailpool_mcp.mail.models import CLASSIFIED_FLAG

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from mailpool_mcp.config_schema import AppConfig
    from mailpool_mcp.directory.models import Mailbox, MailboxDetails
    from mailpool_mcp.mail.models import Message, MessagePage

logger = get_logger(__name__)

UNCLASSIFIED_FILTER = parse_filter(f"NOT {CLASSIFIED_FLAG}")


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


class Directory(Protocol):
    def list_mailboxes(self) -> list[Mailbox]: ...

    def get_mailbox(self, mailbox_id: int) -> MailboxDetails: ...


class MailboxSession(Protocol):
    def fetch_messages(self, folder: str, limit: int, page: int = 1) -> MessagePage: ...

    def fetch_unclassified(self, folder: str, limit: int) -> list[Message]: ...

    def set_flag(self, folder: str, uid: int, flag: str) -> None: ...

    def resolve_folder_alias(self, alias: str) -> str: ...


class MailboxTransport(Protocol):
    def open(self, mailbox: MailboxDetails) -> AbstractContextManager[MailboxSession]: ...


class Classifier(Protocol):
    async def classify(self, subject: str, preview: str) -> ReplyCategory: ...


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class AccountScanResult:
    """Outcome counts for one account."""

    account: str
    counts: dict[ReplyCategory, int] = field(
        default_factory=lambda: {category: 0 for category in ReplyCategory}
    )
    matched: int = 0
    unmatched: int = 0
    error: str | None = None

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def record(self, category: ReplyCategory) -> None:
        self.counts[category] += 1

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"account": self.account, "total": self.total}
        for category in ReplyCategory:
            result[category.value] = self.counts[category]
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class ScanReport:
    """Result of a classification scan across accounts."""

    scan_id: str
    results: list[AccountScanResult] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def failed_accounts(self) -> list[str]:
        return [r.account for r in self.results if r.error is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanId": self.scan_id,
            "durationMs": self.duration_ms,
            "results": [r.to_dict() for r in self.results],
        }


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ClassificationScanEngine:
    """Classifies unclassified replies across all directory mailboxes.

    Attributes:
        _directory: Mailbox directory (credentials)
        _transport: Opens one mailbox session per account
        _classifier: Reply classifier
        _inbox_limit: Max unclassified inbox messages per account
        _sent_limit: Max sent messages considered for thread matching
    """

    def __init__(
        self,
        directory: Directory,
        transport: MailboxTransport,
        classifier: Classifier,
        config: AppConfig,
    ):
        self._directory = directory
        self._transport = transport
        self._classifier = classifier
        self._inbox_limit = config.scan.inbox_limit
        self._sent_limit = config.scan.sent_limit

    async def run_scan(self, account_email: str | None = None) -> ScanReport:
        """Run one scan over every account (or only ``account_email``).

        Raises:
            DirectoryError: If the mailbox listing itself fails
        """
        scan_id = str(uuid.uuid4())
        set_scan_id(scan_id)
        start_time = time.monotonic()
        report = ScanReport(scan_id=scan_id)

        try:
            mailboxes = self._directory.list_mailboxes()
            if account_email is not None:
                wanted = account_email.strip().lower()
                mailboxes = [m for m in mailboxes if m.email.lower() == wanted]
                if not mailboxes:
                    raise DirectoryError(
                        f"Mailbox not found for email: {account_email}", status_code=404
                    )

            logger.info("scan_start", accounts=len(mailboxes))

            for mailbox in mailboxes:
                result = AccountScanResult(account=mailbox.email)
                try:
                    await self._scan_account(mailbox, result)
                except (TransportError, ClassificationError, DirectoryError) as e:
                    result.error = str(e)
                    logger.error(
                        "scan_account_failed",
                        account=mailbox.email,
                        error=str(e),
                        error_type=type(e).__name__,
                        classified_before_error=result.total,
                    )
                report.results.append(result)
        finally:
            report.duration_ms = int((time.monotonic() - start_time) * 1000)
            logger.info(
                "scan_complete",
                duration_ms=report.duration_ms,
                accounts=len(report.results),
                failed_accounts=len(report.failed_accounts),
                classified=sum(r.total for r in report.results),
            )
            set_scan_id(None)

        return report

    async def _scan_account(self, mailbox: Mailbox, result: AccountScanResult) -> None:
        details = self._directory.get_mailbox(mailbox.id)

        with self._transport.open(details) as session:
            inbox = session.fetch_unclassified(INBOX_ALIAS, self._inbox_limit)
            unclassified = filter_messages(inbox, UNCLASSIFIED_FILTER)
            if not unclassified:
                logger.info("scan_account_nothing_to_classify", account=mailbox.email)
                return

            sent_folder = session.resolve_folder_alias(SENT_ALIAS)
            sent = session.fetch_messages(sent_folder, self._sent_limit).messages
            matching = match_replies_to_sent(unclassified, sent)
            result.matched = len(matching.matches)
            result.unmatched = len(matching.unmatched_uids)

            by_uid = {m.uid: m for m in unclassified}

            for match in matching.matches:
                reply = by_uid[match.inbound_uid]
                category = await self._classifier.classify(reply.subject, reply.preview)
                _apply_flags(
                    session,
                    category,
                    (INBOX_ALIAS, match.inbound_uid),
                    (sent_folder, match.outbound_uid),
                )
                result.record(category)
                logger.info(
                    "reply_classified",
                    account=mailbox.email,
                    uid=match.inbound_uid,
                    sent_uid=match.outbound_uid,
                    category=category.value,
                )

            for uid in matching.unmatched_uids:
                reply = by_uid[uid]
                category = await self._classifier.classify(reply.subject, reply.preview)
                _apply_flags(session, category, (INBOX_ALIAS, uid))
                result.record(category)
                logger.info(
                    "reply_classified",
                    account=mailbox.email,
                    uid=uid,
                    category=category.value,
                )

        logger.info(
            "scan_account_complete",
            account=mailbox.email,
            total=result.total,
            matched=result.matched,
            unmatched=result.unmatched,
        )


def _apply_flags(
    session: MailboxSession,
    category: ReplyCategory,
    reply: tuple[str, int],
    sent: tuple[str, int] | None = None,
) -> None:
    """Write the outcome to the reply and, when matched, its sent message.

    Order: category keywords, then the sent marker, then the reply marker.
    """
    targets = [reply] if sent is None else [reply, sent]
    if category.keyword is not None:
        for folder, uid in targets:
            session.set_flag(folder, uid, category.keyword)
    if sent is not None:
        session.set_flag(*sent, CLASSIFIED_FLAG)
    session.set_flag(*reply, CLASSIFIED_FLAG)


def summarize(results: Sequence[AccountScanResult]) -> dict[str, int]:
    """Sum per-category counts across accounts."""
    totals = {category.value: 0 for category in ReplyCategory}
    for result in results:
        for category, count in result.counts.items():
            totals[category.value] += count
    totals["total"] = sum(r.total for r in results)
    return totals
