"""Mailbox operations shared by the MCP tools, the HTTP API and the CLI.

Every operation addresses a mailbox by its email address, looks up its
credentials in the directory and runs on a fresh IMAP session.

Usage:
    from mailpool_mcp.service import MailboxService

    service = MailboxService.from_config(config)
    page = service.list_messages("ada@example.com", "INBOX", limit=20, tag_filter="interested")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mailpool_mcp.classifier.claude_classifier import ReplyClassifier
from mailpool_mcp.core.errors import TransportError
from mailpool_mcp.core.logging import get_logger
from mailpool_mcp.directory.client import MailpoolClient
from mailpool_mcp.engine.classify_scan import ClassificationScanEngine
from mailpool_mcp.engine.tag_filter import filter_messages, parse_filter
from mailpool_mcp.mail.imap import SENT_ALIAS, ImapTransport
from mailpool_mcp.mail.models import MessagePage, SendRequest, SendResult
from mailpool_mcp.mail.smtp import SmtpSender

if TYPE_CHECKING:
    from mailpool_mcp.config_schema import AppConfig
    from mailpool_mcp.directory.models import Mailbox
    from mailpool_mcp.engine.classify_scan import ScanReport
    from mailpool_mcp.mail.parsing import FolderInfo

logger = get_logger(__name__)


class MailboxService:
    """Facade over the directory, IMAP transport and SMTP sender.

    Attributes:
        config: Application configuration
        directory: Mailpool directory client
        transport: IMAP transport
        sender: SMTP sender
    """

    def __init__(
        self,
        config: AppConfig,
        directory: MailpoolClient,
        transport: ImapTransport,
        sender: SmtpSender,
    ):
        self.config = config
        self.directory = directory
        self.transport = transport
        self.sender = sender

    @classmethod
    def from_config(cls, config: AppConfig) -> MailboxService:
        """Build the service and its collaborators.

        Raises:
            ConfigurationError: If MAILPOOL_API_KEY is not configured
        """
        return cls(
            config=config,
            directory=MailpoolClient.from_config(config),
            transport=ImapTransport.from_config(config),
            sender=SmtpSender(timeout=config.imap.timeout_seconds),
        )

    def list_accounts(self) -> list[Mailbox]:
        return self.directory.list_mailboxes()

    def list_folders(self, email: str) -> list[FolderInfo]:
        mailbox = self.directory.get_mailbox_by_email(email)
        with self.transport.open(mailbox) as session:
            return session.list_folders()

    def list_messages(
        self,
        email: str,
        folder: str,
        limit: int | None = None,
        page: int = 1,
        tag_filter: str | None = None,
    ) -> MessagePage:
        """List one page of a folder, optionally keeping only matching messages.

        The filter applies to the fetched page; ``total`` and
        ``total_pages`` describe the unfiltered folder.

        Raises:
            FilterSyntaxError: Before any I/O, if tag_filter is malformed
        """
        expression = parse_filter(tag_filter) if tag_filter else None
        limit = max(1, limit or self.config.mail.default_list_limit)

        mailbox = self.directory.get_mailbox_by_email(email)
        with self.transport.open(mailbox) as session:
            resolved = session.resolve_folder_alias(folder)
            result = session.fetch_messages(resolved, limit, page)

        if expression is None:
            return result
        return MessagePage(
            messages=filter_messages(result.messages, expression),
            total=result.total,
            page=result.page,
            total_pages=result.total_pages,
        )

    def tag_message(self, email: str, folder: str, uid: int, tags: list[str]) -> str:
        """Add tags to a message; returns the resolved folder name."""
        mailbox = self.directory.get_mailbox_by_email(email)
        with self.transport.open(mailbox) as session:
            resolved = session.resolve_folder_alias(folder)
            for tag in tags:
                session.set_flag(resolved, uid, tag)
        logger.info("message_tagged", account=email, folder=resolved, uid=uid, tags=tags)
        return resolved

    def untag_message(self, email: str, folder: str, uid: int, tags: list[str]) -> str:
        """Remove tags from a message; returns the resolved folder name."""
        mailbox = self.directory.get_mailbox_by_email(email)
        with self.transport.open(mailbox) as session:
            resolved = session.resolve_folder_alias(folder)
            for tag in tags:
                session.remove_flag(resolved, uid, tag)
        logger.info("message_untagged", account=email, folder=resolved, uid=uid, tags=tags)
        return resolved

    def count_tagged(self, email: str, folder: str, tag: str) -> tuple[str, int]:
        """Count messages carrying a tag; returns (resolved folder, count)."""
        mailbox = self.directory.get_mailbox_by_email(email)
        with self.transport.open(mailbox) as session:
            resolved = session.resolve_folder_alias(folder)
            return resolved, session.count_by_flag(resolved, tag)

    def send(self, email: str, request: SendRequest) -> SendResult:
        """Send a message and file a copy in the sent folder.

        A failure to file the copy is logged; the send itself already happened.
        """
        mailbox = self.directory.get_mailbox_by_email(email)
        result = self.sender.send(mailbox, request)
        if not result.accepted:
            return result

        try:
            with self.transport.open(mailbox) as session:
                session.append_message(session.resolve_folder_alias(SENT_ALIAS), result.raw)
        except TransportError as e:
            logger.warning(
                "sent_copy_append_failed",
                account=email,
                message_id=result.message_id,
                error=str(e),
            )
        return result

    def scan_engine(self) -> ClassificationScanEngine:
        """Build a scan engine.

        Raises:
            ConfigurationError: If ANTHROPIC_API_KEY is not configured
        """
        return ClassificationScanEngine(
            directory=self.directory,
            transport=self.transport,
            classifier=ReplyClassifier.from_config(self.config),
            config=self.config,
        )

    async def classify_replies(self, account_email: str | None = None) -> ScanReport:
        """Run a classification scan (all accounts, or one)."""
        return await self.scan_engine().run_scan(account_email)
