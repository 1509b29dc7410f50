"""MCP tool definitions for the Mailpool server.

Tools available to the agent:
- ping: health check
- list_email_accounts: mailboxes managed by the directory
- list_folders: folders of one mailbox with their special-use attributes
- list_received_emails / list_sent_emails: paged listing with optional tag filter
- tag_email / untag_email: add or remove flags on a message
- count_tagged_emails: count messages in a folder carrying a flag
- send_email: send through the mailbox's SMTP server and file in Sent
- classify_replies: run a classification scan

Tag filters use the boolean syntax of engine/tag_filter.py, e.g.
``(interested OR out_of_office) AND NOT bounced``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from mailpool_mcp.core.errors import MailpoolError
from mailpool_mcp.core.logging import get_logger
from mailpool_mcp.mail.imap import INBOX_ALIAS, SENT_ALIAS
from mailpool_mcp.mail.models import SendRequest

if TYPE_CHECKING:
    from mailpool_mcp.service import MailboxService

logger = get_logger(__name__)

SERVER_NAME = "mailpool"

SERVER_INSTRUCTIONS = (
    "Manage Mailpool mailboxes: list accounts and emails, tag emails with flags, "
    "send email and classify replies. Address every mailbox by its email address. "
    "Folders accept the aliases INBOX and SENT."
)


@contextmanager
def _tool_errors(tool: str) -> Iterator[None]:
    """Report domain errors to the agent as tool errors."""
    try:
        yield
    except (MailpoolError, ValueError) as e:
        logger.warning("tool_failed", tool=tool, error=str(e), error_type=type(e).__name__)
        raise ToolError(str(e)) from e


def ping_payload() -> dict[str, str]:
    return {
        "result": "pong",
        "timestamp": datetime.now(UTC).isoformat(),
        "message": "MCP server is healthy",
    }


class MailpoolTools:
    """Tool implementations bound to a lazily built MailboxService."""

    def __init__(self, service_factory: Callable[[], MailboxService]):
        self._service_factory = service_factory
        self._service: MailboxService | None = None

    @property
    def service(self) -> MailboxService:
        if self._service is None:
            self._service = self._service_factory()
        return self._service

    def ping(self) -> dict[str, str]:
        """Health check. Useful for testing MCP server connectivity."""
        return ping_payload()

    def list_email_accounts(self) -> list[dict[str, Any]]:
        """List the email accounts (mailboxes) available to this server."""
        with _tool_errors("list_email_accounts"):
            return [m.to_dict() for m in self.service.list_accounts()]

    def list_folders(self, email: str) -> list[dict[str, Any]]:
        """List the folders of a mailbox.

        Args:
            email: Mailbox address
        """
        with _tool_errors("list_folders"):
            return [
                {"name": f.name, "specialUse": f.special_use, "attributes": sorted(f.attributes)}
                for f in self.service.list_folders(email)
            ]

    def _list(
        self, tool: str, email: str, folder: str, limit: int | None, page: int, tags: str | None
    ) -> dict[str, Any]:
        with _tool_errors(tool):
            result = self.service.list_messages(
                email, folder, limit=limit, page=page, tag_filter=tags
            )
            return result.to_dict()

    def list_received_emails(
        self,
        email: str,
        limit: int | None = None,
        page: int = 1,
        tags: str | None = None,
    ) -> dict[str, Any]:
        """List emails in the inbox, newest first.

        Args:
            email: Mailbox address
            limit: Page size (default 20)
            page: 1-based page number
            tags: Optional tag filter, e.g. "interested AND NOT bounced"
        """
        return self._list("list_received_emails", email, INBOX_ALIAS, limit, page, tags)

    def list_sent_emails(
        self,
        email: str,
        limit: int | None = None,
        page: int = 1,
        tags: str | None = None,
    ) -> dict[str, Any]:
        """List emails in the sent folder (auto-detected), newest first.

        Args:
            email: Mailbox address
            limit: Page size (default 20)
            page: 1-based page number
            tags: Optional tag filter, e.g. "classified AND NOT none"
        """
        return self._list("list_sent_emails", email, SENT_ALIAS, limit, page, tags)

    def tag_email(
        self, email: str, uid: int, tags: list[str], folder: str = INBOX_ALIAS
    ) -> dict[str, Any]:
        """Add tags (IMAP keywords) to an email.

        Args:
            email: Mailbox address
            uid: Message UID from a listing
            tags: Tags to add, e.g. ["interested", "classified"]
            folder: Folder name or alias (INBOX, SENT)
        """
        with _tool_errors("tag_email"):
            resolved = self.service.tag_message(email, folder, uid, tags)
        return {"folder": resolved, "uid": uid, "added": tags}

    def untag_email(
        self, email: str, uid: int, tags: list[str], folder: str = INBOX_ALIAS
    ) -> dict[str, Any]:
        """Remove tags (IMAP keywords) from an email.

        Args:
            email: Mailbox address
            uid: Message UID from a listing
            tags: Tags to remove
            folder: Folder name or alias (INBOX, SENT)
        """
        with _tool_errors("untag_email"):
            resolved = self.service.untag_message(email, folder, uid, tags)
        return {"folder": resolved, "uid": uid, "removed": tags}

    def count_tagged_emails(
        self, email: str, tag: str, folder: str = INBOX_ALIAS
    ) -> dict[str, Any]:
        """Count emails in a folder carrying a tag.

        Args:
            email: Mailbox address
            tag: Tag to count
            folder: Folder name or alias (INBOX, SENT)
        """
        with _tool_errors("count_tagged_emails"):
            resolved, count = self.service.count_tagged(email, folder, tag)
        return {"folder": resolved, "tag": tag, "count": count}

    def send_email(
        self,
        email: str,
        to: list[str],
        subject: str,
        text: str | None = None,
        html: str | None = None,
        cc: list[str] | None = None,
        bcc: list[str] | None = None,
    ) -> dict[str, Any]:
        """Send an email from a mailbox. A copy is filed in its sent folder.

        Args:
            email: Sending mailbox address
            to: Recipient addresses
            subject: Subject line
            text: Plain-text body
            html: HTML body
            cc: Cc addresses
            bcc: Bcc addresses
        """
        request = SendRequest(
            to=to, subject=subject, text=text, html=html, cc=cc or [], bcc=bcc or []
        )
        with _tool_errors("send_email"):
            return self.service.send(email, request).to_dict()

    async def classify_replies(self, email: str | None = None) -> dict[str, Any]:
        """Classify unclassified inbox replies and tag them (and the matching sent emails).

        Args:
            email: Only scan this mailbox (default: all mailboxes)
        """
        with _tool_errors("classify_replies"):
            report = await self.service.classify_replies(email)
        return report.to_dict()

    def register(self, mcp: FastMCP) -> None:
        """Register every tool on an MCP server."""
        for tool in (
            self.ping,
            self.list_email_accounts,
            self.list_folders,
            self.list_received_emails,
            self.list_sent_emails,
            self.tag_email,
            self.untag_email,
            self.count_tagged_emails,
            self.send_email,
            self.classify_replies,
        ):
            mcp.add_tool(tool, name=tool.__name__)


def create_mcp_server(service_factory: Callable[[], MailboxService]) -> FastMCP:
    """Create a FastMCP server exposing the mailbox tools.

    The service is built on first use, so a missing MAILPOOL_API_KEY
    surfaces as a tool error rather than a startup failure.
    """
    mcp = FastMCP(SERVER_NAME, instructions=SERVER_INSTRUCTIONS, streamable_http_path="/")
    MailpoolTools(service_factory).register(mcp)
    return mcp
