"""IMAP mailbox transport.

One ImapSession wraps one authenticated imaplib connection for one mailbox.
Sessions are not safe for overlapping use; callers run operations on a
session one at a time and give each account its own session.

Usage:
    from mailpool_mcp.mail.imap import ImapTransport

    transport = ImapTransport.from_config(config)
    with transport.open(mailbox_details) as session:
        page = session.fetch_messages("INBOX", limit=20)
        sent = session.resolve_folder_alias("SENT")
        session.set_flag("INBOX", page.messages[0].uid, "interested")
"""

from __future__ import annotations

import imaplib
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import regex

from mailpool_mcp.core.errors import TransportError
from mailpool_mcp.core.logging import get_logger
from mailpool_mcp.mail.models import CLASSIFIED_FLAG, Message, MessagePage
from mailpool_mcp.mail.parsing import (
    FolderInfo,
    parse_fetch_response,
    parse_list_response,
    parse_message,
)

if TYPE_CHECKING:
    from mailpool_mcp.config_schema import AppConfig
    from mailpool_mcp.directory.models import MailboxDetails

logger = get_logger(__name__)

INBOX_ALIAS = "INBOX"
SENT_ALIAS = "SENT"

FETCH_ITEMS = "(UID FLAGS BODY.PEEK[])"

# IMAP atom: no whitespace, parens, braces, quotes, wildcards or ']'
FLAG_PATTERN = regex.compile(r'^\\?[^\s(){}"%*\]\\]+$')

SYSTEM_FLAG_SEARCH_KEYS = {
    "\\Seen": "SEEN",
    "\\Answered": "ANSWERED",
    "\\Flagged": "FLAGGED",
    "\\Deleted": "DELETED",
    "\\Draft": "DRAFT",
}


def sent_folder_for_host(host: str) -> str:
    """Guess the sent folder name from the IMAP host name."""
    h = host.lower()
    if "gmail" in h:
        return "[Gmail]/Sent Mail"
    if "outlook" in h or "office365" in h:
        return "Sent Items"
    return "Sent"


def quote_mailbox(name: str) -> str:
    """Quote a mailbox name for an IMAP command."""
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def validate_flag(flag: str) -> str:
    """Check that a flag is a single IMAP atom.

    Raises:
        ValueError: If the flag cannot be sent as an IMAP keyword
    """
    if not flag or not FLAG_PATTERN.match(flag):
        raise ValueError(
            f"Invalid flag {flag!r}: flags must be a single word without spaces, "
            "parentheses, quotes or wildcards"
        )
    return flag


class ImapSession:
    """An authenticated IMAP connection for one mailbox.

    Attributes:
        host: IMAP host (used for the sent-folder fallback)
        preview_length: Characters of body text kept per message
    """

    def __init__(self, conn: imaplib.IMAP4, host: str, preview_length: int = 200):
        self._conn = conn
        self.host = host
        self.preview_length = preview_length
        self._selected: tuple[str, bool] | None = None
        self._sent_folder: str | None = None

    def __enter__(self) -> ImapSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Log out; errors while closing are logged and ignored.

        Never sends CLOSE: on a read-write mailbox it expunges \\Deleted mail.
        """
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug("imap_logout_failed", host=self.host, error=str(e))
        finally:
            self._selected = None

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _guard(self, operation: str, folder: str | None = None) -> Iterator[None]:
        """Translate imaplib/socket failures into TransportError."""
        try:
            yield
        except (imaplib.IMAP4.error, OSError) as e:
            logger.error("imap_operation_failed", operation=operation, folder=folder, error=str(e))
            raise TransportError(
                f"IMAP {operation} failed{f' on {folder}' if folder else ''}: {e}",
                operation=operation,
                folder=folder,
            ) from e

    def _check(self, typ: str, data: list, operation: str, folder: str | None = None) -> list:
        if typ != "OK":
            detail: object = data
            if data and isinstance(data[0], bytes):
                detail = data[0].decode("utf-8", "replace")
            raise TransportError(
                f"IMAP {operation} failed{f' on {folder}' if folder else ''}: {typ} {detail}",
                operation=operation,
                folder=folder,
            )
        return data

    def _select(self, folder: str, readonly: bool) -> None:
        if self._selected == (folder, readonly):
            return
        with self._guard("select", folder):
            typ, data = self._conn.select(quote_mailbox(folder), readonly=readonly)
        self._check(typ, data, "select", folder)
        self._selected = (folder, readonly)

    def _search(self, folder: str, *criteria: str) -> list[int]:
        with self._guard("search", folder):
            typ, data = self._conn.uid("SEARCH", None, *criteria)
        self._check(typ, data, "search", folder)
        if not data or not data[0]:
            return []
        return sorted(int(x) for x in data[0].split())

    def _fetch(self, folder: str, uids: list[int]) -> list[Message]:
        """Fetch messages by UID, newest (highest UID) first."""
        if not uids:
            return []
        uid_set = ",".join(str(u) for u in uids)
        with self._guard("fetch", folder):
            typ, data = self._conn.uid("FETCH", uid_set, FETCH_ITEMS)
        self._check(typ, data, "fetch", folder)

        messages = [
            parse_message(item.uid, item.raw, item.flags, self.preview_length)
            for item in parse_fetch_response(data)
        ]
        messages.sort(key=lambda m: m.uid, reverse=True)
        return messages

    def _store(self, folder: str, uid: int, op: str, flag: str) -> None:
        validate_flag(flag)
        self._select(folder, readonly=False)
        with self._guard("store", folder):
            typ, data = self._conn.uid("STORE", str(uid), op, f"({flag})")
        self._check(typ, data, "store", folder)

    # ------------------------------------------------------------------
    # Mailbox operations
    # ------------------------------------------------------------------

    def fetch_messages(self, folder: str, limit: int, page: int = 1) -> MessagePage:
        """Fetch one page of a folder, newest first.

        Args:
            folder: Concrete folder name
            limit: Page size (at least 1)
            page: 1-based page number (clamped to the valid range)
        """
        limit = max(1, limit)
        self._select(folder, readonly=True)
        uids = self._search(folder, "ALL")
        total = len(uids)
        total_pages, page = MessagePage.paginate(total, limit, page)

        newest_first = uids[::-1]
        start = (page - 1) * limit
        messages = self._fetch(folder, newest_first[start : start + limit])

        logger.debug("imap_messages_fetched", folder=folder, page=page, count=len(messages))
        return MessagePage(messages=messages, total=total, page=page, total_pages=total_pages)

    def fetch_unclassified(self, folder: str, limit: int) -> list[Message]:
        """Fetch up to ``limit`` of the newest messages without the marker flag."""
        self._select(folder, readonly=True)
        uids = self._search(folder, "UNKEYWORD", CLASSIFIED_FLAG)
        return self._fetch(folder, uids[-limit:] if limit > 0 else [])

    def set_flag(self, folder: str, uid: int, flag: str) -> None:
        """Add a flag to a message."""
        self._store(folder, uid, "+FLAGS", flag)
        logger.debug("imap_flag_set", folder=folder, uid=uid, flag=flag)

    def remove_flag(self, folder: str, uid: int, flag: str) -> None:
        """Remove a flag from a message."""
        self._store(folder, uid, "-FLAGS", flag)
        logger.debug("imap_flag_removed", folder=folder, uid=uid, flag=flag)

    def count_by_flag(self, folder: str, flag: str) -> int:
        """Count messages in a folder carrying a flag."""
        validate_flag(flag)
        self._select(folder, readonly=True)
        if flag in SYSTEM_FLAG_SEARCH_KEYS:
            return len(self._search(folder, SYSTEM_FLAG_SEARCH_KEYS[flag]))
        return len(self._search(folder, "KEYWORD", flag))

    def list_folders(self) -> list[FolderInfo]:
        """List all folders with their attributes."""
        with self._guard("list"):
            typ, data = self._conn.list()
        self._check(typ, data, "list")
        return parse_list_response(data)

    def find_sent_folder(self) -> str:
        """Locate the sent folder via the \\Sent special-use attribute.

        Falls back to host-name conventions when the server does not
        advertise one or the listing fails.
        """
        try:
            for folder in self.list_folders():
                if "\\Sent" in folder.attributes:
                    return folder.name
        except TransportError as e:
            logger.warning("sent_folder_lookup_failed", host=self.host, error=str(e))
        return sent_folder_for_host(self.host)

    def resolve_folder_alias(self, alias: str) -> str:
        """Map 'INBOX'/'SENT' aliases to concrete folder names.

        Any other name is returned unchanged.
        """
        key = alias.strip().upper()
        if key == INBOX_ALIAS:
            return INBOX_ALIAS
        if key == SENT_ALIAS:
            if self._sent_folder is None:
                self._sent_folder = self.find_sent_folder()
                logger.debug("sent_folder_resolved", host=self.host, folder=self._sent_folder)
            return self._sent_folder
        return alias

    def append_message(self, folder: str, raw: bytes, flags: str = "(\\Seen)") -> None:
        """Append raw RFC 822 bytes to a folder."""
        with self._guard("append", folder):
            typ, data = self._conn.append(
                quote_mailbox(folder),
                flags,
                imaplib.Time2Internaldate(time.time()),
                raw,
            )
        self._check(typ, data, "append", folder)
        logger.debug("imap_message_appended", folder=folder, size=len(raw))


class ImapTransport:
    """Opens IMAP sessions for directory mailboxes."""

    def __init__(
        self,
        default_host: str = "imap.mailpool.io",
        default_port: int = 993,
        timeout: float = 30.0,
        preview_length: int = 200,
    ):
        self.default_host = default_host
        self.default_port = default_port
        self.timeout = timeout
        self.preview_length = preview_length

    @classmethod
    def from_config(cls, config: AppConfig) -> ImapTransport:
        return cls(
            default_host=config.imap.default_host,
            default_port=config.imap.default_port,
            timeout=config.imap.timeout_seconds,
            preview_length=config.mail.preview_length,
        )

    def _connect(self, host: str, port: int, use_tls: bool) -> imaplib.IMAP4:
        if use_tls:
            return imaplib.IMAP4_SSL(host, port, timeout=self.timeout)
        conn = imaplib.IMAP4(host, port, timeout=self.timeout)
        if "STARTTLS" in conn.capabilities:
            conn.starttls()
        return conn

    def open(self, mailbox: MailboxDetails) -> ImapSession:
        """Connect and log in.

        Raises:
            TransportError: If the connection or login fails
        """
        host = mailbox.imap_host or self.default_host
        port = mailbox.imap_port or self.default_port
        try:
            conn = self._connect(host, port, mailbox.imap_tls)
        except (imaplib.IMAP4.error, OSError) as e:
            raise TransportError(
                f"Could not connect to IMAP server {host}:{port}: {e}", operation="connect"
            ) from e

        try:
            conn.login(mailbox.imap_username, mailbox.imap_password)
        except (imaplib.IMAP4.error, OSError) as e:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError):
                pass
            raise TransportError(
                f"IMAP login failed for {mailbox.email} on {host}: {e}", operation="login"
            ) from e

        logger.debug("imap_session_opened", host=host, account=mailbox.email)
        return ImapSession(conn, host=host, preview_length=self.preview_length)
