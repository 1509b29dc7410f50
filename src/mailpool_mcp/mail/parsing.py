"""Parsing of raw messages and IMAP server responses.

Everything here is pure: raw bytes in, dataclasses out. The IMAP session
(mail/imap.py) feeds it the responses returned by imaplib.
"""

from __future__ import annotations

import email
import email.policy
import html
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from email.utils import parsedate_to_datetime

import regex

from mailpool_mcp.core.logging import get_logger
from mailpool_mcp.mail.models import NO_SUBJECT, Message

logger = get_logger(__name__)

UID_PATTERN = regex.compile(rb"\bUID (\d+)")
FLAGS_PATTERN = regex.compile(rb"\bFLAGS \(([^)]*)\)")
LIST_PATTERN = regex.compile(
    rb'^\((?P<attributes>[^)]*)\) (?P<delimiter>"(?:[^"\\]|\\.)*"|NIL) (?P<name>.+)$'
)
LITERAL_SIZE_PATTERN = regex.compile(rb"\{\d+\}\s*$")
HTML_TAG_PATTERN = regex.compile(r"<[^>]+>")
WHITESPACE_PATTERN = regex.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class FetchedMessage:
    """One message from a UID FETCH response."""

    uid: int
    flags: frozenset[str]
    raw: bytes


@dataclass(frozen=True, slots=True)
class FolderInfo:
    """One entry from an IMAP LIST response.

    Attributes:
        name: Folder path as the server reports it
        attributes: Name attributes, e.g. '\\HasNoChildren', '\\Sent'
        delimiter: Hierarchy delimiter, or None
    """

    name: str
    attributes: frozenset[str]
    delimiter: str | None

    @property
    def special_use(self) -> str | None:
        """The RFC 6154 special-use attribute, if any."""
        for attr in ("\\Sent", "\\Drafts", "\\Trash", "\\Junk", "\\Archive", "\\All", "\\Flagged"):
            if attr in self.attributes:
                return attr
        return None


def _unquote(value: bytes) -> str:
    text = value.decode("utf-8", errors="replace")
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        text = text[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return text


def parse_flags(header: bytes) -> frozenset[str]:
    """Extract the FLAGS list from a FETCH response line."""
    match = FLAGS_PATTERN.search(header)
    if not match:
        return frozenset()
    return frozenset(f.decode("utf-8", errors="replace") for f in match.group(1).split())


def parse_fetch_response(data: list) -> list[FetchedMessage]:
    """Parse the item list returned by ``IMAP4.uid('FETCH', ...)``.

    Each message arrives as a ``(header, literal)`` tuple, optionally followed
    by a bytes continuation (some servers send FLAGS after the literal).
    """
    grouped: list[tuple[bytes, bytes]] = []
    for item in data:
        if isinstance(item, tuple):
            grouped.append((item[0], item[1]))
        elif isinstance(item, bytes) and grouped:
            header, raw = grouped[-1]
            grouped[-1] = (header + b" " + item, raw)

    messages = []
    for header, raw in grouped:
        uid_match = UID_PATTERN.search(header)
        if uid_match is None:
            logger.warning("fetch_item_without_uid", header=header[:80].decode("ascii", "replace"))
            continue
        messages.append(
            FetchedMessage(uid=int(uid_match.group(1)), flags=parse_flags(header), raw=raw)
        )
    return messages


def parse_list_response(data: list) -> list[FolderInfo]:
    """Parse the item list returned by ``IMAP4.list()``."""
    folders = []
    for item in data:
        if item is None:
            continue
        if isinstance(item, tuple):
            # Literal folder names arrive as (b'(...) "/" {10}', b'Sent Items')
            line = LITERAL_SIZE_PATTERN.sub(b"", item[0]) + b'"' + item[1] + b'"'
        else:
            line = item
        match = LIST_PATTERN.match(line.strip())
        if not match:
            logger.debug("unparsed_list_line", line=line[:80].decode("ascii", "replace"))
            continue
        delimiter = match.group("delimiter")
        folders.append(
            FolderInfo(
                name=_unquote(match.group("name").strip()),
                attributes=frozenset(
                    a.decode("ascii", errors="replace") for a in match.group("attributes").split()
                ),
                delimiter=None if delimiter == b"NIL" else _unquote(delimiter),
            )
        )
    return folders


def _text_body(msg: EmailMessage) -> str:
    body = msg.get_body(preferencelist=("plain",))
    if body is not None:
        return body.get_content()
    body = msg.get_body(preferencelist=("html",))
    if body is not None:
        text = HTML_TAG_PATTERN.sub(" ", body.get_content())
        return WHITESPACE_PATTERN.sub(" ", html.unescape(text)).strip()
    return ""


def _header_date(msg: EmailMessage) -> datetime | None:
    value = msg.get("Date")
    if not value:
        return None
    try:
        return parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        return None


def parse_message(
    uid: int,
    raw: bytes,
    flags: frozenset[str] = frozenset(),
    preview_length: int = 200,
) -> Message:
    """Build a Message snapshot from raw RFC 822 bytes."""
    msg = email.message_from_bytes(raw, policy=email.policy.default)

    try:
        preview = _text_body(msg)
    except (LookupError, ValueError) as e:
        # Unknown charset or broken transfer encoding
        logger.warning("message_body_unreadable", uid=uid, error=str(e))
        preview = ""

    return Message(
        uid=uid,
        flags=flags,
        subject=str(msg.get("Subject") or "").strip() or NO_SUBJECT,
        sender=str(msg.get("From") or ""),
        to=str(msg.get("To") or ""),
        date=_header_date(msg),
        preview=preview[:preview_length],
    )
