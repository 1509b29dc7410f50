"""Message snapshots and send request/response types."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Marker flag: a message carrying it is never classified again
CLASSIFIED_FLAG = "classified"

NO_SUBJECT = "(no subject)"


@dataclass(frozen=True, slots=True)
class Message:
    """Immutable snapshot of a message fetched from a folder.

    Attributes:
        uid: IMAP UID, unique within the folder
        flags: System flags and keywords set on the message
        subject: Decoded subject line
        sender: Decoded From header
        to: Decoded To header (comma-separated addresses)
        date: Date header, if present and parseable
        preview: First characters of the text body
    """

    uid: int
    flags: frozenset[str] = frozenset()
    subject: str = NO_SUBJECT
    sender: str = ""
    to: str = ""
    date: datetime | None = None
    preview: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict for tool responses."""
        return {
            "uid": self.uid,
            "flags": sorted(self.flags),
            "subject": self.subject,
            "from": self.sender,
            "to": self.to,
            "date": self.date.isoformat() if self.date else "",
            "preview": self.preview,
        }


@dataclass(frozen=True, slots=True)
class MessagePage:
    """One page of a folder listing, newest first."""

    messages: list[Message]
    total: int
    page: int
    total_pages: int

    @staticmethod
    def paginate(total: int, limit: int, page: int) -> tuple[int, int]:
        """Return (total_pages, clamped page) for a listing."""
        total_pages = max(1, math.ceil(total / limit)) if limit > 0 else 1
        return total_pages, min(max(page, 1), total_pages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "total": self.total,
            "page": self.page,
            "totalPages": self.total_pages,
        }


@dataclass(frozen=True, slots=True)
class SendRequest:
    """Outbound message to compose and send."""

    to: list[str]
    subject: str
    text: str | None = None
    html: str | None = None
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)

    @property
    def recipients(self) -> list[str]:
        return [*self.to, *self.cc, *self.bcc]


@dataclass(frozen=True, slots=True)
class SendResult:
    """Result of an SMTP send.

    Attributes:
        message_id: Message-ID header of the sent message
        accepted: Recipients the server accepted
        rejected: Recipients the server refused
        raw: RFC 822 bytes, for appending to the sent folder
    """

    message_id: str
    accepted: list[str]
    rejected: list[str]
    raw: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "messageId": self.message_id,
            "accepted": self.accepted,
            "rejected": self.rejected,
        }
