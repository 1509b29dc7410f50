"""Mailpool directory records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Mailbox:
    """Lightweight mailbox info returned by the list endpoint."""

    id: int
    email: str
    first_name: str = ""
    last_name: str = ""
    status: str = ""
    domain: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Mailbox:
        domain = data.get("domain") or {}
        return cls(
            id=int(data["id"]),
            email=data.get("email", ""),
            first_name=data.get("firstName") or "",
            last_name=data.get("lastName") or "",
            status=data.get("status") or "",
            domain=domain.get("domain", "") if isinstance(domain, dict) else str(domain),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "status": self.status,
            "domain": self.domain,
        }


@dataclass(frozen=True, slots=True)
class MailboxDetails:
    """Full mailbox record including IMAP/SMTP credentials.

    This is the session descriptor handed to the mail transports. The
    password fields are excluded from repr.
    """

    id: int
    email: str
    first_name: str
    last_name: str
    imap_host: str
    imap_port: int
    imap_tls: bool
    imap_username: str
    imap_password: str
    smtp_host: str
    smtp_port: int
    smtp_tls: bool
    smtp_username: str
    smtp_password: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> MailboxDetails:
        return cls(
            id=int(data["id"]),
            email=data.get("email", ""),
            first_name=data.get("firstName") or "",
            last_name=data.get("lastName") or "",
            imap_host=data.get("imapHost") or "",
            imap_port=int(data.get("imapPort") or 0),
            imap_tls=bool(data.get("imapTLS", True)),
            imap_username=data.get("imapUsername") or data.get("email", ""),
            imap_password=data.get("imapPassword") or "",
            smtp_host=data.get("smtpHost") or "",
            smtp_port=int(data.get("smtpPort") or 0),
            smtp_tls=bool(data.get("smtpTLS", True)),
            smtp_username=data.get("smtpUsername") or data.get("email", ""),
            smtp_password=data.get("smtpPassword") or "",
        )

    @property
    def display_from(self) -> str:
        """From header value, e.g. 'Ada Lovelace <ada@example.com>'."""
        name = f"{self.first_name} {self.last_name}".strip()
        return f"{name} <{self.email}>" if name else self.email

    def __repr__(self) -> str:
        return f"MailboxDetails(id={self.id}, email={self.email!r}, imap_host={self.imap_host!r})"
