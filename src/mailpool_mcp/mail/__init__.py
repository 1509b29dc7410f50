"""IMAP/SMTP transport and message parsing.

- IMAP sessions: paged fetch, flag changes, folder aliases, append
- SMTP sender
- RFC 822 parsing into Message snapshots
"""

from mailpool_mcp.mail.imap import INBOX_ALIAS, SENT_ALIAS, ImapSession, ImapTransport
from mailpool_mcp.mail.models import (
    CLASSIFIED_FLAG,
    Message,
    MessagePage,
    SendRequest,
    SendResult,
)
from mailpool_mcp.mail.smtp import SmtpSender, compose_message

__all__ = [
    # IMAP
    "INBOX_ALIAS",
    "SENT_ALIAS",
    "ImapSession",
    "ImapTransport",
    # Models
    "CLASSIFIED_FLAG",
    "Message",
    "MessagePage",
    "SendRequest",
    "SendResult",
    # SMTP
    "SmtpSender",
    "compose_message",
]
