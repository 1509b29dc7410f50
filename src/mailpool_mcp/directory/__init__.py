"""Mailpool directory API client and mailbox records."""

from mailpool_mcp.directory.client import MailpoolClient
from mailpool_mcp.directory.models import Mailbox, MailboxDetails

__all__ = ["Mailbox", "MailboxDetails", "MailpoolClient"]
