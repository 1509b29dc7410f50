"""Pytest fixtures and configuration for Mailpool MCP tests.

Provides common fixtures for configuration, messages and mailbox records.
"""

from datetime import UTC, datetime
from typing import Any

import pytest

from mailpool_mcp.config_schema import AppConfig
from mailpool_mcp.directory.models import Mailbox, MailboxDetails
from mailpool_mcp.mail.models import Message


def make_message(
    uid: int,
    subject: str = "Hello",
    sender: str = "",
    to: str = "",
    flags: set[str] | frozenset[str] = frozenset(),
    preview: str = "",
) -> Message:
    """Build a Message snapshot for tests."""
    return Message(
        uid=uid,
        flags=frozenset(flags),
        subject=subject,
        sender=sender,
        to=to,
        date=datetime(2025, 3, 1, 9, 30, tzinfo=UTC),
        preview=preview,
    )


def make_details(
    mailbox_id: int = 1, email: str = "ada@example.com", **overrides: Any
) -> MailboxDetails:
    """Build a MailboxDetails record for tests."""
    fields: dict[str, Any] = {
        "id": mailbox_id,
        "email": email,
        "first_name": "Ada",
        "last_name": "Lovelace",
        "imap_host": "imap.example.com",
        "imap_port": 993,
        "imap_tls": True,
        "imap_username": email,
        "imap_password": "imap-secret",
        "smtp_host": "smtp.example.com",
        "smtp_port": 465,
        "smtp_tls": True,
        "smtp_username": email,
        "smtp_password": "smtp-secret",
    }
    fields.update(overrides)
    return MailboxDetails(**fields)


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "directory": {
            "api_base": "https://mailpool.test/v1/api",
            "api_key": "mp-test-key",
        },
        "classifier": {
            "api_key": "sk-ant-test",
        },
        "scan": {
            "inbox_limit": 50,
            "sent_limit": 200,
        },
    }


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content (no secrets)."""
    return """
schema_version: 1

directory:
  api_base: "https://mailpool.test/v1/api"

scan:
  inbox_limit: 25
  sent_limit: 100
"""


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def mailbox() -> Mailbox:
    """Return a directory listing entry."""
    return Mailbox(id=1, email="ada@example.com", first_name="Ada", last_name="Lovelace")


@pytest.fixture
def mailbox_details() -> MailboxDetails:
    """Return full credentials for the sample mailbox."""
    return make_details()
