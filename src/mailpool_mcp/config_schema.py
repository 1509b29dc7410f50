"""Pydantic configuration schema for the Mailpool MCP server.

This module defines the configuration schema that mirrors config.yaml structure.
Secrets (API keys) are normally supplied through the environment and merged
in by the loader; they may also be set in the file for local development.

Usage:
    from mailpool_mcp.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1


class DirectoryConfig(BaseModel):
    """Mailpool directory API configuration."""

    api_base: str = Field(
        default="https://app.mailpool.io/v1/api",
        description="Base URL of the Mailpool REST API",
    )
    api_key: str | None = Field(
        default=None,
        description="Mailpool API key (usually from MAILPOOL_API_KEY)",
    )
    page_limit: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Mailboxes requested per directory listing",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for directory requests",
    )

    @field_validator("api_base")
    @classmethod
    def validate_api_base(cls, v: str) -> str:
        """Ensure the API base is an http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_base must start with http:// or https://")
        return v.rstrip("/")


class ImapConfig(BaseModel):
    """Fallback IMAP endpoint used when a mailbox record has no host."""

    default_host: str = Field(
        default="imap.mailpool.io",
        description="IMAP host used when the directory omits one",
    )
    default_port: int = Field(
        default=993,
        ge=1,
        le=65535,
        description="IMAP port used when the directory omits one",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Socket timeout for IMAP connections",
    )


class ClassifierConfig(BaseModel):
    """Claude reply classifier configuration."""

    api_key: str | None = Field(
        default=None,
        description="Anthropic API key (usually from ANTHROPIC_API_KEY)",
    )
    model: str = Field(
        default="claude-haiku-4-5-20251001",
        description="Model used to classify replies",
    )
    max_tokens: int = Field(
        default=256,
        ge=16,
        le=4096,
        description="Max output tokens per classification call",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Transient-error retries performed by the Anthropic SDK",
    )


class ScanConfig(BaseModel):
    """Classification scan configuration."""

    inbox_limit: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Max unclassified inbox messages considered per account",
    )
    sent_limit: int = Field(
        default=200,
        ge=1,
        le=2000,
        description="Max sent messages considered as thread candidates",
    )
    interval_minutes: int = Field(
        default=0,
        ge=0,
        le=1440,
        description="Run a scan every N minutes under 'serve' (0 disables)",
    )


class MailConfig(BaseModel):
    """Message fetching configuration."""

    preview_length: int = Field(
        default=200,
        ge=0,
        le=10000,
        description="Characters of body text kept as message preview",
    )
    default_list_limit: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Default page size for listing tools",
    )


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    api_key: str | None = Field(
        default=None,
        description="Bearer/query API key required by the HTTP API (usually from API_KEY)",
    )
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8000, ge=1, le=65535, description="Bind port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Server log level",
    )


class AppConfig(BaseModel):
    """Root configuration model."""

    schema_version: int = Field(default=CURRENT_SCHEMA_VERSION, ge=1)
    directory: DirectoryConfig = Field(default_factory=DirectoryConfig)
    imap: ImapConfig = Field(default_factory=ImapConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    mail: MailConfig = Field(default_factory=MailConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
