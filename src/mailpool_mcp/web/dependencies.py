"""FastAPI dependency injection helpers.

Extracts shared dependencies from app.state for use in route handlers.
Dependencies are created in create_app() and stored on app.state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from mailpool_mcp.config_schema import AppConfig
    from mailpool_mcp.service import MailboxService


def get_config(request: Request) -> AppConfig:
    """Get the AppConfig from app state."""
    return request.app.state.config


def get_service(request: Request) -> MailboxService:
    """Get (building on first use) the MailboxService.

    Raises:
        ConfigurationError: If MAILPOOL_API_KEY is not configured
    """
    return request.app.state.service_provider()
