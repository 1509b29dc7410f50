"""FastAPI application for the Mailpool MCP server.

Creates the FastAPI app with:
- The MCP streamable-HTTP transport mounted at /mcp
- The JSON API router (/api/ping, /api/classify)
- An API-key guard for /mcp (the API routes check the key themselves)
- Lifespan context manager running the MCP session manager and, when
  scan.interval_minutes is set, an APScheduler job for periodic scans

The scheduler runs in a background thread and bridges to the event loop via
run_coroutine_threadsafe.

Usage:
    from mailpool_mcp.web.app import create_app

    app = create_app(config)
    # Run with: uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request

from mailpool_mcp.core.errors import MailpoolError
from mailpool_mcp.core.logging import get_logger
from mailpool_mcp.server.tools import create_mcp_server
from mailpool_mcp.service import MailboxService
from mailpool_mcp.web.auth import check_api_key

if TYPE_CHECKING:
    from mailpool_mcp.config_schema import AppConfig

logger = get_logger(__name__)

MCP_MOUNT_PATH = "/mcp"

# Caller-level deadline for one scheduled scan
SCHEDULED_SCAN_TIMEOUT_SECONDS = 300


def _service_provider(config: AppConfig) -> Callable[[], MailboxService]:
    """Return a callable that builds the service once, on first use."""
    service: MailboxService | None = None

    def provide() -> MailboxService:
        nonlocal service
        if service is None:
            service = MailboxService.from_config(config)
        return service

    return provide


def _start_scheduler(app: FastAPI, loop: asyncio.AbstractEventLoop):
    """Start the periodic scan job, or return None when disabled."""
    from apscheduler.schedulers.background import BackgroundScheduler

    config: AppConfig = app.state.config
    interval = config.scan.interval_minutes
    if interval <= 0:
        return None
    if not config.classifier.api_key or not config.directory.api_key:
        logger.warning("scheduled_scan_disabled", reason="missing API keys")
        return None

    def _run_scan_sync() -> None:
        """Bridge the async scan into the scheduler thread."""
        try:
            service = app.state.service_provider()
            future = asyncio.run_coroutine_threadsafe(service.classify_replies(), loop)
            future.result(timeout=SCHEDULED_SCAN_TIMEOUT_SECONDS)
        except (MailpoolError, TimeoutError) as e:
            logger.error("scheduled_scan_failed", error=str(e), error_type=type(e).__name__)

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        _run_scan_sync,
        "interval",
        minutes=interval,
        id="classification_scan",
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now() + timedelta(seconds=60),
    )
    scheduler.start()
    logger.info("scheduler_started", interval_minutes=interval)
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the MCP session manager and the optional scan scheduler."""
    async with app.state.mcp.session_manager.run():
        scheduler = _start_scheduler(app, asyncio.get_running_loop())
        app.state.scheduler = scheduler
        yield
        if scheduler:
            scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")


def create_app(config: AppConfig) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Application configuration

    Returns:
        Configured FastAPI instance
    """
    from mailpool_mcp.web.routes import api_router

    app = FastAPI(
        title="Mailpool MCP Server",
        description="Mailbox tools for agents: list, tag, send and classify email",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.service_provider = _service_provider(config)
    app.state.scheduler = None
    app.state.mcp = create_mcp_server(app.state.service_provider)

    @app.middleware("http")
    async def require_api_key_for_mcp(request: Request, call_next):
        if request.url.path.startswith(MCP_MOUNT_PATH):
            denied = check_api_key(request, config.server.api_key)
            if denied is not None:
                return denied
        return await call_next(request)

    app.include_router(api_router)
    app.mount(MCP_MOUNT_PATH, app.state.mcp.streamable_http_app())

    return app
