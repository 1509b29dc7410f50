"""HTTP API routes.

- GET /api/ping: health check
- GET /api/classify: run a classification scan over all (or one) mailboxes
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from mailpool_mcp.config_schema import AppConfig
from mailpool_mcp.core.errors import ConfigurationError, DirectoryError, MailpoolError
from mailpool_mcp.core.logging import get_logger
from mailpool_mcp.server.tools import ping_payload
from mailpool_mcp.web.auth import check_api_key
from mailpool_mcp.web.dependencies import get_config, get_service

logger = get_logger(__name__)

api_router = APIRouter(prefix="/api")


@api_router.get("/ping")
async def ping() -> dict[str, str]:
    """Health check."""
    return ping_payload()


@api_router.get("/classify")
async def classify(
    request: Request,
    account: str | None = None,
    config: AppConfig = Depends(get_config),
):
    """Classify unclassified replies and tag them in the mailboxes.

    Returns per-account counts keyed by category plus total and none.
    Accounts that failed carry an 'error' field.
    """
    denied = check_api_key(request, config.server.api_key)
    if denied is not None:
        return denied

    if not config.classifier.api_key:
        return JSONResponse(
            {
                "error": "ANTHROPIC_API_KEY is not set",
                "message": (
                    "Set the ANTHROPIC_API_KEY environment variable to enable "
                    "auto-classification. Without it, classify replies manually "
                    "with the tag_email tool."
                ),
            },
            status_code=501,
        )

    try:
        service = get_service(request)
        report = await service.classify_replies(account)
    except ConfigurationError as e:
        logger.error("classify_not_configured", error=str(e))
        return JSONResponse({"error": str(e)}, status_code=501)
    except DirectoryError as e:
        status = 404 if e.status_code == 404 else 502
        logger.error("classify_directory_failed", error=str(e), status=status)
        return JSONResponse({"error": str(e)}, status_code=status)
    except MailpoolError as e:
        logger.error("classify_failed", error=str(e), error_type=type(e).__name__)
        return JSONResponse({"error": str(e)}, status_code=500)

    return report.to_dict()
