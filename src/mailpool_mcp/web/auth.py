"""API key check for the HTTP surface.

The key may be sent as ``Authorization: Bearer <key>`` or as the
``api_key`` query parameter. When no key is configured, access is open.
"""

from __future__ import annotations

import hmac

from fastapi import Request
from fastapi.responses import JSONResponse

from mailpool_mcp.core.logging import get_logger

logger = get_logger(__name__)

BEARER_PREFIX = "bearer "


def provided_api_key(request: Request) -> str | None:
    """Extract the caller's API key from the request."""
    header = request.headers.get("authorization", "")
    if header.lower().startswith(BEARER_PREFIX):
        token = header[len(BEARER_PREFIX) :].strip()
        if token:
            return token
    return request.query_params.get("api_key")


def check_api_key(request: Request, expected: str | None) -> JSONResponse | None:
    """Return None when the request may proceed, else a 403 response."""
    if not expected:
        return None

    provided = provided_api_key(request)
    if provided is not None and hmac.compare_digest(provided, expected):
        return None

    logger.warning("api_key_rejected", path=request.url.path)
    return JSONResponse(
        {"error": "forbidden", "error_description": "Invalid or missing API key"},
        status_code=403,
    )
