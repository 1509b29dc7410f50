"""HTTP surface for the Mailpool MCP server.

Provides a FastAPI application with:
- The MCP streamable-HTTP transport at /mcp
- JSON API: /api/ping and /api/classify
- Optional scheduled classification scans
"""

from mailpool_mcp.web.app import create_app

__all__ = ["create_app"]
