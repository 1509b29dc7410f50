"""MCP server exposing the mailbox tools."""

from mailpool_mcp.server.tools import MailpoolTools, create_mcp_server

__all__ = ["MailpoolTools", "create_mcp_server"]
