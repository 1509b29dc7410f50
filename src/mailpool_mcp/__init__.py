"""Mailpool MCP server: mailbox tools and reply classification for agents."""

__version__ = "0.1.0"
