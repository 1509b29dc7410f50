"""structlog setup for the Mailpool MCP server.

The HTTP server logs JSON to stdout. The CLI and the stdio MCP server log
through the console renderer to stderr, since stdio MCP frames travel on
stdout. Every entry written while a classification scan runs carries that
scan's ``scan_id``.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog

_scan_id: ContextVar[str | None] = ContextVar("scan_id", default=None)


def set_scan_id(scan_id: str | None) -> None:
    """Tag log entries in the current context with a scan ID (None clears it)."""
    _scan_id.set(scan_id)


def get_scan_id() -> str | None:
    return _scan_id.get()


def add_scan_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    scan_id = _scan_id.get()
    if scan_id is not None:
        event_dict["scan_id"] = scan_id
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure stdlib logging and structlog.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: JSON lines on stdout when True, console lines on stderr otherwise
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout if json_output else sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        add_scan_id,
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
