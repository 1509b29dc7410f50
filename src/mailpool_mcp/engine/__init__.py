"""Mailbox processing engines.

This package provides the core algorithms:
- Tag filter language (parser and evaluator) for selecting messages by flags
- Thread matcher pairing inbound replies with the sent messages they answer
- Classification scan engine that classifies replies and tags both sides
"""

from mailpool_mcp.engine.classify_scan import (
    AccountScanResult,
    ClassificationScanEngine,
    ScanReport,
)
from mailpool_mcp.engine.tag_filter import (
    And,
    FilterExpression,
    FilterParser,
    Not,
    Or,
    Tag,
    evaluate,
    filter_messages,
    parse_filter,
)
from mailpool_mcp.engine.thread_matcher import (
    MatchResult,
    ThreadMatch,
    extract_address,
    match_replies_to_sent,
    normalize_subject,
)

__all__ = [
    # Classification scan
    "AccountScanResult",
    "ClassificationScanEngine",
    "ScanReport",
    # Tag filter
    "And",
    "FilterExpression",
    "FilterParser",
    "Not",
    "Or",
    "Tag",
    "evaluate",
    "filter_messages",
    "parse_filter",
    # Thread matching
    "MatchResult",
    "ThreadMatch",
    "extract_address",
    "match_replies_to_sent",
    "normalize_subject",
]
