"""Reply-to-sent thread matching.

Pairs inbound replies with the outbound messages that provoked them. A reply
matches a sent message when their normalized subjects are equal and the
reply's sender address appears in the sent message's To header.

Outbound candidates are scanned in the order supplied and the first match
wins. The same outbound message may be matched by several replies (e.g.
several answers to one broadcast), and address containment is a plain
substring test, so ``a@x.com`` also matches ``ba@x.com``.

Usage:
    from mailpool_mcp.engine.thread_matcher import match_replies_to_sent

    result = match_replies_to_sent(unclassified_inbox, sent_messages)
    for match in result.matches:
        print(match.inbound_uid, "->", match.outbound_uid)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import regex

from mailpool_mcp.core.logging import get_logger

if TYPE_CHECKING:
    from mailpool_mcp.mail.models import Message

logger = get_logger(__name__)

# Regex timeout for security (used in match operations)
REGEX_TIMEOUT = 1.0

# Reply/forward marker (Re:, Fwd:, FW:, AW:) in any case.
# Note: timeout is passed at match time (sub, search), not compile time
SUBJECT_PREFIX_PATTERN = regex.compile(r"^\s*(?:re|fwd|fw|aw)\s*:\s*", regex.IGNORECASE)

ANGLE_ADDRESS_PATTERN = regex.compile(r"<([^>]*)>")


@dataclass(frozen=True, slots=True)
class ThreadMatch:
    """An inbound reply paired with the sent message it answers."""

    inbound_uid: int
    outbound_uid: int


@dataclass
class MatchResult:
    """Partition of inbound messages into matched pairs and unmatched UIDs."""

    matches: list[ThreadMatch] = field(default_factory=list)
    unmatched_uids: list[int] = field(default_factory=list)


def normalize_subject(subject: str) -> str:
    """Normalize subject by removing Re:/Fwd:/FW:/AW: prefixes.

    Args:
        subject: Email subject

    Returns:
        Lowercased subject without reply markers, for comparison
    """
    if not subject:
        return ""

    try:
        # Remove all prefixes (can be chained)
        normalized = subject
        while True:
            new_normalized = SUBJECT_PREFIX_PATTERN.sub("", normalized, timeout=REGEX_TIMEOUT)
            if new_normalized == normalized:
                break
            normalized = new_normalized
        return normalized.strip().lower()
    except (regex.error, TimeoutError):
        return subject.strip().lower()


def extract_address(field_value: str) -> str:
    """Extract the bare address from a From/To style header value.

    Returns the content of the first ``<...>`` if present, otherwise the
    whole value; trimmed and lowercased.
    """
    if not field_value:
        return ""
    match = ANGLE_ADDRESS_PATTERN.search(field_value)
    address = match.group(1) if match else field_value
    return address.strip().lower()


def match_replies_to_sent(
    inbound: Sequence[Message],
    outbound: Sequence[Message],
) -> MatchResult:
    """Pair inbound replies with outbound messages.

    Args:
        inbound: Candidate replies (already filtered to unclassified)
        outbound: Sent messages, in priority order for tie-breaks

    Returns:
        MatchResult with matches and unmatched inbound UIDs, both in
        inbound order
    """
    candidates = [(normalize_subject(m.subject), m.to.lower(), m.uid) for m in outbound]
    result = MatchResult()

    for message in inbound:
        subject = normalize_subject(message.subject)
        sender = extract_address(message.sender)

        outbound_uid = None
        if sender:
            for sent_subject, sent_to, sent_uid in candidates:
                if sent_subject == subject and sender in sent_to:
                    outbound_uid = sent_uid
                    break

        if outbound_uid is None:
            result.unmatched_uids.append(message.uid)
        else:
            result.matches.append(ThreadMatch(inbound_uid=message.uid, outbound_uid=outbound_uid))

    logger.debug(
        "thread_matching_complete",
        inbound=len(inbound),
        outbound=len(outbound),
        matched=len(result.matches),
        unmatched=len(result.unmatched_uids),
    )
    return result
