"""Prompt and tool schema for reply classification."""

from typing import Any

from mailpool_mcp.classifier.categories import ReplyCategory

SYSTEM_PROMPT = """You classify replies to outbound sales and outreach emails.

Categories:
- interested: positive reply, wants to learn more, requests a meeting or call
- complained: negative, asked to stop, reported spam
- out_of_office: auto-reply, vacation, OOO message
- unsubscribed: explicitly asked to be removed
- bounced: delivery failure, invalid address, mailbox full
- none: none of the above apply

When ambiguous, prefer the most specific category. out_of_office beats interested.

Always answer by calling the classify_reply tool."""

CLASSIFY_REPLY_TOOL: dict[str, Any] = {
    "name": "classify_reply",
    "description": "Record the category of an email reply.",
    "input_schema": {
        "type": "object",
        "properties": {
            "category": {
                "type": "string",
                "enum": [c.value for c in ReplyCategory],
                "description": "Exactly one category, or 'none'",
            },
        },
        "required": ["category"],
    },
}


def build_user_message(subject: str, preview: str) -> str:
    """Build the user turn for one reply."""
    return f"Subject: {subject}\n\n{preview}"
