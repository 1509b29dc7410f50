"""Reply classification components.

- Reply categories and the flags each category writes
- Claude classifier with forced tool use
- Prompt and tool definitions
"""

from mailpool_mcp.classifier.categories import ReplyCategory
from mailpool_mcp.classifier.claude_classifier import ReplyClassifier
from mailpool_mcp.classifier.prompts import CLASSIFY_REPLY_TOOL, build_user_message

__all__ = [
    "CLASSIFY_REPLY_TOOL",
    "ReplyCategory",
    "ReplyClassifier",
    "build_user_message",
]
