"""Claude reply classifier using forced tool use.

Error handling strategy:
- Transient errors (429, 5xx, network): handled by the Anthropic SDK (max_retries)
- Any error surviving the SDK: raised as ClassificationError, never retried here
- Missing or unknown category in the response: mapped to ReplyCategory.NONE

Usage:
    from mailpool_mcp.classifier.claude_classifier import ReplyClassifier

    classifier = ReplyClassifier.from_config(config)
    category = await classifier.classify("Re: Demo", "Sounds great, let's talk")
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import anthropic

from mailpool_mcp.classifier.categories import ReplyCategory
from mailpool_mcp.classifier.prompts import (
    CLASSIFY_REPLY_TOOL,
    SYSTEM_PROMPT,
    build_user_message,
)
from mailpool_mcp.config import require_classifier_key
from mailpool_mcp.core.errors import ClassificationError
from mailpool_mcp.core.logging import get_logger

if TYPE_CHECKING:
    from mailpool_mcp.config_schema import AppConfig

logger = get_logger(__name__)


class ReplyClassifier:
    """Classifies inbound replies into a ReplyCategory.

    Attributes:
        _client: Anthropic API client (configured with SDK-level retries)
        _model: Model name
        _max_tokens: Output token cap per call
    """

    def __init__(
        self,
        anthropic_client: anthropic.Anthropic,
        model: str,
        max_tokens: int = 256,
    ):
        self._client = anthropic_client
        self._model = model
        self._max_tokens = max_tokens

    @classmethod
    def from_config(cls, config: AppConfig) -> ReplyClassifier:
        """Build a classifier from config.

        Raises:
            ConfigurationError: If no Anthropic API key is configured
        """
        api_key = require_classifier_key(config)
        client = anthropic.Anthropic(api_key=api_key, max_retries=config.classifier.max_retries)
        return cls(
            anthropic_client=client,
            model=config.classifier.model,
            max_tokens=config.classifier.max_tokens,
        )

    async def classify(self, subject: str, preview: str) -> ReplyCategory:
        """Classify one reply.

        Args:
            subject: Reply subject line
            preview: Start of the reply body

        Returns:
            The category, or ReplyCategory.NONE when nothing applies

        Raises:
            ClassificationError: If the API call fails after SDK retries
        """
        start_time = time.monotonic()
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_user_message(subject, preview)}],
                tools=[CLASSIFY_REPLY_TOOL],
                tool_choice={"type": "tool", "name": CLASSIFY_REPLY_TOOL["name"]},
            )
        except anthropic.APIError as e:
            logger.error(
                "reply_classification_failed",
                model=self._model,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ClassificationError(
                f"Claude classification failed: {e}. Check ANTHROPIC_API_KEY and API status.",
                subject=subject,
            ) from e

        category = _extract_category(response)
        logger.debug(
            "reply_classified",
            model=self._model,
            category=category.value,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        return category


def _extract_category(response: Any) -> ReplyCategory:
    """Read the category from a tool call, falling back to plain text."""
    text_answer: str | None = None
    for block in response.content:
        if block.type == "tool_use" and block.name == CLASSIFY_REPLY_TOOL["name"]:
            tool_input = block.input if isinstance(block.input, dict) else {}
            return ReplyCategory.parse(tool_input.get("category"))
        if block.type == "text" and text_answer is None:
            text_answer = block.text

    logger.warning("classification_no_tool_call", has_text=text_answer is not None)
    return ReplyCategory.parse(text_answer)
