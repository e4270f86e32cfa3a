"""
Conversation window selection.

Chooses which prior messages a capability sees. Long histories are
compressed by summarizing older turns through the completion service while
the most recent messages are kept verbatim.
"""

from __future__ import annotations

import logging
from enum import Enum

from .api_client import BaseLLMClient, complete_with_retry
from .config import ContextConfig
from .cost_tracker import CostComponent, estimate_tokens
from .types import ClassifierError, Message, MessageRole

logger = logging.getLogger(__name__)

MINIMAL_MESSAGES = 2
SUMMARY_TIMEOUT_SECONDS = 30.0

CONCISE_SUMMARY_PROMPT = (
    "Summarize this learning conversation in 2-3 sentences. "
    "Focus on main topics and key decisions."
)
FULL_SUMMARY_PROMPT = (
    "Summarize this conversation, preserving important details, questions asked, "
    "and insights gained. Maximum 200 words."
)


class ContextStrategy(str, Enum):
    """How much history a capability receives."""

    NONE = "none"
    MINIMAL = "minimal"  # current exchange
    RECENT = "recent"  # last few exchanges
    FULL = "full"  # everything, compressed when long
    SUMMARY = "summary"  # summary of old turns plus recent ones


class ContextWindow:
    """Builds the message window for a strategy."""

    def __init__(
        self,
        client: BaseLLMClient | None = None,
        config: ContextConfig | None = None,
        model: str = "haiku",
    ):
        self.client = client
        self.config = config or ContextConfig()
        self.model = model

    async def select(
        self,
        messages: list[Message],
        strategy: ContextStrategy = ContextStrategy.RECENT,
    ) -> list[Message]:
        recent = self.config.recent_messages
        long_history = len(messages) > self.config.summary_threshold

        if strategy == ContextStrategy.NONE:
            return []
        if strategy == ContextStrategy.MINIMAL:
            return list(messages[-MINIMAL_MESSAGES:])
        if strategy == ContextStrategy.RECENT:
            return list(messages[-recent:])
        if not long_history:
            return list(messages)

        try:
            if strategy == ContextStrategy.SUMMARY:
                return await self._summarize_with_recent(messages)
            return await self._compress_full(messages)
        except ClassifierError as e:
            logger.warning(f"Context summarization failed, using recent messages: {e}")
            return list(messages[-recent:])

    async def _summarize_with_recent(self, messages: list[Message]) -> list[Message]:
        recent = self.config.recent_messages
        summary = await self._summarize(messages[:-recent], CONCISE_SUMMARY_PROMPT)
        return [
            Message(role=MessageRole.SYSTEM, content=f"Previous context: {summary}"),
            *messages[-recent:],
        ]

    async def _compress_full(self, messages: list[Message]) -> list[Message]:
        recent = self.config.recent_messages
        compressed = [messages[0]]
        middle = messages[1:-recent]
        if len(messages) > self.config.summary_threshold + 3:
            summary = await self._summarize(middle, FULL_SUMMARY_PROMPT)
            compressed.append(
                Message(
                    role=MessageRole.SYSTEM,
                    content=f"Previous conversation summary: {summary}",
                )
            )
        else:
            compressed.extend(middle)
        compressed.extend(messages[-recent:])
        return compressed

    async def _summarize(self, messages: list[Message], instruction: str) -> str:
        if self.client is None:
            raise ClassifierError("No completion client for summarization")
        transcript = "\n".join(f"{m.role.value}: {m.content}" for m in messages)
        logger.debug(f"Summarizing {len(messages)} messages (~{estimate_tokens(transcript)} tokens)")
        response = await complete_with_retry(
            self.client,
            instruction,
            transcript,
            temperature=0.3,
            timeout=SUMMARY_TIMEOUT_SECONDS,
            max_retries=0,
            model=self.model,
            max_tokens=300,
            component=CostComponent.CONTEXT_SUMMARY,
        )
        return response.content.strip()


__all__ = ["ContextStrategy", "ContextWindow"]
