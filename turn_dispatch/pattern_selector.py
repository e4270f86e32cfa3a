"""
Execution pattern selection.

Rules are evaluated as a strict priority chain; the first match wins:

1. handoff  - intent changed since the previous turn
2. chain    - depth progressed since the previous turn
3. parallel - the query names more than one intent
4. fallback - normalized frustration at or above the fallback threshold
5. single   - handoff with just the suggested capability
"""

from __future__ import annotations

import logging

from .capabilities import (
    DIRECT_ANSWER_CAPABILITY,
    PRACTICAL_GUIDE_CAPABILITY,
    progression_tools,
    select_capability,
)
from .config import ExecutionConfig, ThresholdConfig
from .heuristics import detect_intents
from .types import (
    ConversationState,
    OrchestrationPattern,
    PatternType,
    normalize_level,
)

logger = logging.getLogger(__name__)


def suggested_capability(state: ConversationState) -> str:
    """The state's suggested capability, or the matrix entry for it."""
    return state.tooling.suggested_tool or select_capability(
        state.intent.current, state.depth.current
    )


class PatternSelector:
    """Chooses one OrchestrationPattern per turn. Stateless."""

    def __init__(
        self,
        thresholds: ThresholdConfig | None = None,
        execution: ExecutionConfig | None = None,
    ):
        self.thresholds = thresholds or ThresholdConfig()
        self.execution = execution or ExecutionConfig()

    def select(
        self,
        current: ConversationState,
        previous: ConversationState | None,
        raw_query: str,
    ) -> OrchestrationPattern:
        pattern = (
            self._handoff(current, previous)
            or self._chain(current, previous)
            or self._parallel(current, raw_query)
            or self._fallback(current)
            or self._single(current)
        )
        logger.debug(f"Selected {pattern.type.value} pattern: {list(pattern.tools)}")
        return pattern

    def _handoff(
        self,
        current: ConversationState,
        previous: ConversationState | None,
    ) -> OrchestrationPattern | None:
        if previous is None or not current.intent.changed:
            return None

        previous_intent = previous.intent.current.value
        new_intent = current.intent.current.value
        return OrchestrationPattern(
            type=PatternType.HANDOFF,
            reason=f"Intent changed from {previous_intent} to {new_intent}",
            tools=(
                suggested_capability(previous),
                suggested_capability(current),
            ),
            context={
                "previous_intent": previous_intent,
                "new_intent": new_intent,
                "depth_change": previous.depth.current != current.depth.current,
                "transition_message": (
                    f"The user has moved from wanting to {previous_intent} "
                    f"to wanting to {new_intent}."
                ),
            },
        )

    def _chain(
        self,
        current: ConversationState,
        previous: ConversationState | None,
    ) -> OrchestrationPattern | None:
        if previous is None or not current.depth.change_indicator:
            return None

        from_depth = previous.depth.current
        to_depth = current.depth.requested or current.depth.current
        tools = progression_tools(
            current.intent.current,
            from_depth,
            to_depth,
            default=(select_capability(current.intent.current, to_depth),),
        )
        return OrchestrationPattern(
            type=PatternType.CHAIN,
            reason=f"Depth progression: {from_depth.value} to {to_depth.value}",
            tools=tools,
            context={
                "from_depth": from_depth.value,
                "to_depth": to_depth.value,
                "change_indicator": current.depth.change_indicator,
            },
        )

    def _parallel(
        self,
        current: ConversationState,
        raw_query: str,
    ) -> OrchestrationPattern | None:
        intents = detect_intents(raw_query)
        if len(intents) <= 1:
            return None

        depth = current.depth.current
        return OrchestrationPattern(
            type=PatternType.PARALLEL,
            reason=f"Multiple intents detected: {', '.join(i.value for i in intents)}",
            tools=tuple(select_capability(i, depth) for i in intents),
            context={"intents": [i.value for i in intents]},
        )

    def _fallback(self, current: ConversationState) -> OrchestrationPattern | None:
        frustration = normalize_level(current.sentiment.frustration_level)
        if frustration < self.thresholds.fallback_frustration:
            return None

        ordered = [
            suggested_capability(current),
            DIRECT_ANSWER_CAPABILITY,
            PRACTICAL_GUIDE_CAPABILITY,
        ]
        tools = tuple(dict.fromkeys(ordered))[: self.execution.max_fallback_tools]
        return OrchestrationPattern(
            type=PatternType.FALLBACK,
            reason=f"High frustration ({frustration:.2f}); trying alternatives in order",
            tools=tools,
            context={"frustration_level": frustration},
        )

    @staticmethod
    def _single(current: ConversationState) -> OrchestrationPattern:
        return OrchestrationPattern(
            type=PatternType.HANDOFF,
            reason="Single capability for current state",
            tools=(suggested_capability(current),),
        )


__all__ = ["PatternSelector", "suggested_capability"]
