"""
Conversation state classification.

Classifies the latest user message (with a short window of history) into a
ConversationState: sentiment, learning intent, engagement depth, tool fit
and multi-turn dynamics. A regex quick check handles explicit giving-up
language without a completion call; everything else goes to the
completion service, with a conservative default when that fails.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from .api_client import BaseLLMClient, complete_with_retry
from .capabilities import DEFAULT_CAPABILITY, select_capability
from .config import ClassifierConfig, ThresholdConfig
from .cost_tracker import CostComponent
from .heuristics import keyword_depth, keyword_intent
from .types import (
    ClassifierError,
    ConversationState,
    EngagementDepth,
    Message,
    ProgressionPattern,
    SentimentType,
    TopicContinuity,
)

logger = logging.getLogger(__name__)

FRUSTRATION_TRIGGER = re.compile(r"i give up|hate this|this is impossible", re.IGNORECASE)
SURFACE_REQUEST = re.compile(r"^\s*(just tell me|quick answer|tl;?dr)", re.IGNORECASE)

QUICK_FRUSTRATION_LEVEL = 0.9
QUICK_FRUSTRATION_CONFIDENCE = 0.95
HISTORY_CHARS_PER_MESSAGE = 200

SYSTEM_PROMPT = """Analyze the user's current state across multiple dimensions.

CURRENT STATE:
- Tool: {current_tool}
- Previous Intent: {previous_intent}
- Previous Depth: {previous_depth}
- Turns at depth: {turns}

ANALYZE:

1. SENTIMENT: type (positive, neutral, confused, frustrated, disengaged),
   frustration level on a 0-1 scale, and your confidence on a 0-1 scale.
   Look for short responses, emotional language, confusion markers, disengagement.

2. LEARNING INTENT: one of
   - understand: learning concepts, seeking explanations
   - create: writing, producing content
   - solve: working through problems
   - evaluate: making decisions, comparing options
   - organize: planning, scheduling
   - regulate: managing emotions, reflecting
   - explore: browsing, researching
   - interact: system navigation, communication
   Detect if intent has CHANGED from previous.

3. ENGAGEMENT DEPTH:
   - surface: quick facts, definitions, brief answers (< 2 min)
   - guided: step-by-step help, structured support (5-15 min)
   - deep: thorough exploration of difficult questions (15+ min)
   Deeper cues: "tell me more", "why", "elaborate". Surface cues: "just tell me",
   "quick answer", "summary". Guided cues: "help me", "show me how", "step by step".

4. TOOL APPROPRIATENESS: is {current_tool} still appropriate, and what would serve better?

5. CONVERSATION DYNAMICS: exploring, deepening, surfacing, or stuck; topic same, related, or new.

Return only JSON with this exact structure:
{{
  "sentiment": {{"type": "...", "frustrationLevel": 0.0, "confidence": 0.0}},
  "intent": {{"current": "...", "changed": false, "changeReason": null}},
  "depth": {{"current": "...", "requested": null, "changeIndicator": null}},
  "tooling": {{"currentToolAppropriate": true, "suggestedTool": null, "switchReason": null}},
  "dynamics": {{"turnsAtCurrentDepth": 0, "progressionPattern": "...", "topicContinuity": "..."}}
}}"""


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_state(text: str) -> ConversationState:
    """
    Parse classifier output into a validated ConversationState.

    Raises:
        ClassifierError: output is not a JSON object matching the schema
    """
    cleaned = strip_code_fences(text)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ClassifierError("No JSON object in classifier output", raw=text)

    try:
        data = json.loads(cleaned[start : end + 1])
        return ConversationState.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ClassifierError(f"Malformed classifier output: {e}", raw=text) from e


def next_turn_count(state: ConversationState, previous: ConversationState | None) -> int:
    """Turns spent at the new state's depth, counting this one."""
    if previous is None or previous.depth.current != state.depth.current:
        return 1
    return previous.dynamics.turns_at_current_depth + 1


def needs_emotional_support(state: ConversationState, threshold: float = 0.6) -> bool:
    return (
        state.sentiment.frustration_level >= threshold
        or state.sentiment.type in (SentimentType.FRUSTRATED, SentimentType.DISENGAGED)
    )


def needs_tool_switch(state: ConversationState) -> bool:
    requested = state.depth.requested
    return (
        not state.tooling.current_tool_appropriate
        or state.intent.changed
        or (requested is not None and requested != state.depth.current)
        or state.dynamics.progression_pattern == ProgressionPattern.STUCK
    )


def is_stuck(state: ConversationState, threshold: int = 4) -> bool:
    """Stuck means the local turn counter reached the threshold."""
    return state.dynamics.turns_at_current_depth >= threshold


class StateClassifier:
    """
    Produces one ConversationState per turn.

    Holds no per-session state: the caller passes the previous state in
    and keeps the returned one. analyze() never raises for classifier
    failures; it returns the previous state, or a keyword-based default
    on a session's first turn. Without a client every turn is classified
    by keywords.
    """

    def __init__(
        self,
        client: BaseLLMClient | None = None,
        config: ClassifierConfig | None = None,
        thresholds: ThresholdConfig | None = None,
    ):
        self.client = client
        self.config = config or ClassifierConfig()
        self.thresholds = thresholds or ThresholdConfig()
        self._stats = {
            "analyses": 0,
            "quick_checks": 0,
            "classifier_calls": 0,
            "classifier_failures": 0,
            "heuristic_analyses": 0,
        }

    def quick_state_check(
        self,
        message: str,
        previous: ConversationState | None = None,
    ) -> ConversationState | None:
        """Frustrated state for explicit giving-up language, else None."""
        if not FRUSTRATION_TRIGGER.search(message):
            return None

        base = previous if previous is not None else self.heuristic_state(message)
        suggested = base.tooling.suggested_tool or select_capability(
            base.intent.current, base.depth.current
        )
        return base.with_updates(
            sentiment={
                "type": SentimentType.FRUSTRATED,
                "frustration_level": QUICK_FRUSTRATION_LEVEL,
                "confidence": QUICK_FRUSTRATION_CONFIDENCE,
            },
            intent={"changed": False, "change_reason": None},
            depth={"requested": None, "change_indicator": None},
            tooling={"suggested_tool": suggested},
            dynamics={"turns_at_current_depth": next_turn_count(base, previous)},
        )

    @staticmethod
    def depth_hint(message: str) -> dict[str, Any] | None:
        """Explicit requests for a short answer."""
        if SURFACE_REQUEST.search(message):
            return {
                "requested": EngagementDepth.SURFACE,
                "change_indicator": "User explicitly requested quick answer",
            }
        return None

    def heuristic_state(self, message: str) -> ConversationState:
        """Keyword-based state for when there is nothing better."""
        intent = keyword_intent(message)
        depth = keyword_depth(message)
        return ConversationState.model_validate(
            {
                "intent": {"current": intent},
                "depth": {"current": depth},
                "tooling": {"suggested_tool": select_capability(intent, depth)},
                "dynamics": {
                    "turns_at_current_depth": 1,
                    "topic_continuity": TopicContinuity.NEW,
                },
            }
        )

    async def analyze(
        self,
        message: str,
        history: list[Message],
        current_capability: str | None = None,
        previous_state: ConversationState | None = None,
    ) -> ConversationState:
        """
        Classify the latest message.

        Args:
            message: The latest user message
            history: Prior turns, oldest first
            current_capability: Capability that answered the previous turn
            previous_state: State returned for the previous turn, if any

        Returns:
            The new ConversationState
        """
        self._stats["analyses"] += 1

        quick = self.quick_state_check(message, previous_state)
        if quick is not None:
            self._stats["quick_checks"] += 1
            logger.debug("Quick check matched frustration trigger")
            return quick

        if self.client is None:
            self._stats["heuristic_analyses"] += 1
            state = self.heuristic_state(message)
            if previous_state is not None:
                state = state.with_updates(
                    dynamics={"topic_continuity": TopicContinuity.RELATED}
                )
        else:
            try:
                state = await self._classify(message, history, current_capability, previous_state)
            except ClassifierError as e:
                self._stats["classifier_failures"] += 1
                logger.warning(f"State classification failed, keeping previous state: {e}")
                return self._recover(message, previous_state)

        hint = self.depth_hint(message)
        if hint is not None and state.depth.requested is None:
            state = state.with_updates(depth=hint)

        return self.finalize(state, previous_state)

    async def _classify(
        self,
        message: str,
        history: list[Message],
        current_capability: str | None,
        previous: ConversationState | None,
    ) -> ConversationState:
        basis = previous or ConversationState.initial()
        system_prompt = SYSTEM_PROMPT.format(
            current_tool=current_capability or DEFAULT_CAPABILITY,
            previous_intent=basis.intent.current.value,
            previous_depth=basis.depth.current.value,
            turns=basis.dynamics.turns_at_current_depth,
        )

        window = history[-self.config.history_window :] if self.config.history_window else []
        context_str = "\n".join(
            f"{m.role.value}: {m.content[:HISTORY_CHARS_PER_MESSAGE]}" for m in window
        )
        user_prompt = (
            f"Recent conversation:\n{context_str}\n\n"
            f'Current message: "{message}"\n\nAnalyze state:'
        )

        self._stats["classifier_calls"] += 1
        response = await complete_with_retry(
            self.client,
            system_prompt,
            user_prompt,
            temperature=self.config.temperature,
            timeout=self.config.timeout_seconds,
            max_retries=self.config.max_retries,
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            component=CostComponent.STATE_CLASSIFICATION,
        )
        return parse_state(response.content)

    def finalize(
        self,
        state: ConversationState,
        previous: ConversationState | None,
    ) -> ConversationState:
        """Apply the locally owned fields: turn counter, stuck flag, suggestion."""
        turns = next_turn_count(state, previous)

        pattern = state.dynamics.progression_pattern
        if turns >= self.config.stuck_turn_threshold:
            pattern = ProgressionPattern.STUCK
        elif pattern == ProgressionPattern.STUCK:
            pattern = ProgressionPattern.EXPLORING

        intent_changed = state.intent.changed
        if previous is not None and previous.intent.current != state.intent.current:
            intent_changed = True

        suggested = state.tooling.suggested_tool or select_capability(
            state.intent.current, state.depth.current
        )

        return state.with_updates(
            intent={"changed": intent_changed},
            tooling={"suggested_tool": suggested},
            dynamics={"turns_at_current_depth": turns, "progression_pattern": pattern},
        )

    def _recover(
        self,
        message: str,
        previous: ConversationState | None,
    ) -> ConversationState:
        if previous is not None:
            return previous
        return self.heuristic_state(message)

    def get_statistics(self) -> dict[str, Any]:
        """Get classifier statistics."""
        calls = self._stats["classifier_calls"]
        return {
            **self._stats,
            "failure_rate": self._stats["classifier_failures"] / calls if calls > 0 else 0.0,
        }


__all__ = [
    "FRUSTRATION_TRIGGER",
    "SURFACE_REQUEST",
    "StateClassifier",
    "is_stuck",
    "needs_emotional_support",
    "needs_tool_switch",
    "next_turn_count",
    "parse_state",
    "strip_code_fences",
]
