"""
First-turn intent routing.

Routes a raw query to (intent, depth) without a full state classification,
then to a capability through the intent/depth matrix. Used on a session's
first turn and when re-routing is requested explicitly.

Routing flow:
1. Route cache (keyed by raw query text)
2. Completion service, with an optional second-opinion model when the
   first answer has low confidence
3. Keyword matching when the completion service is unavailable or fails
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .api_client import BaseLLMClient, complete_with_retry
from .cache import TTLCache
from .capabilities import (
    CREATE_UNDERSTAND_CAPABILITIES,
    DEFAULT_CAPABILITY,
    UNDERSTAND_CREATE_CAPABILITY,
    select_capability,
)
from .config import RouterConfig
from .cost_tracker import CostComponent, estimate_call_cost
from .heuristics import (
    detect_intents,
    estimate_retrieval_need,
    keyword_depth,
    keyword_intent,
)
from .state_classifier import strip_code_fences
from .types import ClassifierError, EngagementDepth, LearningIntent, normalize_level

logger = logging.getLogger(__name__)

KEYWORD_CONFIDENCE = 0.5
KEYWORD_MODEL = "pattern-matching"

ROUTER_SYSTEM_PROMPT = """You are an intent router for an educational assistant.

Analyze the user's query and determine:
1. Primary learning intent (understand, create, solve, evaluate, organize, regulate, explore, interact)
2. Any secondary intents if present
3. Engagement depth (surface: <2min quick answer, guided: 5-15min learning, deep: 15+ min exploration)
4. Confidence level (0-1). Be precise with confidence scoring.
5. Brief reasoning for your classification

Intent definitions:
- understand: seeking knowledge or comprehension
- create: building, writing, or producing something
- solve: working through problems or challenges
- evaluate: assessing, reviewing, or making decisions
- organize: planning, structuring, or managing
- regulate: managing emotions, focus, or motivation
- explore: open-ended discovery or investigation
- interact: collaboration or discussion needs

Return JSON with format:
{
  "primaryIntent": "string",
  "secondaryIntents": ["string"],
  "depth": "surface|guided|deep",
  "confidence": 0.0,
  "reasoning": "brief explanation"
}"""

SECOND_OPINION_NOTE = (
    "\n\nNote: The initial classification had low confidence. "
    "Please provide a careful analysis."
)

INTENT_DESCRIPTIONS: dict[LearningIntent, str] = {
    LearningIntent.UNDERSTAND: "understand a concept",
    LearningIntent.CREATE: "create or write something",
    LearningIntent.SOLVE: "solve a problem",
    LearningIntent.EVALUATE: "evaluate options or make a decision",
    LearningIntent.ORGANIZE: "organize or plan your work",
    LearningIntent.REGULATE: "reflect on your learning",
    LearningIntent.EXPLORE: "explore a topic",
    LearningIntent.INTERACT: "get help with the system",
}

DEPTH_DESCRIPTIONS: dict[EngagementDepth, str] = {
    EngagementDepth.SURFACE: "a quick answer",
    EngagementDepth.GUIDED: "step-by-step guidance",
    EngagementDepth.DEEP: "an in-depth exploration",
}


class RouterOutput(BaseModel):
    """Schema for the completion service's routing answer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    primary_intent: LearningIntent = LearningIntent.UNDERSTAND
    secondary_intents: list[LearningIntent] = []
    depth: EngagementDepth = EngagementDepth.GUIDED
    confidence: float = 0.7
    reasoning: str | None = None

    @field_validator("primary_intent", "depth", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("secondary_intents", mode="before")
    @classmethod
    def _known_intents(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        known = {i.value for i in LearningIntent}
        return [s.strip().lower() for s in v if isinstance(s, str) and s.strip().lower() in known]

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> float:
        return normalize_level(v) if v is not None else 0.7


@dataclass
class RouteResult:
    """A routing decision for one query."""

    primary_intent: LearningIntent
    depth: EngagementDepth
    confidence: float
    suggested_tool: str
    secondary_intents: list[LearningIntent] = field(default_factory=list)
    reasoning: str | None = None
    selected_tools: list[str] = field(default_factory=list)
    needs_clarification: bool = False
    clarification_prompt: str | None = None
    needs_retrieval: bool = False
    model_used: str = ""
    second_opinion: bool = False
    keyword_fallback: bool = False
    estimated_cost: float = 0.0
    cached: bool = False

    @property
    def secondary_intent(self) -> LearningIntent | None:
        for intent in self.secondary_intents:
            if intent != self.primary_intent:
                return intent
        return None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["primary_intent"] = self.primary_intent.value
        data["depth"] = self.depth.value
        data["secondary_intents"] = [i.value for i in self.secondary_intents]
        return data


def select_tool_for_intent(
    primary: LearningIntent,
    depth: EngagementDepth,
    secondary: LearningIntent | None = None,
) -> list[str]:
    """
    Capabilities for a primary (and optional secondary) intent.

    understand+create goes to the single combined handler; create+understand
    pairs the writing coach with the practical guide.
    """
    if primary == LearningIntent.UNDERSTAND and secondary == LearningIntent.CREATE:
        return [UNDERSTAND_CREATE_CAPABILITY]
    if primary == LearningIntent.CREATE and secondary == LearningIntent.UNDERSTAND:
        return list(CREATE_UNDERSTAND_CAPABILITIES)

    tools = [select_capability(primary, depth)]
    if secondary is not None:
        secondary_tool = select_capability(secondary, depth)
        if secondary_tool not in tools:
            tools.append(secondary_tool)
    return tools or [DEFAULT_CAPABILITY]


def analyze_multi_intent(query: str) -> list[LearningIntent]:
    """Every intent named in the query; [understand] when none are."""
    return detect_intents(query)


def clarification_prompt(intent: LearningIntent, depth: EngagementDepth) -> str:
    return (
        f"I think you want to {INTENT_DESCRIPTIONS[intent]} with {DEPTH_DESCRIPTIONS[depth]}. "
        "Is that right? Or would you prefer a different approach?"
    )


class IntentRouter:
    """
    Routes raw queries to capabilities.

    route() never raises: completion failures fall through to keyword
    matching with confidence fixed at 0.5 and zero cost.
    """

    def __init__(
        self,
        client: BaseLLMClient | None = None,
        config: RouterConfig | None = None,
        cache: TTLCache | None = None,
    ):
        self.client = client
        self.config = config or RouterConfig()
        self.cache = cache or TTLCache(
            max_entries=self.config.max_cache_entries,
            default_ttl_seconds=self.config.cache_ttl_seconds,
        )
        self._metrics = {
            "total_routes": 0,
            "fallback_count": 0,
            "second_opinions": 0,
            "cache_hits": 0,
            "total_cost": 0.0,
            "total_latency_ms": 0.0,
        }

    async def route(self, query: str, context: dict[str, Any] | None = None) -> RouteResult:
        """
        Route a query to an intent, depth and capability.

        Args:
            query: Raw user query
            context: Optional extra context passed to the completion service

        Returns:
            RouteResult; needs_clarification is set when confidence <= 0.8
        """
        self._metrics["total_routes"] += 1

        if self.config.cache_enabled:
            cached = self.cache.get(self._cache_key(query))
            if cached is not None:
                self._metrics["cache_hits"] += 1
                return replace(cached, cached=True)

        start = time.perf_counter()
        result = await self._route_uncached(query, context or {})
        self._metrics["total_latency_ms"] += (time.perf_counter() - start) * 1000
        self._metrics["total_cost"] += result.estimated_cost

        if self.config.cache_enabled:
            self.cache.set(self._cache_key(query), result, self.config.cache_ttl_seconds)

        logger.debug(
            f"Routed to {result.primary_intent.value}/{result.depth.value} "
            f"({result.confidence:.2f}) via {result.model_used}"
        )
        return result

    async def _route_uncached(self, query: str, context: dict[str, Any]) -> RouteResult:
        if self.client is None:
            return self.keyword_route(query)

        try:
            output, cost, model_used = await self._ask(query, context, self.config.model)
        except ClassifierError as e:
            logger.warning(f"Intent routing failed, using keyword matching: {e}")
            return self.keyword_route(query)

        second_opinion = False
        if (
            self.config.second_opinion_model
            and output.confidence < self.config.second_opinion_threshold
        ):
            try:
                second, second_cost, model_used = await self._ask(
                    query, context, self.config.second_opinion_model, initial=output
                )
                output = second
                cost += second_cost
                second_opinion = True
                self._metrics["second_opinions"] += 1
            except ClassifierError as e:
                logger.warning(f"Second-opinion routing failed, keeping first answer: {e}")

        return self._build_result(
            query,
            output.primary_intent,
            output.depth,
            output.confidence,
            secondary_intents=output.secondary_intents,
            reasoning=output.reasoning,
            model_used=model_used,
            second_opinion=second_opinion,
            estimated_cost=cost,
        )

    async def _ask(
        self,
        query: str,
        context: dict[str, Any],
        model: str,
        initial: RouterOutput | None = None,
    ) -> tuple[RouterOutput, float, str]:
        system_prompt = ROUTER_SYSTEM_PROMPT
        user_prompt = f'Query: "{query}"\nContext: {json.dumps(context, default=str)}'
        if initial is not None:
            system_prompt += SECOND_OPINION_NOTE
            user_prompt += (
                "\n\nInitial classification (low confidence):\n"
                f"{initial.model_dump_json(by_alias=True)}"
            )

        response = await complete_with_retry(
            self.client,
            system_prompt,
            user_prompt,
            temperature=self.config.temperature,
            timeout=self.config.timeout_seconds,
            max_retries=0,
            model=model,
            max_tokens=self.config.max_tokens,
            component=CostComponent.INTENT_ROUTING,
        )
        cost = estimate_call_cost(response.input_tokens, response.output_tokens, response.model)
        return self._parse(response.content), cost, response.model

    @staticmethod
    def _parse(text: str) -> RouterOutput:
        cleaned = strip_code_fences(text)
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ClassifierError("No JSON object in router output", raw=text)
        try:
            return RouterOutput.model_validate(json.loads(cleaned[start : end + 1]))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ClassifierError(f"Malformed router output: {e}", raw=text) from e

    def keyword_route(self, query: str) -> RouteResult:
        """Deterministic routing with no external call."""
        self._metrics["fallback_count"] += 1
        intent = keyword_intent(query)
        depth = keyword_depth(query)
        return self._build_result(
            query,
            intent,
            depth,
            KEYWORD_CONFIDENCE,
            reasoning="Keyword pattern matching",
            model_used=KEYWORD_MODEL,
            keyword_fallback=True,
        )

    def _build_result(
        self,
        query: str,
        intent: LearningIntent,
        depth: EngagementDepth,
        confidence: float,
        **extra: Any,
    ) -> RouteResult:
        result = RouteResult(
            primary_intent=intent,
            depth=depth,
            confidence=confidence,
            suggested_tool=select_capability(intent, depth),
            needs_retrieval=estimate_retrieval_need(query, intent, depth),
            **extra,
        )
        if confidence > self.config.clarification_threshold:
            result.selected_tools = select_tool_for_intent(
                intent, depth, result.secondary_intent
            )
            result.suggested_tool = result.selected_tools[0]
        else:
            result.needs_clarification = True
            result.clarification_prompt = clarification_prompt(intent, depth)
            result.selected_tools = [result.suggested_tool]
        return result

    @staticmethod
    def _cache_key(query: str) -> str:
        return query

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_metrics(self) -> dict[str, Any]:
        """Get routing metrics."""
        total = self._metrics["total_routes"]
        computed = total - self._metrics["cache_hits"]
        return {
            **self._metrics,
            "cache_size": len(self.cache),
            "average_cost": self._metrics["total_cost"] / computed if computed > 0 else 0.0,
            "average_latency_ms": (
                self._metrics["total_latency_ms"] / computed if computed > 0 else 0.0
            ),
            "fallback_rate": self._metrics["fallback_count"] / total if total > 0 else 0.0,
            "cache_hit_rate": self._metrics["cache_hits"] / total if total > 0 else 0.0,
        }


__all__ = [
    "DEPTH_DESCRIPTIONS",
    "INTENT_DESCRIPTIONS",
    "IntentRouter",
    "RouteResult",
    "RouterOutput",
    "analyze_multi_intent",
    "clarification_prompt",
    "estimate_retrieval_need",
    "select_tool_for_intent",
]
