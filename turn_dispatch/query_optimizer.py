"""
Pre-dispatch query optimization.

Decides cheaply, with no external calls, which per-turn processing steps
can be skipped: context rewriting, retrieval, or the whole turn when a
fresh cached response exists. The decisions are hints; capabilities must
still cope when retrieval was skipped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .cache import TTLCache
from .capabilities import NO_RETRIEVAL_CAPABILITIES
from .config import OptimizerConfig
from .types import Message

logger = logging.getLogger(__name__)

SELF_CONTAINED_PATTERNS = [
    re.compile(r"^(what|who|when|where|why|how) (is|are|was|were) \w+\??$", re.IGNORECASE),
    re.compile(r"^define \w+$", re.IGNORECASE),
    re.compile(r"^explain \w+$", re.IGNORECASE),
    re.compile(r"^list \w+$", re.IGNORECASE),
    re.compile(r"^thank", re.IGNORECASE),
    re.compile(r"^(yes|no|okay|sure|got it)", re.IGNORECASE),
]

EXPLICIT_CONTEXT_PATTERNS = [
    re.compile(r"in the (previous|last|above)", re.IGNORECASE),
    re.compile(r"as (i|we) (mentioned|discussed)", re.IGNORECASE),
]

META_PATTERNS = [
    re.compile(r"^(hi|hello|hey|goodbye|bye|thanks)", re.IGNORECASE),
    re.compile(r"how are you", re.IGNORECASE),
    re.compile(r"what can you (do|help)", re.IGNORECASE),
    re.compile(r"^(yes|no|okay|sure|got it)", re.IGNORECASE),
    re.compile(r"^nevermind", re.IGNORECASE),
    re.compile(r"^sorry", re.IGNORECASE),
    re.compile(r"^i (don't|do not) understand your (question|response)", re.IGNORECASE),
]

NO_RETRIEVAL_PATTERNS = [
    re.compile(r"make flashcards", re.IGNORECASE),
    re.compile(r"create a (plan|schedule)", re.IGNORECASE),
    re.compile(r"quiz me", re.IGNORECASE),
    re.compile(r"test me", re.IGNORECASE),
    re.compile(r"help me reflect", re.IGNORECASE),
    re.compile(r"different (approach|way)", re.IGNORECASE),
]

SENTIMENT_CUES = re.compile(r"but|though|still|hmm|okay|fine", re.IGNORECASE)
SHORT_MESSAGE_CHARS = 20

# Estimated savings in milliseconds
CACHE_SAVING_MS = 1800
CONTEXT_REWRITE_SAVING_MS = 800
RETRIEVAL_SAVING_MS = 1200
PARALLEL_OP_SAVING_MS = 400


@dataclass
class DispatchRequest:
    """One incoming user turn."""

    message: str
    session_id: str = "default"
    conversation_history: list[Message] = field(default_factory=list)
    requested_capability: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def has_context(self) -> bool:
        return bool(self.conversation_history)


@dataclass(frozen=True)
class OptimizationDecision:
    """Which steps the engine may skip for a request."""

    skip_context_rewrite: bool
    skip_retrieval: bool
    use_cache: bool
    parallelizable_ops: tuple[str, ...] = ()
    reasoning: str = ""


class QueryOptimizer:
    """
    Skip/don't-skip decisions plus the final-response cache.

    analyze() only reads the cache, without touching hit statistics, so
    repeated calls on the same request give the same answer.
    """

    def __init__(
        self,
        config: OptimizerConfig | None = None,
        cache: TTLCache | None = None,
    ):
        self.config = config or OptimizerConfig()
        self.cache = cache or TTLCache(
            max_entries=self.config.max_cache_entries,
            default_ttl_seconds=self.config.cache_ttl_seconds,
        )

    def analyze(self, request: DispatchRequest) -> OptimizationDecision:
        message = request.message.strip()
        use_cache = self.cache.contains(self.cache_key(request))
        skip_context = self.can_skip_context_rewrite(message, request.has_context)
        skip_retrieval = self.can_skip_retrieval(message, request.requested_capability)
        parallel = self.identify_parallel_ops(message, skip_retrieval)

        return OptimizationDecision(
            skip_context_rewrite=skip_context,
            skip_retrieval=skip_retrieval,
            use_cache=use_cache,
            parallelizable_ops=parallel,
            reasoning=self.explain_decision(skip_context, skip_retrieval, use_cache),
        )

    def can_skip_context_rewrite(self, message: str, has_context: bool) -> bool:
        if not has_context:
            return True
        if any(p.search(message) for p in SELF_CONTAINED_PATTERNS):
            return True
        return len(message) > self.config.self_contained_length or any(
            p.search(message) for p in EXPLICIT_CONTEXT_PATTERNS
        )

    @staticmethod
    def can_skip_retrieval(message: str, requested_capability: str | None = None) -> bool:
        if requested_capability in NO_RETRIEVAL_CAPABILITIES:
            return True
        if any(p.search(message) for p in META_PATTERNS):
            return True
        return any(p.search(message) for p in NO_RETRIEVAL_PATTERNS)

    @staticmethod
    def identify_parallel_ops(message: str, skip_retrieval: bool) -> tuple[str, ...]:
        ops: list[str] = []
        if len(message) < SHORT_MESSAGE_CHARS or SENTIMENT_CUES.search(message):
            ops.extend(["sentiment_analysis", "query_type_detection"])
        if not skip_retrieval:
            ops.append("multi_namespace_retrieval")
        return tuple(ops)

    def cache_key(self, request: DispatchRequest) -> str:
        turns = self.config.context_turns_in_key
        recent = request.conversation_history[-turns:] if turns > 0 else []
        context = "|".join(m.content for m in recent)
        return f"{request.message.lower()}::{context}"

    def cache_result(self, request: DispatchRequest, result: Any) -> None:
        """Store a final response and drop expired entries."""
        self.cache.set(self.cache_key(request), result, self.config.cache_ttl_seconds)
        self.cache.purge_expired()

    def get_cached_result(self, request: DispatchRequest) -> Any | None:
        return self.cache.get(self.cache_key(request))

    @staticmethod
    def explain_decision(skip_context: bool, skip_retrieval: bool, use_cache: bool) -> str:
        parts = []
        if use_cache:
            parts.append("Using cached response")
        if skip_context:
            parts.append("Skipping context rewrite")
        if skip_retrieval:
            parts.append("Skipping retrieval")
        return f"Optimizations: {', '.join(parts)}" if parts else "No optimizations applied"

    @staticmethod
    def estimate_time_saved(decision: OptimizationDecision) -> int:
        """Rough milliseconds saved by a decision."""
        if decision.use_cache:
            return CACHE_SAVING_MS
        saved = 0
        if decision.skip_context_rewrite:
            saved += CONTEXT_REWRITE_SAVING_MS
        if decision.skip_retrieval:
            saved += RETRIEVAL_SAVING_MS
        if len(decision.parallelizable_ops) > 1:
            saved += PARALLEL_OP_SAVING_MS * (len(decision.parallelizable_ops) - 1)
        return saved


__all__ = [
    "DispatchRequest",
    "OptimizationDecision",
    "QueryOptimizer",
]
