"""
Next-capability prediction and pre-warming.

Keeps a short per-session history of executed patterns, ranks the
capabilities a session is likely to need next, and lets them prepare
ahead of time. All of this is advisory: a failed or missing pre-warm
changes latency, never results.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter, OrderedDict, deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .config import PredictorConfig
from .tool_executor import Capability, CapabilityRegistry
from .types import ConversationState, OrchestrationPattern

logger = logging.getLogger(__name__)


@dataclass
class WarmEntry:
    """A capability prepared for a session."""

    tool: str
    session_id: str
    warmed_at: float
    context: dict[str, Any] = field(default_factory=dict)


class ToolPredictor:
    """Per-session pattern history, predictions and warm-cache tracking."""

    def __init__(
        self,
        registry: CapabilityRegistry | None = None,
        config: PredictorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.config = config or PredictorConfig()
        self._clock = clock
        self._history: OrderedDict[str, deque[OrchestrationPattern]] = OrderedDict()
        self._warm: dict[str, WarmEntry] = {}
        self._stats = {
            "patterns_recorded": 0,
            "prewarm_attempts": 0,
            "prewarm_failures": 0,
            "warm_hits": 0,
            "warm_misses": 0,
        }

    @staticmethod
    def _warm_key(tool: str, session_id: str) -> str:
        return f"{tool}::{session_id}"

    async def pre_warm(
        self,
        predicted_tools: Iterable[str],
        context: dict[str, Any],
    ) -> list[str]:
        """
        Prepare predicted capabilities for a session.

        Warm-ups run concurrently, each bounded by prewarm_timeout_seconds.
        Tools still warm for the session are not warmed again. Failures and
        timeouts are logged and skipped. Returns the tools that were warmed.
        """
        session_id = str(context.get("session_id", ""))
        self.clear_old_cache()

        pending = []
        for tool in dict.fromkeys(predicted_tools):
            capability = self.registry.get(tool) if self.registry is not None else None
            if capability is None or self._fresh(tool, session_id):
                continue
            self._stats["prewarm_attempts"] += 1
            pending.append(self._warm_one(tool, capability, session_id, context))

        results = await asyncio.gather(*pending)
        return [tool for tool in results if tool is not None]

    async def _warm_one(
        self,
        tool: str,
        capability: Capability,
        session_id: str,
        context: dict[str, Any],
    ) -> str | None:
        try:
            await asyncio.wait_for(
                capability.warm_up(context), timeout=self.config.prewarm_timeout_seconds
            )
        except asyncio.TimeoutError:
            self._stats["prewarm_failures"] += 1
            logger.warning(
                f"Pre-warm of {tool} timed out after {self.config.prewarm_timeout_seconds}s"
            )
            return None
        except Exception as e:
            self._stats["prewarm_failures"] += 1
            logger.warning(f"Pre-warm of {tool} failed: {e}")
            return None

        self._warm[self._warm_key(tool, session_id)] = WarmEntry(
            tool=tool,
            session_id=session_id,
            warmed_at=self._clock(),
            context=dict(context),
        )
        return tool

    def _fresh(self, tool: str, session_id: str) -> bool:
        entry = self._warm.get(self._warm_key(tool, session_id))
        return (
            entry is not None
            and self._clock() - entry.warmed_at < self.config.warm_cache_max_age_seconds
        )

    def is_warm(self, tool: str, session_id: str) -> bool:
        """Whether tool was pre-warmed for session. Counts toward the hit rate."""
        fresh = self._fresh(tool, session_id)
        self._stats["warm_hits" if fresh else "warm_misses"] += 1
        return fresh

    def predict_next(
        self,
        session_id: str,
        state: ConversationState,
        recent_patterns: Iterable[OrchestrationPattern] | None = None,
    ) -> list[str]:
        """
        Rank likely next capabilities for a session.

        Most frequent tools across the recent history come first (ties keep
        first-seen order); the state's suggested capability is always
        included. Returns at most max_predictions names.
        """
        if recent_patterns is None:
            recent_patterns = self._history.get(session_id, ())
        patterns = list(recent_patterns)[-self.config.history_limit :]

        counts = Counter(tool for pattern in patterns for tool in pattern.tools)
        ranked = [tool for tool, _ in counts.most_common()]
        limit = self.config.max_predictions

        suggested = state.tooling.suggested_tool
        predictions = ranked[:limit]
        if suggested and suggested not in predictions:
            predictions = ranked[: limit - 1] + [suggested]
        return predictions

    def record_pattern(self, session_id: str, pattern: OrchestrationPattern) -> None:
        history = self._history.get(session_id)
        if history is None:
            history = deque(maxlen=self.config.history_limit)
            self._history[session_id] = history
        self._history.move_to_end(session_id)
        history.append(pattern)
        self._stats["patterns_recorded"] += 1

        while len(self._history) > self.config.max_sessions:
            oldest, _ = self._history.popitem(last=False)
            logger.debug(f"Dropping pattern history for session {oldest}")

    def recent_patterns(self, session_id: str) -> list[OrchestrationPattern]:
        return list(self._history.get(session_id, ()))

    def forget_session(self, session_id: str) -> None:
        self._history.pop(session_id, None)
        for key in [k for k, e in self._warm.items() if e.session_id == session_id]:
            del self._warm[key]

    def clear_old_cache(self, max_age_seconds: float | None = None) -> int:
        """Drop warm entries older than max_age. Returns how many were removed."""
        max_age = (
            self.config.warm_cache_max_age_seconds
            if max_age_seconds is None
            else max_age_seconds
        )
        now = self._clock()
        stale = [k for k, e in self._warm.items() if now - e.warmed_at > max_age]
        for key in stale:
            del self._warm[key]
        return len(stale)

    def metrics(self) -> dict[str, Any]:
        lookups = self._stats["warm_hits"] + self._stats["warm_misses"]
        return {
            "cache_size": len(self._warm),
            "sessions_tracked": len(self._history),
            "total_patterns_recorded": sum(len(h) for h in self._history.values()),
            "cache_hit_rate": self._stats["warm_hits"] / lookups if lookups > 0 else 0.0,
            **self._stats,
        }


__all__ = ["ToolPredictor", "WarmEntry"]
