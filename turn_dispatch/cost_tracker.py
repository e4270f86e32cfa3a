"""
Cost tracking for completion-service calls made during dispatch.

The classifier, the intent router and the context summarizer each record
the tokens they spend; the router reports its share in its metrics.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CostComponent(Enum):
    """Components that incur token costs."""

    STATE_CLASSIFICATION = "state_classification"
    INTENT_ROUTING = "intent_routing"
    CONTEXT_SUMMARY = "context_summary"


# Dollars per 1M tokens
MODEL_COSTS: dict[str, dict[str, float]] = {
    "claude-opus-4-5-20251101": {"input": 15.0, "output": 75.0},
    "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0},
    "claude-haiku-4-5-20251001": {"input": 1.0, "output": 5.0},
    "opus": {"input": 15.0, "output": 75.0},
    "sonnet": {"input": 3.0, "output": 15.0},
    "haiku": {"input": 1.0, "output": 5.0},
    "gpt-4o": {"input": 2.5, "output": 10.0},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
}

DEFAULT_MODEL_FOR_COSTS = "haiku"


def get_model_costs(model: str) -> dict[str, float]:
    """Per-1M-token rates for a model, matched by family when not listed."""
    lowered = model.lower()
    if lowered in MODEL_COSTS:
        return MODEL_COSTS[lowered]
    for name, rates in MODEL_COSTS.items():
        if name in lowered or lowered in name:
            return rates
    return MODEL_COSTS[DEFAULT_MODEL_FOR_COSTS]


def estimate_call_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    """Dollar cost of one call."""
    rates = get_model_costs(model)
    return (input_tokens * rates["input"] + output_tokens * rates["output"]) / 1_000_000


def estimate_tokens(text: str) -> int:
    """Rough token count: ~4 characters per token."""
    return len(text) // 4


@dataclass
class TokenUsage:
    """One completion call made on behalf of a dispatch component."""

    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    component: CostComponent = CostComponent.STATE_CLASSIFICATION
    timestamp: float = field(default_factory=time.time)
    latency_ms: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def cost(self) -> float:
        return estimate_call_cost(self.input_tokens, self.output_tokens, self.model)


class CostTracker:
    """
    Running record of completion calls, shared by every provider client.

    Summaries are computed from the call list on demand, grouped by the
    dispatch component that made the call.
    """

    def __init__(self, max_records: int = 10_000) -> None:
        self._usage: deque[TokenUsage] = deque(maxlen=max_records)

    def record_usage(
        self,
        input_tokens: int,
        output_tokens: int,
        model: str,
        component: CostComponent,
        latency_ms: float = 0.0,
    ) -> TokenUsage:
        usage = TokenUsage(input_tokens, output_tokens, model, component, latency_ms=latency_ms)
        self._usage.append(usage)
        return usage

    @property
    def call_count(self) -> int:
        return len(self._usage)

    @property
    def total_tokens(self) -> int:
        return sum(u.total_tokens for u in self._usage)

    @property
    def total_cost(self) -> float:
        return sum(u.cost for u in self._usage)

    def cost_for(self, component: CostComponent) -> float:
        return sum(u.cost for u in self._usage if u.component == component)

    def get_breakdown_by_component(self) -> dict[str, dict[str, Any]]:
        """Calls, tokens, cost and mean latency per component that was used."""
        grouped: dict[CostComponent, list[TokenUsage]] = defaultdict(list)
        for usage in self._usage:
            grouped[usage.component].append(usage)

        return {
            component.value: {
                "calls": len(calls),
                "tokens": sum(u.total_tokens for u in calls),
                "cost": sum(u.cost for u in calls),
                "avg_latency_ms": sum(u.latency_ms for u in calls) / len(calls),
            }
            for component, calls in grouped.items()
        }

    def get_summary(self) -> dict[str, Any]:
        models: dict[str, dict[str, int]] = defaultdict(lambda: {"input": 0, "output": 0})
        for usage in self._usage:
            models[usage.model]["input"] += usage.input_tokens
            models[usage.model]["output"] += usage.output_tokens

        return {
            "api_calls": self.call_count,
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "by_component": self.get_breakdown_by_component(),
            "by_model": {
                model: {
                    "input_tokens": counts["input"],
                    "output_tokens": counts["output"],
                    "cost": estimate_call_cost(counts["input"], counts["output"], model),
                }
                for model, counts in models.items()
            },
        }

    def reset(self) -> None:
        self._usage.clear()


__all__ = [
    "CostComponent",
    "CostTracker",
    "DEFAULT_MODEL_FOR_COSTS",
    "MODEL_COSTS",
    "TokenUsage",
    "estimate_call_cost",
    "estimate_tokens",
    "get_model_costs",
]
