"""
Property-based tests for pattern selection and execution.
"""

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import make_state, sleeping
from turn_dispatch.capabilities import all_capability_names
from turn_dispatch.config import ExecutionConfig
from turn_dispatch.pattern_executor import PatternExecutor
from turn_dispatch.pattern_selector import PatternSelector
from turn_dispatch.tool_executor import CapabilityRegistry, ToolExecutor
from turn_dispatch.types import (
    EngagementDepth,
    LearningIntent,
    OrchestrationPattern,
    PatternType,
)

intents = st.sampled_from([i.value for i in LearningIntent])
depths = st.sampled_from([d.value for d in EngagementDepth])
capabilities = st.sampled_from(sorted(all_capability_names()))


class TestSelectorProperties:
    """Property-based tests for PatternSelector."""

    @given(
        intent=intents,
        depth=depths,
        frustration=st.floats(min_value=0.0, max_value=1.0),
        suggested=st.one_of(st.none(), capabilities),
        previous_intent=st.one_of(st.none(), intents),
        message=st.text(max_size=80),
    )
    @settings(max_examples=200)
    def test_pattern_always_has_tools(
        self, intent, depth, frustration, suggested, previous_intent, message
    ):
        previous = make_state(intent=previous_intent) if previous_intent else None
        current = make_state(
            intent=intent,
            depth=depth,
            frustration=frustration,
            suggested=suggested,
            changed=previous is not None and previous_intent != intent,
        )

        pattern = PatternSelector().select(current, previous, message)

        assert len(pattern.tools) >= 1
        if pattern.type == PatternType.FALLBACK:
            assert len(set(pattern.tools)) == len(pattern.tools)
            assert len(pattern.tools) <= ExecutionConfig().max_fallback_tools


class TestParallelOrderingProperties:
    @given(st.lists(st.integers(min_value=0, max_value=20), min_size=1, max_size=5))
    @settings(max_examples=20, deadline=None)
    def test_results_follow_request_order(self, delays_ms):
        registry = CapabilityRegistry()
        names = [f"tool_{i}" for i in range(len(delays_ms))]
        for name, delay in zip(names, delays_ms):
            registry.register_function(name, sleeping(name, delay / 1000))
        executor = PatternExecutor(ToolExecutor(registry))
        pattern = OrchestrationPattern(type=PatternType.PARALLEL, reason="p", tools=tuple(names))

        execution = asyncio.run(executor.execute(pattern, "q", make_state(), "s"))

        assert [r.tool for r in execution.results] == names
        assert all(r.success for r in execution.results)
