"""
Unit tests for execution pattern selection.
"""

import pytest

from conftest import make_state
from turn_dispatch.capabilities import select_capability
from turn_dispatch.config import ExecutionConfig
from turn_dispatch.pattern_selector import PatternSelector, suggested_capability
from turn_dispatch.types import EngagementDepth, LearningIntent, PatternType


@pytest.fixture
def selector():
    return PatternSelector()


class TestHandoff:
    """Tests for the intent-change rule."""

    def test_intent_change_hands_off(self, selector):
        """understand -> create hands off from the old suggestion to the new one."""
        previous = make_state(intent="understand", suggested="quick_answer")
        current = make_state(intent="create", changed=True, suggested="writing_coach")

        pattern = selector.select(current, previous, "now help me write it")

        assert pattern.type == PatternType.HANDOFF
        assert pattern.tools == ("quick_answer", "writing_coach")
        assert pattern.context["previous_intent"] == "understand"
        assert pattern.context["new_intent"] == "create"
        assert "transition_message" in pattern.context

    def test_missing_suggestions_use_matrix(self, selector):
        """Handoff fills a missing suggestion the same way every other rule does."""
        previous = make_state(intent="understand", depth="surface")
        current = make_state(intent="solve", depth="deep", changed=True)

        pattern = selector.select(current, previous, "x")

        assert pattern.tools == (
            select_capability(LearningIntent.UNDERSTAND, EngagementDepth.SURFACE),
            select_capability(LearningIntent.SOLVE, EngagementDepth.DEEP),
        )
        assert pattern.tools[1] == suggested_capability(current)

    def test_needs_previous_state(self, selector):
        current = make_state(intent="create", changed=True, suggested="writing_coach")
        pattern = selector.select(current, None, "write")
        assert pattern.tools == ("writing_coach",)

    def test_beats_high_frustration(self, selector):
        """Intent change and high frustration together is a handoff, not a fallback."""
        previous = make_state(intent="understand", suggested="quick_answer")
        current = make_state(
            intent="solve", changed=True, frustration=0.95, suggested="problem_solver"
        )

        pattern = selector.select(current, previous, "ugh")

        assert pattern.type == PatternType.HANDOFF


class TestChain:
    """Tests for the depth-progression rule."""

    def test_defined_progression(self, selector):
        previous = make_state(depth="surface")
        current = make_state(depth="guided", change_indicator="asked for more")

        pattern = selector.select(current, previous, "tell me more")

        assert pattern.type == PatternType.CHAIN
        assert pattern.tools == ("quick_answer", "socratic_tool")
        assert pattern.context["from_depth"] == "surface"
        assert pattern.context["to_depth"] == "guided"

    def test_requested_depth_is_target(self, selector):
        previous = make_state(intent="solve", depth="surface")
        current = make_state(
            intent="solve", depth="surface", requested="deep", change_indicator="go deeper"
        )

        pattern = selector.select(current, previous, "go deeper")

        assert pattern.tools == ("problem_solver", "socratic_tool", "breakthrough_tool")

    def test_undefined_progression_uses_matrix(self, selector):
        previous = make_state(intent="understand", depth="deep")
        current = make_state(
            intent="understand", depth="surface", change_indicator="just the gist"
        )

        pattern = selector.select(current, previous, "just the gist")

        assert pattern.type == PatternType.CHAIN
        assert pattern.tools == ("quick_answer",)

    def test_beats_parallel(self, selector):
        previous = make_state(depth="surface")
        current = make_state(depth="guided", change_indicator="more")
        pattern = selector.select(current, previous, "explain it and write a summary")
        assert pattern.type == PatternType.CHAIN


class TestParallel:
    """Tests for the multi-intent rule."""

    def test_one_tool_per_intent(self, selector):
        pattern = selector.select(
            make_state(depth="guided"), None, "Explain recursion and write a poem about it"
        )
        assert pattern.type == PatternType.PARALLEL
        assert pattern.tools == ("practical_guide", "writing_coach")
        assert pattern.context["intents"] == ["understand", "create"]

    def test_beats_fallback(self, selector):
        state = make_state(frustration=0.9)
        pattern = selector.select(state, None, "explain this and fix my code")
        assert pattern.type == PatternType.PARALLEL


class TestFallback:
    """Tests for the frustration rule."""

    def test_ordered_alternatives(self, selector):
        state = make_state(intent="solve", frustration=0.7, suggested="problem_solver")
        pattern = selector.select(state, None, "this still doesn't work")
        assert pattern.type == PatternType.FALLBACK
        assert pattern.tools == ("problem_solver", "quick_answer", "practical_guide")

    def test_below_threshold(self, selector):
        state = make_state(frustration=0.69, suggested="problem_solver")
        pattern = selector.select(state, None, "hmm")
        assert pattern.type == PatternType.HANDOFF

    def test_duplicates_removed(self, selector):
        state = make_state(frustration=0.8, suggested="quick_answer")
        pattern = selector.select(state, None, "ugh")
        assert pattern.tools == ("quick_answer", "practical_guide")

    def test_tool_cap(self):
        selector = PatternSelector(execution=ExecutionConfig(max_fallback_tools=2))
        state = make_state(frustration=0.8, suggested="problem_solver")
        pattern = selector.select(state, None, "ugh")
        assert pattern.tools == ("problem_solver", "quick_answer")


class TestSingle:
    def test_default_single_handoff(self, selector):
        state = make_state(intent="organize", depth="guided")
        pattern = selector.select(state, None, "ok")
        assert pattern.type == PatternType.HANDOFF
        assert pattern.tools == ("plan_manager",)

    def test_suggested_capability_prefers_state(self):
        assert suggested_capability(make_state(suggested="quiz_tool")) == "quiz_tool"
        assert suggested_capability(make_state(intent="explore", depth="deep")) == "genealogy_tool"
