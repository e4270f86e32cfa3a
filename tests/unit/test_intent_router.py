"""
Unit tests for first-turn intent routing.
"""

import asyncio

import pytest

from conftest import FakeCompletionClient
from turn_dispatch.config import RouterConfig
from turn_dispatch.intent_router import (
    KEYWORD_CONFIDENCE,
    IntentRouter,
    RouteResult,
    RouterOutput,
    analyze_multi_intent,
    clarification_prompt,
    select_tool_for_intent,
)
from turn_dispatch.types import EngagementDepth, LearningIntent


def routing(intent="understand", depth="surface", confidence=0.95, secondary=None):
    return {
        "primaryIntent": intent,
        "secondaryIntents": secondary or [],
        "depth": depth,
        "confidence": confidence,
        "reasoning": "test",
    }


class TestSelectToolForIntent:
    """Tests for capability selection from intents."""

    def test_primary_only(self):
        tools = select_tool_for_intent(LearningIntent.SOLVE, EngagementDepth.GUIDED)
        assert tools == ["problem_solver"]

    def test_understand_then_create_is_combined(self):
        tools = select_tool_for_intent(
            LearningIntent.UNDERSTAND, EngagementDepth.DEEP, LearningIntent.CREATE
        )
        assert tools == ["practical_guide"]

    def test_create_then_understand(self):
        tools = select_tool_for_intent(
            LearningIntent.CREATE, EngagementDepth.SURFACE, LearningIntent.UNDERSTAND
        )
        assert tools == ["writing_coach", "practical_guide"]

    def test_distinct_secondary_appended(self):
        tools = select_tool_for_intent(
            LearningIntent.SOLVE, EngagementDepth.GUIDED, LearningIntent.ORGANIZE
        )
        assert tools == ["problem_solver", "plan_manager"]

    def test_duplicate_secondary_dropped(self):
        tools = select_tool_for_intent(
            LearningIntent.UNDERSTAND, EngagementDepth.SURFACE, LearningIntent.INTERACT
        )
        assert tools == ["quick_answer"]


class TestRouterOutput:
    """Tests for router answer validation."""

    def test_unknown_secondary_intents_dropped(self):
        output = RouterOutput.model_validate(
            {"primaryIntent": "Solve", "secondaryIntents": ["create", "juggle"], "depth": "deep"}
        )
        assert output.primary_intent == LearningIntent.SOLVE
        assert output.secondary_intents == [LearningIntent.CREATE]

    def test_confidence_normalized(self):
        assert RouterOutput.model_validate({"confidence": 8}).confidence == pytest.approx(0.8)
        assert RouterOutput.model_validate({}).confidence == 0.7


class TestRouteResult:
    def test_secondary_intent_skips_primary(self):
        result = RouteResult(
            primary_intent=LearningIntent.SOLVE,
            depth=EngagementDepth.GUIDED,
            confidence=0.9,
            suggested_tool="problem_solver",
            secondary_intents=[LearningIntent.SOLVE, LearningIntent.EVALUATE],
        )
        assert result.secondary_intent == LearningIntent.EVALUATE

    def test_to_dict_uses_values(self):
        result = RouteResult(
            primary_intent=LearningIntent.SOLVE,
            depth=EngagementDepth.GUIDED,
            confidence=0.9,
            suggested_tool="problem_solver",
        )
        data = result.to_dict()
        assert data["primary_intent"] == "solve"
        assert data["depth"] == "guided"


class TestIntentRouter:
    """Tests for IntentRouter.route."""

    @pytest.mark.asyncio
    async def test_first_turn_factual_question(self):
        """'What is mitosis?' routes to the surface/understand capability."""
        client = FakeCompletionClient(routing("understand", "surface", 0.95))
        router = IntentRouter(client=client)

        result = await router.route("What is mitosis?")

        assert result.primary_intent == LearningIntent.UNDERSTAND
        assert result.depth == EngagementDepth.SURFACE
        assert result.suggested_tool == "quick_answer"
        assert result.needs_clarification is False
        assert result.estimated_cost > 0

    @pytest.mark.asyncio
    async def test_keyword_route_without_client(self):
        router = IntentRouter()

        result = await router.route("What is mitosis?")

        assert result.keyword_fallback is True
        assert result.confidence == KEYWORD_CONFIDENCE
        assert result.estimated_cost == 0.0
        assert result.primary_intent == LearningIntent.UNDERSTAND
        assert result.depth == EngagementDepth.SURFACE
        assert result.suggested_tool == "quick_answer"

    @pytest.mark.asyncio
    async def test_completion_failure_falls_back_to_keywords(self):
        client = FakeCompletionClient(asyncio.TimeoutError())
        router = IntentRouter(client=client)

        result = await router.route("Help me write a cover letter")

        assert result.keyword_fallback is True
        assert result.primary_intent == LearningIntent.CREATE
        assert router.get_metrics()["fallback_count"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [RuntimeError("connection reset"), ValueError("No client for openai")]
    )
    async def test_unexpected_client_error_falls_back(self, error):
        router = IntentRouter(client=FakeCompletionClient(error))

        result = await router.route("What is mitosis?")

        assert result.keyword_fallback is True
        assert result.suggested_tool == "quick_answer"

    @pytest.mark.asyncio
    async def test_malformed_answer_falls_back(self):
        router = IntentRouter(client=FakeCompletionClient("no idea"))
        result = await router.route("Solve x + 2 = 5")
        assert result.keyword_fallback is True

    @pytest.mark.asyncio
    async def test_low_confidence_needs_clarification(self):
        router = IntentRouter(client=FakeCompletionClient(routing("evaluate", "guided", 0.8)))

        result = await router.route("thoughts on this?")

        assert result.needs_clarification is True
        assert result.clarification_prompt
        assert result.selected_tools == [result.suggested_tool]
        assert result.suggested_tool == "evaluator_tool"

    @pytest.mark.asyncio
    async def test_understand_create_override(self):
        client = FakeCompletionClient(routing("understand", "guided", 0.9, ["create"]))
        router = IntentRouter(client=client)

        result = await router.route("Explain sonnets and help me write one")

        assert result.selected_tools == ["practical_guide"]
        assert result.suggested_tool == "practical_guide"

    @pytest.mark.asyncio
    async def test_cache_hit(self):
        client = FakeCompletionClient(routing())
        router = IntentRouter(client=client)

        first = await router.route("What is mitosis?")
        second = await router.route("What is mitosis?")

        assert client.call_count == 1
        assert first.cached is False
        assert second.cached is True
        assert second.primary_intent == first.primary_intent
        assert router.get_metrics()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_cache_disabled(self):
        client = FakeCompletionClient(routing())
        router = IntentRouter(client=client, config=RouterConfig(cache_enabled=False))

        await router.route("same")
        await router.route("same")

        assert client.call_count == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self):
        client = FakeCompletionClient(routing())
        router = IntentRouter(client=client)

        await router.route("q")
        router.clear_cache()
        await router.route("q")

        assert client.call_count == 2

    @pytest.mark.asyncio
    async def test_second_opinion_on_low_confidence(self):
        client = FakeCompletionClient(
            routing("explore", "guided", 0.4),
            routing("explore", "deep", 0.9),
        )
        router = IntentRouter(
            client=client,
            config=RouterConfig(second_opinion_model="sonnet"),
        )

        result = await router.route("tell me things")

        assert client.call_count == 2
        assert client.calls[1]["model"] == "sonnet"
        assert result.second_opinion is True
        assert result.confidence == 0.9
        assert result.depth == EngagementDepth.DEEP
        assert router.get_metrics()["second_opinions"] == 1

    @pytest.mark.asyncio
    async def test_no_second_opinion_when_unconfigured(self):
        client = FakeCompletionClient(routing(confidence=0.4))
        router = IntentRouter(client=client)

        result = await router.route("hm")

        assert client.call_count == 1
        assert result.second_opinion is False

    @pytest.mark.asyncio
    async def test_metrics(self):
        router = IntentRouter()
        await router.route("a")
        await router.route("b")
        await router.route("a")

        metrics = router.get_metrics()
        assert metrics["total_routes"] == 3
        assert metrics["cache_hits"] == 1
        assert metrics["fallback_rate"] == pytest.approx(2 / 3)
        assert metrics["cache_size"] == 2


class TestHelpers:
    def test_analyze_multi_intent(self):
        intents = analyze_multi_intent("Compare these two and plan my next step")
        assert intents == [LearningIntent.EVALUATE, LearningIntent.ORGANIZE]

    def test_clarification_prompt(self):
        text = clarification_prompt(LearningIntent.UNDERSTAND, EngagementDepth.SURFACE)
        assert "understand a concept" in text
        assert "a quick answer" in text
