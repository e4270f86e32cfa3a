"""
Pattern execution.

Carries out an OrchestrationPattern against the ToolExecutor:

- handoff:  in order; stop at the first success
- parallel: all at once; results in input order, failures isolated
- chain:    in order; each output becomes the next query; stop on failure
- fallback: in order until one succeeds; synthesize a recovery result
            when none do

All strategies share one turn deadline. Sequential strategies do not start
a step once it has passed; parallel branches still running at the deadline
are cancelled and reported as timeouts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .capabilities import SYSTEM_FALLBACK_TOOL
from .config import ExecutionConfig
from .tool_executor import CapabilityInput, ToolExecutor
from .types import (
    ConversationState,
    InvalidPatternError,
    Message,
    OrchestrationPattern,
    PatternType,
    SentimentType,
    ToolExecutionResult,
)

logger = logging.getLogger(__name__)

SYSTEM_FALLBACK_MESSAGE = (
    "I understand you're looking for help. Let me connect you with a more "
    "direct approach or additional resources."
)

CHAIN_SUMMARY_CHARS = 100

InputFactory = Callable[..., CapabilityInput]
DeadlineClock = Callable[[], float]

# Effectiveness weights
SUCCESS_WEIGHT = 0.4
SPEED_WEIGHT = 0.2
APPROPRIATENESS_WEIGHT = 0.3
SENTIMENT_WEIGHT = 0.1

SENTIMENT_SCORES = {
    SentimentType.POSITIVE: 1.0,
    SentimentType.NEUTRAL: 0.7,
}
OTHER_SENTIMENT_SCORE = 0.3


@dataclass
class PatternExecution:
    """Results of one executed pattern."""

    pattern: OrchestrationPattern
    results: list[ToolExecutionResult]
    effectiveness: float
    total_time_ms: int

    @property
    def successful_results(self) -> list[ToolExecutionResult]:
        return [r for r in self.results if r.success]

    @property
    def any_success(self) -> bool:
        return any(r.success for r in self.results)

    @property
    def executed_tools(self) -> list[str]:
        return [r.tool for r in self.results if r.tool != SYSTEM_FALLBACK_TOOL]


def extract_next_query(output: Any, original_query: str, max_chars: int = 500) -> str:
    """
    Turn one chain step's output into the next step's query.

    Strings pass through; mappings may carry an explicit next query or a
    response to summarize. Anything else reuses the original query.
    """
    if isinstance(output, str) and output.strip():
        text = output
    elif isinstance(output, Mapping):
        next_query = output.get("next_query") or output.get("nextQuery")
        response = output.get("response")
        if isinstance(next_query, str) and next_query.strip():
            text = next_query
        elif isinstance(response, str) and response.strip():
            text = (
                f"Based on: {response[:CHAIN_SUMMARY_CHARS]}... "
                f"Continue with: {original_query}"
            )
        else:
            text = original_query
    else:
        text = original_query

    if len(text) > max_chars:
        text = text[: max_chars - 3].rstrip() + "..."
    return text


def calculate_effectiveness(
    results: list[ToolExecutionResult],
    state: ConversationState,
    total_time_ms: float,
    speed_budget_ms: int = 3000,
) -> float:
    """
    Weighted effectiveness score in [0, 1].

    success rate 0.4, speed 0.2 (linear penalty past the budget, zero at
    twice the budget), tool appropriateness 0.3, sentiment 0.1. Synthetic
    fallback results are not counted as executed tools.
    """
    executed = [r for r in results if r.tool != SYSTEM_FALLBACK_TOOL]

    if executed:
        success_rate = sum(1 for r in executed if r.success) / len(executed)
        suggested = state.tooling.suggested_tool
        appropriate = sum(1 for r in executed if r.tool == suggested) / len(executed)
    else:
        success_rate = 0.0
        appropriate = 0.0

    if total_time_ms <= speed_budget_ms:
        speed = 1.0
    else:
        speed = max(0.0, 1.0 - (total_time_ms - speed_budget_ms) / speed_budget_ms)

    sentiment = SENTIMENT_SCORES.get(state.sentiment.type, OTHER_SENTIMENT_SCORE)

    score = (
        SUCCESS_WEIGHT * success_rate
        + SPEED_WEIGHT * speed
        + APPROPRIATENESS_WEIGHT * appropriate
        + SENTIMENT_WEIGHT * sentiment
    )
    return min(1.0, max(0.0, score))


class PatternExecutor:
    """Executes patterns; never raises for capability failures."""

    def __init__(
        self,
        tool_executor: ToolExecutor,
        config: ExecutionConfig | None = None,
    ):
        self.tool_executor = tool_executor
        self.config = config or ExecutionConfig()

    async def execute(
        self,
        pattern: OrchestrationPattern,
        query: str,
        state: ConversationState,
        session_id: str,
        history: list[Message] | None = None,
        context: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> PatternExecution:
        """
        Execute a pattern.

        Args:
            pattern: The pattern to run
            query: The user's query
            state: This turn's ConversationState
            session_id: Session the turn belongs to
            history: Prior turns passed through to capabilities
            context: Extra context merged into every capability input
            timeout: Turn deadline in seconds; defaults to the configured one

        Returns:
            PatternExecution with ordered results, effectiveness and timing
        """
        loop = asyncio.get_running_loop()
        budget = self.config.turn_timeout_seconds if timeout is None else timeout
        deadline = loop.time() + budget
        start = time.perf_counter()

        runner = {
            PatternType.HANDOFF: self._run_handoff,
            PatternType.PARALLEL: self._run_parallel,
            PatternType.CHAIN: self._run_chain,
            PatternType.FALLBACK: self._run_fallback,
        }.get(pattern.type)
        if runner is None:
            raise InvalidPatternError(f"No executor for pattern type {pattern.type!r}")

        base_context = {**(context or {}), **pattern.context, "pattern": pattern.type.value}

        def make_input(step_query: str, extra: dict[str, Any] | None = None) -> CapabilityInput:
            return CapabilityInput(
                query=step_query,
                session_id=session_id,
                state=state,
                context={**base_context, **(extra or {})},
                history=list(history or []),
            )

        def remaining() -> float:
            return deadline - loop.time()

        results = await runner(pattern, query, make_input, remaining)

        total_ms = max(0, int((time.perf_counter() - start) * 1000))
        effectiveness = calculate_effectiveness(
            results, state, total_ms, self.config.speed_budget_ms
        )
        logger.debug(
            f"{pattern.type.value} executed {len(results)} result(s) in {total_ms}ms, "
            f"effectiveness {effectiveness:.2f}"
        )
        return PatternExecution(
            pattern=pattern,
            results=results,
            effectiveness=effectiveness,
            total_time_ms=total_ms,
        )

    async def _run_handoff(
        self,
        pattern: OrchestrationPattern,
        query: str,
        make_input: InputFactory,
        remaining: DeadlineClock,
    ) -> list[ToolExecutionResult]:
        results: list[ToolExecutionResult] = []
        for position, tool in enumerate(pattern.tools):
            if results and remaining() <= 0:
                break
            result = await self.tool_executor.execute(
                tool, make_input(query, {"handoff_position": position}), timeout=remaining()
            )
            results.append(result)
            if result.success:
                break
        return results

    async def _run_parallel(
        self,
        pattern: OrchestrationPattern,
        query: str,
        make_input: InputFactory,
        remaining: DeadlineClock,
    ) -> list[ToolExecutionResult]:
        budget = remaining()
        # gather keeps input order regardless of completion order
        return list(
            await asyncio.gather(
                *(
                    self.tool_executor.execute(
                        tool, make_input(query, {"parallel_index": i}), timeout=budget
                    )
                    for i, tool in enumerate(pattern.tools)
                )
            )
        )

    async def _run_chain(
        self,
        pattern: OrchestrationPattern,
        query: str,
        make_input: InputFactory,
        remaining: DeadlineClock,
    ) -> list[ToolExecutionResult]:
        results: list[ToolExecutionResult] = []
        step_query = query
        for step, tool in enumerate(pattern.tools):
            if results and remaining() <= 0:
                logger.info(f"Chain stopped at step {step}: turn deadline passed")
                break
            extra = {"chain_step": step}
            if results:
                extra["previous_tool"] = results[-1].tool
            result = await self.tool_executor.execute(
                tool, make_input(step_query, extra), timeout=remaining()
            )
            results.append(result)
            if not result.success:
                break
            step_query = extract_next_query(
                result.result, query, self.config.chain_query_max_chars
            )
        return results

    async def _run_fallback(
        self,
        pattern: OrchestrationPattern,
        query: str,
        make_input: InputFactory,
        remaining: DeadlineClock,
    ) -> list[ToolExecutionResult]:
        results: list[ToolExecutionResult] = []
        for attempt, tool in enumerate(pattern.tools):
            if results and remaining() <= 0:
                break
            result = await self.tool_executor.execute(
                tool, make_input(query, {"fallback_attempt": attempt}), timeout=remaining()
            )
            results.append(result)
            if result.success:
                return results

        logger.warning(f"All {len(results)} fallback capabilities failed")
        results.append(
            ToolExecutionResult(
                tool=SYSTEM_FALLBACK_TOOL,
                result=SYSTEM_FALLBACK_MESSAGE,
                success=True,
                execution_time_ms=0,
                context={"failed_tools": [r.tool for r in results]},
            )
        )
        return results


__all__ = [
    "PatternExecution",
    "PatternExecutor",
    "SYSTEM_FALLBACK_MESSAGE",
    "calculate_effectiveness",
    "extract_next_query",
]
