"""
Turn dispatch engine.

Runs one conversational turn end to end:

    optimizer -> (router | classifier) -> selector -> predictor
              -> context window -> pattern executor -> session update

All per-session state lives in SessionContext objects handed out by a
SessionRegistry; turns for the same session are serialized, turns for
different sessions run concurrently. handle_turn() never raises.

Usage:
    engine = DispatchEngine(registry=registry, client=MultiProviderClient())
    response = await engine.handle_turn(DispatchRequest("What is mitosis?", session_id="s1"))
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .api_client import BaseLLMClient, MultiProviderClient
from .capabilities import SYSTEM_FALLBACK_TOOL, all_capability_names
from .config import DispatchConfig
from .context_window import ContextStrategy, ContextWindow
from .heuristics import estimate_retrieval_need
from .intent_router import IntentRouter, RouteResult
from .orchestration_logger import DispatchLogger, LoggerConfig
from .pattern_executor import PatternExecution, PatternExecutor
from .pattern_selector import PatternSelector
from .predictor import ToolPredictor
from .query_optimizer import DispatchRequest, OptimizationDecision, QueryOptimizer
from .session import InMemorySessionStore, SessionContext, SessionRegistry, SessionStore
from .state_classifier import (
    StateClassifier,
    needs_emotional_support,
    needs_tool_switch,
    next_turn_count,
)
from .tool_executor import CapabilityInput, CapabilityRegistry, ToolExecutor
from .types import (
    ConversationState,
    Message,
    MessageRole,
    OrchestrationPattern,
    PatternType,
    ToolExecutionResult,
    TopicContinuity,
)

logger = logging.getLogger(__name__)

RECOVERY_MESSAGE = (
    "Sorry, that didn't work as planned. Let me try a different approach. "
    "Could you rephrase what you'd like help with?"
)


@dataclass
class DispatchResponse:
    """Aggregated outcome of one turn."""

    session_id: str
    response: Any
    success: bool
    state: ConversationState
    pattern: OrchestrationPattern | None = None
    results: list[ToolExecutionResult] = field(default_factory=list)
    effectiveness: float = 0.0
    total_time_ms: int = 0
    route: RouteResult | None = None
    optimization: OptimizationDecision | None = None
    predicted_tools: list[str] = field(default_factory=list)
    emotional_support: bool = False
    tool_switch: bool = False
    cached: bool = False
    error: str | None = None

    @property
    def active_capability(self) -> str | None:
        """First capability that produced a successful result."""
        for result in self.results:
            if result.success and result.tool != SYSTEM_FALLBACK_TOOL:
                return result.tool
        return None

    @property
    def outputs(self) -> dict[str, Any]:
        return {r.tool: r.result for r in self.results if r.success}

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "response": self.response,
            "success": self.success,
            "state": self.state.snapshot(),
            "pattern": self.pattern.to_dict() if self.pattern else None,
            "results": [r.to_dict() for r in self.results],
            "effectiveness": self.effectiveness,
            "totalTimeMs": self.total_time_ms,
            "route": self.route.to_dict() if self.route else None,
            "predictedTools": self.predicted_tools,
            "emotionalSupport": self.emotional_support,
            "toolSwitch": self.tool_switch,
            "cached": self.cached,
            "error": self.error,
        }


def state_from_route(
    route: RouteResult,
    previous: ConversationState | None = None,
) -> ConversationState:
    """ConversationState for a turn routed by the IntentRouter."""
    state = ConversationState.model_validate(
        {
            "sentiment": {"confidence": route.confidence},
            "intent": {
                "current": route.primary_intent,
                "changed": previous is not None
                and previous.intent.current != route.primary_intent,
            },
            "depth": {"current": route.depth},
            "tooling": {"suggested_tool": route.suggested_tool},
            "dynamics": {
                "topic_continuity": (
                    TopicContinuity.NEW if previous is None else TopicContinuity.RELATED
                ),
            },
        }
    )
    return state.with_updates(
        dynamics={"turns_at_current_depth": next_turn_count(state, previous)}
    )


def compose_response(execution: PatternExecution) -> Any:
    """
    The user-facing payload for an execution.

    Parallel patterns return every successful output keyed by capability;
    the rest return the first successful output.
    """
    successes = execution.successful_results
    if not successes:
        return RECOVERY_MESSAGE
    if execution.pattern.type == PatternType.PARALLEL and len(successes) > 1:
        return {r.tool: r.result for r in successes}
    return successes[0].result


class DispatchEngine:
    """
    Orchestrates one conversational turn per handle_turn() call.

    Every collaborator is injectable; anything not passed in is built from
    the configuration.
    """

    def __init__(
        self,
        config: DispatchConfig | None = None,
        client: BaseLLMClient | None = None,
        registry: CapabilityRegistry | None = None,
        session_store: SessionStore | None = None,
        sessions: SessionRegistry | None = None,
        classifier: StateClassifier | None = None,
        router: IntentRouter | None = None,
        optimizer: QueryOptimizer | None = None,
        selector: PatternSelector | None = None,
        executor: PatternExecutor | None = None,
        predictor: ToolPredictor | None = None,
        context_window: ContextWindow | None = None,
        decision_log: DispatchLogger | None = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Dispatch configuration (defaults if None)
            client: Completion client for classification and routing;
                without one, keyword heuristics are used throughout
            registry: Capability registry
            session_store: Message history store
            sessions: Per-session state registry
            classifier, router, optimizer, selector, executor, predictor,
            context_window, decision_log: Component overrides
        """
        self.config = config or DispatchConfig()
        self.client = client
        self.registry = registry or CapabilityRegistry()
        self.store = session_store or InMemorySessionStore()
        self.sessions = sessions or SessionRegistry(
            self.config.sessions.max_sessions, self.config.sessions.idle_timeout_seconds
        )

        self.classifier = classifier or StateClassifier(
            client, self.config.classifier, self.config.thresholds
        )
        self.router = router or IntentRouter(client, self.config.router)
        self.optimizer = optimizer or QueryOptimizer(self.config.optimizer)
        self.selector = selector or PatternSelector(
            self.config.thresholds, self.config.execution
        )
        self.executor = executor or PatternExecutor(
            ToolExecutor(self.registry), self.config.execution
        )
        self.predictor = predictor or ToolPredictor(self.registry, self.config.predictor)
        self.context_window = context_window or ContextWindow(
            client, self.config.context, model=self.config.classifier.model
        )
        if decision_log is None and self.config.logging.decision_log_enabled:
            decision_log = DispatchLogger(
                LoggerConfig(log_path=self.config.logging.decision_log_path)
            )
        self.decision_log = decision_log
        self._prewarm_tasks: set[asyncio.Task[list[str]]] = set()

        self._stats = {
            "turns": 0,
            "routed_turns": 0,
            "classified_turns": 0,
            "cache_hits": 0,
            "recoveries": 0,
            "errors": 0,
            "evicted_sessions": 0,
        }

        missing = self.registry.missing(all_capability_names())
        if missing:
            logger.debug(f"No capability registered for: {', '.join(sorted(missing))}")

    async def handle_turn(self, request: DispatchRequest) -> DispatchResponse:
        """
        Dispatch one user turn.

        Args:
            request: The incoming turn; history is read from the session
                store when the request carries none

        Returns:
            DispatchResponse; on an unexpected internal error the response
            carries a recovery message and the error text instead of raising
        """
        self._stats["turns"] += 1
        start = time.perf_counter()

        for evicted in self.sessions.evict_idle():
            self._stats["evicted_sessions"] += 1
            self.predictor.forget_session(evicted)

        try:
            async with self.sessions.lock(request.session_id):
                return await self._dispatch(request, start)
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"Dispatch failed for session {request.session_id}: {e}", exc_info=True)
            session = self.sessions.get(request.session_id)
            return DispatchResponse(
                session_id=request.session_id,
                response=RECOVERY_MESSAGE,
                success=False,
                state=session.previous_state or ConversationState.initial(),
                total_time_ms=_elapsed_ms(start),
                error=str(e) or type(e).__name__,
            )

    async def _dispatch(self, request: DispatchRequest, start: float) -> DispatchResponse:
        session_id = request.session_id
        session = self.sessions.get(session_id)

        if not request.conversation_history:
            history = await self.store.get_messages(session_id)
            if history:
                request = replace(request, conversation_history=history)

        decision = self.optimizer.analyze(request)
        if decision.use_cache:
            cached = self.optimizer.get_cached_result(request)
            if cached is not None:
                return await self._from_cache(request, session, cached, decision, start)

        route: RouteResult | None = None
        if self._should_route(request):
            route, state = await self._route_state(request.message, session)
        else:
            self._stats["classified_turns"] += 1
            state = await self.classifier.analyze(
                request.message,
                request.conversation_history,
                current_capability=request.requested_capability or session.active_capability,
                previous_state=session.previous_state,
            )

        pattern = self.selector.select(state, session.previous_state, request.message)

        emotional_support = needs_emotional_support(
            state, self.config.thresholds.emotional_support_frustration
        )
        tool_switch = needs_tool_switch(state)
        prewarmed = [t for t in pattern.tools if self.predictor.is_warm(t, session_id)]
        predicted = self._schedule_pre_warm(session_id, state)

        window = await self.context_window.select(
            request.conversation_history, self._context_strategy(request, decision)
        )
        needs_retrieval = not decision.skip_retrieval and (
            route.needs_retrieval
            if route is not None
            else estimate_retrieval_need(
                request.message, state.intent.current, state.depth.current
            )
        )

        execution = await self.executor.execute(
            pattern,
            request.message,
            state,
            session_id,
            history=window,
            context={
                "emotional_support": emotional_support,
                "needs_retrieval": needs_retrieval,
                "skip_context_rewrite": decision.skip_context_rewrite,
                "prewarmed_tools": prewarmed,
                **request.metadata,
            },
        )

        response = DispatchResponse(
            session_id=session_id,
            response=compose_response(execution),
            success=execution.any_success,
            state=state,
            pattern=pattern,
            results=execution.results,
            effectiveness=execution.effectiveness,
            route=route,
            optimization=decision,
            predicted_tools=predicted,
            emotional_support=emotional_support,
            tool_switch=tool_switch,
        )
        if not response.active_capability:
            self._stats["recoveries"] += 1

        first_turn = session.is_first_turn
        session.advance(state, pattern, response.active_capability)
        self.predictor.record_pattern(session_id, pattern)
        await self._append_exchange(session_id, request.message, response)

        response.total_time_ms = _elapsed_ms(start)
        if response.success:
            self.optimizer.cache_result(request, response)
        self._log(request, response, "router" if route else "classifier", first_turn)
        return response

    @staticmethod
    def _should_route(request: DispatchRequest) -> bool:
        """First turns and explicit re-route requests go through the router."""
        return not request.has_context or bool(request.metadata.get("reroute"))

    async def _route_state(
        self,
        message: str,
        session: SessionContext,
    ) -> tuple[RouteResult | None, ConversationState]:
        quick = self.classifier.quick_state_check(message, session.previous_state)
        if quick is not None:
            return None, quick

        self._stats["routed_turns"] += 1
        route = await self.router.route(message, {"session_id": session.session_id})
        return route, state_from_route(route, session.previous_state)

    def _schedule_pre_warm(self, session_id: str, state: ConversationState) -> list[str]:
        """Start warming likely next capabilities without waiting for them."""
        if not self.config.predictor.prewarm_enabled:
            return []
        predicted = self.predictor.predict_next(session_id, state)
        if not predicted:
            return predicted
        task = asyncio.create_task(
            self.predictor.pre_warm(
                predicted,
                {
                    "session_id": session_id,
                    "intent": state.intent.current.value,
                    "depth": state.depth.current.value,
                },
            )
        )
        self._prewarm_tasks.add(task)
        task.add_done_callback(self._pre_warm_done)
        return predicted

    def _pre_warm_done(self, task: asyncio.Task[list[str]]) -> None:
        self._prewarm_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Pre-warm task failed: {task.exception()}")

    async def wait_for_pre_warm(self) -> None:
        """Wait for outstanding pre-warm work to finish."""
        if self._prewarm_tasks:
            await asyncio.gather(*self._prewarm_tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding pre-warm work."""
        tasks = list(self._prewarm_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @staticmethod
    def _context_strategy(
        request: DispatchRequest,
        decision: OptimizationDecision,
    ) -> ContextStrategy:
        if not request.has_context:
            return ContextStrategy.NONE
        if decision.skip_context_rewrite:
            return ContextStrategy.RECENT
        return ContextStrategy.SUMMARY

    async def _from_cache(
        self,
        request: DispatchRequest,
        session: SessionContext,
        cached: DispatchResponse,
        decision: OptimizationDecision,
        start: float,
    ) -> DispatchResponse:
        self._stats["cache_hits"] += 1
        logger.debug(f"Serving cached response for session {request.session_id}")

        # The cached state may come from another session
        state = self.classifier.finalize(cached.state, session.previous_state)
        response = replace(
            cached,
            session_id=request.session_id,
            state=state,
            cached=True,
            optimization=decision,
            total_time_ms=_elapsed_ms(start),
        )

        first_turn = session.is_first_turn
        if response.pattern is not None:
            session.advance(state, response.pattern, response.active_capability)
            self.predictor.record_pattern(request.session_id, response.pattern)
        await self._append_exchange(request.session_id, request.message, response)
        if response.pattern is not None:
            self._log(request, response, "cache", first_turn=first_turn)
        return response

    async def _append_exchange(
        self,
        session_id: str,
        message: str,
        response: DispatchResponse,
    ) -> None:
        now = time.time()
        await self.store.append_message(
            session_id, Message(role=MessageRole.USER, content=message, timestamp=now)
        )
        content = response.response
        await self.store.append_message(
            session_id,
            Message(
                role=MessageRole.ASSISTANT,
                content=content if isinstance(content, str) else json.dumps(content, default=str),
                timestamp=now,
                metadata={
                    "tool": response.active_capability,
                    "pattern": response.pattern.type.value if response.pattern else None,
                },
            ),
        )

    def _log(
        self,
        request: DispatchRequest,
        response: DispatchResponse,
        source: str,
        first_turn: bool,
    ) -> None:
        if self.decision_log is None or response.pattern is None:
            return
        execution = PatternExecution(
            pattern=response.pattern,
            results=response.results,
            effectiveness=response.effectiveness,
            total_time_ms=response.total_time_ms,
        )
        optimizations = []
        if response.optimization is not None:
            if response.optimization.skip_context_rewrite:
                optimizations.append("skip_context_rewrite")
            if response.optimization.skip_retrieval:
                optimizations.append("skip_retrieval")
        self.decision_log.log_decision(
            request.session_id,
            request.message,
            response.state,
            response.pattern,
            execution,
            source=source,
            latency_ms=response.total_time_ms,
            first_turn=first_turn,
            optimizations=optimizations,
        )

    def reset_session(self, session_id: str) -> None:
        """Forget a session's state and prediction history."""
        self.sessions.reset(session_id)
        self.predictor.forget_session(session_id)

    def get_statistics(self) -> dict[str, Any]:
        """Statistics from the engine and its components."""
        stats = {
            **self._stats,
            "sessions": len(self.sessions),
            "classifier": self.classifier.get_statistics(),
            "router": self.router.get_metrics(),
            "executor": self.executor.tool_executor.get_statistics(),
            "predictor": self.predictor.metrics(),
            "response_cache": self.optimizer.cache.get_statistics(),
        }
        cost_tracker = getattr(self.client, "cost_tracker", None)
        if cost_tracker is not None:
            stats["costs"] = cost_tracker.get_summary()
        return stats


def _elapsed_ms(start: float) -> int:
    return max(0, int((time.perf_counter() - start) * 1000))


def echo_registry() -> CapabilityRegistry:
    """Registry where every known capability echoes its query."""
    registry = CapabilityRegistry()
    for name in sorted(all_capability_names()):

        def echo(request: CapabilityInput, name: str = name) -> str:
            return f"[{name}] {request.query}"

        registry.register_function(name, echo)
    return registry


async def run_cli(args: Any) -> list[DispatchResponse]:
    config = DispatchConfig.load(Path(args.config).expanduser() if args.config else None)

    client = None
    if args.llm:
        try:
            client = MultiProviderClient(default_model=config.classifier.model)
        except ValueError as e:
            print(f"Warning: {e} Falling back to keyword heuristics.")

    engine = DispatchEngine(config=config, client=client, registry=echo_registry())

    responses = []
    try:
        for message in args.messages:
            response = await engine.handle_turn(
                DispatchRequest(message, session_id=args.session)
            )
            responses.append(response)
            print(json.dumps(response.to_dict(), indent=2, default=str))
        await engine.wait_for_pre_warm()
    finally:
        await engine.close()

    if args.stats:
        print(json.dumps(engine.get_statistics(), indent=2, default=str))
    return responses


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for smoke checks against echo capabilities."""
    import argparse

    parser = argparse.ArgumentParser(description="Turn dispatch engine")
    parser.add_argument("messages", nargs="+", help="User messages, one turn each")
    parser.add_argument("--session", default="cli", help="Session id")
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument(
        "--llm",
        action="store_true",
        help="Use the completion service (needs ANTHROPIC_API_KEY or OPENAI_API_KEY)",
    )
    parser.add_argument("--stats", action="store_true", help="Print engine statistics")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_cli(args))


__all__ = [
    "DispatchEngine",
    "DispatchResponse",
    "RECOVERY_MESSAGE",
    "compose_response",
    "echo_registry",
    "main",
    "state_from_route",
]


if __name__ == "__main__":
    main()
