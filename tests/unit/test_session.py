"""
Unit tests for session state.
"""

import asyncio

import pytest

from conftest import make_state
from turn_dispatch.session import InMemorySessionStore, SessionContext, SessionRegistry
from turn_dispatch.types import Message, MessageRole, OrchestrationPattern, PatternType


def handoff(tool: str) -> OrchestrationPattern:
    return OrchestrationPattern(type=PatternType.HANDOFF, reason="test", tools=(tool,))


class TestSessionContext:
    """Tests for SessionContext."""

    def test_first_turn(self):
        assert SessionContext(session_id="s").is_first_turn

    def test_advance(self):
        session = SessionContext(session_id="s")
        state = make_state(intent="solve")

        session.advance(state, handoff("problem_solver"), "problem_solver")

        assert session.previous_state is state
        assert session.active_capability == "problem_solver"
        assert session.last_pattern.tools == ("problem_solver",)
        assert session.turn_count == 1
        assert not session.is_first_turn

    def test_advance_keeps_capability_when_none_succeeded(self):
        session = SessionContext(session_id="s", active_capability="quick_answer")
        session.advance(make_state(), handoff("x"), None)
        assert session.active_capability == "quick_answer"


class TestInMemorySessionStore:
    @pytest.mark.asyncio
    async def test_append_and_get(self):
        store = InMemorySessionStore()
        await store.append_message("s1", Message(role=MessageRole.USER, content="hi"))

        messages = await store.get_messages("s1")

        assert [m.content for m in messages] == ["hi"]
        assert await store.get_messages("s2") == []

    @pytest.mark.asyncio
    async def test_returned_list_is_a_copy(self):
        store = InMemorySessionStore()
        await store.append_message("s1", Message(role=MessageRole.USER, content="hi"))

        (await store.get_messages("s1")).clear()

        assert len(await store.get_messages("s1")) == 1


class TestSessionRegistry:
    """Tests for SessionRegistry."""

    def test_get_creates_once(self):
        registry = SessionRegistry()
        first = registry.get("s1")
        assert registry.get("s1") is first
        assert "s1" in registry
        assert len(registry) == 1

    def test_lock_per_session(self):
        registry = SessionRegistry()
        assert registry.lock("s1") is registry.lock("s1")
        assert registry.lock("s1") is not registry.lock("s2")

    def test_reset(self):
        registry = SessionRegistry()
        registry.get("s1").turn_count = 5

        registry.reset("s1")

        assert "s1" not in registry
        assert registry.get("s1").turn_count == 0

    @pytest.mark.asyncio
    async def test_lock_serializes_turns(self):
        registry = SessionRegistry()
        order: list[str] = []

        async def turn(name: str):
            async with registry.lock("s1"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(turn("a"), turn("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestEviction:
    """Tests for idle and excess session eviction."""

    def test_idle_sessions_evicted(self):
        clock = FakeClock()
        registry = SessionRegistry(idle_timeout_seconds=60, clock=clock)
        registry.get("old")
        clock.now = 50.0
        registry.get("recent")

        clock.now = 100.0
        evicted = registry.evict_idle()

        assert evicted == ["old"]
        assert "old" not in registry
        assert "recent" in registry

    def test_least_recently_used_evicted_beyond_limit(self):
        clock = FakeClock()
        registry = SessionRegistry(max_sessions=2, clock=clock)
        for i, session_id in enumerate(["a", "b", "c"]):
            clock.now = float(i)
            registry.get(session_id)
        clock.now = 3.0
        registry.get("a")

        assert registry.evict_idle() == ["b"]
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_locked_session_kept(self):
        clock = FakeClock()
        registry = SessionRegistry(idle_timeout_seconds=1, clock=clock)
        lock = registry.lock("busy")
        registry.get("busy")

        async with lock:
            clock.now = 10.0
            assert registry.evict_idle() == []

        assert registry.evict_idle() == ["busy"]

    def test_many_sessions_stay_bounded(self):
        registry = SessionRegistry(max_sessions=50)
        for i in range(300):
            registry.lock(f"s{i}")
            registry.get(f"s{i}")
            registry.evict_idle()

        assert len(registry) == 50
        assert len(registry._locks) == 50
