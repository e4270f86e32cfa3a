"""
Session-scoped dispatch state.

Each session owns its previous ConversationState and active capability.
Nothing here is shared between sessions; turns within one session are
serialized by a per-session lock.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from .types import ConversationState, Message, OrchestrationPattern


@dataclass
class SessionContext:
    """Per-session state carried from one turn to the next."""

    session_id: str
    previous_state: ConversationState | None = None
    active_capability: str | None = None
    last_pattern: OrchestrationPattern | None = None
    turn_count: int = 0
    updated_at: float = field(default_factory=time.time)

    @property
    def is_first_turn(self) -> bool:
        return self.turn_count == 0

    def advance(
        self,
        state: ConversationState,
        pattern: OrchestrationPattern,
        active_capability: str | None,
    ) -> None:
        """Record the outcome of a completed turn."""
        self.previous_state = state
        self.last_pattern = pattern
        if active_capability:
            self.active_capability = active_capability
        self.turn_count += 1
        self.updated_at = time.time()


class SessionStore(ABC):
    """Message history storage, keyed by session id."""

    @abstractmethod
    async def get_messages(self, session_id: str) -> list[Message]:
        ...

    @abstractmethod
    async def append_message(self, session_id: str, message: Message) -> None:
        ...


class InMemorySessionStore(SessionStore):
    """Process-local message history."""

    def __init__(self) -> None:
        self._messages: dict[str, list[Message]] = {}

    async def get_messages(self, session_id: str) -> list[Message]:
        return list(self._messages.get(session_id, []))

    async def append_message(self, session_id: str, message: Message) -> None:
        self._messages.setdefault(session_id, []).append(message)


class SessionRegistry:
    """
    Creates and hands out SessionContexts and their turn locks.

    Sessions are kept in least-recently-used order. evict_idle() drops
    sessions idle longer than idle_timeout_seconds, then the oldest ones
    beyond max_sessions. A session whose lock is held is never evicted.
    """

    def __init__(
        self,
        max_sessions: int = 1000,
        idle_timeout_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_sessions = max_sessions
        self.idle_timeout_seconds = idle_timeout_seconds
        self._clock = clock
        self._sessions: dict[str, SessionContext] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_used: OrderedDict[str, float] = OrderedDict()

    def _touch(self, session_id: str) -> None:
        self._last_used[session_id] = self._clock()
        self._last_used.move_to_end(session_id)

    def get(self, session_id: str) -> SessionContext:
        session = self._sessions.get(session_id)
        if session is None:
            session = SessionContext(session_id=session_id)
            self._sessions[session_id] = session
        self._touch(session_id)
        return session

    def lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        self._touch(session_id)
        return lock

    def evict_idle(self) -> list[str]:
        """Drop idle and excess sessions. Returns the evicted ids."""
        now = self._clock()
        evicted: list[str] = []
        for session_id, last_used in list(self._last_used.items()):
            idle = now - last_used > self.idle_timeout_seconds
            excess = len(self._last_used) > self.max_sessions
            if not (idle or excess):
                break
            lock = self._locks.get(session_id)
            if lock is not None and lock.locked():
                continue
            self.reset(session_id)
            evicted.append(session_id)
        return evicted

    def reset(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)
        self._last_used.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = [
    "InMemorySessionStore",
    "SessionContext",
    "SessionRegistry",
    "SessionStore",
]
