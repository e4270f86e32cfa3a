"""
Capability registry and executor.

ToolExecutor is the only component that calls a capability. Every call is
timed and isolated: a missing capability, an exception or a timeout comes
back as a failed ToolExecutionResult instead of propagating.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .types import (
    CapabilityNotFoundError,
    ConversationState,
    Message,
    ToolExecutionResult,
)

logger = logging.getLogger(__name__)


@dataclass
class CapabilityInput:
    """What a capability receives for one invocation."""

    query: str
    session_id: str = "default"
    state: ConversationState | None = None
    context: dict[str, Any] = field(default_factory=dict)
    history: list[Message] = field(default_factory=list)


class Capability(ABC):
    """A pluggable response handler."""

    name: str = ""

    @abstractmethod
    async def execute(self, request: CapabilityInput) -> Any:
        """Produce a response payload. May raise."""
        ...

    async def warm_up(self, context: dict[str, Any]) -> None:
        """Optional preparation before a predicted invocation."""
        return None


class FunctionCapability(Capability):
    """Adapts a plain or async callable to the Capability interface."""

    def __init__(
        self,
        name: str,
        func: Callable[[CapabilityInput], Any | Awaitable[Any]],
        warm: Callable[[dict[str, Any]], Any | Awaitable[Any]] | None = None,
    ):
        self.name = name
        self._func = func
        self._warm = warm

    async def execute(self, request: CapabilityInput) -> Any:
        result = self._func(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def warm_up(self, context: dict[str, Any]) -> None:
        if self._warm is None:
            return
        result = self._warm(context)
        if inspect.isawaitable(result):
            await result


class CapabilityRegistry:
    """Name-to-capability map, resolved once at startup."""

    def __init__(self, capabilities: Iterable[Capability] = ()):
        self._capabilities: dict[str, Capability] = {}
        for capability in capabilities:
            self.register(capability)

    def register(self, capability: Capability) -> None:
        if not capability.name:
            raise ValueError("Capability must have a name")
        self._capabilities[capability.name] = capability

    def register_function(
        self,
        name: str,
        func: Callable[[CapabilityInput], Any | Awaitable[Any]],
    ) -> FunctionCapability:
        capability = FunctionCapability(name, func)
        self.register(capability)
        return capability

    def get(self, name: str) -> Capability | None:
        return self._capabilities.get(name)

    def require(self, name: str) -> Capability:
        capability = self.get(name)
        if capability is None:
            raise CapabilityNotFoundError(name)
        return capability

    def names(self) -> list[str]:
        return sorted(self._capabilities)

    def missing(self, names: Iterable[str]) -> list[str]:
        """Names with no registered capability, in input order."""
        return [n for n in dict.fromkeys(names) if n not in self._capabilities]

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)


class ToolExecutor:
    """Runs one named capability with timing, timeout and failure capture."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        default_timeout: float | None = None,
    ):
        self.registry = registry
        self.default_timeout = default_timeout
        self._stats = {"executions": 0, "failures": 0, "timeouts": 0, "not_found": 0}

    async def execute(
        self,
        name: str,
        request: CapabilityInput,
        timeout: float | None = None,
    ) -> ToolExecutionResult:
        """
        Execute a capability by name.

        Args:
            name: Registered capability name
            request: Input for the capability
            timeout: Seconds allowed; falls back to default_timeout

        Returns:
            ToolExecutionResult, never raises for capability failures
        """
        self._stats["executions"] += 1
        start = time.perf_counter()
        timeout = self.default_timeout if timeout is None else timeout

        try:
            capability = self.registry.require(name)
            if timeout is not None and timeout <= 0:
                raise asyncio.TimeoutError()
            output = await asyncio.wait_for(capability.execute(request), timeout)
            result = ToolExecutionResult(tool=name, result=output, success=True)
        except CapabilityNotFoundError as e:
            self._stats["not_found"] += 1
            result = ToolExecutionResult(tool=name, error=str(e))
        except asyncio.TimeoutError:
            self._stats["timeouts"] += 1
            limit = f" after {timeout:.1f}s" if timeout is not None else ""
            result = ToolExecutionResult(tool=name, error=f"Timed out{limit}")
        except Exception as e:
            logger.warning(f"Capability {name} failed: {type(e).__name__}: {e}")
            result = ToolExecutionResult(tool=name, error=str(e) or type(e).__name__)

        if not result.success:
            self._stats["failures"] += 1
        result.execution_time_ms = max(0, int((time.perf_counter() - start) * 1000))
        result.context = dict(request.context) or None
        return result

    def get_statistics(self) -> dict[str, Any]:
        return dict(self._stats)


__all__ = [
    "Capability",
    "CapabilityInput",
    "CapabilityRegistry",
    "FunctionCapability",
    "ToolExecutor",
]
