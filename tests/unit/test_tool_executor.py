"""
Unit tests for the capability registry and ToolExecutor.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import echo, failing, sleeping
from turn_dispatch.tool_executor import (
    Capability,
    CapabilityInput,
    CapabilityRegistry,
    FunctionCapability,
    ToolExecutor,
)
from turn_dispatch.types import CapabilityNotFoundError


class StaticCapability(Capability):
    name = "static"

    async def execute(self, request: CapabilityInput) -> dict:
        return {"response": f"static:{request.query}"}


class TestCapabilityRegistry:
    """Tests for CapabilityRegistry."""

    def test_register_and_get(self):
        registry = CapabilityRegistry([StaticCapability()])
        assert isinstance(registry.get("static"), StaticCapability)
        assert "static" in registry
        assert len(registry) == 1

    def test_get_unknown_is_none(self):
        assert CapabilityRegistry().get("ghost") is None

    def test_require_unknown_raises(self):
        with pytest.raises(CapabilityNotFoundError):
            CapabilityRegistry().require("ghost")

    def test_nameless_capability_rejected(self):
        with pytest.raises(ValueError):
            CapabilityRegistry().register(FunctionCapability("", echo("x")))

    def test_missing(self):
        registry = CapabilityRegistry()
        registry.register_function("a", echo("a"))
        assert registry.missing(["a", "b", "c", "b"]) == ["b", "c"]

    def test_names_sorted(self):
        registry = CapabilityRegistry()
        registry.register_function("zeta", echo("zeta"))
        registry.register_function("alpha", echo("alpha"))
        assert registry.names() == ["alpha", "zeta"]


class TestFunctionCapability:
    @pytest.mark.asyncio
    async def test_sync_function(self):
        capability = FunctionCapability("upper", lambda r: r.query.upper())
        assert await capability.execute(CapabilityInput(query="hi")) == "HI"

    @pytest.mark.asyncio
    async def test_async_warm_up(self):
        warm = AsyncMock()
        capability = FunctionCapability("w", echo("w"), warm=warm)
        await capability.warm_up({"session_id": "s"})
        warm.assert_awaited_once_with({"session_id": "s"})

    @pytest.mark.asyncio
    async def test_warm_up_is_optional(self):
        await FunctionCapability("w", echo("w")).warm_up({})


class TestToolExecutor:
    """Tests for ToolExecutor.execute."""

    @pytest.mark.asyncio
    async def test_success(self):
        registry = CapabilityRegistry()
        registry.register_function("quick_answer", echo("quick_answer"))
        executor = ToolExecutor(registry)

        result = await executor.execute(
            "quick_answer", CapabilityInput(query="What is DNA?", context={"k": 1})
        )

        assert result.success is True
        assert result.result == "[quick_answer] What is DNA?"
        assert result.error is None
        assert result.execution_time_ms >= 0
        assert result.context == {"k": 1}

    @pytest.mark.asyncio
    async def test_not_found_is_a_result(self):
        executor = ToolExecutor(CapabilityRegistry())

        result = await executor.execute("ghost", CapabilityInput(query="q"))

        assert result.success is False
        assert "not found" in result.error.lower()
        assert executor.get_statistics()["not_found"] == 1

    @pytest.mark.asyncio
    async def test_exception_is_a_result(self):
        registry = CapabilityRegistry()
        registry.register_function("boom", failing("kaboom"))
        executor = ToolExecutor(registry)

        result = await executor.execute("boom", CapabilityInput(query="q"))

        assert result.success is False
        assert result.error == "kaboom"
        assert result.result is None

    @pytest.mark.asyncio
    async def test_timeout_is_a_result(self):
        registry = CapabilityRegistry()
        registry.register_function("slow", sleeping("slow", 1.0))
        executor = ToolExecutor(registry)

        result = await executor.execute("slow", CapabilityInput(query="q"), timeout=0.05)

        assert result.success is False
        assert "Timed out" in result.error
        assert executor.get_statistics()["timeouts"] == 1

    @pytest.mark.asyncio
    async def test_expired_budget_does_not_start(self):
        handler = AsyncMock(return_value="never")
        registry = CapabilityRegistry()
        registry.register_function("t", handler)
        executor = ToolExecutor(registry)

        result = await executor.execute("t", CapabilityInput(query="q"), timeout=0)

        assert result.success is False
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_default_timeout(self):
        registry = CapabilityRegistry()
        registry.register_function("slow", sleeping("slow", 1.0))
        executor = ToolExecutor(registry, default_timeout=0.05)

        result = await executor.execute("slow", CapabilityInput(query="q"))

        assert "Timed out" in result.error

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        """Cancelling the caller cancels the capability instead of reporting it."""
        registry = CapabilityRegistry()
        registry.register_function("slow", sleeping("slow", 5.0))
        executor = ToolExecutor(registry)

        task = asyncio.ensure_future(executor.execute("slow", CapabilityInput(query="q")))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_statistics(self):
        registry = CapabilityRegistry()
        registry.register_function("ok", echo("ok"))
        registry.register_function("bad", failing())
        executor = ToolExecutor(registry)

        await executor.execute("ok", CapabilityInput(query="q"))
        await executor.execute("bad", CapabilityInput(query="q"))

        stats = executor.get_statistics()
        assert stats["executions"] == 2
        assert stats["failures"] == 1
