"""
Unit tests for conversation window selection.
"""

import asyncio

import pytest

from conftest import FakeCompletionClient, make_history
from turn_dispatch.context_window import ContextStrategy, ContextWindow
from turn_dispatch.cost_tracker import CostComponent
from turn_dispatch.types import MessageRole


def long_history(count: int = 14):
    return make_history(*[f"message {i}" for i in range(count)])


class TestShortStrategies:
    """Strategies that never call the completion service."""

    @pytest.mark.asyncio
    async def test_none(self):
        assert await ContextWindow().select(long_history(), ContextStrategy.NONE) == []

    @pytest.mark.asyncio
    async def test_minimal(self):
        window = await ContextWindow().select(long_history(), ContextStrategy.MINIMAL)
        assert [m.content for m in window] == ["message 12", "message 13"]

    @pytest.mark.asyncio
    async def test_recent(self):
        window = await ContextWindow().select(long_history(), ContextStrategy.RECENT)
        assert len(window) == 6
        assert window[0].content == "message 8"

    @pytest.mark.asyncio
    async def test_short_history_returned_whole(self):
        client = FakeCompletionClient("summary")
        history = long_history(10)

        window = await ContextWindow(client).select(history, ContextStrategy.SUMMARY)

        assert window == history
        assert client.call_count == 0


class TestSummary:
    """Tests for summarized windows."""

    @pytest.mark.asyncio
    async def test_summary_plus_recent(self):
        client = FakeCompletionClient("They discussed cells.")
        window = await ContextWindow(client).select(long_history(), ContextStrategy.SUMMARY)

        assert len(window) == 7
        assert window[0].role == MessageRole.SYSTEM
        assert window[0].content == "Previous context: They discussed cells."
        assert window[-1].content == "message 13"
        assert client.calls[0]["component"] == CostComponent.CONTEXT_SUMMARY
        assert "message 0" in client.calls[0]["messages"][0]["content"]
        assert "message 13" not in client.calls[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_full_keeps_first_message(self):
        client = FakeCompletionClient("Middle summary.")
        window = await ContextWindow(client).select(long_history(), ContextStrategy.FULL)

        assert window[0].content == "message 0"
        assert window[1].role == MessageRole.SYSTEM
        assert "Middle summary." in window[1].content
        assert len(window) == 8

    @pytest.mark.asyncio
    async def test_full_slightly_long_is_uncompressed(self):
        client = FakeCompletionClient("unused")
        history = long_history(12)

        window = await ContextWindow(client).select(history, ContextStrategy.FULL)

        assert window == history
        assert client.call_count == 0

    @pytest.mark.asyncio
    async def test_failure_degrades_to_recent(self):
        client = FakeCompletionClient(asyncio.TimeoutError())
        window = await ContextWindow(client).select(long_history(), ContextStrategy.SUMMARY)

        assert len(window) == 6
        assert all(m.role != MessageRole.SYSTEM for m in window)

    @pytest.mark.asyncio
    async def test_unexpected_client_error_degrades_to_recent(self):
        client = FakeCompletionClient(ValueError("No client for openai"))
        window = await ContextWindow(client).select(long_history(), ContextStrategy.SUMMARY)

        assert len(window) == 6
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_no_client_degrades_to_recent(self):
        window = await ContextWindow().select(long_history(), ContextStrategy.SUMMARY)
        assert len(window) == 6
