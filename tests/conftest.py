"""
Pytest configuration and fixtures for turn-dispatch tests.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import pytest

# Add project root to path so we can import the turn_dispatch package
sys.path.insert(0, str(Path(__file__).parent.parent))

from turn_dispatch.api_client import APIResponse, BaseLLMClient, Provider
from turn_dispatch.capabilities import all_capability_names
from turn_dispatch.config import DispatchConfig
from turn_dispatch.cost_tracker import CostComponent
from turn_dispatch.tool_executor import CapabilityInput, CapabilityRegistry
from turn_dispatch.types import ConversationState, Message, MessageRole


class FakeCompletionClient(BaseLLMClient):
    """
    Scripted completion client.

    Each call pops the next scripted item: strings and dicts are returned
    as the completion text (dicts JSON-encoded), exceptions are raised.
    The last item repeats once the script runs out.
    """

    def __init__(self, *script: Any, delay: float = 0.0):
        self.script = list(script)
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        component: CostComponent = CostComponent.STATE_CLASSIFICATION,
    ) -> APIResponse:
        self.calls.append(
            {
                "messages": messages,
                "system": system,
                "model": model,
                "temperature": temperature,
                "component": component,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)

        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        content = json.dumps(item) if isinstance(item, dict) else str(item)
        return APIResponse(
            content=content,
            input_tokens=100,
            output_tokens=50,
            model=model or "haiku",
            provider=Provider.ANTHROPIC,
        )

    @property
    def call_count(self) -> int:
        return len(self.calls)


def classifier_payload(
    intent: str = "understand",
    depth: str = "guided",
    sentiment: str = "neutral",
    frustration: float = 0.1,
    **overrides: Any,
) -> dict[str, Any]:
    """A well-formed classifier answer in the camelCase wire format."""
    payload = {
        "sentiment": {"type": sentiment, "frustrationLevel": frustration, "confidence": 0.8},
        "intent": {"current": intent, "changed": False, "changeReason": None},
        "depth": {"current": depth, "requested": None, "changeIndicator": None},
        "tooling": {"currentToolAppropriate": True, "suggestedTool": None, "switchReason": None},
        "dynamics": {
            "turnsAtCurrentDepth": 1,
            "progressionPattern": "exploring",
            "topicContinuity": "same",
        },
    }
    for section, values in overrides.items():
        payload[section].update(values)
    return payload


def make_state(
    intent: str = "understand",
    depth: str = "guided",
    sentiment: str = "neutral",
    frustration: float = 0.0,
    suggested: str | None = None,
    changed: bool = False,
    change_indicator: str | None = None,
    requested: str | None = None,
    turns: int = 1,
) -> ConversationState:
    return ConversationState.model_validate(
        {
            "sentiment": {"type": sentiment, "frustration_level": frustration},
            "intent": {"current": intent, "changed": changed},
            "depth": {
                "current": depth,
                "requested": requested,
                "change_indicator": change_indicator,
            },
            "tooling": {"suggested_tool": suggested},
            "dynamics": {"turns_at_current_depth": turns},
        }
    )


def make_history(*contents: str) -> list[Message]:
    """Alternating user/assistant messages."""
    roles = [MessageRole.USER, MessageRole.ASSISTANT]
    return [Message(role=roles[i % 2], content=c) for i, c in enumerate(contents)]


def echo(name: str):
    async def handler(request: CapabilityInput) -> str:
        return f"[{name}] {request.query}"

    return handler


def failing(message: str = "capability exploded"):
    async def handler(request: CapabilityInput) -> str:
        raise RuntimeError(message)

    return handler


def sleeping(name: str, seconds: float):
    async def handler(request: CapabilityInput) -> str:
        await asyncio.sleep(seconds)
        return f"[{name}] done"

    return handler


@pytest.fixture
def echo_registry():
    """Registry with an echo capability for every known name."""
    registry = CapabilityRegistry()
    for name in sorted(all_capability_names()):
        registry.register_function(name, echo(name))
    return registry


@pytest.fixture
def dispatch_config():
    """Default config with the decision log off."""
    return DispatchConfig()


@pytest.fixture
def fake_client():
    """Factory for scripted completion clients."""
    return FakeCompletionClient


@pytest.fixture
def neutral_state():
    return make_state()


@pytest.fixture
def history():
    return make_history(
        "What is photosynthesis?",
        "Photosynthesis turns light into chemical energy.",
        "How do chloroplasts fit in?",
        "Chloroplasts are where it happens.",
    )


# Markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "hypothesis: property-based tests")
    config.addinivalue_line("markers", "slow: tests that take >1s")
