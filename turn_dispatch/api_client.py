"""
Multi-provider completion client used by the classifier and router.

Supports:
- Anthropic (Claude Opus, Sonnet, Haiku)
- OpenAI (GPT-4o, GPT-4o-mini)

Calls go through the async SDK clients so that a timeout cancels the
in-flight request instead of blocking the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import anthropic
import openai
from dotenv import load_dotenv

from .cost_tracker import CostComponent, CostTracker
from .types import ClassifierError

logger = logging.getLogger(__name__)

# Auto-load .env from project root
_project_root = Path(__file__).parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


class Provider(Enum):
    """LLM provider."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass
class APIResponse:
    """Response from LLM API."""

    content: str
    input_tokens: int
    output_tokens: int
    model: str
    provider: Provider
    stop_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# Model registry with provider info
MODEL_REGISTRY: dict[str, tuple[Provider, str]] = {
    "opus": (Provider.ANTHROPIC, "claude-opus-4-5-20251101"),
    "sonnet": (Provider.ANTHROPIC, "claude-sonnet-4-20250514"),
    "haiku": (Provider.ANTHROPIC, "claude-haiku-4-5-20251001"),
    "gpt-4o": (Provider.OPENAI, "gpt-4o"),
    "gpt-4o-mini": (Provider.OPENAI, "gpt-4o-mini"),
}

# Errors worth another attempt
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    anthropic.APIError,
    openai.APIError,
)


def resolve_model(model: str) -> tuple[Provider, str]:
    """Resolve model shorthand to (provider, full_model_id)."""
    if model in MODEL_REGISTRY:
        return MODEL_REGISTRY[model]
    if model.startswith("claude"):
        return (Provider.ANTHROPIC, model)
    if model.startswith(("gpt-", "o1", "o3")):
        return (Provider.OPENAI, model)
    return (Provider.ANTHROPIC, model)


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        component: CostComponent = CostComponent.STATE_CLASSIFICATION,
    ) -> APIResponse:
        """Get completion from LLM."""
        pass


class _ProviderClient(BaseLLMClient):
    """Shared timing and cost recording around one provider SDK."""

    provider: Provider
    env_var: str
    default_model: str

    def __init__(
        self,
        api_key: str | None = None,
        cost_tracker: CostTracker | None = None,
    ):
        self.api_key = api_key or os.environ.get(self.env_var)
        if not self.api_key:
            raise ValueError(
                f"{self.provider.value} API key required. Set {self.env_var} environment variable."
            )
        self.cost_tracker = cost_tracker or CostTracker()

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        component: CostComponent = CostComponent.STATE_CLASSIFICATION,
    ) -> APIResponse:
        model = model or self.default_model
        start = time.perf_counter()
        response = await self._request(messages, system, model, max_tokens, temperature)
        self.cost_tracker.record_usage(
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            model=model,
            component=component,
            latency_ms=(time.perf_counter() - start) * 1000,
        )
        return response

    @abstractmethod
    async def _request(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> APIResponse:
        ...


class AnthropicClient(_ProviderClient):
    """Anthropic Claude API client."""

    provider = Provider.ANTHROPIC
    env_var = "ANTHROPIC_API_KEY"
    default_model = MODEL_REGISTRY["haiku"][1]

    def __init__(self, api_key: str | None = None, cost_tracker: CostTracker | None = None):
        super().__init__(api_key, cost_tracker)
        self.client = anthropic.AsyncAnthropic(api_key=self.api_key)

    async def _request(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> APIResponse:
        params: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if system:
            params["system"] = system

        response = await self.client.messages.create(**params)
        text = "".join(block.text for block in response.content if block.type == "text")
        return APIResponse(
            content=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=model,
            provider=self.provider,
            stop_reason=response.stop_reason,
        )


class OpenAIClient(_ProviderClient):
    """OpenAI GPT API client."""

    provider = Provider.OPENAI
    env_var = "OPENAI_API_KEY"
    default_model = "gpt-4o-mini"

    def __init__(self, api_key: str | None = None, cost_tracker: CostTracker | None = None):
        super().__init__(api_key, cost_tracker)
        self.client = openai.AsyncOpenAI(api_key=self.api_key)

    async def _request(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> APIResponse:
        # System prompt travels as the first chat message
        chat = [{"role": "system", "content": system}] if system else []
        chat.extend(messages)

        response = await self.client.chat.completions.create(
            model=model,
            messages=chat,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        usage = response.usage
        choice = response.choices[0]
        return APIResponse(
            content=choice.message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=model,
            provider=self.provider,
            stop_reason=choice.finish_reason,
        )


class MultiProviderClient(BaseLLMClient):
    """Unified LLM client that routes to the provider owning each model."""

    def __init__(
        self,
        default_model: str = "haiku",
        anthropic_key: str | None = None,
        openai_key: str | None = None,
        cost_tracker: CostTracker | None = None,
    ):
        """
        Initialize multi-provider client.

        Args:
            default_model: Default model (defaults to Haiku)
            anthropic_key: Anthropic API key
            openai_key: OpenAI API key
            cost_tracker: Cost tracker instance
        """
        self.cost_tracker = cost_tracker or CostTracker()
        self.default_model = default_model
        self._clients: dict[Provider, BaseLLMClient] = {}

        for client_cls, key in ((AnthropicClient, anthropic_key), (OpenAIClient, openai_key)):
            try:
                self._clients[client_cls.provider] = client_cls(key, self.cost_tracker)
            except ValueError:
                logger.debug(f"No {client_cls.provider.value} key available")

        if not self._clients:
            raise ValueError(
                "At least one API key required. Set ANTHROPIC_API_KEY or OPENAI_API_KEY."
            )

    def _get_client(self, model: str) -> tuple[BaseLLMClient, str]:
        """Get appropriate client for model."""
        provider, full_model = resolve_model(model)

        if provider not in self._clients:
            available = list(self._clients.keys())
            raise ValueError(
                f"No client for {provider.value}. Available: {[p.value for p in available]}"
            )

        return self._clients[provider], full_model

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        component: CostComponent = CostComponent.STATE_CLASSIFICATION,
    ) -> APIResponse:
        """Get completion, routing to appropriate provider."""
        model = model or self.default_model
        client, full_model = self._get_client(model)

        return await client.complete(
            messages=messages,
            system=system,
            model=full_model,
            max_tokens=max_tokens,
            temperature=temperature,
            component=component,
        )


async def complete_with_retry(
    client: BaseLLMClient,
    system_prompt: str,
    user_prompt: str,
    *,
    temperature: float,
    timeout: float,
    max_retries: int = 2,
    model: str | None = None,
    max_tokens: int = 1024,
    component: CostComponent = CostComponent.STATE_CLASSIFICATION,
) -> APIResponse:
    """
    Single-prompt completion with a per-attempt timeout and retries.

    Timeouts cancel the in-flight request. Provider and timeout errors are
    retried up to max_retries more times, then raised as ClassifierError.
    Any other error (a missing provider key, a client bug) is raised as
    ClassifierError at once. Cancellation propagates.
    """
    last_error: BaseException | None = None
    for attempt in range(max_retries + 1):
        try:
            return await asyncio.wait_for(
                client.complete(
                    messages=[{"role": "user", "content": user_prompt}],
                    system=system_prompt,
                    model=model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    component=component,
                ),
                timeout=timeout,
            )
        except RETRYABLE_ERRORS as e:
            last_error = e
            logger.warning(
                f"Completion attempt {attempt + 1}/{max_retries + 1} failed: "
                f"{type(e).__name__}: {e}"
            )
        except Exception as e:
            logger.warning(f"Completion failed without retry: {type(e).__name__}: {e}")
            raise ClassifierError(f"Completion failed: {type(e).__name__}: {e}") from e

    raise ClassifierError(f"Completion failed after {max_retries + 1} attempts: {last_error}")


__all__ = [
    "APIResponse",
    "AnthropicClient",
    "BaseLLMClient",
    "MODEL_REGISTRY",
    "MultiProviderClient",
    "OpenAIClient",
    "Provider",
    "RETRYABLE_ERRORS",
    "complete_with_retry",
    "resolve_model",
]
