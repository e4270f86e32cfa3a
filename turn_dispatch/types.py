"""
Shared type definitions for turn dispatch.

ConversationState is validated with pydantic so that classifier output can be
parsed straight into it; the dispatch-side records (patterns, results,
messages) are plain dataclasses.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class MessageRole(str, Enum):
    """Role in conversation."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class Message:
    """A single message in conversation history."""

    role: MessageRole
    content: str
    timestamp: float | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class SentimentType(str, Enum):
    """Emotional read of the latest user message."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    CONFUSED = "confused"
    FRUSTRATED = "frustrated"
    DISENGAGED = "disengaged"


class LearningIntent(str, Enum):
    """What the user is trying to accomplish."""

    UNDERSTAND = "understand"
    CREATE = "create"
    SOLVE = "solve"
    EVALUATE = "evaluate"
    ORGANIZE = "organize"
    REGULATE = "regulate"
    EXPLORE = "explore"
    INTERACT = "interact"


class EngagementDepth(str, Enum):
    """How much elaboration the user wants."""

    SURFACE = "surface"
    GUIDED = "guided"
    DEEP = "deep"


class ProgressionPattern(str, Enum):
    EXPLORING = "exploring"
    DEEPENING = "deepening"
    SURFACING = "surfacing"
    STUCK = "stuck"


class TopicContinuity(str, Enum):
    SAME = "same"
    RELATED = "related"
    NEW = "new"


class PatternType(str, Enum):
    """Execution strategy for a turn."""

    HANDOFF = "handoff"
    CHAIN = "chain"
    PARALLEL = "parallel"
    FALLBACK = "fallback"


def normalize_level(raw: Any) -> float:
    """
    Normalize a frustration/confidence reading to [0, 1].

    Readings above 1 are taken to be on a 0-10 scale and divided by 10;
    the result is clamped. Missing or non-numeric readings become 0.
    """
    if raw is None or isinstance(raw, bool):
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    if value > 1.0:
        value = value / 10.0
    return min(1.0, max(0.0, value))


def _lower_enum_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _optional_text(value: Any) -> Any:
    """Empty or false-like strings mean 'not set'."""
    if value is None or value is False:
        return None
    if value is True:
        return "indicated"
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or stripped.lower() in ("null", "none", "false"):
            return None
        return stripped
    return str(value)


class _StateModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Sentiment(_StateModel):
    type: SentimentType = SentimentType.NEUTRAL
    frustration_level: float = 0.0
    confidence: float = 0.0

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, v: Any) -> Any:
        return _lower_enum_value(v)

    @field_validator("frustration_level", "confidence", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> float:
        return normalize_level(v)


class Intent(_StateModel):
    current: LearningIntent = LearningIntent.UNDERSTAND
    changed: bool = False
    change_reason: str | None = None

    @field_validator("current", mode="before")
    @classmethod
    def _lower_current(cls, v: Any) -> Any:
        return _lower_enum_value(v)

    @field_validator("change_reason", mode="before")
    @classmethod
    def _reason(cls, v: Any) -> Any:
        return _optional_text(v)


class Depth(_StateModel):
    current: EngagementDepth = EngagementDepth.SURFACE
    requested: EngagementDepth | None = None
    change_indicator: str | None = None

    @field_validator("current", mode="before")
    @classmethod
    def _lower_current(cls, v: Any) -> Any:
        return _lower_enum_value(v)

    @field_validator("requested", mode="before")
    @classmethod
    def _lower_requested(cls, v: Any) -> Any:
        v = _lower_enum_value(v)
        return v or None

    @field_validator("change_indicator", mode="before")
    @classmethod
    def _indicator(cls, v: Any) -> Any:
        return _optional_text(v)


class Tooling(_StateModel):
    current_tool_appropriate: bool = True
    suggested_tool: str | None = None
    switch_reason: str | None = None

    @field_validator("current_tool_appropriate", mode="before")
    @classmethod
    def _appropriate(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower() not in ("false", "no", "0", "")
        return v

    @field_validator("suggested_tool", "switch_reason", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Any:
        return _optional_text(v)


class Dynamics(_StateModel):
    turns_at_current_depth: int = Field(default=0, ge=0)
    progression_pattern: ProgressionPattern = ProgressionPattern.EXPLORING
    topic_continuity: TopicContinuity = TopicContinuity.SAME

    @field_validator("progression_pattern", "topic_continuity", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return _lower_enum_value(v)


class ConversationState(_StateModel):
    """
    Per-turn classification of the conversation.

    Accepts both snake_case and the camelCase keys the classifier emits,
    and normalizes frustration/confidence on the way in.
    """

    sentiment: Sentiment = Field(default_factory=Sentiment)
    intent: Intent = Field(default_factory=Intent)
    depth: Depth = Field(default_factory=Depth)
    tooling: Tooling = Field(default_factory=Tooling)
    dynamics: Dynamics = Field(default_factory=Dynamics)

    @classmethod
    def initial(cls) -> "ConversationState":
        """State used before anything has been classified."""
        return cls()

    def with_updates(self, **sections: dict[str, Any]) -> "ConversationState":
        """
        Return a copy with fields of the named sections replaced.

        Example: state.with_updates(dynamics={"turns_at_current_depth": 2})
        """
        update: dict[str, Any] = {}
        for name, changes in sections.items():
            section = getattr(self, name)
            merged = section.model_dump()
            merged.update(changes)
            update[name] = type(section).model_validate(merged)
        return self.model_copy(update=update)

    def snapshot(self) -> dict[str, Any]:
        """camelCase dict, as logged and sent to clients."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class OrchestrationPattern:
    """An execution plan for one turn. Immutable once built."""

    type: PatternType
    reason: str
    tools: tuple[str, ...]
    context: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.type, PatternType):
            try:
                object.__setattr__(self, "type", PatternType(self.type))
            except ValueError:
                raise InvalidPatternError(f"Unknown pattern type: {self.type!r}") from None
        tools = tuple(self.tools)
        if not tools:
            raise InvalidPatternError("Pattern requires at least one tool")
        object.__setattr__(self, "tools", tools)
        object.__setattr__(self, "context", MappingProxyType(dict(self.context)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "reason": self.reason,
            "tools": list(self.tools),
            "context": dict(self.context),
        }


@dataclass
class ToolExecutionResult:
    """Outcome of one capability invocation."""

    tool: str
    result: Any = None
    success: bool = False
    error: str | None = None
    execution_time_ms: int = 0
    context: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "result": self.result,
            "success": self.success,
            "error": self.error,
            "executionTimeMs": self.execution_time_ms,
            "context": self.context,
        }


class DispatchError(Exception):
    """Base class for dispatch errors."""

    pass


class ClassifierError(DispatchError):
    """The completion service failed or returned unusable output."""

    def __init__(self, message: str, raw: str | None = None):
        self.raw = raw
        super().__init__(message)


class CapabilityNotFoundError(DispatchError):
    """No capability is registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Capability not found: {name}")


class InvalidPatternError(DispatchError):
    """An orchestration pattern was built with invalid contents."""

    pass


__all__ = [
    "CapabilityNotFoundError",
    "ClassifierError",
    "ConversationState",
    "Depth",
    "DispatchError",
    "Dynamics",
    "EngagementDepth",
    "Intent",
    "InvalidPatternError",
    "LearningIntent",
    "Message",
    "MessageRole",
    "OrchestrationPattern",
    "PatternType",
    "ProgressionPattern",
    "Sentiment",
    "SentimentType",
    "ToolExecutionResult",
    "TopicContinuity",
    "Tooling",
    "normalize_level",
]
