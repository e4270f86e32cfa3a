"""
Configuration management for turn dispatch.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path

DEFAULT_CONFIG_PATH = Path.home() / ".turn-dispatch" / "config.json"


@dataclass
class ClassifierConfig:
    """Settings for the conversation state classifier."""

    model: str = "haiku"
    timeout_seconds: float = 60.0
    max_retries: int = 2
    temperature: float = 0.3
    max_tokens: int = 600
    history_window: int = 4  # turns shown to the classifier
    stuck_turn_threshold: int = 4


@dataclass
class RouterConfig:
    """Settings for first-turn intent routing."""

    model: str = "haiku"
    second_opinion_model: str | None = None
    second_opinion_threshold: float = 0.65
    clarification_threshold: float = 0.8
    cache_enabled: bool = True
    cache_ttl_seconds: float = 300.0
    max_cache_entries: int = 100
    timeout_seconds: float = 60.0
    temperature: float = 0.3
    max_tokens: int = 400


@dataclass
class OptimizerConfig:
    """Settings for the pre-dispatch query optimizer."""

    cache_ttl_seconds: float = 300.0
    max_cache_entries: int = 100
    context_turns_in_key: int = 2
    self_contained_length: int = 50


@dataclass
class ExecutionConfig:
    """Settings for pattern execution."""

    turn_timeout_seconds: float = 30.0
    speed_budget_ms: int = 3000
    chain_query_max_chars: int = 500
    max_fallback_tools: int = 3


@dataclass
class ThresholdConfig:
    """Frustration thresholds (normalized 0-1)."""

    fallback_frustration: float = 0.7
    emotional_support_frustration: float = 0.6


@dataclass
class PredictorConfig:
    """Settings for next-capability prediction and pre-warming."""

    history_limit: int = 10
    max_predictions: int = 3
    warm_cache_max_age_seconds: float = 3600.0
    prewarm_timeout_seconds: float = 0.5
    max_sessions: int = 1000
    prewarm_enabled: bool = True


@dataclass
class SessionConfig:
    """Bounds on per-session state held in memory."""

    max_sessions: int = 1000
    idle_timeout_seconds: float = 3600.0


@dataclass
class ContextConfig:
    """Conversation window sizes."""

    recent_messages: int = 6
    summary_threshold: int = 10


@dataclass
class LoggingConfig:
    """Decision log output."""

    decision_log_enabled: bool = False
    decision_log_path: str = "~/.turn-dispatch/decisions.jsonl"


@dataclass
class DispatchConfig:
    """Complete dispatch configuration."""

    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    predictor: PredictorConfig = field(default_factory=PredictorConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "DispatchConfig":
        """Load configuration from file. A missing file yields defaults."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        return cls(
            classifier=ClassifierConfig(**data.get("classifier", {})),
            router=RouterConfig(**data.get("router", {})),
            optimizer=OptimizerConfig(**data.get("optimizer", {})),
            execution=ExecutionConfig(**data.get("execution", {})),
            thresholds=ThresholdConfig(**data.get("thresholds", {})),
            predictor=PredictorConfig(**data.get("predictor", {})),
            sessions=SessionConfig(**data.get("sessions", {})),
            context=ContextConfig(**data.get("context", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)
