"""
Dispatch decision logging.

Writes one JSONL record per dispatched turn (state snapshot, chosen
pattern, tools, outcome) for offline analysis of routing quality.

Usage:
    from turn_dispatch.orchestration_logger import DispatchLogger, LoggerConfig

    decision_log = DispatchLogger(LoggerConfig(log_path="~/.turn-dispatch/decisions.jsonl"))
    decision_log.log_decision(session_id, query, state, pattern, execution, "classifier")
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .pattern_executor import PatternExecution
from .types import ConversationState, OrchestrationPattern

logger = logging.getLogger(__name__)

MAX_LOGGED_QUERY_CHARS = 500
FEEDBACK_RECORD = "outcome_feedback"


@dataclass
class DispatchDecisionLog:
    """One logged dispatch decision."""

    # === Input ===
    session_id: str
    query: str
    query_length: int
    first_turn: bool

    # === Decision ===
    pattern_type: str
    pattern_reason: str
    tools: list[str]
    state: dict[str, Any]

    # === Outcome ===
    results: list[dict[str, Any]]
    success: bool
    effectiveness: float
    latency_ms: float

    # === Metadata ===
    timestamp: str
    source: str  # "classifier", "router", "cache"
    optimizations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DispatchDecisionLog:
        return cls(**data)


@dataclass
class LoggerConfig:
    """Configuration for the decision logger."""

    log_path: str = "~/.turn-dispatch/decisions.jsonl"
    enabled: bool = True
    max_size_mb: float = 50.0
    max_files: int = 5  # current file plus archives
    log_cache_hits: bool = False  # turns answered from the response cache


class DispatchLogger:
    """Appends dispatch decisions to a size-rotated JSONL file."""

    def __init__(self, config: LoggerConfig | None = None):
        self.config = config or LoggerConfig()
        self.path = Path(self.config.log_path).expanduser()
        self._decisions_written = 0

        if self.config.enabled:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def _rotated(self, index: int) -> Path:
        return self.path.with_name(f"{self.path.name}.{index}")

    def _rotate_if_full(self) -> None:
        if not self.path.exists():
            return
        if self.path.stat().st_size < self.config.max_size_mb * 1024 * 1024:
            return

        # decisions.jsonl.1 is the newest archive; the oldest falls off the end
        self._rotated(self.config.max_files - 1).unlink(missing_ok=True)
        for index in range(self.config.max_files - 2, 0, -1):
            if self._rotated(index).exists():
                self._rotated(index).rename(self._rotated(index + 1))
        self.path.rename(self._rotated(1))
        logger.info(f"Rotated decision log {self.path}")

    def _append(self, record: dict[str, Any]) -> None:
        self._rotate_if_full()
        with open(self.path, "a") as f:
            f.write(json.dumps(record, default=str) + "\n")

    def log_decision(
        self,
        session_id: str,
        query: str,
        state: ConversationState,
        pattern: OrchestrationPattern,
        execution: PatternExecution | None,
        source: str,
        latency_ms: float = 0.0,
        first_turn: bool = False,
        optimizations: list[str] | None = None,
    ) -> None:
        """
        Log a dispatch decision.

        Args:
            session_id: Session the turn belongs to
            query: The user query
            state: ConversationState used for the decision
            pattern: Pattern that was selected
            execution: Execution outcome, None for cache hits
            source: Where the state came from ("classifier", "router", "cache")
            latency_ms: Wall-clock time for the whole turn
            first_turn: Whether this was the session's first turn
            optimizations: Optimizer hints applied to the turn
        """
        if not self.config.enabled:
            return
        if source == "cache" and not self.config.log_cache_hits:
            return

        results = execution.results if execution is not None else []
        entry = DispatchDecisionLog(
            session_id=session_id,
            query=query[:MAX_LOGGED_QUERY_CHARS],
            query_length=len(query),
            first_turn=first_turn,
            pattern_type=pattern.type.value,
            pattern_reason=pattern.reason,
            tools=list(pattern.tools),
            state=state.snapshot(),
            results=[
                {
                    "tool": r.tool,
                    "success": r.success,
                    "error": r.error,
                    "execution_time_ms": r.execution_time_ms,
                }
                for r in results
            ],
            success=any(r.success for r in results),
            effectiveness=execution.effectiveness if execution is not None else 0.0,
            latency_ms=latency_ms,
            timestamp=datetime.now().isoformat(),
            source=source,
            optimizations=optimizations or [],
        )
        try:
            self._append(entry.to_dict())
        except OSError as e:
            logger.warning(f"Could not write decision log entry: {e}")
            return
        self._decisions_written += 1

    def log_outcome(self, session_id: str, query: str, success: bool, feedback: str = "") -> None:
        """Record user feedback on an earlier turn, joinable on session and query prefix."""
        if not self.config.enabled:
            return
        self._append(
            {
                "type": FEEDBACK_RECORD,
                "session_id": session_id,
                "query_prefix": query[:100],
                "success": success,
                "feedback": feedback,
                "timestamp": datetime.now().isoformat(),
            }
        )

    def load_decisions(self) -> list[DispatchDecisionLog]:
        """Decisions in the current file; feedback and malformed lines are skipped."""
        if not self.path.exists():
            return []

        decisions: list[DispatchDecisionLog] = []
        with open(self.path) as f:
            for line_no, line in enumerate(f, 1):
                try:
                    data = json.loads(line)
                    if data.get("type") != FEEDBACK_RECORD:
                        decisions.append(DispatchDecisionLog.from_dict(data))
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning(f"Skipping malformed decision log line {line_no}: {e}")
        return decisions

    def get_statistics(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "enabled": self.config.enabled,
            "log_path": str(self.path),
            "decisions_logged": self._decisions_written,
        }
        if self.path.exists():
            with open(self.path) as f:
                stats["log_lines"] = sum(1 for _ in f)
            stats["log_size_mb"] = self.path.stat().st_size / (1024 * 1024)
        return stats


__all__ = ["DispatchDecisionLog", "DispatchLogger", "LoggerConfig"]
