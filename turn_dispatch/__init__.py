"""
turn-dispatch: conversation-state-driven dispatch for multi-turn assistants.

Classifies each turn of a conversation, picks an execution pattern
(handoff, chain, parallel or fallback) and runs it against pluggable
capabilities with latency and failure isolation.
"""

__version__ = "0.1.0"

# Shared types
from .types import (
    CapabilityNotFoundError,
    ClassifierError,
    ConversationState,
    DispatchError,
    EngagementDepth,
    InvalidPatternError,
    LearningIntent,
    Message,
    MessageRole,
    OrchestrationPattern,
    PatternType,
    ProgressionPattern,
    SentimentType,
    ToolExecutionResult,
    TopicContinuity,
    normalize_level,
)

# Configuration
from .config import DispatchConfig

# Capability tables
from .capabilities import (
    CAPABILITY_MATRIX,
    DEFAULT_CAPABILITY,
    DEPTH_PROGRESSIONS,
    SYSTEM_FALLBACK_TOOL,
    select_capability,
)

# Completion service
from .api_client import (
    AnthropicClient,
    APIResponse,
    BaseLLMClient,
    MultiProviderClient,
    OpenAIClient,
)

# Classification and routing
from .state_classifier import (
    StateClassifier,
    is_stuck,
    needs_emotional_support,
    needs_tool_switch,
)
from .intent_router import IntentRouter, RouteResult
from .query_optimizer import DispatchRequest, OptimizationDecision, QueryOptimizer

# Patterns and execution
from .pattern_selector import PatternSelector
from .pattern_executor import PatternExecution, PatternExecutor
from .tool_executor import (
    Capability,
    CapabilityInput,
    CapabilityRegistry,
    FunctionCapability,
    ToolExecutor,
)
from .predictor import ToolPredictor

# Sessions and context
from .session import InMemorySessionStore, SessionContext, SessionRegistry, SessionStore
from .context_window import ContextStrategy, ContextWindow

# Engine
from .orchestration_logger import DispatchLogger, LoggerConfig
from .dispatch import DispatchEngine, DispatchResponse

__all__ = [
    # Types
    "CapabilityNotFoundError",
    "ClassifierError",
    "ConversationState",
    "DispatchError",
    "EngagementDepth",
    "InvalidPatternError",
    "LearningIntent",
    "Message",
    "MessageRole",
    "OrchestrationPattern",
    "PatternType",
    "ProgressionPattern",
    "SentimentType",
    "ToolExecutionResult",
    "TopicContinuity",
    "normalize_level",
    # Config
    "DispatchConfig",
    # Capabilities
    "CAPABILITY_MATRIX",
    "DEFAULT_CAPABILITY",
    "DEPTH_PROGRESSIONS",
    "SYSTEM_FALLBACK_TOOL",
    "select_capability",
    # Completion service
    "APIResponse",
    "AnthropicClient",
    "BaseLLMClient",
    "MultiProviderClient",
    "OpenAIClient",
    # Classification and routing
    "DispatchRequest",
    "IntentRouter",
    "OptimizationDecision",
    "QueryOptimizer",
    "RouteResult",
    "StateClassifier",
    "is_stuck",
    "needs_emotional_support",
    "needs_tool_switch",
    # Execution
    "Capability",
    "CapabilityInput",
    "CapabilityRegistry",
    "FunctionCapability",
    "PatternExecution",
    "PatternExecutor",
    "PatternSelector",
    "ToolExecutor",
    "ToolPredictor",
    # Sessions
    "ContextStrategy",
    "ContextWindow",
    "InMemorySessionStore",
    "SessionContext",
    "SessionRegistry",
    "SessionStore",
    # Engine
    "DispatchEngine",
    "DispatchLogger",
    "DispatchResponse",
    "LoggerConfig",
]
