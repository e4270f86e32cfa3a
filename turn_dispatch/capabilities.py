"""
Capability lookup tables.

Maps (intent, depth) to the capability best suited to answer, and
(intent, from_depth, to_depth) to the ordered tools used when a
conversation moves between depths.
"""

from __future__ import annotations

from .types import EngagementDepth, LearningIntent

_I = LearningIntent
_D = EngagementDepth

DEFAULT_CAPABILITY = "socratic_tool"
DIRECT_ANSWER_CAPABILITY = "quick_answer"
PRACTICAL_GUIDE_CAPABILITY = "practical_guide"
SYSTEM_FALLBACK_TOOL = "system_fallback"

# Combined explain-and-produce handlers
UNDERSTAND_CREATE_CAPABILITY = "practical_guide"
CREATE_UNDERSTAND_CAPABILITIES = ("writing_coach", "practical_guide")

# intent -> depth -> capability
CAPABILITY_MATRIX: dict[LearningIntent, dict[EngagementDepth, str]] = {
    _I.UNDERSTAND: {
        _D.SURFACE: "quick_answer",
        _D.GUIDED: "practical_guide",
        _D.DEEP: "socratic_tool",
    },
    _I.CREATE: {
        _D.SURFACE: "email_coach",
        _D.GUIDED: "writing_coach",
        _D.DEEP: "writing_coach",
    },
    _I.SOLVE: {
        _D.SURFACE: "problem_solver",
        _D.GUIDED: "problem_solver",
        _D.DEEP: "problem_solver",
    },
    _I.EVALUATE: {
        _D.SURFACE: "evaluator_tool",
        _D.GUIDED: "evaluator_tool",
        _D.DEEP: "reflection_tool",
    },
    _I.ORGANIZE: {
        _D.SURFACE: "focus_session",
        _D.GUIDED: "plan_manager",
        _D.DEEP: "plan_manager",
    },
    _I.REGULATE: {
        _D.SURFACE: "reflection_tool",
        _D.GUIDED: "reflection_tool",
        _D.DEEP: "growth_compass_tracker",
    },
    _I.EXPLORE: {
        _D.SURFACE: "retrieval_aggregator",
        _D.GUIDED: "concept_mapper",
        _D.DEEP: "genealogy_tool",
    },
    _I.INTERACT: {
        _D.SURFACE: "quick_answer",
        _D.GUIDED: "office_hours_coach",
        _D.DEEP: "office_hours_coach",
    },
}

# (from_depth, to_depth) -> intent -> ordered tools
DEPTH_PROGRESSIONS: dict[
    tuple[EngagementDepth, EngagementDepth], dict[LearningIntent, tuple[str, ...]]
] = {
    (_D.SURFACE, _D.GUIDED): {
        _I.UNDERSTAND: ("quick_answer", "socratic_tool"),
        _I.CREATE: ("writing_assistant", "project_ideation_tool"),
        _I.SOLVE: ("problem_solver", "socratic_tool"),
        _I.EVALUATE: ("evaluator_tool", "review_tool"),
    },
    (_D.GUIDED, _D.DEEP): {
        _I.UNDERSTAND: ("socratic_tool", "concept_mapper"),
        _I.CREATE: ("project_ideation_tool", "writing_assistant"),
        _I.SOLVE: ("problem_solver", "breakthrough_tool"),
        _I.EVALUATE: ("evaluator_tool", "critical_analysis_tool"),
    },
    (_D.SURFACE, _D.DEEP): {
        _I.UNDERSTAND: ("quick_answer", "socratic_tool", "concept_mapper"),
        _I.CREATE: ("writing_assistant", "project_ideation_tool", "writing_assistant"),
        _I.SOLVE: ("problem_solver", "socratic_tool", "breakthrough_tool"),
        _I.EVALUATE: ("evaluator_tool", "review_tool", "critical_analysis_tool"),
    },
}

# Capabilities that work from their own knowledge; retrieval is never needed
NO_RETRIEVAL_CAPABILITIES: frozenset[str] = frozenset(
    {
        "flashcard_generator",
        "plan_manager",
        "focus_session",
        "reflection_tool",
        "growth_compass_tracker",
        "quiz_tool",
    }
)


def select_capability(
    intent: LearningIntent | str,
    depth: EngagementDepth | str,
) -> str:
    """Look up the capability for an (intent, depth) pair."""
    try:
        intent = LearningIntent(intent)
        depth = EngagementDepth(depth)
    except ValueError:
        return DEFAULT_CAPABILITY
    return CAPABILITY_MATRIX.get(intent, {}).get(depth, DEFAULT_CAPABILITY)


def progression_tools(
    intent: LearningIntent,
    from_depth: EngagementDepth,
    to_depth: EngagementDepth,
    default: tuple[str, ...] | None = None,
) -> tuple[str, ...]:
    """
    Ordered tools for moving from one depth to another.

    Falls back to default, or the single default capability, when no
    progression is defined (including for moves toward the surface).
    """
    by_intent = DEPTH_PROGRESSIONS.get((from_depth, to_depth), {})
    if intent in by_intent:
        return by_intent[intent]
    return default if default else (DEFAULT_CAPABILITY,)


def all_capability_names() -> set[str]:
    """Every capability name any table can produce."""
    names = {DEFAULT_CAPABILITY, DIRECT_ANSWER_CAPABILITY, PRACTICAL_GUIDE_CAPABILITY}
    names.update(CREATE_UNDERSTAND_CAPABILITIES)
    for by_depth in CAPABILITY_MATRIX.values():
        names.update(by_depth.values())
    for by_intent in DEPTH_PROGRESSIONS.values():
        for tools in by_intent.values():
            names.update(tools)
    return names


__all__ = [
    "CAPABILITY_MATRIX",
    "CREATE_UNDERSTAND_CAPABILITIES",
    "DEFAULT_CAPABILITY",
    "DEPTH_PROGRESSIONS",
    "DIRECT_ANSWER_CAPABILITY",
    "NO_RETRIEVAL_CAPABILITIES",
    "PRACTICAL_GUIDE_CAPABILITY",
    "SYSTEM_FALLBACK_TOOL",
    "UNDERSTAND_CREATE_CAPABILITY",
    "all_capability_names",
    "progression_tools",
    "select_capability",
]
