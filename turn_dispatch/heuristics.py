"""
Keyword heuristics for intent, depth and retrieval need.

Used wherever a decision must be made without the completion service:
the router's fallback path, the classifier's no-history default, and
multi-intent detection for parallel dispatch. Must stay fast, so these
are regexes and substring checks only.
"""

import re

from .types import EngagementDepth, LearningIntent

_I = LearningIntent

# First match wins, in this order
FALLBACK_INTENT_PATTERNS: list[tuple[LearningIntent, str]] = [
    (_I.CREATE, r"\b(write|writing|create|creating|draft|drafting)\b"),
    (_I.SOLVE, r"\b(solve|solving|fix|fixing|debug|debugging)\b"),
    (_I.ORGANIZE, r"\b(plan|planning|organi[sz]e|schedule|scheduling)\b"),
    (_I.EVALUATE, r"\b(evaluate|decide|deciding|choose|choosing)\b"),
    (_I.EXPLORE, r"\b(explore|exploring|discover|investigate)\b"),
    (_I.REGULATE, r"\b(anxious|stressed|focus|focusing)\b"),
    (_I.INTERACT, r"\b(discuss|debate|talk|talking)\b"),
]

SURFACE_PATTERNS = [
    r"\b(quick|quickly|brief|briefly|simple)\b",
    r"^\s*(what|who|when|where) (is|are|was|were) [\w\s'-]{1,40}\??\s*$",
    r"^\s*define\b",
    r"^\s*(just tell me|tl;?dr)\b",
]

DEEP_PATTERNS = [
    r"\b(deep|deeply|detail|detailed|comprehensive|thorough)\b",
    r"\b(in depth|elaborate|tell me more)\b",
]

# Intent -> phrases; a query naming phrases from two or more intents is multi-intent
MULTI_INTENT_KEYWORDS: dict[LearningIntent, tuple[str, ...]] = {
    _I.UNDERSTAND: ("explain", "what is", "how does", "why", "understand"),
    _I.CREATE: ("write", "create", "build", "make", "design", "draft"),
    _I.SOLVE: ("solve", "fix", "debug", "help me with", "stuck on"),
    _I.EVALUATE: ("evaluate", "review", "assess", "decide", "choose", "compare"),
    _I.ORGANIZE: ("plan", "organize", "schedule", "structure", "manage"),
    _I.EXPLORE: ("explore", "discover", "investigate", "research", "find out"),
    _I.INTERACT: ("discuss", "debate", "collaborate", "talk about"),
}

RETRIEVAL_INDICATORS = (
    "according to",
    "source",
    "citation",
    "paper",
    "study",
    "evidence",
    "who wrote",
    "when was",
    "definition from",
    "dataset",
    "reference",
)

_MULTI_INTENT_REGEXES = {
    intent: re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b")
    for intent, keywords in MULTI_INTENT_KEYWORDS.items()
}


def keyword_intent(query: str) -> LearningIntent:
    """Best single intent for a query, defaulting to understand."""
    lowered = query.lower()
    for intent, pattern in FALLBACK_INTENT_PATTERNS:
        if re.search(pattern, lowered):
            return intent
    return _I.UNDERSTAND


def keyword_depth(query: str) -> EngagementDepth:
    """Depth implied by wording, defaulting to guided."""
    lowered = query.lower()
    if any(re.search(p, lowered) for p in SURFACE_PATTERNS):
        return EngagementDepth.SURFACE
    if any(re.search(p, lowered) for p in DEEP_PATTERNS):
        return EngagementDepth.DEEP
    return EngagementDepth.GUIDED


def detect_intents(query: str) -> list[LearningIntent]:
    """
    Every intent whose keywords appear in the query, in enum order.

    Returns [understand] when nothing matches.
    """
    lowered = query.lower()
    found = [intent for intent, rx in _MULTI_INTENT_REGEXES.items() if rx.search(lowered)]
    return found or [_I.UNDERSTAND]


def estimate_retrieval_need(
    query: str,
    intent: LearningIntent,
    depth: EngagementDepth,
) -> bool:
    """Whether answering likely needs external sources."""
    lowered = (query or "").lower()
    if any(k in lowered for k in RETRIEVAL_INDICATORS):
        return True
    if depth == EngagementDepth.DEEP:
        return True
    if intent in (_I.EVALUATE, _I.EXPLORE, _I.CREATE):
        return depth != EngagementDepth.SURFACE
    return False


__all__ = [
    "FALLBACK_INTENT_PATTERNS",
    "MULTI_INTENT_KEYWORDS",
    "RETRIEVAL_INDICATORS",
    "detect_intents",
    "estimate_retrieval_need",
    "keyword_depth",
    "keyword_intent",
]
