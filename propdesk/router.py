"""Heuristic routing of a legal question into a knowledge search strategy.

Defines:
- Intent: Literal type alias of the supported search strategies.
- RouteDecision: Dataclass carrying the chosen intent, its target text and a rationale.
- RULES: Ordered (predicate, intent) pairs; the first predicate that matches wins.
- classify_query: Pure classifier producing a RouteDecision.

Precedence is part of the contract: an exact quoted phrase always beats a
statute section number in the same question, which beats lookup phrasing.
"""
import re
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional, Tuple

Intent = Literal["phrase_lookup", "section_lookup", "keyword", "semantic"]


@dataclass(frozen=True)
class RouteDecision:
    """Routing decision for one question.

    Attributes:
        intent: One of 'phrase_lookup', 'section_lookup', 'keyword' or 'semantic'.
        target: Quoted phrase or section number to search for, when the intent has one.
        reason: Short human-readable rationale for the chosen intent.
    """
    intent: Intent
    target: Optional[str] = None
    reason: str = ""


QUOTED_PATTERNS = [
    re.compile(r'"([^"]+)"'),
    re.compile(r"“([^”]+)”"),  # curly double quotes
    re.compile(r"‘([^’]+)’"),  # curly single quotes
    re.compile(r"«([^»]+)»"),  # guillemets
    # Straight single quotes only at word boundaries so apostrophes don't pair up
    re.compile(r"(?:^|(?<=\s))'([^']+)'(?=$|[\s?.!,;:])"),
]

SECTION_PATTERN = re.compile(r"(?:\bORS\s*(?:chapter\s*)?)?(?<![\d.])(\d{2,3}\.\d{3})(?!\d)", re.IGNORECASE)

LOOKUP_PATTERNS = [
    re.compile(r"^\s*where\b", re.IGNORECASE),
    re.compile(r"\bwhere\s+(?:in|does|do|is|are|can\s+i\s+find)\b", re.IGNORECASE),
    re.compile(r"\bwhich\s+(?:section|statute|law|rule|part|subsection|chapter)s?\b", re.IGNORECASE),
    re.compile(r"\bwhat\s+(?:section|statute)s?\b", re.IGNORECASE),
    re.compile(r"\bfind\b", re.IGNORECASE),
    re.compile(r"\blook\s*up\b", re.IGNORECASE),
    re.compile(r"\bsearch\s+(?:for|the)\b", re.IGNORECASE),
    re.compile(r"\b(?:cite|citation\s+for)\b", re.IGNORECASE),
]


def _quoted_phrase(q: str) -> Optional[str]:
    for pattern in QUOTED_PATTERNS:
        for m in pattern.finditer(q):
            phrase = m.group(1).strip()
            if phrase:
                return phrase
    return None


def _section_number(q: str) -> Optional[str]:
    m = SECTION_PATTERN.search(q)
    return m.group(1) if m else None


def _lookup_phrasing(q: str) -> Optional[str]:
    # Empty target: keyword searches use the whole question
    return "" if any(p.search(q) for p in LOOKUP_PATTERNS) else None


RULES: List[Tuple[Callable[[str], Optional[str]], Intent, str]] = [
    (_quoted_phrase, "phrase_lookup", "quoted phrase present"),
    (_section_number, "section_lookup", "statute section number present"),
    (_lookup_phrasing, "keyword", "lookup phrasing"),
]


def classify_query(q: str) -> RouteDecision:
    """Classify a staff question into a knowledge search strategy.

    Args:
        q: The raw question string.

    Returns:
        RouteDecision: Selected intent, the phrase or section it targets (if any),
        and the rationale. Empty or non-string input falls through to 'semantic'.
    """
    if not isinstance(q, str) or not q.strip():
        return RouteDecision(intent="semantic", reason="empty query")

    for predicate, intent, reason in RULES:
        target = predicate(q)
        if target is not None:
            return RouteDecision(intent=intent, target=target or None, reason=reason)

    return RouteDecision(intent="semantic", reason="default")
