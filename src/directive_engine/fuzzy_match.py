"""Fuzzy technology-name matching.

Pure functions over explicit inputs: edit distance, normalized similarity,
and resolution of text tokens against a technology registry. Exact name
matches beat alias matches, which beat fuzzy matches; a fuzzy candidate is
only accepted above FUZZY_THRESHOLD and never replaces a stronger match for
the same technology.

Fuzzy matching only compares tokens and names of at least
MIN_FUZZY_LENGTH characters that share their first letter, and skips
common English words one edit away from a technology name ("string" and
"spring", "reach" and "react").
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from directive_engine.vocabulary import TechnologyEntry

FUZZY_THRESHOLD = 0.75
MIN_FUZZY_LENGTH = 5
EXACT_CONFIDENCE = 1.0
ALIAS_CONFIDENCE = 0.95
FUZZY_CONFIDENCE_FACTOR = 0.8

# Ordinary words that sit within the fuzzy threshold of a registry name
FUZZY_EXCLUDED_WORDS = frozenset({
    "string", "strings", "sprint", "sprints", "reach", "reacts", "reached",
    "rains", "tails", "nested", "nests",
})

_TOKEN_PATTERN = re.compile(r"[a-z0-9][a-z0-9.#+\-]*")


class MatchType(str, Enum):
    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"


@dataclass(frozen=True)
class TechnologyMatch:
    """A technology recognized in text."""

    name: str
    category: str
    confidence: float
    match_type: MatchType
    token: str


def levenshtein_distance(a: str, b: str) -> int:
    """
    Compute the Levenshtein edit distance between two strings.

    Uses a two-row dynamic programming table so memory is O(len(b)).
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """
    Normalized similarity in [0, 1]: 1 - distance / length of the longer string.

    Two empty strings are identical (1.0).
    """
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein_distance(a, b)) / longer


def tokenize(text: str) -> list[str]:
    """Lowercase tokens that keep technology punctuation (next.js, c#, ci/cd parts)."""
    return [token.rstrip(".-") for token in _TOKEN_PATTERN.findall(text.lower())]


def _fuzzy_candidate(token: str, name: str) -> bool:
    return (
        len(token) >= MIN_FUZZY_LENGTH
        and len(name) >= MIN_FUZZY_LENGTH
        and token[0] == name[0]
        and token not in FUZZY_EXCLUDED_WORDS
    )


def _stronger(candidate: TechnologyMatch, existing: TechnologyMatch | None) -> bool:
    if existing is None:
        return True
    return candidate.confidence > existing.confidence


def match_technologies(
    text: str, registry: Iterable[TechnologyEntry]
) -> list[TechnologyMatch]:
    """
    Find registry technologies mentioned in text.

    Args:
        text: Free text to scan
        registry: Technology entries to match against

    Returns:
        One match per technology, strongest first (ties by name)
    """
    lowered = text.lower()
    tokens = [t for t in tokenize(text) if len(t) >= 2]
    best: dict[str, TechnologyMatch] = {}

    for entry in registry:
        name = entry.name.lower()
        aliases = tuple(a.lower() for a in entry.aliases)

        for token in tokens:
            if token == name:
                match = TechnologyMatch(entry.name, entry.category, EXACT_CONFIDENCE, MatchType.EXACT, token)
            elif token in aliases:
                match = TechnologyMatch(entry.name, entry.category, ALIAS_CONFIDENCE, MatchType.ALIAS, token)
            elif _fuzzy_candidate(token, name):
                score = similarity(token, name)
                if score <= FUZZY_THRESHOLD:
                    continue
                match = TechnologyMatch(
                    entry.name,
                    entry.category,
                    round(score * FUZZY_CONFIDENCE_FACTOR, 4),
                    MatchType.FUZZY,
                    token,
                )
            else:
                continue
            if _stronger(match, best.get(entry.name)):
                best[entry.name] = match

        # Multi-word names/aliases never appear as a single token
        for phrase in (name,) + aliases:
            if " " in phrase and phrase in lowered:
                confidence = EXACT_CONFIDENCE if phrase == name else ALIAS_CONFIDENCE
                match_type = MatchType.EXACT if phrase == name else MatchType.ALIAS
                match = TechnologyMatch(entry.name, entry.category, confidence, match_type, phrase)
                if _stronger(match, best.get(entry.name)):
                    best[entry.name] = match

    return sorted(best.values(), key=lambda m: (-m.confidence, m.name))
