"""Scoring Algorithm

Pure, deterministic scoring of one directive against one task context.

Formula:
    total = authority × w_authority
          + when_to_apply × w_when_to_apply
          + layer_match × w_layer_match
          + topic_overlap × w_topic_overlap
          + severity_boost × w_severity_boost
          + semantic_similarity × w_semantic_similarity

Every sub-score lies in [0, 1] except severity_boost, which is the configured
per-severity multiplier (3.0 / 2.0 / 1.0 by default). Weights and multipliers
come from RankingConfig so each can be tuned and tested independently.

Semantic similarity is a lexical overlap heuristic over the context keywords,
good enough for tie-breaking and nothing more.
"""

import re
from typing import Iterable

from directive_engine.config import RankingConfig
from directive_engine.models import (
    ArchitecturalLayer,
    Directive,
    DirectiveSeverity,
    ScoreBreakdown,
    TaskContext,
)
from directive_engine.vocabulary import VocabularyRegistry, get_default_registry

WILDCARD_LAYER_SCORE = 0.5
SEMANTIC_MIN_WORD_LENGTH = 4
SCORE_PRECISION = 2

# Condition phrases that scope a directive to every context
_UNIVERSAL_CONDITIONS = {"*", "all", "any", "always", "all contexts", "every task"}
_WORD_SPLIT = re.compile(r"[^\w]+")


def _lower_set(values: Iterable[str]) -> set[str]:
    return {v.lower() for v in values if v}


def _words(text: str) -> set[str]:
    return {w for w in _WORD_SPLIT.split(text.lower()) if w}


def authority_score(directive: Directive, context: TaskContext) -> float:
    """1.0 when a directive topic contains, or is contained by, a context topic."""
    directive_topics = _lower_set(directive.topics) - {"*"}
    context_topics = _lower_set(context.topics)
    if not directive_topics or not context_topics:
        return 0.0
    for topic in context_topics:
        for own in directive_topics:
            if topic in own or own in topic:
                return 1.0
    return 0.0


def is_wildcard_scoped(directive: Directive) -> bool:
    """Directive declares itself applicable to every context."""
    if "*" in directive.topics:
        return True
    if directive.layer is ArchitecturalLayer.WILDCARD:
        return True
    return any(c.strip().lower() in _UNIVERSAL_CONDITIONS for c in directive.when_to_apply)


def layer_match_score(
    directive: Directive,
    context: TaskContext,
    registry: VocabularyRegistry,
) -> float:
    """
    Score how well a directive fits the detected layer.

    Returns:
        1.0 when the directive's declared layer or its topics/text carry
        indicator terms of the detected layer, 0.5 when the directive is
        wildcard-scoped, 0.0 otherwise
    """
    if context.has_specific_layer:
        if directive.layer is context.layer:
            return 1.0
        indicators = registry.layer_indicators.get(context.layer, ())
        vocabulary = _lower_set(directive.topics) | _words(directive.text)
        if any(term in vocabulary for term in indicators):
            return 1.0
    if is_wildcard_scoped(directive):
        return WILDCARD_LAYER_SCORE
    return 0.0


def topic_overlap_score(directive: Directive, context: TaskContext) -> float:
    """Share of the directive's topics that the context also carries."""
    directive_topics = _lower_set(directive.topics)
    if not directive_topics:
        return 0.0
    shared = directive_topics & _lower_set(context.topics)
    return len(shared) / len(directive_topics)


def severity_boost(severity: DirectiveSeverity, config: RankingConfig) -> float:
    return float(config.severity_multipliers[severity])


def semantic_similarity(directive: Directive, task_text: str) -> float:
    """
    Fraction of qualifying task words that literally appear in the directive.

    Qualifying words are longer than three characters; matching is
    case-insensitive against the directive text and rationale.
    """
    if not task_text or not task_text.strip():
        return 0.0
    task_words = {w for w in _words(task_text) if len(w) >= SEMANTIC_MIN_WORD_LENGTH}
    if not task_words:
        return 0.0
    haystack = f"{directive.text} {directive.rationale or ''}".lower()
    hits = sum(1 for word in task_words if word in haystack)
    return hits / len(task_words)


def when_to_apply_score(directive: Directive, context: TaskContext) -> float:
    """Fraction of the directive's conditions mentioning at least one context keyword."""
    if not directive.when_to_apply:
        return 0.0
    keywords = _lower_set(context.keywords)
    if not keywords:
        return 0.0
    matched = 0
    for condition in directive.when_to_apply:
        lowered = condition.lower()
        if any(keyword in lowered for keyword in keywords):
            matched += 1
    return matched / len(directive.when_to_apply)


def score_directive(
    directive: Directive,
    context: TaskContext,
    config: RankingConfig,
    registry: VocabularyRegistry | None = None,
) -> tuple[float, ScoreBreakdown]:
    """
    Score a directive against a task context.

    Args:
        directive: Candidate directive
        context: Detected task context
        config: Ranking configuration supplying weights and multipliers
        registry: Vocabulary registry for layer indicators (default registry if None)

    Returns:
        Tuple of (total score rounded to 2 decimals, unweighted breakdown)
    """
    registry = registry or get_default_registry()
    breakdown = ScoreBreakdown(
        authority=authority_score(directive, context),
        layer_match=layer_match_score(directive, context, registry),
        topic_overlap=topic_overlap_score(directive, context),
        severity_boost=severity_boost(directive.severity, config),
        semantic_similarity=semantic_similarity(directive, " ".join(context.keywords)),
        when_to_apply=when_to_apply_score(directive, context),
    )
    return weighted_total(breakdown, config), breakdown


def weighted_total(breakdown: ScoreBreakdown, config: RankingConfig) -> float:
    """Combine sub-scores with the configured weights."""
    weights = config.weights
    total = (
        breakdown.authority * weights.authority
        + breakdown.when_to_apply * weights.when_to_apply
        + breakdown.layer_match * weights.layer_match
        + breakdown.topic_overlap * weights.topic_overlap
        + breakdown.severity_boost * weights.severity_boost
        + breakdown.semantic_similarity * weights.semantic_similarity
    )
    return round(max(total, 0.0), SCORE_PRECISION)
