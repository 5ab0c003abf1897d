"""Context Detection

Infers a TaskContext (architectural layer, topics, keywords, technologies,
confidence) from free task text using the vocabulary registry.

Pipeline:
    text → normalize → layer detection ─┐
                     → topic/technology extraction ─┴→ TaskContext

Layer detection counts keyword hits per layer (multi-word keywords weigh
their word count), adds contextual boosters for action verbs, and picks the
layer with the strictly highest score. Ties and zero matches yield the
wildcard layer.

Topic extraction accumulates a score per domain from keyword hits (weight =
words in the phrase), technology hits (weight 2) and synonym hits (weight 1,
reported under the canonical keyword). A domain is reported once its score
reaches TOPIC_THRESHOLD. Technology names are also resolved through the fuzzy
registry so misspellings and aliases still count.

Detection is lexical only, so the combined confidence never exceeds
MAX_HEURISTIC_CONFIDENCE.
"""

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional

from directive_engine.fuzzy_match import match_technologies
from directive_engine.models import ArchitecturalLayer, TaskContext
from directive_engine.vocabulary import VocabularyRegistry, get_default_registry

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 10_000
FALLBACK_CONFIDENCE = 0.1
MIN_LAYER_SHARE = 0.3
MAX_LAYER_CONFIDENCE = 0.95
MAX_HEURISTIC_CONFIDENCE = 0.9
LAYER_CONFIDENCE_WEIGHT = 0.6
TOPIC_CONFIDENCE_WEIGHT = 0.4
TOPIC_THRESHOLD = 2
TECHNOLOGY_WEIGHT = 2
SYNONYM_WEIGHT = 1
MAX_INDICATORS = 5

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "is", "are", "was", "were", "be", "been", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "may", "might", "must", "can", "this", "that", "these", "those",
    "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us", "them",
}

# Captures library names from install commands, imports and "Name 18" style versions
TECHNOLOGY_PATTERNS = [
    re.compile(r"\b([a-z][\w.]*)\s+v?\d+(?:\.\d+)*\b", re.IGNORECASE),
    re.compile(r"\bnpm\s+(?:install|i)\s+([\w@/.-]+)", re.IGNORECASE),
    re.compile(r"\byarn\s+add\s+([\w@/.-]+)", re.IGNORECASE),
    re.compile(r"\bpip\s+install\s+([\w.-]+)", re.IGNORECASE),
    re.compile(r"(?:import|from|require\()\s*['\"]([^'\"]+)['\"]", re.IGNORECASE),
    re.compile(r"(@[\w-]+/[\w-]+)"),
]

TECHNICAL_KEYWORD_PATTERNS = [
    re.compile(r"^(class|function|method|variable|constant|interface|type|enum)$"),
    re.compile(r"^(async|await|promise|callback|event|listener|handler|service|util|helper)$"),
    re.compile(r"^(array|list|map|set|queue|stack|tree|graph|hash)$"),
    re.compile(r"^(api|ui|ux|db|orm|mvc|spa|pwa|seo|cdn|dns|ssl|http|tcp|udp)$"),
]

# "Name 18" captures that are really prose ("step 2", "version 3")
_VERSION_NOISE = {"step", "version", "phase", "part", "line", "page", "item", "level", "top"}


# ============================================================================
# Result types
# ============================================================================


@dataclass(frozen=True)
class LayerDetectionResult:
    layer: ArchitecturalLayer
    confidence: float
    indicators: tuple[str, ...] = ()
    scores: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class TopicExtractionResult:
    topics: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    technologies: tuple[str, ...] = ()
    confidence: float = 0.0
    domain_scores: dict[str, int] = field(default_factory=dict)


# ============================================================================
# Text helpers
# ============================================================================


@lru_cache(maxsize=4096)
def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(rf"(?<![\w]){re.escape(keyword)}(?![\w])")


def contains_keyword(text: str, keyword: str) -> bool:
    """
    Check whether normalized text mentions a keyword.

    Multi-word keywords match as a phrase; single words must stand alone
    (no partial-word hits such as "ui" inside "build").
    """
    keyword = keyword.lower()
    if " " in keyword:
        return keyword in text
    return _keyword_pattern(keyword).search(text) is not None


def meaningful_words(text: str) -> list[str]:
    """Words longer than two characters that are not stop words."""
    return [
        word
        for word in re.split(r"\W+", text.lower())
        if len(word) > 2 and word not in STOP_WORDS
    ]


# ============================================================================
# Layer detection
# ============================================================================


def detect_layer(text: str, registry: VocabularyRegistry) -> LayerDetectionResult:
    """
    Detect the architectural layer a task text targets.

    Args:
        text: Task text (any case)
        registry: Vocabulary registry supplying layer keywords and boosters

    Returns:
        LayerDetectionResult; wildcard with FALLBACK_CONFIDENCE when the
        evidence is absent, tied, or too thin
    """
    normalized = text.lower()
    scores: dict[ArchitecturalLayer, int] = {layer: 0 for layer in registry.layer_keywords}
    indicators: dict[ArchitecturalLayer, list[str]] = {layer: [] for layer in registry.layer_keywords}

    for layer, keywords in registry.layer_keywords.items():
        for keyword in keywords:
            if contains_keyword(normalized, keyword):
                scores[layer] += max(1, len(keyword.split()))
                indicators[layer].append(keyword)

    for booster in registry.boosters:
        if any(pattern in normalized for pattern in booster.patterns):
            scores[booster.layer] = scores.get(booster.layer, 0) + booster.boost
            indicators.setdefault(booster.layer, []).append(booster.indicator)

    raw_scores = {layer.value: score for layer, score in scores.items()}
    total = sum(scores.values())
    best_score = max(scores.values(), default=0)
    leaders = [layer for layer, score in scores.items() if score == best_score]

    if best_score == 0 or len(leaders) > 1:
        return LayerDetectionResult(
            ArchitecturalLayer.WILDCARD, FALLBACK_CONFIDENCE, scores=raw_scores
        )

    share = best_score / total
    if share < MIN_LAYER_SHARE:
        return LayerDetectionResult(
            ArchitecturalLayer.WILDCARD, FALLBACK_CONFIDENCE, scores=raw_scores
        )

    best_layer = leaders[0]
    return LayerDetectionResult(
        layer=best_layer,
        confidence=min(share, MAX_LAYER_CONFIDENCE),
        indicators=tuple(indicators[best_layer][:MAX_INDICATORS]),
        scores=raw_scores,
    )


# ============================================================================
# Topic and technology extraction
# ============================================================================


def _pattern_technologies(text: str) -> set[str]:
    found = set()
    for pattern in TECHNOLOGY_PATTERNS:
        for match in pattern.finditer(text):
            tech = match.group(1).lower().strip()
            if len(tech) > 2 and tech not in STOP_WORDS and tech not in _VERSION_NOISE:
                found.add(tech)
    return found


def _technical_keywords(words: list[str]) -> set[str]:
    return {
        word
        for word in words
        if any(pattern.match(word) for pattern in TECHNICAL_KEYWORD_PATTERNS)
    }


def extract_topics(text: str, registry: VocabularyRegistry) -> TopicExtractionResult:
    """
    Extract topics, keywords and technologies from task text.

    Args:
        text: Task text (any case)
        registry: Vocabulary registry supplying domains and technology registry

    Returns:
        TopicExtractionResult with sorted, de-duplicated lists
    """
    normalized = text.lower()
    words = meaningful_words(normalized)

    topics: set[str] = set()
    keywords: set[str] = set()
    technologies: set[str] = set()
    domain_scores: dict[str, int] = {}
    counted_techs: dict[str, set[str]] = {}

    for name, vocabulary in registry.domains.items():
        score = 0
        seen = counted_techs.setdefault(name, set())

        for keyword in vocabulary.keywords:
            if contains_keyword(normalized, keyword):
                score += max(1, len(keyword.split()))
                keywords.add(keyword)

        for tech in vocabulary.technologies:
            if contains_keyword(normalized, tech):
                score += TECHNOLOGY_WEIGHT
                seen.add(tech)
                technologies.add(tech)
                keywords.add(tech)

        for canonical, synonyms in vocabulary.synonyms.items():
            for synonym in synonyms:
                if contains_keyword(normalized, synonym):
                    score += SYNONYM_WEIGHT
                    keywords.add(canonical)

        domain_scores[name] = score

    # Registry hits (aliases, misspellings) feed the owning domain once
    for match in match_technologies(text, registry.technologies):
        tech = match.name.lower()
        technologies.add(tech)
        keywords.add(tech)
        domain = match.category
        if domain in domain_scores:
            seen = counted_techs[domain]
            if tech not in seen and match.token not in seen:
                seen.add(tech)
                domain_scores[domain] += TECHNOLOGY_WEIGHT

    for name, score in domain_scores.items():
        if score >= TOPIC_THRESHOLD:
            topics.add(name)

    for tech in _pattern_technologies(text):
        technologies.add(tech)
        keywords.add(tech)

    keywords.update(_technical_keywords(words))

    text_complexity = min(len(words) / 10, 5)
    confidence = min((len(topics) + len(technologies) + text_complexity) / 10, MAX_HEURISTIC_CONFIDENCE)

    return TopicExtractionResult(
        topics=tuple(sorted(topics)),
        keywords=tuple(sorted(keywords)),
        technologies=tuple(sorted(technologies)),
        confidence=round(confidence, 4),
        domain_scores=domain_scores,
    )


# ============================================================================
# Detector
# ============================================================================


@dataclass(frozen=True)
class DetectionReport:
    """Full detection output, kept for debugging and diagnostics."""

    context: TaskContext
    layer_result: Optional[LayerDetectionResult]
    topic_result: Optional[TopicExtractionResult]
    valid_input: bool


class ContextDetector:
    """
    Rule-based context detector.

    Never raises for string input: empty or oversized text yields the
    low-confidence wildcard context instead.

    Attributes:
        registry: Vocabulary registry used for all lookups
        max_text_length: Upper bound on accepted text length
    """

    def __init__(
        self,
        registry: Optional[VocabularyRegistry] = None,
        max_text_length: int = MAX_TEXT_LENGTH,
    ):
        self.registry = registry or get_default_registry()
        self.max_text_length = max_text_length

    def detect(self, text: str) -> TaskContext:
        """Infer a TaskContext from task text."""
        return self.analyze(text).context

    def analyze(self, text: Any) -> DetectionReport:
        """
        Run detection and keep the intermediate layer/topic results.

        Args:
            text: Task text; non-string, blank or oversized input degrades to wildcard

        Returns:
            DetectionReport with the final context and intermediate results
        """
        if not isinstance(text, str) or not text.strip():
            return DetectionReport(TaskContext.wildcard(FALLBACK_CONFIDENCE), None, None, False)
        if len(text) > self.max_text_length:
            logger.warning(
                f"Task text too long for detection ({len(text)} > {self.max_text_length} chars)"
            )
            return DetectionReport(TaskContext.wildcard(FALLBACK_CONFIDENCE), None, None, False)

        layer_result = detect_layer(text, self.registry)
        topic_result = extract_topics(text, self.registry)

        combined = (
            layer_result.confidence * LAYER_CONFIDENCE_WEIGHT
            + topic_result.confidence * TOPIC_CONFIDENCE_WEIGHT
        )
        context = TaskContext(
            layer=layer_result.layer,
            topics=topic_result.topics,
            keywords=topic_result.keywords,
            technologies=topic_result.technologies,
            confidence=round(max(0.0, min(combined, MAX_HEURISTIC_CONFIDENCE)), 4),
        )
        logger.debug(
            f"Detected layer={context.layer.value} topics={list(context.topics)} "
            f"confidence={context.confidence}"
        )
        return DetectionReport(context, layer_result, topic_result, True)

    def detection_stats(self) -> dict[str, Any]:
        """Summarize the vocabulary this detector works from."""
        return {
            "vocabulary_version": self.registry.version,
            "layers": {
                layer.value: len(keywords)
                for layer, keywords in self.registry.layer_keywords.items()
            },
            "domains": sorted(self.registry.domains),
            "technologies": len(self.registry.technologies),
            "max_text_length": self.max_text_length,
        }
