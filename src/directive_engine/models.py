"""Core data model for directive retrieval.

Value types shared by detection, scoring, ranking, budgeting and assembly.

Lifecycle:
    TaskContext and RankedDirective values are created per query and thrown
    away with the response. Directive records are owned by the directive
    store and only borrowed by the engine. ProviderHealth is the one value
    that outlives a query; it belongs to the fallback coordinator.

All per-query types are frozen dataclasses. Truncating a directive or
refining a context produces a new value through ``dataclasses.replace``.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ArchitecturalLayer(str, Enum):
    """Coarse classification of where in a system a task or directive applies."""

    PRESENTATION = "1-Presentation"
    APPLICATION = "2-Application"
    DOMAIN = "3-Domain"
    PERSISTENCE = "4-Persistence"
    INFRASTRUCTURE = "5-Infrastructure"
    WILDCARD = "*"

    @classmethod
    def parse(cls, value: Any) -> Optional["ArchitecturalLayer"]:
        """
        Parse a layer from an enum member, its value, or a loose name.

        Accepts "1-Presentation", "presentation", "PRESENTATION" and "*".

        Args:
            value: Raw layer value (None is passed through)

        Returns:
            Matching ArchitecturalLayer or None when value is None

        Raises:
            ValueError: If value does not name a known layer
        """
        if value is None or isinstance(value, cls):
            return value
        text = str(value).strip()
        for layer in cls:
            if text == layer.value:
                return layer
        lowered = text.lower()
        for layer in cls:
            if lowered == layer.name.lower() or lowered == layer.value.split("-")[-1].lower():
                return layer
        raise ValueError(f"Unknown architectural layer: {value!r}")

    @property
    def is_wildcard(self) -> bool:
        return self is ArchitecturalLayer.WILDCARD


class DirectiveSeverity(str, Enum):
    """Directive strength, totally ordered MUST > SHOULD > MAY."""

    MUST = "MUST"
    SHOULD = "SHOULD"
    MAY = "MAY"

    @property
    def priority(self) -> int:
        """Numeric priority (higher is stronger)."""
        return _SEVERITY_PRIORITY[self]


_SEVERITY_PRIORITY = {
    DirectiveSeverity.MUST: 3,
    DirectiveSeverity.SHOULD: 2,
    DirectiveSeverity.MAY: 1,
}


class ProviderKind(str, Enum):
    """Discriminator for detection provider implementations."""

    LOCAL = "local"
    CLOUD = "cloud"
    RULE_BASED = "rule-based"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Directive:
    """
    Atomic MUST/SHOULD/MAY rule extracted from a rule document.

    Attributes:
        id: Unique directive identifier
        rule_id: Identifier of the owning rule document
        section: Section heading inside the rule document
        severity: Directive strength
        text: Directive statement
        rationale: Optional explanation
        example: Optional positive example
        anti_pattern: Optional negative example
        topics: Topics the directive is authoritative for
        when_to_apply: Free-text conditions describing when it applies
        rule_name: Human-readable rule title (for citations)
        source_path: Document path (for citations)
        layer: Layer declared by the owning rule
    """

    id: str
    rule_id: str
    section: str
    severity: DirectiveSeverity
    text: str
    rationale: Optional[str] = None
    example: Optional[str] = None
    anti_pattern: Optional[str] = None
    topics: frozenset[str] = frozenset()
    when_to_apply: tuple[str, ...] = ()
    rule_name: str = ""
    source_path: str = ""
    layer: Optional[ArchitecturalLayer] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Directive":
        """Build a Directive from a plain dict (YAML or JSON payload)."""
        severity = data.get("severity", "SHOULD")
        return cls(
            id=str(data["id"]),
            rule_id=str(data.get("rule_id", data.get("ruleId", ""))),
            section=str(data.get("section", "")),
            severity=DirectiveSeverity(str(severity).upper()),
            text=str(data.get("text", "")),
            rationale=data.get("rationale"),
            example=data.get("example"),
            anti_pattern=data.get("anti_pattern", data.get("antiPattern")),
            topics=frozenset(str(t).lower() for t in data.get("topics", []) or []),
            when_to_apply=tuple(data.get("when_to_apply", data.get("whenToApply", [])) or []),
            rule_name=str(data.get("rule_name", "")),
            source_path=str(data.get("source_path", "")),
            layer=ArchitecturalLayer.parse(data.get("layer")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "section": self.section,
            "severity": self.severity.value,
            "text": self.text,
            "rationale": self.rationale,
            "example": self.example,
            "anti_pattern": self.anti_pattern,
            "topics": sorted(self.topics),
            "when_to_apply": list(self.when_to_apply),
            "rule_name": self.rule_name,
            "source_path": self.source_path,
            "layer": self.layer.value if self.layer else None,
        }


@dataclass(frozen=True)
class TaskContext:
    """
    Inferred context of a coding task.

    Attributes:
        layer: Detected layer, None or WILDCARD when undetermined
        topics: Detected domain topics
        keywords: Matched keywords, kept verbatim for citation/debugging
        technologies: Detected technology names
        confidence: Detection confidence in [0, 1]
    """

    layer: Optional[ArchitecturalLayer]
    topics: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    technologies: tuple[str, ...] = ()
    confidence: float = 0.0

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")

    @classmethod
    def wildcard(cls, confidence: float = 0.1) -> "TaskContext":
        """Low-confidence context used when nothing can be inferred."""
        return cls(layer=ArchitecturalLayer.WILDCARD, confidence=confidence)

    @property
    def has_specific_layer(self) -> bool:
        return self.layer is not None and not self.layer.is_wildcard

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer": self.layer.value if self.layer else None,
            "topics": list(self.topics),
            "keywords": list(self.keywords),
            "technologies": list(self.technologies),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ScoreBreakdown:
    """Unweighted sub-scores behind a directive's total score."""

    authority: float = 0.0
    layer_match: float = 0.0
    topic_overlap: float = 0.0
    severity_boost: float = 0.0
    semantic_similarity: float = 0.0
    when_to_apply: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class RankedDirective(Directive):
    """Directive extended with its score for one query."""

    score: float = 0.0
    score_breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    truncated: bool = False

    @classmethod
    def from_directive(
        cls, directive: Directive, score: float, breakdown: ScoreBreakdown
    ) -> "RankedDirective":
        """Attach a score to a borrowed directive, producing a new value."""
        values = {f.name: getattr(directive, f.name) for f in fields(Directive)}
        return cls(**values, score=score, score_breakdown=breakdown)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["score"] = self.score
        data["score_breakdown"] = self.score_breakdown.to_dict()
        data["truncated"] = self.truncated
        return data


@dataclass(frozen=True)
class ProviderHealth:
    """Health snapshot of a single detection provider."""

    status: HealthStatus
    last_checked: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    latency_ms: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_checked": self.last_checked.isoformat(),
            "latency_ms": self.latency_ms,
            "error": self.error,
        }


@dataclass(frozen=True)
class Citation:
    """Reference from the assembled context back to its source rule."""

    rule_id: str
    rule_name: str
    section: str
    source_path: str
    layer: Optional[str]
    topics: tuple[str, ...] = ()

    @classmethod
    def from_directive(cls, directive: Directive) -> "Citation":
        return cls(
            rule_id=directive.rule_id,
            rule_name=directive.rule_name or directive.rule_id,
            section=directive.section,
            source_path=directive.source_path,
            layer=directive.layer.value if directive.layer else None,
            topics=tuple(sorted(directive.topics)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "section": self.section,
            "source_path": self.source_path,
            "layer": self.layer,
            "topics": list(self.topics),
        }


@dataclass
class QueryDiagnostics:
    """Timing and provenance details reported with every query."""

    query_time_ms: float = 0.0
    context_detection_time_ms: float = 0.0
    ranking_time_ms: float = 0.0
    total_directives: int = 0
    returned_directives: int = 0
    confidence: float = 0.0
    model_provider: str = ""
    fallback_used: bool = False
    tokens_used: int = 0
    tokens_remaining: int = 0
    truncated_count: int = 0
    excluded_count: int = 0
    efficiency: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
