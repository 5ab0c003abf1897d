"""Shared pytest fixtures for directive-engine tests.

Unit tests only: everything runs in-process with temporary rule files and
stub providers, no network access.
"""

import threading
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from directive_engine.config import RankingConfig, TokenBudgetConfig
from directive_engine.errors import ProviderError
from directive_engine.models import (
    ArchitecturalLayer,
    Directive,
    DirectiveSeverity,
    HealthStatus,
    ProviderHealth,
    ProviderKind,
    RankedDirective,
    ScoreBreakdown,
    TaskContext,
)
from directive_engine.providers import DetectionProvider


# =============================================================================
# Path Fixtures
# =============================================================================


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


SAMPLE_RULES: list[dict[str, Any]] = [
    {
        "id": "api-security",
        "name": "API Security",
        "layer": "2-Application",
        "topics": ["security", "api"],
        "directives": [
            {
                "id": "api-security-1",
                "section": "Input Validation",
                "severity": "MUST",
                "text": "Validate every request body against a schema before use",
                "rationale": "Unvalidated input is the root of most injection bugs",
                "topics": ["security", "validation"],
                "when_to_apply": ["handling user input", "processing form data", "API endpoints"],
            },
            {
                "id": "api-security-2",
                "section": "Input Validation",
                "severity": "SHOULD",
                "text": "Return 400 with a field-level error list for invalid payloads",
            },
            {
                "id": "api-security-3",
                "section": "Rate Limiting",
                "severity": "MAY",
                "text": "Apply per-client rate limits to public endpoints",
                "topics": ["api", "performance"],
            },
        ],
    },
    {
        "id": "frontend-components",
        "name": "Frontend Components",
        "layer": "1-Presentation",
        "topics": ["frontend"],
        "directives": [
            {
                "id": "frontend-1",
                "section": "Styling",
                "severity": "MUST",
                "text": "Use design tokens instead of hard-coded colors in component CSS",
                "when_to_apply": ["styling a react component"],
            },
            {
                "id": "frontend-2",
                "section": "Accessibility",
                "severity": "SHOULD",
                "text": "Give every interactive element an accessible name",
            },
        ],
    },
    {
        "id": "general",
        "name": "General Practices",
        "layer": "*",
        "topics": ["*"],
        "directives": [
            {
                "id": "general-1",
                "section": "Errors",
                "severity": "SHOULD",
                "text": "Log unexpected errors with enough context to reproduce them",
                "when_to_apply": ["always"],
            },
        ],
    },
]


@pytest.fixture
def rules_dir(tmp_path: Path) -> Path:
    """Directory of YAML rule files built from SAMPLE_RULES."""
    directory = tmp_path / "directives"
    directory.mkdir()
    for rule in SAMPLE_RULES:
        with open(directory / f"{rule['id']}.yaml", "w") as f:
            yaml.safe_dump(rule, f, sort_keys=False)
    return directory


@pytest.fixture
def bulk_rules_dir(tmp_path: Path) -> Callable[..., Path]:
    """Factory for a single catch-all rule with many MAY directives ahead of MUST ones."""

    def _write(may: int, must: int) -> Path:
        directory = tmp_path / "bulk"
        directory.mkdir()
        directives = [
            {"id": f"optional-{i}", "severity": "MAY", "text": f"Optional practice number {i}"}
            for i in range(may)
        ] + [
            {"id": f"required-{i}", "severity": "MUST", "text": f"Required practice number {i}"}
            for i in range(must)
        ]
        rule = {"id": "bulk", "name": "Bulk", "layer": "*", "topics": ["*"], "directives": directives}
        with open(directory / "bulk.yaml", "w") as f:
            yaml.safe_dump(rule, f, sort_keys=False)
        return directory

    return _write


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def make_directive() -> Callable[..., Directive]:
    """Factory for directives with sensible defaults."""

    def _make(
        id: str = "d-1",
        severity: DirectiveSeverity = DirectiveSeverity.SHOULD,
        text: str = "Do the right thing",
        **kwargs: Any,
    ) -> Directive:
        kwargs.setdefault("rule_id", "rule-1")
        kwargs.setdefault("section", "General")
        if "topics" in kwargs:
            kwargs["topics"] = frozenset(kwargs["topics"])
        if "when_to_apply" in kwargs:
            kwargs["when_to_apply"] = tuple(kwargs["when_to_apply"])
        return Directive(id=id, severity=severity, text=text, **kwargs)

    return _make


@pytest.fixture
def make_ranked(make_directive) -> Callable[..., RankedDirective]:
    """Factory for ranked directives (score defaults to 0)."""

    def _make(score: float = 0.0, **kwargs: Any) -> RankedDirective:
        return RankedDirective.from_directive(make_directive(**kwargs), score, ScoreBreakdown())

    return _make


@pytest.fixture
def api_context() -> TaskContext:
    """Context for an API security task."""
    return TaskContext(
        layer=ArchitecturalLayer.APPLICATION,
        topics=("security", "api"),
        keywords=("validate", "input", "user", "endpoint"),
        technologies=(),
        confidence=0.7,
    )


@pytest.fixture
def ranking_config() -> RankingConfig:
    return RankingConfig()


@pytest.fixture
def budget_config() -> TokenBudgetConfig:
    return TokenBudgetConfig()


# =============================================================================
# Provider Stubs
# =============================================================================


class StubProvider(DetectionProvider):
    """Configurable in-process provider for coordinator tests."""

    def __init__(
        self,
        name: str = "stub",
        kind: ProviderKind = ProviderKind.LOCAL,
        context: TaskContext | None = None,
        error: Exception | None = None,
        available: bool = True,
        block: threading.Event | None = None,
    ):
        self._name = name
        self._kind = kind
        self.context = context or TaskContext(layer=ArchitecturalLayer.DOMAIN, confidence=0.8)
        self.error = error
        self.available = available
        self.block = block
        self.calls = 0
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def kind(self) -> ProviderKind:
        return self._kind

    def is_available(self) -> bool:
        return self.available

    def detect_context(self, text: str) -> TaskContext:
        self.calls += 1
        if self.block is not None:
            self.block.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.context

    def health_info(self) -> ProviderHealth:
        status = HealthStatus.HEALTHY if self.available else HealthStatus.UNAVAILABLE
        return ProviderHealth(status=status, latency_ms=0.0)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def stub_provider_cls() -> type:
    return StubProvider


@pytest.fixture
def failing_provider() -> StubProvider:
    return StubProvider(name="failing", error=ProviderError("failing", "boom"))
