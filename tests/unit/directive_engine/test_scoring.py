"""Tests for the scoring algorithm."""

import pytest

from directive_engine.config import RankingConfig, ScoringWeights
from directive_engine.models import (
    ArchitecturalLayer,
    DirectiveSeverity,
    ScoreBreakdown,
    TaskContext,
)
from directive_engine.scoring import (
    WILDCARD_LAYER_SCORE,
    authority_score,
    is_wildcard_scoped,
    layer_match_score,
    score_directive,
    semantic_similarity,
    topic_overlap_score,
    weighted_total,
    when_to_apply_score,
)
from directive_engine.vocabulary import get_default_registry


@pytest.fixture
def validation_directive(make_directive):
    return make_directive(
        severity=DirectiveSeverity.MUST,
        text="Validate every request body against a schema",
        topics=["security", "validation"],
        when_to_apply=["handling user input", "processing form data", "API endpoints"],
    )


class TestSubScores:
    """Tests for the individual sub-scores."""

    def test_authority_and_conditions(self, validation_directive, api_context):
        """Shared topic gives authority; two of three conditions mention a keyword."""
        assert authority_score(validation_directive, api_context) == 1.0
        overlap = topic_overlap_score(validation_directive, api_context)
        assert 0 < overlap <= 1
        assert when_to_apply_score(validation_directive, api_context) == pytest.approx(2 / 3)

    def test_authority_substring(self, make_directive):
        """A topic contained in another still counts as authoritative."""
        directive = make_directive(topics=["api-security"])
        context = TaskContext(layer=None, topics=("security",))
        assert authority_score(directive, context) == 1.0

    def test_authority_without_topics(self, make_directive, api_context):
        assert authority_score(make_directive(), api_context) == 0.0

    def test_when_to_apply_without_keywords(self, validation_directive):
        context = TaskContext(layer=None, topics=("security",))
        assert when_to_apply_score(validation_directive, context) == 0.0

    def test_layer_match_declared_layer(self, make_directive, api_context):
        directive = make_directive(layer=ArchitecturalLayer.APPLICATION, text="Keep it small")
        assert layer_match_score(directive, api_context, get_default_registry()) == 1.0

    def test_layer_match_indicator_terms(self, make_directive):
        """Indicator terms in topics or text count as a layer match."""
        directive = make_directive(text="Close every cursor", topics=["database"])
        context = TaskContext(layer=ArchitecturalLayer.PERSISTENCE)
        assert layer_match_score(directive, context, get_default_registry()) == 1.0

    def test_layer_match_wildcard_scope(self, make_directive, api_context):
        """Wildcard-scoped directives get partial credit."""
        directive = make_directive(text="Keep it small", when_to_apply=["always"])
        assert is_wildcard_scoped(directive)
        assert layer_match_score(directive, api_context, get_default_registry()) == WILDCARD_LAYER_SCORE

    def test_layer_match_unrelated(self, make_directive, api_context):
        directive = make_directive(layer=ArchitecturalLayer.PRESENTATION, text="Keep it small")
        assert layer_match_score(directive, api_context, get_default_registry()) == 0.0

    def test_semantic_similarity(self, validation_directive):
        """Only words of four or more characters are compared."""
        assert semantic_similarity(validation_directive, "validate input") == 0.5
        assert semantic_similarity(validation_directive, "a to of") == 0.0
        assert semantic_similarity(validation_directive, "") == 0.0


class TestScoreDirective:
    """Tests for score_directive and weighted_total."""

    def test_severity_ordering(self, make_directive, api_context, ranking_config):
        """Otherwise identical directives score MUST > SHOULD > MAY."""
        scores = [
            score_directive(make_directive(severity=severity), api_context, ranking_config)[0]
            for severity in (DirectiveSeverity.MUST, DirectiveSeverity.SHOULD, DirectiveSeverity.MAY)
        ]
        assert scores[0] > scores[1] > scores[2]

    def test_deterministic(self, validation_directive, api_context, ranking_config):
        first = score_directive(validation_directive, api_context, ranking_config)
        second = score_directive(validation_directive, api_context, ranking_config)
        assert first == second

    def test_breakdown_severity_is_multiplier(self, validation_directive, api_context, ranking_config):
        _, breakdown = score_directive(validation_directive, api_context, ranking_config)
        assert breakdown.severity_boost == 3.0

    def test_weighted_total_defaults(self, ranking_config):
        """All unit sub-scores sum to the sum of the default weights."""
        breakdown = ScoreBreakdown(1.0, 1.0, 1.0, 1.0, 1.0, 1.0)
        assert weighted_total(breakdown, ranking_config) == 37.0

    def test_weights_tunable(self, validation_directive, api_context):
        """Zero weights remove a sub-score's contribution."""
        config = RankingConfig(
            weights=ScoringWeights(
                authority=0.0,
                when_to_apply=0.0,
                layer_match=0.0,
                topic_overlap=0.0,
                severity_boost=1.0,
                semantic_similarity=0.0,
            )
        )
        total, _ = score_directive(validation_directive, api_context, config)
        assert total == 3.0

    def test_rounded_to_two_decimals(self, validation_directive, api_context, ranking_config):
        total, _ = score_directive(validation_directive, api_context, ranking_config)
        assert total == round(total, 2)
