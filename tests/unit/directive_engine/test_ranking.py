"""Tests for the ranking engine."""

import pytest

from directive_engine.config import RankingConfig
from directive_engine.errors import MissingContextError
from directive_engine.models import ArchitecturalLayer, DirectiveSeverity, TaskContext
from directive_engine.ranking import RankingEngine, RankingOptions


@pytest.fixture
def engine(ranking_config):
    return RankingEngine(ranking_config)


class TestRank:
    """Tests for RankingEngine.rank."""

    def test_requires_context(self, engine, make_directive):
        """Ranking without a context is a hard failure."""
        with pytest.raises(MissingContextError):
            engine.rank([make_directive()], None)

    def test_empty_candidates(self, engine, api_context):
        assert engine.rank([], api_context) == []

    def test_non_increasing_scores(self, engine, make_directive, api_context):
        candidates = [
            make_directive(id="may", severity=DirectiveSeverity.MAY),
            make_directive(id="must", severity=DirectiveSeverity.MUST, topics=["security"]),
            make_directive(id="should", severity=DirectiveSeverity.SHOULD),
        ]
        ranked = engine.rank(candidates, api_context)
        scores = [r.score for r in ranked]
        assert scores == sorted(scores, reverse=True)
        assert ranked[0].id == "must"

    def test_stable_ties(self, engine, make_directive, api_context):
        """Equal scores keep their input order."""
        candidates = [make_directive(id=f"d-{i}") for i in range(5)]
        ranked = engine.rank(candidates, api_context, RankingOptions(max_items=100))
        assert [r.id for r in ranked] == [f"d-{i}" for i in range(5)]

    def test_zero_score_kept(self, make_directive):
        """A score of 0 survives when no threshold is set."""
        config = RankingConfig(severity_multipliers={s: 0.0 for s in DirectiveSeverity})
        ranked = RankingEngine(config).rank(
            [make_directive(text="zzz")], TaskContext(layer=ArchitecturalLayer.WILDCARD)
        )
        assert len(ranked) == 1
        assert ranked[0].score == 0.0

    def test_max_items_default_from_config(self, engine, make_directive, api_context):
        candidates = [make_directive(id=f"d-{i}") for i in range(25)]
        assert len(engine.rank(candidates, api_context)) == 20

    def test_max_items_option(self, engine, make_directive, api_context):
        candidates = [make_directive(id=f"d-{i}") for i in range(10)]
        assert len(engine.rank(candidates, api_context, RankingOptions(max_items=3))) == 3

    def test_score_threshold(self, engine, make_directive, api_context):
        """Threshold filtering is applied independently of max_items."""
        candidates = [
            make_directive(id="must", severity=DirectiveSeverity.MUST),
            make_directive(id="may", severity=DirectiveSeverity.MAY),
        ]
        ranked = engine.rank(candidates, api_context, RankingOptions(score_threshold=10.0))
        assert [r.id for r in ranked] == ["must"]


class TestPerformanceCeiling:
    """Tests for the candidate ceiling."""

    def test_must_directives_survive(self, engine, make_directive, api_context):
        """Every MUST directive is kept when the candidate set exceeds the ceiling."""
        candidates = [
            make_directive(id=f"may-{i}", severity=DirectiveSeverity.MAY) for i in range(800)
        ] + [make_directive(id=f"must-{i}", severity=DirectiveSeverity.MUST) for i in range(300)]

        pool = engine.apply_performance_ceiling(candidates, api_context, 1000)
        assert len(pool) == 1000
        assert sum(1 for d in pool if d.severity is DirectiveSeverity.MUST) == 300

        ranked = engine.rank(candidates, api_context, RankingOptions(max_items=2000))
        assert sum(1 for r in ranked if r.severity is DirectiveSeverity.MUST) == 300

    def test_topic_overlap_preferred(self, engine, make_directive, api_context):
        """Non-MUST slots go to candidates sharing context topics."""
        candidates = [make_directive(id="plain")] + [
            make_directive(id="topical", topics=["security"])
        ]
        pool = engine.apply_performance_ceiling(candidates, api_context, 1)
        assert [d.id for d in pool] == ["topical"]

    def test_below_ceiling_untouched(self, engine, make_directive, api_context):
        candidates = [make_directive(id=f"d-{i}") for i in range(3)]
        assert engine.apply_performance_ceiling(candidates, api_context, 10) == candidates


class TestValidationAndStats:
    """Tests for validate_results and ranking_stats."""

    def test_valid_ranking_has_no_issues(self, engine, make_directive, api_context):
        ranked = engine.rank([make_directive(severity=DirectiveSeverity.MUST, topics=["api"])], api_context)
        assert engine.validate_results(ranked, api_context) == []

    def test_ordering_violation_reported(self, engine, make_ranked, api_context):
        ranked = [make_ranked(id="low", score=1.0), make_ranked(id="high", score=5.0)]
        issues = engine.validate_results(ranked, api_context)
        assert any("Ordering violation" in issue for issue in issues)

    def test_low_top_score_reported(self, engine, make_ranked):
        context = TaskContext(layer=ArchitecturalLayer.DOMAIN, confidence=0.9)
        issues = engine.validate_results([make_ranked(score=2.0)], context)
        assert any("low top score" in issue for issue in issues)

    def test_ranking_stats(self, make_ranked):
        ranked = [
            make_ranked(id="a", score=10.0, severity=DirectiveSeverity.MUST),
            make_ranked(id="b", score=4.0),
        ]
        stats = RankingEngine.ranking_stats(ranked)
        assert stats["count"] == 2
        assert stats["max_score"] == 10.0
        assert stats["mean_score"] == 7.0
        assert stats["by_severity"] == {"MUST": 1, "SHOULD": 1}

    def test_ranking_stats_empty(self):
        assert RankingEngine.ranking_stats([])["count"] == 0
