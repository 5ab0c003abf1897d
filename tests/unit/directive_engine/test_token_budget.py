"""Tests for the token budget allocator."""

import pytest

from directive_engine.config import TokenBudgetConfig
from directive_engine.models import DirectiveSeverity
from directive_engine.token_budget import (
    TRUNCATION_MARKER,
    TokenBudgetAllocator,
    truncate_text,
)


@pytest.fixture
def allocator(budget_config):
    return TokenBudgetAllocator(budget_config)


def _conserved(result) -> bool:
    return result.breakdown["overhead"] + result.tokens_used + result.tokens_remaining == result.budget_tokens


class TestEstimation:
    """Tests for token estimation."""

    def test_minimum_estimate(self, allocator, make_directive):
        """Very short directives still cost the minimum estimate."""
        assert allocator.estimate_tokens(make_directive(text="hi")) == 5

    def test_characters_per_token(self, allocator, make_directive):
        assert allocator.estimate_tokens(make_directive(text="x" * 400)) == 100

    def test_optional_fields_counted(self, allocator, make_directive):
        plain = make_directive(text="x" * 100)
        detailed = make_directive(text="x" * 100, rationale="y" * 100)
        assert allocator.estimate_tokens(detailed) > allocator.estimate_tokens(plain)


class TestTruncation:
    """Tests for text and directive truncation."""

    def test_truncate_text_word_boundary(self):
        assert truncate_text("alpha beta gamma delta", 17) == "alpha beta gamma..."

    def test_truncate_text_mid_word(self):
        assert truncate_text("abcdefghij", 5) == "abcde..."

    def test_truncate_text_short_enough(self):
        assert truncate_text("short", 10) == "short"

    def test_optional_fields_dropped_first(self, allocator, make_ranked):
        """Rationale goes before the text is shortened."""
        directive = make_ranked(text="x" * 40, rationale="y" * 400)
        truncated = allocator.truncate_directive(directive, 20)
        assert truncated.rationale is None
        assert truncated.text == "x" * 40 + TRUNCATION_MARKER
        assert truncated.truncated is True

    def test_below_minimum_returns_none(self, allocator, make_ranked):
        assert allocator.truncate_directive(make_ranked(text="x" * 400), 10) is None


class TestApplyBudget:
    """Tests for TokenBudgetAllocator.apply_budget."""

    def test_single_must_truncated(self, allocator, make_ranked):
        """A MUST directive too large for the budget is truncated, not excluded."""
        directive = make_ranked(severity=DirectiveSeverity.MUST, text="abcd " * 100)
        result = allocator.apply_budget([directive], 100)

        assert len(result.selected) == 1
        assert result.selected[0].truncated is True
        assert result.selected[0].text.endswith(TRUNCATION_MARKER)
        assert result.tokens_used <= 100 - allocator.config.overhead_tokens
        assert result.truncated_count == 1
        assert _conserved(result)

    def test_truncated_share_capped(self, allocator, make_ranked):
        """A truncated directive never exceeds its share of the budget."""
        directive = make_ranked(severity=DirectiveSeverity.MUST, text="abcd " * 1000)
        result = allocator.apply_budget([directive], 1000)
        assert result.tokens_used <= 1000 * allocator.config.max_single_directive_share

    def test_all_fit(self, allocator, make_ranked):
        ranked = [make_ranked(id=f"d-{i}", text="x" * 40) for i in range(5)]
        result = allocator.apply_budget(ranked, 1000)
        assert [d.id for d in result.selected] == [f"d-{i}" for i in range(5)]
        assert result.tokens_used == 50
        assert result.excluded_count == 0
        assert _conserved(result)

    def test_later_smaller_directive_still_fits(self, make_ranked):
        """An excluded directive does not stop the walk."""
        allocator = TokenBudgetAllocator(TokenBudgetConfig(enable_truncation=False))
        ranked = [make_ranked(id="big", text="x" * 400), make_ranked(id="small", text="x" * 40)]
        result = allocator.apply_budget(ranked, 100)
        assert [d.id for d in result.selected] == ["small"]
        assert result.excluded_count == 1
        assert _conserved(result)

    def test_budget_below_overhead(self, allocator, make_ranked):
        """A budget that does not cover the overhead yields an empty selection."""
        ranked = [make_ranked(id="a"), make_ranked(id="b")]
        result = allocator.apply_budget(ranked, 20)
        assert result.selected == []
        assert result.excluded_count == 2
        assert result.tokens_used == 0
        assert _conserved(result)

    def test_zero_budget(self, allocator, make_ranked):
        result = allocator.apply_budget([make_ranked()], 0)
        assert result.selected == []
        assert result.tokens_remaining == 0

    @pytest.mark.parametrize("budget", [100, 250, 1000])
    def test_conservation(self, allocator, make_ranked, budget):
        """overhead + used + remaining always equals the budget."""
        ranked = [
            make_ranked(id=f"d-{i}", severity=DirectiveSeverity.MUST, text="word " * (10 * i + 5))
            for i in range(8)
        ]
        result = allocator.apply_budget(ranked, budget)
        assert _conserved(result)
        assert result.tokens_remaining >= 0

    def test_utilization(self, allocator, make_ranked):
        result = allocator.apply_budget([make_ranked(text="x" * 40)], 100)
        assert result.utilization == 30.0
        assert result.to_dict()["utilization"] == 30.0
