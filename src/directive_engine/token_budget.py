"""Token Budget Allocator

Selects ranked directives so the assembled context stays within a token budget.

Accounting:
    budget = overhead + tokens_used + tokens_remaining
    tokens_used = directive tokens + truncation indicator tokens

Token counts are a consistent internal estimate (characters / chars_per_token,
rounded up, with a per-directive minimum), not any specific tokenizer.

Selection walks the ranked list in order. A directive that fits is taken
whole. A high-priority directive (MUST, or among the first
``top_n_truncatable`` results) that does not fit is truncated: optional fields
go first (anti-pattern, example, rationale), then the text is shortened on a
word boundary and ends with TRUNCATION_MARKER. A truncated directive never
takes more than ``max_single_directive_share`` of the budget. Anything else is
excluded, and the walk continues because a later, smaller directive may still
fit.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

from directive_engine.config import TokenBudgetConfig
from directive_engine.models import Directive, DirectiveSeverity, RankedDirective

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."
# Optional fields dropped first when truncating, least valuable first
OPTIONAL_FIELDS = ("anti_pattern", "example", "rationale")


@dataclass
class BudgetResult:
    """Outcome of applying a token budget to a ranked list."""

    selected: list[RankedDirective] = field(default_factory=list)
    tokens_used: int = 0
    tokens_remaining: int = 0
    excluded_count: int = 0
    truncated_count: int = 0
    budget_tokens: int = 0
    breakdown: dict[str, int] = field(default_factory=dict)

    @property
    def utilization(self) -> float:
        """Share of the budget consumed, overhead included (0-100)."""
        if self.budget_tokens <= 0:
            return 0.0
        consumed = self.breakdown.get("overhead", 0) + self.tokens_used
        return round(consumed / self.budget_tokens * 100, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "selected": [d.to_dict() for d in self.selected],
            "tokens_used": self.tokens_used,
            "tokens_remaining": self.tokens_remaining,
            "excluded_count": self.excluded_count,
            "truncated_count": self.truncated_count,
            "budget_tokens": self.budget_tokens,
            "breakdown": dict(self.breakdown),
            "utilization": self.utilization,
        }


def truncate_text(text: str, max_chars: int, marker: str = TRUNCATION_MARKER) -> str:
    """
    Shorten text to at most ``max_chars`` characters plus the marker.

    Cuts on the last word boundary when one exists in the final 30% of the
    allowed span, otherwise cuts mid-word.
    """
    if len(text) <= max_chars:
        return text
    if max_chars <= 0:
        return marker
    cut = text[:max_chars]
    last_space = cut.rfind(" ")
    if last_space > max_chars * 0.7:
        cut = cut[:last_space]
    return cut.rstrip() + marker


class TokenBudgetAllocator:
    """
    Fits ranked directives into a token budget.

    Attributes:
        config: Token estimation and truncation settings
    """

    def __init__(self, config: Optional[TokenBudgetConfig] = None):
        self.config = config or TokenBudgetConfig()

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def estimate_text_tokens(self, text: Optional[str]) -> int:
        if not text or not text.strip():
            return 0
        return math.ceil(len(text) / self.config.chars_per_token)

    def estimate_tokens(self, directive: Directive) -> int:
        """Estimated token cost of a directive (text plus optional fields)."""
        parts = [directive.text] + [
            getattr(directive, name) for name in reversed(OPTIONAL_FIELDS)
        ]
        content = " ".join(p for p in parts if p)
        return max(self.estimate_text_tokens(content), self.config.minimum_estimate_tokens)

    def _content_tokens(self, directive: RankedDirective) -> int:
        """Cost of a truncated directive, excluding its marker."""
        if directive.text.endswith(TRUNCATION_MARKER):
            directive = replace(directive, text=directive.text[: -len(TRUNCATION_MARKER)])
        return self.estimate_tokens(directive)

    # ------------------------------------------------------------------
    # Truncation
    # ------------------------------------------------------------------

    def truncate_directive(
        self, directive: RankedDirective, max_tokens: int
    ) -> Optional[RankedDirective]:
        """
        Truncate a directive so it costs at most ``max_tokens`` including its marker.

        Args:
            directive: Ranked directive to shorten
            max_tokens: Token allowance for this directive

        Returns:
            New truncated RankedDirective, or None when the allowance is
            below minimum_directive_tokens
        """
        if max_tokens < self.config.minimum_directive_tokens:
            return None
        content_allowance = max_tokens - self.config.truncation_indicator_tokens

        candidate = directive
        for name in OPTIONAL_FIELDS:
            if getattr(candidate, name):
                candidate = replace(candidate, **{name: None})
                if self.estimate_tokens(candidate) <= content_allowance:
                    return replace(
                        candidate, text=candidate.text + TRUNCATION_MARKER, truncated=True
                    )

        max_chars = content_allowance * self.config.chars_per_token
        shortened = truncate_text(candidate.text, max_chars)
        if not shortened.endswith(TRUNCATION_MARKER):
            shortened += TRUNCATION_MARKER
        return replace(candidate, text=shortened, truncated=True)

    def _is_truncatable(self, directive: RankedDirective, position: int) -> bool:
        if not self.config.enable_truncation:
            return False
        return (
            directive.severity is DirectiveSeverity.MUST
            or position < self.config.top_n_truncatable
        )

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def apply_budget(
        self, ranked: Sequence[RankedDirective], budget_tokens: int
    ) -> BudgetResult:
        """
        Select directives within a token budget.

        Args:
            ranked: Directives in ranked order
            budget_tokens: Total budget, overhead included

        Returns:
            BudgetResult; an empty selection (not an error) when the budget
            does not cover the overhead
        """
        overhead = self.config.overhead_tokens
        indicator_cost = self.config.truncation_indicator_tokens

        if budget_tokens <= 0 or budget_tokens <= overhead:
            logger.debug(f"Budget {budget_tokens} does not cover overhead {overhead}")
            reported_overhead = min(overhead, max(budget_tokens, 0))
            return BudgetResult(
                selected=[],
                tokens_used=0,
                tokens_remaining=max(budget_tokens, 0) - reported_overhead,
                excluded_count=len(ranked),
                truncated_count=0,
                budget_tokens=budget_tokens,
                breakdown={"overhead": reported_overhead, "directives": 0, "truncation_indicators": 0},
            )

        available = budget_tokens - overhead
        per_item_cap = math.floor(budget_tokens * self.config.max_single_directive_share)

        selected: list[RankedDirective] = []
        directive_tokens = 0
        indicator_tokens = 0

        for position, directive in enumerate(ranked):
            remaining = available - directive_tokens - indicator_tokens
            cost = self.estimate_tokens(directive)

            if cost <= remaining:
                selected.append(directive)
                directive_tokens += cost
                continue

            if self._is_truncatable(directive, position):
                allowance = min(remaining, per_item_cap)
                truncated = self.truncate_directive(directive, allowance)
                if truncated is not None:
                    content_cost = self._content_tokens(truncated)
                    if content_cost + indicator_cost <= allowance:
                        selected.append(truncated)
                        directive_tokens += content_cost
                        indicator_tokens += indicator_cost
                        continue

            logger.debug(f"Excluded {directive.id}: needs {cost} tokens, {remaining} left")

        tokens_used = directive_tokens + indicator_tokens
        truncated_count = sum(1 for d in selected if d.truncated)
        result = BudgetResult(
            selected=selected,
            tokens_used=tokens_used,
            tokens_remaining=available - tokens_used,
            excluded_count=len(ranked) - len(selected),
            truncated_count=truncated_count,
            budget_tokens=budget_tokens,
            breakdown={
                "overhead": overhead,
                "directives": directive_tokens,
                "truncation_indicators": indicator_tokens,
            },
        )
        logger.debug(
            f"Budget {budget_tokens}: selected {len(selected)}/{len(ranked)}, "
            f"truncated {truncated_count}, used {tokens_used}"
        )
        return result
