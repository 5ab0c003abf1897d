"""Ranking Engine

Orders candidate directives for a task context.

Steps:
    1. Performance ceiling: above ``max_candidates`` keep every MUST
       directive, then fill the remaining slots with the SHOULD/MAY
       candidates whose topics overlap the context most (cheap pre-filter).
    2. Score each retained candidate with the scoring algorithm.
    3. Stable sort by descending score (ties keep input order).
    4. Apply ``score_threshold`` then ``max_items``, independently.

A score of 0 is a valid result; only an explicit threshold removes it.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from directive_engine.config import RankingConfig
from directive_engine.errors import MissingContextError
from directive_engine.models import (
    Directive,
    DirectiveSeverity,
    RankedDirective,
    TaskContext,
)
from directive_engine.scoring import score_directive
from directive_engine.vocabulary import VocabularyRegistry, get_default_registry

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 0.8
LOW_TOP_SCORE = 10.0


@dataclass(frozen=True)
class RankingOptions:
    """Per-call overrides; None falls back to RankingConfig."""

    max_items: Optional[int] = None
    score_threshold: Optional[float] = None
    max_candidates: Optional[int] = None


class RankingEngine:
    """
    Scores and orders directive candidates.

    Stateless apart from its configuration, so one instance may serve
    concurrent queries.

    Attributes:
        config: Ranking configuration (weights, multipliers, limits)
        registry: Vocabulary registry used for layer indicators
    """

    def __init__(
        self,
        config: Optional[RankingConfig] = None,
        registry: Optional[VocabularyRegistry] = None,
    ):
        self.config = config or RankingConfig()
        self.registry = registry or get_default_registry()

    def rank(
        self,
        candidates: Sequence[Directive],
        context: Optional[TaskContext],
        options: Optional[RankingOptions] = None,
    ) -> list[RankedDirective]:
        """
        Rank candidate directives for a context.

        Args:
            candidates: Directives fetched from the store
            context: Detected task context (required)
            options: Optional per-call limits

        Returns:
            RankedDirective list, non-increasing in score

        Raises:
            MissingContextError: If context is None
        """
        if context is None:
            raise MissingContextError("Ranking requires a task context")
        if not candidates:
            return []

        options = options or RankingOptions()
        ceiling = options.max_candidates or self.config.max_candidates
        threshold = (
            options.score_threshold
            if options.score_threshold is not None
            else self.config.score_threshold
        )
        max_items = options.max_items if options.max_items is not None else self.config.max_items

        start = time.perf_counter()
        pool = self.apply_performance_ceiling(candidates, context, ceiling)

        ranked = []
        for directive in pool:
            total, breakdown = score_directive(directive, context, self.config, self.registry)
            ranked.append(RankedDirective.from_directive(directive, total, breakdown))

        # sorted() is stable: equal scores keep input order
        ranked = sorted(ranked, key=lambda r: -r.score)

        if threshold > 0:
            ranked = [r for r in ranked if r.score >= threshold]
        if max_items is not None and max_items >= 0:
            ranked = ranked[:max_items]

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"Ranked {len(pool)}/{len(candidates)} candidates → {len(ranked)} results "
            f"in {elapsed_ms:.1f}ms"
        )
        return ranked

    def apply_performance_ceiling(
        self,
        candidates: Sequence[Directive],
        context: TaskContext,
        ceiling: int,
    ) -> list[Directive]:
        """
        Reduce an oversized candidate set without dropping MUST directives.

        Args:
            candidates: Full candidate list
            context: Task context used for the topic pre-filter
            ceiling: Maximum number of candidates to score

        Returns:
            Retained candidates in their original relative order
        """
        if len(candidates) <= ceiling:
            return list(candidates)

        context_topics = {t.lower() for t in context.topics}
        must_indexes = [
            i for i, d in enumerate(candidates) if d.severity is DirectiveSeverity.MUST
        ]
        others = [
            i for i, d in enumerate(candidates) if d.severity is not DirectiveSeverity.MUST
        ]

        def potential(index: int) -> tuple[int, int, int]:
            directive = candidates[index]
            overlap = len({t.lower() for t in directive.topics} & context_topics)
            return (-overlap, -directive.severity.priority, index)

        remaining = max(ceiling - len(must_indexes), 0)
        kept_others = sorted(others, key=potential)[:remaining]
        kept = sorted(must_indexes + kept_others)

        logger.info(
            f"Candidate set of {len(candidates)} exceeds ceiling {ceiling}; "
            f"scoring {len(kept)} ({len(must_indexes)} MUST retained)"
        )
        return [candidates[i] for i in kept]

    def validate_results(
        self, ranked: Sequence[RankedDirective], context: TaskContext
    ) -> list[str]:
        """
        Sanity-check a ranking result.

        Returns:
            List of human-readable issues (empty when the result looks sound)
        """
        issues = []
        for previous, current in zip(ranked, ranked[1:]):
            if current.score > previous.score:
                issues.append(
                    f"Ordering violation: {current.id} ({current.score}) ranked below "
                    f"{previous.id} ({previous.score})"
                )
        for item in ranked:
            if item.score < 0:
                issues.append(f"Negative score for {item.id}: {item.score}")
        if ranked and context.confidence > HIGH_CONFIDENCE and ranked[0].score < LOW_TOP_SCORE:
            issues.append(
                f"High detection confidence ({context.confidence}) but low top score "
                f"({ranked[0].score})"
            )
        for issue in issues:
            logger.warning(issue)
        return issues

    @staticmethod
    def ranking_stats(ranked: Sequence[RankedDirective]) -> dict[str, Any]:
        """Summarize a ranking result for diagnostics."""
        if not ranked:
            return {"count": 0, "max_score": 0.0, "min_score": 0.0, "mean_score": 0.0, "by_severity": {}}
        scores = [r.score for r in ranked]
        by_severity: dict[str, int] = {}
        for item in ranked:
            by_severity[item.severity.value] = by_severity.get(item.severity.value, 0) + 1
        return {
            "count": len(ranked),
            "max_score": max(scores),
            "min_score": min(scores),
            "mean_score": round(sum(scores) / len(scores), 2),
            "by_severity": by_severity,
        }
