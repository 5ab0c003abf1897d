"""Directive Query Service

Caller-facing operations used by the MCP server and the CLI:

    query_directives(task_text, ...)  → {context_block, citations, diagnostics}
    detect_context(text, ...)         → {detected_layer, topics, keywords?, confidence}

Pipeline for query_directives:
    text → FallbackCoordinator → TaskContext
         → DirectiveStore.fetch_candidates(layer, topics)
         → RankingEngine.rank → TokenBudgetAllocator.apply_budget
         → format_context_block + build_citations

Neither operation raises for bad input. detect_context degrades to the
wildcard context; query_directives returns an error payload carrying a
baseline fallback context block.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Optional

from directive_engine.config import EngineConfig
from directive_engine.context_detection import FALLBACK_CONFIDENCE, MAX_TEXT_LENGTH
from directive_engine.directive_store import DirectiveStore
from directive_engine.errors import DirectiveEngineError, InvalidInputError
from directive_engine.fallback import FallbackCoordinator
from directive_engine.formatter import (
    build_citations,
    format_context_block,
    format_fallback_block,
)
from directive_engine.models import (
    ArchitecturalLayer,
    Directive,
    QueryDiagnostics,
    TaskContext,
)
from directive_engine.ranking import RankingEngine, RankingOptions
from directive_engine.token_budget import TokenBudgetAllocator
from directive_engine.vocabulary import VocabularyRegistry, build_default_registry

logger = logging.getLogger(__name__)

VALID_MODES = ("architect", "code", "debug")
MAX_ITEMS_RANGE = (1, 100)
TOKEN_BUDGET_RANGE = (100, 10_000)

MODE_TOPICS = {
    "architect": ("architecture", "design", "patterns"),
    "debug": ("debugging", "testing", "error-handling", "logging"),
}

# Query time at which the time component of efficiency reaches zero
EFFICIENCY_TIME_CEILING_MS = 400.0


def validate_query_options(
    task_text: Any,
    max_items: Optional[int] = None,
    token_budget: Optional[int] = None,
    mode: Optional[str] = None,
) -> None:
    """
    Validate query_directives arguments.

    Raises:
        InvalidInputError: On the first invalid argument
    """
    if not isinstance(task_text, str):
        raise InvalidInputError("task_text is required and must be a string")
    if not task_text.strip():
        raise InvalidInputError("task_text cannot be empty")
    if len(task_text) > MAX_TEXT_LENGTH:
        raise InvalidInputError(f"task_text must be at most {MAX_TEXT_LENGTH} characters")
    if mode is not None and mode not in VALID_MODES:
        raise InvalidInputError(f"mode must be one of: {', '.join(VALID_MODES)}")
    if max_items is not None and not MAX_ITEMS_RANGE[0] <= max_items <= MAX_ITEMS_RANGE[1]:
        raise InvalidInputError(
            f"max_items must be between {MAX_ITEMS_RANGE[0]} and {MAX_ITEMS_RANGE[1]}"
        )
    if token_budget is not None and not TOKEN_BUDGET_RANGE[0] <= token_budget <= TOKEN_BUDGET_RANGE[1]:
        raise InvalidInputError(
            f"token_budget must be between {TOKEN_BUDGET_RANGE[0]} and {TOKEN_BUDGET_RANGE[1]}"
        )


def calculate_efficiency(returned: int, total: int, query_time_ms: float) -> float:
    """
    Rough efficiency indicator in [0, 100].

    Average of the selection rate and a time score that falls linearly to
    zero at EFFICIENCY_TIME_CEILING_MS. Diagnostic only.
    """
    selection = (returned / total * 100) if total > 0 else 0.0
    time_score = max(0.0, 100.0 - query_time_ms / EFFICIENCY_TIME_CEILING_MS * 100)
    return round((selection + time_score) / 2, 1)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)


class DirectiveQueryService:
    """
    Wires detection, candidate lookup, ranking, budgeting and formatting.

    Every collaborator is injected, so one instance can be shared by
    concurrent requests: per-query state lives on the call stack.

    Attributes:
        store: Directive store answering candidate queries
        coordinator: Provider fallback coordinator for context detection
        ranking_engine: Scores and orders candidates
        allocator: Token budget allocator
        config: Engine configuration
        candidate_limit: Cap on store candidates (None: every match goes to
            ranking, whose max_candidates ceiling keeps MUST directives)
    """

    def __init__(
        self,
        store: DirectiveStore,
        coordinator: FallbackCoordinator,
        config: Optional[EngineConfig] = None,
        registry: Optional[VocabularyRegistry] = None,
        candidate_limit: Optional[int] = None,
    ):
        self.config = config or EngineConfig()
        self.registry = registry or build_default_registry()
        self.store = store
        self.coordinator = coordinator
        self.ranking_engine = RankingEngine(self.config.ranking, self.registry)
        self.allocator = TokenBudgetAllocator(self.config.token_budget)
        self.candidate_limit = candidate_limit

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        directives_path: Optional[Path] = None,
    ) -> "DirectiveQueryService":
        """
        Build a service and its collaborators from configuration.

        Loads the directive store and merges vocabulary extensions into a new
        registry before any provider is created.

        Args:
            config: Engine configuration
            directives_path: Overrides config.directives_path

        Returns:
            Ready-to-use DirectiveQueryService
        """
        registry = build_default_registry()
        if config.vocabulary_extensions:
            registry = registry.merge(dict(config.vocabulary_extensions))
            logger.info(f"Vocabulary extended to version {registry.version}")

        store = DirectiveStore(directives_path or config.directives_path)
        store.load()

        coordinator = FallbackCoordinator.from_settings(config.providers, registry)
        return cls(store, coordinator, config=config, registry=registry)

    # ------------------------------------------------------------------
    # query_directives
    # ------------------------------------------------------------------

    def query_directives(
        self,
        task_text: str,
        max_items: Optional[int] = None,
        token_budget: Optional[int] = None,
        strict_layer: bool = False,
        mode: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> dict[str, Any]:
        """
        Retrieve the directives relevant to a task as a context block.

        Args:
            task_text: Free-text task description
            max_items: Result cap (1-100, default from ranking config)
            token_budget: Token budget (100-10000, default from token_budget config)
            strict_layer: Drop directives not declared for the detected layer
            mode: Optional focus mode (architect, code, debug)
            cancel_event: Optional cancellation signal for context detection

        Returns:
            Dictionary with:
            - context_block: Markdown block for the assistant
            - citations: List of citation dicts
            - diagnostics: QueryDiagnostics as a dict
            - error: Present only when the fallback block was returned
        """
        start = time.perf_counter()
        try:
            validate_query_options(task_text, max_items, token_budget, mode)

            detect_start = time.perf_counter()
            outcome = self.coordinator.detect_with_fallback(task_text, cancel_event=cancel_event)
            detection_ms = _elapsed_ms(detect_start)
            context = outcome.context

            candidates = self._fetch_candidates(context, mode, strict_layer)

            rank_start = time.perf_counter()
            ranked = self.ranking_engine.rank(
                candidates,
                context,
                RankingOptions(max_items=max_items or self.config.ranking.max_items),
            )
            budget = self.allocator.apply_budget(
                ranked, token_budget or self.config.token_budget.default_budget
            )
            ranking_ms = _elapsed_ms(rank_start)

            context_block = format_context_block(budget.selected, context)
            citations = build_citations(budget.selected)

            query_ms = _elapsed_ms(start)
            diagnostics = QueryDiagnostics(
                query_time_ms=query_ms,
                context_detection_time_ms=detection_ms,
                ranking_time_ms=ranking_ms,
                total_directives=len(candidates),
                returned_directives=len(budget.selected),
                confidence=context.confidence,
                model_provider=outcome.provider_used,
                fallback_used=outcome.fallback_used,
                tokens_used=budget.tokens_used,
                tokens_remaining=budget.tokens_remaining,
                truncated_count=budget.truncated_count,
                excluded_count=budget.excluded_count,
                efficiency=calculate_efficiency(len(budget.selected), len(candidates), query_ms),
            )
            logger.info(
                f"query_directives: {len(budget.selected)}/{len(candidates)} directives "
                f"in {query_ms:.1f}ms (provider={outcome.provider_used})"
            )
            return {
                "context_block": context_block,
                "citations": [c.to_dict() for c in citations],
                "diagnostics": diagnostics.to_dict(),
            }

        except InvalidInputError as e:
            logger.warning(f"query_directives rejected input: {e}")
            return self._error_payload(task_text, e, start)
        except DirectiveEngineError as e:
            logger.error(f"query_directives failed: {e}")
            return self._error_payload(task_text, e, start)
        except Exception as e:
            logger.error(f"Unexpected error in query_directives: {e}", exc_info=True)
            return self._error_payload(task_text, e, start)

    def _fetch_candidates(
        self, context: TaskContext, mode: Optional[str], strict_layer: bool
    ) -> list[Directive]:
        layer = context.layer if context.has_specific_layer else None
        topics = list(context.topics) + list(MODE_TOPICS.get(mode, ()))

        candidates = self.store.fetch_candidates(layer=layer, topics=topics, limit=self.candidate_limit)
        if not candidates and topics:
            logger.debug("No topic matches, retrying candidate lookup by layer only")
            candidates = self.store.fetch_candidates(layer=layer, limit=self.candidate_limit)

        if strict_layer and layer is not None:
            candidates = [d for d in candidates if d.layer is layer]
        return candidates

    def _error_payload(self, task_text: Any, error: Exception, start: float) -> dict[str, Any]:
        text = task_text if isinstance(task_text, str) else ""
        diagnostics = QueryDiagnostics(
            query_time_ms=_elapsed_ms(start),
            confidence=FALLBACK_CONFIDENCE,
            fallback_used=True,
        )
        return {
            "context_block": format_fallback_block(text[:MAX_TEXT_LENGTH], reason=str(error)),
            "citations": [],
            "diagnostics": diagnostics.to_dict(),
            "error": str(error),
        }

    # ------------------------------------------------------------------
    # detect_context
    # ------------------------------------------------------------------

    def detect_context(self, text: Any, return_keywords: bool = False) -> dict[str, Any]:
        """
        Detect the architectural layer and topics of a task.

        Empty, non-string or oversized text yields the wildcard context with
        confidence 0.1 instead of an error.

        Args:
            text: Task text
            return_keywords: Include matched keywords and technologies

        Returns:
            Dictionary with detected_layer, topics, confidence, model_provider,
            fallback_used and, when requested, keywords and technologies
        """
        provider = None
        fallback_used = True
        if not isinstance(text, str) or not text.strip() or len(text) > MAX_TEXT_LENGTH:
            logger.debug("detect_context received invalid text, returning wildcard context")
            context = TaskContext.wildcard(FALLBACK_CONFIDENCE)
        else:
            try:
                outcome = self.coordinator.detect_with_fallback(text)
                context = outcome.context
                provider = outcome.provider_used
                fallback_used = outcome.fallback_used
            except DirectiveEngineError as e:
                logger.error(f"Context detection failed: {e}")
                context = TaskContext.wildcard(FALLBACK_CONFIDENCE)

        layer = context.layer or ArchitecturalLayer.WILDCARD
        result: dict[str, Any] = {
            "detected_layer": layer.value,
            "topics": list(context.topics),
            "confidence": context.confidence,
            "model_provider": provider,
            "fallback_used": fallback_used,
        }
        if return_keywords:
            result["keywords"] = list(context.keywords)
            result["technologies"] = list(context.technologies)
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reload_directives(self) -> int:
        return self.store.reload()

    def close(self) -> None:
        self.coordinator.close()
