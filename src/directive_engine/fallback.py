"""Provider Fallback Coordinator

Presents one ``detect_with_fallback(text)`` operation over an ordered chain
of detection providers.

State machine:
    TRYING(i) ── success ──────────────────────────→ SUCCEEDED
        │  ├─ failure / timeout / open circuit ───→ TRYING(i + 1)
        │  └─ cancel signal or deadline ──────────→ CANCELLED
        └─ i == len(chain) ───────────────────────→ ALL_FAILED

Model-backed attempts run on their own daemon thread and are bounded by the
per-call timeout; a provider that overruns is abandoned and counted as a
failure, so the request moves on instead of waiting. An abandoned call keeps
only its own thread, never a slot later attempts need. Rule-based providers
do no I/O and run inline on the calling thread. Cancellation is checked
before each attempt and polled while an attempt is running.

The last provider in the chain is the last resort: it is never skipped for
recorded health or an open circuit, and its failures do not trip a breaker.

Health tracking runs on its own daemon thread. Checks perform I/O without
holding any lock; only the final write of each ProviderHealth happens under
that provider's lock. Circuit breakers keep their own locks.

Usage:
    coordinator = FallbackCoordinator.from_settings(engine_config.providers)
    coordinator.start_health_monitor()
    outcome = coordinator.detect_with_fallback("Add a REST endpoint")
    outcome.context, outcome.provider_used, outcome.fallback_used
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from directive_engine.circuit_breaker import CircuitBreaker, CircuitState
from directive_engine.config import ProviderSettings
from directive_engine.errors import (
    AllProvidersFailedError,
    DetectionCancelledError,
    ProviderTimeoutError,
)
from directive_engine.models import HealthStatus, ProviderHealth, ProviderKind, TaskContext
from directive_engine.providers import RULE_BASED_PROVIDER, DetectionProvider, create_provider
from directive_engine.vocabulary import VocabularyRegistry

logger = logging.getLogger(__name__)

CANCEL_POLL_INTERVAL_S = 0.05


class CoordinatorState(str, Enum):
    TRYING = "trying"
    SUCCEEDED = "succeeded"
    ALL_FAILED = "all-failed"
    CANCELLED = "cancelled"


class AttemptOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed-out"
    CIRCUIT_OPEN = "circuit-open"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ProviderAttempt:
    provider: str
    outcome: AttemptOutcome
    duration_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "outcome": self.outcome.value,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass(frozen=True)
class DetectionOutcome:
    """Result of a coordinated detection."""

    context: TaskContext
    provider_used: str
    fallback_used: bool
    attempts: tuple[ProviderAttempt, ...] = ()


@dataclass
class _ProviderSlot:
    provider: DetectionProvider
    breaker: CircuitBreaker
    lock: threading.Lock = field(default_factory=threading.Lock)
    health: Optional[ProviderHealth] = None


class FallbackCoordinator:
    """
    Ordered provider chain with timeouts, health tracking and circuit breaking.

    Args:
        providers: Providers in priority order (first is the primary)
        timeout_s: Per-call timeout for each provider attempt
        health_check_interval_s: Interval between background health checks
        failure_threshold: Consecutive failures before a circuit opens
        reset_timeout_s: Circuit cooldown before a half-open trial
        clock: Monotonic clock shared with the circuit breakers
    """

    def __init__(
        self,
        providers: Sequence[DetectionProvider],
        timeout_s: float = 5.0,
        health_check_interval_s: float = 60.0,
        failure_threshold: int = 5,
        reset_timeout_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout_s = timeout_s
        self.health_check_interval_s = health_check_interval_s
        self.failure_threshold = failure_threshold
        self.reset_timeout_s = reset_timeout_s
        self._clock = clock
        self._chain_lock = threading.Lock()
        self._slots: list[_ProviderSlot] = [self._make_slot(p) for p in providers]
        self._stop_event = threading.Event()
        self._monitor_thread: Optional[threading.Thread] = None

    @classmethod
    def from_settings(
        cls,
        settings: ProviderSettings,
        registry: Optional[VocabularyRegistry] = None,
    ) -> "FallbackCoordinator":
        """
        Build the provider chain from configuration.

        The rule-based provider is appended as the last resort when the
        configured chain does not already end with it.
        """
        names = list(settings.chain)
        if RULE_BASED_PROVIDER in names:
            names.remove(RULE_BASED_PROVIDER)
        names.append(RULE_BASED_PROVIDER)

        providers = [create_provider(name, settings, registry) for name in names]
        logger.info(f"Detection provider chain: {' → '.join(names)}")
        return cls(
            providers,
            timeout_s=settings.timeout_ms / 1000,
            health_check_interval_s=settings.health_check_interval_ms / 1000,
            failure_threshold=settings.circuit_breaker.failure_threshold,
            reset_timeout_s=settings.circuit_breaker.reset_timeout_ms / 1000,
        )

    def _make_slot(self, provider: DetectionProvider) -> _ProviderSlot:
        breaker = CircuitBreaker(
            provider.name,
            failure_threshold=self.failure_threshold,
            reset_timeout_s=self.reset_timeout_s,
            clock=self._clock,
        )
        return _ProviderSlot(provider=provider, breaker=breaker)

    def _chain(self) -> list[_ProviderSlot]:
        with self._chain_lock:
            return list(self._slots)

    @property
    def provider_names(self) -> list[str]:
        return [slot.provider.name for slot in self._chain()]

    @property
    def primary(self) -> Optional[str]:
        chain = self._chain()
        return chain[0].provider.name if chain else None

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_with_fallback(
        self,
        text: str,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> DetectionOutcome:
        """
        Detect task context, falling back along the provider chain.

        Args:
            text: Task text (validated by the caller)
            cancel_event: Optional signal; once set no new attempt starts and
                a running attempt is abandoned
            deadline: Optional absolute time on this coordinator's clock

        Returns:
            DetectionOutcome with the context and the provider that produced it

        Raises:
            AllProvidersFailedError: If every provider failed or was skipped
            DetectionCancelledError: If cancelled or past the deadline
        """
        chain = self._chain()
        primary = chain[0].provider.name if chain else None
        attempts: list[ProviderAttempt] = []
        last_error: Optional[Exception] = None
        state = CoordinatorState.TRYING
        index = 0
        context: Optional[TaskContext] = None

        while state is CoordinatorState.TRYING:
            if self._should_stop(cancel_event, deadline):
                state = CoordinatorState.CANCELLED
                break
            if index >= len(chain):
                state = CoordinatorState.ALL_FAILED
                break

            slot = chain[index]
            name = slot.provider.name
            is_last = index == len(chain) - 1

            if not is_last and self._recorded_status(slot) is HealthStatus.UNAVAILABLE:
                attempts.append(ProviderAttempt(name, AttemptOutcome.UNHEALTHY))
                index += 1
                continue
            if not is_last and not slot.breaker.allow_request():
                attempts.append(ProviderAttempt(name, AttemptOutcome.CIRCUIT_OPEN))
                index += 1
                continue

            start = time.perf_counter()
            try:
                context = self._attempt(slot, text, cancel_event, deadline)
            except DetectionCancelledError:
                if not is_last:
                    slot.breaker.release()
                state = CoordinatorState.CANCELLED
                break
            except ProviderTimeoutError as e:
                if not is_last:
                    slot.breaker.record_failure()
                last_error = e
                attempts.append(
                    ProviderAttempt(name, AttemptOutcome.TIMED_OUT, _elapsed_ms(start), str(e))
                )
                logger.warning(f"Provider {name} timed out, trying next provider")
                index += 1
                continue
            except Exception as e:
                if not is_last:
                    slot.breaker.record_failure()
                last_error = e
                attempts.append(
                    ProviderAttempt(name, AttemptOutcome.FAILED, _elapsed_ms(start), str(e))
                )
                logger.warning(f"Provider {name} failed: {e}")
                index += 1
                continue

            slot.breaker.record_success()
            attempts.append(ProviderAttempt(name, AttemptOutcome.SUCCEEDED, _elapsed_ms(start)))
            state = CoordinatorState.SUCCEEDED

        if state is CoordinatorState.CANCELLED:
            raise DetectionCancelledError("Context detection cancelled")
        if state is CoordinatorState.ALL_FAILED:
            logger.error(f"All detection providers failed ({len(attempts)} attempts)")
            raise AllProvidersFailedError(last_error)

        provider_used = attempts[-1].provider
        return DetectionOutcome(
            context=context,
            provider_used=provider_used,
            fallback_used=provider_used != primary,
            attempts=tuple(attempts),
        )

    def _should_stop(
        self, cancel_event: Optional[threading.Event], deadline: Optional[float]
    ) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline is not None and self._clock() >= deadline

    def _attempt(
        self,
        slot: _ProviderSlot,
        text: str,
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> TaskContext:
        """Run one provider call, bounded by timeout and deadline for model-backed providers."""
        if slot.provider.kind is ProviderKind.RULE_BASED:
            return slot.provider.detect_context(text)

        budget = self.timeout_s
        if deadline is not None:
            budget = min(budget, max(deadline - self._clock(), 0.0))

        future = _start_call(slot.provider, text)
        expires = time.monotonic() + budget

        while True:
            remaining = expires - time.monotonic()
            if remaining <= 0:
                raise ProviderTimeoutError(
                    slot.provider.name, f"no response within {budget:.2f}s"
                )
            step = remaining if cancel_event is None else min(remaining, CANCEL_POLL_INTERVAL_S)
            done, _ = wait([future], timeout=step, return_when=FIRST_COMPLETED)
            if done:
                return future.result()
            if cancel_event is not None and cancel_event.is_set():
                raise DetectionCancelledError("Context detection cancelled mid-attempt")

    # ------------------------------------------------------------------
    # Health tracking
    # ------------------------------------------------------------------

    def _recorded_status(self, slot: _ProviderSlot) -> Optional[HealthStatus]:
        with slot.lock:
            return slot.health.status if slot.health else None

    def _check_provider(self, provider: DetectionProvider) -> ProviderHealth:
        start = time.perf_counter()
        try:
            info = provider.health_info()
            if info is not None:
                return info
            available = provider.is_available()
        except Exception as e:
            logger.warning(f"Health check for {provider.name} failed: {e}")
            return ProviderHealth(
                status=HealthStatus.UNAVAILABLE, latency_ms=_elapsed_ms(start), error=str(e)
            )
        return ProviderHealth(
            status=HealthStatus.HEALTHY if available else HealthStatus.UNAVAILABLE,
            latency_ms=_elapsed_ms(start),
        )

    def check_health_now(self) -> dict[str, ProviderHealth]:
        """Check every provider once and record the results."""
        results = {}
        for slot in self._chain():
            health = self._check_provider(slot.provider)  # I/O outside any lock
            breaker_state = slot.breaker.state
            if health.status is HealthStatus.HEALTHY and breaker_state is not CircuitState.CLOSED:
                health = ProviderHealth(
                    status=HealthStatus.DEGRADED,
                    last_checked=health.last_checked,
                    latency_ms=health.latency_ms,
                    error=f"circuit {breaker_state.value}",
                )
            with slot.lock:
                slot.health = health
            results[slot.provider.name] = health
        logger.debug(
            "Provider health: "
            + ", ".join(f"{name}={h.status.value}" for name, h in results.items())
        )
        return results

    def get_health(self) -> dict[str, Optional[ProviderHealth]]:
        """Last recorded health per provider (None until first check)."""
        snapshot = {}
        for slot in self._chain():
            with slot.lock:
                snapshot[slot.provider.name] = slot.health
        return snapshot

    def get_status(self) -> dict[str, Any]:
        """Health plus circuit state per provider, for diagnostics."""
        status = {}
        for slot in self._chain():
            with slot.lock:
                health = slot.health
            status[slot.provider.name] = {
                "kind": slot.provider.kind.value,
                "health": health.to_dict() if health else None,
                "circuit": slot.breaker.snapshot().to_dict(),
            }
        return status

    def _monitor_loop(self) -> None:
        logger.info(f"Provider health monitor started ({self.health_check_interval_s}s interval)")
        while not self._stop_event.is_set():
            try:
                self.check_health_now()
            except Exception as e:
                logger.error(f"Provider health monitor error: {e}", exc_info=True)
            self._stop_event.wait(self.health_check_interval_s)
        logger.info("Provider health monitor stopped")

    def start_health_monitor(self) -> None:
        """Start periodic health checks on a daemon thread (idempotent)."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return
        self._stop_event.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitor_loop, daemon=True, name="ProviderHealthMonitor"
        )
        self._monitor_thread.start()

    def stop_health_monitor(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._monitor_thread is not None:
            self._monitor_thread.join(timeout=timeout)
            self._monitor_thread = None

    # ------------------------------------------------------------------
    # Chain management
    # ------------------------------------------------------------------

    def configure_provider(
        self, provider: DetectionProvider, position: Optional[int] = None
    ) -> None:
        """
        Add or replace a provider in the chain.

        A provider with the same name is replaced in place; otherwise the
        new provider is inserted at ``position`` (default: just before the
        last entry, keeping the last-resort provider last).
        """
        slot = self._make_slot(provider)
        with self._chain_lock:
            for i, existing in enumerate(self._slots):
                if existing.provider.name == provider.name:
                    self._slots[i] = slot
                    replaced = existing
                    break
            else:
                replaced = None
                if position is None:
                    position = max(len(self._slots) - 1, 0)
                self._slots.insert(position, slot)
        if replaced is not None:
            replaced.provider.close()
        logger.info(f"Configured provider {provider.name} ({provider.kind.value})")

    def remove_provider(self, name: str) -> bool:
        with self._chain_lock:
            for i, slot in enumerate(self._slots):
                if slot.provider.name == name:
                    removed = self._slots.pop(i)
                    break
            else:
                return False
        removed.provider.close()
        logger.info(f"Removed provider {name}")
        return True

    def close(self) -> None:
        """Stop health checks and close providers; in-flight attempts are abandoned."""
        self.stop_health_monitor()
        for slot in self._chain():
            try:
                slot.provider.close()
            except Exception as e:
                logger.warning(f"Error closing provider {slot.provider.name}: {e}")

    def __enter__(self) -> "FallbackCoordinator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _start_call(provider: DetectionProvider, text: str) -> Future:
    """Run provider.detect_context on a dedicated daemon thread."""
    future: Future = Future()
    future.set_running_or_notify_cancel()

    def run() -> None:
        try:
            future.set_result(provider.detect_context(text))
        except Exception as e:
            future.set_exception(e)

    threading.Thread(target=run, daemon=True, name=f"ContextDetection-{provider.name}").start()
    return future


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)
