"""Tests for the per-provider circuit breaker."""

import pytest

from directive_engine.circuit_breaker import CircuitBreaker, CircuitState


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("ollama", failure_threshold=3, reset_timeout_s=30.0, clock=clock)


class TestCircuitBreaker:
    """Tests for CircuitBreaker state transitions."""

    def test_starts_closed(self, breaker):
        assert breaker.state is CircuitState.CLOSED
        assert breaker.allow_request()

    def test_opens_after_threshold(self, breaker):
        """Consecutive failures at the threshold open the circuit."""
        for _ in range(3):
            breaker.record_failure()
        assert breaker.state is CircuitState.OPEN
        assert not breaker.allow_request()

    def test_success_resets_count(self, breaker):
        """A success between failures resets the consecutive count."""
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.snapshot().failures == 1

    def test_half_open_after_cooldown(self, breaker, clock):
        """After the cooldown exactly one trial call is allowed."""
        for _ in range(3):
            breaker.record_failure()
        clock.advance(30.0)
        assert breaker.allow_request()
        assert breaker.state is CircuitState.HALF_OPEN
        assert not breaker.allow_request()

    def test_trial_success_closes(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(31.0)
        breaker.allow_request()
        breaker.record_success()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.allow_request()

    def test_trial_failure_reopens(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(31.0)
        breaker.allow_request()
        breaker.record_failure()
        assert breaker.state is CircuitState.OPEN
        assert not breaker.allow_request()

    def test_release_returns_trial_permit(self, breaker, clock):
        """An abandoned trial does not count as a failure and frees the permit."""
        for _ in range(3):
            breaker.record_failure()
        clock.advance(31.0)
        assert breaker.allow_request()
        breaker.release()
        assert breaker.state is CircuitState.HALF_OPEN
        assert breaker.allow_request()

    def test_reset(self, breaker):
        for _ in range(3):
            breaker.record_failure()
        breaker.reset()
        snapshot = breaker.snapshot()
        assert snapshot.state is CircuitState.CLOSED
        assert snapshot.failures == 0
        assert snapshot.last_failure_time is None

    def test_snapshot_to_dict(self, breaker, clock):
        breaker.record_failure()
        data = breaker.snapshot().to_dict()
        assert data == {"state": "closed", "failures": 1, "last_failure_time": clock.now}
