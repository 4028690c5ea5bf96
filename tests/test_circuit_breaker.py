# CUI // SP-CTI
"""Tests for atoengine.resilience.circuit_breaker."""

import pytest

from atoengine.resilience.circuit_breaker import (
    CircuitState,
    InMemoryCircuitBreaker,
    _registry,
    _registry_lock,
    circuit_breaker,
    get_all_breakers,
    get_circuit_breaker,
    reset_all,
)
from atoengine.resilience.errors import ServiceUnavailableError, UpstreamUnavailableError


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(autouse=True)
def _clear_registry():
    with _registry_lock:
        _registry.clear()
    yield
    with _registry_lock:
        _registry.clear()


@pytest.fixture
def clock():
    return FakeClock()


def _make_cb(clock, threshold=3, recovery=30.0, half_open_max=1):
    return InMemoryCircuitBreaker(
        service_name="cloud-mutation",
        failure_threshold=threshold,
        recovery_timeout_seconds=recovery,
        half_open_max_calls=half_open_max,
        clock=clock,
    )


class TestStateMachine:
    def test_opens_at_threshold(self, clock):
        cb = _make_cb(clock)
        cb.record_failure()
        cb.record_failure()
        assert cb.get_state() == CircuitState.CLOSED
        cb.record_failure()
        assert cb.get_state() == CircuitState.OPEN
        assert cb.allow_request() is False

    def test_success_resets_failure_count(self, clock):
        cb = _make_cb(clock)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        assert cb.get_state() == CircuitState.CLOSED

    def test_half_open_after_recovery(self, clock):
        cb = _make_cb(clock, threshold=1)
        cb.record_failure()
        clock.advance(29.9)
        assert cb.get_state() == CircuitState.OPEN
        clock.advance(0.1)
        assert cb.get_state() == CircuitState.HALF_OPEN

    def test_half_open_limits_trial_calls(self, clock):
        cb = _make_cb(clock, threshold=1, half_open_max=2)
        cb.record_failure()
        clock.advance(30)
        assert cb.allow_request() is True
        assert cb.allow_request() is True
        assert cb.allow_request() is False

    def test_half_open_successes_close(self, clock):
        cb = _make_cb(clock, threshold=1, half_open_max=2)
        cb.record_failure()
        clock.advance(30)
        cb.allow_request()
        cb.record_success()
        assert cb.get_state() == CircuitState.HALF_OPEN
        cb.record_success()
        assert cb.get_state() == CircuitState.CLOSED

    def test_half_open_failure_reopens(self, clock):
        cb = _make_cb(clock, threshold=1)
        cb.record_failure()
        clock.advance(30)
        assert cb.allow_request() is True
        cb.record_failure()
        assert cb.get_state() == CircuitState.OPEN

    def test_reset(self, clock):
        cb = _make_cb(clock, threshold=1)
        cb.record_failure()
        cb.reset()
        assert cb.get_state() == CircuitState.CLOSED
        assert cb.get_stats()["failure_count"] == 0


class TestDecorator:
    def test_open_circuit_fails_fast(self):
        calls = []

        @circuit_breaker("directory", failure_threshold=2)
        def lookup():
            calls.append(1)
            raise UpstreamUnavailableError("down")

        for _ in range(2):
            with pytest.raises(UpstreamUnavailableError):
                lookup()
        with pytest.raises(ServiceUnavailableError) as exc_info:
            lookup()
        assert exc_info.value.service == "directory"
        assert len(calls) == 2

    def test_fallback_used_when_open(self):
        @circuit_breaker("directory", fallback=lambda name: f"cached:{name}", failure_threshold=1)
        def lookup(name):
            raise UpstreamUnavailableError("down")

        with pytest.raises(UpstreamUnavailableError):
            lookup("prod")
        assert lookup("prod") == "cached:prod"

    def test_success_passes_through(self):
        @circuit_breaker("directory")
        def lookup():
            return "ok"

        assert lookup() == "ok"
        assert get_all_breakers()["directory"]["state"] == "closed"


class TestRegistry:
    def test_get_or_create(self):
        cb = get_circuit_breaker("svc", failure_threshold=7)
        assert get_circuit_breaker("svc", failure_threshold=1) is cb
        assert cb.failure_threshold == 7

    def test_reset_all(self):
        cb = get_circuit_breaker("svc", failure_threshold=1)
        cb.record_failure()
        assert get_all_breakers()["svc"]["state"] == "open"
        reset_all()
        assert get_all_breakers()["svc"]["state"] == "closed"
