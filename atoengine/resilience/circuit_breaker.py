#!/usr/bin/env python3
# CUI // SP-CTI
"""ATO Engine Resilience — Circuit Breaker for upstream collaborators.

Three-state machine per upstream service (subscription directory, cloud
mutation API): CLOSED -> OPEN -> HALF_OPEN. While OPEN, calls fail fast
with ServiceUnavailableError instead of waiting on a dead endpoint.

Usage:
    from atoengine.resilience.circuit_breaker import circuit_breaker

    @circuit_breaker("subscription-directory")
    def fetch_subscriptions():
        ...
"""

import functools
import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional

from atoengine.resilience.errors import ServiceUnavailableError

logger = logging.getLogger("atoengine.resilience.circuit_breaker")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RECOVERY_TIMEOUT_SECONDS = 30.0
DEFAULT_HALF_OPEN_MAX_CALLS = 1


class InMemoryCircuitBreaker:
    """Thread-safe in-memory circuit breaker.

    State transitions:
        CLOSED -> OPEN:      failure_count >= failure_threshold
        OPEN -> HALF_OPEN:   recovery_timeout elapsed
        HALF_OPEN -> CLOSED: half_open_max_calls consecutive successes
        HALF_OPEN -> OPEN:   any failure
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        recovery_timeout_seconds: float = DEFAULT_RECOVERY_TIMEOUT_SECONDS,
        half_open_max_calls: int = DEFAULT_HALF_OPEN_MAX_CALLS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout_seconds
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._opened_at = 0.0
        self._lock = threading.Lock()

    def allow_request(self) -> bool:
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls < self.half_open_max_calls:
                    self._half_open_calls += 1
                    return True
            return False

    def record_success(self):
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.half_open_max_calls:
                    self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0

    def record_failure(self):
        with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._opened_at = self._clock()
                self._transition_to(CircuitState.OPEN)

    def get_state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def reset(self):
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "service": self.service_name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout_seconds": self.recovery_timeout,
            }

    def _maybe_half_open(self):
        """OPEN -> HALF_OPEN once the recovery timeout elapsed (under lock)."""
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._opened_at >= self.recovery_timeout
        ):
            self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState):
        old_state = self._state
        self._state = new_state
        self._success_count = 0
        self._half_open_calls = 0
        if old_state != new_state:
            logger.info(
                "Circuit breaker '%s': %s -> %s",
                self.service_name, old_state.value, new_state.value,
            )


# ---------------------------------------------------------------------------
# Registry: one breaker per service name
# ---------------------------------------------------------------------------
_registry: Dict[str, InMemoryCircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_circuit_breaker(service_name: str, **settings) -> InMemoryCircuitBreaker:
    """Get or create the breaker for ``service_name``.

    ``settings`` only apply when the breaker is first created.
    """
    with _registry_lock:
        if service_name not in _registry:
            _registry[service_name] = InMemoryCircuitBreaker(service_name, **settings)
        return _registry[service_name]


def get_all_breakers() -> Dict[str, dict]:
    with _registry_lock:
        return {name: cb.get_stats() for name, cb in _registry.items()}


def reset_all():
    with _registry_lock:
        for cb in _registry.values():
            cb.reset()


def circuit_breaker(service_name: str, fallback: Optional[Callable] = None, **settings):
    """Decorator wrapping a function with circuit breaker protection.

    Args:
        service_name: Upstream name (e.g. "subscription-directory").
        fallback: Optional callable used while the circuit is OPEN.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            cb = get_circuit_breaker(service_name, **settings)
            if not cb.allow_request():
                if fallback is not None:
                    logger.warning(
                        "Circuit breaker '%s' OPEN, calling fallback for %s",
                        service_name, func.__name__,
                    )
                    return fallback(*args, **kwargs)
                raise ServiceUnavailableError(
                    f"Circuit breaker '{service_name}' is OPEN",
                    service=service_name,
                )
            try:
                result = func(*args, **kwargs)
            except Exception:
                cb.record_failure()
                raise
            cb.record_success()
            return result

        return wrapper

    return decorator
