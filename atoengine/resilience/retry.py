#!/usr/bin/env python3
# CUI // SP-CTI
"""ATO Engine Resilience — Retry with exponential backoff.

Wraps calls to upstream collaborators (subscription directory, scanners)
that fail with transient errors. Permanent errors are re-raised at once.

Usage:
    from atoengine.resilience.retry import retry

    @retry(max_retries=2, retryable_exceptions=(UpstreamUnavailableError,))
    def lookup(name):
        ...
"""

import functools
import logging
import random
import time
from typing import Callable, Optional, Sequence, Type

from atoengine.resilience.errors import AtoEngineError, AtoEngineTransientError

logger = logging.getLogger("atoengine.resilience.retry")


def backoff_delay(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
) -> float:
    """Exponential backoff with jitter: min(cap, base * 2^attempt) * U(0.5, 1.0)."""
    delay = min(max_delay, base_delay * (2 ** attempt))
    return delay * random.uniform(0.5, 1.0)


def _is_retryable(exc: Exception) -> bool:
    # Engine errors carry their own verdict; anything else matched by type.
    if isinstance(exc, AtoEngineError):
        return exc.retryable
    return True


def retry(
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    retryable_exceptions: Sequence[Type[Exception]] = (AtoEngineTransientError,),
    on_retry: Optional[Callable] = None,
):
    """Decorator that retries a function on transient failures.

    Args:
        max_retries: Retry attempts after the first call.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay cap in seconds.
        retryable_exceptions: Exception types that trigger a retry.
        on_retry: Optional callback(attempt, exc, delay) before each retry.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            retryable = tuple(retryable_exceptions)
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except retryable as exc:
                    if attempt >= max_retries or not _is_retryable(exc):
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    logger.warning(
                        "Retry %d/%d for %s (%s: %s), waiting %.1fs",
                        attempt + 1, max_retries, func.__name__,
                        type(exc).__name__, exc, delay,
                    )
                    if on_retry:
                        on_retry(attempt, exc, delay)
                    time.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
