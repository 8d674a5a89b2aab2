"""Exponential-backoff retry for transient provider failures."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, TypeVar

from engine.errors import ScanCancelled, TransientError

_log = logging.getLogger(__name__)

T = TypeVar("T")

# Status codes that are worth another attempt.
RETRYABLE_STATUS: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    initial_delay: float = 0.020
    multiplier: float = 2.0
    max_delay: float = 600.0
    max_attempts: int = 3

    def delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before attempt ``attempt + 1`` (attempt is 1-based)."""
        backoff = min(self.max_delay, self.initial_delay * (self.multiplier ** (attempt - 1)))
        if retry_after is not None:
            backoff = max(backoff, min(self.max_delay, retry_after))
        return backoff


DEFAULT_POLICY = RetryPolicy()


def call_with_retry(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy = DEFAULT_POLICY,
    cancel: threading.Event | None = None,
    describe: str = "request",
) -> T:
    """Run *fn*, retrying ``TransientError`` per *policy*.

    The last ``TransientError`` propagates once attempts are exhausted.
    Any other exception propagates immediately.
    """
    attempt = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise ScanCancelled(f"{describe} cancelled")
        attempt += 1
        try:
            return fn()
        except TransientError as e:
            if attempt >= policy.max_attempts:
                _log.warning("%s failed after %d attempts: %s", describe, attempt, e)
                raise
            delay = policy.delay(attempt, e.retry_after)
            _log.debug("%s transient failure (%s), retry %d in %.3fs", describe, e, attempt, delay)
            waiter = cancel or threading.Event()
            if waiter.wait(delay):
                raise ScanCancelled(f"{describe} cancelled") from e
