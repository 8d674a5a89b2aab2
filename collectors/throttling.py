"""Token-bucket rate limiter shared by every Resource Graph caller.

Resource Graph allows 15 queries per 5-second window per user.  The bucket
starts with a burst of 10 tokens, holds at most 14, and gains 10 tokens on
a fixed 5-second schedule.  A sliding-window guard additionally caps
acquisitions at 14 per 5 s and 24 per 10 s so a full bucket followed by a
refill can never exceed the provider envelope.

Acquisition blocks and is FIFO among waiters.  Waiting is interruptible
through a ``threading.Event`` cancellation token.

Usage:
    from collectors.throttling import TokenBucket
    limiter = TokenBucket()
    limiter.acquire(cancel)    # blocks until a token is granted
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable

from engine.errors import ScanCancelled

_log = logging.getLogger(__name__)

GRAPH_CAPACITY = 14
GRAPH_BURST = 10
GRAPH_REFILL_AMOUNT = 10
GRAPH_REFILL_INTERVAL = 5.0
GRAPH_WINDOWS: tuple[tuple[float, int], ...] = ((5.0, 14), (10.0, 24))

# Upper bound on a single wait while a cancel token is attached.
_CANCEL_POLL_SECONDS = 0.05


class TokenBucket:
    """Blocking FIFO token bucket with a fixed refill schedule."""

    def __init__(
        self,
        capacity: int = GRAPH_CAPACITY,
        burst: int = GRAPH_BURST,
        refill_amount: int = GRAPH_REFILL_AMOUNT,
        refill_interval: float = GRAPH_REFILL_INTERVAL,
        windows: tuple[tuple[float, int], ...] = GRAPH_WINDOWS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1 or burst < 0 or burst > capacity:
            raise ValueError("burst must be between 0 and capacity (capacity >= 1)")
        if refill_amount < 1 or refill_interval <= 0:
            raise ValueError("refill amount and interval must be positive")
        self.capacity = capacity
        self.refill_amount = refill_amount
        self.refill_interval = refill_interval
        self.windows = tuple(sorted(windows))
        self._clock = clock
        self._cond = threading.Condition()
        self._tokens = burst
        self._next_refill = clock() + refill_interval
        self._waiters: deque[object] = deque()
        self._history: deque[float] = deque()
        self.acquired = 0

    # ── Internals (caller holds the lock) ─────────────────────────
    def _refill(self, now: float) -> None:
        if now < self._next_refill:
            return
        periods = int((now - self._next_refill) // self.refill_interval) + 1
        self._tokens = min(self.capacity, self._tokens + periods * self.refill_amount)
        self._next_refill += periods * self.refill_interval

    def _window_wait(self, now: float) -> float:
        if not self.windows:
            return 0.0
        horizon = now - self.windows[-1][0]
        while self._history and self._history[0] <= horizon:
            self._history.popleft()
        wait = 0.0
        for span, limit in self.windows:
            recent = [ts for ts in self._history if ts > now - span]
            if len(recent) >= limit:
                # The oldest acquisitions must age out before another grant.
                wait = max(wait, recent[len(recent) - limit] + span - now)
        return wait

    def _wait_time(self, now: float) -> float:
        token_wait = 0.0 if self._tokens >= 1 else self._next_refill - now
        return max(token_wait, self._window_wait(now))

    # ── Public API ────────────────────────────────────────────────
    def acquire(self, cancel: threading.Event | None = None) -> None:
        """Take one token, blocking until one is available.

        Raises ``ScanCancelled`` if *cancel* is set before the grant.
        """
        me = object()
        with self._cond:
            self._waiters.append(me)
            try:
                while True:
                    if cancel is not None and cancel.is_set():
                        raise ScanCancelled("rate limiter wait cancelled")
                    now = self._clock()
                    self._refill(now)
                    timeout: float | None = None
                    if self._waiters[0] is me:
                        wait = self._wait_time(now)
                        if wait <= 0:
                            self._tokens -= 1
                            self._history.append(now)
                            self.acquired += 1
                            self._waiters.popleft()
                            self._cond.notify_all()
                            return
                        timeout = wait
                    if cancel is not None:
                        timeout = _CANCEL_POLL_SECONDS if timeout is None else min(timeout, _CANCEL_POLL_SECONDS)
                    self._cond.wait(timeout=timeout)
            except BaseException:
                if me in self._waiters:
                    self._waiters.remove(me)
                    self._cond.notify_all()
                raise

    @property
    def available(self) -> int:
        with self._cond:
            self._refill(self._clock())
            return self._tokens


def new_graph_limiter() -> TokenBucket:
    """Limiter sized for the Resource Graph per-user quota."""
    return TokenBucket()
