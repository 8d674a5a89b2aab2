"""Token bucket and the graph-scan burst behaviour.

Timings are scaled down: a 0.5 s refill interval stands in for the
provider's 5 s window.
"""
from __future__ import annotations

import threading
import time

import pytest

from collectors.resource_graph import GraphQueryClient
from collectors.throttling import GRAPH_BURST, GRAPH_CAPACITY, TokenBucket
from engine.context import ScanContext
from engine.errors import ScanCancelled
from engine.worker_pool import WorkerPool
from fakes import SUB_A, TimedSdk, make_graph_rule

INTERVAL = 0.5


def _scaled_bucket(**kw) -> TokenBucket:
    return TokenBucket(
        refill_interval=INTERVAL,
        windows=((INTERVAL, 14), (2 * INTERVAL, 24)),
        **kw,
    )


def _max_in_window(stamps: list[float], span: float) -> int:
    stamps = sorted(stamps)
    best = 0
    for i, start in enumerate(stamps):
        best = max(best, sum(1 for t in stamps[i:] if t < start + span))
    return best


class TestTokenBucket:

    def test_defaults(self):
        bucket = TokenBucket()
        assert bucket.capacity == GRAPH_CAPACITY == 14
        assert bucket.available == GRAPH_BURST == 10

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            TokenBucket(capacity=5, burst=6)
        with pytest.raises(ValueError):
            TokenBucket(refill_interval=0)

    def test_burst_is_immediate(self):
        bucket = _scaled_bucket()
        started = time.monotonic()
        for _ in range(10):
            bucket.acquire()
        assert time.monotonic() - started < INTERVAL / 2
        assert bucket.available == 0

    def test_eleventh_waits_for_refill(self):
        bucket = _scaled_bucket()
        started = time.monotonic()
        for _ in range(11):
            bucket.acquire()
        assert time.monotonic() - started >= INTERVAL * 0.9

    def test_refill_never_exceeds_capacity(self):
        clock = [0.0]
        bucket = TokenBucket(clock=lambda: clock[0])
        clock[0] = 60.0
        assert bucket.available == 14

    def test_window_limits_hold(self):
        bucket = _scaled_bucket()
        stamps = []
        for _ in range(30):
            bucket.acquire()
            stamps.append(time.monotonic())
        # Grants are stamped a hair after the limiter's own clock reading.
        slack = 0.02
        assert _max_in_window(stamps, INTERVAL - slack) <= 14
        assert _max_in_window(stamps, 2 * INTERVAL - slack) <= 24

    def test_cancel_interrupts_wait(self):
        bucket = _scaled_bucket(burst=0)
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ScanCancelled):
            bucket.acquire(cancel)

    def test_waiters_are_fifo(self):
        bucket = TokenBucket(burst=0, refill_amount=1, refill_interval=0.05, windows=())
        order: list[int] = []
        lock = threading.Lock()

        def take(i: int) -> None:
            bucket.acquire()
            with lock:
                order.append(i)

        threads = []
        for i in range(4):
            t = threading.Thread(target=take, args=(i,))
            t.start()
            threads.append(t)
            time.sleep(0.01)
        for t in threads:
            t.join(timeout=5)
        assert order == [0, 1, 2, 3]


# ── Graph scan burst ──────────────────────────────────────────────

def test_rate_limiter_burst_with_twenty_rules():
    """20 rules, 10 workers: 10 queries at once, the 11th after a refill."""
    sdk = TimedSdk()
    graph = GraphQueryClient(sdk, limiter=_scaled_bucket())
    pool = WorkerPool(graph, workers=10)
    context = ScanContext(subscriptions={SUB_A: "a"})
    rules = [make_graph_rule(f"r-{i:02d}") for i in range(20)]

    started = time.monotonic()
    pool.run(rules, context)
    elapsed = time.monotonic() - started

    stamps = sorted(sdk.stamps)
    assert len(stamps) == 20
    assert stamps[9] - stamps[0] < INTERVAL / 2
    assert stamps[10] - stamps[0] >= INTERVAL * 0.9
    assert INTERVAL * 0.9 <= elapsed <= 3 * INTERVAL
