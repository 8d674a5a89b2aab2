"""Worker pool — fans catalog graph rules out to Resource Graph.

Exactly ``WORKERS`` threads drain a job queue sized to the rule count.  Each
job is one rule; the worker runs its query across every subscription of
the run, converts rows to ``RecommendationResult`` and posts the batch on
the results queue.  The calling thread is the single collector.

Guarantees:
  - rows of one rule keep provider order inside that rule's batch
  - no ordering across rules
  - a row without ``id`` is logged and skipped; its siblings still count
  - a rule whose query fails permanently (or exhausts retries) yields no rows
  - cancellation discards queued jobs, unwinds in-flight queries at their
    next I/O point and raises ``ScanCancelled``
"""
from __future__ import annotations

import json
import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Sequence

from collectors.resource_graph import GraphQueryClient
from engine.context import ScanContext
from engine.errors import PermanentError, ScanCancelled, TransientError
from schemas.domain import GraphRule, RecommendationResult
from schemas.resource_id import resource_group_from_id, subscription_from_id
from schemas.taxonomy import VALIDATED_BY_GRAPH

_log = logging.getLogger(__name__)

WORKERS = 10

# Collector wake-up interval while waiting on the results queue.
_COLLECT_POLL_SECONDS = 0.1


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def row_to_result(rule: GraphRule, row: dict[str, Any], context: ScanContext) -> RecommendationResult | None:
    """Build a result from one query row; ``None`` when the row has no id."""
    resource_id = row.get("id")
    if not resource_id or not isinstance(resource_id, str):
        _log.warning(
            "Skipping row without 'id' for recommendation %s", rule.recommendation_id,
        )
        return None
    sub = (_to_str(row.get("subscriptionId")) or subscription_from_id(resource_id)).lower()
    return RecommendationResult(
        recommendation_id=rule.recommendation_id,
        resource_id=resource_id,
        resource_type=rule.resource_type,
        resource_name=_to_str(row.get("name")),
        resource_group=_to_str(row.get("resourceGroup")) or resource_group_from_id(resource_id),
        subscription_id=sub,
        subscription_name=context.subscription_name(sub),
        category=rule.category,
        impact=rule.impact,
        recommendation=rule.recommendation,
        source=rule.source,
        learn_more_url=rule.learn_more_url,
        recommendation_type=rule.recommendation_type,
        param1=_to_str(row.get("param1")),
        param2=_to_str(row.get("param2")),
        param3=_to_str(row.get("param3")),
        param4=_to_str(row.get("param4")),
        param5=_to_str(row.get("param5")),
        tags=_to_str(row.get("tags")),
        validated_using=VALIDATED_BY_GRAPH,
    )


class WorkerPool:
    """Fixed-width pool executing graph rules through a ``GraphQueryClient``."""

    def __init__(self, graph: GraphQueryClient, *, workers: int = WORKERS):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.graph = graph
        self.workers = workers
        self.jobs_dispatched = 0

    def _execute(self, rule: GraphRule, subscriptions: list[str],
                 context: ScanContext) -> list[RecommendationResult]:
        try:
            rows = self.graph.query(rule.query, subscriptions, context.cancel)
        except (PermanentError, TransientError) as e:
            _log.warning("Recommendation %s skipped: %s", rule.recommendation_id, e)
            return []
        out: list[RecommendationResult] = []
        for row in rows:
            result = row_to_result(rule, row, context) if isinstance(row, dict) else None
            if result is not None:
                out.append(result)
        _log.debug("Recommendation %s: %d rows, %d results",
                   rule.recommendation_id, len(rows), len(out))
        return out

    def run(self, rules: Sequence[GraphRule], context: ScanContext) -> list[RecommendationResult]:
        """Dispatch *rules*; return every result once all jobs are drained."""
        if not rules:
            return []
        jobs: queue.Queue[GraphRule] = queue.Queue(maxsize=len(rules))
        for rule in rules:
            jobs.put_nowait(rule)
        self.jobs_dispatched += len(rules)
        results: queue.Queue[tuple[GraphRule, Any]] = queue.Queue(maxsize=len(rules))
        subscriptions = context.subscription_ids
        cancel = context.cancel
        stop = threading.Event()

        def _worker() -> None:
            while not (cancel.is_set() or stop.is_set()):
                try:
                    rule = jobs.get_nowait()
                except queue.Empty:
                    return
                try:
                    batch: Any = self._execute(rule, subscriptions, context)
                except ScanCancelled:
                    return
                except Exception as e:  # re-raised by the collector
                    batch = e
                results.put((rule, batch))

        collected: list[RecommendationResult] = []
        width = min(self.workers, len(rules))
        with ThreadPoolExecutor(max_workers=width, thread_name_prefix="graph-worker") as pool:
            for _ in range(width):
                pool.submit(_worker)
            pending = len(rules)
            try:
                while pending:
                    try:
                        rule, batch = results.get(timeout=_COLLECT_POLL_SECONDS)
                    except queue.Empty:
                        if cancel.is_set():
                            raise ScanCancelled("graph scan cancelled")
                        continue
                    pending -= 1
                    if isinstance(batch, Exception):
                        raise batch
                    collected.extend(batch)
            except BaseException:
                stop.set()
                _drain(jobs)
                raise
        return collected


def _drain(jobs: queue.Queue) -> None:
    while True:
        try:
            jobs.get_nowait()
        except queue.Empty:
            return
