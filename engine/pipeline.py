"""Pipeline — dependency-ordered execution of scan stages.

A ``Stage`` is a value: a unique name, the names it depends on, an enabled
flag and a function over the ``ScanContext``.  The ``Pipeline`` resolves the
stage set once at construction and runs it once.

Resolution rules:
  - duplicate stage names are a configuration error
  - a dependency naming no registered stage is a configuration error
  - a disabled stage is dropped, and so is every stage that (transitively)
    depends on it; each drop is logged as a warning
  - a dependency cycle is a configuration error

Execution runs stages serially in Kahn order (ties broken by registration
order).  The first failing stage aborts the run: cancellation propagates
unchanged, every other error is wrapped in ``StageError`` carrying the
stage name, the elapsed time and a snapshot of the metrics map.

Usage:
    from engine.pipeline import Pipeline, Stage
    pipeline = Pipeline([
        Stage("subscription-discovery", discover),
        Stage("graph-scan", graph_scan, depends_on=("subscription-discovery",)),
    ])
    pipeline.run(context)
"""
from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from engine.context import ScanContext, StageMetrics
from engine.errors import ConfigurationError, ScanCancelled, StageError

_log = logging.getLogger(__name__)

# A stage returns the number of records it emitted (or None).
StageFn = Callable[[ScanContext], Optional[int]]


@dataclass(frozen=True)
class Stage:
    name: str
    run: StageFn
    depends_on: tuple[str, ...] = ()
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ConfigurationError("stage name must be non-empty")
        if self.name in self.depends_on:
            raise ConfigurationError(f"stage '{self.name}' depends on itself")
        object.__setattr__(self, "depends_on", tuple(self.depends_on))


def _drop_disabled(stages: list[Stage]) -> list[Stage]:
    """Remove disabled stages and, transitively, their dependents."""
    registered = {s.name for s in stages}
    for stage in stages:
        for dep in stage.depends_on:
            if dep not in registered:
                raise ConfigurationError(
                    f"stage '{stage.name}' depends on unknown stage '{dep}'"
                )

    active = {s.name for s in stages if s.enabled}
    changed = True
    while changed:
        changed = False
        for stage in stages:
            if stage.name not in active:
                continue
            missing = [d for d in stage.depends_on if d not in active]
            if missing:
                _log.warning("Stage %s skipped: dependency %s is disabled",
                             stage.name, ", ".join(missing))
                active.discard(stage.name)
                changed = True
    return [s for s in stages if s.name in active]


def topological_order(stages: list[Stage]) -> list[Stage]:
    """Kahn's algorithm; ties keep registration order."""
    position = {s.name: i for i, s in enumerate(stages)}
    by_name = {s.name: s for s in stages}
    in_degree = {s.name: len(set(s.depends_on)) for s in stages}
    children: dict[str, list[str]] = {s.name: [] for s in stages}
    for s in stages:
        for dep in set(s.depends_on):
            children[dep].append(s.name)

    queue = deque(s.name for s in stages if in_degree[s.name] == 0)
    order: list[Stage] = []
    while queue:
        current = queue.popleft()
        order.append(by_name[current])
        for child in sorted(children[current], key=position.__getitem__):
            in_degree[child] -= 1
            if in_degree[child] == 0:
                queue.append(child)

    if len(order) != len(stages):
        cyclic = sorted(n for n, d in in_degree.items() if d > 0)
        raise ConfigurationError(f"stage dependency cycle among: {', '.join(cyclic)}")
    return order


class Pipeline:
    """An ordered, validated, single-use list of stages."""

    def __init__(self, stages: Iterable[Stage]):
        stages = list(stages)
        seen: set[str] = set()
        for stage in stages:
            if stage.name in seen:
                raise ConfigurationError(f"duplicate stage '{stage.name}'")
            seen.add(stage.name)
        self.stages = topological_order(_drop_disabled(stages))
        self._ran = False

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.stages]

    def __contains__(self, name: str) -> bool:
        return name in self.names

    def run(self, context: ScanContext) -> ScanContext:
        if self._ran:
            raise RuntimeError("a pipeline runs only once")
        self._ran = True
        run_started = time.monotonic()
        for stage in self.stages:
            context.check_cancelled()
            metrics = StageMetrics(name=stage.name, started_at=time.monotonic())
            context.metrics[stage.name] = metrics
            _log.info("Stage %s started", stage.name)
            try:
                records = stage.run(context)
            except ScanCancelled:
                self._finish(metrics, error="cancelled")
                raise
            except Exception as e:
                self._finish(metrics, error=str(e) or type(e).__name__)
                _log.error("Stage %s failed: %s", stage.name, e)
                raise StageError(
                    stage.name,
                    time.monotonic() - run_started,
                    {name: m.as_dict() for name, m in context.metrics.items()},
                    e,
                ) from e
            self._finish(metrics, records=records or 0)
            _log.info("Stage %s finished in %.2fs (%d records)",
                      stage.name, metrics.elapsed, metrics.records)
        return context

    @staticmethod
    def _finish(metrics: StageMetrics, *, records: int = 0, error: str = "") -> None:
        metrics.finished_at = time.monotonic()
        metrics.elapsed = metrics.finished_at - metrics.started_at
        metrics.records = records
        metrics.error = error
