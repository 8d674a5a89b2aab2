"""Scan context — the per-run state carried through the pipeline.

Created by the pipeline at start, mutated by stages in dependency order,
consumed by ``reporting.report_data``.  Auxiliary indexes are written only
by the preflight stage; result lists are appended through the ``add_*``
methods, which serialise writers.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from engine.errors import ScanCancelled
from engine.filters import Filters
from schemas.domain import (
    AdvisorResult,
    ArcSQLResult,
    CarbonResult,
    CostResult,
    DefenderPlan,
    DefenderRecommendation,
    PluginOutput,
    PolicyResult,
    RecommendationResult,
    Resource,
    ResourceTypeCount,
)


@dataclass
class StageMetrics:
    """Timing and outcome of one stage run."""
    name: str
    started_at: float = 0.0
    finished_at: float = 0.0
    elapsed: float = 0.0
    records: int = 0
    skipped: bool = False
    error: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "elapsed": round(self.elapsed, 3),
            "records": self.records,
            "skipped": self.skipped,
            "error": self.error,
        }


@dataclass
class ScanContext:
    filters: Filters = field(default_factory=Filters)
    subscriptions: dict[str, str] = field(default_factory=dict)   # id -> display name
    cancel: threading.Event = field(default_factory=threading.Event)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stage_options: dict[str, dict[str, str]] = field(default_factory=dict)
    mask: bool = False

    # ── Auxiliary indexes (preflight) ─────────────────────────────
    diagnostics: dict[str, bool] = field(default_factory=dict)
    private_endpoints: dict[str, bool] = field(default_factory=dict)
    public_ips: dict[str, frozenset[str]] = field(default_factory=dict)

    # ── Results ───────────────────────────────────────────────────
    results: list[RecommendationResult] = field(default_factory=list)
    resources: list[Resource] = field(default_factory=list)
    out_of_scope: list[Resource] = field(default_factory=list)
    type_counts: list[ResourceTypeCount] = field(default_factory=list)
    advisor: list[AdvisorResult] = field(default_factory=list)
    policy: list[PolicyResult] = field(default_factory=list)
    arc_sql: list[ArcSQLResult] = field(default_factory=list)
    defender: list[DefenderPlan] = field(default_factory=list)
    defender_recommendations: list[DefenderRecommendation] = field(default_factory=list)
    cost: CostResult | None = None
    carbon: list[CarbonResult] = field(default_factory=list)
    plugin_outputs: list[PluginOutput] = field(default_factory=list)

    metrics: dict[str, StageMetrics] = field(default_factory=dict)

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    # ── Accessors ─────────────────────────────────────────────────
    @property
    def subscription_ids(self) -> list[str]:
        return sorted(self.subscriptions)

    def subscription_name(self, subscription_id: str) -> str:
        return self.subscriptions.get((subscription_id or "").lower(), "")

    def option(self, stage: str, key: str, default: str = "") -> str:
        return self.stage_options.get(stage, {}).get(key, default)

    def flag(self, stage: str, key: str) -> bool:
        return self.option(stage, key).strip().lower() in ("1", "true", "yes", "on")

    def check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise ScanCancelled("scan cancelled")

    # ── Index lookups used by code rules ──────────────────────────
    def has_diagnostics(self, resource_id: str) -> bool:
        return self.diagnostics.get((resource_id or "").lower(), False)

    def has_private_endpoint(self, resource_id: str) -> bool:
        return self.private_endpoints.get((resource_id or "").lower(), False)

    def public_ip_zones(self, public_ip_id: str) -> frozenset[str]:
        return self.public_ips.get((public_ip_id or "").lower(), frozenset())

    # ── Serialised writers ────────────────────────────────────────
    def add_results(self, results: Iterable[RecommendationResult]) -> int:
        batch = list(results)
        with self._lock:
            self.results.extend(batch)
        return len(batch)

    def add_resources(self, resources: Iterable[Resource], *, in_scope: bool = True) -> int:
        batch = list(resources)
        with self._lock:
            (self.resources if in_scope else self.out_of_scope).extend(batch)
        return len(batch)

    def drop_subscription(self, subscription_id: str) -> bool:
        """Remove a subscription from the active set; later stages skip it."""
        with self._lock:
            return self.subscriptions.pop((subscription_id or "").lower(), None) is not None

    def add_plugin_output(self, output: PluginOutput) -> None:
        with self._lock:
            self.plugin_outputs.append(output)
