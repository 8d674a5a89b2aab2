"""Pipeline builder — scan parameters, stage configuration and presets.

Usage:
    from engine.builder import ScanParams, run_scan
    params = ScanParams(subscriptions=["<sub-id>"], stage_toggles=parse_stage_list("cost,-advisor"))
    context = run_scan(params)

Presets:
  - default      every dependency-consistent enabled stage; the graph stage
                 must be enabled
  - plugin-only  subscription discovery and the plugin stage

Stage toggles and options accept the short aliases of ``STAGE_ALIASES``
(``graph``, ``cost``, ...) as well as the full stage names.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, Optional

from azure.core.credentials import TokenCredential
from azure.mgmt.resourcegraph import ResourceGraphClient

from collectors.azure_client import AzureClient, build_client, get_shared_credential
from collectors.resource_graph import GraphQueryClient
from collectors.throttling import TokenBucket, new_graph_limiter
from config import load_settings
from control_packs.loader import Catalog, load_catalog
from engine.context import ScanContext
from engine.errors import ConfigurationError
from engine.filters import Filters
from engine.pipeline import Pipeline
from engine.stages import (
    GRAPH_SCAN,
    PLUGIN_SCAN,
    STAGE_ALIASES,
    STAGE_GRAPH,
    SUBSCRIPTION_DISCOVERY,
    ScanServices,
    ScopeRequest,
    build_stages,
)
from engine.worker_pool import WORKERS
from evaluators.registry import resource_types_for, select_scanners
from plugins.registry import enable_plugins

_log = logging.getLogger(__name__)


@dataclass
class ScanParams:
    subscriptions: list[str] = field(default_factory=list)
    management_groups: list[str] = field(default_factory=list)
    resource_groups: list[str] = field(default_factory=list)
    filters: Filters = field(default_factory=Filters)
    scanners: list[str] = field(default_factory=list)
    plugins: list[str] = field(default_factory=list)
    plugin_dirs: list[str] = field(default_factory=list)
    mask: bool = False
    plugin_only: bool = False
    stage_toggles: dict[str, bool] = field(default_factory=dict)
    stage_options: dict[str, dict[str, str]] = field(default_factory=dict)

    @property
    def scope(self) -> ScopeRequest:
        return ScopeRequest(
            subscriptions=list(self.subscriptions),
            management_groups=list(self.management_groups),
            resource_groups=list(self.resource_groups),
        )


# ── Stage configuration ───────────────────────────────────────────
def canonical_stage(name: str) -> str:
    key = (name or "").strip().lower()
    key = STAGE_ALIASES.get(key, key)
    if key not in STAGE_GRAPH:
        known = sorted(set(STAGE_GRAPH) | set(STAGE_ALIASES))
        raise ConfigurationError(f"Unknown stage '{name}'. Known: {', '.join(known)}")
    return key


def parse_stage_list(items: str | Iterable[str] | None) -> dict[str, bool]:
    """``"cost,-advisor"`` -> ``{"cost-scan": True, "advisor-scan": False}``."""
    if items is None:
        return {}
    if isinstance(items, str):
        items = items.split(",")
    toggles: dict[str, bool] = {}
    for item in items:
        item = item.strip()
        if not item:
            continue
        if item.startswith("-"):
            toggles[canonical_stage(item[1:])] = False
        else:
            toggles[canonical_stage(item.lstrip("+"))] = True
    return toggles


def parse_stage_options(items: Iterable[str] | None) -> dict[str, dict[str, str]]:
    """``["cost.previousMonth=true"]`` -> ``{"cost-scan": {"previousMonth": "true"}}``."""
    options: dict[str, dict[str, str]] = {}
    for item in items or ():
        name, sep, value = item.partition("=")
        stage, dot, key = name.strip().partition(".")
        if not sep or not dot or not key:
            raise ConfigurationError(f"Invalid stage option '{item}': expected stage.key=value")
        options.setdefault(canonical_stage(stage), {})[key.strip()] = value.strip()
    return options


def resolve_enabled(params: ScanParams) -> dict[str, bool]:
    enabled = {name: default for name, (_deps, default) in STAGE_GRAPH.items()}
    if params.plugins:
        enabled[PLUGIN_SCAN] = True
    enabled.update(params.stage_toggles)
    return enabled


# ── Collaborators ─────────────────────────────────────────────────
def build_services(
    params: ScanParams,
    *,
    cancel: Optional[threading.Event] = None,
    credential: Optional[TokenCredential] = None,
    arm: Optional[AzureClient] = None,
    graph: Optional[GraphQueryClient] = None,
    catalog: Optional[Catalog] = None,
    limiter: Optional[TokenBucket] = None,
) -> ScanServices:
    """Construct the collaborators of one run; anything passed in is used as is."""
    scanners = select_scanners(params.scanners)
    if params.scanners:
        params.filters.add_include_resource_types(resource_types_for(params.scanners))

    catalog = catalog if catalog is not None else load_catalog()
    plugins = []
    if not catalog.frozen:
        for scanner in scanners:
            catalog.add_all(scanner.recommendations().values())
        plugin_dirs = params.plugin_dirs or [load_settings().plugin_dir]
        plugins = enable_plugins(params.plugins, catalog, plugin_dirs)
        catalog.freeze()

    if arm is None:
        arm = build_client(credential, cancel)
    if graph is None:
        sdk = ResourceGraphClient(credential or get_shared_credential(),
                                  base_url=load_settings().arm_endpoint)
        graph = GraphQueryClient(sdk, limiter=limiter or new_graph_limiter())
    return ScanServices(arm=arm, graph=graph, catalog=catalog, scanners=scanners,
                        plugins=plugins, workers=WORKERS)


# ── Presets ───────────────────────────────────────────────────────
def build_default_pipeline(services: ScanServices, params: ScanParams) -> Pipeline:
    enabled = resolve_enabled(params)
    if not enabled.get(GRAPH_SCAN):
        raise ConfigurationError(f"the '{GRAPH_SCAN}' stage cannot be disabled for a scan")
    pipeline = Pipeline(build_stages(services, params.scope, enabled))
    # A disabled dependency drops its dependents, graph-scan included.
    if GRAPH_SCAN not in pipeline:
        raise ConfigurationError(
            f"the '{GRAPH_SCAN}' stage was dropped because a stage it depends on is disabled"
        )
    return pipeline


def build_plugin_only_pipeline(services: ScanServices, params: ScanParams) -> Pipeline:
    enabled = {name: False for name in STAGE_GRAPH}
    enabled[SUBSCRIPTION_DISCOVERY] = True
    enabled[PLUGIN_SCAN] = True
    return Pipeline(build_stages(services, params.scope, enabled))


def new_context(params: ScanParams, cancel: Optional[threading.Event] = None) -> ScanContext:
    return ScanContext(
        filters=params.filters,
        cancel=cancel or threading.Event(),
        stage_options=params.stage_options,
        mask=params.mask,
    )


def run_scan(
    params: ScanParams,
    *,
    services: Optional[ScanServices] = None,
    cancel: Optional[threading.Event] = None,
) -> ScanContext:
    """Build and run one pipeline; raises ``ConfigurationError`` before any stage runs."""
    cancel = cancel or threading.Event()
    if services is None:
        services = build_services(params, cancel=cancel)
    if params.plugin_only:
        pipeline = build_plugin_only_pipeline(services, params)
    else:
        pipeline = build_default_pipeline(services, params)
    _log.info("Pipeline: %s", " -> ".join(pipeline.names))
    return pipeline.run(new_context(params, cancel))
