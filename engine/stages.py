"""Predefined scan stages.

Each stage is a plain function ``fn(services, context) -> records``;
``build_stages`` binds the collaborators and returns ``Stage`` values with
their dependency edges.  Stage names are the public vocabulary of
``--stages`` and the metrics map.

  subscription-discovery   subscriptions in scope
  resource-inventory       every resource, split in/out of scope
  resource-type-count      per-subscription type counts and catalog coverage
  preflight                diagnostics / private endpoint / public IP indexes
  graph-scan               catalog graph rules through the worker pool
  code-scan                per-type code-rule scanners
  advisor-scan             Azure Advisor recommendations
  policy-scan              non-compliant Azure Policy states
  arc-scan                 Arc-enabled SQL Server instances
  defender-scan            Defender plans (+ recommendations when asked)
  cost-scan                actual cost by service
  carbon-scan              carbon emissions by resource type
  plugin-scan              plugin graph rules and internal plugins
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Callable

from collectors.advisor import collect_advisor
from collectors.arc_sql import collect_arc_sql
from collectors.azure_client import AzureClient
from collectors.carbon import collect_carbon
from collectors.cost import collect_costs, cost_period
from collectors.defender import collect_defender_pricings, collect_defender_recommendations
from collectors.inventory import collect_resources, collect_type_counts
from collectors.management_groups import expand_management_groups
from collectors.policy import collect_policy
from collectors.preflight import collect_diagnostics, collect_private_endpoints, collect_public_ips
from collectors.resource_graph import GraphQueryClient
from collectors.subscriptions import list_subscriptions, narrow_subscriptions
from control_packs.loader import Catalog
from engine.context import ScanContext
from engine.errors import PermanentError, ProviderCapabilityError, ScanCancelled, TransientError
from engine.pipeline import Stage
from engine.worker_pool import WorkerPool
from evaluators.base import Scanner
from plugins.base import InternalPlugin
from schemas.domain import CostResult, GraphRule, RecommendationResult
from schemas.resource_id import subscription_from_id

_log = logging.getLogger(__name__)

SUBSCRIPTION_DISCOVERY = "subscription-discovery"
RESOURCE_INVENTORY = "resource-inventory"
RESOURCE_TYPE_COUNT = "resource-type-count"
PREFLIGHT = "preflight"
GRAPH_SCAN = "graph-scan"
CODE_SCAN = "code-scan"
ADVISOR_SCAN = "advisor-scan"
POLICY_SCAN = "policy-scan"
ARC_SCAN = "arc-scan"
DEFENDER_SCAN = "defender-scan"
COST_SCAN = "cost-scan"
CARBON_SCAN = "carbon-scan"
PLUGIN_SCAN = "plugin-scan"

# name -> (dependencies, enabled by default)
STAGE_GRAPH: dict[str, tuple[tuple[str, ...], bool]] = {
    SUBSCRIPTION_DISCOVERY: ((), True),
    RESOURCE_INVENTORY: ((SUBSCRIPTION_DISCOVERY,), True),
    RESOURCE_TYPE_COUNT: ((SUBSCRIPTION_DISCOVERY,), True),
    PREFLIGHT: ((RESOURCE_INVENTORY,), True),
    GRAPH_SCAN: ((SUBSCRIPTION_DISCOVERY,), True),
    CODE_SCAN: ((PREFLIGHT,), True),
    ADVISOR_SCAN: ((SUBSCRIPTION_DISCOVERY,), True),
    POLICY_SCAN: ((SUBSCRIPTION_DISCOVERY,), False),
    ARC_SCAN: ((SUBSCRIPTION_DISCOVERY,), False),
    DEFENDER_SCAN: ((SUBSCRIPTION_DISCOVERY,), True),
    COST_SCAN: ((SUBSCRIPTION_DISCOVERY,), False),
    CARBON_SCAN: ((SUBSCRIPTION_DISCOVERY,), False),
    PLUGIN_SCAN: ((SUBSCRIPTION_DISCOVERY,), False),
}

# Short names accepted on the command line.
STAGE_ALIASES: dict[str, str] = {
    "subscriptions": SUBSCRIPTION_DISCOVERY,
    "inventory": RESOURCE_INVENTORY,
    "type-count": RESOURCE_TYPE_COUNT,
    "diagnostics": PREFLIGHT,
    "graph": GRAPH_SCAN,
    "code": CODE_SCAN,
    "advisor": ADVISOR_SCAN,
    "policy": POLICY_SCAN,
    "arc": ARC_SCAN,
    "defender": DEFENDER_SCAN,
    "cost": COST_SCAN,
    "carbon": CARBON_SCAN,
    "plugins": PLUGIN_SCAN,
}


@dataclass
class ScanServices:
    """Collaborators shared by the stages of one run."""
    arm: AzureClient
    graph: GraphQueryClient
    catalog: Catalog
    scanners: list[Scanner] = field(default_factory=list)
    plugins: list[InternalPlugin] = field(default_factory=list)
    workers: int = 10


@dataclass
class ScopeRequest:
    """Scope asked for on the command line or in an API call."""
    subscriptions: list[str] = field(default_factory=list)
    management_groups: list[str] = field(default_factory=list)
    resource_groups: list[str] = field(default_factory=list)


# ── Discovery ─────────────────────────────────────────────────────
def discover_subscriptions(services: ScanServices, scope: ScopeRequest, context: ScanContext) -> int:
    universe = list_subscriptions(services.arm)
    requested = {s.lower() for s in scope.subscriptions}
    if scope.management_groups:
        requested |= expand_management_groups(services.arm, scope.management_groups)
    if scope.resource_groups:
        requested |= {subscription_from_id(rg) for rg in scope.resource_groups}
        context.filters.add_include_resource_groups(scope.resource_groups)
    if requested:
        universe = narrow_subscriptions(universe, requested)
    context.subscriptions = context.filters.active_subscriptions(universe)
    if not context.subscriptions:
        _log.warning("No subscriptions in scope")
    return len(context.subscriptions)


def resource_inventory(services: ScanServices, context: ScanContext) -> int:
    in_scope, out_of_scope = collect_resources(services.graph, context)
    context.add_resources(in_scope)
    context.add_resources(out_of_scope, in_scope=False)
    return len(in_scope)


def _covered(services: ScanServices) -> Callable[[str], bool]:
    code_types = {t for s in services.scanners for t in s.resource_types()}
    return lambda rtype: rtype in code_types or services.catalog.covers(rtype)


def resource_type_count(services: ScanServices, context: ScanContext) -> int:
    context.type_counts = collect_type_counts(services.graph, context, _covered(services))
    return len(context.type_counts)


def preflight(services: ScanServices, context: ScanContext) -> int:
    subs = context.subscription_ids
    context.diagnostics = collect_diagnostics(services.arm, context.resources, context.cancel)
    context.private_endpoints = collect_private_endpoints(services.graph, subs, context.cancel)
    context.public_ips = collect_public_ips(services.graph, subs, context.cancel)
    return len(context.diagnostics) + len(context.private_endpoints) + len(context.public_ips)


# ── Recommendation scans ──────────────────────────────────────────
def _in_scope(results: list[RecommendationResult], context: ScanContext) -> list[RecommendationResult]:
    return [
        r for r in results
        if not context.filters.resource_excluded(r.resource_id, r.resource_type)
    ]


def _dispatch(services: ScanServices, rules: list[GraphRule], context: ScanContext) -> int:
    if not rules or not context.subscriptions:
        return 0
    pool = WorkerPool(services.graph, workers=services.workers)
    return context.add_results(_in_scope(pool.run(rules, context), context))


def graph_scan(services: ScanServices, context: ScanContext) -> int:
    rules = services.catalog.dispatchable_rules(None, context.filters, include_external=False)
    _log.info("Graph scan: %d rules", len(rules))
    return _dispatch(services, rules, context)


def code_scan(services: ScanServices, context: ScanContext) -> int:
    scanners = [
        s for s in services.scanners
        if not all(context.filters.resource_type_excluded(t) for t in s.resource_types())
    ]
    jobs = [(s, sub) for s in scanners for sub in context.subscription_ids]
    if not jobs:
        return 0
    for scanner in scanners:
        scanner.init(services.arm)

    def _run(job: tuple[Scanner, str]) -> list[RecommendationResult]:
        scanner, sub = job
        try:
            return scanner.scan(sub, context)
        except ProviderCapabilityError as e:
            _log.info("Scanner %s not available in %s: %s", scanner.abbreviation, sub, e)
        except (PermanentError, TransientError) as e:
            if context.drop_subscription(sub):
                _log.warning("Scanner %s failed for %s, subscription dropped: %s",
                             scanner.abbreviation, sub, e)
        return []

    total = 0
    with ThreadPoolExecutor(max_workers=min(services.workers, len(jobs)),
                            thread_name_prefix="code-scan") as pool:
        for results in pool.map(_run, jobs):
            total += context.add_results(results)
    return total


def advisor_scan(services: ScanServices, context: ScanContext) -> int:
    context.advisor = collect_advisor(services.graph, context)
    return len(context.advisor)


def policy_scan(services: ScanServices, context: ScanContext) -> int:
    context.policy = collect_policy(services.graph, context)
    return len(context.policy)


def arc_scan(services: ScanServices, context: ScanContext) -> int:
    context.arc_sql = collect_arc_sql(services.graph, context)
    return len(context.arc_sql)


def defender_scan(services: ScanServices, context: ScanContext) -> int:
    plans = []
    for sub in context.subscription_ids:
        context.check_cancelled()
        plans.extend(collect_defender_pricings(services.arm, sub, context.subscription_name(sub)))
    context.defender = plans
    if context.flag(DEFENDER_SCAN, "recommendations"):
        context.defender_recommendations = collect_defender_recommendations(services.graph, context)
    return len(plans) + len(context.defender_recommendations)


def cost_scan(services: ScanServices, context: ScanContext) -> int:
    start, end = cost_period(previous_month=context.flag(COST_SCAN, "previousMonth"))
    result = CostResult(date_from=start.date().isoformat(), date_to=end.date().isoformat())
    for sub in context.subscription_ids:
        context.check_cancelled()
        result.items.extend(collect_costs(services.arm, sub, context.subscription_name(sub), start, end))
    context.cost = result
    return len(result.items)


def carbon_scan(services: ScanServices, context: ScanContext) -> int:
    context.carbon = collect_carbon(services.arm, context.subscription_ids, context.filters)
    return len(context.carbon)


def plugin_scan(services: ScanServices, context: ScanContext) -> int:
    rules = services.catalog.dispatchable_rules(None, context.filters, include_base=False)
    total = _dispatch(services, rules, context)
    for plugin in services.plugins:
        context.check_cancelled()
        name = plugin.metadata().name
        plugin.init(services.arm)
        try:
            output = plugin.scan(context)
        except ScanCancelled:
            raise
        except (PermanentError, TransientError) as e:
            _log.warning("Plugin %s failed: %s", name, e)
            continue
        context.add_plugin_output(output)
        total += max(0, len(output.table) - 1)
    return total


# ── Assembly ──────────────────────────────────────────────────────
def build_stages(
    services: ScanServices,
    scope: ScopeRequest,
    enabled: dict[str, bool],
) -> list[Stage]:
    """Every predefined stage, bound to *services*, enabled per *enabled*."""
    runners: dict[str, Callable[[ScanContext], int]] = {
        SUBSCRIPTION_DISCOVERY: partial(discover_subscriptions, services, scope),
        RESOURCE_INVENTORY: partial(resource_inventory, services),
        RESOURCE_TYPE_COUNT: partial(resource_type_count, services),
        PREFLIGHT: partial(preflight, services),
        GRAPH_SCAN: partial(graph_scan, services),
        CODE_SCAN: partial(code_scan, services),
        ADVISOR_SCAN: partial(advisor_scan, services),
        POLICY_SCAN: partial(policy_scan, services),
        ARC_SCAN: partial(arc_scan, services),
        DEFENDER_SCAN: partial(defender_scan, services),
        COST_SCAN: partial(cost_scan, services),
        CARBON_SCAN: partial(carbon_scan, services),
        PLUGIN_SCAN: partial(plugin_scan, services),
    }
    return [
        Stage(name, runners[name], depends_on=deps, enabled=enabled.get(name, default))
        for name, (deps, default) in STAGE_GRAPH.items()
    ]
