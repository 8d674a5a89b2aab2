"""Report aggregator — merges the scan context into renderer-ready tables.

``ReportData`` is the only thing renderers see.  It is built once from a
finished ``ScanContext`` and exposes every table as a list of rows whose
first row is the header:

  - recommendations          every deduplicated result (graph, code,
                             plugin, Advisor, Policy), SLA note rows included
  - impacted                 broken results only
  - resourceType             per-subscription type counts + catalog coverage
  - inventory                in-scope resources
  - outOfScope               resources excluded by the filters
  - advisor / azurePolicy / arcSQL / defender / defenderRecommendations /
    costs / carbon           straight projections of their stage output
  - externalPlugins          one table per internal plugin output

Deduplication key is ``(resource id, recommendation id)`` compared
case-insensitively.  On collision the higher impact wins; equal impacts
keep the stronger source (catalog > plugin > Advisor/Policy) and, after
that, the first result seen.

Masking rewrites subscription ids (and the subscription segment of
resource ids) so only the last four characters stay visible.  Display
names are never masked.

Usage:
    from reporting.report_data import ReportData
    data = ReportData.from_context(context, output_name="azqr_action_plan")
    for name, table in data.tables().items():
        ...
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable

from engine.context import ScanContext
from schemas.domain import (
    AdvisorResult,
    PluginOutput,
    PolicyResult,
    RecommendationResult,
)
from schemas.resource_id import name_from_id, resource_group_from_id, resource_type_from_id
from schemas.taxonomy import (
    CATEGORY_DISPLAY,
    IMPACT_DISPLAY,
    IMPACT_RANK,
    SOURCE_ADVISOR,
    SOURCE_POLICY,
    VALIDATED_BY_ADVISOR,
    VALIDATED_BY_POLICY,
    normalize_category,
    normalize_impact,
    source_priority,
)

_log = logging.getLogger(__name__)

MASK_PREFIX = "xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxx"

_SUB_SEGMENT_RE = re.compile(r"(/subscriptions/)([^/]+)", re.IGNORECASE)
_GUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

Row = list[str]
Table = list[Row]

# ── Headers ───────────────────────────────────────────────────────
_PARAMS = ["Param1", "Param2", "Param3", "Param4", "Param5"]

RECOMMENDATIONS_HEADER: Row = [
    "Validated Using", "Source", "Category", "Impact", "Resource Type",
    "Recommendation", "Recommendation Id", "Subscription Id", "Subscription Name",
    "Resource Group", "Name", "Id", "Broken", "SLA", "Notes", *_PARAMS, "Learn",
]
IMPACTED_HEADER: Row = [
    "Validated Using", "Source", "Category", "Impact", "Resource Type",
    "Recommendation", "Recommendation Id", "Subscription Id", "Subscription Name",
    "Resource Group", "Name", "Id", *_PARAMS, "Learn",
]
RESOURCE_TYPE_HEADER: Row = [
    "Subscription", "Resource Type", "Number of Resources", "Available in Catalog?",
]
INVENTORY_HEADER: Row = [
    "Subscription Id", "Resource Group", "Location", "Type", "Name",
    "SKU Name", "SKU Tier", "Kind", "SLA", "Id",
]
ADVISOR_HEADER: Row = [
    "Subscription Id", "Subscription Name", "Name", "Type", "Category",
    "Impact", "Description", "Recommendation Id", "Resource Id",
]
POLICY_HEADER: Row = [
    "Subscription Id", "Subscription Name", "Resource Group", "Resource Type",
    "Resource Name", "Policy Display Name", "Policy Description", "Resource Id",
    "Time Stamp", "Policy Definition Name", "Policy Definition Id",
    "Policy Assignment Name", "Policy Assignment Id", "Compliance State",
]
ARC_SQL_HEADER: Row = [
    "Subscription Id", "Subscription Name", "Status", "Azure Arc Server",
    "SQL Instance", "Resource Group", "Version", "Build", "Patch Level",
    "Edition", "VCores", "License", "DPS Status", "TEL Status", "Defender Status",
]
DEFENDER_HEADER: Row = ["Subscription Id", "Subscription Name", "Name", "Tier", "Deprecated"]
DEFENDER_RECOMMENDATIONS_HEADER: Row = [
    "Subscription Id", "Subscription Name", "Resource Group", "Resource Type",
    "Resource Name", "Category", "Severity", "Recommendation Name",
    "Action Description", "Remediation Description", "Portal Link", "Resource Id",
]
COSTS_HEADER: Row = [
    "From", "To", "Subscription Id", "Subscription Name", "Service Name", "Value", "Currency",
]
CARBON_HEADER: Row = [
    "From", "To", "Resource Type", "Latest Month Emissions",
    "Previous Month Emissions", "Month Over Month Change", "Unit",
]

# Header names whose cells hold a subscription id or a resource id.
# Plugin tables may use "Subscription" for a display name; only id-shaped
# cells in that column are masked.
_SUBSCRIPTION_COLUMNS = frozenset({"Subscription Id"})
_LOOSE_SUBSCRIPTION_COLUMNS = frozenset({"Subscription"})
_RESOURCE_ID_COLUMNS = frozenset({"Id", "Resource Id", "Azure Arc Server"})


# ══════════════════════════════════════════════════════════════════
# Masking
# ══════════════════════════════════════════════════════════════════

def mask_subscription_id(subscription_id: str) -> str:
    if not subscription_id:
        return subscription_id
    return MASK_PREFIX + subscription_id[-4:]


def mask_resource_id(resource_id: str) -> str:
    return _SUB_SEGMENT_RE.sub(lambda m: m.group(1) + mask_subscription_id(m.group(2)), resource_id or "")


def mask_table(table: Table) -> Table:
    """Return a copy of *table* with subscription and resource id columns masked."""
    if not table:
        return table
    header = table[0]
    sub_cols = [i for i, h in enumerate(header) if h in _SUBSCRIPTION_COLUMNS]
    loose_cols = [i for i, h in enumerate(header) if h in _LOOSE_SUBSCRIPTION_COLUMNS]
    id_cols = [i for i, h in enumerate(header) if h in _RESOURCE_ID_COLUMNS]
    masked: Table = [list(header)]
    for row in table[1:]:
        row = list(row)
        for i in sub_cols:
            if i < len(row):
                row[i] = mask_subscription_id(row[i])
        for i in loose_cols:
            if i < len(row) and _GUID_RE.match(row[i] or ""):
                row[i] = mask_subscription_id(row[i])
        for i in id_cols:
            if i < len(row):
                row[i] = mask_resource_id(row[i])
        masked.append(row)
    return masked


# ══════════════════════════════════════════════════════════════════
# Deduplication
# ══════════════════════════════════════════════════════════════════

def _stronger(candidate: RecommendationResult, current: RecommendationResult) -> bool:
    c_rank = IMPACT_RANK.get(candidate.impact, 0)
    k_rank = IMPACT_RANK.get(current.impact, 0)
    if c_rank != k_rank:
        return c_rank > k_rank
    return source_priority(candidate.source) < source_priority(current.source)


def deduplicate(results: Iterable[RecommendationResult]) -> list[RecommendationResult]:
    """One result per ``(resource id, recommendation id)``, first-seen order kept."""
    kept: dict[tuple[str, str], RecommendationResult] = {}
    for result in results:
        current = kept.get(result.key)
        if current is None:
            kept[result.key] = result
        elif _stronger(result, current):
            _log.debug("Duplicate %s on %s: %s replaces %s", result.recommendation_id,
                       result.resource_id, result.source, current.source)
            kept[result.key] = result
    return list(kept.values())


# ── Provider-native rows as recommendation results ────────────────
def _safe(normalize: Callable[[str], str], raw: str, default: str) -> str:
    try:
        return normalize(raw)
    except ValueError:
        return default


def advisor_to_result(row: AdvisorResult) -> RecommendationResult:
    return RecommendationResult(
        recommendation_id=row.recommendation_id,
        resource_id=row.resource_id,
        resource_type=row.type.lower(),
        resource_name=row.name,
        resource_group=resource_group_from_id(row.resource_id),
        subscription_id=row.subscription_id,
        subscription_name=row.subscription_name,
        category=_safe(normalize_category, row.category, "governance"),
        impact=_safe(normalize_impact, row.impact, "low"),
        recommendation=row.description,
        source=SOURCE_ADVISOR,
        validated_using=VALIDATED_BY_ADVISOR,
    )


def _in_scope(context: ScanContext, r: RecommendationResult) -> bool:
    """Advisor and Policy rows obey the same filters as rule results."""
    filters = context.filters
    return not (filters.resource_excluded(r.resource_id)
                or filters.recommendation_excluded(r.recommendation_id))


def policy_to_result(row: PolicyResult) -> RecommendationResult:
    return RecommendationResult(
        recommendation_id=row.policy_definition_name or row.policy_definition_id,
        resource_id=row.resource_id,
        resource_type=(row.resource_type or resource_type_from_id(row.resource_id)).lower(),
        resource_name=row.resource_name or name_from_id(row.resource_id),
        resource_group=row.resource_group,
        subscription_id=row.subscription_id,
        subscription_name=row.subscription_name,
        category="governance",
        impact="low",
        recommendation=row.policy_display_name,
        source=SOURCE_POLICY,
        validated_using=VALIDATED_BY_POLICY,
        param1=row.policy_assignment_name,
        param2=row.compliance_state,
    )


# ══════════════════════════════════════════════════════════════════
# Report data
# ══════════════════════════════════════════════════════════════════

@dataclass
class ReportData:
    """Deduplicated, optionally masked view of one finished scan."""
    output_name: str
    context: ScanContext
    mask: bool = False
    results: list[RecommendationResult] = field(default_factory=list)

    @classmethod
    def from_context(cls, context: ScanContext, output_name: str = "azqr_report",
                     mask: bool | None = None) -> "ReportData":
        merged: list[RecommendationResult] = list(context.results)
        provider_rows = [advisor_to_result(a) for a in context.advisor if a.resource_id]
        provider_rows += [policy_to_result(p) for p in context.policy if p.resource_id]
        merged.extend(r for r in provider_rows if _in_scope(context, r))
        results = deduplicate(merged)
        _log.info("Report: %d results (%d before deduplication)", len(results), len(merged))
        return cls(
            output_name=output_name,
            context=context,
            mask=context.mask if mask is None else mask,
            results=results,
        )

    # ── Recommendation tables ─────────────────────────────────────
    @staticmethod
    def _result_cells(r: RecommendationResult) -> Row:
        return [
            r.validated_using, r.source,
            CATEGORY_DISPLAY.get(r.category, r.category),
            IMPACT_DISPLAY.get(r.impact, r.impact),
            r.resource_type, r.recommendation, r.recommendation_id,
            r.subscription_id, r.subscription_name, r.resource_group,
            r.resource_name, r.resource_id,
        ]

    @staticmethod
    def _params(r: RecommendationResult) -> Row:
        return [r.param1, r.param2, r.param3, r.param4, r.param5]

    def recommendations_table(self) -> Table:
        rows: Table = [RECOMMENDATIONS_HEADER]
        for r in self.results:
            sla = r.note if r.recommendation_type == "sla" else ""
            notes = "" if r.recommendation_type == "sla" else r.note
            rows.append([
                *self._result_cells(r),
                "Yes" if r.broken else "No", sla, notes,
                *self._params(r), r.learn_more_url,
            ])
        return rows

    def impacted_table(self) -> Table:
        rows: Table = [IMPACTED_HEADER]
        for r in self.results:
            if r.broken:
                rows.append([*self._result_cells(r), *self._params(r), r.learn_more_url])
        return rows

    # ── Inventory tables ──────────────────────────────────────────
    def resource_type_table(self) -> Table:
        rows: Table = [RESOURCE_TYPE_HEADER]
        for c in sorted(self.context.type_counts, key=lambda c: (c.subscription_id, c.resource_type)):
            rows.append([c.subscription_id, c.resource_type, str(c.count), "Yes" if c.covered else "No"])
        return rows

    def _sla_by_resource(self) -> dict[str, str]:
        """SLA notes from the code rules, keyed by lower-cased resource id."""
        return {
            r.resource_id.lower(): r.note
            for r in self.results
            if r.recommendation_type == "sla" and r.note
        }

    @staticmethod
    def _inventory(resources, slas: dict[str, str]) -> Table:
        rows: Table = [INVENTORY_HEADER]
        for r in resources:
            sla = r.sla or slas.get(r.id.lower(), "")
            rows.append([r.subscription_id, r.resource_group, r.location, r.type, r.name,
                         r.sku_name, r.sku_tier, r.kind, sla, r.id])
        return rows

    def inventory_table(self) -> Table:
        return self._inventory(self.context.resources, self._sla_by_resource())

    def out_of_scope_table(self) -> Table:
        return self._inventory(self.context.out_of_scope, {})

    # ── Stage projections ─────────────────────────────────────────
    def advisor_table(self) -> Table:
        return [ADVISOR_HEADER] + [
            [a.subscription_id, a.subscription_name, a.name, a.type, a.category,
             a.impact, a.description, a.recommendation_id, a.resource_id]
            for a in self.context.advisor
        ]

    def policy_table(self) -> Table:
        return [POLICY_HEADER] + [
            [p.subscription_id, p.subscription_name, p.resource_group, p.resource_type,
             p.resource_name, p.policy_display_name, p.policy_description, p.resource_id,
             p.time_stamp, p.policy_definition_name, p.policy_definition_id,
             p.policy_assignment_name, p.policy_assignment_id, p.compliance_state]
            for p in self.context.policy
        ]

    def arc_sql_table(self) -> Table:
        return [ARC_SQL_HEADER] + [
            [a.subscription_id, a.subscription_name, a.status, a.azure_arc_server,
             a.sql_instance, a.resource_group, a.version, a.build, a.patch_level,
             a.edition, a.vcores, a.license, a.dps_status, a.tel_status, a.defender_status]
            for a in self.context.arc_sql
        ]

    def defender_table(self) -> Table:
        return [DEFENDER_HEADER] + [
            [d.subscription_id, d.subscription_name, d.name, d.tier,
             "true" if d.deprecated else "false"]
            for d in self.context.defender
        ]

    def defender_recommendations_table(self) -> Table:
        return [DEFENDER_RECOMMENDATIONS_HEADER] + [
            [d.subscription_id, d.subscription_name, d.resource_group, d.resource_type,
             d.resource_name, d.category, d.severity, d.recommendation_name,
             d.action_description, d.remediation_description, d.portal_link, d.resource_id]
            for d in self.context.defender_recommendations
        ]

    def costs_table(self) -> Table:
        cost = self.context.cost
        if cost is None:
            return [COSTS_HEADER]
        return [COSTS_HEADER] + [
            [cost.date_from, cost.date_to, i.subscription_id, i.subscription_name,
             i.service_name, i.value, i.currency]
            for i in cost.items
        ]

    def carbon_table(self) -> Table:
        return [CARBON_HEADER] + [
            [c.date_from, c.date_to, c.resource_type, c.latest_month_emissions,
             c.previous_month_emissions, c.month_over_month_change, c.unit]
            for c in self.context.carbon
        ]

    def plugin_outputs(self) -> list[PluginOutput]:
        if not self.mask:
            return list(self.context.plugin_outputs)
        return [
            PluginOutput(o.plugin_name, o.sheet_name, o.description, mask_table(o.table))
            for o in self.context.plugin_outputs
        ]

    # ── All tables ────────────────────────────────────────────────
    def tables(self) -> dict[str, Table]:
        """Primary tables keyed by their report name, masked when asked."""
        tables = {
            "recommendations": self.recommendations_table(),
            "impacted": self.impacted_table(),
            "resourceType": self.resource_type_table(),
            "inventory": self.inventory_table(),
            "advisor": self.advisor_table(),
            "azurePolicy": self.policy_table(),
            "arcSQL": self.arc_sql_table(),
            "defender": self.defender_table(),
            "defenderRecommendations": self.defender_recommendations_table(),
            "costs": self.costs_table(),
            "carbon": self.carbon_table(),
            "outOfScope": self.out_of_scope_table(),
        }
        if self.mask:
            tables = {name: mask_table(table) for name, table in tables.items()}
        return tables


# ── Row objects (JSON) ────────────────────────────────────────────
def camel_case(header: str) -> str:
    """``"Number of Resources"`` -> ``"numberOfResources"``."""
    words = re.findall(r"[A-Za-z0-9]+", header)
    if not words:
        return ""
    first, rest = words[0], words[1:]
    first = first.lower() if first.isupper() else first[0].lower() + first[1:]
    return first + "".join(w[0].upper() + w[1:] for w in rest)


def table_to_objects(table: Table) -> list[dict[str, str]]:
    if not table:
        return []
    keys = [camel_case(h) for h in table[0]]
    return [dict(zip(keys, row)) for row in table[1:]]
