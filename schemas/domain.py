"""Core domain types — shared contracts used across the entire scan system.

Recommendations come in exactly two flavours:

  - ``GraphRule`` — evaluated provider-side by a Resource Graph query.
  - ``CodeRule``  — evaluated in-process by a function over a fetched resource.

``Recommendation`` is the union of the two.  There is no shared record with
nullable query/eval fields: a code rule has no query and a graph rule has no
function.

Everything a stage appends to the scan context is one of the result
dataclasses below; renderers only ever see these shapes (through
``reporting.report_data``).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Union

from schemas.taxonomy import (
    ALL_CATEGORIES,
    ALL_IMPACTS,
    ALL_METADATA_STATES,
    ALL_RECOMMENDATION_TYPES,
    SOURCE_AZQR,
    has_development_sentinel,
)

if TYPE_CHECKING:
    from engine.context import ScanContext

# (resource, context) -> (broken, note)
EvalFn = Callable[[dict[str, Any], "ScanContext"], tuple[bool, str]]


def _validate_rule(rule: Any) -> None:
    if not rule.recommendation_id:
        raise ValueError("Recommendation id is required")
    if rule.category not in ALL_CATEGORIES:
        raise ValueError(f"{rule.recommendation_id}: invalid category '{rule.category}'")
    if rule.impact not in ALL_IMPACTS:
        raise ValueError(f"{rule.recommendation_id}: invalid impact '{rule.impact}'")
    if rule.recommendation_type not in ALL_RECOMMENDATION_TYPES:
        raise ValueError(
            f"{rule.recommendation_id}: invalid recommendation type '{rule.recommendation_type}'"
        )
    if rule.metadata_state not in ALL_METADATA_STATES:
        raise ValueError(f"{rule.recommendation_id}: invalid metadata state '{rule.metadata_state}'")
    # Resource types are indexed lower-cased.
    object.__setattr__(rule, "resource_type", rule.resource_type.lower())


# ── Recommendations ───────────────────────────────────────────────
@dataclass(frozen=True)
class GraphRule:
    """Catalog or plugin recommendation evaluated by a Resource Graph query.

    ``query`` may be empty for catalog entries whose query file is missing;
    such rules are listed but never dispatched.
    """
    recommendation_id: str
    resource_type: str
    category: str
    impact: str
    recommendation: str
    query: str = ""
    source: str = ""
    learn_more_url: str = ""
    recommendation_type: str = "best-practice"
    metadata_state: str = "active"
    long_description: str = ""
    potential_benefits: str = ""
    automation_available: bool = False
    tags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _validate_rule(self)

    @property
    def dispatchable(self) -> bool:
        """True when the rule can be sent to Resource Graph."""
        return (
            bool(self.query.strip())
            and not has_development_sentinel(self.query)
            and self.metadata_state != "disabled"
        )


@dataclass(frozen=True)
class CodeRule:
    """Recommendation evaluated in-process against a hydrated resource."""
    recommendation_id: str
    resource_type: str
    category: str
    impact: str
    recommendation: str
    evaluate: EvalFn = field(compare=False, repr=False)
    source: str = SOURCE_AZQR
    learn_more_url: str = ""
    recommendation_type: str = "best-practice"
    metadata_state: str = "active"

    def __post_init__(self) -> None:
        _validate_rule(self)


Recommendation = Union[GraphRule, CodeRule]


# ── Results ───────────────────────────────────────────────────────
@dataclass
class RecommendationResult:
    """A rule that fired (or produced a note) against one resource."""
    recommendation_id: str
    resource_id: str
    resource_type: str
    resource_name: str
    resource_group: str
    subscription_id: str
    subscription_name: str
    category: str
    impact: str
    recommendation: str
    source: str
    learn_more_url: str = ""
    recommendation_type: str = "best-practice"
    broken: bool = True
    note: str = ""
    param1: str = ""
    param2: str = ""
    param3: str = ""
    param4: str = ""
    param5: str = ""
    tags: str = ""
    validated_using: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.resource_id.lower(), self.recommendation_id.lower())


@dataclass
class Resource:
    id: str
    subscription_id: str
    resource_group: str
    location: str
    type: str
    name: str
    sku_name: str = ""
    sku_tier: str = ""
    kind: str = ""
    sla: str = ""

    def __post_init__(self) -> None:
        self.type = self.type.lower()


@dataclass
class ResourceTypeCount:
    subscription_id: str
    resource_type: str
    count: int
    covered: bool = False


# ── Provider-native projections ───────────────────────────────────
@dataclass
class AdvisorResult:
    recommendation_id: str
    subscription_id: str
    subscription_name: str
    type: str
    name: str
    resource_id: str
    category: str
    impact: str
    description: str


@dataclass
class PolicyResult:
    subscription_id: str
    subscription_name: str
    resource_group: str
    resource_type: str
    resource_name: str
    policy_display_name: str
    policy_description: str
    resource_id: str
    time_stamp: str
    policy_definition_name: str
    policy_definition_id: str
    policy_assignment_name: str
    policy_assignment_id: str
    compliance_state: str


@dataclass
class ArcSQLResult:
    subscription_id: str
    subscription_name: str
    status: str
    azure_arc_server: str
    sql_instance: str
    resource_group: str
    version: str
    build: str
    patch_level: str
    edition: str
    vcores: str
    license: str
    dps_status: str
    tel_status: str
    defender_status: str


@dataclass
class DefenderPlan:
    subscription_id: str
    subscription_name: str
    name: str
    tier: str
    deprecated: bool = False


@dataclass
class DefenderRecommendation:
    subscription_id: str
    subscription_name: str
    resource_group: str
    resource_type: str
    resource_name: str
    category: str
    severity: str
    recommendation_name: str
    action_description: str
    remediation_description: str
    portal_link: str
    resource_id: str


@dataclass
class CostItem:
    subscription_id: str
    subscription_name: str
    service_name: str
    value: str
    currency: str


@dataclass
class CostResult:
    date_from: str
    date_to: str
    items: list[CostItem] = field(default_factory=list)


@dataclass
class CarbonResult:
    date_from: str
    date_to: str
    resource_type: str
    latest_month_emissions: str
    previous_month_emissions: str
    month_over_month_change: str
    unit: str = "kgCO2e"


@dataclass
class PluginOutput:
    """Tabular output of a plugin; ``table[0]`` is the header row."""
    plugin_name: str
    sheet_name: str
    description: str
    table: list[list[str]] = field(default_factory=list)
