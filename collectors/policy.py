"""Non-compliant Azure Policy states via Resource Graph."""
from __future__ import annotations

import logging
from typing import Any

from collectors.resource_graph import GraphQueryClient
from engine.context import ScanContext
from schemas.domain import PolicyResult
from schemas.resource_id import name_from_id, resource_group_from_id, resource_type_from_id

_log = logging.getLogger(__name__)

POLICY_QUERY = """
PolicyResources
| where type == 'microsoft.policyinsights/policystates'
| extend
    resourceId = tostring(properties.resourceId),
    subscriptionId = tostring(properties.subscriptionId),
    policyAssignmentId = tostring(properties.policyAssignmentId),
    policyAssignmentName = tostring(properties.policyAssignmentName),
    policyDefinitionId = tostring(properties.policyDefinitionId),
    policyDefinitionName = tostring(properties.policyDefinitionName),
    timestamp = todatetime(properties.timestamp),
    complianceState = tostring(properties.complianceState)
| where complianceState == 'NonCompliant'
| join kind=leftouter (
    PolicyResources
    | where type == 'microsoft.authorization/policydefinitions'
    | extend policyDefinitionId = tolower(id)
    | project policyDefinitionId, policyDescription = tostring(properties.description),
        policyDefinitionDisplayName = properties.displayName
  ) on policyDefinitionId
| join kind=leftouter (
    ResourceContainers
    | where type == 'microsoft.resources/subscriptions'
    | project subscriptionId = tolower(subscriptionId), subscriptionName = name
  ) on subscriptionId
| project subscriptionId, subscriptionName, resourceId, policyAssignmentId, policyAssignmentName,
    policyDefinitionId, policyDefinitionName, timestamp, policyDefinitionDisplayName,
    policyDescription, complianceState
"""


def _s(row: dict[str, Any], key: str) -> str:
    value = row.get(key)
    return "" if value is None else str(value)


def collect_policy(graph: GraphQueryClient, context: ScanContext) -> list[PolicyResult]:
    """Non-compliant states, one per (resource id, policy definition id)."""
    seen: set[tuple[str, str]] = set()
    out: list[PolicyResult] = []
    for row in graph.query(POLICY_QUERY, context.subscription_ids, context.cancel):
        sub = _s(row, "subscriptionId").lower()
        resource_id = _s(row, "resourceId")
        if context.filters.subscription_excluded(sub) or context.filters.service_excluded(resource_id):
            continue
        key = (resource_id.lower(), _s(row, "policyDefinitionId").lower())
        if key in seen:
            continue
        seen.add(key)
        out.append(PolicyResult(
            subscription_id=sub,
            subscription_name=_s(row, "subscriptionName") or context.subscription_name(sub),
            resource_group=resource_group_from_id(resource_id),
            resource_type=resource_type_from_id(resource_id),
            resource_name=name_from_id(resource_id),
            policy_display_name=_s(row, "policyDefinitionDisplayName"),
            policy_description=_s(row, "policyDescription"),
            resource_id=resource_id,
            time_stamp=_s(row, "timestamp"),
            policy_definition_name=_s(row, "policyDefinitionName"),
            policy_definition_id=_s(row, "policyDefinitionId"),
            policy_assignment_name=_s(row, "policyAssignmentName"),
            policy_assignment_id=_s(row, "policyAssignmentId"),
            compliance_state=_s(row, "complianceState"),
        ))
    _log.info("Azure Policy: %d non-compliant resources", len(out))
    return out
