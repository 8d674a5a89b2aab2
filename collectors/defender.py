# collectors/defender.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

from collectors.azure_client import AzureClient
from collectors.resource_graph import GraphQueryClient
from engine.context import ScanContext
from engine.errors import ProviderCapabilityError
from schemas.domain import DefenderPlan, DefenderRecommendation

_log = logging.getLogger(__name__)

SEC_API = "2024-01-01"

DEFENDER_RECOMMENDATIONS_QUERY = """
SecurityResources
| where type == 'microsoft.security/assessments'
| where properties.status.code == 'Unhealthy'
| mvexpand Category = properties.metadata.categories
| extend
    ResourceId = properties.resourceDetails.Id,
    ResourceIdsplit = split(properties.resourceDetails.Id, '/'),
    RecommendationName = properties.displayName,
    ActionDescription = properties.metadata.description,
    RemediationDescription = properties.metadata.remediationDescription,
    RecommendationSeverity = properties.metadata.severity,
    AzPortalLink = tostring(properties.links.azurePortal)
| extend
    ResourceGroupName = tostring(ResourceIdsplit[4]),
    ResourceType = tostring(ResourceIdsplit[6]),
    ResourceName = tostring(ResourceIdsplit[8])
| join kind=leftouter (resourcecontainers
    | where type == 'microsoft.resources/subscriptions'
    | project SubscriptionName = name, subscriptionId) on subscriptionId
| project SubscriptionId = subscriptionId, SubscriptionName, ResourceGroupName, ResourceType,
    ResourceName, Category, RecommendationSeverity, RecommendationName, ActionDescription,
    RemediationDescription, AzPortalLink, ResourceId
"""


def collect_defender_pricings(client: AzureClient, subscription_id: str,
                              subscription_name: str = "") -> List[DefenderPlan]:
    """Defender for Cloud plan tiers of one subscription.

    A subscription not registered for Microsoft.Security yields no plans.
    """
    try:
        data = client.get(f"/subscriptions/{subscription_id}/providers/Microsoft.Security/pricings",
                          api_version=SEC_API)
    except ProviderCapabilityError as e:
        _log.info("Subscription %s not registered for Defender, skipping: %s", subscription_id, e)
        return []

    plans: List[DefenderPlan] = []
    for p in data.get("value", []) or []:
        props = p.get("properties", {}) or {}
        plans.append(DefenderPlan(
            subscription_id=subscription_id,
            subscription_name=subscription_name,
            name=p.get("name", ""),
            tier=props.get("pricingTier") or "",
            deprecated=bool(props.get("deprecated")),
        ))
    return plans


def _s(row: Dict[str, Any], key: str) -> str:
    value = row.get(key)
    return "" if value is None else str(value)


def collect_defender_recommendations(graph: GraphQueryClient,
                                     context: ScanContext) -> List[DefenderRecommendation]:
    out: List[DefenderRecommendation] = []
    for row in graph.query(DEFENDER_RECOMMENDATIONS_QUERY, context.subscription_ids, context.cancel):
        resource_id = _s(row, "ResourceId")
        if context.filters.service_excluded(resource_id):
            continue
        sub = _s(row, "SubscriptionId").lower()
        link = _s(row, "AzPortalLink")
        out.append(DefenderRecommendation(
            subscription_id=sub,
            subscription_name=_s(row, "SubscriptionName") or context.subscription_name(sub),
            resource_group=_s(row, "ResourceGroupName"),
            resource_type=_s(row, "ResourceType"),
            resource_name=_s(row, "ResourceName"),
            category=_s(row, "Category"),
            severity=_s(row, "RecommendationSeverity"),
            recommendation_name=_s(row, "RecommendationName"),
            action_description=_s(row, "ActionDescription"),
            remediation_description=_s(row, "RemediationDescription"),
            portal_link=f"https://{link}" if link and not link.startswith("http") else link,
            resource_id=resource_id,
        ))
    _log.info("Defender: %d unhealthy assessments", len(out))
    return out
