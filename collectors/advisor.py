"""Azure Advisor recommendations via Resource Graph."""
from __future__ import annotations

import logging
from typing import Any

from collectors.resource_graph import GraphQueryClient
from engine.context import ScanContext
from schemas.domain import AdvisorResult

_log = logging.getLogger(__name__)

ADVISOR_QUERY = """
AdvisorResources
| join kind=inner (
    resourcecontainers
    | where type == 'microsoft.resources/subscriptions'
    | project subscriptionId, subscriptionName = name)
  on subscriptionId
| project Type = type, SubscriptionId = subscriptionId, SubscriptionName = subscriptionName,
    ResourceGroup = resourceGroup, Category = properties.category, Impact = properties.impact,
    ImpactedField = properties.impactedField, ImpactedValue = properties.impactedValue,
    Problem = properties.shortDescription.problem,
    ResourceId = properties.resourceMetadata.resourceId,
    RecommendationTypeId = properties.recommendationTypeId
"""


def _s(row: dict[str, Any], key: str) -> str:
    value = row.get(key)
    return "" if value is None else str(value)


def collect_advisor(graph: GraphQueryClient, context: ScanContext) -> list[AdvisorResult]:
    """Advisor rows, de-duplicated on (resource id, recommendation type, category)."""
    seen: set[tuple[str, str, str]] = set()
    out: list[AdvisorResult] = []
    for row in graph.query(ADVISOR_QUERY, context.subscription_ids, context.cancel):
        sub = _s(row, "SubscriptionId").lower()
        resource_id = _s(row, "ResourceId")
        if context.filters.subscription_excluded(sub) or context.filters.service_excluded(resource_id):
            continue
        rec = AdvisorResult(
            recommendation_id=_s(row, "RecommendationTypeId"),
            subscription_id=sub,
            subscription_name=_s(row, "SubscriptionName") or context.subscription_name(sub),
            type=_s(row, "ImpactedField"),
            name=_s(row, "ImpactedValue"),
            resource_id=resource_id,
            category=_s(row, "Category"),
            impact=_s(row, "Impact"),
            description=_s(row, "Problem"),
        )
        key = (rec.resource_id.lower(), rec.recommendation_id, rec.category)
        if key in seen:
            continue
        seen.add(key)
        out.append(rec)
    _log.info("Advisor: %d recommendations", len(out))
    return out
