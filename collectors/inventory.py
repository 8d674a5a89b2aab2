"""Resource inventory and per-type counts from Resource Graph."""
from __future__ import annotations

import logging
from typing import Any, Callable

from collectors.resource_graph import GraphQueryClient
from engine.context import ScanContext
from schemas.domain import Resource, ResourceTypeCount

_log = logging.getLogger(__name__)

RESOURCES_QUERY = (
    "resources "
    "| project id, subscriptionId, resourceGroup, location, type, name, kind, sku "
    "| order by subscriptionId, type, id"
)

TYPE_COUNT_QUERY = (
    "resources | summarize count() by subscriptionId, type | order by subscriptionId, type"
)


def _str(value: Any) -> str:
    return "" if value is None else str(value)


def row_to_resource(row: dict[str, Any]) -> Resource | None:
    rid = row.get("id")
    if not rid:
        _log.warning("Inventory row without 'id' skipped")
        return None
    sku = row.get("sku") if isinstance(row.get("sku"), dict) else {}
    return Resource(
        id=rid,
        subscription_id=_str(row.get("subscriptionId")).lower(),
        resource_group=_str(row.get("resourceGroup")),
        location=_str(row.get("location")),
        type=_str(row.get("type")),
        name=_str(row.get("name")),
        sku_name=_str(sku.get("name")),
        sku_tier=_str(sku.get("tier")),
        kind=_str(row.get("kind")),
    )


def collect_resources(graph: GraphQueryClient, context: ScanContext) -> tuple[list[Resource], list[Resource]]:
    """Split every discovered resource into (in scope, out of scope)."""
    in_scope: list[Resource] = []
    out_of_scope: list[Resource] = []
    for row in graph.query(RESOURCES_QUERY, context.subscription_ids, context.cancel):
        resource = row_to_resource(row)
        if resource is None:
            continue
        if context.filters.resource_excluded(resource.id, resource.type):
            out_of_scope.append(resource)
        else:
            in_scope.append(resource)
    _log.info("Inventory: %d resources in scope, %d out of scope", len(in_scope), len(out_of_scope))
    return in_scope, out_of_scope


def collect_type_counts(
    graph: GraphQueryClient,
    context: ScanContext,
    covers: Callable[[str], bool],
) -> list[ResourceTypeCount]:
    counts: list[ResourceTypeCount] = []
    for row in graph.query(TYPE_COUNT_QUERY, context.subscription_ids, context.cancel):
        rtype = _str(row.get("type")).lower()
        if not rtype or context.filters.resource_type_excluded(rtype):
            continue
        counts.append(ResourceTypeCount(
            subscription_id=_str(row.get("subscriptionId")).lower(),
            resource_type=rtype,
            count=int(row.get("count_") or 0),
            covered=covers(rtype),
        ))
    return counts
