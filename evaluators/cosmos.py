"""Cosmos DB code rules (``cosmos``)."""
from __future__ import annotations

from typing import Any

from evaluators.base import (
    ArmScanner,
    diagnostics_rule,
    naming_rule,
    private_endpoint_rule,
    props,
    rule,
    sla_rule,
    tags_rule,
)
from evaluators.registry import register_scanner

RESOURCE_TYPE = "Microsoft.DocumentDB/databaseAccounts"


def _zone_layout(resource: dict[str, Any]) -> tuple[int, bool, bool]:
    """(locations, any zone-redundant, every location zone-redundant)."""
    locations = props(resource).get("locations") or []
    flags = [bool(loc.get("isZoneRedundant")) for loc in locations]
    return len(flags), any(flags), bool(flags) and all(flags)


def cosmos_sla(resource: dict[str, Any]) -> str:
    count, any_zr, all_zr = _zone_layout(resource)
    if count >= 2 and all_zr:
        return "99.999%"
    if any_zr:
        return "99.995%"
    return "99.99%"


def _zones(r: dict[str, Any], ctx) -> tuple[bool, str]:
    count, _any, all_zr = _zone_layout(r)
    return (not (count >= 2 and all_zr), "")


COSMOS = ArmScanner(
    abbreviation="cosmos",
    resource_type=RESOURCE_TYPE,
    api_version="2024-05-15",
    rules=(
        diagnostics_rule("cosmos-001", RESOURCE_TYPE, "CosmosDB",
                         "https://learn.microsoft.com/azure/cosmos-db/monitor-resource-logs"),
        rule("cosmos-002", RESOURCE_TYPE, "high-availability", "high",
             "CosmosDB should have availability zones enabled", _zones,
             "https://learn.microsoft.com/azure/cosmos-db/high-availability"),
        sla_rule("cosmos-003", RESOURCE_TYPE, "CosmosDB", cosmos_sla,
                 "https://www.azure.cn/en-us/support/sla/cosmos-db/"),
        private_endpoint_rule("cosmos-004", RESOURCE_TYPE, "CosmosDB",
                              "https://learn.microsoft.com/azure/cosmos-db/how-to-configure-private-endpoints"),
        naming_rule("cosmos-006", RESOURCE_TYPE, "CosmosDB", "cosmos"),
        tags_rule("cosmos-007", RESOURCE_TYPE, "CosmosDB"),
        rule("cosmos-008", RESOURCE_TYPE, "security", "medium",
             "CosmosDB should have local authentication disabled",
             lambda r, ctx: (props(r).get("disableLocalAuth") is not True, ""),
             "https://learn.microsoft.com/azure/cosmos-db/how-to-setup-rbac#disable-local-auth"),
        rule("cosmos-009", RESOURCE_TYPE, "security", "medium",
             "CosmosDB: disable write operations on metadata resources via account keys",
             lambda r, ctx: (props(r).get("disableKeyBasedMetadataWriteAccess") is not True, ""),
             "https://learn.microsoft.com/azure/cosmos-db/role-based-access-control#prevent-sdk-changes"),
    ),
)

register_scanner(COSMOS)
