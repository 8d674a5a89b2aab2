"""App Service plan code rules (``asp``)."""
from __future__ import annotations

from typing import Any

from evaluators.base import (
    ArmScanner,
    diagnostics_rule,
    naming_rule,
    props,
    rule,
    sku_name,
    sla_rule,
    tags_rule,
)
from evaluators.registry import register_scanner

RESOURCE_TYPE = "Microsoft.Web/serverFarms"

# Tiers without a financially backed SLA.
_NO_SLA_TIERS = ("free", "shared", "dynamic")


def _tier(resource: dict[str, Any]) -> str:
    return str((resource.get("sku") or {}).get("tier") or "")


def plan_sla(resource: dict[str, Any]) -> str:
    tier = _tier(resource).lower()
    if tier in _NO_SLA_TIERS:
        return "None"
    return "99.95%"


def _zone_redundant(r: dict[str, Any], ctx) -> tuple[bool, str]:
    return (props(r).get("zoneRedundant") is not True, "")


def _capacity(r: dict[str, Any], ctx) -> tuple[bool, str]:
    capacity = int((r.get("sku") or {}).get("capacity") or 0)
    return (capacity < 2, str(capacity))


def _empty_plan(r: dict[str, Any], ctx) -> tuple[bool, str]:
    return (int(props(r).get("numberOfSites") or 0) == 0, "")


APP_SERVICE_PLAN = ArmScanner(
    abbreviation="asp",
    resource_type=RESOURCE_TYPE,
    api_version="2022-09-01",
    rules=(
        diagnostics_rule("asp-001", RESOURCE_TYPE, "Plan",
                         "https://learn.microsoft.com/azure/app-service/troubleshoot-diagnostic-logs"),
        rule("asp-002", RESOURCE_TYPE, "high-availability", "high",
             "Plan should have availability zones enabled", _zone_redundant,
             "https://learn.microsoft.com/azure/reliability/migrate-app-service"),
        sla_rule("asp-003", RESOURCE_TYPE, "Plan", plan_sla,
                 "https://www.azure.cn/en-us/support/sla/app-service/"),
        rule("asp-005", RESOURCE_TYPE, "high-availability", "high", "Plan SKU",
             lambda r, ctx: (False, sku_name(r)),
             "https://learn.microsoft.com/azure/app-service/overview-hosting-plans", rtype="other"),
        naming_rule("asp-006", RESOURCE_TYPE, "Plan", "asp"),
        tags_rule("asp-007", RESOURCE_TYPE, "Plan"),
        rule("asp-008", RESOURCE_TYPE, "high-availability", "medium",
             "Plan should run at least two instances", _capacity,
             "https://learn.microsoft.com/azure/well-architected/service-guides/app-service-web-apps"),
        rule("asp-009", RESOURCE_TYPE, "cost", "medium",
             "Plan without apps should be removed", _empty_plan,
             "https://learn.microsoft.com/azure/app-service/app-service-plan-manage#delete-an-app-service-plan"),
    ),
)

register_scanner(APP_SERVICE_PLAN)
