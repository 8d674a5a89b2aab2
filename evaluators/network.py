"""Public IP (``pip``) and Application Gateway (``agw``) code rules."""
from __future__ import annotations

from typing import Any

from engine.context import ScanContext
from evaluators.base import (
    ArmScanner,
    diagnostics_rule,
    naming_rule,
    props,
    rule,
    sku_name,
    sla_rule,
    tags_rule,
    zones,
)
from evaluators.registry import register_scanner

PIP_TYPE = "Microsoft.Network/publicIPAddresses"
AGW_TYPE = "Microsoft.Network/applicationGateways"


# ── Public IP ─────────────────────────────────────────────────────
PUBLIC_IP = ArmScanner(
    abbreviation="pip",
    resource_type=PIP_TYPE,
    api_version="2023-09-01",
    rules=(
        rule("pip-001", PIP_TYPE, "high-availability", "high",
             "Public IP should use the Standard SKU",
             lambda r, ctx: (sku_name(r).lower() != "standard", ""),
             "https://learn.microsoft.com/azure/virtual-network/ip-services/public-ip-basic-upgrade-guidance"),
        rule("pip-002", PIP_TYPE, "high-availability", "medium",
             "Public IP should be zone-redundant",
             lambda r, ctx: (len(zones(r)) <= 1, ""),
             "https://learn.microsoft.com/azure/virtual-network/ip-services/public-ip-addresses#availability-zone"),
        sla_rule("pip-003", PIP_TYPE, "Public IP", "99.99%",
                 "https://www.azure.cn/en-us/support/sla/virtual-network/"),
        naming_rule("pip-006", PIP_TYPE, "Public IP", "pip"),
        tags_rule("pip-007", PIP_TYPE, "Public IP"),
    ),
)


# ── Application Gateway ───────────────────────────────────────────
def _frontend_public_ips(resource: dict[str, Any]) -> list[str]:
    ids: list[str] = []
    for frontend in props(resource).get("frontendIPConfigurations") or []:
        pip = ((frontend.get("properties") or {}).get("publicIPAddress") or {}).get("id")
        if pip:
            ids.append(pip)
    return ids


def _agw_zone_redundant(r: dict[str, Any], ctx: ScanContext) -> tuple[bool, str]:
    if len(zones(r)) <= 1:
        return True, ""
    # Frontend public IPs must span at least the gateway's zones.
    gateway_zones = set(zones(r))
    for pip in _frontend_public_ips(r):
        if not gateway_zones <= ctx.public_ip_zones(pip):
            return True, pip
    return False, ""


def _agw_v2(r: dict[str, Any], ctx: ScanContext) -> tuple[bool, str]:
    tier = str(((props(r).get("sku") or {}).get("tier")) or "")
    return (not tier.lower().endswith("_v2"), tier)


APPLICATION_GATEWAY = ArmScanner(
    abbreviation="agw",
    resource_type=AGW_TYPE,
    api_version="2023-09-01",
    rules=(
        diagnostics_rule("agw-005", AGW_TYPE, "Application Gateway",
                         "https://learn.microsoft.com/azure/application-gateway/application-gateway-diagnostics"),
        rule("agw-007", AGW_TYPE, "high-availability", "high",
             "Application Gateway and its public IPs should be zone-redundant",
             _agw_zone_redundant,
             "https://learn.microsoft.com/azure/reliability/reliability-application-gateway-v2"),
        rule("agw-008", AGW_TYPE, "scalability", "medium",
             "Application Gateway should use a v2 SKU", _agw_v2,
             "https://learn.microsoft.com/azure/application-gateway/overview-v2"),
        sla_rule("agw-103", AGW_TYPE, "Application Gateway", "99.95%",
                 "https://www.azure.cn/en-us/support/sla/application-gateway/"),
        naming_rule("agw-105", AGW_TYPE, "Application Gateway", "agw"),
        tags_rule("agw-106", AGW_TYPE, "Application Gateway"),
    ),
)

register_scanner(PUBLIC_IP)
register_scanner(APPLICATION_GATEWAY)
