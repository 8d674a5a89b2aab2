"""Azure Cache for Redis code rules (``redis``)."""
from __future__ import annotations

from evaluators.base import (
    ArmScanner,
    diagnostics_rule,
    naming_rule,
    private_endpoint_rule,
    props,
    rule,
    sla_rule,
    tags_rule,
    zones,
)
from evaluators.registry import register_scanner

RESOURCE_TYPE = "Microsoft.Cache/Redis"

REDIS = ArmScanner(
    abbreviation="redis",
    resource_type=RESOURCE_TYPE,
    api_version="2023-08-01",
    rules=(
        diagnostics_rule("redis-001", RESOURCE_TYPE, "Redis",
                         "https://learn.microsoft.com/azure/azure-cache-for-redis/cache-monitor-diagnostic-settings"),
        rule("redis-002", RESOURCE_TYPE, "high-availability", "high",
             "Redis should have availability zones enabled",
             lambda r, ctx: (not zones(r), ""),
             "https://learn.microsoft.com/azure/azure-cache-for-redis/cache-how-to-zone-redundancy"),
        sla_rule("redis-003", RESOURCE_TYPE, "Redis", "99.9%",
                 "https://www.azure.cn/en-us/support/sla/cache/"),
        private_endpoint_rule("redis-004", RESOURCE_TYPE, "Redis",
                              "https://learn.microsoft.com/azure/azure-cache-for-redis/cache-private-link"),
        rule("redis-005", RESOURCE_TYPE, "high-availability", "high", "Redis SKU",
             lambda r, ctx: (False, str(((props(r).get("sku") or {}).get("name")) or "")),
             "https://azure.microsoft.com/pricing/details/cache/", rtype="other"),
        naming_rule("redis-006", RESOURCE_TYPE, "Redis", "redis"),
        tags_rule("redis-007", RESOURCE_TYPE, "Redis"),
        rule("redis-008", RESOURCE_TYPE, "security", "high",
             "Redis should not enable the non-SSL port",
             lambda r, ctx: (props(r).get("enableNonSslPort") is True, ""),
             "https://learn.microsoft.com/azure/azure-cache-for-redis/cache-configure#access-ports"),
        rule("redis-009", RESOURCE_TYPE, "security", "low",
             "Redis should enforce TLS >= 1.2",
             lambda r, ctx: (props(r).get("minimumTlsVersion") != "1.2", ""),
             "https://learn.microsoft.com/azure/azure-cache-for-redis/cache-remove-tls-10-11"),
    ),
)

register_scanner(REDIS)
