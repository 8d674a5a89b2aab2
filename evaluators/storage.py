"""Storage account code rules (``st``)."""
from __future__ import annotations

from typing import Any

from evaluators.base import (
    ArmScanner,
    diagnostics_rule,
    naming_rule,
    private_endpoint_rule,
    props,
    rule,
    sku_name,
    sla_rule,
    tags_rule,
)
from evaluators.registry import register_scanner

RESOURCE_TYPE = "Microsoft.Storage/storageAccounts"


def storage_sla(resource: dict[str, Any]) -> str:
    sku = sku_name(resource).replace("_", "").upper()
    tier = str(props(resource).get("accessTier") or "")
    hot = "hot" in tier.lower()
    if "RAGRS" in sku:
        return "99.99%" if hot else "99.9%"
    if hot and any(r in sku for r in ("LRS", "ZRS", "GRS")):
        return "99.9%"
    return "99%"


def _https_only(r: dict[str, Any], ctx) -> tuple[bool, str]:
    return (props(r).get("supportsHttpsTrafficOnly") is not True, "")


def _tls12(r: dict[str, Any], ctx) -> tuple[bool, str]:
    return (props(r).get("minimumTlsVersion") != "TLS1_2", "")


def _immutable_versioning(r: dict[str, Any], ctx) -> tuple[bool, str]:
    immutable = props(r).get("immutableStorageWithVersioning") or {}
    return (not immutable.get("enabled"), "")


STORAGE = ArmScanner(
    abbreviation="st",
    resource_type=RESOURCE_TYPE,
    api_version="2023-01-01",
    rules=(
        diagnostics_rule("st-001", RESOURCE_TYPE, "Storage",
                         "https://learn.microsoft.com/azure/storage/blobs/monitor-blob-storage"),
        private_endpoint_rule("st-002", RESOURCE_TYPE, "Storage",
                              "https://learn.microsoft.com/azure/storage/common/storage-private-endpoints"),
        sla_rule("st-003", RESOURCE_TYPE, "Storage", storage_sla,
                 "https://www.azure.cn/en-us/support/sla/storage/"),
        rule("st-005", RESOURCE_TYPE, "high-availability", "high", "Storage SKU",
             lambda r, ctx: (False, sku_name(r)),
             "https://learn.microsoft.com/rest/api/storagerp/srp_sku_types", rtype="other"),
        naming_rule("st-006", RESOURCE_TYPE, "Storage", "st"),
        rule("st-007", RESOURCE_TYPE, "security", "high",
             "Storage Account should use HTTPS only", _https_only,
             "https://learn.microsoft.com/azure/storage/common/storage-require-secure-transfer"),
        tags_rule("st-008", RESOURCE_TYPE, "Storage Account"),
        rule("st-009", RESOURCE_TYPE, "security", "low",
             "Storage Account should enforce TLS >= 1.2", _tls12,
             "https://learn.microsoft.com/azure/storage/common/transport-layer-security-configure-minimum-version"),
        rule("st-010", RESOURCE_TYPE, "high-availability", "low",
             "Storage Account should have immutable storage versioning enabled",
             _immutable_versioning,
             "https://learn.microsoft.com/azure/well-architected/service-guides/storage-accounts/reliability"),
    ),
)

register_scanner(STORAGE)
