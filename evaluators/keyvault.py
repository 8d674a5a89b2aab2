"""Key Vault code rules (``kv``)."""
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
)
from evaluators.registry import register_scanner

RESOURCE_TYPE = "Microsoft.KeyVault/vaults"

KEY_VAULT = ArmScanner(
    abbreviation="kv",
    resource_type=RESOURCE_TYPE,
    api_version="2023-07-01",
    rules=(
        diagnostics_rule("kv-001", RESOURCE_TYPE, "Key Vault",
                         "https://learn.microsoft.com/azure/key-vault/general/monitor-key-vault"),
        private_endpoint_rule("kv-002", RESOURCE_TYPE, "Key Vault",
                              "https://learn.microsoft.com/azure/key-vault/general/private-link-service"),
        sla_rule("kv-003", RESOURCE_TYPE, "Key Vault", "99.99%",
                 "https://www.azure.cn/en-us/support/sla/key-vault/"),
        naming_rule("kv-006", RESOURCE_TYPE, "Key Vault", "kv"),
        tags_rule("kv-007", RESOURCE_TYPE, "Key Vault"),
        rule("kv-008", RESOURCE_TYPE, "security", "medium",
             "Key Vault should have purge protection enabled",
             lambda r, ctx: (props(r).get("enablePurgeProtection") is not True, ""),
             "https://learn.microsoft.com/azure/key-vault/general/soft-delete-overview#purge-protection"),
    ),
)

register_scanner(KEY_VAULT)
