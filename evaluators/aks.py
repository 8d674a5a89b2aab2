"""AKS managed cluster code rules (``aks``)."""
from __future__ import annotations

from typing import Any

from engine.context import ScanContext
from evaluators.base import (
    ArmScanner,
    diagnostics_rule,
    naming_rule,
    props,
    rule,
    sla_rule,
    tags_rule,
)
from evaluators.registry import register_scanner

RESOURCE_TYPE = "Microsoft.ContainerService/managedClusters"


def _pools(resource: dict[str, Any]) -> list[dict[str, Any]]:
    return list(props(resource).get("agentPoolProfiles") or [])


def aks_sla(resource: dict[str, Any]) -> str:
    tier = str((resource.get("sku") or {}).get("tier") or "").lower()
    if tier in ("", "free"):
        return "None"
    zoned = all(len(p.get("availabilityZones") or []) > 1 for p in _pools(resource))
    return "99.95%" if zoned and _pools(resource) else "99.9%"


def _no_sla(r: dict[str, Any], ctx: ScanContext) -> tuple[bool, str]:
    sla = aks_sla(r)
    return sla == "None", sla


def _zones(r: dict[str, Any], ctx: ScanContext) -> tuple[bool, str]:
    pools = _pools(r)
    return (not pools or any(len(p.get("availabilityZones") or []) <= 1 for p in pools), "")


def _private_cluster(r: dict[str, Any], ctx: ScanContext) -> tuple[bool, str]:
    profile = props(r).get("apiServerAccessProfile") or {}
    return (profile.get("enablePrivateCluster") is not True, "")


def _rbac(r: dict[str, Any], ctx: ScanContext) -> tuple[bool, str]:
    return (props(r).get("enableRBAC") is not True, "")


def _azure_ad(r: dict[str, Any], ctx: ScanContext) -> tuple[bool, str]:
    return (not props(r).get("aadProfile"), "")


def _autoscale(r: dict[str, Any], ctx: ScanContext) -> tuple[bool, str]:
    pools = _pools(r)
    return (not pools or any(p.get("enableAutoScaling") is not True for p in pools), "")


def _network_policy(r: dict[str, Any], ctx: ScanContext) -> tuple[bool, str]:
    network = props(r).get("networkProfile") or {}
    plugin = str(network.get("networkPlugin") or "")
    return (plugin.lower() == "kubenet", plugin)


def _local_accounts(r: dict[str, Any], ctx: ScanContext) -> tuple[bool, str]:
    return (props(r).get("disableLocalAccounts") is not True, "")


AKS = ArmScanner(
    abbreviation="aks",
    resource_type=RESOURCE_TYPE,
    api_version="2024-02-01",
    rules=(
        diagnostics_rule("aks-001", RESOURCE_TYPE, "AKS Cluster",
                         "https://learn.microsoft.com/azure/aks/monitor-aks#collect-resource-logs"),
        rule("aks-002", RESOURCE_TYPE, "high-availability", "high",
             "AKS Cluster should have availability zones enabled", _zones,
             "https://learn.microsoft.com/azure/aks/availability-zones"),
        rule("aks-003", RESOURCE_TYPE, "high-availability", "high",
             "AKS Cluster should have an SLA", _no_sla,
             "https://learn.microsoft.com/azure/aks/free-standard-pricing-tiers", rtype="sla"),
        rule("aks-004", RESOURCE_TYPE, "security", "high",
             "AKS Cluster should be private", _private_cluster,
             "https://learn.microsoft.com/azure/aks/private-clusters"),
        naming_rule("aks-006", RESOURCE_TYPE, "AKS", "aks"),
        tags_rule("aks-007", RESOURCE_TYPE, "AKS Cluster"),
        rule("aks-008", RESOURCE_TYPE, "security", "high",
             "AKS should integrate authentication with Microsoft Entra ID", _azure_ad,
             "https://learn.microsoft.com/azure/aks/managed-azure-ad"),
        rule("aks-009", RESOURCE_TYPE, "security", "high",
             "AKS should enable Kubernetes role-based access control", _rbac,
             "https://learn.microsoft.com/azure/aks/manage-azure-rbac"),
        rule("aks-010", RESOURCE_TYPE, "security", "medium",
             "AKS should disable local accounts", _local_accounts,
             "https://learn.microsoft.com/azure/aks/manage-local-accounts-managed-azure-ad"),
        rule("aks-011", RESOURCE_TYPE, "scalability", "medium",
             "AKS node pools should have autoscaling enabled", _autoscale,
             "https://learn.microsoft.com/azure/aks/cluster-autoscaler"),
        rule("aks-012", RESOURCE_TYPE, "scalability", "low",
             "AKS should use Azure CNI networking", _network_policy,
             "https://learn.microsoft.com/azure/aks/concepts-network"),
    ),
)

register_scanner(AKS)
