"""Virtual machine code rules (``vm``)."""
from __future__ import annotations

from typing import Any

from evaluators.base import (
    ArmScanner,
    diagnostics_rule,
    naming_rule,
    props,
    rule,
    sla_rule,
    tags_rule,
    zones,
)
from evaluators.registry import register_scanner

RESOURCE_TYPE = "Microsoft.Compute/virtualMachines"


def vm_sla(resource: dict[str, Any]) -> str:
    scale_set = (props(resource).get("virtualMachineScaleSet") or {}).get("id")
    multi_zone = len(zones(resource)) > 1
    if multi_zone:
        return "99.99%"
    if scale_set:
        return "99.95%"
    return "99.9%"


def _managed_disks(r: dict[str, Any], ctx) -> tuple[bool, str]:
    os_disk = ((props(r).get("storageProfile") or {}).get("osDisk") or {})
    return (not os_disk.get("managedDisk"), "")


VIRTUAL_MACHINE = ArmScanner(
    abbreviation="vm",
    resource_type=RESOURCE_TYPE,
    api_version="2024-03-01",
    rules=(
        diagnostics_rule("vm-001", RESOURCE_TYPE, "Virtual Machine",
                         "https://learn.microsoft.com/azure/azure-monitor/vm/monitor-virtual-machine"),
        rule("vm-002", RESOURCE_TYPE, "high-availability", "high",
             "Virtual Machine should use availability zones",
             lambda r, ctx: (not zones(r), ""),
             "https://learn.microsoft.com/azure/virtual-machines/availability"),
        sla_rule("vm-003", RESOURCE_TYPE, "Virtual Machine", vm_sla,
                 "https://www.microsoft.com/licensing/docs/view/Service-Level-Agreements-SLA-for-Online-Services"),
        rule("vm-004", RESOURCE_TYPE, "high-availability", "medium",
             "Virtual Machine should use managed disks", _managed_disks,
             "https://learn.microsoft.com/azure/virtual-machines/managed-disks-overview"),
        naming_rule("vm-006", RESOURCE_TYPE, "Virtual Machine", "vm"),
        tags_rule("vm-007", RESOURCE_TYPE, "Virtual Machine"),
    ),
)

register_scanner(VIRTUAL_MACHINE)
