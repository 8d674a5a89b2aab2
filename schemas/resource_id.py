"""Helpers for slicing fully-qualified ARM resource ids.

``/subscriptions/<sub>/resourceGroups/<rg>/providers/<ns>/<type>/<name>``
splits on ``/`` into: ['', 'subscriptions', sub, 'resourceGroups', rg,
'providers', ns, type, name, ...].
"""
from __future__ import annotations

import re

RESOURCE_GROUP_ID_RE = re.compile(
    r"^/subscriptions/[^/]+/resourceGroups/[^/]+$", re.IGNORECASE
)


def _parts(resource_id: str) -> list[str]:
    return (resource_id or "").split("/")


def subscription_from_id(resource_id: str) -> str:
    parts = _parts(resource_id)
    return parts[2] if len(parts) > 2 and parts[1].lower() == "subscriptions" else ""


def resource_group_from_id(resource_id: str) -> str:
    parts = _parts(resource_id)
    return parts[4] if len(parts) > 4 and parts[3].lower() == "resourcegroups" else ""


def resource_group_id_from_id(resource_id: str) -> str:
    parts = _parts(resource_id)
    if len(parts) < 5 or parts[3].lower() != "resourcegroups":
        return ""
    return "/".join(parts[:5])


def resource_type_from_id(resource_id: str) -> str:
    parts = _parts(resource_id)
    if len(parts) > 7 and parts[5].lower() == "providers":
        return f"{parts[6]}/{parts[7]}"
    return ""


def name_from_id(resource_id: str) -> str:
    parts = [p for p in _parts(resource_id) if p]
    return parts[-1] if parts else ""


def is_resource_group_id(value: str) -> bool:
    return bool(RESOURCE_GROUP_ID_RE.match(value or ""))
