# collectors/management_groups.py
from __future__ import annotations

import logging
from typing import Iterable, List, Set

from collectors.azure_client import AzureClient
from engine.errors import PermanentError

_log = logging.getLogger(__name__)

API_VERSION = "2020-05-01"

_SUBSCRIPTION_TYPE = "microsoft.management/managementgroups/subscriptions"


def descendant_subscriptions(client: AzureClient, group_id: str) -> List[str]:
    """Subscription ids anywhere below management group *group_id*."""
    items = client.get_all(
        f"/providers/Microsoft.Management/managementGroups/{group_id}/descendants",
        api_version=API_VERSION,
    )
    subs = [
        (item.get("name") or "").lower()
        for item in items
        if (item.get("type") or "").lower() == _SUBSCRIPTION_TYPE
    ]
    return [s for s in subs if s]


def expand_management_groups(client: AzureClient, group_ids: Iterable[str]) -> Set[str]:
    """Union of descendant subscriptions for every group.

    A group that cannot be read (missing or no access) is logged and skipped.
    """
    out: Set[str] = set()
    for group in group_ids:
        group = group.strip()
        if not group:
            continue
        try:
            subs = descendant_subscriptions(client, group)
        except PermanentError as e:
            _log.warning("Management group %s skipped: %s", group, e)
            continue
        _log.info("Management group %s: %d subscriptions", group, len(subs))
        out.update(subs)
    return out
