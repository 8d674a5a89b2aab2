# collectors/subscriptions.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from collectors.azure_client import AzureClient

_log = logging.getLogger(__name__)

API_VERSION = "2022-12-01"


def list_subscriptions(client: AzureClient) -> Dict[str, str]:
    """Enabled subscriptions visible to the credential: ``{id (lower): displayName}``."""
    subs: Dict[str, str] = {}
    for s in client.get_all("/subscriptions", api_version=API_VERSION):
        if (s.get("state") or "").lower() != "enabled":
            continue
        sub_id = (s.get("subscriptionId") or "").lower()
        if sub_id:
            subs[sub_id] = s.get("displayName") or sub_id
    _log.info("Discovered %d enabled subscriptions", len(subs))
    return subs


def narrow_subscriptions(
    universe: Dict[str, str],
    requested: Optional[Iterable[str]] = None,
) -> Dict[str, str]:
    """Restrict *universe* to *requested* ids; unknown ids are logged and dropped."""
    wanted = {s.strip().lower() for s in requested or () if s and s.strip()}
    if not wanted:
        return dict(universe)
    missing = sorted(wanted - set(universe))
    for sub in missing:
        _log.warning("Subscription %s not found or not enabled; skipped", sub)
    return {sub: name for sub, name in universe.items() if sub in wanted}
