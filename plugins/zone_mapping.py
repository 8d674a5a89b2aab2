"""zone-mapping: logical-to-physical availability zones per subscription."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Optional

from collectors.azure_client import AzureClient
from engine.context import ScanContext
from engine.errors import PermanentError, TransientError
from plugins.base import PluginMetadata
from schemas.domain import PluginOutput

_log = logging.getLogger(__name__)

LOCATIONS_API = "2022-12-01"
MAX_WORKERS = 5

HEADER = ["Subscription Id", "Subscription Name", "Location", "Display Name", "Logical Zone", "Physical Zone"]


@dataclass
class ZoneMappingPlugin:
    _client: Optional[AzureClient] = field(default=None, repr=False)

    def metadata(self) -> PluginMetadata:
        return PluginMetadata(
            name="zone-mapping",
            description="Logical-to-physical availability zone mappings for Azure regions by subscription",
            author="azqr",
            license="MIT",
        )

    def init(self, client: AzureClient) -> None:
        self._client = client

    def _mappings(self, subscription_id: str, subscription_name: str) -> list[list[str]]:
        assert self._client is not None
        locations = self._client.get_all(f"/subscriptions/{subscription_id}/locations",
                                         api_version=LOCATIONS_API)
        rows: list[list[str]] = []
        for loc in locations:
            mappings: list[dict[str, Any]] = loc.get("availabilityZoneMappings") or []
            for m in mappings:
                rows.append([
                    subscription_id,
                    subscription_name,
                    loc.get("name") or "",
                    loc.get("displayName") or "",
                    str(m.get("logicalZone") or ""),
                    str(m.get("physicalZone") or ""),
                ])
        return rows

    def scan(self, context: ScanContext) -> PluginOutput:
        if self._client is None:
            raise RuntimeError("zone-mapping plugin used before init()")

        def _one(sub: str) -> list[list[str]]:
            name = context.subscription_name(sub) or sub
            try:
                return self._mappings(sub, name)
            except (PermanentError, TransientError) as e:
                _log.error("Zone mappings for %s failed: %s", name, e)
                return []

        rows: list[list[str]] = []
        subs = context.subscription_ids
        if subs:
            with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(subs)),
                                    thread_name_prefix="zone-mapping") as pool:
                for sub_rows in pool.map(_one, subs):
                    rows.extend(sub_rows)
        rows.sort(key=lambda r: (r[1], r[2], r[4]))
        _log.info("Zone mappings retrieved: %d", len(rows))
        meta = self.metadata()
        return PluginOutput(
            plugin_name=meta.name,
            sheet_name="Zone Mapping",
            description=meta.description,
            table=[list(HEADER)] + rows,
        )
