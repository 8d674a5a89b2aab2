"""Preflight indexes consumed by code rules.

  - diagnostics:        resource id -> has at least one diagnostic setting
  - private endpoints:  backend resource id -> has a private endpoint
  - public IPs:         public IP id -> availability zones

All keys are lower-cased resource ids.  Diagnostic settings are read through
the ARM ``/batch`` endpoint (20 sub-requests per call, up to 10 calls in
flight); the other two indexes come from Resource Graph.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable

from collectors.azure_client import BATCH_SIZE, AzureClient
from collectors.resource_graph import GraphQueryClient
from engine.errors import PermanentError, TransientError
from schemas.domain import Resource

_log = logging.getLogger(__name__)

DIAGNOSTICS_API_VERSION = "2021-05-01-preview"
DIAGNOSTICS_WORKERS = 10
_DIAG_MARKER = "/providers/microsoft.insights/diagnosticsettings/"

# Resource types known to accept diagnostic settings.
DIAGNOSTICS_TYPES: frozenset[str] = frozenset({
    "microsoft.analysisservices/servers",
    "microsoft.app/containerapps",
    "microsoft.app/managedenvironments",
    "microsoft.appconfiguration/configurationstores",
    "microsoft.automation/automationaccounts",
    "microsoft.batch/batchaccounts",
    "microsoft.cache/redis",
    "microsoft.cdn/profiles",
    "microsoft.cognitiveservices/accounts",
    "microsoft.compute/virtualmachines",
    "microsoft.compute/virtualmachinescalesets",
    "microsoft.containerinstance/containergroups",
    "microsoft.containerregistry/registries",
    "microsoft.containerservice/managedclusters",
    "microsoft.databricks/workspaces",
    "microsoft.datafactory/factories",
    "microsoft.dbformysql/flexibleservers",
    "microsoft.dbforpostgresql/flexibleservers",
    "microsoft.documentdb/databaseaccounts",
    "microsoft.eventgrid/domains",
    "microsoft.eventhub/namespaces",
    "microsoft.insights/components",
    "microsoft.keyvault/vaults",
    "microsoft.kusto/clusters",
    "microsoft.logic/workflows",
    "microsoft.network/applicationgateways",
    "microsoft.network/azurefirewalls",
    "microsoft.network/loadbalancers",
    "microsoft.network/natgateways",
    "microsoft.network/networksecuritygroups",
    "microsoft.network/publicipaddresses",
    "microsoft.network/virtualnetworkgateways",
    "microsoft.network/virtualnetworks",
    "microsoft.operationalinsights/workspaces",
    "microsoft.search/searchservices",
    "microsoft.servicebus/namespaces",
    "microsoft.signalrservice/signalr",
    "microsoft.sql/servers",
    "microsoft.sql/servers/databases",
    "microsoft.storage/storageaccounts",
    "microsoft.web/serverfarms",
    "microsoft.web/sites",
})

PRIVATE_ENDPOINTS_QUERY = """
resources
| where type =~ 'microsoft.network/privateendpoints'
| mv-expand conn = array_concat(
    properties.privateLinkServiceConnections,
    properties.manualPrivateLinkServiceConnections)
| project backendId = tolower(tostring(conn.properties.privateLinkServiceId))
| where isnotempty(backendId)
| distinct backendId
"""

PUBLIC_IPS_QUERY = """
resources
| where type =~ 'microsoft.network/publicipaddresses'
| project id = tolower(id), zones
"""


# ── Diagnostics ───────────────────────────────────────────────────
def _diagnostics_target(setting_id: str) -> str:
    lowered = (setting_id or "").lower()
    i = lowered.find(_DIAG_MARKER)
    return lowered[:i] if i >= 0 else ""


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def diagnostics_candidates(resources: Iterable[Resource]) -> list[str]:
    return sorted({r.id.lower() for r in resources if r.type in DIAGNOSTICS_TYPES})


def _diagnostics_batch(client: AzureClient, ids: list[str]) -> dict[str, bool]:
    requests_ = [
        {
            "httpMethod": "GET",
            "relativeUrl": f"{rid}/providers/microsoft.insights/diagnosticSettings"
                           f"?api-version={DIAGNOSTICS_API_VERSION}",
        }
        for rid in ids
    ]
    found: dict[str, bool] = {}
    for response in client.batch(requests_):
        if response.get("httpStatusCode") != 200:
            continue
        content: Any = response.get("content") or {}
        for setting in content.get("value", []) or []:
            target = _diagnostics_target(setting.get("id", ""))
            if target:
                found[target] = True
    return found


def collect_diagnostics(
    client: AzureClient,
    resources: Iterable[Resource],
    cancel: threading.Event | None = None,
    *,
    workers: int = DIAGNOSTICS_WORKERS,
) -> dict[str, bool]:
    ids = diagnostics_candidates(resources)
    if not ids:
        return {}
    if len(ids) > 5000:
        _log.warning("%d resources detected; diagnostic settings scan will take a while", len(ids))
    batches = _chunks(ids, BATCH_SIZE)
    _log.debug("Diagnostic settings: %d batches", len(batches))

    def _run(batch: list[str]) -> dict[str, bool]:
        if cancel is not None and cancel.is_set():
            return {}
        try:
            return _diagnostics_batch(client, batch)
        except (PermanentError, TransientError) as e:
            _log.warning("Diagnostic settings batch of %d resources skipped: %s", len(batch), e)
            return {}

    index: dict[str, bool] = {}
    with ThreadPoolExecutor(max_workers=min(workers, len(batches)),
                            thread_name_prefix="diagnostics") as pool:
        for found in pool.map(_run, batches):
            index.update(found)
    return index


# ── Graph-backed indexes ──────────────────────────────────────────
def collect_private_endpoints(graph: GraphQueryClient, subscriptions: list[str],
                              cancel: threading.Event | None = None) -> dict[str, bool]:
    rows = graph.query(PRIVATE_ENDPOINTS_QUERY, subscriptions, cancel)
    return {str(r["backendId"]).lower(): True for r in rows if r.get("backendId")}


def collect_public_ips(graph: GraphQueryClient, subscriptions: list[str],
                       cancel: threading.Event | None = None) -> dict[str, frozenset[str]]:
    index: dict[str, frozenset[str]] = {}
    for row in graph.query(PUBLIC_IPS_QUERY, subscriptions, cancel):
        pip = str(row.get("id") or "").lower()
        if pip:
            index[pip] = frozenset(str(z) for z in row.get("zones") or [])
    return index
