"""Arc-enabled SQL Server instances via Resource Graph."""
from __future__ import annotations

import logging
from typing import Any

from collectors.resource_graph import GraphQueryClient
from engine.context import ScanContext
from schemas.domain import ArcSQLResult

_log = logging.getLogger(__name__)

ARC_SQL_QUERY = """
resources
| where type =~ 'Microsoft.AzureArcData/sqlServerInstances'
| extend SQLInstance = id, AzureArcServer = tolower(tostring(properties.containerResourceId))
| extend version = tostring(properties.version)
| extend edition = tostring(properties.edition)
| extend Build = tostring(properties.currentVersion)
| extend DefenderStatus = tostring(properties.azureDefenderStatus)
| extend patchLevel = tostring(properties.patchLevel)
| extend vcores = toint(properties.vCore)
| join kind=inner (resources
    | where type == 'microsoft.hybridcompute/machines/extensions'
    | where properties.type == 'WindowsAgent.SqlServer'
    | extend License = case(properties.settings.LicenseType == 'Paid', 'SA',
                            properties.settings.LicenseType == 'PAYG', 'PAYG', 'unset')
    | extend Serverid = tolower(tostring(split(id, '/extensions/WindowsAgent.SqlServer')[0]))
    | parse properties with * 'uploadStatus : ' DPSStatus ';' *
    | parse properties with * 'telemetryUploadStatus : ' TELStatusRaw ';' *
    | extend DPSStatus = iff(DPSStatus == '', 'No Data', DPSStatus)
    | extend TELStatuslogs = (parse_json(replace('.\\"', '\\"', TELStatusRaw))).logs
    | extend TELStatus = iff(TELStatuslogs.status == 'OK', '__',
                             iff(TELStatuslogs.message == '', 'No Data', TELStatuslogs.message))
  ) on $left.AzureArcServer == $right.Serverid
| join kind=inner (resources
    | where type == 'microsoft.hybridcompute/machines'
    | extend status = tostring(properties.status)
    | project id = tolower(id), status
  ) on $left.AzureArcServer == $right.id
| project subscriptionId, status, AzureArcServer, SQLInstance, resourceGroup, version, Build,
    patchLevel, edition, vcores, License, DPSStatus, TELStatus, DefenderStatus
"""


def _s(row: dict[str, Any], key: str) -> str:
    value = row.get(key)
    return "" if value is None else str(value)


def collect_arc_sql(graph: GraphQueryClient, context: ScanContext) -> list[ArcSQLResult]:
    out: list[ArcSQLResult] = []
    for row in graph.query(ARC_SQL_QUERY, context.subscription_ids, context.cancel):
        sub = _s(row, "subscriptionId").lower()
        instance = _s(row, "SQLInstance")
        if context.filters.subscription_excluded(sub) or context.filters.service_excluded(instance):
            continue
        out.append(ArcSQLResult(
            subscription_id=sub,
            subscription_name=context.subscription_name(sub),
            status=_s(row, "status"),
            azure_arc_server=_s(row, "AzureArcServer"),
            sql_instance=instance,
            resource_group=_s(row, "resourceGroup"),
            version=_s(row, "version"),
            build=_s(row, "Build"),
            patch_level=_s(row, "patchLevel"),
            edition=_s(row, "edition"),
            vcores=_s(row, "vcores"),
            license=_s(row, "License"),
            dps_status=_s(row, "DPSStatus"),
            tel_status=_s(row, "TELStatus"),
            defender_status=_s(row, "DefenderStatus"),
        ))
    _log.info("Arc-enabled SQL: %d instances", len(out))
    return out
