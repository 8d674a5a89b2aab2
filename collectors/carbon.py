# collectors/carbon.py
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from collectors.azure_client import AzureClient
from engine.errors import PermanentError, TransientError
from engine.filters import Filters
from schemas.domain import CarbonResult

_log = logging.getLogger(__name__)

CARBON_API = "2025-04-01"
CARBON_BATCH = 100


def report_month(now: Optional[datetime] = None) -> date:
    """First day of the previous calendar month (latest month with emissions data)."""
    now = now or datetime.now(timezone.utc)
    first = date(now.year, now.month, 1)
    return date(first.year - 1, 12, 1) if first.month == 1 else date(first.year, first.month - 1, 1)


def _query_body(subscriptions: List[str], month: date) -> Dict[str, Any]:
    return {
        "reportType": "ItemDetailsReport",
        "subscriptionList": subscriptions,
        "carbonScopeList": ["Scope1", "Scope2", "Scope3"],
        "dateRange": {"start": month.isoformat(), "end": month.isoformat()},
        "categoryType": "ResourceType",
        "orderBy": "LatestMonthEmissions",
        "sortDirection": "Desc",
        "pageSize": 1000,
    }


def _num(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def collect_carbon(client: AzureClient, subscriptions: List[str], filters: Filters,
                   now: Optional[datetime] = None) -> List[CarbonResult]:
    """Emissions per resource type, summed across subscription batches of 100."""
    month = report_month(now)
    totals: Dict[str, Tuple[float, float]] = {}
    for i in range(0, len(subscriptions), CARBON_BATCH):
        batch = subscriptions[i:i + CARBON_BATCH]
        _log.info("Carbon emissions for subscriptions %d-%d of %d",
                  i + 1, i + len(batch), len(subscriptions))
        try:
            data = client.post("/providers/Microsoft.Carbon/carbonEmissionReports",
                               api_version=CARBON_API, body=_query_body(batch, month))
        except (PermanentError, TransientError) as e:
            _log.info("Carbon emissions not available for batch starting at %d: %s", i + 1, e)
            continue
        for item in data.get("value", []) or []:
            rtype = (item.get("itemName") or "").lower()
            if not rtype or item.get("latestMonthEmissions") is None:
                continue
            if filters.resource_type_excluded(rtype):
                continue
            latest, previous = totals.get(rtype, (0.0, 0.0))
            totals[rtype] = (latest + _num(item.get("latestMonthEmissions")),
                             previous + _num(item.get("previousMonthEmissions")))

    results: List[CarbonResult] = []
    for rtype in sorted(totals):
        latest, previous = totals[rtype]
        results.append(CarbonResult(
            date_from=month.isoformat(),
            date_to=month.isoformat(),
            resource_type=rtype,
            latest_month_emissions=f"{latest:g}",
            previous_month_emissions=f"{previous:g}" if previous > 0 else "",
            month_over_month_change=f"{(latest - previous) / previous:.4f}" if previous else "",
        ))
    return results
