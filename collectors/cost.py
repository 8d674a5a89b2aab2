# collectors/cost.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from collectors.azure_client import AzureClient
from engine.errors import ProviderCapabilityError
from schemas.domain import CostItem

_log = logging.getLogger(__name__)

COST_API = "2023-03-01"


def cost_period(previous_month: bool = False,
                now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Month to date, or the whole previous calendar month."""
    now = now or datetime.now(timezone.utc)
    first_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if not previous_month:
        return first_of_month, now
    last_month_end = first_of_month - timedelta(seconds=1)
    return last_month_end.replace(day=1, hour=0, minute=0, second=0), last_month_end


def _query_body(start: datetime, end: datetime) -> Dict[str, Any]:
    return {
        "type": "ActualCost",
        "timeframe": "Custom",
        "timePeriod": {"from": start.isoformat(), "to": end.isoformat()},
        "dataset": {
            "granularity": "None",
            "aggregation": {"totalCost": {"name": "Cost", "function": "Sum"}},
            "grouping": [{"type": "Dimension", "name": "ServiceName"}],
        },
    }


def _column_index(columns: List[Dict[str, Any]], *names: str) -> Optional[int]:
    wanted = {n.lower() for n in names}
    for i, col in enumerate(columns):
        if (col.get("name") or "").lower() in wanted:
            return i
    return None


def collect_costs(client: AzureClient, subscription_id: str, subscription_name: str,
                  start: datetime, end: datetime) -> List[CostItem]:
    """Actual cost per service name for one subscription."""
    try:
        data = client.post(
            f"/subscriptions/{subscription_id}/providers/Microsoft.CostManagement/query",
            api_version=COST_API,
            body=_query_body(start, end),
        )
    except ProviderCapabilityError as e:
        _log.info("Cost data not available for %s: %s", subscription_id, e)
        return []

    props = data.get("properties", {}) or {}
    columns = props.get("columns", []) or []
    cost_i = _column_index(columns, "Cost", "totalCost", "PreTaxCost")
    service_i = _column_index(columns, "ServiceName")
    currency_i = _column_index(columns, "Currency")
    if cost_i is None or service_i is None:
        _log.warning("Unexpected cost query columns for %s: %s", subscription_id,
                     [c.get("name") for c in columns])
        return []

    items: List[CostItem] = []
    for row in props.get("rows", []) or []:
        items.append(CostItem(
            subscription_id=subscription_id,
            subscription_name=subscription_name,
            service_name=str(row[service_i]),
            value=str(row[cost_i]),
            currency=str(row[currency_i]) if currency_i is not None else "",
        ))
    return items
