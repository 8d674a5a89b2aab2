"""HTTP surface — catalog listings and background scans.

Endpoints:
  GET  /api/health               liveness
  GET  /api/types                supported resource types
  GET  /api/recommendations      full catalog
  POST /api/scan                 start a scan in the background -> 202
  GET  /api/scans/{id}           scan history row

``POST /api/scan`` body::

    {"key": "st", "subscriptions": [...], "resourceGroups": [...],
     "stages": "cost,-advisor", "mask": true}

The scan is recorded in the history table as ``pending`` before the
response is sent, moves to ``running`` when the background task starts,
and ends ``completed`` (with per-table row counts and stage metrics) or
``failed`` (with the error).

Usage:
    uvicorn --factory server.api:create_app
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from config import load_settings
from engine.builder import ScanParams, parse_stage_list, run_scan
from engine.context import ScanContext
from engine.errors import AzqrError, ConfigurationError
from evaluators.registry import load_builtin_scanners
from reporting.catalog_listing import listing_catalog, recommendations_table, types_table
from reporting.report_data import ReportData, table_to_objects
from schemas.resource_id import is_resource_group_id
from server.history import ScanHistory, ScanNotFound, ScanStatus

_log = logging.getLogger(__name__)

ScanRunner = Callable[[ScanParams], ScanContext]


class ScanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    key: str
    subscriptions: list[str] = Field(default_factory=list)
    resource_groups: list[str] = Field(default_factory=list, alias="resourceGroups")
    stages: Optional[str] = None
    mask: bool = False


def _to_params(request: ScanRequest) -> ScanParams:
    key = request.key.strip().lower()
    if key not in load_builtin_scanners():
        raise ConfigurationError(f"Unknown scanner '{request.key}'")
    bad = [rg for rg in request.resource_groups if not is_resource_group_id(rg)]
    if bad:
        raise ConfigurationError(f"Invalid resource group id(s): {', '.join(bad)}")
    return ScanParams(
        subscriptions=list(request.subscriptions),
        resource_groups=list(request.resource_groups),
        scanners=[key],
        mask=request.mask,
        stage_toggles=parse_stage_list(request.stages),
    )


def _summary(context: ScanContext) -> dict[str, Any]:
    data = ReportData.from_context(context)
    return {
        "tables": {name: len(table) - 1 for name, table in data.tables().items()},
        "metrics": {name: m.as_dict() for name, m in context.metrics.items()},
    }


def create_app(history: Optional[ScanHistory] = None,
               runner: Optional[ScanRunner] = None) -> FastAPI:
    """Build the application; *history* and *runner* are injectable for tests."""
    history = history or ScanHistory(load_settings().history_db)
    runner = runner or run_scan
    catalog = listing_catalog()

    app = FastAPI(title="Azure Quick Review", version="1.0.0")
    app.state.history = history

    def execute(scan_id: str, params: ScanParams) -> None:
        history.transition(scan_id, ScanStatus.RUNNING)
        try:
            context = runner(params)
        except AzqrError as e:
            _log.error("Scan %s failed: %s", scan_id, e)
            history.transition(scan_id, ScanStatus.FAILED, result={"error": str(e)})
            return
        except Exception as e:
            _log.exception("Scan %s failed unexpectedly", scan_id)
            history.transition(scan_id, ScanStatus.FAILED,
                               result={"error": f"{type(e).__name__}: {e}"})
            return
        history.transition(scan_id, ScanStatus.COMPLETED, result=_summary(context))

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/types")
    def types() -> list[dict[str, str]]:
        return table_to_objects(types_table(catalog))

    @app.get("/api/recommendations")
    def recommendations() -> list[dict[str, str]]:
        return table_to_objects(recommendations_table(catalog))

    @app.post("/api/scan", status_code=status.HTTP_202_ACCEPTED)
    def start_scan(request: ScanRequest, background: BackgroundTasks) -> dict[str, str]:
        try:
            params = _to_params(request)
        except ConfigurationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        scan_id = history.create(request.model_dump(by_alias=True))
        background.add_task(execute, scan_id, params)
        _log.info("Scan %s accepted for scanner %s", scan_id, request.key)
        return {"id": scan_id, "status": ScanStatus.PENDING.value}

    @app.get("/api/scans/{scan_id}")
    def get_scan(scan_id: str) -> dict[str, Any]:
        try:
            return history.get(scan_id)
        except ScanNotFound:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Scan {scan_id} not found")

    return app

