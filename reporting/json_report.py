"""JSON renderer — a single ``<output_name>.json`` document.

Top-level keys are the report table names; each value is a list of row
objects keyed by the camel-cased header (``"Recommendation Id"`` ->
``"recommendationId"``).  ``externalPlugins`` holds one object per plugin
output with its metadata and rows.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from reporting.report_data import ReportData, table_to_objects

_log = logging.getLogger(__name__)


def build_document(data: ReportData) -> dict[str, Any]:
    doc: dict[str, Any] = {
        name: table_to_objects(table) for name, table in data.tables().items()
    }
    doc["externalPlugins"] = [
        {
            "pluginName": o.plugin_name,
            "sheetName": o.sheet_name,
            "description": o.description,
            "rows": table_to_objects(o.table),
        }
        for o in data.plugin_outputs()
    ]
    return doc


def write_json(data: ReportData, output_dir: str | Path = ".") -> Path:
    path = Path(output_dir) / f"{data.output_name}.json"
    _log.info("Generating report: %s", path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(build_document(data), f, indent=2, ensure_ascii=False)
    return path
