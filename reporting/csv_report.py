"""CSV renderer — one ``<output_name>.<table>.csv`` file per report table.

Plugin outputs are written as ``<output_name>.plugin_<plugin name>.csv``.
Empty tables (header only) are still written so downstream tooling finds
a stable file set.
"""
from __future__ import annotations

import csv
import logging
from pathlib import Path

from reporting.report_data import ReportData, Table

_log = logging.getLogger(__name__)


def csv_path(output_name: str, table: str, output_dir: str | Path = ".") -> Path:
    return Path(output_dir) / f"{output_name}.{table}.csv"


def write_table(path: Path, table: Table) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerows(table)


def write_csv(data: ReportData, output_dir: str | Path = ".") -> list[Path]:
    written: list[Path] = []
    for name, table in data.tables().items():
        path = csv_path(data.output_name, name, output_dir)
        write_table(path, table)
        written.append(path)
    for output in data.plugin_outputs():
        if not output.table:
            continue
        path = csv_path(data.output_name, f"plugin_{output.plugin_name}", output_dir)
        write_table(path, output.table)
        written.append(path)
    _log.info("Generated %d CSV files for %s", len(written), data.output_name)
    return written
