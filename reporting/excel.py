"""Excel renderer — one sheet per report table, written with openpyxl.

Sheet layout:

- rows 1–3: masthead (report title, scan time, table description)
- row 4:    header, bold on the light-blue fill, with an autofilter over
            the header range and every data row
- row 5+:   data, alternate rows on the light-blue fill

Columns are sized to their longest cell, clamped to ``MAX_COLUMN_WIDTH``
characters.  ``Learn`` cells holding a URL become hyperlinks.  Plugin
outputs each get their own sheet named after the plugin's sheet name.

Usage::

    from reporting.excel import write_excel
    path = write_excel(report_data)          # -> "<output_name>.xlsx"
"""
from __future__ import annotations

import logging
from pathlib import Path

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from reporting.report_data import ReportData, Table

_log = logging.getLogger(__name__)

HEADER_ROW = 4
MAX_COLUMN_WIDTH = 120
_BLUE = "CAEDFB"
_FILL = PatternFill(fill_type="solid", start_color=_BLUE, end_color=_BLUE)
_BOLD = Font(bold=True)
_TITLE = Font(bold=True, size=14)
_LINK = Font(color="0563C1", underline="single")

# Excel sheet names: max 31 chars, no []:*?/\
_INVALID_SHEET_CHARS = set("[]:*?/\\")

# report table -> (sheet name, masthead description)
SHEETS: dict[str, tuple[str, str]] = {
    "recommendations": ("Recommendations", "Every recommendation result after deduplication"),
    "impacted": ("ImpactedResources", "Resources with at least one broken recommendation"),
    "resourceType": ("ResourceTypes", "Resource counts per type and catalog coverage"),
    "inventory": ("Inventory", "Resources in scope"),
    "advisor": ("Advisor", "Azure Advisor recommendations"),
    "azurePolicy": ("AzurePolicy", "Non-compliant Azure Policy states"),
    "arcSQL": ("ArcSQL", "Arc-enabled SQL Server instances"),
    "defender": ("Defender", "Microsoft Defender for Cloud plans"),
    "defenderRecommendations": ("DefenderRecommendations", "Microsoft Defender for Cloud recommendations"),
    "costs": ("Costs", "Actual cost by service"),
    "carbon": ("Carbon", "Carbon emissions by resource type"),
    "outOfScope": ("OutOfScope", "Resources excluded by the filters"),
}


def sheet_title(name: str) -> str:
    cleaned = "".join("_" if c in _INVALID_SHEET_CHARS else c for c in name).strip()
    return (cleaned or "Sheet")[:31]


def _write_masthead(ws: Worksheet, title: str, generated: str, description: str) -> None:
    ws.cell(row=1, column=1, value=title).font = _TITLE
    ws.cell(row=2, column=1, value=f"Generated: {generated}")
    ws.cell(row=3, column=1, value=description)


def _column_widths(table: Table) -> list[int]:
    widths: list[int] = []
    for row in table:
        for idx, value in enumerate(row):
            width = len(str(value or "")) + 1
            if idx >= len(widths):
                widths.append(width)
            elif width > widths[idx]:
                widths[idx] = width
    return [min(w, MAX_COLUMN_WIDTH) for w in widths]


def write_table(ws: Worksheet, table: Table) -> None:
    """Write *table* (header first) at ``HEADER_ROW`` and style the sheet."""
    if not table:
        return
    header = table[0]
    learn_col = header.index("Learn") + 1 if "Learn" in header else None

    for col, value in enumerate(header, start=1):
        cell = ws.cell(row=HEADER_ROW, column=col, value=value)
        cell.font = _BOLD
        cell.fill = _FILL

    for offset, row in enumerate(table[1:], start=1):
        row_idx = HEADER_ROW + offset
        shaded = offset % 2 == 0
        for col, value in enumerate(row, start=1):
            cell = ws.cell(row=row_idx, column=col, value=value)
            if shaded:
                cell.fill = _FILL
            if col == learn_col and isinstance(value, str) and value.startswith("http"):
                cell.hyperlink = value
                cell.value = "Learn"
                cell.font = _LINK

    last_row = HEADER_ROW + len(table) - 1
    last_col = get_column_letter(len(header))
    ws.auto_filter.ref = f"A{HEADER_ROW}:{last_col}{last_row}"
    ws.freeze_panes = ws.cell(row=HEADER_ROW + 1, column=1)

    for idx, width in enumerate(_column_widths(table), start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width


def build_workbook(data: ReportData) -> Workbook:
    wb = Workbook()
    wb.remove(wb.active)
    generated = data.context.start_time.strftime("%Y-%m-%d %H:%M:%S UTC")

    for name, table in data.tables().items():
        sheet, description = SHEETS.get(name, (name, ""))
        ws = wb.create_sheet(sheet_title(sheet))
        _write_masthead(ws, "Azure Quick Review", generated, description)
        write_table(ws, table)

    used = set(wb.sheetnames)
    for output in data.plugin_outputs():
        if not output.table:
            continue
        title = sheet_title(output.sheet_name or output.plugin_name)
        if title in used:
            title = sheet_title(f"{title[:27]}_{len(used)}")
        used.add(title)
        ws = wb.create_sheet(title)
        _write_masthead(ws, output.plugin_name, generated, output.description)
        write_table(ws, output.table)
    return wb


def write_excel(data: ReportData, output_dir: str | Path = ".") -> Path:
    path = Path(output_dir) / f"{data.output_name}.xlsx"
    _log.info("Generating report: %s", path)
    build_workbook(data).save(path)
    return path
