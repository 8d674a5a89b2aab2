"""Document renderer — a Markdown report built from a jinja2 template.

The document carries one table: the deduplicated recommendation rows
(``ReportData.recommendations_table``), preceded by a short impact
summary.  ``render_markdown_table`` is shared with the catalog listing
commands of the CLI.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from reporting.report_data import ReportData, Table
from schemas.taxonomy import ALL_IMPACTS, IMPACT_DISPLAY

_log = logging.getLogger(__name__)

_TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "templates")

# Columns kept in the document; the full set lives in the spreadsheet.
DOCUMENT_COLUMNS = [
    "Impact", "Category", "Resource Type", "Recommendation", "Recommendation Id",
    "Subscription Name", "Resource Group", "Name", "SLA", "Source",
]


def _cell(value) -> str:
    return str(value or "").replace("|", "\\|").replace("\r", " ").replace("\n", " ")


def md_row(row) -> str:
    return "| " + " | ".join(_cell(v) for v in row) + " |"


def md_rule(header) -> str:
    return "|" + "|".join("---" for _ in header) + "|"


def _environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(_TEMPLATE_DIR),
        autoescape=select_autoescape(["html", "xml"]),
        keep_trailing_newline=True,
    )
    env.filters["md_row"] = md_row
    env.filters["md_rule"] = md_rule
    return env


def _project(table: Table, columns: list[str]) -> Table:
    header = table[0]
    idx = [header.index(c) for c in columns if c in header]
    return [[row[i] for i in idx] for row in table]


def render_markdown_table(table: Table) -> str:
    """Render a header-first table as a Markdown table."""
    if not table:
        return ""
    template = _environment().get_template("catalog.md")
    return template.render(header=table[0], rows=table[1:])


def render_document(data: ReportData) -> str:
    table = _project(data.tables()["recommendations"], DOCUMENT_COLUMNS)
    summary = []
    for impact in reversed(ALL_IMPACTS):
        matching = [r for r in data.results if r.impact == impact]
        summary.append((IMPACT_DISPLAY[impact], {
            "broken": sum(1 for r in matching if r.broken),
            "total": len(matching),
        }))
    template = _environment().get_template("report.md")
    return template.render(
        generated=data.context.start_time.strftime("%Y-%m-%d %H:%M:%S UTC"),
        subscription_count=len(data.context.subscriptions),
        summary=summary,
        header=table[0],
        rows=table[1:],
    )


def write_document(data: ReportData, output_dir: str | Path = ".") -> Path:
    path = Path(output_dir) / f"{data.output_name}.md"
    _log.info("Generating report: %s", path)
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_document(data))
    return path
