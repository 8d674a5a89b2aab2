"""Catalog listings shared by the ``types`` / ``recommendations`` commands
and the HTTP surface.

``listing_catalog`` loads the embedded trees plus every built-in
scanner's code rules into one frozen catalog, the same set a full scan
would see before plugins are enabled.
"""
from __future__ import annotations

from control_packs.loader import Catalog, load_catalog
from evaluators.registry import select_scanners
from plugins.base import PluginMetadata
from reporting.report_data import Table
from schemas.domain import CodeRule
from schemas.taxonomy import CATEGORY_DISPLAY, IMPACT_DISPLAY, VALIDATED_BY_ARM, VALIDATED_BY_GRAPH

TYPES_HEADER = ["Abbreviation", "Resource Type"]
CATALOG_HEADER = [
    "Source", "Resource Type", "Recommendation Id", "Category", "Impact",
    "Recommendation", "Validated Using", "Learn",
]
PLUGINS_HEADER = ["Name", "Version", "Type", "Description", "Author", "License"]


def listing_catalog() -> Catalog:
    catalog = load_catalog()
    for scanner in select_scanners():
        catalog.add_all(scanner.recommendations().values())
    return catalog.freeze()


def types_table(catalog: Catalog) -> Table:
    """Every resource type with a recommendation; abbreviation when a scanner covers it."""
    abbreviations: dict[str, str] = {}
    for scanner in select_scanners():
        for rtype in scanner.resource_types():
            abbreviations.setdefault(rtype, scanner.abbreviation)
    rows: Table = [TYPES_HEADER]
    for rtype in catalog.resource_types():
        rows.append([abbreviations.get(rtype, ""), rtype])
    return rows


def recommendations_table(catalog: Catalog) -> Table:
    rows: Table = [CATALOG_HEADER]
    for rec in catalog.all_recommendations():
        rows.append([
            rec.source,
            rec.resource_type,
            rec.recommendation_id,
            CATEGORY_DISPLAY.get(rec.category, rec.category),
            IMPACT_DISPLAY.get(rec.impact, rec.impact),
            rec.recommendation,
            VALIDATED_BY_ARM if isinstance(rec, CodeRule) else VALIDATED_BY_GRAPH,
            rec.learn_more_url,
        ])
    return rows


def plugins_table(plugins: list[PluginMetadata]) -> Table:
    rows: Table = [PLUGINS_HEADER]
    for p in plugins:
        rows.append([p.name, p.version, p.type, p.description, p.author, p.license])
    return rows
