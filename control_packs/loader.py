"""Recommendation catalog — loads, indexes and serves recommendations.

Usage:
    from control_packs.loader import load_catalog
    catalog = load_catalog()
    catalog.recommendations_for_type("microsoft.storage/storageaccounts")
    catalog.dispatchable_rules(["microsoft.storage/storageaccounts"], filters)

Sources:
  - ``aprl/``     curated catalog, source ``APRL``
  - ``orphans/``  orphan / cleanup catalog, source ``AOR``
  - plugin rules registered with ``register_external`` (source = plugin name)
  - code rules from the scanner registry (source ``AZQR``)

Loading a tree walks it twice: every ``.kql`` file is indexed by its bare
filename, then every ``.yaml`` file is parsed as a list of recommendation
records.  A record whose id matches a ``.kql`` basename gets that text as
its graph query.  An unparseable file or record is logged and skipped;
the rest of the catalog still loads.

The catalog is built once at startup and then frozen; after ``freeze()``
it is read-only and safe to share between threads.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from engine.errors import CatalogError
from engine.filters import Filters
from schemas.domain import CodeRule, GraphRule, Recommendation
from schemas.taxonomy import (
    SOURCE_AOR,
    SOURCE_APRL,
    normalize_category,
    normalize_impact,
    normalize_metadata_state,
)

_log = logging.getLogger(__name__)

PACKS_DIR = Path(__file__).parent

# (sub-directory, source label)
CATALOG_TREES: tuple[tuple[str, str], ...] = (
    ("aprl", SOURCE_APRL),
    ("orphans", SOURCE_AOR),
)


# ── File schema ───────────────────────────────────────────────────
class LearnMoreLink(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: str = ""
    url: str = ""


class CatalogRecord(BaseModel):
    """One YAML record.  Curated-catalog key names are accepted as aliases."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    recommendation_id: str = Field(validation_alias=AliasChoices("recommendationId", "aprlGuid"))
    resource_type: str = Field(
        validation_alias=AliasChoices("resourceType", "recommendationResourceType"))
    category: str = Field(validation_alias=AliasChoices("category", "recommendationControl"))
    impact: str = Field(validation_alias=AliasChoices("impact", "recommendationImpact"))
    recommendation: str = Field(validation_alias=AliasChoices("recommendation", "description"))
    long_description: str = Field(default="", validation_alias=AliasChoices("longDescription"))
    potential_benefits: str = Field(default="", validation_alias=AliasChoices("potentialBenefits"))
    learn_more_link: list[LearnMoreLink] = Field(
        default_factory=list, validation_alias=AliasChoices("learnMoreLink"))
    automation_available: bool = Field(
        default=False, validation_alias=AliasChoices("automationAvailable"))
    metadata_state: str = Field(
        default="active",
        validation_alias=AliasChoices("metadataState", "recommendationMetadataState"))
    tags: list[str] = Field(default_factory=list)
    graph_query: str = Field(default="", validation_alias=AliasChoices("graphQuery", "query"))

    @field_validator("automation_available", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "yes", "arg", "1")
        return bool(value)

    @field_validator("tags", "learn_more_link", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("metadata_state", mode="before")
    @classmethod
    def _state(cls, value: Any) -> str:
        return normalize_metadata_state(value if isinstance(value, str) else None)

    def to_rule(self, query: str, source: str) -> GraphRule:
        return GraphRule(
            recommendation_id=self.recommendation_id,
            resource_type=self.resource_type,
            category=normalize_category(self.category),
            impact=normalize_impact(self.impact),
            recommendation=self.recommendation.strip(),
            query=query,
            source=source,
            learn_more_url=self.learn_more_link[0].url if self.learn_more_link else "",
            metadata_state=self.metadata_state,
            long_description=self.long_description.strip(),
            potential_benefits=self.potential_benefits.strip(),
            automation_available=self.automation_available,
            tags=tuple(self.tags),
        )


# ── Tree loading ──────────────────────────────────────────────────
def index_queries(root: Path) -> dict[str, str]:
    """Map bare ``.kql`` filename (no extension) to its text."""
    queries: dict[str, str] = {}
    for path in sorted(root.rglob("*.kql")):
        try:
            queries[path.stem] = path.read_text(encoding="utf-8")
        except OSError as e:
            _log.warning("Cannot read query file %s: %s", path, e)
    return queries


def parse_records(path: Path) -> list[CatalogRecord]:
    """Parse one YAML file into records; raises ``CatalogError`` if unreadable."""
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise CatalogError(f"{path}: {e}") from e
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise CatalogError(f"{path}: expected a list of recommendations")
    records: list[CatalogRecord] = []
    for i, item in enumerate(raw):
        try:
            records.append(CatalogRecord.model_validate(item))
        except ValidationError as e:
            _log.warning("%s: record %d skipped: %s", path, i, e.errors()[0].get("msg", e))
    return records


def load_tree(root: Path, source: str) -> list[GraphRule]:
    """Load every recommendation under *root*, tagging it with *source*."""
    if not root.is_dir():
        _log.warning("Catalog tree %s not found", root)
        return []
    queries = index_queries(root)
    rules: list[GraphRule] = []
    for path in sorted(root.rglob("*.yaml")):
        try:
            records = parse_records(path)
        except CatalogError as e:
            _log.warning("Catalog file skipped: %s", e)
            continue
        for rec in records:
            query = queries.get(rec.recommendation_id, "") or rec.graph_query
            try:
                rule = rec.to_rule(query, source)
            except ValueError as e:
                _log.warning("%s: recommendation %s skipped: %s", path, rec.recommendation_id, e)
                continue
            if not query.strip():
                _log.warning("Recommendation %s has no query text; listed only", rule.recommendation_id)
            rules.append(rule)
    return rules


# ── Catalog ───────────────────────────────────────────────────────
class Catalog:
    """Recommendations indexed by lower-cased resource type."""

    def __init__(self) -> None:
        self._base: dict[str, dict[str, Recommendation]] = {}
        self._overlay: dict[tuple[str, str], GraphRule] = {}
        self._frozen = False

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("catalog is frozen")

    # ── Building ──────────────────────────────────────────────────
    def add(self, rec: Recommendation) -> None:
        self._check_mutable()
        by_id = self._base.setdefault(rec.resource_type, {})
        if rec.recommendation_id in by_id:
            _log.warning("Duplicate recommendation %s for %s; keeping first",
                         rec.recommendation_id, rec.resource_type)
            return
        by_id[rec.recommendation_id] = rec

    def add_all(self, recs: Iterable[Recommendation]) -> None:
        for rec in recs:
            self.add(rec)

    def register_external(self, resource_type: str, rec: GraphRule) -> None:
        """Add a plugin-provided recommendation, keyed by (type, id)."""
        self._check_mutable()
        self._overlay[(resource_type.lower(), rec.recommendation_id)] = rec

    def freeze(self) -> "Catalog":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ── Queries ───────────────────────────────────────────────────
    def recommendations_for_type(self, resource_type: str) -> dict[str, Recommendation]:
        """``{recommendation_id: Recommendation}``; catalog entries shadow plugin ones."""
        rtype = (resource_type or "").lower()
        out: dict[str, Recommendation] = {
            rid: rec for (t, rid), rec in self._overlay.items() if t == rtype
        }
        out.update(self._base.get(rtype, {}))
        return out

    def all_recommendations(self) -> list[Recommendation]:
        recs: list[Recommendation] = []
        for rtype in sorted(self._base):
            recs.extend(self._base[rtype][rid] for rid in sorted(self._base[rtype]))
        recs.extend(self._overlay[k] for k in sorted(self._overlay))
        return recs

    def resource_types(self) -> list[str]:
        return sorted(set(self._base) | {t for t, _ in self._overlay})

    def covers(self, resource_type: str) -> bool:
        rtype = (resource_type or "").lower()
        return bool(self._base.get(rtype)) or any(t == rtype for t, _ in self._overlay)

    def code_rules_for_type(self, resource_type: str) -> dict[str, CodeRule]:
        return {
            rid: rec for rid, rec in self._base.get((resource_type or "").lower(), {}).items()
            if isinstance(rec, CodeRule)
        }

    def dispatchable_rules(
        self,
        resource_types: Iterable[str] | None = None,
        filters: Filters | None = None,
        *,
        include_base: bool = True,
        include_external: bool = True,
    ) -> list[GraphRule]:
        """Graph rules ready for the worker pool.

        Skips rules without query text, rules carrying a development
        sentinel, disabled rules, excluded recommendations and excluded
        resource types.  ``resource_types=None`` means every type.
        """
        wanted = None if resource_types is None else {t.lower() for t in resource_types}
        candidates: list[GraphRule] = []
        if include_base:
            for rtype in sorted(self._base):
                for rid in sorted(self._base[rtype]):
                    rec = self._base[rtype][rid]
                    if isinstance(rec, GraphRule):
                        candidates.append(rec)
        if include_external:
            candidates.extend(self._overlay[k] for k in sorted(self._overlay))

        rules: list[GraphRule] = []
        for rule in candidates:
            if wanted is not None and rule.resource_type not in wanted:
                continue
            if filters is not None and (
                filters.resource_type_excluded(rule.resource_type)
                or filters.recommendation_excluded(rule.recommendation_id)
            ):
                continue
            if not rule.dispatchable:
                _log.debug("Recommendation %s not dispatched", rule.recommendation_id)
                continue
            rules.append(rule)
        return rules


def load_catalog(root: Path = PACKS_DIR,
                 trees: tuple[tuple[str, str], ...] = CATALOG_TREES) -> Catalog:
    """Load the embedded trees into a new, still-mutable ``Catalog``."""
    catalog = Catalog()
    for subdir, source in trees:
        rules = load_tree(root / subdir, source)
        catalog.add_all(rules)
        _log.info("Loaded %d %s recommendations", len(rules), source)
    return catalog
