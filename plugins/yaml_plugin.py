"""YAML plugins — extra graph rules shipped outside the embedded catalog.

File format::

    name: my-checks
    version: 1.0.0
    description: Team conventions
    author: Platform team
    license: MIT
    queries:
      - aprlGuid: my-001
        description: Storage accounts must be in West Europe
        recommendationResourceType: Microsoft.Storage/storageAccounts
        recommendationControl: Governance
        recommendationImpact: Low
        learnMoreLink:
          - name: Docs
            url: https://example.org
        queryFile: my-001.kql      # or an inline `query:`

Every rule takes the plugin name as its source and is registered into the
catalog overlay before the catalog is frozen.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from control_packs.loader import CatalogRecord
from engine.errors import CatalogError
from plugins.base import PLUGIN_TYPE_YAML, PluginMetadata
from schemas.domain import GraphRule

_log = logging.getLogger(__name__)


class PluginQuery(CatalogRecord):
    query_file: str = Field(default="", alias="queryFile")


class PluginFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    version: str = "1.0.0"
    description: str = ""
    author: str = ""
    license: str = ""
    queries: list[PluginQuery]

    @field_validator("version", mode="before")
    @classmethod
    def _version(cls, value):
        return str(value) if value else "1.0.0"


@dataclass
class YamlPlugin:
    metadata: PluginMetadata
    path: Path
    rules: list[GraphRule] = field(default_factory=list)


def load_yaml_plugin(path: str | Path) -> YamlPlugin:
    """Parse one plugin file; raises ``CatalogError`` when it is not a valid plugin."""
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
        doc = PluginFile.model_validate(raw)
    except (OSError, yaml.YAMLError) as e:
        raise CatalogError(f"{p}: {e}") from e
    except ValidationError as e:
        raise CatalogError(f"{p}: not a plugin ({e.error_count()} validation errors)") from e
    if not doc.name.strip():
        raise CatalogError(f"{p}: plugin name is required")
    if not doc.queries:
        raise CatalogError(f"{p}: plugin must have at least one query")

    rules: list[GraphRule] = []
    for q in doc.queries:
        text = q.graph_query
        if q.query_file:
            try:
                text = (p.parent / q.query_file).read_text(encoding="utf-8")
            except OSError as e:
                raise CatalogError(f"{p}: cannot read query file {q.query_file}: {e}") from e
        if not text.strip():
            raise CatalogError(f"{p}: query {q.recommendation_id} has neither 'query' nor 'queryFile'")
        try:
            rules.append(q.to_rule(text, doc.name))
        except ValueError as e:
            raise CatalogError(f"{p}: query {q.recommendation_id}: {e}") from e

    meta = PluginMetadata(
        name=doc.name, version=doc.version, description=doc.description,
        author=doc.author, license=doc.license, type=PLUGIN_TYPE_YAML,
    )
    return YamlPlugin(metadata=meta, path=p, rules=rules)


def discover_yaml_plugins(dirs: Iterable[str | Path]) -> dict[str, YamlPlugin]:
    """Every valid plugin under *dirs*, keyed by name; first one wins on duplicates."""
    found: dict[str, YamlPlugin] = {}
    for d in dirs:
        root = Path(d).expanduser()
        if not root.is_dir():
            continue
        for path in sorted(list(root.rglob("*.yaml")) + list(root.rglob("*.yml"))):
            try:
                plugin = load_yaml_plugin(path)
            except CatalogError as e:
                _log.debug("Skipping %s: %s", path, e)
                continue
            if plugin.metadata.name in found:
                _log.debug("Skipping duplicate plugin %s at %s", plugin.metadata.name, path)
                continue
            found[plugin.metadata.name] = plugin
            _log.debug("Discovered plugin %s (%d rules)", plugin.metadata.name, len(plugin.rules))
    return found
