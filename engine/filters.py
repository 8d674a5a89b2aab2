"""Filter policy — include/exclude membership for every scan dimension.

Usage:
    from engine.filters import Filters, load_filters
    filters = load_filters("filters.yaml")
    filters.subscription_excluded("0000-...")     # bool
    filters.resource_excluded(resource_id)          # bool

Filter file format::

    azqr:
      include:
        subscriptions: [<id>, ...]
        resourceGroups: [/subscriptions/<id>/resourceGroups/<name>, ...]
        resourceTypes: [microsoft.storage/storageaccounts, ...]
      exclude:
        subscriptions: [...]
        resourceGroups: [...]
        services: [<resource id>, ...]
        recommendations: [<recommendation id>, ...]

Missing sections default to empty.  Unknown keys are rejected and any
load failure is a ``ConfigurationError``; the scan never starts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from engine.errors import ConfigurationError
from schemas.resource_id import (
    is_resource_group_id,
    resource_group_id_from_id,
    resource_type_from_id,
    subscription_from_id,
)

_log = logging.getLogger(__name__)


# ── File schema ───────────────────────────────────────────────────
class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class IncludeSection(_Section):
    subscriptions: list[str] = Field(default_factory=list)
    resource_groups: list[str] = Field(default_factory=list, alias="resourceGroups")
    resource_types: list[str] = Field(default_factory=list, alias="resourceTypes")


class ExcludeSection(_Section):
    subscriptions: list[str] = Field(default_factory=list)
    resource_groups: list[str] = Field(default_factory=list, alias="resourceGroups")
    services: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class AzqrSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    include: IncludeSection = Field(default_factory=IncludeSection)
    exclude: ExcludeSection = Field(default_factory=ExcludeSection)

    @field_validator("include", "exclude", mode="before")
    @classmethod
    def _none_is_default(cls, value: Any) -> Any:
        return {} if value is None else value


class FilterFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    azqr: AzqrSection = Field(default_factory=AzqrSection)

    @field_validator("azqr", mode="before")
    @classmethod
    def _none_is_default(cls, value: Any) -> Any:
        return {} if value is None else value


def _lower_set(values: Iterable[str] | None) -> set[str]:
    return {v.strip().lower() for v in values or () if v and v.strip()}


# ── Policy ────────────────────────────────────────────────────────
@dataclass
class Filters:
    """Case-insensitive include/exclude sets.  All members stored lower-case."""
    include_subscriptions: set[str] = field(default_factory=set)
    include_resource_groups: set[str] = field(default_factory=set)
    include_resource_types: set[str] = field(default_factory=set)
    exclude_subscriptions: set[str] = field(default_factory=set)
    exclude_resource_groups: set[str] = field(default_factory=set)
    exclude_services: set[str] = field(default_factory=set)
    exclude_recommendations: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        for name in (
            "include_subscriptions", "include_resource_groups", "include_resource_types",
            "exclude_subscriptions", "exclude_resource_groups", "exclude_services",
            "exclude_recommendations",
        ):
            setattr(self, name, _lower_set(getattr(self, name)))
        for rg in self.include_resource_groups | self.exclude_resource_groups:
            if not is_resource_group_id(rg):
                raise ConfigurationError(
                    f"Invalid resource group id '{rg}': expected "
                    "/subscriptions/<id>/resourceGroups/<name>"
                )

    # ── Predicates ────────────────────────────────────────────────
    def subscription_excluded(self, subscription_id: str) -> bool:
        sub = (subscription_id or "").lower()
        if sub in self.exclude_subscriptions:
            return True
        if self.include_subscriptions:
            return sub not in self.include_subscriptions
        return False

    def resource_group_excluded(self, resource_group_id: str) -> bool:
        rg = (resource_group_id or "").lower()
        if rg in self.include_resource_groups:
            return False
        if self.include_resource_groups:
            return True
        return rg in self.exclude_resource_groups

    def resource_type_excluded(self, resource_type: str) -> bool:
        if not self.include_resource_types:
            return False
        return (resource_type or "").lower() not in self.include_resource_types

    def recommendation_excluded(self, recommendation_id: str) -> bool:
        return (recommendation_id or "").lower() in self.exclude_recommendations

    def service_excluded(self, resource_id: str) -> bool:
        return (resource_id or "").lower() in self.exclude_services

    def resource_excluded(self, resource_id: str, resource_type: str | None = None) -> bool:
        rid = (resource_id or "").lower()
        rtype = resource_type if resource_type is not None else resource_type_from_id(rid)
        if self.resource_type_excluded(rtype):
            return True
        sub = subscription_from_id(rid)
        if sub and self.subscription_excluded(sub):
            return True
        rg_id = resource_group_id_from_id(rid)
        if rg_id and self.resource_group_excluded(rg_id):
            return True
        return rid in self.exclude_services

    # ── Scope narrowing (CLI / API flags) ─────────────────────────
    def add_include_subscriptions(self, subscriptions: Iterable[str]) -> None:
        self.include_subscriptions |= _lower_set(subscriptions)

    def add_include_resource_groups(self, resource_group_ids: Iterable[str]) -> None:
        groups = _lower_set(resource_group_ids)
        for rg in groups:
            if not is_resource_group_id(rg):
                raise ConfigurationError(
                    f"Invalid resource group id '{rg}': expected "
                    "/subscriptions/<id>/resourceGroups/<name>"
                )
        self.include_resource_groups |= groups
        # A resource group scope implies its subscription.
        if self.include_subscriptions:
            self.include_subscriptions |= {subscription_from_id(rg) for rg in groups}

    def add_include_resource_types(self, resource_types: Iterable[str]) -> None:
        self.include_resource_types |= _lower_set(resource_types)

    def active_subscriptions(self, universe: dict[str, str]) -> dict[str, str]:
        """Return the subset of ``universe`` (id -> name) not excluded."""
        return {
            sub: name for sub, name in universe.items()
            if not self.subscription_excluded(sub)
        }


def load_filters(path: str | Path | None) -> Filters:
    """Load a filter file.  ``None`` returns an empty (allow-all) policy."""
    if not path:
        return Filters()
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read filter file {p}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed filter file {p}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Malformed filter file {p}: top level must be a mapping")

    try:
        doc = FilterFile.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid filter file {p}: {e}") from e

    inc, exc = doc.azqr.include, doc.azqr.exclude
    filters = Filters(
        include_subscriptions=set(inc.subscriptions),
        include_resource_groups=set(inc.resource_groups),
        include_resource_types=set(inc.resource_types),
        exclude_subscriptions=set(exc.subscriptions),
        exclude_resource_groups=set(exc.resource_groups),
        exclude_services=set(exc.services),
        exclude_recommendations=set(exc.recommendations),
    )
    _log.info(
        "Loaded filters from %s: %d include subscriptions, %d excluded services, "
        "%d excluded recommendations",
        p, len(filters.include_subscriptions), len(filters.exclude_services),
        len(filters.exclude_recommendations),
    )
    return filters
