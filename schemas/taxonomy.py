# schemas/taxonomy.py — Single authoritative taxonomy for recommendations.
"""Centralised taxonomy for recommendation metadata.

Every recommendation (catalog, plugin or code rule) carries a category,
an impact and a recommendation type drawn from the enums below.  Loaders
normalise the many spellings found in catalog files through
``normalize_category`` / ``normalize_impact``; anything that cannot be
mapped is rejected at load time.

Canonical sources defined here:
  - ``Category``            — 7 recommendation categories
  - ``Impact``              — low | medium | high
  - ``RecommendationType``  — best-practice | sla | other
  - ``MetadataState``       — active | disabled
  - ``DEVELOPMENT_SENTINELS`` — query markers for rules that cannot run
  - ``SOURCE_*``            — provenance labels and their priority classes
"""
from __future__ import annotations

import re
from typing import Literal, get_args


# ══════════════════════════════════════════════════════════════════
# Canonical enums, enforced at load time
# ══════════════════════════════════════════════════════════════════

Category = Literal[
    "high-availability",
    "security",
    "governance",
    "monitoring-and-alerting",
    "scalability",
    "cost",
    "performance",
]

ALL_CATEGORIES: tuple[str, ...] = get_args(Category)

Impact = Literal["low", "medium", "high"]

ALL_IMPACTS: tuple[str, ...] = get_args(Impact)

# Dedup ordering: higher wins.
IMPACT_RANK: dict[str, int] = {"low": 0, "medium": 1, "high": 2}

RecommendationType = Literal["best-practice", "sla", "other"]

ALL_RECOMMENDATION_TYPES: tuple[str, ...] = get_args(RecommendationType)

MetadataState = Literal["active", "disabled"]

ALL_METADATA_STATES: tuple[str, ...] = get_args(MetadataState)

# ── Display names (renderers) ─────────────────────────────────────
CATEGORY_DISPLAY: dict[str, str] = {
    "high-availability": "High Availability",
    "security": "Security",
    "governance": "Governance",
    "monitoring-and-alerting": "Monitoring and Alerting",
    "scalability": "Scalability",
    "cost": "Cost",
    "performance": "Performance",
}

IMPACT_DISPLAY: dict[str, str] = {"low": "Low", "medium": "Medium", "high": "High"}

# ── Catalog spellings → canonical category ────────────────────────
# Curated catalog files use PascalCase controls, some of which have no
# direct counterpart in the seven categories.
_CATEGORY_ALIASES: dict[str, str] = {
    "highavailability": "high-availability",
    "availability": "high-availability",
    "disasterrecovery": "high-availability",
    "businesscontinuity": "high-availability",
    "resiliency": "high-availability",
    "security": "security",
    "governance": "governance",
    "otherbestpractices": "governance",
    "serviceupgradeandretirement": "governance",
    "personalized": "governance",
    "monitoringandalerting": "monitoring-and-alerting",
    "monitoring": "monitoring-and-alerting",
    "scalability": "scalability",
    "cost": "cost",
    "costoptimization": "cost",
    "performance": "performance",
    "operationalexcellence": "governance",
}


def normalize_category(raw: str) -> str:
    """Map any catalog spelling onto a canonical ``Category``.

    Raises ``ValueError`` when the value cannot be mapped.
    """
    key = re.sub(r"[^a-z]", "", (raw or "").lower())
    if not key:
        raise ValueError("Empty recommendation category")
    category = _CATEGORY_ALIASES.get(key)
    if category is None:
        raise ValueError(f"Unknown recommendation category '{raw}'")
    return category


def normalize_impact(raw: str) -> str:
    impact = (raw or "").strip().lower()
    if impact not in ALL_IMPACTS:
        raise ValueError(f"Unknown recommendation impact '{raw}'")
    return impact


def normalize_metadata_state(raw: str | None) -> str:
    state = (raw or "active").strip().lower()
    return state if state in ALL_METADATA_STATES else "active"


# ══════════════════════════════════════════════════════════════════
# Dispatch sentinels
# ══════════════════════════════════════════════════════════════════

# Literal markers kept in query text of rules that cannot be run through
# Resource Graph.  Catalog-compatible; do not reword.
DEVELOPMENT_SENTINELS: tuple[str, ...] = (
    "cannot-be-validated-with-arg",
    "under-development",
    "under development",
)


def has_development_sentinel(query: str | None) -> bool:
    text = (query or "").lower()
    return any(s in text for s in DEVELOPMENT_SENTINELS)


# ══════════════════════════════════════════════════════════════════
# Provenance
# ══════════════════════════════════════════════════════════════════

SOURCE_APRL = "APRL"        # curated catalog
SOURCE_AOR = "AOR"          # orphan / cleanup catalog
SOURCE_AZQR = "AZQR"        # code rules
SOURCE_ADVISOR = "Advisor"
SOURCE_POLICY = "Policy"

CATALOG_SOURCES: frozenset[str] = frozenset({SOURCE_APRL, SOURCE_AOR, SOURCE_AZQR})
PROVIDER_SOURCES: frozenset[str] = frozenset({SOURCE_ADVISOR, SOURCE_POLICY})


def source_priority(source: str) -> int:
    """Lower is stronger: catalog (0) > plugin (1) > provider-native (2)."""
    if source in CATALOG_SOURCES:
        return 0
    if source in PROVIDER_SOURCES:
        return 2
    return 1


# ── "Validated Using" report column ───────────────────────────────
VALIDATED_BY_GRAPH = "Azure Resource Graph"
VALIDATED_BY_ARM = "Azure Resource Manager"
VALIDATED_BY_ADVISOR = "Azure Advisor"
VALIDATED_BY_POLICY = "Azure Policy"
