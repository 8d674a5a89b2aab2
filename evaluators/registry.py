"""Scanner registry — code-rule scanners keyed by short type abbreviation.

Scanner modules call ``register_scanner`` at import time; ``load_builtin_scanners``
imports them all once.
"""
from __future__ import annotations

import importlib
import logging
from typing import Iterable

from engine.errors import ConfigurationError
from evaluators.base import Scanner

_log = logging.getLogger(__name__)

SCANNERS: dict[str, Scanner] = {}

_BUILTIN_MODULES = (
    "evaluators.storage",
    "evaluators.keyvault",
    "evaluators.compute",
    "evaluators.network",
    "evaluators.cosmos",
    "evaluators.redis",
    "evaluators.aks",
    "evaluators.web",
)

_loaded = False


def register_scanner(scanner: Scanner) -> None:
    key = scanner.abbreviation.lower()
    if key in SCANNERS:
        raise ValueError(f"Scanner '{key}' registered twice")
    SCANNERS[key] = scanner


def load_builtin_scanners() -> dict[str, Scanner]:
    global _loaded
    if not _loaded:
        for module in _BUILTIN_MODULES:
            importlib.import_module(module)
        _loaded = True
        _log.debug("Registered %d scanners", len(SCANNERS))
    return SCANNERS


def select_scanners(keys: Iterable[str] | None = None) -> list[Scanner]:
    """Scanners for *keys* (all when empty).  Unknown keys are a config error."""
    registry = load_builtin_scanners()
    wanted = [k.strip().lower() for k in keys or () if k and k.strip()]
    if not wanted:
        return [registry[k] for k in sorted(registry)]
    unknown = [k for k in wanted if k not in registry]
    if unknown:
        raise ConfigurationError(
            f"Unknown scanner abbreviation(s): {', '.join(unknown)}. "
            f"Known: {', '.join(sorted(registry))}"
        )
    return [registry[k] for k in dict.fromkeys(wanted)]


def resource_types_for(keys: Iterable[str] | None = None) -> list[str]:
    types: set[str] = set()
    for scanner in select_scanners(keys):
        types.update(scanner.resource_types())
    return sorted(types)


def scanner_for_type(resource_type: str) -> Scanner | None:
    rtype = (resource_type or "").lower()
    for key in sorted(load_builtin_scanners()):
        scanner = SCANNERS[key]
        if rtype in scanner.resource_types():
            return scanner
    return None
