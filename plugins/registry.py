"""Plugin registry — internal plugins by name plus discovered YAML plugins."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable

from control_packs.loader import Catalog
from engine.errors import ConfigurationError
from plugins.base import InternalPlugin, PluginMetadata
from plugins.yaml_plugin import YamlPlugin, discover_yaml_plugins
from plugins.zone_mapping import ZoneMappingPlugin

_log = logging.getLogger(__name__)

INTERNAL_PLUGINS: dict[str, Callable[[], InternalPlugin]] = {}


def register_internal_plugin(name: str, factory: Callable[[], InternalPlugin]) -> None:
    if name in INTERNAL_PLUGINS:
        raise ValueError(f"Plugin '{name}' registered twice")
    INTERNAL_PLUGINS[name] = factory


register_internal_plugin("zone-mapping", ZoneMappingPlugin)


def available_plugins(plugin_dirs: Iterable[str | Path] = ()) -> list[PluginMetadata]:
    metas = [factory().metadata() for _, factory in sorted(INTERNAL_PLUGINS.items())]
    metas.extend(p.metadata for _, p in sorted(discover_yaml_plugins(plugin_dirs).items()))
    return metas


def enable_plugins(
    names: Iterable[str],
    catalog: Catalog,
    plugin_dirs: Iterable[str | Path] = (),
) -> list[InternalPlugin]:
    """Register the YAML rules of the named plugins into *catalog*.

    Returns the internal plugins to run in the plugin stage.  An unknown
    plugin name is a configuration error.
    """
    wanted = [n.strip() for n in names if n and n.strip()]
    if not wanted:
        return []
    yaml_plugins: dict[str, YamlPlugin] = discover_yaml_plugins(plugin_dirs)
    internal: list[InternalPlugin] = []
    for name in dict.fromkeys(wanted):
        if name in INTERNAL_PLUGINS:
            internal.append(INTERNAL_PLUGINS[name]())
        elif name in yaml_plugins:
            for rule in yaml_plugins[name].rules:
                catalog.register_external(rule.resource_type, rule)
            _log.info("Plugin %s: %d rules registered", name, len(yaml_plugins[name].rules))
        else:
            known = sorted(set(INTERNAL_PLUGINS) | set(yaml_plugins))
            raise ConfigurationError(
                f"Unknown plugin '{name}'. Available: {', '.join(known) or 'none'}"
            )
    return internal
