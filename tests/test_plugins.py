"""YAML plugins, the plugin registry and the zone-mapping plugin."""
from __future__ import annotations

import pytest

from control_packs.loader import Catalog
from engine.context import ScanContext
from engine.errors import CatalogError, ConfigurationError
from engine.stages import ScanServices, plugin_scan
from fakes import SUB_A, SUB_B, STORAGE, FakeArm, FakeGraph, resource_id
from plugins.registry import available_plugins, enable_plugins
from plugins.yaml_plugin import discover_yaml_plugins, load_yaml_plugin
from plugins.zone_mapping import HEADER, ZoneMappingPlugin

_PLUGIN = """
name: my-checks
version: 1.2
description: Team conventions
author: Platform team
queries:
  - aprlGuid: my-001
    description: Storage accounts must be in West Europe
    recommendationResourceType: Microsoft.Storage/storageAccounts
    recommendationControl: Governance
    recommendationImpact: Low
    learnMoreLink:
      - name: Docs
        url: https://example.org/storage
    queryFile: my-001.kql
  - aprlGuid: my-002
    description: Storage accounts need an owner tag
    recommendationResourceType: Microsoft.Storage/storageAccounts
    recommendationControl: Governance
    recommendationImpact: Medium
    query: resources | where isnull(tags.owner)
"""


@pytest.fixture
def plugin_dir(tmp_path):
    (tmp_path / "my-checks.yaml").write_text(_PLUGIN, encoding="utf-8")
    (tmp_path / "my-001.kql").write_text("resources | where location != 'westeurope'", encoding="utf-8")
    (tmp_path / "notes.yaml").write_text("just: a config file\n", encoding="utf-8")
    return tmp_path


class TestYamlPlugin:

    def test_load(self, plugin_dir):
        plugin = load_yaml_plugin(plugin_dir / "my-checks.yaml")
        assert plugin.metadata.name == "my-checks"
        assert plugin.metadata.version == "1.2"
        assert plugin.metadata.type == "yaml"
        first, second = plugin.rules
        assert first.query == "resources | where location != 'westeurope'"
        assert first.source == "my-checks"
        assert first.resource_type == STORAGE
        assert first.learn_more_url == "https://example.org/storage"
        assert second.query == "resources | where isnull(tags.owner)"
        assert second.impact == "medium"

    def test_missing_query_file(self, tmp_path):
        (tmp_path / "p.yaml").write_text(_PLUGIN, encoding="utf-8")
        with pytest.raises(CatalogError, match="cannot read query file"):
            load_yaml_plugin(tmp_path / "p.yaml")

    def test_not_a_plugin(self, plugin_dir):
        with pytest.raises(CatalogError):
            load_yaml_plugin(plugin_dir / "notes.yaml")

    def test_discovery_skips_invalid_files(self, plugin_dir):
        assert set(discover_yaml_plugins([plugin_dir, plugin_dir / "absent"])) == {"my-checks"}


class TestRegistry:

    def test_available_lists_internal_and_yaml(self, plugin_dir):
        names = {m.name: m.type for m in available_plugins([plugin_dir])}
        assert names == {"zone-mapping": "internal", "my-checks": "yaml"}

    def test_yaml_rules_join_the_overlay(self, plugin_dir):
        catalog = Catalog()
        internal = enable_plugins(["my-checks"], catalog, [plugin_dir])
        assert internal == []
        overlay = catalog.dispatchable_rules(include_base=False)
        assert {r.recommendation_id for r in overlay} == {"my-001", "my-002"}

    def test_internal_plugin_returned(self, plugin_dir):
        (plugin,) = enable_plugins(["zone-mapping"], Catalog(), [plugin_dir])
        assert plugin.metadata().name == "zone-mapping"

    def test_unknown_plugin_rejected(self, plugin_dir):
        with pytest.raises(ConfigurationError, match="Unknown plugin 'nope'"):
            enable_plugins(["nope"], Catalog(), [plugin_dir])

    def test_no_names_no_work(self):
        assert enable_plugins([], Catalog(), []) == []


def _locations(*zones: tuple[str, str]) -> list[dict]:
    return [{
        "name": "westeurope",
        "displayName": "West Europe",
        "availabilityZoneMappings": [{"logicalZone": lz, "physicalZone": pz} for lz, pz in zones],
    }]


class TestZoneMapping:

    def test_rows_per_subscription(self):
        arm = FakeArm(get_all={
            f"/subscriptions/{SUB_A}/locations": _locations(("2", "westeurope-az1"), ("1", "westeurope-az3")),
            f"/subscriptions/{SUB_B}/locations": _locations(("1", "westeurope-az2")),
        })
        plugin = ZoneMappingPlugin()
        plugin.init(arm)
        output = plugin.scan(ScanContext(subscriptions={SUB_A: "Alpha", SUB_B: "Beta"}))
        assert output.table[0] == HEADER
        assert output.table[1:] == [
            [SUB_A, "Alpha", "westeurope", "West Europe", "1", "westeurope-az3"],
            [SUB_A, "Alpha", "westeurope", "West Europe", "2", "westeurope-az1"],
            [SUB_B, "Beta", "westeurope", "West Europe", "1", "westeurope-az2"],
        ]

    def test_requires_init(self):
        with pytest.raises(RuntimeError):
            ZoneMappingPlugin().scan(ScanContext())


def test_plugin_stage_runs_overlay_and_internal_plugins(plugin_dir):
    catalog = Catalog()
    internal = enable_plugins(["my-checks", "zone-mapping"], catalog, [plugin_dir])
    catalog.freeze()
    st1 = resource_id(SUB_A, "rg1", "Microsoft.Storage/storageAccounts", "st1")
    graph = FakeGraph({"resources | where isnull(tags.owner)": [{"id": st1, "name": "st1"}]})
    arm = FakeArm(get_all={f"/subscriptions/{SUB_A}/locations": _locations(("1", "westeurope-az1"))})
    services = ScanServices(arm=arm, graph=graph, catalog=catalog, plugins=internal)
    context = ScanContext(subscriptions={SUB_A: "Alpha"})

    assert plugin_scan(services, context) == 2
    (result,) = context.results
    assert result.recommendation_id == "my-002"
    assert result.source == "my-checks"
    (output,) = context.plugin_outputs
    assert output.plugin_name == "zone-mapping"
