"""Recommendation catalog: tree loading, indexing and dispatch skipping."""
from __future__ import annotations

from pathlib import Path

import pytest

from control_packs.loader import Catalog, load_catalog, load_tree
from engine.context import ScanContext
from engine.filters import Filters
from engine.worker_pool import WorkerPool
from fakes import SUB_A, STORAGE, FakeGraph, make_code_rule, make_graph_rule


def _write_tree(root: Path, records: str, queries: dict[str, str]) -> Path:
    folder = root / "Storage" / "storageAccounts"
    (folder / "kql").mkdir(parents=True)
    (folder / "recommendations.yaml").write_text(records, encoding="utf-8")
    for name, text in queries.items():
        (folder / "kql" / f"{name}.kql").write_text(text, encoding="utf-8")
    return root


_RECORDS = """
- recommendationId: st-a
  resourceType: Microsoft.Storage/storageAccounts
  category: HighAvailability
  impact: High
  recommendation: Use zone-redundant storage
  longDescription: ZRS replicates across zones.
  potentialBenefits: Zone resilience
  learnMoreLink:
    - name: Docs
      url: https://learn.microsoft.com/azure/storage/common/storage-redundancy
  automationAvailable: true
- aprlGuid: st-b
  recommendationResourceType: Microsoft.Storage/storageAccounts
  recommendationControl: MonitoringAndAlerting
  recommendationImpact: Medium
  description: Enable soft delete
  automationAvailable: false
- recommendationId: st-c
  resourceType: Microsoft.Storage/storageAccounts
  category: NotACategory
  impact: Low
  recommendation: Broken category
"""


class TestLoadTree:

    def test_binds_queries_by_filename(self, tmp_path):
        root = _write_tree(tmp_path, _RECORDS, {"st-a": "resources | where zrs == false"})
        rules = {r.recommendation_id: r for r in load_tree(root, "APRL")}
        assert rules["st-a"].query == "resources | where zrs == false"
        assert rules["st-a"].category == "high-availability"
        assert rules["st-a"].learn_more_url.startswith("https://learn.microsoft.com")
        assert rules["st-a"].resource_type == STORAGE
        assert rules["st-a"].source == "APRL"

    def test_curated_aliases_accepted(self, tmp_path):
        root = _write_tree(tmp_path, _RECORDS, {})
        rules = {r.recommendation_id: r for r in load_tree(root, "APRL")}
        assert rules["st-b"].category == "monitoring-and-alerting"
        assert rules["st-b"].impact == "medium"
        assert rules["st-b"].query == ""
        assert not rules["st-b"].dispatchable

    def test_invalid_record_dropped(self, tmp_path):
        root = _write_tree(tmp_path, _RECORDS, {})
        assert "st-c" not in {r.recommendation_id for r in load_tree(root, "APRL")}

    def test_unparseable_file_skipped(self, tmp_path):
        root = _write_tree(tmp_path, _RECORDS, {})
        bad = tmp_path / "Broken" / "things"
        bad.mkdir(parents=True)
        (bad / "recommendations.yaml").write_text("- [unclosed", encoding="utf-8")
        assert len(load_tree(root, "APRL")) == 2

    def test_missing_tree_is_empty(self, tmp_path):
        assert load_tree(tmp_path / "absent", "APRL") == []


class TestEmbeddedCatalog:

    def test_loads_both_trees(self):
        catalog = load_catalog()
        sources = {r.source for r in catalog.all_recommendations()}
        assert {"APRL", "AOR"} <= sources
        assert catalog.covers(STORAGE)

    def test_every_dispatchable_rule_has_a_query(self):
        for rule in load_catalog().dispatchable_rules():
            assert rule.query.strip()


class TestCatalog:

    def test_frozen_catalog_rejects_writes(self):
        catalog = Catalog().freeze()
        with pytest.raises(RuntimeError):
            catalog.add(make_graph_rule("x-001"))

    def test_duplicate_keeps_first(self):
        catalog = Catalog()
        catalog.add(make_graph_rule("x-001", recommendation="first"))
        catalog.add(make_graph_rule("x-001", recommendation="second"))
        assert catalog.recommendations_for_type(STORAGE)["x-001"].recommendation == "first"

    def test_catalog_entry_shadows_plugin_entry(self):
        catalog = Catalog()
        catalog.add(make_graph_rule("x-001"))
        catalog.register_external(STORAGE, make_graph_rule("x-001", source="my-plugin"))
        catalog.register_external(STORAGE, make_graph_rule("x-002", source="my-plugin"))
        recs = catalog.recommendations_for_type(STORAGE.upper())
        assert recs["x-001"].source == "APRL"
        assert recs["x-002"].source == "my-plugin"

    def test_code_rules_are_listed_not_dispatched(self):
        catalog = Catalog()
        catalog.add(make_code_rule("st-001", lambda r, c: (False, "")))
        catalog.add(make_graph_rule("x-001"))
        assert set(catalog.code_rules_for_type(STORAGE)) == {"st-001"}
        assert [r.recommendation_id for r in catalog.dispatchable_rules()] == ["x-001"]

    def test_base_and_overlay_selection(self):
        catalog = Catalog()
        catalog.add(make_graph_rule("x-001"))
        catalog.register_external(STORAGE, make_graph_rule("p-001", source="my-plugin"))
        base = catalog.dispatchable_rules(include_external=False)
        overlay = catalog.dispatchable_rules(include_base=False)
        assert [r.recommendation_id for r in base] == ["x-001"]
        assert [r.recommendation_id for r in overlay] == ["p-001"]

    @pytest.mark.parametrize("kw", [
        {"query": "resources // cannot-be-validated-with-arg"},
        {"query": "// under development"},
        {"query": "   "},
        {"metadata_state": "disabled"},
    ])
    def test_undispatchable_rules(self, kw):
        catalog = Catalog()
        catalog.add(make_graph_rule("x-001", **kw))
        assert catalog.dispatchable_rules() == []

    def test_excluded_recommendation_and_type(self):
        catalog = Catalog()
        catalog.add(make_graph_rule("x-001"))
        catalog.add(make_graph_rule("x-002"))
        catalog.add(make_graph_rule("vm-001", "microsoft.compute/virtualmachines"))
        filters = Filters(exclude_recommendations={"x-002"}, include_resource_types={STORAGE})
        assert [r.recommendation_id for r in catalog.dispatchable_rules(None, filters)] == ["x-001"]


def test_rule_dispatch_skipping():
    """Three storage rules, one under development: exactly two jobs run."""
    catalog = Catalog()
    catalog.add(make_graph_rule("st-1"))
    catalog.add(make_graph_rule("st-2"))
    catalog.add(make_graph_rule("st-3", query="resources | where x // under-development"))
    rules = catalog.freeze().dispatchable_rules([STORAGE])

    graph = FakeGraph()
    pool = WorkerPool(graph, workers=10)
    pool.run(rules, ScanContext(subscriptions={SUB_A: "a"}))

    assert pool.jobs_dispatched == 2
    assert len(graph.calls) == 2
    assert all("under-development" not in q for q in graph.queries())
