"""Report aggregation (deduplication, masking) and the renderers."""
from __future__ import annotations

import json
from dataclasses import replace

from openpyxl import load_workbook
from openpyxl.utils import get_column_letter

from engine.context import ScanContext
from engine.filters import Filters
from reporting.csv_report import write_csv
from reporting.document import render_document, render_markdown_table, write_document
from reporting.excel import HEADER_ROW, MAX_COLUMN_WIDTH, write_excel
from reporting.json_report import build_document, write_json
from reporting.report_data import (
    IMPACTED_HEADER,
    INVENTORY_HEADER,
    RECOMMENDATIONS_HEADER,
    ReportData,
    camel_case,
    deduplicate,
    mask_resource_id,
    mask_subscription_id,
    mask_table,
)
from fakes import SUB_A, SUB_B, make_result, resource_id
from plugins.zone_mapping import HEADER as ZONE_HEADER
from schemas.domain import AdvisorResult, PluginOutput, PolicyResult, Resource, ResourceTypeCount

ST1 = resource_id(SUB_A, "rg1", "Microsoft.Storage/storageAccounts", "st1")
ST2 = resource_id(SUB_A, "rg1", "Microsoft.Storage/storageAccounts", "st2")
MASKED_A = "xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxaaaa"


def _context(*results, **kw) -> ScanContext:
    context = ScanContext(subscriptions={SUB_A: "Production", SUB_B: "Dev"}, **kw)
    context.add_results(results)
    return context


def _rows(table, header=RECOMMENDATIONS_HEADER):
    return [dict(zip(header, row)) for row in table[1:]]


# ── Deduplication ─────────────────────────────────────────────────

class TestDeduplicate:

    def test_catalog_entry_beats_plugin_entry(self):
        """Same rule id from a plugin and the catalog: one row, from the catalog."""
        plugin = make_result("st-001", ST1, source="my-plugin")
        catalog = make_result("st-001", ST1, source="APRL")
        for order in ([plugin, catalog], [catalog, plugin]):
            (kept,) = deduplicate(order)
            assert kept.source == "APRL"

    def test_higher_impact_wins(self):
        low = make_result("st-001", ST1, source="APRL", impact="low")
        high = make_result("st-001", ST1, source="my-plugin", impact="high")
        (kept,) = deduplicate([low, high])
        assert kept.impact == "high"

    def test_full_tie_keeps_first_seen(self):
        first = make_result("st-001", ST1, note="first")
        second = make_result("st-001", ST1, note="second")
        (kept,) = deduplicate([first, second])
        assert kept.note == "first"

    def test_key_is_case_insensitive(self):
        results = [make_result("ST-001", ST1.upper()), make_result("st-001", ST1)]
        assert len(deduplicate(results)) == 1

    def test_distinct_keys_keep_order(self):
        results = [make_result("st-002", ST1), make_result("st-001", ST2), make_result("st-001", ST1)]
        assert [(r.recommendation_id, r.resource_id) for r in deduplicate(results)] == [
            ("st-002", ST1), ("st-001", ST2), ("st-001", ST1),
        ]

    def test_single_recommendations_row_end_to_end(self):
        context = _context(make_result("st-001", ST1, source="my-plugin"),
                           make_result("st-001", ST1, source="APRL"))
        rows = _rows(ReportData.from_context(context).recommendations_table())
        assert len(rows) == 1
        assert rows[0]["Source"] == "APRL"


# ── Masking ───────────────────────────────────────────────────────

class TestMasking:

    def test_subscription_id(self):
        assert mask_subscription_id(SUB_A) == MASKED_A
        assert mask_subscription_id("") == ""

    def test_resource_id_segment(self):
        assert mask_resource_id(ST1) == ST1.replace(SUB_A, MASKED_A)

    def test_table_columns(self):
        table = [["Subscription Id", "Subscription Name", "Id"], [SUB_A, "Production", ST1]]
        assert mask_table(table)[1] == [MASKED_A, "Production", ST1.replace(SUB_A, MASKED_A)]
        assert table[1][0] == SUB_A

    def test_every_table_masked(self):
        context = _context(make_result("st-001", ST1), mask=True)
        context.type_counts = [ResourceTypeCount(SUB_A, "microsoft.storage/storageaccounts", 3, True)]
        tables = ReportData.from_context(context).tables()
        (rec,) = _rows(tables["recommendations"])
        assert rec["Subscription Id"] == MASKED_A
        assert rec["Subscription Name"] == "sub-aaaa"
        assert SUB_A not in rec["Id"]
        assert tables["resourceType"][1][0] == MASKED_A

    def test_plugin_outputs_masked(self):
        context = _context(mask=True)
        context.plugin_outputs.append(PluginOutput(
            "zone-mapping", "Zones", "", [["Subscription Id", "Zone"], [SUB_A, "1"]],
        ))
        (output,) = ReportData.from_context(context).plugin_outputs()
        assert output.table[1] == [MASKED_A, "1"]

    def test_subscription_display_names_kept(self):
        context = _context(mask=True)
        context.plugin_outputs.append(PluginOutput(
            "custom", "Custom", "",
            [["Subscription", "Zone"], ["Contoso Production", "1"], [SUB_A, "2"]],
        ))
        (output,) = ReportData.from_context(context).plugin_outputs()
        assert output.table[1] == ["Contoso Production", "1"]
        assert output.table[2] == [MASKED_A, "2"]

    def test_zone_mapping_rows_masked(self):
        context = _context(mask=True)
        context.plugin_outputs.append(PluginOutput(
            "zone-mapping", "Zone Mapping", "",
            [list(ZONE_HEADER), [SUB_A, "Production", "westeurope", "West Europe", "1", "westeurope-az2"]],
        ))
        (output,) = ReportData.from_context(context).plugin_outputs()
        assert output.table[1][:2] == [MASKED_A, "Production"]


# ── Tables ────────────────────────────────────────────────────────

class TestTables:

    def test_impacted_holds_broken_only(self):
        context = _context(
            make_result("st-001", ST1, broken=True),
            make_result("st-003", ST1, broken=False, note="99.9%", rtype="sla"),
            make_result("st-005", ST1, broken=False, note="Standard_LRS", rtype="other"),
        )
        data = ReportData.from_context(context)
        recs = _rows(data.recommendations_table())
        impacted = _rows(data.impacted_table(), IMPACTED_HEADER)
        assert [r["Recommendation Id"] for r in impacted] == ["st-001"]
        by_id = {r["Recommendation Id"]: r for r in recs}
        assert by_id["st-003"]["SLA"] == "99.9%" and by_id["st-003"]["Notes"] == ""
        assert by_id["st-005"]["Notes"] == "Standard_LRS" and by_id["st-005"]["SLA"] == ""
        assert by_id["st-001"]["Broken"] == "Yes"

    def test_advisor_and_policy_rows_join_recommendations(self):
        context = _context()
        context.advisor.append(AdvisorResult(
            recommendation_id="adv-1", subscription_id=SUB_A, subscription_name="Production",
            type="Microsoft.Storage/storageAccounts", name="st1", resource_id=ST1,
            category="HighAvailability", impact="Medium", description="Enable soft delete",
        ))
        context.policy.append(PolicyResult(
            subscription_id=SUB_A, subscription_name="Production", resource_group="rg1",
            resource_type="Microsoft.Storage/storageAccounts", resource_name="st2",
            policy_display_name="Require TLS", policy_description="", resource_id=ST2,
            time_stamp="2024-01-01T00:00:00Z", policy_definition_name="pol-tls",
            policy_definition_id="/providers/x/pol-tls", policy_assignment_name="assign-tls",
            policy_assignment_id="/a", compliance_state="NonCompliant",
        ))
        recs = {r["Recommendation Id"]: r for r in _rows(ReportData.from_context(context).recommendations_table())}
        assert recs["adv-1"]["Source"] == "Advisor"
        assert recs["adv-1"]["Validated Using"] == "Azure Advisor"
        assert recs["adv-1"]["Impact"] == "Medium"
        assert recs["pol-tls"]["Category"] == "Governance"
        assert recs["pol-tls"]["Param1"] == "assign-tls"
        assert recs["pol-tls"]["Param2"] == "NonCompliant"

    def test_advisor_rows_follow_filters(self):
        kv1 = resource_id(SUB_A, "rg1", "Microsoft.KeyVault/vaults", "kv1")
        context = _context(filters=Filters(include_resource_types={"microsoft.storage/storageaccounts"},
                                           exclude_recommendations={"adv-2"}))
        for rec_id, rid in (("adv-1", ST1), ("adv-2", ST2), ("adv-3", kv1)):
            context.advisor.append(AdvisorResult(
                recommendation_id=rec_id, subscription_id=SUB_A, subscription_name="Production",
                type="", name="", resource_id=rid, category="Security", impact="High",
                description=rec_id,
            ))
        recs = _rows(ReportData.from_context(context).recommendations_table())
        assert [r["Recommendation Id"] for r in recs] == ["adv-1"]
        assert len(ReportData.from_context(context).advisor_table()) == 4

    def test_inventory_sla_from_code_rules(self):
        context = _context(make_result("st-003", ST1.upper(), broken=False, note="99.99%", rtype="sla"))
        context.resources = [
            Resource(id=ST1, subscription_id=SUB_A, resource_group="rg1", location="westeurope",
                     type="Microsoft.Storage/storageAccounts", name="st1"),
            Resource(id=ST2, subscription_id=SUB_A, resource_group="rg1", location="westeurope",
                     type="Microsoft.Storage/storageAccounts", name="st2"),
        ]
        rows = _rows(ReportData.from_context(context).inventory_table(), INVENTORY_HEADER)
        assert [r["SLA"] for r in rows] == ["99.99%", ""]

    def test_empty_scan_has_headers(self):
        tables = ReportData.from_context(ScanContext()).tables()
        assert all(len(t) == 1 for t in tables.values())
        assert tables["recommendations"][0] == RECOMMENDATIONS_HEADER

    def test_camel_case(self):
        assert camel_case("Recommendation Id") == "recommendationId"
        assert camel_case("SKU Name") == "skuName"
        assert camel_case("Available in Catalog?") == "availableInCatalog"
        assert camel_case("SLA") == "sla"


# ── Renderers ─────────────────────────────────────────────────────

def _data(**kw) -> ReportData:
    context = _context(
        make_result("st-001", ST1),
        make_result("st-002", ST2, broken=False, note="99.9%", rtype="sla"),
        replace(make_result("st-long", ST1), recommendation="x" * 300),
        replace(make_result("st-learn", ST2), learn_more_url="https://learn.microsoft.com/x"),
    )
    context.plugin_outputs.append(PluginOutput(
        "zone-mapping", "ZoneMapping", "Logical to physical zones",
        [["Subscription Id", "Location", "Logical Zone", "Physical Zone"],
         [SUB_A, "westeurope", "1", "westeurope-az2"]],
    ))
    return ReportData.from_context(context, output_name="azqr_test", **kw)


class TestExcel:

    def test_layout(self, tmp_path):
        path = write_excel(_data(), tmp_path)
        assert path.name == "azqr_test.xlsx"
        wb = load_workbook(path)
        assert "Recommendations" in wb.sheetnames
        assert "ZoneMapping" in wb.sheetnames

        ws = wb["Recommendations"]
        assert ws.cell(row=1, column=1).value == "Azure Quick Review"
        assert [c.value for c in ws[HEADER_ROW]] == RECOMMENDATIONS_HEADER
        last_col = get_column_letter(len(RECOMMENDATIONS_HEADER))
        assert ws.auto_filter.ref == f"A{HEADER_ROW}:{last_col}{HEADER_ROW + 4}"
        assert ws.freeze_panes == f"A{HEADER_ROW + 1}"
        for dim in ws.column_dimensions.values():
            assert dim.width <= MAX_COLUMN_WIDTH

    def test_learn_links(self, tmp_path):
        ws = load_workbook(write_excel(_data(), tmp_path))["Recommendations"]
        learn = RECOMMENDATIONS_HEADER.index("Learn") + 1
        links = [ws.cell(row=r, column=learn) for r in range(HEADER_ROW + 1, ws.max_row + 1)]
        linked = [c for c in links if c.hyperlink is not None]
        assert len(linked) == 1
        assert linked[0].hyperlink.target == "https://learn.microsoft.com/x"


class TestCsv:

    def test_file_per_table(self, tmp_path):
        written = write_csv(_data(), tmp_path)
        names = {p.name for p in written}
        assert "azqr_test.recommendations.csv" in names
        assert "azqr_test.impacted.csv" in names
        assert "azqr_test.outOfScope.csv" in names
        assert "azqr_test.plugin_zone-mapping.csv" in names
        header = (tmp_path / "azqr_test.recommendations.csv").read_text(encoding="utf-8").splitlines()[0]
        assert header.startswith("Validated Using,Source,Category")


class TestJson:

    def test_document_keys(self):
        doc = build_document(_data())
        assert {"recommendations", "impacted", "resourceType", "inventory", "advisor",
                "azurePolicy", "arcSQL", "defender", "defenderRecommendations", "costs",
                "carbon", "outOfScope", "externalPlugins"} <= set(doc)
        first = doc["recommendations"][0]
        assert first["recommendationId"] == "st-001"
        assert "subscriptionName" in first
        (plugin,) = doc["externalPlugins"]
        assert plugin["pluginName"] == "zone-mapping"
        assert plugin["rows"] == [{"subscriptionId": SUB_A, "location": "westeurope",
                                   "logicalZone": "1", "physicalZone": "westeurope-az2"}]

    def test_written_file_is_masked(self, tmp_path):
        path = write_json(_data(mask=True), tmp_path)
        text = path.read_text(encoding="utf-8")
        assert SUB_A not in text
        assert json.loads(text)["recommendations"][0]["subscriptionId"] == MASKED_A


class TestDocument:

    def test_markdown_report(self, tmp_path):
        path = write_document(_data(), tmp_path)
        text = path.read_text(encoding="utf-8")
        assert text.startswith("# Azure Quick Review")
        assert "## Recommendations" in text
        assert "| High | 3 | 4 |" in text
        assert "st-002" in text

    def test_pipes_escaped(self):
        out = render_markdown_table([["A", "B"], ["x|y", "z"]])
        assert out.splitlines() == ["| A | B |", "|---|---|", "| x\\|y | z |"]

    def test_subscription_count(self):
        assert "for 2 subscription(s)" in render_document(_data())
