"""ARM and Resource Graph collectors over fake clients."""
from __future__ import annotations

from datetime import datetime, timezone

from collectors.advisor import ADVISOR_QUERY, collect_advisor
from collectors.carbon import collect_carbon, report_month
from collectors.cost import collect_costs, cost_period
from collectors.defender import DEFENDER_RECOMMENDATIONS_QUERY, collect_defender_pricings, collect_defender_recommendations
from collectors.preflight import collect_diagnostics, collect_private_endpoints, collect_public_ips, diagnostics_candidates
from collectors.subscriptions import list_subscriptions, narrow_subscriptions
from engine.context import ScanContext
from engine.errors import ProviderCapabilityError
from engine.filters import Filters
from fakes import SUB_A, SUB_B, FakeArm, FakeGraph, resource_id, subscriptions_listing
from schemas.domain import Resource

ST1 = resource_id(SUB_A, "rg1", "Microsoft.Storage/storageAccounts", "st1")


class TestSubscriptions:

    def test_only_enabled_listed(self):
        listing = subscriptions_listing(SUB_A, SUB_B)
        listing[1]["state"] = "Disabled"
        arm = FakeArm(get_all={"/subscriptions": listing})
        assert list_subscriptions(arm) == {SUB_A: f"sub-{SUB_A[-4:]}"}

    def test_narrow_drops_unknown(self, caplog):
        universe = {SUB_A: "a", SUB_B: "b"}
        assert narrow_subscriptions(universe, [SUB_A.upper(), "missing"]) == {SUB_A: "a"}
        assert "missing not found" in caplog.text

    def test_narrow_without_request_keeps_all(self):
        assert narrow_subscriptions({SUB_A: "a"}, []) == {SUB_A: "a"}


class TestCost:

    def test_month_to_date(self):
        now = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
        start, end = cost_period(now=now)
        assert start == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert end == now

    def test_previous_month(self):
        start, end = cost_period(previous_month=True, now=datetime(2024, 3, 15, tzinfo=timezone.utc))
        assert start.date().isoformat() == "2024-02-01"
        assert end.date().isoformat() == "2024-02-29"

    def test_rows_by_column_name(self):
        path = f"/subscriptions/{SUB_A}/providers/Microsoft.CostManagement/query"
        arm = FakeArm(post={path: {"properties": {
            "columns": [{"name": "Cost"}, {"name": "ServiceName"}, {"name": "Currency"}],
            "rows": [[12.5, "Storage", "EUR"], [3, "Virtual Machines", "EUR"]],
        }}})
        start, end = cost_period()
        items = collect_costs(arm, SUB_A, "Production", start, end)
        assert [(i.service_name, i.value, i.currency) for i in items] == [
            ("Storage", "12.5", "EUR"), ("Virtual Machines", "3", "EUR"),
        ]

    def test_unregistered_subscription_yields_nothing(self):
        path = f"/subscriptions/{SUB_A}/providers/Microsoft.CostManagement/query"
        arm = FakeArm(post={path: ProviderCapabilityError("not registered")})
        start, end = cost_period()
        assert collect_costs(arm, SUB_A, "", start, end) == []


class TestCarbon:

    def test_report_month_wraps_year(self):
        assert report_month(datetime(2024, 1, 10, tzinfo=timezone.utc)).isoformat() == "2023-12-01"

    def test_sums_across_batches_and_filters_types(self):
        subs = [f"00000000-0000-0000-0000-{i:012d}" for i in range(150)]
        arm = FakeArm(post={"/providers/Microsoft.Carbon/carbonEmissionReports": {"value": [
            {"itemName": "Microsoft.Storage/storageAccounts",
             "latestMonthEmissions": 2, "previousMonthEmissions": 1},
            {"itemName": "Microsoft.Compute/virtualMachines",
             "latestMonthEmissions": 5, "previousMonthEmissions": 0},
        ]}})
        filters = Filters(include_resource_types={"microsoft.storage/storageaccounts"})
        results = collect_carbon(arm, subs, filters)

        assert len([c for c in arm.calls if c[0] == "post"]) == 2
        (storage,) = results
        assert storage.latest_month_emissions == "4"
        assert storage.previous_month_emissions == "2"
        assert storage.month_over_month_change == "1.0000"


class TestAdvisor:

    def test_rows_deduplicated_and_filtered(self):
        row = {"SubscriptionId": SUB_A, "SubscriptionName": "Production",
               "ResourceId": ST1, "RecommendationTypeId": "adv-1", "Category": "HighAvailability",
               "Impact": "High", "Problem": "Enable soft delete",
               "ImpactedField": "Microsoft.Storage/storageAccounts", "ImpactedValue": "st1"}
        excluded = dict(row, SubscriptionId=SUB_B, ResourceId=ST1.replace(SUB_A, SUB_B))
        graph = FakeGraph({ADVISOR_QUERY: [row, dict(row), excluded]})
        context = ScanContext(subscriptions={SUB_A: "Production"},
                              filters=Filters(exclude_subscriptions={SUB_B}))
        (result,) = collect_advisor(graph, context)
        assert result.recommendation_id == "adv-1"
        assert result.name == "st1"
        assert result.description == "Enable soft delete"


class TestDefender:

    def test_pricings(self):
        path = f"/subscriptions/{SUB_A}/providers/Microsoft.Security/pricings"
        arm = FakeArm(get={path: {"value": [
            {"name": "VirtualMachines", "properties": {"pricingTier": "Standard"}},
            {"name": "KubernetesService", "properties": {"pricingTier": "Free", "deprecated": True}},
        ]}})
        plans = collect_defender_pricings(arm, SUB_A, "Production")
        assert [(p.name, p.tier, p.deprecated) for p in plans] == [
            ("VirtualMachines", "Standard", False), ("KubernetesService", "Free", True),
        ]

    def test_unregistered_subscription(self):
        path = f"/subscriptions/{SUB_A}/providers/Microsoft.Security/pricings"
        arm = FakeArm(get={path: ProviderCapabilityError("MissingSubscriptionRegistration")})
        assert collect_defender_pricings(arm, SUB_A) == []

    def test_recommendation_portal_link(self):
        graph = FakeGraph({DEFENDER_RECOMMENDATIONS_QUERY: [
            {"SubscriptionId": SUB_A, "ResourceId": ST1, "AzPortalLink": "portal.azure.com/#blade",
             "RecommendationName": "Enable MFA"},
        ]})
        (rec,) = collect_defender_recommendations(graph, ScanContext(subscriptions={SUB_A: "Production"}))
        assert rec.portal_link == "https://portal.azure.com/#blade"
        assert rec.subscription_name == "Production"


class TestPreflight:

    def test_diagnostics_index(self):
        resources = [
            Resource(id=ST1, subscription_id=SUB_A, resource_group="rg1", location="westeurope",
                     type="Microsoft.Storage/storageAccounts", name="st1"),
            Resource(id=ST1 + "x", subscription_id=SUB_A, resource_group="rg1", location="westeurope",
                     type="Microsoft.Unknown/things", name="thing"),
        ]
        assert diagnostics_candidates(resources) == [ST1.lower()]

        class Arm(FakeArm):
            def batch(self, sub_requests):
                self.batches.append(sub_requests)
                return [{"httpStatusCode": 200, "content": {"value": [
                    {"id": f"{ST1}/providers/microsoft.insights/diagnosticSettings/all"},
                ]}}]

        arm = Arm()
        assert collect_diagnostics(arm, resources) == {ST1.lower(): True}
        assert len(arm.batches) == 1

    def test_graph_indexes(self):
        pip = resource_id(SUB_A, "rg1", "Microsoft.Network/publicIPAddresses", "pip1").lower()
        from collectors.preflight import PRIVATE_ENDPOINTS_QUERY, PUBLIC_IPS_QUERY
        graph = FakeGraph({
            PRIVATE_ENDPOINTS_QUERY: [{"backendId": ST1}],
            PUBLIC_IPS_QUERY: [{"id": pip, "zones": ["1", "2", "3"]}, {"id": "", "zones": []}],
        })
        assert collect_private_endpoints(graph, [SUB_A]) == {ST1.lower(): True}
        assert collect_public_ips(graph, [SUB_A]) == {pip: frozenset({"1", "2", "3"})}
