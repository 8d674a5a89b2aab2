"""Code-rule scanner contract and the shared ARM-backed implementation.

A scanner is "a thing that can scan resource type T".  Capabilities:

  - ``init(client)``            bind an ARM client for the run
  - ``scan(sub, context)``      list resources of the type in one subscription
                                and evaluate every code rule against them
  - ``resource_types()``        canonical (lower-cased) types covered
  - ``recommendations()``       ``{rule_id: CodeRule}``

Per-type modules build an ``ArmScanner`` with their rule table and
register it with ``evaluators.registry.register_scanner``.  The helpers at
the bottom build the rule shapes every type repeats (diagnostics, naming,
tags, private endpoints, fixed SLA).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from collectors.azure_client import AzureClient
from engine.context import ScanContext
from engine.rule_engine import results_for_resource
from schemas.domain import CodeRule, EvalFn, RecommendationResult

_log = logging.getLogger(__name__)

_CAF_URL = ("https://learn.microsoft.com/azure/cloud-adoption-framework/ready/"
            "azure-best-practices/resource-abbreviations")
_TAGS_URL = "https://learn.microsoft.com/azure/azure-resource-manager/management/tag-resources"


class Scanner(Protocol):
    abbreviation: str

    def init(self, client: AzureClient) -> None: ...

    def scan(self, subscription_id: str, context: ScanContext) -> list[RecommendationResult]: ...

    def resource_types(self) -> list[str]: ...

    def recommendations(self) -> dict[str, CodeRule]: ...


@dataclass
class ArmScanner:
    """Lists one ARM resource type per subscription and applies its rules."""
    abbreviation: str
    resource_type: str
    api_version: str
    rules: tuple[CodeRule, ...]
    list_path: str = ""           # defaults to /subscriptions/{sub}/providers/{type}
    _client: AzureClient | None = field(default=None, repr=False)

    def init(self, client: AzureClient) -> None:
        self._client = client

    def resource_types(self) -> list[str]:
        return [self.resource_type.lower()]

    def recommendations(self) -> dict[str, CodeRule]:
        return {r.recommendation_id: r for r in self.rules}

    def list_resources(self, subscription_id: str) -> list[dict[str, Any]]:
        if self._client is None:
            raise RuntimeError(f"scanner '{self.abbreviation}' used before init()")
        path = (self.list_path or "/subscriptions/{sub}/providers/{type}").format(
            sub=subscription_id, type=self.resource_type)
        return self._client.get_all(path, self.api_version)

    def scan(self, subscription_id: str, context: ScanContext) -> list[RecommendationResult]:
        results: list[RecommendationResult] = []
        rules = self.recommendations()
        for resource in self.list_resources(subscription_id):
            context.check_cancelled()
            rid = resource.get("id", "")
            if not rid or context.filters.resource_excluded(rid, self.resource_type.lower()):
                continue
            results.extend(results_for_resource(rules, resource, context))
        _log.debug("Scanner %s: %d results in %s", self.abbreviation, len(results), subscription_id)
        return results


# ── Resource accessors ────────────────────────────────────────────
def props(resource: dict[str, Any]) -> dict[str, Any]:
    return resource.get("properties") or {}


def sku_name(resource: dict[str, Any]) -> str:
    return str((resource.get("sku") or {}).get("name") or "")


def zones(resource: dict[str, Any]) -> list[str]:
    return list(resource.get("zones") or [])


def has_private_endpoint_connections(resource: dict[str, Any], context: ScanContext) -> bool:
    if props(resource).get("privateEndpointConnections"):
        return True
    return context.has_private_endpoint(resource.get("id", ""))


# ── Rule builders ─────────────────────────────────────────────────
def rule(rule_id: str, resource_type: str, category: str, impact: str, text: str,
         evaluate: EvalFn, url: str = "", *, rtype: str = "best-practice") -> CodeRule:
    return CodeRule(
        recommendation_id=rule_id,
        resource_type=resource_type,
        category=category,
        impact=impact,
        recommendation=text,
        evaluate=evaluate,
        learn_more_url=url,
        recommendation_type=rtype,
    )


def diagnostics_rule(rule_id: str, resource_type: str, label: str, url: str) -> CodeRule:
    return rule(
        rule_id, resource_type, "monitoring-and-alerting", "low",
        f"{label} should have diagnostic settings enabled",
        lambda r, ctx: (not ctx.has_diagnostics(r.get("id", "")), ""),
        url,
    )


def sla_rule(rule_id: str, resource_type: str, label: str, sla: str | Callable[[dict[str, Any]], str],
             url: str) -> CodeRule:
    compute = sla if callable(sla) else (lambda _r, value=sla: value)
    return rule(
        rule_id, resource_type, "high-availability", "high",
        f"{label} should have a SLA",
        lambda r, ctx: (False, compute(r)),
        url, rtype="sla",
    )


def naming_rule(rule_id: str, resource_type: str, label: str, prefix: str) -> CodeRule:
    return rule(
        rule_id, resource_type, "governance", "low",
        f"{label} Name should comply with naming conventions",
        lambda r, ctx: (not str(r.get("name", "")).lower().startswith(prefix), ""),
        _CAF_URL,
    )


def tags_rule(rule_id: str, resource_type: str, label: str) -> CodeRule:
    return rule(
        rule_id, resource_type, "governance", "low",
        f"{label} should have tags",
        lambda r, ctx: (not r.get("tags"), ""),
        _TAGS_URL,
    )


def private_endpoint_rule(rule_id: str, resource_type: str, label: str, url: str) -> CodeRule:
    return rule(
        rule_id, resource_type, "security", "high",
        f"{label} should have private endpoints enabled",
        lambda r, ctx: (not has_private_endpoint_connections(r, ctx), ""),
        url,
    )
