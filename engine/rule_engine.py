"""Rule engine — applies code rules to one already-fetched resource.

Rules are pure functions of (resource, scan context); they read the
preflight indexes on the context and never perform I/O.  SLA rules return
``broken=False`` with the computed SLA as the note; a note alone is enough
for the rule to produce a result row.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from engine.context import ScanContext
from schemas.domain import CodeRule, RecommendationResult
from schemas.resource_id import resource_group_from_id, subscription_from_id
from schemas.taxonomy import VALIDATED_BY_ARM

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleOutcome:
    broken: bool
    note: str = ""

    @property
    def reportable(self) -> bool:
        return self.broken or bool(self.note)


def _as_rules(rules: Mapping[str, CodeRule] | Iterable[CodeRule]) -> list[CodeRule]:
    if isinstance(rules, Mapping):
        return list(rules.values())
    return list(rules)


def evaluate(
    rules: Mapping[str, CodeRule] | Iterable[CodeRule],
    resource: dict[str, Any],
    context: ScanContext,
) -> dict[str, RuleOutcome]:
    """Return ``{rule_id: RuleOutcome}`` for every non-excluded rule.

    A rule that trips over malformed resource data is logged and left out;
    the other rules still run.
    """
    outcomes: dict[str, RuleOutcome] = {}
    for rule in _as_rules(rules):
        if context.filters.recommendation_excluded(rule.recommendation_id):
            continue
        try:
            broken, note = rule.evaluate(resource, context)
        except (KeyError, TypeError, AttributeError, ValueError, IndexError) as e:
            _log.warning(
                "Rule %s failed on %s: %s",
                rule.recommendation_id, resource.get("id", "<no id>"), e,
            )
            continue
        outcomes[rule.recommendation_id] = RuleOutcome(bool(broken), note or "")
    return outcomes


def results_for_resource(
    rules: Mapping[str, CodeRule] | Iterable[CodeRule],
    resource: dict[str, Any],
    context: ScanContext,
) -> list[RecommendationResult]:
    """Evaluate *rules* and convert reportable outcomes to result rows."""
    by_id = {r.recommendation_id: r for r in _as_rules(rules)}
    resource_id = resource.get("id", "") or ""
    sub = subscription_from_id(resource_id).lower()
    tags = resource.get("tags") or {}
    out: list[RecommendationResult] = []
    for rule_id, outcome in evaluate(by_id, resource, context).items():
        if not outcome.reportable:
            continue
        rule = by_id[rule_id]
        out.append(RecommendationResult(
            recommendation_id=rule.recommendation_id,
            resource_id=resource_id,
            resource_type=rule.resource_type,
            resource_name=resource.get("name", "") or "",
            resource_group=resource_group_from_id(resource_id),
            subscription_id=sub,
            subscription_name=context.subscription_name(sub),
            category=rule.category,
            impact=rule.impact,
            recommendation=rule.recommendation,
            source=rule.source,
            learn_more_url=rule.learn_more_url,
            recommendation_type=rule.recommendation_type,
            broken=outcome.broken,
            note=outcome.note,
            tags=",".join(f"{k}={v}" for k, v in sorted(tags.items())) if isinstance(tags, dict) else str(tags),
            validated_using=VALIDATED_BY_ARM,
        ))
    return out
