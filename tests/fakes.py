"""In-memory stand-ins for the Resource Graph and ARM clients (no network)."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from engine.errors import PermanentError
from schemas.domain import CodeRule, GraphRule, RecommendationResult

SUB_A = "00000000-0000-0000-0000-00000000aaaa"
SUB_B = "00000000-0000-0000-0000-00000000bbbb"
SUB_C = "00000000-0000-0000-0000-00000000cccc"

STORAGE = "microsoft.storage/storageaccounts"
VM = "microsoft.compute/virtualmachines"


def resource_id(sub: str, rg: str, provider_type: str, name: str) -> str:
    return f"/subscriptions/{sub}/resourceGroups/{rg}/providers/{provider_type}/{name}"


class FakeGraph:
    """Duck-typed ``GraphQueryClient``: rows are looked up by query text.

    ``responses`` values may be a row list, a callable returning rows, or an
    exception instance to raise.
    """

    def __init__(self, responses: dict[str, Any] | None = None, default: Any = None):
        self.responses = dict(responses or {})
        self.default = default if default is not None else []
        self.calls: list[tuple[str, list[str]]] = []
        self._lock = threading.Lock()

    def query(self, query: str, subscriptions, cancel=None) -> list[dict[str, Any]]:
        with self._lock:
            self.calls.append((query, list(subscriptions)))
        answer = self.responses.get(query, self.default)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            answer = answer()
        return [dict(row) for row in answer]

    def queries(self) -> list[str]:
        return [q for q, _ in self.calls]


class FakeArm:
    """Duck-typed ``AzureClient`` answering by path."""

    def __init__(self, get_all: dict[str, list] | None = None, get: dict[str, dict] | None = None,
                 post: dict[str, Any] | None = None):
        self.get_all_responses = dict(get_all or {})
        self.get_responses = dict(get or {})
        self.post_responses = dict(post or {})
        self.calls: list[tuple[str, str]] = []
        self.batches: list[list[dict]] = []

    def _answer(self, table: dict, path: str, default: Any) -> Any:
        answer = table.get(path, default)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def get_all(self, path: str, api_version: str, params=None, **_kw) -> list[dict]:
        self.calls.append(("get_all", path))
        return list(self._answer(self.get_all_responses, path, []))

    def get(self, path: str, api_version: str, params=None) -> dict:
        self.calls.append(("get", path))
        return self._answer(self.get_responses, path, {})

    def post(self, path: str, api_version: str, body=None, params=None) -> dict:
        self.calls.append(("post", path))
        answer = self._answer(self.post_responses, path, {})
        return answer(body) if callable(answer) else answer

    def batch(self, sub_requests: list[dict]) -> list[dict]:
        self.batches.append(sub_requests)
        return [{"httpStatusCode": 200, "content": {"value": []}} for _ in sub_requests]


def subscriptions_listing(*subs: str) -> list[dict]:
    return [
        {"subscriptionId": s, "displayName": f"sub-{s[-4:]}", "state": "Enabled"}
        for s in subs
    ]


def make_graph_rule(rule_id: str, resource_type: str = STORAGE, *, query: str | None = None,
                    impact: str = "high", source: str = "APRL", **kw) -> GraphRule:
    return GraphRule(
        recommendation_id=rule_id,
        resource_type=resource_type,
        category=kw.pop("category", "high-availability"),
        impact=impact,
        recommendation=kw.pop("recommendation", f"Recommendation {rule_id}"),
        query=query if query is not None else f"resources | where rule == '{rule_id}'",
        source=source,
        **kw,
    )


def make_code_rule(rule_id: str, evaluate: Callable, resource_type: str = STORAGE,
                   *, rtype: str = "best-practice", impact: str = "medium") -> CodeRule:
    return CodeRule(
        recommendation_id=rule_id,
        resource_type=resource_type,
        category="high-availability",
        impact=impact,
        recommendation=f"Recommendation {rule_id}",
        evaluate=evaluate,
        recommendation_type=rtype,
    )


def make_result(rule_id: str, rid: str, *, source: str = "APRL", impact: str = "high",
                broken: bool = True, note: str = "", rtype: str = "best-practice",
                sub: str = SUB_A) -> RecommendationResult:
    return RecommendationResult(
        recommendation_id=rule_id,
        resource_id=rid,
        resource_type=STORAGE,
        resource_name=rid.rsplit("/", 1)[-1],
        resource_group="rg1",
        subscription_id=sub,
        subscription_name=f"sub-{sub[-4:]}",
        category="high-availability",
        impact=impact,
        recommendation=f"Recommendation {rule_id}",
        source=source,
        broken=broken,
        note=note,
        recommendation_type=rtype,
    )


@dataclass
class FakeGraphResponse:
    data: list[dict]
    skip_token: str | None = None


@dataclass
class TimedSdk:
    """Fake ``ResourceGraphClient`` recording the wall-clock time of each request."""
    rows: list[dict] = field(default_factory=list)
    stamps: list[float] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def resources(self, request, cls=None):
        with self._lock:
            self.stamps.append(time.monotonic())
        return FakeGraphResponse(data=[dict(r) for r in self.rows])


def permanent(message: str = "forbidden") -> PermanentError:
    return PermanentError(message, status_code=403)
