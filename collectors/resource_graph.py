"""Resource Graph query client — pagination, batching, retry, rate limiting.

Every provider request (first page, continuation page, retry attempt)
takes one token from the shared ``TokenBucket``.  Subscriptions are sent in
chunks of 300 and pages of 1000 rows; pages are concatenated in provider
order.

Usage:
    from collectors.resource_graph import GraphQueryClient
    graph = GraphQueryClient(limiter=limiter)
    rows = graph.query("resources | project id, name", ["<sub-id>"], cancel)
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Iterator, Sequence

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions

from collectors.azure_client import get_shared_credential
from collectors.retry import DEFAULT_POLICY, RETRYABLE_STATUS, RetryPolicy, call_with_retry
from collectors.throttling import TokenBucket
from engine.errors import (
    PermanentError,
    ProviderCapabilityError,
    ScanCancelled,
    TransientError,
    is_capability_error,
)

_log = logging.getLogger(__name__)

SUBSCRIPTION_BATCH = 300
PAGE_SIZE = 1000

_QUOTA_REMAINING = "x-ms-user-quota-remaining"
_QUOTA_RESETS_AFTER = "x-ms-user-quota-resets-after"


def _chunks(items: Sequence[str], size: int) -> Iterator[list[str]]:
    for i in range(0, len(items), size):
        yield list(items[i:i + size])


def _with_headers(pipeline_response: Any, deserialized: Any, _headers: Any) -> tuple[Any, dict]:
    headers = getattr(getattr(pipeline_response, "http_response", None), "headers", None) or {}
    return deserialized, dict(headers)


def parse_resets_after(value: str) -> float:
    """``hh:mm:ss`` (optionally with fractional seconds) → seconds."""
    try:
        hours, minutes, seconds = value.split(":")
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    except (AttributeError, ValueError):
        return 0.0


def classify_sdk_error(e: Exception, what: str) -> Exception:
    """Map an azure-core exception onto the scan error taxonomy."""
    if isinstance(e, (ServiceRequestError, ServiceResponseError)):
        return TransientError(f"{what}: {e}")
    if isinstance(e, ClientAuthenticationError):
        return PermanentError(f"{what}: authentication failed: {e}", status_code=401)
    if isinstance(e, HttpResponseError):
        status = e.status_code or 0
        code = getattr(getattr(e, "error", None), "code", "") or ""
        if status in RETRYABLE_STATUS:
            return TransientError(f"{what}: HTTP {status} {code}", status_code=status)
        if is_capability_error(code, str(e)):
            return ProviderCapabilityError(f"{what}: {code}", status_code=status, code=code)
        return PermanentError(f"{what}: HTTP {status} {code} {e.message}", status_code=status, code=code)
    return e


class GraphQueryClient:
    """Thin wrapper over ``ResourceGraphClient.resources``.

    *client* may be any object with a compatible ``resources(request, cls=...)``
    method; it defaults to a real SDK client on the shared credential.
    """

    def __init__(
        self,
        client: Any = None,
        *,
        limiter: TokenBucket | None = None,
        policy: RetryPolicy = DEFAULT_POLICY,
        subscription_batch: int = SUBSCRIPTION_BATCH,
        page_size: int = PAGE_SIZE,
    ):
        self._client = client if client is not None else ResourceGraphClient(get_shared_credential())
        self.limiter = limiter
        self.policy = policy
        self.subscription_batch = subscription_batch
        self.page_size = page_size
        self.requests = 0
        self._quota_lock = threading.Lock()
        self._quota_resume_at = 0.0

    # ── Quota back-off ────────────────────────────────────────────
    def _wait_for_quota(self, cancel: threading.Event | None) -> None:
        with self._quota_lock:
            delay = self._quota_resume_at - time.monotonic()
        if delay > 0:
            _log.info("Resource Graph quota exhausted, waiting %.1fs", delay)
            if (cancel or threading.Event()).wait(delay):
                raise ScanCancelled("graph query cancelled")

    def _record_quota(self, headers: dict) -> None:
        remaining = headers.get(_QUOTA_REMAINING)
        if remaining is None or str(remaining).strip() != "0":
            return
        delay = parse_resets_after(str(headers.get(_QUOTA_RESETS_AFTER, "")))
        if delay > 0:
            with self._quota_lock:
                self._quota_resume_at = max(self._quota_resume_at, time.monotonic() + delay)

    # ── One provider request ──────────────────────────────────────
    def _page(self, query: str, subscriptions: list[str], skip_token: str | None,
              cancel: threading.Event | None) -> tuple[list[dict[str, Any]], str | None]:
        self._wait_for_quota(cancel)
        if self.limiter is not None:
            self.limiter.acquire(cancel)
        options = QueryRequestOptions(result_format="objectArray", top=self.page_size)
        if skip_token:
            options.skip_token = skip_token
        request = QueryRequest(subscriptions=subscriptions, query=query, options=options)
        self.requests += 1
        try:
            result = self._client.resources(request, cls=_with_headers)
        except (HttpResponseError, ServiceRequestError, ServiceResponseError,
                ClientAuthenticationError) as e:
            raise classify_sdk_error(e, "resource graph query") from e
        response, headers = result if isinstance(result, tuple) else (result, {})
        self._record_quota(headers)
        data = getattr(response, "data", None)
        page = data if isinstance(data, list) else []
        return page, getattr(response, "skip_token", None)

    # ── Public API ────────────────────────────────────────────────
    def query(self, query: str, subscriptions: Sequence[str],
              cancel: threading.Event | None = None) -> list[dict[str, Any]]:
        """Run *query* across *subscriptions*; return every row in provider order."""
        rows: list[dict[str, Any]] = []
        if not subscriptions:
            return rows
        for chunk in _chunks(list(subscriptions), self.subscription_batch):
            skip_token: str | None = None
            while True:
                if cancel is not None and cancel.is_set():
                    raise ScanCancelled("graph query cancelled")
                token = skip_token
                page, skip_token = call_with_retry(
                    lambda: self._page(query, chunk, token, cancel),
                    policy=self.policy, cancel=cancel, describe="resource graph query",
                )
                rows.extend(page)
                if not skip_token or not page:
                    break
        return rows
