# collectors/azure_client.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from azure.core.credentials import TokenCredential
from azure.identity import AzureCliCredential, ClientSecretCredential

from collectors.retry import DEFAULT_POLICY, RETRYABLE_STATUS, RetryPolicy, call_with_retry
from config import Settings, load_settings
from engine.errors import (
    PermanentError,
    ProviderCapabilityError,
    TransientError,
    is_capability_error,
)

_log = logging.getLogger(__name__)

ARM = "https://management.azure.com"

# ARM batch endpoint accepts at most 20 requests per call.
BATCH_API_VERSION = "2020-06-01"
BATCH_SIZE = 20

# ── Shared credential singleton ──────────────────────────────────
_credential_lock = threading.Lock()
_shared_credential: Optional[TokenCredential] = None


def _new_credential(settings: Settings) -> TokenCredential:
    if settings.uses_service_principal and settings.tenant_id:
        return ClientSecretCredential(
            tenant_id=settings.tenant_id,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
        )
    return AzureCliCredential(process_timeout=30, tenant_id=settings.tenant_id or "")


def get_shared_credential() -> TokenCredential:
    """Return a process-wide credential singleton.

    Service principal when ``AZURE_CLIENT_ID``/``AZURE_CLIENT_SECRET`` are set,
    otherwise the Azure CLI session.  Thread-safe.
    """
    global _shared_credential
    if _shared_credential is None:
        with _credential_lock:
            if _shared_credential is None:
                _shared_credential = _new_credential(load_settings())
    return _shared_credential


def set_shared_credential(cred: TokenCredential) -> None:
    """Allow callers (e.g. scan.py, tests) to inject the credential."""
    global _shared_credential
    with _credential_lock:
        _shared_credential = cred


def _error_details(r: requests.Response) -> tuple[str, str]:
    try:
        body = r.json()
    except ValueError:
        return "", r.text[:300]
    err = body.get("error", body) if isinstance(body, dict) else {}
    if not isinstance(err, dict):
        return "", str(err)[:300]
    return str(err.get("code", "")), str(err.get("message", ""))


def _retry_after(r: requests.Response) -> Optional[float]:
    value = r.headers.get("Retry-After")
    try:
        return float(value) if value else None
    except ValueError:
        return None


def raise_for_response(r: requests.Response, what: str) -> None:
    """Translate an ARM error response into the scan error taxonomy."""
    if r.status_code < 400:
        return
    code, message = _error_details(r)
    text = f"{what}: HTTP {r.status_code} {code} {message}".strip()
    if r.status_code in RETRYABLE_STATUS:
        raise TransientError(text, status_code=r.status_code, retry_after=_retry_after(r))
    if is_capability_error(code, message):
        raise ProviderCapabilityError(text, status_code=r.status_code, code=code)
    raise PermanentError(text, status_code=r.status_code, code=code)


@dataclass
class AzureClient:
    """ARM REST client: token caching, retry, nextLink paging, batch."""
    credential: TokenCredential
    endpoint: str = ARM
    policy: RetryPolicy = DEFAULT_POLICY
    cancel: Optional[threading.Event] = None
    session: requests.Session = field(default_factory=requests.Session)
    _token: Optional[str] = None
    _token_expires: float = 0.0
    _token_lock: threading.Lock = field(default_factory=threading.Lock)

    def token(self) -> str:
        with self._token_lock:
            now = time.time()
            if self._token and now < self._token_expires - 60:
                return self._token
            access_token = self.credential.get_token(f"{ARM}/.default")
            self._token = access_token.token
            self._token_expires = access_token.expires_on
            return self._token

    def _send(self, method: str, url: str, *, params: Optional[Dict[str, Any]] = None,
              body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        def _once() -> Dict[str, Any]:
            headers = {"Authorization": f"Bearer {self.token()}"}
            if body is not None:
                headers["Content-Type"] = "application/json"
            try:
                r = self.session.request(method, url, headers=headers, params=params,
                                         json=body, timeout=60)
            except (requests.ConnectionError, requests.Timeout) as e:
                raise TransientError(f"{method} {url}: {e}") from e
            raise_for_response(r, f"{method} {url}")
            return r.json() if r.content else {}

        return call_with_retry(_once, policy=self.policy, cancel=self.cancel,
                               describe=f"{method} {url}")

    def get(self, path: str, api_version: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        qp = {"api-version": api_version}
        if params:
            qp.update(params)
        return self._send("GET", f"{self.endpoint}{path}", params=qp)

    def post(self, path: str, api_version: str, body: Optional[Dict[str, Any]] = None,
             params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        qp = {"api-version": api_version}
        if params:
            qp.update(params)
        return self._send("POST", f"{self.endpoint}{path}", params=qp, body=body or {})

    def get_all(self, path: str, api_version: str, params: Optional[Dict[str, Any]] = None,
                *, max_pages: int = 200) -> List[Dict[str, Any]]:
        """Follow ``nextLink`` for paged list results."""
        data = self.get(path, api_version, params)
        items: List[Dict[str, Any]] = list(data.get("value", []) or [])
        next_link = data.get("nextLink")
        page = 1
        while next_link and page < max_pages:
            # nextLink already carries api-version and skip tokens
            data = self._send("GET", next_link)
            items.extend(data.get("value", []) or [])
            next_link = data.get("nextLink")
            page += 1
        return items

    def batch(self, sub_requests: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Run ARM sub-requests through ``/batch`` (≤ 20 per call).

        Each request is ``{"httpMethod": "GET", "relativeUrl": "<path>?api-version=..."}``.
        Returns the ``responses`` list (same order as the input).
        """
        if len(sub_requests) > BATCH_SIZE:
            raise ValueError(f"ARM batch accepts at most {BATCH_SIZE} requests")
        data = self.post("/batch", BATCH_API_VERSION, body={"requests": sub_requests})
        return list(data.get("responses", []) or [])


def build_client(credential: Optional[TokenCredential] = None,
                 cancel: Optional[threading.Event] = None) -> AzureClient:
    cred = credential or get_shared_credential()
    return AzureClient(credential=cred, endpoint=load_settings().arm_endpoint, cancel=cancel)
