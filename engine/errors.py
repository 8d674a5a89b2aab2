"""Error taxonomy for the scan pipeline.

  - ``ConfigurationError``      — fatal before any stage runs (exit code 1)
  - ``CatalogError``            — bad catalog / plugin file; entry dropped, run continues
  - ``TransientError``          — throttling, 5xx, network; retried
  - ``PermanentError``          — other 4xx, authorization; not retried
  - ``ProviderCapabilityError`` — feature not registered for a subscription
  - ``ScanCancelled``           — caller cancelled the scan; never retried
  - ``StageError``              — first failing stage, with timing and metrics (exit code 2)
"""
from __future__ import annotations

from typing import Any


class AzqrError(Exception):
    """Base class for every error raised by the scan system."""


class ConfigurationError(AzqrError):
    """Invalid filters, flags or pipeline composition."""


class CatalogError(AzqrError):
    """A catalog or plugin file could not be parsed."""


class TransientError(AzqrError):
    """Retryable I/O failure (429, 5xx, connection reset)."""

    def __init__(self, message: str, *, status_code: int | None = None, retry_after: float | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class PermanentError(AzqrError):
    """Non-retryable I/O failure."""

    def __init__(self, message: str, *, status_code: int | None = None, code: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ProviderCapabilityError(PermanentError):
    """Subscription is not registered for the requested provider feature."""


class ScanCancelled(AzqrError):
    """The scan's cancellation token was set."""


class StageError(AzqrError):
    """Raised by the pipeline when a stage fails; wraps the original error."""

    def __init__(self, stage: str, elapsed: float, metrics: dict[str, Any], cause: BaseException):
        super().__init__(f"stage '{stage}' failed after {elapsed:.2f}s: {cause}")
        self.stage = stage
        self.elapsed = elapsed
        self.metrics = metrics
        self.cause = cause


# ARM error codes that mean "not available here" rather than "broken".
SKIPPABLE_ERROR_CODES: frozenset[str] = frozenset({
    "MissingRegistrationForResourceProvider",
    "MissingSubscriptionRegistration",
    "DisallowedOperation",
})


def is_capability_error(code: str, message: str = "") -> bool:
    if code in SKIPPABLE_ERROR_CODES:
        return True
    return "subscription not registered" in (message or "").lower()
