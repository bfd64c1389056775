"""Deterministic failure classification for item retry policy."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from daily_digest.errors import (
    ContentFetchError,
    NonRetryableProviderError,
    OutputInvalidError,
    PublishError,
    RateLimitedError,
    TransientProviderError,
)
from daily_digest.tasks.models import RETRYABLE_ITEM_FAILURES, FailureClass

_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "connection reset",
    "connection refused",
    "network error",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    retryable: bool


def classify_failure(error: BaseException) -> FailureClassification:
    """Map an exception raised while enriching an item to a failure class."""

    if isinstance(error, RateLimitedError):
        return _classified(FailureClass.RATE_LIMITED, error.code, "typed_rate_limit")
    if isinstance(error, TransientProviderError):
        return _classified(FailureClass.NETWORK_TIMEOUT, error.code, "typed_transient")
    if isinstance(error, NonRetryableProviderError):
        return _classified(FailureClass.PROVIDER_NON_RETRYABLE, error.code, "typed_non_retryable")
    if isinstance(error, OutputInvalidError):
        return _classified(FailureClass.OUTPUT_INVALID, error.code, "typed_output_invalid")
    if isinstance(error, ContentFetchError):
        return _classified(FailureClass.CONTENT_FETCH, error.code, "typed_content_fetch")
    if isinstance(error, PublishError):
        return _classified(FailureClass.PUBLISH_FAILED, error.code, "typed_publish")
    if isinstance(error, httpx.HTTPStatusError):
        return _classify_status(error.response.status_code)
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError, TimeoutError)):
        return _classified(FailureClass.NETWORK_TIMEOUT, "transport", "httpx_transport")

    message = str(error).lower()
    for pattern in _RATE_LIMIT_PATTERNS:
        if pattern in message:
            return _classified(FailureClass.RATE_LIMITED, "message", "rate_limit_pattern")
    for pattern in _TRANSIENT_PATTERNS:
        if pattern in message:
            return _classified(FailureClass.NETWORK_TIMEOUT, "message", "transient_pattern")
    return _classified(FailureClass.UNEXPECTED, type(error).__name__, "fallback")


def _classify_status(status_code: int) -> FailureClassification:
    reason = f"http_{status_code}"
    if status_code == 429:
        return _classified(FailureClass.RATE_LIMITED, reason, "http_status")
    if status_code >= 500 or status_code == 408:
        return _classified(FailureClass.NETWORK_TIMEOUT, reason, "http_status")
    return _classified(FailureClass.PROVIDER_NON_RETRYABLE, reason, "http_status")


def _classified(
    failure_class: FailureClass,
    reason_code: str,
    matched_rule: str,
) -> FailureClassification:
    return FailureClassification(
        failure_class=failure_class,
        reason_code=reason_code,
        matched_rule=matched_rule,
        retryable=failure_class in RETRYABLE_ITEM_FAILURES,
    )
