from __future__ import annotations

import allure
import httpx
import pytest

from daily_digest.errors import (
    ContentFetchError,
    NonRetryableProviderError,
    OutputInvalidError,
    RateLimitedError,
    TransientProviderError,
)
from daily_digest.tasks.failure_classifier import classify_failure
from daily_digest.tasks.models import FailureClass

pytestmark = [
    allure.epic("Daily Task Lifecycle"),
    allure.feature("Retry & Failure Classes"),
]


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://llm.test/chat/completions")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


@pytest.mark.parametrize(
    ("error", "expected", "retryable"),
    [
        (RateLimitedError(message="slow down", retry_after=3), FailureClass.RATE_LIMITED, True),
        (TransientProviderError(message="read timeout"), FailureClass.NETWORK_TIMEOUT, True),
        (
            NonRetryableProviderError(message="HTTP 401", status_code=401),
            FailureClass.PROVIDER_NON_RETRYABLE,
            False,
        ),
        (OutputInvalidError(message="not json"), FailureClass.OUTPUT_INVALID, False),
        (ContentFetchError(message="404", url="https://a.test"), FailureClass.CONTENT_FETCH, False),
        (_status_error(429), FailureClass.RATE_LIMITED, True),
        (_status_error(503), FailureClass.NETWORK_TIMEOUT, True),
        (_status_error(400), FailureClass.PROVIDER_NON_RETRYABLE, False),
        (httpx.ConnectTimeout("connect timed out"), FailureClass.NETWORK_TIMEOUT, True),
        (RuntimeError("upstream said: Too Many Requests"), FailureClass.RATE_LIMITED, True),
        (RuntimeError("connection reset by peer"), FailureClass.NETWORK_TIMEOUT, True),
        (KeyError("choices"), FailureClass.UNEXPECTED, True),
    ],
)
def test_classify_failure(
    error: BaseException,
    expected: FailureClass,
    retryable: bool,
) -> None:
    classification = classify_failure(error)

    assert classification.failure_class == expected
    assert classification.retryable is retryable


def test_typed_errors_win_over_message_patterns() -> None:
    classification = classify_failure(OutputInvalidError(message="timeout while parsing"))

    assert classification.failure_class == FailureClass.OUTPUT_INVALID
    assert classification.matched_rule == "typed_output_invalid"
