"""HTTP client helpers shared by sources, providers and publish channels."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from daily_digest.errors import (
    NonRetryableProviderError,
    OutputInvalidError,
    RateLimitedError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; DailyDigestBot/1.0)"


@dataclass(slots=True)
class FetchResult:
    """Result of an HTTP fetch operation."""

    url: str
    status_code: int
    content: str
    content_type: str
    is_success: bool
    error: str | None = None


def build_client(
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    headers: dict[str, str] | None = None,
    base_url: str = "",
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """httpx client with the project user agent and explicit timeouts."""

    base_headers = {"User-Agent": DEFAULT_USER_AGENT}
    if headers:
        base_headers.update(headers)
    return httpx.Client(
        base_url=base_url,
        timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
        headers=base_headers,
        transport=transport,
        follow_redirects=True,
    )


class HttpFetcher:
    """Page fetcher that reports failures in the result instead of raising."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = build_client(timeout_seconds=timeout_seconds, transport=transport)

    def fetch(self, url: str) -> FetchResult:
        """Fetch URL content, returning structured result."""

        try:
            response = self._client.get(url)
            return FetchResult(
                url=url,
                status_code=response.status_code,
                content=response.text,
                content_type=response.headers.get("content-type", ""),
                is_success=response.is_success,
                error=None if response.is_success else f"HTTP {response.status_code}",
            )
        except httpx.TimeoutException:
            logger.warning("Timeout fetching %s", url)
            return _failed_fetch(url, "timeout")
        except httpx.HTTPError as exc:
            logger.warning("HTTP error fetching %s: %s", url, exc)
            return _failed_fetch(url, str(exc))

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def send_json(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    label: str,
    **kwargs: Any,
) -> Any:
    """Send one request and decode its JSON body, raising typed provider errors."""

    try:
        response = client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise TransientProviderError(message=f"{label}: timeout ({exc})") from exc
    except httpx.HTTPError as exc:
        raise TransientProviderError(message=f"{label}: network error ({exc})") from exc

    raise_for_status(response, label=label)
    try:
        return response.json()
    except ValueError as exc:
        raise OutputInvalidError(
            message=f"{label}: response is not JSON",
            raw_output=response.text[:500],
        ) from exc


def raise_for_status(response: httpx.Response, *, label: str) -> None:
    """Translate a non-2xx response into the matching provider error."""

    if response.is_success:
        return
    status = response.status_code
    detail = response.text[:300].strip()
    message = f"{label}: HTTP {status}" + (f" {detail}" if detail else "")
    if status == 429:
        raise RateLimitedError(
            message=message,
            status_code=status,
            retry_after=parse_retry_after(response),
        )
    if status >= 500 or status == 408:
        raise TransientProviderError(message=message, status_code=status)
    raise NonRetryableProviderError(message=message, status_code=status)


def parse_retry_after(response: httpx.Response) -> float | None:
    """Seconds from a ``Retry-After`` header; HTTP-date values are ignored."""

    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw.strip()))
    except ValueError:
        return None


def _failed_fetch(url: str, error: str) -> FetchResult:
    return FetchResult(
        url=url,
        status_code=0,
        content="",
        content_type="",
        is_success=False,
        error=error,
    )
