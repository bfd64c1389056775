"""Article content retrieval with layered fallbacks.

Order: crawler API (when configured), direct page fetch + trafilatura, the
source's own metadata text, then the empty placeholder.  Retrieval never
raises; a failed layer is logged and the next one is tried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from daily_digest.errors import ContentFetchError, DigestError
from daily_digest.http.fetcher import HttpFetcher, build_client, send_json
from daily_digest.http.html_extractor import extract_text, first_paragraph, truncate

logger = logging.getLogger(__name__)

_SKIP_FETCH_HOSTS = ("news.ycombinator.com",)


@dataclass(slots=True)
class ArticleContent:
    """Retrieved article text and the description derived from it."""

    text: str
    description: str
    source: str
    calls: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.text


class ContentFetcher:
    """Fetches article text for summarization."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        crawler_api_url: str = "",
        crawler_api_token: str = "",
        timeout_seconds: float = 20.0,
        max_content_chars: int = 4_000,
        description_max_chars: int = 200,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.crawler_api_url = crawler_api_url
        self.max_content_chars = max_content_chars
        self.description_max_chars = description_max_chars
        headers = {"Authorization": f"Bearer {crawler_api_token}"} if crawler_api_token else None
        self._crawler = (
            build_client(timeout_seconds=timeout_seconds, headers=headers, transport=transport)
            if crawler_api_url
            else None
        )
        self._fetcher = HttpFetcher(timeout_seconds=timeout_seconds, transport=transport)

    def fetch(self, url: str, metadata: dict[str, Any] | None = None) -> ArticleContent:
        """Best available text for ``url``; empty content when every layer fails."""

        calls = 0
        if url and not any(host in url for host in _SKIP_FETCH_HOSTS):
            if self._crawler is not None:
                calls += 1
                try:
                    return self._content(self._crawl(url), source="crawler", calls=calls)
                except DigestError as exc:
                    logger.warning("Crawler failed for %s: %s", url, exc)
            calls += 1
            try:
                return self._content(self._fetch_page(url), source="page", calls=calls)
            except ContentFetchError as exc:
                logger.info("Direct fetch gave no content for %s: %s", url, exc)

        story_text = str((metadata or {}).get("story_text") or "").strip()
        if story_text:
            return self._content(story_text, source="metadata", calls=calls)
        return ArticleContent(text="", description="", source="none", calls=calls)

    def _crawl(self, url: str) -> str:
        if self._crawler is None:
            raise ContentFetchError(message="crawler is not configured", url=url)
        payload = send_json(
            self._crawler,
            "POST",
            self.crawler_api_url,
            label="crawler",
            json={"url": url},
        )
        markdown = payload.get("markdown") if isinstance(payload, dict) else None
        if not (isinstance(payload, dict) and payload.get("success")) or not markdown:
            raise ContentFetchError(message="crawler returned no markdown", url=url)
        return str(markdown)

    def _fetch_page(self, url: str) -> str:
        fetched = self._fetcher.fetch(url)
        if not fetched.is_success:
            raise ContentFetchError(message=fetched.error or "fetch failed", url=url)
        content_type = fetched.content_type.lower()
        if content_type and "html" not in content_type and "text" not in content_type:
            raise ContentFetchError(
                message=f"unsupported content type {fetched.content_type!r}",
                url=url,
            )
        extracted = extract_text(fetched.content, url=url, max_chars=self.max_content_chars)
        if not extracted.is_success:
            raise ContentFetchError(message=extracted.error or "no content extracted", url=url)
        return extracted.text

    def _content(self, text: str, *, source: str, calls: int) -> ArticleContent:
        trimmed = truncate(text.strip(), self.max_content_chars)
        return ArticleContent(
            text=trimmed,
            description=first_paragraph(trimmed, max_chars=self.description_max_chars),
            source=source,
            calls=calls,
        )

    def close(self) -> None:
        if self._crawler is not None:
            self._crawler.close()
        self._fetcher.close()
