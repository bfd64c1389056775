"""Tests for the shared HTTP helpers and the article content fetcher."""

from __future__ import annotations

import httpx
import pytest

from daily_digest.enrichment.content import ContentFetcher
from daily_digest.errors import NonRetryableProviderError, RateLimitedError, TransientProviderError
from daily_digest.http.fetcher import HttpFetcher, raise_for_status
from daily_digest.http.html_extractor import (
    ExtractionResult,
    extract_text,
    first_paragraph,
    strip_html,
    truncate,
)


class TestHtmlExtractor:
    def test_extract_from_simple_html(self):
        html = (
            "<html><body><p>Hello world. This is a test article with enough text.</p></body></html>"
        )
        result = extract_text(html)
        assert isinstance(result, ExtractionResult)

    def test_extract_from_empty_html(self):
        result = extract_text("   ")
        assert not result.is_success
        assert result.error == "empty HTML input"

    def test_first_paragraph_skips_headings_and_short_lines(self):
        text = (
            "# Title\n\n![logo](x.png)\n\nShort.\n\n"
            "A [linked](https://a.test) paragraph long enough."
        )
        assert first_paragraph(text, min_chars=20) == "A linked paragraph long enough."

    def test_first_paragraph_falls_back_to_first_candidate(self):
        assert first_paragraph("Tiny.\n\nAlso tiny.", min_chars=40) == "Tiny."
        assert first_paragraph("## Only a heading") == ""

    def test_truncate_cuts_at_word_boundary(self):
        assert truncate("alpha beta gamma delta", 12) == "alpha beta…"
        assert truncate("short", 12) == "short"
        assert truncate("unbounded text", 0) == "unbounded text"

    def test_strip_html_unescapes_comment_markup(self):
        assert strip_html("First<p>Second &amp; <i>third</i>") == "First\nSecond & third"


class TestStatusTranslation:
    @staticmethod
    def _response(status_code: int, headers: dict[str, str] | None = None) -> httpx.Response:
        request = httpx.Request("GET", "https://api.test/x")
        return httpx.Response(status_code, headers=headers, request=request)

    def test_rate_limit_carries_retry_after(self):
        with pytest.raises(RateLimitedError) as caught:
            raise_for_status(self._response(429, {"Retry-After": "12"}), label="api")
        assert caught.value.retry_after == 12.0

    @pytest.mark.parametrize("status_code", [408, 500, 503])
    def test_server_errors_are_transient(self, status_code: int):
        with pytest.raises(TransientProviderError):
            raise_for_status(self._response(status_code), label="api")

    def test_client_errors_are_not_retried(self):
        with pytest.raises(NonRetryableProviderError, match="api: HTTP 404"):
            raise_for_status(self._response(404), label="api")


class TestHttpFetcher:
    def test_failure_is_reported_in_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with HttpFetcher(transport=httpx.MockTransport(handler)) as fetcher:
            result = fetcher.fetch("https://down.test/")

        assert result.is_success is False
        assert result.status_code == 0
        assert "refused" in (result.error or "")

    def test_non_2xx_status_is_not_success(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404, text="missing"))
        with HttpFetcher(transport=transport) as fetcher:
            result = fetcher.fetch("https://site.test/gone")

        assert result.is_success is False
        assert result.error == "HTTP 404"


class TestContentFetcher:
    def test_crawler_markdown_wins(self):
        requests: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(str(request.url))
            assert request.headers["Authorization"] == "Bearer crawl-token"
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "markdown": "# Heading\n\nThe crawler found a paragraph that is long enough.",
                },
            )

        fetcher = ContentFetcher(
            crawler_api_url="https://crawler.test/crawl",
            crawler_api_token="crawl-token",
            transport=httpx.MockTransport(handler),
        )
        content = fetcher.fetch("https://example.com/post")
        fetcher.close()

        assert content.source == "crawler"
        assert content.calls == 1
        assert content.description == "The crawler found a paragraph that is long enough."
        assert requests == ["https://crawler.test/crawl"]

    def test_falls_back_to_story_text_when_page_is_not_html(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "crawler.test":
                return httpx.Response(200, json={"success": False})
            return httpx.Response(200, content=b"%PDF", headers={"content-type": "application/pdf"})

        fetcher = ContentFetcher(
            crawler_api_url="https://crawler.test/crawl",
            transport=httpx.MockTransport(handler),
        )
        content = fetcher.fetch("https://example.com/paper.pdf", {"story_text": "Ask HN body"})
        fetcher.close()

        assert content.source == "metadata"
        assert content.text == "Ask HN body"
        assert content.calls == 2

    def test_discussion_pages_are_not_fetched(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError(f"unexpected request to {request.url}")

        fetcher = ContentFetcher(transport=httpx.MockTransport(handler))
        content = fetcher.fetch("https://news.ycombinator.com/item?id=1", {})
        fetcher.close()

        assert content.is_empty
        assert content.source == "none"
        assert content.calls == 0
