from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime

import allure
import httpx
import pytest

from daily_digest.errors import SourceError
from daily_digest.sources.base import CommentSource
from daily_digest.sources.hackernews import HackerNewsSource
from daily_digest.tasks.retry import RetryPolicy

pytestmark = [
    allure.epic("Daily Task Lifecycle"),
    allure.feature("Hacker News Source"),
]

TASK_DATE = date(2026, 2, 1)
_DAY_START = int(datetime(2026, 2, 1, tzinfo=UTC).timestamp())


def _hit(object_id: str, points: int, **extra: object) -> dict[str, object]:
    hit: dict[str, object] = {
        "objectID": object_id,
        "title": f" Story {object_id} ",
        "url": f"https://example.com/{object_id}",
        "points": points,
        "num_comments": 7,
        "author": "pg",
        "created_at_i": _DAY_START + 3600,
    }
    hit.update(extra)
    return hit


def _source(handler: Callable[[httpx.Request], httpx.Response]) -> HackerNewsSource:
    return HackerNewsSource(
        algolia_base_url="https://hn.test/api/v1/",
        story_limit=3,
        retry_policy=RetryPolicy(max_attempts=2, sleep=lambda _: None),
        transport=httpx.MockTransport(handler),
    )


def test_stories_are_ranked_by_points_and_limited() -> None:
    params: list[dict[str, str]] = []
    pages = {
        0: [_hit("1", 10), _hit("2", 500), _hit("3", 40, url=None)],
        1: [_hit("4", 90), {"objectID": "5", "title": None, "points": 999}],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/search_by_date"
        query = dict(request.url.params)
        params.append(query)
        return httpx.Response(200, json={"hits": pages[int(query["page"])], "nbPages": 2})

    items = _source(handler).fetch_item_list(TASK_DATE)

    assert [(item.rank, item.external_id, item.score) for item in items] == [
        (1, "2", 500),
        (2, "4", 90),
        (3, "3", 40),
    ]
    assert items[0].title == "Story 2"
    assert items[2].url == "https://news.ycombinator.com/item?id=3"
    assert items[0].published_at == datetime(2026, 2, 1, 1, 0, tzinfo=UTC)
    assert items[0].metadata["discussion_url"] == "https://news.ycombinator.com/item?id=2"
    assert items[0].metadata["num_comments"] == 7
    assert params[0]["tags"] == "story"
    assert params[0]["numericFilters"] == (
        f"created_at_i>={_DAY_START},created_at_i<{_DAY_START + 86400}"
    )
    assert [query["page"] for query in params] == ["0", "1"]


def test_persistent_server_errors_become_source_error() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(503, text="unavailable")

    with pytest.raises(SourceError, match="Failed to fetch Hacker News stories"):
        _source(handler).fetch_item_list(TASK_DATE)
    assert calls["count"] == 2


def test_comments_are_plain_text_and_limited() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/items/42"
        return httpx.Response(
            200,
            json={
                "children": [
                    {"text": "<p>First &amp; best"},
                    {"text": None},
                    {"text": "Second"},
                    {"text": "Third"},
                ],
            },
        )

    source = _source(handler)

    assert isinstance(source, CommentSource)
    assert source.fetch_comments("42", limit=2) == ["First & best", "Second"]
    source.close()
