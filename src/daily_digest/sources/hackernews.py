"""Hacker News source backed by the Algolia search API."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

import httpx

from daily_digest.errors import DigestError, SourceError
from daily_digest.http.fetcher import build_client, send_json
from daily_digest.http.html_extractor import strip_html
from daily_digest.tasks.models import RawItem
from daily_digest.tasks.retry import RetryPolicy

logger = logging.getLogger(__name__)

_HITS_PER_PAGE = 1000
_MAX_PAGES = 5
HN_ITEM_URL = "https://news.ycombinator.com/item?id={id}"


class HackerNewsSource:
    """Top stories of one UTC day, ranked by points."""

    name = "hackernews"

    def __init__(
        self,
        *,
        algolia_base_url: str,
        story_limit: int,
        timeout_seconds: float = 15.0,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.algolia_base_url = algolia_base_url.rstrip("/")
        self.story_limit = story_limit
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = build_client(timeout_seconds=timeout_seconds, transport=transport)

    def fetch_item_list(self, task_date: date) -> list[RawItem]:
        """Stories created on ``task_date`` (UTC), highest score first."""

        start = datetime.combine(task_date, time.min, tzinfo=UTC)
        end = start + timedelta(days=1)
        filters = f"created_at_i>={int(start.timestamp())},created_at_i<{int(end.timestamp())}"

        hits: list[dict[str, Any]] = []
        try:
            for page in range(_MAX_PAGES):
                payload = self.retry_policy.call(
                    lambda page=page: send_json(
                        self._client,
                        "GET",
                        f"{self.algolia_base_url}/search_by_date",
                        label="hn search",
                        params={
                            "tags": "story",
                            "numericFilters": filters,
                            "hitsPerPage": _HITS_PER_PAGE,
                            "page": page,
                        },
                    ),
                    label="hn search",
                )
                hits.extend(payload.get("hits") or [])
                if page + 1 >= int(payload.get("nbPages") or 0):
                    break
        except DigestError as exc:
            raise SourceError(message=f"Failed to fetch Hacker News stories: {exc}") from exc

        ranked = sorted(
            (hit for hit in hits if hit.get("title") and hit.get("objectID")),
            key=lambda hit: int(hit.get("points") or 0),
            reverse=True,
        )
        items = [
            _to_raw_item(hit, rank=index)
            for index, hit in enumerate(ranked[: self.story_limit], start=1)
        ]
        logger.info(
            "Fetched %d stories for %s (%d candidates)",
            len(items),
            task_date.isoformat(),
            len(hits),
        )
        return items

    def fetch_comments(self, external_id: str, *, limit: int) -> list[str]:
        """Top-level comments of one story as plain text."""

        payload = self.retry_policy.call(
            lambda: send_json(
                self._client,
                "GET",
                f"{self.algolia_base_url}/items/{external_id}",
                label="hn comments",
            ),
            label="hn comments",
        )
        comments: list[str] = []
        for child in payload.get("children") or []:
            text = strip_html(child.get("text") or "")
            if text:
                comments.append(text)
            if len(comments) >= limit:
                break
        return comments

    def close(self) -> None:
        self._client.close()


def _to_raw_item(hit: dict[str, Any], *, rank: int) -> RawItem:
    object_id = str(hit["objectID"])
    created_at_i = hit.get("created_at_i")
    return RawItem(
        external_id=object_id,
        rank=rank,
        title=str(hit["title"]).strip(),
        url=hit.get("url") or HN_ITEM_URL.format(id=object_id),
        score=int(hit.get("points") or 0),
        published_at=(
            datetime.fromtimestamp(int(created_at_i), tz=UTC) if created_at_i is not None else None
        ),
        metadata={
            "author": hit.get("author") or "",
            "num_comments": int(hit.get("num_comments") or 0),
            "story_text": strip_html(hit.get("story_text") or ""),
            "discussion_url": HN_ITEM_URL.format(id=object_id),
        },
    )
