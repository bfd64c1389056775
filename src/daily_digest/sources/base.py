"""Common source adapter contracts."""

from __future__ import annotations

from datetime import date
from typing import Protocol, runtime_checkable

from daily_digest.tasks.models import RawItem


class ContentSource(Protocol):
    """Produces the ordered raw item list for one calendar date."""

    name: str

    def fetch_item_list(self, task_date: date) -> list[RawItem]:
        """Fetch the day's items, best first."""
        raise NotImplementedError


@runtime_checkable
class CommentSource(Protocol):
    """Optional hook for sources that can also return discussion comments."""

    def fetch_comments(self, external_id: str, *, limit: int) -> list[str]:
        """Plain-text comments for one item, most relevant first."""
        raise NotImplementedError
