"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, date, datetime
from pathlib import Path

import pytest

from daily_digest.storage.database import DigestDatabase
from daily_digest.tasks.models import RawItem
from daily_digest.tasks.store import ItemStore, TaskStore

TASK_DATE = date(2026, 2, 1)


@pytest.fixture()
def database(tmp_path: Path) -> Iterator[DigestDatabase]:
    database = DigestDatabase(tmp_path / "digest.db")
    database.init_schema()
    yield database
    database.close()


@pytest.fixture()
def task_store(database: DigestDatabase) -> TaskStore:
    return TaskStore(database.engine)


@pytest.fixture()
def item_store(database: DigestDatabase) -> ItemStore:
    return ItemStore(database.engine, max_retry_count=3)


@pytest.fixture()
def raw_items() -> Callable[[int], list[RawItem]]:
    """Factory for ranked raw items with stable external ids."""

    def _build(count: int) -> list[RawItem]:
        return [
            RawItem(
                external_id=f"hn-{rank}",
                rank=rank,
                title=f"Story number {rank}",
                url=f"https://example.com/story/{rank}",
                score=1000 - rank,
                published_at=datetime(2026, 2, 1, 8, rank % 60, tzinfo=UTC),
                metadata={"num_comments": 0, "discussion_url": f"https://hn.test/{rank}"},
            )
            for rank in range(1, count + 1)
        ]

    return _build


@pytest.fixture()
def listed_task(
    task_store: TaskStore,
    item_store: ItemStore,
    raw_items: Callable[[int], list[RawItem]],
) -> Callable[[int], date]:
    """Create the task for TASK_DATE with ``count`` items already inserted."""

    def _create(count: int) -> date:
        task_store.get_or_create_task(TASK_DATE)
        assert item_store.bulk_insert(TASK_DATE, raw_items(count)) is True
        return TASK_DATE

    return _create
