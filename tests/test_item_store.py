from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import date, timedelta

import allure

from daily_digest.storage.common import utc_now
from daily_digest.tasks.models import (
    DailyTaskStatus,
    FailureClass,
    ItemOutcome,
    ItemStatus,
    RawItem,
)
from daily_digest.tasks.store import ItemStore, TaskStore


pytestmark = [
    allure.epic("Daily Task Lifecycle"),
    allure.feature("Item Claims & Retry Bookkeeping"),
]

TASK_DATE = date(2026, 2, 1)
_STALE_AFTER = timedelta(minutes=15)


def _success(title: str = "translated") -> ItemOutcome:
    return ItemOutcome(succeeded=True, translated_title=title, summary="summary")


def _assert_counter_invariant(task_store: TaskStore, task_date: date) -> None:
    snapshot = task_store.get_task_snapshot(task_date)
    assert snapshot is not None
    assert (
        snapshot.completed + snapshot.failed + snapshot.pending + snapshot.processing
        == snapshot.total
    )


def test_bulk_insert_moves_task_to_list_fetched_once(
    task_store: TaskStore,
    item_store: ItemStore,
    raw_items: Callable[[int], list[RawItem]],
) -> None:
    task_store.get_or_create_task(TASK_DATE)
    items = raw_items(5)
    items.append(RawItem(external_id="hn-1", rank=6, title="Duplicate of the first story"))

    assert item_store.bulk_insert(TASK_DATE, items) is True
    assert item_store.bulk_insert(TASK_DATE, raw_items(3)) is False

    task = task_store.get_task(TASK_DATE)
    assert task is not None
    assert task.status == DailyTaskStatus.LIST_FETCHED
    assert task.total_items == 5
    counts = item_store.counts_by_status(TASK_DATE)
    assert counts[ItemStatus.PENDING] == 5
    stored = item_store.list_items(TASK_DATE)
    assert [item.rank for item in stored] == [1, 2, 3, 4, 5]
    assert stored[0].metadata["discussion_url"] == "https://hn.test/1"


def test_claim_batch_returns_rank_ordered_items_with_shared_token(
    item_store: ItemStore,
    listed_task: Callable[[int], date],
) -> None:
    task_date = listed_task(10)

    claimed = item_store.claim_batch(task_date, 4, stale_after=_STALE_AFTER)

    assert [item.rank for item in claimed] == [1, 2, 3, 4]
    assert all(item.status == ItemStatus.PROCESSING for item in claimed)
    assert len({item.claim_token for item in claimed}) == 1
    assert item_store.counts_by_status(task_date)[ItemStatus.PROCESSING] == 4


def test_concurrent_claims_are_disjoint(
    item_store: ItemStore,
    listed_task: Callable[[int], date],
) -> None:
    task_date = listed_task(20)
    start = threading.Event()
    results: list[list[int]] = []
    lock = threading.Lock()

    def _claim() -> None:
        start.wait(timeout=5)
        claimed = item_store.claim_batch(task_date, 5, stale_after=_STALE_AFTER)
        with lock:
            results.append([item.item_id for item in claimed])

    threads = [threading.Thread(target=_claim) for _ in range(6)]
    for thread in threads:
        thread.start()
    start.set()
    for thread in threads:
        thread.join(timeout=30)

    claimed_ids = [item_id for batch in results for item_id in batch]
    assert len(claimed_ids) == len(set(claimed_ids))
    assert len(claimed_ids) == 20
    assert item_store.counts_by_status(task_date)[ItemStatus.PENDING] == 0


def test_stale_processing_item_is_reclaimed_and_old_write_is_dropped(
    task_store: TaskStore,
    item_store: ItemStore,
    listed_task: Callable[[int], date],
) -> None:
    task_date = listed_task(1)
    long_ago = utc_now() - timedelta(hours=1)
    first = item_store.claim_batch(task_date, 1, stale_after=_STALE_AFTER, now=long_ago)
    assert len(first) == 1

    assert item_store.claim_batch(task_date, 1, stale_after=timedelta(hours=2)) == []
    second = item_store.claim_batch(task_date, 1, stale_after=_STALE_AFTER)
    assert [item.item_id for item in second] == [first[0].item_id]
    assert second[0].claim_token != first[0].claim_token
    assert second[0].retry_count == 1

    assert item_store.record_result(first[0].item_id, first[0].claim_token, _success()) is None
    assert (
        item_store.record_result(second[0].item_id, second[0].claim_token, _success())
        == ItemStatus.COMPLETED
    )
    snapshot = task_store.get_task_snapshot(task_date)
    assert snapshot is not None
    assert snapshot.completed == 1


def test_repeatedly_abandoned_item_fails_once_retry_budget_is_spent(
    task_store: TaskStore,
    item_store: ItemStore,
    listed_task: Callable[[int], date],
) -> None:
    task_date = listed_task(1)
    start = utc_now()
    retry_counts: list[int] = []
    for hour in range(10):
        claimed = item_store.claim_batch(
            task_date,
            1,
            stale_after=_STALE_AFTER,
            now=start + timedelta(hours=hour),
        )
        retry_counts.extend(item.retry_count for item in claimed)

    assert retry_counts == [0, 1, 2]
    [item] = item_store.list_items(task_date)
    assert item.status == ItemStatus.FAILED
    assert item.retry_count == 3
    assert item.claim_token is None
    assert item.failure_class == FailureClass.UNEXPECTED
    assert (item.translated_title, item.summary, item.comment_digest) == ("", "", "")
    snapshot = task_store.get_task_snapshot(task_date)
    assert snapshot is not None
    assert snapshot.failed == 1
    assert snapshot.processing == 0
    _assert_counter_invariant(task_store, task_date)


def test_retryable_failures_exhaust_budget_at_cap(
    task_store: TaskStore,
    item_store: ItemStore,
    listed_task: Callable[[int], date],
) -> None:
    task_date = listed_task(1)
    statuses: list[ItemStatus | None] = []
    for _ in range(3):
        claimed = item_store.claim_batch(task_date, 1, stale_after=_STALE_AFTER)
        assert len(claimed) == 1
        statuses.append(
            item_store.record_result(
                claimed[0].item_id,
                claimed[0].claim_token or "",
                ItemOutcome.failure(FailureClass.NETWORK_TIMEOUT, "timeout"),
            ),
        )
        _assert_counter_invariant(task_store, task_date)

    assert statuses == [ItemStatus.PENDING, ItemStatus.PENDING, ItemStatus.FAILED]
    assert item_store.claim_batch(task_date, 1, stale_after=_STALE_AFTER) == []
    [item] = item_store.list_items(task_date)
    assert item.retry_count == 3
    assert item.failure_class == FailureClass.NETWORK_TIMEOUT
    assert (item.translated_title, item.summary, item.comment_digest) == ("", "", "")
    task = task_store.get_task(task_date)
    assert task is not None
    assert task.failed_items == 1


def test_item_succeeding_after_cap_minus_one_failures_completes(
    task_store: TaskStore,
    item_store: ItemStore,
    listed_task: Callable[[int], date],
) -> None:
    task_date = listed_task(1)
    for _ in range(2):
        [claimed] = item_store.claim_batch(task_date, 1, stale_after=_STALE_AFTER)
        status = item_store.record_result(
            claimed.item_id,
            claimed.claim_token or "",
            ItemOutcome.failure(FailureClass.RATE_LIMITED, "429"),
        )
        assert status == ItemStatus.PENDING

    [claimed] = item_store.claim_batch(task_date, 1, stale_after=_STALE_AFTER)
    status = item_store.record_result(claimed.item_id, claimed.claim_token or "", _success("标题"))

    assert status == ItemStatus.COMPLETED
    [item] = item_store.list_items(task_date)
    assert item.translated_title == "标题"
    assert item.failure_class is None
    task = task_store.get_task(task_date)
    assert task is not None
    assert (task.completed_items, task.failed_items) == (1, 0)


def test_non_retryable_failure_fails_immediately(
    item_store: ItemStore,
    listed_task: Callable[[int], date],
) -> None:
    task_date = listed_task(2)
    claimed = item_store.claim_batch(task_date, 2, stale_after=_STALE_AFTER)

    status = item_store.record_result(
        claimed[0].item_id,
        claimed[0].claim_token or "",
        ItemOutcome.failure(FailureClass.PROVIDER_NON_RETRYABLE, "HTTP 401"),
    )

    assert status == ItemStatus.FAILED
    [failed] = item_store.list_items(task_date, statuses=[ItemStatus.FAILED])
    assert failed.retry_count == 1
    assert failed.error_summary == "HTTP 401"


def test_counter_invariant_holds_across_mixed_outcomes(
    task_store: TaskStore,
    item_store: ItemStore,
    listed_task: Callable[[int], date],
) -> None:
    task_date = listed_task(12)
    outcomes = [
        _success(),
        ItemOutcome.failure(FailureClass.NETWORK_TIMEOUT, "timeout"),
        ItemOutcome.failure(FailureClass.OUTPUT_INVALID, "garbage"),
    ]
    for round_index in range(4):
        claimed = item_store.claim_batch(task_date, 4, stale_after=_STALE_AFTER)
        for index, item in enumerate(claimed[:-1]):
            outcome = outcomes[(index + round_index) % len(outcomes)]
            item_store.record_result(item.item_id, item.claim_token or "", outcome)
        _assert_counter_invariant(task_store, task_date)


def test_reset_failed_restores_budget_while_processing(
    task_store: TaskStore,
    item_store: ItemStore,
    listed_task: Callable[[int], date],
) -> None:
    task_date = listed_task(2)
    task_store.transition(task_date, DailyTaskStatus.LIST_FETCHED, DailyTaskStatus.PROCESSING)
    [claimed, _] = item_store.claim_batch(task_date, 2, stale_after=_STALE_AFTER)
    item_store.record_result(
        claimed.item_id,
        claimed.claim_token or "",
        ItemOutcome.failure(FailureClass.PROVIDER_NON_RETRYABLE, "HTTP 403"),
    )

    assert item_store.reset_failed(task_date) == 1

    [item] = [row for row in item_store.list_items(task_date) if row.item_id == claimed.item_id]
    assert item.status == ItemStatus.PENDING
    assert item.retry_count == 0
    assert item.failure_class is None
    task = task_store.get_task(task_date)
    assert task is not None
    assert task.failed_items == 0
    _assert_counter_invariant(task_store, task_date)


def test_reset_failed_is_refused_once_aggregating(
    task_store: TaskStore,
    item_store: ItemStore,
    listed_task: Callable[[int], date],
) -> None:
    task_date = listed_task(1)
    [claimed] = item_store.claim_batch(task_date, 1, stale_after=_STALE_AFTER)
    item_store.record_result(
        claimed.item_id,
        claimed.claim_token or "",
        ItemOutcome.failure(FailureClass.PROVIDER_NON_RETRYABLE, "HTTP 400"),
    )
    task_store.update_status(task_date, DailyTaskStatus.AGGREGATING)

    assert item_store.reset_failed(task_date) == 0
    assert item_store.counts_by_status(task_date)[ItemStatus.FAILED] == 1
