"""One invocation of the daily task state machine.

Every trigger (timer or manual) calls :meth:`StateMachineDriver.step`, which
re-reads the persisted status and performs exactly one stage of work.  The
driver keeps nothing between invocations; all progress lives in the stores.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

from daily_digest.enrichment.content_filter import ContentFilter
from daily_digest.errors import SourceError
from daily_digest.pipeline.aggregator import Aggregator
from daily_digest.pipeline.batch import BatchProcessor
from daily_digest.sources.base import ContentSource
from daily_digest.storage.common import utc_now
from daily_digest.tasks.models import DailyTaskStatus, StepResult, TaskSnapshot
from daily_digest.tasks.store import ItemStore, TaskStore

logger = logging.getLogger(__name__)

StageHandler = Callable[[TaskSnapshot], str]


class StateMachineDriver:
    """Dispatches on the persisted task status to one stage handler."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        task_store: TaskStore,
        item_store: ItemStore,
        source: ContentSource,
        batch_processor: BatchProcessor,
        aggregator: Aggregator,
        content_filter: ContentFilter | None = None,
        task_max_age: timedelta = timedelta(hours=36),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.task_store = task_store
        self.item_store = item_store
        self.source = source
        self.batch_processor = batch_processor
        self.aggregator = aggregator
        self.content_filter = content_filter
        self.task_max_age = task_max_age
        self._clock = clock
        self._handlers: dict[DailyTaskStatus, StageHandler] = {
            DailyTaskStatus.INIT: self._fetch_list,
            DailyTaskStatus.LIST_FETCHED: self._process_batch,
            DailyTaskStatus.PROCESSING: self._process_batch,
            DailyTaskStatus.AGGREGATING: self._aggregate,
            DailyTaskStatus.PUBLISHED: self._noop,
            DailyTaskStatus.ARCHIVED: self._noop,
        }
        missing = [status.value for status in DailyTaskStatus if status not in self._handlers]
        if missing:
            raise RuntimeError(f"No stage handler for: {', '.join(missing)}")

    def target_date(self) -> date:
        """Yesterday in UTC: the last complete day of source data."""

        return self._clock().astimezone(UTC).date() - timedelta(days=1)

    def step(self, task_date: date | None = None) -> StepResult:
        """Run one stage for ``task_date`` (default: yesterday) and report what happened."""

        task_date = task_date or self.target_date()
        _, created = self.task_store.get_or_create_task(task_date)
        if created:
            self._archive_superseded(task_date)

        snapshot = self.task_store.get_task_snapshot(task_date)
        if snapshot is None:
            raise LookupError(f"Daily task {task_date.isoformat()} disappeared")
        if snapshot.status.is_terminal:
            return StepResult(
                task_date=task_date,
                status_before=snapshot.status,
                status_after=snapshot.status,
                action="noop",
                snapshot=snapshot,
            )
        self._warn_if_stuck(snapshot)

        handler = self._handlers[snapshot.status]
        try:
            action = handler(snapshot)
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Stage %s failed for %s "
                "(total=%d completed=%d failed=%d pending=%d processing=%d)",
                snapshot.status.value,
                task_date.isoformat(),
                snapshot.total,
                snapshot.completed,
                snapshot.failed,
                snapshot.pending,
                snapshot.processing,
            )
            error = f"{snapshot.status.value}: {type(exc).__name__}: {exc}"
            self.task_store.record_stage_error(task_date, error)
            after = self.task_store.get_task_snapshot(task_date)
            return StepResult(
                task_date=task_date,
                status_before=snapshot.status,
                status_after=after.status if after is not None else snapshot.status,
                action="failed",
                snapshot=after,
                error=error,
            )

        after = self.task_store.get_task_snapshot(task_date)
        return StepResult(
            task_date=task_date,
            status_before=snapshot.status,
            status_after=after.status if after is not None else None,
            action=action,
            snapshot=after,
        )

    def _fetch_list(self, snapshot: TaskSnapshot) -> str:
        items = self.source.fetch_item_list(snapshot.task_date)
        if not items:
            raise SourceError(
                message=(
                    f"{self.source.name} returned no items for "
                    f"{snapshot.task_date.isoformat()}"
                ),
            )
        fetched = len(items)
        removed = 0
        if self.content_filter is not None:
            filtered = self.content_filter.filter_items(items)
            items = filtered.kept
            removed = len(filtered.removed)
        if not self.item_store.bulk_insert(snapshot.task_date, items):
            return "list already fetched"
        action = f"fetched {fetched} items from {self.source.name}"
        if removed:
            action += f" ({removed} filtered)"
        return action

    def _process_batch(self, snapshot: TaskSnapshot) -> str:
        task_date = snapshot.task_date
        if snapshot.status == DailyTaskStatus.LIST_FETCHED:
            self.task_store.transition(
                task_date,
                DailyTaskStatus.LIST_FETCHED,
                DailyTaskStatus.PROCESSING,
            )

        summary = self.batch_processor.process(task_date)
        action = (
            f"batch: claimed={summary.claimed} completed={summary.completed} "
            f"retried={summary.retried} failed={summary.failed}"
        )
        if summary.claimed == 0:
            action = "nothing to claim"

        after = self.task_store.get_task_snapshot(task_date)
        if (
            after is not None
            and after.status == DailyTaskStatus.PROCESSING
            and after.drained
            and self.task_store.transition(
                task_date,
                DailyTaskStatus.PROCESSING,
                DailyTaskStatus.AGGREGATING,
            )
        ):
            action += "; queue drained"
        return action

    def _aggregate(self, snapshot: TaskSnapshot) -> str:
        result = self.aggregator.aggregate(snapshot)
        channels = {**result.dispatch.skipped, **result.dispatch.delivered}
        return f"published {result.entries} entries to {', '.join(sorted(channels))}"

    def _noop(self, snapshot: TaskSnapshot) -> str:
        return "noop"

    def _archive_superseded(self, task_date: date) -> None:
        for stale_date in self.task_store.stale_task_dates(before=task_date):
            if self.task_store.archive_stale_task(stale_date):
                logger.warning(
                    "Archived unfinished task %s, superseded by %s",
                    stale_date.isoformat(),
                    task_date.isoformat(),
                )

    def _warn_if_stuck(self, snapshot: TaskSnapshot) -> None:
        age = self._clock() - snapshot.created_at
        if age > self.task_max_age:
            logger.warning(
                "Task %s has been %s for %.1f hours (pending=%d processing=%d)",
                snapshot.task_date.isoformat(),
                snapshot.status.value,
                age.total_seconds() / 3600,
                snapshot.pending,
                snapshot.processing,
            )
