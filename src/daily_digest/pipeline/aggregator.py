"""Collects enriched items into one document and hands it to the publish dispatcher."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from daily_digest.errors import PublishError
from daily_digest.pipeline.rendering import build_entries, render_markdown
from daily_digest.publishing.base import (
    ChannelReceipt,
    DispatchResult,
    PublishDispatcher,
    PublishDocument,
)
from daily_digest.tasks.models import DailyTaskStatus, ItemStatus, TaskSnapshot
from daily_digest.tasks.store import ItemStore, TaskStore

logger = logging.getLogger(__name__)

_RENDERED_STATUSES = (ItemStatus.COMPLETED, ItemStatus.FAILED)


@dataclass(slots=True)
class AggregationResult:
    """What one publish attempt produced."""

    task_date: date
    published: bool
    entries: int
    reused_document: bool = False
    dispatch: DispatchResult = field(default_factory=DispatchResult)


class Aggregator:
    """Renders the digest for a drained task and publishes it."""

    def __init__(
        self,
        *,
        task_store: TaskStore,
        item_store: ItemStore,
        dispatcher: PublishDispatcher,
    ) -> None:
        self.task_store = task_store
        self.item_store = item_store
        self.dispatcher = dispatcher

    def aggregate(self, snapshot: TaskSnapshot) -> AggregationResult:
        """Publish an AGGREGATING task; raises PublishError when the dispatch does not count."""

        if snapshot.status != DailyTaskStatus.AGGREGATING:
            raise ValueError(
                f"Task {snapshot.task_date.isoformat()} is {snapshot.status.value}, "
                "expected aggregating",
            )
        if not snapshot.drained:
            raise ValueError(
                f"Task {snapshot.task_date.isoformat()} still has "
                f"{snapshot.pending} pending and {snapshot.processing} processing items",
            )
        return self._publish(snapshot, reuse_cached=True)

    def force_publish(self, task_date: date) -> AggregationResult:
        """Publish whatever is finished now, even with items still pending."""

        snapshot = self.task_store.get_task_snapshot(task_date)
        if snapshot is None:
            raise LookupError(f"No daily task for {task_date.isoformat()}")
        if snapshot.status.is_terminal:
            raise ValueError(
                f"Task {task_date.isoformat()} is already {snapshot.status.value}",
            )
        if snapshot.status == DailyTaskStatus.INIT:
            raise ValueError(f"Task {task_date.isoformat()} has no items yet")
        if not snapshot.drained:
            logger.warning(
                "Force-publishing %s with %d pending and %d processing items",
                task_date.isoformat(),
                snapshot.pending,
                snapshot.processing,
            )
        return self._publish(
            snapshot,
            reuse_cached=snapshot.status == DailyTaskStatus.AGGREGATING,
        )

    def _publish(self, snapshot: TaskSnapshot, *, reuse_cached: bool) -> AggregationResult:
        task_date = snapshot.task_date
        items = self.item_store.list_items(task_date, statuses=_RENDERED_STATUSES)
        entries = build_entries(items)

        cached = ""
        if reuse_cached:
            task = self.task_store.get_task(task_date)
            cached = task.document if task is not None else ""
        markdown = cached or render_markdown(task_date, entries)
        if not cached:
            self.task_store.cache_document(task_date, markdown)

        def remember(receipt: ChannelReceipt) -> None:
            self.task_store.record_delivery(
                task_date,
                channel=receipt.channel,
                location=receipt.location,
            )

        dispatch = self.dispatcher.dispatch(
            PublishDocument(task_date=task_date, markdown=markdown, entries=entries),
            already_delivered=self.task_store.delivered_channels(task_date),
            on_delivered=remember,
        )
        if not dispatch.published:
            failures = "; ".join(f"{name}: {error}" for name, error in dispatch.failed.items())
            raise PublishError(
                message=f"Publishing {task_date.isoformat()} did not succeed ({failures})",
                channel=self.dispatcher.primary or "",
            )

        if not self.task_store.transition(task_date, snapshot.status, DailyTaskStatus.PUBLISHED):
            logger.info("Task %s was published by another invocation", task_date.isoformat())
        if dispatch.failed:
            logger.warning(
                "Task %s published with failed channels: %s",
                task_date.isoformat(),
                ", ".join(sorted(dispatch.failed)),
            )
        return AggregationResult(
            task_date=task_date,
            published=True,
            entries=len(entries),
            reused_document=bool(cached),
            dispatch=dispatch,
        )
