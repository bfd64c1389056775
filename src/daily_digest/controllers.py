"""Controllers for daily digest CLI commands."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path

import httpx

from daily_digest.config import Settings
from daily_digest.runtime import open_aggregator, open_driver, open_stores
from daily_digest.storage.common import utc_now
from daily_digest.tasks.models import StepResult, TaskSnapshot


@dataclass(slots=True)
class StepCommand:
    """CLI inputs for one state machine step."""

    db_path: Path | None
    task_date: date | None


@dataclass(slots=True)
class StatusCommand:
    """CLI inputs for task status."""

    db_path: Path | None
    task_date: date | None
    recent_batches: int


@dataclass(slots=True)
class TaskDateCommand:
    """CLI inputs for commands acting on one task date."""

    db_path: Path | None
    task_date: date | None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI inputs for recent task listing."""

    db_path: Path | None
    limit: int


@dataclass(slots=True)
class StepReport:
    """Step outcome to render in CLI."""

    lines: list[str]
    success: bool


class DigestCliController:
    """Coordinates state machine steps and task inspection."""

    def __init__(
        self,
        *,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._transport = transport
        self._clock = clock

    def step(self, command: StepCommand) -> StepReport:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with open_stores(settings) as stores, open_driver(
            settings,
            stores,
            transport=self._transport,
            clock=self._clock,
        ) as driver:
            result = driver.step(command.task_date)
        return StepReport(lines=_step_lines(result), success=result.ok)

    def status(self, command: StatusCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        task_date = command.task_date or self._default_date()
        with open_stores(settings) as stores:
            snapshot = stores.task_store.get_task_snapshot(task_date)
            statistics = stores.task_store.batch_statistics(
                task_date,
                recent=command.recent_batches,
            )
            deliveries = stores.task_store.delivered_channels(task_date)
        if snapshot is None:
            return [f"No task for {task_date.isoformat()}"]

        lines = [
            f"Task: {task_date.isoformat()}",
            f"Status: {snapshot.status.value}",
            _counts_line(snapshot),
            f"Created: {snapshot.created_at.isoformat()}",
            f"Updated: {snapshot.updated_at.isoformat()}",
            "Published: "
            f"{snapshot.published_at.isoformat() if snapshot.published_at else '-'}",
            f"Last error: {snapshot.last_error or '-'}",
            "Batches: "
            f"count={statistics.batches} items={statistics.items} calls={statistics.calls} "
            f"duration_ms={statistics.total_duration_ms} "
            + " ".join(f"{status}={count}" for status, count in statistics.by_status.items()),
        ]
        for record in statistics.recent:
            lines.append(
                f"  batch #{record.batch_index} status={record.status.value} "
                f"items={record.item_count} calls={record.call_count} "
                f"duration_ms={record.duration_ms}"
                + (f" error={record.error_summary}" if record.error_summary else ""),
            )
        for channel, location in sorted(deliveries.items()):
            lines.append(f"  delivered {channel}: {location}")
        return lines

    def retry_failed(self, command: TaskDateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        task_date = command.task_date or self._default_date()
        with open_stores(settings) as stores:
            reset = stores.item_store.reset_failed(task_date)
            snapshot = stores.task_store.get_task_snapshot(task_date)
        if snapshot is None:
            return [f"No task for {task_date.isoformat()}"]
        lines = [f"Reset {reset} failed items for {task_date.isoformat()}", _counts_line(snapshot)]
        if reset == 0 and snapshot.failed:
            lines.append(
                f"Task is {snapshot.status.value}; failed items can only be retried "
                "before aggregation starts.",
            )
        return lines

    def force_publish(self, command: TaskDateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        task_date = command.task_date or self._default_date()
        with open_stores(settings) as stores, open_aggregator(
            settings,
            stores,
            transport=self._transport,
        ) as aggregator:
            result = aggregator.force_publish(task_date)
        lines = [f"Published {task_date.isoformat()} with {result.entries} entries"]
        for channel, location in result.dispatch.delivered.items():
            lines.append(f"  delivered {channel}: {location}")
        for channel, location in result.dispatch.skipped.items():
            lines.append(f"  already delivered {channel}: {location}")
        for channel, error in result.dispatch.failed.items():
            lines.append(f"  failed {channel}: {error}")
        return lines

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_stores(settings) as stores:
            tasks = stores.task_store.list_tasks(limit=command.limit)
        if not tasks:
            return ["No tasks yet."]
        return [
            f"{task.task_date.isoformat()} status={task.status.value} "
            f"total={task.total_items} completed={task.completed_items} "
            f"failed={task.failed_items} error={task.last_error or '-'}"
            for task in tasks
        ]

    def _default_date(self) -> date:
        return self._clock().date() - timedelta(days=1)


def _step_lines(result: StepResult) -> list[str]:
    before = result.status_before.value if result.status_before else "-"
    after = result.status_after.value if result.status_after else "-"
    lines = [f"Step {result.task_date.isoformat()}: {before} -> {after} ({result.action})"]
    if result.snapshot is not None:
        lines.append(_counts_line(result.snapshot))
    if result.error:
        lines.append(f"Error: {result.error}")
    return lines


def _counts_line(snapshot: TaskSnapshot) -> str:
    return (
        f"Items: total={snapshot.total} completed={snapshot.completed} "
        f"failed={snapshot.failed} pending={snapshot.pending} "
        f"processing={snapshot.processing}"
    )
