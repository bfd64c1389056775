"""Persistent task and item stores backed by SQLModel + SQLite.

Every mutating operation starts with its conditional write so that SQLite
takes the write lock before anything is read; overlapping invocations then
serialize on the busy timeout instead of failing on a stale read snapshot.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta
from uuid import uuid4

from sqlalchemy import and_, case, exists, func, or_
from sqlalchemy import select as sa_select
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from daily_digest.storage.common import to_db_datetime, to_utc_aware_datetime, utc_now
from daily_digest.storage.sqlmodel_models import (
    ChannelDelivery,
    DailyTask,
    DigestItem,
    TaskBatch,
)
from daily_digest.tasks.models import (
    RETRYABLE_ITEM_FAILURES,
    BatchRecord,
    BatchStatistics,
    BatchStatus,
    DailyTaskStatus,
    DailyTaskView,
    FailureClass,
    ItemOutcome,
    ItemStatus,
    ItemView,
    RawItem,
    TaskSnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRY_COUNT = 3
_RESETTABLE_TASK_STATUSES = (
    DailyTaskStatus.LIST_FETCHED.value,
    DailyTaskStatus.PROCESSING.value,
)
_ERROR_SUMMARY_MAX_CHARS = 1_000
_ABANDONED_CLAIM_SUMMARY = "claim abandoned: no result before the stale window elapsed"


class TaskStore:
    """Daily task persistence: one row per calendar date."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_or_create_task(self, task_date: date) -> tuple[DailyTaskView, bool]:
        """Insert-or-fetch the task for ``task_date``; the flag is True when it was created."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sqlite_insert(DailyTask)
                .values(
                    task_date=task_date,
                    status=DailyTaskStatus.INIT.value,
                    total_items=0,
                    completed_items=0,
                    failed_items=0,
                    document="",
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=["task_date"]),
            )
            created = result.rowcount == 1
            row = session.exec(select(DailyTask).where(DailyTask.task_date == task_date)).one()
            view = _to_task_view(row)
            session.commit()
        if created:
            logger.info("Created daily task %s", task_date.isoformat())
        return view, created

    def get_task(self, task_date: date) -> DailyTaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(DailyTask).where(DailyTask.task_date == task_date),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_tasks(self, *, limit: int = 10) -> list[DailyTaskView]:
        """Most recent tasks first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(DailyTask).order_by(col(DailyTask.task_date).desc()).limit(limit),
            ).all()
            return [_to_task_view(row) for row in rows]

    def transition(
        self,
        task_date: date,
        from_status: DailyTaskStatus,
        to_status: DailyTaskStatus,
    ) -> bool:
        """Compare-and-set the task status; False when another caller got there first."""

        if not from_status.can_advance_to(to_status):
            raise ValueError(
                f"Illegal task transition {from_status.value} -> {to_status.value}",
            )
        now = to_db_datetime(utc_now())
        values: dict[str, object] = {
            "status": to_status.value,
            "updated_at": now,
            "last_error": None,
        }
        if to_status == DailyTaskStatus.PUBLISHED:
            values["published_at"] = now
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(DailyTask)
                .where(
                    col(DailyTask.task_date) == task_date,
                    col(DailyTask.status) == from_status.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        logger.info(
            "Task %s moved %s -> %s",
            task_date.isoformat(),
            from_status.value,
            to_status.value,
        )
        return True

    def update_status(self, task_date: date, new_status: DailyTaskStatus) -> bool:
        """Move the task to ``new_status`` from whatever it is now.

        Backward moves are rejected; moving to the current status is a no-op.
        """

        current = self.get_task(task_date)
        if current is None:
            raise LookupError(f"No daily task for {task_date.isoformat()}")
        if current.status == new_status:
            return False
        return self.transition(task_date, current.status, new_status)

    def archive_stale_task(self, task_date: date) -> bool:
        """Archive a task that never reached PUBLISHED; terminal tasks are left alone."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(DailyTask)
                .where(
                    col(DailyTask.task_date) == task_date,
                    col(DailyTask.status).not_in(
                        [DailyTaskStatus.PUBLISHED.value, DailyTaskStatus.ARCHIVED.value],
                    ),
                )
                .values(status=DailyTaskStatus.ARCHIVED.value, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        return True

    def stale_task_dates(self, before: date) -> list[date]:
        """Dates older than ``before`` whose task is neither published nor archived."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(DailyTask.task_date)
                .where(
                    col(DailyTask.task_date) < before,
                    col(DailyTask.status).not_in(
                        [DailyTaskStatus.PUBLISHED.value, DailyTaskStatus.ARCHIVED.value],
                    ),
                )
                .order_by(col(DailyTask.task_date).asc()),
            ).all()
            return list(rows)

    def get_task_snapshot(self, task_date: date) -> TaskSnapshot | None:
        """Task status plus live item counts, or None when no task exists."""

        with Session(self.engine) as session:
            row = session.exec(
                select(DailyTask).where(DailyTask.task_date == task_date),
            ).one_or_none()
            if row is None:
                return None
            counts = _status_counts(session, task_date)
            return TaskSnapshot(
                task_date=row.task_date,
                status=DailyTaskStatus(row.status),
                total=row.total_items,
                completed=row.completed_items,
                failed=row.failed_items,
                pending=counts[ItemStatus.PENDING],
                processing=counts[ItemStatus.PROCESSING],
                created_at=to_utc_aware_datetime(row.created_at),
                updated_at=to_utc_aware_datetime(row.updated_at),
                published_at=(
                    to_utc_aware_datetime(row.published_at)
                    if row.published_at is not None
                    else None
                ),
                last_error=row.last_error,
            )

    def record_stage_error(self, task_date: date, error_summary: str) -> None:
        """Remember the last stage failure without touching the status."""

        with Session(self.engine) as session:
            session.exec(
                sa_update(DailyTask)
                .where(col(DailyTask.task_date) == task_date)
                .values(
                    last_error=error_summary[:_ERROR_SUMMARY_MAX_CHARS],
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()

    def cache_document(self, task_date: date, document: str) -> None:
        """Store the rendered document so a publish retry reuses it."""

        with Session(self.engine) as session:
            session.exec(
                sa_update(DailyTask)
                .where(col(DailyTask.task_date) == task_date)
                .values(document=document, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()

    def record_delivery(self, task_date: date, *, channel: str, location: str) -> None:
        """Remember that ``channel`` already received this date's document."""

        with Session(self.engine) as session:
            session.exec(
                sqlite_insert(ChannelDelivery)
                .values(
                    task_date=task_date,
                    channel=channel,
                    location=location,
                    created_at=to_db_datetime(utc_now()),
                )
                .on_conflict_do_nothing(index_elements=["task_date", "channel"]),
            )
            session.commit()

    def delivered_channels(self, task_date: date) -> dict[str, str]:
        """Channel name -> delivery location for every recorded delivery."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(ChannelDelivery).where(ChannelDelivery.task_date == task_date),
            ).all()
            return {row.channel: row.location for row in rows}

    def record_batch(  # noqa: PLR0913
        self,
        task_date: date,
        *,
        item_count: int,
        call_count: int,
        duration_ms: int,
        status: BatchStatus,
        error_summary: str | None = None,
    ) -> BatchRecord:
        """Append one row to the batch ledger; indexes are 1-based per date."""

        now = to_db_datetime(utc_now())
        next_index = (
            sa_select(func.coalesce(func.max(col(TaskBatch.batch_index)), 0) + 1)
            .where(col(TaskBatch.task_date) == task_date)
            .scalar_subquery()
        )
        with Session(self.engine) as session:
            result = session.exec(
                sqlite_insert(TaskBatch).values(
                    task_date=task_date,
                    batch_index=next_index,
                    item_count=item_count,
                    call_count=call_count,
                    duration_ms=duration_ms,
                    status=status.value,
                    error_summary=error_summary,
                    created_at=now,
                ),
            )
            batch_id = result.inserted_primary_key[0]
            row = session.exec(select(TaskBatch).where(TaskBatch.batch_id == batch_id)).one()
            record = _to_batch_record(row)
            session.commit()
            return record

    def batch_statistics(self, task_date: date, *, recent: int = 5) -> BatchStatistics:
        """Totals over the batch ledger plus the latest ``recent`` batches."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskBatch)
                .where(TaskBatch.task_date == task_date)
                .order_by(col(TaskBatch.batch_index).desc()),
            ).all()
            by_status = {status.value: 0 for status in BatchStatus}
            for row in rows:
                by_status[row.status] = by_status.get(row.status, 0) + 1
            return BatchStatistics(
                task_date=task_date,
                batches=len(rows),
                items=sum(row.item_count for row in rows),
                calls=sum(row.call_count for row in rows),
                total_duration_ms=sum(row.duration_ms for row in rows),
                by_status=by_status,
                recent=[_to_batch_record(row) for row in rows[:recent]],
            )


class ItemStore:
    """Per-item enrichment state, scoped to a task date."""

    def __init__(self, engine: Engine, *, max_retry_count: int = DEFAULT_MAX_RETRY_COUNT) -> None:
        if max_retry_count < 1:
            raise ValueError("max_retry_count must be >= 1")
        self.engine = engine
        self.max_retry_count = max_retry_count

    def bulk_insert(self, task_date: date, items: Sequence[RawItem]) -> bool:
        """Create every item for the date and move the task INIT -> LIST_FETCHED.

        Both happen in one transaction.  Returns False, writing nothing, when
        the task has already left INIT.
        """

        unique_items = _dedupe_by_external_id(items)
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(DailyTask)
                .where(
                    col(DailyTask.task_date) == task_date,
                    col(DailyTask.status) == DailyTaskStatus.INIT.value,
                )
                .values(
                    status=DailyTaskStatus.LIST_FETCHED.value,
                    total_items=len(unique_items),
                    completed_items=0,
                    failed_items=0,
                    last_error=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.add_all(
                [
                    DigestItem(
                        task_date=task_date,
                        external_id=item.external_id,
                        rank=item.rank,
                        title=item.title,
                        url=item.url,
                        score=item.score,
                        published_at=(
                            to_db_datetime(item.published_at)
                            if item.published_at is not None
                            else None
                        ),
                        raw_metadata_json=json.dumps(
                            item.metadata,
                            ensure_ascii=False,
                            sort_keys=True,
                            default=str,
                        ),
                        status=ItemStatus.PENDING.value,
                        retry_count=0,
                        created_at=now,
                        updated_at=now,
                    )
                    for item in unique_items
                ],
            )
            session.commit()
        logger.info(
            "Stored %d items for %s (task -> %s)",
            len(unique_items),
            task_date.isoformat(),
            DailyTaskStatus.LIST_FETCHED.value,
        )
        return True

    def claim_batch(
        self,
        task_date: date,
        limit: int,
        *,
        stale_after: timedelta,
        now: datetime | None = None,
    ) -> list[ItemView]:
        """Atomically move up to ``limit`` claimable items to PROCESSING.

        Claimable means PENDING, or PROCESSING with a claim older than
        ``stale_after``.  Returned items carry this call's claim token, and
        concurrent callers never receive the same item.

        An abandoned claim counts as a failed attempt: a reclaimed item has
        its ``retry_count`` increased, and a stale item whose budget is spent
        becomes FAILED instead of being handed out again.
        """

        if limit <= 0:
            return []
        claimed_at = to_db_datetime(now or utc_now())
        stale_before = to_db_datetime((now or utc_now()) - stale_after)
        claim_token = str(uuid4())
        is_stale = and_(
            col(DigestItem.status) == ItemStatus.PROCESSING.value,
            col(DigestItem.claimed_at) < stale_before,
        )
        candidate_ids = (
            sa_select(col(DigestItem.item_id))
            .where(
                col(DigestItem.task_date) == task_date,
                or_(col(DigestItem.status) == ItemStatus.PENDING.value, is_stale),
            )
            .order_by(col(DigestItem.rank).asc(), col(DigestItem.item_id).asc())
            .limit(limit)
        )
        with Session(self.engine) as session:
            expired = self._fail_exhausted_claims(session, task_date, is_stale, claimed_at)
            result = session.exec(
                sa_update(DigestItem)
                .where(col(DigestItem.item_id).in_(candidate_ids))
                .values(
                    status=ItemStatus.PROCESSING.value,
                    retry_count=case(
                        (
                            col(DigestItem.status) == ItemStatus.PROCESSING.value,
                            col(DigestItem.retry_count) + 1,
                        ),
                        else_=col(DigestItem.retry_count),
                    ),
                    claim_token=claim_token,
                    claimed_at=claimed_at,
                    updated_at=claimed_at,
                ),
            )
            if result.rowcount == 0:
                if expired:
                    session.commit()
                else:
                    session.rollback()
                return []
            rows = session.exec(
                select(DigestItem)
                .where(DigestItem.claim_token == claim_token)
                .order_by(col(DigestItem.rank).asc()),
            ).all()
            claimed = [_to_item_view(row) for row in rows]
            session.commit()
        logger.debug("Claimed %d items for %s", len(claimed), task_date.isoformat())
        return claimed

    def _fail_exhausted_claims(
        self,
        session: Session,
        task_date: date,
        is_stale: object,
        now: datetime,
    ) -> int:
        result = session.exec(
            sa_update(DigestItem)
            .where(
                col(DigestItem.task_date) == task_date,
                is_stale,
                col(DigestItem.retry_count) + 1 >= self.max_retry_count,
            )
            .values(
                status=ItemStatus.FAILED.value,
                retry_count=col(DigestItem.retry_count) + 1,
                translated_title="",
                summary="",
                comment_digest="",
                degraded=False,
                failure_class=FailureClass.UNEXPECTED.value,
                error_summary=_ABANDONED_CLAIM_SUMMARY,
                claim_token=None,
                claimed_at=None,
                updated_at=now,
            ),
        )
        expired = result.rowcount
        if expired:
            session.exec(
                sa_update(DailyTask)
                .where(col(DailyTask.task_date) == task_date)
                .values(
                    failed_items=col(DailyTask.failed_items) + expired,
                    updated_at=now,
                ),
            )
            logger.warning(
                "Marked %d abandoned items FAILED for %s",
                expired,
                task_date.isoformat(),
            )
        return expired

    def record_result(
        self,
        item_id: int,
        claim_token: str,
        outcome: ItemOutcome,
    ) -> ItemStatus | None:
        """Write one enrichment outcome back and keep the task counters in step.

        Returns the item's new status, or None when the claim is no longer
        ours (the item was reclaimed as stale and the write is dropped).
        """

        if outcome.succeeded:
            return self._record_success(item_id, claim_token, outcome)
        return self._record_failure(item_id, claim_token, outcome)

    def _record_success(
        self,
        item_id: int,
        claim_token: str,
        outcome: ItemOutcome,
    ) -> ItemStatus | None:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(DigestItem)
                .where(*_claimed_by(item_id, claim_token))
                .values(
                    status=ItemStatus.COMPLETED.value,
                    translated_title=outcome.translated_title,
                    summary=outcome.summary,
                    comment_digest=outcome.comment_digest,
                    degraded=outcome.degraded,
                    failure_class=None,
                    error_summary=None,
                    claim_token=None,
                    claimed_at=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            task_date = _item_task_date(session, item_id)
            session.exec(
                sa_update(DailyTask)
                .where(col(DailyTask.task_date) == task_date)
                .values(
                    completed_items=col(DailyTask.completed_items) + 1,
                    updated_at=now,
                ),
            )
            session.commit()
        return ItemStatus.COMPLETED

    def _record_failure(
        self,
        item_id: int,
        claim_token: str,
        outcome: ItemOutcome,
    ) -> ItemStatus | None:
        now = to_db_datetime(utc_now())
        failure_class = outcome.failure_class or FailureClass.UNEXPECTED
        if failure_class in RETRYABLE_ITEM_FAILURES:
            next_status: object = case(
                (
                    col(DigestItem.retry_count) + 1 >= self.max_retry_count,
                    ItemStatus.FAILED.value,
                ),
                else_=ItemStatus.PENDING.value,
            )
        else:
            next_status = ItemStatus.FAILED.value
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(DigestItem)
                .where(*_claimed_by(item_id, claim_token))
                .values(
                    status=next_status,
                    retry_count=col(DigestItem.retry_count) + 1,
                    translated_title="",
                    summary="",
                    comment_digest="",
                    degraded=False,
                    failure_class=failure_class.value,
                    error_summary=(outcome.error_summary or "")[:_ERROR_SUMMARY_MAX_CHARS],
                    claim_token=None,
                    claimed_at=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            row = session.exec(select(DigestItem).where(DigestItem.item_id == item_id)).one()
            new_status = ItemStatus(row.status)
            if new_status == ItemStatus.FAILED:
                session.exec(
                    sa_update(DailyTask)
                    .where(col(DailyTask.task_date) == row.task_date)
                    .values(
                        failed_items=col(DailyTask.failed_items) + 1,
                        updated_at=now,
                    ),
                )
            session.commit()
        return new_status

    def counts_by_status(self, task_date: date) -> dict[ItemStatus, int]:
        with Session(self.engine) as session:
            return _status_counts(session, task_date)

    def list_items(
        self,
        task_date: date,
        *,
        statuses: Iterable[ItemStatus] | None = None,
    ) -> list[ItemView]:
        """Items for the date ordered by rank, optionally filtered by status."""

        statement = select(DigestItem).where(DigestItem.task_date == task_date)
        if statuses is not None:
            statement = statement.where(
                col(DigestItem.status).in_([status.value for status in statuses]),
            )
        with Session(self.engine) as session:
            rows = session.exec(
                statement.order_by(col(DigestItem.rank).asc(), col(DigestItem.item_id).asc()),
            ).all()
            return [_to_item_view(row) for row in rows]

    def reset_failed(self, task_date: date) -> int:
        """Give every FAILED item a fresh retry budget.

        Only allowed while the task is still collecting results (LIST_FETCHED
        or PROCESSING); returns how many items went back to PENDING.
        """

        now = to_db_datetime(utc_now())
        task_is_open = exists().where(
            col(DailyTask.task_date) == task_date,
            col(DailyTask.status).in_(_RESETTABLE_TASK_STATUSES),
        )
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(DigestItem)
                .where(
                    col(DigestItem.task_date) == task_date,
                    col(DigestItem.status) == ItemStatus.FAILED.value,
                    task_is_open,
                )
                .values(
                    status=ItemStatus.PENDING.value,
                    retry_count=0,
                    failure_class=None,
                    error_summary=None,
                    updated_at=now,
                ),
            )
            reset = result.rowcount
            if reset == 0:
                session.rollback()
                return 0
            session.exec(
                sa_update(DailyTask)
                .where(col(DailyTask.task_date) == task_date)
                .values(
                    failed_items=func.max(col(DailyTask.failed_items) - reset, 0),
                    updated_at=now,
                ),
            )
            session.commit()
        logger.info("Reset %d failed items for %s", reset, task_date.isoformat())
        return reset


def _claimed_by(item_id: int, claim_token: str) -> tuple[object, ...]:
    return (
        col(DigestItem.item_id) == item_id,
        col(DigestItem.status) == ItemStatus.PROCESSING.value,
        col(DigestItem.claim_token) == claim_token,
    )


def _item_task_date(session: Session, item_id: int) -> date:
    return session.exec(select(DigestItem.task_date).where(DigestItem.item_id == item_id)).one()


def _status_counts(session: Session, task_date: date) -> dict[ItemStatus, int]:
    counts = {status: 0 for status in ItemStatus}
    rows = session.exec(
        select(col(DigestItem.status), func.count())
        .where(DigestItem.task_date == task_date)
        .group_by(col(DigestItem.status)),
    ).all()
    for status, count in rows:
        counts[ItemStatus(status)] = int(count)
    return counts


def _dedupe_by_external_id(items: Sequence[RawItem]) -> list[RawItem]:
    seen: set[str] = set()
    unique: list[RawItem] = []
    for item in items:
        if item.external_id in seen:
            logger.warning("Dropping duplicate item %s from daily list", item.external_id)
            continue
        seen.add(item.external_id)
        unique.append(item)
    return unique


def _to_task_view(row: DailyTask) -> DailyTaskView:
    return DailyTaskView(
        task_date=row.task_date,
        status=DailyTaskStatus(row.status),
        total_items=row.total_items,
        completed_items=row.completed_items,
        failed_items=row.failed_items,
        document=row.document,
        last_error=row.last_error,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        published_at=(
            to_utc_aware_datetime(row.published_at) if row.published_at is not None else None
        ),
    )


def _to_item_view(row: DigestItem) -> ItemView:
    if row.item_id is None:
        raise ValueError("Item row has no primary key")
    return ItemView(
        item_id=row.item_id,
        task_date=row.task_date,
        external_id=row.external_id,
        rank=row.rank,
        title=row.title,
        url=row.url,
        score=row.score,
        published_at=(
            to_utc_aware_datetime(row.published_at) if row.published_at is not None else None
        ),
        metadata=json.loads(row.raw_metadata_json or "{}"),
        status=ItemStatus(row.status),
        retry_count=row.retry_count,
        claim_token=row.claim_token,
        claimed_at=to_utc_aware_datetime(row.claimed_at) if row.claimed_at is not None else None,
        translated_title=row.translated_title,
        summary=row.summary,
        comment_digest=row.comment_digest,
        degraded=row.degraded,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        error_summary=row.error_summary,
    )


def _to_batch_record(row: TaskBatch) -> BatchRecord:
    return BatchRecord(
        task_date=row.task_date,
        batch_index=row.batch_index,
        item_count=row.item_count,
        call_count=row.call_count,
        duration_ms=row.duration_ms,
        status=BatchStatus(row.status),
        error_summary=row.error_summary,
        created_at=to_utc_aware_datetime(row.created_at),
    )
