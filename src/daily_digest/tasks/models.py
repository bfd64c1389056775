"""Domain models for the daily task state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class DailyTaskStatus(str, Enum):
    """Durable daily task stages, declared in forward order."""

    INIT = "init"
    LIST_FETCHED = "list_fetched"
    PROCESSING = "processing"
    AGGREGATING = "aggregating"
    PUBLISHED = "published"
    ARCHIVED = "archived"

    @property
    def order(self) -> int:
        return _STATUS_ORDER[self]

    @property
    def is_terminal(self) -> bool:
        return self in {DailyTaskStatus.PUBLISHED, DailyTaskStatus.ARCHIVED}

    def can_advance_to(self, target: DailyTaskStatus) -> bool:
        """Forward-only moves, plus the archive exit for anything not published."""

        if target == DailyTaskStatus.ARCHIVED:
            return not self.is_terminal
        if self.is_terminal:
            return False
        return target.order > self.order


_STATUS_ORDER = {status: index for index, status in enumerate(DailyTaskStatus)}


class ItemStatus(str, Enum):
    """Per-item enrichment lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy."""

    NETWORK_TIMEOUT = "network_timeout"
    RATE_LIMITED = "rate_limited"
    OUTPUT_INVALID = "output_invalid"
    CONTENT_FETCH = "content_fetch"
    PROVIDER_NON_RETRYABLE = "provider_non_retryable"
    PUBLISH_FAILED = "publish_failed"
    UNEXPECTED = "unexpected"


RETRYABLE_ITEM_FAILURES = frozenset(
    {
        FailureClass.NETWORK_TIMEOUT,
        FailureClass.RATE_LIMITED,
        FailureClass.UNEXPECTED,
    },
)


class BatchStatus(str, Enum):
    """Outcome of one processed batch."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(slots=True)
class RawItem:
    """One entry of the daily list as returned by a content source."""

    external_id: str
    rank: int
    title: str
    url: str = ""
    score: int = 0
    published_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DailyTaskView:
    """Readable daily task row."""

    task_date: date
    status: DailyTaskStatus
    total_items: int
    completed_items: int
    failed_items: int
    document: str
    last_error: str | None
    created_at: datetime
    updated_at: datetime
    published_at: datetime | None


@dataclass(slots=True)
class TaskSnapshot:
    """Task status plus live item counts, passed through one invocation."""

    task_date: date
    status: DailyTaskStatus
    total: int
    completed: int
    failed: int
    pending: int
    processing: int
    created_at: datetime
    updated_at: datetime
    published_at: datetime | None = None
    last_error: str | None = None

    @property
    def drained(self) -> bool:
        """True once nothing is left to enrich."""

        return self.pending == 0 and self.processing == 0


@dataclass(slots=True)
class ItemView:
    """Readable item row."""

    item_id: int
    task_date: date
    external_id: str
    rank: int
    title: str
    url: str
    score: int
    published_at: datetime | None
    metadata: dict[str, Any]
    status: ItemStatus
    retry_count: int
    claim_token: str | None
    claimed_at: datetime | None
    translated_title: str
    summary: str
    comment_digest: str
    degraded: bool
    failure_class: FailureClass | None
    error_summary: str | None


@dataclass(slots=True)
class ItemOutcome:
    """Enrichment result for one claimed item, written back by the batch processor."""

    succeeded: bool
    translated_title: str = ""
    summary: str = ""
    comment_digest: str = ""
    degraded: bool = False
    failure_class: FailureClass | None = None
    error_summary: str | None = None

    @classmethod
    def failure(cls, failure_class: FailureClass, error_summary: str) -> ItemOutcome:
        return cls(succeeded=False, failure_class=failure_class, error_summary=error_summary)


@dataclass(slots=True)
class BatchRecord:
    """Statistics for one processed batch."""

    task_date: date
    batch_index: int
    item_count: int
    call_count: int
    duration_ms: int
    status: BatchStatus
    error_summary: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class BatchSummary:
    """What one batch invocation did to the claimed items."""

    task_date: date
    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    stale: int = 0
    call_count: int = 0
    duration_ms: int = 0
    status: BatchStatus = BatchStatus.SUCCESS


@dataclass(slots=True)
class BatchStatistics:
    """Aggregated batch ledger for one task date."""

    task_date: date
    batches: int
    items: int
    calls: int
    total_duration_ms: int
    by_status: dict[str, int]
    recent: list[BatchRecord]


@dataclass(slots=True)
class StepResult:
    """Outcome of one state machine invocation."""

    task_date: date
    status_before: DailyTaskStatus | None
    status_after: DailyTaskStatus | None
    action: str
    snapshot: TaskSnapshot | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
