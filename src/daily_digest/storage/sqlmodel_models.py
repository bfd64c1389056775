"""SQLModel ORM tables for daily digest storage."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlmodel import Field, SQLModel


class DailyTask(SQLModel, table=True):
    __tablename__ = "daily_tasks"  # type: ignore[bad-override]

    task_date: date = Field(sa_column=Column(Date(), primary_key=True))
    status: str = Field(index=True)
    total_items: int = 0
    completed_items: int = 0
    failed_items: int = 0
    document: str = Field(
        default="",
        sa_column=Column(Text(), nullable=False, server_default=""),
    )
    last_error: str | None = Field(default=None, sa_column=Column(Text(), nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class DigestItem(SQLModel, table=True):
    __tablename__ = "digest_items"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("task_date", "external_id", name="uq_digest_items_date_external"),
        Index("idx_digest_items_claim", "task_date", "status", "rank"),
    )

    item_id: int | None = Field(default=None, primary_key=True)
    task_date: date = Field(
        sa_column=Column(
            Date(),
            ForeignKey("daily_tasks.task_date", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    external_id: str
    rank: int
    title: str
    url: str = ""
    score: int = 0
    published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    raw_metadata_json: str = Field(
        default="{}",
        sa_column=Column(Text(), nullable=False, server_default="{}"),
    )
    status: str
    retry_count: int = 0
    claim_token: str | None = None
    claimed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    translated_title: str = Field(
        default="",
        sa_column=Column(Text(), nullable=False, server_default=""),
    )
    summary: str = Field(
        default="",
        sa_column=Column(Text(), nullable=False, server_default=""),
    )
    comment_digest: str = Field(
        default="",
        sa_column=Column(Text(), nullable=False, server_default=""),
    )
    degraded: bool = Field(
        default=False,
        sa_column=Column(Boolean(), nullable=False, server_default=text("0")),
    )
    failure_class: str | None = None
    error_summary: str | None = Field(default=None, sa_column=Column(Text(), nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskBatch(SQLModel, table=True):
    __tablename__ = "task_batches"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_batches_date", "task_date", "batch_index"),)

    batch_id: int | None = Field(default=None, primary_key=True)
    task_date: date = Field(
        sa_column=Column(
            Date(),
            ForeignKey("daily_tasks.task_date", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    batch_index: int = Field(sa_column=Column(Integer(), nullable=False))
    item_count: int = 0
    call_count: int = 0
    duration_ms: int = 0
    status: str = Field(sa_column=Column(String(), nullable=False))
    error_summary: str | None = Field(default=None, sa_column=Column(Text(), nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ChannelDelivery(SQLModel, table=True):
    __tablename__ = "channel_deliveries"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("task_date", "channel", name="uq_channel_deliveries_date_channel"),
    )

    delivery_id: int | None = Field(default=None, primary_key=True)
    task_date: date = Field(
        sa_column=Column(
            Date(),
            ForeignKey("daily_tasks.task_date", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    channel: str
    location: str = ""
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
