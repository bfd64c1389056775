"""Claim-based batch processing of pending items."""

from __future__ import annotations

import logging
import time
from datetime import date, timedelta

from daily_digest.enrichment.gateway import EnrichmentGateway, EnrichmentInput, EnrichmentOutput
from daily_digest.tasks.models import (
    BatchStatus,
    BatchSummary,
    FailureClass,
    ItemOutcome,
    ItemStatus,
    ItemView,
)
from daily_digest.tasks.store import ItemStore, TaskStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 6


class BatchProcessor:
    """Claims a slice of items, enriches it and writes every result back individually."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        task_store: TaskStore,
        item_store: ItemStore,
        gateway: EnrichmentGateway,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: int = 5,
        stale_after: timedelta = timedelta(minutes=15),
        max_outbound_calls: int = 50,
    ) -> None:
        self.task_store = task_store
        self.item_store = item_store
        self.gateway = gateway
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.stale_after = stale_after
        self.max_outbound_calls = max_outbound_calls

    def process(self, task_date: date) -> BatchSummary:
        """Run one batch; an empty claim does nothing and records no ledger row."""

        started = time.monotonic()
        claimed = self.item_store.claim_batch(
            task_date,
            self.batch_size,
            stale_after=self.stale_after,
        )
        summary = BatchSummary(task_date=task_date, claimed=len(claimed))
        if not claimed:
            return summary

        claims: dict[int, ItemView] = {item.item_id: item for item in claimed}
        inputs = [
            EnrichmentInput(
                item_id=item.item_id,
                external_id=item.external_id,
                title=item.title,
                url=item.url,
                metadata=item.metadata,
            )
            for item in claimed
        ]
        error_summary: str | None = None
        try:
            outputs = self.gateway.enrich_batch(inputs, concurrency=self.concurrency)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Enrichment gateway crashed for %s", task_date.isoformat())
            error_summary = f"{type(exc).__name__}: {exc}"
            outputs = [EnrichmentOutput.failure(item.item_id, exc) for item in claimed]

        for output in outputs:
            item = claims.pop(output.item_id, None)
            if item is None:
                logger.error("Enrichment returned unknown item id %s, ignoring", output.item_id)
                continue
            summary.call_count += output.calls
            self._write_back(item, _to_outcome(output), summary)
        for item in claims.values():
            logger.error("No enrichment output for item %s", item.external_id)
            self._write_back(
                item,
                ItemOutcome.failure(FailureClass.UNEXPECTED, "missing enrichment output"),
                summary,
            )

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        summary.status = _batch_status(summary)
        self.task_store.record_batch(
            task_date,
            item_count=summary.claimed,
            call_count=summary.call_count,
            duration_ms=summary.duration_ms,
            status=summary.status,
            error_summary=error_summary,
        )
        if summary.call_count > self.max_outbound_calls:
            logger.warning(
                "Batch for %s made %d outbound calls (budget %d); consider a smaller batch size",
                task_date.isoformat(),
                summary.call_count,
                self.max_outbound_calls,
            )
        logger.info(
            "Batch for %s: claimed=%d completed=%d retried=%d failed=%d calls=%d in %dms",
            task_date.isoformat(),
            summary.claimed,
            summary.completed,
            summary.retried,
            summary.failed,
            summary.call_count,
            summary.duration_ms,
        )
        return summary

    def _write_back(self, item: ItemView, outcome: ItemOutcome, summary: BatchSummary) -> None:
        if item.claim_token is None:
            raise ValueError(f"Claimed item {item.item_id} has no claim token")
        status = self.item_store.record_result(item.item_id, item.claim_token, outcome)
        if status is None:
            summary.stale += 1
            logger.warning("Claim on item %s expired; result dropped", item.external_id)
        elif status == ItemStatus.COMPLETED:
            summary.completed += 1
        elif status == ItemStatus.PENDING:
            summary.retried += 1
            logger.info("Item %s will be retried: %s", item.external_id, outcome.error_summary)
        else:
            summary.failed += 1
            logger.warning("Item %s failed: %s", item.external_id, outcome.error_summary)


def _to_outcome(output: EnrichmentOutput) -> ItemOutcome:
    if output.failed:
        return ItemOutcome.failure(
            output.failure_class or FailureClass.UNEXPECTED,
            output.error or "enrichment failed",
        )
    return ItemOutcome(
        succeeded=True,
        translated_title=output.translated_title,
        summary=output.summary,
        comment_digest=output.comment_digest,
        degraded=output.degraded,
    )


def _batch_status(summary: BatchSummary) -> BatchStatus:
    if summary.completed == summary.claimed:
        return BatchStatus.SUCCESS
    if summary.completed == 0:
        return BatchStatus.FAILED
    return BatchStatus.PARTIAL
