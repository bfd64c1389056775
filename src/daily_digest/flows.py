"""Prefect flow that runs one state machine step on a fixed interval."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path

from prefect import flow

from daily_digest.config import Settings
from daily_digest.runtime import open_driver, open_stores

logger = logging.getLogger(__name__)


@flow(name="daily_digest_step")
def daily_digest_step(db_path: str | None = None) -> str:
    """One timer-triggered invocation; stage errors are recorded on the task, not raised."""

    settings = Settings.from_env(db_path=Path(db_path) if db_path else None)
    settings.validate()
    with open_stores(settings) as stores, open_driver(settings, stores) as driver:
        result = driver.step()
    before = result.status_before.value if result.status_before else "-"
    after = result.status_after.value if result.status_after else "-"
    logger.info(
        "Step %s: %s -> %s (%s)",
        result.task_date.isoformat(),
        before,
        after,
        result.action,
    )
    if result.error:
        logger.warning("Step %s recorded error: %s", result.task_date.isoformat(), result.error)
    return f"{before} -> {after}"


def serve(*, interval_minutes: int, db_path: Path | None = None) -> None:
    """Block and run :func:`daily_digest_step` every ``interval_minutes``."""

    daily_digest_step.serve(
        name="daily-digest",
        interval=timedelta(minutes=interval_minutes),
        parameters={"db_path": str(db_path) if db_path else None},
    )
