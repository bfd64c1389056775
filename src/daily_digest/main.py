"""CLI entrypoint for daily-digest."""

import logging
from collections.abc import Callable
from datetime import date, datetime
from pathlib import Path
from typing import TypeVar

import rich_click as click

from daily_digest import __version__
from daily_digest.config import Settings
from daily_digest.controllers import (
    DigestCliController,
    ListTasksCommand,
    StatusCommand,
    StepCommand,
    TaskDateCommand,
)
from daily_digest.errors import DigestError
from daily_digest.flows import serve as serve_flow

click.rich_click.USE_MARKDOWN = True
CONTROLLER = DigestCliController()

T = TypeVar("T")

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
_DATE_OPTION = click.option(
    "--date",
    "task_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Task date (YYYY-MM-DD). Defaults to yesterday in UTC.",
)


@click.group()
@click.version_option(version=__version__, prog_name="daily-digest")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Root logger level.",
)
def daily_digest(log_level: str) -> None:
    """Daily digest CLI.

    Every command is one idempotent invocation against the persisted task state.
    """

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@daily_digest.command("step")
@_DB_PATH_OPTION
@_DATE_OPTION
def step(db_path: Path | None, task_date: datetime | None) -> None:
    """Run one state machine step (fetch, one batch, or publish)."""

    report = _run(
        lambda: CONTROLLER.step(StepCommand(db_path=db_path, task_date=_as_date(task_date))),
    )
    _emit_lines(report.lines)
    if not report.success:
        raise click.ClickException("Step failed; the task status was left unchanged.")


@daily_digest.command("status")
@_DB_PATH_OPTION
@_DATE_OPTION
@click.option(
    "--recent-batches",
    type=click.IntRange(min=0, max=50),
    default=5,
    show_default=True,
    help="How many latest batches to display.",
)
def status(db_path: Path | None, task_date: datetime | None, recent_batches: int) -> None:
    """Show the task status, item counts and batch statistics."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.status(
                StatusCommand(
                    db_path=db_path,
                    task_date=_as_date(task_date),
                    recent_batches=recent_batches,
                ),
            ),
        ),
    )


@daily_digest.command("retry-failed")
@_DB_PATH_OPTION
@_DATE_OPTION
def retry_failed(db_path: Path | None, task_date: datetime | None) -> None:
    """Return FAILED items to PENDING with a fresh retry budget."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.retry_failed(
                TaskDateCommand(db_path=db_path, task_date=_as_date(task_date)),
            ),
        ),
    )


@daily_digest.command("force-publish")
@_DB_PATH_OPTION
@_DATE_OPTION
def force_publish(db_path: Path | None, task_date: datetime | None) -> None:
    """Publish whatever is finished now, even with items still pending."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.force_publish(
                TaskDateCommand(db_path=db_path, task_date=_as_date(task_date)),
            ),
        ),
    )


@daily_digest.command("tasks")
@_DB_PATH_OPTION
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=365),
    default=10,
    show_default=True,
    help="Max number of tasks to print.",
)
def tasks(db_path: Path | None, limit: int) -> None:
    """List recent daily tasks."""

    _emit_lines(_run(lambda: CONTROLLER.list_tasks(ListTasksCommand(db_path=db_path, limit=limit))))


@daily_digest.command("serve")
@_DB_PATH_OPTION
@click.option(
    "--interval-minutes",
    type=click.IntRange(min=1),
    default=None,
    help="Trigger interval. Defaults to DAILY_DIGEST_INTERVAL_MINUTES (10).",
)
def serve(db_path: Path | None, interval_minutes: int | None) -> None:
    """Serve a Prefect deployment that runs one step on a fixed interval."""

    settings = Settings.from_env(db_path=db_path)
    _run(settings.validate)
    serve_flow(
        interval_minutes=interval_minutes or settings.tasks.interval_minutes,
        db_path=db_path,
    )


def _run(action: Callable[[], T]) -> T:
    try:
        return action()
    except (DigestError, LookupError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _as_date(value: datetime | None) -> date | None:
    return value.date() if value is not None else None


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    daily_digest()
