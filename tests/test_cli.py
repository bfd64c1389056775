from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import allure
import httpx
import pytest
from click.testing import CliRunner

from daily_digest import main as cli
from daily_digest.controllers import DigestCliController
from daily_digest.main import daily_digest

pytestmark = [
    allure.epic("Daily Task Lifecycle"),
    allure.feature("Manual Triggers"),
]

NOW = datetime(2026, 2, 2, 6, 0, tzinfo=UTC)
_HITS = [
    {
        "objectID": "101",
        "title": "Story one",
        "url": "https://example.com/one",
        "points": 50,
        "num_comments": 0,
        "created_at_i": int(datetime(2026, 2, 1, 8, 0, tzinfo=UTC).timestamp()),
    },
    {
        "objectID": "102",
        "title": "Story two",
        "url": "https://example.com/two",
        "points": 300,
        "num_comments": 0,
        "created_at_i": int(datetime(2026, 2, 1, 9, 0, tzinfo=UTC).timestamp()),
    },
]


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "hn.algolia.com":
        return httpx.Response(200, json={"hits": _HITS, "nbPages": 1})
    if request.url.path.endswith("/chat/completions"):
        return httpx.Response(200, json={"choices": [{"message": {"content": "每日摘要"}}]})
    return httpx.Response(
        200,
        html="<html><body><article><p>Plain article body.</p></article></body></html>",
    )


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("DAILY_DIGEST_LLM_API_KEY", "test-key")
    monkeypatch.setenv("DAILY_DIGEST_CHANNELS", "local")
    monkeypatch.setenv("DAILY_DIGEST_OUTPUT_DIR", str(tmp_path / "out"))
    for name in ("DAILY_DIGEST_PRIMARY_CHANNEL", "DAILY_DIGEST_CRAWLER_API_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        cli,
        "CONTROLLER",
        DigestCliController(transport=httpx.MockTransport(_handler), clock=lambda: NOW),
    )
    return tmp_path / "digest.db"


def test_steps_run_the_task_through_to_a_published_file(cli_env: Path, tmp_path: Path) -> None:
    runner = CliRunner()

    outputs = [
        runner.invoke(daily_digest, ["step", "--db-path", str(cli_env)]) for _ in range(3)
    ]

    assert [result.exit_code for result in outputs] == [0, 0, 0], outputs[-1].output
    assert "Step 2026-02-01: init -> list_fetched (fetched 2 items from hackernews)" in (
        outputs[0].output
    )
    assert "processing -> aggregating" not in outputs[1].output
    assert "list_fetched -> aggregating" in outputs[1].output
    assert "aggregating -> published (published 2 entries to local)" in outputs[2].output

    document = (tmp_path / "out" / "2026-02-01-daily.md").read_text(encoding="utf-8")
    assert document.index("## 1. ") < document.index("Story two") < document.index("Story one")

    status = runner.invoke(daily_digest, ["status", "--db-path", str(cli_env)])
    assert status.exit_code == 0, status.output
    assert "Status: published" in status.output
    assert "Items: total=2 completed=2 failed=0 pending=0 processing=0" in status.output
    assert "Batches: count=1 items=2" in status.output
    assert "delivered local:" in status.output

    again = runner.invoke(daily_digest, ["step", "--db-path", str(cli_env)])
    assert again.exit_code == 0
    assert "published -> published (noop)" in again.output


def test_status_and_tasks_without_any_task(cli_env: Path) -> None:
    runner = CliRunner()

    status = runner.invoke(
        daily_digest,
        ["status", "--db-path", str(cli_env), "--date", "2026-01-01"],
    )
    tasks = runner.invoke(daily_digest, ["tasks", "--db-path", str(cli_env)])

    assert status.exit_code == 0
    assert status.output.strip() == "No task for 2026-01-01"
    assert tasks.output.strip() == "No tasks yet."


def test_retry_failed_and_tasks_after_list_fetch(cli_env: Path) -> None:
    runner = CliRunner()
    runner.invoke(daily_digest, ["step", "--db-path", str(cli_env), "--date", "2026-02-01"])

    retry = runner.invoke(daily_digest, ["retry-failed", "--db-path", str(cli_env)])
    tasks = runner.invoke(daily_digest, ["tasks", "--db-path", str(cli_env), "--limit", "1"])

    assert retry.exit_code == 0, retry.output
    assert "Reset 0 failed items for 2026-02-01" in retry.output
    assert tasks.output.strip() == (
        "2026-02-01 status=list_fetched total=2 completed=0 failed=0 error=-"
    )


def test_force_publish_before_enrichment_publishes_empty_digest(
    cli_env: Path,
    tmp_path: Path,
) -> None:
    runner = CliRunner()
    runner.invoke(daily_digest, ["step", "--db-path", str(cli_env)])

    result = runner.invoke(daily_digest, ["force-publish", "--db-path", str(cli_env)])

    assert result.exit_code == 0, result.output
    assert "Published 2026-02-01 with 0 entries" in result.output
    document = (tmp_path / "out" / "2026-02-01-daily.md").read_text(encoding="utf-8")
    assert "No stories for this day." in document


def test_force_publish_errors_are_reported_without_traceback(cli_env: Path) -> None:
    result = CliRunner().invoke(daily_digest, ["force-publish", "--db-path", str(cli_env)])

    assert result.exit_code == 1
    assert "No daily task for 2026-02-01" in result.output


def test_step_requires_llm_api_key(cli_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DAILY_DIGEST_LLM_API_KEY")

    result = CliRunner().invoke(daily_digest, ["step", "--db-path", str(cli_env)])

    assert result.exit_code == 1
    assert "DAILY_DIGEST_LLM_API_KEY is not set." in result.output


def test_invalid_channel_configuration_is_rejected(
    cli_env: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("DAILY_DIGEST_CHANNELS", "local,slack")

    result = CliRunner().invoke(daily_digest, ["step", "--db-path", str(cli_env)])

    assert result.exit_code == 1
    assert "Unsupported publish channel 'slack'" in result.output
