from __future__ import annotations

import base64
import json
from datetime import date
from pathlib import Path

import allure
import httpx
import pytest

from daily_digest.errors import PublishError
from daily_digest.publishing.base import (
    ChannelReceipt,
    DigestEntry,
    PublishDispatcher,
    PublishDocument,
)
from daily_digest.publishing.github import GitHubChannel
from daily_digest.publishing.local import LocalFileChannel
from daily_digest.publishing.telegram import (
    FAILED_ENTRY_NOTE,
    MAX_MESSAGE_CHARS,
    TelegramChannel,
    format_entry,
    format_messages,
)
from daily_digest.tasks.retry import RetryPolicy

pytestmark = [
    allure.epic("Publishing"),
    allure.feature("Channels & Dispatch"),
]

TASK_DATE = date(2026, 2, 1)
_NO_WAIT = RetryPolicy(max_attempts=3, sleep=lambda _: None)


class _Channel:
    def __init__(self, name: str, *, fails: bool = False) -> None:
        self.name = name
        self.fails = fails
        self.published = 0

    def publish(self, document: PublishDocument) -> ChannelReceipt:
        self.published += 1
        if self.fails:
            raise PublishError(message=f"{self.name} is down", channel=self.name)
        return ChannelReceipt(channel=self.name, location=f"{self.name}://{document.task_date}")


def _document(entries: list[DigestEntry] | None = None) -> PublishDocument:
    return PublishDocument(task_date=TASK_DATE, markdown="# Digest\n", entries=entries or [])


def _entry(rank: int, **overrides: object) -> DigestEntry:
    values: dict[str, object] = {
        "rank": rank,
        "title": f"Story {rank}",
        "translated_title": f"故事 {rank}",
        "url": f"https://example.com/{rank}",
        "score": 100,
        "published_at": None,
        "summary": "A <summary> & more",
        "comment_digest": "",
    }
    values.update(overrides)
    return DigestEntry(**values)  # type: ignore[arg-type]


def test_one_of_two_channels_failing_still_publishes_via_primary() -> None:
    local = _Channel("local")
    github = _Channel("github", fails=True)
    dispatcher = PublishDispatcher([local, github], primary="local")
    delivered: list[str] = []

    result = dispatcher.dispatch(
        _document(),
        on_delivered=lambda receipt: delivered.append(receipt.channel),
    )

    assert result.published is True
    assert list(result.delivered) == ["local"]
    assert "github is down" in result.failed["github"]
    assert delivered == ["local"]
    assert github.published == 1


def test_delivery_ledger_failure_does_not_stop_remaining_channels() -> None:
    local = _Channel("local")
    telegram = _Channel("telegram")
    dispatcher = PublishDispatcher([local, telegram], primary="local")
    recorded: list[str] = []

    def record(receipt: ChannelReceipt) -> None:
        if receipt.channel == "local":
            raise RuntimeError("database is locked")
        recorded.append(receipt.channel)

    result = dispatcher.dispatch(_document(), on_delivered=record)

    assert result.published is True
    assert list(result.delivered) == ["local", "telegram"]
    assert telegram.published == 1
    assert recorded == ["telegram"]


def test_primary_channel_failure_is_not_published() -> None:
    dispatcher = PublishDispatcher(
        [_Channel("local"), _Channel("github", fails=True)],
        primary="github",
    )

    result = dispatcher.dispatch(_document())

    assert result.published is False
    assert list(result.delivered) == ["local"]


def test_already_delivered_channels_are_skipped_and_count_for_primary() -> None:
    local = _Channel("local")
    telegram = _Channel("telegram")
    dispatcher = PublishDispatcher([local, telegram], primary="local")

    result = dispatcher.dispatch(_document(), already_delivered={"local": "digests/x.md"})

    assert result.published is True
    assert local.published == 0
    assert result.skipped == {"local": "digests/x.md"}
    assert list(result.delivered) == ["telegram"]


def test_without_primary_any_delivery_counts() -> None:
    dispatcher = PublishDispatcher([_Channel("a", fails=True), _Channel("b")])

    assert dispatcher.dispatch(_document()).published is True
    assert PublishDispatcher([_Channel("a", fails=True)]).dispatch(_document()).published is False


def test_dispatcher_rejects_bad_configuration() -> None:
    with pytest.raises(ValueError, match="Duplicate"):
        PublishDispatcher([_Channel("local"), _Channel("local")])
    with pytest.raises(ValueError, match="Primary channel"):
        PublishDispatcher([_Channel("local")], primary="github")


def test_local_channel_writes_dated_markdown(tmp_path: Path) -> None:
    channel = LocalFileChannel(tmp_path / "out")

    receipt = channel.publish(_document())
    channel.publish(PublishDocument(task_date=TASK_DATE, markdown="# Updated\n"))

    target = tmp_path / "out" / "2026-02-01-daily.md"
    assert receipt.location == str(target)
    assert target.read_text(encoding="utf-8") == "# Updated\n"
    assert sorted(path.name for path in (tmp_path / "out").iterdir()) == ["2026-02-01-daily.md"]


def test_github_channel_picks_next_free_version() -> None:
    existing = {"_posts/2026-02-01-daily.md"}
    puts: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/repos/owner/blog/contents/")
        assert request.headers["Authorization"] == "Bearer gh-token"
        if request.method == "GET":
            return httpx.Response(200 if path in existing else 404, json={})
        body = json.loads(request.content)
        puts.append({"path": path, **body})
        return httpx.Response(201, json={"content": {"html_url": f"https://github.test/{path}"}})

    channel = GitHubChannel(
        token="gh-token",
        repo="owner/blog",
        transport=httpx.MockTransport(handler),
        retry_policy=_NO_WAIT,
    )

    receipt = channel.publish(_document())

    assert receipt.location == "https://github.test/_posts/2026-02-01-daily-v2.md"
    [put] = puts
    assert put["message"] == "Add daily digest for 2026-02-01 (v2)"
    assert put["branch"] == "main"
    assert base64.b64decode(str(put["content"])).decode("utf-8") == "# Digest\n"


def test_github_channel_raises_publish_error_on_rejected_commit() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(404)
        return httpx.Response(422, json={"message": "sha wasn't supplied"})

    channel = GitHubChannel(
        token="gh-token",
        repo="owner/blog",
        transport=httpx.MockTransport(handler),
        retry_policy=_NO_WAIT,
    )

    with pytest.raises(PublishError, match="GitHub publish failed"):
        channel.publish(_document())


def test_telegram_messages_escape_html_and_respect_limit() -> None:
    entries = [_entry(1), _entry(2, summary="x" * 5000, translated_title="")]

    messages = format_messages(_document(entries), max_entries=30)

    assert len(messages) == 4
    assert "2 stories" in messages[0]
    assert "&lt;summary&gt; &amp; more" in messages[1]
    assert "<b>故事 1</b>" in messages[1]
    assert "<b>Story 2</b>" in messages[2]
    assert all(len(message) <= MAX_MESSAGE_CHARS for message in messages)
    assert "All 2 stories sent" in messages[-1]


def test_telegram_entry_truncation_never_splits_an_entity() -> None:
    entry = _entry(1, summary="&" * 3000, comment_digest="<b>" * 900)

    message = format_entry(entry)

    assert len(message) <= MAX_MESSAGE_CHARS
    assert message.count("&") == message.count("&amp;") + message.count("&lt;") + message.count(
        "&gt;",
    )
    assert "💬 <b>Discussion</b>: " in message
    assert message.endswith("…")


def test_telegram_entry_marks_failed_items() -> None:
    failed = _entry(3, summary="", translated_title="", failed=True)

    message = format_entry(failed)

    assert "<b>Story 3</b>" in message
    assert FAILED_ENTRY_NOTE in message
    assert "No summary available." not in message


def test_telegram_channel_retries_rate_limited_message() -> None:
    sent: list[str] = []
    attempts = {"count": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] == 2:
            return httpx.Response(
                429,
                json={"ok": False, "parameters": {"retry_after": 3}},
            )
        sent.append(json.loads(request.content)["text"])
        return httpx.Response(200, json={"ok": True})

    channel = TelegramChannel(
        bot_token="bot-token",
        chat_id="@digest",
        message_delay_seconds=0,
        retry_policy=RetryPolicy(max_attempts=3, sleep=sleeps.append),
        transport=httpx.MockTransport(handler),
    )

    receipt = channel.publish(_document([_entry(1)]))

    assert len(sent) == 3
    assert sleeps == [3.0]
    assert receipt.location == "@digest (3 messages)"


def test_telegram_channel_failure_raises_publish_error() -> None:
    channel = TelegramChannel(
        bot_token="bot-token",
        chat_id="@digest",
        retry_policy=_NO_WAIT,
        transport=httpx.MockTransport(lambda request: httpx.Response(403, json={"ok": False})),
    )

    with pytest.raises(PublishError, match="Telegram message 1/"):
        channel.publish(_document([_entry(1)]))
