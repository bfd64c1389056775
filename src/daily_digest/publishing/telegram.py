"""Telegram bot channel: header, one message per entry, footer."""

from __future__ import annotations

import html
import logging
import time
from collections.abc import Callable

import httpx

from daily_digest.errors import DigestError, PublishError, RateLimitedError, TransientProviderError
from daily_digest.http.fetcher import build_client, raise_for_status
from daily_digest.publishing.base import ChannelReceipt, DigestEntry, PublishDocument
from daily_digest.tasks.retry import RetryPolicy

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
MAX_MESSAGE_CHARS = 4096
FAILED_ENTRY_NOTE = "⚠️ Processing failed for this story; showing the original title only."


class TelegramChannel:
    """Sends the digest as a sequence of HTML-formatted bot messages."""

    name = "telegram"

    def __init__(  # noqa: PLR0913
        self,
        *,
        bot_token: str,
        chat_id: str,
        message_delay_seconds: float = 0.5,
        max_entries: int = 30,
        api_url: str = TELEGRAM_API_URL,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.chat_id = chat_id
        self.message_delay_seconds = message_delay_seconds
        self.max_entries = max_entries
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._send_url = f"{api_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self._client = build_client(timeout_seconds=30.0, transport=transport)

    def publish(self, document: PublishDocument) -> ChannelReceipt:
        messages = format_messages(document, max_entries=self.max_entries)
        for index, message in enumerate(messages):
            if index > 0 and self.message_delay_seconds > 0:
                self._sleep(self.message_delay_seconds)
            try:
                self.retry_policy.call(
                    lambda message=message: self._send(message),
                    label="telegram send",
                )
            except DigestError as exc:
                raise PublishError(
                    message=f"Telegram message {index + 1}/{len(messages)} failed: {exc}",
                    channel=self.name,
                ) from exc
        logger.info("Sent %d Telegram messages to %s", len(messages), self.chat_id)
        location = f"{self.chat_id} ({len(messages)} messages)"
        return ChannelReceipt(channel=self.name, location=location)

    def _send(self, text: str) -> None:
        try:
            response = self._client.post(
                self._send_url,
                json={
                    "chat_id": self.chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
            )
        except httpx.HTTPError as exc:
            raise TransientProviderError(message=f"telegram: {exc}") from exc
        if response.status_code == 429:
            raise RateLimitedError(
                message="telegram: too many requests",
                status_code=429,
                retry_after=_body_retry_after(response),
            )
        raise_for_status(response, label="telegram")

    def close(self) -> None:
        self._client.close()


def format_messages(document: PublishDocument, *, max_entries: int = 30) -> list[str]:
    """Messages for one digest, each within Telegram's size limit."""

    date_str = document.task_date.isoformat()
    entries = document.entries[:max_entries]
    if not entries:
        return [f"📰 <b>Daily digest</b> | {date_str}\n\nNo stories today."]
    messages = [
        f"📰 <b>Daily digest</b> | {date_str}\n\n{len(entries)} stories, sending one by one...",
    ]
    messages.extend(format_entry(entry) for entry in entries)
    messages.append(
        f"━━━━━━━━━━━━━━━━━━━━\n\n📰 <b>Daily digest</b> | {date_str}\n\n"
        f"✅ All {len(entries)} stories sent.",
    )
    return messages


def format_entry(entry: DigestEntry, *, max_chars: int = MAX_MESSAGE_CHARS) -> str:
    """HTML message for one entry; long plain text is shortened before escaping."""

    if entry.summary:
        summary = entry.summary
    elif entry.failed:
        summary = FAILED_ENTRY_NOTE
    else:
        summary = "No summary available."
    comments = entry.comment_digest
    text = _render_entry(entry, summary, comments)
    while len(text) > max_chars and (summary or comments):
        overflow = len(text) - max_chars
        if len(_escape(comments)) >= len(_escape(summary)):
            comments = _shorten(comments, len(_escape(comments)) - overflow)
        else:
            summary = _shorten(summary, len(_escape(summary)) - overflow)
        text = _render_entry(entry, summary, comments)
    return text


def _render_entry(entry: DigestEntry, summary: str, comments: str) -> str:
    text = f"{entry.rank}. <b>{_escape(entry.display_title)}</b>\n\n"
    if entry.url:
        text += f'🔗 <a href="{html.escape(entry.url, quote=True)}">Link</a>\n\n'
    text += f"📝 {_escape(summary)}"
    if comments:
        text += f"\n\n💬 <b>Discussion</b>: {_escape(comments)}"
    return text


def _escape(text: str) -> str:
    return html.escape(text, quote=False)


def _shorten(text: str, max_escaped_chars: int) -> str:
    """Longest prefix plus an ellipsis whose escaped form fits ``max_escaped_chars``."""

    used = 1
    kept: list[str] = []
    for char in text:
        used += len(_escape(char))
        if used > max_escaped_chars:
            break
        kept.append(char)
    return "".join(kept) + "…" if kept else ""


def _body_retry_after(response: httpx.Response) -> float | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    value = (payload.get("parameters") or {}).get("retry_after")
    return float(value) if isinstance(value, int | float) else None
