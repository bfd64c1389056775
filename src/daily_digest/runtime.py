"""Wiring of stores, providers and channels from :class:`Settings`.

Commands that only read or repair state open the stores alone; a driver
step also needs the content source, the LLM client and the publish channels.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx

from daily_digest.config import Settings
from daily_digest.enrichment.content import ContentFetcher
from daily_digest.enrichment.content_filter import ContentFilter, Sensitivity
from daily_digest.enrichment.gateway import EnrichmentGateway
from daily_digest.enrichment.llm_client import OpenAiCompatibleClient
from daily_digest.enrichment.translator import Translator
from daily_digest.pipeline.aggregator import Aggregator
from daily_digest.pipeline.batch import BatchProcessor
from daily_digest.pipeline.state_machine import StateMachineDriver
from daily_digest.publishing.base import PublishChannel, PublishDispatcher
from daily_digest.publishing.github import GitHubChannel
from daily_digest.publishing.local import LocalFileChannel
from daily_digest.publishing.telegram import TelegramChannel
from daily_digest.sources.hackernews import HackerNewsSource
from daily_digest.storage.common import utc_now
from daily_digest.storage.database import DigestDatabase
from daily_digest.tasks.retry import RetryPolicy
from daily_digest.tasks.store import ItemStore, TaskStore


@dataclass(slots=True)
class Stores:
    """Task and item stores sharing one database."""

    database: DigestDatabase
    task_store: TaskStore
    item_store: ItemStore


@contextmanager
def open_stores(settings: Settings) -> Iterator[Stores]:
    database = DigestDatabase(settings.db_path, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    try:
        database.init_schema()
        yield Stores(
            database=database,
            task_store=TaskStore(database.engine),
            item_store=ItemStore(database.engine, max_retry_count=settings.tasks.max_retry_count),
        )
    finally:
        database.close()


def build_channels(
    settings: Settings,
    *,
    transport: httpx.BaseTransport | None = None,
) -> list[PublishChannel]:
    """Enabled channels in the configured order."""

    publish = settings.publish
    channels: list[PublishChannel] = []
    for name in publish.channels:
        if name == "local":
            channels.append(LocalFileChannel(publish.output_dir))
        elif name == "github":
            channels.append(
                GitHubChannel(
                    token=publish.github_token,
                    repo=publish.github_repo,
                    branch=publish.github_branch,
                    path_prefix=publish.github_path_prefix,
                    max_versions=publish.github_max_versions,
                    transport=transport,
                ),
            )
        elif name == "telegram":
            channels.append(
                TelegramChannel(
                    bot_token=publish.telegram_bot_token,
                    chat_id=publish.telegram_chat_id,
                    message_delay_seconds=publish.telegram_message_delay_seconds,
                    max_entries=publish.telegram_max_entries,
                    transport=transport,
                ),
            )
        else:
            raise ValueError(f"Unsupported publish channel: {name}")
    return channels


@contextmanager
def open_aggregator(
    settings: Settings,
    stores: Stores,
    *,
    transport: httpx.BaseTransport | None = None,
) -> Iterator[Aggregator]:
    with ExitStack() as stack:
        channels = build_channels(settings, transport=transport)
        for channel in channels:
            close = getattr(channel, "close", None)
            if close is not None:
                stack.callback(close)
        yield Aggregator(
            task_store=stores.task_store,
            item_store=stores.item_store,
            dispatcher=PublishDispatcher(channels, primary=settings.publish.primary_channel),
        )


@contextmanager
def open_driver(
    settings: Settings,
    stores: Stores,
    *,
    transport: httpx.BaseTransport | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> Iterator[StateMachineDriver]:
    """Fully wired driver; every HTTP client is closed on exit."""

    llm = settings.llm
    with ExitStack() as stack:
        source = HackerNewsSource(
            algolia_base_url=settings.source.algolia_base_url,
            story_limit=settings.source.story_limit,
            timeout_seconds=settings.source.request_timeout_seconds,
            transport=transport,
        )
        stack.callback(source.close)
        client = OpenAiCompatibleClient(
            base_url=llm.base_url,
            api_key=llm.api_key,
            model=llm.model,
            timeout_seconds=llm.request_timeout_seconds,
            retry_policy=RetryPolicy(
                max_attempts=llm.max_attempts,
                base_delay_seconds=llm.retry_base_seconds,
                max_delay_seconds=llm.retry_max_seconds,
                rate_limit_delay_seconds=llm.rate_limit_delay_seconds,
            ),
            transport=transport,
        )
        stack.callback(client.close)
        content_fetcher = ContentFetcher(
            crawler_api_url=settings.content.crawler_api_url,
            crawler_api_token=settings.content.crawler_api_token,
            timeout_seconds=settings.content.request_timeout_seconds,
            max_content_chars=settings.content.max_content_chars,
            description_max_chars=settings.content.description_max_chars,
            transport=transport,
        )
        stack.callback(content_fetcher.close)
        gateway = EnrichmentGateway(
            translator=Translator(
                client,
                target_language=llm.target_language,
                summary_max_chars=llm.summary_max_chars,
            ),
            content_fetcher=content_fetcher,
            comment_source=source,
            max_comments=settings.source.max_comments,
            min_comments_for_digest=settings.content.min_comments_for_digest,
            max_comments_chars=settings.content.max_comments_chars,
            title_batch_size=llm.title_batch_size,
        )
        aggregator = stack.enter_context(open_aggregator(settings, stores, transport=transport))
        yield StateMachineDriver(
            task_store=stores.task_store,
            item_store=stores.item_store,
            source=source,
            batch_processor=BatchProcessor(
                task_store=stores.task_store,
                item_store=stores.item_store,
                gateway=gateway,
                batch_size=settings.tasks.batch_size,
                concurrency=settings.tasks.concurrency,
                stale_after=timedelta(seconds=settings.tasks.processing_stale_after_seconds),
                max_outbound_calls=settings.tasks.max_outbound_calls_per_batch,
            ),
            aggregator=aggregator,
            content_filter=ContentFilter(
                client,
                enabled=llm.content_filter_enabled,
                sensitivity=Sensitivity(llm.content_filter_sensitivity),
                target_language=llm.target_language,
            ),
            task_max_age=timedelta(hours=settings.tasks.task_max_age_hours),
            clock=clock,
        )
