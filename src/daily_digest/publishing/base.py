"""Publish channel contract and the fan-out dispatcher."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DigestEntry:
    """One rendered item, in rank order."""

    rank: int
    title: str
    translated_title: str
    url: str
    score: int
    published_at: datetime | None
    summary: str
    comment_digest: str
    discussion_url: str = ""
    failed: bool = False

    @property
    def display_title(self) -> str:
        return self.translated_title or self.title


@dataclass(slots=True)
class PublishDocument:
    """Rendered digest handed to every channel."""

    task_date: date
    markdown: str
    entries: list[DigestEntry] = field(default_factory=list)


@dataclass(slots=True)
class ChannelReceipt:
    """Where a channel put the document."""

    channel: str
    location: str


class PublishChannel(Protocol):
    """Independent output destination."""

    name: str

    def publish(self, document: PublishDocument) -> ChannelReceipt:
        """Deliver the document or raise."""
        raise NotImplementedError


@dataclass(slots=True)
class DispatchResult:
    """Per-channel outcome of one dispatch."""

    delivered: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)
    published: bool = False


class PublishDispatcher:
    """Calls channels in order; one channel failing never stops the others.

    The dispatch counts as published when the primary channel has the
    document (now or from an earlier attempt).  Without a primary, any
    delivered channel is enough.
    """

    def __init__(self, channels: Sequence[PublishChannel], *, primary: str | None = None) -> None:
        names = [channel.name for channel in channels]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate publish channel names: {names}")
        if primary is not None and primary not in names:
            raise ValueError(f"Primary channel {primary!r} is not configured ({names})")
        self.channels = list(channels)
        self.primary = primary

    def dispatch(
        self,
        document: PublishDocument,
        *,
        already_delivered: Mapping[str, str] | None = None,
        on_delivered: Callable[[ChannelReceipt], None] | None = None,
    ) -> DispatchResult:
        result = DispatchResult()
        previous = dict(already_delivered or {})
        for channel in self.channels:
            if channel.name in previous:
                result.skipped[channel.name] = previous[channel.name]
                logger.info("Channel %s already has %s, skipping", channel.name, document.task_date)
                continue
            try:
                receipt = channel.publish(document)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Channel %s failed to publish %s: %s",
                    channel.name,
                    document.task_date.isoformat(),
                    exc,
                )
                result.failed[channel.name] = str(exc) or type(exc).__name__
                continue
            result.delivered[channel.name] = receipt.location
            logger.info("Channel %s published -> %s", channel.name, receipt.location)
            if on_delivered is None:
                continue
            try:
                on_delivered(receipt)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Could not record %s delivery of %s; continuing with remaining channels",
                    channel.name,
                    document.task_date.isoformat(),
                )

        have_document = {**result.skipped, **result.delivered}
        if self.primary is not None:
            result.published = self.primary in have_document
        else:
            result.published = bool(have_document)
        return result
