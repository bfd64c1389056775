"""Position-preserving batch enrichment with bounded concurrency."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any

from daily_digest.enrichment.content import ContentFetcher
from daily_digest.enrichment.translator import TitleBatchResult, Translator
from daily_digest.errors import DigestError
from daily_digest.sources.base import CommentSource
from daily_digest.tasks.failure_classifier import classify_failure
from daily_digest.tasks.models import FailureClass

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5


@dataclass(slots=True)
class EnrichmentInput:
    """One item to enrich; ``item_id`` travels with it end to end."""

    item_id: int
    external_id: str
    title: str
    url: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_enrichable(self) -> bool:
        return bool(self.title.strip() or self.url.strip())


@dataclass(slots=True)
class EnrichmentOutput:
    """Result for the input at the same position; fields are never None."""

    item_id: int
    translated_title: str = ""
    summary: str = ""
    comment_digest: str = ""
    degraded: bool = False
    calls: int = 0
    failure_class: FailureClass | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.failure_class is not None

    @classmethod
    def empty(cls, item_id: int) -> EnrichmentOutput:
        """Sentinel for an input with nothing to enrich."""

        return cls(item_id=item_id, degraded=True)

    @classmethod
    def failure(cls, item_id: int, error: BaseException, *, calls: int = 0) -> EnrichmentOutput:
        classification = classify_failure(error)
        return cls(
            item_id=item_id,
            calls=calls,
            failure_class=classification.failure_class,
            error=f"{classification.reason_code}: {error}",
        )


class EnrichmentGateway:
    """Runs translation, content retrieval and summarization for a batch of items."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        translator: Translator,
        content_fetcher: ContentFetcher,
        comment_source: CommentSource | None = None,
        max_comments: int = 10,
        min_comments_for_digest: int = 3,
        max_comments_chars: int = 5_000,
        title_batch_size: int = 10,
    ) -> None:
        self.translator = translator
        self.content_fetcher = content_fetcher
        self.comment_source = comment_source
        self.max_comments = max_comments
        self.min_comments_for_digest = min_comments_for_digest
        self.max_comments_chars = max_comments_chars
        self.title_batch_size = title_batch_size

    def enrich_batch(
        self,
        inputs: Sequence[EnrichmentInput],
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> list[EnrichmentOutput]:
        """Enrich every input; ``outputs[i]`` always belongs to ``inputs[i]``.

        A failing or empty input yields a sentinel output at its own position;
        the batch as a whole never raises.
        """

        outputs: list[EnrichmentOutput | None] = [None] * len(inputs)
        enrichable: dict[int, int] = {}
        for position, item in enumerate(inputs):
            if item.is_enrichable:
                enrichable[position] = item.item_id
            else:
                outputs[position] = EnrichmentOutput.empty(item.item_id)
        if not enrichable:
            return _filled(outputs, inputs)

        batch_titles = self._translate_titles(
            {item_id: inputs[position].title for position, item_id in enrichable.items()},
        )
        title_calls_share = _share(batch_titles.calls, len(enrichable))

        with ThreadPoolExecutor(max_workers=max(1, concurrency)) as executor:
            futures: dict[Future[EnrichmentOutput], int] = {
                executor.submit(
                    self._enrich_one,
                    inputs[position],
                    batch_titles.titles.get(item_id),
                ): position
                for position, item_id in enrichable.items()
            }
            for future in as_completed(futures):
                position = futures[future]
                item = inputs[position]
                try:
                    output = future.result()
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Enrichment failed for item %s: %s", item.external_id, exc)
                    output = EnrichmentOutput.failure(item.item_id, exc)
                output.calls += title_calls_share.pop()
                outputs[position] = output

        return _filled(outputs, inputs)

    def _translate_titles(self, titles: dict[int, str]) -> TitleBatchResult:
        try:
            return self.translator.translate_titles(titles, batch_size=self.title_batch_size)
        except Exception:
            logger.exception("Batched title translation crashed; translating one by one")
            return TitleBatchResult(titles={})

    def _enrich_one(self, item: EnrichmentInput, batch_title: str | None) -> EnrichmentOutput:
        calls = 0
        degraded = False
        try:
            if batch_title:
                translated_title = batch_title
            else:
                title_result = self.translator.translate_title(item.title)
                calls += title_result.calls
                degraded = degraded or title_result.degraded
                translated_title = title_result.text

            content = self.content_fetcher.fetch(item.url, item.metadata)
            calls += content.calls
            if content.is_empty:
                summary = ""
                degraded = True
            else:
                summary_result = self.translator.summarize(content.text)
                calls += summary_result.calls
                degraded = degraded or summary_result.degraded
                summary = summary_result.text or content.description

            comment_digest, comment_calls, comments_degraded = self._comment_digest(item)
            calls += comment_calls
            degraded = degraded or comments_degraded
        except DigestError as exc:
            return EnrichmentOutput.failure(item.item_id, exc, calls=calls)

        return EnrichmentOutput(
            item_id=item.item_id,
            translated_title=translated_title,
            summary=summary,
            comment_digest=comment_digest,
            degraded=degraded,
            calls=calls,
        )

    def _comment_digest(self, item: EnrichmentInput) -> tuple[str, int, bool]:
        if self.comment_source is None:
            return "", 0, False
        if int(item.metadata.get("num_comments") or 0) < self.min_comments_for_digest:
            return "", 0, False
        try:
            comments = self.comment_source.fetch_comments(item.external_id, limit=self.max_comments)
        except DigestError as exc:
            logger.warning("Comments unavailable for %s: %s", item.external_id, exc)
            return "", 1, True
        if len(comments) < self.min_comments_for_digest:
            return "", 1, False
        digest = self.translator.digest_comments(comments, max_input_chars=self.max_comments_chars)
        return digest.text, 1 + digest.calls, digest.degraded


def _share(total: int, parts: int) -> list[int]:
    """Split ``total`` into ``parts`` near-equal integers."""

    base, remainder = divmod(total, parts)
    return [base + (1 if index < remainder else 0) for index in range(parts)]


def _filled(
    outputs: list[EnrichmentOutput | None],
    inputs: Sequence[EnrichmentInput],
) -> list[EnrichmentOutput]:
    return [
        output if output is not None else EnrichmentOutput.empty(item.item_id)
        for output, item in zip(outputs, inputs, strict=True)
    ]
