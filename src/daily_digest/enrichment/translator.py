"""Title translation, article summaries and comment digests over a chat client.

Unparsable provider output gets one retry with a simplified prompt; after
that the caller receives the original (or empty) text flagged as degraded.
Transport errors are not handled here and propagate to the caller.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass

from daily_digest.enrichment.llm_client import ChatClient
from daily_digest.enrichment.prompts import (
    COMMENTS_PROMPT,
    COMMENTS_SIMPLE_PROMPT,
    SUMMARY_PROMPT,
    SUMMARY_SIMPLE_PROMPT,
    TITLE_BATCH_PROMPT,
    TITLE_BATCH_SIMPLE_PROMPT,
    TITLE_PROMPT,
    TITLE_SIMPLE_PROMPT,
)
from daily_digest.errors import DigestError, OutputInvalidError
from daily_digest.http.html_extractor import truncate

logger = logging.getLogger(__name__)

_CJK = re.compile(r"[一-鿿]")
_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_LABEL_PREFIX = re.compile(r"^(translation|summary|title|翻译|摘要|标题)\s*[:：]\s*", re.IGNORECASE)


@dataclass(slots=True)
class TextResult:
    """Provider output plus how it was obtained."""

    text: str
    degraded: bool = False
    calls: int = 0


@dataclass(slots=True)
class TitleBatchResult:
    """Translations keyed by the caller's ids; missing ids were not translated."""

    titles: dict[int, str]
    calls: int = 0


class Translator:
    """Language tasks used by the enrichment gateway."""

    def __init__(
        self,
        client: ChatClient,
        *,
        target_language: str = "Chinese",
        summary_max_chars: int = 300,
    ) -> None:
        self.client = client
        self.target_language = target_language
        self.summary_max_chars = summary_max_chars

    def translate_titles(
        self,
        titles: Mapping[int, str],
        *,
        batch_size: int = 10,
    ) -> TitleBatchResult:
        """Translate many titles with few calls, reconciling answers by id.

        Entries the provider drops, duplicates or invents are ignored, so a
        reordered or partial answer can never attach a title to the wrong id.
        """

        result = TitleBatchResult(titles={})
        pending: dict[int, str] = {}
        for item_id, title in titles.items():
            if not title.strip():
                result.titles[item_id] = ""
            elif self._already_translated(title):
                result.titles[item_id] = title
            else:
                pending[item_id] = title

        ids = list(pending)
        for start in range(0, len(ids), max(1, batch_size)):
            chunk = {item_id: pending[item_id] for item_id in ids[start : start + batch_size]}
            try:
                translated, calls = self._translate_chunk(chunk)
            except DigestError as exc:
                logger.warning("Title batch of %d failed: %s", len(chunk), exc)
                result.calls += 1
                continue
            result.calls += calls
            result.titles.update(translated)

        missing = len(pending) - sum(1 for item_id in pending if item_id in result.titles)
        if missing:
            logger.info("Title batches left %d of %d untranslated", missing, len(pending))
        return result

    def translate_title(self, title: str) -> TextResult:
        """Translate one title; falls back to the original title when output is unusable."""

        if not title.strip():
            return TextResult(text="")
        if self._already_translated(title):
            return TextResult(text=title)
        text, calls = self._complete_with_fallback(
            TITLE_PROMPT.format(language=self.target_language, title=title),
            TITLE_SIMPLE_PROMPT.format(language=self.target_language, title=title),
        )
        if text is None:
            return TextResult(text=title, degraded=True, calls=calls)
        return TextResult(text=text.splitlines()[0].strip(), calls=calls)

    def summarize(self, content: str) -> TextResult:
        """Summary of article text; falls back to the truncated original."""

        if not content.strip():
            return TextResult(text="")
        arguments = {
            "language": self.target_language,
            "max_chars": self.summary_max_chars,
            "content": content,
        }
        text, calls = self._complete_with_fallback(
            SUMMARY_PROMPT.format(**arguments),
            SUMMARY_SIMPLE_PROMPT.format(**arguments),
        )
        if text is None:
            return TextResult(
                text=truncate(content.strip(), self.summary_max_chars),
                degraded=True,
                calls=calls,
            )
        return TextResult(text=truncate(text, self.summary_max_chars * 2), calls=calls)

    def digest_comments(self, comments: list[str], *, max_input_chars: int = 5_000) -> TextResult:
        """Digest of discussion comments; empty when output is unusable."""

        joined = "\n---\n".join(comment.strip() for comment in comments if comment.strip())
        if not joined:
            return TextResult(text="")
        arguments = {
            "language": self.target_language,
            "max_chars": self.summary_max_chars,
            "comments": joined[:max_input_chars],
        }
        text, calls = self._complete_with_fallback(
            COMMENTS_PROMPT.format(**arguments),
            COMMENTS_SIMPLE_PROMPT.format(**arguments),
        )
        if text is None:
            return TextResult(text="", degraded=True, calls=calls)
        return TextResult(text=truncate(text, self.summary_max_chars * 2), calls=calls)

    def _translate_chunk(self, chunk: dict[int, str]) -> tuple[dict[int, str], int]:
        entries = json.dumps(
            [{"id": item_id, "title": title} for item_id, title in chunk.items()],
            ensure_ascii=False,
            indent=2,
        )
        raw = self._complete_or_empty(
            TITLE_BATCH_PROMPT.format(language=self.target_language, entries=entries),
        )
        try:
            return _parse_title_array(raw, expected_ids=set(chunk)), 1
        except OutputInvalidError as exc:
            logger.info("Retrying title batch with simplified prompt: %s", exc)

        lines = "\n".join(f"{item_id}\t{title}" for item_id, title in chunk.items())
        raw = self._complete_or_empty(
            TITLE_BATCH_SIMPLE_PROMPT.format(language=self.target_language, lines=lines),
        )
        try:
            return _parse_title_lines(raw, expected_ids=set(chunk)), 2
        except OutputInvalidError as exc:
            logger.warning("Title batch output unusable after retry: %s", exc)
            return {}, 2

    def _complete_with_fallback(self, prompt: str, simple_prompt: str) -> tuple[str | None, int]:
        text = _clean_output(self._complete_or_empty(prompt))
        if text:
            return text, 1
        logger.info("Empty or unusable completion, retrying with simplified prompt")
        text = _clean_output(self._complete_or_empty(simple_prompt))
        return (text or None), 2

    def _complete_or_empty(self, prompt: str) -> str:
        try:
            return self.client.complete(prompt)
        except OutputInvalidError as exc:
            logger.info("Provider returned unusable output: %s", exc)
            return ""

    def _already_translated(self, text: str) -> bool:
        return self.target_language.lower() == "chinese" and bool(_CJK.search(text))


def _clean_output(raw: str) -> str:
    text = _CODE_FENCE.sub("", raw.strip()).strip()
    text = _LABEL_PREFIX.sub("", text).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
        text = text[1:-1].strip()
    return text


def _parse_title_array(raw: str, *, expected_ids: set[int]) -> dict[int, str]:
    text = _CODE_FENCE.sub("", raw.strip()).strip()
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise OutputInvalidError(message="title batch is not JSON", raw_output=raw[:500]) from exc
    if not isinstance(payload, list):
        raise OutputInvalidError(message="title batch is not a JSON array", raw_output=raw[:500])

    translated: dict[int, str] = {}
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        item_id = _as_int(entry.get("id"))
        title = entry.get("title")
        if item_id is None or item_id not in expected_ids or item_id in translated:
            continue
        if isinstance(title, str) and title.strip():
            translated[item_id] = _clean_output(title)
    if not translated and expected_ids:
        raise OutputInvalidError(message="title batch matched no ids", raw_output=raw[:500])
    return translated


def _parse_title_lines(raw: str, *, expected_ids: set[int]) -> dict[int, str]:
    translated: dict[int, str] = {}
    for line in raw.splitlines():
        if "\t" not in line:
            continue
        id_part, title = line.split("\t", 1)
        item_id = _as_int(id_part.strip())
        if item_id is None or item_id not in expected_ids or item_id in translated:
            continue
        if title.strip():
            translated[item_id] = _clean_output(title)
    if not translated and expected_ids:
        raise OutputInvalidError(message="title lines matched no ids", raw_output=raw[:500])
    return translated


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
