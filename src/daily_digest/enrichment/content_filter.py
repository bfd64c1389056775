"""Title classification that drops sensitive stories before items are stored.

The filter fails open: a chunk whose classification call errors or whose
answer cannot be parsed keeps all of its items, and an item the answer
does not mention is kept as well.  Only an explicit ``SENSITIVE`` verdict
removes an item.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum

from daily_digest.enrichment.llm_client import ChatClient
from daily_digest.enrichment.prompts import CLASSIFICATION_GUIDELINES, CLASSIFICATION_PROMPT
from daily_digest.errors import DigestError, OutputInvalidError
from daily_digest.tasks.models import RawItem

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


class Sensitivity(str, Enum):
    """How strict the classification prompt is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(slots=True)
class FilterResult:
    """Items that survived classification, re-ranked from 1."""

    kept: list[RawItem]
    removed: list[RawItem] = field(default_factory=list)
    calls: int = 0


class ContentFilter:
    """Classifies item titles in chunks and keeps the SAFE ones."""

    def __init__(
        self,
        client: ChatClient,
        *,
        enabled: bool = False,
        sensitivity: Sensitivity = Sensitivity.MEDIUM,
        target_language: str = "Chinese",
        batch_size: int = 30,
    ) -> None:
        self.client = client
        self.enabled = enabled
        self.sensitivity = sensitivity
        self.target_language = target_language
        self.batch_size = batch_size

    def filter_items(self, items: list[RawItem]) -> FilterResult:
        if not self.enabled or not items:
            return FilterResult(kept=list(items))

        result = FilterResult(kept=[])
        sensitive: set[int] = set()
        size = max(1, self.batch_size)
        for start in range(0, len(items), size):
            end = min(start + size, len(items))
            chunk = {index: items[index].title for index in range(start, end)}
            result.calls += 1
            try:
                sensitive |= self._classify_chunk(chunk)
            except DigestError as exc:
                logger.warning(
                    "Content filter failed for %d titles, keeping them: %s",
                    len(chunk),
                    exc,
                )

        for index, item in enumerate(items):
            if index in sensitive:
                result.removed.append(item)
            else:
                result.kept.append(replace(item, rank=len(result.kept) + 1))

        if result.removed:
            logger.info(
                "Content filter removed %d of %d items (%s sensitivity)",
                len(result.removed),
                len(items),
                self.sensitivity.value,
            )
            if len(result.removed) * 2 > len(items):
                logger.warning(
                    "Over half of the items were filtered; consider a lower sensitivity level",
                )
        return result

    def _classify_chunk(self, chunk: dict[int, str]) -> set[int]:
        entries = json.dumps(
            [{"id": index, "title": title} for index, title in chunk.items()],
            ensure_ascii=False,
            indent=2,
        )
        raw = self.client.complete(
            CLASSIFICATION_PROMPT.format(
                language=self.target_language,
                sensitivity=self.sensitivity.value,
                guidelines=CLASSIFICATION_GUIDELINES[self.sensitivity.value],
                entries=entries,
            ),
            temperature=0.1,
        )
        return _parse_classifications(raw, expected_ids=set(chunk))


def _parse_classifications(raw: str, *, expected_ids: set[int]) -> set[int]:
    """Ids classified SENSITIVE; entries with unknown or repeated ids are ignored."""

    text = _CODE_FENCE.sub("", raw.strip()).strip()
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise OutputInvalidError(
            message="classification is not JSON",
            raw_output=raw[:500],
        ) from exc
    if not isinstance(payload, list):
        raise OutputInvalidError(
            message="classification is not a JSON array",
            raw_output=raw[:500],
        )

    seen: set[int] = set()
    sensitive: set[int] = set()
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        item_id = entry.get("id")
        if isinstance(item_id, bool) or not isinstance(item_id, int):
            continue
        if item_id not in expected_ids or item_id in seen:
            continue
        seen.add(item_id)
        verdict = str(entry.get("classification", "")).strip().upper()
        if verdict == "SENSITIVE":
            sensitive.add(item_id)
    if not seen and expected_ids:
        raise OutputInvalidError(message="classification matched no ids", raw_output=raw[:500])
    return sensitive
