from __future__ import annotations

import json

import allure

from daily_digest.enrichment.content_filter import ContentFilter, Sensitivity
from daily_digest.errors import TransientProviderError
from daily_digest.tasks.models import RawItem

pytestmark = [
    allure.epic("Enrichment"),
    allure.feature("Content Filter"),
]


class _ScriptedClient:
    def __init__(self, *answers: str | Exception) -> None:
        self.answers = list(answers)
        self.prompts: list[str] = []
        self.temperatures: list[float] = []

    def complete(self, prompt: str, *, temperature: float = 0.3) -> str:
        self.prompts.append(prompt)
        self.temperatures.append(temperature)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def _items(count: int) -> list[RawItem]:
    return [
        RawItem(external_id=f"hn-{rank}", rank=rank, title=f"Story number {rank}")
        for rank in range(1, count + 1)
    ]


def test_disabled_filter_makes_no_calls() -> None:
    client = _ScriptedClient()
    items = _items(3)

    result = ContentFilter(client).filter_items(items)

    assert result.kept == items
    assert result.calls == 0
    assert client.prompts == []


def test_sensitive_verdicts_are_matched_by_id_when_answer_is_reordered() -> None:
    answer = json.dumps(
        [
            {"id": 2, "classification": "SAFE"},
            {"id": 1, "classification": "sensitive"},
            {"id": 7, "classification": "SENSITIVE"},
            {"id": 1, "classification": "SAFE"},
        ],
    )
    client = _ScriptedClient(f"```json\n{answer}\n```")
    content_filter = ContentFilter(client, enabled=True, sensitivity=Sensitivity.HIGH)

    result = content_filter.filter_items(_items(4))

    assert [item.external_id for item in result.removed] == ["hn-2"]
    assert [(item.rank, item.external_id) for item in result.kept] == [
        (1, "hn-1"),
        (2, "hn-3"),
        (3, "hn-4"),
    ]
    assert result.calls == 1
    assert client.temperatures == [0.1]
    assert "Sensitivity level: high" in client.prompts[0]
    assert '"id": 3' in client.prompts[0]


def test_filter_fails_open_per_chunk() -> None:
    client = _ScriptedClient(
        TransientProviderError(message="gateway timeout"),
        "I am unable to classify these titles.",
        json.dumps([{"id": 4, "classification": "SENSITIVE"}]),
    )
    content_filter = ContentFilter(client, enabled=True, batch_size=2)

    result = content_filter.filter_items(_items(5))

    assert [item.external_id for item in result.kept] == ["hn-1", "hn-2", "hn-3", "hn-4"]
    assert [item.rank for item in result.kept] == [1, 2, 3, 4]
    assert [item.external_id for item in result.removed] == ["hn-5"]
    assert result.calls == 3
