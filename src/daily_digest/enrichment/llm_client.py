"""Chat completion client for OpenAI-compatible HTTP endpoints."""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from daily_digest.errors import ConfigurationError, OutputInvalidError
from daily_digest.http.fetcher import build_client, send_json
from daily_digest.tasks.retry import RetryPolicy


class ChatClient(Protocol):
    """Anything that turns one prompt into one text completion."""

    def complete(self, prompt: str, *, temperature: float = 0.3) -> str:
        """Return the completion text; raise typed provider errors on failure."""
        raise NotImplementedError


class OpenAiCompatibleClient:
    """Calls ``POST {base_url}/chat/completions`` with bounded retries."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        timeout_seconds: float = 60.0,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError(message="DAILY_DIGEST_LLM_API_KEY is not set.")
        self.model = model
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = build_client(
            base_url=base_url.rstrip("/"),
            timeout_seconds=timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def complete(self, prompt: str, *, temperature: float = 0.3) -> str:
        payload = self.retry_policy.call(
            lambda: send_json(
                self._client,
                "POST",
                "/chat/completions",
                label=f"chat completion ({self.model})",
                json={
                    "model": self.model,
                    "messages": [{"role": "user", "content": prompt}],
                    "temperature": temperature,
                },
            ),
            label=f"chat completion ({self.model})",
        )
        return _message_content(payload)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAiCompatibleClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _message_content(payload: Any) -> str:
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise OutputInvalidError(
            message="chat completion response has no message content",
            raw_output=str(payload)[:500],
        ) from exc
    if not isinstance(content, str):
        raise OutputInvalidError(
            message="chat completion content is not text",
            raw_output=str(content)[:500],
        )
    return content
