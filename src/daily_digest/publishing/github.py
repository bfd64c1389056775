"""GitHub repository channel using the contents API.

Each publish creates a new file; when ``<date>-daily.md`` already exists the
next free ``<date>-daily-vN.md`` is used, so re-delivery never overwrites.
"""

from __future__ import annotations

import base64
import logging

import httpx

from daily_digest.errors import DigestError, PublishError, TransientProviderError
from daily_digest.http.fetcher import build_client, raise_for_status, send_json
from daily_digest.publishing.base import ChannelReceipt, PublishDocument
from daily_digest.tasks.retry import RetryPolicy

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
_FIRST_VERSION = 1


class GitHubChannel:
    """Commits the digest markdown into a repository (for example a Jekyll ``_posts`` dir)."""

    name = "github"

    def __init__(  # noqa: PLR0913
        self,
        *,
        token: str,
        repo: str,
        branch: str = "main",
        path_prefix: str = "_posts",
        max_versions: int = 10,
        api_url: str = GITHUB_API_URL,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.repo = repo
        self.branch = branch
        self.path_prefix = path_prefix.strip("/")
        self.max_versions = max_versions
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = build_client(
            base_url=api_url.rstrip("/"),
            timeout_seconds=30.0,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            transport=transport,
        )

    def publish(self, document: PublishDocument) -> ChannelReceipt:
        date_str = document.task_date.isoformat()
        try:
            path, version = self._free_path(date_str)
            suffix = f" (v{version})" if version > _FIRST_VERSION else ""
            payload = self.retry_policy.call(
                lambda: send_json(
                    self._client,
                    "PUT",
                    f"/repos/{self.repo}/contents/{path}",
                    label="github put",
                    json={
                        "message": f"Add daily digest for {date_str}{suffix}",
                        "content": base64.b64encode(document.markdown.encode("utf-8")).decode(),
                        "branch": self.branch,
                    },
                ),
                label="github put",
            )
        except PublishError:
            raise
        except DigestError as exc:
            raise PublishError(message=f"GitHub publish failed: {exc}", channel=self.name) from exc

        content = payload.get("content") if isinstance(payload, dict) else None
        location = (content or {}).get("html_url") or f"{self.repo}/{path}"
        logger.info("Committed %s to %s@%s", path, self.repo, self.branch)
        return ChannelReceipt(channel=self.name, location=str(location))

    def _free_path(self, date_str: str) -> tuple[str, int]:
        for version in range(_FIRST_VERSION, self.max_versions + 1):
            filename = f"{date_str}-daily.md"
            if version > _FIRST_VERSION:
                filename = f"{date_str}-daily-v{version}.md"
            path = f"{self.path_prefix}/{filename}" if self.path_prefix else filename
            if not self._exists(path):
                return path, version
        raise PublishError(
            message=f"All {self.max_versions} file versions for {date_str} already exist",
            channel=self.name,
        )

    def _exists(self, path: str) -> bool:
        def probe() -> bool:
            try:
                response = self._client.get(
                    f"/repos/{self.repo}/contents/{path}",
                    params={"ref": self.branch},
                )
            except httpx.HTTPError as exc:
                raise TransientProviderError(message=f"github lookup: {exc}") from exc
            if response.status_code == 404:
                return False
            raise_for_status(response, label="github lookup")
            return True

        return self.retry_policy.call(probe, label="github lookup")

    def close(self) -> None:
        self._client.close()
