"""Runtime configuration for the daily digest pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

SUPPORTED_CHANNELS = ("local", "github", "telegram")
CONTENT_FILTER_SENSITIVITIES = ("low", "medium", "high")


@dataclass(slots=True)
class TaskSettings:
    """State machine and batch processing settings."""

    batch_size: int = 6
    concurrency: int = 5
    max_retry_count: int = 3
    processing_stale_after_seconds: int = 900
    task_max_age_hours: int = 36
    max_outbound_calls_per_batch: int = 50
    interval_minutes: int = 10


@dataclass(slots=True)
class SourceSettings:
    """Hacker News list source settings."""

    algolia_base_url: str = "https://hn.algolia.com/api/v1"
    story_limit: int = 30
    max_comments: int = 10
    request_timeout_seconds: float = 15.0


@dataclass(slots=True)
class LlmSettings:
    """OpenAI-compatible chat completion provider settings."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    target_language: str = "Chinese"
    request_timeout_seconds: float = 60.0
    max_attempts: int = 3
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 30.0
    rate_limit_delay_seconds: float = 5.0
    summary_max_chars: int = 300
    title_batch_size: int = 10
    content_filter_enabled: bool = False
    content_filter_sensitivity: str = "medium"


@dataclass(slots=True)
class ContentSettings:
    """Article content and comment retrieval settings."""

    crawler_api_url: str = ""
    crawler_api_token: str = ""
    request_timeout_seconds: float = 20.0
    max_content_chars: int = 4_000
    description_max_chars: int = 200
    max_comments_chars: int = 5_000
    min_comments_for_digest: int = 3


@dataclass(slots=True)
class PublishSettings:
    """Output channel settings."""

    channels: tuple[str, ...] = ("local",)
    primary_channel: str | None = "local"
    output_dir: Path = Path("digests")
    github_token: str = ""
    github_repo: str = ""
    github_branch: str = "main"
    github_path_prefix: str = "_posts"
    github_max_versions: int = 10
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_message_delay_seconds: float = 0.5
    telegram_max_entries: int = 30


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".daily_digest.db")
    sqlite_busy_timeout_ms: int = 5_000
    tasks: TaskSettings = field(default_factory=TaskSettings)
    source: SourceSettings = field(default_factory=SourceSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)
    content: ContentSettings = field(default_factory=ContentSettings)
    publish: PublishSettings = field(default_factory=PublishSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        channels = _collect_channels()
        return cls(
            db_path=db_path or Path(os.getenv("DAILY_DIGEST_DB_PATH", ".daily_digest.db")),
            sqlite_busy_timeout_ms=int(os.getenv("DAILY_DIGEST_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            tasks=TaskSettings(
                batch_size=int(os.getenv("DAILY_DIGEST_TASK_BATCH_SIZE", "6")),
                concurrency=int(os.getenv("DAILY_DIGEST_TASK_CONCURRENCY", "5")),
                max_retry_count=int(os.getenv("DAILY_DIGEST_MAX_RETRY_COUNT", "3")),
                processing_stale_after_seconds=int(
                    os.getenv("DAILY_DIGEST_PROCESSING_STALE_AFTER_SECONDS", "900"),
                ),
                task_max_age_hours=int(os.getenv("DAILY_DIGEST_TASK_MAX_AGE_HOURS", "36")),
                max_outbound_calls_per_batch=int(
                    os.getenv("DAILY_DIGEST_MAX_OUTBOUND_CALLS_PER_BATCH", "50"),
                ),
                interval_minutes=int(os.getenv("DAILY_DIGEST_INTERVAL_MINUTES", "10")),
            ),
            source=SourceSettings(
                algolia_base_url=os.getenv(
                    "DAILY_DIGEST_HN_ALGOLIA_URL",
                    "https://hn.algolia.com/api/v1",
                ),
                story_limit=int(os.getenv("DAILY_DIGEST_HN_STORY_LIMIT", "30")),
                max_comments=int(os.getenv("DAILY_DIGEST_HN_MAX_COMMENTS", "10")),
                request_timeout_seconds=float(
                    os.getenv("DAILY_DIGEST_HN_REQUEST_TIMEOUT_SECONDS", "15.0"),
                ),
            ),
            llm=LlmSettings(
                base_url=os.getenv("DAILY_DIGEST_LLM_BASE_URL", "https://api.openai.com/v1"),
                api_key=os.getenv("DAILY_DIGEST_LLM_API_KEY", ""),
                model=os.getenv("DAILY_DIGEST_LLM_MODEL", "gpt-4o-mini"),
                target_language=os.getenv("DAILY_DIGEST_TARGET_LANGUAGE", "Chinese"),
                request_timeout_seconds=float(
                    os.getenv("DAILY_DIGEST_LLM_TIMEOUT_SECONDS", "60.0"),
                ),
                max_attempts=int(os.getenv("DAILY_DIGEST_LLM_MAX_ATTEMPTS", "3")),
                retry_base_seconds=float(os.getenv("DAILY_DIGEST_LLM_RETRY_BASE_SECONDS", "1.0")),
                retry_max_seconds=float(os.getenv("DAILY_DIGEST_LLM_RETRY_MAX_SECONDS", "30.0")),
                rate_limit_delay_seconds=float(
                    os.getenv("DAILY_DIGEST_LLM_RATE_LIMIT_DELAY_SECONDS", "5.0"),
                ),
                summary_max_chars=int(os.getenv("DAILY_DIGEST_SUMMARY_MAX_CHARS", "300")),
                title_batch_size=int(os.getenv("DAILY_DIGEST_TITLE_BATCH_SIZE", "10")),
                content_filter_enabled=_env_flag("DAILY_DIGEST_CONTENT_FILTER_ENABLED"),
                content_filter_sensitivity=os.getenv(
                    "DAILY_DIGEST_CONTENT_FILTER_SENSITIVITY",
                    "medium",
                )
                .strip()
                .lower(),
            ),
            content=ContentSettings(
                crawler_api_url=os.getenv("DAILY_DIGEST_CRAWLER_API_URL", ""),
                crawler_api_token=os.getenv("DAILY_DIGEST_CRAWLER_API_TOKEN", ""),
                request_timeout_seconds=float(
                    os.getenv("DAILY_DIGEST_CONTENT_TIMEOUT_SECONDS", "20.0"),
                ),
                max_content_chars=int(os.getenv("DAILY_DIGEST_MAX_CONTENT_CHARS", "4000")),
                description_max_chars=int(
                    os.getenv("DAILY_DIGEST_DESCRIPTION_MAX_CHARS", "200"),
                ),
                max_comments_chars=int(os.getenv("DAILY_DIGEST_MAX_COMMENTS_CHARS", "5000")),
                min_comments_for_digest=int(
                    os.getenv("DAILY_DIGEST_MIN_COMMENTS_FOR_DIGEST", "3"),
                ),
            ),
            publish=PublishSettings(
                channels=channels,
                primary_channel=_optional_env("DAILY_DIGEST_PRIMARY_CHANNEL", "local"),
                output_dir=Path(os.getenv("DAILY_DIGEST_OUTPUT_DIR", "digests")),
                github_token=os.getenv("DAILY_DIGEST_GITHUB_TOKEN", ""),
                github_repo=os.getenv("DAILY_DIGEST_GITHUB_REPO", ""),
                github_branch=os.getenv("DAILY_DIGEST_GITHUB_BRANCH", "main"),
                github_path_prefix=os.getenv("DAILY_DIGEST_GITHUB_PATH_PREFIX", "_posts"),
                github_max_versions=int(os.getenv("DAILY_DIGEST_GITHUB_MAX_VERSIONS", "10")),
                telegram_bot_token=os.getenv("DAILY_DIGEST_TELEGRAM_BOT_TOKEN", ""),
                telegram_chat_id=os.getenv("DAILY_DIGEST_TELEGRAM_CHAT_ID", ""),
                telegram_message_delay_seconds=float(
                    os.getenv("DAILY_DIGEST_TELEGRAM_MESSAGE_DELAY_SECONDS", "0.5"),
                ),
                telegram_max_entries=int(os.getenv("DAILY_DIGEST_TELEGRAM_MAX_ENTRIES", "30")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the pipeline cannot run with."""

        if self.tasks.batch_size <= 0:
            raise ValueError("DAILY_DIGEST_TASK_BATCH_SIZE must be > 0.")
        if self.tasks.concurrency <= 0:
            raise ValueError("DAILY_DIGEST_TASK_CONCURRENCY must be > 0.")
        if self.tasks.max_retry_count <= 0:
            raise ValueError("DAILY_DIGEST_MAX_RETRY_COUNT must be > 0.")
        if self.tasks.processing_stale_after_seconds <= 0:
            raise ValueError("DAILY_DIGEST_PROCESSING_STALE_AFTER_SECONDS must be > 0.")
        if self.tasks.interval_minutes <= 0:
            raise ValueError("DAILY_DIGEST_INTERVAL_MINUTES must be > 0.")
        if self.source.story_limit <= 0:
            raise ValueError("DAILY_DIGEST_HN_STORY_LIMIT must be > 0.")
        if self.llm.max_attempts <= 0:
            raise ValueError("DAILY_DIGEST_LLM_MAX_ATTEMPTS must be > 0.")
        if self.llm.content_filter_sensitivity not in CONTENT_FILTER_SENSITIVITIES:
            raise ValueError(
                "DAILY_DIGEST_CONTENT_FILTER_SENSITIVITY must be one of: "
                f"{', '.join(CONTENT_FILTER_SENSITIVITIES)}.",
            )
        _validate_http_url("DAILY_DIGEST_LLM_BASE_URL", self.llm.base_url)
        if self.content.crawler_api_url:
            _validate_http_url("DAILY_DIGEST_CRAWLER_API_URL", self.content.crawler_api_url)

        if not self.publish.channels:
            raise ValueError("At least one publish channel is required (DAILY_DIGEST_CHANNELS).")
        for channel in self.publish.channels:
            if channel not in SUPPORTED_CHANNELS:
                raise ValueError(
                    f"Unsupported publish channel {channel!r}. "
                    f"Expected one of: {', '.join(SUPPORTED_CHANNELS)}.",
                )
        primary = self.publish.primary_channel
        if primary is not None and primary not in self.publish.channels:
            raise ValueError(
                f"DAILY_DIGEST_PRIMARY_CHANNEL={primary!r} is not among the enabled channels.",
            )
        if "github" in self.publish.channels and (
            not self.publish.github_token or "/" not in self.publish.github_repo
        ):
            raise ValueError(
                "GitHub channel needs DAILY_DIGEST_GITHUB_TOKEN and "
                "DAILY_DIGEST_GITHUB_REPO in 'owner/name' form.",
            )
        if "telegram" in self.publish.channels and (
            not self.publish.telegram_bot_token or not self.publish.telegram_chat_id
        ):
            raise ValueError(
                "Telegram channel needs DAILY_DIGEST_TELEGRAM_BOT_TOKEN and "
                "DAILY_DIGEST_TELEGRAM_CHAT_ID.",
            )


def _collect_channels() -> tuple[str, ...]:
    raw = os.getenv("DAILY_DIGEST_CHANNELS", "local")
    values: list[str] = []
    for part in raw.split(","):
        normalized = part.strip().lower()
        if normalized and normalized not in values:
            values.append(normalized)
    return tuple(values)


def _optional_env(name: str, default: str | None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"", "none", "any"}:
        return None
    return normalized


def _validate_http_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}
