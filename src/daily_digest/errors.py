"""Typed errors raised by providers, sources and publish channels."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class DigestError(Exception):
    """Base error for the digest pipeline."""

    message: str
    code: str = "digest_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class TransientProviderError(DigestError):
    """Network failure or timeout talking to an external provider."""

    code: str = "transient"
    status_code: int | None = None


@dataclass(slots=True)
class RateLimitedError(TransientProviderError):
    """Provider asked us to slow down; ``retry_after`` is its hint in seconds."""

    code: str = "rate_limited"
    retry_after: float | None = None


@dataclass(slots=True)
class NonRetryableProviderError(DigestError):
    """Provider rejected the request in a way a retry will not fix (auth, bad input)."""

    code: str = "non_retryable"
    status_code: int | None = None


@dataclass(slots=True)
class OutputInvalidError(DigestError):
    """Provider answered, but the answer could not be parsed."""

    code: str = "output_invalid"
    raw_output: str = ""


@dataclass(slots=True)
class ContentFetchError(DigestError):
    """Article content could not be retrieved."""

    code: str = "content_fetch"
    url: str = ""


@dataclass(slots=True)
class SourceError(DigestError):
    """Content source failed to return the daily item list."""

    code: str = "source_error"
    retry_after: int | None = None


@dataclass(slots=True)
class PublishError(DigestError):
    """One publish channel failed to deliver the document."""

    code: str = "publish_failed"
    channel: str = ""


@dataclass(slots=True)
class ConfigurationError(DigestError):
    """A collaborator is missing required configuration."""

    code: str = "configuration"
