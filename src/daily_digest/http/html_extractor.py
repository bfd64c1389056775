"""HTML and markdown text extraction for article descriptions."""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass

import trafilatura

logger = logging.getLogger(__name__)

_MARKDOWN_NOISE = re.compile(r"^\s*(#{1,6}\s|!\[|\[!\[|[-*_]{3,}\s*$|\|)")
_MARKDOWN_LINK = re.compile(r"\[([^\]]*)\]\([^)]*\)")
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class ExtractionResult:
    """Result of HTML text extraction."""

    text: str
    is_success: bool
    error: str | None = None


def extract_text(html_text: str, *, url: str | None = None, max_chars: int = 0) -> ExtractionResult:
    """Extract main content text from HTML using trafilatura.

    Falls back to a recall-oriented extraction if the precise pass finds nothing.
    """

    if not html_text or not html_text.strip():
        return ExtractionResult(text="", is_success=False, error="empty HTML input")

    try:
        text = trafilatura.extract(
            html_text,
            url=url,
            include_tables=False,
            include_links=False,
            favor_precision=True,
            deduplicate=True,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("trafilatura.extract failed for %s: %s", url or "<unknown>", exc)
        text = None

    if not text:
        try:
            text = trafilatura.extract(
                html_text,
                url=url,
                include_tables=False,
                include_links=False,
                favor_recall=True,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("trafilatura fallback failed for %s: %s", url or "<unknown>", exc)
            return ExtractionResult(text="", is_success=False, error=f"extraction failed: {exc}")

    if not text:
        return ExtractionResult(text="", is_success=False, error="no content extracted")

    if max_chars > 0 and len(text) > max_chars:
        text = text[:max_chars].rstrip()
    return ExtractionResult(text=text, is_success=True)


def first_paragraph(text: str, *, max_chars: int = 0, min_chars: int = 40) -> str:
    """First prose paragraph of markdown or plain text, skipping headings and images.

    Short paragraphs are skipped while a longer one follows; when none reaches
    ``min_chars`` the first non-empty one is used.
    """

    candidates: list[str] = []
    for block in re.split(r"\n\s*\n", text or ""):
        lines = [line for line in block.strip().splitlines() if not _MARKDOWN_NOISE.match(line)]
        cleaned = _WHITESPACE.sub(" ", _MARKDOWN_LINK.sub(r"\1", " ".join(lines))).strip()
        if cleaned:
            candidates.append(cleaned)
    if not candidates:
        return ""
    chosen = next((item for item in candidates if len(item) >= min_chars), candidates[0])
    return truncate(chosen, max_chars)


def strip_html(value: str) -> str:
    """Plain text from an HTML fragment such as a Hacker News comment."""

    with_breaks = re.sub(r"<p\s*/?>", "\n", value or "", flags=re.IGNORECASE)
    return html.unescape(_TAG.sub("", with_breaks)).strip()


def truncate(text: str, max_chars: int) -> str:
    """Cut ``text`` at a word boundary and add an ellipsis when it is too long."""

    if max_chars <= 0 or len(text) <= max_chars:
        return text
    cut = text[: max_chars - 1].rstrip()
    space = cut.rfind(" ")
    if space > max_chars // 2:
        cut = cut[:space]
    return cut.rstrip(" ,.;:") + "…"
