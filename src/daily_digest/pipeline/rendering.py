"""Markdown rendering of the daily digest."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from daily_digest.publishing.base import DigestEntry
from daily_digest.tasks.models import ItemStatus, ItemView

SUMMARY_PLACEHOLDER = "_No summary available._"
FAILED_PLACEHOLDER = "_Processing failed for this story; showing the original title only._"


def build_entries(items: Sequence[ItemView]) -> list[DigestEntry]:
    """Rank-ordered entries for completed and failed items; failed ones keep only source data."""

    entries: list[DigestEntry] = []
    for item in sorted(items, key=lambda row: (row.rank, row.item_id)):
        if item.status not in {ItemStatus.COMPLETED, ItemStatus.FAILED}:
            continue
        entries.append(
            DigestEntry(
                rank=item.rank,
                title=item.title,
                translated_title=item.translated_title,
                url=item.url,
                score=item.score,
                published_at=item.published_at,
                summary=item.summary,
                comment_digest=item.comment_digest,
                discussion_url=str(item.metadata.get("discussion_url") or ""),
                failed=item.status == ItemStatus.FAILED,
            ),
        )
    return entries


def render_markdown(task_date: date, entries: Sequence[DigestEntry]) -> str:
    """Jekyll post with one section per entry."""

    date_str = task_date.isoformat()
    lines = [
        "---",
        "layout: post",
        f'title: "Daily digest {date_str}"',
        f"date: {date_str}",
        "tags: [hackernews, digest]",
        "---",
        "",
    ]
    if not entries:
        lines.extend(["No stories for this day.", ""])
        return "\n".join(lines)

    for entry in entries:
        lines.append(f"## {entry.rank}. 【{entry.display_title}】")
        lines.append("")
        if entry.translated_title and entry.translated_title != entry.title:
            lines.extend([entry.title, ""])
        meta = [f"**Score**: {entry.score}"]
        if entry.published_at is not None:
            meta.append(f"**Published**: {entry.published_at.strftime('%Y-%m-%d %H:%M UTC')}")
        if entry.url:
            meta.append(f"**Link**: [{entry.url}]({entry.url})")
        if entry.discussion_url and entry.discussion_url != entry.url:
            meta.append(f"**Discussion**: [{entry.discussion_url}]({entry.discussion_url})")
        lines.append(" | ".join(meta))
        lines.append("")
        if entry.summary:
            lines.append(f"> {entry.summary}")
        else:
            lines.append(FAILED_PLACEHOLDER if entry.failed else SUMMARY_PLACEHOLDER)
        lines.append("")
        if entry.comment_digest:
            lines.extend([f"**Comments**: {entry.comment_digest}", ""])
        lines.extend(["---", ""])
    return "\n".join(lines)
