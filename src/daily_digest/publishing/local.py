"""Local markdown file channel."""

from __future__ import annotations

import logging
from pathlib import Path

from daily_digest.publishing.base import ChannelReceipt, PublishDocument

logger = logging.getLogger(__name__)


class LocalFileChannel:
    """Writes ``<output_dir>/<date>-daily.md``; re-publishing overwrites the same file."""

    name = "local"

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def publish(self, document: PublishDocument) -> ChannelReceipt:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        target = self.output_dir / f"{document.task_date.isoformat()}-daily.md"
        tmp_path = target.with_suffix(".md.tmp")
        tmp_path.write_text(document.markdown, encoding="utf-8")
        tmp_path.replace(target)
        logger.debug("Wrote %d chars to %s", len(document.markdown), target)
        return ChannelReceipt(channel=self.name, location=str(target))
