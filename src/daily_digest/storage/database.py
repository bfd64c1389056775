"""Engine lifecycle for the digest SQLite database."""

from __future__ import annotations

from pathlib import Path

from daily_digest.storage.alembic_runner import upgrade_head
from daily_digest.storage.common import build_sqlite_engine

DEFAULT_BUSY_TIMEOUT_MS = 5_000


class DigestDatabase:
    """Owns the SQLAlchemy engine shared by the task and item stores."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()
