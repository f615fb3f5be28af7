from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"
BUSY_TIMEOUT_SECONDS = 5.0


class Database:
    """SQLite file holding the guest list, migrated from ``migrations/*.sql``.

    Every ``connect()`` opens a fresh connection, so store calls made from
    worker threads never share one.
    """

    def __init__(self, db_path: Path, *, busy_timeout: float = BUSY_TIMEOUT_SECONDS) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout = busy_timeout

    @property
    def path(self) -> Path:
        return self._db_path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(self._db_path, timeout=self._busy_timeout)
        connection.row_factory = sqlite3.Row
        try:
            yield connection
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()

    def applied_migrations(self) -> list[str]:
        with self.connect() as connection:
            self._ensure_migrations_table(connection)
            rows = connection.execute("SELECT name FROM schema_migrations ORDER BY name")
            return [row["name"] for row in rows]

    def pending_migrations(self) -> list[Path]:
        applied = set(self.applied_migrations())
        return [path for path in sorted(MIGRATIONS_DIR.glob("*.sql")) if path.name not in applied]

    def initialize(self) -> list[str]:
        """Apply pending migrations and return the names of those applied."""

        pending = self.pending_migrations()
        with self.connect() as connection:
            # WAL lets `list` and `export` read while a scanner is writing.
            connection.execute("PRAGMA journal_mode=WAL")
            for migration in pending:
                connection.executescript(migration.read_text(encoding="utf-8"))
                connection.execute(
                    "INSERT INTO schema_migrations(name) VALUES (?)",
                    (migration.name,),
                )
                logger.info("Applied migration %s to %s", migration.name, self._db_path)

        return [migration.name for migration in pending]

    @staticmethod
    def _ensure_migrations_table(connection: sqlite3.Connection) -> None:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                name TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT (datetime('now'))
            );
            """
        )
