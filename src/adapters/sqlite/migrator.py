"""
Schema migrations for the attribution database.

Files in the migrations directory are applied in name order, each in its
own transaction. Only the part above a ``-- Down`` marker is executed.
"""

import logging
import sqlite3
from contextlib import closing
from pathlib import Path

logger = logging.getLogger(__name__)

DOWN_MARKER = "-- Down"


class SQLiteMigrator:
    def __init__(self, db_path: str, migrations_dir: str):
        self.db_path = db_path
        self.migrations_dir = Path(migrations_dir)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(
            "CREATE TABLE IF NOT EXISTS _migrations ("
            " id INTEGER PRIMARY KEY AUTOINCREMENT,"
            " filename TEXT UNIQUE NOT NULL,"
            " applied_at DATETIME DEFAULT CURRENT_TIMESTAMP)"
        )
        return conn

    def available(self) -> list[str]:
        """Migration filenames on disk, in apply order."""
        return sorted(p.name for p in self.migrations_dir.glob("*.sql"))

    def applied(self) -> set[str]:
        with closing(self._connect()) as conn:
            return {row[0] for row in conn.execute("SELECT filename FROM _migrations")}

    def pending(self) -> list[str]:
        """Migration files not yet applied, in apply order."""
        done = self.applied()
        return [name for name in self.available() if name not in done]

    def run_migrations(self) -> list[str]:
        """Apply all pending migrations. Returns the filenames applied."""
        todo = self.pending()
        if not todo:
            logger.debug("Schema at %s is up to date", self.db_path)
            return []

        with closing(self._connect()) as conn:
            for name in todo:
                logger.info("Applying migration %s to %s", name, self.db_path)
                self._apply(conn, name)
        return todo

    def up_script(self, name: str) -> str:
        content = (self.migrations_dir / name).read_text()
        return content.split(DOWN_MARKER, 1)[0]

    def _apply(self, conn: sqlite3.Connection, name: str) -> None:
        try:
            conn.executescript(self.up_script(name))
            conn.execute("INSERT INTO _migrations (filename) VALUES (?)", (name,))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise RuntimeError(f"Migration {name} failed: {e}") from e
