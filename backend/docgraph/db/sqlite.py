"""SQLite access shared by the usage ledger, documents and graphs."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA temp_store=MEMORY;",
)

MEMORY = ":memory:"


class SQLiteDatabase:
    """One connection shared across threads; ``lock`` serializes every statement.

    Writers go through :meth:`transaction` so a ledger append or a graph save
    either lands completely or not at all.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path if db_path == MEMORY else Path(db_path).expanduser()
        self.lock = threading.RLock()
        self._connection: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        with self.lock:
            if self._connection is None:
                if isinstance(self.db_path, Path):
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                conn.row_factory = sqlite3.Row
                for pragma in DEFAULT_PRAGMAS:
                    conn.execute(pragma)
                self._connection = conn
            return self._connection

    def close(self) -> None:
        with self.lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        with self.lock:
            return self.connect().execute(sql, params or []).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor; commit on success, roll back on any exception."""
        with self.lock:
            conn = self.connect()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def ensure_schema(self, schema_sql: str | None = None) -> None:
        if schema_sql is None:
            schema_sql = Path(__file__).with_name("schema.sql").read_text(encoding="utf-8")
        with self.lock:
            self.connect().executescript(schema_sql)


__all__ = ["MEMORY", "SQLiteDatabase"]
