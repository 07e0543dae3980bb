"""SQLiteStore: ledger snapshots in a single sqlite3 database."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from ..core.ledger import UpdateLedger
from ..core.persistence import load_snapshot, save_snapshot
from ..core.store import LedgerStore
from ..types import DeletionRange

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ledger_snapshots (
    session_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    saved_at TEXT NOT NULL
);
"""


class SQLiteStore(LedgerStore):
    """One row per session; saving replaces the row."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        conn.executescript(SCHEMA_SQL)
        conn.commit()

    def save(self, session_id: str, ledger: UpdateLedger, deletion_range: DeletionRange | None) -> None:
        conn = self._get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO ledger_snapshots (session_id, data, saved_at) VALUES (?, ?, ?)",
            (
                session_id,
                save_snapshot(ledger, deletion_range).decode("utf-8"),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        conn.commit()

    def load(self, session_id: str) -> tuple[UpdateLedger, DeletionRange | None]:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT data FROM ledger_snapshots WHERE session_id = ?", (session_id,)
        ).fetchone()
        if row is None:
            return UpdateLedger(), None
        return load_snapshot(row["data"])

    def delete(self, session_id: str) -> bool:
        conn = self._get_conn()
        cursor = conn.execute("DELETE FROM ledger_snapshots WHERE session_id = ?", (session_id,))
        conn.commit()
        return cursor.rowcount > 0

    def list_sessions(self) -> list[str]:
        conn = self._get_conn()
        rows = conn.execute("SELECT session_id FROM ledger_snapshots ORDER BY saved_at DESC").fetchall()
        return [r["session_id"] for r in rows]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
