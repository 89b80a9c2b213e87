"""SQLite-backed queue feeding the bulk export worker."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict


class SQLiteQueueClient:
    """Persist bulk export job payloads until a worker claims them."""

    def __init__(self, db_path: str, table_name: str = "bulk_export_queue") -> None:
        self._db_path = Path(db_path)
        self._table = table_name
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )

    def enqueue_bulk_export(self, payload: Dict[str, Any]) -> None:
        created_at = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO {self._table} (payload, created_at) VALUES (?, ?)",
                (json.dumps(payload), created_at),
            )

    def dequeue_bulk_export(self) -> Dict[str, Any] | None:
        """Claim the oldest payload; concurrent workers never receive the same one."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                f"SELECT id, payload FROM {self._table} ORDER BY id LIMIT 1"
            ).fetchone()
            if row:
                conn.execute(f"DELETE FROM {self._table} WHERE id = ?", (row["id"],))
            conn.execute("COMMIT")
        except sqlite3.Error:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        if not row:
            return None
        return json.loads(row["payload"])

    def pending_record_ids(self) -> set[str]:
        with self._connect() as conn:
            rows = conn.execute(f"SELECT payload FROM {self._table}").fetchall()
        return {json.loads(row["payload"]).get("record_id") for row in rows}

    def pending_count(self) -> int:
        with self._connect() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS total FROM {self._table}").fetchone()
        return int(row["total"])


__all__ = ["SQLiteQueueClient"]
