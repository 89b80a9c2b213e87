"""SQLite-backed persistence for the token slot and the bulk export history."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol

from zoho_connector.models import BulkJobRecord, BulkStep, TokenRecord

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from zoho_connector.services.token_cipher import TokenCipher


class TokenStore(Protocol):
    """Single mutable slot holding the current token pair."""

    def load(self) -> Optional[TokenRecord]:
        ...

    def save(self, record: TokenRecord) -> None:
        ...

    def clear(self) -> None:
        ...


class BulkHistoryStore(Protocol):
    """Audit trail of bulk export runs."""

    def save(self, record: BulkJobRecord) -> None:
        ...

    def get(self, record_id: str) -> Optional[BulkJobRecord]:
        ...

    def list_unfinished(self) -> list[BulkJobRecord]:
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _SQLiteTable:
    def __init__(self, db_path: str, table_name: str) -> None:
        self._db_path = Path(db_path)
        self._table = table_name
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        raise NotImplementedError


class SQLiteTokenStore(_SQLiteTable):
    """Token table with at most one row; every save replaces the previous pair."""

    def __init__(
        self,
        db_path: str,
        table_name: str = "zoho_connector_tokens",
        cipher: "TokenCipher | None" = None,
    ) -> None:
        self._cipher = cipher
        super().__init__(db_path, table_name)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    token TEXT NOT NULL,
                    refresh_token TEXT NOT NULL,
                    token_created_at TEXT NOT NULL,
                    token_peremption_at TEXT NOT NULL,
                    token_duration INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def _seal(self, value: str) -> str:
        return self._cipher.encrypt(value) if self._cipher else value

    def _open(self, value: str) -> str:
        return self._cipher.decrypt(value) if self._cipher else value

    def load(self) -> Optional[TokenRecord]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {self._table} ORDER BY id DESC LIMIT 1"
            ).fetchone()
        if not row:
            return None
        return TokenRecord(
            access_token=self._open(row["token"]),
            refresh_token=self._open(row["refresh_token"]),
            issued_at=datetime.fromisoformat(row["token_created_at"]),
            expires_at=datetime.fromisoformat(row["token_peremption_at"]),
            duration_seconds=row["token_duration"],
        )

    def save(self, record: TokenRecord) -> None:
        now = _now_iso()
        with self._connect() as conn:
            conn.execute(f"DELETE FROM {self._table}")
            conn.execute(
                f"""
                INSERT INTO {self._table} (
                    token, refresh_token, token_created_at, token_peremption_at,
                    token_duration, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    self._seal(record.access_token),
                    self._seal(record.refresh_token),
                    record.issued_at.isoformat(),
                    record.expires_at.isoformat(),
                    record.duration_seconds,
                    now,
                    now,
                ),
            )

    def clear(self) -> None:
        with self._connect() as conn:
            conn.execute(f"DELETE FROM {self._table}")


class SQLiteBulkHistoryStore(_SQLiteTable):
    """Bulk history table keyed by the local record identifier."""

    _COLUMNS = (
        "id",
        "bulk_id",
        "report",
        "criterias",
        "step",
        "call_back_url",
        "last_launch",
        "error",
        "json_location",
        "created_at",
        "updated_at",
    )

    def __init__(self, db_path: str, table_name: str = "zoho_connector_bulk_history") -> None:
        super().__init__(db_path, table_name)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    id TEXT PRIMARY KEY,
                    bulk_id TEXT,
                    report TEXT NOT NULL,
                    criterias TEXT NOT NULL,
                    step TEXT NOT NULL,
                    call_back_url TEXT NOT NULL,
                    last_launch TEXT NOT NULL,
                    error TEXT,
                    json_location TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def save(self, record: BulkJobRecord) -> None:
        values = (
            record.id,
            record.bulk_id,
            record.report,
            record.criteria,
            record.step.value,
            record.call_back_url,
            record.last_launch.isoformat(),
            record.error,
            record.json_location,
            record.created_at.isoformat(),
            record.updated_at.isoformat(),
        )
        placeholders = ", ".join("?" for _ in self._COLUMNS)
        updates = ", ".join(
            f"{column} = excluded.{column}" for column in self._COLUMNS if column != "id"
        )
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO {self._table} ({", ".join(self._COLUMNS)})
                VALUES ({placeholders})
                ON CONFLICT(id) DO UPDATE SET {updates}
                """,
                values,
            )

    def get(self, record_id: str) -> Optional[BulkJobRecord]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {self._table} WHERE id = ?", (record_id,)
            ).fetchone()
        return self._to_record(row) if row else None

    def list_recent(self, *, limit: int = 50, report: Optional[str] = None) -> list[BulkJobRecord]:
        query = f"SELECT * FROM {self._table}"
        params: tuple = ()
        if report:
            query += " WHERE report = ?"
            params = (report,)
        query += " ORDER BY created_at DESC LIMIT ?"
        with self._connect() as conn:
            rows = conn.execute(query, (*params, limit)).fetchall()
        return [self._to_record(row) for row in rows]

    def list_unfinished(self) -> list[BulkJobRecord]:
        """Records not yet in a terminal step, oldest first."""
        terminal = (BulkStep.FINISHED.value, BulkStep.FAILED.value)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM {self._table} WHERE step NOT IN (?, ?) ORDER BY created_at",
                terminal,
            ).fetchall()
        return [self._to_record(row) for row in rows]

    @staticmethod
    def _to_record(row: sqlite3.Row) -> BulkJobRecord:
        return BulkJobRecord(
            id=row["id"],
            bulk_id=row["bulk_id"],
            report=row["report"],
            criteria=row["criterias"],
            step=BulkStep(row["step"]),
            call_back_url=row["call_back_url"],
            last_launch=datetime.fromisoformat(row["last_launch"]),
            error=row["error"],
            json_location=row["json_location"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


__all__ = [
    "BulkHistoryStore",
    "SQLiteBulkHistoryStore",
    "SQLiteTokenStore",
    "TokenStore",
]
