from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

RECOVERY_KEY = "conversation.recovery"
HEARTBEAT_KEY = "renderer.heartbeat"

ALLOWED_KEYS = frozenset({RECOVERY_KEY, HEARTBEAT_KEY})


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


class DurableStore:
    """Small sqlite-backed record store, one record per (scope, key).

    Only the keys in ``ALLOWED_KEYS`` may be written.
    """

    def __init__(self, db_path: str, *, scope: str = "default"):
        self._scope = scope
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._initialize_schema()

    @property
    def scope(self) -> str:
        return self._scope

    def close(self) -> None:
        self._conn.close()

    def execute(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        return self._conn.execute(query, params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        self._conn.commit()

    def put(self, key: str, payload: dict[str, Any]) -> None:
        self._check_key(key)
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO records (scope, key, payload_json, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(scope, key) DO UPDATE SET
                    payload_json = excluded.payload_json,
                    updated_at = excluded.updated_at
                """,
                (self._scope, key, json.dumps(payload, ensure_ascii=True), utc_now()),
            )

    def get(self, key: str) -> dict[str, Any] | None:
        self._check_key(key)
        row = self._conn.execute(
            "SELECT payload_json FROM records WHERE scope = ? AND key = ? LIMIT 1",
            (self._scope, key),
        ).fetchone()
        if row is None:
            return None
        payload = json.loads(row["payload_json"])
        if not isinstance(payload, dict):
            raise ValueError(f"Record {key!r} does not hold a JSON object")
        return payload

    def delete(self, key: str) -> bool:
        self._check_key(key)
        with self.transaction():
            cursor = self._conn.execute(
                "DELETE FROM records WHERE scope = ? AND key = ?",
                (self._scope, key),
            )
        return cursor.rowcount > 0

    def _check_key(self, key: str) -> None:
        if key not in ALLOWED_KEYS:
            raise ValueError(f"Unknown record key: {key!r}")

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS records (
                scope TEXT NOT NULL,
                key TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (scope, key)
            );

            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                scope TEXT NOT NULL,
                type TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_scope_created
                ON events(scope, created_at);
            """
        )
        self._conn.commit()
