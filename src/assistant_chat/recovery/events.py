from __future__ import annotations

import json
from uuid import uuid4

from assistant_chat.recovery.store import DurableStore, utc_now


class EventEmitter:
    def __init__(self, store: DurableStore):
        self._store = store

    def emit(self, event_type: str, payload: dict) -> None:
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO events (id, scope, type, payload_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    str(uuid4()),
                    self._store.scope,
                    event_type,
                    json.dumps(payload, ensure_ascii=True),
                    utc_now(),
                ),
            )

    def recent(self, limit: int = 50) -> list[dict]:
        rows = self._store.execute(
            """
            SELECT type, payload_json, created_at
            FROM events
            WHERE scope = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (self._store.scope, max(1, limit)),
        ).fetchall()
        return [
            {"type": row["type"], "payload": json.loads(row["payload_json"]), "created_at": row["created_at"]}
            for row in rows
        ]
