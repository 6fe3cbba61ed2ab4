from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class PendingEvent:
    seq: int
    payload: dict[str, Any]


class AgentStateStore:
    """
    Durable agent state: the locally applied version and the outgoing event queue.

    Events stay queued until the control plane confirms them, so a crash between send and ack
    re-sends them on the next flush.
    """

    def __init__(self, root: Path) -> None:
        self.db_path = root / "state" / "agent.db"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agent_kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_event (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT NOT NULL UNIQUE,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def _get(self, key: str) -> str | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT value FROM agent_kv WHERE key = ?", (key,)).fetchone()
            return None if row is None else str(row[0])

    def _set(self, key: str, value: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO agent_kv(key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

    def applied_version(self) -> int:
        raw = self._get("applied_version")
        try:
            return max(0, int(raw)) if raw is not None else 0
        except ValueError:
            return 0

    def set_applied_version(self, version: int) -> None:
        self._set("applied_version", str(max(0, int(version))))

    def enqueue(self, event: dict[str, Any]) -> None:
        event_id = str(event.get("event_id") or "")
        if not event_id:
            raise ValueError("event_id is required")
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR IGNORE INTO pending_event(event_id, payload, created_at) VALUES (?, ?, ?)",
                (event_id, json.dumps(event, ensure_ascii=True), datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

    def pending(self, limit: int = 50) -> list[PendingEvent]:
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT seq, payload FROM pending_event ORDER BY seq ASC LIMIT ?",
                (max(1, int(limit)),),
            ).fetchall()
        return [PendingEvent(seq=int(seq), payload=json.loads(payload)) for seq, payload in rows]

    def ack(self, seqs: list[int]) -> None:
        if not seqs:
            return
        with sqlite3.connect(self.db_path) as conn:
            conn.executemany("DELETE FROM pending_event WHERE seq = ?", [(int(seq),) for seq in seqs])
            conn.commit()

    def pending_count(self) -> int:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT COUNT(*) FROM pending_event").fetchone()
            return int(row[0]) if row else 0
