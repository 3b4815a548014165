"""SQLite persistence for received SMS and their acknowledgement state."""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sms_messages (
    id TEXT PRIMARY KEY,
    sender TEXT NOT NULL,
    content TEXT NOT NULL,
    received_at INTEGER NOT NULL,
    metas TEXT,
    acknowledged INTEGER NOT NULL DEFAULT 0,
    ack_sent_at INTEGER,
    created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sms_messages_acknowledged
    ON sms_messages (acknowledged);
"""

_COLUMNS = "id, sender, content, received_at, metas, acknowledged, ack_sent_at, created_at"


class StoreError(RuntimeError):
    pass


class StoreInitError(StoreError):
    """The database could not be opened or prepared."""


class StoreWriteError(StoreError):
    """A mutation failed; nothing was committed."""


@dataclass(frozen=True)
class SmsRecord:
    id: str
    sender: str
    content: str
    received_at: int
    metas: Any = None
    acknowledged: bool = False
    ack_sent_at: Optional[int] = None
    created_at: Optional[int] = None


def _now() -> int:
    return int(time.time())


def _row_to_record(row: sqlite3.Row) -> SmsRecord:
    metas = row["metas"]
    if metas is not None:
        try:
            metas = json.loads(metas)
        except json.JSONDecodeError:
            logger.warning("Stored metas for %s are not valid JSON", row["id"])
    return SmsRecord(
        id=row["id"],
        sender=row["sender"],
        content=row["content"],
        received_at=row["received_at"],
        metas=metas,
        acknowledged=bool(row["acknowledged"]),
        ack_sent_at=row["ack_sent_at"],
        created_at=row["created_at"],
    )


class SmsStore:
    """Serialized access to the ``sms_messages`` table.

    Every mutation is committed before the call returns. A single lock guards
    the connection, so the store can be shared between threads.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)
        self._lock = threading.Lock()
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.executescript(_SCHEMA)
            conn.commit()
        except (sqlite3.Error, OSError) as exc:
            raise StoreInitError(f"Failed to open database {self.path}: {exc}") from exc
        self._conn: Optional[sqlite3.Connection] = conn
        logger.info("Database initialized at: %s", self.path)

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Store is closed")
        return self._conn

    def insert(self, record: SmsRecord) -> bool:
        """Insert *record* unacknowledged. Returns ``False`` if the id already exists."""

        metas = None if record.metas is None else json.dumps(record.metas)
        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    cursor = conn.execute(
                        "INSERT OR IGNORE INTO sms_messages "
                        "(id, sender, content, received_at, metas, acknowledged, created_at) "
                        "VALUES (?, ?, ?, ?, ?, 0, ?)",
                        (
                            record.id,
                            record.sender,
                            record.content,
                            record.received_at,
                            metas,
                            _now(),
                        ),
                    )
            except sqlite3.Error as exc:
                raise StoreWriteError(f"Failed to insert SMS {record.id}: {exc}") from exc
        if cursor.rowcount == 0:
            logger.info("SMS %s already stored; keeping the existing row", record.id)
            return False
        logger.info("SMS message inserted into database: %s", record.id)
        return True

    def mark_acknowledged(self, sms_id: str) -> bool:
        """Flag *sms_id* as acknowledged. Returns ``False`` if no such row exists."""

        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    # ack_sent_at >= created_at even if the wall clock steps back
                    cursor = conn.execute(
                        "UPDATE sms_messages SET acknowledged = 1, "
                        "ack_sent_at = MAX(?, created_at) WHERE id = ?",
                        (_now(), sms_id),
                    )
            except sqlite3.Error as exc:
                raise StoreWriteError(
                    f"Failed to mark SMS {sms_id} as acknowledged: {exc}"
                ) from exc
        if cursor.rowcount == 0:
            logger.warning("No message found with id: %s", sms_id)
            return False
        logger.info("SMS message marked as acknowledged: %s", sms_id)
        return True

    def get(self, sms_id: str) -> Optional[SmsRecord]:
        with self._lock:
            row = self._connection().execute(
                f"SELECT {_COLUMNS} FROM sms_messages WHERE id = ?", (sms_id,)
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def get_unacknowledged(self) -> List[SmsRecord]:
        with self._lock:
            rows = self._connection().execute(
                f"SELECT {_COLUMNS} FROM sms_messages WHERE acknowledged = 0 "
                "ORDER BY created_at, id"
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def count_total(self) -> int:
        with self._lock:
            row = self._connection().execute(
                "SELECT COUNT(*) FROM sms_messages"
            ).fetchone()
        return int(row[0])

    def count_unacknowledged(self) -> int:
        with self._lock:
            row = self._connection().execute(
                "SELECT COUNT(*) FROM sms_messages WHERE acknowledged = 0"
            ).fetchone()
        return int(row[0])

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "SmsStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
