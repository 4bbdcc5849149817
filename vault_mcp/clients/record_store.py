"""SQLite-backed durable record store with an in-memory mirror.

One physical table holds every record. Records are grouped into named
collections (protocol sessions, OAuth flow state) that share durability,
caching and sweep machinery but never share keys. Each row carries a ``kind``
tag and a single JSON payload.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RecordNotFound(KeyError):
    """Raised when a key has no live record in a collection."""


@dataclass(slots=True)
class StoredRecord:
    """A persisted record as seen by callers (always a detached copy)."""

    collection: str
    key: str
    kind: str
    payload: Dict[str, Any]
    created_at: datetime
    last_accessed_at: datetime


class RecordStore:
    """Durable keyed table mirrored by a process-local cache."""

    def __init__(self, db_path: str, *, clock: Optional[Clock] = None) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self._cache: Dict[Tuple[str, str], StoredRecord] = {}
        self._conn: Optional[sqlite3.Connection] = self._connect()
        self._ensure_schema()
        self._load_cache()
        logger.info("Record store initialised at %s (%d records)", self._db_path, len(self._cache))

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @property
    def path(self) -> Path:
        return self._db_path

    def now(self) -> datetime:
        return self._clock()

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Record store has been closed")
        return self._conn

    def _ensure_schema(self) -> None:
        with self._db() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    collection TEXT NOT NULL,
                    key TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    last_accessed_at TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (collection, key)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_last_accessed "
                "ON records (last_accessed_at)"
            )

    def _load_cache(self) -> None:
        rows = self._db().execute("SELECT * FROM records").fetchall()
        for row in rows:
            try:
                record = self._row_to_record(row)
            except (ValueError, TypeError):
                logger.warning(
                    "Dropping unreadable record %s/%s", row["collection"], row["key"]
                )
                self._delete_row(row["collection"], row["key"])
                continue
            self._cache[(record.collection, record.key)] = record

    def _row_to_record(self, row: sqlite3.Row) -> StoredRecord:
        payload = json.loads(row["payload"])
        if not isinstance(payload, dict):
            raise ValueError("Record payload must be a JSON object")
        return StoredRecord(
            collection=row["collection"],
            key=row["key"],
            kind=row["kind"],
            payload=payload,
            created_at=_parse_ts(row["created_at"]),
            last_accessed_at=_parse_ts(row["last_accessed_at"]),
        )

    def _fetch(self, collection: str, key: str) -> Optional[StoredRecord]:
        """Read-through lookup: cache first, then the table."""
        cached = self._cache.get((collection, key))
        if cached is not None:
            return cached
        row = self._db().execute(
            "SELECT * FROM records WHERE collection = ? AND key = ?",
            (collection, key),
        ).fetchone()
        if not row:
            return None
        record = self._row_to_record(row)
        self._cache[(collection, key)] = record
        return record

    def _write(self, record: StoredRecord) -> None:
        with self._db() as conn:
            conn.execute(
                """
                INSERT INTO records (collection, key, kind, created_at, last_accessed_at, payload)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(collection, key) DO UPDATE SET
                    kind = excluded.kind,
                    created_at = excluded.created_at,
                    last_accessed_at = excluded.last_accessed_at,
                    payload = excluded.payload
                """,
                (
                    record.collection,
                    record.key,
                    record.kind,
                    _format_ts(record.created_at),
                    _format_ts(record.last_accessed_at),
                    json.dumps(record.payload),
                ),
            )
        self._cache[(record.collection, record.key)] = record

    def _delete_row(self, collection: str, key: str) -> bool:
        with self._db() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE collection = ? AND key = ?",
                (collection, key),
            )
        removed_cached = self._cache.pop((collection, key), None) is not None
        return cursor.rowcount > 0 or removed_cached

    def _touch(self, record: StoredRecord) -> StoredRecord:
        now = max(self._clock(), record.created_at)
        with self._db() as conn:
            conn.execute(
                "UPDATE records SET last_accessed_at = ? WHERE collection = ? AND key = ?",
                (_format_ts(now), record.collection, record.key),
            )
        touched = replace(record, last_accessed_at=now)
        self._cache[(record.collection, record.key)] = touched
        return touched

    @staticmethod
    def _detached(record: StoredRecord) -> StoredRecord:
        return replace(record, payload=copy.deepcopy(record.payload))

    # Collection-level operations, called through RecordCollection.

    def put(
        self,
        collection: str,
        key: str,
        kind: str,
        payload: Dict[str, Any],
        *,
        created_at: Optional[datetime] = None,
    ) -> StoredRecord:
        with self._lock:
            now = self._clock()
            created = created_at or now
            record = StoredRecord(
                collection=collection,
                key=key,
                kind=kind,
                payload=copy.deepcopy(payload),
                created_at=created,
                last_accessed_at=max(now, created),
            )
            self._write(record)
            return self._detached(record)

    def patch(self, collection: str, key: str, fields: Dict[str, Any]) -> StoredRecord:
        with self._lock:
            current = self._fetch(collection, key)
            if current is None:
                raise RecordNotFound(key)
            payload = dict(current.payload)
            payload.update(copy.deepcopy(fields))
            record = replace(
                current,
                payload=payload,
                last_accessed_at=max(self._clock(), current.created_at),
            )
            self._write(record)
            return self._detached(record)

    def get(self, collection: str, key: str) -> StoredRecord:
        with self._lock:
            current = self._fetch(collection, key)
            if current is None:
                raise RecordNotFound(key)
            return self._detached(self._touch(current))

    def peek(self, collection: str, key: str) -> StoredRecord:
        with self._lock:
            current = self._fetch(collection, key)
            if current is None:
                raise RecordNotFound(key)
            return self._detached(current)

    def delete(self, collection: str, key: str) -> bool:
        with self._lock:
            return self._delete_row(collection, key)

    def take(self, collection: str, key: str) -> StoredRecord:
        with self._lock:
            current = self._fetch(collection, key)
            if current is None:
                raise RecordNotFound(key)
            self._delete_row(collection, key)
            return self._detached(current)

    def count(self, collection: str) -> int:
        with self._lock:
            return sum(1 for (name, _key) in self._cache if name == collection)

    def clear(self, collection: str) -> int:
        with self._lock:
            with self._db() as conn:
                cursor = conn.execute(
                    "DELETE FROM records WHERE collection = ?", (collection,)
                )
            for cache_key in [k for k in self._cache if k[0] == collection]:
                del self._cache[cache_key]
            return cursor.rowcount

    # Store-wide operations.

    def collection(self, name: str) -> "RecordCollection":
        return RecordCollection(self, name)

    def sweep(self, max_age: timedelta) -> int:
        """Delete records whose freshness is strictly older than ``now - max_age``."""
        with self._lock:
            cutoff = _format_ts(self._clock() - max_age)
            with self._db() as conn:
                stale = conn.execute(
                    "SELECT collection, key FROM records WHERE last_accessed_at < ?",
                    (cutoff,),
                ).fetchall()
                conn.execute(
                    "DELETE FROM records WHERE last_accessed_at < ?", (cutoff,)
                )
            for row in stale:
                self._cache.pop((row["collection"], row["key"]), None)
            if stale:
                logger.info("Swept %d expired records", len(stale))
            return len(stale)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                self._cache.clear()


class RecordCollection:
    """A named view over the store; keys are unique within a collection."""

    def __init__(self, store: RecordStore, name: str) -> None:
        self._store = store
        self.name = name

    def now(self) -> datetime:
        return self._store.now()

    def put(
        self,
        key: str,
        kind: str,
        payload: Dict[str, Any],
        *,
        created_at: Optional[datetime] = None,
    ) -> StoredRecord:
        return self._store.put(self.name, key, kind, payload, created_at=created_at)

    def patch(self, key: str, fields: Dict[str, Any]) -> StoredRecord:
        return self._store.patch(self.name, key, fields)

    def get(self, key: str) -> StoredRecord:
        return self._store.get(self.name, key)

    def peek(self, key: str) -> StoredRecord:
        return self._store.peek(self.name, key)

    def delete(self, key: str) -> bool:
        return self._store.delete(self.name, key)

    def take(self, key: str) -> StoredRecord:
        return self._store.take(self.name, key)

    def count(self) -> int:
        return self._store.count(self.name)

    def clear(self) -> int:
        return self._store.clear(self.name)


__all__ = ["RecordCollection", "RecordNotFound", "RecordStore", "StoredRecord"]
