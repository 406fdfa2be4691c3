"""SQLite-backed cache store with per-entry TTL and write-once entries.

Every cached value (chunk series, per-package totals, rollups, GitHub stats)
is one row keyed by a string:

    {subject}|{from}|{to}|{granularity}   time-series chunks
    npm:{package}, github:{repo}, ...     point-in-time values

Entries are either *mutable* (expire after a TTL, may be overwritten) or
*immutable* (never expire, never overwritten). The write rule is enforced
inside a single UPSERT statement, so concurrent writers cannot race past it.

All I/O runs in a worker thread via asyncio.to_thread, with a fresh
connection per call.

Usage:
    store = CacheStore("data/stats.db")
    await store.set("npm:@tanstack/query-core", {"downloads": 10}, immutable=False)
    entry = await store.get("npm:@tanstack/query-core")
"""

import asyncio
import json
import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MUTABLE_TTL = timedelta(hours=6)

# Stay under SQLITE_MAX_VARIABLE_NUMBER on older builds
_BATCH_SIZE = 500

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    fetched_at TEXT NOT NULL,
    expires_at TEXT DEFAULT NULL,
    immutable INTEGER NOT NULL DEFAULT 0
);
"""

# Immutable rows are left untouched by the DO UPDATE branch.
UPSERT_SQL = """
INSERT INTO cache_entries (key, payload, fetched_at, expires_at, immutable)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(key) DO UPDATE SET
    payload = excluded.payload,
    fetched_at = excluded.fetched_at,
    expires_at = excluded.expires_at,
    immutable = excluded.immutable
WHERE cache_entries.immutable = 0
"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    """One cached value with its freshness metadata."""

    key: str
    value: Any
    fetched_at: datetime
    expires_at: datetime | None
    immutable: bool

    def is_expired(self, now: datetime) -> bool:
        if self.immutable or self.expires_at is None:
            return False
        return self.expires_at <= now


def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
    expires_at = row["expires_at"]
    return CacheEntry(
        key=row["key"],
        value=json.loads(row["payload"]),
        fetched_at=datetime.fromisoformat(row["fetched_at"]),
        expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        immutable=bool(row["immutable"]),
    )


class CacheStore:
    """Persistent key/value cache for upstream statistics.

    Args:
        db_path: SQLite database file. Parent directories are created.
        mutable_ttl: Lifetime of mutable entries (default: 6 hours)
        clock: Returns the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        db_path: str | Path = "data/stats.db",
        mutable_ttl: timedelta = DEFAULT_MUTABLE_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.mutable_ttl = mutable_ttl
        self.clock = clock
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema if not exists."""
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection in WAL mode, commit on success, always close."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        finally:
            conn.close()

    # ── Reads ──────────────────────────────────────────────────

    def _fetch_rows(self, keys: list[str]) -> dict[str, CacheEntry]:
        entries: dict[str, CacheEntry] = {}
        with self._connect() as conn:
            for i in range(0, len(keys), _BATCH_SIZE):
                batch = keys[i:i + _BATCH_SIZE]
                placeholders = ",".join("?" for _ in batch)
                rows = conn.execute(
                    f"SELECT * FROM cache_entries WHERE key IN ({placeholders})",
                    batch,
                ).fetchall()
                for row in rows:
                    entries[row["key"]] = _row_to_entry(row)
        return entries

    async def get(self, key: str) -> CacheEntry | None:
        """Return the entry for ``key`` if present and not expired."""
        entry = await self.get_expired(key)
        if entry is None or entry.is_expired(self.clock()):
            return None
        return entry

    async def get_expired(self, key: str) -> CacheEntry | None:
        """Return the last known entry for ``key``, ignoring its TTL."""
        entries = await asyncio.to_thread(self._fetch_rows, [key])
        return entries.get(key)

    async def get_batch(
        self,
        keys: Iterable[str],
        include_expired: bool = False,
    ) -> dict[str, CacheEntry]:
        """Fetch many entries in as few queries as possible.

        Args:
            keys: Cache keys to look up
            include_expired: Also return entries whose TTL has passed

        Returns:
            Mapping of key to entry for the keys that were found
        """
        unique = list(dict.fromkeys(keys))
        if not unique:
            return {}

        entries = await asyncio.to_thread(self._fetch_rows, unique)
        if include_expired:
            return entries

        now = self.clock()
        return {k: e for k, e in entries.items() if not e.is_expired(now)}

    # ── Writes ─────────────────────────────────────────────────

    async def set(self, key: str, value: Any, immutable: bool = False) -> bool:
        """Store a value.

        Immutable entries never expire. Mutable entries expire after
        ``mutable_ttl``. An existing immutable entry is never replaced.

        Args:
            key: Cache key
            value: JSON-serializable payload
            immutable: Whether the value can never change again

        Returns:
            True if the value was written, False if an immutable entry
            already occupied the key.
        """
        now = self.clock()
        expires_at = None if immutable else (now + self.mutable_ttl).isoformat()
        params = (key, json.dumps(value), now.isoformat(), expires_at, int(immutable))

        def _write() -> int:
            with self._connect() as conn:
                return conn.execute(UPSERT_SQL, params).rowcount

        written = await asyncio.to_thread(_write) > 0
        if not written:
            logger.debug("Skipped write to immutable entry %s", key)
        return written

    async def delete(self, key: str) -> bool:
        """Remove a mutable entry. Immutable entries cannot be deleted."""

        def _delete() -> int:
            with self._connect() as conn:
                return conn.execute(
                    "DELETE FROM cache_entries WHERE key = ? AND immutable = 0", (key,),
                ).rowcount

        return await asyncio.to_thread(_delete) > 0

    # ── Inspection ─────────────────────────────────────────────

    async def list_entries(self, prefix: str = "") -> list[CacheEntry]:
        """List entries whose key starts with ``prefix``, sorted by key."""

        def _list() -> list[CacheEntry]:
            escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM cache_entries WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                    (f"{escaped}%",),
                ).fetchall()
            return [_row_to_entry(r) for r in rows]

        return await asyncio.to_thread(_list)

    async def stats(self) -> dict[str, int]:
        """Count entries by state: total, immutable, mutable, expired."""
        now = self.clock()
        entries = await self.list_entries()
        return {
            "total": len(entries),
            "immutable": sum(1 for e in entries if e.immutable),
            "mutable": sum(1 for e in entries if not e.immutable),
            "expired": sum(1 for e in entries if e.is_expired(now)),
        }
