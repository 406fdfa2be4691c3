"""Package registry: which npm packages exist and which library owns them.

Rows are created by org package discovery during a refresh and read by the
aggregator (to roll packages up into libraries) and by the read API (to know
where a package's download chunks start). Lives in the same SQLite file as
the cache store.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS packages (
    package_name TEXT PRIMARY KEY,
    library_id TEXT DEFAULT NULL,
    is_legacy INTEGER NOT NULL DEFAULT 0,
    created_date TEXT DEFAULT NULL,
    metadata_checked_at TEXT DEFAULT NULL
);

CREATE INDEX IF NOT EXISTS idx_packages_library ON packages(library_id);
"""


@dataclass(frozen=True)
class RegisteredPackage:
    """A registry row."""

    package_name: str
    library_id: str | None
    is_legacy: bool
    created_date: date | None
    metadata_checked_at: datetime | None


def _row_to_package(row: sqlite3.Row) -> RegisteredPackage:
    return RegisteredPackage(
        package_name=row["package_name"],
        library_id=row["library_id"],
        is_legacy=bool(row["is_legacy"]),
        created_date=date.fromisoformat(row["created_date"]) if row["created_date"] else None,
        metadata_checked_at=(
            datetime.fromisoformat(row["metadata_checked_at"])
            if row["metadata_checked_at"] else None
        ),
    )


class PackageRegistry:
    """Persistent package → library mapping.

    Args:
        db_path: SQLite database file (usually shared with CacheStore)
    """

    def __init__(self, db_path: str | Path = "data/stats.db") -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        finally:
            conn.close()

    async def register(
        self,
        package_name: str,
        library_id: str | None,
        is_legacy: bool = False,
    ) -> None:
        """Insert a package or update its library assignment.

        The creation date of an existing row is preserved.
        """
        now = datetime.now(timezone.utc).isoformat()

        def _write() -> None:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO packages (package_name, library_id, is_legacy, metadata_checked_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(package_name) DO UPDATE SET
                        library_id = excluded.library_id,
                        is_legacy = excluded.is_legacy,
                        metadata_checked_at = excluded.metadata_checked_at
                    """,
                    (package_name, library_id, int(is_legacy), now),
                )

        await asyncio.to_thread(_write)

    async def set_created_date(self, package_name: str, created: date) -> None:
        """Record a package's creation date, registering it if unknown."""

        def _write() -> None:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO packages (package_name, created_date) VALUES (?, ?)
                    ON CONFLICT(package_name) DO UPDATE SET created_date = excluded.created_date
                    """,
                    (package_name, created.isoformat()),
                )

        await asyncio.to_thread(_write)

    async def get(self, package_name: str) -> RegisteredPackage | None:
        def _read() -> RegisteredPackage | None:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM packages WHERE package_name = ?", (package_name,),
                ).fetchone()
            return _row_to_package(row) if row else None

        return await asyncio.to_thread(_read)

    async def get_many(self, package_names: list[str]) -> dict[str, RegisteredPackage]:
        """Look up several packages in one query."""
        if not package_names:
            return {}

        def _read() -> dict[str, RegisteredPackage]:
            placeholders = ",".join("?" for _ in package_names)
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM packages WHERE package_name IN ({placeholders})",
                    package_names,
                ).fetchall()
            return {row["package_name"]: _row_to_package(row) for row in rows}

        return await asyncio.to_thread(_read)

    async def list_packages(self, library_id: str | None = None) -> list[str]:
        """Package names registered to ``library_id``, or all packages."""

        def _read() -> list[str]:
            with self._connect() as conn:
                if library_id is None:
                    rows = conn.execute(
                        "SELECT package_name FROM packages ORDER BY package_name"
                    ).fetchall()
                else:
                    rows = conn.execute(
                        "SELECT package_name FROM packages WHERE library_id = ? ORDER BY package_name",
                        (library_id,),
                    ).fetchall()
            return [row["package_name"] for row in rows]

        return await asyncio.to_thread(_read)

    async def list_all(self) -> list[RegisteredPackage]:
        def _read() -> list[RegisteredPackage]:
            with self._connect() as conn:
                rows = conn.execute("SELECT * FROM packages ORDER BY package_name").fetchall()
            return [_row_to_package(r) for r in rows]

        return await asyncio.to_thread(_read)
