"""Read API: serves statistics from the cache, never from upstream.

Every read resolves fresh entry → expired entry → StatsUnavailable. A stale
number is better than no number; refreshes happen elsewhere.

Usage:
    reader = StatsReader(store, registry, org="tanstack")
    org = await reader.get_org_stats()
    rows = await reader.compare_packages(["swr", "@tanstack/react-query"], "90d", "weekly")
"""

import logging
from datetime import date, timedelta
from typing import Any

from ossstats.aggregation import BINS, bin_series
from ossstats.cache import CacheEntry, CacheStore, PackageRegistry
from ossstats.catalog import LIBRARIES, PRESETS, Library
from ossstats.chunks import DEFAULT_CHUNK_DAYS, NPM_EPOCH, generate_chunks
from ossstats.keys import github_org_key, library_key, org_key, repo_key
from ossstats.models import LibraryStats, OrgStats, RepoStats

logger = logging.getLogger(__name__)

# Range name -> days back from the as-of date (None = all data)
RANGES: dict[str, int | None] = {
    "30d": 30,
    "90d": 90,
    "180d": 180,
    "1y": 365,
    "2y": 730,
    "all": None,
}

MAX_COMPARE_PACKAGES = 10


class StatsUnavailable(Exception):
    """Nothing cached for the requested statistic, fresh or stale."""

    def __init__(self, key: str) -> None:
        super().__init__(f"No cached statistics for {key}")
        self.key = key


class StatsReader:
    """Cache-only reader for org, library, repo and package statistics.

    Args:
        store: Cache store filled by the refresh orchestrator
        registry: Package registry (for series start dates)
        org: npm scope / GitHub org without '@'
        chunk_size_days: Must match the refresh's chunk size, since chunk
            keys embed the chunk boundaries
        libraries: Library catalog
    """

    def __init__(
        self,
        store: CacheStore,
        registry: PackageRegistry,
        org: str = "tanstack",
        chunk_size_days: int = DEFAULT_CHUNK_DAYS,
        libraries: tuple[Library, ...] = LIBRARIES,
    ) -> None:
        self.store = store
        self.registry = registry
        self.org = org
        self.chunk_size_days = chunk_size_days
        self.libraries = libraries

    async def _read(self, key: str) -> CacheEntry:
        entry = await self.store.get(key)
        if entry is None:
            entry = await self.store.get_expired(key)
            if entry is not None:
                logger.debug("Serving expired entry for %s (fetched %s)", key, entry.fetched_at)
        if entry is None:
            raise StatsUnavailable(key)
        return entry

    # --- Rollups ---

    async def get_org_stats(self) -> OrgStats:
        """npm rollup of the whole org.

        Raises:
            StatsUnavailable: If no rollup was ever computed
        """
        entry = await self._read(org_key(self.org))
        return OrgStats.from_dict(entry.value)

    async def get_github_org_stats(self) -> RepoStats:
        entry = await self._read(github_org_key(self.org))
        return RepoStats.from_dict(entry.value)

    async def get_library_stats(self, library_id: str) -> LibraryStats:
        """npm rollup of one library.

        Raises:
            KeyError: If the library is not in the catalog
            StatsUnavailable: If no rollup was ever computed
        """
        if library_id not in {lib.id for lib in self.libraries}:
            raise KeyError(library_id)
        entry = await self._read(library_key(library_id))
        return LibraryStats.from_dict(entry.value)

    async def get_repo_stats(self, repo: str) -> RepoStats:
        entry = await self._read(repo_key(repo))
        return RepoStats.from_dict(entry.value)

    async def list_libraries(self) -> list[dict[str, Any]]:
        """Catalog libraries with whatever cached numbers exist.

        Missing rollups show as None rather than failing the listing.
        """
        keys = [library_key(lib.id) for lib in self.libraries]
        keys += [repo_key(lib.repo) for lib in self.libraries if lib.repo]
        entries = await self.store.get_batch(keys, include_expired=True)

        rows = []
        for lib in self.libraries:
            npm_entry = entries.get(library_key(lib.id))
            gh_entry = entries.get(repo_key(lib.repo)) if lib.repo else None
            rows.append({
                "id": lib.id,
                "name": lib.name,
                "repo": lib.repo,
                "main_package": lib.main_package(self.org),
                "total_downloads": npm_entry.value.get("total_downloads") if npm_entry else None,
                "rate_per_day": npm_entry.value.get("rate_per_day") if npm_entry else None,
                "star_count": gh_entry.value.get("star_count") if gh_entry else None,
            })
        return rows

    def list_presets(self) -> list[dict[str, Any]]:
        return [
            {"id": preset.id, "title": preset.title, "packages": list(preset.packages)}
            for preset in PRESETS
        ]

    # --- Series ---

    async def _load_series(
        self,
        package: str,
        start: date,
        as_of: date,
    ) -> list[dict[str, Any]] | None:
        """Splice the cached chunks of a package into one daily series.

        Chunks are looked up by their planned keys first. A chunk written by
        an earlier refresh is keyed with that refresh's as-of date (the
        trailing chunk has since grown, or closed at its 500-day boundary),
        so when any planned key is missing every cached daily chunk of the
        package is spliced in. Newer rows win on overlapping days.

        Returns:
            Daily points, or None if no chunk is cached at all
        """
        chunks = generate_chunks(start, as_of, self.chunk_size_days)
        keys = [chunk.cache_key(package) for chunk in chunks]
        found = await self.store.get_batch(keys, include_expired=True)
        entries = list(found.values())

        if len(found) < len(keys):
            listed = await self.store.list_entries(f"{package}|")
            entries += [e for e in listed if e.key not in found and e.key.endswith("|daily")]

        if not entries:
            return None

        by_day: dict[str, int] = {}
        for entry in sorted(entries, key=lambda e: e.fetched_at):
            for point in entry.value.get("downloads") or []:
                by_day[point["day"]] = int(point.get("downloads") or 0)
        return [{"day": day, "downloads": by_day[day]} for day in sorted(by_day)]

    async def compare_packages(
        self,
        packages: list[str],
        range: str = "1y",
        bin: str = "weekly",
    ) -> list[dict[str, Any]]:
        """Compare cached download series of up to 10 packages.

        Args:
            packages: npm package names (1 to 10)
            range: One of RANGES
            bin: One of BINS

        Returns:
            One row per package, sorted by total descending:
            ``{package, total, avg_per_day, data, available}``

        Raises:
            ValueError: On an invalid package list, range or bin
            StatsUnavailable: If none of the packages has cached data
        """
        names = list(dict.fromkeys(packages))
        if not names:
            raise ValueError("At least one package is required")
        if len(names) > MAX_COMPARE_PACKAGES:
            raise ValueError(f"At most {MAX_COMPARE_PACKAGES} packages can be compared")
        if range not in RANGES:
            raise ValueError(f"range must be one of {list(RANGES)}, got {range!r}")
        if bin not in BINS:
            raise ValueError(f"bin must be one of {list(BINS)}, got {bin!r}")

        as_of = self.store.clock().date()
        days = RANGES[range]
        since = NPM_EPOCH if days is None else as_of - timedelta(days=days)
        since_iso, as_of_iso = since.isoformat(), as_of.isoformat()

        known = await self.registry.get_many(names)

        rows = []
        for package in names:
            created = known[package].created_date if package in known else None
            series = await self._load_series(package, created or NPM_EPOCH, as_of)
            if series is None:
                rows.append({
                    "package": package, "total": 0, "avg_per_day": 0.0,
                    "data": [], "available": False,
                })
                continue

            window = [p for p in series if since_iso <= p["day"] <= as_of_iso]
            total = sum(p["downloads"] for p in window)
            rows.append({
                "package": package,
                "total": total,
                "avg_per_day": total / len(window) if window else 0.0,
                "data": bin_series(window, bin),
                "available": True,
            })

        if not any(row["available"] for row in rows):
            raise StatsUnavailable(",".join(names))

        rows.sort(key=lambda row: row["total"], reverse=True)
        return rows
