"""Aggregator: rolls per-package totals up into library and org stats.

Rollups are always recomputed from the ``npm:{package}`` entries, never
patched in place, so re-running after any refresh (even a partial one)
converges on the right numbers.

Usage:
    aggregator = Aggregator(store, registry, org="tanstack")
    library = await aggregator.compute_library_stats("query")
    org = await aggregator.compute_org_stats()
"""

import logging
from collections.abc import Iterable

from ossstats.cache import CacheStore, PackageRegistry
from ossstats.catalog import LIBRARIES, Library, legacy_packages
from ossstats.keys import library_key, org_key, package_key
from ossstats.models import LibraryStats, OrgStats, PackageStats

logger = logging.getLogger(__name__)


class Aggregator:
    """Computes and persists npm rollups.

    Args:
        store: Cache holding per-package totals; rollups are written here too
        registry: Package registry mapping packages to libraries
        org: npm scope without '@'
        libraries: Library catalog
    """

    def __init__(
        self,
        store: CacheStore,
        registry: PackageRegistry,
        org: str = "tanstack",
        libraries: tuple[Library, ...] = LIBRARIES,
    ) -> None:
        self.store = store
        self.registry = registry
        self.org = org
        self.libraries = libraries

    async def compute_package_totals(self, packages: Iterable[str]) -> dict[str, PackageStats]:
        """Load the last known totals of each package.

        Expired entries still count: a stale total is closer to the truth
        than dropping the package from the sum. Packages never refreshed
        are omitted.
        """
        names = list(dict.fromkeys(packages))
        entries = await self.store.get_batch(
            [package_key(name) for name in names], include_expired=True,
        )
        totals: dict[str, PackageStats] = {}
        for name in names:
            entry = entries.get(package_key(name))
            if entry is not None:
                totals[name] = PackageStats.from_dict(entry.value)
        return totals

    async def org_packages(self, org: str | None = None) -> list[str]:
        """Registered ``@org/`` packages plus the catalog's legacy packages."""
        org = org or self.org
        scope = f"@{org}/"
        registered = [p for p in await self.registry.list_packages() if p.startswith(scope)]
        return sorted(set(registered) | set(legacy_packages(self.libraries)))

    async def compute_library_stats(self, library_id: str) -> LibraryStats:
        """Recompute and persist the ``npm-library:{id}`` rollup.

        Args:
            library_id: Catalog library id

        Returns:
            The new rollup. A library with no registered packages gets an
            empty rollup that is not persisted.
        """
        packages = await self.registry.list_packages(library_id)
        totals = await self.compute_package_totals(packages)

        key = library_key(library_id)
        previous = await self.store.get_expired(key)
        previous_total = previous.value.get("total_downloads") if previous else None

        stats = LibraryStats(
            library_id=library_id,
            total_downloads=sum(s.downloads for s in totals.values()),
            package_count=len(packages),
            rate_per_day=sum(s.rate_per_day for s in totals.values()),
            previous_total_downloads=previous_total,
            packages=totals,
            updated_at=self.store.clock(),
        )

        if not packages:
            logger.debug("Library %s has no registered packages, rollup not stored", library_id)
            return stats

        await self.store.set(key, stats.to_dict(), immutable=False)
        logger.info(
            "Library %s: %d downloads across %d packages",
            library_id, stats.total_downloads, stats.package_count,
        )
        return stats

    async def compute_org_stats(self, org: str | None = None) -> OrgStats:
        """Recompute and persist the ``npm-org:{org}`` rollup."""
        org = org or self.org
        packages = await self.org_packages(org)
        totals = await self.compute_package_totals(packages)

        stats = OrgStats(
            org=org,
            total_downloads=sum(s.downloads for s in totals.values()),
            package_count=len(packages),
            rate_per_day=sum(s.rate_per_day for s in totals.values()),
            packages=totals,
            updated_at=self.store.clock(),
        )
        await self.store.set(org_key(org), stats.to_dict(), immutable=False)
        logger.info(
            "Org %s: %d downloads across %d packages",
            org, stats.total_downloads, stats.package_count,
        )
        return stats

    async def rebuild_all(self, org: str | None = None) -> OrgStats:
        """Recompute every library rollup, then the org rollup."""
        for library in self.libraries:
            await self.compute_library_stats(library.id)
        return await self.compute_org_stats(org)
