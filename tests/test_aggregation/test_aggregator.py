"""Tests for library and org rollups."""

from datetime import date

import pytest

from ossstats.aggregation import Aggregator
from ossstats.catalog import Library
from ossstats.keys import library_key, org_key, package_key
from ossstats.models import PackageStats

LIBRARIES = (
    Library("query", "Query", "TanStack/query", ("react-query",)),
    Library("table", "Table", "TanStack/table"),
)


async def seed_package(store, name: str, downloads: int, rate: float = 0.0) -> None:
    await store.set(package_key(name), PackageStats(downloads, rate).to_dict())


@pytest.fixture
def aggregator(store, registry):
    return Aggregator(store, registry, org="tanstack", libraries=LIBRARIES)


class TestLibraryStats:

    @pytest.mark.asyncio
    async def test_sums_registered_packages(self, aggregator, store, registry):
        await registry.register("@tanstack/query-core", "query")
        await registry.register("@tanstack/react-query", "query")
        await registry.register("react-query", "query", is_legacy=True)
        await seed_package(store, "@tanstack/query-core", 100, 2.0)
        await seed_package(store, "@tanstack/react-query", 50, 1.0)
        await seed_package(store, "react-query", 25, 0.5)

        stats = await aggregator.compute_library_stats("query")

        assert stats.total_downloads == 175
        assert stats.package_count == 3
        assert stats.rate_per_day == pytest.approx(3.5)
        assert stats.previous_total_downloads is None

        entry = await store.get(library_key("query"))
        assert entry.value["total_downloads"] == 175
        assert not entry.immutable

    @pytest.mark.asyncio
    async def test_keeps_previous_total(self, aggregator, store, registry):
        await registry.register("@tanstack/query-core", "query")
        await seed_package(store, "@tanstack/query-core", 100)
        await aggregator.compute_library_stats("query")

        await seed_package(store, "@tanstack/query-core", 130)
        stats = await aggregator.compute_library_stats("query")

        assert stats.total_downloads == 130
        assert stats.previous_total_downloads == 100

    @pytest.mark.asyncio
    async def test_expired_totals_still_count(self, aggregator, store, registry, clock):
        await registry.register("@tanstack/table-core", "table")
        await seed_package(store, "@tanstack/table-core", 40)
        clock.advance(hours=12)

        stats = await aggregator.compute_library_stats("table")
        assert stats.total_downloads == 40

    @pytest.mark.asyncio
    async def test_library_without_packages_not_stored(self, aggregator, store):
        stats = await aggregator.compute_library_stats("table")

        assert stats.total_downloads == 0
        assert await store.get_expired(library_key("table")) is None


class TestOrgStats:

    @pytest.mark.asyncio
    async def test_scoped_and_legacy_packages(self, aggregator, store, registry):
        await registry.register("@tanstack/query-core", "query")
        await registry.register("@tanstack/unassigned", None)
        await registry.set_created_date("swr", date(2019, 11, 1))
        await seed_package(store, "@tanstack/query-core", 100)
        await seed_package(store, "@tanstack/unassigned", 10)
        await seed_package(store, "react-query", 5)
        await seed_package(store, "swr", 1_000_000)

        stats = await aggregator.compute_org_stats()

        assert stats.org == "tanstack"
        assert stats.total_downloads == 115
        assert set(stats.packages) == {"@tanstack/query-core", "@tanstack/unassigned", "react-query"}
        assert (await store.get(org_key("tanstack"))).value["total_downloads"] == 115

    @pytest.mark.asyncio
    async def test_rebuild_all(self, aggregator, store, registry):
        await registry.register("@tanstack/query-core", "query")
        await registry.register("@tanstack/table-core", "table")
        await seed_package(store, "@tanstack/query-core", 7)
        await seed_package(store, "@tanstack/table-core", 3)

        org = await aggregator.rebuild_all()

        assert org.total_downloads == 10
        assert (await store.get(library_key("query"))).value["total_downloads"] == 7
        assert (await store.get(library_key("table"))).value["total_downloads"] == 3
