"""Tests for the cache-only Read API."""

from datetime import date, timedelta

import pytest

from ossstats.api import StatsReader, StatsUnavailable
from ossstats.catalog import Library
from ossstats.chunks import DateChunk
from ossstats.keys import github_org_key, library_key, org_key, repo_key
from ossstats.models import DownloadSeries, LibraryStats, OrgStats, RepoStats

TODAY = date(2025, 12, 6)

LIBRARIES = (
    Library("query", "Query", "TanStack/query", ("react-query",), "query-core"),
    Library("table", "Table", "TanStack/table"),
)


async def seed_series(store, package, start, end, per_day=1, immutable=False):
    days = [start + timedelta(days=i) for i in range((end - start).days + 1)]
    series = DownloadSeries(
        package=package,
        start=start,
        end=end,
        downloads=[{"day": d.isoformat(), "downloads": per_day} for d in days],
    )
    key = DateChunk(start, end).cache_key(package)
    await store.set(key, series.to_dict(), immutable=immutable)


@pytest.fixture
def reader(store, registry):
    return StatsReader(store, registry, org="tanstack", libraries=LIBRARIES)


class TestRollupReads:

    @pytest.mark.asyncio
    async def test_org_stats(self, reader, store):
        await store.set(org_key("tanstack"), OrgStats("tanstack", 500, 4).to_dict())

        stats = await reader.get_org_stats()

        assert stats.total_downloads == 500
        assert stats.package_count == 4

    @pytest.mark.asyncio
    async def test_expired_entry_still_served(self, reader, store, clock):
        await store.set(org_key("tanstack"), OrgStats("tanstack", 500, 4).to_dict())
        clock.advance(days=2)

        assert await store.get(org_key("tanstack")) is None
        assert (await reader.get_org_stats()).total_downloads == 500

    @pytest.mark.asyncio
    async def test_missing_raises(self, reader):
        with pytest.raises(StatsUnavailable) as exc_info:
            await reader.get_org_stats()
        assert exc_info.value.key == org_key("tanstack")

    @pytest.mark.asyncio
    async def test_library_stats(self, reader, store):
        await store.set(library_key("query"), LibraryStats("query", 75, 2).to_dict())

        stats = await reader.get_library_stats("query")
        assert stats.total_downloads == 75

    @pytest.mark.asyncio
    async def test_unknown_library(self, reader):
        with pytest.raises(KeyError):
            await reader.get_library_stats("nope")

    @pytest.mark.asyncio
    async def test_github_stats(self, reader, store):
        await store.set(github_org_key("tanstack"), RepoStats(star_count=9).to_dict())
        await store.set(repo_key("TanStack/query"), RepoStats(star_count=4).to_dict())

        assert (await reader.get_github_org_stats()).star_count == 9
        assert (await reader.get_repo_stats("tanstack/QUERY")).star_count == 4

    @pytest.mark.asyncio
    async def test_list_libraries_with_partial_data(self, reader, store):
        await store.set(library_key("query"), LibraryStats("query", 75, 2, 3.0).to_dict())
        await store.set(repo_key("TanStack/query"), RepoStats(star_count=4).to_dict())

        rows = await reader.list_libraries()

        assert [r["id"] for r in rows] == ["query", "table"]
        assert rows[0]["total_downloads"] == 75
        assert rows[0]["star_count"] == 4
        assert rows[0]["main_package"] == "@tanstack/query-core"
        assert rows[1]["total_downloads"] is None
        assert rows[1]["star_count"] is None

    def test_list_presets(self, reader):
        presets = reader.list_presets()
        assert presets[0]["id"] == "data-fetching"
        assert "swr" in presets[0]["packages"]


class TestComparePackages:

    @pytest.mark.asyncio
    async def test_splices_chunks_and_sorts_by_total(self, reader, store, registry):
        await registry.set_created_date("swr", date(2024, 1, 1))
        await seed_series(store, "swr", date(2024, 1, 1), date(2025, 5, 14), per_day=2, immutable=True)
        await seed_series(store, "swr", date(2025, 5, 15), TODAY, per_day=2)
        await registry.set_created_date("redux", date(2025, 11, 1))
        await seed_series(store, "redux", date(2025, 11, 1), TODAY, per_day=100)

        rows = await reader.compare_packages(["swr", "redux"], range="all", bin="monthly")

        assert [r["package"] for r in rows] == ["redux", "swr"]
        swr = rows[1]
        days = (TODAY - date(2024, 1, 1)).days + 1
        assert swr["total"] == 2 * days
        assert swr["avg_per_day"] == pytest.approx(2.0)
        assert swr["data"][0] == {"date": "2024-01-01", "downloads": 62}
        assert swr["available"]

    @pytest.mark.asyncio
    async def test_range_window(self, reader, store, registry):
        await registry.set_created_date("swr", date(2025, 1, 1))
        await seed_series(store, "swr", date(2025, 1, 1), TODAY)

        rows = await reader.compare_packages(["swr"], range="30d", bin="daily")

        assert rows[0]["total"] == 31
        assert rows[0]["data"][0]["date"] == "2025-11-06"
        assert rows[0]["data"][-1]["date"] == "2025-12-06"

    @pytest.mark.asyncio
    async def test_falls_back_to_earlier_trailing_chunk(self, reader, store, registry):
        await registry.set_created_date("swr", date(2025, 11, 1))
        # Written by yesterday's refresh, so keyed with yesterday's end date
        await seed_series(store, "swr", date(2025, 11, 1), TODAY - timedelta(days=1))

        rows = await reader.compare_packages(["swr"], range="all", bin="daily")

        assert rows[0]["total"] == 35

    @pytest.mark.asyncio
    @pytest.mark.parametrize("registered", [True, False])
    async def test_stale_chunk_across_boundary(self, reader, store, registry, clock, registered):
        start = TODAY - timedelta(days=498)
        if registered:
            await registry.set_created_date("swr", start)
        await seed_series(store, "swr", start, TODAY)
        # The trailing chunk has since closed at 500 days and a new one begun
        clock.advance(days=2)

        rows = await reader.compare_packages(["swr"], range="30d", bin="daily")

        assert rows[0]["available"]
        assert rows[0]["total"] == 29
        assert rows[0]["data"][-1]["date"] == TODAY.isoformat()

    @pytest.mark.asyncio
    async def test_newer_chunk_row_wins(self, reader, store, registry, clock):
        await registry.set_created_date("swr", date(2025, 11, 1))
        await seed_series(store, "swr", date(2025, 11, 1), TODAY - timedelta(days=1), per_day=1)
        clock.advance(minutes=5)
        await seed_series(store, "swr", date(2025, 11, 1), TODAY, per_day=3)

        rows = await reader.compare_packages(["swr"], range="all", bin="daily")

        assert rows[0]["total"] == 3 * 36

    @pytest.mark.asyncio
    async def test_unknown_package_marked_unavailable(self, reader, store, registry):
        await registry.set_created_date("swr", date(2025, 11, 1))
        await seed_series(store, "swr", date(2025, 11, 1), TODAY)

        rows = await reader.compare_packages(["swr", "left-pad"])

        assert rows[-1] == {
            "package": "left-pad", "total": 0, "avg_per_day": 0.0, "data": [], "available": False,
        }

    @pytest.mark.asyncio
    async def test_nothing_cached(self, reader):
        with pytest.raises(StatsUnavailable):
            await reader.compare_packages(["swr", "redux"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs,message", [
        ({"packages": []}, "At least one"),
        ({"packages": [f"p{i}" for i in range(11)]}, "At most 10"),
        ({"packages": ["swr"], "range": "5y"}, "range must be one of"),
        ({"packages": ["swr"], "bin": "yearly"}, "bin must be one of"),
    ])
    async def test_invalid_arguments(self, reader, kwargs, message):
        with pytest.raises(ValueError, match=message):
            await reader.compare_packages(**kwargs)

    @pytest.mark.asyncio
    async def test_duplicates_collapsed(self, reader, store, registry):
        await registry.set_created_date("swr", date(2025, 11, 1))
        await seed_series(store, "swr", date(2025, 11, 1), TODAY)

        rows = await reader.compare_packages(["swr", "swr"])
        assert len(rows) == 1
