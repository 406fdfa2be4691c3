"""Shared fixtures: a controllable clock and throwaway SQLite caches."""

from datetime import datetime, timedelta, timezone

import pytest

from ossstats.cache import CacheStore, PackageRegistry
from ossstats.config import Settings


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 12, 6, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "stats.db"


@pytest.fixture
def store(db_path, clock) -> CacheStore:
    return CacheStore(db_path, clock=clock)


@pytest.fixture
def registry(db_path) -> PackageRegistry:
    return PackageRegistry(db_path)


@pytest.fixture
def test_settings(db_path) -> Settings:
    """Settings with no pauses, so pipeline tests run fast."""
    return Settings(
        _env_file=None,
        org="tanstack",
        cache_db_path=str(db_path),
        refresh_secret="s3cret",
        github_auth_token="test-token",
        refresh_batch_delay=0,
        backoff_base=0,
        max_retries=1,
        npm_rate_limit=1000,
        github_rate_limit=1000,
        enable_scheduler=False,
    )
