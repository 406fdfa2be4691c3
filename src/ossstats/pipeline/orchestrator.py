"""Refresh orchestrator: drives fetch clients, cache store and aggregator.

A full refresh runs three stages under one wall-clock budget:
  1. Org npm: discover + register org packages, refresh every package's
     download chunks and totals, fetch GitHub org stats
  2. Libraries: GitHub stats for every catalog repository
  3. Presets: npm totals for comparison preset packages

Work is dispatched in batches of ``refresh_concurrency`` with
``refresh_batch_delay`` seconds between batches. A failing subject is
recorded and never aborts its batch. Rollups are recomputed at the end,
even when the budget ran out.

Usage:
    orchestrator = RefreshOrchestrator(store, registry)
    result = await orchestrator.run_full_refresh()
    print(result.summary())
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from ossstats.aggregation import Aggregator, rate_per_day
from ossstats.cache import CacheStore, PackageRegistry
from ossstats.catalog import LIBRARIES, Library, preset_packages, resolve_library_id
from ossstats.chunks import generate_chunks
from ossstats.clients import GitHubClient, NpmClient
from ossstats.config import Settings, settings
from ossstats.keys import github_org_key, package_key, repo_key
from ossstats.models import DownloadSeries, PackageStats, RepoStats
from ossstats.pipeline.singleflight import SingleFlight

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    """Outcome of a refresh run.

    Attributes:
        successes: Subject keys refreshed (e.g. "npm:@tanstack/query-core")
        failures: Subject key -> error message
        timed_out: Whether the wall-clock budget ran out
        duration: Seconds spent
    """

    successes: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    timed_out: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failures and not self.timed_out

    def summary(self) -> str:
        status = "TIMED OUT" if self.timed_out else "done"
        return (
            f"Refresh {status}: {len(self.successes)} ok, "
            f"{len(self.failures)} failed in {self.duration:.1f}s"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "successes": list(self.successes),
            "failures": dict(self.failures),
            "timed_out": self.timed_out,
            "duration": round(self.duration, 3),
        }


class RefreshOrchestrator:
    """Bounded-concurrency refresh of npm and GitHub statistics.

    Clients are built through the factories, as async context managers,
    and shared by every refresh running at the same time: a client stays
    open while any refresh uses it, so a single-flight task started by a
    caller that has since been cancelled can still finish for the others.
    Tests pass factories that build clients with zero backoff.

    Args:
        store: Cache store receiving chunks, totals and GitHub stats
        registry: Package registry
        aggregator: Rollup computer (default: built from store/registry)
        config: Settings to read tuning knobs from (default: global settings)
        libraries: Library catalog
        npm_factory: Returns a fresh NpmClient
        github_factory: Returns a fresh GitHubClient
    """

    def __init__(
        self,
        store: CacheStore,
        registry: PackageRegistry,
        aggregator: Aggregator | None = None,
        config: Settings | None = None,
        libraries: tuple[Library, ...] = LIBRARIES,
        npm_factory: Callable[[], NpmClient] | None = None,
        github_factory: Callable[[], GitHubClient] | None = None,
    ) -> None:
        self.config = config or settings
        self.store = store
        self.registry = registry
        self.libraries = libraries
        self.aggregator = aggregator or Aggregator(
            store, registry, org=self.config.org, libraries=libraries,
        )
        self.npm_factory = npm_factory or self._default_npm
        self.github_factory = github_factory or self._default_github
        self.flights = SingleFlight()
        self._sessions: dict[str, tuple[Any, AsyncExitStack]] = {}
        self._session_users: dict[str, int] = {}
        self._session_lock = asyncio.Lock()

    @asynccontextmanager
    async def _client(self, kind: str) -> AsyncIterator[Any]:
        """Open (or join) the shared "npm" or "github" client."""
        async with self._session_lock:
            if kind not in self._sessions:
                factory = self.npm_factory if kind == "npm" else self.github_factory
                stack = AsyncExitStack()
                client = await stack.enter_async_context(factory())
                self._sessions[kind] = (client, stack)
                self._session_users[kind] = 0
            self._session_users[kind] += 1
            client, stack = self._sessions[kind]

        try:
            yield client
        finally:
            self._session_users[kind] -= 1
            if not self._session_users[kind]:
                del self._sessions[kind], self._session_users[kind]
                await stack.aclose()

    def _default_npm(self) -> NpmClient:
        return NpmClient(
            rate_limit=self.config.npm_rate_limit,
            user_agent=self.config.user_agent,
            max_retries=self.config.max_retries,
            backoff_base=self.config.backoff_base,
        )

    def _default_github(self) -> GitHubClient:
        return GitHubClient(
            token=self.config.github_auth_token,
            rate_limit=self.config.github_rate_limit,
            user_agent=self.config.user_agent,
            max_retries=self.config.max_retries,
            backoff_base=self.config.backoff_base,
        )

    def today(self) -> date:
        """As-of date for chunk planning, from the store's clock."""
        return self.store.clock().date()

    # --- Batching ---

    async def _run_batched(
        self,
        subjects: Sequence[str],
        worker: Callable[[str], Awaitable[Any]],
        result: RefreshResult,
        key: Callable[[str], str],
    ) -> None:
        """Run ``worker`` over subjects in fixed-size batches.

        Outcomes are recorded into ``result`` as each batch settles, so
        a caller that is cancelled mid-run keeps the finished batches.
        """
        size = self.config.refresh_concurrency
        batches = [subjects[i:i + size] for i in range(0, len(subjects), size)]

        for index, batch in enumerate(batches):
            if index > 0 and self.config.refresh_batch_delay > 0:
                await asyncio.sleep(self.config.refresh_batch_delay)

            outcomes = await asyncio.gather(
                *(worker(subject) for subject in batch), return_exceptions=True,
            )
            for subject, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning("Refresh of %s failed: %s", key(subject), outcome)
                    result.failures[key(subject)] = str(outcome) or type(outcome).__name__
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.successes.append(key(subject))

            logger.debug("Batch %d/%d done (%d subjects)", index + 1, len(batches), len(batch))

    # --- npm ---

    async def _package_start(self, npm: NpmClient, package: str) -> date:
        """Creation date of a package, looked up once and kept in the registry."""
        known = await self.registry.get(package)
        if known is not None and known.created_date is not None:
            return known.created_date

        created = await npm.fetch_creation_date(package)
        await self.registry.set_created_date(package, created)
        return created

    async def _drop_superseded(self, package: str, start: date, current: str) -> int:
        """Delete mutable chunk rows of ``start`` written on earlier as-of dates.

        The trailing chunk's key carries the as-of date, so every refresh
        writes a new row for it; only the newest one is kept.
        """
        dropped = 0
        for entry in await self.store.list_entries(f"{package}|{start.isoformat()}|"):
            if entry.key != current and not entry.immutable:
                dropped += await self.store.delete(entry.key)
        if dropped:
            logger.debug("%s: dropped %d superseded chunk rows", package, dropped)
        return dropped

    async def _refresh_package(self, npm: NpmClient, package: str) -> PackageStats:
        as_of = self.today()
        start = await self._package_start(npm, package)
        chunks = generate_chunks(start, as_of, self.config.chunk_size_days)
        keys = [chunk.cache_key(package) for chunk in chunks]
        cached = await self.store.get_batch(keys, include_expired=True)

        series: list[DownloadSeries] = []
        fetched = 0
        for chunk, key in zip(chunks, keys):
            entry = cached.get(key)
            if entry is not None and entry.immutable:
                series.append(DownloadSeries.from_dict(entry.value))
                continue

            piece = await npm.fetch_downloads(package, chunk.start, chunk.end)
            # A closed chunk is only frozen once npm actually knew the package
            immutable = chunk.is_immutable(as_of) and piece.found
            await self.store.set(key, piece.to_dict(), immutable=immutable)
            await self._drop_superseded(package, chunk.start, key)
            series.append(piece)
            fetched += 1

        latest = next((s for s in reversed(series) if s.downloads), None)
        stats = PackageStats(
            downloads=sum(s.total for s in series),
            rate_per_day=rate_per_day(latest.downloads) if latest else 0.0,
            updated_at=self.store.clock(),
        )
        await self.store.set(package_key(package), stats.to_dict(), immutable=False)

        logger.info(
            "%s: %d downloads (%d/%d chunks fetched)",
            package, stats.downloads, fetched, len(chunks),
        )
        return stats

    async def _refresh_package_once(self, npm: NpmClient, package: str) -> PackageStats:
        return await self.flights.do(
            package_key(package), lambda: self._refresh_package(npm, package),
        )

    async def refresh_package(self, package: str) -> PackageStats:
        """Refresh the download chunks and totals of one npm package.

        Immutable chunks already in the cache are reused; missing and
        mutable chunks are fetched.

        Args:
            package: npm package name

        Returns:
            The package's new totals

        Raises:
            UpstreamError: If npm fails after retries
        """
        async with self._client("npm") as npm:
            return await self._refresh_package_once(npm, package)

    async def _refresh_packages(
        self,
        npm: NpmClient,
        packages: Sequence[str],
        result: RefreshResult,
    ) -> None:
        await self._run_batched(
            list(dict.fromkeys(packages)),
            lambda package: self._refresh_package_once(npm, package),
            result,
            key=package_key,
        )

    async def refresh_packages(self, packages: Sequence[str]) -> RefreshResult:
        """Refresh several npm packages in batches."""
        started = time.monotonic()
        result = RefreshResult()
        async with self._client("npm") as npm:
            await self._refresh_packages(npm, packages, result)
        result.duration = time.monotonic() - started
        return result

    async def discover_packages(self, npm: NpmClient, org: str) -> int:
        """Register every package of the npm org plus catalog legacy packages.

        Returns:
            Number of packages registered
        """
        names = await npm.list_org_packages(org)
        for name in names:
            library_id, is_legacy = resolve_library_id(name, org, self.libraries)
            await self.registry.register(name, library_id, is_legacy)

        legacy = 0
        for library in self.libraries:
            for name in library.legacy_packages:
                await self.registry.register(name, library.id, is_legacy=True)
                legacy += 1

        logger.info("Discovered %d @%s packages and %d legacy packages", len(names), org, legacy)
        return len(names) + legacy

    # --- GitHub ---

    async def _store_github(self, key: str, stats: RepoStats) -> None:
        """Cache GitHub stats, keeping the previous values alongside."""
        payload = stats.to_dict()
        previous = await self.store.get_expired(key)
        if previous is not None:
            payload["previous"] = {k: v for k, v in previous.value.items() if k != "previous"}
        await self.store.set(key, payload, immutable=False)

    async def _refresh_repo(self, github: GitHubClient, repo: str) -> RepoStats:
        async def _run() -> RepoStats:
            stats = await github.fetch_repo_stats(repo)
            await self._store_github(repo_key(repo), stats)
            logger.info("%s: %d stars, %d forks", repo, stats.star_count, stats.fork_count)
            return stats

        return await self.flights.do(repo_key(repo), _run)

    async def _refresh_github_org(self, github: GitHubClient, org: str) -> RepoStats:
        async def _run() -> RepoStats:
            stats = await github.fetch_owner_stats(org)
            await self._store_github(github_org_key(org), stats)
            logger.info(
                "GitHub org %s: %d stars across %s repositories",
                org, stats.star_count, stats.repository_count,
            )
            return stats

        return await self.flights.do(github_org_key(org), _run)

    # --- Stages ---

    async def _org_stage(self, org: str, result: RefreshResult) -> None:
        async with self._client("npm") as npm:
            try:
                await self.discover_packages(npm, org)
            except Exception as e:
                logger.warning("Package discovery for @%s failed, using registry: %s", org, e)

            packages = await self.aggregator.org_packages(org)
            logger.info("Refreshing %d npm packages for @%s", len(packages), org)
            await self._refresh_packages(npm, packages, result)

        async with self._client("github") as github:
            try:
                await self._refresh_github_org(github, org)
                result.successes.append(github_org_key(org))
            except Exception as e:
                logger.warning("GitHub org stats for %s failed: %s", org, e)
                result.failures[github_org_key(org)] = str(e) or type(e).__name__

    async def _libraries_stage(self, result: RefreshResult) -> None:
        repos: dict[str, str] = {}
        for library in self.libraries:
            if not library.repo:
                logger.debug("Library %s has no repository, skipped", library.id)
                continue
            repos.setdefault(library.repo.lower(), library.repo)

        async with self._client("github") as github:
            await self._run_batched(
                list(repos.values()),
                lambda repo: self._refresh_repo(github, repo),
                result,
                key=repo_key,
            )

    async def _presets_stage(self, result: RefreshResult) -> None:
        done = set(result.successes)
        packages = [p for p in preset_packages() if package_key(p) not in done]
        async with self._client("npm") as npm:
            await self._refresh_packages(npm, packages, result)

    async def _rebuild(self, org: str, result: RefreshResult) -> None:
        try:
            await self.aggregator.rebuild_all(org)
        except Exception as e:
            logger.error("Rollup rebuild failed: %s", e)
            result.failures["rollups"] = str(e) or type(e).__name__

    async def refresh_org_stats(self, org: str | None = None) -> RefreshResult:
        """Refresh npm totals and GitHub stats of the whole org, then rollups.

        Package discovery failing is logged and the registry's current
        package set is used instead.
        """
        org = org or self.config.org
        started = time.monotonic()
        result = RefreshResult()
        await self._org_stage(org, result)
        await self._rebuild(org, result)
        result.duration = time.monotonic() - started
        logger.info("Org refresh: %s", result.summary())
        return result

    async def refresh_all_libraries(self) -> RefreshResult:
        """Refresh GitHub stats of every catalog library that has a repo.

        Libraries sharing a repository are fetched once.
        """
        started = time.monotonic()
        result = RefreshResult()
        await self._libraries_stage(result)
        result.duration = time.monotonic() - started
        logger.info("Library refresh: %s", result.summary())
        return result

    async def _full_refresh(self, org: str) -> RefreshResult:
        started = time.monotonic()
        result = RefreshResult()
        budget = self.config.refresh_budget_seconds

        async def _stages() -> None:
            await self._org_stage(org, result)
            await self._libraries_stage(result)
            await self._presets_stage(result)

        try:
            await asyncio.wait_for(_stages(), timeout=budget)
        except asyncio.TimeoutError:
            result.timed_out = True
            logger.warning("Refresh budget of %.0fs exhausted, keeping partial results", budget)

        await self._rebuild(org, result)
        result.duration = time.monotonic() - started
        logger.info(result.summary())
        return result

    async def run_full_refresh(self, org: str | None = None) -> RefreshResult:
        """Refresh org, libraries and presets under the wall-clock budget.

        Concurrent calls for the same org share one run.

        Returns:
            RefreshResult; ``timed_out`` is set when the budget ran out
        """
        org = org or self.config.org
        return await self.flights.do(f"run:{org}", lambda: self._full_refresh(org))
