"""GitHub client for repository and organisation metrics.

Provides async access to:
- Repository stars/forks (REST /repos/{repo})
- Organisation repository listing (REST /orgs/{org}/repos, paginated)
- Contributor and dependent counts, which the REST API cannot give
  without walking every page, scraped from the repository HTML page

API Documentation: https://docs.github.com/en/rest/repos/repos

Usage:
    from ossstats.clients.github import GitHubClient

    async with GitHubClient(token=settings.github_auth_token) as client:
        stats = await client.fetch_repo_stats("TanStack/query")
        print(stats.star_count, stats.dependent_count)
"""

import asyncio
import logging
from typing import Any

import httpx
from bs4 import BeautifulSoup

from ossstats.clients.base import BaseAsyncClient, UpstreamError, UpstreamNotFound
from ossstats.models import RepoStats

logger = logging.getLogger(__name__)

WEB_URL = "https://github.com"

# Parallel HTML scrapes while summing an organisation
_SCRAPE_CONCURRENCY = 8


def parse_count(value: str | None) -> int | None:
    """Parse a counter such as "12,345" into an int."""
    if not value:
        return None
    try:
        return int(value.replace(",", "").strip())
    except ValueError:
        return None


def parse_repo_counters(html: str) -> tuple[int | None, int | None]:
    """Extract (contributors, dependents) from a repository page.

    The counts live in the ``title`` attribute of the ``span.Counter`` inside
    the "Contributors" and "Used by" sidebar links.

    Args:
        html: Repository page HTML

    Returns:
        Tuple of contributor and dependent counts; None where absent.
    """
    soup = BeautifulSoup(html, "html.parser")

    def _counter(href_suffix: str) -> int | None:
        for span in soup.select(f'a[href$="{href_suffix}"] span.Counter'):
            count = parse_count(span.get("title"))
            if count is not None:
                return count
        return None

    return _counter("/graphs/contributors"), _counter("/network/dependents")


class GitHubClient(BaseAsyncClient):
    """Async client for GitHub REST and repository pages.

    Args:
        token: GitHub token. Unauthenticated access works but has a far
            lower rate limit.
        rate_limit: Max requests per second (default: 5)
        user_agent: User-Agent header sent with every request
        max_retries: Retries per request on rate limiting/5xx/timeouts
        backoff_base: Initial retry delay in seconds
    """

    def __init__(
        self,
        token: str | None = None,
        rate_limit: int = 5,
        user_agent: str = "ossstats",
        max_retries: int = 3,
        backoff_base: float = 1.0,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": user_agent,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("No GitHub token configured, using unauthenticated rate limits")

        super().__init__(
            base_url="https://api.github.com",
            headers=headers,
            rate_limit=rate_limit,
            max_retries=max_retries,
            backoff_base=backoff_base,
        )

    def _is_rate_limited(self, response: httpx.Response) -> bool:
        """GitHub signals an exhausted quota with 403 + X-RateLimit-Remaining: 0."""
        if response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
            reset = response.headers.get("X-RateLimit-Reset")
            logger.warning("GitHub rate limit exhausted (reset at epoch %s)", reset)
            return True
        return super()._is_rate_limited(response)

    async def scrape_counters(self, repo: str) -> tuple[int | None, int | None]:
        """Scrape contributor and dependent counts for a repository.

        Best effort: any upstream failure is logged and yields (None, None)
        so a missing counter never fails the whole repository.
        """
        try:
            response = await self._send(
                "GET", f"{WEB_URL}/{repo}", headers={"Accept": "text/html"},
            )
        except UpstreamError as e:
            logger.warning("Scraping %s failed: %s", repo, e)
            return None, None

        contributors, dependents = parse_repo_counters(response.text)
        if contributors is None:
            logger.warning("No contributor count found for %s", repo)
        if dependents is None:
            logger.debug("No dependent count found for %s", repo)
        return contributors, dependents

    async def fetch_repo_stats(self, repo: str) -> RepoStats:
        """Get stars, forks, contributors and dependents for a repository.

        Args:
            repo: "owner/name"

        Returns:
            RepoStats. ``found`` is False (all zeros) for unknown repositories.

        Raises:
            UpstreamError: If the REST call fails after retries
        """
        try:
            data: dict[str, Any] = await self.get(f"/repos/{repo}")
        except UpstreamNotFound:
            logger.warning("GitHub repo %s not found", repo)
            return RepoStats(found=False)

        contributors, dependents = await self.scrape_counters(repo)

        return RepoStats(
            star_count=int(data.get("stargazers_count") or 0),
            contributor_count=contributors or 0,
            dependent_count=dependents,
            fork_count=int(data.get("forks_count") or 0),
        )

    async def list_org_repos(self, org: str) -> list[dict[str, Any]]:
        """List every repository of an organisation, following pagination.

        Raises:
            UpstreamNotFound: If the organisation does not exist
        """
        repos: list[dict[str, Any]] = []
        page = 1

        while True:
            response = await self._send(
                "GET",
                f"/orgs/{org}/repos",
                params={"per_page": 100, "page": page, "sort": "stars"},
            )
            repos.extend(response.json())

            if "next" not in response.links:
                break
            page += 1

        return repos

    async def fetch_owner_stats(self, org: str) -> RepoStats:
        """Sum GitHub metrics across every repository of an organisation.

        Contributor and dependent counts are summed per repository, so a
        person contributing to two repos is counted twice.

        Args:
            org: Organisation login (e.g. "TanStack")

        Returns:
            RepoStats with ``repository_count`` set. ``found`` is False for
            unknown organisations.
        """
        try:
            repos = await self.list_org_repos(org)
        except UpstreamNotFound:
            logger.warning("GitHub org %s not found", org)
            return RepoStats(found=False, repository_count=0)

        semaphore = asyncio.Semaphore(_SCRAPE_CONCURRENCY)

        async def _scrape(full_name: str) -> tuple[int | None, int | None]:
            async with semaphore:
                return await self.scrape_counters(full_name)

        counters = await asyncio.gather(
            *(_scrape(r["full_name"]) for r in repos if r.get("full_name"))
        )

        return RepoStats(
            star_count=sum(int(r.get("stargazers_count") or 0) for r in repos),
            contributor_count=sum(c or 0 for c, _ in counters),
            dependent_count=sum(d or 0 for _, d in counters),
            fork_count=sum(int(r.get("forks_count") or 0) for r in repos),
            repository_count=len(repos),
        )
