"""npm API client for download counts and registry metadata.

Provides async access to:
- Daily download ranges (api.npmjs.org/downloads/range)
- Package creation dates (registry.npmjs.org/{package})
- Org package listings (registry.npmjs.org/-/org/{org}/package)

The downloads endpoint rejects ranges longer than 18 months, so
fetch_downloads() splits long ranges and splices the pieces back together.

API Documentation: https://github.com/npm/registry/blob/main/docs/download-counts.md

Usage:
    from ossstats.clients.npm import NpmClient

    async with NpmClient() as client:
        series = await client.fetch_downloads(
            "@tanstack/react-query", date(2024, 1, 1), date(2024, 3, 31)
        )
        print(series.total)
"""

import logging
from datetime import date, datetime
from typing import Any

from ossstats.chunks import NPM_EPOCH, generate_chunks
from ossstats.clients.base import BaseAsyncClient, UpstreamNotFound
from ossstats.models import DownloadSeries

logger = logging.getLogger(__name__)

# Longest range the downloads endpoint serves in one request
MAX_RANGE_DAYS = 540

REGISTRY_URL = "https://registry.npmjs.org"


class NpmClient(BaseAsyncClient):
    """Async client for the npm downloads and registry APIs.

    Args:
        rate_limit: Max requests per second (default: 10)
        user_agent: User-Agent header sent with every request
        max_retries: Retries per request on 429/5xx/timeouts (default: 3)
        backoff_base: Initial retry delay in seconds (default: 1.0)
    """

    def __init__(
        self,
        rate_limit: int = 10,
        user_agent: str = "ossstats",
        max_retries: int = 3,
        backoff_base: float = 1.0,
    ) -> None:
        super().__init__(
            base_url="https://api.npmjs.org",
            headers={"Accept": "application/json", "User-Agent": user_agent},
            rate_limit=rate_limit,
            max_retries=max_retries,
            backoff_base=backoff_base,
        )

    async def fetch_downloads(
        self,
        package: str,
        date_from: date,
        date_to: date,
    ) -> DownloadSeries:
        """Get the daily download series of a package.

        Ranges longer than MAX_RANGE_DAYS are fetched as several requests
        and spliced into one ascending series with no duplicate days.

        Args:
            package: npm package name (scoped names allowed)
            date_from: First day (inclusive)
            date_to: Last day (inclusive)

        Returns:
            DownloadSeries. ``found`` is False when npm does not know the
            package for any part of the range.

        Raises:
            UpstreamError: On rate limiting, timeouts or network failures
                that persist after retries
        """
        by_day: dict[str, int] = {}
        found_any = False

        for piece in generate_chunks(date_from, date_to, MAX_RANGE_DAYS):
            endpoint = f"/downloads/range/{piece.start.isoformat()}:{piece.end.isoformat()}/{package}"
            try:
                data = await self.get(endpoint)
            except UpstreamNotFound:
                logger.info(
                    "%s %s:%s: not found", package, piece.start.isoformat(), piece.end.isoformat(),
                )
                continue

            if isinstance(data, dict) and data.get("error"):
                logger.info("%s %s:%s: %s", package, piece.start, piece.end, data["error"])
                continue

            found_any = True
            for point in data.get("downloads", []):
                day = point.get("day")
                if day:
                    by_day[day] = int(point.get("downloads") or 0)

        downloads = [{"day": day, "downloads": by_day[day]} for day in sorted(by_day)]
        return DownloadSeries(
            package=package,
            start=date_from,
            end=date_to,
            downloads=downloads,
            found=found_any,
        )

    async def fetch_creation_date(self, package: str) -> date:
        """Get the date a package was first published.

        Falls back to NPM_EPOCH (start of npm download data) when the
        registry has no record or no usable timestamp.

        Args:
            package: npm package name

        Returns:
            Creation date
        """
        try:
            data = await self.get(f"{REGISTRY_URL}/{package}")
        except UpstreamNotFound:
            logger.warning("No registry entry for %s, using %s", package, NPM_EPOCH)
            return NPM_EPOCH

        created = (data.get("time") or {}).get("created") if isinstance(data, dict) else None
        if not created:
            return NPM_EPOCH

        try:
            created_date = datetime.fromisoformat(created.replace("Z", "+00:00")).date()
        except ValueError:
            logger.warning("Unparseable creation date %r for %s", created, package)
            return NPM_EPOCH

        return max(created_date, NPM_EPOCH)

    async def list_org_packages(self, org: str) -> list[str]:
        """List every package published under an npm scope.

        Args:
            org: Scope name without '@' (e.g. "tanstack")

        Returns:
            Sorted package names. Empty if the org is unknown.
        """
        try:
            data: dict[str, Any] = await self.get(f"{REGISTRY_URL}/-/org/{org}/package")
        except UpstreamNotFound:
            logger.warning("npm org %s not found", org)
            return []

        return sorted(data.keys())
