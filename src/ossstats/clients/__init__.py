"""Upstream client layer for ossstats.

Async HTTP clients for:
- npm: daily download ranges, creation dates, org package listings
- GitHub: repository and organisation stars, forks, contributors, dependents
"""

from ossstats.clients.base import (
    BaseAsyncClient,
    NetworkError,
    RateLimiter,
    UpstreamError,
    UpstreamNotFound,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from ossstats.clients.github import GitHubClient
from ossstats.clients.npm import NpmClient

__all__ = [
    "BaseAsyncClient",
    "RateLimiter",
    "UpstreamError",
    "UpstreamRateLimited",
    "UpstreamTimeout",
    "UpstreamNotFound",
    "NetworkError",
    "NpmClient",
    "GitHubClient",
]
