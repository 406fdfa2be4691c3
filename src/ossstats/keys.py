"""Cache key layout.

Series chunks use DateChunk.cache_key(): ``{package}|{from}|{to}|{granularity}``.
Point-in-time values use the prefixes below.
"""


def package_key(package: str) -> str:
    return f"npm:{package}"


def library_key(library_id: str) -> str:
    return f"npm-library:{library_id}"


def org_key(org: str) -> str:
    return f"npm-org:{org}"


def repo_key(repo: str) -> str:
    return f"github:{repo.lower()}"


def github_org_key(org: str) -> str:
    return f"github-org:{org.lower()}"
