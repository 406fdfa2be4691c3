"""Data types shared by the clients, cache, aggregator and read API.

Everything persisted in the cache is a plain JSON dict; each type here knows
how to turn itself into that dict and back.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class DownloadSeries:
    """Daily npm download counts for one package over one date range.

    ``found`` is False when npm answered 404 / "package not found";
    such a series is empty but still a valid, cacheable result.
    """

    package: str
    start: date
    end: date
    downloads: list[dict[str, Any]] = field(default_factory=list)
    found: bool = True

    @property
    def total(self) -> int:
        return sum(int(d.get("downloads") or 0) for d in self.downloads)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "package": self.package,
            "from": self.start.isoformat(),
            "to": self.end.isoformat(),
            "found": self.found,
            "total": self.total,
            "downloads": self.downloads,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DownloadSeries":
        return cls(
            package=data["package"],
            start=date.fromisoformat(data["from"]),
            end=date.fromisoformat(data["to"]),
            downloads=list(data.get("downloads") or []),
            found=bool(data.get("found", True)),
        )


@dataclass
class RepoStats:
    """GitHub metrics for a repository, or summed over an organisation."""

    star_count: int = 0
    contributor_count: int = 0
    dependent_count: int | None = None  # scraped; GitHub has no API for it
    fork_count: int = 0
    repository_count: int | None = None  # org-level only
    found: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "star_count": self.star_count,
            "contributor_count": self.contributor_count,
            "dependent_count": self.dependent_count,
            "fork_count": self.fork_count,
            "repository_count": self.repository_count,
            "found": self.found,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepoStats":
        return cls(
            star_count=int(data.get("star_count") or 0),
            contributor_count=int(data.get("contributor_count") or 0),
            dependent_count=data.get("dependent_count"),
            fork_count=int(data.get("fork_count") or 0),
            repository_count=data.get("repository_count"),
            found=bool(data.get("found", True)),
        )


@dataclass
class PackageStats:
    """All-time download total of one package."""

    downloads: int = 0
    rate_per_day: float = 0.0
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "downloads": self.downloads,
            "rate_per_day": self.rate_per_day,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageStats":
        return cls(
            downloads=int(data.get("downloads") or 0),
            rate_per_day=float(data.get("rate_per_day") or 0.0),
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class LibraryStats:
    """npm rollup for one library."""

    library_id: str
    total_downloads: int
    package_count: int
    rate_per_day: float = 0.0
    previous_total_downloads: int | None = None
    packages: dict[str, PackageStats] = field(default_factory=dict)
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "library_id": self.library_id,
            "total_downloads": self.total_downloads,
            "package_count": self.package_count,
            "rate_per_day": self.rate_per_day,
            "previous_total_downloads": self.previous_total_downloads,
            "packages": {name: s.to_dict() for name, s in self.packages.items()},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LibraryStats":
        return cls(
            library_id=data["library_id"],
            total_downloads=int(data.get("total_downloads") or 0),
            package_count=int(data.get("package_count") or 0),
            rate_per_day=float(data.get("rate_per_day") or 0.0),
            previous_total_downloads=data.get("previous_total_downloads"),
            packages={
                name: PackageStats.from_dict(s)
                for name, s in (data.get("packages") or {}).items()
            },
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class OrgStats:
    """npm rollup across every library and legacy package of an org."""

    org: str
    total_downloads: int
    package_count: int
    rate_per_day: float = 0.0
    packages: dict[str, PackageStats] = field(default_factory=dict)
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "org": self.org,
            "total_downloads": self.total_downloads,
            "package_count": self.package_count,
            "rate_per_day": self.rate_per_day,
            "packages": {name: s.to_dict() for name, s in self.packages.items()},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrgStats":
        return cls(
            org=data["org"],
            total_downloads=int(data.get("total_downloads") or 0),
            package_count=int(data.get("package_count") or 0),
            rate_per_day=float(data.get("rate_per_day") or 0.0),
            packages={
                name: PackageStats.from_dict(s)
                for name, s in (data.get("packages") or {}).items()
            },
            updated_at=_parse_dt(data.get("updated_at")),
        )
