"""Chunk planner: deterministic date ranges for download caching.

Download history is cached in fixed-size calendar chunks anchored at the
package's start date. Because the anchor and the size never change, every
chunk that ends before "today" gets the same boundaries (and therefore the
same cache key) no matter which day the refresh runs. Only the trailing chunk
moves as time passes.

Usage:
    from datetime import date
    from ossstats.chunks import generate_chunks

    chunks = generate_chunks(date(2019, 10, 25), date(2025, 12, 6))
    chunks[0].cache_key("@tanstack/react-query")
    # '@tanstack/react-query|2019-10-25|2021-03-07|daily'
"""

from dataclasses import dataclass
from datetime import date, timedelta

DEFAULT_CHUNK_DAYS = 500

# npm download data starts on this date
NPM_EPOCH = date(2015, 1, 10)


@dataclass(frozen=True)
class DateChunk:
    """Inclusive calendar-day range."""

    start: date
    end: date

    @property
    def days(self) -> int:
        """Number of calendar days covered, inclusive."""
        return (self.end - self.start).days + 1

    def is_immutable(self, as_of: date) -> bool:
        """A chunk is closed once it ends strictly before the as-of date."""
        return self.end < as_of

    def cache_key(self, subject: str, granularity: str = "daily") -> str:
        """Series cache key: ``subject|from|to|granularity``."""
        return f"{subject}|{self.start.isoformat()}|{self.end.isoformat()}|{granularity}"

    def to_dict(self) -> dict[str, str]:
        return {"from": self.start.isoformat(), "to": self.end.isoformat()}


def generate_chunks(
    start_date: date,
    as_of_date: date,
    chunk_size_days: int = DEFAULT_CHUNK_DAYS,
) -> list[DateChunk]:
    """Split ``[start_date, as_of_date]`` into consecutive fixed-size chunks.

    Each chunk spans ``chunk_size_days`` calendar days starting the day after
    the previous one ended. The final chunk is clamped to ``as_of_date`` and
    may be shorter.

    Args:
        start_date: First day of the first chunk
        as_of_date: Last day covered ("today" at refresh time)
        chunk_size_days: Days per chunk (default: 500)

    Returns:
        Chunks in ascending order. Empty if start_date is after as_of_date.

    Raises:
        ValueError: If chunk_size_days is less than 1
    """
    if chunk_size_days < 1:
        raise ValueError(f"chunk_size_days must be >= 1, got {chunk_size_days}")

    chunks: list[DateChunk] = []
    span = timedelta(days=chunk_size_days - 1)
    current = start_date

    while current <= as_of_date:
        end = min(current + span, as_of_date)
        chunks.append(DateChunk(start=current, end=end))
        current = end + timedelta(days=1)

    return chunks
