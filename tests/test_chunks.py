"""Tests for the chunk planner.

Test Coverage:
    - Fixed 500-day sizing with a clamped final chunk
    - Prefix stability across as-of dates
    - Cache key format and immutability
    - Edge cases (empty range, single day, invalid size)
"""

from datetime import date, timedelta

import pytest

from ossstats.chunks import DEFAULT_CHUNK_DAYS, DateChunk, generate_chunks

CREATED = date(2019, 10, 25)
AS_OF = date(2025, 12, 6)


class TestChunkSizing:
    """Every chunk but the last spans exactly chunk_size_days."""

    def test_full_chunks_are_500_days(self):
        chunks = generate_chunks(CREATED, AS_OF)
        assert len(chunks) > 1
        for chunk in chunks[:-1]:
            assert chunk.days == DEFAULT_CHUNK_DAYS

    def test_last_chunk_ends_on_as_of(self):
        chunks = generate_chunks(CREATED, AS_OF)
        assert chunks[-1].end == AS_OF
        assert chunks[-1].days <= DEFAULT_CHUNK_DAYS

    def test_chunks_are_contiguous(self):
        chunks = generate_chunks(CREATED, AS_OF)
        assert chunks[0].start == CREATED
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start == prev.end + timedelta(days=1)

    def test_custom_size(self):
        chunks = generate_chunks(date(2024, 1, 1), date(2024, 1, 10), chunk_size_days=3)
        assert [(c.start.day, c.end.day) for c in chunks] == [(1, 3), (4, 6), (7, 9), (10, 10)]


class TestPrefixStability:
    """Closed chunks keep their boundaries whichever day the planner runs."""

    def test_consecutive_days_agree_on_closed_chunks(self):
        first = generate_chunks(CREATED, date(2025, 12, 6))
        second = generate_chunks(CREATED, date(2025, 12, 7))

        assert first[:-1] == second[:-1]
        assert first[-1].start == second[-1].start
        assert first[-1].end != second[-1].end

    def test_far_apart_as_of_dates_share_closed_prefix(self):
        early = generate_chunks(CREATED, date(2023, 6, 1))
        late = generate_chunks(CREATED, date(2025, 12, 6))

        closed = [c for c in early if c.end < date(2023, 6, 1)]
        assert late[:len(closed)] == closed

    def test_deterministic(self):
        assert generate_chunks(CREATED, AS_OF) == generate_chunks(CREATED, AS_OF)


class TestReactQueryExample:
    """Worked example for a package created 2019-10-25."""

    def test_first_chunk_key(self):
        chunks = generate_chunks(CREATED, AS_OF)
        assert chunks[0] == DateChunk(date(2019, 10, 25), date(2021, 3, 7))
        assert chunks[0].cache_key("@tanstack/react-query") == (
            "@tanstack/react-query|2019-10-25|2021-03-07|daily"
        )

    def test_only_last_chunk_is_mutable(self):
        chunks = generate_chunks(CREATED, AS_OF)
        assert all(c.is_immutable(AS_OF) for c in chunks[:-1])
        assert not chunks[-1].is_immutable(AS_OF)

    def test_second_chunk_starts_after_first(self):
        chunks = generate_chunks(CREATED, AS_OF)
        assert chunks[1].start == date(2021, 3, 8)


class TestEdgeCases:

    def test_start_after_as_of_is_empty(self):
        assert generate_chunks(date(2025, 1, 2), date(2025, 1, 1)) == []

    def test_single_day(self):
        chunks = generate_chunks(AS_OF, AS_OF)
        assert chunks == [DateChunk(AS_OF, AS_OF)]
        assert chunks[0].days == 1
        assert not chunks[0].is_immutable(AS_OF)

    @pytest.mark.parametrize("size", [0, -5])
    def test_invalid_size_raises(self, size):
        with pytest.raises(ValueError, match="chunk_size_days"):
            generate_chunks(CREATED, AS_OF, chunk_size_days=size)

    def test_granularity_in_key(self):
        chunk = DateChunk(date(2024, 1, 1), date(2024, 1, 31))
        assert chunk.cache_key("swr", "weekly") == "swr|2024-01-01|2024-01-31|weekly"
        assert chunk.to_dict() == {"from": "2024-01-01", "to": "2024-01-31"}
