"""Cache-only read access for consumers (HTTP routes, tools, CLI)."""

from ossstats.api.reader import RANGES, StatsReader, StatsUnavailable
from ossstats.api.tools import NpmStatsInput, npm_stats

__all__ = ["RANGES", "StatsReader", "StatsUnavailable", "NpmStatsInput", "npm_stats"]
