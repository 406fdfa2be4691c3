"""Rollups and series math over cached download data."""

from ossstats.aggregation.aggregator import Aggregator
from ossstats.aggregation.series import BINS, bin_series, rate_per_day, to_series

__all__ = ["Aggregator", "BINS", "bin_series", "rate_per_day", "to_series"]
