"""Daily download series math: rate per day and re-binning.

Series are lists of ``{"day": "YYYY-MM-DD", "downloads": int}`` as returned
by the npm range API.

Rate per day (the one formula used everywhere):
    mean of the last RATE_WINDOW available daily counts of the most recent
    non-empty chunk. With fewer points, the mean of what exists. No
    points, or only non-numeric ones, gives 0.0.
"""

import logging
from typing import Any, Literal

import pandas as pd

logger = logging.getLogger(__name__)

Bin = Literal["daily", "weekly", "monthly"]
BINS: tuple[str, ...] = ("daily", "weekly", "monthly")

RATE_WINDOW = 7


def to_series(downloads: list[dict[str, Any]]) -> pd.Series:
    """Convert an npm daily list into a date-indexed Series, ascending.

    Rows with an unparseable day or count are dropped. Duplicate days keep
    the last value.
    """
    if not downloads:
        return pd.Series(dtype="float64")

    df = pd.DataFrame(downloads)
    if "day" not in df.columns or "downloads" not in df.columns:
        return pd.Series(dtype="float64")

    df["day"] = pd.to_datetime(df["day"], errors="coerce")
    df["downloads"] = pd.to_numeric(df["downloads"], errors="coerce")
    df = df.dropna(subset=["day", "downloads"])
    df = df.drop_duplicates(subset="day", keep="last").sort_values("day")

    return pd.Series(df["downloads"].to_numpy(), index=pd.DatetimeIndex(df["day"]))


def rate_per_day(downloads: list[dict[str, Any]], window: int = RATE_WINDOW) -> float:
    """Average daily downloads over the last ``window`` available points.

    Args:
        downloads: Daily series of the most recent chunk
        window: Number of trailing points to average (default: 7)

    Returns:
        Mean downloads per day, 0.0 when there is no usable data
    """
    series = to_series(downloads)
    if series.empty:
        return 0.0

    tail = series.tail(window)
    if len(tail) < window:
        logger.debug("Only %d daily points for rate, wanted %d", len(tail), window)
    return float(tail.mean())


def bin_series(downloads: list[dict[str, Any]], bin: Bin = "daily") -> list[dict[str, Any]]:
    """Re-bucket a daily series into daily, weekly or monthly sums.

    Weekly buckets are ISO weeks keyed by their Monday; monthly buckets are
    keyed by the first of the month. Buckets are only emitted for periods
    that contain at least one source day.

    Args:
        downloads: Daily series
        bin: "daily", "weekly" or "monthly"

    Returns:
        Ascending list of ``{"date": "YYYY-MM-DD", "downloads": int}``

    Raises:
        ValueError: If bin is not one of BINS
    """
    if bin not in BINS:
        raise ValueError(f"bin must be one of {BINS}, got {bin!r}")

    series = to_series(downloads)
    if series.empty:
        return []

    if bin == "daily":
        grouped = series
    else:
        freq = "W-SUN" if bin == "weekly" else "M"
        starts = series.index.to_period(freq).start_time
        grouped = series.groupby(starts).sum().sort_index()

    return [
        {"date": ts.date().isoformat(), "downloads": int(value)}
        for ts, value in grouped.items()
    ]
