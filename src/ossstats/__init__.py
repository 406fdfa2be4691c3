"""ossstats: cached npm download and GitHub statistics for an open-source org."""

__version__ = "0.1.0"
