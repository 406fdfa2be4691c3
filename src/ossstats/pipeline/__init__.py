"""Refresh pipeline: upstream clients → cache store → rollups.

Components:
- RefreshOrchestrator: batched, budgeted refresh runs
- SingleFlight: one in-flight task per subject key
- RefreshScheduler / BackgroundRunner: periodic and fire-and-forget runs
"""

from ossstats.pipeline.orchestrator import RefreshOrchestrator, RefreshResult
from ossstats.pipeline.scheduler import BackgroundRunner, RefreshScheduler
from ossstats.pipeline.singleflight import SingleFlight

__all__ = [
    "RefreshOrchestrator",
    "RefreshResult",
    "RefreshScheduler",
    "BackgroundRunner",
    "SingleFlight",
]
