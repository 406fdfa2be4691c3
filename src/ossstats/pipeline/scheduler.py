"""Periodic and background execution of refresh runs.

RefreshScheduler fires a full refresh every ``interval`` seconds.
BackgroundRunner executes fire-and-forget work (the 202 refresh endpoint),
keeps a reference to every task until it settles and logs the outcome,
since nobody awaits it.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ossstats.pipeline.orchestrator import RefreshOrchestrator, RefreshResult

logger = logging.getLogger(__name__)


class BackgroundRunner:
    """Supervised pool of fire-and-forget tasks."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task[Any]:
        """Start ``factory()`` in the background. Must be called from a running loop."""
        task = asyncio.ensure_future(factory())
        self._tasks.add(task)
        task.add_done_callback(lambda t, n=name: self._settle(n, t))
        logger.info("Background task %s started", name)
        return task

    def _settle(self, name: str, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s cancelled", name)
            return
        error = task.exception()
        if error is not None:
            logger.error("Background task %s failed: %s", name, error, exc_info=error)
            return
        outcome = task.result()
        if isinstance(outcome, RefreshResult):
            logger.info("Background task %s: %s", name, outcome.summary())
        else:
            logger.info("Background task %s finished", name)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks and wait for them to settle."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class RefreshScheduler:
    """Runs ``orchestrator.run_full_refresh()`` on a fixed period.

    The first run starts immediately. A failed run is logged and the
    schedule continues.

    Args:
        orchestrator: Refresh orchestrator to drive
        interval_hours: Period between run starts (default: 6)
    """

    def __init__(self, orchestrator: RefreshOrchestrator, interval_hours: float = 6.0) -> None:
        self.orchestrator = orchestrator
        self.interval = interval_hours * 3600
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> RefreshResult | None:
        try:
            result = await self.orchestrator.run_full_refresh()
        except Exception as e:
            logger.error("Scheduled refresh failed: %s", e, exc_info=True)
            return None
        logger.info("Scheduled refresh: %s", result.summary())
        return result

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.ensure_future(self._loop())
        logger.info("Refresh scheduled every %.1f hours", self.interval / 3600)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
