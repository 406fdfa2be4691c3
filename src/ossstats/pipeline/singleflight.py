"""Single-flight: at most one in-flight task per key.

Concurrent callers asking for the same key share the task started by the
first caller and all receive its result (or its exception). The key is
released as soon as the task settles, so a later call starts fresh work.

Each caller waits through ``asyncio.shield``: a cancelled caller leaves on
its own, and the shared task is only cancelled once its last caller has
left.

Usage:
    flights = SingleFlight()
    stats = await flights.do("npm:@tanstack/query-core", lambda: fetch(...))
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """Per-key de-duplication of concurrent async work."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self._waiters: dict[asyncio.Task[Any], int] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    async def do(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``factory()`` for ``key`` unless a run is already in flight.

        Args:
            key: De-duplication key
            factory: Zero-argument callable returning the awaitable to run.
                Only called when no task for ``key`` exists.

        Returns:
            The shared task's result

        Raises:
            asyncio.CancelledError: If this caller is cancelled. Other
                callers of the same key keep waiting for the result.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._release(k, _t))
        else:
            logger.debug("Joining in-flight task for %s", key)

        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        finally:
            self._leave(key, task)

    def _leave(self, key: str, task: asyncio.Task[Any]) -> None:
        self._waiters[task] -= 1
        if self._waiters[task]:
            return

        del self._waiters[task]
        if not task.done():
            logger.debug("Last caller of %s left, cancelling its task", key)
            self._release(key, task)
            task.cancel()

    def _release(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
