"""Tracking for background asyncio tasks.

Every unit of blocking work the orchestrator dispatches (a host fetch, a
nudge, a store read) runs as a task spawned here, so none is left dangling
when the watcher stops.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, TypeVar

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


class TaskRegistry:
    """Owns dispatched units until they finish or are cancelled at shutdown.

    Example:
        tasks = TaskRegistry()
        tasks.spawn(fetch_host(executor), name="fetch:bay3")
        await tasks.shutdown(timeout=2.0)
    """

    def __init__(self) -> None:
        self._running: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, ResultT], name: str | None = None) -> asyncio.Task[ResultT]:
        unit = asyncio.create_task(coro, name=name)
        self._running.add(unit)
        unit.add_done_callback(self._finished)
        logger.debug("Dispatched %s (%d in flight)", unit.get_name(), len(self._running))
        return unit

    def _finished(self, unit: asyncio.Task[Any]) -> None:
        self._running.discard(unit)
        if unit.cancelled():
            return
        error = unit.exception()
        if error is not None:
            # Units are expected to report failures as messages; anything here escaped that
            logger.error("Unit %s raised: %s", unit.get_name(), error, exc_info=error)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel whatever is still running and wait up to `timeout` seconds."""
        outstanding = [unit for unit in self._running if not unit.done()]
        if not outstanding:
            return

        logger.debug("Cancelling %d units", len(outstanding))
        for unit in outstanding:
            unit.cancel()

        _, stuck = await asyncio.wait(outstanding, timeout=timeout)
        for unit in stuck:
            logger.warning("Unit %s ignored cancellation for %.1fs", unit.get_name(), timeout)

    def task_count(self) -> int:
        return len(self._running)
