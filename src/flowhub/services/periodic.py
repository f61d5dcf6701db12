"""Cancellable periodic task.

Sleeps for ``interval()`` and then runs ``tick()``, forever. The interval
is re-read before every sleep so configuration changes apply to the next
poll. A failing tick is logged and the schedule continues.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(
        self,
        name: str,
        tick: Callable[[], Awaitable[object]],
        interval: Callable[[], float],
        *,
        run_immediately: bool = False,
        log_extra: dict | None = None,
    ) -> None:
        self.name = name
        self._tick = tick
        self._interval = interval
        self._run_immediately = run_immediately
        self._log_extra = log_extra or {}
        self._task: asyncio.Task | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def _run_tick(self) -> None:
        try:
            await self._tick()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "%s tick failed: %s",
                self.name,
                exc,
                extra={**self._log_extra, "error_type": type(exc).__name__},
            )
        finally:
            self.ticks += 1

    async def _run(self) -> None:
        if self._run_immediately:
            await self._run_tick()
        while True:
            await asyncio.sleep(self._interval())
            await self._run_tick()

    async def stop(self) -> None:
        """Cancel and wait. Safe to call when not running."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
