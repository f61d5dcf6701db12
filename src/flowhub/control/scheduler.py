"""Maintenance scheduler - orphan sweep + export GC.

Background tasks:
- Orphan sweep: records whose container vanished -> STOPPED (every 5 min)
- Export GC: log exports older than the retention period (every hour)

Failure impact: low (stale status until the next read, disk usage).
Both jobs share one loop; each run is bounded by operation_timeout.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from flowhub.app.config import SchedulerConfig, get_settings
from flowhub.core.logging_schema import Component, LogEvent
from flowhub.services.lifecycle import LifecycleManager

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Runs periodic maintenance jobs against the lifecycle manager.

    tick() runs each job whose interval has elapsed:
    - orphan sweep: every orphan_sweep_interval
    - export GC: every export_gc_interval
    """

    def __init__(
        self,
        lifecycle: LifecycleManager,
        config: SchedulerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lifecycle = lifecycle
        self._config = config or get_settings().scheduler
        self._clock = clock
        self._last_sweep: float | None = None
        self._last_gc: float | None = None
        self._running = False

    def _due(self, last: float | None, interval: float, now: float) -> bool:
        return last is None or now - last >= interval

    async def tick(self) -> None:
        """Execute scheduled jobs based on elapsed time."""
        now = self._clock()

        if self._due(self._last_sweep, self._config.orphan_sweep_interval, now):
            await self._safe("orphan_sweep", self._lifecycle.reconcile_orphans)
            self._last_sweep = now

        if self._due(self._last_gc, self._config.export_gc_interval, now):
            await self._safe("export_gc", self._lifecycle.cleanup_exports)
            self._last_gc = now

    async def _safe(self, job: str, action: Callable[[], Awaitable[object]]) -> None:
        """Run one job under the operation timeout; log and swallow failures."""
        try:
            result = await asyncio.wait_for(action(), self._config.operation_timeout)
        except asyncio.CancelledError:
            raise
        except TimeoutError:
            logger.warning(
                "Maintenance job %s timed out after %.0fs",
                job,
                self._config.operation_timeout,
                extra={
                    "event": LogEvent.OPERATION_TIMEOUT,
                    "component": Component.SCH,
                    "job": job,
                },
            )
            return
        except Exception as e:
            logger.exception(
                "Maintenance job %s failed: %s",
                job,
                e,
                extra={"component": Component.SCH, "job": job},
            )
            return
        logger.debug(
            "Maintenance job %s done: %s",
            job,
            result,
            extra={"event": LogEvent.SCHEDULER_TICK, "component": Component.SCH, "job": job},
        )

    async def run(self) -> None:
        """Main scheduler loop. Exits when cancelled or stopped."""
        self._running = True
        logger.info(
            "Starting maintenance scheduler",
            extra={"event": LogEvent.APP_STARTED, "component": Component.SCH},
        )
        try:
            while self._running:
                await self.tick()
                await asyncio.sleep(self._config.tick_interval)
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False
