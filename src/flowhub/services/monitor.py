"""Per-instance health probing and metrics sampling.

Each monitored instance has two independent PeriodicTasks: a health probe
and a metrics sampler. They are created once by ``start`` and cancelled
together by ``stop``.

Auto-restart drives the container directly through the runtime gateway.
It does not go through the lifecycle manager or change persisted status;
the next read of the instance re-derives status from the container.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from flowhub.app.config import get_settings
from flowhub.app.metrics.collector import (
    AUTO_RESTARTS,
    HEALTH_PROBE_DURATION,
    HEALTH_PROBES,
    MONITORED_INSTANCES,
)
from flowhub.core.domain.instance import AlertLevel, AlertType, Topic
from flowhub.core.errors import (
    FlowHubError,
    OperationTimeoutError,
    TransientRuntimeError,
)
from flowhub.core.interfaces import ContainerDetails, ContainerRuntime
from flowhub.core.logging_schema import Component, LogEvent
from flowhub.core.models import HealthSnapshot, Instance, MetricsSnapshot, utc_now
from flowhub.core.naming import runtime_id
from flowhub.services.alerts import raise_alert
from flowhub.services.fanout import EventFanout
from flowhub.services.monitoring_config import MonitoringConfigHolder
from flowhub.services.periodic import PeriodicTask

logger = logging.getLogger(__name__)

_settings = get_settings()

# stats?stream=false waits one sampling cycle (~1s) before answering
_STATS_GRACE = 5.0


# =============================================================================
# Metric computation
# =============================================================================


def format_uptime(seconds: float) -> str:
    total = int(max(seconds, 0))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h {minutes}m {secs}s"
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def compute_metrics(
    instance_id: str,
    stats: dict[str, Any],
    details: ContainerDetails,
    now: datetime,
) -> MetricsSnapshot:
    """Derive a MetricsSnapshot from a raw stats sample and inspect data."""
    cpu = stats.get("cpu_stats") or {}
    precpu = stats.get("precpu_stats") or {}
    cpu_usage = cpu.get("cpu_usage") or {}
    cpu_delta = cpu_usage.get("total_usage", 0) - (precpu.get("cpu_usage") or {}).get(
        "total_usage", 0
    )
    system_delta = cpu.get("system_cpu_usage", 0) - precpu.get("system_cpu_usage", 0)
    online_cpus = cpu.get("online_cpus") or len(cpu_usage.get("percpu_usage") or []) or 1
    cpu_percent = 0.0
    if cpu_delta > 0 and system_delta > 0:
        cpu_percent = (cpu_delta / system_delta) * online_cpus * 100

    memory = stats.get("memory_stats") or {}
    usage = memory.get("usage", 0)
    limit = memory.get("limit") or 0
    memory_percent = usage / limit * 100 if limit else 0.0

    uptime = 0.0
    if details.started_at is not None and details.state in ("running", "paused"):
        uptime = max((now - details.started_at).total_seconds(), 0.0)

    return MetricsSnapshot(
        instance_id=instance_id,
        cpu_usage_percent=round(cpu_percent, 2),
        memory_usage_percent=round(memory_percent, 2),
        memory_usage_mb=round(usage / 1024 / 1024, 2),
        uptime_seconds=round(uptime, 2),
        uptime_formatted=format_uptime(uptime),
        last_activity=now,
        container_id=details.id or None,
        image=details.image or None,
        created_at=details.created_at,
        started_at=details.started_at,
    )


# =============================================================================
# Monitor
# =============================================================================


@dataclass
class HealthState:
    """In-memory health counters for one monitoring session."""

    error_count: int = 0
    auto_restart_count: int = 0
    last_restart: datetime | None = None
    threshold_alerted: bool = False


@dataclass
class MonitorSession:
    instance_id: str
    port: int
    state: HealthState = field(default_factory=HealthState)
    tasks: list[PeriodicTask] = field(default_factory=list)
    last_health: HealthSnapshot | None = None
    last_metrics: MetricsSnapshot | None = None


@dataclass
class _ProbeResult:
    healthy: bool
    response_time_ms: float | None = None
    error: str | None = None


class InstanceMonitor:
    """Owns the monitor task-set of every monitored instance."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        fanout: EventFanout,
        config: MonitoringConfigHolder,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._runtime = runtime
        self._fanout = fanout
        self._config = config
        self._http = http_client or httpx.AsyncClient()
        self._owns_http = http_client is None
        self._sessions: dict[str, MonitorSession] = {}
        self._api_timeout = _settings.docker.api_timeout
        self._restart_timeout = _settings.lifecycle.bring_up_timeout

    # =========================================================================
    # Scheduling
    # =========================================================================

    def is_monitoring(self, instance_id: str) -> bool:
        return instance_id in self._sessions

    def monitored_ids(self) -> list[str]:
        return list(self._sessions)

    def session(self, instance_id: str) -> MonitorSession | None:
        return self._sessions.get(instance_id)

    def start(self, instance: Instance) -> bool:
        """Schedule health and metrics tasks. No-op if already monitoring."""
        if instance.id in self._sessions:
            return False

        session = MonitorSession(instance_id=instance.id, port=instance.port)
        log_extra = {"component": Component.MON, "instance_id": instance.id}
        session.tasks = [
            PeriodicTask(
                f"health-{instance.id}",
                lambda: self._health_tick(session),
                lambda: self._config.current.health_check.interval_seconds,
                log_extra={**log_extra, "event": LogEvent.HEALTH_CHECK_FAILED},
            ),
            PeriodicTask(
                f"metrics-{instance.id}",
                lambda: self._metrics_tick(session),
                lambda: self._config.current.metrics_interval_seconds,
                log_extra={**log_extra, "event": LogEvent.METRICS_FAILED},
            ),
        ]
        self._sessions[instance.id] = session
        for task in session.tasks:
            task.start()

        MONITORED_INSTANCES.set(len(self._sessions))
        logger.info(
            "Monitoring started for %s",
            instance.id,
            extra={**log_extra, "event": LogEvent.MONITORING_STARTED},
        )
        return True

    async def stop(self, instance_id: str) -> bool:
        """Cancel both tasks and drop the health state. Safe when idle."""
        session = self._sessions.pop(instance_id, None)
        if session is None:
            return False
        await asyncio.gather(*(task.stop() for task in session.tasks))
        MONITORED_INSTANCES.set(len(self._sessions))
        logger.info(
            "Monitoring stopped for %s",
            instance_id,
            extra={
                "event": LogEvent.MONITORING_STOPPED,
                "component": Component.MON,
                "instance_id": instance_id,
            },
        )
        return True

    async def stop_all(self) -> None:
        for instance_id in list(self._sessions):
            await self.stop(instance_id)

    async def close(self) -> None:
        await self.stop_all()
        if self._owns_http:
            await self._http.aclose()

    async def _health_tick(self, session: MonitorSession) -> None:
        await self._check(session.instance_id, session.port, session.state, session)

    async def _metrics_tick(self, session: MonitorSession) -> None:
        session.last_metrics = await self.collect_metrics(session.instance_id)

    # =========================================================================
    # Health
    # =========================================================================

    async def check_health(self, instance: Instance) -> HealthSnapshot:
        """On-demand probe.

        For a monitored instance this shares the session counters and
        applies the corrective action like a scheduled tick. Unmonitored
        instances (paused, stopped) are only reported on: nothing is
        restarted and no alert is raised.
        """
        session = self._sessions.get(instance.id)
        state = session.state if session else HealthState()
        return await self._check(instance.id, instance.port, state, session)

    async def _inspect(self, rid: str) -> ContainerDetails | None:
        return await asyncio.wait_for(self._runtime.inspect(rid), self._api_timeout)

    async def _probe_http(self, port: int) -> _ProbeResult:
        runtime_config = _settings.runtime
        hc = self._config.current.health_check
        url = f"http://{runtime_config.probe_host}:{port}{runtime_config.health_path}"
        error = "health check not attempted"
        for _ in range(max(1, hc.retries)):
            started = time.perf_counter()
            try:
                resp = await asyncio.wait_for(
                    self._http.get(url, timeout=hc.timeout_seconds), hc.timeout_seconds
                )
            except (TimeoutError, httpx.TimeoutException):
                error = f"Health check timed out after {hc.timeout_seconds:g}s"
                continue
            except httpx.HTTPError as exc:
                error = f"{type(exc).__name__}: {exc}"
                continue
            elapsed = time.perf_counter() - started
            if 200 <= resp.status_code < 300:
                HEALTH_PROBE_DURATION.observe(elapsed)
                return _ProbeResult(healthy=True, response_time_ms=round(elapsed * 1000, 2))
            error = f"Health endpoint returned HTTP {resp.status_code}"
        return _ProbeResult(healthy=False, error=error)

    async def _probe(self, rid: str, port: int) -> _ProbeResult:
        try:
            details = await self._inspect(rid)
        except TimeoutError:
            return _ProbeResult(healthy=False, error="Container inspect timed out")
        except Exception as exc:
            return _ProbeResult(healthy=False, error=f"Container inspect failed: {exc}")
        if details is None:
            return _ProbeResult(healthy=False, error="Container not found")
        if details.state != "running":
            return _ProbeResult(healthy=False, error=f"Container status: {details.state}")
        return await self._probe_http(port)

    async def _auto_restart(self, instance_id: str, rid: str, state: HealthState) -> None:
        log_extra = {
            "event": LogEvent.AUTO_RESTART,
            "component": Component.MON,
            "instance_id": instance_id,
        }
        try:
            await asyncio.wait_for(self._runtime.restart(rid), self._restart_timeout)
        except Exception as exc:
            reason = "timed out" if isinstance(exc, TimeoutError) else str(exc)
            AUTO_RESTARTS.labels(result="error").inc()
            logger.warning(
                "Auto-restart failed for %s: %s",
                instance_id,
                reason,
                extra={**log_extra, "error_type": type(exc).__name__},
            )
            raise_alert(
                self._fanout,
                instance_id,
                AlertLevel.ERROR,
                AlertType.HEALTH_CHECK_FAILED,
                f"Auto-restart failed for instance {instance_id}: {reason}",
            )
            return

        state.auto_restart_count += 1
        state.last_restart = utc_now()
        AUTO_RESTARTS.labels(result="success").inc()
        raise_alert(
            self._fanout,
            instance_id,
            AlertLevel.WARNING,
            AlertType.AUTO_RESTART,
            f"Auto-restarted unhealthy instance {instance_id}",
        )

    async def _correct(
        self, instance_id: str, rid: str, state: HealthState, error: str | None
    ) -> None:
        hc = self._config.current.health_check
        if hc.auto_restart:
            await self._auto_restart(instance_id, rid, state)
        elif state.error_count >= hc.alert_threshold and not state.threshold_alerted:
            state.threshold_alerted = True
            raise_alert(
                self._fanout,
                instance_id,
                AlertLevel.ERROR,
                AlertType.HEALTH_CHECK_FAILED,
                f"Instance {instance_id} failed {state.error_count} consecutive "
                f"health checks: {error}",
            )

    async def _check(
        self,
        instance_id: str,
        port: int,
        state: HealthState,
        session: MonitorSession | None,
    ) -> HealthSnapshot:
        rid = runtime_id(instance_id)
        result = await self._probe(rid, port)

        if result.healthy:
            state.error_count = 0
            state.threshold_alerted = False
            HEALTH_PROBES.labels(result="healthy").inc()
        else:
            state.error_count += 1
            HEALTH_PROBES.labels(result="unhealthy").inc()
            logger.log(
                logging.WARNING if session is not None else logging.DEBUG,
                "Instance %s unhealthy: %s",
                instance_id,
                result.error,
                extra={
                    "event": LogEvent.HEALTH_CHECK_FAILED,
                    "component": Component.MON,
                    "instance_id": instance_id,
                    "error_count": state.error_count,
                },
            )
            # Unmonitored reads are report-only
            if session is not None:
                await self._correct(instance_id, rid, state, result.error)

        snapshot = HealthSnapshot(
            instance_id=instance_id,
            is_healthy=result.healthy,
            last_check=utc_now(),
            response_time_ms=result.response_time_ms,
            error_count=state.error_count,
            last_error=result.error,
            auto_restart_count=state.auto_restart_count,
            last_restart=state.last_restart,
        )
        if session is not None:
            session.last_health = snapshot
        self._fanout.publish(Topic.HEALTH, snapshot, instance_id=instance_id)
        return snapshot

    # =========================================================================
    # Metrics
    # =========================================================================

    async def collect_metrics(self, instance_id: str) -> MetricsSnapshot:
        """Sample the container and publish the snapshot.

        Raises:
            OperationTimeoutError: inspect or stats exceeded its deadline
            TransientRuntimeError: container missing or runtime call failed
        """
        rid = runtime_id(instance_id)
        try:
            details = await self._inspect(rid)
            if details is None:
                raise TransientRuntimeError(
                    "Container not found", instance_id=instance_id, operation="metrics"
                )
            stats = await asyncio.wait_for(
                self._runtime.stats(rid), self._api_timeout + _STATS_GRACE
            )
        except FlowHubError:
            raise
        except TimeoutError as exc:
            raise OperationTimeoutError(
                self._api_timeout, instance_id=instance_id, operation="metrics"
            ) from exc
        except Exception as exc:
            raise TransientRuntimeError(
                str(exc), instance_id=instance_id, operation="metrics"
            ) from exc

        snapshot = compute_metrics(instance_id, stats, details, utc_now())
        session = self._sessions.get(instance_id)
        if session is not None:
            session.last_metrics = snapshot
        self._fanout.publish(Topic.METRICS, snapshot, instance_id=instance_id)
        return snapshot
