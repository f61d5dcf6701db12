"""Instance lifecycle manager.

Owns instance metadata and drives the container runtime through
create / start / stop / pause / restart / delete. Persisted status is a
cache of the live container state: every read re-derives it and a
changed status is persisted and published on the ``status`` topic.

Lifecycle operations on one instance are serialized by the per-instance
lock. Monitoring and log collection are started once an instance is
RUNNING and stopped before it is stopped, paused or deleted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from flowhub.app.config import LifecycleConfig, get_settings
from flowhub.app.metrics.collector import (
    LIFECYCLE_DURATION,
    LIFECYCLE_OPERATIONS,
    ORPHANS_CLEANED,
)
from flowhub.core.domain.instance import InstanceStatus, Topic
from flowhub.core.errors import (
    FlowHubError,
    InstanceNotFoundError,
    InvalidDescriptorError,
    RuntimeUnavailableError,
)
from flowhub.core.interfaces import (
    ContainerDetails,
    ContainerRuntime,
    DescriptorProvider,
    InstanceStore,
)
from flowhub.core.lock import discard_instance_lock, get_instance_lock
from flowhub.core.logging_schema import Component, LogEvent
from flowhub.core.models import (
    CreateInstanceInput,
    HealthSnapshot,
    Instance,
    LogEntry,
    LogFilter,
    MetricsSnapshot,
    MonitoringConfig,
    generate_ulid,
    utc_now,
)
from flowhub.core.naming import runtime_id, volume_name
from flowhub.core.retryable import bounded, to_flowhub_error, with_retry
from flowhub.services.fanout import EventFanout
from flowhub.services.log_collector import LogCollector
from flowhub.services.monitor import InstanceMonitor
from flowhub.services.monitoring_config import MonitoringConfigHolder
from flowhub.services.port_allocator import PortAllocator

logger = logging.getLogger(__name__)

_settings = get_settings()

_CONTAINER_STATUS = {
    "running": InstanceStatus.RUNNING,
    "paused": InstanceStatus.PAUSED,
    "exited": InstanceStatus.STOPPED,
    "created": InstanceStatus.CREATED,
}


def derive_status(
    details: ContainerDetails | None, persisted: InstanceStatus
) -> InstanceStatus:
    """Map live container state onto an instance status.

    An absent container means STOPPED, except for a never-started
    instance which keeps CREATED.
    """
    if details is None:
        if persisted == InstanceStatus.CREATED:
            return InstanceStatus.CREATED
        return InstanceStatus.STOPPED
    return _CONTAINER_STATUS.get(details.state, InstanceStatus.ERROR)


class LifecycleManager:
    """Create, start, stop, pause, restart and delete n8n instances."""

    def __init__(
        self,
        store: InstanceStore,
        runtime: ContainerRuntime,
        descriptors: DescriptorProvider,
        allocator: PortAllocator,
        monitor: InstanceMonitor,
        collector: LogCollector,
        fanout: EventFanout,
        config: MonitoringConfigHolder,
        lifecycle: LifecycleConfig | None = None,
    ) -> None:
        self._store = store
        self._runtime = runtime
        self._descriptors = descriptors
        self._allocator = allocator
        self._monitor = monitor
        self._collector = collector
        self._fanout = fanout
        self._config = config
        self._lc = lifecycle or _settings.lifecycle
        self._api_timeout = _settings.docker.api_timeout

    # =========================================================================
    # Helpers
    # =========================================================================

    @asynccontextmanager
    async def _track(self, operation: str) -> AsyncIterator[None]:
        started = time.monotonic()
        try:
            yield
        except Exception:
            LIFECYCLE_OPERATIONS.labels(operation=operation, result="error").inc()
            raise
        else:
            LIFECYCLE_OPERATIONS.labels(operation=operation, result="success").inc()
        finally:
            LIFECYCLE_DURATION.labels(operation=operation).observe(
                time.monotonic() - started
            )

    async def _require(self, instance_id: str, operation: str) -> Instance:
        instance = await self._store.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id, operation=operation)
        return instance

    def _publish_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        previous: InstanceStatus | None,
    ) -> None:
        self._fanout.publish(
            Topic.STATUS,
            {
                "instance_id": instance_id,
                "status": status.value,
                "previous_status": previous.value if previous else None,
                "timestamp": utc_now().isoformat(),
            },
            instance_id=instance_id,
        )

    async def _set_status(self, instance: Instance, status: InstanceStatus) -> Instance:
        """Persist a status and publish it if it changed.

        Only updates an existing record: a refresh racing a delete must not
        bring the record back.
        """
        previous = instance.status
        saved = await self._store.update_status(instance.id, status)
        if saved is None:
            logger.debug(
                "Status %s dropped for deleted instance %s",
                status,
                instance.id,
                extra={"component": Component.LC, "instance_id": instance.id},
            )
            return instance.model_copy(update={"status": status})
        if previous != status:
            logger.info(
                "Instance %s: %s -> %s",
                instance.id,
                previous,
                status,
                extra={
                    "event": LogEvent.STATE_CHANGED,
                    "component": Component.LC,
                    "instance_id": instance.id,
                    "status": status,
                    "previous_status": previous,
                },
            )
            self._publish_status(instance.id, status, previous)
        return saved

    async def _inspect(self, instance_id: str) -> ContainerDetails | None:
        return await asyncio.wait_for(
            self._runtime.inspect(runtime_id(instance_id)), self._api_timeout
        )

    async def _sync_status(self, instance: Instance) -> Instance:
        """Re-derive status from the runtime; keep it if the runtime is unreachable."""
        try:
            details = await self._inspect(instance.id)
        except Exception as exc:
            logger.debug(
                "Status refresh skipped for %s: %s",
                instance.id,
                exc,
                extra={"component": Component.LC, "instance_id": instance.id},
            )
            return instance
        status = derive_status(details, instance.status)
        if status == instance.status:
            return instance
        return await self._set_status(instance, status)

    async def _refresh(self, instance: Instance) -> Instance:
        if get_instance_lock(instance.id).locked():
            return instance
        return await self._sync_status(instance)

    async def _stop_observation(self, instance_id: str) -> None:
        await self._monitor.stop(instance_id)
        await self._collector.stop(instance_id)

    def _start_observation(self, instance: Instance) -> None:
        self._monitor.start(instance)
        self._collector.start(instance.id)

    # =========================================================================
    # Create / read
    # =========================================================================

    async def create(self, data: CreateInstanceInput) -> Instance:
        """Claim a port, write the descriptor and persist a CREATED record.

        No container exists after create; ``start`` brings it up.

        Raises:
            ResourceExhaustedError: no free port in the configured range
        """
        instance_id = generate_ulid()
        async with self._track("create"), get_instance_lock(instance_id):
            port = await self._allocator.allocate(instance_id)
            try:
                await self._descriptors.materialize(
                    instance_id, port, data.client_name, data.username, data.password
                )
                now = utc_now()
                instance = await self._store.save(
                    Instance(
                        id=instance_id,
                        client_name=data.client_name,
                        subdomain=data.resolved_subdomain(instance_id),
                        port=port,
                        status=InstanceStatus.CREATED,
                        created_at=now,
                        updated_at=now,
                    )
                )
            except Exception:
                self._allocator.release_instance(instance_id)
                try:
                    await self._descriptors.remove(instance_id)
                except Exception as cleanup_exc:
                    logger.warning(
                        "Descriptor cleanup failed for %s: %s",
                        instance_id,
                        cleanup_exc,
                        extra={"component": Component.LC, "instance_id": instance_id},
                    )
                raise

            # The metadata record now protects the port
            self._allocator.release(port)

        self._publish_status(instance.id, instance.status, None)
        logger.info(
            "Instance created: %s (client=%s, port=%d)",
            instance.id,
            instance.client_name,
            instance.port,
            extra={
                "event": LogEvent.INSTANCE_CREATED,
                "component": Component.LC,
                "instance_id": instance.id,
                "port": instance.port,
            },
        )
        return instance

    async def list(self) -> list[Instance]:
        """All instances with status re-derived from the runtime."""
        instances = await self._store.list()
        return list(await asyncio.gather(*(self._refresh(i) for i in instances)))

    async def get(self, instance_id: str) -> Instance:
        """Raises InstanceNotFoundError for unknown ids."""
        return await self._refresh(await self._require(instance_id, "get"))

    # =========================================================================
    # Start / stop / pause / restart
    # =========================================================================

    async def start(self, instance_id: str) -> Instance:
        """Bring the instance's container up and start observing it.

        Any failure other than an unknown id marks the instance ERROR.

        Raises:
            InstanceNotFoundError: unknown id
            RuntimeUnavailableError: runtime ping failed
            InvalidDescriptorError: descriptor failed validation
            OperationTimeoutError: bring-up exceeded its deadline
            TransientRuntimeError: any other runtime failure
        """
        async with self._track("start"), get_instance_lock(instance_id):
            return await self._start(instance_id)

    async def _start(self, instance_id: str) -> Instance:
        instance = await self._require(instance_id, "start")
        try:
            return await self._bring_up(instance)
        except Exception as exc:
            error = to_flowhub_error(exc, instance_id=instance_id, operation="start")
            logger.error(
                "Start failed for %s: %s",
                instance_id,
                error,
                extra={
                    "event": LogEvent.OPERATION_FAILED,
                    "component": Component.LC,
                    "instance_id": instance_id,
                    "operation": "start",
                    "error_class": error.error_class,
                },
            )
            await self._mark_error(instance_id, instance)
            if error is exc:
                raise
            raise error from exc

    async def _mark_error(self, instance_id: str, fallback: Instance) -> None:
        try:
            latest = await self._store.get(instance_id) or fallback
            await self._set_status(latest, InstanceStatus.ERROR)
        except Exception as exc:
            logger.warning(
                "Could not persist ERROR for %s: %s",
                instance_id,
                exc,
                extra={"component": Component.LC, "instance_id": instance_id},
            )

    async def _bring_up(self, instance: Instance) -> Instance:
        instance_id = instance.id
        try:
            reachable = await asyncio.wait_for(self._runtime.ping(), self._lc.ping_timeout)
        except Exception as exc:
            raise RuntimeUnavailableError(
                instance_id=instance_id, operation="start", reason=str(exc) or type(exc).__name__
            ) from exc
        if not reachable:
            raise RuntimeUnavailableError(
                instance_id=instance_id, operation="start", reason="ping failed"
            )

        valid, errors = await bounded(
            self._descriptors.validate(instance_id),
            self._lc.validate_timeout,
            instance_id=instance_id,
            operation="start",
        )
        if not valid:
            raise InvalidDescriptorError(errors, instance_id=instance_id)
        descriptor = await self._descriptors.load(instance_id)

        instance = await self._set_status(instance, InstanceStatus.STARTING)
        await bounded(
            self._runtime.bring_up(descriptor),
            self._lc.bring_up_timeout,
            instance_id=instance_id,
            operation="start",
        )
        await asyncio.sleep(self._lc.settle_delay)

        details = await bounded(
            self._inspect(instance_id),
            self._api_timeout,
            instance_id=instance_id,
            operation="start",
        )
        instance = await self._set_status(instance, derive_status(details, instance.status))
        if instance.status == InstanceStatus.RUNNING:
            self._start_observation(instance)

        logger.info(
            "Instance started: %s (status=%s)",
            instance_id,
            instance.status,
            extra={
                "event": LogEvent.INSTANCE_STARTED,
                "component": Component.LC,
                "instance_id": instance_id,
                "status": instance.status,
            },
        )
        return instance

    async def stop(self, instance_id: str) -> Instance:
        """Stop observing and bring the container down. Always ends STOPPED.

        Runtime failures during bring-down are logged, not raised.
        """
        async with self._track("stop"), get_instance_lock(instance_id):
            return await self._stop(instance_id, "stop")

    async def _stop(self, instance_id: str, operation: str) -> Instance:
        instance = await self._require(instance_id, operation)
        await self._stop_observation(instance_id)
        try:
            await bounded(
                self._runtime.bring_down(runtime_id(instance_id)),
                self._lc.bring_down_timeout,
                instance_id=instance_id,
                operation=operation,
            )
        except FlowHubError as exc:
            logger.warning(
                "Bring-down failed for %s, marking stopped anyway: %s",
                instance_id,
                exc,
                extra={
                    "event": LogEvent.OPERATION_FAILED,
                    "component": Component.LC,
                    "instance_id": instance_id,
                    "operation": operation,
                    "error_class": exc.error_class,
                },
            )

        instance = await self._set_status(instance, InstanceStatus.STOPPED)
        logger.info(
            "Instance stopped: %s",
            instance_id,
            extra={
                "event": LogEvent.INSTANCE_STOPPED,
                "component": Component.LC,
                "instance_id": instance_id,
            },
        )
        return instance

    async def pause(self, instance_id: str) -> Instance:
        """Freeze the container and stop observing it.

        Monitoring stops so health probes do not auto-restart the paused
        container.
        """
        async with self._track("pause"), get_instance_lock(instance_id):
            instance = await self._require(instance_id, "pause")
            rid = runtime_id(instance_id)
            details = await bounded(
                self._inspect(instance_id),
                self._api_timeout,
                instance_id=instance_id,
                operation="pause",
            )
            if details is not None and details.state != "paused":
                await bounded(
                    self._runtime.pause(rid),
                    self._api_timeout,
                    instance_id=instance_id,
                    operation="pause",
                )
            await self._stop_observation(instance_id)
            instance = await self._set_status(instance, InstanceStatus.PAUSED)

        logger.info(
            "Instance paused: %s",
            instance_id,
            extra={
                "event": LogEvent.INSTANCE_PAUSED,
                "component": Component.LC,
                "instance_id": instance_id,
            },
        )
        return instance

    async def restart(self, instance_id: str) -> Instance:
        """Stop, wait the restart grace period, then start.

        A failing stop propagates and start is not attempted.
        """
        async with self._track("restart"), get_instance_lock(instance_id):
            instance = await self._require(instance_id, "restart")
            await self._set_status(instance, InstanceStatus.RESTARTING)
            await self._stop(instance_id, "restart")
            await asyncio.sleep(self._lc.restart_grace)
            return await self._start(instance_id)

    # =========================================================================
    # Delete
    # =========================================================================

    async def delete(self, instance_id: str) -> bool:
        """Remove the instance and everything it owns.

        Returns False if any cleanup step failed. The instance is gone
        either way.
        """
        async with self._track("delete"), get_instance_lock(instance_id):
            instance = await self._sync_status(await self._require(instance_id, "delete"))
            if instance.status != InstanceStatus.STOPPED:
                instance = await self._stop(instance_id, "delete")
            else:
                await self._stop_observation(instance_id)

            self._publish_status(instance_id, InstanceStatus.DELETING, instance.status)

            steps = (
                ("metadata", lambda: self._store.delete(instance_id)),
                ("descriptor", lambda: self._descriptors.remove(instance_id)),
                (
                    "volume",
                    lambda: with_retry(
                        lambda: self._runtime.remove_volume(volume_name(instance_id)),
                        max_retries=3,
                        base_delay=0.5,
                    ),
                ),
            )
            complete = True
            for step, action in steps:
                try:
                    await action()
                except Exception as exc:
                    complete = False
                    logger.warning(
                        "Delete step %s failed for %s: %s",
                        step,
                        instance_id,
                        exc,
                        extra={
                            "event": LogEvent.OPERATION_FAILED,
                            "component": Component.LC,
                            "instance_id": instance_id,
                            "operation": "delete",
                            "step": step,
                        },
                    )
            self._allocator.release_instance(instance_id)

        discard_instance_lock(instance_id)
        logger.info(
            "Instance deleted: %s (complete=%s)",
            instance_id,
            complete,
            extra={
                "event": LogEvent.INSTANCE_DELETED,
                "component": Component.LC,
                "instance_id": instance_id,
                "complete": complete,
            },
        )
        return complete

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def reconcile_orphans(self) -> list[str]:
        """Mark records whose container vanished as STOPPED.

        CREATED records never had a container and are left alone. Instances
        with an operation in flight are skipped until the next sweep.

        Returns:
            Ids of every record found without a container.
        """
        orphans: list[str] = []
        records = await self._store.list()
        for instance in records:
            if instance.status == InstanceStatus.CREATED:
                continue
            if get_instance_lock(instance.id).locked():
                continue
            log_extra = {"component": Component.LC, "instance_id": instance.id}
            try:
                if await self._inspect(instance.id) is not None:
                    continue
                await self._stop_observation(instance.id)
                if instance.status != InstanceStatus.STOPPED:
                    await self._set_status(instance, InstanceStatus.STOPPED)
            except Exception as exc:
                logger.warning(
                    "Orphan check failed for %s: %s",
                    instance.id,
                    exc,
                    extra={**log_extra, "error_type": type(exc).__name__},
                )
                continue
            orphans.append(instance.id)

        if orphans:
            ORPHANS_CLEANED.inc(len(orphans))
            logger.info(
                "Reconciled %d orphaned instances",
                len(orphans),
                extra={
                    "event": LogEvent.ORPHAN_CLEANED,
                    "component": Component.LC,
                    "instance_ids": orphans,
                },
            )
        await self._remove_stray_descriptors({i.id for i in records})
        return orphans

    async def _remove_stray_descriptors(self, known: set[str]) -> list[str]:
        """Delete descriptor directories that have no metadata record.

        These are left behind when a create fails and its cleanup fails
        too. Directories of an in-flight create are skipped; the store is
        re-read under the instance lock before anything is removed.
        """
        removed: list[str] = []
        for instance_id in await self._descriptors.list_instance_dirs():
            if instance_id in known:
                continue
            lock = get_instance_lock(instance_id)
            if lock.locked():
                continue
            try:
                async with lock:
                    if await self._store.get(instance_id) is not None:
                        continue
                    await self._descriptors.remove(instance_id)
            except Exception as exc:
                logger.warning(
                    "Stray descriptor cleanup failed for %s: %s",
                    instance_id,
                    exc,
                    extra={
                        "component": Component.LC,
                        "instance_id": instance_id,
                        "error_type": type(exc).__name__,
                    },
                )
                continue
            discard_instance_lock(instance_id)
            removed.append(instance_id)

        if removed:
            logger.info(
                "Removed %d stray descriptor directories",
                len(removed),
                extra={
                    "event": LogEvent.DESCRIPTOR_CLEANED,
                    "component": Component.LC,
                    "instance_ids": removed,
                },
            )
        return removed

    async def resume_monitoring(self) -> list[str]:
        """Start observing every RUNNING instance (after a process restart)."""
        resumed: list[str] = []
        for instance in await self.list():
            if instance.status != InstanceStatus.RUNNING:
                continue
            if self._monitor.is_monitoring(instance.id):
                continue
            self._start_observation(instance)
            resumed.append(instance.id)
        return resumed

    # =========================================================================
    # Monitoring passthroughs
    # =========================================================================

    async def get_logs(
        self, instance_id: str, log_filter: LogFilter | None = None
    ) -> list[LogEntry]:
        await self._require(instance_id, "logs")
        return self._collector.query(instance_id, log_filter)

    async def export_logs(
        self, instance_id: str, log_filter: LogFilter | None = None
    ) -> Path:
        await self._require(instance_id, "export_logs")
        return await self._collector.export(instance_id, log_filter)

    async def get_metrics(self, instance_id: str) -> MetricsSnapshot:
        await self._require(instance_id, "metrics")
        return await self._monitor.collect_metrics(instance_id)

    async def check_health(self, instance_id: str) -> HealthSnapshot:
        instance = await self._require(instance_id, "health")
        return await self._monitor.check_health(instance)

    def get_monitoring_config(self) -> MonitoringConfig:
        return self._config.current

    async def update_monitoring_config(self, config: MonitoringConfig) -> MonitoringConfig:
        return await self._config.replace(config)

    async def cleanup_exports(self) -> int:
        return await self._collector.cleanup_exports()

    async def close(self) -> None:
        """Stop every monitor and log stream (application shutdown)."""
        await self._monitor.close()
        await self._collector.stop_all()
