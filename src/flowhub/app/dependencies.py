"""Service wiring and FastAPI dependency providers.

The services are process-wide singletons built once in the application
lifespan. Endpoints receive them through ``Depends``; tests replace them
with ``app.dependency_overrides``.
"""

from dataclasses import dataclass

from flowhub.adapters import DockerRuntime, TemplateDescriptorProvider
from flowhub.core.interfaces import ContainerRuntime, InstanceStore
from flowhub.infra import LogExportStore, SQLInstanceStore, get_session_factory
from flowhub.services import (
    EventFanout,
    InstanceMonitor,
    LifecycleManager,
    LogCollector,
    MonitoringConfigHolder,
    PortAllocator,
)


@dataclass
class Services:
    store: InstanceStore
    runtime: ContainerRuntime
    fanout: EventFanout
    config: MonitoringConfigHolder
    allocator: PortAllocator
    monitor: InstanceMonitor
    collector: LogCollector
    lifecycle: LifecycleManager


_services: Services | None = None


async def init_services() -> Services:
    """Build every service on top of the initialized database.

    Loads the persisted monitoring config before anything reads it.
    """
    global _services

    store = SQLInstanceStore(get_session_factory())
    runtime = DockerRuntime()
    fanout = EventFanout()
    config = MonitoringConfigHolder(store=store)
    await config.load()

    allocator = PortAllocator(runtime, store)
    monitor = InstanceMonitor(runtime, fanout, config)
    collector = LogCollector(runtime, fanout, config, LogExportStore())
    lifecycle = LifecycleManager(
        store,
        runtime,
        TemplateDescriptorProvider(),
        allocator,
        monitor,
        collector,
        fanout,
        config,
    )
    _services = Services(
        store=store,
        runtime=runtime,
        fanout=fanout,
        config=config,
        allocator=allocator,
        monitor=monitor,
        collector=collector,
        lifecycle=lifecycle,
    )
    return _services


async def close_services() -> None:
    """Stop monitors and log streams, then close every subscription."""
    global _services
    if _services is None:
        return
    await _services.lifecycle.close()
    _services.fanout.close()
    _services = None


def _require() -> Services:
    if _services is None:
        raise RuntimeError("Services not initialized")
    return _services


def get_lifecycle() -> LifecycleManager:
    return _require().lifecycle


def get_fanout() -> EventFanout:
    return _require().fanout


def get_allocator() -> PortAllocator:
    return _require().allocator


def get_runtime() -> ContainerRuntime:
    return _require().runtime
