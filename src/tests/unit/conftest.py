"""Shared fixtures for flowhub unit tests."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from flowhub.core.domain.instance import InstanceStatus
from flowhub.core.interfaces import (
    ContainerDetails,
    ContainerRuntime,
    DescriptorProvider,
    InstanceStore,
    PortBinding,
)
from flowhub.core.models import HealthCheckConfig, Instance, MonitoringConfig
from flowhub.services.fanout import EventFanout
from flowhub.services.monitoring_config import MonitoringConfigHolder


@pytest.fixture
def mock_runtime() -> AsyncMock:
    """ContainerRuntime mock: reachable, no containers."""
    runtime = AsyncMock(spec=ContainerRuntime)
    runtime.ping.return_value = True
    runtime.inspect.return_value = None
    runtime.list_containers.return_value = []
    runtime.stats.return_value = {}
    return runtime


@pytest.fixture
def mock_store() -> AsyncMock:
    """InstanceStore mock backed by a dict (``store.records``)."""
    store = AsyncMock(spec=InstanceStore)
    records: dict[str, Instance] = {}
    store.records = records

    async def save(instance: Instance) -> Instance:
        records[instance.id] = instance
        return instance

    async def get(instance_id: str) -> Instance | None:
        return records.get(instance_id)

    async def update_status(instance_id: str, status: InstanceStatus) -> Instance | None:
        if instance_id not in records:
            return None
        records[instance_id] = records[instance_id].model_copy(update={"status": status})
        return records[instance_id]

    async def list_() -> list[Instance]:
        return sorted(records.values(), key=lambda i: i.created_at)

    async def delete(instance_id: str) -> bool:
        return records.pop(instance_id, None) is not None

    async def used_ports() -> set[int]:
        return {i.port for i in records.values()}

    store.save.side_effect = save
    store.get.side_effect = get
    store.update_status.side_effect = update_status
    store.list.side_effect = list_
    store.delete.side_effect = delete
    store.used_ports.side_effect = used_ports
    store.load_monitoring_config.return_value = None
    return store


@pytest.fixture
def mock_descriptors() -> AsyncMock:
    """DescriptorProvider mock whose descriptors always validate."""
    descriptors = AsyncMock(spec=DescriptorProvider)
    descriptors.materialize.return_value = Path("/tmp/instances/x/descriptor.json")
    descriptors.validate.return_value = (True, [])
    descriptors.list_instance_dirs.return_value = []
    return descriptors


@pytest.fixture
def fanout() -> EventFanout:
    return EventFanout(queue_maxsize=64)


@pytest.fixture
def monitoring_config() -> MonitoringConfig:
    """Fast, single-attempt health checks with auto-restart on."""
    return MonitoringConfig(
        health_check=HealthCheckConfig(
            interval_seconds=30,
            timeout_seconds=1,
            retries=1,
            auto_restart=True,
            alert_threshold=3,
        ),
        log_buffer_size=100,
    )


@pytest.fixture
def config_holder(monitoring_config: MonitoringConfig) -> MonitoringConfigHolder:
    return MonitoringConfigHolder(monitoring_config)


@pytest.fixture
def make_instance() -> Callable[..., Instance]:
    """Factory for Instance views."""
    counter = iter(range(1000))

    def _make(
        instance_id: str = "inst1",
        status: InstanceStatus = InstanceStatus.CREATED,
        port: int = 5600,
        client_name: str = "acme",
    ) -> Instance:
        created = datetime(2026, 1, 1, tzinfo=UTC) + timedelta(seconds=next(counter))
        return Instance(
            id=instance_id,
            client_name=client_name,
            subdomain=client_name,
            port=port,
            status=status,
            created_at=created,
            updated_at=created,
        )

    return _make


@pytest.fixture
def make_details() -> Callable[..., ContainerDetails]:
    """Factory for inspect results."""

    def _make(
        state: str = "running",
        name: str = "n8n-inst1",
        port: int | None = 5600,
        started_at: datetime | None = None,
    ) -> ContainerDetails:
        return ContainerDetails(
            id="c0ffee",
            name=name,
            state=state,
            image="n8nio/n8n:latest",
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
            started_at=started_at or datetime.now(UTC),
            exit_code=0,
            labels={},
            ports=[PortBinding(private_port=5678, public_port=port, protocol="tcp")]
            if port
            else [],
        )

    return _make
