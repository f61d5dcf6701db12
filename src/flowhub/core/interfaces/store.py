"""Instance metadata store interface."""

from abc import ABC, abstractmethod

from flowhub.core.domain.instance import InstanceStatus
from flowhub.core.models.instance import Instance
from flowhub.core.models.monitoring import MonitoringConfig


class InstanceStore(ABC):
    """Durable metadata: one record per instance plus one monitoring config.

    Implementations: SQLInstanceStore
    """

    @abstractmethod
    async def save(self, instance: Instance) -> Instance:
        """Insert or update by id."""
        ...

    @abstractmethod
    async def get(self, instance_id: str) -> Instance | None: ...

    @abstractmethod
    async def update_status(
        self, instance_id: str, status: InstanceStatus
    ) -> Instance | None:
        """Set the status of an existing record. Never inserts.

        Returns None when the record no longer exists.
        """
        ...

    @abstractmethod
    async def list(self) -> list[Instance]: ...

    @abstractmethod
    async def delete(self, instance_id: str) -> bool:
        """Remove the record. Returns False when it did not exist."""
        ...

    @abstractmethod
    async def used_ports(self) -> set[int]:
        """Ports recorded by all persisted instances."""
        ...

    @abstractmethod
    async def load_monitoring_config(self) -> MonitoringConfig | None: ...

    @abstractmethod
    async def save_monitoring_config(self, config: MonitoringConfig) -> None: ...
