"""Instance descriptor interface.

A descriptor is the generated container definition for one instance:
image, published port, environment, labels and data volume.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel


class InstanceDescriptor(BaseModel):
    """Everything the runtime needs to bring an instance up."""

    instance_id: str
    runtime_id: str
    client_name: str
    image: str
    host_port: int
    container_port: int
    volume_name: str
    mount_path: str
    env: dict[str, str]
    labels: dict[str, str]
    created_at: datetime

    model_config = {"frozen": True}


class DescriptorProvider(ABC):
    """Interface for descriptor materialization.

    Implementations: TemplateDescriptorProvider
    """

    @abstractmethod
    async def materialize(
        self,
        instance_id: str,
        port: int,
        client_name: str,
        username: str,
        password: str,
    ) -> Path:
        """Write the descriptor and instance directories. Returns descriptor path."""
        ...

    @abstractmethod
    async def validate(self, instance_id: str) -> tuple[bool, list[str]]:
        """Validate the descriptor, collecting every problem found."""
        ...

    @abstractmethod
    async def load(self, instance_id: str) -> InstanceDescriptor: ...

    @abstractmethod
    async def remove(self, instance_id: str) -> None:
        """Remove instance-owned storage. No-op when absent."""
        ...

    @abstractmethod
    async def list_instance_dirs(self) -> list[str]: ...
