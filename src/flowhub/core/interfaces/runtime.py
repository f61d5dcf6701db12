"""Container runtime gateway interface.

The single seam through which flowhub drives the container engine.
Containers are addressed by runtime id (see flowhub.core.naming).
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from flowhub.core.interfaces.descriptor import InstanceDescriptor


class PortBinding(BaseModel):
    """Published container port."""

    private_port: int
    public_port: int | None = None
    protocol: str = "tcp"

    model_config = {"frozen": True}


class ContainerSummary(BaseModel):
    """Container listing entry."""

    id: str
    name: str
    state: str
    image: str = ""
    labels: dict[str, str] = {}
    ports: list[PortBinding] = []

    model_config = {"frozen": True}


class ContainerDetails(BaseModel):
    """Inspect result reduced to what monitoring and status derivation need."""

    id: str
    name: str
    state: str  # running / paused / exited / created / restarting / dead
    image: str = ""
    created_at: datetime | None = None
    started_at: datetime | None = None
    exit_code: int | None = None
    labels: dict[str, str] = {}
    ports: list[PortBinding] = []

    model_config = {"frozen": True}


class ExecResult(BaseModel):
    exit_code: int
    output: str

    model_config = {"frozen": True}


class ContainerRuntime(ABC):
    """Interface for container engine control.

    Implementations: DockerRuntime
    """

    @abstractmethod
    async def list_containers(
        self, filters: dict[str, list[str]] | None = None
    ) -> list[ContainerSummary]:
        """List containers (running and stopped) matching engine filters."""
        ...

    @abstractmethod
    async def inspect(self, runtime_id: str) -> ContainerDetails | None:
        """Inspect container. Returns None when it does not exist."""
        ...

    @abstractmethod
    async def stats(self, runtime_id: str) -> dict[str, Any]:
        """One-shot raw stats sample (cpu_stats, precpu_stats, memory_stats)."""
        ...

    @abstractmethod
    async def start(self, runtime_id: str) -> None: ...

    @abstractmethod
    async def stop(self, runtime_id: str) -> None: ...

    @abstractmethod
    async def pause(self, runtime_id: str) -> None: ...

    @abstractmethod
    async def unpause(self, runtime_id: str) -> None: ...

    @abstractmethod
    async def restart(self, runtime_id: str) -> None: ...

    @abstractmethod
    async def remove(self, runtime_id: str) -> None: ...

    @abstractmethod
    async def exec_command(self, runtime_id: str, argv: list[str]) -> ExecResult:
        """Run a command inside the container and wait for it to finish."""
        ...

    @abstractmethod
    def stream_logs(
        self,
        runtime_id: str,
        *,
        follow: bool = True,
        timestamps: bool = True,
        tail: int | str = "all",
    ) -> AsyncIterator[bytes]:
        """Stream stdout/stderr payload bytes (already demultiplexed)."""
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """Check the engine is reachable."""
        ...

    @abstractmethod
    async def version(self) -> dict[str, Any]: ...

    @abstractmethod
    async def bring_up(self, descriptor: InstanceDescriptor) -> None:
        """Create (if needed) and start the instance container."""
        ...

    @abstractmethod
    async def bring_down(self, runtime_id: str) -> None:
        """Stop and remove the instance container. Volumes are kept."""
        ...

    @abstractmethod
    async def remove_volume(self, name: str) -> None: ...
