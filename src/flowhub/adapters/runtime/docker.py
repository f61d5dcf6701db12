"""Docker runtime gateway implementation."""

import logging
from collections.abc import AsyncIterator
from typing import Any

from flowhub.app.config import get_settings
from flowhub.core.interfaces import (
    ContainerDetails,
    ContainerRuntime,
    ContainerSummary,
    ExecResult,
    InstanceDescriptor,
    PortBinding,
)
from flowhub.core.timestamps import parse_timestamp
from flowhub.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    HostConfig,
    ImageAPI,
    SystemAPI,
    VolumeAPI,
    VolumeConfig,
)

logger = logging.getLogger(__name__)


def _summary_from_api(data: dict) -> ContainerSummary:
    names = data.get("Names") or []
    return ContainerSummary(
        id=data.get("Id", ""),
        name=names[0].lstrip("/") if names else "",
        state=data.get("State", "unknown"),
        image=data.get("Image", ""),
        labels=data.get("Labels") or {},
        ports=[
            PortBinding(
                private_port=p.get("PrivatePort", 0),
                public_port=p.get("PublicPort"),
                protocol=p.get("Type", "tcp"),
            )
            for p in data.get("Ports") or []
        ],
    )


def _details_from_api(data: dict) -> ContainerDetails:
    state = data.get("State") or {}
    config = data.get("Config") or {}
    ports: list[PortBinding] = []
    # NetworkSettings.Ports: {"5678/tcp": [{"HostIp": "0.0.0.0", "HostPort": "5600"}]}
    for key, bindings in ((data.get("NetworkSettings") or {}).get("Ports") or {}).items():
        private, _, protocol = key.partition("/")
        for binding in bindings or []:
            host_port = binding.get("HostPort")
            ports.append(
                PortBinding(
                    private_port=int(private),
                    public_port=int(host_port) if host_port else None,
                    protocol=protocol or "tcp",
                )
            )
    return ContainerDetails(
        id=data.get("Id", ""),
        name=(data.get("Name") or "").lstrip("/"),
        state=state.get("Status", "unknown"),
        image=config.get("Image", ""),
        created_at=parse_timestamp(data.get("Created")),
        started_at=parse_timestamp(state.get("StartedAt")),
        exit_code=state.get("ExitCode"),
        labels=config.get("Labels") or {},
        ports=ports,
    )


class DockerRuntime(ContainerRuntime):
    """Container runtime gateway backed by the Docker Engine API."""

    def __init__(
        self,
        containers: ContainerAPI | None = None,
        volumes: VolumeAPI | None = None,
        images: ImageAPI | None = None,
        system: SystemAPI | None = None,
    ) -> None:
        self._docker = get_settings().docker
        self._containers = containers or ContainerAPI()
        self._volumes = volumes or VolumeAPI()
        self._images = images or ImageAPI()
        self._system = system or SystemAPI()

    async def list_containers(
        self, filters: dict[str, list[str]] | None = None
    ) -> list[ContainerSummary]:
        containers = await self._containers.list(filters=filters)
        return [_summary_from_api(c) for c in containers]

    async def inspect(self, runtime_id: str) -> ContainerDetails | None:
        data = await self._containers.inspect(runtime_id)
        if data is None:
            return None
        return _details_from_api(data)

    async def stats(self, runtime_id: str) -> dict[str, Any]:
        return await self._containers.stats(runtime_id)

    async def start(self, runtime_id: str) -> None:
        await self._containers.start(runtime_id)

    async def stop(self, runtime_id: str) -> None:
        await self._containers.stop(runtime_id)

    async def pause(self, runtime_id: str) -> None:
        await self._containers.pause(runtime_id)

    async def unpause(self, runtime_id: str) -> None:
        await self._containers.unpause(runtime_id)

    async def restart(self, runtime_id: str) -> None:
        await self._containers.restart(runtime_id)

    async def remove(self, runtime_id: str) -> None:
        await self._containers.remove(runtime_id)

    async def exec_command(self, runtime_id: str, argv: list[str]) -> ExecResult:
        exit_code, output = await self._containers.exec(runtime_id, argv)
        return ExecResult(exit_code=exit_code, output=output.decode("utf-8", "replace"))

    async def stream_logs(
        self,
        runtime_id: str,
        *,
        follow: bool = True,
        timestamps: bool = True,
        tail: int | str = "all",
    ) -> AsyncIterator[bytes]:
        async for payload in self._containers.stream_logs(
            runtime_id, follow=follow, timestamps=timestamps, tail=tail
        ):
            yield payload

    async def ping(self) -> bool:
        return await self._system.ping()

    async def version(self) -> dict[str, Any]:
        return await self._system.version()

    async def bring_up(self, descriptor: InstanceDescriptor) -> None:
        """Create and start the instance container.

        An existing container (e.g. left over from a stop that timed out)
        is started as-is.
        """
        name = descriptor.runtime_id
        existing = await self._containers.inspect(name)
        if existing:
            await self._containers.start(name)
            logger.info("Started existing container: %s", name)
            return

        await self._images.ensure(descriptor.image)
        await self._volumes.create(
            VolumeConfig(name=descriptor.volume_name, labels=descriptor.labels)
        )

        port_key = f"{descriptor.container_port}/tcp"
        config = ContainerConfig(
            image=descriptor.image,
            name=name,
            env=[f"{k}={v}" for k, v in descriptor.env.items()],
            labels=descriptor.labels,
            exposed_ports={port_key: {}},
            host_config=HostConfig(
                network_mode=self._docker.network_name or "bridge",
                binds=[f"{descriptor.volume_name}:{descriptor.mount_path}"],
                port_bindings={port_key: [{"HostPort": str(descriptor.host_port)}]},
                restart_policy="unless-stopped",
            ),
        )

        await self._containers.create(config)
        await self._containers.start(name)
        logger.info("Created and started container: %s", name)

    async def bring_down(self, runtime_id: str) -> None:
        """Stop and remove the container. Missing containers are ignored."""
        await self._containers.stop(runtime_id)
        await self._containers.remove(runtime_id)

    async def remove_volume(self, name: str) -> None:
        await self._volumes.remove(name)
