"""Integration tests for the Docker Engine client and runtime gateway."""

import asyncio
from contextlib import aclosing

import pytest

from flowhub.adapters.runtime.docker import DockerRuntime
from flowhub.core.retryable import VolumeInUseError
from flowhub.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    HostConfig,
    VolumeAPI,
    VolumeConfig,
)

# Prints one line, then idles until SIGTERM
IDLE_CMD = [
    "sh",
    "-c",
    "trap 'exit 0' TERM; echo 'hello flowhub'; while true; do sleep 1; done",
]


@pytest.mark.integration
class TestVolumeAPI:
    """VolumeAPI integration tests."""

    async def test_volume_lifecycle(self, volume_api: VolumeAPI, test_prefix: str):
        """Create, inspect and remove a volume."""
        name = f"{test_prefix}vol"

        await volume_api.create(VolumeConfig(name=name, labels={"flowhub.test": "true"}))
        data = await volume_api.inspect(name)
        assert data is not None
        assert data["Labels"]["flowhub.test"] == "true"

        await volume_api.remove(name)
        assert await volume_api.inspect(name) is None

    async def test_create_idempotent(self, volume_api: VolumeAPI, test_prefix: str):
        """Creating an existing volume does not raise."""
        name = f"{test_prefix}idem-vol"
        try:
            await volume_api.create(VolumeConfig(name=name))
            await volume_api.create(VolumeConfig(name=name))
            assert await volume_api.inspect(name) is not None
        finally:
            await volume_api.remove(name)

    async def test_remove_in_use_raises(
        self,
        volume_api: VolumeAPI,
        container_api: ContainerAPI,
        test_image: str,
        test_prefix: str,
    ):
        """Removing a volume bound to a container raises VolumeInUseError."""
        vol_name = f"{test_prefix}in-use-vol"
        container_name = f"{test_prefix}vol-user"
        try:
            await volume_api.create(VolumeConfig(name=vol_name))
            await container_api.create(
                ContainerConfig(
                    image=test_image,
                    name=container_name,
                    cmd=["true"],
                    host_config=HostConfig(binds=[f"{vol_name}:/data"]),
                )
            )

            with pytest.raises(VolumeInUseError) as exc_info:
                await volume_api.remove(vol_name)
            assert vol_name in str(exc_info.value)
        finally:
            await container_api.remove(container_name)
            await volume_api.remove(vol_name)


@pytest.mark.integration
class TestContainerAPI:
    """ContainerAPI integration tests."""

    async def test_container_lifecycle(
        self, container_api: ContainerAPI, test_image: str, test_prefix: str
    ):
        """Create, start, pause, unpause, stop and remove a container."""
        name = f"{test_prefix}container"
        config = ContainerConfig(image=test_image, name=name, cmd=IDLE_CMD)

        try:
            await container_api.create(config)
            await container_api.start(name)
            data = await container_api.inspect(name)
            assert data["State"]["Status"] == "running"

            await container_api.pause(name)
            data = await container_api.inspect(name)
            assert data["State"]["Status"] == "paused"

            await container_api.unpause(name)
            await container_api.stop(name, timeout=2)
            data = await container_api.inspect(name)
            assert data["State"]["Running"] is False
        finally:
            await container_api.remove(name)

        assert await container_api.inspect(name) is None

    async def test_exec_and_logs(
        self, container_api: ContainerAPI, test_image: str, test_prefix: str
    ):
        """exec collects output and exit code; logs are demultiplexed."""
        name = f"{test_prefix}exec"
        try:
            await container_api.create(
                ContainerConfig(image=test_image, name=name, cmd=IDLE_CMD)
            )
            await container_api.start(name)

            exit_code, output = await container_api.exec(name, ["sh", "-c", "echo ok; exit 3"])
            assert exit_code == 3
            assert output.strip() == b"ok"

            logs = b"".join(
                [
                    chunk
                    async for chunk in container_api.stream_logs(
                        name, follow=False, timestamps=False
                    )
                ]
            )
            assert b"hello flowhub" in logs
        finally:
            await container_api.remove(name)

    async def test_stats_sample(
        self, container_api: ContainerAPI, test_image: str, test_prefix: str
    ):
        """A stats sample carries the CPU and memory sections."""
        name = f"{test_prefix}stats"
        try:
            await container_api.create(
                ContainerConfig(image=test_image, name=name, cmd=IDLE_CMD)
            )
            await container_api.start(name)

            stats = await container_api.stats(name)
            assert "cpu_stats" in stats
            assert "memory_stats" in stats
        finally:
            await container_api.remove(name)


@pytest.mark.integration
class TestDockerRuntime:
    """DockerRuntime against a live engine."""

    async def test_inspect_exec_and_stream(
        self, container_api: ContainerAPI, test_image: str, test_prefix: str
    ):
        """The runtime maps inspect, exec and log streaming for a container."""
        name = f"{test_prefix}runtime"
        runtime = DockerRuntime(containers=container_api)
        try:
            await container_api.create(
                ContainerConfig(image=test_image, name=name, cmd=IDLE_CMD)
            )
            await runtime.start(name)

            details = await runtime.inspect(name)
            assert details is not None
            assert details.state == "running"
            assert details.started_at is not None

            result = await runtime.exec_command(name, ["echo", "pong"])
            assert result.exit_code == 0
            assert result.output.strip() == "pong"

            async with asyncio.timeout(10):
                async with aclosing(
                    runtime.stream_logs(name, follow=True, timestamps=True, tail=10)
                ) as stream:
                    first = await anext(stream)
            # Timestamped lines: "<RFC3339> <message>"
            assert b"hello flowhub" in first

            await runtime.bring_down(name)
            assert await runtime.inspect(name) is None
        finally:
            await container_api.remove(name)

    async def test_inspect_missing(self, container_api: ContainerAPI, test_prefix: str):
        """A container that does not exist inspects as None."""
        runtime = DockerRuntime(containers=container_api)

        assert await runtime.inspect(f"{test_prefix}absent") is None
