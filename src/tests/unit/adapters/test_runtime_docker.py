"""Unit tests for DockerRuntime."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from flowhub.adapters.runtime.docker import (
    DockerRuntime,
    _details_from_api,
    _summary_from_api,
)
from flowhub.core.interfaces import InstanceDescriptor

INSPECT = {
    "Id": "c0ffee",
    "Name": "/n8n-a",
    "Created": "2026-01-01T10:00:00.123456789Z",
    "State": {
        "Status": "running",
        "StartedAt": "2026-01-01T10:00:05Z",
        "ExitCode": 0,
    },
    "Config": {"Image": "n8nio/n8n:latest", "Labels": {"flowhub.managed": "true"}},
    "NetworkSettings": {
        "Ports": {
            "5678/tcp": [
                {"HostIp": "0.0.0.0", "HostPort": "5600"},
                {"HostIp": "::", "HostPort": "5600"},
            ],
            "9229/tcp": None,
        }
    },
}


@pytest.fixture
def descriptor() -> InstanceDescriptor:
    return InstanceDescriptor(
        instance_id="a",
        runtime_id="n8n-a",
        client_name="acme",
        image="n8nio/n8n:latest",
        host_port=5600,
        container_port=5678,
        volume_name="n8n-a-data",
        mount_path="/home/node/.n8n",
        env={"N8N_PORT": "5678"},
        labels={"flowhub.managed": "true"},
        created_at=datetime(2026, 1, 1),
    )


class TestApiMapping:
    """Tests for Engine API to gateway model mapping."""

    def test_details(self) -> None:
        """Inspect JSON maps onto ContainerDetails."""
        details = _details_from_api(INSPECT)

        assert details.name == "n8n-a"
        assert details.state == "running"
        assert details.image == "n8nio/n8n:latest"
        assert details.started_at is not None
        assert details.created_at is not None
        assert [p.public_port for p in details.ports] == [5600, 5600]
        assert details.ports[0].private_port == 5678

    def test_summary(self) -> None:
        """List JSON maps onto ContainerSummary."""
        summary = _summary_from_api(
            {
                "Id": "c0ffee",
                "Names": ["/n8n-a"],
                "State": "exited",
                "Ports": [{"PrivatePort": 5678, "PublicPort": 5600, "Type": "tcp"}],
            }
        )

        assert summary.name == "n8n-a"
        assert summary.state == "exited"
        assert summary.ports[0].public_port == 5600


class TestDockerRuntime:
    """DockerRuntime tests."""

    @pytest.fixture
    def containers(self) -> AsyncMock:
        mock = AsyncMock()
        mock.inspect.return_value = None
        return mock

    @pytest.fixture
    def volumes(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def images(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def runtime(
        self, containers: AsyncMock, volumes: AsyncMock, images: AsyncMock
    ) -> DockerRuntime:
        return DockerRuntime(
            containers=containers, volumes=volumes, images=images, system=AsyncMock()
        )

    async def test_bring_up_existing_container(
        self, runtime: DockerRuntime, containers: AsyncMock, descriptor: InstanceDescriptor
    ) -> None:
        """An existing container is only started."""
        containers.inspect.return_value = {"Id": "c0ffee"}

        await runtime.bring_up(descriptor)

        containers.start.assert_awaited_once_with("n8n-a")
        containers.create.assert_not_called()

    async def test_bring_up_new_container(
        self,
        runtime: DockerRuntime,
        containers: AsyncMock,
        volumes: AsyncMock,
        images: AsyncMock,
        descriptor: InstanceDescriptor,
    ) -> None:
        """A new container gets its image, volume and port binding."""
        await runtime.bring_up(descriptor)

        images.ensure.assert_awaited_once_with("n8nio/n8n:latest")
        assert volumes.create.await_args.args[0].name == "n8n-a-data"
        config = containers.create.await_args.args[0]
        api = config.to_api()
        assert api["HostConfig"]["Binds"] == ["n8n-a-data:/home/node/.n8n"]
        assert api["HostConfig"]["PortBindings"] == {"5678/tcp": [{"HostPort": "5600"}]}
        assert "N8N_PORT=5678" in api["Env"]
        containers.start.assert_awaited_once_with("n8n-a")

    async def test_bring_down(self, runtime: DockerRuntime, containers: AsyncMock) -> None:
        """bring_down stops then removes."""
        await runtime.bring_down("n8n-a")

        containers.stop.assert_awaited_once_with("n8n-a")
        containers.remove.assert_awaited_once_with("n8n-a")

    async def test_inspect_missing(self, runtime: DockerRuntime) -> None:
        """A missing container inspects as None."""
        assert await runtime.inspect("n8n-a") is None

    async def test_exec_decodes_output(
        self, runtime: DockerRuntime, containers: AsyncMock
    ) -> None:
        """exec output is decoded as text."""
        containers.exec.return_value = (0, b"1.80.0\n")

        result = await runtime.exec_command("n8n-a", ["n8n", "--version"])

        assert result.exit_code == 0
        assert result.output == "1.80.0\n"
