"""Integration test fixtures.

These tests talk to a real Docker Engine. They are skipped when the
configured socket is not present.
"""

import os
import uuid
from collections.abc import AsyncIterator

import pytest

import flowhub.infra.docker as docker_module
from flowhub.app.config import get_settings
from flowhub.infra.docker import ContainerAPI, DockerClient, ImageAPI, VolumeAPI

# Small image with sh, sleep and echo
TEST_IMAGE = "busybox:latest"

# Test resource prefix - clearly identifies test resources
TEST_PREFIX = "test-int-"


def _docker_reachable() -> bool:
    host = get_settings().docker.host
    if host.startswith("unix://"):
        return os.path.exists(host.removeprefix("unix://"))
    return True


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if _docker_reachable():
        return
    skip = pytest.mark.skip(reason="Docker Engine socket not available")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture(autouse=True)
async def reset_docker_client() -> AsyncIterator[None]:
    """Reset the global Docker client so each test gets its own event loop."""
    docker_module._docker_client = None
    yield
    if docker_module._docker_client:
        await docker_module._docker_client.close()
        docker_module._docker_client = None


@pytest.fixture
def test_prefix() -> str:
    """Unique prefix for test resources (e.g. test-int-a1b2c3d4-)."""
    return f"{TEST_PREFIX}{uuid.uuid4().hex[:8]}-"


@pytest.fixture
async def docker_client() -> AsyncIterator[DockerClient]:
    """Fresh DockerClient per test; the global singleton is not used."""
    client = DockerClient()
    yield client
    await client.close()


@pytest.fixture
def container_api(docker_client: DockerClient) -> ContainerAPI:
    return ContainerAPI(client=docker_client)


@pytest.fixture
def volume_api(docker_client: DockerClient) -> VolumeAPI:
    return VolumeAPI(client=docker_client)


@pytest.fixture
async def test_image(docker_client: DockerClient) -> str:
    """Pull the test image once if it is missing."""
    await ImageAPI(client=docker_client).ensure(TEST_IMAGE)
    return TEST_IMAGE
