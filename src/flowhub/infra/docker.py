"""Docker Engine API client with Pydantic models.

Provides async Docker API access for containers, volumes, images and
system endpoints. Supports both Unix socket and TCP (docker-proxy)
connections.

Configuration via DockerConfig (DOCKER_ env prefix).
"""

import json
import logging
import struct
from collections.abc import AsyncIterator

import httpx
from pydantic import BaseModel

from flowhub.app.config import get_settings
from flowhub.core.retryable import VolumeInUseError

logger = logging.getLogger(__name__)

_docker_config = get_settings().docker

# Multiplexed stream frame header: stream type (1B), padding (3B), size (4B BE)
_FRAME_HEADER = struct.Struct(">BxxxL")
_STREAM_TYPES = (0, 1, 2)  # stdin, stdout, stderr


# =============================================================================
# Pydantic Models
# =============================================================================


class HostConfig(BaseModel):
    """Docker HostConfig for container creation."""

    network_mode: str = "bridge"
    binds: list[str] = []
    port_bindings: dict[str, list[dict[str, str]]] = {}
    restart_policy: str | None = None

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API format."""
        result: dict = {
            "NetworkMode": self.network_mode,
            "Binds": self.binds,
        }
        if self.port_bindings:
            result["PortBindings"] = self.port_bindings
        if self.restart_policy:
            result["RestartPolicy"] = {"Name": self.restart_policy}
        return result


class ContainerConfig(BaseModel):
    """Docker container configuration for creation."""

    image: str
    name: str
    cmd: list[str] = []  # empty keeps the image default
    env: list[str] = []
    labels: dict[str, str] = {}
    exposed_ports: dict[str, dict] = {}
    host_config: HostConfig = HostConfig()

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API JSON format."""
        result: dict = {
            "Image": self.image,
            "ExposedPorts": self.exposed_ports,
            "HostConfig": self.host_config.to_api(),
        }
        if self.cmd:
            result["Cmd"] = self.cmd
        if self.env:
            result["Env"] = self.env
        if self.labels:
            result["Labels"] = self.labels
        return result


class VolumeConfig(BaseModel):
    """Docker volume configuration for creation."""

    name: str
    driver: str = "local"
    labels: dict[str, str] = {}

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API format."""
        result: dict = {"Name": self.name, "Driver": self.driver}
        if self.labels:
            result["Labels"] = self.labels
        return result


# =============================================================================
# Stream demultiplexing
# =============================================================================


class StreamDemuxer:
    """Incremental decoder for Docker's multiplexed stdout/stderr stream.

    Non-TTY containers prefix every frame with an 8-byte header. Chunks
    from the HTTP body do not align with frames, so partial headers and
    payloads are buffered until complete. A TTY container sends raw
    bytes; that is detected from the first byte and passed through.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._raw: bool | None = None

    def feed(self, chunk: bytes) -> list[bytes]:
        if not chunk:
            return []
        if self._raw is None:
            self._raw = chunk[0] not in _STREAM_TYPES
        if self._raw:
            return [chunk]

        self._buffer.extend(chunk)
        payloads: list[bytes] = []
        while len(self._buffer) >= _FRAME_HEADER.size:
            _, size = _FRAME_HEADER.unpack_from(self._buffer)
            end = _FRAME_HEADER.size + size
            if len(self._buffer) < end:
                break
            payloads.append(bytes(self._buffer[_FRAME_HEADER.size : end]))
            del self._buffer[:end]
        return payloads


def demux(data: bytes) -> bytes:
    """Demultiplex a complete (non-streaming) response body."""
    return b"".join(StreamDemuxer().feed(data))


# =============================================================================
# Docker Client (Singleton)
# =============================================================================


class DockerClient:
    """Async Docker API client.

    Supports Unix socket and TCP connections.
    Handles event loop changes (important for tests).
    """

    def __init__(
        self,
        docker_host: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = docker_host or _docker_config.host
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _create_client(self) -> httpx.AsyncClient:
        """Create a new HTTP client."""
        if self._transport is not None:
            return httpx.AsyncClient(
                transport=self._transport,
                base_url="http://docker",
                timeout=_docker_config.api_timeout,
            )
        if self._host.startswith("unix://"):
            socket_path = self._host.replace("unix://", "")
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            return httpx.AsyncClient(
                transport=transport,
                base_url="http://localhost",
                timeout=_docker_config.api_timeout,
            )
        base_url = self._host
        if base_url.startswith("tcp://"):
            base_url = base_url.replace("tcp://", "http://")
        return httpx.AsyncClient(base_url=base_url, timeout=_docker_config.api_timeout)

    async def get(self) -> httpx.AsyncClient:
        """Get or create the HTTP client.

        Recreates the client if the previous one was closed
        (e.g., due to event loop change in tests).
        """
        if self._client is None or self._client.is_closed:
            self._client = self._create_client()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# Global singleton
_docker_client: DockerClient | None = None


def get_docker_client() -> DockerClient:
    """Get the global Docker client singleton."""
    global _docker_client
    if _docker_client is None:
        _docker_client = DockerClient()
    return _docker_client


async def close_docker() -> None:
    """Close the global Docker client."""
    global _docker_client
    if _docker_client:
        await _docker_client.close()
        _docker_client = None


# =============================================================================
# Container API
# =============================================================================


class ContainerAPI:
    """Docker Container API operations."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def list(self, filters: dict | None = None) -> list[dict]:
        """List containers (including stopped ones).

        Args:
            filters: Docker API filters (e.g., {"label": ["flowhub.managed=true"]})

        Returns:
            List of container info dicts
        """
        client = await self._docker.get()
        params: dict = {"all": "true"}
        if filters:
            params["filters"] = json.dumps(filters)
        resp = await client.get("/containers/json", params=params)
        resp.raise_for_status()
        return resp.json()

    async def inspect(self, name: str) -> dict | None:
        """Inspect a container.

        Returns:
            Container info dict or None if not found
        """
        client = await self._docker.get()
        resp = await client.get(f"/containers/{name}/json")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def create(self, config: ContainerConfig) -> None:
        """Create a container.

        Note:
            Idempotent - returns silently if container already exists.
        """
        client = await self._docker.get()
        resp = await client.post(
            "/containers/create",
            params={"name": config.name},
            json=config.to_api(),
        )
        if resp.status_code == 409:
            logger.debug("Container already exists: %s", config.name)
            return
        resp.raise_for_status()
        logger.info("Created container: %s", config.name)

    async def start(self, name: str) -> None:
        client = await self._docker.get()
        resp = await client.post(f"/containers/{name}/start")
        if resp.status_code not in (204, 304):  # 304 = already started
            resp.raise_for_status()
        logger.info("Started container: %s", name)

    async def stop(self, name: str, timeout: int | None = None) -> None:
        """Stop a container.

        Args:
            name: Container name or ID
            timeout: Seconds to wait before killing
        """
        if timeout is None:
            timeout = _docker_config.stop_timeout
        client = await self._docker.get()
        # HTTP timeout must outlive the engine's own SIGTERM grace period
        resp = await client.post(
            f"/containers/{name}/stop",
            params={"t": str(timeout)},
            timeout=_docker_config.api_timeout + timeout,
        )
        if resp.status_code not in (204, 304, 404):  # 404 = not found, ok
            resp.raise_for_status()
        logger.info("Stopped container: %s", name)

    async def pause(self, name: str) -> None:
        client = await self._docker.get()
        resp = await client.post(f"/containers/{name}/pause")
        resp.raise_for_status()
        logger.info("Paused container: %s", name)

    async def unpause(self, name: str) -> None:
        client = await self._docker.get()
        resp = await client.post(f"/containers/{name}/unpause")
        resp.raise_for_status()
        logger.info("Unpaused container: %s", name)

    async def restart(self, name: str, timeout: int | None = None) -> None:
        if timeout is None:
            timeout = _docker_config.stop_timeout
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{name}/restart",
            params={"t": str(timeout)},
            timeout=_docker_config.api_timeout + timeout,
        )
        resp.raise_for_status()
        logger.info("Restarted container: %s", name)

    async def remove(self, name: str, force: bool = True) -> None:
        """Remove a container.

        Args:
            name: Container name or ID
            force: Force removal of running container
        """
        client = await self._docker.get()
        resp = await client.delete(
            f"/containers/{name}", params={"force": "true" if force else "false"}
        )
        if resp.status_code == 404:
            logger.debug("Container not found: %s", name)
            return
        resp.raise_for_status()
        logger.info("Removed container: %s", name)

    async def stats(self, name: str) -> dict:
        """Single stats sample (stream=false).

        precpu_stats is only populated when one-shot is off, so the engine
        waits one sampling cycle before answering.
        """
        client = await self._docker.get()
        resp = await client.get(
            f"/containers/{name}/stats", params={"stream": "false"}
        )
        resp.raise_for_status()
        return resp.json()

    async def exec(self, name: str, cmd: "list[str]") -> tuple[int, bytes]:
        """Run a command in a container and collect its output.

        Returns:
            (exit code, demultiplexed stdout+stderr)
        """
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{name}/exec",
            json={"Cmd": cmd, "AttachStdout": True, "AttachStderr": True},
        )
        resp.raise_for_status()
        exec_id = resp.json()["Id"]

        resp = await client.post(
            f"/exec/{exec_id}/start", json={"Detach": False, "Tty": False}
        )
        resp.raise_for_status()
        output = demux(resp.content)

        resp = await client.get(f"/exec/{exec_id}/json")
        resp.raise_for_status()
        exit_code = resp.json().get("ExitCode")
        return (exit_code if exit_code is not None else -1), output

    async def stream_logs(
        self,
        name: str,
        *,
        follow: bool = True,
        timestamps: bool = True,
        tail: int | str = "all",
    ) -> AsyncIterator[bytes]:
        """Stream container log payloads as they arrive.

        The read timeout is disabled while following; connect and write
        timeouts still apply.
        """
        client = await self._docker.get()
        params = {
            "stdout": "true",
            "stderr": "true",
            "follow": str(follow).lower(),
            "timestamps": str(timestamps).lower(),
            "tail": str(tail),
        }
        timeout = httpx.Timeout(_docker_config.api_timeout, read=None)
        demuxer = StreamDemuxer()
        async with client.stream(
            "GET", f"/containers/{name}/logs", params=params, timeout=timeout
        ) as resp:
            resp.raise_for_status()
            async for chunk in resp.aiter_bytes():
                for payload in demuxer.feed(chunk):
                    yield payload


# =============================================================================
# Volume API
# =============================================================================


class VolumeAPI:
    """Docker Volume API operations."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def inspect(self, name: str) -> dict | None:
        client = await self._docker.get()
        resp = await client.get(f"/volumes/{name}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def create(self, config: VolumeConfig) -> None:
        client = await self._docker.get()
        resp = await client.post("/volumes/create", json=config.to_api())
        if resp.status_code == 409:
            logger.debug("Volume already exists: %s", config.name)
            return
        resp.raise_for_status()
        logger.info("Created volume: %s", config.name)

    async def remove(self, name: str) -> None:
        """Remove a volume. Missing volumes are ignored."""
        client = await self._docker.get()
        resp = await client.delete(f"/volumes/{name}")
        if resp.status_code == 404:
            logger.debug("Volume not found: %s", name)
            return
        if resp.status_code == 409:
            raise VolumeInUseError(f"Volume {name} is in use by a container")
        resp.raise_for_status()
        logger.info("Removed volume: %s", name)


# =============================================================================
# Image API
# =============================================================================


class ImageAPI:
    """Docker Image API operations."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def exists(self, image_ref: str) -> bool:
        client = await self._docker.get()
        resp = await client.get(f"/images/{image_ref}/json")
        return resp.status_code == 200

    async def pull(self, image_ref: str) -> None:
        """Pull image from registry.

        Note:
            Uses streaming endpoint. Docker API returns chunked JSON progress.
        """
        client = await self._docker.get()

        if ":" in image_ref.rsplit("/", 1)[-1]:
            image, tag = image_ref.rsplit(":", 1)
        else:
            image, tag = image_ref, "latest"

        logger.info("Pulling image: %s:%s", image, tag)
        resp = await client.post(
            "/images/create",
            params={"fromImage": image, "tag": tag},
            timeout=_docker_config.image_pull_timeout,
        )
        resp.raise_for_status()
        logger.info("Pulled image: %s:%s", image, tag)

    async def ensure(self, image_ref: str) -> None:
        """Ensure image exists locally, pull if not."""
        if not await self.exists(image_ref):
            await self.pull(image_ref)


# =============================================================================
# System API
# =============================================================================


class SystemAPI:
    """Docker daemon-level endpoints."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def ping(self) -> bool:
        client = await self._docker.get()
        resp = await client.get("/_ping")
        return resp.status_code == 200

    async def version(self) -> dict:
        client = await self._docker.get()
        resp = await client.get("/version")
        resp.raise_for_status()
        return resp.json()
