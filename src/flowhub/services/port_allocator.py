"""Published port allocation for instances.

The used-port set is recomputed on every query from three sources:
    1. ports published by live containers (runtime listing)
    2. ports recorded in instance metadata
    3. unexpired in-memory claims

Claims cover the window between choosing a port and the metadata record
(and later the container) holding it. Allocation scans the range in
ascending order under a lock, so two concurrent creates never receive
the same port.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from flowhub.app.config import get_settings
from flowhub.app.metrics.collector import PORT_ALLOCATIONS, PORTS_USED
from flowhub.core.errors import InvalidPortRangeError, ResourceExhaustedError
from flowhub.core.interfaces import ContainerRuntime, InstanceStore
from flowhub.core.logging_schema import Component, LogEvent
from flowhub.core.naming import instance_id_from_runtime_id

logger = logging.getLogger(__name__)

MIN_ALLOWED_PORT = 1024
MAX_ALLOWED_PORT = 65535


@dataclass
class PortClaim:
    port: int
    instance_id: str
    expires_at: float


def validate_range(min_port: int, max_port: int) -> None:
    if min_port > max_port:
        raise InvalidPortRangeError("Min port must be less than max port")
    if min_port < MIN_ALLOWED_PORT or max_port > MAX_ALLOWED_PORT:
        raise InvalidPortRangeError(
            f"Port range must be between {MIN_ALLOWED_PORT} and {MAX_ALLOWED_PORT}"
        )


class PortAllocator:
    """Assigns free ports from a fixed range and tracks exclusive claims."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        store: InstanceStore,
        *,
        min_port: int | None = None,
        max_port: int | None = None,
        claim_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        config = get_settings().ports
        self._runtime = runtime
        self._store = store
        self._min = config.min_port if min_port is None else min_port
        self._max = config.max_port if max_port is None else max_port
        validate_range(self._min, self._max)
        self._claim_ttl = config.claim_ttl if claim_ttl is None else claim_ttl
        self._api_timeout = get_settings().docker.api_timeout
        self._connect_timeout = config.connect_timeout
        self._clock = clock
        self._claims: dict[int, PortClaim] = {}
        self._lock = asyncio.Lock()

    @property
    def port_range(self) -> tuple[int, int]:
        return self._min, self._max

    def in_range(self, port: int) -> bool:
        return self._min <= port <= self._max

    def set_range(self, min_port: int, max_port: int) -> None:
        validate_range(min_port, max_port)
        self._min, self._max = min_port, max_port
        logger.info(
            "Port range set to %d-%d",
            min_port,
            max_port,
            extra={"component": Component.PORT, "min_port": min_port, "max_port": max_port},
        )

    # =========================================================================
    # Claims
    # =========================================================================

    def _expire_claims(self) -> None:
        now = self._clock()
        for port in [p for p, c in self._claims.items() if c.expires_at <= now]:
            claim = self._claims.pop(port)
            logger.debug(
                "Port claim expired: %d (instance=%s)",
                port,
                claim.instance_id,
                extra={"component": Component.PORT, "instance_id": claim.instance_id},
            )

    def _claim(self, port: int, instance_id: str) -> None:
        self._claims[port] = PortClaim(
            port=port,
            instance_id=instance_id,
            expires_at=self._clock() + self._claim_ttl,
        )

    def claims(self) -> dict[int, str]:
        """Active claims as port -> instance id."""
        self._expire_claims()
        return {port: c.instance_id for port, c in self._claims.items()}

    def release(self, port: int) -> bool:
        return self._claims.pop(port, None) is not None

    def release_instance(self, instance_id: str) -> int:
        ports = [p for p, c in self._claims.items() if c.instance_id == instance_id]
        for port in ports:
            del self._claims[port]
        return len(ports)

    # =========================================================================
    # Used-port scan
    # =========================================================================

    async def _runtime_ports(self) -> dict[int, str]:
        """Published host port -> name of the container publishing it."""
        containers = await asyncio.wait_for(
            self._runtime.list_containers(), self._api_timeout
        )
        return {
            binding.public_port: container.name
            for container in containers
            for binding in container.ports
            if binding.public_port is not None
        }

    async def used_ports(self) -> set[int]:
        """Ports in range held by live containers, metadata or claims."""
        used: set[int] = set()
        try:
            used |= set(await self._runtime_ports())
        except Exception as exc:
            logger.warning(
                "Runtime port scan failed, using metadata only: %s",
                exc,
                extra={
                    "event": LogEvent.PORT_SCAN_DEGRADED,
                    "component": Component.PORT,
                    "error_type": type(exc).__name__,
                },
            )
        used |= await self._store.used_ports()
        self._expire_claims()
        used |= set(self._claims)
        result = {p for p in used if self.in_range(p)}
        PORTS_USED.set(len(result))
        return result

    # =========================================================================
    # Allocation
    # =========================================================================

    async def allocate(self, instance_id: str) -> int:
        """Claim and return the lowest free port.

        Raises:
            ResourceExhaustedError: every port in range is used or claimed
        """
        async with self._lock:
            used = await self.used_ports()
            for port in range(self._min, self._max + 1):
                if port not in used:
                    self._claim(port, instance_id)
                    PORT_ALLOCATIONS.labels(result="success").inc()
                    logger.info(
                        "Allocated port %d",
                        port,
                        extra={
                            "event": LogEvent.PORT_ALLOCATED,
                            "component": Component.PORT,
                            "instance_id": instance_id,
                            "port": port,
                        },
                    )
                    return port

        PORT_ALLOCATIONS.labels(result="exhausted").inc()
        logger.warning(
            "No available ports in range %d-%d",
            self._min,
            self._max,
            extra={"event": LogEvent.PORTS_EXHAUSTED, "component": Component.PORT},
        )
        raise ResourceExhaustedError(
            f"No available ports in range {self._min}-{self._max}",
            instance_id=instance_id,
        )

    async def is_available(self, port: int) -> bool:
        if not self.in_range(port):
            return False
        return port not in await self.used_ports()

    async def reserve(self, port: int, instance_id: str) -> bool:
        """Claim a specific port. False if out of range, used or claimed."""
        async with self._lock:
            self._expire_claims()
            claim = self._claims.get(port)
            if claim is not None and claim.instance_id == instance_id:
                self._claim(port, instance_id)
                return True
            if not await self.is_available(port):
                return False
            self._claim(port, instance_id)
            return True

    # =========================================================================
    # Introspection
    # =========================================================================

    async def usage_stats(self) -> dict[str, Any]:
        used = await self.used_ports()
        total = self._max - self._min + 1
        return {
            "min_port": self._min,
            "max_port": self._max,
            "total": total,
            "used": len(used),
            "available": total - len(used),
            "used_ports": sorted(used),
        }

    async def test_connectivity(self, port: int, host: str | None = None) -> bool:
        """True if something accepts TCP connections on host:port."""
        host = host or get_settings().runtime.probe_host
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), self._connect_timeout
            )
        except (OSError, TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def port_info(self, port: int) -> dict[str, Any]:
        """Availability of one port and who holds it.

        ``held_by`` is the managed instance whose container publishes the
        port; None for free ports and for containers we do not own.
        """
        in_range = self.in_range(port)
        claim = self.claims().get(port)
        try:
            container = (await self._runtime_ports()).get(port)
        except Exception as exc:
            logger.debug(
                "Port holder lookup failed for %d: %s",
                port,
                exc,
                extra={"component": Component.PORT, "port": port},
            )
            container = None
        return {
            "port": port,
            "in_range": in_range,
            "available": await self.is_available(port) if in_range else False,
            "claimed_by": claim,
            "held_by": instance_id_from_runtime_id(container) if container else None,
            "connected": await self.test_connectivity(port),
        }
