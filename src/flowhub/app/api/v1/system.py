"""Monitoring config, port and maintenance endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel

from flowhub.app.dependencies import get_allocator, get_lifecycle
from flowhub.core.models import MonitoringConfig
from flowhub.services.lifecycle import LifecycleManager
from flowhub.services.port_allocator import PortAllocator

router = APIRouter(tags=["system"])

Lifecycle = Annotated[LifecycleManager, Depends(get_lifecycle)]
Allocator = Annotated[PortAllocator, Depends(get_allocator)]


class ReconcileResponse(BaseModel):
    orphans: list[str]
    count: int


@router.get("/monitoring/config", response_model=MonitoringConfig)
async def get_monitoring_config(lifecycle: Lifecycle) -> MonitoringConfig:
    return lifecycle.get_monitoring_config()


@router.put("/monitoring/config", response_model=MonitoringConfig)
async def update_monitoring_config(
    config: MonitoringConfig, lifecycle: Lifecycle
) -> MonitoringConfig:
    """Replace the whole monitoring config. Applies from the next poll."""
    return await lifecycle.update_monitoring_config(config)


@router.get("/ports")
async def port_usage(allocator: Allocator) -> dict[str, Any]:
    return await allocator.usage_stats()


@router.get("/ports/{port}")
async def port_info(
    port: Annotated[int, Path(ge=1, le=65535)], allocator: Allocator
) -> dict[str, Any]:
    return await allocator.port_info(port)


@router.post("/maintenance/orphans:reconcile", response_model=ReconcileResponse)
async def reconcile_orphans(lifecycle: Lifecycle) -> ReconcileResponse:
    orphans = await lifecycle.reconcile_orphans()
    return ReconcileResponse(orphans=orphans, count=len(orphans))
