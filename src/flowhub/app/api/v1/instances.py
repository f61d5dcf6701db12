"""Instance API endpoints.

Lifecycle transitions use custom methods (``POST /instances/{id}:start``);
monitoring reads hang off the instance resource.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from flowhub.app.dependencies import get_lifecycle
from flowhub.core.domain.instance import LogLevel
from flowhub.core.models import (
    CreateInstanceInput,
    HealthSnapshot,
    Instance,
    LogEntry,
    LogFilter,
    MetricsSnapshot,
)
from flowhub.services.lifecycle import LifecycleManager

router = APIRouter(prefix="/instances", tags=["instances"])

Lifecycle = Annotated[LifecycleManager, Depends(get_lifecycle)]


# =============================================================================
# Request/Response Models
# =============================================================================


class InstanceListResponse(BaseModel):
    """Instance list response."""

    items: list[Instance]
    total: int


class DeleteResponse(BaseModel):
    deleted: bool


class ExportResponse(BaseModel):
    path: str


def _log_filter(
    level: LogLevel | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    search: str | None = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> LogFilter:
    return LogFilter(
        level=level,
        start_time=start_time,
        end_time=end_time,
        search=search,
        limit=limit,
    )


Filter = Annotated[LogFilter, Depends(_log_filter)]


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=Instance, status_code=201)
async def create_instance(request: CreateInstanceInput, lifecycle: Lifecycle) -> Instance:
    """Create an instance: claim a port and write its descriptor.

    The container is not started; call ``:start`` afterwards.
    """
    return await lifecycle.create(request)


@router.get("", response_model=InstanceListResponse)
async def list_instances(lifecycle: Lifecycle) -> InstanceListResponse:
    instances = await lifecycle.list()
    return InstanceListResponse(items=instances, total=len(instances))


@router.get("/{instance_id}", response_model=Instance)
async def get_instance(instance_id: str, lifecycle: Lifecycle) -> Instance:
    return await lifecycle.get(instance_id)


@router.post("/{instance_id}:start", response_model=Instance)
async def start_instance(instance_id: str, lifecycle: Lifecycle) -> Instance:
    return await lifecycle.start(instance_id)


@router.post("/{instance_id}:stop", response_model=Instance)
async def stop_instance(instance_id: str, lifecycle: Lifecycle) -> Instance:
    return await lifecycle.stop(instance_id)


@router.post("/{instance_id}:pause", response_model=Instance)
async def pause_instance(instance_id: str, lifecycle: Lifecycle) -> Instance:
    return await lifecycle.pause(instance_id)


@router.post("/{instance_id}:restart", response_model=Instance)
async def restart_instance(instance_id: str, lifecycle: Lifecycle) -> Instance:
    return await lifecycle.restart(instance_id)


@router.delete("/{instance_id}", response_model=DeleteResponse)
async def delete_instance(instance_id: str, lifecycle: Lifecycle) -> DeleteResponse:
    """Delete the instance, its descriptor and its data volume.

    ``deleted`` is false when a cleanup step failed; the instance is
    removed either way.
    """
    return DeleteResponse(deleted=await lifecycle.delete(instance_id))


@router.get("/{instance_id}/logs", response_model=list[LogEntry])
async def get_logs(instance_id: str, log_filter: Filter, lifecycle: Lifecycle) -> list[LogEntry]:
    return await lifecycle.get_logs(instance_id, log_filter)


@router.post("/{instance_id}/logs:export", response_model=ExportResponse)
async def export_logs(
    instance_id: str, log_filter: Filter, lifecycle: Lifecycle
) -> ExportResponse:
    path = await lifecycle.export_logs(instance_id, log_filter)
    return ExportResponse(path=str(path))


@router.get("/{instance_id}/metrics", response_model=MetricsSnapshot)
async def get_metrics(instance_id: str, lifecycle: Lifecycle) -> MetricsSnapshot:
    return await lifecycle.get_metrics(instance_id)


@router.get("/{instance_id}/health", response_model=HealthSnapshot)
async def check_health(instance_id: str, lifecycle: Lifecycle) -> HealthSnapshot:
    """Run an on-demand health probe."""
    return await lifecycle.check_health(instance_id)
