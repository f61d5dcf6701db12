"""Monitoring models: config, snapshots, log entries, alerts and events.

None of the snapshot types are persisted; MonitoringConfigRecord is the
single process-wide config row.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field as PydanticField, field_validator
from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from flowhub.core.domain.instance import AlertLevel, AlertType, LogLevel, Topic
from flowhub.core.models.instance import as_utc, utc_now


class HealthCheckConfig(BaseModel):
    model_config = {"frozen": True}

    interval_seconds: float = PydanticField(default=30.0, gt=0)
    timeout_seconds: float = PydanticField(default=10.0, gt=0)
    retries: int = PydanticField(default=3, ge=0)
    auto_restart: bool = True
    alert_threshold: int = PydanticField(default=3, ge=1)


class MonitoringConfig(BaseModel):
    """Process-wide monitoring configuration.

    Replaced as a whole through MonitoringConfigHolder.replace().
    """

    model_config = {"frozen": True}

    health_check: HealthCheckConfig = PydanticField(default_factory=HealthCheckConfig)
    log_buffer_size: int = PydanticField(default=1000, ge=1)
    metrics_interval_seconds: float = PydanticField(default=60.0, gt=0)
    retention_days: int = PydanticField(default=30, ge=0)


class MonitoringConfigRecord(SQLModel, table=True):
    """Singleton row holding the persisted MonitoringConfig."""

    __tablename__ = "monitoring_config"

    id: int = Field(default=1, primary_key=True)
    data: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class HealthSnapshot(BaseModel):
    instance_id: str
    is_healthy: bool
    last_check: datetime
    response_time_ms: float | None = None
    error_count: int = 0
    last_error: str | None = None
    auto_restart_count: int = 0
    last_restart: datetime | None = None


class MetricsSnapshot(BaseModel):
    instance_id: str
    cpu_usage_percent: float
    memory_usage_percent: float
    memory_usage_mb: float
    uptime_seconds: float
    uptime_formatted: str
    last_activity: datetime
    container_id: str | None = None
    image: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None


class LogEntry(BaseModel):
    model_config = {"frozen": True}

    timestamp: datetime
    level: LogLevel
    message: str
    source_container_id: str
    source: str = "docker"


class LogFilter(BaseModel):
    """Log query filter. limit is applied last (last N after other filters)."""

    level: LogLevel | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    search: str | None = None
    limit: int | None = PydanticField(default=None, ge=1)

    @field_validator("start_time", "end_time")
    @classmethod
    def _ensure_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class Alert(BaseModel):
    instance_id: str
    level: AlertLevel
    type: AlertType
    message: str
    timestamp: datetime = PydanticField(default_factory=utc_now)


class Event(BaseModel):
    """Fan-out envelope delivered to subscribers."""

    topic: Topic
    instance_id: str | None = None
    level: AlertLevel | None = None
    payload: dict[str, Any]
    timestamp: datetime = PydanticField(default_factory=utc_now)
