"""Database and domain models for flowhub.

Tables are defined using SQLModel (SQLAlchemy + Pydantic).
"""

from flowhub.core.models.instance import (
    CreateInstanceInput,
    Instance,
    InstanceRecord,
    generate_ulid,
    utc_now,
)
from flowhub.core.models.monitoring import (
    Alert,
    Event,
    HealthCheckConfig,
    HealthSnapshot,
    LogEntry,
    LogFilter,
    MetricsSnapshot,
    MonitoringConfig,
    MonitoringConfigRecord,
)

__all__ = [
    "Alert",
    "CreateInstanceInput",
    "Event",
    "HealthCheckConfig",
    "HealthSnapshot",
    "Instance",
    "InstanceRecord",
    "LogEntry",
    "LogFilter",
    "MetricsSnapshot",
    "MonitoringConfig",
    "MonitoringConfigRecord",
    "generate_ulid",
    "utc_now",
]
