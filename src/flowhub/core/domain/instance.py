"""Instance domain enums.

Status derivation from container state lives in
flowhub.services.lifecycle (derive_status).
"""

from enum import StrEnum


class InstanceStatus(StrEnum):
    """Instance lifecycle status.

    Persisted status is a cache; the live container state wins on read.
    """

    CREATED = "CREATED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"
    ERROR = "ERROR"
    RESTARTING = "RESTARTING"
    DELETING = "DELETING"
    CRASHED = "CRASHED"


class LogLevel(StrEnum):
    """Container log severity."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"


class AlertLevel(StrEnum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AlertType(StrEnum):
    AUTO_RESTART = "AUTO_RESTART"
    HEALTH_CHECK_FAILED = "HEALTH_CHECK_FAILED"
    LOG_ERROR = "LOG_ERROR"


class Topic(StrEnum):
    """Fan-out routing topics."""

    STATUS = "status"
    LOGS = "logs"
    METRICS = "metrics"
    HEALTH = "health"
    ALERTS = "alerts"
