"""Logging field schema - v1.0

Standard fields (added to all logs):
- schema_version: Log schema version
- service: Service name (flowhub)
- component: Component name (LC, MON, LOG, PORT, FAN, SCH, API)
- event: Event type (instance_started, health_check_failed, etc.)
- duration_ms: Duration in milliseconds

High cardinality fields (OK in logs, NOT in metric labels):
- instance_id: Instance ID
- runtime_id: Container name
- connection_id: Subscriber connection ID
"""

from enum import StrEnum


class LogEvent(StrEnum):
    """Standard log event types.

    Use these event types in the 'event' extra field for consistent
    log filtering and analysis.
    """

    # Lifecycle events
    INSTANCE_CREATED = "instance_created"
    INSTANCE_STARTED = "instance_started"
    INSTANCE_STOPPED = "instance_stopped"
    INSTANCE_PAUSED = "instance_paused"
    INSTANCE_DELETED = "instance_deleted"
    STATE_CHANGED = "state_changed"
    OPERATION_FAILED = "operation_failed"
    OPERATION_TIMEOUT = "operation_timeout"
    ORPHAN_CLEANED = "orphan_cleaned"
    DESCRIPTOR_CLEANED = "descriptor_cleaned"

    # Monitoring events
    MONITORING_STARTED = "monitoring_started"
    MONITORING_STOPPED = "monitoring_stopped"
    HEALTH_CHECK_FAILED = "health_check_failed"
    AUTO_RESTART = "auto_restart"
    METRICS_FAILED = "metrics_failed"
    ALERT_RAISED = "alert_raised"
    CONFIG_UPDATED = "config_updated"

    # Log collection events
    LOG_STREAM_STARTED = "log_stream_started"
    LOG_STREAM_ENDED = "log_stream_ended"
    LOG_STREAM_FAILED = "log_stream_failed"
    LOGS_EXPORTED = "logs_exported"
    EXPORTS_CLEANED = "exports_cleaned"

    # Port allocation events
    PORT_ALLOCATED = "port_allocated"
    PORTS_EXHAUSTED = "ports_exhausted"
    PORT_SCAN_DEGRADED = "port_scan_degraded"

    # Fan-out events
    SUBSCRIBER_ATTACHED = "subscriber_attached"
    SUBSCRIBER_DETACHED = "subscriber_detached"
    SUBSCRIBER_LAGGED = "subscriber_lagged"

    # App lifecycle events
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"
    SCHEDULER_TICK = "scheduler_tick"

    # HTTP request events
    REQUEST_COMPLETE = "request_complete"
    REQUEST_FAILED = "request_failed"


class ErrorClass(StrEnum):
    """Error classification for structured error logging.

    Use these in the 'error_class' extra field to enable
    filtering by error type and setting up alerts.
    """

    TRANSIENT = "transient"  # Runtime call failed, may succeed later
    PERMANENT = "permanent"  # Configuration problem (bad descriptor, not found)
    TIMEOUT = "timeout"  # Bounded call exceeded its deadline
    UNAVAILABLE = "unavailable"  # Container runtime unreachable


class Component(StrEnum):
    """Component identifiers for log filtering."""

    LC = "lc"  # LifecycleManager
    MON = "mon"  # InstanceMonitor
    LOG = "log"  # LogCollector
    PORT = "port"  # PortAllocator
    FAN = "fan"  # EventFanout
    SCH = "sch"  # MaintenanceScheduler
    API = "api"  # REST API
    SSE = "sse"  # Server-Sent Events
