"""Prometheus metrics definitions for flowhub.

Instance ids are high cardinality and never used as labels; per-instance
detail belongs in logs.
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Histogram Buckets
# =============================================================================
# Lifecycle operations include settle delays and image pulls (100ms ~ 180s)
_BUCKETS_SLOW = (
    0.1, 0.2, 0.4, 0.8, 1.5,
    3, 6, 12, 24, 48,
    96, 180,
)  # 12 buckets

# Health probes are bounded by the probe timeout (5ms ~ 30s)
_BUCKETS_PROBE = (
    0.005, 0.01, 0.025, 0.05, 0.1,
    0.25, 0.5, 1, 2.5, 5,
    10, 30,
)  # 12 buckets

# =============================================================================
# Lifecycle Metrics
# =============================================================================

LIFECYCLE_OPERATIONS = Counter(
    "flowhub_lifecycle_operations_total",
    "Total lifecycle operations",
    ["operation", "result"],  # result: success, error
)

LIFECYCLE_DURATION = Histogram(
    "flowhub_lifecycle_duration_seconds",
    "Duration of lifecycle operations",
    ["operation"],
    buckets=_BUCKETS_SLOW,
)

ORPHANS_CLEANED = Counter(
    "flowhub_orphans_cleaned_total",
    "Instances marked STOPPED by the orphan sweep",
)

# =============================================================================
# Monitoring Metrics
# =============================================================================

HEALTH_PROBES = Counter(
    "flowhub_health_probes_total",
    "Total health probes",
    ["result"],  # healthy, unhealthy
)

HEALTH_PROBE_DURATION = Histogram(
    "flowhub_health_probe_duration_seconds",
    "Duration of health probe HTTP requests",
    buckets=_BUCKETS_PROBE,
)

AUTO_RESTARTS = Counter(
    "flowhub_auto_restarts_total",
    "Auto-restarts issued by the monitor",
    ["result"],  # success, error
)

MONITORED_INSTANCES = Gauge(
    "flowhub_monitored_instances",
    "Instances with an active monitor task-set",
)

LOG_ENTRIES = Counter(
    "flowhub_log_entries_total",
    "Container log entries collected",
    ["level"],
)

ALERTS = Counter(
    "flowhub_alerts_total",
    "Alerts raised",
    ["type", "level"],
)

# =============================================================================
# Fan-out Metrics
# =============================================================================

FANOUT_SUBSCRIPTIONS = Gauge(
    "flowhub_fanout_subscriptions",
    "Active event subscriptions",
)

FANOUT_DROPPED = Counter(
    "flowhub_fanout_dropped_total",
    "Events dropped because a subscriber queue was full",
)

# =============================================================================
# HTTP Metrics
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "flowhub_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "flowhub_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint"],
    buckets=_BUCKETS_SLOW,
)

# =============================================================================
# Port Metrics
# =============================================================================

PORT_ALLOCATIONS = Counter(
    "flowhub_port_allocations_total",
    "Port allocation attempts",
    ["result"],  # success, exhausted
)

PORTS_USED = Gauge(
    "flowhub_ports_used",
    "Ports in the configured range that are in use or claimed",
)


# =============================================================================
# Metric Initialization
# =============================================================================

def _init_metrics() -> None:
    """Initialize labeled metrics with zero values."""
    for op in ["create", "start", "stop", "pause", "restart", "delete"]:
        LIFECYCLE_DURATION.labels(operation=op)
        LIFECYCLE_OPERATIONS.labels(operation=op, result="success")
        LIFECYCLE_OPERATIONS.labels(operation=op, result="error")

    for result in ["healthy", "unhealthy"]:
        HEALTH_PROBES.labels(result=result)

    for result in ["success", "error"]:
        AUTO_RESTARTS.labels(result=result)

    for level in ["DEBUG", "INFO", "WARN", "ERROR", "FATAL"]:
        LOG_ENTRIES.labels(level=level)

    for result in ["success", "exhausted"]:
        PORT_ALLOCATIONS.labels(result=result)


_init_metrics()
