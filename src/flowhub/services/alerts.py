"""Alert emission shared by the monitor and the log collector."""

import logging

from flowhub.app.metrics.collector import ALERTS
from flowhub.core.domain.instance import AlertLevel, AlertType, Topic
from flowhub.core.logging_schema import LogEvent
from flowhub.core.models import Alert
from flowhub.services.fanout import EventFanout

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    AlertLevel.INFO: logging.INFO,
    AlertLevel.WARNING: logging.WARNING,
    AlertLevel.ERROR: logging.ERROR,
    AlertLevel.CRITICAL: logging.CRITICAL,
}


def raise_alert(
    fanout: EventFanout,
    instance_id: str,
    level: AlertLevel,
    alert_type: AlertType,
    message: str,
) -> Alert:
    """Publish an alert on the alerts topic, routed by level."""
    alert = Alert(instance_id=instance_id, level=level, type=alert_type, message=message)
    ALERTS.labels(type=alert_type.value, level=level.value).inc()
    logger.log(
        _LOG_LEVELS[level],
        "Alert %s: %s",
        alert_type,
        message,
        extra={
            "event": LogEvent.ALERT_RAISED,
            "instance_id": instance_id,
            "alert_type": alert_type,
            "alert_level": level,
        },
    )
    fanout.publish(Topic.ALERTS, alert, instance_id=instance_id, level=level)
    return alert
