"""Logging setup: JSON records on stdout with per-instance rate limiting."""

import logging
import sys
import time
from collections import defaultdict, deque
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pythonjsonlogger import jsonlogger

from flowhub.app.config import get_settings

_WINDOW_SECONDS = 60.0


class RateLimitFilter(logging.Filter):
    """Caps identical INFO/DEBUG records per instance to N per minute.

    A monitor loop for a flapping instance can repeat the same line every
    few seconds; WARNING and above always pass. When a key is allowed
    through again after being throttled, the record carries
    ``suppressed=<count>`` so the gap is visible.
    """

    def __init__(self, rate_per_minute: int = 100) -> None:
        super().__init__()
        self.rate_per_minute = rate_per_minute
        self._seen: dict[tuple, deque[float]] = defaultdict(deque)
        self._suppressed: dict[tuple, int] = defaultdict(int)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True

        key = (record.name, record.msg, getattr(record, "instance_id", None))
        now = time.monotonic()
        window = self._seen[key]
        while window and now - window[0] >= _WINDOW_SECONDS:
            window.popleft()

        if len(window) >= self.rate_per_minute:
            self._suppressed[key] += 1
            return False

        window.append(now)
        suppressed = self._suppressed.pop(key, 0)
        if suppressed:
            record.suppressed = suppressed
        return True


class FlowHubJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter stamping service identity onto every record.

    Fields: timestamp (UTC ISO 8601), level, logger, service,
    schema_version, plus whatever ``extra=`` carried. Enum values
    (LogEvent, Component, InstanceStatus...) are written as plain strings.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        config = get_settings().logging
        self._static = {
            "service": config.service_name,
            "schema_version": config.schema_version,
        }

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.update(
            timestamp=datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            level=record.levelname,
            logger=record.name,
            **self._static,
        )
        for key, value in log_record.items():
            if isinstance(value, Enum):
                log_record[key] = value.value
        if record.exc_info and "exception" not in log_record:
            log_record["exception"] = self.formatException(record.exc_info)
        log_record.pop("color_message", None)


def _build_formatter(fmt: str) -> logging.Formatter:
    if fmt == "text":
        return logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    return FlowHubJsonFormatter()


def setup_logging(level: int | None = None) -> None:
    """Install the stdout handler on the root logger.

    Args:
        level: Log level. If None, uses LOGGING_LEVEL from settings.
    """
    config = get_settings().logging
    if level is None:
        level = logging.getLevelName(config.level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_build_formatter(config.format))
    handler.addFilter(RateLimitFilter(config.rate_limit_per_minute))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    uv_logger = logging.getLogger("uvicorn")
    uv_logger.handlers.clear()
    uv_logger.propagate = True
    # LoggingMiddleware writes one line per request
    logging.getLogger("uvicorn.access").disabled = True

    # Health probes and Docker API polling
    for name in ("httpx", "httpcore", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)
