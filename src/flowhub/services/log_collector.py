"""Per-instance container log collection.

One streaming task per instance follows the container's stdout/stderr,
classifies each line, keeps the newest entries in a bounded buffer and
publishes every entry on the instance's log topic. A failed stream is
logged and not restarted; collection resumes only when monitoring for
the instance is started again.
"""

import asyncio
import logging
import re
from collections import deque
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from flowhub.app.metrics.collector import LOG_ENTRIES
from flowhub.core.domain.instance import AlertLevel, AlertType, LogLevel, Topic
from flowhub.core.interfaces import ContainerRuntime
from flowhub.core.logging_schema import Component, LogEvent
from flowhub.core.models import LogEntry, LogFilter, utc_now
from flowhub.core.naming import runtime_id
from flowhub.core.timestamps import parse_timestamp
from flowhub.infra.exports import LogExportStore
from flowhub.services.alerts import raise_alert
from flowhub.services.fanout import EventFanout
from flowhub.services.monitoring_config import MonitoringConfigHolder

logger = logging.getLogger(__name__)

LOG_SOURCE = "docker"
# Lines replayed from before the stream attaches (covers the settle delay)
STREAM_TAIL = 100

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2}))\s+(.*)$"
)


def classify_level(message: str) -> LogLevel:
    """Severity by case-insensitive substring match."""
    lowered = message.lower()
    if "error" in lowered or "fatal" in lowered:
        return LogLevel.ERROR
    if "warn" in lowered:
        return LogLevel.WARN
    if "debug" in lowered:
        return LogLevel.DEBUG
    return LogLevel.INFO


def parse_log_line(
    line: str, container_id: str, received_at: datetime | None = None
) -> LogEntry:
    """Build a LogEntry from one raw line.

    A leading RFC3339 timestamp (as added by ``timestamps=true``) becomes
    the entry time; otherwise the arrival time is used.
    """
    timestamp: datetime | None = None
    message = line
    match = _TIMESTAMP_RE.match(line)
    if match:
        timestamp = parse_timestamp(match.group(1))
        if timestamp is not None:
            message = match.group(2)
    return LogEntry(
        timestamp=timestamp or received_at or utc_now(),
        level=classify_level(message),
        message=message,
        source_container_id=container_id,
        source=LOG_SOURCE,
    )


def filter_entries(entries: Iterable[LogEntry], f: LogFilter) -> list[LogEntry]:
    """Apply level, time range, search, then keep the last ``limit``."""
    result = list(entries)
    if f.level is not None:
        result = [e for e in result if e.level == f.level]
    if f.start_time is not None:
        result = [e for e in result if e.timestamp >= f.start_time]
    if f.end_time is not None:
        result = [e for e in result if e.timestamp <= f.end_time]
    if f.search:
        needle = f.search.lower()
        result = [e for e in result if needle in e.message.lower()]
    if f.limit is not None:
        result = result[-f.limit :]
    return result


class LogBuffer:
    """FIFO ring buffer; insertion order is eviction order."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self._entries: deque[LogEntry] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: LogEntry, capacity: int | None = None) -> int:
        """Append, evicting the oldest entries over capacity. Returns evicted count."""
        if capacity is not None:
            self.capacity = capacity
        self._entries.append(entry)
        evicted = 0
        while len(self._entries) > self.capacity:
            self._entries.popleft()
            evicted += 1
        return evicted

    def entries(self) -> list[LogEntry]:
        return list(self._entries)


class LogCollector:
    """Owns the log streaming task and buffer of every monitored instance."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        fanout: EventFanout,
        config: MonitoringConfigHolder,
        exports: LogExportStore | None = None,
    ) -> None:
        self._runtime = runtime
        self._fanout = fanout
        self._config = config
        self._exports = exports or LogExportStore()
        self._tasks: dict[str, asyncio.Task] = {}
        self._buffers: dict[str, LogBuffer] = {}
        self._partial: dict[str, str] = {}

    def is_collecting(self, instance_id: str) -> bool:
        task = self._tasks.get(instance_id)
        return task is not None and not task.done()

    def start(self, instance_id: str) -> bool:
        """Attach to the instance's log stream. No-op if already attached."""
        if self.is_collecting(instance_id):
            return False
        self._buffers.setdefault(
            instance_id, LogBuffer(self._config.current.log_buffer_size)
        )
        self._tasks[instance_id] = asyncio.create_task(
            self._collect(instance_id), name=f"logs-{instance_id}"
        )
        return True

    async def stop(self, instance_id: str) -> None:
        """Cancel the stream and drop the buffer. Safe when not collecting."""
        task = self._tasks.pop(instance_id, None)
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._buffers.pop(instance_id, None)
        self._partial.pop(instance_id, None)

    async def stop_all(self) -> None:
        for instance_id in list(self._tasks):
            await self.stop(instance_id)

    async def _collect(self, instance_id: str) -> None:
        rid = runtime_id(instance_id)
        log_extra = {"component": Component.LOG, "instance_id": instance_id}
        logger.info(
            "Log stream started for %s",
            rid,
            extra={**log_extra, "event": LogEvent.LOG_STREAM_STARTED},
        )
        try:
            async for chunk in self._runtime.stream_logs(
                rid, follow=True, timestamps=True, tail=STREAM_TAIL
            ):
                self.feed(instance_id, chunk)
            self.flush(instance_id)
            logger.info(
                "Log stream ended for %s",
                rid,
                extra={**log_extra, "event": LogEvent.LOG_STREAM_ENDED},
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Log stream failed for %s: %s",
                rid,
                exc,
                extra={
                    **log_extra,
                    "event": LogEvent.LOG_STREAM_FAILED,
                    "error_type": type(exc).__name__,
                },
            )

    def feed(self, instance_id: str, chunk: bytes) -> list[LogEntry]:
        """Split a chunk into lines and ingest every complete one.

        An unterminated trailing line is held until the next chunk.
        """
        text = self._partial.pop(instance_id, "") + chunk.decode("utf-8", "replace")
        lines = text.split("\n")
        tail = lines.pop()
        if tail:
            self._partial[instance_id] = tail
        return [e for line in lines if (e := self.ingest(instance_id, line))]

    def flush(self, instance_id: str) -> LogEntry | None:
        tail = self._partial.pop(instance_id, "")
        return self.ingest(instance_id, tail) if tail else None

    def ingest(self, instance_id: str, line: str) -> LogEntry | None:
        """Classify, buffer and publish one line. Blank lines are skipped."""
        line = line.rstrip("\r")
        if not line.strip():
            return None

        entry = parse_log_line(line, runtime_id(instance_id))
        config = self._config.current
        buffer = self._buffers.setdefault(instance_id, LogBuffer(config.log_buffer_size))
        buffer.append(entry, capacity=config.log_buffer_size)
        LOG_ENTRIES.labels(level=entry.level.value).inc()

        self._fanout.publish(Topic.LOGS, entry, instance_id=instance_id)
        if entry.level == LogLevel.ERROR:
            raise_alert(
                self._fanout,
                instance_id,
                AlertLevel.ERROR,
                AlertType.LOG_ERROR,
                f"Error log detected: {entry.message}",
            )
        return entry

    def buffer_size(self, instance_id: str) -> int:
        buffer = self._buffers.get(instance_id)
        return len(buffer) if buffer else 0

    def query(self, instance_id: str, log_filter: LogFilter | None = None) -> list[LogEntry]:
        buffer = self._buffers.get(instance_id)
        if buffer is None:
            return []
        return filter_entries(buffer.entries(), log_filter or LogFilter())

    async def export(self, instance_id: str, log_filter: LogFilter | None = None) -> Path:
        """Write the filtered entries to durable storage. Returns the file path."""
        return await self._exports.write(instance_id, self.query(instance_id, log_filter))

    async def cleanup_exports(self) -> int:
        """Remove exports older than the configured retention period."""
        return await self._exports.cleanup(self._config.current.retention_days)
