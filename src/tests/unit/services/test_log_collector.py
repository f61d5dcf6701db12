"""Tests for log classification, buffering and collection."""

import asyncio
import json
import os
import time
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from flowhub.core.domain.instance import AlertType, LogLevel, Topic
from flowhub.core.models import LogEntry, LogFilter
from flowhub.infra.exports import LogExportStore
from flowhub.services.fanout import EventFanout
from flowhub.services.log_collector import (
    LogBuffer,
    LogCollector,
    classify_level,
    filter_entries,
    parse_log_line,
)
from flowhub.services.monitoring_config import MonitoringConfigHolder


def _entry(message: str, level: LogLevel = LogLevel.INFO, second: int = 0) -> LogEntry:
    return LogEntry(
        timestamp=datetime(2026, 1, 1, 12, 0, second, tzinfo=UTC),
        level=level,
        message=message,
        source_container_id="n8n-inst1",
    )


async def _wait_until(predicate, timeout: float = 1.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.fixture
def collector(
    mock_runtime: AsyncMock,
    fanout: EventFanout,
    config_holder: MonitoringConfigHolder,
    tmp_path,
) -> LogCollector:
    return LogCollector(mock_runtime, fanout, config_holder, LogExportStore(tmp_path))


class TestClassifyLevel:
    """Tests for substring level classification."""

    @pytest.mark.parametrize(
        ("message", "level"),
        [
            ("Database ERROR on connect", LogLevel.ERROR),
            ("fatal: out of memory", LogLevel.ERROR),
            ("Warning: deprecated node", LogLevel.WARN),
            ("debug: polling", LogLevel.DEBUG),
            ("Editor is now accessible", LogLevel.INFO),
        ],
    )
    def test_levels(self, message: str, level: LogLevel) -> None:
        """error/fatal > warn > debug > info."""
        assert classify_level(message) == level

    def test_error_wins_over_warn(self) -> None:
        """A line containing both markers is an error."""
        assert classify_level("warn: error while retrying") == LogLevel.ERROR


class TestParseLogLine:
    """Tests for parse_log_line()."""

    def test_leading_timestamp_is_used(self) -> None:
        """A runtime-added timestamp becomes the entry time and is stripped."""
        entry = parse_log_line("2026-03-01T10:00:00.123456789Z Workflow activated", "n8n-a")

        assert entry.timestamp.year == 2026
        assert entry.timestamp.month == 3
        assert entry.message == "Workflow activated"
        assert entry.source_container_id == "n8n-a"
        assert entry.source == "docker"

    def test_no_timestamp_uses_arrival_time(self) -> None:
        """Lines without a timestamp keep the whole text."""
        received = datetime(2026, 5, 5, tzinfo=UTC)
        entry = parse_log_line("plain line", "n8n-a", received_at=received)

        assert entry.timestamp == received
        assert entry.message == "plain line"


class TestLogBuffer:
    """Tests for the ring buffer."""

    def test_evicts_oldest(self) -> None:
        """Capacity overflow evicts in insertion order."""
        buffer = LogBuffer(capacity=2)
        buffer.append(_entry("a"))
        buffer.append(_entry("b"))
        evicted = buffer.append(_entry("c"))

        assert evicted == 1
        assert [e.message for e in buffer.entries()] == ["b", "c"]

    def test_capacity_shrink_applies_on_next_append(self) -> None:
        """A smaller capacity trims down on the next append."""
        buffer = LogBuffer(capacity=5)
        for name in "abcd":
            buffer.append(_entry(name))

        buffer.append(_entry("e"), capacity=2)

        assert len(buffer) == 2
        assert [e.message for e in buffer.entries()] == ["d", "e"]


class TestFilterEntries:
    """Tests for filter_entries()."""

    def test_limit_applies_last(self) -> None:
        """limit keeps the newest entries after the other filters."""
        entries = [
            _entry("error one", LogLevel.ERROR, 1),
            _entry("info", LogLevel.INFO, 2),
            _entry("error two", LogLevel.ERROR, 3),
            _entry("error three", LogLevel.ERROR, 4),
        ]

        result = filter_entries(entries, LogFilter(level=LogLevel.ERROR, limit=2))

        assert [e.message for e in result] == ["error two", "error three"]

    def test_time_range_and_search(self) -> None:
        """Time bounds are inclusive and search is case-insensitive."""
        entries = [_entry("Alpha", second=1), _entry("beta", second=2), _entry("ALPHA", second=3)]

        result = filter_entries(
            entries,
            LogFilter(
                start_time=datetime(2026, 1, 1, 12, 0, 2, tzinfo=UTC),
                end_time=datetime(2026, 1, 1, 12, 0, 3, tzinfo=UTC),
                search="alpha",
            ),
        )

        assert [e.message for e in result] == ["ALPHA"]


class TestLogCollectorIngest:
    """Tests for line ingestion, buffering and publishing."""

    async def test_ingest_buffers_and_publishes(
        self, collector: LogCollector, fanout: EventFanout
    ) -> None:
        """Each line is buffered and published on the instance's log topic."""
        sub = fanout.subscribe("c1", Topic.LOGS, "inst1")

        collector.ingest("inst1", "Editor is now accessible")

        assert collector.buffer_size("inst1") == 1
        event = await sub.get(timeout=0.1)
        assert event.topic == Topic.LOGS
        assert event.payload["message"] == "Editor is now accessible"

    async def test_error_line_raises_one_alert(
        self, collector: LogCollector, fanout: EventFanout
    ) -> None:
        """An ERROR entry produces exactly one LOG_ERROR alert."""
        alerts = fanout.subscribe("c1", Topic.ALERTS)

        collector.ingest("inst1", "ERROR: workflow crashed")
        collector.ingest("inst1", "all good")

        event = await alerts.get(timeout=0.1)
        assert event.payload["type"] == AlertType.LOG_ERROR
        assert event.payload["message"] == "Error log detected: ERROR: workflow crashed"
        assert alerts.pending == 0

    def test_blank_lines_skipped(self, collector: LogCollector) -> None:
        """Whitespace-only lines are ignored."""
        assert collector.ingest("inst1", "   \r") is None
        assert collector.buffer_size("inst1") == 0

    def test_feed_holds_partial_line(self, collector: LogCollector) -> None:
        """An unterminated line waits for the next chunk."""
        first = collector.feed("inst1", b"line one\nline t")
        second = collector.feed("inst1", b"wo\n")

        assert [e.message for e in first] == ["line one"]
        assert [e.message for e in second] == ["line two"]

    def test_flush_emits_trailing_line(self, collector: LogCollector) -> None:
        """flush() ingests whatever is left without a newline."""
        collector.feed("inst1", b"no newline")

        entry = collector.flush("inst1")

        assert entry is not None
        assert entry.message == "no newline"
        assert collector.flush("inst1") is None

    def test_buffer_follows_config_size(
        self, collector: LogCollector, config_holder: MonitoringConfigHolder
    ) -> None:
        """The buffer never exceeds log_buffer_size."""
        for n in range(config_holder.current.log_buffer_size + 10):
            collector.ingest("inst1", f"line {n}")

        assert collector.buffer_size("inst1") == config_holder.current.log_buffer_size
        assert collector.query("inst1")[0].message == "line 10"

    def test_query_unknown_instance(self, collector: LogCollector) -> None:
        """Querying an instance without a buffer returns nothing."""
        assert collector.query("missing") == []


class TestLogCollectorStreaming:
    """Tests for the per-instance streaming task."""

    async def test_stream_feeds_buffer(
        self, collector: LogCollector, mock_runtime: AsyncMock
    ) -> None:
        """Chunks from the runtime end up in the buffer."""

        async def chunks():
            yield b"2026-01-01T00:00:00Z first\n"
            yield b"second\n"

        mock_runtime.stream_logs = MagicMock(return_value=chunks())

        assert collector.start("inst1") is True
        await _wait_until(lambda: not collector.is_collecting("inst1"))

        assert [e.message for e in collector.query("inst1")] == ["first", "second"]
        mock_runtime.stream_logs.assert_called_once_with(
            "n8n-inst1", follow=True, timestamps=True, tail=100
        )

    async def test_start_is_idempotent(
        self, collector: LogCollector, mock_runtime: AsyncMock
    ) -> None:
        """A second start while streaming does nothing."""
        gate = asyncio.Event()

        async def chunks():
            await gate.wait()
            yield b"x\n"

        mock_runtime.stream_logs = MagicMock(return_value=chunks())

        assert collector.start("inst1") is True
        assert collector.start("inst1") is False

        await collector.stop("inst1")
        assert collector.is_collecting("inst1") is False
        assert collector.query("inst1") == []

    async def test_stream_failure_is_not_restarted(
        self, collector: LogCollector, mock_runtime: AsyncMock
    ) -> None:
        """A failing stream ends the task and keeps what was collected."""

        async def chunks():
            yield b"before failure\n"
            raise ConnectionError("stream reset")

        mock_runtime.stream_logs = MagicMock(return_value=chunks())

        collector.start("inst1")
        await _wait_until(lambda: not collector.is_collecting("inst1"))

        assert [e.message for e in collector.query("inst1")] == ["before failure"]
        assert mock_runtime.stream_logs.call_count == 1

    async def test_stop_when_not_collecting(self, collector: LogCollector) -> None:
        """stop() on an idle instance is a no-op."""
        await collector.stop("never-started")


class TestLogExports:
    """Tests for export and retention cleanup."""

    async def test_export_writes_filtered_json(self, collector: LogCollector, tmp_path) -> None:
        """Export writes the filtered entries as a JSON array."""
        collector.ingest("inst1", "info line")
        collector.ingest("inst1", "ERROR bad thing")

        path = await collector.export("inst1", LogFilter(level=LogLevel.ERROR))

        assert path.parent == tmp_path
        assert path.name.startswith("logs-inst1-")
        data = json.loads(path.read_text())
        assert [d["message"] for d in data] == ["ERROR bad thing"]

    async def test_cleanup_removes_expired(
        self, collector: LogCollector, config_holder: MonitoringConfigHolder, tmp_path
    ) -> None:
        """Exports older than retention_days are removed, newer ones kept."""
        old = tmp_path / "logs-inst1-1.json"
        new = tmp_path / "logs-inst1-2.json"
        unrelated = tmp_path / "notes.txt"
        for path in (old, new, unrelated):
            path.write_text("[]")
        stale = time.time() - (config_holder.current.retention_days + 1) * 86400
        os.utime(old, (stale, stale))
        os.utime(unrelated, (stale, stale))

        removed = await collector.cleanup_exports()

        assert removed == 1
        assert not old.exists()
        assert new.exists()
        assert unrelated.exists()

    async def test_cleanup_missing_dir(self, tmp_path) -> None:
        """Cleanup on a directory that does not exist removes nothing."""
        store = LogExportStore(tmp_path / "absent")
        assert await store.cleanup(1) == 0
