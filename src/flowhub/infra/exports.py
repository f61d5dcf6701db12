"""Exported log artifacts on local disk.

Files are named logs-{instance_id}-{epoch_ms}.json and expire after the
configured retention period (by mtime).
"""

import asyncio
import logging
import time
from pathlib import Path

from pydantic import TypeAdapter

from flowhub.app.config import get_settings
from flowhub.core.logging_schema import LogEvent
from flowhub.core.models import LogEntry

logger = logging.getLogger(__name__)

_entries_adapter = TypeAdapter(list[LogEntry])

EXPORT_GLOB = "logs-*.json"


class LogExportStore:
    """Writes log exports and sweeps expired ones."""

    def __init__(self, exports_dir: str | Path | None = None) -> None:
        self._root = Path(exports_dir or get_settings().storage.exports_dir)

    @property
    def root(self) -> Path:
        return self._root

    def _write(self, instance_id: str, entries: list[LogEntry]) -> Path:
        self._root.mkdir(parents=True, exist_ok=True)
        path = self._root / f"logs-{instance_id}-{int(time.time() * 1000)}.json"
        path.write_bytes(_entries_adapter.dump_json(entries, indent=2))
        return path

    async def write(self, instance_id: str, entries: list[LogEntry]) -> Path:
        path = await asyncio.to_thread(self._write, instance_id, entries)
        logger.info(
            "Exported %d log entries to %s",
            len(entries),
            path,
            extra={"event": LogEvent.LOGS_EXPORTED, "instance_id": instance_id},
        )
        return path

    def _cleanup(self, retention_days: int) -> int:
        if not self._root.is_dir():
            return 0
        cutoff = time.time() - retention_days * 86400
        removed = 0
        for path in self._root.glob(EXPORT_GLOB):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        return removed

    async def cleanup(self, retention_days: int) -> int:
        """Delete exports older than retention_days. Returns number removed."""
        removed = await asyncio.to_thread(self._cleanup, retention_days)
        if removed:
            logger.info(
                "Removed %d expired log exports",
                removed,
                extra={"event": LogEvent.EXPORTS_CLEANED, "removed": removed},
            )
        return removed
