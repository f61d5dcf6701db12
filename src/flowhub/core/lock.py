"""Per-instance lock for lifecycle operations."""

import asyncio

_instance_locks: dict[str, asyncio.Lock] = {}


def get_instance_lock(instance_id: str) -> asyncio.Lock:
    """Get or create a per-instance lock.

    Serializes create/start/stop/pause/restart/delete of one instance.
    Monitors and status reads never take it; a read that finds the lock
    held keeps the persisted status instead of racing the operation.
    """
    if instance_id not in _instance_locks:
        _instance_locks[instance_id] = asyncio.Lock()
    return _instance_locks[instance_id]


def discard_instance_lock(instance_id: str) -> None:
    """Forget the lock of a deleted instance."""
    lock = _instance_locks.get(instance_id)
    if lock is not None and not lock.locked():
        del _instance_locks[instance_id]
