"""Advisory lock serialising commands that mutate a content root.

The lock is a ``SoftFileLock`` (exclusive create of ``db/.archivist.lock``)
plus an owner file recording the holder's pid. A lock left behind by a
process that no longer exists is cleared and acquisition is retried once.
"""

from __future__ import annotations

import contextlib
import json
import os
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import structlog
from filelock import SoftFileLock, Timeout

from Archivist.errors import OperationInProgress
from Archivist.layout import ContentLayout

log = structlog.get_logger()


def _owner_path(lock_path: Path) -> Path:
    return lock_path.with_name(f"{lock_path.name}.owner.json")


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def read_owner(lock_path: Path) -> dict[str, Any]:
    owner_path = _owner_path(lock_path)
    try:
        return json.loads(owner_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}


def _cleanup_if_stale(lock_path: Path) -> bool:
    if not lock_path.exists():
        return False
    pid = read_owner(lock_path).get("pid")
    if not isinstance(pid, int) or _pid_alive(pid):
        return False
    log.warning("lock.stale_cleaned", message=f"Removed stale lock left by pid {pid}", path=str(lock_path))
    _owner_path(lock_path).unlink(missing_ok=True)
    lock_path.unlink(missing_ok=True)
    return True


@contextlib.contextmanager
def operation_lock(layout: ContentLayout, timeout: float = 0.0) -> Iterator[Path]:
    """Hold the content-root lock for the duration of the block.

    Raises:
        OperationInProgress: If another live process holds the lock
    """
    lock_path = layout.lock_path
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock = SoftFileLock(str(lock_path), timeout=timeout)
    try:
        lock.acquire()
    except Timeout:
        if not _cleanup_if_stale(lock_path):
            owner = read_owner(lock_path)
            raise OperationInProgress(
                f"Another operation is in progress on {layout.root} (lock {lock_path}, pid {owner.get('pid', 'unknown')})"
            ) from None
        try:
            lock.acquire(timeout=0)
        except Timeout:
            raise OperationInProgress(f"Another operation is in progress on {layout.root}") from None

    _owner_path(lock_path).write_text(
        json.dumps({"pid": os.getpid(), "created_ts": time.time()}), encoding="utf-8"
    )
    log.debug("lock.acquired", path=str(lock_path))
    try:
        yield lock_path
    finally:
        _owner_path(lock_path).unlink(missing_ok=True)
        lock.release()
        log.debug("lock.released", path=str(lock_path))
