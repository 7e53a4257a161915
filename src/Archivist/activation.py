"""Promotion of the staged database and rollback to the previous one.

Both operations keep a database at the active path at every step. The old
active file is archived by hard link (or copy) while it stays in place, and
only then is the replacement moved over it with a single ``os.replace``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import structlog

from Archivist.db import checkpoint, remove_database, remove_sidecars
from Archivist.errors import NoBackupAvailable, StagedDatabaseMissing
from Archivist.layout import ContentLayout, backup_path_for
from Archivist.metrics import inc_counter
from Archivist.tools.package_utils import link_or_copy, utc_stamp

log = structlog.get_logger()


@dataclass(frozen=True)
class ActivationResult:
    active_db: Path
    backup_db: Path | None


@dataclass(frozen=True)
class RollbackResult:
    active_db: Path
    restored_from: Path
    failed_db: Path | None


def failed_path_for(active_db: Path, stamp: str | None = None) -> Path:
    return active_db.with_name(f"{active_db.name}.failed-{stamp or utc_stamp()}")


def _settle(db_path: Path) -> None:
    # Fold the WAL into the main file so the file alone is the whole database
    checkpoint(db_path)
    remove_sidecars(db_path)


def activate_staged(
    layout: ContentLayout, staged_db: Path | None = None, active_db: Path | None = None
) -> ActivationResult:
    """Promote the staged database to active, keeping the old one as backup.

    Raises:
        StagedDatabaseMissing: If there is no staged database
    """
    staged = Path(staged_db).resolve() if staged_db else layout.staged_db
    active = Path(active_db).resolve() if active_db else layout.active_db
    if not staged.is_file():
        raise StagedDatabaseMissing(f"No staged database found at {staged}")

    _settle(staged)
    active.parent.mkdir(parents=True, exist_ok=True)

    backup: Path | None = None
    if active.exists():
        _settle(active)
        backup = backup_path_for(active)
        remove_database(backup)
        link_or_copy(active, backup)
        log.info("activate.backup", message=f"Archived active database to {backup}")

    os.replace(staged, active)
    remove_sidecars(staged)
    inc_counter("activation.activated")
    log.info("activate.done", message=f"Activated staged database at {active}", ok=True)
    return ActivationResult(active_db=active, backup_db=backup)


def rollback_active(layout: ContentLayout, active_db: Path | None = None) -> RollbackResult:
    """Restore the previous database, keeping the current one as ``failed-<ts>``.

    Raises:
        NoBackupAvailable: If there is no backup to restore
    """
    active = Path(active_db).resolve() if active_db else layout.active_db
    backup = backup_path_for(active)
    if not backup.is_file():
        raise NoBackupAvailable(f"No backup database found at {backup}")

    _settle(backup)
    failed: Path | None = None
    if active.exists():
        _settle(active)
        failed = failed_path_for(active)
        link_or_copy(active, failed)
        log.info("rollback.preserved", message=f"Preserved current database at {failed}")

    os.replace(backup, active)
    remove_sidecars(backup)
    inc_counter("activation.rolled_back")
    log.info("rollback.done", message=f"Rolled back to {active}", ok=True)
    return RollbackResult(active_db=active, restored_from=backup, failed_db=failed)
