"""Canonical on-disk layout of a kiosk content root.

Every command receives a ``ContentLayout`` explicitly; nothing in the pipeline
reads a module-level default path.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

ACTIVE_DB_NAME = "app.db"
STAGED_SUFFIX = ".staging"
BACKUP_SUFFIX = ".previous"
LOCK_NAME = ".archivist.lock"


@dataclass(frozen=True)
class ContentLayout:
    root: Path
    db_dir: Path
    active_db: Path
    staged_db: Path
    backup_db: Path
    assets_dir: Path
    images_dir: Path
    flipbooks_dir: Path
    derivatives_dir: Path
    thumb_dir: Path
    screen_dir: Path
    logs_dir: Path
    lock_path: Path

    def ensure(self) -> ContentLayout:
        for directory in self.directories():
            directory.mkdir(parents=True, exist_ok=True)
        return self

    def directories(self) -> tuple[Path, ...]:
        return (
            self.root,
            self.db_dir,
            self.images_dir,
            self.flipbooks_dir,
            self.thumb_dir,
            self.screen_dir,
            self.logs_dir,
        )


def backup_path_for(active_db: Path) -> Path:
    return active_db.with_name(active_db.name + BACKUP_SUFFIX)


def sidecar_paths(db_path: Path) -> tuple[Path, Path]:
    """Return the WAL and shared-memory files SQLite keeps next to ``db_path``."""
    return (
        db_path.with_name(db_path.name + "-wal"),
        db_path.with_name(db_path.name + "-shm"),
    )


def resolve_content_layout(content_root: Path | str) -> ContentLayout:
    root = Path(content_root).resolve()
    db_dir = root / "db"
    assets_dir = root / "assets"
    derivatives_dir = root / "derivatives"
    active_db = db_dir / ACTIVE_DB_NAME
    return ContentLayout(
        root=root,
        db_dir=db_dir,
        active_db=active_db,
        staged_db=db_dir / (ACTIVE_DB_NAME + STAGED_SUFFIX),
        backup_db=backup_path_for(active_db),
        assets_dir=assets_dir,
        images_dir=assets_dir / "img",
        flipbooks_dir=assets_dir / "flipbooks",
        derivatives_dir=derivatives_dir,
        thumb_dir=derivatives_dir / "thumb",
        screen_dir=derivatives_dir / "screen",
        logs_dir=root / "logs",
        lock_path=db_dir / LOCK_NAME,
    )


def ensure_content_layout(content_root: Path | str) -> ContentLayout:
    return resolve_content_layout(content_root).ensure()
