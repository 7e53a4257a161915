"""Synchronisation of pack assets into the live asset directories."""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from Archivist.errors import ImageHashMismatch
from Archivist.metrics import inc_counter
from Archivist.tools.package_utils import compute_sha256, list_files_recursive

log = structlog.get_logger()

IMAGE_NAME_RE = re.compile(r"^[a-f0-9]{64}\.\w+$")


@dataclass
class ImageSyncResult:
    copied: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)


def sync_image_assets(source: Path, target: Path) -> ImageSyncResult:
    """Copy content-addressed images from ``source`` into ``target``.

    Every candidate is hashed before the first copy, so a single mismatch
    rejects the whole sync and leaves ``target`` untouched. Files that are not
    named ``<sha256>.<ext>`` are skipped with a warning.

    Raises:
        ImageHashMismatch: If a file's content does not hash to its name
    """
    source = Path(source)
    target = Path(target)
    result = ImageSyncResult()
    if not source.is_dir():
        log.warning("assets.images.missing", message=f"Image directory not found in pack: {source}")
        return result

    verified: list[Path] = []
    for rel in list_files_recursive(source):
        if not IMAGE_NAME_RE.match(rel.name):
            log.warning("assets.images.skipped", message=f"Skipping non-hash image name {rel.as_posix()}")
            result.skipped.append(rel)
            continue
        expected = rel.name.split(".", 1)[0]
        actual = compute_sha256(source / rel)
        if actual != expected:
            inc_counter("assets.images.hash_mismatch")
            raise ImageHashMismatch(rel.as_posix(), expected, actual)
        verified.append(rel)

    for rel in verified:
        destination = target / rel
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source / rel, destination)
        result.copied.append(rel)

    inc_counter("assets.images.copied", len(result.copied))
    log.info(
        "assets.images.synced",
        message=f"Copied {len(result.copied)} images into {target}",
        skipped=len(result.skipped),
    )
    return result


def sync_flipbooks(source: Path, target: Path) -> bool:
    """Copy the flipbook tree over ``target``; returns ``False`` when the pack has none."""
    source = Path(source)
    if not source.is_dir():
        log.info("assets.flipbooks.missing", message="No flipbooks directory in pack; skipping.")
        return False
    shutil.copytree(source, target, dirs_exist_ok=True)
    inc_counter("assets.flipbooks.synced")
    log.info("assets.flipbooks.synced", message=f"Synced flipbooks into {target}")
    return True


def check_declared_count(kind: str, declared: int | None, actual: int) -> None:
    if declared is not None and declared != actual:
        log.warning(
            "assets.count_mismatch",
            message=f"Manifest declares {declared} {kind} but {actual} were synced",
            kind=kind,
        )
