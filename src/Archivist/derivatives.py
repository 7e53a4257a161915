"""Thumbnail and screen-size renditions of live images.

Renditions mirror the relative layout of ``assets/img`` under
``derivatives/thumb`` and ``derivatives/screen``. A thumbnail is a centred
square crop; a screen rendition is shrunk to fit and never enlarged.
"""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass
from pathlib import Path

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from Archivist.errors import DerivativeToolUnavailable
from Archivist.layout import ContentLayout
from Archivist.metrics import inc_counter
from Archivist.tools.package_utils import list_files_recursive

log = structlog.get_logger()

IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|webp)$", re.IGNORECASE)
DEFAULT_THUMB_SIZE = 256
DEFAULT_SCREEN_SIZE = 1600


@dataclass
class DerivativeSummary:
    processed: int = 0
    rendered: int = 0
    copied: int = 0
    skipped: int = 0


def render_derivative(source: Path, target: Path, size: int, *, crop: bool) -> None:
    """Write a resized rendition of ``source`` to ``target``.

    Raises:
        DerivativeToolUnavailable: If the image cannot be decoded or encoded
    """
    try:
        with Image.open(source) as img:
            img = ImageOps.exif_transpose(img)
            if crop:
                rendition = ImageOps.fit(img, (size, size), method=Image.Resampling.LANCZOS)
            else:
                rendition = img.copy()
                rendition.thumbnail((size, size), Image.Resampling.LANCZOS)
            if target.suffix.lower() in (".jpg", ".jpeg") and rendition.mode not in ("RGB", "L"):
                rendition = rendition.convert("RGB")
            rendition.save(target)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise DerivativeToolUnavailable(f"Unable to process {source.name}: {exc}") from exc


def _create_derivative(source: Path, target: Path, size: int, *, crop: bool, summary: DerivativeSummary) -> None:
    try:
        render_derivative(source, target, size, crop=crop)
        summary.rendered += 1
    except DerivativeToolUnavailable as exc:
        log.warning(
            "derivatives.fallback",
            message=f"{exc}; copying the original instead",
            target=str(target),
        )
        inc_counter("derivatives.fallback_copies")
        shutil.copy2(source, target)
        summary.copied += 1


def generate_derivatives(
    images_dir: Path,
    thumb_dir: Path,
    screen_dir: Path,
    *,
    force: bool = False,
    thumb_size: int = DEFAULT_THUMB_SIZE,
    screen_size: int = DEFAULT_SCREEN_SIZE,
) -> DerivativeSummary:
    """Create missing renditions for every supported image under ``images_dir``.

    Existing renditions are kept unless ``force`` is set. Images that cannot
    be processed fall back to a plain copy of the original.
    """
    summary = DerivativeSummary()
    files = list_files_recursive(images_dir)
    if not files:
        log.warning("derivatives.no_images", message="No images available for derivative generation.")
        return summary

    for rel in files:
        if not IMAGE_EXT_RE.search(rel.name):
            summary.skipped += 1
            continue
        source = Path(images_dir) / rel
        thumb_target = Path(thumb_dir) / rel
        screen_target = Path(screen_dir) / rel
        thumb_target.parent.mkdir(parents=True, exist_ok=True)
        screen_target.parent.mkdir(parents=True, exist_ok=True)

        needs_thumb = force or not thumb_target.exists()
        needs_screen = force or not screen_target.exists()
        if needs_thumb:
            _create_derivative(source, thumb_target, thumb_size, crop=True, summary=summary)
        if needs_screen:
            _create_derivative(source, screen_target, screen_size, crop=False, summary=summary)
        if needs_thumb or needs_screen:
            summary.processed += 1

    inc_counter("derivatives.processed", summary.processed)
    log.info(
        "derivatives.generated",
        message=f"Derivatives processed for {summary.processed} source images.",
        fallback_copies=summary.copied,
    )
    return summary


def generate_layout_derivatives(
    layout: ContentLayout,
    *,
    force: bool = False,
    thumb_size: int = DEFAULT_THUMB_SIZE,
    screen_size: int = DEFAULT_SCREEN_SIZE,
) -> DerivativeSummary:
    for directory in (layout.images_dir, layout.thumb_dir, layout.screen_dir):
        directory.mkdir(parents=True, exist_ok=True)
    return generate_derivatives(
        layout.images_dir,
        layout.thumb_dir,
        layout.screen_dir,
        force=force,
        thumb_size=thumb_size,
        screen_size=screen_size,
    )
