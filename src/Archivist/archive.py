"""Pack archive extraction."""

from __future__ import annotations

import zipfile
from pathlib import Path

import structlog

from Archivist.errors import PackExtractionFailure
from Archivist.tools.package_utils import resolve_within

log = structlog.get_logger()

TEMP_DIR_PREFIX = "archivist-pack-"


def extract_pack(pack_path: Path, destination: Path) -> int:
    """Extract a zip pack into ``destination`` and return the member count.

    Every member is checked before anything is written so an archive with a
    path escaping ``destination`` extracts nothing.

    Raises:
        PackExtractionFailure: If the file is missing, not a zip, or unsafe
    """
    pack_path = Path(pack_path)
    if not pack_path.is_file():
        raise PackExtractionFailure(f"Pack file not found: {pack_path}")
    try:
        with zipfile.ZipFile(pack_path) as zf:
            members = zf.infolist()
            for info in members:
                try:
                    resolve_within(destination, info.filename)
                except ValueError as exc:
                    raise PackExtractionFailure(f"Unsafe member in {pack_path.name}: {exc}") from exc
            zf.extractall(destination)
    except zipfile.BadZipFile as exc:
        raise PackExtractionFailure(f"Failed to extract {pack_path}: {exc}") from exc
    except OSError as exc:
        raise PackExtractionFailure(f"Failed to extract {pack_path}: {exc}") from exc
    log.debug("pack.extracted", pack=str(pack_path), members=len(members))
    return len(members)
