"""File helpers shared by the pack pipeline.

Functions here avoid external deps and operate on paths/JSON.
"""
from __future__ import annotations

import hashlib
import json
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def compute_sha256(file_path: Path) -> str:
    h = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def list_files_recursive(directory: Path) -> list[Path]:
    """Return regular files under ``directory`` as sorted relative paths."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(p.relative_to(directory) for p in directory.rglob("*") if p.is_file())


def resolve_within(root: Path, rel: str) -> Path:
    """Join ``rel`` onto ``root``, refusing results outside ``root``.

    A leading ``/`` is treated as relative to ``root``.

    Raises:
        ValueError: If the path escapes ``root``
    """
    root = Path(root).resolve()
    candidate = (root / rel.lstrip("/\\")).resolve()
    if candidate != root and root not in candidate.parents:
        raise ValueError(f"Security violation: {rel} attempts to access files outside {root}")
    return candidate


def link_or_copy(source: Path, destination: Path) -> None:
    """Give ``destination`` the contents of ``source`` without touching ``source``.

    Hard links are used where the filesystem allows them.
    """
    try:
        os.link(source, destination)
    except OSError:
        shutil.copy2(source, destination)


def utc_stamp(moment: datetime | None = None) -> str:
    """Filesystem-safe UTC timestamp, e.g. ``20240131T120000123456Z``."""
    moment = moment or datetime.now(timezone.utc)
    return moment.strftime("%Y%m%dT%H%M%S%fZ")


def load_json(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def save_json(path: Path, payload: Any) -> None:
    # Keep stable formatting for diff friendliness
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2, sort_keys=True)
        f.write("\n")
