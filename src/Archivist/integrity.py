"""Post-import consistency checks over a staged or active database.

Findings are reported, never raised: the report is for an operator deciding
whether to activate or roll back.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog

from Archivist.db import query, require_database, scalar
from Archivist.layout import ContentLayout

log = structlog.get_logger()

LEVELS = ("basic", "strict")
REPORT_LIMIT = 50

_ORPHAN_COHORT_LINKS = f"""
SELECT pc.person_id, pc.cohort_id FROM person_cohort pc
LEFT JOIN person p ON p.id = pc.person_id
LEFT JOIN cohort c ON c.id = pc.cohort_id
WHERE p.id IS NULL OR c.id IS NULL
LIMIT {REPORT_LIMIT}
"""

_ORPHAN_PHOTO_LINKS = f"""
SELECT pp.person_id, pp.photo_id FROM person_photo pp
LEFT JOIN person p ON p.id = pp.person_id
LEFT JOIN photo ph ON ph.id = pp.photo_id
WHERE p.id IS NULL OR ph.id IS NULL
LIMIT {REPORT_LIMIT}
"""

_FLIPBOOK_REFS = """
SELECT flipbook_manifest_path AS path FROM publication WHERE flipbook_manifest_path IS NOT NULL
UNION
SELECT flipbook_manifest_path AS path FROM archive_item WHERE flipbook_manifest_path IS NOT NULL
"""


def _missing_photo_files(db_path: Path, images_dir: Path) -> tuple[int, list[dict[str, Any]]]:
    photos = query(db_path, "SELECT id, sha256, ext FROM photo")
    missing: list[dict[str, Any]] = []
    for row in photos:
        if not row["sha256"]:
            missing.append({"id": row["id"], "reason": "missing sha256"})
            continue
        ext = (row["ext"] or "jpg").lstrip(".")
        expected = images_dir / f"{row['sha256']}.{ext}"
        if not expected.exists():
            missing.append({"id": row["id"], "sha256": row["sha256"], "expected": str(expected)})
    return len(photos), missing[:REPORT_LIMIT]


def _missing_flipbooks(db_path: Path, content_root: Path) -> list[str]:
    missing: list[str] = []
    for row in query(db_path, _FLIPBOOK_REFS):
        rel = (row["path"] or "").strip()
        if not rel:
            continue
        target = content_root / rel.lstrip("/")
        if not target.exists():
            missing.append(str(target))
    return missing[:REPORT_LIMIT]


def run_integrity_check(db_path: Path, layout: ContentLayout, level: str = "basic") -> dict[str, Any]:
    """Run the consistency battery and return a JSON-ready report.

    Raises:
        DatabaseMissing: If ``db_path`` does not exist
        ValueError: If ``level`` is not ``basic`` or ``strict``
    """
    level = level.lower()
    if level not in LEVELS:
        raise ValueError(f"Unknown integrity level {level!r}; expected one of {', '.join(LEVELS)}")
    db_path = require_database(db_path)

    report: dict[str, Any] = {
        "database": str(db_path),
        "level": level,
        "people": {},
        "cohorts": {},
        "photos": {},
        "person_photos": {},
        "flipbooks": {},
        "meta": {},
        "issues": [],
    }
    issues: list[str] = report["issues"]

    report["people"]["total"] = scalar(db_path, "SELECT COUNT(*) FROM person")
    blank_names = query(
        db_path,
        f"SELECT id FROM person WHERE display_name IS NULL OR TRIM(display_name) = '' LIMIT {REPORT_LIMIT}",
    )
    if blank_names:
        report["people"]["missing_display_name"] = [row["id"] for row in blank_names]
        issues.append("Persons missing display_name")

    report["cohorts"]["total"] = scalar(db_path, "SELECT COUNT(*) FROM cohort")
    cohort_orphans = query(db_path, _ORPHAN_COHORT_LINKS)
    if cohort_orphans:
        report["cohorts"]["orphans"] = cohort_orphans
        issues.append("Person-cohort relations referencing missing rows")

    photo_orphans = query(db_path, _ORPHAN_PHOTO_LINKS)
    if photo_orphans:
        report["person_photos"]["orphans"] = photo_orphans
        issues.append("Person-photo relations referencing missing rows")

    total_photos, missing_files = _missing_photo_files(db_path, layout.images_dir)
    report["photos"]["total"] = total_photos
    if missing_files:
        report["photos"]["missing_files"] = missing_files
        issues.append("Missing image assets on disk")

    missing_flipbooks = _missing_flipbooks(db_path, layout.root)
    if missing_flipbooks:
        report["flipbooks"]["missing_manifests"] = missing_flipbooks
        issues.append("Missing flipbook manifests")

    report["meta"]["entries"] = {row["key"]: row["value"] for row in query(db_path, "SELECT key, value FROM meta")}

    if level == "strict":
        duplicate_slugs = query(
            db_path,
            f"SELECT slug, COUNT(*) AS count FROM person GROUP BY slug HAVING count > 1 LIMIT {REPORT_LIMIT}",
        )
        if duplicate_slugs:
            report["people"]["duplicate_slugs"] = duplicate_slugs
            issues.append("Duplicate person slugs detected")
        duplicate_hashes = query(
            db_path,
            f"SELECT sha256, COUNT(*) AS count FROM photo GROUP BY sha256 HAVING count > 1 LIMIT {REPORT_LIMIT}",
        )
        if duplicate_hashes:
            report["photos"]["duplicate_hashes"] = duplicate_hashes
            issues.append("Duplicate photo sha256 entries")

    if issues:
        log.warning("integrity.issues", message=f"Integrity issues found: {', '.join(issues)}")
    else:
        log.info("integrity.passed", message="Integrity checks passed.", ok=True)
    return report
