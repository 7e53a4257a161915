"""Normalisation of raw pack tables into typed, null-safe records.

Raw CSV fields are strings. Each entity kind has a normaliser that turns a
raw row into a record dataclass, or ``None`` when the row must be dropped:

* blank strings become ``None``
* boolean-like fields accept 1/0, true/false, yes/no (anything else is false)
* numeric fields that do not parse become ``None``
* missing ids are derived from a stable natural seed, so importing the same
  source twice yields the same ids; rows with no seed at all are dropped
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from Archivist.errors import TableReadFailure
from Archivist.manifest_validation import PackManifest, find_table, resolve_pack_path
from Archivist.metrics import inc_counter
from Archivist.tabular import read_table
from Archivist.tools.package_utils import compute_sha256

log = structlog.get_logger()

TABLE_NAMES = (
    "person",
    "cohort",
    "person_cohort",
    "photo",
    "person_photo",
    "publication",
    "archive_item",
)

_TRUE = {"1", "true", "yes"}
_FALSE = {"0", "false", "no"}
_SLUG_RE = re.compile(r"[^a-z0-9]+")


class RowDropped(Exception):
    """Signals that a raw row has no usable natural key."""

    pass


# --- field helpers ---------------------------------------------------------


def empty_to_none(value: Any) -> str | None:
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def parse_boolean(value: Any) -> bool | None:
    trimmed = str(value if value is not None else "").strip().lower()
    if trimmed in _TRUE:
        return True
    if trimmed in _FALSE:
        return False
    return None


def parse_int(value: Any) -> int | None:
    trimmed = empty_to_none(value)
    if trimmed is None:
        return None
    try:
        number = float(trimmed)
    except ValueError:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number)


def slugify(value: str) -> str:
    ascii_value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return _SLUG_RE.sub("-", ascii_value.lower()).strip("-")


def build_display_name(record: Mapping[str, Any]) -> str:
    parts = (
        empty_to_none(record.get(key))
        for key in ("first_name", "middle_name", "last_name", "suffix")
    )
    return " ".join(p for p in parts if p)


def deterministic_id(seed: str | None) -> str:
    """Derive a stable id from a natural seed.

    Raises:
        RowDropped: If there is no seed to derive from
    """
    if not seed:
        raise RowDropped("no id and no natural key to derive one from")
    return "auto-" + seed.encode("utf-8").hex()


def _flag(value: Any) -> bool:
    return parse_boolean(value) is True


# --- records ---------------------------------------------------------------


class _Record:
    def as_row(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def columns(cls) -> list[str]:
        return [f.name for f in fields(cls)]  # type: ignore[arg-type]


@dataclass
class PersonRecord(_Record):
    id: str
    first_name: str | None
    middle_name: str | None
    last_name: str | None
    suffix: str | None
    display_name: str
    slug: str
    bio: str | None
    is_faculty: bool
    created_at: str | None
    updated_at: str | None


@dataclass
class CohortRecord(_Record):
    id: str
    year: int | None
    label: str | None


@dataclass
class PersonCohortRecord(_Record):
    person_id: str
    cohort_id: str
    is_class_president: bool
    homeroom: str | None
    notes: str | None


@dataclass
class PhotoRecord(_Record):
    id: str
    sha256: str
    ext: str
    width: int | None
    height: int | None
    bytes: int | None
    caption: str | None
    credit: str | None
    created_at: str | None


@dataclass
class PersonPhotoRecord(_Record):
    person_id: str
    photo_id: str
    kind: str
    is_primary: bool


@dataclass
class PublicationRecord(_Record):
    id: str
    title: str
    issue_date: str | None
    volume: str | None
    number: str | None
    slug: str
    cover_photo_id: str | None
    flipbook_manifest_path: str | None


@dataclass
class ArchiveItemRecord(_Record):
    id: str
    title: str
    year: int | None
    kind: str
    photo_id: str | None
    flipbook_manifest_path: str | None
    description: str | None


# --- normalisers -----------------------------------------------------------


def normalise_person(record: Mapping[str, Any], *, now: str | None = None) -> PersonRecord | None:
    display_name = empty_to_none(record.get("display_name")) or build_display_name(record)
    if not display_name:
        return None
    slug = empty_to_none(record.get("slug")) or slugify(display_name)
    if not slug:
        return None
    return PersonRecord(
        id=empty_to_none(record.get("id")) or deterministic_id(slug),
        first_name=empty_to_none(record.get("first_name")),
        middle_name=empty_to_none(record.get("middle_name")),
        last_name=empty_to_none(record.get("last_name")),
        suffix=empty_to_none(record.get("suffix")),
        display_name=display_name,
        slug=slug,
        bio=empty_to_none(record.get("bio")),
        is_faculty=_flag(record.get("is_faculty")),
        created_at=empty_to_none(record.get("created_at")) or now,
        updated_at=empty_to_none(record.get("updated_at")) or now,
    )


def normalise_cohort(record: Mapping[str, Any], **_: Any) -> CohortRecord | None:
    raw_year = empty_to_none(record.get("year"))
    year = parse_int(raw_year)
    label = empty_to_none(record.get("label")) or (f"Class of {raw_year}" if raw_year else None)
    if year is None and label is None:
        return None
    return CohortRecord(
        id=empty_to_none(record.get("id")) or deterministic_id(raw_year or label),
        year=year,
        label=label,
    )


def normalise_person_cohort(record: Mapping[str, Any], **_: Any) -> PersonCohortRecord | None:
    person_id = empty_to_none(record.get("person_id"))
    cohort_id = empty_to_none(record.get("cohort_id"))
    if not person_id or not cohort_id:
        return None
    return PersonCohortRecord(
        person_id=person_id,
        cohort_id=cohort_id,
        is_class_president=_flag(record.get("is_class_president")),
        homeroom=empty_to_none(record.get("homeroom")),
        notes=empty_to_none(record.get("notes")),
    )


def normalise_photo(record: Mapping[str, Any], **_: Any) -> PhotoRecord | None:
    sha256 = empty_to_none(record.get("sha256"))
    if not sha256:
        return None
    sha256 = sha256.lower()
    return PhotoRecord(
        id=empty_to_none(record.get("id")) or deterministic_id(sha256),
        sha256=sha256,
        ext=(empty_to_none(record.get("ext")) or "").lstrip(".").lower(),
        width=parse_int(record.get("width")),
        height=parse_int(record.get("height")),
        bytes=parse_int(record.get("bytes")),
        caption=empty_to_none(record.get("caption")),
        credit=empty_to_none(record.get("credit")),
        created_at=empty_to_none(record.get("created_at")),
    )


def normalise_person_photo(record: Mapping[str, Any], **_: Any) -> PersonPhotoRecord | None:
    person_id = empty_to_none(record.get("person_id"))
    photo_id = empty_to_none(record.get("photo_id"))
    if not person_id or not photo_id:
        return None
    return PersonPhotoRecord(
        person_id=person_id,
        photo_id=photo_id,
        kind=(empty_to_none(record.get("kind")) or "portrait").lower(),
        is_primary=_flag(record.get("is_primary")),
    )


def normalise_publication(record: Mapping[str, Any], **_: Any) -> PublicationRecord | None:
    raw_title = empty_to_none(record.get("title"))
    raw_slug = empty_to_none(record.get("slug"))
    title = raw_title or "Untitled Publication"
    return PublicationRecord(
        id=empty_to_none(record.get("id")) or deterministic_id(raw_slug or raw_title),
        title=title,
        issue_date=empty_to_none(record.get("issue_date")),
        volume=empty_to_none(record.get("volume")),
        number=empty_to_none(record.get("number")),
        slug=raw_slug or slugify(title) or "publication",
        cover_photo_id=empty_to_none(record.get("cover_photo_id")),
        flipbook_manifest_path=empty_to_none(record.get("flipbook_manifest_path")),
    )


def normalise_archive_item(record: Mapping[str, Any], **_: Any) -> ArchiveItemRecord | None:
    raw_title = empty_to_none(record.get("title"))
    return ArchiveItemRecord(
        id=empty_to_none(record.get("id"))
        or deterministic_id(empty_to_none(record.get("slug")) or raw_title),
        title=raw_title or "Archive Item",
        year=parse_int(record.get("year")),
        kind=(empty_to_none(record.get("kind")) or "photo").lower(),
        photo_id=empty_to_none(record.get("photo_id")),
        flipbook_manifest_path=empty_to_none(record.get("flipbook_manifest_path")),
        description=empty_to_none(record.get("description")),
    )


TABLE_NORMALISERS: dict[str, Callable[..., _Record | None]] = {
    "person": normalise_person,
    "cohort": normalise_cohort,
    "person_cohort": normalise_person_cohort,
    "photo": normalise_photo,
    "person_photo": normalise_person_photo,
    "publication": normalise_publication,
    "archive_item": normalise_archive_item,
}

RECORD_TYPES: dict[str, type[_Record]] = {
    "person": PersonRecord,
    "cohort": CohortRecord,
    "person_cohort": PersonCohortRecord,
    "photo": PhotoRecord,
    "person_photo": PersonPhotoRecord,
    "publication": PublicationRecord,
    "archive_item": ArchiveItemRecord,
}


def normalise_rows(
    table_name: str, rows: list[Mapping[str, Any]], *, now: str | None = None
) -> tuple[list[_Record], int]:
    """Normalise raw rows for one table.

    Returns:
        Tuple of (records, dropped_count)
    """
    normaliser = TABLE_NORMALISERS[table_name]
    records: list[_Record] = []
    dropped = 0
    for index, row in enumerate(rows, start=1):
        try:
            record = normaliser(row, now=now)
        except RowDropped as exc:
            log.warning(
                "normalise.row_rejected",
                message=f"Rejected {table_name} row {index}: {exc}",
                table=table_name,
                row=index,
            )
            record = None
        if record is None:
            dropped += 1
            continue
        records.append(record)
    if dropped:
        inc_counter(f"normalise.dropped.{table_name}", dropped)
    return records, dropped


def load_table(
    manifest: PackManifest, pack_dir: Path, table_name: str, *, now: str | None = None
) -> tuple[list[_Record], int]:
    """Read and normalise one declared table; undeclared tables are empty.

    Raises:
        TableReadFailure: If the file is unreadable, unsupported, or its
            declared hash does not match
    """
    descriptor = find_table(manifest, table_name)
    if descriptor is None:
        return [], 0
    if descriptor.format != "csv":
        raise TableReadFailure(
            f"Unsupported format {descriptor.format!r} for table {table_name}; only csv is supported"
        )
    file_path = resolve_pack_path(pack_dir, descriptor.path)
    if not file_path.is_file():
        raise TableReadFailure(f"Unable to read {table_name} table at {file_path}: file not found")
    if descriptor.hash:
        actual = compute_sha256(file_path)
        if actual != descriptor.hash.lower():
            raise TableReadFailure(
                f"Hash mismatch for {table_name} table: expected {descriptor.hash} actual {actual}"
            )
    rows = read_table(file_path)
    return normalise_rows(table_name, rows, now=now)


@dataclass
class NormalizedTables:
    person: list[PersonRecord] = field(default_factory=list)
    cohort: list[CohortRecord] = field(default_factory=list)
    person_cohort: list[PersonCohortRecord] = field(default_factory=list)
    photo: list[PhotoRecord] = field(default_factory=list)
    person_photo: list[PersonPhotoRecord] = field(default_factory=list)
    publication: list[PublicationRecord] = field(default_factory=list)
    archive_item: list[ArchiveItemRecord] = field(default_factory=list)
    dropped: dict[str, int] = field(default_factory=dict)

    def items(self) -> list[tuple[str, list[_Record]]]:
        return [(name, getattr(self, name)) for name in TABLE_NAMES]

    def counts(self) -> dict[str, int]:
        return {name: len(records) for name, records in self.items()}


def load_all_tables(manifest: PackManifest, pack_dir: Path, *, now: str | None = None) -> NormalizedTables:
    now = now or datetime.now(timezone.utc).isoformat()
    tables = NormalizedTables()
    for name in TABLE_NAMES:
        records, dropped = load_table(manifest, pack_dir, name, now=now)
        setattr(tables, name, records)
        tables.dropped[name] = dropped
    return tables
