"""Content pack import pipeline.

``import_pack`` runs one pack through the phases in ``ImportPhase``::

    EXTRACTING -> MANIFEST_VERIFYING -> TABLE_LOADING -> DATABASE_STAGING
      -> ASSET_SYNCING -> DERIVATIVE_GENERATING (optional) -> LOG_WRITING -> DONE

Any failure ends the run in FAILED. Verification and table loading finish
before the staged database is touched, so a rejected pack never reaches a
database. The staged database is written in one transaction; the active
database is never written here.

Assets are synced into the live asset directories during import. Images are
content addressed, so newer assets never overwrite a file an older database
refers to.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import structlog

from Archivist.archive import TEMP_DIR_PREFIX, extract_pack
from Archivist.assets import check_declared_count, sync_flipbooks, sync_image_assets
from Archivist.db import build_insert, initialise_database, remove_database, run_script, search_index_statements
from Archivist.derivatives import DEFAULT_SCREEN_SIZE, DEFAULT_THUMB_SIZE, generate_layout_derivatives
from Archivist.errors import SignatureInvalid
from Archivist.importer_context import ImporterRunContext, ImportPhase
from Archivist.layout import ContentLayout
from Archivist.manifest_validation import (
    PackManifest,
    load_and_verify_manifest,
    load_public_key,
    resolve_pack_path,
)
from Archivist.metrics import inc_counter
from Archivist.models import CONTENT_TABLES, SEARCH_INDEX_TABLE
from Archivist.normalizer import RECORD_TYPES, NormalizedTables, load_all_tables
from Archivist.tools.package_utils import compute_sha256, save_json, utc_stamp

log = structlog.get_logger()

__all__ = [
    "ImportOptions",
    "ImportPhase",
    "ImportResult",
    "build_import_statements",
    "import_pack",
]


@dataclass
class ImportOptions:
    pack_path: Path
    layout: ContentLayout
    app_version: str
    verify: bool = False
    public_key_path: Path | None = None
    staged_db: Path | None = None
    skip_derivatives: bool = False
    force_derivatives: bool = False
    thumb_size: int = DEFAULT_THUMB_SIZE
    screen_size: int = DEFAULT_SCREEN_SIZE


@dataclass
class ImportResult:
    pack_id: str
    content_version: int
    manifest_hash: str
    pack_sha256: str
    signature: str | None
    staged_db: Path
    log_path: Path
    table_counts: dict[str, int] = field(default_factory=dict)
    dropped_counts: dict[str, int] = field(default_factory=dict)


def build_import_statements(
    tables: NormalizedTables,
    manifest: PackManifest,
    manifest_hash: str,
    pack_sha256: str | None,
    signature_b64: str | None,
    imported_at: str,
) -> list:
    """Build the full replacement script for a staged database.

    The script clears every content table and the meta table, inserts every
    normalised record, records provenance in ``meta`` and rebuilds the name
    search index from the inserted people.
    """
    statements: list = [f"DELETE FROM {table.name}" for table in CONTENT_TABLES]
    statements.append("DELETE FROM meta")

    for name, records in tables.items():
        columns = RECORD_TYPES[name].columns()
        statements.extend(build_insert(name, columns, [record.as_row() for record in records]))

    meta = [
        ("content_version", str(manifest.content_version)),
        ("pack_id", manifest.pack_id),
        ("manifest_hash", manifest_hash),
    ]
    if pack_sha256:
        meta.append(("pack_sha256", pack_sha256))
    if signature_b64:
        meta.append(("pack_signature", signature_b64))
    meta.append(("imported_at", imported_at))
    statements.extend(build_insert("meta", ["key", "value"], [{"key": k, "value": v} for k, v in meta]))

    statements.extend(search_index_statements())
    return statements


def _load_verification_key(options: ImportOptions) -> bytes | None:
    if not options.verify:
        return None
    if options.public_key_path is None:
        raise SignatureInvalid("Signature verification requested but --public-key was not provided.")
    return load_public_key(Path(options.public_key_path).resolve())


def import_pack(options: ImportOptions) -> ImportResult:
    """Import a content pack into a fresh staged database.

    Returns:
        ImportResult describing the staged database and the import log

    Raises:
        CommandFailure: Any subclass, from whichever phase failed
    """
    pack_path = Path(options.pack_path).resolve()
    layout = options.layout
    staged_db = Path(options.staged_db).resolve() if options.staged_db else layout.staged_db
    ctx = ImporterRunContext(pack_path=str(pack_path))
    inc_counter("importer.runs")
    log.info("import.start", message=f"Importing content pack {pack_path}")

    try:
        with tempfile.TemporaryDirectory(prefix=TEMP_DIR_PREFIX) as tmp:
            pack_dir = Path(tmp)

            ctx.enter(ImportPhase.EXTRACTING)
            log.info("import.extract", message=f"Extracting pack to {pack_dir}")
            extract_pack(pack_path, pack_dir)

            ctx.enter(ImportPhase.MANIFEST_VERIFYING)
            verified = load_and_verify_manifest(
                pack_dir,
                options.app_version,
                public_key=_load_verification_key(options),
                require_signature=options.verify,
            )
            manifest = verified.manifest
            ctx.record_manifest(
                manifest.pack_id, manifest.content_version, verified.manifest_hash, verified.signature
            )

            ctx.enter(ImportPhase.TABLE_LOADING)
            now = datetime.now(timezone.utc)
            ctx.imported_at = now.isoformat()
            tables = load_all_tables(manifest, pack_dir, now=ctx.imported_at)
            ctx.record_tables(tables.counts(), tables.dropped)

            ctx.enter(ImportPhase.DATABASE_STAGING)
            layout.ensure()
            ctx.pack_sha256 = compute_sha256(pack_path)
            remove_database(staged_db)
            initialise_database(staged_db)
            statements = build_import_statements(
                tables,
                manifest,
                verified.manifest_hash,
                ctx.pack_sha256,
                ctx.signature_b64,
                ctx.imported_at,
            )
            run_script(staged_db, statements)
            log.info(
                "import.staged",
                message="Database staged with imported content.",
                staged_db=str(staged_db),
                search_index=SEARCH_INDEX_TABLE,
            )

            ctx.enter(ImportPhase.ASSET_SYNCING)
            images = sync_image_assets(resolve_pack_path(pack_dir, manifest.assets.images.path), layout.images_dir)
            check_declared_count("images", manifest.assets.images.count, len(images.copied))
            sync_flipbooks(resolve_pack_path(pack_dir, manifest.assets.flipbooks.path), layout.flipbooks_dir)

            if options.skip_derivatives:
                log.info("import.derivatives.skipped", message="Skipping derivative generation as requested.")
            else:
                ctx.enter(ImportPhase.DERIVATIVE_GENERATING)
                generate_layout_derivatives(
                    layout,
                    force=options.force_derivatives,
                    thumb_size=options.thumb_size,
                    screen_size=options.screen_size,
                )

            ctx.enter(ImportPhase.LOG_WRITING)
            log_path = layout.logs_dir / f"import-{utc_stamp(now)}.json"
            save_json(log_path, ctx.to_log_payload(staged_db=str(staged_db), content_root=str(layout.root)))
            ctx.complete()
    except Exception as exc:
        ctx.fail(exc)
        raise

    log.info(
        "import.complete",
        message=f"Import completed. Review {log_path} and run activate-staged when ready.",
        ok=True,
    )
    return ImportResult(
        pack_id=manifest.pack_id,
        content_version=manifest.content_version,
        manifest_hash=verified.manifest_hash,
        pack_sha256=ctx.pack_sha256,
        signature=ctx.signature_b64,
        staged_db=staged_db,
        log_path=log_path,
        table_counts=dict(ctx.table_counts),
        dropped_counts=dict(ctx.dropped_counts),
    )
