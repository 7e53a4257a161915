"""Command-line entry point for the content pack pipeline.

Examples:
  archivist import-pack packs/alumni-2024.zip --content-root ./content --verify --public-key keys/pack.pub
  archivist check-integrity --content-root ./content --staged --level strict
  archivist activate-staged --content-root ./content
  archivist rollback --content-root ./content
"""

from __future__ import annotations

import functools
import json
import sys
from pathlib import Path
from typing import Any

import click
import structlog

from Archivist.activation import activate_staged, rollback_active
from Archivist.config import Settings, load_settings
from Archivist.db import rebuild_search_index
from Archivist.derivatives import generate_layout_derivatives
from Archivist.errors import CommandFailure
from Archivist.importer import ImportOptions, import_pack
from Archivist.integrity import LEVELS, run_integrity_check
from Archivist.layout import ContentLayout, resolve_content_layout
from Archivist.locking import operation_lock
from Archivist.logging import redact_settings, setup_logging

log = structlog.get_logger()

_PATH = click.Path(path_type=Path)


def _layout(settings: Settings, content_root: Path | None) -> ContentLayout:
    return resolve_content_layout(content_root or settings.content_root)


def _guarded(fn):
    """Turn pipeline failures into one ``[ERROR]`` line and exit status 1."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any):
        try:
            return fn(*args, **kwargs)
        except CommandFailure as exc:
            log.error("command.failed", message=str(exc), error=type(exc).__name__)
            sys.exit(1)
        except Exception as exc:
            log.exception("command.crashed", message=f"Unexpected failure: {exc}")
            sys.exit(1)

    return wrapper


def content_root_option(fn):
    return click.option(
        "--content-root",
        type=_PATH,
        default=None,
        help="Content root directory (defaults to the configured content_root).",
    )(fn)


@click.group(name="archivist")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Import, activate and roll back kiosk content packs."""
    settings = load_settings()
    setup_logging(settings)
    log.debug("cli.settings", **redact_settings(settings))
    ctx.obj = settings


@cli.command("import-pack")
@click.argument("pack", type=_PATH)
@content_root_option
@click.option("--verify/--no-verify", default=None, help="Require a valid Ed25519 signature over the manifest.")
@click.option("--public-key", type=_PATH, default=None, help="Ed25519 public key used with --verify.")
@click.option("--staged-db", type=_PATH, default=None, help="Override the staged database path.")
@click.option("--skip-derivatives", is_flag=True, default=False, help="Do not generate image derivatives.")
@click.option("--force", is_flag=True, default=False, help="Regenerate derivatives that already exist.")
@click.pass_obj
@_guarded
def import_pack_cmd(
    settings: Settings,
    pack: Path,
    content_root: Path | None,
    verify: bool | None,
    public_key: Path | None,
    staged_db: Path | None,
    skip_derivatives: bool,
    force: bool,
) -> None:
    """Verify PACK and stage it into a fresh database."""
    layout = _layout(settings, content_root)
    options = ImportOptions(
        pack_path=pack,
        layout=layout,
        app_version=settings.app_version,
        verify=settings.require_signature if verify is None else verify,
        public_key_path=public_key or settings.public_key_path,
        staged_db=staged_db,
        skip_derivatives=skip_derivatives or settings.skip_derivatives,
        force_derivatives=force,
        thumb_size=settings.thumb_size,
        screen_size=settings.screen_size,
    )
    with operation_lock(layout, settings.lock_timeout_seconds):
        import_pack(options)


@cli.command("activate-staged")
@content_root_option
@click.option("--staged-db", type=_PATH, default=None)
@click.option("--active-db", type=_PATH, default=None)
@click.pass_obj
@_guarded
def activate_staged_cmd(
    settings: Settings, content_root: Path | None, staged_db: Path | None, active_db: Path | None
) -> None:
    """Promote the staged database to active, keeping a backup."""
    layout = _layout(settings, content_root)
    with operation_lock(layout, settings.lock_timeout_seconds):
        activate_staged(layout, staged_db=staged_db, active_db=active_db)


@cli.command("rollback")
@content_root_option
@click.option("--active-db", type=_PATH, default=None)
@click.pass_obj
@_guarded
def rollback_cmd(settings: Settings, content_root: Path | None, active_db: Path | None) -> None:
    """Restore the previous active database."""
    layout = _layout(settings, content_root)
    with operation_lock(layout, settings.lock_timeout_seconds):
        rollback_active(layout, active_db=active_db)


@cli.command("gen-derivatives")
@content_root_option
@click.option("--force", is_flag=True, default=False, help="Regenerate derivatives that already exist.")
@click.pass_obj
@_guarded
def gen_derivatives_cmd(settings: Settings, content_root: Path | None, force: bool) -> None:
    """(Re)build thumbnail and screen-size image renditions."""
    layout = _layout(settings, content_root)
    with operation_lock(layout, settings.lock_timeout_seconds):
        generate_layout_derivatives(
            layout, force=force, thumb_size=settings.thumb_size, screen_size=settings.screen_size
        )
    log.info("derivatives.complete", message="Derivative generation complete.", ok=True)


@cli.command("check-integrity")
@content_root_option
@click.option("--staged", is_flag=True, default=False, help="Check the staged database.")
@click.option("--target", type=click.Choice(["staged", "active"]), default="active", show_default=True)
@click.option("--staged-db", type=_PATH, default=None)
@click.option("--active-db", type=_PATH, default=None)
@click.option("--level", type=click.Choice(LEVELS, case_sensitive=False), default="basic", show_default=True)
@click.pass_obj
@_guarded
def check_integrity_cmd(
    settings: Settings,
    content_root: Path | None,
    staged: bool,
    target: str,
    staged_db: Path | None,
    active_db: Path | None,
    level: str,
) -> None:
    """Print a JSON consistency report; findings never fail the command."""
    layout = _layout(settings, content_root)
    if staged or target == "staged":
        db_path = staged_db.resolve() if staged_db else layout.staged_db
    else:
        db_path = active_db.resolve() if active_db else layout.active_db
    report = run_integrity_check(db_path, layout, level=level)
    click.echo(json.dumps(report, indent=2, default=str))


@cli.command("reindex-fts")
@content_root_option
@click.option("--active-db", type=_PATH, default=None)
@click.pass_obj
@_guarded
def reindex_fts_cmd(settings: Settings, content_root: Path | None, active_db: Path | None) -> None:
    """Rebuild the person name search index."""
    layout = _layout(settings, content_root)
    db_path = active_db.resolve() if active_db else layout.active_db
    with operation_lock(layout, settings.lock_timeout_seconds):
        indexed = rebuild_search_index(db_path)
    log.info("reindex.complete", message=f"Search index rebuilt with {indexed} people.", ok=True)


def main() -> None:  # pragma: no cover
    cli(prog_name="archivist")


if __name__ == "__main__":  # pragma: no cover
    main()
