# src/Archivist/db.py
from __future__ import annotations

import contextlib
from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import Engine, create_engine, insert, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import Executable

from Archivist.errors import DatabaseMissing, DatabaseScriptFailure
from Archivist.layout import sidecar_paths
from Archivist.models import SEARCH_INDEX_TABLE, Base

log = structlog.get_logger()

Statement = str | Executable


def database_url(path: Path) -> str:
    return f"sqlite:///{Path(path)}"


@contextlib.contextmanager
def open_engine(path: Path) -> Iterator[Engine]:
    """Yield an engine bound to the database file at ``path``.

    The engine is disposed on exit; closing the last connection lets SQLite
    checkpoint the WAL back into the main file.
    """
    engine = create_engine(database_url(path), connect_args={"timeout": 30})
    try:
        yield engine
    finally:
        engine.dispose()


def require_database(path: Path) -> Path:
    path = Path(path)
    if not path.is_file():
        raise DatabaseMissing(f"Database not found at {path}")
    return path


def initialise_database(path: Path) -> None:
    """Create (or open) the database and apply the full schema idempotently."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open_engine(path) as engine:
        with engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        Base.metadata.create_all(engine)
    log.debug("db.initialised", path=str(path))


def _as_executable(statement: Statement) -> Executable:
    if isinstance(statement, str):
        return text(statement)
    return statement


def run_script(path: Path, statements: Sequence[Statement], wrap_in_transaction: bool = True) -> int:
    """Execute ``statements`` in order against the database at ``path``.

    When wrapped, the script runs in a single transaction and a failing
    statement rolls back every earlier write. Unwrapped scripts autocommit
    each statement.

    Returns:
        Number of statements executed

    Raises:
        DatabaseScriptFailure: If any statement fails
    """
    executed = 0
    try:
        with open_engine(path) as engine:
            if wrap_in_transaction:
                with engine.begin() as conn:
                    for statement in statements:
                        conn.execute(_as_executable(statement))
                        executed += 1
            else:
                with engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
                    for statement in statements:
                        conn.execute(_as_executable(statement))
                        executed += 1
    except SQLAlchemyError as exc:
        log.error(
            "db.script.failed",
            message=f"Statement {executed + 1} of {len(statements)} failed against {path}",
            path=str(path),
            transactional=wrap_in_transaction,
        )
        raise DatabaseScriptFailure(f"Database script failed at statement {executed + 1}: {exc}") from exc
    log.debug("db.script.executed", path=str(path), statements=executed)
    return executed


def build_insert(table_name: str, columns: Sequence[str], rows: Sequence[Mapping[str, Any]]) -> list[Executable]:
    """Build one INSERT per row, supplying every column (``None`` where absent).

    Values travel as bound parameters; booleans bind as 0/1.

    Raises:
        ValueError: If the table or a column is not part of the schema
    """
    table = Base.metadata.tables.get(table_name)
    if table is None:
        raise ValueError(f"Unknown table: {table_name}")
    unknown = [c for c in columns if c not in table.c]
    if unknown:
        raise ValueError(f"Unknown columns for {table_name}: {', '.join(unknown)}")
    return [insert(table).values({column: row.get(column) for column in columns}) for row in rows]


def search_index_statements() -> list[str]:
    return [
        f"DELETE FROM {SEARCH_INDEX_TABLE}",
        f"INSERT INTO {SEARCH_INDEX_TABLE}(person_id, display_name, last_name, first_name) "
        "SELECT id, display_name, last_name, first_name FROM person",
    ]


def rebuild_search_index(path: Path) -> int:
    """Rebuild the person name search index and return the indexed row count."""
    require_database(path)
    # Older databases may predate the search table
    initialise_database(path)
    run_script(path, search_index_statements())
    return scalar(path, f"SELECT COUNT(*) FROM {SEARCH_INDEX_TABLE}")


def query(path: Path, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
    with open_engine(path) as engine:
        with engine.connect() as conn:
            result = conn.execute(text(sql), dict(params or {}))
            return [dict(row._mapping) for row in result]


def scalar(path: Path, sql: str, params: Mapping[str, Any] | None = None) -> int:
    with open_engine(path) as engine:
        with engine.connect() as conn:
            value = conn.execute(text(sql), dict(params or {})).scalar()
    return int(value or 0)


def checkpoint(path: Path) -> None:
    """Fold any WAL content back into the main database file."""
    path = Path(path)
    wal, _ = sidecar_paths(path)
    if not path.is_file() or not wal.exists():
        return
    with open_engine(path) as engine:
        with engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA wal_checkpoint(TRUNCATE)")
    log.debug("db.checkpointed", path=str(path))


def remove_sidecars(path: Path) -> None:
    for sidecar in sidecar_paths(Path(path)):
        sidecar.unlink(missing_ok=True)


def remove_database(path: Path) -> None:
    """Delete a database file together with its WAL/SHM sidecars."""
    Path(path).unlink(missing_ok=True)
    remove_sidecars(path)
