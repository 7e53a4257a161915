"""Run state for a single pack import.

The ``ImporterRunContext`` is the orchestrator's ledger. It captures:

* the phase history (each phase entered, in order, with its duration)
* manifest provenance (pack id, content version, manifest hash, signature)
* per-table row counts and dropped-row counts
* the pack archive digest

The import log written at the end of a run is rendered from this context, so
the log and the console always agree on what happened.
"""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from Archivist.metrics import inc_counter, observe_histogram, snapshot

log = structlog.get_logger()


class ImportPhase(str, Enum):
    EXTRACTING = "extracting"
    MANIFEST_VERIFYING = "manifest_verifying"
    TABLE_LOADING = "table_loading"
    DATABASE_STAGING = "database_staging"
    ASSET_SYNCING = "asset_syncing"
    DERIVATIVE_GENERATING = "derivative_generating"
    LOG_WRITING = "log_writing"
    DONE = "done"
    FAILED = "failed"


TERMINAL_PHASES = (ImportPhase.DONE, ImportPhase.FAILED)


@dataclass
class ImporterRunContext:
    """Collects phase transitions and provenance for one import run."""

    pack_path: str
    pack_id: str | None = None
    content_version: int | None = None
    manifest_hash: str | None = None
    signature: bytes | None = None
    pack_sha256: str | None = None
    imported_at: str | None = None
    table_counts: dict[str, int] = field(default_factory=dict)
    dropped_counts: dict[str, int] = field(default_factory=dict)
    phase: ImportPhase | None = None
    failed_phase: ImportPhase | None = None
    _history: list[dict[str, Any]] = field(default_factory=list)
    _phase_started: float | None = field(default=None, init=False)

    def enter(self, phase: ImportPhase) -> None:
        """Move to ``phase``, closing the timing of the previous one."""
        if self.phase in TERMINAL_PHASES:
            raise ValueError(f"Import already finished in phase {self.phase.value}")
        self._close_phase()
        self.phase = phase
        self._phase_started = time.perf_counter()
        self._history.append({"phase": phase.value})
        log.debug("import.phase", phase=phase.value, pack=self.pack_path)

    def _close_phase(self) -> None:
        if self.phase is None or self._phase_started is None:
            return
        elapsed_ms = int((time.perf_counter() - self._phase_started) * 1000)
        self._history[-1]["duration_ms"] = elapsed_ms
        observe_histogram(f"importer.phase.{self.phase.value}", elapsed_ms)
        self._phase_started = None

    def record_manifest(
        self, pack_id: str, content_version: int, manifest_hash: str, signature: bytes | None
    ) -> None:
        self.pack_id = pack_id
        self.content_version = content_version
        self.manifest_hash = manifest_hash
        self.signature = signature

    def record_tables(self, counts: dict[str, int], dropped: dict[str, int]) -> None:
        self.table_counts = dict(counts)
        self.dropped_counts = dict(dropped)
        inc_counter("importer.rows_staged", sum(counts.values()))

    @property
    def signature_b64(self) -> str | None:
        if self.signature is None:
            return None
        return base64.b64encode(self.signature).decode("ascii")

    @property
    def phases(self) -> list[dict[str, Any]]:
        return [dict(entry) for entry in self._history]

    def complete(self) -> None:
        self.enter(ImportPhase.DONE)
        self._phase_started = None
        inc_counter("importer.completed")

    def fail(self, exc: BaseException) -> None:
        """Record a failure in the current phase and mark the run FAILED."""
        if self.phase in TERMINAL_PHASES:
            return
        failed = self.phase or ImportPhase.EXTRACTING
        self._close_phase()
        self.failed_phase = failed
        self.phase = ImportPhase.FAILED
        self._history.append({"phase": ImportPhase.FAILED.value, "error": type(exc).__name__})
        inc_counter(f"importer.failed.{failed.value}")
        log.error(
            "import.failed",
            message=f"Import failed during {failed.value}: {exc}",
            phase=failed.value,
            pack=self.pack_path,
        )

    def to_log_payload(self, *, staged_db: str, content_root: str) -> dict[str, Any]:
        return {
            "pack_id": self.pack_id,
            "content_version": self.content_version,
            "manifest_hash": self.manifest_hash,
            "signature": self.signature_b64,
            "imported_at": self.imported_at,
            "tables": dict(self.table_counts),
            "dropped": dict(self.dropped_counts),
            "staged_db": staged_db,
            "content_root": content_root,
            "pack_sha256": self.pack_sha256,
            "phases": self.phases,
            "counters": snapshot(),
        }
