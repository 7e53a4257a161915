"""Error taxonomy for the pack pipeline.

Every error an operator can act on derives from ``CommandFailure`` so the CLI
can render it as a single ``[ERROR]`` line and exit non-zero. Verification
errors are raised before any database mutation happens.
"""

from __future__ import annotations


class CommandFailure(Exception):
    """Base exception for pipeline commands."""

    pass


class PackExtractionFailure(CommandFailure):
    """Raised when the pack archive cannot be opened or extracted safely."""

    pass


class ManifestInvalid(CommandFailure):
    """Raised when manifest.json is missing, not JSON, or fails the schema."""

    pass


class IncompatiblePack(CommandFailure):
    """Raised when the pack requires a newer application version."""

    pass


class ManifestTampered(CommandFailure):
    """Raised when the manifest bytes do not match the published checksum."""

    pass


class SignatureInvalid(CommandFailure):
    """Raised when the detached Ed25519 signature cannot be verified."""

    pass


class TableReadFailure(CommandFailure):
    """Raised when a declared table cannot be read from the pack."""

    pass


class ImageHashMismatch(CommandFailure):
    """Raised when an image's content hash disagrees with its filename."""

    def __init__(self, filename: str, expected: str, actual: str):
        super().__init__(f"Hash mismatch for {filename}: expected {expected} actual {actual}")
        self.filename = filename
        self.expected = expected
        self.actual = actual


class DerivativeToolUnavailable(CommandFailure):
    """Raised when an image cannot be processed; callers fall back to a plain copy."""

    pass


class DatabaseScriptFailure(CommandFailure):
    """Raised when a statement script fails; wrapped scripts leave no writes behind."""

    pass


class DatabaseMissing(CommandFailure):
    """Raised when a command targets a database file that does not exist."""

    pass


class StagedDatabaseMissing(CommandFailure):
    """Raised by activation when there is no staged database to promote."""

    pass


class NoBackupAvailable(CommandFailure):
    """Raised by rollback when there is no previous database to restore."""

    pass


class OperationInProgress(CommandFailure):
    """Raised when another pipeline command already holds the content lock."""

    pass


__all__ = [
    "CommandFailure",
    "DatabaseMissing",
    "DatabaseScriptFailure",
    "DerivativeToolUnavailable",
    "ImageHashMismatch",
    "IncompatiblePack",
    "ManifestInvalid",
    "ManifestTampered",
    "NoBackupAvailable",
    "OperationInProgress",
    "PackExtractionFailure",
    "SignatureInvalid",
    "StagedDatabaseMissing",
    "TableReadFailure",
]
