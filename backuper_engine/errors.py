"""
Domain exceptions for Backuper.

Notes
-----
Engine code avoids raising generic exceptions for expected failure modes.
Every expected failure maps to a domain exception with a clear meaning so that
callers (CLI, background runner) can turn it into an exit code or a failure
sentinel without inspecting messages.
"""

from __future__ import annotations


class BackuperError(RuntimeError):
    """Base exception for all Backuper domain failures."""


class PlanValidationError(BackuperError):
    """Raised when a backup plan or one of its sources violates invariants."""


class PlanStoreError(BackuperError):
    """Raised when the plan collection cannot be read or written."""


class BackupError(BackuperError):
    """Raised when a backup archive cannot be produced."""


class BackupWriteError(BackupError):
    """Raised when an I/O failure aborts an archive write (no archive is left behind)."""


class ArchiveIdCollisionError(BackupError):
    """Raised when the computed archive identifier already exists in the plan folder."""


class ArchiveFormatError(BackuperError):
    """Raised when an archive container is missing metadata entries or is unreadable."""


class TransferError(BackuperError):
    """Raised when a plan export or import cannot be completed."""


class PlanAlreadyExistsError(TransferError):
    """Raised when an import targets a plan name that already has an archive folder."""


class DecryptionError(TransferError):
    """Raised when an encrypted bundle cannot be decrypted (wrong password or corrupt input)."""


class PlanBusyError(BackuperError):
    """Raised when an operation is requested for a plan that already has one in flight."""
