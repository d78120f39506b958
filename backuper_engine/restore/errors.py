from __future__ import annotations

from backuper_engine.errors import BackuperError


class RestoreError(BackuperError):
    """Base class for restore-domain errors."""


class UnrestorableArchiveError(RestoreError):
    """Raised when an archive's predecessor chain does not resolve back to a full archive."""


class ArchiveExtractionError(RestoreError):
    """Raised when archive content cannot be extracted into the destination."""


class ReconcileError(RestoreError):
    """Raised when the destination tree cannot be pruned to the archive's mirror."""
