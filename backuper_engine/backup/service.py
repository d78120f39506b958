"""
Backup orchestration for Backuper.

This module coordinates:
- plan validation and plan folder resolution (policy + safety gates)
- archive writing (full or incremental)
- optional journaling of the run

The plan object passed in is updated in place when, and only when, the archive
has been finalized. Persisting the updated plan is the caller's concern
(see ``plan_store``).
"""

from __future__ import annotations

import logging
from pathlib import Path

from backuper_engine.backup.writer import ArchiveWriteResult, write_archive
from backuper_engine.clock import Clock, SystemClock
from backuper_engine.data_models import BackupPlan, BackupType
from backuper_engine.errors import BackupError
from backuper_engine.journal import OperationJournal
from backuper_engine.paths_and_safety import plan_folder

logger = logging.getLogger(__name__)


def create_backup(
    *,
    plan: BackupPlan,
    archives_root: Path,
    backup_type: BackupType = BackupType.FULL,
    clock: Clock | None = None,
    journal: OperationJournal | None = None,
) -> ArchiveWriteResult:
    """
    Create one archive for ``plan`` inside its archive folder.

    Parameters
    ----------
    plan:
        Plan to back up; its last-backup bookkeeping is updated on success.
    archives_root:
        Parent of all plan folders.
    backup_type:
        Requested type. Incremental falls back to full when no usable
        predecessor exists.
    clock:
        Injectable clock.
    journal:
        Optional run journal.

    Returns
    -------
    ArchiveWriteResult
        Details of the new archive.

    Raises
    ------
    BackupError
        If the archive cannot be written (collision, I/O failure).
    PlanValidationError
        If the plan is invalid.
    SafetyViolationError
        If the plan name is unsafe.
    """
    run_clock = clock or SystemClock()
    folder = plan_folder(plan.name, archives_root)

    if journal is not None:
        journal.append(
            "backup_started",
            {
                "plan": plan.name,
                "requested_type": backup_type.value,
                "plan_folder": str(folder),
                "previous_backup_id": plan.last_backup_id,
            },
        )

    try:
        result = write_archive(
            plan=plan,
            destination_dir=folder,
            backup_type=backup_type,
            clock=run_clock,
        )
    except BackupError as exc:
        logger.error("Backup of plan %r failed: %s", plan.name, exc)
        if journal is not None:
            journal.append("backup_failed", {"plan": plan.name, "error": str(exc)})
        raise

    if journal is not None:
        journal.append(
            "backup_completed",
            {
                "plan": plan.name,
                "backup_id": result.backup_id,
                "backup_type": result.backup_type.value,
                "archive_path": str(result.archive_path),
                "mirrored_paths": len(result.information.path_mirror),
                "included_files": result.included_files,
                "scan_issues": [
                    {"path": str(issue.path), "message": issue.message}
                    for issue in result.scan_issues
                ],
            },
        )
    return result
