"""
Archive writer.

This module produces one ``.smlb`` archive for one backup event:

- every directory and file under the plan's sources is recorded in the path
  mirror, whether or not its bytes are stored;
- full archives store every file; incremental archives store only files
  modified strictly after the previous backup time;
- directories are stored as empty directory entries so that empty
  directories survive a restore;
- the ``plan.json`` and ``archive.backup`` metadata entries are always written.

Atomicity
---------
The container is written to a dot-prefixed temp file inside the plan folder,
flushed to disk, and only then renamed to ``<backup_id>.smlb``. Any failure
before the rename removes the temp file and leaves the plan untouched; the plan
bookkeeping is updated only after the rename succeeds.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import zipfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from backuper_engine.archive_container import (
    archive_path_for,
    compute_backup_id,
)
from backuper_engine.backup.scan import MirrorEntry, ScanIssue, SourceScanner
from backuper_engine.clock import Clock, SystemClock, backup_timestamp
from backuper_engine.data_models import (
    BACKUP_INFO_ENTRY_NAME,
    PLAN_ENTRY_NAME,
    BackupInformation,
    BackupPlan,
    BackupType,
)
from backuper_engine.errors import ArchiveIdCollisionError, BackupError, BackupWriteError
from backuper_engine.filesystem import COPY_CHUNK_SIZE, unlink_best_effort
from backuper_engine.restore.chain import can_restore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ArchiveWriteResult:
    """
    Outcome of a successful archive write.

    Attributes
    ----------
    backup_id:
        Identifier of the new archive.
    archive_path:
        Final path of the ``.smlb`` file.
    information:
        The manifest embedded in the archive.
    included_files:
        Number of files whose content was stored.
    scan_issues:
        Non-fatal issues (skipped sources, skipped symlinks).
    """

    backup_id: str
    archive_path: Path
    information: BackupInformation
    included_files: int
    scan_issues: tuple[ScanIssue, ...]

    @property
    def backup_type(self) -> BackupType:
        return self.information.backup_type


def include_content(
    entry: MirrorEntry,
    *,
    backup_type: BackupType,
    previous_backup_time: datetime | None,
) -> bool:
    """
    Decide whether a file's bytes go into the archive.

    Full backups always include content. Incremental backups include a file
    only if it was modified strictly after the previous backup time. Symlinks
    are mirrored but their targets are never stored.
    """
    if entry.is_directory or entry.is_symlink:
        return False
    if backup_type is BackupType.FULL or previous_backup_time is None:
        return True
    return entry.modified_time_epoch_seconds > previous_backup_time.timestamp()


def effective_backup_type(
    plan: BackupPlan,
    destination_dir: Path,
    requested: BackupType,
) -> BackupType:
    """
    Return the backup type that will actually be written.

    An incremental backup needs a predecessor whose own chain resolves; without
    one the archive would be unrestorable, so it is written as a full backup
    instead.
    """
    if requested is BackupType.FULL:
        return BackupType.FULL
    if not plan.last_backup_id or plan.last_backup_time is None:
        logger.info("Plan %r has no previous backup; writing a full backup.", plan.name)
        return BackupType.FULL
    if not can_restore(archive_path_for(destination_dir, plan.last_backup_id)):
        logger.warning(
            "Previous archive %s for plan %r is missing or unrestorable; writing a full backup.",
            plan.last_backup_id,
            plan.name,
        )
        return BackupType.FULL
    return BackupType.INCREMENTAL


def write_archive(
    *,
    plan: BackupPlan,
    destination_dir: Path,
    backup_type: BackupType,
    clock: Clock | None = None,
) -> ArchiveWriteResult:
    """
    Write a new archive for ``plan`` into ``destination_dir``.

    Parameters
    ----------
    plan:
        Plan to back up. Updated in place on success only.
    destination_dir:
        The plan's archive folder (created if missing).
    backup_type:
        Requested backup type.
    clock:
        Time source for the backup timestamp and identifier.

    Returns
    -------
    ArchiveWriteResult
        Details of the finalized archive.

    Raises
    ------
    PlanValidationError
        If the plan violates invariants.
    ArchiveIdCollisionError
        If an archive (or in-progress temp file) with the computed identifier
        already exists.
    BackupWriteError
        If any I/O failure occurs; no archive is left behind.
    """
    plan.validate()

    run_clock = clock or SystemClock()
    backup_time = backup_timestamp(run_clock)
    if plan.last_backup_time is not None and backup_time < plan.last_backup_time:
        raise BackupError(
            f"Clock reads {backup_time.isoformat()}, earlier than the last backup of plan "
            f"{plan.name!r} ({plan.last_backup_time.isoformat()})"
        )
    backup_id = compute_backup_id(plan.name, backup_time)

    try:
        destination_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise BackupWriteError(f"Failed to create archive folder {destination_dir}: {exc!s}") from exc

    final_path = archive_path_for(destination_dir, backup_id)
    temp_path = destination_dir / f".{final_path.name}.tmp"
    if final_path.exists():
        raise ArchiveIdCollisionError(
            f"Archive {final_path.name} already exists for plan {plan.name!r}; "
            "refusing to overwrite (two backups within the same second?)"
        )

    actual_type = effective_backup_type(plan, destination_dir, backup_type)
    incremental = actual_type is BackupType.INCREMENTAL
    previous_backup_id = plan.last_backup_id if incremental else ""
    previous_backup_time = plan.last_backup_time if incremental else None

    try:
        handle = temp_path.open("xb")
    except FileExistsError as exc:
        raise ArchiveIdCollisionError(
            f"Archive {final_path.name} is already being written for plan {plan.name!r}"
        ) from exc
    except OSError as exc:
        raise BackupWriteError(f"Failed to create archive {temp_path}: {exc!s}") from exc

    scanner = SourceScanner()
    mirror: list[str] = []
    included_files = 0

    committed = False
    try:
        with handle:
            with zipfile.ZipFile(handle, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for source in plan.sources:
                    for entry in scanner.iter_source(source):
                        mirror.append(entry.logical_path)
                        if entry.is_directory:
                            zf.mkdir(entry.logical_path)
                            continue
                        if include_content(
                            entry,
                            backup_type=actual_type,
                            previous_backup_time=previous_backup_time,
                        ):
                            _add_file(zf, entry)
                            included_files += 1

                information = BackupInformation(
                    backup_id=backup_id,
                    backup_type=actual_type,
                    backup_time=backup_time,
                    previous_backup_id=previous_backup_id,
                    previous_backup_time=previous_backup_time,
                    path_mirror=tuple(mirror),
                )
                zf.writestr(PLAN_ENTRY_NAME, _dump_json(plan.to_dict()))
                zf.writestr(BACKUP_INFO_ENTRY_NAME, _dump_json(information.to_dict()))
            handle.flush()
            os.fsync(handle.fileno())

        if final_path.exists():
            raise ArchiveIdCollisionError(f"Archive {final_path.name} appeared during write")
        os.replace(temp_path, final_path)
        committed = True
    except (OSError, zipfile.BadZipFile, ValueError) as exc:
        raise BackupWriteError(f"Backup of plan {plan.name!r} aborted: {exc!s}") from exc
    finally:
        if not committed:
            unlink_best_effort(temp_path)

    plan.record_backup(backup_id, backup_time)

    for issue in scanner.issues:
        logger.info("Scan issue for plan %r: %s (%s)", plan.name, issue.message, issue.path)
    logger.info(
        "Wrote %s archive %s for plan %r (%d paths mirrored, %d files stored)",
        actual_type.value,
        backup_id,
        plan.name,
        len(mirror),
        included_files,
    )

    return ArchiveWriteResult(
        backup_id=backup_id,
        archive_path=final_path,
        information=information,
        included_files=included_files,
        scan_issues=tuple(scanner.issues),
    )


def _add_file(zf: zipfile.ZipFile, entry: MirrorEntry) -> None:
    """Stream a file's bytes into the archive at its logical path."""
    info = zipfile.ZipInfo.from_file(entry.absolute_path, arcname=entry.logical_path, strict_timestamps=False)
    info.compress_type = zipfile.ZIP_DEFLATED
    with entry.absolute_path.open("rb") as src, zf.open(info, "w") as dst:
        shutil.copyfileobj(src, dst, length=COPY_CHUNK_SIZE)


def _dump_json(payload: dict) -> str:
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
