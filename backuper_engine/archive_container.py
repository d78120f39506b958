"""
Archive container naming and metadata access.

An archive is a zip-compatible ``.smlb`` file holding content entries at their
logical mirror paths plus two metadata entries: ``plan.json`` (the plan as it
existed at backup time) and ``archive.backup`` (the BackupInformation).

This module reads archives only. Writing lives in ``backup.writer``.
"""

from __future__ import annotations

import hashlib
import json
import zipfile
from datetime import datetime, timezone
from pathlib import Path

from .data_models import (
    BACKUP_INFO_ENTRY_NAME,
    PLAN_ENTRY_NAME,
    RESERVED_ENTRY_NAMES,
    BackupInformation,
    BackupPlan,
)
from .errors import ArchiveFormatError

ARCHIVE_EXTENSION = ".smlb"

ARCHIVE_ID_TIME_FORMAT = "%Y%m%d%H%M%S"


def compute_backup_id(plan_name: str, backup_time: datetime) -> str:
    """
    Derive an archive identifier from a plan name and a backup time.

    Parameters
    ----------
    plan_name:
        Name of the plan being backed up.
    backup_time:
        Timezone-aware backup time. Only whole seconds contribute.

    Returns
    -------
    str
        Lowercase hex MD5 of ``"<plan_name>_<YYYYmmddHHMMSS>"``.

    Notes
    -----
    The identifier names the archive; it is not a content hash. Two backups of
    the same plan within one second produce the same identifier, which the
    writer rejects as a naming conflict.
    """
    if backup_time.tzinfo is None:
        raise ValueError("backup_time must be timezone-aware")
    stamp = backup_time.astimezone(timezone.utc).strftime(ARCHIVE_ID_TIME_FORMAT)
    plain = f"{plan_name}_{stamp}"
    return hashlib.md5(plain.encode("utf-8"), usedforsecurity=False).hexdigest()


def archive_path_for(plan_folder: Path, backup_id: str) -> Path:
    """Return ``<plan_folder>/<backup_id>.smlb``."""
    return plan_folder / f"{backup_id}{ARCHIVE_EXTENSION}"


def backup_id_from_path(archive_path: Path) -> str:
    """Return the identifier encoded in an archive file name."""
    if is_archive_file(archive_path):
        return archive_path.name[: -len(ARCHIVE_EXTENSION)]
    return archive_path.stem


def is_archive_file(path: Path) -> bool:
    """Return True if the path names a ``.smlb`` archive."""
    return path.name.lower().endswith(ARCHIVE_EXTENSION)


def is_metadata_entry(entry_name: str) -> bool:
    """Return True if a zip entry name is one of the metadata entries."""
    return entry_name.lower() in RESERVED_ENTRY_NAMES


def read_entry_text(archive_path: Path, entry_name: str) -> str | None:
    """
    Read a root-level text entry from an archive.

    Parameters
    ----------
    archive_path:
        Archive to read.
    entry_name:
        Entry name, matched case-insensitively.

    Returns
    -------
    str | None
        Entry text, or None if the archive has no such entry.

    Raises
    ------
    ArchiveFormatError
        If the archive cannot be opened or the entry cannot be decoded.
    """
    wanted = entry_name.lower()
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            for info in zf.infolist():
                if info.filename.lower() == wanted:
                    return zf.read(info).decode("utf-8")
    except (OSError, zipfile.BadZipFile, UnicodeDecodeError) as exc:
        raise ArchiveFormatError(f"Failed to read {entry_name!r} from {archive_path}: {exc!s}") from exc
    return None


def read_backup_information(archive_path: Path) -> BackupInformation:
    """
    Read and validate the BackupInformation embedded in an archive.

    Raises
    ------
    ArchiveFormatError
        If the entry is missing, is not valid JSON, or fails validation.
    """
    text = read_entry_text(archive_path, BACKUP_INFO_ENTRY_NAME)
    if text is None:
        raise ArchiveFormatError(f"Archive has no {BACKUP_INFO_ENTRY_NAME!r} entry: {archive_path}")
    try:
        return BackupInformation.from_dict(json.loads(text))
    except json.JSONDecodeError as exc:
        raise ArchiveFormatError(f"Invalid JSON in {BACKUP_INFO_ENTRY_NAME!r}: {archive_path}") from exc
    except (ValueError, TypeError) as exc:
        raise ArchiveFormatError(f"Invalid backup information in {archive_path}: {exc!s}") from exc


def read_archived_plan(archive_path: Path) -> BackupPlan:
    """
    Read the plan snapshot embedded in an archive.

    Raises
    ------
    ArchiveFormatError
        If the entry is missing or cannot be parsed.
    """
    text = read_entry_text(archive_path, PLAN_ENTRY_NAME)
    if text is None:
        raise ArchiveFormatError(f"Archive has no {PLAN_ENTRY_NAME!r} entry: {archive_path}")
    try:
        return BackupPlan.from_dict(json.loads(text))
    except json.JSONDecodeError as exc:
        raise ArchiveFormatError(f"Invalid JSON in {PLAN_ENTRY_NAME!r}: {archive_path}") from exc
    except (ValueError, TypeError) as exc:
        raise ArchiveFormatError(f"Invalid plan snapshot in {archive_path}: {exc!s}") from exc
