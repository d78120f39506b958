"""
Plan archive folder queries.

Listing is read-only. Deletion here is the only place the engine removes
archives, and it happens only on explicit request.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from .archive_container import backup_id_from_path, is_archive_file, read_backup_information
from .errors import ArchiveFormatError
from .filesystem import remove_tree
from .paths_and_safety import plan_folder

logger = logging.getLogger(__name__)

_UNKNOWN_TIME = datetime.max.replace(tzinfo=timezone.utc)


def list_archives(plan_name: str, archives_root: Path) -> list[Path]:
    """
    List a plan's archives, oldest first.

    Parameters
    ----------
    plan_name:
        Plan whose folder is listed.
    archives_root:
        Parent of all plan folders.

    Returns
    -------
    list[pathlib.Path]
        ``.smlb`` files ordered by the backup time recorded inside each archive,
        then by file name. Unreadable archives sort last. Empty if the folder
        does not exist.

    Notes
    -----
    Ordering by the embedded backup time (rather than file-system creation
    time) keeps the order identical after an export/import round-trip.
    """
    folder = plan_folder(plan_name, archives_root)
    if not folder.is_dir():
        return []

    keyed: list[tuple[datetime, str, Path]] = []
    for path in folder.iterdir():
        if not path.is_file() or not is_archive_file(path) or path.name.startswith("."):
            continue
        try:
            backup_time = read_backup_information(path).backup_time
        except ArchiveFormatError as exc:
            logger.warning("Unreadable archive %s: %s", path, exc)
            backup_time = _UNKNOWN_TIME
        keyed.append((backup_time, path.name, path))

    keyed.sort(key=lambda item: (item[0], item[1]))
    return [path for _, _, path in keyed]


def list_archive_ids(plan_name: str, archives_root: Path) -> list[str]:
    """Return archive identifiers for a plan, in :func:`list_archives` order."""
    return [backup_id_from_path(path) for path in list_archives(plan_name, archives_root)]


def delete_plan_archives(plan_name: str, archives_root: Path) -> bool:
    """
    Delete a plan's archive folder and every archive in it.

    Returns
    -------
    bool
        True if a folder was deleted, False if none existed.

    Raises
    ------
    OSError
        If deletion fails.
    """
    folder = plan_folder(plan_name, archives_root)
    if not folder.exists():
        return False
    remove_tree(folder)
    logger.info("Deleted archive folder for plan %r: %s", plan_name, folder)
    return True
