"""
Additive-overwrite extraction of archive content entries.

Each content entry is written to its logical path under the destination root,
replacing whatever is already there; newer archives are extracted later and
win. Directory entries are created. Metadata entries are never extracted.
Paths deleted at the source are removed afterwards by the reconciler.
"""

from __future__ import annotations

import zipfile
from pathlib import Path

from backuper_engine.archive_container import is_metadata_entry
from backuper_engine.filesystem import copy_stream_atomic, remove_tree
from backuper_engine.paths_and_safety import SafetyViolationError, resolve_logical_path

from .errors import ArchiveExtractionError


def extract_content(archive_path: Path, destination_root: Path) -> int:
    """
    Extract an archive's content entries into ``destination_root``.

    Parameters
    ----------
    archive_path:
        Archive to extract.
    destination_root:
        Directory receiving content (created if missing).

    Returns
    -------
    int
        Number of files written.

    Raises
    ------
    ArchiveExtractionError
        If the archive cannot be read, an entry path is unsafe, or a file
        cannot be written.
    """
    written = 0
    try:
        destination_root.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive_path, "r") as zf:
            for info in zf.infolist():
                if is_metadata_entry(info.filename):
                    continue
                if info.is_dir():
                    directory = resolve_logical_path(destination_root, info.filename.rstrip("/"))
                    if directory.is_symlink() or directory.is_file():
                        directory.unlink()
                    directory.mkdir(parents=True, exist_ok=True)
                    continue
                target = resolve_logical_path(destination_root, info.filename)
                if target.is_dir() and not target.is_symlink():
                    remove_tree(target)
                with zf.open(info, "r") as src:
                    copy_stream_atomic(src, target)
                written += 1
    except SafetyViolationError as exc:
        raise ArchiveExtractionError(f"Unsafe entry in {archive_path.name}: {exc!s}") from exc
    except (OSError, zipfile.BadZipFile) as exc:
        raise ArchiveExtractionError(f"Failed to extract {archive_path}: {exc!s}") from exc
    return written
