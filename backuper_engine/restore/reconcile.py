"""
Destination pruning against an archive's path mirror.

Extraction is additive, so files deleted at the source between backups would
survive a restore. Reconciliation removes them: anything under the root whose
logical path is not in the newest archive's mirror is deleted.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Collection
from dataclasses import dataclass
from pathlib import Path

from backuper_engine.filesystem import remove_tree

from .errors import ReconcileError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """Logical paths removed by one reconciliation pass."""

    deleted_files: tuple[str, ...] = ()
    deleted_directories: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.deleted_files or self.deleted_directories)


def reconcile_tree(
    root: Path,
    mirror: Collection[str],
    *,
    prefix: str = "",
) -> ReconcileResult:
    """
    Delete everything under ``root`` that is not listed in ``mirror``.

    Parameters
    ----------
    root:
        Directory to prune. A missing root is left alone.
    mirror:
        Logical paths ('/'-separated) that must survive.
    prefix:
        Logical path of ``root`` itself. Empty for a restore destination whose
        children are source roots; the source name when pruning a live source
        directory.

    Returns
    -------
    ReconcileResult
        Logical paths of removed files and directories. A directory missing
        from the mirror is removed as a whole; its children are not listed.

    Raises
    ------
    ReconcileError
        If a path cannot be removed or a directory cannot be listed.

    Notes
    -----
    The walk is depth-first. A second pass over the same tree removes nothing.
    """
    if not root.is_dir():
        return ReconcileResult()

    keep = mirror if isinstance(mirror, (set, frozenset)) else frozenset(mirror)
    deleted_files: list[str] = []
    deleted_directories: list[str] = []

    pending = [(root, prefix)]
    while pending:
        directory, logical_dir = pending.pop()
        try:
            children = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as exc:
            raise ReconcileError(f"Cannot list {directory}: {exc!s}") from exc

        for child in children:
            logical = f"{logical_dir}/{child.name}" if logical_dir else child.name
            path = Path(child.path)
            try:
                if child.is_dir(follow_symlinks=False):
                    if logical in keep:
                        pending.append((path, logical))
                    else:
                        remove_tree(path)
                        deleted_directories.append(logical)
                elif logical not in keep:
                    path.unlink()
                    deleted_files.append(logical)
            except OSError as exc:
                raise ReconcileError(f"Cannot remove {path}: {exc!s}") from exc

    if deleted_files or deleted_directories:
        logger.debug(
            "Reconciled %s: removed %d files and %d directories",
            root,
            len(deleted_files),
            len(deleted_directories),
        )
    return ReconcileResult(
        deleted_files=tuple(deleted_files),
        deleted_directories=tuple(deleted_directories),
    )
