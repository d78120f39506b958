"""
Stateless filesystem helpers shared by backup, restore and transfer flows.

Scratch directories
-------------------
Every operation that needs temporary working space gets its own directory with
a random suffix and releases it on both success and failure paths. Failing to
delete scratch space is logged and suppressed; it never fails an otherwise
successful operation.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import stat
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, BinaryIO

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


def _clear_readonly_and_retry(func, path, _exc) -> None:  # noqa: ANN001
    # Read-only files (common on Windows) block unlink until the bit is cleared.
    os.chmod(path, stat.S_IWRITE)
    func(path)


def remove_tree(path: Path) -> None:
    """
    Delete a directory and everything under it.

    Raises
    ------
    OSError
        If deletion fails.
    """
    if path.is_symlink() or path.is_file():
        path.unlink()
        return
    shutil.rmtree(path, onexc=_clear_readonly_and_retry)


def remove_tree_best_effort(path: Path) -> bool:
    """
    Delete a directory tree, suppressing and logging failures.

    Returns
    -------
    bool
        True if the path no longer exists afterwards.
    """
    if not path.exists() and not path.is_symlink():
        return True
    try:
        remove_tree(path)
    except OSError as exc:
        logger.warning("Failed to remove scratch path %s: %s", path, exc)
        return False
    return True


def unlink_best_effort(path: Path) -> None:
    """Delete a single file if present, logging failures."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Failed to remove temporary file %s: %s", path, exc)


@contextmanager
def scratch_directory(parent: Path, label: str) -> Iterator[Path]:
    """
    Create an operation-scoped scratch directory and always release it.

    Parameters
    ----------
    parent:
        Directory that will hold the scratch directory (created if missing).
    label:
        Short operation label used in the directory name.

    Yields
    ------
    pathlib.Path
        A fresh, empty directory named ``.<label>-<random hex>``.
    """
    parent.mkdir(parents=True, exist_ok=True)
    scratch = parent / f".{label}-{uuid.uuid4().hex}"
    scratch.mkdir()
    try:
        yield scratch
    finally:
        remove_tree_best_effort(scratch)


def copy_stream_atomic(source: BinaryIO, destination_path: Path) -> None:
    """
    Write a stream to ``destination_path`` through a temp file and a rename.

    An existing destination file is replaced.
    """
    destination_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = destination_path.with_name(destination_path.name + ".backuper_tmp")

    try:
        with temp_path.open("wb") as dst:
            shutil.copyfileobj(source, dst, length=COPY_CHUNK_SIZE)
            dst.flush()
            os.fsync(dst.fileno())
        os.replace(temp_path, destination_path)
    except OSError:
        unlink_best_effort(temp_path)
        raise


def copy_file_atomic(source_path: Path, destination_path: Path) -> None:
    """Copy a file to ``destination_path`` atomically, replacing any existing file."""
    with source_path.open("rb") as src:
        copy_stream_atomic(src, destination_path)
    shutil.copystat(source_path, destination_path)


def copy_tree(source_root: Path, destination_root: Path) -> int:
    """
    Copy a directory tree, overwriting files that already exist at the destination.

    Files present only at the destination are left in place.

    Returns
    -------
    int
        Number of files copied.
    """
    copied = 0
    destination_root.mkdir(parents=True, exist_ok=True)
    for directory_path, directory_names, file_names in os.walk(source_root):
        directory_names.sort()
        current = Path(directory_path)
        target_dir = destination_root / current.relative_to(source_root)
        target_dir.mkdir(parents=True, exist_ok=True)
        for file_name in sorted(file_names):
            copy_file_atomic(current / file_name, target_dir / file_name)
            copied += 1
    return copied


def write_json_atomic(json_path: Path, payload: Any) -> None:
    """
    Write pretty-printed JSON to ``json_path`` through a temp file and a rename.

    Raises
    ------
    OSError
        If the file cannot be written. The temp file is removed.
    """
    json_path = json_path.expanduser()
    json_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = json_path.with_suffix(json_path.suffix + ".tmp")

    try:
        with temp_path.open("w", encoding="utf-8", newline="\n") as handle:
            json.dump(payload, handle, indent=2, sort_keys=True, ensure_ascii=False)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, json_path)
    except OSError:
        unlink_best_effort(temp_path)
        raise
