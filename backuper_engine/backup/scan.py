"""
Source enumeration for archive writing.

This module walks a plan's sources and yields one entry per directory and file,
keyed by its logical archive path. It performs no writes and never deletes.

Policy
------
- Enumeration order is deterministic: directory names and file names are sorted.
- Directories are yielded before their contents (the mirror lists parents first).
- Symlinks/reparse points inside a directory source are recorded in the mirror
  but are never followed and never content-bearing; each is also reported as
  a scan issue. A symlinked source root is skipped.
- A source missing on disk is skipped and reported; it is not an error.
- Any failure to list or stat an entry raises, so the caller can abort.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from backuper_engine.data_models import BackupSource, SourceKind


@dataclass(frozen=True, slots=True)
class MirrorEntry:
    """
    A directory or file discovered under a source.

    Attributes
    ----------
    logical_path:
        '/'-separated path inside the archive, rooted at the source name.
    absolute_path:
        Location on disk.
    is_directory:
        True for directories (mirrored, never content-bearing).
    is_symlink:
        True for symlinks/reparse points (mirrored, never followed).
    modified_time_epoch_seconds:
        Modification time; 0.0 for directories.
    size_bytes:
        File size; 0 for directories.
    """

    logical_path: str
    absolute_path: Path
    is_directory: bool
    is_symlink: bool = False
    modified_time_epoch_seconds: float = 0.0
    size_bytes: int = 0


@dataclass(frozen=True, slots=True)
class ScanIssue:
    """
    A non-fatal issue encountered while scanning.

    Attributes
    ----------
    path:
        The path that triggered the issue.
    message:
        Human-readable explanation suitable for logs.
    """

    path: Path
    message: str


class SourceScanner:
    """
    Enumerates plan sources into mirror entries, collecting non-fatal issues.

    Usage
    -----
    ``for entry in scanner.iter_source(source): ...`` then read ``scanner.issues``.
    """

    def __init__(self) -> None:
        self.issues: list[ScanIssue] = []

    def iter_source(self, source: BackupSource) -> Iterator[MirrorEntry]:
        """
        Yield mirror entries for one source.

        Raises
        ------
        OSError
            If a directory cannot be listed or a file cannot be stat'ed.
        """
        root = Path(source.path)

        if root.is_symlink():
            self.issues.append(ScanIssue(path=root, message="Skipped symlink/reparse point source."))
            return

        if source.kind is SourceKind.FILE:
            if not root.is_file():
                self.issues.append(ScanIssue(path=root, message="Source file does not exist; skipped."))
                return
            yield _file_entry(root, source.name)
            return

        if not root.is_dir():
            self.issues.append(ScanIssue(path=root, message="Source directory does not exist; skipped."))
            return

        yield MirrorEntry(logical_path=source.name, absolute_path=root, is_directory=True)
        yield from self._walk_directory(root, source.name)

    def _walk_directory(self, root: Path, source_name: str) -> Iterator[MirrorEntry]:
        for directory_path, directory_names, file_names in os.walk(
            root,
            topdown=True,
            onerror=_raise_walk_error,
            followlinks=False,
        ):
            current_directory = Path(directory_path)
            logical_base = _logical_join(source_name, current_directory.relative_to(root))

            kept_directories: list[str] = []
            for name in sorted(directory_names):
                candidate = current_directory / name
                if candidate.is_symlink():
                    yield self._symlink_entry(candidate, f"{logical_base}/{name}")
                    continue
                kept_directories.append(name)
            directory_names[:] = kept_directories

            for file_name in sorted(file_names):
                absolute_path = current_directory / file_name
                if absolute_path.is_symlink():
                    yield self._symlink_entry(absolute_path, f"{logical_base}/{file_name}")
                    continue
                yield _file_entry(absolute_path, f"{logical_base}/{file_name}")

            # os.walk visits kept_directories next, in this order.
            for name in kept_directories:
                yield MirrorEntry(
                    logical_path=f"{logical_base}/{name}",
                    absolute_path=current_directory / name,
                    is_directory=True,
                )

    def _symlink_entry(self, path: Path, logical_path: str) -> MirrorEntry:
        self.issues.append(ScanIssue(path=path, message="Symlink/reparse point mirrored; target not stored."))
        return MirrorEntry(logical_path=logical_path, absolute_path=path, is_directory=False, is_symlink=True)


def _file_entry(path: Path, logical_path: str) -> MirrorEntry:
    stat_result = path.stat()
    return MirrorEntry(
        logical_path=logical_path,
        absolute_path=path,
        is_directory=False,
        modified_time_epoch_seconds=float(stat_result.st_mtime),
        size_bytes=int(stat_result.st_size),
    )


def _logical_join(source_name: str, relative: Path) -> str:
    if relative == Path("."):
        return source_name
    return "/".join((source_name, *relative.parts))


def _raise_walk_error(exc: OSError) -> None:
    raise exc
