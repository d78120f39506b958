"""
Restore orchestration.

Two flows are supported:

- ``restore_archive``: reconstruct an archive's state under a destination root,
  one top-level directory (or file) per source name.
- ``restore_in_place``: reconstruct the state in a scratch directory, then put
  each source back at the path recorded in the archived plan.

Both resolve and validate the entire chain before touching the filesystem,
extract oldest first, and finish by pruning against the newest archive's
mirror so that files deleted before the target backup do not reappear.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from backuper_engine.archive_container import read_archived_plan
from backuper_engine.data_models import BackupSource, SourceKind
from backuper_engine.errors import ArchiveFormatError
from backuper_engine.filesystem import copy_file_atomic, copy_tree, scratch_directory
from backuper_engine.journal import OperationJournal
from backuper_engine.paths_and_safety import SafetyViolationError, resolve_logical_path

from .chain import RestoreChain, resolve_chain
from .errors import ArchiveExtractionError, RestoreError
from .extract import extract_content
from .reconcile import ReconcileResult, reconcile_tree

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RestoreResult:
    """Outcome of restoring an archive into a destination root."""

    backup_id: str
    chain: tuple[str, ...]
    destination_root: Path
    extracted_files: int
    reconcile: ReconcileResult


@dataclass(frozen=True, slots=True)
class InPlaceRestoreResult:
    """Outcome of restoring an archive's sources to their original locations."""

    backup_id: str
    chain: tuple[str, ...]
    restored_sources: tuple[str, ...]
    skipped_sources: tuple[str, ...]
    restored_files: int
    deleted_paths: tuple[str, ...]


def _extract_chain(chain: RestoreChain, destination_root: Path, journal: OperationJournal | None) -> int:
    extracted = 0
    for link in chain.oldest_first():
        count = extract_content(link.archive_path, destination_root)
        extracted += count
        logger.debug("Extracted %d file(s) from %s", count, link.archive_path.name)
        if journal is not None:
            journal.append(
                "archive_extracted",
                {"backup_id": link.backup_id, "files": count},
            )
    return extracted


def _resolve_with_journal(archive_path: Path, journal: OperationJournal | None) -> RestoreChain:
    try:
        chain = resolve_chain(archive_path)
    except RestoreError as exc:
        logger.error("Cannot restore %s: %s", archive_path, exc)
        if journal is not None:
            journal.append("restore_refused", {"archive_path": str(archive_path), "error": str(exc)})
        raise
    if journal is not None:
        journal.append("chain_resolved", {"chain": chain.backup_ids()})
    return chain


def restore_archive(
    *,
    archive_path: Path,
    destination_root: Path,
    journal: OperationJournal | None = None,
) -> RestoreResult:
    """
    Restore the state captured by ``archive_path`` under ``destination_root``.

    Parameters
    ----------
    archive_path:
        Target archive (full or incremental).
    destination_root:
        Directory receiving the restored sources. Created if missing. Anything
        already inside it that is not part of the archive's mirror is removed.
    journal:
        Optional run journal. Must not live inside ``destination_root``.

    Returns
    -------
    RestoreResult

    Raises
    ------
    UnrestorableArchiveError
        If the chain does not resolve. Nothing is written in that case.
    ArchiveExtractionError
        If content cannot be extracted.
    ReconcileError
        If pruning fails.
    """
    if journal is not None:
        journal.append(
            "restore_started",
            {"archive_path": str(archive_path), "destination_root": str(destination_root)},
        )

    chain = _resolve_with_journal(archive_path, journal)

    try:
        extracted = _extract_chain(chain, destination_root, journal)
        reconcile = reconcile_tree(destination_root, chain.target.information.mirror_set())
    except RestoreError as exc:
        logger.error("Restore of %s failed: %s", archive_path.name, exc)
        if journal is not None:
            journal.append("restore_failed", {"error": str(exc)})
        raise

    if journal is not None:
        journal.append(
            "restore_completed",
            {
                "backup_id": chain.target.backup_id,
                "extracted_files": extracted,
                "deleted_files": list(reconcile.deleted_files),
                "deleted_directories": list(reconcile.deleted_directories),
            },
        )
    logger.info(
        "Restored %s (%d archive(s)) into %s",
        chain.target.backup_id,
        len(chain.links),
        destination_root,
    )
    return RestoreResult(
        backup_id=chain.target.backup_id,
        chain=tuple(chain.backup_ids()),
        destination_root=destination_root,
        extracted_files=extracted,
        reconcile=reconcile,
    )


def _put_back_source(
    source: BackupSource,
    staged_root: Path,
    mirror: frozenset[str],
) -> tuple[int, ReconcileResult]:
    try:
        staged = resolve_logical_path(staged_root, source.name)
    except SafetyViolationError as exc:
        raise ArchiveExtractionError(f"Unsafe source name in archived plan: {source.name!r}") from exc
    target = Path(source.path)

    try:
        if source.kind is SourceKind.FILE:
            if not staged.is_file():
                raise ArchiveExtractionError(
                    f"Archive chain holds no content for file source {source.name!r}"
                )
            if target.is_dir():
                raise RestoreError(f"Cannot restore file source over directory: {target}")
            copy_file_atomic(staged, target)
            return 1, ReconcileResult()

        if target.exists() and not target.is_dir():
            raise RestoreError(f"Cannot restore directory source over file: {target}")
        target.mkdir(parents=True, exist_ok=True)
        copied = copy_tree(staged, target) if staged.is_dir() else 0
    except OSError as exc:
        raise ArchiveExtractionError(f"Failed to restore source {source.name!r} to {target}: {exc!s}") from exc

    return copied, reconcile_tree(target, mirror, prefix=source.name)


def restore_in_place(
    *,
    archive_path: Path,
    work_root: Path,
    journal: OperationJournal | None = None,
) -> InPlaceRestoreResult:
    """
    Restore every archived source back to its recorded location.

    The chain is extracted into a scratch directory under ``work_root`` which
    is always removed afterwards. Each source present in the newest mirror is
    then copied over its live path and the live tree is pruned to the mirror.
    Sources absent from the newest mirror (missing at backup time) are left
    untouched.

    Raises
    ------
    UnrestorableArchiveError
        If the chain does not resolve. No source is modified in that case.
    ArchiveExtractionError
        If content cannot be extracted or copied back.
    RestoreError
        If a live path has the wrong kind (file vs directory).
    """
    if journal is not None:
        journal.append("restore_in_place_started", {"archive_path": str(archive_path)})

    chain = _resolve_with_journal(archive_path, journal)
    try:
        plan = read_archived_plan(chain.target.archive_path)
    except ArchiveFormatError as exc:
        raise ArchiveExtractionError(str(exc)) from exc
    mirror = chain.target.information.mirror_set()

    restored: list[str] = []
    skipped: list[str] = []
    deleted: list[str] = []
    restored_files = 0

    try:
        with scratch_directory(work_root, "restore") as scratch:
            _extract_chain(chain, scratch, journal)
            for source in plan.sources:
                if source.name not in mirror:
                    logger.warning(
                        "Source %r was not captured by %s; leaving %s untouched",
                        source.name,
                        chain.target.backup_id,
                        source.path,
                    )
                    skipped.append(source.name)
                    continue
                copied, reconcile = _put_back_source(source, scratch, mirror)
                restored_files += copied
                deleted.extend(reconcile.deleted_files)
                deleted.extend(reconcile.deleted_directories)
                restored.append(source.name)
    except RestoreError as exc:
        logger.error("In-place restore of %s failed: %s", archive_path.name, exc)
        if journal is not None:
            journal.append("restore_failed", {"error": str(exc)})
        raise

    if journal is not None:
        journal.append(
            "restore_completed",
            {
                "backup_id": chain.target.backup_id,
                "restored_sources": restored,
                "skipped_sources": skipped,
                "restored_files": restored_files,
                "deleted_paths": deleted,
            },
        )
    logger.info("Restored %d source(s) in place from %s", len(restored), chain.target.backup_id)
    return InPlaceRestoreResult(
        backup_id=chain.target.backup_id,
        chain=tuple(chain.backup_ids()),
        restored_sources=tuple(restored),
        skipped_sources=tuple(skipped),
        restored_files=restored_files,
        deleted_paths=tuple(deleted),
    )
