"""
Restore chain resolution.

An incremental archive stores only the files that changed since its
predecessor, so restoring it requires every archive back to the most recent
full one. The chain is built by following each manifest's
``previous_backup_id`` inside the archive's own folder:

- the chain is an explicit list, newest first, ending with a full archive;
- links are followed strictly; archive file names and timestamps never
  reorder the chain;
- the whole chain is validated before anything is extracted. A missing,
  unreadable, or cyclic link makes the target unrestorable (fail closed).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from backuper_engine.archive_container import (
    archive_path_for,
    read_archived_plan,
    read_backup_information,
)
from backuper_engine.data_models import BackupInformation, BackupType
from backuper_engine.errors import ArchiveFormatError

from .errors import UnrestorableArchiveError


@dataclass(frozen=True, slots=True)
class ChainLink:
    """One archive in a restore chain, with its parsed manifest."""

    archive_path: Path
    information: BackupInformation

    @property
    def backup_id(self) -> str:
        return self.information.backup_id


@dataclass(frozen=True, slots=True)
class RestoreChain:
    """
    Archives required to reconstruct a target archive's state.

    Attributes
    ----------
    links:
        Newest first: ``links[0]`` is the target, ``links[-1]`` is a full archive.
    """

    links: tuple[ChainLink, ...]

    @property
    def target(self) -> ChainLink:
        return self.links[0]

    @property
    def root(self) -> ChainLink:
        return self.links[-1]

    def oldest_first(self) -> list[ChainLink]:
        """Return the links in extraction order."""
        return list(reversed(self.links))

    def archive_paths(self) -> list[Path]:
        """Return archive paths, newest first."""
        return [link.archive_path for link in self.links]

    def backup_ids(self) -> list[str]:
        """Return archive identifiers, newest first."""
        return [link.backup_id for link in self.links]


def resolve_chain(archive_path: Path) -> RestoreChain:
    """
    Resolve the restore chain for ``archive_path``.

    Parameters
    ----------
    archive_path:
        Target archive.

    Returns
    -------
    RestoreChain
        The chain, newest first.

    Raises
    ------
    UnrestorableArchiveError
        If any archive in the chain is missing, unreadable, lacks its metadata
        entries, or the links form a cycle.
    """
    folder = archive_path.parent
    links: list[ChainLink] = []
    seen: set[str] = set()
    current = archive_path

    while True:
        if not current.is_file():
            raise UnrestorableArchiveError(
                f"Restore chain for {archive_path.name} is broken: {current.name} is missing"
            )
        try:
            information = read_backup_information(current)
            # Both metadata entries must be present for an archive to count.
            read_archived_plan(current)
        except ArchiveFormatError as exc:
            raise UnrestorableArchiveError(
                f"Restore chain for {archive_path.name} is broken at {current.name}: {exc!s}"
            ) from exc

        if information.backup_id in seen:
            raise UnrestorableArchiveError(
                f"Restore chain for {archive_path.name} loops back to {information.backup_id}"
            )
        seen.add(information.backup_id)
        links.append(ChainLink(archive_path=current, information=information))

        if information.backup_type is BackupType.FULL:
            return RestoreChain(links=tuple(links))

        current = archive_path_for(folder, information.previous_backup_id)


def can_restore(archive_path: Path) -> bool:
    """
    Return True if the archive's full chain resolves.

    A full archive with readable metadata is always restorable on its own.
    """
    try:
        resolve_chain(archive_path)
    except UnrestorableArchiveError:
        return False
    return True
