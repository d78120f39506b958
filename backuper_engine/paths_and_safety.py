"""
Filesystem path policy and safety gates.

This module is the single choke point for deciding where Backuper reads and
writes its own data:

- Runtime data lives under a data root (default: %LOCALAPPDATA%\\backuper).
- Each plan owns exactly one archive folder, named after the plan.
- Plan and source names become folder and archive entry names, so both are
  validated here before they ever reach the filesystem.
- Logical archive paths must stay relative and free of parent traversal.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

DATA_ROOT_ENV_VAR = "BACKUPER_DATA_ROOT"

_INVALID_NAME_CHARACTERS = r'\/:*?"<>|'


@dataclass(frozen=True, slots=True)
class EnginePaths:
    """
    Concrete resolved paths for a Backuper installation.

    Attributes
    ----------
    data_root:
        The root directory for all Backuper runtime data.
    archives_root:
        Parent of every plan archive folder (``<archives_root>/<plan name>``).
    work_root:
        Parent for operation-scoped scratch directories.
    plans_file:
        JSON document holding the configured plan collection.
    settings_file:
        JSON document holding engine settings.
    """

    data_root: Path
    archives_root: Path
    work_root: Path
    plans_file: Path
    settings_file: Path


class SafetyViolationError(RuntimeError):
    """Raised when an operation is blocked by safety policy."""


def default_data_root() -> Path:
    """
    Resolve the default Backuper data root.

    Preference order:
    1) %BACKUPER_DATA_ROOT% if set
    2) %LOCALAPPDATA%\\backuper
    3) %APPDATA%\\backuper (Roaming)
    4) ~/.backuper
    """
    explicit = os.environ.get(DATA_ROOT_ENV_VAR)
    if explicit:
        return Path(explicit)

    local = os.environ.get("LOCALAPPDATA")
    if local:
        return Path(local) / "backuper"

    roaming = os.environ.get("APPDATA")
    if roaming:
        return Path(roaming) / "backuper"

    return Path.home() / ".backuper"


def resolve_engine_paths(data_root: Path | None = None) -> EnginePaths:
    """
    Resolve all filesystem paths used by the engine.

    Parameters
    ----------
    data_root:
        Optional override for the data root.

    Returns
    -------
    EnginePaths
        Resolved paths. Nothing is created on disk.
    """
    root = (data_root or default_data_root()).expanduser().resolve()
    archives_root = (root / "archives").resolve()
    work_root = (root / "work").resolve()

    _assert_within(root, archives_root, purpose="archives root")
    _assert_within(root, work_root, purpose="work root")
    return EnginePaths(
        data_root=root,
        archives_root=archives_root,
        work_root=work_root,
        plans_file=root / "plans.json",
        settings_file=root / "settings.json",
    )


def ensure_engine_directories(paths: EnginePaths) -> None:
    """
    Create the engine directory structure if it does not already exist.

    This function creates directories only. It performs no deletion.
    """
    for directory in (paths.data_root, paths.archives_root, paths.work_root):
        directory.mkdir(parents=True, exist_ok=True)


def validate_plan_name(plan_name: str) -> str:
    """
    Validate a plan name for use as an on-disk folder name.

    Parameters
    ----------
    plan_name:
        Candidate plan name.

    Returns
    -------
    str
        The plan name, unchanged.

    Raises
    ------
    SafetyViolationError
        If the name is empty, padded with whitespace, reserved, or contains
        path characters.
    """
    name = plan_name
    if not name.strip():
        raise SafetyViolationError("Plan name must not be empty.")
    if name != name.strip():
        raise SafetyViolationError(f"Plan name must not start or end with whitespace: {name!r}")
    if any(ch in name for ch in _INVALID_NAME_CHARACTERS):
        raise SafetyViolationError(f"Plan name contains invalid characters: {name!r}")
    if name in {".", ".."}:
        raise SafetyViolationError("Plan name must not be '.' or '..'.")
    if name.startswith("."):
        # Dot-prefixed folders under the archives root are scratch space.
        raise SafetyViolationError(f"Plan name must not start with '.': {name!r}")
    return name


def validate_source_name(source_name: str) -> str:
    """
    Validate a source name for use as the logical root of archive entries.

    Raises
    ------
    SafetyViolationError
        If the name is empty, padded with whitespace, reserved, or contains
        path characters.
    """
    name = source_name
    if not name.strip():
        raise SafetyViolationError("Source name must not be empty.")
    if name != name.strip():
        raise SafetyViolationError(f"Source name must not start or end with whitespace: {name!r}")
    if any(ch in name for ch in _INVALID_NAME_CHARACTERS):
        raise SafetyViolationError(f"Source name contains invalid characters: {name!r}")
    if name in {".", ".."}:
        raise SafetyViolationError("Source name must not be '.' or '..'.")
    return name


def plan_folder(plan_name: str, archives_root: Path) -> Path:
    """
    Return the archive folder owned by a plan.

    Raises
    ------
    SafetyViolationError
        If the plan name is unsafe or resolves outside the archives root.
    """
    name = validate_plan_name(plan_name)
    root = archives_root.expanduser().resolve()
    folder = (root / name).resolve()
    _assert_within(root, folder, purpose="plan folder")
    return folder


def is_safe_logical_path(logical_path: str) -> bool:
    """
    Return True if a logical archive path is relative and free of traversal.

    Logical paths always use '/' separators, regardless of platform.
    """
    if not logical_path or "\\" in logical_path:
        return False
    pure = PurePosixPath(logical_path)
    if pure.is_absolute():
        return False
    if ":" in pure.parts[0]:
        return False
    return all(part not in ("", ".", "..") for part in pure.parts)


def resolve_logical_path(root: Path, logical_path: str) -> Path:
    """
    Map a logical archive path onto a concrete path under ``root``.

    Raises
    ------
    SafetyViolationError
        If the logical path is unsafe or would escape ``root``.
    """
    if not is_safe_logical_path(logical_path):
        raise SafetyViolationError(f"Unsafe logical path: {logical_path!r}")
    base = root.resolve()
    target = base.joinpath(*PurePosixPath(logical_path).parts)
    _assert_within(base, target.resolve(), purpose="logical path")
    return target


def validate_source_path(source: Path) -> Path:
    """
    Normalize a source path and refuse filesystem roots.

    A source that does not exist is not an error here: missing sources are
    skipped at backup time.

    Raises
    ------
    SafetyViolationError
        If the path is relative after expansion or is a filesystem root.
    """
    expanded = Path(source).expanduser()
    if not expanded.is_absolute():
        raise SafetyViolationError(f"Source path must be absolute: {source}")
    resolved = expanded.resolve()
    if len(resolved.parts) <= 1:
        raise SafetyViolationError(f"Refusing to use filesystem root as source: {resolved}")
    return resolved


def _assert_within(base: Path, candidate: Path, purpose: str) -> None:
    """Ensure candidate is within base after resolution."""
    try:
        candidate.relative_to(base)
    except ValueError as exc:
        raise SafetyViolationError(
            f"Unsafe path for {purpose}: {candidate} is not within {base}"
        ) from exc
