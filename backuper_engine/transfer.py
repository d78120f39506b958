"""
Plan export and import.

An export bundle is a single container file holding:

- ``plan.json``: the plan definition;
- ``<plan name>/<id>.smlb``: every archive in the plan's folder.

Import unpacks a bundle into the archives root under the plan's name and
refuses, without changing anything, when that folder already exists.
Bundles can optionally be wrapped in the password envelope from
:mod:`backuper_engine.crypto`; the plaintext bundle only ever exists inside
a scratch directory that is removed afterwards.
"""

from __future__ import annotations

import json
import logging
import os
import tarfile
import zipfile
from pathlib import Path

import zstandard as zstd

from .catalog import list_archives
from .compression import (
    CompressionFormat,
    bundle_format_for,
    bundle_suffix,
    compress_directory,
    detect_bundle_format,
    extract_bundle,
)
from .crypto import decrypt_file, encrypt_file
from .data_models import PLAN_ENTRY_NAME, BackupPlan
from .errors import (
    DecryptionError,
    PlanAlreadyExistsError,
    PlanValidationError,
    TransferError,
)
from .filesystem import copy_file_atomic, scratch_directory, write_json_atomic
from .paths_and_safety import SafetyViolationError, plan_folder

logger = logging.getLogger(__name__)

_BUNDLE_READ_ERRORS = (
    OSError,
    ValueError,
    zipfile.BadZipFile,
    tarfile.TarError,
    zstd.ZstdError,
    SafetyViolationError,
)


def _resolve_format(destination_file: Path, format: CompressionFormat | None) -> CompressionFormat:
    if format is not None:
        return format
    try:
        return bundle_format_for(destination_file)
    except ValueError:
        return CompressionFormat.ZIP


def export_plan(
    plan: BackupPlan,
    archives_root: Path,
    destination_file: Path,
    *,
    format: CompressionFormat | None = None,
    overwrite: bool = False,
) -> Path:
    """
    Bundle a plan and all of its archives into ``destination_file``.

    Parameters
    ----------
    plan:
        Plan to export.
    archives_root:
        Parent of all plan folders.
    destination_file:
        Bundle path. Any directory; need not be under the archives root.
    format:
        Container format. Inferred from the file name when None, defaulting
        to zip.
    overwrite:
        Replace an existing ``destination_file``.

    Returns
    -------
    pathlib.Path
        The bundle path.

    Raises
    ------
    TransferError
        If the bundle cannot be written or the destination exists.
    PlanValidationError
        If the plan is invalid.
    """
    plan.validate()
    bundle_format = _resolve_format(destination_file, format)
    archives = list_archives(plan.name, archives_root)

    try:
        with scratch_directory(destination_file.parent, "export") as scratch:
            write_json_atomic(scratch / PLAN_ENTRY_NAME, plan.to_dict())
            staged_folder = scratch / plan.name
            staged_folder.mkdir()
            for archive in archives:
                copy_file_atomic(archive, staged_folder / archive.name)

            result = compress_directory(
                source_root=scratch,
                output_path=destination_file,
                format=bundle_format,
                overwrite=overwrite,
            )
    except (OSError, ValueError) as exc:
        raise TransferError(f"Failed to export plan {plan.name!r}: {exc!s}") from exc

    logger.info(
        "Exported plan %r with %d archive(s) to %s",
        plan.name,
        len(archives),
        result.archive_path,
    )
    return result.archive_path


def _read_bundle_plan(plan_file: Path) -> BackupPlan:
    if not plan_file.is_file():
        raise TransferError(f"Bundle has no {PLAN_ENTRY_NAME!r}")
    try:
        plan = BackupPlan.from_dict(json.loads(plan_file.read_text(encoding="utf-8")))
        plan.validate()
    except (OSError, json.JSONDecodeError) as exc:
        raise TransferError(f"Unreadable {PLAN_ENTRY_NAME!r} in bundle: {exc!s}") from exc
    except (ValueError, TypeError, PlanValidationError) as exc:
        raise TransferError(f"Invalid plan in bundle: {exc!s}") from exc
    return plan


def import_plan(bundle_path: Path, archives_root: Path) -> BackupPlan:
    """
    Unpack a bundle into ``archives_root``.

    Returns
    -------
    BackupPlan
        The imported plan definition.

    Raises
    ------
    TransferError
        If the bundle is unreadable or has no ``plan.json``.
    PlanAlreadyExistsError
        If the plan's folder already exists; nothing is changed.
    """
    if not bundle_path.is_file():
        raise TransferError(f"Bundle not found: {bundle_path}")

    with scratch_directory(archives_root, "import") as scratch:
        try:
            extract_bundle(archive_path=bundle_path, destination_dir=scratch)
        except _BUNDLE_READ_ERRORS as exc:
            raise TransferError(f"Failed to unpack bundle {bundle_path}: {exc!s}") from exc

        plan = _read_bundle_plan(scratch / PLAN_ENTRY_NAME)
        folder = plan_folder(plan.name, archives_root)
        if folder.exists():
            raise PlanAlreadyExistsError(
                f"Plan {plan.name!r} already exists in {archives_root}; import refused"
            )

        staged_folder = scratch / plan.name
        try:
            staged_folder.mkdir(exist_ok=True)
            os.rename(staged_folder, folder)
        except OSError as exc:
            raise TransferError(f"Failed to move imported archives into {folder}: {exc!s}") from exc

    logger.info("Imported plan %r into %s", plan.name, folder)
    return plan


def export_plan_encrypted(
    plan: BackupPlan,
    archives_root: Path,
    destination_file: Path,
    password: str,
    *,
    format: CompressionFormat = CompressionFormat.ZIP,
    overwrite: bool = False,
) -> Path:
    """
    Export a plan and wrap the bundle in a password envelope.

    Raises
    ------
    TransferError
        If export or encryption fails, or the destination exists.
    """
    if destination_file.exists() and not overwrite:
        raise TransferError(f"Refusing to overwrite existing bundle: {destination_file}")

    with scratch_directory(destination_file.parent, "export-secure") as scratch:
        plain = export_plan(
            plan,
            archives_root,
            scratch / f"bundle{bundle_suffix(format)}",
            format=format,
        )
        try:
            return encrypt_file(plain, password, output=destination_file)
        except (OSError, ValueError) as exc:
            raise TransferError(f"Failed to encrypt bundle: {exc!s}") from exc


def import_plan_encrypted(bundle_path: Path, archives_root: Path, password: str) -> BackupPlan:
    """
    Decrypt a password-protected bundle and import it.

    Raises
    ------
    DecryptionError
        If the password is wrong or the envelope is damaged.
    TransferError
        If the decrypted bundle cannot be imported.
    PlanAlreadyExistsError
        If the plan's folder already exists.
    """
    with scratch_directory(archives_root, "import-secure") as scratch:
        decrypted = scratch / "bundle"
        if not decrypt_file(bundle_path, password, decrypted):
            raise DecryptionError(f"Cannot decrypt bundle {bundle_path}")
        try:
            fmt = detect_bundle_format(decrypted)
        except (OSError, ValueError) as exc:
            raise TransferError(f"Decrypted bundle is not a plan export: {exc!s}") from exc
        plain = decrypted.rename(decrypted.with_name(f"bundle{bundle_suffix(fmt)}"))
        return import_plan(plain, archives_root)
