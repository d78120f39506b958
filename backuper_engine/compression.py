from __future__ import annotations

import os
import tarfile
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable

import zstandard as zstd

from .filesystem import unlink_best_effort
from .paths_and_safety import SafetyViolationError, is_safe_logical_path


class CompressionFormat(str, Enum):
    """
    Supported container formats for exported plan bundles.
    """

    ZIP = "zip"
    TAR_ZST = "tar.zst"


@dataclass(frozen=True, slots=True)
class CompressionResult:
    """
    Result of compressing a directory.

    Attributes
    ----------
    format:
        Compression format actually used.
    archive_path:
        Path to the created bundle file.
    file_count:
        Number of files stored.
    """

    format: CompressionFormat
    archive_path: Path
    file_count: int


def bundle_format_for(path: Path) -> CompressionFormat:
    """
    Infer the bundle format from a file name.

    Raises
    ------
    ValueError
        If the extension is not recognized.
    """
    lower = path.name.lower()
    if lower.endswith(".tar.zst") or lower.endswith(".tzst"):
        return CompressionFormat.TAR_ZST
    if lower.endswith(".zip"):
        return CompressionFormat.ZIP
    raise ValueError(f"Unsupported bundle type: {path}")


def compress_directory(
    *,
    source_root: Path,
    output_path: Path,
    format: CompressionFormat,
    overwrite: bool = False,
) -> CompressionResult:
    """
    Store every file under ``source_root`` in a single bundle file.

    Parameters
    ----------
    source_root:
        Directory whose contents become the bundle root (the directory name
        itself is not stored).
    output_path:
        Target bundle path. Written through a temp file and renamed.
    format:
        Container format.
    overwrite:
        If True, replace an existing ``output_path``.

    Returns
    -------
    CompressionResult

    Raises
    ------
    ValueError
        If inputs are invalid or the output exists and ``overwrite`` is False.
    OSError
        If filesystem writes fail.
    """
    source_root = source_root.resolve()
    if not source_root.is_dir():
        raise ValueError(f"source_root must be an existing directory: {source_root}")

    output_path = output_path.resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.exists() and not overwrite:
        raise ValueError(f"Refusing to overwrite existing bundle: {output_path}")

    temp_path = output_path.with_name(f".{output_path.name}.tmp")
    try:
        if format is CompressionFormat.ZIP:
            count = _write_zip(source_root=source_root, output_path=temp_path)
        elif format is CompressionFormat.TAR_ZST:
            count = _write_tar_zst(source_root=source_root, output_path=temp_path)
        else:
            raise ValueError(f"Unsupported compression format: {format!r}")
        os.replace(temp_path, output_path)
    finally:
        unlink_best_effort(temp_path)

    return CompressionResult(format=format, archive_path=output_path, file_count=count)


def extract_bundle(
    *,
    archive_path: Path,
    destination_dir: Path,
) -> Path:
    """
    Extract a bundle into destination_dir.

    Parameters
    ----------
    archive_path:
        Path to a zip or tar.zst bundle. The format is read from the file's
        leading bytes; the extension is only consulted when those are not
        recognized.
    destination_dir:
        Directory to extract into (created if missing).

    Returns
    -------
    pathlib.Path
        The destination_dir after extraction.

    Raises
    ------
    ValueError
        If neither the content nor the extension identifies the format.
    SafetyViolationError
        If a zip member would land outside destination_dir.
    OSError, zipfile.BadZipFile, tarfile.TarError, zstandard.ZstdError
        If extraction fails.
    """
    archive_path = archive_path.resolve()
    destination_dir = destination_dir.resolve()
    destination_dir.mkdir(parents=True, exist_ok=True)

    try:
        format = detect_bundle_format(archive_path)
    except ValueError:
        format = bundle_format_for(archive_path)
    if format is CompressionFormat.ZIP:
        with zipfile.ZipFile(archive_path, "r") as zf:
            for name in zf.namelist():
                if not is_safe_logical_path(name.rstrip("/")):
                    raise SafetyViolationError(f"Unsafe member in bundle {archive_path.name}: {name!r}")
            zf.extractall(destination_dir)
        return destination_dir

    _extract_tar_zst(archive_path=archive_path, destination_dir=destination_dir)
    return destination_dir


def _iter_files(source_root: Path) -> Iterable[Path]:
    for p in sorted(source_root.rglob("*")):
        if p.is_file() and not p.is_symlink():
            yield p


def _write_zip(*, source_root: Path, output_path: Path) -> int:
    count = 0
    with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for file_path in _iter_files(source_root):
            zf.write(file_path, file_path.relative_to(source_root).as_posix())
            count += 1
    return count


def _write_tar_zst(*, source_root: Path, output_path: Path) -> int:
    count = 0
    with output_path.open("wb") as raw:
        cctx = zstd.ZstdCompressor()
        with cctx.stream_writer(raw) as zst_stream:
            with tarfile.open(fileobj=zst_stream, mode="w|") as tf:
                for file_path in _iter_files(source_root):
                    arcname = file_path.relative_to(source_root).as_posix()
                    tf.add(file_path, arcname=arcname, recursive=False)
                    count += 1
    return count


def _extract_tar_zst(*, archive_path: Path, destination_dir: Path) -> None:
    with archive_path.open("rb") as raw:
        dctx = zstd.ZstdDecompressor()
        with dctx.stream_reader(raw) as reader:
            with tarfile.open(fileobj=reader, mode="r|") as tf:
                tf.extractall(destination_dir, filter="data")


_ZIP_MAGIC = b"PK"
_ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"


def detect_bundle_format(path: Path) -> CompressionFormat:
    """
    Identify a bundle's format from its leading bytes.

    Raises
    ------
    ValueError
        If the content is neither a zip nor a zstandard stream.
    OSError
        If the file cannot be read.
    """
    with path.open("rb") as handle:
        head = handle.read(4)
    if head.startswith(_ZIP_MAGIC):
        return CompressionFormat.ZIP
    if head == _ZSTD_MAGIC:
        return CompressionFormat.TAR_ZST
    raise ValueError(f"Unrecognized bundle content: {path}")


def bundle_suffix(format: CompressionFormat) -> str:
    """Return the file suffix used for a bundle format."""
    return f".{format.value}"
