from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from .data_models import BackupType
from .filesystem import write_json_atomic
from .paths_and_safety import EnginePaths

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """
    Persisted engine settings.

    Notes
    -----
    Settings only control defaults. A missing or unreadable settings file is
    never an error; defaults apply.
    """

    archives_root: Path | None
    default_backup_type: BackupType
    max_workers: int | None

    @staticmethod
    def defaults() -> "EngineSettings":
        return EngineSettings(
            archives_root=None,
            default_backup_type=BackupType.FULL,
            max_workers=None,
        )

    def effective_archives_root(self, paths: EnginePaths) -> Path:
        """Return the configured archives root, or the engine default."""
        if self.archives_root is None:
            return paths.archives_root
        return self.archives_root.expanduser().resolve()


def load_settings(paths: EnginePaths) -> EngineSettings:
    """
    Load settings from ``paths.settings_file``.

    Returns
    -------
    EngineSettings
        Loaded settings, or defaults if missing/unreadable. Invalid individual
        values fall back to their default.
    """
    path = paths.settings_file
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return EngineSettings.defaults()
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return EngineSettings.defaults()

    if not isinstance(payload, dict):
        return EngineSettings.defaults()

    archives_root_raw = payload.get("archives_root")
    archives_root = (
        Path(archives_root_raw)
        if isinstance(archives_root_raw, str) and archives_root_raw.strip()
        else None
    )

    try:
        default_backup_type = BackupType(payload.get("default_backup_type", BackupType.FULL.value))
    except ValueError:
        default_backup_type = BackupType.FULL

    max_workers = payload.get("max_workers")
    if not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1:
        max_workers = None

    return EngineSettings(
        archives_root=archives_root,
        default_backup_type=default_backup_type,
        max_workers=max_workers,
    )


def save_settings(paths: EnginePaths, settings: EngineSettings) -> None:
    """
    Save settings atomically.

    Raises
    ------
    OSError
        If the file cannot be written.
    """
    payload = {
        "archives_root": str(settings.archives_root) if settings.archives_root is not None else None,
        "default_backup_type": settings.default_backup_type.value,
        "max_workers": settings.max_workers,
    }
    write_json_atomic(paths.settings_file, payload)
