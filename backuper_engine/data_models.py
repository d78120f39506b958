"""Data models for Backuper.

This module defines the typed representation of backup plans, their sources,
and the per-archive manifest (``BackupInformation``) embedded in every archive.

The manifest's path mirror is the central abstraction: each archive records
every logical path that was live under the plan's sources at backup time,
whether or not the file's bytes are stored in that archive. Restores recover
deletions by pruning to the newest mirror; there are no tombstones.

The models are standard-library dataclasses with explicit ``to_dict`` and
``from_dict`` converters so serialization stays deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Self

from .errors import PlanValidationError
from .paths_and_safety import SafetyViolationError, validate_plan_name, validate_source_name

ISO_8601_UTC_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

FORMAT_VERSION = "1.0.1"

# Archive entry names reserved for metadata; sources must not shadow them.
PLAN_ENTRY_NAME = "plan.json"
BACKUP_INFO_ENTRY_NAME = "archive.backup"
RESERVED_ENTRY_NAMES: frozenset[str] = frozenset({PLAN_ENTRY_NAME, BACKUP_INFO_ENTRY_NAME})
_INVALID_ID_CHARACTERS = "/\\:"


class Schedule(str, Enum):
    """Backup intervals a plan can be configured with."""

    DAILY = "daily"
    TWO_DAYS = "two_days"
    THREE_DAYS = "three_days"
    FOUR_DAYS = "four_days"
    FIVE_DAYS = "five_days"
    SIX_DAYS = "six_days"
    SEVEN_DAYS = "seven_days"


SCHEDULE_DAYS: Mapping[Schedule, int] = {
    Schedule.DAILY: 1,
    Schedule.TWO_DAYS: 2,
    Schedule.THREE_DAYS: 3,
    Schedule.FOUR_DAYS: 4,
    Schedule.FIVE_DAYS: 5,
    Schedule.SIX_DAYS: 6,
    Schedule.SEVEN_DAYS: 7,
}


class SourceKind(str, Enum):
    """Kinds of backup sources."""

    FILE = "file"
    DIRECTORY = "directory"


class BackupType(str, Enum):
    """Archive types: self-sufficient, or dependent on a predecessor."""

    FULL = "full"
    INCREMENTAL = "incremental"


def parse_schedule(value: Any) -> Schedule | str:
    """
    Parse a persisted schedule value.

    Unknown values are preserved as strings rather than rejected; they
    evaluate to a one-day interval.
    """
    if isinstance(value, Schedule):
        return value
    try:
        return Schedule(str(value))
    except ValueError:
        return str(value)


def schedule_to_days(schedule: Schedule | str) -> int:
    """
    Map a schedule to its interval in whole days.

    Returns
    -------
    int
        1 through 7. Unrecognized values map to 1 (back up more often, never less).
    """
    parsed = parse_schedule(schedule)
    if isinstance(parsed, Schedule):
        return SCHEDULE_DAYS.get(parsed, 1)
    return 1


def datetime_to_iso_utc(dt: datetime) -> str:
    """Serialize a timezone-aware datetime as ``YYYY-MM-DDTHH:MM:SSZ``.

    Raises
    ------
    ValueError
        If `dt` is naive (has no timezone).
    """

    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).strftime(ISO_8601_UTC_FORMAT)


def datetime_from_iso_utc(value: str) -> datetime:
    """Parse a ``YYYY-MM-DDTHH:MM:SSZ`` timestamp as an aware UTC datetime."""

    dt = datetime.strptime(value, ISO_8601_UTC_FORMAT)
    return dt.replace(tzinfo=timezone.utc)


def _optional_datetime_to_iso(dt: datetime | None) -> str | None:
    return None if dt is None else datetime_to_iso_utc(dt)


def _optional_datetime_from_iso(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return datetime_from_iso_utc(str(value))


def _require_keys(payload: Mapping[str, Any], keys: set[str], *, context: str) -> None:
    missing = keys.difference(payload.keys())
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ValueError(f"Missing required keys in {context}: {missing_str}")


@dataclass(frozen=True, slots=True)
class BackupSource:
    """
    One file or directory root tracked by a plan.

    Attributes
    ----------
    name:
        Logical root name used inside archives.
    path:
        Absolute filesystem location.
    kind:
        Whether the source is a single file or a directory tree.
    """

    name: str
    path: str
    kind: SourceKind

    def validate(self) -> None:
        """Validate the source name.

        Raises
        ------
        PlanValidationError
            If the name is unsafe or shadows a metadata entry.
        """

        try:
            validate_source_name(self.name)
        except SafetyViolationError as exc:
            raise PlanValidationError(str(exc)) from exc
        if self.name.strip().lower() in RESERVED_ENTRY_NAMES:
            raise PlanValidationError(f"Source name is reserved: {self.name!r}")
        if not str(self.path).strip():
            raise PlanValidationError(f"Source {self.name!r} has an empty path")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Construct a :class:`BackupSource` from a mapping."""

        _require_keys(payload, {"name", "path", "kind"}, context="source")
        return cls(
            name=str(payload["name"]),
            path=str(payload["path"]),
            kind=SourceKind(str(payload["kind"])),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "path": self.path, "kind": self.kind.value}


@dataclass(slots=True)
class BackupPlan:
    """
    A named, scheduled collection of backup sources.

    Notes
    -----
    - ``name`` doubles as the plan's archive folder name.
    - ``last_backup_time`` and ``last_backup_id`` change only through
      :meth:`record_backup`, after an archive has been finalized.
    - ``backup_required`` is transient; it is set by the scheduling evaluator
      and never serialized.
    """

    name: str
    schedule: Schedule | str = Schedule.DAILY
    last_backup_time: datetime | None = None
    last_backup_id: str = ""
    sources: list[BackupSource] = field(default_factory=list)
    backup_required: bool = False

    def validate(self) -> None:
        """Validate invariant rules for this plan.

        Raises
        ------
        PlanValidationError
            If the plan name is unsafe, a source is invalid, or two sources
            share a name (case-insensitively).
        """

        try:
            validate_plan_name(self.name)
        except SafetyViolationError as exc:
            raise PlanValidationError(str(exc)) from exc

        if self.last_backup_time is not None and self.last_backup_time.tzinfo is None:
            raise PlanValidationError("last_backup_time must be timezone-aware")

        seen: set[str] = set()
        for source in self.sources:
            source.validate()
            key = source.name.lower()
            if key in seen:
                raise PlanValidationError(
                    f"Duplicate source name in plan {self.name!r}: {source.name!r}"
                )
            seen.add(key)

    def contains_source(self, name: str) -> bool:
        """Return True if a source with this name exists (case-insensitive)."""
        wanted = name.lower()
        return any(source.name.lower() == wanted for source in self.sources)

    def add_source(self, source: BackupSource) -> None:
        """
        Append a source to the plan.

        Raises
        ------
        PlanValidationError
            If the source is invalid or its name is already taken.
        """
        source.validate()
        if self.contains_source(source.name):
            raise PlanValidationError(
                f"Plan {self.name!r} already has a source named {source.name!r}"
            )
        self.sources.append(source)

    def record_backup(self, backup_id: str, backup_time: datetime) -> None:
        """
        Record a finalized archive as the plan's most recent backup.

        Raises
        ------
        ValueError
            If ``backup_time`` is naive or earlier than the current
            ``last_backup_time``.
        """
        if backup_time.tzinfo is None:
            raise ValueError("backup_time must be timezone-aware")
        if self.last_backup_time is not None and backup_time < self.last_backup_time:
            raise ValueError(
                f"backup_time {backup_time.isoformat()} precedes last backup "
                f"{self.last_backup_time.isoformat()} for plan {self.name!r}"
            )
        self.last_backup_time = backup_time
        self.last_backup_id = backup_id

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Parse a plan from a JSON mapping.

        Raises
        ------
        ValueError
            If required fields are missing or malformed.
        """

        _require_keys(payload, {"name", "schedule"}, context="plan")
        sources_raw = payload.get("sources", [])
        if not isinstance(sources_raw, list):
            raise ValueError("plan.sources must be a list")
        return cls(
            name=str(payload["name"]),
            schedule=parse_schedule(payload["schedule"]),
            last_backup_time=_optional_datetime_from_iso(payload.get("last_backup_time")),
            last_backup_id=str(payload.get("last_backup_id") or ""),
            sources=[BackupSource.from_dict(item) for item in sources_raw],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert this plan to a JSON-serializable dict (without the transient flag)."""

        schedule = self.schedule.value if isinstance(self.schedule, Schedule) else self.schedule
        return {
            "name": self.name,
            "schedule": schedule,
            "last_backup_time": _optional_datetime_to_iso(self.last_backup_time),
            "last_backup_id": self.last_backup_id,
            "sources": [source.to_dict() for source in self.sources],
        }


@dataclass(frozen=True, slots=True)
class BackupInformation:
    """Per-archive manifest, stored in the ``archive.backup`` entry.

    Attributes
    ----------
    backup_id:
        The archive's own identifier (its file stem).
    format_version:
        Container format version string.
    backup_type:
        Full or incremental.
    previous_backup_id:
        Identifier of the predecessor archive; empty for full archives.
    previous_backup_time:
        Backup time of the predecessor; ``None`` for full archives.
    backup_time:
        Time this backup was taken (whole seconds, UTC).
    path_mirror:
        Every logical path (directories and files) live at ``backup_time``.
    """

    backup_id: str
    backup_type: BackupType
    backup_time: datetime
    previous_backup_id: str = ""
    previous_backup_time: datetime | None = None
    path_mirror: tuple[str, ...] = ()
    format_version: str = FORMAT_VERSION

    def validate(self) -> None:
        """Validate manifest invariants.

        Raises
        ------
        ValueError
            If identifiers are missing or are not bare file names, or the
            predecessor link is inconsistent with the backup type.
        """

        if not self.backup_id.strip():
            raise ValueError("backup_id must be non-empty")
        for label, value in (("backup_id", self.backup_id), ("previous_backup_id", self.previous_backup_id)):
            # Identifiers name sibling files in the plan folder.
            if value in {".", ".."} or any(ch in value for ch in _INVALID_ID_CHARACTERS):
                raise ValueError(f"{label} must be a bare archive identifier: {value!r}")
        if self.backup_time.tzinfo is None:
            raise ValueError("backup_time must be timezone-aware")
        if self.backup_type is BackupType.INCREMENTAL and not self.previous_backup_id:
            raise ValueError("incremental archives must reference a previous_backup_id")
        if self.backup_type is BackupType.FULL and self.previous_backup_id:
            raise ValueError("full archives must not reference a previous_backup_id")

    def mirror_set(self) -> frozenset[str]:
        """Return the path mirror as a set for membership tests."""
        return frozenset(self.path_mirror)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Parse and validate a manifest from a JSON mapping."""

        _require_keys(
            payload,
            {"backup_id", "format_version", "backup_type", "backup_time", "path_mirror"},
            context="backup information",
        )
        mirror_raw = payload["path_mirror"]
        if not isinstance(mirror_raw, list):
            raise ValueError("path_mirror must be a list")
        info = cls(
            backup_id=str(payload["backup_id"]),
            format_version=str(payload["format_version"]),
            backup_type=BackupType(str(payload["backup_type"])),
            previous_backup_id=str(payload.get("previous_backup_id") or ""),
            previous_backup_time=_optional_datetime_from_iso(payload.get("previous_backup_time")),
            backup_time=datetime_from_iso_utc(str(payload["backup_time"])),
            path_mirror=tuple(str(item) for item in mirror_raw),
        )
        info.validate()
        return info

    def to_dict(self) -> dict[str, Any]:
        self.validate()
        return {
            "backup_id": self.backup_id,
            "format_version": self.format_version,
            "backup_type": self.backup_type.value,
            "previous_backup_id": self.previous_backup_id,
            "previous_backup_time": _optional_datetime_to_iso(self.previous_backup_time),
            "backup_time": datetime_to_iso_utc(self.backup_time),
            "path_mirror": list(self.path_mirror),
        }
