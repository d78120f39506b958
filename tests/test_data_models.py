from __future__ import annotations

import hashlib
from datetime import datetime, timezone

import pytest

from backuper_engine.archive_container import compute_backup_id
from backuper_engine.data_models import (
    BackupInformation,
    BackupPlan,
    BackupSource,
    BackupType,
    Schedule,
    SourceKind,
    parse_schedule,
    schedule_to_days,
)
from backuper_engine.errors import PlanValidationError


def _plan() -> BackupPlan:
    return BackupPlan(
        name="Documents",
        schedule=Schedule.THREE_DAYS,
        sources=[BackupSource(name="docs", path="/home/u/docs", kind=SourceKind.DIRECTORY)],
    )


def test_plan_round_trip_preserves_fields() -> None:
    plan = _plan()
    plan.record_backup("abc", datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
    plan.backup_required = True

    payload = plan.to_dict()
    loaded = BackupPlan.from_dict(payload)

    assert "backup_required" not in payload
    assert loaded.name == "Documents"
    assert loaded.schedule is Schedule.THREE_DAYS
    assert loaded.last_backup_id == "abc"
    assert loaded.last_backup_time == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert loaded.sources == plan.sources
    assert loaded.backup_required is False


def test_contains_source_is_case_insensitive() -> None:
    plan = _plan()
    assert plan.contains_source("DOCS")
    assert not plan.contains_source("music")


def test_add_source_rejects_duplicates_and_reserved_names() -> None:
    plan = _plan()
    with pytest.raises(PlanValidationError):
        plan.add_source(BackupSource(name="Docs", path="/other", kind=SourceKind.DIRECTORY))
    with pytest.raises(PlanValidationError):
        plan.add_source(BackupSource(name="plan.json", path="/x", kind=SourceKind.FILE))
    with pytest.raises(PlanValidationError):
        plan.add_source(BackupSource(name="Archive.Backup", path="/x", kind=SourceKind.FILE))


def test_record_backup_refuses_time_regression() -> None:
    plan = _plan()
    plan.record_backup("b", datetime(2025, 1, 2, tzinfo=timezone.utc))
    with pytest.raises(ValueError):
        plan.record_backup("a", datetime(2025, 1, 1, tzinfo=timezone.utc))
    assert plan.last_backup_id == "b"


def test_unknown_schedule_is_preserved_and_maps_to_one_day() -> None:
    plan = BackupPlan.from_dict({"name": "p", "schedule": "fortnightly"})
    assert plan.schedule == "fortnightly"
    assert plan.to_dict()["schedule"] == "fortnightly"
    assert schedule_to_days(plan.schedule) == 1


@pytest.mark.parametrize(
    ("schedule", "days"),
    [
        (Schedule.DAILY, 1),
        (Schedule.TWO_DAYS, 2),
        (Schedule.THREE_DAYS, 3),
        (Schedule.FOUR_DAYS, 4),
        (Schedule.FIVE_DAYS, 5),
        (Schedule.SIX_DAYS, 6),
        (Schedule.SEVEN_DAYS, 7),
    ],
)
def test_schedule_table(schedule: Schedule, days: int) -> None:
    assert schedule_to_days(schedule) == days
    assert parse_schedule(schedule.value) is schedule


def test_backup_information_rejects_inconsistent_links() -> None:
    when = datetime(2025, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        BackupInformation(backup_id="x", backup_type=BackupType.INCREMENTAL, backup_time=when).validate()
    with pytest.raises(ValueError):
        BackupInformation(
            backup_id="x",
            backup_type=BackupType.FULL,
            backup_time=when,
            previous_backup_id="y",
        ).validate()


@pytest.mark.parametrize("previous", ["../Other/abc", "sub/abc", "c:abc", "..", "a\\b"])
def test_backup_information_requires_bare_identifiers(previous: str) -> None:
    when = datetime(2025, 1, 2, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        BackupInformation(
            backup_id="b2",
            backup_type=BackupType.INCREMENTAL,
            backup_time=when,
            previous_backup_id=previous,
        ).validate()
    with pytest.raises(ValueError):
        BackupInformation(backup_id=previous, backup_type=BackupType.FULL, backup_time=when).validate()


def test_plan_with_padded_names_is_invalid() -> None:
    with pytest.raises(PlanValidationError):
        BackupPlan(name="Documents ").validate()
    with pytest.raises(PlanValidationError):
        BackupPlan(
            name="Documents",
            sources=[BackupSource(name=" docs", path="/home/u/docs", kind=SourceKind.DIRECTORY)],
        ).validate()


def test_backup_information_round_trip() -> None:
    info = BackupInformation(
        backup_id="b2",
        backup_type=BackupType.INCREMENTAL,
        backup_time=datetime(2025, 1, 2, tzinfo=timezone.utc),
        previous_backup_id="b1",
        previous_backup_time=datetime(2025, 1, 1, tzinfo=timezone.utc),
        path_mirror=("docs", "docs/a.txt"),
    )
    loaded = BackupInformation.from_dict(info.to_dict())
    assert loaded == info
    assert loaded.mirror_set() == {"docs", "docs/a.txt"}


def test_backup_id_is_md5_of_name_and_whole_second_stamp() -> None:
    when = datetime(2025, 3, 4, 5, 6, 7, 999_000, tzinfo=timezone.utc)
    expected = hashlib.md5(b"Documents_20250304050607").hexdigest()
    assert compute_backup_id("Documents", when) == expected
    assert compute_backup_id("Documents", when.replace(second=8)) != expected
