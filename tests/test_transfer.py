from __future__ import annotations

import json
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from backuper_engine.backup.service import create_backup
from backuper_engine.catalog import list_archive_ids
from backuper_engine.clock import FixedClock
from backuper_engine.compression import CompressionFormat
from backuper_engine.data_models import BackupPlan, BackupSource, BackupType, SourceKind
from backuper_engine.errors import DecryptionError, PlanAlreadyExistsError, TransferError
from backuper_engine.restore.chain import can_restore
from backuper_engine.transfer import (
    export_plan,
    export_plan_encrypted,
    import_plan,
    import_plan_encrypted,
)

T1 = datetime(2025, 5, 1, 7, 0, 0, tzinfo=timezone.utc)


def _plan_with_two_archives(tmp_path: Path) -> tuple[BackupPlan, Path]:
    live = tmp_path / "live"
    live.mkdir()
    (live / "a.txt").write_text("alpha", encoding="utf-8")
    plan = BackupPlan(
        name="Photos",
        sources=[BackupSource(name="pics", path=str(live), kind=SourceKind.DIRECTORY)],
    )
    archives_root = tmp_path / "archives"
    create_backup(plan=plan, archives_root=archives_root, clock=FixedClock(T1))
    create_backup(
        plan=plan,
        archives_root=archives_root,
        backup_type=BackupType.INCREMENTAL,
        clock=FixedClock(T1 + timedelta(days=1)),
    )
    return plan, archives_root


@pytest.mark.parametrize(
    ("bundle_name", "format"),
    [("photos.zip", None), ("photos.tar.zst", None), ("photos.bundle", CompressionFormat.TAR_ZST)],
)
def test_export_import_round_trip(
    tmp_path: Path, bundle_name: str, format: CompressionFormat | None
) -> None:
    plan, archives_root = _plan_with_two_archives(tmp_path)
    expected_ids = list_archive_ids(plan.name, archives_root)

    bundle = export_plan(plan, archives_root, tmp_path / "out" / bundle_name, format=format)
    assert bundle.is_file()
    # No scratch directories are left beside the bundle.
    assert [p.name for p in bundle.parent.iterdir()] == [bundle_name]

    other_root = tmp_path / "other_machine" / "archives"
    imported = import_plan(bundle, other_root)

    assert imported.name == "Photos"
    assert imported.last_backup_id == plan.last_backup_id
    assert imported.to_dict() == plan.to_dict()
    assert list_archive_ids("Photos", other_root) == expected_ids
    newest = other_root / "Photos" / f"{plan.last_backup_id}.smlb"
    assert can_restore(newest)
    assert [p.name for p in other_root.iterdir()] == ["Photos"]


def test_zip_bundle_layout(tmp_path: Path) -> None:
    plan, archives_root = _plan_with_two_archives(tmp_path)
    bundle = export_plan(plan, archives_root, tmp_path / "photos.zip")

    with zipfile.ZipFile(bundle) as zf:
        names = sorted(zf.namelist())
        exported_plan = json.loads(zf.read("plan.json"))

    assert names[-1] == "plan.json"
    assert len([n for n in names if n.startswith("Photos/") and n.endswith(".smlb")]) == 2
    assert exported_plan["name"] == "Photos"


def test_import_refuses_existing_plan_and_changes_nothing(tmp_path: Path) -> None:
    plan, archives_root = _plan_with_two_archives(tmp_path)
    bundle = export_plan(plan, archives_root, tmp_path / "photos.zip")
    before = sorted(p.name for p in (archives_root / "Photos").iterdir())

    with pytest.raises(PlanAlreadyExistsError):
        import_plan(bundle, archives_root)

    assert sorted(p.name for p in (archives_root / "Photos").iterdir()) == before
    assert [p.name for p in archives_root.iterdir()] == ["Photos"]


def test_import_rejects_bundle_without_plan(tmp_path: Path) -> None:
    bundle = tmp_path / "broken.zip"
    with zipfile.ZipFile(bundle, "w") as zf:
        zf.writestr("Photos/readme.txt", "no plan here")
    archives_root = tmp_path / "archives"

    with pytest.raises(TransferError):
        import_plan(bundle, archives_root)

    assert list(archives_root.iterdir()) == []


def test_export_refuses_to_overwrite_without_flag(tmp_path: Path) -> None:
    plan, archives_root = _plan_with_two_archives(tmp_path)
    target = tmp_path / "photos.zip"
    target.write_bytes(b"existing")

    with pytest.raises(TransferError):
        export_plan(plan, archives_root, target)
    assert target.read_bytes() == b"existing"

    export_plan(plan, archives_root, target, overwrite=True)
    assert zipfile.is_zipfile(target)


def test_export_of_plan_without_archives(tmp_path: Path) -> None:
    plan = BackupPlan(name="Empty")
    bundle = export_plan(plan, tmp_path / "archives", tmp_path / "empty.zip")

    imported = import_plan(bundle, tmp_path / "elsewhere")

    assert imported.name == "Empty"
    assert (tmp_path / "elsewhere" / "Empty").is_dir()


def test_encrypted_round_trip(tmp_path: Path) -> None:
    plan, archives_root = _plan_with_two_archives(tmp_path)
    bundle = export_plan_encrypted(plan, archives_root, tmp_path / "photos.smlbx", "s3cret")

    assert not zipfile.is_zipfile(bundle)
    assert [p.name for p in tmp_path.iterdir() if p.name.startswith(".")] == []

    other_root = tmp_path / "restore_host"
    imported = import_plan_encrypted(bundle, other_root, "s3cret")

    assert imported.name == "Photos"
    assert len(list_archive_ids("Photos", other_root)) == 2


def test_encrypted_tar_zst_round_trip(tmp_path: Path) -> None:
    plan, archives_root = _plan_with_two_archives(tmp_path)
    bundle = export_plan_encrypted(
        plan, archives_root, tmp_path / "photos.enc", "pw", format=CompressionFormat.TAR_ZST
    )

    imported = import_plan_encrypted(bundle, tmp_path / "host", "pw")

    assert imported.name == "Photos"


def test_encrypted_import_with_wrong_password_fails_cleanly(tmp_path: Path) -> None:
    plan, archives_root = _plan_with_two_archives(tmp_path)
    bundle = export_plan_encrypted(plan, archives_root, tmp_path / "photos.smlbx", "right")
    other_root = tmp_path / "host"

    with pytest.raises(DecryptionError):
        import_plan_encrypted(bundle, other_root, "wrong")

    assert list(other_root.iterdir()) == []
