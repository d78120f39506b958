from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from backuper_engine.backup.service import create_backup
from backuper_engine.clock import FixedClock
from backuper_engine.data_models import BackupPlan, BackupSource, BackupType, SourceKind
from backuper_engine.journal import OperationJournal
from backuper_engine.restore.service import restore_archive, restore_in_place

T1 = datetime(2025, 4, 1, 9, 0, 0, tzinfo=timezone.utc)
T2 = T1 + timedelta(days=1)
T3 = T2 + timedelta(days=1)


def _set_mtime(path: Path, when: datetime) -> None:
    ts = when.timestamp()
    os.utime(path, (ts, ts))


def _write(path: Path, text: str, when: datetime) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    _set_mtime(path, when)


def _snapshot(root: Path) -> dict[str, str | None]:
    """Map relative path -> file text (None for directories)."""
    result: dict[str, str | None] = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        result[rel] = None if path.is_dir() else path.read_text(encoding="utf-8")
    return result


def _setup(tmp_path: Path) -> tuple[BackupPlan, Path, Path]:
    live = tmp_path / "live" / "project"
    _write(live / "e.txt", "echo", T1 - timedelta(hours=1))
    _write(live / "f.txt", "foxtrot", T1 - timedelta(hours=1))
    _write(live / "nested" / "n.txt", "november", T1 - timedelta(hours=1))
    (live / "blank").mkdir()
    settings = tmp_path / "live" / "settings.ini"
    _write(settings, "[a]\nx=1\n", T1 - timedelta(hours=1))

    plan = BackupPlan(
        name="Work",
        sources=[
            BackupSource(name="project", path=str(live), kind=SourceKind.DIRECTORY),
            BackupSource(name="settings.ini", path=str(settings), kind=SourceKind.FILE),
        ],
    )
    return plan, live, tmp_path / "archives"


def test_full_round_trip_reproduces_sources(tmp_path: Path) -> None:
    plan, live, archives_root = _setup(tmp_path)
    result = create_backup(plan=plan, archives_root=archives_root, clock=FixedClock(T1))

    destination = tmp_path / "restored"
    restored = restore_archive(archive_path=result.archive_path, destination_root=destination)

    assert restored.chain == (result.backup_id,)
    assert restored.extracted_files == 4
    assert _snapshot(destination / "project") == _snapshot(live)
    assert (destination / "settings.ini").read_text(encoding="utf-8") == "[a]\nx=1\n"


def test_incremental_restore_drops_deleted_and_adds_new_files(tmp_path: Path) -> None:
    plan, live, archives_root = _setup(tmp_path)
    first = create_backup(plan=plan, archives_root=archives_root, clock=FixedClock(T1))

    (live / "f.txt").unlink()
    _write(live / "g.txt", "golf", T1 + timedelta(hours=3))
    _write(live / "e.txt", "echo v2", T1 + timedelta(hours=3))
    second = create_backup(
        plan=plan,
        archives_root=archives_root,
        backup_type=BackupType.INCREMENTAL,
        clock=FixedClock(T2),
    )
    assert second.backup_type is BackupType.INCREMENTAL

    destination = tmp_path / "restored"
    restored = restore_archive(archive_path=second.archive_path, destination_root=destination)

    assert restored.chain == (second.backup_id, first.backup_id)
    assert not (destination / "project" / "f.txt").exists()
    assert (destination / "project" / "g.txt").read_text(encoding="utf-8") == "golf"
    assert (destination / "project" / "e.txt").read_text(encoding="utf-8") == "echo v2"
    assert (destination / "project" / "nested" / "n.txt").read_text(encoding="utf-8") == "november"
    assert restored.reconcile.deleted_files == ("project/f.txt",)
    assert _snapshot(destination / "project") == _snapshot(live)


def test_three_link_chain_restores_newest_state(tmp_path: Path) -> None:
    plan, live, archives_root = _setup(tmp_path)
    create_backup(plan=plan, archives_root=archives_root, clock=FixedClock(T1))

    _write(live / "e.txt", "echo v2", T1 + timedelta(hours=1))
    create_backup(
        plan=plan, archives_root=archives_root, backup_type=BackupType.INCREMENTAL, clock=FixedClock(T2)
    )

    _write(live / "e.txt", "echo v3", T2 + timedelta(hours=1))
    (live / "nested" / "n.txt").unlink()
    (live / "nested").rmdir()
    third = create_backup(
        plan=plan, archives_root=archives_root, backup_type=BackupType.INCREMENTAL, clock=FixedClock(T3)
    )

    destination = tmp_path / "restored"
    restored = restore_archive(archive_path=third.archive_path, destination_root=destination)

    assert len(restored.chain) == 3
    assert (destination / "project" / "e.txt").read_text(encoding="utf-8") == "echo v3"
    assert not (destination / "project" / "nested").exists()
    assert restored.reconcile.deleted_directories == ("project/nested",)


def test_restore_over_existing_destination_prunes_foreign_files(tmp_path: Path) -> None:
    plan, live, archives_root = _setup(tmp_path)
    result = create_backup(plan=plan, archives_root=archives_root, clock=FixedClock(T1))

    destination = tmp_path / "restored"
    _write(destination / "project" / "f.txt", "stale content", T1)
    _write(destination / "project" / "junk.bin", "junk", T1)
    _write(destination / "unrelated" / "u.txt", "u", T1)

    restore_archive(archive_path=result.archive_path, destination_root=destination)

    assert (destination / "project" / "f.txt").read_text(encoding="utf-8") == "foxtrot"
    assert not (destination / "project" / "junk.bin").exists()
    assert not (destination / "unrelated").exists()


def test_restore_journal_records_chain_and_completion(tmp_path: Path) -> None:
    plan, _live, archives_root = _setup(tmp_path)
    result = create_backup(plan=plan, archives_root=archives_root, clock=FixedClock(T1))
    journal = OperationJournal(tmp_path / "logs" / "journal.jsonl", clock=FixedClock(T2))

    restore_archive(archive_path=result.archive_path, destination_root=tmp_path / "out", journal=journal)

    events = [e["event"] for e in journal.read_events()]
    assert events == ["restore_started", "chain_resolved", "archive_extracted", "restore_completed"]


def test_restore_in_place_puts_sources_back(tmp_path: Path) -> None:
    plan, live, archives_root = _setup(tmp_path)
    create_backup(plan=plan, archives_root=archives_root, clock=FixedClock(T1))
    _write(live / "e.txt", "echo v2", T1 + timedelta(hours=1))
    second = create_backup(
        plan=plan, archives_root=archives_root, backup_type=BackupType.INCREMENTAL, clock=FixedClock(T2)
    )
    expected = _snapshot(live)

    # Damage the live data after the last backup.
    (live / "e.txt").write_text("corrupted", encoding="utf-8")
    (live / "nested" / "n.txt").unlink()
    _write(live / "new_after_backup.txt", "x", T3)
    settings = tmp_path / "live" / "settings.ini"
    settings.unlink()

    work_root = tmp_path / "work"
    result = restore_in_place(archive_path=second.archive_path, work_root=work_root)

    assert set(result.restored_sources) == {"project", "settings.ini"}
    assert result.skipped_sources == ()
    assert _snapshot(live) == expected
    assert settings.read_text(encoding="utf-8") == "[a]\nx=1\n"
    assert "project/new_after_backup.txt" in result.deleted_paths
    # Scratch space is released.
    assert list(work_root.iterdir()) == []


def test_restore_in_place_leaves_uncaptured_source_untouched(tmp_path: Path) -> None:
    plan, live, archives_root = _setup(tmp_path)
    late = tmp_path / "late"
    plan.add_source(BackupSource(name="late", path=str(late), kind=SourceKind.DIRECTORY))
    result = create_backup(plan=plan, archives_root=archives_root, clock=FixedClock(T1))

    _write(late / "created_later.txt", "later", T2)

    in_place = restore_in_place(archive_path=result.archive_path, work_root=tmp_path / "work")

    assert in_place.skipped_sources == ("late",)
    assert (late / "created_later.txt").read_text(encoding="utf-8") == "later"


def test_restore_in_place_keeps_symlinks_present_at_backup_time(tmp_path: Path) -> None:
    plan, live, archives_root = _setup(tmp_path)
    outside = tmp_path / "elsewhere.txt"
    outside.write_text("outside", encoding="utf-8")
    (live / "link.txt").symlink_to(outside)
    result = create_backup(plan=plan, archives_root=archives_root, clock=FixedClock(T1))

    in_place = restore_in_place(archive_path=result.archive_path, work_root=tmp_path / "work")

    assert (live / "link.txt").is_symlink()
    assert (live / "link.txt").read_text(encoding="utf-8") == "outside"
    assert "project/link.txt" not in in_place.deleted_paths
