from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from backuper_engine.backup.writer import ArchiveWriteResult
from backuper_engine.clock import FixedClock
from backuper_engine.data_models import BackupPlan, BackupSource, SourceKind
from backuper_engine.errors import PlanBusyError
from backuper_engine.restore.service import RestoreResult
from backuper_engine.tasks import BackgroundRunner

T1 = datetime(2025, 7, 1, 6, 0, 0, tzinfo=timezone.utc)


def _plan(tmp_path: Path) -> BackupPlan:
    live = tmp_path / "live"
    live.mkdir()
    (live / "a.txt").write_text("a", encoding="utf-8")
    return BackupPlan(
        name="Bg",
        sources=[BackupSource(name="live", path=str(live), kind=SourceKind.DIRECTORY)],
    )


def test_callback_receives_operation_result() -> None:
    results: list[object] = []
    with BackgroundRunner(max_workers=2) as runner:
        future = runner.submit("p", lambda: 42, results.append)
        assert future.result(timeout=10) == 42
    assert results == [42]


def test_failure_is_reported_as_none(caplog: pytest.LogCaptureFixture) -> None:
    results: list[object] = []

    def _boom() -> int:
        raise RuntimeError("broken")

    with BackgroundRunner() as runner:
        future = runner.submit("p", _boom, results.append, label="backup")
        assert future.result(timeout=10) is None
        assert not runner.is_busy("p")

    assert results == [None]
    assert "Background backup for plan 'p' failed" in caplog.text


def test_second_operation_for_busy_plan_is_refused() -> None:
    started = threading.Event()
    release = threading.Event()

    def _blocking() -> str:
        started.set()
        release.wait(timeout=10)
        return "done"

    with BackgroundRunner(max_workers=2) as runner:
        first = runner.submit("Docs", _blocking)
        assert started.wait(timeout=10)
        assert runner.is_busy("docs")

        with pytest.raises(PlanBusyError):
            runner.submit("DOCS", lambda: "again")

        other = runner.submit("Photos", lambda: "other")
        assert other.result(timeout=10) == "other"

        release.set()
        assert first.result(timeout=10) == "done"
        assert not runner.is_busy("Docs")
        assert runner.submit("Docs", lambda: "later").result(timeout=10) == "later"


def test_raising_callback_does_not_break_runner() -> None:
    def _bad_callback(_result: object) -> None:
        raise ValueError("callback bug")

    with BackgroundRunner() as runner:
        assert runner.submit("p", lambda: 1, _bad_callback).result(timeout=10) == 1
        assert runner.submit("p", lambda: 2).result(timeout=10) == 2


def test_backup_then_restore_in_background(tmp_path: Path) -> None:
    plan = _plan(tmp_path)
    archives_root = tmp_path / "archives"
    seen: list[object] = []

    with BackgroundRunner() as runner:
        backup = runner.create_backup(
            plan, archives_root, callback=seen.append, clock=FixedClock(T1)
        ).result(timeout=30)
        assert isinstance(backup, ArchiveWriteResult)

        restored = runner.restore(backup.archive_path, tmp_path / "out", seen.append).result(timeout=30)
        assert isinstance(restored, RestoreResult)

    assert seen == [backup, restored]
    assert (tmp_path / "out" / "live" / "a.txt").read_text(encoding="utf-8") == "a"


def test_export_and_import_in_background(tmp_path: Path) -> None:
    plan = _plan(tmp_path)
    archives_root = tmp_path / "archives"

    with BackgroundRunner() as runner:
        runner.create_backup(plan, archives_root, clock=FixedClock(T1)).result(timeout=30)
        bundle = runner.export_plan(
            plan, archives_root, tmp_path / "bg.smlbx", password="pw"
        ).result(timeout=30)
        assert bundle == tmp_path / "bg.smlbx"

        imported = runner.import_plan(bundle, tmp_path / "host", password="pw").result(timeout=30)

    assert imported.name == "Bg"
    assert (tmp_path / "host" / "Bg").is_dir()
