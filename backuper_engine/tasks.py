"""
Background dispatch of top-level operations.

Each operation runs on a worker thread and reports through a completion
callback that receives the operation's result, or ``None`` if it failed.
Failures are logged; they never propagate into the caller.

The engine core does not lock plan folders. This runner refuses to start a
second operation for a plan that already has one in flight.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, TypeVar

from .backup.service import create_backup
from .clock import Clock
from .compression import CompressionFormat
from .data_models import BackupPlan, BackupType
from .errors import PlanBusyError
from .journal import OperationJournal
from .restore.service import restore_archive, restore_in_place
from .transfer import export_plan, export_plan_encrypted, import_plan, import_plan_encrypted

logger = logging.getLogger(__name__)

T = TypeVar("T")
Callback = Callable[[Any], None]


class BackgroundRunner:
    """
    Thread-pool runner for backup, restore, export and import operations.

    Notes
    -----
    Callbacks run on the worker thread that executed the operation; they must
    be thread-safe. A callback that raises is logged and otherwise ignored.
    """

    def __init__(self, max_workers: int | None = None) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="backuper-task",
        )
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    def __enter__(self) -> "BackgroundRunner":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown(wait=True)

    def is_busy(self, plan_name: str) -> bool:
        """Return True if an operation for ``plan_name`` is in flight."""
        with self._lock:
            return plan_name.lower() in self._in_flight

    def submit(
        self,
        plan_name: str,
        operation: Callable[[], T],
        callback: Callable[[T | None], None] | None = None,
        *,
        label: str = "operation",
    ) -> Future[T | None]:
        """
        Run ``operation`` on a worker thread.

        Raises
        ------
        PlanBusyError
            If an operation for ``plan_name`` is already in flight.
        """
        key = plan_name.lower()
        with self._lock:
            if key in self._in_flight:
                raise PlanBusyError(f"An operation for plan {plan_name!r} is already running")
            self._in_flight.add(key)

        try:
            return self._executor.submit(self._run, key, plan_name, label, operation, callback)
        except RuntimeError:
            self._release(key)
            raise

    def _release(self, key: str) -> None:
        with self._lock:
            self._in_flight.discard(key)

    def _run(
        self,
        key: str,
        plan_name: str,
        label: str,
        operation: Callable[[], T],
        callback: Callable[[T | None], None] | None,
    ) -> T | None:
        result: T | None = None
        try:
            result = operation()
        except Exception:  # noqa: BLE001
            logger.exception("Background %s for plan %r failed", label, plan_name)
        finally:
            self._release(key)

        if callback is not None:
            try:
                callback(result)
            except Exception:  # noqa: BLE001
                logger.exception("Completion callback for %s of plan %r raised", label, plan_name)
        return result

    def create_backup(
        self,
        plan: BackupPlan,
        archives_root: Path,
        backup_type: BackupType = BackupType.FULL,
        callback: Callback | None = None,
        *,
        clock: Clock | None = None,
        journal: OperationJournal | None = None,
    ) -> Future:
        """Dispatch :func:`create_backup`; the callback receives an ``ArchiveWriteResult``."""
        return self.submit(
            plan.name,
            lambda: create_backup(
                plan=plan,
                archives_root=archives_root,
                backup_type=backup_type,
                clock=clock,
                journal=journal,
            ),
            callback,
            label="backup",
        )

    def restore(
        self,
        archive_path: Path,
        destination_root: Path,
        callback: Callback | None = None,
        *,
        journal: OperationJournal | None = None,
    ) -> Future:
        """Dispatch :func:`restore_archive`; the callback receives a ``RestoreResult``."""
        return self.submit(
            archive_path.parent.name,
            lambda: restore_archive(
                archive_path=archive_path,
                destination_root=destination_root,
                journal=journal,
            ),
            callback,
            label="restore",
        )

    def restore_in_place(
        self,
        archive_path: Path,
        work_root: Path,
        callback: Callback | None = None,
        *,
        journal: OperationJournal | None = None,
    ) -> Future:
        """Dispatch :func:`restore_in_place`; the callback receives an ``InPlaceRestoreResult``."""
        return self.submit(
            archive_path.parent.name,
            lambda: restore_in_place(archive_path=archive_path, work_root=work_root, journal=journal),
            callback,
            label="in-place restore",
        )

    def export_plan(
        self,
        plan: BackupPlan,
        archives_root: Path,
        destination_file: Path,
        callback: Callback | None = None,
        *,
        password: str | None = None,
        format: CompressionFormat | None = None,
        overwrite: bool = False,
    ) -> Future:
        """Dispatch an export (encrypted when ``password`` is given); the callback receives the bundle path."""
        if password:
            operation = lambda: export_plan_encrypted(  # noqa: E731
                plan,
                archives_root,
                destination_file,
                password,
                format=format or CompressionFormat.ZIP,
                overwrite=overwrite,
            )
        else:
            operation = lambda: export_plan(  # noqa: E731
                plan,
                archives_root,
                destination_file,
                format=format,
                overwrite=overwrite,
            )
        return self.submit(plan.name, operation, callback, label="export")

    def import_plan(
        self,
        bundle_path: Path,
        archives_root: Path,
        callback: Callback | None = None,
        *,
        password: str | None = None,
    ) -> Future:
        """
        Dispatch an import; the callback receives the imported ``BackupPlan``.

        The plan name is unknown until the bundle is opened, so the in-flight
        guard is keyed on the bundle path.
        """
        if password:
            operation = lambda: import_plan_encrypted(bundle_path, archives_root, password)  # noqa: E731
        else:
            operation = lambda: import_plan(bundle_path, archives_root)  # noqa: E731
        return self.submit(f"import:{bundle_path}", operation, callback, label="import")

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for running operations."""
        self._executor.shutdown(wait=wait)
