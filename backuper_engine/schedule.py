"""
Schedule evaluation for backup plans.

A plan is due when at least its schedule's interval has elapsed since its last
backup (inclusive boundary), or when it has never been backed up.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from .clock import Clock, SystemClock
from .data_models import BackupPlan, schedule_to_days

logger = logging.getLogger(__name__)


def is_due(plan: BackupPlan, now: datetime) -> bool:
    """
    Return True if ``plan`` should be backed up at ``now``.

    Parameters
    ----------
    plan:
        Plan to evaluate.
    now:
        Evaluation time. Naive values are treated as UTC.
    """
    if plan.last_backup_time is None:
        return True
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now >= plan.last_backup_time + timedelta(days=schedule_to_days(plan.schedule))


def evaluate_plan(plan: BackupPlan, now: datetime) -> bool:
    """Set ``plan.backup_required`` from :func:`is_due` and return it."""
    plan.backup_required = is_due(plan, now)
    return plan.backup_required


def check_due_backups(
    plans: Iterable[BackupPlan],
    callback: Callable[[BackupPlan], None] | None = None,
    *,
    now: datetime | None = None,
    clock: Clock | None = None,
    max_workers: int | None = None,
) -> list[BackupPlan]:
    """
    Evaluate plans in parallel and report each one through ``callback``.

    Parameters
    ----------
    plans:
        Plans to evaluate. Each one's ``backup_required`` flag is updated.
    callback:
        Called once per plan after evaluation, from a worker thread.
        Must be thread-safe.
    now:
        Evaluation time shared by every plan. Defaults to ``clock.now()``.
    clock:
        Clock used when ``now`` is not given.
    max_workers:
        Thread pool size (executor default when None).

    Returns
    -------
    list[BackupPlan]
        Due plans, in input order.

    Raises
    ------
    Exception
        Whatever ``callback`` raises is re-raised after all plans were evaluated.
    """
    plan_list = list(plans)
    if not plan_list:
        return []
    evaluation_time = now if now is not None else (clock or SystemClock()).now()

    def _evaluate(plan: BackupPlan) -> bool:
        due = evaluate_plan(plan, evaluation_time)
        if callback is not None:
            callback(plan)
        return due

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="backuper-schedule") as pool:
        futures = [pool.submit(_evaluate, plan) for plan in plan_list]
        results = [future.result() for future in futures]

    due = [plan for plan, is_plan_due in zip(plan_list, results) if is_plan_due]
    logger.debug("Evaluated %d plan(s); %d due", len(plan_list), len(due))
    return due


def expired_plans(plans: Iterable[BackupPlan]) -> list[BackupPlan]:
    """Return the plans whose ``backup_required`` flag is set, in input order."""
    return [plan for plan in plans if plan.backup_required]
