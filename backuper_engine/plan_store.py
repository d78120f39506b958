"""
Persistence of the configured plan collection.

Plans are stored as one JSON document::

    {"schema_version": "backuper_plans_v1", "plans": [<plan>, ...]}

A bare JSON list of plans is accepted on load as well.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

from .data_models import BackupPlan
from .errors import PlanStoreError
from .filesystem import write_json_atomic

PLANS_SCHEMA_VERSION = "backuper_plans_v1"


def save_plans(plans: Iterable[BackupPlan], path: Path) -> None:
    """
    Atomically write the plan collection to ``path``.

    Raises
    ------
    PlanValidationError
        If a plan is invalid.
    PlanStoreError
        If two plans share a name or the file cannot be written.
    """
    payload_plans = []
    seen: set[str] = set()
    for plan in plans:
        plan.validate()
        key = plan.name.lower()
        if key in seen:
            raise PlanStoreError(f"Duplicate plan name: {plan.name!r}")
        seen.add(key)
        payload_plans.append(plan.to_dict())

    try:
        write_json_atomic(path, {"schema_version": PLANS_SCHEMA_VERSION, "plans": payload_plans})
    except OSError as exc:
        raise PlanStoreError(f"Failed to write plans: {path} ({exc!s})") from exc


def load_plans(path: Path) -> list[BackupPlan]:
    """
    Load the plan collection from ``path``.

    Returns
    -------
    list[BackupPlan]
        Plans in stored order; empty if the file does not exist.

    Raises
    ------
    PlanStoreError
        If the file is unreadable, not valid JSON, or holds invalid plans.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except OSError as exc:
        raise PlanStoreError(f"Failed to read plans: {path}") from exc

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PlanStoreError(f"Invalid JSON in plans file: {path}") from exc

    if isinstance(payload, dict):
        schema_version = payload.get("schema_version")
        if schema_version != PLANS_SCHEMA_VERSION:
            raise PlanStoreError(f"Unsupported plans schema_version: {schema_version!r}")
        raw_plans = payload.get("plans")
    else:
        raw_plans = payload
    if not isinstance(raw_plans, list):
        raise PlanStoreError(f"Plans file must contain a list of plans: {path}")

    try:
        return [BackupPlan.from_dict(item) for item in raw_plans]
    except (ValueError, TypeError, AttributeError) as exc:
        raise PlanStoreError(f"Invalid plan in {path}: {exc!s}") from exc


def find_plan(plans: Iterable[BackupPlan], name: str) -> BackupPlan | None:
    """Return the plan with ``name`` (case-insensitive), or None."""
    wanted = name.lower()
    for plan in plans:
        if plan.name.lower() == wanted:
            return plan
    return None
