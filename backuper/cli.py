"""
Command-line interface for Backuper.

Notes
-----
The CLI is thin. It parses arguments, loads the plan collection and settings
from the data root, and delegates to engine modules.

Exit codes
----------
- 0: success
- 1: blocked by safety policy (unsafe names or paths)
- 2: domain error (missing plan, unrestorable archive, import refused, ...)
"""

from __future__ import annotations

import argparse
import dataclasses
import getpass
import logging
from pathlib import Path

from backuper_engine.archive_container import archive_path_for, read_backup_information
from backuper_engine.backup.service import create_backup
from backuper_engine.catalog import list_archives
from backuper_engine.compression import CompressionFormat
from backuper_engine.data_models import (
    BackupPlan,
    BackupSource,
    BackupType,
    Schedule,
    SourceKind,
    datetime_to_iso_utc,
)
from backuper_engine.errors import BackuperError, PlanStoreError
from backuper_engine.journal import OperationJournal
from backuper_engine.paths_and_safety import (
    EnginePaths,
    SafetyViolationError,
    ensure_engine_directories,
    plan_folder,
    resolve_engine_paths,
    validate_plan_name,
    validate_source_name,
    validate_source_path,
)
from backuper_engine.plan_store import find_plan, load_plans, save_plans
from backuper_engine.restore.chain import can_restore
from backuper_engine.restore.service import restore_archive, restore_in_place
from backuper_engine.schedule import check_due_backups
from backuper_engine.settings import EngineSettings, load_settings, save_settings
from backuper_engine.transfer import (
    export_plan,
    export_plan_encrypted,
    import_plan,
    import_plan_encrypted,
)

JOURNAL_FILE_NAME = "journal.jsonl"


def _add_data_root(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--data-root",
        default=None,
        help="Override Backuper data root (primarily for testing). If omitted, defaults are used.",
    )


def build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argument parser.

    Returns
    -------
    argparse.ArgumentParser
        Configured parser.
    """
    parser = argparse.ArgumentParser(
        prog="backuper",
        description="Backuper: scheduled full and incremental backups",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    init_p = sub.add_parser("init", help="Create the data root folder structure")
    _add_data_root(init_p)
    init_p.add_argument("--print-paths", action="store_true", help="Print resolved paths")

    plan_p = sub.add_parser("add-plan", help="Create a new backup plan")
    _add_data_root(plan_p)
    plan_p.add_argument("--plan", required=True, help="Plan name")
    plan_p.add_argument(
        "--schedule",
        choices=[s.value for s in Schedule],
        default=Schedule.DAILY.value,
        help="Backup interval (default: daily)",
    )

    source_p = sub.add_parser("add-source", help="Add a file or directory to a plan")
    _add_data_root(source_p)
    source_p.add_argument("--plan", required=True, help="Plan name")
    source_p.add_argument("--name", required=True, help="Source name (top-level entry in archives)")
    source_p.add_argument("--path", required=True, type=Path, help="Absolute path of the source")
    source_p.add_argument(
        "--kind",
        choices=[k.value for k in SourceKind],
        default=None,
        help="Source kind. Detected from the path when omitted.",
    )

    backup_p = sub.add_parser("backup", help="Create an archive for a plan")
    _add_data_root(backup_p)
    backup_p.add_argument("--plan", required=True, help="Plan name")
    kind = backup_p.add_mutually_exclusive_group(required=False)
    kind.add_argument("--full", action="store_true", help="Create a full archive")
    kind.add_argument("--incremental", action="store_true", help="Create an incremental archive")

    list_p = sub.add_parser("list", help="List plans, or a plan's archives")
    _add_data_root(list_p)
    list_p.add_argument("--plan", default=None, help="Plan whose archives to list")

    restore_p = sub.add_parser("restore", help="Restore a plan's archive")
    _add_data_root(restore_p)
    restore_p.add_argument("--plan", required=True, help="Plan name")
    restore_p.add_argument(
        "--id",
        dest="backup_id",
        default=None,
        help="Archive identifier (default: the plan's most recent archive)",
    )
    target = restore_p.add_mutually_exclusive_group(required=True)
    target.add_argument("--dest", type=Path, default=None, help="Destination root directory")
    target.add_argument(
        "--in-place",
        action="store_true",
        help="Restore each source to its original location",
    )

    due_p = sub.add_parser("due", help="Report plans whose backup is due")
    _add_data_root(due_p)

    export_p = sub.add_parser("export", help="Export a plan and its archives to one file")
    _add_data_root(export_p)
    export_p.add_argument("--plan", required=True, help="Plan name")
    export_p.add_argument("--out", required=True, type=Path, help="Bundle file to write")
    export_p.add_argument(
        "--format",
        choices=[f.value for f in CompressionFormat],
        default=None,
        help="Bundle format (default: from file name, else zip)",
    )
    export_p.add_argument("--encrypt", action="store_true", help="Protect the bundle with a password")
    export_p.add_argument("--overwrite", action="store_true", help="Replace an existing bundle")

    import_p = sub.add_parser("import", help="Import a plan bundle")
    _add_data_root(import_p)
    import_p.add_argument("--bundle", required=True, type=Path, help="Bundle file to import")
    import_p.add_argument("--encrypted", action="store_true", help="The bundle is password-protected")

    config_p = sub.add_parser("config", help="Show or change engine settings")
    _add_data_root(config_p)
    config_p.add_argument("--archives-root", type=Path, default=None, help="Folder holding plan archive folders")
    config_p.add_argument(
        "--default-type",
        choices=[t.value for t in BackupType],
        default=None,
        help="Backup type used when backup is run without --full/--incremental",
    )
    config_p.add_argument("--max-workers", type=int, default=None, help="Worker threads for batch operations")
    config_p.add_argument("--reset", action="store_true", help="Restore default settings before applying changes")

    return parser


def _read_password(*, confirm: bool) -> str:
    password = getpass.getpass("Password: ")
    if confirm and getpass.getpass("Repeat password: ") != password:
        raise ValueError("Passwords do not match.")
    if not password:
        raise ValueError("Password must not be empty.")
    return password


def _engine_paths(args: argparse.Namespace) -> EnginePaths:
    data_root = Path(args.data_root) if args.data_root else None
    return resolve_engine_paths(data_root)


def _archives_root(paths: EnginePaths, settings: EngineSettings) -> Path:
    return settings.effective_archives_root(paths)


def _require_plan(plans: list[BackupPlan], name: str) -> BackupPlan:
    plan = find_plan(plans, name)
    if plan is None:
        raise PlanStoreError(f"No plan named {name!r}")
    return plan


def _cmd_init(args: argparse.Namespace) -> int:
    paths = _engine_paths(args)
    ensure_engine_directories(paths)
    if args.print_paths:
        for key in ("data_root", "archives_root", "work_root", "plans_file", "settings_file"):
            print(f"{key}: {getattr(paths, key)}")
    return 0


def _cmd_add_plan(args: argparse.Namespace) -> int:
    paths = _engine_paths(args)
    plans = load_plans(paths.plans_file)
    name = validate_plan_name(args.plan)
    if find_plan(plans, name) is not None:
        print(f"ERROR: Plan {name!r} already exists.")
        return 2
    plans.append(BackupPlan(name=name, schedule=Schedule(args.schedule)))
    save_plans(plans, paths.plans_file)
    print(f"Created plan {name!r} ({args.schedule}).")
    return 0


def _cmd_add_source(args: argparse.Namespace) -> int:
    paths = _engine_paths(args)
    plans = load_plans(paths.plans_file)
    plan = _require_plan(plans, args.plan)

    name = validate_source_name(args.name)
    source_path = validate_source_path(args.path)
    if args.kind is not None:
        kind = SourceKind(args.kind)
    else:
        kind = SourceKind.DIRECTORY if source_path.is_dir() else SourceKind.FILE

    plan.add_source(BackupSource(name=name, path=str(source_path), kind=kind))
    save_plans(plans, paths.plans_file)
    print(f"Added {kind.value} source {name!r} -> {source_path} to plan {plan.name!r}.")
    return 0


def _cmd_backup(args: argparse.Namespace) -> int:
    paths = _engine_paths(args)
    settings = load_settings(paths)
    plans = load_plans(paths.plans_file)
    plan = _require_plan(plans, args.plan)

    if args.full:
        backup_type = BackupType.FULL
    elif args.incremental:
        backup_type = BackupType.INCREMENTAL
    else:
        backup_type = settings.default_backup_type

    result = create_backup(
        plan=plan,
        archives_root=_archives_root(paths, settings),
        backup_type=backup_type,
        journal=OperationJournal(paths.data_root / JOURNAL_FILE_NAME),
    )
    save_plans(plans, paths.plans_file)

    print(f"Created {result.backup_type.value} archive {result.backup_id}")
    print(f"  path: {result.archive_path}")
    print(f"  mirrored paths: {len(result.information.path_mirror)}")
    print(f"  files stored: {result.included_files}")
    for issue in result.scan_issues:
        print(f"  WARNING: {issue.path}: {issue.message}")
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    paths = _engine_paths(args)
    settings = load_settings(paths)
    plans = load_plans(paths.plans_file)

    if args.plan is None:
        for plan in plans:
            last = datetime_to_iso_utc(plan.last_backup_time) if plan.last_backup_time else "never"
            schedule = plan.schedule.value if isinstance(plan.schedule, Schedule) else plan.schedule
            print(f"{plan.name}\t{schedule}\tsources={len(plan.sources)}\tlast={last}")
        return 0

    plan = _require_plan(plans, args.plan)
    for archive in list_archives(plan.name, _archives_root(paths, settings)):
        info = read_backup_information(archive)
        restorable = "yes" if can_restore(archive) else "NO"
        print(
            f"{info.backup_id}\t{info.backup_type.value}\t"
            f"{datetime_to_iso_utc(info.backup_time)}\trestorable={restorable}"
        )
    return 0


def _cmd_restore(args: argparse.Namespace) -> int:
    paths = _engine_paths(args)
    settings = load_settings(paths)
    plans = load_plans(paths.plans_file)
    plan = _require_plan(plans, args.plan)
    archives_root = _archives_root(paths, settings)

    if args.backup_id:
        archive = archive_path_for(plan_folder(plan.name, archives_root), args.backup_id)
    else:
        archives = list_archives(plan.name, archives_root)
        if not archives:
            print(f"ERROR: Plan {plan.name!r} has no archives.")
            return 2
        archive = archives[-1]

    journal = OperationJournal(paths.data_root / JOURNAL_FILE_NAME)
    if args.in_place:
        ensure_engine_directories(paths)
        result = restore_in_place(archive_path=archive, work_root=paths.work_root, journal=journal)
        print(f"Restored {len(result.restored_sources)} source(s) in place from {result.backup_id}")
        for name in result.skipped_sources:
            print(f"  skipped (not in archive): {name}")
        return 0

    restored = restore_archive(archive_path=archive, destination_root=args.dest, journal=journal)
    print(f"Restored {restored.backup_id} into {restored.destination_root}")
    print(f"  chain: {' <- '.join(restored.chain)}")
    print(f"  files extracted: {restored.extracted_files}")
    return 0


def _cmd_due(args: argparse.Namespace) -> int:
    paths = _engine_paths(args)
    settings = load_settings(paths)
    plans = load_plans(paths.plans_file)
    for plan in check_due_backups(plans, max_workers=settings.max_workers):
        print(plan.name)
    return 0


def _cmd_export(args: argparse.Namespace) -> int:
    paths = _engine_paths(args)
    settings = load_settings(paths)
    plans = load_plans(paths.plans_file)
    plan = _require_plan(plans, args.plan)
    archives_root = _archives_root(paths, settings)
    fmt = CompressionFormat(args.format) if args.format else None

    if args.encrypt:
        bundle = export_plan_encrypted(
            plan,
            archives_root,
            args.out,
            _read_password(confirm=True),
            format=fmt or CompressionFormat.ZIP,
            overwrite=args.overwrite,
        )
    else:
        bundle = export_plan(plan, archives_root, args.out, format=fmt, overwrite=args.overwrite)
    print(f"Exported plan {plan.name!r} to {bundle}")
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    paths = _engine_paths(args)
    settings = load_settings(paths)
    archives_root = _archives_root(paths, settings)
    plans = load_plans(paths.plans_file)

    if args.encrypted:
        plan = import_plan_encrypted(args.bundle, archives_root, _read_password(confirm=False))
    else:
        plan = import_plan(args.bundle, archives_root)

    existing = find_plan(plans, plan.name)
    if existing is not None:
        plans.remove(existing)
    plans.append(plan)
    save_plans(plans, paths.plans_file)
    print(f"Imported plan {plan.name!r}")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    paths = _engine_paths(args)
    settings = EngineSettings.defaults() if args.reset else load_settings(paths)

    changes: dict[str, object] = {}
    if args.archives_root is not None:
        changes["archives_root"] = validate_source_path(args.archives_root)
    if args.default_type is not None:
        changes["default_backup_type"] = BackupType(args.default_type)
    if args.max_workers is not None:
        if args.max_workers < 1:
            raise ValueError("--max-workers must be at least 1.")
        changes["max_workers"] = args.max_workers

    if changes or args.reset:
        settings = dataclasses.replace(settings, **changes)
        save_settings(paths, settings)

    print(f"archives_root: {_archives_root(paths, settings)}")
    print(f"default_backup_type: {settings.default_backup_type.value}")
    print(f"max_workers: {settings.max_workers if settings.max_workers is not None else 'auto'}")
    return 0


_COMMANDS = {
    "init": _cmd_init,
    "add-plan": _cmd_add_plan,
    "add-source": _cmd_add_source,
    "backup": _cmd_backup,
    "list": _cmd_list,
    "restore": _cmd_restore,
    "due": _cmd_due,
    "export": _cmd_export,
    "import": _cmd_import,
    "config": _cmd_config,
}


def main(argv: list[str] | None = None) -> int:
    """
    CLI entry point.

    Parameters
    ----------
    argv:
        Optional argument vector. If None, argparse uses sys.argv.

    Returns
    -------
    int
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    handler = _COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        return handler(args)
    except SafetyViolationError as exc:
        print(f"ERROR: {exc}")
        return 1
    except (BackuperError, ValueError) as exc:
        print(f"ERROR: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
