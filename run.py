"""Command-line launcher for the migration backup engine.

Usage:
    python run.py full
    python run.py incremental
    python run.py snapshot "before next16 upgrade"
    python run.py snapshots
    python run.py backups
    python run.py validate full-1767089492432
    python run.py restore full-1767089492432
    python run.py restore-snapshot snapshot-1767089493001
    python run.py --config config/config.json --log-level DEBUG full
"""

import argparse
import json
import logging
import os
import sys

logger = logging.getLogger("migration_backup")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Migration backup engine: backups, snapshots, validation and restore",
    )
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to config.json (default: config/config.json when present, else built-in defaults)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("full", help="Create a full backup")
    sub.add_parser("incremental", help="Back up files changed since the last backup")
    snap = sub.add_parser("snapshot", help="Create a named snapshot")
    snap.add_argument("label")
    sub.add_parser("snapshots", help="List snapshots, oldest first")
    sub.add_parser("backups", help="List backups, oldest first")
    validate = sub.add_parser("validate", help="Verify a backup's integrity")
    validate.add_argument("backup_id")
    restore = sub.add_parser("restore", help="Restore files from a backup")
    restore.add_argument("backup_id")
    restore_snap = sub.add_parser("restore-snapshot", help="Restore files from a snapshot")
    restore_snap.add_argument("snapshot_id")
    return parser


def run_command(mgr, args) -> tuple[object, bool]:
    """Execute one subcommand; returns (JSON-ready payload, ok)."""
    if args.command == "full":
        return mgr.create_full_backup().to_dict(), True
    if args.command == "incremental":
        return mgr.create_incremental_backup().to_dict(), True
    if args.command == "snapshot":
        return mgr.create_snapshot(args.label).to_dict(), True
    if args.command == "snapshots":
        return [s.to_dict() for s in mgr.list_snapshots()], True
    if args.command == "backups":
        return [b.to_dict() for b in mgr.list_backups()], True
    if args.command == "validate":
        result = mgr.validate_backup(args.backup_id)
    elif args.command == "restore":
        result = mgr.restore_from_backup(args.backup_id)
    else:
        result = mgr.restore_from_snapshot(args.snapshot_id)
    return result.to_dict(), result.success


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    from src.backup.backup_manager import BackupManager

    with BackupManager(config_path=args.config) as mgr:
        payload, ok = run_command(mgr, args)

    json.dump(payload, sys.stdout, indent=2)
    sys.stdout.write("\n")
    if not ok:
        logger.error("%s failed", args.command)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
