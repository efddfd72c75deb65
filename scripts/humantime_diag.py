"""Humantime diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from datetime import timedelta
from pathlib import Path

from humantime.aggregation import aggregate_by_project, total_duration
from humantime.config import HumantimeSettings, SettingsLoadError, load_settings
from humantime.errors import HumantimeError, exit_code_for, format_error
from humantime.runtime import Runtime, configure_logging
from humantime.storage import BlockFilter
from humantime.storage.models import mask_url, utcnow


def load_runtime(settings: HumantimeSettings) -> Runtime:
    try:
        return Runtime.create(settings)
    except HumantimeError as exc:
        print(format_error(exc))
        raise SystemExit(int(exit_code_for(exc)))


def _settings(args: argparse.Namespace) -> HumantimeSettings:
    config_path = getattr(args, "config", None)
    try:
        return load_settings(Path(config_path) if config_path else None)
    except SettingsLoadError as exc:
        print(f"Settings unavailable: {exc}")
        raise SystemExit(1)


def _block_summary(block) -> dict[str, object] | None:
    if block is None:
        return None
    return {
        "key": block.key,
        "project_sid": block.project_sid,
        "task_sid": block.task_sid,
        "note": block.note,
        "timestamp_start": block.timestamp_start.isoformat(),
        "timestamp_end": block.timestamp_end.isoformat() if block.timestamp_end else None,
    }


def cmd_status(args: argparse.Namespace) -> None:
    runtime = load_runtime(_settings(args))
    try:
        active = runtime.active.get()
        disk = runtime.store.disk_report()
        payload = {
            "tracking": active.is_tracking,
            "active_block": _block_summary(runtime.active.get_active_block(runtime.blocks)),
            "previous_block_key": active.previous_block_key or None,
            "disk": disk.as_dict() if disk is not None else None,
            "integrity": runtime.store.check_integrity().as_dict(),
            "pending_notifications": runtime.queue.pending,
        }
    except HumantimeError as exc:
        print(format_error(exc))
        raise SystemExit(int(exit_code_for(exc)))
    finally:
        runtime.close()
    print(json.dumps(payload, indent=2))


def cmd_queue(args: argparse.Namespace) -> None:
    runtime = load_runtime(_settings(args))
    try:
        entries = runtime.queue.list()
    except HumantimeError as exc:
        print(format_error(exc))
        raise SystemExit(int(exit_code_for(exc)))
    finally:
        runtime.close()

    if args.limit is not None and args.limit > 0:
        entries = entries[: args.limit]

    payload = [
        {
            "id": entry.id,
            "webhook": entry.webhook_name,
            "url": mask_url(entry.url),
            "attempt_count": entry.attempt_count,
            "max_attempts": entry.max_attempts,
            "next_attempt_at": entry.next_attempt_at.isoformat(),
            "last_error": entry.last_error or None,
        }
        for entry in entries
    ]
    print(json.dumps(payload, indent=2))


def cmd_stats(args: argparse.Namespace) -> None:
    runtime = load_runtime(_settings(args))
    now = utcnow()
    criteria = BlockFilter(project_sid=args.project or "")
    if args.since_hours is not None and args.since_hours > 0:
        criteria.start_after = now - timedelta(hours=args.since_hours)

    try:
        blocks = runtime.blocks.list_filtered(criteria)
        projects = []
        for aggregate in aggregate_by_project(blocks, now):
            entry: dict[str, object] = {
                "project_sid": aggregate.project_sid,
                "block_count": aggregate.block_count,
                "duration_seconds": int(aggregate.duration.total_seconds()),
            }
            if aggregate.project_sid and runtime.goals.exists(aggregate.project_sid):
                goal = runtime.goals.get(aggregate.project_sid)
                progress = goal.calculate_progress(aggregate.duration)
                entry["goal"] = {
                    "type": goal.type.value,
                    "target_seconds": int(goal.target.total_seconds()),
                    "percentage": round(progress.percentage, 1),
                    "is_complete": progress.is_complete,
                }
            projects.append(entry)
    except HumantimeError as exc:
        print(format_error(exc))
        raise SystemExit(int(exit_code_for(exc)))
    finally:
        runtime.close()

    payload = {
        "blocks_total": len(blocks),
        "total_seconds": int(total_duration(blocks, now).total_seconds()),
        "projects": projects,
    }
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Humantime diagnostics")
    parser.add_argument("--config", help="Path to a YAML settings file")
    parser.add_argument("--log-level", default=None, help="Override HUMANTIME_LOG_LEVEL")
    sub = parser.add_subparsers(dest="cmd")

    p_status = sub.add_parser("status", help="Show tracking state, disk space and integrity")
    p_status.set_defaults(func=cmd_status)

    p_queue = sub.add_parser("queue", help="List notifications waiting for retry")
    p_queue.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the next N entries",
    )
    p_queue.set_defaults(func=cmd_queue)

    p_stats = sub.add_parser("stats", help="Show tracked time per project")
    p_stats.add_argument("--project")
    p_stats.add_argument(
        "--since-hours",
        type=float,
        default=None,
        help="Only count blocks started within the last N hours",
    )
    p_stats.set_defaults(func=cmd_stats)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    if args.log_level:
        configure_logging(args.log_level.upper())
    args.func(args)


if __name__ == "__main__":
    main()
