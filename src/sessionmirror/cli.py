from __future__ import annotations

import argparse
import importlib
import json
from pathlib import Path
import sys
from typing import Iterable

from sessionmirror.config import MirrorSettings, load_settings
from sessionmirror.logs import configure_logging
from sessionmirror.mirror_engine import select_tool
from sessionmirror.run_service import STATUS_FAILED, STATUS_OK, BackupService, Report


EXIT_SUCCESS = 0
EXIT_OPERATION_FAILED = 1
EXIT_SKIPPED = 2
EXIT_INVALID_CONFIG = 3


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="session-mirror",
        description="Debounced one-way backup of the OpenCode session store",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML or JSON settings file")
    parser.add_argument("--destination", type=Path, default=None, help="Backup folder (overrides everything else)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Back up sessions now")
    sync_parser.add_argument("--force", action="store_true", help="Sync even if recently synced")

    restore_parser = subparsers.add_parser("restore", help="Restore sessions from the backup")
    restore_parser.add_argument("--confirm", action="store_true", help="Really overwrite the session store")

    subparsers.add_parser("status", help="Show backup statistics")
    subparsers.add_parser("show-config", help="Show resolved paths and timings")
    subparsers.add_parser("watch", help="Read lifecycle events from stdin and back up on activity")
    subparsers.add_parser("agent", help="Start the task tray agent")

    return parser


def build_service(settings: MirrorSettings) -> BackupService:
    return BackupService(settings)


def _exit_code(report: Report) -> int:
    if report.status == STATUS_OK:
        return EXIT_SUCCESS
    if report.status == STATUS_FAILED:
        return EXIT_OPERATION_FAILED
    return EXIT_SKIPPED


def _print_report(report: Report) -> int:
    stream = sys.stderr if report.status == STATUS_FAILED else sys.stdout
    print(report.text, file=stream)
    return _exit_code(report)


def _parse_event(line: str) -> str | None:
    stripped = line.strip()
    if not stripped:
        return None
    if not stripped.startswith("{"):
        return stripped
    try:
        payload = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    event_type = payload.get("type")
    return event_type if isinstance(event_type, str) else None


def cmd_show_config(settings: MirrorSettings) -> int:
    print(f"Source: {settings.source}")
    print(f"Destination: {settings.destination or '(unresolved)'}")
    print(f"Tool: {select_tool(settings.platform_tag).name}")
    print(f"Debounce window: {settings.debounce_seconds:g}s")
    print(f"Trigger delay: {settings.trigger_delay_seconds:g}s")
    print(f"Config file: {settings.config_path or '(none)'}")
    print(f"Log file: {settings.log_file}")
    return EXIT_SUCCESS


def cmd_watch(settings: MirrorSettings, events: Iterable[str]) -> int:
    log = configure_logging(settings.log_file, stream=sys.stderr)
    service = build_service(settings)
    if service.scheduler is None:
        log.error("Cannot watch: no backup destination configured")
        return EXIT_OPERATION_FAILED

    log.info("Watching for events; source=%s destination=%s", settings.source, settings.destination)
    try:
        for line in events:
            event_type = _parse_event(line)
            if event_type is None:
                continue
            if service.handle_event(event_type):
                log.debug("Sync scheduled by %s", event_type)
        service.scheduler.flush()
        # A timer-driven backup may still be running on its own thread.
        service.scheduler.wait_idle()
    except KeyboardInterrupt:
        log.info("Interrupted; pending sync dropped")
        service.close()
        return EXIT_SUCCESS

    state = service.scheduler.snapshot()
    if state.last_sync_at is not None and not state.last_sync_success:
        return EXIT_OPERATION_FAILED
    return EXIT_SUCCESS


def cmd_agent(settings: MirrorSettings) -> int:
    try:
        tray_agent = importlib.import_module("sessionmirror.tray_agent")
    except ModuleNotFoundError as exc:
        missing = exc.name or "unknown"
        print(
            (
                f"Failed to load tray agent dependency: {missing}. "
                "Reinstall dependencies in your active environment with: pip install -e ."
            ),
            file=sys.stderr,
        )
        return EXIT_OPERATION_FAILED
    except Exception as exc:
        print(f"Failed to load tray agent: {exc}", file=sys.stderr)
        return EXIT_OPERATION_FAILED

    return int(tray_agent.run_agent(settings))


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(config_path=args.config, destination_override=args.destination)
    except Exception as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    if args.command == "show-config":
        return cmd_show_config(settings)
    if args.command == "watch":
        return cmd_watch(settings, sys.stdin)
    if args.command == "agent":
        return cmd_agent(settings)

    service = build_service(settings)
    if args.command == "sync":
        return _print_report(service.sync(force=args.force))
    if args.command == "restore":
        return _print_report(service.restore(confirm=args.confirm))
    if args.command == "status":
        return _print_report(service.status())

    parser.print_help()
    return EXIT_OPERATION_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
