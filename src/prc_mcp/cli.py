"""Command line interface for the Project Report Compiler with parity to MCP tools."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .engine import ReportCompilerEngine
from .errors import ErrorCode, LedgerError
from .file_manager import FileManager
from .models import (
    ProjectReportRequest,
    RefreshRequest,
    ReportFormat,
    ReportRequest,
    SyncRequest,
    TrackRequest,
)
from .report import PERIODS, resolve_period
from .runtime import (
    LOG_LEVELS,
    RuntimeLedgerDefaults,
    configure_logging,
    effective_config_payload,
    get_runtime_ledger_defaults,
    get_runtime_log_level,
)

logger = logging.getLogger(__name__)

FORMAT_CHOICES = [item.value for item in ReportFormat]


def _csv_list(value: str) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_date(value: str, option: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise LedgerError(
            ErrorCode.INVALID_INPUT,
            f"Invalid {option} date format",
            "Use YYYY-MM-DD.",
        ) from exc


def _load_defaults(args: argparse.Namespace) -> RuntimeLedgerDefaults:
    try:
        defaults = get_runtime_ledger_defaults()
    except ValueError as exc:
        raise LedgerError(
            ErrorCode.INVALID_INPUT,
            str(exc),
            "Fix the PRC_MCP_* environment variables.",
        ) from exc
    if args.ledger_path:
        defaults = replace(defaults, ledger_path=Path(args.ledger_path).expanduser())
    return defaults


def _build_engine(defaults: RuntimeLedgerDefaults) -> ReportCompilerEngine:
    return ReportCompilerEngine(
        ledger_path=defaults.ledger_path,
        default_format=defaults.report_format,
        lookback=defaults.lookback,
        max_commits=defaults.max_commits,
    )


def _report_range(args: argparse.Namespace) -> tuple[date, date]:
    if args.period:
        if args.start or args.end:
            raise LedgerError(
                ErrorCode.INVALID_INPUT,
                "--period cannot be combined with --start/--end",
                "Use either a named period or an explicit date range.",
            )
        return resolve_period(args.period, date.today())
    if not args.start or not args.end:
        raise LedgerError(
            ErrorCode.INVALID_INPUT,
            "report requires --start and --end, or --period",
            f"Use `prc-cli report --period this-week` or one of: {', '.join(PERIODS)}.",
        )
    return _parse_date(args.start, "--start"), _parse_date(args.end, "--end")


def _load_import_payload(path_value: str) -> Any:
    import_path = Path(path_value).expanduser()
    try:
        return yaml.safe_load(import_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise LedgerError(
            ErrorCode.INVALID_INPUT,
            "Unable to read import file.",
            "Ensure --input points to a readable JSON or YAML file.",
        ) from exc
    except yaml.YAMLError as exc:
        raise LedgerError(
            ErrorCode.INVALID_INPUT,
            "Import file is not valid JSON or YAML.",
            "Provide a file produced by `prc-cli export`.",
        ) from exc


def _print_payload(payload: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
        return

    status = payload.get("status", "unknown").upper()
    message = payload.get("message", "")
    print(f"[{status}] {message}")

    if payload.get("status") == "error":
        error_code = payload.get("error_code", "")
        suggestion = payload.get("suggestion", "")
        if error_code:
            print(f"error_code: {error_code}")
        if suggestion:
            print(f"suggestion: {suggestion}")
        return

    for key in (
        "identifier",
        "path",
        "new_commits",
        "total_commits",
        "count",
        "output_path",
        "backup_path",
        "storage_path",
    ):
        if key in payload and payload[key] not in ("", None):
            print(f"{key}: {payload[key]}")

    for section in ("config", "stats", "summary"):
        if section in payload and isinstance(payload[section], dict):
            print(f"{section}:")
            for config_key, config_value in payload[section].items():
                print(f"  {config_key}: {config_value}")

    if "projects" in payload:
        for project in payload["projects"]:
            print(
                f"- {project.get('identifier')} ({project.get('display_name')}) "
                f"commits={project.get('commit_count')} path={project.get('path')}"
            )

    if "results" in payload:
        for outcome in payload["results"]:
            line = (
                f"- {outcome.get('identifier')} [{outcome.get('status')}] "
                f"new={outcome.get('new_commits')} total={outcome.get('total_commits')}"
            )
            if outcome.get("error"):
                line += f" error={outcome['error']}"
            print(line)


def _error_payload(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, LedgerError):
        return exc.to_payload()
    if isinstance(exc, ValidationError):
        errors: Any
        try:
            errors = exc.errors(include_context=False, include_input=False)
        except TypeError:
            errors = exc.errors()
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check command arguments and constraints.",
            "details": {"errors": errors},
        }
    return {
        "status": "error",
        "error_code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(exc),
        "suggestion": "Retry with --json for diagnostics and inspect logs.",
        "details": {},
    }


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--ledger-path",
        default="",
        help="Ledger file path (default: PRC_MCP_LEDGER_PATH or ~/.prc-mcp/ledger.yaml)",
    )
    common.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default="",
        help="Log level for stderr diagnostics (default: PRC_MCP_LOG_LEVEL or WARNING)",
    )
    common.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    parser = argparse.ArgumentParser(prog="prc-cli", description="Project Report Compiler CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    track = subparsers.add_parser("track", parents=[common], help="Start tracking a git working copy")
    track.add_argument("path", nargs="?", default=".", help="Repository directory")

    sync = subparsers.add_parser("sync", parents=[common], help="Check tracked projects for new commits")
    sync.add_argument("identifier", nargs="?", default="", help="Only sync this project")

    refresh = subparsers.add_parser(
        "refresh",
        parents=[common],
        help="Drop stored commits for a project and re-ingest its recent history",
    )
    refresh.add_argument("identifier", help="Project identifier")

    report = subparsers.add_parser("report", parents=[common], help="Generate an activity report")
    report.add_argument("--start", default="", help="Start date YYYY-MM-DD (inclusive)")
    report.add_argument("--end", default="", help="End date YYYY-MM-DD (inclusive)")
    report.add_argument("--period", choices=PERIODS, default="", help="Named period instead of dates")
    report.add_argument("--format", choices=FORMAT_CHOICES, default=None, help="Report format")
    report.add_argument("--projects", default="", help="Comma-separated project identifiers")
    report.add_argument("-o", "--output", default="", help="Write the rendered report to a file")

    project_report = subparsers.add_parser(
        "project-report",
        parents=[common],
        help="Generate an all-time report for one project",
    )
    project_report.add_argument("identifier", help="Project identifier")
    project_report.add_argument("--format", choices=FORMAT_CHOICES, default=None, help="Report format")
    project_report.add_argument(
        "--recent-days",
        type=int,
        default=30,
        help="Size of the recent activity window in days",
    )
    project_report.add_argument("-o", "--output", default="", help="Write the rendered report to a file")

    subparsers.add_parser("list", parents=[common], help="List tracked projects")

    stats = subparsers.add_parser("stats", parents=[common], help="Show ledger statistics")
    stats.add_argument("identifier", nargs="?", default="", help="Only count this project")

    delete = subparsers.add_parser("delete", parents=[common], help="Stop tracking a project")
    delete.add_argument("identifier", help="Project identifier")

    export = subparsers.add_parser("export", parents=[common], help="Export the ledger as JSON")
    export.add_argument("-o", "--output", default="", help="Destination file (default: stdout)")

    import_cmd = subparsers.add_parser("import", parents=[common], help="Replace the ledger from a file")
    import_cmd.add_argument("-i", "--input", required=True, help="JSON or YAML file from export")

    clear = subparsers.add_parser("clear", parents=[common], help="Remove all project data")
    clear.add_argument("--yes", action="store_true", help="Confirm removal of all project data")

    subparsers.add_parser("config", parents=[common], help="Show effective configuration")

    watch = subparsers.add_parser(
        "watch",
        parents=[common],
        help="Sync all tracked projects periodically until interrupted",
    )
    watch.add_argument(
        "--interval",
        type=int,
        default=0,
        help="Seconds between syncs (default: PRC_MCP_TRACK_INTERVAL_SECONDS or 300)",
    )
    watch.add_argument(
        "--max-cycles",
        type=int,
        default=0,
        help="Stop after this many sync cycles (0 = run until interrupted)",
    )

    return parser


def _write_output(path_value: str, content: str) -> str:
    output_path = Path(path_value).expanduser().resolve()
    FileManager().write_text(output_path, content)
    return str(output_path)


def _watch(
    engine: ReportCompilerEngine,
    interval: int,
    max_cycles: int,
    as_json: bool,
) -> int:
    cycles = 0
    try:
        while True:
            response = engine.sync_projects(SyncRequest()).model_dump(mode="json")
            _print_payload(response, as_json=as_json)
            cycles += 1
            if max_cycles and cycles >= max_cycles:
                return 0
            time.sleep(interval)
    except KeyboardInterrupt:
        logger.info("Watch stopped after %d cycles", cycles)
        return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    as_json = bool(getattr(args, "json", False))

    try:
        configure_logging(args.log_level or get_runtime_log_level())
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    try:
        defaults = _load_defaults(args)
        if args.command == "config":
            _print_payload(
                {
                    "status": "success",
                    "message": "Effective configuration",
                    "config": effective_config_payload(defaults),
                },
                as_json=as_json,
            )
            return 0

        engine = _build_engine(defaults)
        if args.command == "track":
            response = engine.track_project(TrackRequest(path=args.path)).model_dump(mode="json")
        elif args.command == "sync":
            response = engine.sync_projects(
                SyncRequest(identifier=args.identifier or None)
            ).model_dump(mode="json")
        elif args.command == "refresh":
            response = engine.refresh_project(
                RefreshRequest(identifier=args.identifier)
            ).model_dump(mode="json")
        elif args.command == "report":
            start_date, end_date = _report_range(args)
            response = engine.generate_report(
                ReportRequest(
                    start_date=start_date,
                    end_date=end_date,
                    format=args.format,
                    projects=_csv_list(args.projects),
                )
            ).model_dump(mode="json")
            if args.output:
                response["output_path"] = _write_output(args.output, response["rendered"])
            elif not as_json:
                print(response["rendered"])
                return 0
        elif args.command == "project-report":
            response = engine.generate_project_report(
                ProjectReportRequest(
                    identifier=args.identifier,
                    format=args.format,
                    recent_days=args.recent_days,
                )
            ).model_dump(mode="json")
            if args.output:
                response["output_path"] = _write_output(args.output, response["rendered"])
            elif not as_json:
                print(response["rendered"])
                return 0
        elif args.command == "list":
            response = engine.list_projects()
        elif args.command == "stats":
            response = engine.get_stats(args.identifier or None)
        elif args.command == "delete":
            response = engine.delete_project(args.identifier)
        elif args.command == "export":
            response = engine.export_ledger()
            if args.output:
                response["output_path"] = _write_output(
                    args.output,
                    json.dumps(response["document"], indent=2) + "\n",
                )
            elif not as_json:
                print(json.dumps(response["document"], indent=2))
                return 0
        elif args.command == "import":
            response = engine.import_ledger(_load_import_payload(args.input))
        elif args.command == "clear":
            if not args.yes:
                raise LedgerError(
                    ErrorCode.INVALID_INPUT,
                    "clear removes all project data and requires --yes",
                    "Re-run with `prc-cli clear --yes`; a backup is written first.",
                )
            response = engine.clear_ledger()
        else:
            interval = args.interval or defaults.track_interval_seconds
            if interval < 1 or args.max_cycles < 0:
                raise LedgerError(
                    ErrorCode.INVALID_INPUT,
                    "--interval must be >= 1 and --max-cycles must be >= 0",
                    "Use positive values, e.g. `prc-cli watch --interval 300`.",
                )
            return _watch(engine, interval, args.max_cycles, as_json)

        if getattr(args, "output", ""):
            response.pop("rendered", None)
            response.pop("document", None)
        _print_payload(response, as_json=as_json)
        return 0
    except Exception as exc:  # noqa: BLE001
        payload = _error_payload(exc)
        _print_payload(payload, as_json=as_json)
        return 1
