"""MCP server entrypoint and tool definitions for the Project Report Compiler."""

from __future__ import annotations

import argparse
import json
import logging
import threading
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Annotated, Any, Callable

from mcp.server.fastmcp import FastMCP
from pydantic import Field, ValidationError

from .engine import ReportCompilerEngine
from .errors import ErrorCode, LedgerError
from .models import (
    ProjectReportRequest,
    RefreshRequest,
    ReportRequest,
    SyncRequest,
    TrackRequest,
)
from .runtime import (
    LOG_LEVELS,
    RuntimeLedgerDefaults,
    configure_logging,
    effective_config_payload,
    get_runtime_defaults,
    get_runtime_ledger_defaults,
    get_runtime_log_level,
)

logger = logging.getLogger(__name__)


def _build_fastmcp() -> FastMCP:
    """Instantiate FastMCP, dropping optional kwargs older SDK versions reject."""
    kwargs: dict[str, Any] = {
        "name": "project-report-compiler",
        "instructions": (
            "Track git working copies and compile work reports from their commit history. "
            "Use prc_track to add a repository, prc_sync to pick up new commits, "
            "prc_report for a date-range report in structured-outline, decorated-text "
            "or styled-markup format, and prc_project_report, prc_list, prc_stats, "
            "prc_refresh and prc_delete to inspect or maintain the ledger."
        ),
        "json_response": True,
    }
    optional_keys = ("json_response",)

    while True:
        try:
            return FastMCP(**kwargs)
        except TypeError as exc:
            message = str(exc).lower()
            if "unexpected keyword argument" not in message:
                raise

            removed_key = next((key for key in optional_keys if key in message and key in kwargs), None)
            if removed_key is None:
                raise
            kwargs.pop(removed_key, None)
            logger.debug(
                "FastMCP constructor does not support '%s'; using compatibility fallback.",
                removed_key,
            )


mcp = _build_fastmcp()

# Built lazily so importing the module never touches the ledger file.
engine: ReportCompilerEngine | None = None
_engine_lock = threading.Lock()

READ_ONLY_TOOL_ANNOTATIONS = {
    "readOnlyHint": True,
    "idempotentHint": True,
    "destructiveHint": False,
    "openWorldHint": False,
}

WRITE_TOOL_ANNOTATIONS = {
    "readOnlyHint": False,
    "idempotentHint": False,
    "destructiveHint": False,
    "openWorldHint": False,
}

DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS = {
    "readOnlyHint": False,
    "idempotentHint": False,
    "destructiveHint": True,
    "openWorldHint": False,
}


def _register_tool(annotations: dict[str, bool]):
    """Register tool with annotations, falling back when the SDK rejects them."""

    def decorator(func):
        try:
            return mcp.tool(annotations=annotations)(func)
        except TypeError as exc:
            message = str(exc).lower()
            if "annotations" not in message and "unexpected keyword argument" not in message:
                raise
            logger.debug("FastMCP tool annotations not supported in this SDK version; using fallback.")
            return mcp.tool()(func)

    return decorator


def _build_engine(defaults: RuntimeLedgerDefaults) -> ReportCompilerEngine:
    return ReportCompilerEngine(
        ledger_path=defaults.ledger_path,
        default_format=defaults.report_format,
        lookback=defaults.lookback,
        max_commits=defaults.max_commits,
    )


def _get_engine() -> ReportCompilerEngine:
    global engine
    with _engine_lock:
        if engine is None:
            engine = _build_engine(get_runtime_ledger_defaults())
        return engine


def _error_payload_from_exception(exc: Exception) -> dict[str, Any]:
    """Convert internal exceptions into stable MCP error payloads."""
    if isinstance(exc, LedgerError):
        payload = exc.to_payload()
    elif isinstance(exc, ValidationError):
        payload = {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check field constraints and request schema.",
            "details": {"errors": exc.errors(include_context=False, include_input=False)},
        }
    else:
        logger.exception("Unhandled server exception", exc_info=exc)
        payload = {
            "status": "error",
            "error_code": ErrorCode.INTERNAL_ERROR.value,
            "message": str(exc),
            "suggestion": "Check server logs and retry the operation.",
            "details": {},
        }
    return payload


def _build_correlation_id() -> str:
    """Generate short operation correlation IDs for diagnostics."""
    return uuid.uuid4().hex[:12]


def _log_tool_phase(
    *,
    correlation_id: str,
    tool_name: str,
    phase: str,
    status: str,
    elapsed_seconds: float,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit structured phase-level diagnostics for tool execution."""
    payload: dict[str, Any] = {
        "event_type": "mcp_tool_phase",
        "correlation_id": correlation_id,
        "tool_name": tool_name,
        "phase": phase,
        "status": status,
        "elapsed_ms": round(elapsed_seconds * 1000, 3),
    }
    if details:
        payload["details"] = details
    logger.info("mcp_tool_phase %s", json.dumps(payload, ensure_ascii=True, sort_keys=True))


def _run_tool(
    tool_name: str,
    request_payload: dict[str, Any],
    operation: Callable[[], dict[str, Any]],
) -> dict[str, Any]:
    """Execute a tool operation, attaching a correlation id to the response."""
    total_start = time.perf_counter()
    correlation_id = _build_correlation_id()
    logger.debug("Tool %s request %s: %s", tool_name, correlation_id, request_payload)

    operation_start = time.perf_counter()
    try:
        response_payload = dict(operation())
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="operation_execution",
            status="ok",
            elapsed_seconds=time.perf_counter() - operation_start,
        )
        response_payload["correlation_id"] = correlation_id
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="total",
            status="ok",
            elapsed_seconds=time.perf_counter() - total_start,
        )
        return response_payload
    except Exception as exc:  # noqa: BLE001
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="operation_execution",
            status="error",
            elapsed_seconds=time.perf_counter() - operation_start,
            details={"exception": exc.__class__.__name__},
        )
        error_payload = _error_payload_from_exception(exc)
        error_payload["correlation_id"] = correlation_id
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="total",
            status="error",
            elapsed_seconds=time.perf_counter() - total_start,
            details={"error_code": error_payload.get("error_code")},
        )
        return error_payload


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def prc_track(
    path: Annotated[str, Field(description="Path to a git working copy to start tracking")],
) -> dict[str, Any]:
    """Start tracking a git repository and ingest its recent commits."""

    def _operation() -> dict[str, Any]:
        return _get_engine().track_project(TrackRequest(path=path)).model_dump(mode="json")

    return _run_tool("prc_track", request_payload={"path": path}, operation=_operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def prc_sync(
    identifier: Annotated[
        str, Field(description="Only sync this project; empty syncs every tracked project")
    ] = "",
) -> dict[str, Any]:
    """Check tracked projects for new commits and append them to the ledger."""

    def _operation() -> dict[str, Any]:
        request = SyncRequest(identifier=identifier or None)
        return _get_engine().sync_projects(request).model_dump(mode="json")

    return _run_tool("prc_sync", request_payload={"identifier": identifier}, operation=_operation)


@_register_tool(DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS)
def prc_refresh(
    identifier: Annotated[str, Field(min_length=1, description="Project identifier")],
) -> dict[str, Any]:
    """Discard stored commits for a project and re-ingest its recent history."""

    def _operation() -> dict[str, Any]:
        request = RefreshRequest(identifier=identifier)
        return _get_engine().refresh_project(request).model_dump(mode="json")

    return _run_tool("prc_refresh", request_payload={"identifier": identifier}, operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def prc_report(
    start_date: Annotated[str, Field(description="Inclusive start date (YYYY-MM-DD)")],
    end_date: Annotated[str, Field(description="Inclusive end date (YYYY-MM-DD)")],
    format: Annotated[
        str,
        Field(
            description=(
                "Report format: structured-outline, decorated-text or styled-markup. "
                "Empty uses the configured default."
            )
        ),
    ] = "",
    projects: Annotated[
        list[str] | None,
        Field(description="Limit the report to these project identifiers (list[str])."),
    ] = None,
) -> dict[str, Any]:
    """Compile a work report over a date range from the stored ledger."""
    request_payload = {
        "start_date": start_date,
        "end_date": end_date,
        "format": format,
        "projects": projects or [],
    }

    def _operation() -> dict[str, Any]:
        request = ReportRequest(
            start_date=start_date,
            end_date=end_date,
            format=format or None,
            projects=projects or [],
        )
        return _get_engine().generate_report(request).model_dump(mode="json")

    return _run_tool("prc_report", request_payload=request_payload, operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def prc_project_report(
    identifier: Annotated[str, Field(min_length=1, description="Project identifier")],
    format: Annotated[
        str,
        Field(description="Report format; empty uses the configured default."),
    ] = "",
    recent_days: Annotated[
        int, Field(ge=1, le=3650, description="Size of the recent activity window in days")
    ] = 30,
) -> dict[str, Any]:
    """Compile an all-time report for a single project."""
    request_payload = {"identifier": identifier, "format": format, "recent_days": recent_days}

    def _operation() -> dict[str, Any]:
        request = ProjectReportRequest(
            identifier=identifier,
            format=format or None,
            recent_days=recent_days,
        )
        return _get_engine().generate_project_report(request).model_dump(mode="json")

    return _run_tool("prc_project_report", request_payload=request_payload, operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def prc_list() -> dict[str, Any]:
    """List tracked projects with commit counts."""
    return _run_tool("prc_list", request_payload={}, operation=lambda: _get_engine().list_projects())


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def prc_stats(
    identifier: Annotated[
        str, Field(description="Only count this project; empty covers the whole ledger")
    ] = "",
) -> dict[str, Any]:
    """Summarize commit, file and line totals stored in the ledger."""
    return _run_tool(
        "prc_stats",
        request_payload={"identifier": identifier},
        operation=lambda: _get_engine().get_stats(identifier or None),
    )


@_register_tool(DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS)
def prc_delete(
    identifier: Annotated[str, Field(min_length=1, description="Project identifier")],
) -> dict[str, Any]:
    """Stop tracking a project and remove its commits from the ledger."""
    return _run_tool(
        "prc_delete",
        request_payload={"identifier": identifier},
        operation=lambda: _get_engine().delete_project(identifier),
    )


def _sync_loop(stop_event: threading.Event, interval_seconds: int) -> None:
    """Sync every tracked project now and then once per interval until stopped."""
    while not stop_event.is_set():
        try:
            response = _get_engine().sync_projects(SyncRequest())
            logger.info(
                "Background sync: updated=%d unchanged=%d skipped=%d failed=%d",
                response.updated,
                response.unchanged,
                response.skipped,
                response.failed,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Background sync failed")
        stop_event.wait(interval_seconds)


def start_background_sync(interval_seconds: int) -> tuple[threading.Thread, threading.Event]:
    stop_event = threading.Event()
    thread = threading.Thread(
        target=_sync_loop,
        args=(stop_event, interval_seconds),
        name="prc-background-sync",
        daemon=True,
    )
    thread.start()
    return thread, stop_event


def main() -> None:
    """Run the MCP server in stdio or streamable HTTP mode."""
    parser = argparse.ArgumentParser(description="Project Report Compiler MCP server")
    try:
        transport_default, host_default, port_default = get_runtime_defaults()
        ledger_defaults = get_runtime_ledger_defaults()
        log_level_default = get_runtime_log_level()
    except ValueError as exc:
        parser.error(str(exc))
    parser.add_argument(
        "--transport",
        choices=["stdio", "streamable-http"],
        default=transport_default,
        help="Server transport mode (default: stdio).",
    )
    parser.add_argument(
        "--host",
        default=host_default,
        help="Host for streamable HTTP transport.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=port_default,
        help="Port for streamable HTTP transport.",
    )
    parser.add_argument(
        "--ledger-path",
        default=str(ledger_defaults.ledger_path),
        help="Ledger file path (default: PRC_MCP_LEDGER_PATH or ~/.prc-mcp/ledger.yaml).",
    )
    parser.add_argument(
        "--auto-sync",
        action=argparse.BooleanOptionalAction,
        default=ledger_defaults.auto_sync,
        help="Sync tracked projects in the background while the server runs (default: enabled).",
    )
    parser.add_argument(
        "--track-interval-seconds",
        type=int,
        default=ledger_defaults.track_interval_seconds,
        help="Seconds between background syncs.",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=log_level_default,
        help="Log level for stderr diagnostics.",
    )
    parser.add_argument(
        "--print-effective-config",
        action="store_true",
        help="Print effective runtime configuration and exit.",
    )
    args = parser.parse_args()

    if not (1 <= int(args.port) <= 65535):
        parser.error("--port must be between 1 and 65535.")
    if int(args.track_interval_seconds) < 1:
        parser.error("--track-interval-seconds must be >= 1.")

    runtime_defaults = replace(
        ledger_defaults,
        ledger_path=Path(args.ledger_path).expanduser(),
        track_interval_seconds=int(args.track_interval_seconds),
        auto_sync=bool(args.auto_sync),
    )

    if args.print_effective_config:
        payload = {
            "transport": str(args.transport),
            "host": str(args.host),
            "port": int(args.port),
            "log_level": str(args.log_level),
            **effective_config_payload(runtime_defaults),
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
        return

    configure_logging(args.log_level)

    global engine
    engine = _build_engine(runtime_defaults)

    if runtime_defaults.auto_sync:
        start_background_sync(runtime_defaults.track_interval_seconds)

    mcp.settings.host = args.host
    mcp.settings.port = int(args.port)

    if args.transport == "stdio":
        mcp.run()
        return

    mcp.run(transport="streamable-http")


if __name__ == "__main__":
    main()
