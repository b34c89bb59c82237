"""Runtime configuration helpers."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .constants import (
    DEFAULT_TRACK_INTERVAL_SECONDS,
    LEDGER_DIR_NAME,
    LEDGER_FILE_NAME,
    LOOKBACK_WINDOW,
    MAX_LEDGER_COMMITS,
)
from .models import ReportFormat

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
TRANSPORTS = {"stdio", "streamable-http"}
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class RuntimeLedgerDefaults:
    """Ledger and sync settings sourced from environment variables or CLI."""

    ledger_path: Path
    track_interval_seconds: int
    auto_sync: bool
    report_format: ReportFormat
    lookback: int
    max_commits: int


def default_ledger_path() -> Path:
    return Path.home() / LEDGER_DIR_NAME / LEDGER_FILE_NAME


def get_runtime_defaults(env: Mapping[str, str] | None = None) -> tuple[str, str, int]:
    """Validate and return server transport defaults from environment variables."""
    source = os.environ if env is None else env

    transport_default = source.get("PRC_MCP_TRANSPORT", "stdio")
    if transport_default not in TRANSPORTS:
        raise ValueError("PRC_MCP_TRANSPORT must be 'stdio' or 'streamable-http'.")

    host_default = source.get("PRC_MCP_HOST", "127.0.0.1")

    port_env = source.get("PRC_MCP_PORT", "8000")
    try:
        port_default = int(port_env)
    except ValueError as exc:
        raise ValueError("PRC_MCP_PORT must be an integer.") from exc
    if not (1 <= port_default <= 65535):
        raise ValueError("PRC_MCP_PORT must be between 1 and 65535.")

    return transport_default, host_default, port_default


def get_runtime_ledger_defaults(env: Mapping[str, str] | None = None) -> RuntimeLedgerDefaults:
    """Return validated ledger/sync/report settings from environment variables."""
    source = os.environ if env is None else env

    ledger_raw = source.get("PRC_MCP_LEDGER_PATH", "").strip()
    ledger_path = Path(ledger_raw).expanduser() if ledger_raw else default_ledger_path()

    format_raw = source.get("PRC_MCP_REPORT_FORMAT", "").strip().lower()
    try:
        report_format = ReportFormat(format_raw) if format_raw else ReportFormat.STRUCTURED_OUTLINE
    except ValueError as exc:
        allowed = ", ".join(item.value for item in ReportFormat)
        raise ValueError(f"PRC_MCP_REPORT_FORMAT must be one of: {allowed}.") from exc

    return RuntimeLedgerDefaults(
        ledger_path=ledger_path,
        track_interval_seconds=_parse_int_env(
            source=source,
            key="PRC_MCP_TRACK_INTERVAL_SECONDS",
            default=DEFAULT_TRACK_INTERVAL_SECONDS,
            min_value=1,
        ),
        auto_sync=_parse_bool_env(source=source, key="PRC_MCP_AUTO_SYNC", default=True),
        report_format=report_format,
        lookback=_parse_int_env(
            source=source,
            key="PRC_MCP_LOOKBACK",
            default=LOOKBACK_WINDOW,
            min_value=1,
        ),
        max_commits=_parse_int_env(
            source=source,
            key="PRC_MCP_MAX_COMMITS",
            default=MAX_LEDGER_COMMITS,
            min_value=1,
        ),
    )


def get_runtime_log_level(env: Mapping[str, str] | None = None) -> str:
    source = os.environ if env is None else env
    level = source.get("PRC_MCP_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"
    if level not in LOG_LEVELS:
        raise ValueError(f"PRC_MCP_LOG_LEVEL must be one of: {', '.join(LOG_LEVELS)}.")
    return level


def configure_logging(level: str) -> None:
    """Send log records to stderr; stdout stays reserved for command output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def effective_config_payload(defaults: RuntimeLedgerDefaults) -> dict[str, object]:
    return {
        "ledger_path": str(defaults.ledger_path),
        "track_interval_seconds": defaults.track_interval_seconds,
        "auto_sync": defaults.auto_sync,
        "report_format": defaults.report_format.value,
        "lookback": defaults.lookback,
        "max_commits": defaults.max_commits,
    }


def _parse_bool_env(source: Mapping[str, str], key: str, default: bool) -> bool:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    normalized = str(raw).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be a boolean value (true/false).")


def _parse_int_env(
    source: Mapping[str, str],
    key: str,
    default: int,
    min_value: int | None = None,
) -> int:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        parsed = int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer.") from exc
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{key} must be >= {min_value}.")
    return parsed
