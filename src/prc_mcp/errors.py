"""Domain-specific error types for ledger and report operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Supported error codes exposed by CLI commands and MCP tools."""

    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    NOT_A_REPOSITORY = "NOT_A_REPOSITORY"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    INVALID_INPUT = "INVALID_INPUT"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class LedgerError(Exception):
    """Structured exception carrying a stable error contract."""

    code: ErrorCode
    message: str
    suggestion: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": "error",
            "error_code": self.code.value,
            "message": self.message,
            "suggestion": self.suggestion or "",
            "details": self.details,
        }


class DiffUnavailableError(Exception):
    """Raised by repository adapters when a diff between two revisions cannot be produced."""
