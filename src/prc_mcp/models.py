"""Pydantic models for ledger records, tool inputs and outputs."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import LEDGER_VERSION, RECENT_ACTIVITY_DAYS


def _now_local() -> datetime:
    return datetime.now().astimezone()


def _as_aware(value: datetime) -> datetime:
    """Interpret naive datetimes as local time."""
    if value.tzinfo is None:
        return value.astimezone()
    return value


class ReportFormat(str, Enum):
    STRUCTURED_OUTLINE = "structured-outline"
    DECORATED_TEXT = "decorated-text"
    STYLED_MARKUP = "styled-markup"


class FileChangeRecord(BaseModel):
    filename: str
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    changes: int = Field(default=0, ge=0)


class CommitRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hash: str = Field(..., min_length=1)
    message: str = ""
    author_name: str = Field(default="", validation_alias=AliasChoices("author_name", "author"))
    author_email: str = Field(default="", validation_alias=AliasChoices("author_email", "email"))
    timestamp: datetime = Field(..., validation_alias=AliasChoices("timestamp", "date"))
    files: list[FileChangeRecord] = Field(default_factory=list)

    @field_validator("files", mode="before")
    @classmethod
    def _files_default(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("timestamp")
    @classmethod
    def _timestamp_aware(cls, value: datetime) -> datetime:
        return _as_aware(value)


class ProjectRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    identifier: str = Field(..., min_length=1, validation_alias=AliasChoices("identifier", "name"))
    path: str = ""
    commits: list[CommitRecord] = Field(default_factory=list)
    last_activity: datetime = Field(
        default_factory=_now_local,
        validation_alias=AliasChoices("last_activity", "lastActivity"),
    )
    created_at: datetime = Field(
        default_factory=_now_local,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )

    @model_validator(mode="before")
    @classmethod
    def _backfill_optional_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        if payload.get("commits") is None:
            payload["commits"] = []
        has_created = payload.get("created_at") or payload.get("createdAt")
        if not has_created:
            last_activity = payload.get("last_activity") or payload.get("lastActivity")
            if last_activity:
                payload["created_at"] = last_activity
        return payload

    @field_validator("last_activity", "created_at")
    @classmethod
    def _timestamps_aware(cls, value: datetime) -> datetime:
        return _as_aware(value)


class LedgerDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    projects: list[ProjectRecord] = Field(default_factory=list)
    version: str = LEDGER_VERSION
    last_updated: datetime = Field(
        default_factory=_now_local,
        validation_alias=AliasChoices("last_updated", "lastUpdated"),
    )

    @field_validator("projects", mode="before")
    @classmethod
    def _projects_default(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("version", mode="before")
    @classmethod
    def _version_default(cls, value: Any) -> Any:
        return value or LEDGER_VERSION

    @field_validator("last_updated")
    @classmethod
    def _last_updated_aware(cls, value: datetime) -> datetime:
        return _as_aware(value)


class TrackRequest(BaseModel):
    path: str = Field(..., min_length=1, description="Path to a git working copy")

    @field_validator("path")
    @classmethod
    def _path_not_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("path must not be blank")
        return stripped


class SyncRequest(BaseModel):
    identifier: str | None = None


class RefreshRequest(BaseModel):
    identifier: str = Field(..., min_length=1)


class ReportRequest(BaseModel):
    start_date: date
    end_date: date
    format: str | None = None
    projects: list[str] = Field(default_factory=list)


class ProjectReportRequest(BaseModel):
    identifier: str = Field(..., min_length=1)
    format: str | None = None
    recent_days: int = Field(default=RECENT_ACTIVITY_DAYS, ge=1, le=3650)


class BaseToolResponse(BaseModel):
    status: Literal["success", "error"]
    message: str = ""
    error_code: str = ""
    suggestion: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


class ProjectSyncOutcome(BaseModel):
    identifier: str
    status: Literal["updated", "unchanged", "skipped", "failed"]
    new_commits: int = 0
    total_commits: int = 0
    error: str = ""


class TrackResponse(BaseToolResponse):
    identifier: str = ""
    path: str = ""
    changed: bool = False
    new_commits: int = 0
    total_commits: int = 0


class SyncResponse(BaseToolResponse):
    results: list[ProjectSyncOutcome] = Field(default_factory=list)
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0


class RefreshResponse(BaseToolResponse):
    identifier: str = ""
    total_commits: int = 0


class ReportResponse(BaseToolResponse):
    format: ReportFormat | None = None
    start_date: str = ""
    end_date: str = ""
    generated_at: str = ""
    has_data: bool = False
    summary: dict[str, Any] = Field(default_factory=dict)
    rendered: str = ""


class ProjectReportResponse(BaseToolResponse):
    identifier: str = ""
    format: ReportFormat | None = None
    generated_at: str = ""
    rendered: str = ""
