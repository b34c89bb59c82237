"""Format-independent aggregation of ledger slices into report models.

Everything here is a pure function of its inputs: no store access, no
repository access, no clock reads beyond the optional `generated_at`/`now`
defaults. Calendar dates are derived from commit timestamps in local time
(or in an explicit `tz` when one is supplied).
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo

from .errors import ErrorCode, LedgerError
from .models import CommitRecord, FileChangeRecord, ProjectRecord

CONVENTIONAL_PREFIX_PATTERN = re.compile(
    r"^(feat|fix|docs|style|refactor|test|chore)(\(.+?\))?:\s*",
    re.IGNORECASE,
)
GENERIC_PREFIX_PATTERN = re.compile(r"^\w+:\s*")

PERIODS = ("this-week", "last-week", "this-month", "last-month")


@dataclass(frozen=True)
class ReportSummary:
    total_commits: int = 0
    total_projects: int = 0
    files_modified: int = 0
    lines_added: int = 0
    lines_deleted: int = 0


@dataclass(frozen=True)
class DateGroup:
    day: date
    commits: tuple[CommitRecord, ...]


@dataclass(frozen=True)
class ProjectSection:
    identifier: str
    display_name: str
    commit_count: int
    groups: tuple[DateGroup, ...]


@dataclass
class DailyActivity:
    commits: int = 0
    files: int = 0
    projects: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReportModel:
    start_date: date
    end_date: date
    generated_at: datetime
    summary: ReportSummary
    projects: tuple[ProjectSection, ...]
    daily_activity: dict[date, DailyActivity]
    tz: tzinfo | None = None

    @property
    def has_data(self) -> bool:
        return self.summary.total_commits > 0


@dataclass(frozen=True)
class ProjectReportModel:
    identifier: str
    display_name: str
    path: str
    total_commits: int
    last_activity: datetime
    created_at: datetime
    generated_at: datetime
    recent_days: int
    recent_commit_count: int
    recent_groups: tuple[DateGroup, ...]
    all_time: ReportSummary
    first_commit: datetime | None
    last_commit: datetime | None
    tz: tzinfo | None = None


def to_local(timestamp: datetime, tz: tzinfo | None = None) -> datetime:
    """Convert a timestamp into the reporting timezone (system local by default)."""
    return timestamp.astimezone(tz)


def local_date(timestamp: datetime, tz: tzinfo | None = None) -> date:
    return to_local(timestamp, tz).date()


def display_name(identifier: str) -> str:
    """Title-case each hyphen-separated identifier segment for presentation."""
    return " ".join(word[:1].upper() + word[1:] for word in identifier.split("-"))


def clean_commit_message(message: str) -> str:
    """Reduce a commit message to its first line without type prefixes."""
    first_line = message.split("\n", 1)[0].strip()
    first_line = CONVENTIONAL_PREFIX_PATTERN.sub("", first_line, count=1)
    return GENERIC_PREFIX_PATTERN.sub("", first_line, count=1)


def summarize_files(files: Sequence[FileChangeRecord]) -> str:
    if not files:
        return "No files"
    if len(files) == 1:
        change = files[0]
        return f"{change.filename} (+{change.additions}/-{change.deletions})"
    additions = sum(change.additions for change in files)
    deletions = sum(change.deletions for change in files)
    return f"{len(files)} files (+{additions}/-{deletions})"


def validate_date_range(start: date, end: date) -> None:
    if start > end:
        raise LedgerError(
            ErrorCode.INVALID_DATE_RANGE,
            f"Start date {start.isoformat()} is after end date {end.isoformat()}",
            "Provide a start date on or before the end date.",
            {"start_date": start.isoformat(), "end_date": end.isoformat()},
        )


def filter_commits(
    commits: Sequence[CommitRecord],
    start: date,
    end: date,
    tz: tzinfo | None = None,
) -> list[CommitRecord]:
    """Keep commits whose local calendar date lies in the closed range."""
    return [commit for commit in commits if start <= local_date(commit.timestamp, tz) <= end]


def group_commits_by_date(
    commits: Sequence[CommitRecord],
    tz: tzinfo | None = None,
) -> tuple[DateGroup, ...]:
    """Group commits by local date; dates and commits both newest first."""
    buckets: dict[date, list[CommitRecord]] = {}
    for commit in commits:
        buckets.setdefault(local_date(commit.timestamp, tz), []).append(commit)
    return tuple(
        DateGroup(
            day=day,
            commits=tuple(sorted(buckets[day], key=lambda c: c.timestamp, reverse=True)),
        )
        for day in sorted(buckets, reverse=True)
    )


def summarize_commits(sections: Mapping[str, Sequence[CommitRecord]]) -> ReportSummary:
    total_commits = 0
    files_modified = 0
    lines_added = 0
    lines_deleted = 0
    for commits in sections.values():
        total_commits += len(commits)
        for commit in commits:
            files_modified += len(commit.files)
            lines_added += sum(change.additions for change in commit.files)
            lines_deleted += sum(change.deletions for change in commit.files)
    return ReportSummary(
        total_commits=total_commits,
        total_projects=sum(1 for commits in sections.values() if commits),
        files_modified=files_modified,
        lines_added=lines_added,
        lines_deleted=lines_deleted,
    )


def build_daily_activity(
    sections: Mapping[str, Sequence[CommitRecord]],
    start: date,
    end: date,
    tz: tzinfo | None = None,
) -> dict[date, DailyActivity]:
    """One entry per date in the inclusive range, populated from `sections`."""
    activity: dict[date, DailyActivity] = {}
    current = start
    while current <= end:
        activity[current] = DailyActivity()
        current += timedelta(days=1)

    for identifier, commits in sections.items():
        name = display_name(identifier)
        for commit in commits:
            entry = activity.get(local_date(commit.timestamp, tz))
            if entry is None:
                continue
            entry.commits += 1
            entry.files += len(commit.files)
            if name not in entry.projects:
                entry.projects.append(name)
    return activity


def build_report_model(
    ledger_slice: Mapping[str, Sequence[CommitRecord]],
    start: date,
    end: date,
    *,
    tz: tzinfo | None = None,
    generated_at: datetime | None = None,
) -> ReportModel:
    validate_date_range(start, end)
    eligible: dict[str, list[CommitRecord]] = {}
    for identifier, commits in ledger_slice.items():
        in_range = filter_commits(commits, start, end, tz)
        if in_range:
            eligible[identifier] = in_range

    sections = tuple(
        ProjectSection(
            identifier=identifier,
            display_name=display_name(identifier),
            commit_count=len(commits),
            groups=group_commits_by_date(commits, tz),
        )
        for identifier, commits in eligible.items()
    )
    return ReportModel(
        start_date=start,
        end_date=end,
        generated_at=generated_at or datetime.now().astimezone(),
        summary=summarize_commits(eligible),
        projects=sections,
        daily_activity=build_daily_activity(eligible, start, end, tz),
        tz=tz,
    )


def build_project_report_model(
    project: ProjectRecord,
    *,
    now: datetime | None = None,
    recent_days: int = 30,
    tz: tzinfo | None = None,
) -> ProjectReportModel:
    current = now or datetime.now().astimezone()
    threshold = current - timedelta(days=recent_days)
    recent = [commit for commit in project.commits if commit.timestamp >= threshold]

    timestamps = [commit.timestamp for commit in project.commits]
    return ProjectReportModel(
        identifier=project.identifier,
        display_name=display_name(project.identifier),
        path=project.path,
        total_commits=len(project.commits),
        last_activity=project.last_activity,
        created_at=project.created_at,
        generated_at=current,
        recent_days=recent_days,
        recent_commit_count=len(recent),
        recent_groups=group_commits_by_date(recent, tz),
        all_time=summarize_commits({project.identifier: project.commits}),
        first_commit=min(timestamps) if timestamps else None,
        last_commit=max(timestamps) if timestamps else None,
        tz=tz,
    )


def resolve_period(name: str, today: date) -> tuple[date, date]:
    """Translate a named period into an inclusive date range (weeks start Monday)."""
    if name == "this-week":
        return today - timedelta(days=today.weekday()), today
    if name == "last-week":
        start = today - timedelta(days=today.weekday() + 7)
        return start, start + timedelta(days=6)
    if name == "this-month":
        return today.replace(day=1), today
    if name == "last-month":
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1), end
    raise LedgerError(
        ErrorCode.INVALID_INPUT,
        f"Unknown report period '{name}'",
        f"Use one of: {', '.join(PERIODS)}.",
    )
