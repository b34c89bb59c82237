"""Render report models into outline, decorated-text and styled-markup documents."""

from __future__ import annotations

import html
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Any, Union

from .constants import REPORT_SIGNATURE, REPORT_TITLE
from .errors import ErrorCode, LedgerError
from .models import CommitRecord, ReportFormat
from .report import (
    DateGroup,
    ProjectReportModel,
    ReportModel,
    build_report_model,
    clean_commit_message,
    summarize_files,
    to_local,
)

TEXT_WIDTH = 60


@dataclass(frozen=True)
class Title:
    text: str


@dataclass(frozen=True)
class Meta:
    label: str
    value: str


@dataclass(frozen=True)
class Heading:
    level: int
    text: str


@dataclass(frozen=True)
class Field:
    label: str
    value: str


@dataclass(frozen=True)
class Entry:
    label: str
    text: str
    details: tuple[str, ...] = ()


@dataclass(frozen=True)
class Paragraph:
    text: str


@dataclass(frozen=True)
class Rule:
    pass


@dataclass(frozen=True)
class Signature:
    text: str


Block = Union[Title, Meta, Heading, Field, Entry, Paragraph, Rule, Signature]
LIST_BLOCKS = (Field, Entry)


def parse_report_format(
    value: str | ReportFormat | None, default: ReportFormat | None = None
) -> ReportFormat:
    """Resolve a format selector; unknown values are rejected.

    An empty selector resolves to `default` when one is given.
    """
    if (value is None or value == "") and default is not None:
        return default
    if isinstance(value, ReportFormat):
        return value
    try:
        return ReportFormat(str(value).strip().lower())
    except ValueError as exc:
        raise LedgerError(
            ErrorCode.UNSUPPORTED_FORMAT,
            f"Unsupported report format '{value}'",
            f"Use one of: {', '.join(item.value for item in ReportFormat)}.",
        ) from exc


def format_date(day: date) -> str:
    return f"{day:%A}, {day:%B} {day.day}, {day.year}"


def format_time(moment: datetime, tz: tzinfo | None = None) -> str:
    return f"{to_local(moment, tz):%I:%M %p}"


def format_datetime(moment: datetime, tz: tzinfo | None = None) -> str:
    local = to_local(moment, tz)
    return f"{local:%a}, {local:%b} {local.day}, {local.year}, {local:%I:%M %p}"


def _commit_entry(commit: CommitRecord, tz: tzinfo | None) -> Entry:
    details = (f"Files: {summarize_files(commit.files)}",) if commit.files else ()
    return Entry(
        label=format_time(commit.timestamp, tz),
        text=clean_commit_message(commit.message),
        details=details,
    )


def _group_blocks(groups: Sequence[DateGroup], level: int, tz: tzinfo | None) -> list[Block]:
    blocks: list[Block] = []
    for group in groups:
        blocks.append(Heading(level, format_date(group.day)))
        blocks.extend(_commit_entry(commit, tz) for commit in group.commits)
    return blocks


def layout_report(model: ReportModel) -> list[Block]:
    period = f"{format_date(model.start_date)} to {format_date(model.end_date)}"
    blocks: list[Block] = [
        Title(REPORT_TITLE),
        Meta("Period", period),
        Meta("Generated", format_datetime(model.generated_at, model.tz)),
    ]
    if not model.has_data:
        blocks.append(
            Paragraph(
                f"No commits found between {format_date(model.start_date)} "
                f"and {format_date(model.end_date)}."
            )
        )
        blocks.extend([Rule(), Signature(REPORT_SIGNATURE)])
        return blocks

    summary = model.summary
    blocks.extend(
        [
            Heading(2, "Summary"),
            Field("Projects worked on", f"{summary.total_projects:,}"),
            Field("Total commits", f"{summary.total_commits:,}"),
            Field("Files modified", f"{summary.files_modified:,}"),
            Field("Lines added", f"{summary.lines_added:,}"),
            Field("Lines deleted", f"{summary.lines_deleted:,}"),
            Heading(2, "Project Details"),
        ]
    )
    for section in model.projects:
        blocks.append(Heading(3, section.display_name))
        blocks.append(Meta("Commits", f"{section.commit_count:,}"))
        blocks.extend(_group_blocks(section.groups, 4, model.tz))

    blocks.append(Heading(2, "Daily Breakdown"))
    for day, activity in model.daily_activity.items():
        if activity.commits == 0:
            continue
        blocks.extend(
            [
                Heading(3, format_date(day)),
                Field("Commits", f"{activity.commits:,}"),
                Field("Projects", ", ".join(activity.projects)),
                Field("Files modified", f"{activity.files:,}"),
            ]
        )
    blocks.extend([Rule(), Signature(REPORT_SIGNATURE)])
    return blocks


def layout_project_report(model: ProjectReportModel) -> list[Block]:
    blocks: list[Block] = [
        Title(f"Project Report: {model.display_name}"),
        Meta("Path", model.path),
        Meta("Total Commits", f"{model.total_commits:,}"),
        Meta("Last Activity", format_datetime(model.last_activity, model.tz)),
        Meta("Created", format_datetime(model.created_at, model.tz)),
    ]
    if model.total_commits == 0:
        blocks.extend(
            [Paragraph("No commits found for this project."), Rule(), Signature(REPORT_SIGNATURE)]
        )
        return blocks

    blocks.append(Heading(2, f"Recent Activity (Last {model.recent_days} Days)"))
    blocks.append(Meta("Recent Commits", f"{model.recent_commit_count:,}"))
    blocks.extend(_group_blocks(model.recent_groups, 3, model.tz))

    stats = model.all_time
    first = format_datetime(model.first_commit, model.tz) if model.first_commit else "n/a"
    last = format_datetime(model.last_commit, model.tz) if model.last_commit else "n/a"
    blocks.extend(
        [
            Heading(2, "All Time Statistics"),
            Field("Total files modified", f"{stats.files_modified:,}"),
            Field("Total lines added", f"{stats.lines_added:,}"),
            Field("Total lines deleted", f"{stats.lines_deleted:,}"),
            Field("First commit", first),
            Field("Last commit", last),
            Rule(),
            Signature(REPORT_SIGNATURE),
        ]
    )
    return blocks


def _separate(previous: Block | None, current: Block) -> bool:
    """Blank line between blocks unless both belong to the same list or header run."""
    if previous is None:
        return False
    if isinstance(previous, LIST_BLOCKS) and isinstance(current, LIST_BLOCKS):
        return False
    if isinstance(previous, (Title, Meta)) and isinstance(current, Meta):
        return False
    return True


class OutlineRenderer:
    """Markdown outline."""

    def render(self, blocks: Sequence[Block]) -> str:
        lines: list[str] = []
        previous: Block | None = None
        for block in blocks:
            if _separate(previous, block):
                lines.append("")
            lines.extend(self._lines(block))
            previous = block
        return "\n".join(lines) + "\n"

    def _lines(self, block: Block) -> list[str]:
        if isinstance(block, Title):
            return [f"# {block.text}"]
        if isinstance(block, Meta):
            return [f"**{block.label}:** {block.value}"]
        if isinstance(block, Heading):
            return [f"{'#' * block.level} {block.text}"]
        if isinstance(block, Field):
            return [f"- **{block.label}:** {block.value}"]
        if isinstance(block, Entry):
            return [f"- **{block.label}** - {block.text}", *(f"  - {d}" for d in block.details)]
        if isinstance(block, Paragraph):
            return [block.text]
        if isinstance(block, Rule):
            return ["---"]
        return [f"*{block.text}*"]


class DecoratedTextRenderer:
    """Plain text with box-drawing borders and bullet glyphs."""

    def render(self, blocks: Sequence[Block]) -> str:
        lines: list[str] = []
        previous: Block | None = None
        indent = ""
        for block in blocks:
            if isinstance(block, Heading):
                indent = "   " * max(0, block.level - 3)
            if _separate(previous, block):
                lines.append("")
            lines.extend(self._lines(block, indent))
            if isinstance(block, Heading):
                indent = "   " * max(0, block.level - 2)
            previous = block
        return "\n".join(lines) + "\n"

    def _lines(self, block: Block, indent: str) -> list[str]:
        if isinstance(block, Title):
            border = "═" * max(TEXT_WIDTH, len(block.text) + 4)
            title = block.text.upper()
            return [border, title.center(len(border)).rstrip(), border]
        if isinstance(block, Meta):
            return [f"{indent}{block.label.upper()}: {block.value}"]
        if isinstance(block, Heading):
            if block.level == 2:
                return [block.text.upper(), "─" * len(block.text)]
            return [f"{indent}{block.text}", f"{indent}{'·' * len(block.text)}"]
        if isinstance(block, Field):
            return [f"{indent}• {block.label}: {block.value}"]
        if isinstance(block, Entry):
            return [
                f"{indent}• {block.label} - {block.text}",
                *(f"{indent}  {d}" for d in block.details),
            ]
        if isinstance(block, Paragraph):
            return [block.text]
        if isinstance(block, Rule):
            return ["─" * TEXT_WIDTH]
        return [block.text]


class StyledMarkupRenderer:
    """Self-contained HTML document with inline styles."""

    STYLES = {
        "body": "font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px;",
        "h1": "color: #2563eb; border-bottom: 2px solid #e5e7eb; padding-bottom: 8px;",
        "h2": "color: #374151; margin-top: 24px; margin-bottom: 12px;",
        "h3": "color: #4b5563; margin-top: 20px; margin-bottom: 8px;",
        "h4": "color: #6b7280; margin-top: 16px; margin-bottom: 6px;",
        "p": "margin-bottom: 12px; line-height: 1.6;",
        "ul": "margin-bottom: 12px; padding-left: 20px;",
        "li": "margin-bottom: 4px;",
        "strong": "color: #1f2937;",
        "hr": "border: none; border-top: 1px solid #e5e7eb; margin: 24px 0;",
    }

    def render(self, blocks: Sequence[Block]) -> str:
        title = next((block.text for block in blocks if isinstance(block, Title)), REPORT_TITLE)
        body: list[str] = []
        in_list = False
        for block in blocks:
            is_item = isinstance(block, LIST_BLOCKS)
            if is_item and not in_list:
                body.append(f'<ul style="{self.STYLES["ul"]}">')
            elif not is_item and in_list:
                body.append("</ul>")
            in_list = is_item
            body.append(self._element(block))
        if in_list:
            body.append("</ul>")

        return "\n".join(
            [
                "<!DOCTYPE html>",
                '<html lang="en">',
                "<head>",
                '<meta charset="utf-8">',
                f"<title>{html.escape(title)}</title>",
                "</head>",
                "<body>",
                f'<div style="{self.STYLES["body"]}">',
                *body,
                "</div>",
                "</body>",
                "</html>",
            ]
        ) + "\n"

    def _strong(self, text: str) -> str:
        return f'<strong style="{self.STYLES["strong"]}">{html.escape(text)}</strong>'

    def _element(self, block: Block) -> str:
        styles = self.STYLES
        if isinstance(block, Title):
            return f'<h1 style="{styles["h1"]}">{html.escape(block.text)}</h1>'
        if isinstance(block, Meta):
            return f'<p style="{styles["p"]}">{self._strong(block.label + ":")} {html.escape(block.value)}</p>'
        if isinstance(block, Heading):
            tag = f"h{min(max(block.level, 1), 6)}"
            style = styles.get(tag, styles["h4"])
            return f'<{tag} style="{style}">{html.escape(block.text)}</{tag}>'
        if isinstance(block, Field):
            return f'<li style="{styles["li"]}">{self._strong(block.label + ":")} {html.escape(block.value)}</li>'
        if isinstance(block, Entry):
            item = f"{self._strong(block.label)} - {html.escape(block.text)}"
            if block.details:
                nested = "".join(
                    f'<li style="{styles["li"]}">{html.escape(detail)}</li>' for detail in block.details
                )
                item += f'<ul style="{styles["ul"]}">{nested}</ul>'
            return f'<li style="{styles["li"]}">{item}</li>'
        if isinstance(block, Paragraph):
            return f'<p style="{styles["p"]}">{html.escape(block.text)}</p>'
        if isinstance(block, Rule):
            return f'<hr style="{styles["hr"]}">'
        return f'<p style="{styles["p"]}"><em>{html.escape(block.text)}</em></p>'


RENDERERS: dict[ReportFormat, Any] = {
    ReportFormat.STRUCTURED_OUTLINE: OutlineRenderer(),
    ReportFormat.DECORATED_TEXT: DecoratedTextRenderer(),
    ReportFormat.STYLED_MARKUP: StyledMarkupRenderer(),
}


def render_report(model: ReportModel, report_format: ReportFormat) -> str:
    return RENDERERS[report_format].render(layout_report(model))


def render_project_report(model: ProjectReportModel, report_format: ReportFormat) -> str:
    return RENDERERS[report_format].render(layout_project_report(model))


def build_report(
    ledger_slice: Mapping[str, Sequence[CommitRecord]],
    start: date,
    end: date,
    report_format: str | ReportFormat,
    *,
    tz: tzinfo | None = None,
    generated_at: datetime | None = None,
) -> str:
    """Aggregate `ledger_slice` over `[start, end]` and render it in `report_format`."""
    selected = parse_report_format(report_format)
    model = build_report_model(ledger_slice, start, end, tz=tz, generated_at=generated_at)
    return render_report(model, selected)
