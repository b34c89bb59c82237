"""Engine facade wiring the ledger store, synchronizer and report aggregator."""

from __future__ import annotations

from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Callable

from .constants import LOOKBACK_WINDOW, MAX_LEDGER_COMMITS
from .errors import ErrorCode, LedgerError
from .models import (
    ProjectReportRequest,
    ProjectReportResponse,
    RefreshRequest,
    RefreshResponse,
    ReportFormat,
    ReportRequest,
    ReportResponse,
    SyncRequest,
    SyncResponse,
    TrackRequest,
    TrackResponse,
)
from .renderers import parse_report_format, render_project_report, render_report
from .report import build_project_report_model, build_report_model, display_name
from .repository import RepositoryRegistry
from .runtime import default_ledger_path
from .store import LedgerStore
from .synchronizer import LedgerSynchronizer


class ReportCompilerEngine:
    """Main service implementing ledger and reporting operations."""

    def __init__(
        self,
        store: LedgerStore | None = None,
        registry: RepositoryRegistry | None = None,
        ledger_path: Path | str | None = None,
        default_format: ReportFormat = ReportFormat.STRUCTURED_OUTLINE,
        lookback: int = LOOKBACK_WINDOW,
        max_commits: int = MAX_LEDGER_COMMITS,
        tz: tzinfo | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        if store is None:
            store = LedgerStore(Path(ledger_path) if ledger_path else default_ledger_path())
        self.store = store
        self.registry = registry if registry is not None else RepositoryRegistry()
        self.default_format = default_format
        self.tz = tz
        self._now_fn = now_fn or (lambda: datetime.now().astimezone())
        self.synchronizer = LedgerSynchronizer(
            store=self.store,
            registry=self.registry,
            lookback=lookback,
            max_commits=max_commits,
            now_fn=self._now_fn,
        )

    def track_project(self, request: TrackRequest) -> TrackResponse:
        """Start tracking a git working copy and ingest its recent history."""
        result = self.synchronizer.track(request.path)
        project = result.project
        return TrackResponse(
            status="success",
            message=f"Tracking project '{project.identifier}'",
            identifier=project.identifier,
            path=project.path,
            changed=result.changed,
            new_commits=len(result.new_commits),
            total_commits=len(project.commits),
        )

    def sync_projects(self, request: SyncRequest) -> SyncResponse:
        """Sync one project or every tracked project."""
        if request.identifier:
            outcomes = [self.synchronizer.sync_project(request.identifier)]
        else:
            outcomes = self.synchronizer.sync_all()

        counts = {"updated": 0, "unchanged": 0, "skipped": 0, "failed": 0}
        for outcome in outcomes:
            counts[outcome.status] += 1
        if counts["updated"]:
            message = f"New commits detected in {counts['updated']} project(s)"
        else:
            message = "No new commits detected"
        return SyncResponse(status="success", message=message, results=outcomes, **counts)

    def refresh_project(self, request: RefreshRequest) -> RefreshResponse:
        result = self.synchronizer.refresh(request.identifier)
        return RefreshResponse(
            status="success",
            message=f"Project '{request.identifier}' re-ingested",
            identifier=request.identifier,
            total_commits=len(result.project.commits),
        )

    def generate_report(self, request: ReportRequest) -> ReportResponse:
        """Render an activity report for a date range from the stored ledger."""
        report_format = parse_report_format(request.format, self.default_format)
        identifiers: list[str] | None = None
        if request.projects:
            self._require_projects(request.projects)
            identifiers = request.projects

        ledger_slice = self.store.snapshot(identifiers)
        model = build_report_model(
            ledger_slice,
            request.start_date,
            request.end_date,
            tz=self.tz,
            generated_at=self._now_fn(),
        )
        summary = model.summary
        return ReportResponse(
            status="success",
            message="Report generated" if model.has_data else "No commits found for this period",
            format=report_format,
            start_date=model.start_date.isoformat(),
            end_date=model.end_date.isoformat(),
            generated_at=model.generated_at.isoformat(),
            has_data=model.has_data,
            summary={
                "total_commits": summary.total_commits,
                "total_projects": summary.total_projects,
                "files_modified": summary.files_modified,
                "lines_added": summary.lines_added,
                "lines_deleted": summary.lines_deleted,
            },
            rendered=render_report(model, report_format),
        )

    def generate_project_report(self, request: ProjectReportRequest) -> ProjectReportResponse:
        report_format = parse_report_format(request.format, self.default_format)
        project = self._require_project(request.identifier)
        model = build_project_report_model(
            project,
            now=self._now_fn(),
            recent_days=request.recent_days,
            tz=self.tz,
        )
        return ProjectReportResponse(
            status="success",
            message=f"Project report generated for '{project.identifier}'",
            identifier=project.identifier,
            format=report_format,
            generated_at=model.generated_at.isoformat(),
            rendered=render_project_report(model, report_format),
        )

    def list_projects(self) -> dict[str, Any]:
        projects = [
            {
                "identifier": project.identifier,
                "display_name": display_name(project.identifier),
                "path": project.path,
                "commit_count": len(project.commits),
                "last_activity": project.last_activity.isoformat(),
                "created_at": project.created_at.isoformat(),
            }
            for project in self.store.list()
        ]
        return {
            "status": "success",
            "message": "Projects listed",
            "count": len(projects),
            "projects": projects,
        }

    def get_stats(self, identifier: str | None = None) -> dict[str, Any]:
        if identifier:
            self._require_project(identifier)
        return {
            "status": "success",
            "message": "Statistics computed",
            "identifier": identifier or "",
            "stats": self.store.stats(identifier),
        }

    def delete_project(self, identifier: str) -> dict[str, Any]:
        self.synchronizer.untrack(identifier)
        return {
            "status": "success",
            "message": f"Project '{identifier}' removed from the ledger",
            "identifier": identifier,
        }

    def export_ledger(self) -> dict[str, Any]:
        return {
            "status": "success",
            "message": "Ledger exported",
            "storage_path": str(self.store.storage_path),
            "document": self.store.export_document(),
        }

    def import_ledger(self, payload: Any) -> dict[str, Any]:
        backup_path = self.store.import_document(payload)
        self.registry.clear()
        return {
            "status": "success",
            "message": "Ledger imported",
            "count": len(self.store.list()),
            "backup_path": str(backup_path) if backup_path else "",
        }

    def clear_ledger(self) -> dict[str, Any]:
        backup_path = self.store.clear()
        self.registry.clear()
        return {
            "status": "success",
            "message": "All project data cleared",
            "backup_path": str(backup_path) if backup_path else "",
        }

    def _require_project(self, identifier: str):
        project = self.store.get(identifier)
        if project is None:
            raise LedgerError(
                ErrorCode.PROJECT_NOT_FOUND,
                f"Project '{identifier}' is not tracked",
                "Check identifiers with the project list.",
                {"identifier": identifier},
            )
        return project

    def _require_projects(self, identifiers: list[str]) -> None:
        known = {project.identifier for project in self.store.list()}
        missing = [identifier for identifier in identifiers if identifier not in known]
        if missing:
            raise LedgerError(
                ErrorCode.PROJECT_NOT_FOUND,
                "One or more projects were not found",
                "Check identifiers with the project list.",
                {"missing_projects": missing},
            )
