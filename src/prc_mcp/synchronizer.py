"""Incremental ingestion of repository history into the project ledger."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Callable

from .constants import LOOKBACK_WINDOW, MAX_LEDGER_COMMITS, MERGE_PREFIX, PULL_REQUEST_MARKER
from .errors import DiffUnavailableError, ErrorCode, LedgerError
from .models import CommitRecord, ProjectRecord, ProjectSyncOutcome
from .repository import CommitSummary, RepositoryAdapter, RepositoryRegistry
from .store import LedgerStore

logger = logging.getLogger(__name__)

IDENTIFIER_STRIP_PATTERN = re.compile(r"[^a-zA-Z0-9\-_\s]")
WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass
class SyncResult:
    """Outcome of reconciling one project against its repository."""

    project: ProjectRecord
    changed: bool
    new_commits: list[CommitRecord] = field(default_factory=list)


def project_identifier_from_path(path: str) -> str:
    """Derive a ledger identifier from a working-copy directory name."""
    name = Path(path).expanduser().resolve().name
    cleaned = IDENTIFIER_STRIP_PATTERN.sub("", name).strip()
    return WHITESPACE_PATTERN.sub("-", cleaned).lower()


def is_pull_request_merge(message: str) -> bool:
    """Return whether a message looks like a merge-bot pull request merge."""
    lowered = message.lower()
    return lowered.startswith(MERGE_PREFIX) and PULL_REQUEST_MARKER in lowered


class LedgerSynchronizer:
    """Reconcile tracked projects with their repositories, one project at a time."""

    def __init__(
        self,
        store: LedgerStore,
        registry: RepositoryRegistry | None = None,
        lookback: int = LOOKBACK_WINDOW,
        max_commits: int = MAX_LEDGER_COMMITS,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        if lookback < 1 or max_commits < 1:
            raise ValueError("lookback and max_commits must be >= 1.")
        self.store = store
        self.registry = registry if registry is not None else RepositoryRegistry()
        self.lookback = lookback
        self.max_commits = max_commits
        self._now_fn = now_fn or (lambda: datetime.now().astimezone())
        self._locks_guard = Lock()
        self._project_locks: dict[str, Lock] = {}

    def sync(self, project: ProjectRecord, adapter: RepositoryAdapter) -> SyncResult:
        """Pull recent history for `project` and return an updated copy.

        The walk stops at the newest stored hash, skips pull-request merge
        commits, and records an empty file list when a commit has no diffable
        parent. The result is bounded to `max_commits`, newest first. History
        fetch errors propagate; the input record is never modified.
        """
        boundary_hash = project.commits[0].hash if project.commits else None
        fetched = adapter.recent_commits(project.path, self.lookback)

        retained: list[CommitRecord] = []
        for summary in fetched:
            if boundary_hash is not None and summary.hash == boundary_hash:
                break
            if is_pull_request_merge(summary.message):
                continue
            retained.append(self._capture(project, summary, adapter))

        if not retained:
            return SyncResult(project=project, changed=False)

        commits = [*retained, *project.commits]
        if len(commits) > self.max_commits:
            commits = commits[: self.max_commits]

        updated = project.model_copy(
            update={"commits": commits, "last_activity": self._now_fn()},
            deep=True,
        )
        logger.info("Found %d new commits in %s", len(retained), project.identifier)
        return SyncResult(project=updated, changed=True, new_commits=retained)

    def track(self, path: str) -> SyncResult:
        """Start tracking a working copy, or refresh its path, then sync it."""
        resolved = str(Path(path).expanduser().resolve())
        adapter = self.registry.adapter_for(resolved)
        if not adapter.is_repository(resolved):
            self.registry.forget(resolved)
            raise LedgerError(
                ErrorCode.NOT_A_REPOSITORY,
                f"{resolved} is not a git repository",
                "Point to the root of a git working copy.",
                {"path": resolved},
            )

        identifier = project_identifier_from_path(resolved)
        if not identifier:
            raise LedgerError(
                ErrorCode.INVALID_INPUT,
                f"Cannot derive a project identifier from {resolved}",
                "Rename the directory to include letters or digits.",
            )

        with self._project_lock(identifier):
            now = self._now_fn()
            existing = self.store.get(identifier)
            if existing is None:
                project = ProjectRecord(
                    identifier=identifier,
                    path=resolved,
                    commits=[],
                    last_activity=now,
                    created_at=now,
                )
            else:
                project = existing.model_copy(update={"path": resolved, "last_activity": now})

            result = self.sync(project, adapter)
            self.store.put(result.project)

        logger.info("Added project to tracking: %s", identifier)
        return result

    def sync_all(self) -> list[ProjectSyncOutcome]:
        """Sync every stored project sequentially; failures never abort the batch.

        Each record is re-read under its project lock, so projects deleted while
        the batch runs are skipped rather than written back.
        """
        outcomes: list[ProjectSyncOutcome] = []
        for identifier in [project.identifier for project in self.store.list()]:
            outcome = self._sync_tracked(identifier)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def sync_project(self, identifier: str) -> ProjectSyncOutcome:
        outcome = self._sync_tracked(identifier)
        if outcome is None:
            raise self._not_found(identifier)
        return outcome

    def refresh(self, identifier: str) -> SyncResult:
        """Drop stored commits and re-ingest the lookback window from scratch."""
        with self._project_lock(identifier):
            project = self.store.get(identifier)
            if project is None or not project.path:
                raise self._not_found(identifier)

            adapter = self.registry.adapter_for(project.path)
            if not adapter.is_repository(project.path):
                raise LedgerError(
                    ErrorCode.NOT_A_REPOSITORY,
                    f"{project.path} is not a git repository",
                    "Restore the working copy or delete the project from the ledger.",
                    {"identifier": identifier, "path": project.path},
                )

            cleared = project.model_copy(update={"commits": []})
            result = self.sync(cleared, adapter)
            refreshed = result.project.model_copy(update={"last_activity": self._now_fn()})
            self.store.put(refreshed)

        logger.info(
            "Refreshed %s with %d commits", identifier, len(refreshed.commits)
        )
        return SyncResult(project=refreshed, changed=result.changed, new_commits=result.new_commits)

    def untrack(self, identifier: str) -> ProjectRecord:
        """Remove a project from the ledger and drop its cached adapter."""
        with self._project_lock(identifier):
            project = self.store.get(identifier)
            if project is None:
                raise self._not_found(identifier)
            self.store.delete(identifier)
            if project.path:
                self.registry.forget(project.path)
        logger.info("Stopped tracking %s", identifier)
        return project

    def _sync_tracked(self, identifier: str) -> ProjectSyncOutcome | None:
        with self._project_lock(identifier):
            project = self.store.get(identifier)
            if project is None:
                logger.debug("%s is no longer tracked, skipping", identifier)
                return None
            try:
                adapter = self.registry.adapter_for(project.path)
                if not adapter.is_repository(project.path):
                    logger.debug("%s is not a git repository, skipping", project.path)
                    return ProjectSyncOutcome(
                        identifier=identifier,
                        status="skipped",
                        total_commits=len(project.commits),
                    )
                result = self.sync(project, adapter)
                if result.changed:
                    self.store.put(result.project)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Failed to check for new commits in %s", project.path)
                return ProjectSyncOutcome(
                    identifier=identifier,
                    status="failed",
                    total_commits=len(project.commits),
                    error=str(exc),
                )

        return ProjectSyncOutcome(
            identifier=identifier,
            status="updated" if result.changed else "unchanged",
            new_commits=len(result.new_commits),
            total_commits=len(result.project.commits),
        )

    @staticmethod
    def _not_found(identifier: str) -> LedgerError:
        return LedgerError(
            ErrorCode.PROJECT_NOT_FOUND,
            f"Project '{identifier}' is not tracked",
            "Track the project first or pick one from the project list.",
            {"identifier": identifier},
        )

    def _capture(
        self,
        project: ProjectRecord,
        summary: CommitSummary,
        adapter: RepositoryAdapter,
    ) -> CommitRecord:
        try:
            files = adapter.diff_summary(project.path, f"{summary.hash}~1", summary.hash)
        except DiffUnavailableError as exc:
            logger.debug("Could not get diff for commit %s: %s", summary.hash, exc)
            files = []
        return CommitRecord(
            hash=summary.hash,
            message=summary.message,
            author_name=summary.author_name,
            author_email=summary.author_email,
            timestamp=summary.timestamp,
            files=files,
        )

    def _project_lock(self, identifier: str) -> Lock:
        with self._locks_guard:
            lock = self._project_locks.get(identifier)
            if lock is None:
                lock = Lock()
                self._project_locks[identifier] = lock
            return lock
