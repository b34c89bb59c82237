"""Durable project ledger backed by a single YAML document."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any

import yaml
from pydantic import ValidationError

from .constants import LEDGER_VERSION
from .errors import ErrorCode, LedgerError
from .file_manager import FileManager
from .models import CommitRecord, LedgerDocument, ProjectRecord

logger = logging.getLogger(__name__)


class LedgerStore:
    """Mapping from project identifier to `ProjectRecord`, persisted on every write."""

    def __init__(self, storage_path: Path, file_manager: FileManager | None = None) -> None:
        self.storage_path = Path(storage_path).expanduser()
        self.file_manager = file_manager or FileManager()
        self._lock = Lock()
        self._document = self._load()

    def get(self, identifier: str) -> ProjectRecord | None:
        with self._lock:
            for project in self._document.projects:
                if project.identifier == identifier:
                    return project.model_copy(deep=True)
        return None

    def list(self) -> list[ProjectRecord]:
        with self._lock:
            return [project.model_copy(deep=True) for project in self._document.projects]

    def put(self, record: ProjectRecord) -> None:
        """Insert or replace a project by identifier, keeping its position."""
        stored = record.model_copy(deep=True)
        with self._lock:
            projects = self._document.projects
            for index, project in enumerate(projects):
                if project.identifier == stored.identifier:
                    projects[index] = stored
                    break
            else:
                projects.append(stored)
            self._save()

    def delete(self, identifier: str) -> bool:
        with self._lock:
            remaining = [p for p in self._document.projects if p.identifier != identifier]
            if len(remaining) == len(self._document.projects):
                return False
            self._document.projects = remaining
            self._save()
            return True

    def snapshot(self, identifiers: Iterable[str] | None = None) -> dict[str, list[CommitRecord]]:
        """Return a consistent copy of project commits keyed by identifier."""
        wanted = set(identifiers) if identifiers is not None else None
        with self._lock:
            return {
                project.identifier: [commit.model_copy(deep=True) for commit in project.commits]
                for project in self._document.projects
                if wanted is None or project.identifier in wanted
            }

    def stats(self, identifier: str | None = None) -> dict[str, Any]:
        """Aggregate all-time totals across the ledger or a single project."""
        if identifier is None:
            projects = self.list()
        else:
            project = self.get(identifier)
            projects = [project] if project else []

        total_commits = 0
        files_changed = 0
        lines_added = 0
        lines_deleted = 0
        first_commit: datetime | None = None
        last_commit: datetime | None = None
        for project in projects:
            total_commits += len(project.commits)
            for commit in project.commits:
                if first_commit is None or commit.timestamp < first_commit:
                    first_commit = commit.timestamp
                if last_commit is None or commit.timestamp > last_commit:
                    last_commit = commit.timestamp
                for change in commit.files:
                    files_changed += 1
                    lines_added += change.additions
                    lines_deleted += change.deletions

        return {
            "total_commits": total_commits,
            "total_projects": len(projects),
            "files_changed": files_changed,
            "lines_added": lines_added,
            "lines_deleted": lines_deleted,
            "first_commit": first_commit.isoformat() if first_commit else None,
            "last_commit": last_commit.isoformat() if last_commit else None,
        }

    def export_document(self) -> dict[str, Any]:
        with self._lock:
            return self._document.model_dump(mode="json")

    def import_document(self, payload: Any) -> Path | None:
        """Replace the ledger with `payload`, backing up the current file first."""
        if not isinstance(payload, dict) or not isinstance(payload.get("projects"), list):
            raise LedgerError(
                ErrorCode.INVALID_INPUT,
                "Invalid ledger format: expected a mapping with a 'projects' list",
                "Import a document previously produced by export.",
            )
        try:
            document = LedgerDocument.model_validate(payload)
        except ValidationError as exc:
            raise LedgerError(
                ErrorCode.INVALID_INPUT,
                "Invalid ledger format",
                "Import a document previously produced by export.",
                {"errors": exc.errors(include_context=False, include_input=False)},
            ) from exc

        with self._lock:
            backup_path = self._backup("backup")
            self._document = document
            self._save()
        logger.info("Imported %d projects into %s", len(document.projects), self.storage_path)
        return backup_path

    def clear(self) -> Path | None:
        """Drop every project, backing up the current file first."""
        with self._lock:
            backup_path = self._backup("backup")
            self._document = LedgerDocument(version=LEDGER_VERSION)
            self._save()
        logger.info("Cleared ledger %s", self.storage_path)
        return backup_path

    def _load(self) -> LedgerDocument:
        if not self.storage_path.exists():
            document = LedgerDocument(version=LEDGER_VERSION)
            self._write(document)
            return document

        try:
            raw = self.file_manager.load_yaml(self.storage_path)
            if not isinstance(raw, dict):
                raise ValueError("ledger document is not a mapping")
            return LedgerDocument.model_validate(raw)
        except (yaml.YAMLError, ValidationError, ValueError) as exc:
            logger.warning(
                "Failed to load ledger %s, reinitializing empty ledger: %s",
                self.storage_path,
                exc,
            )
            self._backup("corrupt", move=True)
            document = LedgerDocument(version=LEDGER_VERSION)
            self._write(document)
            return document

    def _save(self) -> None:
        self._document.last_updated = datetime.now().astimezone()
        self._write(self._document)

    def _write(self, document: LedgerDocument) -> None:
        self.file_manager.write_yaml(self.storage_path, document.model_dump(mode="json"))

    def _backup(self, label: str, move: bool = False) -> Path | None:
        if not self.storage_path.exists():
            return None
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        target = self.storage_path.with_name(f"{self.storage_path.name}.{label}.{stamp}")
        if move:
            self.file_manager.move_file(self.storage_path, target)
        else:
            self.file_manager.copy_file(self.storage_path, target)
        logger.debug("Saved ledger %s copy to %s", label, target)
        return target
