"""Repository adapters that read commit history from git working copies."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Callable, Protocol

import git

from .errors import DiffUnavailableError
from .models import FileChangeRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitSummary:
    """Commit metadata as reported by a repository, before diff enrichment."""

    hash: str
    message: str
    author_name: str
    author_email: str
    timestamp: datetime


class RepositoryAdapter(Protocol):
    """Read-only view of a version-control working copy."""

    def is_repository(self, path: str) -> bool: ...

    def recent_commits(self, path: str, max_count: int) -> list[CommitSummary]: ...

    def diff_summary(self, path: str, from_hash: str, to_hash: str) -> list[FileChangeRecord]: ...

    def close(self) -> None: ...


class GitRepositoryAdapter:
    """GitPython-backed adapter for a single working copy."""

    def __init__(self) -> None:
        self._repo: git.Repo | None = None
        self._repo_path: str | None = None

    def is_repository(self, path: str) -> bool:
        if not Path(path).is_dir():
            return False
        try:
            self._open(path)
        except (git.InvalidGitRepositoryError, git.NoSuchPathError):
            return False
        return True

    def recent_commits(self, path: str, max_count: int) -> list[CommitSummary]:
        repo = self._open(path)
        if not repo.head.is_valid():
            return []
        commits: list[CommitSummary] = []
        for commit in repo.iter_commits("HEAD", max_count=max_count):
            commits.append(
                CommitSummary(
                    hash=commit.hexsha,
                    message=str(commit.message).strip(),
                    author_name=str(commit.author.name or ""),
                    author_email=str(commit.author.email or ""),
                    timestamp=commit.authored_datetime,
                )
            )
        return commits

    def diff_summary(self, path: str, from_hash: str, to_hash: str) -> list[FileChangeRecord]:
        repo = self._open(path)
        try:
            output = repo.git.diff("--numstat", from_hash, to_hash)
        except git.GitCommandError as exc:
            raise DiffUnavailableError(
                f"Cannot diff {from_hash}..{to_hash}: {str(exc.stderr).strip()}"
            ) from exc
        return parse_numstat(output)

    def close(self) -> None:
        """Release the cached repository and its git helper processes."""
        if self._repo is not None:
            self._repo.close()
        self._repo = None
        self._repo_path = None

    def _open(self, path: str) -> git.Repo:
        if self._repo is None or self._repo_path != path:
            repo = git.Repo(path)
            self.close()
            self._repo = repo
            self._repo_path = path
        return self._repo


def parse_numstat(output: str) -> list[FileChangeRecord]:
    """Parse `git diff --numstat` output; binary entries count as zero lines."""
    files: list[FileChangeRecord] = []
    for line in output.splitlines():
        parts = line.split("\t", 2)
        if len(parts) != 3:
            continue
        added_raw, deleted_raw, filename = parts
        additions = int(added_raw) if added_raw.isdigit() else 0
        deletions = int(deleted_raw) if deleted_raw.isdigit() else 0
        files.append(
            FileChangeRecord(
                filename=filename,
                additions=additions,
                deletions=deletions,
                changes=additions + deletions,
            )
        )
    return files


class RepositoryRegistry:
    """Adapters keyed by resolved working-copy path, built on first use."""

    def __init__(self, factory: Callable[[], RepositoryAdapter] | None = None) -> None:
        self._factory = factory or GitRepositoryAdapter
        self._lock = Lock()
        self._adapters: dict[str, RepositoryAdapter] = {}

    def adapter_for(self, path: str) -> RepositoryAdapter:
        key = self._key(path)
        with self._lock:
            adapter = self._adapters.get(key)
            if adapter is None:
                adapter = self._factory()
                self._adapters[key] = adapter
                logger.debug("Created repository adapter for %s", key)
            return adapter

    def forget(self, path: str) -> bool:
        with self._lock:
            adapter = self._adapters.pop(self._key(path), None)
        if adapter is None:
            return False
        adapter.close()
        return True

    def clear(self) -> None:
        with self._lock:
            adapters = list(self._adapters.values())
            self._adapters.clear()
        for adapter in adapters:
            adapter.close()

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        return self._key(path) in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    def _key(self, path: str) -> str:
        return str(Path(path).expanduser().resolve())
