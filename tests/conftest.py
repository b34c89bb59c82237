from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest

from prc_mcp.errors import DiffUnavailableError
from prc_mcp.models import FileChangeRecord
from prc_mcp.repository import CommitSummary, RepositoryRegistry

UTC = timezone.utc
BASE_TIME = datetime(2025, 1, 15, 10, 0, tzinfo=UTC)


class FakeRepository:
    """In-memory commit history, newest first, shared by fake adapters."""

    def __init__(self) -> None:
        self.commits: list[CommitSummary] = []
        self.diffs: dict[str, list[FileChangeRecord]] = {}
        self.broken = False
        self.broken_diff: str | None = None
        self._counter = 0

    def add_commit(
        self,
        message: str,
        *,
        files: list[FileChangeRecord] | None = None,
        timestamp: datetime | None = None,
    ) -> CommitSummary:
        self._counter += 1
        summary = CommitSummary(
            hash=f"{self._counter:040x}",
            message=message,
            author_name="Dev",
            author_email="dev@example.com",
            timestamp=timestamp or BASE_TIME + timedelta(hours=self._counter),
        )
        self.commits.insert(0, summary)
        self.diffs[summary.hash] = list(files or [])
        return summary

    @property
    def root_hash(self) -> str | None:
        return self.commits[-1].hash if self.commits else None


class FakeAdapter:
    def __init__(self, repos: dict[str, FakeRepository]) -> None:
        self.repos = repos
        self.closed = False

    def is_repository(self, path: str) -> bool:
        return path in self.repos

    def recent_commits(self, path: str, max_count: int) -> list[CommitSummary]:
        repo = self.repos[path]
        if repo.broken:
            raise RuntimeError("fatal: bad object HEAD")
        return list(repo.commits[:max_count])

    def diff_summary(self, path: str, from_hash: str, to_hash: str) -> list[FileChangeRecord]:
        repo = self.repos[path]
        if to_hash == repo.broken_diff:
            raise RuntimeError(f"fatal: unable to read tree for {to_hash}")
        if to_hash == repo.root_hash:
            raise DiffUnavailableError(f"unknown revision {from_hash}")
        return list(repo.diffs.get(to_hash, []))

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_repos() -> dict[str, FakeRepository]:
    return {}


@pytest.fixture()
def fake_registry(fake_repos: dict[str, FakeRepository]) -> RepositoryRegistry:
    return RepositoryRegistry(factory=lambda: FakeAdapter(fake_repos))


@pytest.fixture()
def make_repo(
    tmp_path: Path,
    fake_repos: dict[str, FakeRepository],
) -> Callable[[str], tuple[str, FakeRepository]]:
    def _make(name: str) -> tuple[str, FakeRepository]:
        path = tmp_path / name
        path.mkdir(parents=True, exist_ok=True)
        key = str(path.resolve())
        repo = FakeRepository()
        fake_repos[key] = repo
        return key, repo

    return _make


@pytest.fixture()
def ledger_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "ledger.yaml"


@pytest.fixture()
def git_repo(tmp_path: Path):
    """Factory creating real git working copies with deterministic commits."""
    git = pytest.importorskip("git")

    def _make(name: str, commits: list[tuple[str, dict[str, str], str]]) -> Path:
        path = tmp_path / name
        path.mkdir(parents=True, exist_ok=True)
        repo = git.Repo.init(path)
        with repo.config_writer() as writer:
            writer.set_value("user", "name", "Dev")
            writer.set_value("user", "email", "dev@example.com")
        actor = git.Actor("Dev", "dev@example.com")
        for message, files, when in commits:
            for filename, content in files.items():
                target = path / filename
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
                repo.index.add([str(target)])
            # git raw date format: "<epoch> <offset>"
            stamp = f"{int(datetime.fromisoformat(when).timestamp())} +0000"
            repo.index.commit(
                message,
                author=actor,
                committer=actor,
                author_date=stamp,
                commit_date=stamp,
            )
        repo.close()
        return path

    return _make
