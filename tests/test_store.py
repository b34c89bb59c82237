from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
import yaml

from prc_mcp.errors import ErrorCode, LedgerError
from prc_mcp.models import CommitRecord, FileChangeRecord, ProjectRecord
from prc_mcp.store import LedgerStore

UTC = timezone.utc


def _commit(hash_value: str, day: int, files: list[FileChangeRecord] | None = None) -> CommitRecord:
    return CommitRecord(
        hash=hash_value,
        message=f"commit {hash_value}",
        author_name="Dev",
        author_email="dev@example.com",
        timestamp=datetime(2025, 1, day, 12, 0, tzinfo=UTC),
        files=files or [],
    )


def _project(identifier: str, commits: list[CommitRecord] | None = None) -> ProjectRecord:
    stamp = datetime(2025, 1, 1, tzinfo=UTC)
    return ProjectRecord(
        identifier=identifier,
        path=f"/work/{identifier}",
        commits=commits or [],
        last_activity=stamp,
        created_at=stamp,
    )


def test_store_initializes_empty_ledger(ledger_path: Path) -> None:
    store = LedgerStore(ledger_path)

    assert store.list() == []
    payload = yaml.safe_load(ledger_path.read_text(encoding="utf-8"))
    assert payload["projects"] == []
    assert payload["version"] == "1.0.0"


def test_put_get_delete_persist_across_instances(ledger_path: Path) -> None:
    store = LedgerStore(ledger_path)
    store.put(_project("alpha", [_commit("a1", 15)]))
    store.put(_project("beta"))
    store.put(_project("alpha", [_commit("a2", 16), _commit("a1", 15)]))

    reloaded = LedgerStore(ledger_path)
    assert [p.identifier for p in reloaded.list()] == ["alpha", "beta"]
    assert [c.hash for c in reloaded.get("alpha").commits] == ["a2", "a1"]

    assert reloaded.delete("beta") is True
    assert reloaded.delete("beta") is False
    assert LedgerStore(ledger_path).get("beta") is None


def test_returned_records_are_copies(ledger_path: Path) -> None:
    store = LedgerStore(ledger_path)
    store.put(_project("alpha", [_commit("a1", 15)]))

    copy = store.get("alpha")
    copy.commits.clear()

    assert len(store.get("alpha").commits) == 1


def test_legacy_fields_are_backfilled(ledger_path: Path) -> None:
    ledger_path.parent.mkdir(parents=True)
    ledger_path.write_text(
        yaml.safe_dump(
            {
                "projects": [
                    {
                        "name": "legacy-app",
                        "path": "/work/legacy-app",
                        "lastActivity": "2025-01-10T08:00:00+00:00",
                        "commits": [
                            {
                                "hash": "abc",
                                "message": "old",
                                "author": "Dev",
                                "email": "dev@example.com",
                                "date": "2025-01-09T08:00:00+00:00",
                                "files": None,
                            }
                        ],
                    },
                    {"name": "bare", "path": "/work/bare", "commits": None},
                ],
                "lastUpdated": "2025-01-10T08:00:00+00:00",
            }
        ),
        encoding="utf-8",
    )

    store = LedgerStore(ledger_path)

    legacy = store.get("legacy-app")
    assert legacy.created_at == legacy.last_activity
    assert legacy.commits[0].author_name == "Dev"
    assert legacy.commits[0].files == []
    assert store.get("bare").commits == []


def test_corrupt_ledger_is_moved_aside(ledger_path: Path) -> None:
    ledger_path.parent.mkdir(parents=True)
    ledger_path.write_text("projects: [unclosed\n", encoding="utf-8")

    store = LedgerStore(ledger_path)

    assert store.list() == []
    corrupt = list(ledger_path.parent.glob("ledger.yaml.corrupt.*"))
    assert len(corrupt) == 1
    assert "unclosed" in corrupt[0].read_text(encoding="utf-8")
    assert yaml.safe_load(ledger_path.read_text(encoding="utf-8"))["projects"] == []


def test_non_mapping_ledger_is_recovered(ledger_path: Path) -> None:
    ledger_path.parent.mkdir(parents=True)
    ledger_path.write_text("- just\n- a list\n", encoding="utf-8")

    store = LedgerStore(ledger_path)

    assert store.list() == []
    assert list(ledger_path.parent.glob("ledger.yaml.corrupt.*"))


def test_import_replaces_ledger_after_backup(ledger_path: Path) -> None:
    store = LedgerStore(ledger_path)
    store.put(_project("alpha"))
    exported = store.export_document()
    store.put(_project("beta"))

    backup_path = store.import_document(exported)

    assert backup_path is not None and backup_path.exists()
    assert [p.identifier for p in store.list()] == ["alpha"]
    backed_up = yaml.safe_load(backup_path.read_text(encoding="utf-8"))
    assert [p["identifier"] for p in backed_up["projects"]] == ["alpha", "beta"]


@pytest.mark.parametrize("payload", [None, [], {"projects": "nope"}, {"projects": [{"path": "/x"}]}])
def test_import_rejects_invalid_documents(ledger_path: Path, payload) -> None:
    store = LedgerStore(ledger_path)
    store.put(_project("alpha"))

    with pytest.raises(LedgerError) as exc_info:
        store.import_document(payload)

    assert exc_info.value.code == ErrorCode.INVALID_INPUT
    assert [p.identifier for p in store.list()] == ["alpha"]


def test_clear_backs_up_and_empties(ledger_path: Path) -> None:
    store = LedgerStore(ledger_path)
    store.put(_project("alpha"))

    backup_path = store.clear()

    assert backup_path is not None and backup_path.exists()
    assert store.list() == []
    assert LedgerStore(ledger_path).list() == []


def test_snapshot_filters_identifiers(ledger_path: Path) -> None:
    store = LedgerStore(ledger_path)
    store.put(_project("alpha", [_commit("a1", 15)]))
    store.put(_project("beta", [_commit("b1", 16)]))

    snapshot = store.snapshot(["beta"])

    assert list(snapshot) == ["beta"]
    assert snapshot["beta"][0].hash == "b1"


def test_stats_totals(ledger_path: Path) -> None:
    store = LedgerStore(ledger_path)
    store.put(
        _project(
            "alpha",
            [
                _commit("a2", 16, [FileChangeRecord(filename="b.txt", additions=5, deletions=1, changes=6)]),
                _commit(
                    "a1",
                    15,
                    [
                        FileChangeRecord(filename="a.txt", additions=10, deletions=2, changes=12),
                        FileChangeRecord(filename="c.txt", additions=1, deletions=0, changes=1),
                    ],
                ),
            ],
        )
    )
    store.put(_project("beta"))

    stats = store.stats()
    assert stats["total_commits"] == 2
    assert stats["total_projects"] == 2
    assert stats["files_changed"] == 3
    assert stats["lines_added"] == 16
    assert stats["lines_deleted"] == 3
    assert stats["first_commit"].startswith("2025-01-15")
    assert stats["last_commit"].startswith("2025-01-16")

    empty = store.stats("beta")
    assert empty["total_commits"] == 0
    assert empty["first_commit"] is None
