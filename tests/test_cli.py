from __future__ import annotations

import json
from pathlib import Path

import pytest

from prc_mcp.cli import main

HISTORY = [
    ("Initial commit", {"a.txt": "one\n"}, "2025-01-14T08:00:00+00:00"),
    ("feat: add a", {"a.txt": "one\ntwo\n"}, "2025-01-15T10:00:00+00:00"),
    ("fix: adjust b", {"b.txt": "bee\n"}, "2025-01-16T09:00:00+00:00"),
]


def _run_cli_json(args: list[str], capsys) -> dict:
    exit_code = main(args + ["--json"])
    assert exit_code in (0, 1)
    output = capsys.readouterr().out
    return {"exit_code": exit_code, "payload": json.loads(output)}


@pytest.fixture()
def tracked(git_repo, ledger_path: Path, capsys) -> Path:
    repo_path = git_repo("cli-demo", HISTORY)
    result = _run_cli_json(["track", str(repo_path), "--ledger-path", str(ledger_path)], capsys)
    assert result["exit_code"] == 0
    assert result["payload"]["identifier"] == "cli-demo"
    assert result["payload"]["total_commits"] == 3
    return repo_path


def test_cli_track_list_and_stats(tracked: Path, ledger_path: Path, capsys) -> None:
    listing = _run_cli_json(["list", "--ledger-path", str(ledger_path)], capsys)
    assert listing["exit_code"] == 0
    assert listing["payload"]["count"] == 1
    assert listing["payload"]["projects"][0]["display_name"] == "Cli Demo"

    stats = _run_cli_json(["stats", "cli-demo", "--ledger-path", str(ledger_path)], capsys)
    assert stats["exit_code"] == 0
    assert stats["payload"]["stats"]["total_commits"] == 3

    sync = _run_cli_json(["sync", "--ledger-path", str(ledger_path)], capsys)
    assert sync["exit_code"] == 0
    assert sync["payload"]["unchanged"] == 1


def test_cli_report_json(tracked: Path, ledger_path: Path, capsys) -> None:
    result = _run_cli_json(
        [
            "report",
            "--start",
            "2025-01-01",
            "--end",
            "2025-01-31",
            "--format",
            "decorated-text",
            "--ledger-path",
            str(ledger_path),
        ],
        capsys,
    )

    assert result["exit_code"] == 0
    payload = result["payload"]
    assert payload["format"] == "decorated-text"
    assert payload["summary"]["total_commits"] == 3
    assert "WORK REPORT" in payload["rendered"]


def test_cli_report_text_and_output_file(tracked: Path, ledger_path: Path, tmp_path: Path, capsys) -> None:
    exit_code = main(
        ["report", "--start", "2025-01-15", "--end", "2025-01-16", "--ledger-path", str(ledger_path)]
    )
    output = capsys.readouterr().out
    assert exit_code == 0
    assert output.startswith("# Work Report")
    assert "add a" in output

    target = tmp_path / "out" / "report.html"
    result = _run_cli_json(
        [
            "report",
            "--start",
            "2025-01-15",
            "--end",
            "2025-01-16",
            "--format",
            "styled-markup",
            "--output",
            str(target),
            "--ledger-path",
            str(ledger_path),
        ],
        capsys,
    )
    assert result["exit_code"] == 0
    assert result["payload"]["output_path"] == str(target.resolve())
    assert "rendered" not in result["payload"]
    assert target.read_text(encoding="utf-8").startswith("<!DOCTYPE html>")


def test_cli_report_period(tracked: Path, ledger_path: Path, capsys) -> None:
    result = _run_cli_json(
        ["report", "--period", "last-month", "--ledger-path", str(ledger_path)], capsys
    )
    assert result["exit_code"] == 0
    assert result["payload"]["status"] == "success"


@pytest.mark.parametrize(
    ("args", "error_code"),
    [
        (["report", "--start", "2025-01-16", "--end", "2025-01-15"], "INVALID_DATE_RANGE"),
        (["report", "--start", "15/01/2025", "--end", "2025-01-16"], "INVALID_INPUT"),
        (["report", "--start", "2025-01-15"], "INVALID_INPUT"),
        (["report", "--period", "this-week", "--start", "2025-01-15"], "INVALID_INPUT"),
        (["report", "--start", "2025-01-15", "--end", "2025-01-16", "--projects", "ghost"], "PROJECT_NOT_FOUND"),
        (["project-report", "ghost"], "PROJECT_NOT_FOUND"),
        (["delete", "ghost"], "PROJECT_NOT_FOUND"),
        (["clear"], "INVALID_INPUT"),
    ],
)
def test_cli_errors(ledger_path: Path, capsys, args: list[str], error_code: str) -> None:
    result = _run_cli_json(args + ["--ledger-path", str(ledger_path)], capsys)
    assert result["exit_code"] == 1
    assert result["payload"]["status"] == "error"
    assert result["payload"]["error_code"] == error_code


def test_cli_track_rejects_plain_directory(tmp_path: Path, ledger_path: Path, capsys) -> None:
    plain = tmp_path / "plain"
    plain.mkdir()

    result = _run_cli_json(["track", str(plain), "--ledger-path", str(ledger_path)], capsys)

    assert result["exit_code"] == 1
    assert result["payload"]["error_code"] == "NOT_A_REPOSITORY"


def test_cli_export_import_clear(tracked: Path, ledger_path: Path, tmp_path: Path, capsys) -> None:
    export_file = tmp_path / "export.json"
    exported = _run_cli_json(
        ["export", "--output", str(export_file), "--ledger-path", str(ledger_path)], capsys
    )
    assert exported["exit_code"] == 0
    assert "document" not in exported["payload"]
    document = json.loads(export_file.read_text(encoding="utf-8"))
    assert document["projects"][0]["identifier"] == "cli-demo"

    cleared = _run_cli_json(["clear", "--yes", "--ledger-path", str(ledger_path)], capsys)
    assert cleared["exit_code"] == 0
    assert Path(cleared["payload"]["backup_path"]).exists()

    imported = _run_cli_json(
        ["import", "--input", str(export_file), "--ledger-path", str(ledger_path)], capsys
    )
    assert imported["exit_code"] == 0
    assert imported["payload"]["count"] == 1

    report = _run_cli_json(["project-report", "cli-demo", "--ledger-path", str(ledger_path)], capsys)
    assert report["exit_code"] == 0
    assert report["payload"]["rendered"].startswith("# Project Report: Cli Demo")


def test_cli_import_rejects_garbage(tmp_path: Path, ledger_path: Path, capsys) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("{not: [valid", encoding="utf-8")

    result = _run_cli_json(["import", "--input", str(bad), "--ledger-path", str(ledger_path)], capsys)

    assert result["exit_code"] == 1
    assert result["payload"]["error_code"] == "INVALID_INPUT"


def test_cli_refresh_delete_and_text_mode(tracked: Path, ledger_path: Path, capsys) -> None:
    refreshed = _run_cli_json(["refresh", "cli-demo", "--ledger-path", str(ledger_path)], capsys)
    assert refreshed["exit_code"] == 0
    assert refreshed["payload"]["total_commits"] == 3

    exit_code = main(["delete", "cli-demo", "--ledger-path", str(ledger_path)])
    output = capsys.readouterr().out
    assert exit_code == 0
    assert output.startswith("[SUCCESS] Project 'cli-demo' removed from the ledger")


def test_cli_watch_single_cycle(tracked: Path, ledger_path: Path, capsys) -> None:
    result = _run_cli_json(
        ["watch", "--max-cycles", "1", "--interval", "1", "--ledger-path", str(ledger_path)],
        capsys,
    )
    assert result["exit_code"] == 0
    assert result["payload"]["unchanged"] == 1


def test_cli_config_reflects_environment(monkeypatch, tmp_path: Path, capsys) -> None:
    monkeypatch.setenv("PRC_MCP_LEDGER_PATH", str(tmp_path / "env-ledger.yaml"))
    monkeypatch.setenv("PRC_MCP_REPORT_FORMAT", "styled-markup")

    result = _run_cli_json(["config"], capsys)

    assert result["exit_code"] == 0
    config = result["payload"]["config"]
    assert config["ledger_path"] == str(tmp_path / "env-ledger.yaml")
    assert config["report_format"] == "styled-markup"
    assert not (tmp_path / "env-ledger.yaml").exists()


def test_cli_invalid_environment_is_reported(monkeypatch, ledger_path: Path, capsys) -> None:
    monkeypatch.setenv("PRC_MCP_LOOKBACK", "zero")

    result = _run_cli_json(["list", "--ledger-path", str(ledger_path)], capsys)

    assert result["exit_code"] == 1
    assert result["payload"]["error_code"] == "INVALID_INPUT"
