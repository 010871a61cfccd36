# tests/test_cli.py
"""
Tests for the kot-archive command-line interface (CLI).

Scope
-----
These tests drive the Typer app in-process against the disk store that the
autouse fixture points at `tmp_path/archives`:
1.  **Command Registration**: `--help` lists the commands.
2.  **Browsing**: `list`, `show` and filter validation.
3.  **Import / Export / Delete**: exit codes and per-item reporting.
4.  **Replay**: `--instant` plays the whole log and reports the outcome.

Rich tables truncate long cells at the runner's terminal width, so the
assertions check titles and counts rather than full archive ids.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import make_log
from typer.testing import CliRunner

from kotarchive.cli import app
from kotarchive.core.storage.disk import DirectoryStore
from kotarchive.services.archive_store import ArchiveStore


@pytest.fixture  # type: ignore[misc]
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture  # type: ignore[misc]
def disk_store(tmp_path: Path) -> ArchiveStore:
    """The same directory the CLI opens through `KOT_ARCHIVE_DIR`."""
    return ArchiveStore(DirectoryStore(tmp_path / "archives"))


def test_cli_help_shows_commands(runner: CliRunner) -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0, f"Help failed: {result.output}"
    for command in ("list", "import", "export", "replay", "analytics", "prune"):
        assert command in result.output


def test_list_shows_archives_and_filters(runner: CliRunner, disk_store: ArchiveStore) -> None:
    disk_store.archive("gameLog", make_log(3), "Game")
    disk_store.archive("aidt", {"rounds": []}, "Tree")

    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0, result.output
    assert "Archives (2)" in result.output

    result = runner.invoke(app, ["list", "--type", "auto"])
    assert result.exit_code == 0
    assert "No archives match." in result.output


def test_list_rejects_unknown_filter(runner: CliRunner) -> None:
    result = runner.invoke(app, ["list", "--type", "chess"])
    assert result.exit_code == 1
    assert "Invalid filter" in result.output


def test_show_unknown_id_exits_1(runner: CliRunner) -> None:
    result = runner.invoke(app, ["show", "missing"])
    assert result.exit_code == 1
    assert "Not found" in result.output


def test_show_prints_log_entries(runner: CliRunner, disk_store: ArchiveStore) -> None:
    record = disk_store.archive("gameLog", make_log(3), "Short game")
    result = runner.invoke(app, ["show", record.id, "--limit", "2"])

    assert result.exit_code == 0, result.output
    assert "Short game" in result.output
    assert "Entry 1" in result.output
    assert "Entry 2" not in result.output
    assert "1 more" in result.output


def test_import_valid_and_invalid(
    runner: CliRunner, disk_store: ArchiveStore, tmp_path: Path
) -> None:
    source = ArchiveStore(DirectoryStore(tmp_path / "elsewhere"))
    payload = source.load(source.archive("gameLog", make_log(2), "Imported game"))
    good = tmp_path / "good.json"
    good.write_text(json.dumps(payload.to_wire()), encoding="utf-8")
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"meta": {"type": "gameLog"}}), encoding="utf-8")

    result = runner.invoke(app, ["import", str(good)])
    assert result.exit_code == 0, result.output
    assert "Imported" in result.output
    assert [r.name for r in disk_store.list_all()] == ["Imported game"]

    result = runner.invoke(app, ["import", str(bad)])
    assert result.exit_code == 1
    assert "Import rejected" in result.output
    assert len(disk_store.list_all()) == 1


def test_import_missing_file_is_usage_error(runner: CliRunner) -> None:
    result = runner.invoke(app, ["import", "ghost.json"])
    assert result.exit_code != 0
    assert "does not exist" in result.output


def test_export_single_archive(
    runner: CliRunner, disk_store: ArchiveStore, tmp_path: Path
) -> None:
    record = disk_store.archive("gameLog", make_log(2), "To export")
    target = tmp_path / "out.json"

    result = runner.invoke(app, ["export", record.id, "-o", str(target)])
    assert result.exit_code == 0, result.output
    written = json.loads(target.read_text(encoding="utf-8"))
    assert written["meta"]["id"] == record.id


def test_delete_reports_unknown_ids(runner: CliRunner, disk_store: ArchiveStore) -> None:
    record = disk_store.archive("gameLog", make_log(1))

    result = runner.invoke(app, ["delete", record.id, "nope"])
    assert result.exit_code == 1
    assert "Deleted 1 archive(s)" in result.output
    assert "nope" in result.output
    assert disk_store.list_all() == []


def test_prune_reports_per_type(runner: CliRunner, disk_store: ArchiveStore) -> None:
    for _ in range(3):
        disk_store.auto_archive("gameLog", make_log(1))

    result = runner.invoke(app, ["prune", "--max-count", "1"])
    assert result.exit_code == 0, result.output
    assert "gameLog" in result.output and "aidt" in result.output
    assert len(disk_store.list_archives("auto")) == 1


def test_analytics_json(runner: CliRunner, disk_store: ArchiveStore) -> None:
    disk_store.archive("gameLog", make_log(2), "One game")
    result = runner.invoke(app, ["analytics", "--json"])

    assert result.exit_code == 0, result.output
    assert '"overview"' in result.output
    assert '"totalGames": 1' in result.output


def test_replay_instant(runner: CliRunner, disk_store: ArchiveStore) -> None:
    record = disk_store.archive("gameLog", make_log(3), "Replayable")
    result = runner.invoke(app, ["replay", record.id, "--instant"])

    assert result.exit_code == 0, result.output
    assert "Entry 2" in result.output
    assert "Replay finished" in result.output
    assert "(3/3)" in result.output


def test_replay_rejects_decision_tree(runner: CliRunner, disk_store: ArchiveStore) -> None:
    record = disk_store.archive("aidt", {"rounds": []}, "Tree")
    result = runner.invoke(app, ["replay", record.id, "--instant"])

    assert result.exit_code == 1
    assert "Only game-log archives" in result.output


def test_replay_rejects_game_log_as_decisions(
    runner: CliRunner, disk_store: ArchiveStore
) -> None:
    record = disk_store.archive("gameLog", make_log(3), "Replayable")
    other = disk_store.archive("gameLog", make_log(2), "Not a tree")
    result = runner.invoke(app, ["replay", record.id, "--instant", "--decisions", other.id])

    assert result.exit_code == 1
    assert "Not a decision-tree archive" in result.output
    assert "Replay finished" not in result.output


def test_replay_handles_engine_crash(runner: CliRunner, disk_store: ArchiveStore) -> None:
    record = disk_store.archive("gameLog", make_log(3), "Crashy")
    with patch("kotarchive.cli.ReplayEngine") as mock_engine:
        mock_engine.return_value.start_replay.side_effect = ValueError("bad speed")
        result = runner.invoke(app, ["replay", record.id, "--instant"])

    assert result.exit_code == 1, f"Expected handled error (1). Output:\n{result.output}"
    assert "Replay Error" in result.output
    assert "bad speed" in result.output
