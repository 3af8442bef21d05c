"""CLI commands, run against a temporary config and session file."""

import json

import pytest
from click.testing import CliRunner

from studyplan.cli import main as cli_main
from studyplan.cli.main import main


@pytest.fixture
def runner(tmp_path, monkeypatch) -> CliRunner:
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"owner_id": "tester", "store_path": str(tmp_path / "sessions.json")}))
    monkeypatch.setattr(cli_main, "CONFIG_FILE", config_file)
    return CliRunner()


def _list(runner: CliRunner) -> list[dict]:
    result = runner.invoke(main, ["sessions", "list", "--json"])
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


def test_session_lifecycle(runner):
    result = runner.invoke(main, [
        "sessions", "create", "--title", "Essay", "--category", "homework",
        "--start", "2024-01-01T10:00", "--end", "2024-01-01T11:00",
        "--frequency", "weekly", "--until", "2024-01-22", "--reminder", "30",
    ])
    assert result.exit_code == 0, result.output

    sessions = _list(runner)
    assert [s["start_time"][:10] for s in sessions] == ["2024-01-01", "2024-01-08", "2024-01-15", "2024-01-22"]
    assert all(s["reminder"]["lead_minutes"] == 30 for s in sessions)
    first = sessions[0]["id"]

    assert runner.invoke(main, ["progress", first, "in_progress"]).exit_code == 0
    result = runner.invoke(main, ["progress", first, "completed", "--duration", "30", "--notes", "done"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(main, ["stats", "--json"])
    stats = json.loads(result.output)
    assert stats["homework"]["completed_sessions"] == 1
    assert stats["homework"]["average_duration_minutes"] == 30

    result = runner.invoke(main, ["progress", first, "in_progress"])
    assert result.exit_code == 1
    assert "invalid_transition" in result.output

    assert runner.invoke(main, ["sessions", "delete", sessions[1]["id"]]).exit_code == 0
    assert len(_list(runner)) == 3

    result = runner.invoke(main, ["sweep"])
    assert result.exit_code == 0
    assert "2 session(s) marked missed" in result.output


def test_update_and_filters(runner):
    runner.invoke(main, ["sessions", "create", "--title", "A", "--category", "reading",
                         "--start", "2024-03-01 09:00", "--end", "2024-03-01 10:00", "--course", "lit"])
    runner.invoke(main, ["sessions", "create", "--title", "B", "--category", "review",
                         "--start", "2024-03-05 09:00", "--end", "2024-03-05 10:00"])
    [a] = json.loads(runner.invoke(main, ["sessions", "list", "--course", "lit", "--json"]).output)
    assert a["title"] == "A"

    result = runner.invoke(main, ["sessions", "update", a["id"], "--title", "A2", "--reminder", "10"])
    assert result.exit_code == 0, result.output
    listed = json.loads(runner.invoke(main, ["sessions", "list", "--to", "2024-03-02", "--json"]).output)
    assert [s["title"] for s in listed] == ["A2"]
    assert listed[0]["reminder"]["lead_minutes"] == 10


def test_create_requires_frequency_with_until(runner):
    result = runner.invoke(main, ["sessions", "create", "--title", "A", "--category", "reading",
                                  "--start", "2024-03-01", "--end", "2024-03-02", "--until", "2024-04-01"])
    assert result.exit_code == 2


def test_invalid_window_reports_error(runner):
    result = runner.invoke(main, ["sessions", "create", "--title", "A", "--category", "reading",
                                  "--start", "2024-03-01 10:00", "--end", "2024-03-01 09:00"])
    assert result.exit_code == 1
    assert "validation_error" in result.output


def test_delete_missing(runner):
    result = runner.invoke(main, ["sessions", "delete", "nope"])
    assert result.exit_code == 1
    assert "not_found" in result.output


def test_config(runner):
    assert runner.invoke(main, ["config", "set", "sweep_interval_s", "60"]).exit_code == 0
    assert json.loads(cli_main.CONFIG_FILE.read_text())["sweep_interval_s"] == 60.0
    assert runner.invoke(main, ["config", "set", "sweep_interval_s", "soon"]).exit_code == 2
    assert runner.invoke(main, ["config", "set", "colour", "blue"]).exit_code == 2
    result = runner.invoke(main, ["config", "show"])
    assert result.exit_code == 0
    assert "owner_id" in result.output
