from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from conftest import MONDAY, at
from timeledger import services
from timeledger.cli import CliState, cli
from timeledger.config import Settings
from timeledger.jsonstore import JSONFileStorage


@pytest.fixture()
def state(sqlite_storage, settings: Settings) -> CliState:
    return CliState(settings, sqlite_storage)


@pytest.fixture()
def run(state: CliState):
    runner = CliRunner()

    def invoke(*args: str, **kwargs):
        return runner.invoke(cli, list(args), obj=state, **kwargs)

    return invoke


def test_start_status_stop(run, state: CliState):
    result = run("start", "writing", "-t", "chapter-1", "--tags", "draft,book", "--at", "2024-01-15T09:00:00+00:00")
    assert result.exit_code == 0, result.output
    assert "Started tracking project writing with task chapter-1" in result.output

    result = run("status")
    assert result.exit_code == 0
    assert "Currently timing project writing with task chapter-1" in result.output

    result = run("stop", "--at", "2024-01-15T10:30:00+00:00")
    assert result.exit_code == 0
    assert "You worked for 1h30m0s! Good job." in result.output

    timer = state.storage.get_timer()
    assert timer.tags == ["draft", "book"]
    assert "Currently not working" in run("status").output


def test_second_start_fails(run):
    run("start", "writing", "--at", "2024-01-15T09:00:00+00:00")
    result = run("start", "coding", "--at", "2024-01-15T09:30:00+00:00")
    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "already running" in result.output


def test_stop_without_timer_fails(run):
    result = run("stop")
    assert result.exit_code == 1
    assert "Error: no running timer" in result.output


def test_invalid_timestamp(run):
    result = run("start", "writing", "--at", "yesterday")
    assert result.exit_code == 1
    assert "invalid timestamp" in result.output


def test_switch_and_resume(run, state: CliState):
    run("start", "writing", "--at", "2024-01-15T09:00:00+00:00")
    result = run("switch", "coding", "--at", "2024-01-15T10:00:00+00:00")
    assert result.exit_code == 0, result.output
    assert "Stopped project writing after 1h0m0s." in result.output
    run("stop", "--at", "2024-01-15T11:00:00+00:00")
    result = run("resume", "--at", "2024-01-15T12:00:00+00:00")
    assert result.exit_code == 0, result.output
    assert "Resumed tracking project coding." in result.output
    assert [timer.project for timer in services.list_timers(state.storage)] == ["writing", "coding", "coding"]


def test_list(run, sqlite_storage, make_timer):
    first = make_timer(at(MONDAY, 9), at(MONDAY, 10), project="a", task="x", tags=["t"])
    second = make_timer(at(MONDAY, 11), at(MONDAY, 12), project="b")
    sqlite_storage.save_timer(first)
    sqlite_storage.save_timer(second)

    result = run("list")
    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert lines[0].startswith(first.id)
    assert "2024-01-15 09:00:00" in lines[0]
    assert lines[1].startswith(second.id)

    result = run("list", "-f", "project=b", "--json")
    assert [item["id"] for item in json.loads(result.output)] == [second.id]

    result = run("list", "-f", "colour=red")
    assert result.exit_code == 1
    assert "unknown filter" in result.output


def test_stats(run, sqlite_storage, make_timer):
    sqlite_storage.save_timer(make_timer(at(MONDAY, 9), at(MONDAY, 10, 30), project="a", task="x"))
    result = run("stats", "-g", "task")
    assert result.exit_code == 0, result.output
    assert "worked    : 1h30m0s" in result.output
    assert "planned   : 8h0m0s" in result.output
    assert "difference: -6h30m0s" in result.output
    assert "percentage: 18.75%" in result.output
    assert "  a: 1h30m0s" in result.output
    assert "    x: 1h30m0s" in result.output

    result = run("stats", "--json")
    data = json.loads(result.output)
    assert data["worked"] == 5400
    assert "by_projects" not in data

    result = run("stats", "-g", "day")
    assert "2024-01-15" in result.output
    assert "Summary:" in result.output

    result = run("stats", "-g", "day", "--json")
    assert json.loads(result.output)["2024-01-15"]["planned"] == 8 * 3600


def test_stats_respects_precision(run, state: CliState, sqlite_storage, make_timer):
    state.settings = state.settings.model_copy(update={"precision": "minute"})
    sqlite_storage.save_timer(make_timer(at(MONDAY, 9), at(MONDAY, 10, 30)))
    assert "worked    : 1h30m\n" in run("stats").output


def test_edit_remove(run, sqlite_storage, make_timer):
    timer = make_timer(at(MONDAY, 9), at(MONDAY, 10))
    sqlite_storage.save_timer(timer)
    result = run("edit", timer.id, "--remove")
    assert result.exit_code == 0
    assert f"Removed timer with id {timer.id}" in result.output
    assert sqlite_storage.get_timers() == []


def test_edit_in_editor(run, sqlite_storage, make_timer, monkeypatch):
    timer = make_timer(at(MONDAY, 9), at(MONDAY, 10))
    sqlite_storage.save_timer(timer)

    def fake_edit(text, extension):
        data = json.loads(text)
        data["project"] = "renamed"
        return json.dumps(data)

    monkeypatch.setattr("click.edit", fake_edit)
    result = run("edit", timer.id)
    assert result.exit_code == 0, result.output
    assert sqlite_storage.get_timer_by_id(timer.id).project == "renamed"


def test_edit_without_changes(run, sqlite_storage, make_timer, monkeypatch):
    timer = make_timer(at(MONDAY, 9), at(MONDAY, 10))
    sqlite_storage.save_timer(timer)
    monkeypatch.setattr("click.edit", lambda text, extension: None)
    assert "No changes made." in run("edit", timer.id).output


def test_edit_rejects_broken_json(run, sqlite_storage, make_timer, monkeypatch):
    timer = make_timer(at(MONDAY, 9), at(MONDAY, 10))
    sqlite_storage.save_timer(timer)
    monkeypatch.setattr("click.edit", lambda text, extension: "{")
    result = run("edit", timer.id)
    assert result.exit_code == 1
    assert "not valid JSON" in result.output


def test_vacation_commands(run, sqlite_storage):
    result = run("vacation", "add", "2024-01-15", "--half")
    assert result.exit_code == 0
    assert "Added half vacation day 2024-01-15." in result.output
    assert "2024-01-15 (half)" in run("vacation", "list").output

    result = run("vacation", "add", "2024-01-15")
    assert result.exit_code == 1

    result = run("vacation", "remove", "2024-01-15")
    assert result.exit_code == 0
    assert sqlite_storage.get_vacation_days() == []

    result = run("vacation", "add", "someday")
    assert result.exit_code == 1
    assert "invalid day" in result.output


def test_export_csv(run, sqlite_storage, make_timer):
    timer = make_timer(at(MONDAY, 9), at(MONDAY, 10))
    sqlite_storage.save_timer(timer)
    result = run("export")
    assert result.exit_code == 0
    assert result.output.splitlines() == [
        "id,start,stop,project,task,tags",
        f"{timer.id},2024-01-15T09:00:00+00:00,2024-01-15T10:00:00+00:00,work,,",
    ]
    assert json.loads(run("export", "json").output)[0]["id"] == timer.id


def test_list_grouped(run, sqlite_storage, make_timer):
    sqlite_storage.save_timer(make_timer(at(MONDAY, 9), at(MONDAY, 10), project="a", task="x"))
    sqlite_storage.save_timer(make_timer(at(MONDAY, 10), at(MONDAY, 10, 30), project="a"))
    sqlite_storage.save_timer(make_timer(at(MONDAY, 11), at(MONDAY, 13), project="b"))

    result = run("list", "-g", "project")
    assert result.exit_code == 0, result.output
    assert "### a ###" in result.output
    assert "Total: 1h30m0s" in result.output
    assert "Overall total duration tracked: 3h30m0s" in result.output

    result = run("list", "-g", "task", "-s")
    assert result.output.splitlines() == [
        "a / without task: 0h30m0s",
        "a / x: 1h0m0s",
        "b / without task: 2h0m0s",
        "Overall total duration tracked: 3h30m0s",
    ]

    result = run("list", "-g", "day,project", "--short")
    assert "2024-01-15 / b: 2h0m0s" in result.output


def test_inspect(run, state: CliState, tmp_path):
    assert run("inspect").output.splitlines() == ["Checking timers...", "ok"]

    path = tmp_path / "legacy.json"
    path.write_text(
        json.dumps(
            [
                {"id": "3f1f1f1f-0000-4000-8000-000000000001", "start": "2024-01-15T09:00:00+00:00", "project": "a"},
                {"id": "3f1f1f1f-0000-4000-8000-000000000002", "start": "2024-01-15T10:00:00+00:00", "project": "b"},
            ]
        )
    )
    state.storage = JSONFileStorage(path)
    result = run("inspect")
    assert result.exit_code == 1
    assert "more than one running timer" in result.output
    assert "Error: found 2 problem(s)" in result.output
