import json
import tempfile

from typer.testing import CliRunner

from gantry.cli import app

runner = CliRunner()

PROJECT = {
    "data": [
        {"id": 1, "text": "Design", "start_date": "2024-01-08 00:00", "duration": 3,
         "resource_ids": ["r-a"], "resource_names": ["Alice"]},
        {"id": 2, "text": "Build", "start_date": "2024-01-10 00:00", "duration": 2,
         "resource_ids": ["r-a", "g-qa"], "resource_names": ["Alice", "Generic QA"]},
    ],
    "links": [{"id": 1, "source": 1, "target": 2, "type": "0"}],
}


def _write_project(path="schedule.json"):
    with open(path, "w") as f:
        json.dump(PROJECT, f)


def test_end_date_command():
    result = runner.invoke(app, ["end-date", "2024-01-05", "3"])
    assert result.exit_code == 0, result.stdout
    assert "2024-01-10" in result.stdout
    assert "2024-01-09" in result.stdout

    result = runner.invoke(app, ["end-date", "someday", "3"])
    assert result.exit_code == 1


def test_init_and_show(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        monkeypatch.chdir(d)
        _write_project()
        result = runner.invoke(app, ["init", "--hours-per-day", "7.5"])
        assert result.exit_code == 0, result.stdout

        with open("schedule.json") as f:
            saved = json.load(f)
        assert saved["config"]["hours_per_day"] == 7.5
        assert len(saved["data"]) == 2

        result = runner.invoke(app, ["show"])
        assert result.exit_code == 0, result.stdout
        assert "Design" in result.stdout
        assert "Build" in result.stdout


def test_conflicts_and_heatmap(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        monkeypatch.chdir(d)
        _write_project()

        result = runner.invoke(app, ["conflicts"])
        assert result.exit_code == 0, result.stdout
        assert "Overallocated tasks (2)" in result.stdout

        result = runner.invoke(app, ["heatmap", "--today", "2024-01-08", "--weeks", "1", "-r", "r-a"])
        assert result.exit_code == 0, result.stdout
        assert "Alice" in result.stdout
        assert "40" in result.stdout


def test_missing_project_file(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        monkeypatch.chdir(d)
        result = runner.invoke(app, ["conflicts", "missing.json"])
        assert result.exit_code == 1
        assert "File not found" in result.stdout


def test_group_lists_lanes(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        monkeypatch.chdir(d)
        _write_project()
        result = runner.invoke(app, ["group"])
        assert result.exit_code == 0, result.stdout
        assert result.stdout.index("Alice") < result.stdout.index("Generic QA")


def test_baseline_set_and_list(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        monkeypatch.chdir(d)
        _write_project()
        result = runner.invoke(app, ["baseline", "2"])
        assert result.exit_code == 0, result.stdout
        assert "Set baseline 2 for 2 task(s)" in result.stdout

        with open("schedule.json") as f:
            saved = json.load(f)
        assert saved["data"][0]["baseline2_StartDate"] == "2024-01-08 00:00"

        result = runner.invoke(app, ["baseline", "11"])
        assert result.exit_code == 1


def test_import_with_dry_run(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        monkeypatch.chdir(d)
        _write_project()
        with open("team.json", "w") as f:
            json.dump([{"id": "r-a", "name": "Alice"}], f)
        with open("plan.json", "w") as f:
            json.dump(
                {"tasks": [{"id": 1, "name": "Deploy", "start": "2024-01-15", "duration": 1,
                            "resources": "Alice, Bob"}]},
                f,
            )

        result = runner.invoke(app, ["import", "plan.json", "--team", "team.json", "--dry-run"])
        assert result.exit_code == 0, result.stdout
        assert "Dry run" in result.stdout
        assert "1 -> 3" in result.stdout
        assert "'Bob' not found" in result.stdout
        with open("schedule.json") as f:
            assert len(json.load(f)["data"]) == 2

        result = runner.invoke(app, ["import", "plan.json", "--team", "team.json"])
        assert result.exit_code == 0, result.stdout
        with open("schedule.json") as f:
            assert len(json.load(f)["data"]) == 3


def test_import_rejects_bad_document(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        monkeypatch.chdir(d)
        _write_project()
        with open("team.json", "w") as f:
            json.dump([], f)
        with open("plan.json", "w") as f:
            json.dump({"tasks": [{"id": 1, "name": "Broken", "start": "never"}]}, f)
        result = runner.invoke(app, ["import", "plan.json", "--team", "team.json"])
        assert result.exit_code == 1
        assert "Import aborted" in result.stdout


def test_generic_and_fulfill(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        monkeypatch.chdir(d)
        _write_project()
        result = runner.invoke(app, ["generic"])
        assert result.exit_code == 0, result.stdout
        assert "Generic QA" in result.stdout

        result = runner.invoke(app, ["fulfill", "2", "g-qa", "r-q", "Quinn"])
        assert result.exit_code == 0, result.stdout
        with open("schedule.json") as f:
            build = json.load(f)["data"][1]
        assert build["resource_ids"] == ["r-a", "r-q"]
        assert build["resource_names"] == ["Alice", "Quinn"]

        result = runner.invoke(app, ["generic"])
        assert "No generic resources" in result.stdout
