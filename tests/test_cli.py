"""Tests for the command line entry point."""

import json

from gridrl.__main__ import main


def test_headless_training_exports(tmp_path, capsys):
    path = tmp_path / "out.json"
    code = main(["--size", "4", "--episodes", "30", "--seed", "3", "--no-auto-stop",
                 "--export-session", str(path)])
    assert code == 0
    assert "Training finished" in capsys.readouterr().out

    record = json.loads(path.read_text())
    assert record["gridConfig"]["size"] == 4
    assert record["metadata"]["version"] == "1.0"


def test_continue_from_session(tmp_path):
    first = tmp_path / "first.json"
    second = tmp_path / "second.json"
    assert main(["--size", "4", "--episodes", "20", "--seed", "1", "--export-session", str(first)]) == 0
    assert main(["--episodes", "10", "--seed", "1", "--import-session", str(first),
                 "--export-session", str(second)]) == 0
    assert json.loads(second.read_text())["gridConfig"]["size"] == 4


def test_missing_session_file(tmp_path, capsys):
    assert main(["--import-session", str(tmp_path / "nope.json")]) == 1
    assert "Could not read" in capsys.readouterr().out


def test_realtime_mode(tmp_path):
    path = tmp_path / "rt.json"
    assert main(["--size", "3", "--episodes", "5", "--max-steps", "20", "--realtime",
                 "--step-delay", "0", "--seed", "2", "--export-session", str(path)]) == 0
    assert path.exists()


def test_export_without_path_uses_timestamped_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["--size", "3", "--episodes", "5", "--seed", "4", "--export-session"]) == 0

    written = list((tmp_path / "sessions").glob("session_3x3_*.json"))
    assert len(written) == 1


def test_random_walls_and_size_clamp(tmp_path):
    path = tmp_path / "walls.json"
    assert main(["--size", "40", "--wall-density", "0.1", "--episodes", "3", "--max-steps", "10",
                 "--seed", "8", "--export-session", str(path)]) == 0

    grid_config = json.loads(path.read_text())["gridConfig"]
    assert grid_config["size"] == 15
    assert len(grid_config["walls"]) == 22
    assert [0, 0] not in grid_config["walls"]
    assert [14, 14] not in grid_config["walls"]


def test_invalid_wall_density(capsys):
    assert main(["--size", "4", "--wall-density", "1.5"]) == 1
    assert "Training failed" in capsys.readouterr().out
