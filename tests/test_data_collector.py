"""Tests for mission CSV logging."""

import csv

import pytest

from navdeck.data_collector import DataCollector
from navdeck.position import Position, RelativePosition


def read_rows(path):
    with open(path, newline="") as f:
        return list(csv.reader(f))


@pytest.fixture
def collector(tmp_path):
    collector = DataCollector(run_dir=str(tmp_path / "run"))
    collector.setup()
    yield collector
    collector.cleanup()


def test_timestamped_run_dir(tmp_path, monkeypatch):
    monkeypatch.delenv("RUN_DIR", raising=False)
    collector = DataCollector(output_dir=str(tmp_path))
    assert collector.run_dir.parent == tmp_path / "results"
    assert collector.run_dir.name.startswith("run_")
    assert collector.run_dir.is_dir()


def test_run_dir_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("RUN_DIR", str(tmp_path / "env_run"))
    collector = DataCollector(output_dir=str(tmp_path))
    assert collector.run_dir == tmp_path / "env_run"


def test_rejects_file_as_output_dir(tmp_path):
    path = tmp_path / "file.txt"
    path.write_text("x")
    with pytest.raises(ValueError):
        DataCollector(output_dir=str(path))


def test_headers(collector):
    assert read_rows(collector.localization_output_path) == [
        ["timestamp", "x", "y", "theta", "correlation", "attempt"]
    ]
    assert read_rows(collector.moves_output_path)[0][0:3] == ["timestamp", "distance", "turn"]
    assert read_rows(collector.goals_output_path)[0][-1] == "outcome"


def test_localization_rows(collector):
    collector.log_localization(1.0, Position(1.0, 2.0, 0.5), 0.93, 1)
    collector.log_localization(2.0, None, 0.0, 2)
    rows = read_rows(collector.localization_output_path)
    assert rows[1] == ["1.000", "1.0000", "2.0000", "0.5000", "0.9300", "1"]
    assert rows[2] == ["2.000", "", "", "", "", "2"]


def test_move_and_goal_rows(collector):
    collector.log_move(3.5, RelativePosition(1.25, 0.5), Position(1.0, 1.0, 0.0), 0.025, 0.015)
    collector.log_goal(4.0, "dock", Position(1.0, 1.0), 1.5, "completed")
    moves = read_rows(collector.moves_output_path)
    assert moves[1][:3] == ["3.500", "1.2500", "0.5000"]
    assert moves[1][-2:] == ["0.02500", "0.01500"]
    goals = read_rows(collector.goals_output_path)
    assert goals[1] == ["4.000", "dock", "1.0000", "1.0000", "1.5000", "completed"]


def test_writes_after_cleanup_are_ignored(collector):
    collector.cleanup()
    collector.log_goal(1.0, "late", Position(0.0, 0.0), 1.0, "evicted")
    assert len(read_rows(collector.goals_output_path)) == 1


def test_summary(collector):
    collector.log_summary(3, 1, 0, 12.5)
    text = collector.summary_output_path.read_text()
    assert "completed=3" in text
    assert "elapsed=12.500" in text


def test_context_manager(tmp_path):
    with DataCollector(run_dir=str(tmp_path / "ctx")) as collector:
        collector.log_goal(0.0, "g", Position(0.0, 0.0), 1.0, "completed")
    assert collector.goals_csv_writer is None
    assert len(read_rows(collector.goals_output_path)) == 2
