"""Tests for the Qt training controller on a live event loop."""

import time

import pytest
from PySide6.QtCore import QCoreApplication

from gridrl.app.controller import TrainingController
from gridrl.app.fsm import TrainingState
from gridrl.domain.types import RLConfig


@pytest.fixture(scope="module")
def qapp():
    return QCoreApplication.instance() or QCoreApplication([])


@pytest.fixture
def controller(qapp):
    config = RLConfig().with_updates(step_delay=0, max_episodes=20, max_steps_per_episode=30, auto_stop=False)
    ctrl = TrainingController(size=4, preset="empty", config=config, seed=7)
    yield ctrl
    ctrl.shutdown()


def process_until(qapp, condition, timeout=10.0):
    deadline = time.monotonic() + timeout
    while not condition() and time.monotonic() < deadline:
        qapp.processEvents()
    return condition()


class TestTraining:

    def test_runs_to_completion_with_signals(self, qapp, controller):
        states, episodes, finished = [], [], []
        controller.state_changed.connect(states.append)
        controller.episode_completed.connect(episodes.append)
        controller.training_completed.connect(finished.append)

        assert controller.start_training()
        assert process_until(qapp, lambda: finished)

        assert states[0] == TrainingState.RUNNING
        assert states[-1] == TrainingState.COMPLETE
        assert len(episodes) == 20
        assert finished[0]["totalEpisodes"] == 20

    def test_pause_stops_ticks(self, qapp, controller):
        steps = []
        controller.step_completed.connect(steps.append)
        controller.start_training()
        assert process_until(qapp, lambda: len(steps) >= 3)
        assert controller.pause_training()

        seen = len(steps)
        for _ in range(50):
            qapp.processEvents()
        assert len(steps) == seen
        assert controller.current_state == TrainingState.PAUSED

        assert controller.resume_training()
        assert process_until(qapp, lambda: len(steps) > seen)

    def test_stop_cancels_pending_tick(self, qapp, controller):
        steps = []
        controller.step_completed.connect(steps.append)
        controller.start_training()
        assert controller.stop_training()
        for _ in range(50):
            qapp.processEvents()
        assert steps == []
        assert controller.current_state == TrainingState.STOPPED

    def test_find_path_emits_result(self, controller):
        results = []
        controller.testing_completed.connect(results.append)
        result = controller.find_path()
        assert results == [result]


class TestGridEditing:

    def test_set_cell(self, controller):
        updates = []
        controller.grid_updated.connect(lambda: updates.append(True))
        assert controller.set_cell((1, 1), "wall")
        assert controller.world.grid.walls == [(1, 1)]
        assert updates

    def test_cannot_wall_over_goal(self, controller):
        assert not controller.set_cell((3, 3), "wall")

    def test_move_start(self, controller):
        assert controller.set_cell((2, 0), "start")
        assert controller.world.start == (2, 0)
        assert not controller.set_cell((3, 3), "start")

    def test_unknown_kind_reports_error(self, controller):
        errors = []
        controller.error_occurred.connect(errors.append)
        assert not controller.set_cell((1, 1), "lava")
        assert errors

    def test_editing_refused_while_active(self, controller):
        controller.start_training()
        assert not controller.set_cell((1, 1), "wall")
        assert not controller.load_preset("four-rooms")
        assert not controller.generate_maze(5, seed=1)
        controller.stop_training()
        assert controller.load_preset("four-rooms", 8)
        assert controller.world.size == 8

    def test_generate_maze(self, controller):
        assert controller.generate_maze(6, seed=2)
        assert controller.world.size == 7
        assert controller.scheduler.is_initialized

    def test_sizes_are_clamped(self, controller):
        assert controller.load_preset("empty", 40)
        assert controller.world.size == 15
        assert controller.generate_maze(1, seed=3)
        assert controller.world.size == 5

    def test_add_random_walls_keeps_endpoints_open(self, controller):
        assert controller.add_random_walls(1.0, seed=5)
        grid = controller.world.grid
        assert len(grid.walls) == 14
        assert controller.world.start not in grid.walls
        assert controller.world.goal not in grid.walls
        assert controller.scheduler.is_initialized

    def test_add_random_walls_rejects_bad_density(self, controller):
        errors = []
        controller.error_occurred.connect(errors.append)
        assert not controller.add_random_walls(2.0)
        assert errors
        assert controller.world.grid.walls == []

    def test_add_random_walls_refused_while_active(self, controller):
        controller.start_training()
        assert not controller.add_random_walls(0.2)
        controller.stop_training()


class TestConfigAndSessions:

    def test_config_changes_emit(self, controller):
        configs = []
        controller.config_changed.connect(configs.append)
        controller.update_config(learning_rate=0.5)
        controller.set_algorithm("sarsa")
        controller.set_exploration_strategy("ucb")
        assert controller.set_reward_preset("sparse")
        assert not controller.set_reward_preset("nope")
        assert len(configs) == 4
        assert configs[-1].rewards.goal == 1.0

    def test_warnings_are_forwarded(self, controller):
        warnings = []
        controller.warning_logged.connect(warnings.append)
        controller.update_config(bogus=1)
        assert any("bogus" in message for message in warnings)

    def test_session_file_round_trip(self, qapp, controller, tmp_path):
        controller.start_training()
        assert process_until(qapp, lambda: controller.current_state == TrainingState.COMPLETE)
        path = str(tmp_path / "run.json")
        record = controller.export_session(path)

        other = TrainingController(size=6, seed=1)
        try:
            assert other.import_session(path)
            assert other.scheduler.q_snapshot() == controller.scheduler.q_snapshot()
            assert other.world.size == 4
            assert record["gridConfig"]["size"] == 4
        finally:
            other.shutdown()

    def test_import_missing_file(self, controller, tmp_path):
        errors = []
        controller.error_occurred.connect(errors.append)
        assert not controller.import_session(str(tmp_path / "missing.json"))
        assert errors

    def test_statistics(self, controller):
        stats = controller.get_statistics()
        assert stats["state"] == controller.scheduler.state_description
        assert stats["maxEpisodes"] == 20
        assert stats["agentPosition"] == (0, 0)
        assert "successRate" in stats["metrics"]
