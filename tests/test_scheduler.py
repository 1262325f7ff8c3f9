"""Tests for the training scheduler lifecycle, decay and auto-stop."""

import pytest

from gridrl.app.fsm import TrainingState
from gridrl.domain.environment import Grid, GridWorld
from gridrl.domain.types import Algorithm, ConvergenceInfo, ExplorationStrategy


class TestInitialization:

    def test_missing_goal_fails(self, make_scheduler):
        scheduler = make_scheduler(GridWorld(Grid.empty(3), (0, 0), None))
        assert not scheduler.initialize()
        assert not scheduler.start()
        assert scheduler.state == TrainingState.IDLE

    def test_missing_grid_fails(self, make_scheduler):
        assert not make_scheduler(GridWorld()).initialize()

    def test_initialize_creates_store(self, make_scheduler, empty_world):
        scheduler = make_scheduler(empty_world)
        assert not scheduler.is_initialized
        assert scheduler.initialize()
        assert scheduler.is_initialized
        assert scheduler.q_snapshot() == {}


class TestControl:
    """Start, pause, resume and stop over a manual timer."""

    def test_start_arms_one_tick(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world, step_delay=25)
        assert scheduler.start()
        assert scheduler.state == TrainingState.RUNNING
        assert timer.is_pending
        assert timer.last_delay == 25
        assert scheduler.step_count == 0

    def test_each_tick_is_one_step(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world)
        scheduler.start()
        for expected in range(1, 4):
            assert timer.fire()
            assert scheduler.step_count == expected
            assert timer.is_pending

    def test_pause_cancels_pending_tick(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world)
        scheduler.start()
        timer.fire()
        assert scheduler.pause()
        assert scheduler.state == TrainingState.PAUSED
        assert not timer.is_pending
        assert not timer.fire()
        assert scheduler.step_count == 1

    def test_cancelled_tick_does_not_step(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world)
        scheduler.start()
        stale_tick = timer._callback
        scheduler.stop()
        stale_tick()
        assert scheduler.step_count == 0
        assert not timer.is_pending

    def test_resume_rearms(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world)
        scheduler.start()
        scheduler.pause()
        assert not scheduler.pause()
        assert scheduler.resume()
        assert scheduler.state == TrainingState.RUNNING
        assert timer.is_pending
        timer.fire()
        assert scheduler.step_count == 1

    def test_resume_requires_paused(self, make_scheduler, empty_world):
        scheduler = make_scheduler(empty_world)
        assert not scheduler.resume()

    def test_stop_is_idempotent(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world)
        scheduler.start()
        assert scheduler.stop()
        assert scheduler.state == TrainingState.STOPPED
        assert not scheduler.stop()
        assert not timer.is_pending

    def test_stop_keeps_progress(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world)
        scheduler.start()
        timer.run_until_idle(max_ticks=20)
        snapshot = scheduler.q_snapshot()
        scheduler.stop()
        assert scheduler.q_snapshot() == snapshot

    def test_state_change_callback(self, make_scheduler, empty_world):
        scheduler = make_scheduler(empty_world)
        states = []
        scheduler.on_state_changed = states.append
        scheduler.start()
        scheduler.pause()
        scheduler.resume()
        scheduler.stop()
        assert states == [TrainingState.RUNNING, TrainingState.PAUSED,
                          TrainingState.RUNNING, TrainingState.STOPPED]


class TestManualStepping:

    def test_refused_while_running(self, make_scheduler, empty_world, caplog):
        scheduler = make_scheduler(empty_world)
        scheduler.start()
        with caplog.at_level("WARNING"):
            assert not scheduler.step_once()
        assert scheduler.step_count == 0
        assert "refused" in caplog.text

    def test_first_step_initializes_and_steps(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world)
        assert scheduler.step_once()
        assert scheduler.is_initialized
        assert scheduler.step_count == 1
        assert scheduler.state == TrainingState.IDLE
        assert not timer.is_pending

    def test_completed_episode_starts_next(self, make_scheduler, empty_world):
        scheduler = make_scheduler(empty_world, max_steps_per_episode=1)
        scheduler.step_once()
        assert len(scheduler.episode_history) == 1
        assert scheduler.step_once()
        assert scheduler.step_count == 0
        assert scheduler.current_episode_index == 1
        assert scheduler.agent_position == (0, 0)
        scheduler.step_once()
        assert len(scheduler.episode_history) == 2

    def test_allowed_while_paused(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world, max_steps_per_episode=2)
        scheduler.start()
        timer.fire()
        scheduler.pause()
        assert scheduler.step_once()
        assert len(scheduler.episode_history) == 1
        assert scheduler.state == TrainingState.PAUSED

        scheduler.resume()
        timer.fire()
        assert scheduler.current_episode_index == 1
        assert scheduler.step_count == 1


class TestReset:

    def test_reset_discards_everything(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world, max_steps_per_episode=5)
        scheduler.start()
        timer.run_until_idle(max_ticks=30)
        assert scheduler.episode_history

        assert scheduler.reset()
        assert scheduler.state == TrainingState.IDLE
        assert scheduler.episode_history == []
        assert scheduler.current_episode_index == 0
        assert scheduler.q_snapshot() == {}
        assert not timer.is_pending

    def test_reset_restores_initial_epsilon(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world, max_steps_per_episode=1, max_episodes=50, auto_stop=False)
        scheduler.start()
        timer.run_until_idle()
        assert scheduler.config.epsilon < 0.1
        scheduler.reset()
        assert scheduler.config.epsilon == 0.1

    def test_reconfigure_discards_store(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world)
        scheduler.start()
        timer.run_until_idle(max_ticks=10)
        assert scheduler.reconfigure(grid=Grid.from_walls(5, [(2, 2)]))
        assert scheduler.q_snapshot() == {}
        assert scheduler.world.grid.walls == [(2, 2)]
        assert scheduler.state == TrainingState.IDLE

    def test_reconfigure_to_invalid_world_fails(self, make_scheduler, empty_world):
        scheduler = make_scheduler(empty_world)
        scheduler.initialize()
        assert not scheduler.reconfigure(grid=Grid.from_walls(5, [(4, 4)]))
        assert not scheduler.is_initialized


class TestDecayAndAutoStop:

    def test_epsilon_decays_every_ten_episodes(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world, epsilon=0.1, epsilon_decay=0.01, min_epsilon=0.01,
                                   max_steps_per_episode=1, max_episodes=100, auto_stop=False)
        epsilons = []
        scheduler.on_episode = lambda episode: epsilons.append(scheduler.config.epsilon)
        scheduler.start()
        timer.run_until_idle()

        assert scheduler.state == TrainingState.COMPLETE
        assert len(scheduler.episode_history) == 100
        assert scheduler.config.epsilon == pytest.approx(0.1 * 0.99 ** 10)
        assert scheduler.config.epsilon == pytest.approx(0.0904, abs=1e-4)
        # Unchanged between decay points
        assert epsilons[10] == epsilons[18]
        assert epsilons[9] < epsilons[8]

    def test_epsilon_never_below_minimum(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world, epsilon=0.05, epsilon_decay=0.1, min_epsilon=0.04,
                                   max_steps_per_episode=1, max_episodes=200, auto_stop=False)
        seen = []
        scheduler.on_episode = lambda episode: seen.append(scheduler.config.epsilon)
        scheduler.start()
        timer.run_until_idle()
        assert min(seen) == pytest.approx(0.04)
        assert all(later <= earlier for earlier, later in zip(seen, seen[1:]))

    def test_epsilon_below_minimum_is_raised(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world, epsilon=0.0, min_epsilon=0.01,
                                   max_steps_per_episode=1, max_episodes=20, auto_stop=False)
        seen = []
        scheduler.on_episode = lambda episode: seen.append(scheduler.config.epsilon)
        scheduler.start()
        timer.run_until_idle()
        assert len(seen) == 20
        assert all(epsilon >= 0.01 for epsilon in seen)
        assert scheduler.config.epsilon == pytest.approx(0.01)

    def test_single_converged_check_stops(self, make_scheduler, empty_world):
        scheduler = make_scheduler(empty_world, auto_stop=True)
        scheduler.initialize()
        scheduler.detector.status = ConvergenceInfo(is_converged=True, convergence_value=0.001,
                                                    stable_episodes=1)
        assert scheduler._should_stop()

    def test_patience_requires_consecutive_checks(self, make_scheduler, empty_world):
        scheduler = make_scheduler(empty_world, auto_stop=True, convergence_patience=3)
        scheduler.initialize()
        scheduler.detector.status = ConvergenceInfo(is_converged=True, convergence_value=0.001,
                                                    stable_episodes=2)
        assert not scheduler._should_stop()
        scheduler.detector.status.stable_episodes = 3
        assert scheduler._should_stop()

    def test_stops_at_max_episodes(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world, max_episodes=7, max_steps_per_episode=4, auto_stop=False)
        scheduler.start()
        timer.run_until_idle()
        assert scheduler.state == TrainingState.COMPLETE
        assert scheduler.current_episode_index == 7
        assert [ep.number for ep in scheduler.episode_history] == list(range(7))

    def test_auto_stop_on_convergence(self, make_scheduler, timer):
        world = GridWorld(Grid.empty(3), (0, 0), (2, 2))
        scheduler = make_scheduler(world, learning_rate=1.0, epsilon=0.3, max_episodes=1000,
                                   max_steps_per_episode=50, auto_stop=True)
        scheduler.start()
        timer.run_until_idle()

        assert scheduler.state == TrainingState.COMPLETE
        assert scheduler.current_episode_index < 1000
        assert scheduler.convergence.is_converged
        assert scheduler.convergence.stable_episodes >= scheduler.config.convergence_patience

    def test_convergence_ignored_without_auto_stop(self, make_scheduler, timer):
        world = GridWorld(Grid.empty(3), (0, 0), (2, 2))
        scheduler = make_scheduler(world, learning_rate=1.0, epsilon=0.3, max_episodes=300,
                                   max_steps_per_episode=50, auto_stop=False)
        scheduler.start()
        timer.run_until_idle()
        assert scheduler.current_episode_index == 300


class TestConfiguration:

    def test_update_config_clamps(self, make_scheduler, empty_world):
        scheduler = make_scheduler(empty_world)
        config = scheduler.update_config(learning_rate=3.0, epsilon=-1.0)
        assert config.learning_rate == 1.0
        assert config.epsilon == config.min_epsilon == 0.01

    def test_config_change_reaches_running_episode(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world)
        scheduler.start()
        scheduler.update_config(learning_rate=0.75)
        assert scheduler.episode.config.learning_rate == 0.75

    def test_set_algorithm_from_string(self, make_scheduler, empty_world):
        scheduler = make_scheduler(empty_world)
        assert scheduler.set_algorithm("sarsa") == Algorithm.SARSA
        assert scheduler.set_algorithm("bogus") == Algorithm.Q_LEARNING
        assert scheduler.set_exploration_strategy("ucb") == ExplorationStrategy.UCB

    def test_reward_preset(self, make_scheduler, empty_world):
        scheduler = make_scheduler(empty_world)
        assert scheduler.set_reward_preset("dense")
        assert scheduler.world.rewards.wall == -50.0
        assert not scheduler.set_reward_preset("lavish")
        assert scheduler.config.reward_preset == "dense"

    def test_performance_metrics(self, make_scheduler, empty_world, timer):
        scheduler = make_scheduler(empty_world)
        assert scheduler.performance_metrics()["totalEpisodes"] == 0

        scheduler.update_config(max_episodes=20, max_steps_per_episode=10, auto_stop=False)
        scheduler.start()
        timer.run_until_idle()
        metrics = scheduler.performance_metrics()
        assert metrics["totalEpisodes"] == 20
        assert 0.0 <= metrics["successRate"] <= 1.0
        assert metrics["averageSteps"] <= 10
        assert metrics["explorationDecline"] >= 0.0


class TestAlgorithms:
    """Every algorithm and strategy trains end to end."""

    @pytest.mark.parametrize("algorithm", list(Algorithm))
    @pytest.mark.parametrize("strategy", list(ExplorationStrategy))
    def test_runs_to_completion(self, make_scheduler, empty_world, timer, algorithm, strategy):
        scheduler = make_scheduler(empty_world, algorithm=algorithm, exploration_strategy=strategy,
                                   max_episodes=30, max_steps_per_episode=50, auto_stop=False)
        scheduler.start()
        timer.run_until_idle()
        assert scheduler.state == TrainingState.COMPLETE
        for episode in scheduler.episode_history:
            assert episode.reached_goal or episode.steps == 50
