"""Multi-episode training scheduler driven by cooperative ticks."""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

import numpy as np

from ..domain.convergence import ConvergenceDetector
from ..domain.environment import Grid, GridWorld
from ..domain.episode import EpisodeController, EpisodePhase, follow_greedy_policy
from ..domain.types import (
    Action, Algorithm, ConvergenceInfo, Episode, ExplorationStrategy, PathfindingResult,
    Position, RLConfig, RewardStructure, TrajectoryStep, PARAMETER_FIELDS, REWARD_PRESETS,
    parse_algorithm, parse_strategy
)
from ..domain.value_store import ActionCounts, QTable
from ..utils.rng import SeededRNG, get_default_rng
from .fsm import TrainingState, TrainingStateMachine

logger = logging.getLogger(__name__)


class TickTimer(Protocol):
    """Arms one delayed callback at a time."""

    def arm(self, delay_ms: int, callback: Callable[[], None]) -> None: ...

    def cancel(self) -> None: ...

    @property
    def is_pending(self) -> bool: ...


class ManualTimer:
    """Timer whose pending callback runs only when `fire` is called."""

    def __init__(self):
        self._callback: Optional[Callable[[], None]] = None
        self.last_delay: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self._callback is not None

    def arm(self, delay_ms: int, callback: Callable[[], None]) -> None:
        if self._callback is not None:
            raise RuntimeError("A tick is already pending")
        self.last_delay = delay_ms
        self._callback = callback

    def cancel(self) -> None:
        self._callback = None

    def fire(self) -> bool:
        """Run the pending callback. Returns False if nothing was pending."""
        callback, self._callback = self._callback, None
        if callback is None:
            return False
        callback()
        return True

    def run_until_idle(self, max_ticks: Optional[int] = None) -> int:
        """Fire ticks until none is pending. Returns the number fired."""
        fired = 0
        while (max_ticks is None or fired < max_ticks) and self.fire():
            fired += 1
        return fired


class CancellationToken:
    """Marks one armed tick as cancelled."""

    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


def _parse_position(value) -> Position:
    row, col = value
    return (int(row), int(col))


class TrainingScheduler:
    """
    Drives a sequence of episodes over a `GridWorld`.

    Each tick executes exactly one environment step and arms the next tick
    after `config.step_delay` milliseconds. Pause and stop cancel the
    pending tick synchronously through its `CancellationToken`.
    """

    def __init__(self, world: GridWorld, config: Optional[RLConfig] = None,
                 timer: Optional[TickTimer] = None, rng: Optional[SeededRNG] = None):
        self.world = world
        self.config = (config or RLConfig()).clamped()
        self.timer = timer if timer is not None else ManualTimer()
        self.rng = rng or get_default_rng()

        self._fsm = TrainingStateMachine()
        self._token: Optional[CancellationToken] = None
        self._base_epsilon = self.config.epsilon

        self.store: Optional[QTable] = None
        self.counts: Optional[ActionCounts] = None
        self.detector = ConvergenceDetector.from_config(self.config)
        self.episode: Optional[EpisodeController] = None
        self.history: List[Episode] = []
        self.current_episode_index = 0

        # Observer hooks
        self.on_step: Optional[Callable[[TrajectoryStep], None]] = None
        self.on_episode: Optional[Callable[[Episode], None]] = None
        self.on_state_changed: Optional[Callable[[TrainingState], None]] = None

        self._fsm.add_listener(self._on_transition)
        self.world.rewards = self.config.rewards

    # Properties

    @property
    def state(self) -> TrainingState:
        return self._fsm.current_state

    @property
    def is_running(self) -> bool:
        return self._fsm.is_running()

    @property
    def is_active(self) -> bool:
        return self._fsm.is_active()

    @property
    def is_initialized(self) -> bool:
        return self.store is not None

    @property
    def state_description(self) -> str:
        return self._fsm.get_state_description()

    @property
    def step_count(self) -> int:
        return self.episode.steps if self.episode else 0

    @property
    def cumulative_reward(self) -> float:
        return self.episode.total_reward if self.episode else 0.0

    @property
    def last_action(self) -> Optional[Action]:
        return self.episode.last_action if self.episode else None

    @property
    def last_reward(self) -> float:
        return self.episode.last_reward if self.episode else 0.0

    @property
    def agent_position(self) -> Optional[Position]:
        return self.world.agent_position

    @property
    def trajectory(self) -> List[TrajectoryStep]:
        return list(self.episode.trajectory) if self.episode else []

    @property
    def episode_history(self) -> List[Episode]:
        return list(self.history)

    @property
    def convergence(self) -> ConvergenceInfo:
        return replace(self.detector.status)

    def q_snapshot(self) -> Dict[int, Dict[Action, float]]:
        return self.store.snapshot() if self.store else {}

    def greedy_policy(self) -> Dict[int, Action]:
        return self.store.greedy_policy() if self.store else {}

    def state_values(self) -> Dict[int, float]:
        return self.store.state_values() if self.store else {}

    # Lifecycle

    def initialize(self) -> bool:
        """
        Create the value store, counters and episode controller for the
        current world.

        Returns:
            False if the grid, start or goal is missing or unusable
        """
        if not self.world.is_configured():
            logger.warning("Cannot initialize training: grid, start or goal missing or invalid")
            return False

        num_states = self.world.num_states
        self.store = QTable(num_states)
        self.counts = ActionCounts(num_states)
        self.detector = ConvergenceDetector.from_config(self.config)
        self.episode = EpisodeController(
            self.world, self.store, self.config, self.counts, self.rng,
            on_update=self.detector.record,
        )
        self.world.reset_agent()
        logger.debug("Initialized %d-state value store", num_states)
        return True

    def start(self) -> bool:
        """Start a fresh session over the current value store."""
        if self.is_running:
            return False
        if not self.is_initialized and not self.initialize():
            return False

        self._cancel_pending()
        self.history = []
        self.current_episode_index = 0
        self.detector.reset()
        self._set_config(replace(self.config, epsilon=self._base_epsilon).clamped())

        self.episode.start(self.current_episode_index)
        self._fsm.start()
        logger.info("Training started: %s / %s, up to %d episodes",
                    self.config.algorithm.value, self.config.exploration_strategy.value,
                    self.config.max_episodes)
        self._arm()
        return True

    def pause(self) -> bool:
        if not self.is_running:
            return False
        self._cancel_pending()
        return self._fsm.pause()

    def resume(self) -> bool:
        if not self._fsm.is_paused():
            return False
        self._fsm.resume()
        self._arm()
        return True

    def stop(self) -> bool:
        """Cancel any pending tick and stop. Safe to call repeatedly."""
        self._cancel_pending()
        if not self.is_active:
            return False
        logger.info("Training stopped at episode %d", self.current_episode_index)
        return self._fsm.stop()

    def reset(self) -> bool:
        """Stop, discard the value store and history, and reinitialize."""
        self._cancel_pending()
        self._discard_session()
        self._set_config(replace(self.config, epsilon=self._base_epsilon).clamped())
        self._fsm.reset_to_idle()
        return self.initialize()

    def reconfigure(self, grid: Optional[Grid] = None, start: Optional[Position] = None,
                    goal: Optional[Position] = None) -> bool:
        """Change the grid, start or goal. The value store is discarded."""
        self._cancel_pending()
        if grid is not None:
            self.world.grid = grid
        if start is not None:
            self.world.start = tuple(start)
        if goal is not None:
            self.world.goal = tuple(goal)
        self.world.reset_agent()
        self._discard_session()
        self._fsm.reset_to_idle()
        return self.initialize()

    def step_once(self) -> bool:
        """
        Execute one environment step manually, or start the next episode
        if the previous one had completed. Refused while running.
        """
        if self.is_running:
            logger.warning("Manual step refused while training is running")
            return False
        if not self.is_initialized and not self.initialize():
            return False

        if self.episode.phase == EpisodePhase.COMPLETE:
            self.episode.start(self.current_episode_index)
            return True
        if self.episode.phase == EpisodePhase.NOT_STARTED:
            self.episode.start(self.current_episode_index)
        self._execute_step()
        return True

    # Configuration

    def update_config(self, **kwargs) -> RLConfig:
        """Apply clamped parameter updates. Unknown keys are logged and ignored."""
        config = self.config.with_updates(**kwargs)
        if "epsilon" in kwargs:
            self._base_epsilon = config.epsilon
        self._set_config(config)
        return self.config

    def set_algorithm(self, algorithm: Union[Algorithm, str]) -> Algorithm:
        self.update_config(algorithm=parse_algorithm(algorithm))
        return self.config.algorithm

    def set_exploration_strategy(self, strategy: Union[ExplorationStrategy, str]) -> ExplorationStrategy:
        self.update_config(exploration_strategy=parse_strategy(strategy))
        return self.config.exploration_strategy

    def set_reward_preset(self, name: str) -> bool:
        if name not in REWARD_PRESETS:
            logger.warning("Unknown reward preset %r, keeping %r", name, self.config.reward_preset)
            return False
        self.update_config(reward_preset=name)
        return True

    # Export / import

    def export_session(self) -> Dict[str, Any]:
        """Self-contained record of the value store, parameters and grid."""
        grid = self.world.grid
        return {
            "qTable": self.store.to_dict() if self.store else {},
            "parameters": self.config.parameters_dict(),
            "algorithm": self.config.algorithm.value,
            "explorationStrategy": self.config.exploration_strategy.value,
            "rewardStructure": self.config.rewards.to_dict(),
            "gridConfig": {
                "size": self.world.size,
                "startPos": list(self.world.start) if self.world.start else None,
                "goalPos": list(self.world.goal) if self.world.goal else None,
                "walls": [list(pos) for pos in grid.walls] if grid else [],
            },
        }

    def import_session(self, record: Dict[str, Any]) -> bool:
        """
        Replace the value store, parameters and grid from an exported record.

        The whole record is validated before anything is swapped in; on
        failure the current session is left untouched.
        """
        try:
            grid_config = record["gridConfig"]
            size = int(grid_config["size"])
            start = _parse_position(grid_config["startPos"])
            goal = _parse_position(grid_config["goalPos"])
            walls = grid_config.get("walls")
            if walls is not None:
                grid = Grid.from_walls(size, [_parse_position(pos) for pos in walls])
            elif self.world.grid is not None and self.world.size == size:
                grid = self.world.grid
            else:
                grid = Grid.empty(size)

            candidate = GridWorld(grid, start, goal)
            if not candidate.is_configured():
                raise ValueError(f"start {start} and goal {goal} do not fit the grid")

            store = QTable.from_dict(record.get("qTable") or {}, candidate.num_states)

            params = {}
            for key, value in (record.get("parameters") or {}).items():
                if key in PARAMETER_FIELDS:
                    params[PARAMETER_FIELDS[key]] = value
                else:
                    logger.warning("Ignoring unknown imported parameter %r", key)

            rewards = self.config.rewards
            if "rewardStructure" in record:
                rewards = RewardStructure.from_dict(record["rewardStructure"])
            preset = next((name for name, preset in REWARD_PRESETS.items() if preset == rewards), "custom")

            config = replace(
                self.config,
                **params,
                algorithm=parse_algorithm(record.get("algorithm", self.config.algorithm)),
                exploration_strategy=parse_strategy(
                    record.get("explorationStrategy", self.config.exploration_strategy)),
                rewards=rewards,
                reward_preset=preset,
            ).clamped()
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Rejected session import: %s", e)
            return False

        self._cancel_pending()
        self._fsm.reset_to_idle()
        self.world.grid = grid
        self.world.start = start
        self.world.goal = goal
        self.world.reset_agent()
        self._discard_session()
        self._base_epsilon = config.epsilon
        self._set_config(config)

        self.store = store
        self.counts = ActionCounts(candidate.num_states)
        self.detector = ConvergenceDetector.from_config(self.config)
        self.episode = EpisodeController(
            self.world, self.store, self.config, self.counts, self.rng,
            on_update=self.detector.record,
        )
        logger.info("Imported session with %d visited states", len(store.snapshot()))
        return True

    # Analysis

    def find_path(self, max_steps: Optional[int] = None) -> PathfindingResult:
        """Greedy rollout of the learned policy from the start cell."""
        if not self.is_initialized:
            return PathfindingResult()
        return follow_greedy_policy(
            self.world, self.store, max_steps or self.config.max_steps_per_episode,
            training_episodes=len(self.history),
        )

    def performance_metrics(self) -> Dict[str, float]:
        """Summary statistics over the last 100 episodes."""
        if not self.history:
            return {
                "totalEpisodes": 0,
                "averageReward": 0.0,
                "averageSteps": 0.0,
                "successRate": 0.0,
                "convergenceValue": self.detector.status.convergence_value,
                "episodesPerSecond": 0.0,
                "explorationDecline": 0.0,
            }

        recent = self.history[-100:]
        total_seconds = sum(ep.duration_ms for ep in self.history) / 1000.0
        first_epsilon = self.history[0].epsilon_used
        last_epsilon = self.history[-1].epsilon_used
        return {
            "totalEpisodes": len(self.history),
            "averageReward": float(np.mean([ep.total_reward for ep in recent])),
            "averageSteps": float(np.mean([ep.steps for ep in recent])),
            "successRate": sum(1 for ep in recent if ep.reached_goal) / len(recent),
            "convergenceValue": self.detector.status.convergence_value,
            "episodesPerSecond": len(self.history) / total_seconds if total_seconds > 0 else 0.0,
            "explorationDecline": (first_epsilon - last_epsilon) / first_epsilon if first_epsilon > 0 else 0.0,
        }

    # Tick handling

    def _arm(self) -> None:
        if self.timer.is_pending:
            return
        token = CancellationToken()
        self._token = token
        self.timer.arm(self.config.step_delay, lambda: self._tick(token))

    def _cancel_pending(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None
        self.timer.cancel()

    def _tick(self, token: CancellationToken) -> None:
        if token.cancelled or not self.is_running:
            return

        # A manual step while paused may have finished the episode
        if self.episode.phase != EpisodePhase.RUNNING:
            if self._should_stop():
                self._complete()
                return
            self.episode.start(self.current_episode_index)

        finished = self._execute_step()
        if finished is not None:
            if self._should_stop():
                self._complete()
                return
            self.episode.start(self.current_episode_index)

        if token.cancelled or not self.is_running:
            return
        self._arm()

    def _complete(self) -> None:
        self._token = None
        self._fsm.complete()
        logger.info("Training complete after %d episodes", self.current_episode_index)

    def _execute_step(self) -> Optional[Episode]:
        """Run one step. Returns the episode record if the step finished it."""
        done = self.episode.step()
        if self.on_step is not None:
            self.on_step(self.episode.trajectory[-1])
        if not done:
            return None
        return self._finish_episode()

    def _finish_episode(self) -> Episode:
        episode = self.episode.result
        self.history.append(episode)
        self.current_episode_index += 1
        if self.current_episode_index % self.config.epsilon_decay_interval == 0:
            self._decay_epsilon()
        logger.debug("Episode %d: steps=%d reward=%.2f goal=%s", episode.number, episode.steps,
                     episode.total_reward, episode.reached_goal)
        if self.on_episode is not None:
            self.on_episode(episode)
        return episode

    def _decay_epsilon(self) -> None:
        epsilon = self.config.epsilon
        decayed = max(self.config.min_epsilon, epsilon * (1.0 - self.config.epsilon_decay))
        self._set_config(replace(self.config, epsilon=decayed))

    def _should_stop(self) -> bool:
        if self.current_episode_index >= self.config.max_episodes:
            return True
        status = self.detector.status
        if self.config.auto_stop and status.is_converged and status.stable_episodes >= self.config.convergence_patience:
            logger.info("Converged: mean update %.5f over %d stable checks",
                        status.convergence_value, status.stable_episodes)
            return True
        return False

    def _set_config(self, config: RLConfig) -> None:
        self.config = config
        self.world.rewards = config.rewards
        self.detector.configure(config)
        if self.episode is not None:
            self.episode.config = config

    def _discard_session(self) -> None:
        self.store = None
        self.counts = None
        self.episode = None
        self.history = []
        self.current_episode_index = 0
        self.detector.reset()

    def _on_transition(self, from_state: TrainingState, to_state: TrainingState) -> None:
        logger.debug("Training state %s -> %s", from_state.name, to_state.name)
        if self.on_state_changed is not None:
            self.on_state_changed(to_state)
