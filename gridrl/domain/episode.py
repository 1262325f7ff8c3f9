"""Single-episode execution and greedy policy rollout."""

import logging
import time
from enum import Enum, auto
from typing import Callable, List, Optional

from .environment import GridWorld
from .exploration import greedy_action, select_action
from .types import Action, Algorithm, Episode, PathfindingResult, RLConfig, TrajectoryStep
from .update_rules import update_value
from .value_store import ActionCounts, QTable
from ..utils.rng import SeededRNG

logger = logging.getLogger(__name__)


class EpisodePhase(Enum):
    """Lifecycle of a single episode."""
    NOT_STARTED = auto()
    RUNNING = auto()
    COMPLETE = auto()


class EpisodeController:
    """
    Drives one trajectory from the start cell, one step at a time.

    The agent position is read from and written to the `GridWorld`; this
    class keeps only per-episode counters and the trajectory.
    """

    def __init__(self, world: GridWorld, store: QTable, config: RLConfig,
                 counts: Optional[ActionCounts] = None, rng: Optional[SeededRNG] = None,
                 on_update: Optional[Callable[[float], None]] = None):
        self.world = world
        self.store = store
        self.config = config
        self.counts = counts
        self.rng = rng
        self.on_update = on_update

        self.phase = EpisodePhase.NOT_STARTED
        self.index = 0
        self.steps = 0
        self.total_reward = 0.0
        self.last_action: Optional[Action] = None
        self.last_reward = 0.0
        self.reached_goal = False
        self.trajectory: List[TrajectoryStep] = []
        self._pending_action: Optional[Action] = None
        self._start_time = 0.0
        self._result: Optional[Episode] = None

    @property
    def is_running(self) -> bool:
        return self.phase == EpisodePhase.RUNNING

    @property
    def is_complete(self) -> bool:
        return self.phase == EpisodePhase.COMPLETE

    @property
    def result(self) -> Optional[Episode]:
        """Episode record, available once the episode is complete."""
        return self._result

    def start(self, index: int) -> None:
        """Begin episode `index` with the agent back on the start cell."""
        start = self.world.reset_agent()
        self.phase = EpisodePhase.RUNNING
        self.index = index
        self.steps = 0
        self.total_reward = 0.0
        self.last_action = None
        self.last_reward = 0.0
        self.reached_goal = False
        self._pending_action = None
        self._result = None
        self._start_time = time.time()
        self.trajectory = [
            TrajectoryStep(
                position=start,
                action=None,
                reward=0.0,
                q_values=self.store.state_snapshot(self.world.state_of(start)),
            )
        ]

    def step(self) -> bool:
        """
        Execute one environment step.

        Returns:
            True if this step completed the episode
        """
        if self.phase != EpisodePhase.RUNNING:
            logger.warning("Step requested for episode %d in phase %s", self.index, self.phase.name)
            return False

        config = self.config
        pos = self.world.agent_position
        state = self.world.state_of(pos)
        actions = self.world.valid_actions(pos)

        if self._pending_action is not None and self._pending_action in actions:
            action = self._pending_action
        else:
            action = select_action(self.store, state, actions, config, self.counts, self.rng)
        self._pending_action = None

        if self.counts is not None:
            self.counts.increment(state, action)

        outcome = self.world.transition(pos, action)
        next_actions = [] if outcome.done else self.world.valid_actions(outcome.next_position)

        next_action = None
        if config.algorithm == Algorithm.SARSA and next_actions:
            next_action = select_action(self.store, outcome.next_state, next_actions, config,
                                        self.counts, self.rng)
            self._pending_action = next_action

        old_value = self.store.get(state, action) if self.store.has_entry(state) else 0.0
        new_value = update_value(self.store, state, action, outcome.reward, outcome.next_state,
                                 next_actions, config, next_action)
        if self.on_update is not None:
            self.on_update(new_value - old_value)

        self.world.move_agent(outcome.next_position)
        self.trajectory.append(
            TrajectoryStep(
                position=outcome.next_position,
                action=action,
                reward=outcome.reward,
                q_values=self.store.state_snapshot(outcome.next_state),
                collision=outcome.collision,
            )
        )

        self.steps += 1
        self.total_reward += outcome.reward
        self.last_action = action
        self.last_reward = outcome.reward

        if outcome.done or self.steps >= config.max_steps_per_episode:
            self._complete(outcome.done)
            return True
        return False

    def _complete(self, reached_goal: bool) -> None:
        self.phase = EpisodePhase.COMPLETE
        self.reached_goal = reached_goal
        self._pending_action = None
        self._result = Episode(
            number=self.index,
            steps=self.steps,
            total_reward=self.total_reward,
            reached_goal=reached_goal,
            epsilon_used=self.config.epsilon,
            duration_ms=(time.time() - self._start_time) * 1000.0,
            trajectory=list(self.trajectory),
        )


def follow_greedy_policy(world: GridWorld, store: QTable, max_steps: int,
                         training_episodes: int = 0) -> PathfindingResult:
    """
    Follow the learned greedy policy from the start cell without exploring.

    The world's agent position is left untouched.
    """
    pos = world.start
    path = [pos]
    total_reward = 0.0

    for step in range(max_steps):
        actions = world.valid_actions(pos)
        state = world.state_of(pos)
        if not actions or not store.has_entry(state):
            break

        action = greedy_action(store, state, actions)
        outcome = world.transition(pos, action)
        total_reward += outcome.reward
        pos = outcome.next_position
        path.append(pos)

        if outcome.done:
            return PathfindingResult(
                path=path,
                path_length=len(path),
                total_reward=total_reward,
                steps_taken=step + 1,
                found=True,
                training_episodes=training_episodes,
            )

    return PathfindingResult(
        path=path,
        path_length=len(path),
        total_reward=total_reward,
        steps_taken=len(path) - 1,
        found=False,
        training_episodes=training_episodes,
    )
