"""Qt controller connecting a view to the training scheduler."""

import logging
from typing import Any, Dict, Optional, Union

from PySide6.QtCore import QObject, QTimer, Signal

from ..domain.environment import GridWorld, is_valid_position
from ..domain.types import (
    Algorithm, ExplorationStrategy, PathfindingResult, Position, RLConfig, CellKind
)
from ..utils.grid_factory import (
    DEFAULT_GRID_SIZE, add_random_walls, clamp_grid_size, create_preset_grid, default_endpoints,
    generate_maze_grid
)
from ..utils.rng import SeededRNG, get_default_rng
from ..utils.session_io import load_session, save_session
from .fsm import TrainingState
from .scheduler import TrainingScheduler

logger = logging.getLogger(__name__)


class QtTickTimer(QObject):
    """Single-shot QTimer holding at most one pending tick."""

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._callback = None
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._on_timeout)

    @property
    def is_pending(self) -> bool:
        return self._callback is not None

    def arm(self, delay_ms: int, callback) -> None:
        self._callback = callback
        self._timer.start(delay_ms)

    def cancel(self) -> None:
        self._timer.stop()
        self._callback = None

    def _on_timeout(self):
        callback, self._callback = self._callback, None
        if callback is not None:
            callback()


class SignalLogHandler(logging.Handler):
    """Forwards log records at WARNING and above to a Qt signal."""

    def __init__(self, signal):
        super().__init__(logging.WARNING)
        self._signal = signal
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self._signal.emit(self.format(record))


class TrainingController(QObject):
    """
    Controller that exposes training to a Qt view.

    Signals:
        state_changed: Emitted with the new TrainingState
        step_completed: Emitted with each TrajectoryStep
        episode_completed: Emitted with each finished Episode
        training_completed: Emitted with performance metrics when a session completes
        testing_completed: Emitted with the PathfindingResult of a greedy rollout
        grid_updated: Emitted when the grid, start or goal changes
        config_changed: Emitted with the new RLConfig
        warning_logged: Emitted with formatted warnings from the gridrl loggers
        error_occurred: Emitted when a request fails
    """

    # Qt Signals
    state_changed = Signal(object)  # TrainingState
    step_completed = Signal(object)  # TrajectoryStep
    episode_completed = Signal(object)  # Episode
    training_completed = Signal(object)  # Dict[str, float]
    testing_completed = Signal(object)  # PathfindingResult
    grid_updated = Signal()
    config_changed = Signal(object)  # RLConfig
    warning_logged = Signal(str)
    error_occurred = Signal(str)

    def __init__(self, size: int = DEFAULT_GRID_SIZE, preset: str = "empty",
                 config: Optional[RLConfig] = None, seed: Optional[int] = None,
                 parent: Optional[QObject] = None):
        super().__init__(parent)

        grid = create_preset_grid(preset, clamp_grid_size(size))
        start, goal = default_endpoints(grid)
        rng = SeededRNG(seed) if seed is not None else get_default_rng()

        self._world = GridWorld(grid, start, goal)
        self._timer = QtTickTimer(self)
        self._scheduler = TrainingScheduler(self._world, config, self._timer, rng)
        self._scheduler.on_step = self.step_completed.emit
        self._scheduler.on_episode = self.episode_completed.emit
        self._scheduler.on_state_changed = self._on_state_changed

        self._log_handler = SignalLogHandler(self.warning_logged)
        logging.getLogger("gridrl").addHandler(self._log_handler)

        self._scheduler.initialize()

    def shutdown(self):
        """Stop training and detach the log handler."""
        self._scheduler.stop()
        logging.getLogger("gridrl").removeHandler(self._log_handler)

    # Properties

    @property
    def scheduler(self) -> TrainingScheduler:
        return self._scheduler

    @property
    def world(self) -> GridWorld:
        return self._world

    @property
    def config(self) -> RLConfig:
        return self._scheduler.config

    @property
    def current_state(self) -> TrainingState:
        return self._scheduler.state

    # Training control

    def start_training(self) -> bool:
        if not self._scheduler.start():
            self.error_occurred.emit("Training could not start: grid, start and goal must be set")
            return False
        return True

    def pause_training(self) -> bool:
        return self._scheduler.pause()

    def resume_training(self) -> bool:
        return self._scheduler.resume()

    def stop_training(self) -> bool:
        return self._scheduler.stop()

    def reset_training(self) -> bool:
        result = self._scheduler.reset()
        self.grid_updated.emit()
        return result

    def step(self) -> bool:
        """Single manual step, refused while running."""
        return self._scheduler.step_once()

    def find_path(self) -> PathfindingResult:
        result = self._scheduler.find_path()
        self.testing_completed.emit(result)
        return result

    # Configuration

    def update_config(self, **kwargs) -> RLConfig:
        config = self._scheduler.update_config(**kwargs)
        self.config_changed.emit(config)
        return config

    def set_algorithm(self, algorithm: Union[Algorithm, str]) -> Algorithm:
        result = self._scheduler.set_algorithm(algorithm)
        self.config_changed.emit(self.config)
        return result

    def set_exploration_strategy(self, strategy: Union[ExplorationStrategy, str]) -> ExplorationStrategy:
        result = self._scheduler.set_exploration_strategy(strategy)
        self.config_changed.emit(self.config)
        return result

    def set_reward_preset(self, name: str) -> bool:
        if not self._scheduler.set_reward_preset(name):
            return False
        self.config_changed.emit(self.config)
        return True

    # Grid Management

    def load_preset(self, preset: str, size: Optional[int] = None) -> bool:
        """Replace the grid with a preset layout. Refused while training is active."""
        if self._scheduler.is_active:
            return False
        try:
            grid = create_preset_grid(preset, clamp_grid_size(size or self._world.size))
        except ValueError as e:
            self.error_occurred.emit(f"Failed to create grid: {e}")
            return False

        start, goal = default_endpoints(grid)
        self._scheduler.reconfigure(grid, start, goal)
        self.grid_updated.emit()
        return True

    def generate_maze(self, size: int, seed: Optional[int] = None) -> bool:
        if self._scheduler.is_active:
            return False
        grid, start, goal = generate_maze_grid(clamp_grid_size(size), seed)
        self._scheduler.reconfigure(grid, start, goal)
        self.grid_updated.emit()
        return True

    def add_random_walls(self, density: float, seed: Optional[int] = None) -> bool:
        """Scatter walls over the current grid, keeping start and goal open."""
        if self._scheduler.is_active:
            return False
        rng = SeededRNG(seed) if seed is not None else self._scheduler.rng
        keep_clear = tuple(pos for pos in (self._world.start, self._world.goal) if pos is not None)
        try:
            grid = add_random_walls(self._world.grid, density, rng, keep_clear)
        except ValueError as e:
            self.error_occurred.emit(f"Failed to add walls: {e}")
            return False

        self._scheduler.reconfigure(grid)
        self.grid_updated.emit()
        return True

    def set_cell(self, pos: Position, kind: CellKind) -> bool:
        """
        Edit one cell: "wall", "empty", "start" or "goal".

        Start and goal cannot be walled over, and editing is refused while
        training is active.
        """
        if self._scheduler.is_active or not is_valid_position(pos, self._world.size):
            return False

        pos = (int(pos[0]), int(pos[1]))
        grid, start, goal = self._world.grid, self._world.start, self._world.goal
        if kind == "wall":
            if pos in (start, goal):
                return False
            grid = grid.with_cell(pos, "wall")
        elif kind == "empty":
            grid = grid.with_cell(pos, "empty")
        elif kind == "start":
            if pos == goal:
                return False
            grid, start = grid.with_cell(pos, "empty"), pos
        elif kind == "goal":
            if pos == start:
                return False
            grid, goal = grid.with_cell(pos, "empty"), pos
        else:
            self.error_occurred.emit(f"Unknown cell kind: {kind}")
            return False

        self._scheduler.reconfigure(grid, start, goal)
        self.grid_updated.emit()
        return True

    # Export / import

    def export_session(self, filepath: Optional[str] = None) -> Dict[str, Any]:
        record = self._scheduler.export_session()
        if filepath and not save_session(filepath, record):
            self.error_occurred.emit(f"Failed to save session to {filepath}")
        return record

    def import_session(self, source: Union[str, Dict[str, Any]]) -> bool:
        """Import from a record or a session file. Refused while training is active."""
        if self._scheduler.is_active:
            return False
        record = load_session(source) if isinstance(source, str) else source
        if record is None or not self._scheduler.import_session(record):
            self.error_occurred.emit("Failed to import session")
            return False
        self.config_changed.emit(self.config)
        self.grid_updated.emit()
        return True

    # Statistics

    def get_statistics(self) -> Dict[str, Any]:
        """Live counters and summary metrics for display."""
        scheduler = self._scheduler
        convergence = scheduler.convergence
        return {
            "state": scheduler.state_description,
            "episode": scheduler.current_episode_index,
            "maxEpisodes": scheduler.config.max_episodes,
            "step": scheduler.step_count,
            "cumulativeReward": scheduler.cumulative_reward,
            "epsilon": scheduler.config.epsilon,
            "agentPosition": scheduler.agent_position,
            "isConverged": convergence.is_converged,
            "convergenceValue": convergence.convergence_value,
            "stableEpisodes": convergence.stable_episodes,
            "metrics": scheduler.performance_metrics(),
        }

    def _on_state_changed(self, state: TrainingState):
        self.state_changed.emit(state)
        if state == TrainingState.COMPLETE:
            self.training_completed.emit(self._scheduler.performance_metrics())
