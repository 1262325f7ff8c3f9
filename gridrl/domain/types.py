"""Core type definitions for the grid-world RL training engine."""

import logging
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Optional, Tuple, Literal, Dict, List, Union

logger = logging.getLogger(__name__)

# Grid positions are (row, col)
Position = Tuple[int, int]

# Cell kinds stored in a grid
CellKind = Literal["empty", "wall", "start", "goal"]
CELL_KINDS: Tuple[CellKind, ...] = ("empty", "wall", "start", "goal")

# Actions the agent can take, in enumeration order
Action = Literal["up", "down", "left", "right"]
ACTIONS: Tuple[Action, ...] = ("up", "down", "left", "right")
NUM_ACTIONS = len(ACTIONS)


class Algorithm(Enum):
    """Value update algorithms."""
    Q_LEARNING = "q-learning"
    SARSA = "sarsa"
    EXPECTED_SARSA = "expected-sarsa"


class ExplorationStrategy(Enum):
    """Action selection strategies."""
    EPSILON_GREEDY = "epsilon-greedy"
    UCB = "ucb"
    BOLTZMANN = "boltzmann"


def parse_algorithm(value: Union[str, Algorithm, None]) -> Algorithm:
    """Resolve an algorithm tag, falling back to Q-learning on unknown tags."""
    if isinstance(value, Algorithm):
        return value
    try:
        return Algorithm(value)
    except ValueError:
        logger.warning("Unknown algorithm %r, falling back to %s", value, Algorithm.Q_LEARNING.value)
        return Algorithm.Q_LEARNING


def parse_strategy(value: Union[str, ExplorationStrategy, None]) -> ExplorationStrategy:
    """Resolve an exploration strategy tag, falling back to epsilon-greedy."""
    if isinstance(value, ExplorationStrategy):
        return value
    # Older exports spell it with one "n"
    if value == "boltzman":
        return ExplorationStrategy.BOLTZMANN
    try:
        return ExplorationStrategy(value)
    except ValueError:
        logger.warning("Unknown exploration strategy %r, falling back to %s",
                       value, ExplorationStrategy.EPSILON_GREEDY.value)
        return ExplorationStrategy.EPSILON_GREEDY


@dataclass(frozen=True)
class RewardStructure:
    """Reward magnitudes for goal, step and invalid moves."""
    goal: float = 100.0
    step: float = -1.0
    wall: float = -10.0
    out_of_bounds: float = -10.0

    @property
    def invalid_move(self) -> float:
        """Penalty applied to any collision, wall or grid edge."""
        return self.wall

    def to_dict(self) -> Dict[str, float]:
        return {
            "goal": self.goal,
            "step": self.step,
            "wall": self.wall,
            "outOfBounds": self.out_of_bounds,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RewardStructure":
        return cls(
            goal=float(data["goal"]),
            step=float(data["step"]),
            wall=float(data["wall"]),
            out_of_bounds=float(data.get("outOfBounds", data["wall"])),
        )


REWARD_PRESETS: Dict[str, RewardStructure] = {
    "default": RewardStructure(goal=100.0, step=-1.0, wall=-10.0, out_of_bounds=-10.0),
    "sparse": RewardStructure(goal=1.0, step=0.0, wall=0.0, out_of_bounds=0.0),
    "dense": RewardStructure(goal=100.0, step=-1.0, wall=-50.0, out_of_bounds=-50.0),
}


def _clamp(value: float, low: float, high: float = float("inf")) -> float:
    return max(low, min(high, value))


@dataclass
class RLConfig:
    """Configuration for training."""
    learning_rate: float = 0.1
    discount_factor: float = 0.9
    epsilon: float = 0.1
    epsilon_decay: float = 0.01  # Multiplicative, applied every decay interval
    min_epsilon: float = 0.01
    temperature: float = 1.0
    ucb_constant: float = 2.0
    max_episodes: int = 1000
    max_steps_per_episode: int = 200
    step_delay: int = 100  # milliseconds between ticks
    auto_stop: bool = True
    algorithm: Algorithm = Algorithm.Q_LEARNING
    exploration_strategy: ExplorationStrategy = ExplorationStrategy.EPSILON_GREEDY
    reward_preset: str = "default"
    rewards: RewardStructure = field(default_factory=lambda: REWARD_PRESETS["default"])

    # Convergence detection
    convergence_threshold: float = 0.01
    convergence_window: int = 50
    convergence_interval: int = 100  # updates between checks
    convergence_patience: int = 1  # consecutive converged checks before auto-stop
    epsilon_decay_interval: int = 10  # episodes between decays

    def clamped(self) -> "RLConfig":
        """Return a copy with every field forced into its valid range."""
        min_epsilon = _clamp(float(self.min_epsilon), 0.0, 0.5)
        return replace(
            self,
            learning_rate=_clamp(float(self.learning_rate), 0.001, 1.0),
            discount_factor=_clamp(float(self.discount_factor), 0.0, 1.0),
            epsilon=_clamp(float(self.epsilon), min_epsilon, 1.0),
            epsilon_decay=_clamp(float(self.epsilon_decay), 0.001, 0.1),
            min_epsilon=min_epsilon,
            temperature=_clamp(float(self.temperature), 0.1),
            ucb_constant=_clamp(float(self.ucb_constant), 0.1),
            max_episodes=max(1, int(self.max_episodes)),
            max_steps_per_episode=max(1, int(self.max_steps_per_episode)),
            step_delay=max(0, int(self.step_delay)),
            algorithm=parse_algorithm(self.algorithm),
            exploration_strategy=parse_strategy(self.exploration_strategy),
            convergence_window=max(1, int(self.convergence_window)),
            convergence_interval=max(1, int(self.convergence_interval)),
            convergence_patience=max(1, int(self.convergence_patience)),
            epsilon_decay_interval=max(1, int(self.epsilon_decay_interval)),
        )

    def with_updates(self, **kwargs) -> "RLConfig":
        """Apply field updates and clamp. Unknown keys are logged and ignored."""
        known = {}
        for key, value in kwargs.items():
            if key in {f.name for f in fields(self)}:
                known[key] = value
            else:
                logger.warning("Ignoring unknown config field %r", key)
        if "reward_preset" in known and "rewards" not in known:
            preset = known["reward_preset"]
            if preset in REWARD_PRESETS:
                known["rewards"] = REWARD_PRESETS[preset]
            else:
                logger.warning("Unknown reward preset %r, keeping %r", preset, self.reward_preset)
                del known["reward_preset"]
        return replace(self, **known).clamped()

    def parameters_dict(self) -> Dict[str, float]:
        """Numeric parameters in export-record form."""
        return {
            "learningRate": self.learning_rate,
            "discountFactor": self.discount_factor,
            "epsilon": self.epsilon,
            "epsilonDecay": self.epsilon_decay,
            "minEpsilon": self.min_epsilon,
            "temperature": self.temperature,
            "ucbC": self.ucb_constant,
            "maxEpisodes": self.max_episodes,
            "maxStepsPerEpisode": self.max_steps_per_episode,
        }


# Export-record parameter names mapped onto config fields
PARAMETER_FIELDS: Dict[str, str] = {
    "learningRate": "learning_rate",
    "discountFactor": "discount_factor",
    "epsilon": "epsilon",
    "epsilonDecay": "epsilon_decay",
    "minEpsilon": "min_epsilon",
    "temperature": "temperature",
    "ucbC": "ucb_constant",
    "maxEpisodes": "max_episodes",
    "maxStepsPerEpisode": "max_steps_per_episode",
}


@dataclass
class StepResult:
    """Outcome of one environment transition."""
    next_state: int
    next_position: Position
    reward: float
    done: bool
    collision: bool


@dataclass
class TrajectoryStep:
    """One recorded step of an episode."""
    position: Position
    action: Optional[Action]
    reward: float
    q_values: Dict[Action, float]
    collision: bool = False


@dataclass
class Episode:
    """Represents a single training episode."""
    number: int
    steps: int
    total_reward: float
    reached_goal: bool
    epsilon_used: float
    duration_ms: float = 0.0
    trajectory: List[TrajectoryStep] = field(default_factory=list)


@dataclass
class ConvergenceInfo:
    """Latest convergence check result."""
    is_converged: bool = False
    convergence_value: float = 0.0
    stable_episodes: int = 0


@dataclass
class PathfindingResult:
    """Result of following the greedy policy from the start."""
    path: Optional[List[Position]] = None
    path_length: int = 0
    total_reward: float = 0.0
    steps_taken: int = 0
    found: bool = False
    training_episodes: int = 0

    @property
    def success(self) -> bool:
        """Whether pathfinding was successful."""
        return self.found and self.path is not None and len(self.path) > 0


# Action mappings
ACTION_TO_INT: Dict[Action, int] = {action: index for index, action in enumerate(ACTIONS)}

INT_TO_ACTION: Dict[int, Action] = {index: action for index, action in enumerate(ACTIONS)}

ACTION_DELTAS: Dict[Action, Position] = {
    "up": (-1, 0),
    "down": (1, 0),
    "left": (0, -1),
    "right": (0, 1),
}
