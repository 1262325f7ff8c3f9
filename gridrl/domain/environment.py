"""Grid environment model: legal moves, rewards and the agent position."""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .types import (
    Position, CellKind, Action, ACTIONS, ACTION_DELTAS, CELL_KINDS,
    RewardStructure, REWARD_PRESETS, StepResult
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Grid:
    """Immutable square grid of cell kinds."""
    size: int
    cells: Tuple[Tuple[CellKind, ...], ...]

    def __post_init__(self):
        if self.size <= 0:
            raise ValueError(f"Grid size must be positive, got {self.size}")
        if len(self.cells) != self.size or any(len(row) != self.size for row in self.cells):
            raise ValueError(f"Grid cells must form a {self.size}x{self.size} square")
        for row in self.cells:
            for kind in row:
                if kind not in CELL_KINDS:
                    raise ValueError(f"Unknown cell kind {kind!r}")

    @classmethod
    def empty(cls, size: int) -> "Grid":
        """Create a grid with every cell empty."""
        return cls(size, tuple(tuple("empty" for _ in range(size)) for _ in range(size)))

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[CellKind]]) -> "Grid":
        cells = tuple(tuple(row) for row in rows)
        return cls(len(cells), cells)

    @classmethod
    def from_walls(cls, size: int, walls: Iterable[Position]) -> "Grid":
        """Create a grid of the given size with walls at the listed positions."""
        rows = [["empty"] * size for _ in range(size)]
        for row, col in walls:
            if not is_valid_position((row, col), size):
                raise ValueError(f"Wall position {(row, col)} is out of bounds")
            rows[row][col] = "wall"
        return cls.from_rows(rows)

    def cell(self, pos: Position) -> CellKind:
        row, col = pos
        return self.cells[row][col]

    def with_cell(self, pos: Position, kind: CellKind) -> "Grid":
        """Return a copy with one cell replaced."""
        rows = [list(row) for row in self.cells]
        rows[pos[0]][pos[1]] = kind
        return Grid.from_rows(rows)

    def positions_of(self, kind: CellKind) -> List[Position]:
        return [
            (row, col)
            for row in range(self.size)
            for col in range(self.size)
            if self.cells[row][col] == kind
        ]

    @property
    def walls(self) -> List[Position]:
        return self.positions_of("wall")


def is_valid_position(pos: Position, size: int) -> bool:
    """Check if a position lies within the grid bounds."""
    row, col = pos
    return 0 <= row < size and 0 <= col < size


def is_wall(grid: Grid, pos: Position) -> bool:
    """Check if a position is a wall. Out-of-bounds positions count as walls."""
    if not is_valid_position(pos, grid.size):
        return True
    return grid.cell(pos) == "wall"


def next_position(pos: Position, action: Action) -> Position:
    """Apply an action's offset without any validation."""
    d_row, d_col = ACTION_DELTAS[action]
    return (pos[0] + d_row, pos[1] + d_col)


def valid_actions(grid: Grid, pos: Position) -> List[Action]:
    """Actions whose resulting position is in bounds and not a wall."""
    return [action for action in ACTIONS if not is_wall(grid, next_position(pos, action))]


def reward(grid: Grid, current_pos: Position, next_pos: Position, goal_pos: Position,
           is_collision: bool, rewards: RewardStructure = REWARD_PRESETS["default"]) -> float:
    """Reward for a transition from current_pos to next_pos."""
    if next_pos == goal_pos:
        return rewards.goal
    if is_collision:
        return rewards.invalid_move
    return rewards.step


def position_to_state(pos: Position, size: int) -> int:
    """Convert a 2D position into a state index."""
    row, col = pos
    return row * size + col


def state_to_position(state: int, size: int) -> Position:
    """Convert a state index back into a 2D position."""
    return divmod(state, size)


class GridWorld:
    """
    Environment collaborator owning the grid, start, goal and agent position.

    The agent position lives here only; everything else reads it through
    `agent_position`.
    """

    def __init__(self, grid: Optional[Grid] = None, start: Optional[Position] = None,
                 goal: Optional[Position] = None,
                 rewards: RewardStructure = REWARD_PRESETS["default"]):
        self.grid = grid
        self.start = tuple(start) if start is not None else None
        self.goal = tuple(goal) if goal is not None else None
        self.rewards = rewards
        self._agent_pos: Optional[Position] = self.start

    @property
    def size(self) -> int:
        return self.grid.size if self.grid else 0

    @property
    def num_states(self) -> int:
        return self.size * self.size

    @property
    def agent_position(self) -> Optional[Position]:
        return self._agent_pos

    def is_configured(self) -> bool:
        """Check that grid, start and goal are present and usable."""
        if self.grid is None or self.start is None or self.goal is None:
            return False
        if is_wall(self.grid, self.start) or is_wall(self.grid, self.goal):
            return False
        return self.start != self.goal

    def move_agent(self, pos: Position) -> bool:
        """Move the agent, refusing out-of-bounds and wall positions."""
        if self.grid is None or is_wall(self.grid, pos):
            return False
        self._agent_pos = (int(pos[0]), int(pos[1]))
        return True

    def reset_agent(self) -> Position:
        """Move the agent back to the start position."""
        self._agent_pos = self.start
        return self._agent_pos

    def state_of(self, pos: Position) -> int:
        return position_to_state(pos, self.size)

    def position_of(self, state: int) -> Position:
        return state_to_position(state, self.size)

    def valid_actions(self, pos: Position) -> List[Action]:
        return valid_actions(self.grid, pos)

    def transition(self, pos: Position, action: Action) -> StepResult:
        """
        Compute the outcome of taking an action from a position.

        Moving into a wall or off the grid is a self-transition carrying the
        invalid-move penalty. The agent is not moved here.
        """
        if (pos is None or action not in ACTION_DELTAS
                or not is_valid_position(pos, self.size)):
            logger.warning("Malformed transition request: position=%r action=%r", pos, action)
            fallback = pos if pos is not None and is_valid_position(pos, self.size) else self.start
            return StepResult(
                next_state=self.state_of(fallback),
                next_position=fallback,
                reward=0.0,
                done=False,
                collision=True,
            )

        candidate = next_position(pos, action)
        collision = is_wall(self.grid, candidate)
        new_pos = pos if collision else candidate
        step_reward = reward(self.grid, pos, new_pos, self.goal, collision, self.rewards)

        return StepResult(
            next_state=self.state_of(new_pos),
            next_position=new_pos,
            reward=step_reward,
            done=new_pos == self.goal,
            collision=collision,
        )
