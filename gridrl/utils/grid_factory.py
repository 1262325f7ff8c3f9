"""Grid factory for creating preset, random and maze grids."""

import heapq
import logging
from typing import Dict, List, Optional, Tuple

from ..domain.environment import Grid, is_wall, next_position
from ..domain.types import Position, ACTIONS
from .rng import SeededRNG, get_default_rng

logger = logging.getLogger(__name__)

DEFAULT_GRID_SIZE = 8
MIN_GRID_SIZE = 3
MAX_GRID_SIZE = 15

GRID_PRESETS = ("empty", "simple-maze", "complex-maze", "four-rooms")


def clamp_grid_size(size: int) -> int:
    """Force a requested side length into the supported range."""
    clamped = max(MIN_GRID_SIZE, min(MAX_GRID_SIZE, int(size)))
    if clamped != size:
        logger.warning("Grid size %s outside %d-%d, using %d", size, MIN_GRID_SIZE, MAX_GRID_SIZE, clamped)
    return clamped


def _simple_maze_walls(size: int) -> List[Position]:
    """A cross through the middle with a gap at the centre row and column."""
    if size < 5:
        return []
    mid = size // 2
    walls = [(i, mid) for i in range(1, size - 1) if i != mid]
    walls += [(mid, j) for j in range(1, size - 1) if j != mid]
    return walls


def _complex_maze_walls(size: int) -> List[Position]:
    if size < 8:
        return []
    walls = [
        (1, 1), (1, 2), (1, 3),
        (3, 5), (3, 6),
        (5, 1), (5, 2),
        (6, 4), (6, 5), (6, 6),
    ]
    return [(row, col) for row, col in walls if row < size and col < size]


def _four_rooms_walls(size: int) -> List[Position]:
    """Two full dividing walls, each with two doorways."""
    if size < 7:
        return []
    mid = size // 2
    doors = {mid // 2, mid + mid // 2}
    walls = set()
    for i in range(size):
        if i not in doors:
            walls.add((mid, i))
            walls.add((i, mid))
    return sorted(walls)


_PRESET_BUILDERS = {
    "empty": lambda size: [],
    "simple-maze": _simple_maze_walls,
    "complex-maze": _complex_maze_walls,
    "four-rooms": _four_rooms_walls,
}


def create_preset_grid(preset: str, size: int = DEFAULT_GRID_SIZE) -> Grid:
    """
    Create a preset grid layout.

    Args:
        preset: One of "empty", "simple-maze", "complex-maze", "four-rooms"
        size: Grid side length

    Returns:
        New Grid with the preset's walls

    Raises:
        ValueError: If the preset is unknown or the size is not positive
    """
    if preset not in _PRESET_BUILDERS:
        raise ValueError(f"Unknown preset: {preset}")
    return Grid.from_walls(size, _PRESET_BUILDERS[preset](size))


def default_endpoints(grid: Grid) -> Tuple[Position, Position]:
    """Top-left start and bottom-right goal."""
    return (0, 0), (grid.size - 1, grid.size - 1)


def add_random_walls(grid: Grid, density: float, rng: Optional[SeededRNG] = None,
                     keep_clear: Tuple[Position, ...] = ()) -> Grid:
    """
    Return a copy of the grid with random walls added.

    Args:
        grid: Grid to start from
        density: Wall density (0.0 to 1.0, where 1.0 = all cells)
        rng: Random number generator to use (uses default if None)
        keep_clear: Positions that must stay open
    """
    if not (0.0 <= density <= 1.0):
        raise ValueError(f"Density must be between 0.0 and 1.0, got {density}")

    rng = rng or get_default_rng()
    num_walls = int(grid.size * grid.size * density)
    empty = [pos for pos in grid.positions_of("empty") if pos not in keep_clear]
    num_walls = min(num_walls, len(empty))

    return Grid.from_walls(grid.size, grid.walls + rng.sample(empty, num_walls))


def generate_random_positions(grid: Grid, rng: Optional[SeededRNG] = None) -> Tuple[Position, Position]:
    """
    Pick distinct random start and goal cells among the empty ones.

    Falls back to the opposite corners when fewer than two cells are empty.
    """
    rng = rng or get_default_rng()
    empty = grid.positions_of("empty")
    if len(empty) < 2:
        return default_endpoints(grid)
    start, goal = rng.sample(empty, 2)
    return start, goal


def generate_maze_grid(size: int, seed: Optional[int] = None) -> Tuple[Grid, Position, Position]:
    """
    Generate a maze using recursive backtracking.

    Args:
        size: Grid side length (made odd for proper maze generation)
        seed: Random seed for reproducibility

    Returns:
        Tuple of (grid, start, goal)
    """
    rng = SeededRNG(seed)
    # Below 5 cells the carving leaves a single open cell
    size = max(size, 5)
    if size % 2 == 0:
        size += 1

    rows = [["wall"] * size for _ in range(size)]

    # Depth-first carving with an explicit stack
    stack = [(1, 1)]
    rows[1][1] = "empty"
    while stack:
        row, col = stack[-1]
        directions = [(0, -2), (0, 2), (-2, 0), (2, 0)]
        rng.shuffle(directions)
        for d_row, d_col in directions:
            n_row, n_col = row + d_row, col + d_col
            if 0 < n_row < size and 0 < n_col < size and rows[n_row][n_col] == "wall":
                rows[row + d_row // 2][col + d_col // 2] = "empty"
                rows[n_row][n_col] = "empty"
                stack.append((n_row, n_col))
                break
        else:
            stack.pop()

    grid = Grid.from_rows(rows)
    start, goal = generate_random_positions(grid, rng)
    return grid, start, goal


def optimal_path(grid: Grid, start: Position, goal: Position) -> List[Position]:
    """
    Shortest path from start to goal with A* over the four moves.

    Returns:
        Positions from start to goal inclusive, empty if unreachable
    """
    if is_wall(grid, start) or is_wall(grid, goal):
        return []

    def heuristic(pos: Position) -> int:
        return abs(pos[0] - goal[0]) + abs(pos[1] - goal[1])

    open_heap = [(heuristic(start), 0, start)]
    came_from: Dict[Position, Optional[Position]] = {start: None}
    g_score: Dict[Position, int] = {start: 0}

    while open_heap:
        _, g, current = heapq.heappop(open_heap)
        if current == goal:
            path = [current]
            while came_from[path[-1]] is not None:
                path.append(came_from[path[-1]])
            return path[::-1]
        if g > g_score[current]:
            continue
        for action in ACTIONS:
            neighbor = next_position(current, action)
            if is_wall(grid, neighbor):
                continue
            tentative = g + 1
            if tentative < g_score.get(neighbor, tentative + 1):
                g_score[neighbor] = tentative
                came_from[neighbor] = current
                heapq.heappush(open_heap, (tentative + heuristic(neighbor), tentative, neighbor))

    return []
