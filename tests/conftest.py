"""
Shared pytest fixtures for gridrl tests.
"""

import os

import pytest

# Qt must not look for a display in headless test runs
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from gridrl.app.scheduler import ManualTimer, TrainingScheduler
from gridrl.domain.environment import Grid, GridWorld
from gridrl.domain.types import RLConfig
from gridrl.domain.value_store import ActionCounts, QTable
from gridrl.utils.rng import SeededRNG


@pytest.fixture
def rng():
    return SeededRNG(1234)


@pytest.fixture
def empty_world():
    """5x5 open grid from the top-left to the bottom-right corner."""
    grid = Grid.empty(5)
    return GridWorld(grid, (0, 0), (4, 4))


@pytest.fixture
def store():
    return QTable(25)


@pytest.fixture
def counts():
    return ActionCounts(25)


@pytest.fixture
def timer():
    return ManualTimer()


@pytest.fixture
def make_scheduler(rng, timer):
    """Factory building a scheduler over a world with a manual timer."""
    def _make(world, **config_updates):
        config = RLConfig().with_updates(**config_updates)
        return TrainingScheduler(world, config, timer, rng)
    return _make
