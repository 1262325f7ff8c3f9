"""Random number generation utilities for grid-world training."""

import numpy as np
from typing import Optional, Sequence, TypeVar

T = TypeVar("T")


class SeededRNG:
    """Seeded random number generator for reproducible training runs."""

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self.generator = np.random.default_rng(seed)

    def random(self) -> float:
        """Generate random float in [0, 1)."""
        return float(self.generator.random())

    def choice(self, seq: Sequence[T]) -> T:
        """Choose random element from a non-empty sequence."""
        return seq[int(self.generator.integers(len(seq)))]

    def weighted_choice(self, seq: Sequence[T], probabilities: Sequence[float]) -> T:
        """Choose an element with the given probabilities."""
        index = int(self.generator.choice(len(seq), p=np.asarray(probabilities, dtype=np.float64)))
        return seq[index]

    def sample(self, population: Sequence[T], k: int) -> list:
        """Sample k elements from population without replacement."""
        indices = self.generator.choice(len(population), size=k, replace=False)
        return [population[int(i)] for i in indices]

    def shuffle(self, seq: list) -> None:
        """Shuffle a list in place."""
        order = self.generator.permutation(len(seq))
        seq[:] = [seq[int(i)] for i in order]


# Default RNG instance
default_rng = SeededRNG()


def get_default_rng() -> SeededRNG:
    return default_rng


def set_global_seed(seed: Optional[int]) -> SeededRNG:
    """Replace the default generator with one seeded for reproducibility."""
    global default_rng
    default_rng = SeededRNG(seed)
    return default_rng
