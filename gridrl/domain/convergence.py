"""Convergence detection from recent Q-value changes."""

from collections import deque
from typing import Deque

import numpy as np

from .types import ConvergenceInfo, RLConfig


class ConvergenceDetector:
    """
    Tracks the absolute size of recent value updates.

    A check runs once every `interval` recorded updates. The metric is the
    mean absolute change over the last `window` updates; the run counts as
    converged while that mean is below `threshold`. Until some update has
    actually changed a value, a check never reports converged.
    """

    def __init__(self, threshold: float = 0.01, window: int = 50, interval: int = 100):
        self.threshold = threshold
        self.window = window
        self.interval = interval
        self._deltas: Deque[float] = deque(maxlen=window)
        self._updates_since_check = 0
        self._seen_change = False
        self.status = ConvergenceInfo()

    @classmethod
    def from_config(cls, config: RLConfig) -> "ConvergenceDetector":
        return cls(config.convergence_threshold, config.convergence_window, config.convergence_interval)

    def configure(self, config: RLConfig) -> None:
        """Adopt new thresholds, keeping the most recent samples."""
        self.threshold = config.convergence_threshold
        self.interval = config.convergence_interval
        if config.convergence_window != self.window:
            self.window = config.convergence_window
            self._deltas = deque(self._deltas, maxlen=self.window)

    @property
    def sample_count(self) -> int:
        return len(self._deltas)

    def record(self, delta: float) -> bool:
        """
        Record one update's value change.

        Returns:
            True if this update triggered a check
        """
        change = abs(delta)
        self._deltas.append(change)
        if change > 0.0:
            self._seen_change = True
        self._updates_since_check += 1
        if self._updates_since_check >= self.interval:
            self._updates_since_check = 0
            self.check()
            return True
        return False

    def check(self) -> ConvergenceInfo:
        """Evaluate the current window and update the status."""
        if not self._deltas:
            return self.status
        value = float(np.mean(self._deltas))
        converged = self._seen_change and value < self.threshold
        stable = self.status.stable_episodes + 1 if converged else 0
        self.status = ConvergenceInfo(is_converged=converged, convergence_value=value, stable_episodes=stable)
        return self.status

    def reset(self) -> None:
        self._deltas.clear()
        self._updates_since_check = 0
        self._seen_change = False
        self.status = ConvergenceInfo()
