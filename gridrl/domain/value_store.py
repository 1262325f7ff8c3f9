"""Dense Q-table and visitation counters."""

from typing import Dict, Optional

import numpy as np

from .types import Action, ACTIONS, ACTION_TO_INT, NUM_ACTIONS


class QTable:
    """
    Estimated returns per (state, action).

    Values live in a dense (num_states, num_actions) array. A state only
    "has an entry" once it has been visited; entries start at zero.
    """

    def __init__(self, num_states: int, num_actions: int = NUM_ACTIONS):
        if num_states <= 0:
            raise ValueError(f"Q-table needs at least one state, got {num_states}")
        self.num_states = num_states
        self.num_actions = num_actions
        self._values = np.zeros((num_states, num_actions), dtype=np.float64)
        self._has_entry = np.zeros(num_states, dtype=bool)

    def is_valid_state(self, state) -> bool:
        return (isinstance(state, (int, np.integer)) and not isinstance(state, bool)
                and 0 <= state < self.num_states)

    def has_entry(self, state: int) -> bool:
        return self.is_valid_state(state) and bool(self._has_entry[state])

    def ensure_entry(self, state: int) -> None:
        """Create a zero entry for a state on first visit."""
        if not self._has_entry[state]:
            self._values[state, :] = 0.0
            self._has_entry[state] = True

    def get(self, state: int, action: Action) -> float:
        return float(self._values[state, ACTION_TO_INT[action]])

    def set(self, state: int, action: Action, value: float) -> None:
        self.ensure_entry(state)
        self._values[state, ACTION_TO_INT[action]] = value

    def values(self, state: int) -> np.ndarray:
        """Copy of the values of all actions at a state."""
        return self._values[state].copy()

    def state_snapshot(self, state: int) -> Dict[Action, float]:
        """Values at one state keyed by action, empty when unvisited."""
        if not self.has_entry(state):
            return {}
        return {action: float(self._values[state, index]) for index, action in enumerate(ACTIONS)}

    def snapshot(self) -> Dict[int, Dict[Action, float]]:
        """Read-only copy of every visited entry."""
        return {int(state): self.state_snapshot(int(state)) for state in np.flatnonzero(self._has_entry)}

    def best_action(self, state: int) -> Optional[Action]:
        """First action achieving the maximum value, None when unvisited."""
        if not self.has_entry(state):
            return None
        return ACTIONS[int(np.argmax(self._values[state]))]

    def greedy_policy(self) -> Dict[int, Action]:
        """Best action per visited state."""
        return {state: self.best_action(state) for state in self.snapshot()}

    def state_values(self) -> Dict[int, float]:
        """Maximum action value per visited state."""
        return {
            int(state): float(np.max(self._values[state]))
            for state in np.flatnonzero(self._has_entry)
        }

    def clear(self) -> None:
        self._values.fill(0.0)
        self._has_entry.fill(False)

    def array(self) -> np.ndarray:
        """Copy of the full value array."""
        return self._values.copy()

    def to_dict(self) -> Dict[str, Dict[Action, float]]:
        """Serializable form keyed by the decimal state string."""
        return {str(state): values for state, values in self.snapshot().items()}

    @classmethod
    def from_dict(cls, data: Dict, num_states: int) -> "QTable":
        """Rebuild a table from `to_dict` output. Raises ValueError on bad data."""
        table = cls(num_states)
        for key, values in data.items():
            state = int(key)
            if not 0 <= state < num_states:
                raise ValueError(f"State {state} is outside a {num_states}-state table")
            table.ensure_entry(state)
            for action, value in values.items():
                if action not in ACTION_TO_INT:
                    raise ValueError(f"Unknown action {action!r} for state {state}")
                table._values[state, ACTION_TO_INT[action]] = float(value)
        return table

    def __eq__(self, other) -> bool:
        if not isinstance(other, QTable):
            return NotImplemented
        return (self.num_states == other.num_states
                and np.array_equal(self._has_entry, other._has_entry)
                and np.array_equal(self._values, other._values))


class ActionCounts:
    """Visitation counts per (state, action) plus a global step total, for UCB."""

    def __init__(self, num_states: int, num_actions: int = NUM_ACTIONS):
        self._counts = np.zeros((num_states, num_actions), dtype=np.int64)
        self.total_steps = 0

    def count(self, state: int, action: Action) -> int:
        return int(self._counts[state, ACTION_TO_INT[action]])

    def increment(self, state: int, action: Action) -> None:
        self._counts[state, ACTION_TO_INT[action]] += 1
        self.total_steps += 1

    def clear(self) -> None:
        self._counts.fill(0)
        self.total_steps = 0
