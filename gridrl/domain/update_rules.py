"""Temporal-difference update rules for the Q-table."""

import logging
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from .types import Action, Algorithm, RLConfig
from .value_store import QTable

logger = logging.getLogger(__name__)


def expected_sarsa_probabilities(store: QTable, state: int, valid_actions: Sequence[Action],
                                 epsilon: float) -> np.ndarray:
    """
    Epsilon-greedy action probabilities over `valid_actions`.

    The greedy action is the first maximum in enumeration order.
    """
    n = len(valid_actions)
    if n == 0:
        return np.zeros(0)
    values = np.array([store.get(state, action) for action in valid_actions])
    probabilities = np.full(n, epsilon / n)
    probabilities[int(np.argmax(values))] += 1.0 - epsilon
    return probabilities


def _apply(store: QTable, state: int, action: Action, target: float, config: RLConfig) -> float:
    current_q = store.get(state, action)
    new_q = current_q + config.learning_rate * (target - current_q)
    store.set(state, action, new_q)
    return new_q


def q_learning_update(store: QTable, state: int, action: Action, reward: float, next_state: int,
                      valid_next_actions: Sequence[Action], config: RLConfig,
                      next_action: Optional[Action] = None) -> float:
    """Off-policy update towards the best next value."""
    if valid_next_actions:
        next_q_max = max(store.get(next_state, a) for a in valid_next_actions)
    else:
        next_q_max = 0.0
    target = reward + config.discount_factor * next_q_max
    return _apply(store, state, action, target, config)


def sarsa_update(store: QTable, state: int, action: Action, reward: float, next_state: int,
                 valid_next_actions: Sequence[Action], config: RLConfig,
                 next_action: Optional[Action] = None) -> float:
    """On-policy update towards the value of the action actually taken next."""
    if not valid_next_actions:
        next_q = 0.0
    elif next_action is None:
        # Callers must pick the next action first; use the greedy one if they didn't
        logger.warning("SARSA update for state %s without a next action, using greedy", state)
        next_q = max(store.get(next_state, a) for a in valid_next_actions)
    else:
        next_q = store.get(next_state, next_action)
    target = reward + config.discount_factor * next_q
    return _apply(store, state, action, target, config)


def expected_sarsa_update(store: QTable, state: int, action: Action, reward: float, next_state: int,
                          valid_next_actions: Sequence[Action], config: RLConfig,
                          next_action: Optional[Action] = None) -> float:
    """Update towards the expected next value under the epsilon-greedy policy."""
    expected_next_q = 0.0
    if valid_next_actions:
        probabilities = expected_sarsa_probabilities(store, next_state, valid_next_actions, config.epsilon)
        next_values = np.array([store.get(next_state, a) for a in valid_next_actions])
        expected_next_q = float(np.dot(probabilities, next_values))
    target = reward + config.discount_factor * expected_next_q
    return _apply(store, state, action, target, config)


UpdateRule = Callable[..., float]

UPDATE_RULES: Dict[Algorithm, UpdateRule] = {
    Algorithm.Q_LEARNING: q_learning_update,
    Algorithm.SARSA: sarsa_update,
    Algorithm.EXPECTED_SARSA: expected_sarsa_update,
}


def update_value(store: QTable, state: int, action: Action, reward: float, next_state: int,
                 valid_next_actions: List[Action], config: RLConfig,
                 next_action: Optional[Action] = None) -> float:
    """
    Revise Q(state, action) in place from one observed transition.

    Args:
        store: Q-table to mutate
        state: State the action was taken in
        action: Action taken
        reward: Reward observed
        next_state: Resulting state
        valid_next_actions: Legal actions at next_state, empty when terminal
        config: Supplies algorithm, learning rate, discount and epsilon
        next_action: Action the policy takes next (SARSA only)

    Returns:
        The new Q(state, action)
    """
    store.ensure_entry(state)
    store.ensure_entry(next_state)
    rule = UPDATE_RULES[config.algorithm]
    return rule(store, state, action, reward, next_state, valid_next_actions, config, next_action)
