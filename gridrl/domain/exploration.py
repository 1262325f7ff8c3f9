"""Action selection strategies."""

import logging
import math
from typing import Callable, Dict, Optional, Sequence

import numpy as np

from .types import Action, ExplorationStrategy, RLConfig
from .update_rules import expected_sarsa_probabilities
from .value_store import ActionCounts, QTable
from ..utils.rng import SeededRNG, get_default_rng

logger = logging.getLogger(__name__)

FALLBACK_ACTION: Action = "up"


def greedy_action(store: QTable, state: int, valid_actions: Sequence[Action]) -> Action:
    """Highest valued valid action; ties go to the first in enumeration order."""
    best_action = valid_actions[0]
    best_value = store.get(state, best_action)
    for action in valid_actions[1:]:
        value = store.get(state, action)
        if value > best_value:
            best_action, best_value = action, value
    return best_action


def epsilon_greedy(store: QTable, state: int, valid_actions: Sequence[Action], config: RLConfig,
                   counts: Optional[ActionCounts], rng: SeededRNG) -> Action:
    """Random action with probability epsilon, otherwise greedy."""
    if rng.random() < config.epsilon:
        return rng.choice(valid_actions)
    return greedy_action(store, state, valid_actions)


def ucb(store: QTable, state: int, valid_actions: Sequence[Action], config: RLConfig,
        counts: Optional[ActionCounts], rng: SeededRNG) -> Action:
    """Upper confidence bound: Q + c * sqrt(ln(total + 1) / count)."""
    total = counts.total_steps if counts is not None else 0
    best_action: Optional[Action] = None
    best_score = -math.inf
    for action in valid_actions:
        count = counts.count(state, action) if counts is not None else 0
        # Unvisited actions are treated as visited once
        count = count or 1
        score = store.get(state, action) + config.ucb_constant * math.sqrt(math.log(total + 1) / count)
        if best_action is None or score > best_score:
            best_action, best_score = action, score
    return best_action


def boltzmann(store: QTable, state: int, valid_actions: Sequence[Action], config: RLConfig,
              counts: Optional[ActionCounts], rng: SeededRNG) -> Action:
    """Softmax over Q / temperature."""
    values = np.array([store.get(state, action) for action in valid_actions]) / config.temperature
    weights = np.exp(values - np.max(values))
    return rng.weighted_choice(valid_actions, weights / weights.sum())


SelectionRule = Callable[[QTable, int, Sequence[Action], RLConfig, Optional[ActionCounts], SeededRNG], Action]

SELECTION_RULES: Dict[ExplorationStrategy, SelectionRule] = {
    ExplorationStrategy.EPSILON_GREEDY: epsilon_greedy,
    ExplorationStrategy.UCB: ucb,
    ExplorationStrategy.BOLTZMANN: boltzmann,
}


def select_action(store: QTable, state: int, valid_actions: Sequence[Action], config: RLConfig,
                  counts: Optional[ActionCounts] = None, rng: Optional[SeededRNG] = None) -> Action:
    """
    Choose an action for a state under the configured exploration strategy.

    Args:
        store: Current value estimates
        state: State the agent is in
        valid_actions: Legal actions in enumeration order
        config: Supplies the strategy and its parameters
        counts: Visitation counts, used by UCB
        rng: Random source, the module default when omitted

    Returns:
        One of `valid_actions`, or "up" when there are none
    """
    if not valid_actions or not store.is_valid_state(state):
        logger.warning("Malformed action selection input: state=%r valid_actions=%r", state, valid_actions)
        return valid_actions[0] if valid_actions else FALLBACK_ACTION

    rng = rng or get_default_rng()
    if not store.has_entry(state):
        return rng.choice(valid_actions)

    rule = SELECTION_RULES[config.exploration_strategy]
    return rule(store, state, valid_actions, config, counts, rng)


def action_probabilities(store: QTable, state: int, valid_actions: Sequence[Action],
                         epsilon: float) -> Dict[Action, float]:
    """Epsilon-greedy distribution over valid actions, as used by Expected SARSA."""
    probabilities = expected_sarsa_probabilities(store, state, valid_actions, epsilon)
    return {action: float(p) for action, p in zip(valid_actions, probabilities)}
