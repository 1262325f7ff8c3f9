"""Grid-world reinforcement learning - tabular agents learning to reach a goal.

This package implements Q-learning, SARSA and Expected SARSA agents with
epsilon-greedy, UCB and Boltzmann exploration, trained episode by episode
on a square grid with walls, plus a Qt controller and a command line runner.
"""

__version__ = "1.0.0"
__author__ = "gridrl contributors"
