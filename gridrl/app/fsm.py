"""Finite State Machine for training session states."""

from enum import Enum, auto
from typing import Callable, List


class TrainingState(Enum):
    """States of a multi-episode training session."""
    IDLE = auto()
    RUNNING = auto()
    PAUSED = auto()
    STOPPED = auto()
    COMPLETE = auto()


class TrainingStateMachine:
    """State machine for managing a training session."""

    def __init__(self):
        self.current_state = TrainingState.IDLE
        self._listeners: List[Callable[[TrainingState, TrainingState], None]] = []

        # Reset back to IDLE is allowed from every state
        self._valid_transitions = {
            TrainingState.IDLE: {TrainingState.RUNNING, TrainingState.IDLE},
            TrainingState.RUNNING: {TrainingState.PAUSED, TrainingState.STOPPED,
                                    TrainingState.COMPLETE, TrainingState.IDLE},
            TrainingState.PAUSED: {TrainingState.RUNNING, TrainingState.STOPPED, TrainingState.IDLE},
            TrainingState.STOPPED: {TrainingState.RUNNING, TrainingState.IDLE},
            TrainingState.COMPLETE: {TrainingState.RUNNING, TrainingState.IDLE},
        }

    def add_listener(self, callback: Callable[[TrainingState, TrainingState], None]):
        """Register a callback receiving (from_state, to_state) on every transition."""
        self._listeners.append(callback)

    def can_transition(self, to_state: TrainingState) -> bool:
        """Check if transition to target state is valid."""
        return to_state in self._valid_transitions.get(self.current_state, set())

    def transition(self, to_state: TrainingState) -> bool:
        """Attempt to transition to target state, notifying listeners."""
        if not self.can_transition(to_state):
            return False

        from_state = self.current_state
        self.current_state = to_state

        for listener in self._listeners:
            listener(from_state, to_state)

        return True

    # Convenience methods for common transitions

    def start(self) -> bool:
        return self.transition(TrainingState.RUNNING)

    def pause(self) -> bool:
        return self.transition(TrainingState.PAUSED)

    def resume(self) -> bool:
        """Resume running from paused state."""
        if self.current_state == TrainingState.PAUSED:
            return self.transition(TrainingState.RUNNING)
        return False

    def stop(self) -> bool:
        return self.transition(TrainingState.STOPPED)

    def complete(self) -> bool:
        return self.transition(TrainingState.COMPLETE)

    def reset_to_idle(self) -> bool:
        return self.transition(TrainingState.IDLE)

    # State checking methods

    def is_running(self) -> bool:
        return self.current_state == TrainingState.RUNNING

    def is_paused(self) -> bool:
        return self.current_state == TrainingState.PAUSED

    def is_active(self) -> bool:
        """Check if a session is in progress, running or paused."""
        return self.current_state in {TrainingState.RUNNING, TrainingState.PAUSED}

    def get_state_description(self) -> str:
        """Get human-readable state description."""
        descriptions = {
            TrainingState.IDLE: "Ready - start training to begin learning",
            TrainingState.RUNNING: "Training agent",
            TrainingState.PAUSED: "Training paused",
            TrainingState.STOPPED: "Training stopped",
            TrainingState.COMPLETE: "Training complete",
        }
        return descriptions.get(self.current_state, "Unknown state")
