"""
Session State Management for Socratic Council.

This module defines the operational states a council session can be in,
along with the state transition rules.
"""

from enum import Enum
from typing import Dict, Set


class SessionStatus(str, Enum):
    """
    Operational states of a council session.

    Stopped and completed are terminal: a stopped session cannot resume.
    """

    IDLE = "idle"            # Created, not yet started
    RUNNING = "running"      # Turn loop active
    PAUSED = "paused"        # Loop blocked, in-flight requests cancelled
    STOPPED = "stopped"      # Terminated by the user
    COMPLETED = "completed"  # Turn limit reached or nothing left to do


# Define valid state transitions
VALID_STATE_TRANSITIONS: Dict[SessionStatus, Set[SessionStatus]] = {
    SessionStatus.IDLE: {SessionStatus.RUNNING, SessionStatus.STOPPED},
    SessionStatus.RUNNING: {SessionStatus.PAUSED, SessionStatus.STOPPED, SessionStatus.COMPLETED},
    SessionStatus.PAUSED: {SessionStatus.RUNNING, SessionStatus.STOPPED},
    SessionStatus.STOPPED: set(),
    SessionStatus.COMPLETED: set(),
}

TERMINAL_STATES = frozenset({SessionStatus.STOPPED, SessionStatus.COMPLETED})


def validate_state_transition(current_state: SessionStatus, new_state: SessionStatus) -> bool:
    """
    Validate whether a state transition is allowed.

    Args:
        current_state: The current session state
        new_state: The proposed new state

    Returns:
        True if the transition is valid, False otherwise
    """
    if current_state == new_state:
        return True  # Same state is always valid

    return new_state in VALID_STATE_TRANSITIONS.get(current_state, set())
