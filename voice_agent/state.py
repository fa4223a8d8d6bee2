"""
Agent lifecycle states.

One session-wide value at any time; the orchestrator is the only writer.
"""
from enum import Enum
from typing import Dict, FrozenSet


class AgentState(str, Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class InvalidTransitionError(ValueError):
    """Raised when a state change is not in ALLOWED_TRANSITIONS."""

    def __init__(self, from_state: AgentState, to_state: AgentState):
        super().__init__(f"invalid agent state transition: {from_state.value} -> {to_state.value}")
        self.from_state = from_state
        self.to_state = to_state


# DISCONNECTED is reachable from every state and handled separately.
ALLOWED_TRANSITIONS: Dict[AgentState, FrozenSet[AgentState]] = {
    AgentState.INITIALIZING: frozenset({AgentState.READY, AgentState.ERROR}),
    AgentState.READY: frozenset({AgentState.LISTENING}),
    AgentState.LISTENING: frozenset({AgentState.PROCESSING}),
    AgentState.PROCESSING: frozenset({AgentState.SPEAKING, AgentState.LISTENING, AgentState.ERROR}),
    AgentState.SPEAKING: frozenset({AgentState.LISTENING, AgentState.ERROR}),
    AgentState.ERROR: frozenset({AgentState.LISTENING}),
    AgentState.DISCONNECTED: frozenset(),
}


def can_transition(from_state: AgentState, to_state: AgentState) -> bool:
    if to_state == AgentState.DISCONNECTED or from_state == to_state:
        return True
    return to_state in ALLOWED_TRANSITIONS[from_state]


class StateMachine:
    """Holds the current AgentState and enforces the transition table."""

    def __init__(self, initial: AgentState = AgentState.INITIALIZING):
        self._state = initial

    @property
    def state(self) -> AgentState:
        return self._state

    def transition_to(self, new_state: AgentState) -> AgentState:
        """
        Move to new_state and return the previous state.

        Re-entering the current state is a no-op.
        """
        old_state = self._state
        if not can_transition(old_state, new_state):
            raise InvalidTransitionError(old_state, new_state)
        self._state = new_state
        return old_state

    def is_terminal(self) -> bool:
        return self._state == AgentState.DISCONNECTED
