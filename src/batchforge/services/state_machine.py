"""Execution state machine logic for managing valid state transitions."""
from typing import Set, Dict
from batchforge.core.enums import ExecutionStatus
from batchforge.core.exceptions import InvalidStateTransitionError


class ExecutionStateMachine:
    """
    Defines valid state transitions for executions.

    State Diagram:
        PENDING → PROCESSING → COMPLETED
                      ↓
                    FAILED

    Terminal states are absorbing: no transition leaves them.
    """

    TRANSITIONS: Dict[ExecutionStatus, Set[ExecutionStatus]] = {
        ExecutionStatus.PENDING: {ExecutionStatus.PROCESSING},
        ExecutionStatus.PROCESSING: {
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
        },
        ExecutionStatus.COMPLETED: set(),  # Terminal state
        ExecutionStatus.FAILED: set(),  # Terminal state
    }

    TERMINAL_STATES = {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}

    @classmethod
    def can_transition(cls, from_state: ExecutionStatus, to_state: ExecutionStatus) -> bool:
        """
        Check if transition from from_state to to_state is valid.

        Args:
            from_state: Current execution status
            to_state: Desired execution status

        Returns:
            bool: True if transition is valid, False otherwise
        """
        return to_state in cls.TRANSITIONS.get(from_state, set())

    @classmethod
    def validate_transition(cls, from_state: ExecutionStatus, to_state: ExecutionStatus) -> None:
        """
        Validate state transition and raise exception if invalid.

        Raises:
            InvalidStateTransitionError: If transition is not valid
        """
        if not cls.can_transition(from_state, to_state):
            raise InvalidStateTransitionError(
                f"Invalid state transition: {from_state} -> {to_state}"
            )

    @classmethod
    def is_terminal(cls, state: ExecutionStatus) -> bool:
        """
        Check if state is terminal (no further transitions possible).

        Args:
            state: Execution status to check

        Returns:
            bool: True if terminal state, False otherwise
        """
        return state in cls.TERMINAL_STATES
