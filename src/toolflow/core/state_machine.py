"""
Per-step lifecycle state machine.

    PENDING -> EXECUTING -> CHECKING -> PASSED
                   ^            |------> FAILED_TERMINAL
                   |            v
                   +-------- RETRY

Each step run by the engine owns one StepExecution. It validates every
transition against the table below, counts attempts and keeps the history of
visited states so a finished step can be inspected afterwards.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..observability.logging import get_logger
from .errors import InvalidTransitionError

logger = get_logger(__name__)


class StepState(Enum):
    """Lifecycle states of a step."""

    PENDING = "pending"
    EXECUTING = "executing"
    CHECKING = "checking"
    PASSED = "passed"
    RETRY = "retry"
    FAILED_TERMINAL = "failed_terminal"

    @property
    def is_final(self) -> bool:
        return self in (StepState.PASSED, StepState.FAILED_TERMINAL)


TRANSITIONS: dict[StepState, frozenset[StepState]] = {
    StepState.PENDING: frozenset({StepState.EXECUTING}),
    StepState.EXECUTING: frozenset({StepState.CHECKING}),
    StepState.CHECKING: frozenset({StepState.PASSED, StepState.RETRY, StepState.FAILED_TERMINAL}),
    StepState.RETRY: frozenset({StepState.EXECUTING}),
    StepState.PASSED: frozenset(),
    StepState.FAILED_TERMINAL: frozenset(),
}


@dataclass
class StateTransition:
    """One recorded state change."""

    from_state: StepState
    to_state: StepState
    round: int
    timestamp: float = field(default_factory=time.time)


class StepExecution:
    """Tracks one step through its attempts."""

    def __init__(self, step_index: int, step_name: str, max_retries: int):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.step_index = step_index
        self.step_name = step_name
        self.max_retries = max_retries
        self.state = StepState.PENDING
        self.attempts = 0
        self.transitions: list[StateTransition] = []
        self.failure_reason: str | None = None

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @property
    def round(self) -> int:
        """0-based round of the current (or last) attempt."""
        return max(self.attempts - 1, 0)

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts

    @property
    def is_finished(self) -> bool:
        return self.state.is_final

    @property
    def passed(self) -> bool:
        return self.state == StepState.PASSED

    @property
    def state_history(self) -> list[StepState]:
        history = [StepState.PENDING]
        history.extend(t.to_state for t in self.transitions)
        return history

    def transition_to(self, new_state: StepState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state.value, new_state.value)

        logger.debug(
            f"Step '{self.step_name}' {self.state.value} -> {new_state.value}",
            step_index=self.step_index,
            round=self.round,
        )
        self.transitions.append(StateTransition(self.state, new_state, self.round))
        self.state = new_state

    def begin_attempt(self) -> int:
        """Enter EXECUTING and return the round of the new attempt."""
        if self.state not in (StepState.PENDING, StepState.RETRY):
            raise InvalidTransitionError(self.state.value, StepState.EXECUTING.value)
        if not self.can_retry:
            raise InvalidTransitionError(self.state.value, StepState.EXECUTING.value)
        self.transition_to(StepState.EXECUTING)
        self.attempts += 1
        return self.round

    def begin_checking(self) -> None:
        self.transition_to(StepState.CHECKING)

    def resolve(self, passed: bool, failure_reason: str | None = None) -> StepState:
        """Leave CHECKING for PASSED, RETRY or FAILED_TERMINAL."""
        if passed:
            self.failure_reason = None
            self.transition_to(StepState.PASSED)
        elif self.can_retry:
            self.failure_reason = failure_reason
            self.transition_to(StepState.RETRY)
        else:
            self.failure_reason = failure_reason
            self.transition_to(StepState.FAILED_TERMINAL)
        return self.state

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_index": self.step_index,
            "step_name": self.step_name,
            "state": self.state.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "failure_reason": self.failure_reason,
            "state_history": [s.value for s in self.state_history],
        }
