"""
Session Transition Rules
========================

Allowed StreamSession state transitions and retry budgets.

Transition Table:
    IDLE       → LAUNCHING, TERMINATED
    LAUNCHING  → STREAMING, TERMINATED
    STREAMING  → DEGRADED, TERMINATED
    DEGRADED   → STREAMING, TERMINATED
    TERMINATED → (absorbing)

Retry Budgets:
    Every recovery path has an attempt ceiling. Delays between attempts
    grow exponentially from an initial value and are capped.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterator

from pagecast.models.errors import InvalidTransitionError
from pagecast.models.state import SessionState


logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.LAUNCHING, SessionState.TERMINATED}),
    SessionState.LAUNCHING: frozenset({SessionState.STREAMING, SessionState.TERMINATED}),
    SessionState.STREAMING: frozenset({SessionState.DEGRADED, SessionState.TERMINATED}),
    SessionState.DEGRADED: frozenset({SessionState.STREAMING, SessionState.TERMINATED}),
    SessionState.TERMINATED: frozenset(),
}


def check_transition(current: SessionState, target: SessionState) -> None:
    """
    Validate a session state transition.

    Raises:
        InvalidTransitionError: ``target`` is not reachable from ``current``
    """
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Invalid session transition: {current.value} → {target.value}"
        )


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry budget with exponential backoff.

    Attributes:
        attempts: Total attempts allowed (including the first)
        initial_backoff: Delay before the second attempt, in seconds
        multiplier: Growth factor applied to each following delay
        max_backoff: Upper bound on any single delay
    """

    attempts: int = 3
    initial_backoff: float = 1.0
    multiplier: float = 2.0
    max_backoff: float = 30.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")

    def backoff(self, attempt: int) -> float:
        """
        Delay for the ``attempt``-th wait (1-based), starting at ``initial_backoff``.
        """
        delay = self.initial_backoff * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_backoff)

    def delays(self) -> Iterator[float]:
        """Delays between consecutive attempts (``attempts - 1`` values)."""
        for attempt in range(1, self.attempts):
            yield self.backoff(attempt)
