"""
Retry policy for queued submissions.

An item's retry state is derived from its persisted retry_count, so the
state machine below holds no data of its own:

    PENDING --start--> ATTEMPTING --succeed--> DONE
                           |
                           +--fail--> RETRYING --start--> ATTEMPTING
                           |
                           +--fail (bound reached)--> DEAD --reset--> PENDING

Attempt n (1-based retry count) waits base_delay * 2^(n-1) before it is
sent: 2s, 4s, 8s with the defaults.
"""

from enum import Enum
from typing import Optional


class RetryState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    DONE = "done"
    RETRYING = "retrying"
    DEAD = "dead"


class RetryEvent(str, Enum):
    START = "start"
    SUCCEED = "succeed"
    FAIL = "fail"
    RESET = "reset"


class InvalidTransitionError(Exception):
    """Event not allowed in the current retry state."""

    def __init__(self, state: RetryState, event: RetryEvent):
        super().__init__(f"Cannot apply '{event.value}' in state '{state.value}'")
        self.state = state
        self.event = event


EXHAUSTED_MESSAGE = "max retries exceeded"


class RetryPolicy:
    """Bounded exponential backoff."""

    def __init__(self, max_attempts: int = 3, base_delay_ms: int = 2000):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay_ms < 0:
            raise ValueError("base_delay_ms cannot be negative")
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms

    def is_exhausted(self, retry_count: int) -> bool:
        return retry_count >= self.max_attempts

    def delay_for(self, retry_count: int) -> float:
        """Seconds to wait before the attempt following retry_count failures."""
        if retry_count <= 0:
            return 0.0
        return self.base_delay_ms * (2 ** (retry_count - 1)) / 1000

    def state_for(self, retry_count: int) -> RetryState:
        """Resting state of an item that has failed retry_count times."""
        if retry_count <= 0:
            return RetryState.PENDING
        if self.is_exhausted(retry_count):
            return RetryState.DEAD
        return RetryState.RETRYING

    def transition(
        self,
        state: RetryState,
        event: RetryEvent,
        retry_count: Optional[int] = None,
    ) -> RetryState:
        """
        Apply event to state.

        For FAIL, retry_count is the count after the failure was recorded
        and decides between RETRYING and DEAD.
        """
        if event == RetryEvent.START and state in (RetryState.PENDING, RetryState.RETRYING):
            return RetryState.ATTEMPTING

        if state == RetryState.ATTEMPTING:
            if event == RetryEvent.SUCCEED:
                return RetryState.DONE
            if event == RetryEvent.FAIL:
                if retry_count is None:
                    raise ValueError("retry_count is required for a failure")
                if self.is_exhausted(retry_count):
                    return RetryState.DEAD
                return RetryState.RETRYING

        if event == RetryEvent.RESET and state in (RetryState.DEAD, RetryState.RETRYING):
            return RetryState.PENDING

        raise InvalidTransitionError(state, event)
