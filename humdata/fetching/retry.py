"""
Retry policy as an explicit state machine.

    Attempting(n) --success--------------------------> Succeeded
    Attempting(n) --transient, n < max, within budget-> Attempting(n+1)
    Attempting(n) --permanent------------------------> Failed (permanent)
    Attempting(n) --transient, n == max or budget----> Failed (exhausted)

RetrySequence only decides; it never sleeps or performs I/O, so the
policy can be tested without an event loop. The executor drives it.
"""

import random
from dataclasses import dataclass, field
from enum import Enum

from humdata.errors import OrchestratorError


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TerminalReason(str, Enum):
    PERMANENT = "permanent"
    EXHAUSTED = "exhausted"
    BUDGET = "budget"


@dataclass
class RetryPolicy:
    """
    Exponential backoff configuration.

    Formula: min(max_delay, base_delay * 2^attempt) * (1 +/- jitter_factor)

    Keep jitter_factor below 1/3 to guarantee each delay is strictly
    larger than the previous one until max_delay is reached.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    jitter_factor: float = 0.1
    budget_seconds: float = 30.0

    def calculate_backoff(self, attempt: int) -> float:
        """
        Calculate backoff duration for a given retry attempt.

        Args:
            attempt: The retry attempt number (0-indexed)

        Returns:
            Backoff duration in seconds with jitter applied
        """
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        jitter = delay * self.jitter_factor * random.uniform(-1.0, 1.0)
        return max(0.0, delay + jitter)

    def start(self) -> "RetrySequence":
        return RetrySequence(self)


@dataclass
class RetryDecision:
    """What to do after a failed attempt."""

    retry: bool
    delay: float = 0.0
    reason: TerminalReason | None = None


@dataclass
class RetrySequence:
    """Progress of one logical fetch through the retry state machine."""

    policy: RetryPolicy
    state: RetryState = RetryState.ATTEMPTING
    attempts: int = 0
    total_delay: float = 0.0
    delays: list[float] = field(default_factory=list)
    last_error: OrchestratorError | None = None
    reason: TerminalReason | None = None

    @property
    def attempt(self) -> int:
        """Index of the attempt currently in progress (0-based)."""
        return self.attempts

    @property
    def finished(self) -> bool:
        return self.state != RetryState.ATTEMPTING

    def on_success(self) -> None:
        self._require_attempting()
        self.attempts += 1
        self.state = RetryState.SUCCEEDED

    def on_failure(self, error: OrchestratorError) -> RetryDecision:
        """Record a failed attempt and decide whether to try again."""
        self._require_attempting()
        self.attempts += 1
        self.last_error = error

        if not error.retryable:
            return self._fail(TerminalReason.PERMANENT)

        retry_index = self.attempts - 1
        if retry_index >= self.policy.max_retries:
            return self._fail(TerminalReason.EXHAUSTED)

        delay = self.policy.calculate_backoff(retry_index)
        if self.total_delay + delay > self.policy.budget_seconds:
            return self._fail(TerminalReason.BUDGET)

        self.total_delay += delay
        self.delays.append(delay)
        return RetryDecision(retry=True, delay=delay)

    def _fail(self, reason: TerminalReason) -> RetryDecision:
        self.state = RetryState.FAILED
        self.reason = reason
        return RetryDecision(retry=False, reason=reason)

    def _require_attempting(self) -> None:
        if self.finished:
            raise RuntimeError(f"Retry sequence already {self.state.value}")
