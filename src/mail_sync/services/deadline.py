"""Execution-window deadline."""

from __future__ import annotations

import time
from collections.abc import Callable


class Deadline:
    """Wall-clock budget for one invocation, measured on a monotonic clock.

    Example:
        deadline = Deadline(budget_seconds=270, safety_margin_seconds=15)
        while not deadline.should_yield():
            ...
    """

    def __init__(
        self,
        budget_seconds: float,
        safety_margin_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize deadline.

        Args:
            budget_seconds: Total budget from now.
            safety_margin_seconds: Remaining time below which work should yield.
            clock: Monotonic clock.
        """
        self._clock = clock
        self.started_at = clock()
        self.budget_seconds = budget_seconds
        self.safety_margin_seconds = safety_margin_seconds

    @property
    def elapsed(self) -> float:
        """Seconds since the deadline was created."""
        return self._clock() - self.started_at

    def remaining(self) -> float:
        """Seconds left in the budget, never negative."""
        return max(0.0, self.budget_seconds - self.elapsed)

    def expired(self) -> bool:
        """Check if the budget is used up."""
        return self.remaining() <= 0

    def should_yield(self) -> bool:
        """Check if the remaining budget is below the safety margin."""
        return self.remaining() < self.safety_margin_seconds

    def allows(self, seconds: float) -> bool:
        """Check if waiting this long still leaves the safety margin."""
        return self.remaining() - seconds >= self.safety_margin_seconds
