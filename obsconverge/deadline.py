"""
Cooperative cancellation for store calls.

A Deadline is created once per tick and passed through every store call.
Calls check it before going to the wire; an expired deadline surfaces as a
TransientError so the tick fails cleanly and is retried later.
"""

import time
from typing import Callable, Optional

from obsconverge.errors import TransientError


class Deadline:
    """
    Absolute point in time after which no new store call may start.

    Args:
        expires_at: Monotonic timestamp, or None for no deadline
        clock: Monotonic clock, overridable in tests
    """

    def __init__(self, expires_at: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.expires_at = expires_at
        self._clock = clock

    @classmethod
    def after(cls, seconds: Optional[float], clock: Callable[[], float] = time.monotonic) -> "Deadline":
        """Deadline `seconds` from now; None means unbounded."""
        if seconds is None:
            return cls(None, clock)
        return cls(clock() + seconds, clock)

    def remaining(self) -> Optional[float]:
        """Seconds left, clamped at zero; None when unbounded."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, operation: str = "store call") -> None:
        """
        Raise if the deadline has passed.

        Raises:
            TransientError: If the deadline expired before `operation` started
        """
        if self.expired:
            raise TransientError(f"Deadline exceeded before {operation}")

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining()})"
