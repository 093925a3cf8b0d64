"""
Retry policy calculation for the completion waiter.

Design Pattern: Strategy Pattern
RetryPolicy encapsulates the polling schedule, so the waiter never needs to
know how the schedule was derived from the configured timeouts.

Design Rationale:
- Safe default: 30 minutes of polling every 5 seconds
- Fixed spacing only: backoff_rate is always 1.0
- Fail fast: a timeout that cannot be split evenly is a configuration error,
  never silently rounded
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, cast

__all__ = [
    "DEFAULT_QUERY_INTERVAL",
    "DEFAULT_TOTAL_TIMEOUT",
    "ConfigurationError",
    "RetryPolicy",
    "as_timedelta",
    "calculate_retry_policy",
    "format_seconds",
]

DEFAULT_TOTAL_TIMEOUT = timedelta(minutes=30)
DEFAULT_QUERY_INTERVAL = timedelta(seconds=5)


class ConfigurationError(ValueError):
    """
    Provider configuration is invalid.

    Raised synchronously while configuring, before any step runs.
    Never retried.
    """

    pass


@dataclass(frozen=True)
class RetryPolicy:
    """
    Polling schedule for the completion check.

    Examples:
        # Defaults: every 5 seconds for 30 minutes
        policy = RetryPolicy.DEFAULT

        # Derived from a timeout budget
        policy = calculate_retry_policy(timedelta(minutes=5), timedelta(seconds=10))
        assert policy.max_attempts == 30
    """

    interval: timedelta
    """Spacing between two completion checks. Always positive."""

    max_attempts: int
    """Number of completion checks before the waiter times out.

    For example, max_attempts = 3 means:
    - Attempt 1: immediately after initiation
    - Attempt 2: after interval
    - Attempt 3: after 2 * interval
    """

    backoff_rate: float = 1.0
    """Multiplier applied to interval after each attempt.

    Reserved: only 1.0 (fixed spacing) is ever produced.
    """

    if TYPE_CHECKING:
        DEFAULT: RetryPolicy
    else:
        DEFAULT = cast("RetryPolicy", None)

    def __post_init__(self) -> None:
        if self.interval <= timedelta(0):
            raise ConfigurationError(
                f"interval must be positive, got {format_seconds(self.interval)}"
            )
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be positive, got {self.max_attempts}")

    @property
    def total_timeout(self) -> timedelta:
        """Wall-clock budget covered by this schedule."""
        if self.backoff_rate == 1.0:
            return self.interval * self.max_attempts

        # Geometric series: interval * (1 + r + r^2 + ... + r^(n-1))
        factor = (self.backoff_rate**self.max_attempts - 1) / (self.backoff_rate - 1)
        return self.interval * factor

    def delay_for_attempt(self, attempt: int) -> timedelta | None:
        """
        Calculate the delay before the attempt following `attempt`.

        Args:
            attempt: The attempt that just finished (1-indexed)

        Returns:
            Delay before the next attempt, or None if the schedule is exhausted.

        Example:
            policy = calculate_retry_policy(timedelta(seconds=10), timedelta(seconds=5))
            policy.delay_for_attempt(1)  # timedelta(seconds=5)
            policy.delay_for_attempt(2)  # None
        """
        if attempt >= self.max_attempts:
            return None

        return self.interval * (self.backoff_rate ** (attempt - 1))

    def __repr__(self) -> str:
        """Readable representation for debugging."""
        return (
            f"RetryPolicy(interval={format_seconds(self.interval)}, "
            f"max_attempts={self.max_attempts}, "
            f"backoff_rate={self.backoff_rate})"
        )


def as_timedelta(value: timedelta | float | int | None, name: str) -> timedelta | None:
    """Normalize a duration option; plain numbers are seconds."""
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be a timedelta or a number of seconds")
    return timedelta(seconds=value)


def format_seconds(value: timedelta) -> str:
    """Render a duration as seconds, e.g. '100s' or '2.5s'."""
    seconds = value.total_seconds()
    if seconds.is_integer():
        return f"{int(seconds)}s"
    return f"{seconds:g}s"


def calculate_retry_policy(
    total_timeout: timedelta | float | None = None,
    query_interval: timedelta | float | None = None,
) -> RetryPolicy:
    """
    Turn a timeout budget and a polling interval into a retry schedule.

    Args:
        total_timeout: Total time to keep polling (default 30 minutes)
        query_interval: Time between two checks (default 5 seconds)

    Returns:
        RetryPolicy with max_attempts = total_timeout / query_interval

    Raises:
        ConfigurationError: If either duration is not positive, or the
            timeout is not an exact multiple of the interval

    Example:
        policy = calculate_retry_policy()
        assert policy.max_attempts == 360
    """
    total = as_timedelta(total_timeout, "total_timeout")
    interval = as_timedelta(query_interval, "query_interval")
    if total is None:
        total = DEFAULT_TOTAL_TIMEOUT
    if interval is None:
        interval = DEFAULT_QUERY_INTERVAL

    if total <= timedelta(0):
        raise ConfigurationError(f"total_timeout must be positive, got {format_seconds(total)}")
    if interval <= timedelta(0):
        raise ConfigurationError(
            f"query_interval must be positive, got {format_seconds(interval)}"
        )

    # timedelta arithmetic is exact (integer microseconds)
    if total % interval != timedelta(0):
        raise ConfigurationError(
            f"Cannot determine retry count since total_timeout={format_seconds(total)} "
            f"is not integrally dividable by query_interval={format_seconds(interval)}"
        )

    return RetryPolicy(interval=interval, max_attempts=total // interval, backoff_rate=1.0)


RetryPolicy.DEFAULT = calculate_retry_policy()
