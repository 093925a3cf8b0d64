"""
Completion check outcomes and attempt records.

**Design Pattern**: Tagged union consumed by a single transition function.

Every completion check ends in exactly one of three outcomes. The waiter
treats NotYetComplete and Errored the same way for retry purposes, and that
rule lives only in WaiterStateMachine.advance().

Example:
    ```python
    match outcome:
        case IsComplete(data):
            print(f"Done: {data}")
        case NotYetComplete():
            print("Still working")
        case Errored(cause):
            print(f"Check failed: {cause}")
    ```
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

__all__ = [
    "AttemptOutcome",
    "AttemptRecord",
    "Errored",
    "IsComplete",
    "NotYetComplete",
]


@dataclass(frozen=True)
class IsComplete:
    """The external operation has finished.

    Attributes:
        data: Result attributes reported by the completion check
    """

    data: Mapping[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return "IsComplete"


@dataclass(frozen=True)
class NotYetComplete:
    """The external operation is still running."""

    def __str__(self) -> str:
        return "NotYetComplete"


@dataclass(frozen=True)
class Errored:
    """The completion check itself failed.

    Attributes:
        cause: The exception raised by the check
    """

    cause: Exception

    @property
    def message(self) -> str:
        return str(self.cause) or type(self.cause).__name__

    def __str__(self) -> str:
        return f"Errored({type(self.cause).__name__}: {self.cause})"


# AttemptOutcome is the closed set of check results.
AttemptOutcome = IsComplete | NotYetComplete | Errored


@dataclass(frozen=True)
class AttemptRecord:
    """One completion check, as seen by the waiter.

    Transient: exists only to decide the next transition and to be logged.
    """

    attempt_number: int
    """1-indexed position in the schedule."""

    started_at: datetime
    """When the check was invoked."""

    outcome: AttemptOutcome
    """What the check reported."""

    @property
    def is_complete(self) -> bool:
        return isinstance(self.outcome, IsComplete)

    def __repr__(self) -> str:
        """Readable representation for debugging."""
        return (
            f"AttemptRecord(attempt_number={self.attempt_number}, "
            f"started_at={self.started_at.isoformat()}, outcome={self.outcome})"
        )
