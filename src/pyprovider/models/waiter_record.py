"""Persisted state of a resumable completion waiter.

A WaiterRecord is everything needed to run the next completion check in a
fresh process: the request, the schedule, the identity assigned by the
initiation step and the attempt counter. Storage backends persist it between
attempts; workers pick it up once next_attempt_at has passed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from pyprovider.models.request import OperationRequest
from pyprovider.models.retry import RetryPolicy
from pyprovider.models.status import WaiterState

__all__ = ["WaiterRecord"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class WaiterRecord:
    """Snapshot of one waiter between two completion checks.

    Immutable: transitions produce a new record via evolve().
    """

    request: OperationRequest
    policy: RetryPolicy
    physical_resource_id: str

    data: Mapping[str, Any] = field(default_factory=dict)
    """Attributes accumulated from the initiation step (and the final check)."""

    attempt_number: int = 0
    """Number of completion checks already performed."""

    state: WaiterState = WaiterState.POLLING

    next_attempt_at: datetime = field(default_factory=_utcnow)
    """When the next completion check is due (timezone-aware, UTC)."""

    last_error: str | None = None
    """Message of the most recent failed check."""

    locked_by: str | None = None
    """Worker that claimed this waiter, None if unclaimed."""

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def operation_id(self) -> str:
        return self.request.operation_id

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def attempts_remaining(self) -> int:
        return max(self.policy.max_attempts - self.attempt_number, 0)

    def is_due(self, now: datetime) -> bool:
        """Check if the next attempt should run at `now`."""
        return self.state == WaiterState.POLLING and self.next_attempt_at <= now

    def evolve(self, **changes: Any) -> WaiterRecord:
        """Return a copy with `changes` applied and updated_at refreshed."""
        changes.setdefault("updated_at", _utcnow())
        return replace(self, **changes)

    def __repr__(self) -> str:
        """Readable representation for debugging."""
        return (
            f"WaiterRecord(operation_id={self.operation_id!r}, state={self.state}, "
            f"attempt={self.attempt_number}/{self.policy.max_attempts}, "
            f"next_attempt_at={self.next_attempt_at.isoformat()}, "
            f"locked_by={self.locked_by!r})"
        )
