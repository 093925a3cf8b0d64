"""
Completion waiter state machine.

Design Pattern: State Machine with a single transition function

    POLLING --IsComplete--------------------------------> SUCCEEDED
    POLLING --NotYetComplete / Errored, attempts left---> POLLING
    POLLING --NotYetComplete / Errored, last attempt----> TIMED_OUT

The machine is pure: it never calls steps, sleeps or touches storage. The
orchestrator performs the attempt, then asks advance() for the next record.
Timeout is enforced by attempt counting only; the wall clock is bounded
because interval * max_attempts reconstructs the configured total timeout.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pyprovider.models import (
    AttemptRecord,
    Errored,
    IsComplete,
    OperationRequest,
    RetryPolicy,
    WaiterRecord,
    WaiterState,
)

__all__ = ["WaiterStateError", "WaiterStateMachine"]


class WaiterStateError(Exception):
    """A transition was requested that the state machine does not allow."""

    pass


class WaiterStateMachine:
    """Drives one waiter from POLLING to SUCCEEDED or TIMED_OUT.

    Usage:
        machine = WaiterStateMachine(policy)
        record = machine.begin(request, physical_resource_id="res-1")
        attempt = await dispatcher.check_complete(record)
        record = machine.advance(record, attempt)
    """

    def __init__(self, policy: RetryPolicy):
        self._policy = policy

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def begin(
        self,
        request: OperationRequest,
        physical_resource_id: str,
        data: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> WaiterRecord:
        """Create the initial POLLING record; the first attempt is due immediately."""
        now = now or datetime.now(UTC)
        return WaiterRecord(
            request=request,
            policy=self._policy,
            physical_resource_id=physical_resource_id,
            data=dict(data or {}),
            attempt_number=0,
            state=WaiterState.POLLING,
            next_attempt_at=now,
            created_at=now,
            updated_at=now,
        )

    def advance(self, record: WaiterRecord, attempt: AttemptRecord) -> WaiterRecord:
        """
        Apply one attempt to `record` and return the next record.

        NotYetComplete and Errored are handled identically: both consume an
        attempt and keep polling until the schedule is exhausted.

        Raises:
            WaiterStateError: If the record is terminal or the attempt is out of order
        """
        if record.is_terminal:
            raise WaiterStateError(
                f"Waiter {record.operation_id} already finished in state {record.state}"
            )

        expected = record.attempt_number + 1
        if attempt.attempt_number != expected:
            raise WaiterStateError(
                f"Waiter {record.operation_id} expected attempt {expected}, "
                f"got {attempt.attempt_number}"
            )

        outcome = attempt.outcome

        if isinstance(outcome, IsComplete):
            return record.evolve(
                attempt_number=attempt.attempt_number,
                state=WaiterState.SUCCEEDED,
                data={**record.data, **outcome.data},
                locked_by=None,
            )

        last_error = outcome.message if isinstance(outcome, Errored) else record.last_error

        delay = record.policy.delay_for_attempt(attempt.attempt_number)
        if delay is None:
            return record.evolve(
                attempt_number=attempt.attempt_number,
                state=WaiterState.TIMED_OUT,
                last_error=last_error,
                locked_by=None,
            )

        return record.evolve(
            attempt_number=attempt.attempt_number,
            state=WaiterState.POLLING,
            next_attempt_at=attempt.started_at + delay,
            last_error=last_error,
            locked_by=None,
        )
