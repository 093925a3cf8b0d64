"""
Event dispatch between the orchestrator and the three step functions.

EventDispatcher is the only place that calls user code. It:
- builds the StepContext each step receives,
- awaits async steps and calls sync steps directly,
- normalizes whatever a step returns into the framework's value types,
- reports one ExecutionEvent per call to the ExecutionLogger.

Error contract:
- initiate(): step errors propagate as InitiationError
- check_complete(): never raises; step errors become Errored(AttemptError)
- on_timeout(): step errors propagate as TimeoutHandlerError (no fallback)
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pyprovider.config import ProviderConfig, StepFunction
from pyprovider.instrumentation import EventSeverity, ExecutionEvent, ExecutionLogger
from pyprovider.models import (
    AttemptOutcome,
    AttemptRecord,
    CheckResult,
    Errored,
    InitiateResult,
    IsComplete,
    NotYetComplete,
    OperationKind,
    OperationRequest,
    ResultStatus,
    StepContext,
    TerminalResult,
    WaiterRecord,
)

logger = logging.getLogger(__name__)

__all__ = [
    "AttemptError",
    "EventDispatcher",
    "InitiationError",
    "TimeoutHandlerError",
]


class InitiationError(Exception):
    """The initiation step failed or reported an invalid identity."""

    pass


class AttemptError(Exception):
    """A completion check failed.

    Recovered locally by the waiter: consumes one attempt, never aborts the run.
    """

    def __init__(self, attempt_number: int, cause: Exception):
        super().__init__(str(cause) or type(cause).__name__)
        self.attempt_number = attempt_number
        self.cause = cause


class TimeoutHandlerError(Exception):
    """The timeout step itself failed. Fatal to the operation."""

    pass


def _now() -> datetime:
    return datetime.now(UTC)


async def _call(step: StepFunction, ctx: StepContext) -> Any:
    """Invoke a sync or async step."""
    result = step(ctx)
    if inspect.isawaitable(result):
        result = await result
    return result


def default_on_timeout(ctx: StepContext) -> str:
    """Built-in timeout step: describe the exhausted schedule."""
    reason = f"Operation timed out after {ctx.attempt_number} attempt(s)"
    if ctx.last_error:
        reason += f": {ctx.last_error}"
    return reason


class EventDispatcher:
    """Calls the configured steps and translates their results.

    Usage:
        dispatcher = EventDispatcher(config)
        initiated = await dispatcher.initiate(request)
        attempt = await dispatcher.check_complete(record)
    """

    def __init__(self, config: ProviderConfig, execution_log: ExecutionLogger | None = None):
        self._config = config
        self._execution_log = execution_log or ExecutionLogger(config.effective_log_options)

    @property
    def execution_log(self) -> ExecutionLogger:
        return self._execution_log

    def context_for(
        self,
        request: OperationRequest,
        physical_resource_id: str | None = None,
        attempt_number: int = 0,
        last_error: str | None = None,
    ) -> StepContext:
        return StepContext(
            request=request,
            physical_resource_id=physical_resource_id,
            attempt_number=attempt_number,
            last_error=last_error,
            role=self._config.role,
        )

    # ========================================================================
    # Initiate
    # ========================================================================

    async def initiate(self, request: OperationRequest) -> InitiateResult:
        """
        Run the initiation step once and resolve the physical identity.

        Returns:
            InitiateResult with physical_resource_id and requires_wait resolved

        Raises:
            InitiationError: If the step raises, returns an unusable value,
                changes the identity during a delete, or asks to wait while
                no completion check is configured
        """
        ctx = self.context_for(request, request.physical_resource_id)
        started_at = _now()

        try:
            raw = await _call(self._config.on_event, ctx)
            result = self._resolve_initiate(request, raw)
        except Exception as e:
            error = e
            if not isinstance(e, InitiationError):
                error = InitiationError(str(e) or repr(e))
            self._execution_log.emit(
                ExecutionEvent(
                    step="initiate",
                    operation_id=request.operation_id,
                    outcome="Failed",
                    severity=EventSeverity.FATAL,
                    started_at=started_at,
                    finished_at=_now(),
                    physical_resource_id=request.physical_resource_id,
                    error=str(error),
                    properties=request.properties,
                )
            )
            if error is e:
                raise
            raise error from e

        self._execution_log.emit(
            ExecutionEvent(
                step="initiate",
                operation_id=request.operation_id,
                outcome="RequiresWait" if result.requires_wait else "Complete",
                severity=EventSeverity.INFO,
                started_at=started_at,
                finished_at=_now(),
                physical_resource_id=result.physical_resource_id,
                properties=request.properties,
                data=result.data,
            )
        )
        return result

    def _resolve_initiate(self, request: OperationRequest, raw: Any) -> InitiateResult:
        if raw is None:
            result = InitiateResult()
        elif isinstance(raw, InitiateResult):
            result = raw
        elif isinstance(raw, Mapping):
            result = InitiateResult.from_mapping(raw)
        else:
            raise InitiationError(
                f"on_event must return InitiateResult, a mapping or None, "
                f"got {type(raw).__name__}"
            )

        physical_id = result.physical_resource_id
        if physical_id is None:
            # Create: the request id becomes the identity; otherwise keep the existing one
            physical_id = request.physical_resource_id or request.operation_id

        previous_id = request.physical_resource_id
        if request.kind == OperationKind.DELETE and previous_id and physical_id != previous_id:
            raise InitiationError(
                f'DELETE: cannot change the physical resource ID from "{previous_id}" '
                f'to "{physical_id}" during deletion'
            )

        requires_wait = result.requires_wait
        if requires_wait is None:
            requires_wait = self._config.requires_waiter
        if requires_wait and not self._config.requires_waiter:
            raise InitiationError(
                "on_event requested waiting but no is_complete step is configured"
            )

        return InitiateResult(
            physical_resource_id=physical_id,
            data=dict(result.data or {}),
            requires_wait=bool(requires_wait),
        )

    # ========================================================================
    # CheckComplete
    # ========================================================================

    async def check_complete(self, record: WaiterRecord) -> AttemptRecord:
        """
        Run one completion check for `record`.

        Never raises: any failure is reported as Errored(AttemptError).

        Returns:
            AttemptRecord numbered record.attempt_number + 1
        """
        attempt_number = record.attempt_number + 1
        ctx = self.context_for(
            record.request, record.physical_resource_id, attempt_number, record.last_error
        )
        started_at = _now()

        outcome: AttemptOutcome
        try:
            if self._config.is_complete is None:
                raise AttemptError(attempt_number, RuntimeError("no is_complete step configured"))
            raw = await _call(self._config.is_complete, ctx)
            outcome = self._resolve_check(raw)
        except AttemptError as e:
            outcome = Errored(e)
        except Exception as e:
            outcome = Errored(AttemptError(attempt_number, e))

        attempt = AttemptRecord(
            attempt_number=attempt_number, started_at=started_at, outcome=outcome
        )
        failed = isinstance(outcome, Errored)

        if failed:
            logger.debug(
                f"Completion check failed: operation={record.operation_id} "
                f"attempt={attempt_number} error={outcome.message}"
            )

        self._execution_log.emit(
            ExecutionEvent(
                step="check_complete",
                operation_id=record.operation_id,
                outcome=type(outcome).__name__,
                severity=EventSeverity.ERROR if failed else EventSeverity.INFO,
                started_at=started_at,
                finished_at=_now(),
                attempt_number=attempt_number,
                max_attempts=record.policy.max_attempts,
                physical_resource_id=record.physical_resource_id,
                error=outcome.message if failed else None,
                properties=record.request.properties,
                data=outcome.data if isinstance(outcome, IsComplete) else None,
            )
        )
        return attempt

    @staticmethod
    def _resolve_check(raw: Any) -> AttemptOutcome:
        if raw is None:
            return NotYetComplete()
        if isinstance(raw, bool):
            return IsComplete() if raw else NotYetComplete()
        if isinstance(raw, (IsComplete, NotYetComplete)):
            return raw
        if isinstance(raw, Mapping):
            raw = CheckResult.from_mapping(raw)
        if isinstance(raw, CheckResult):
            return IsComplete(dict(raw.data)) if raw.is_complete else NotYetComplete()
        raise TypeError(
            f"is_complete must return CheckResult, a bool, a mapping or None, "
            f"got {type(raw).__name__}"
        )

    # ========================================================================
    # OnTimeout
    # ========================================================================

    async def on_timeout(self, record: WaiterRecord) -> TerminalResult:
        """
        Run the timeout step once and build the failed result.

        Returns:
            TerminalResult with status FAILED

        Raises:
            TimeoutHandlerError: If the step raises or returns an unusable value
        """
        ctx = self.context_for(
            record.request, record.physical_resource_id, record.attempt_number, record.last_error
        )
        step = self._config.on_timeout or default_on_timeout
        started_at = _now()

        try:
            raw = await _call(step, ctx)
            result = self._resolve_timeout(record, ctx, raw)
        except Exception as e:
            error = e
            if not isinstance(e, TimeoutHandlerError):
                error = TimeoutHandlerError(str(e) or repr(e))
            self._execution_log.emit(
                ExecutionEvent(
                    step="on_timeout",
                    operation_id=record.operation_id,
                    outcome="Failed",
                    severity=EventSeverity.FATAL,
                    started_at=started_at,
                    finished_at=_now(),
                    attempt_number=record.attempt_number,
                    max_attempts=record.policy.max_attempts,
                    physical_resource_id=record.physical_resource_id,
                    error=str(error),
                    properties=record.request.properties,
                )
            )
            if error is e:
                raise
            raise error from e

        self._execution_log.emit(
            ExecutionEvent(
                step="on_timeout",
                operation_id=record.operation_id,
                outcome="TimedOut",
                severity=EventSeverity.ERROR,
                started_at=started_at,
                finished_at=_now(),
                attempt_number=record.attempt_number,
                max_attempts=record.policy.max_attempts,
                physical_resource_id=result.physical_resource_id,
                error=result.reason,
                properties=record.request.properties,
            )
        )
        return result

    @staticmethod
    def _resolve_timeout(record: WaiterRecord, ctx: StepContext, raw: Any) -> TerminalResult:
        if raw is None:
            reason = default_on_timeout(ctx)
            return TerminalResult.failed(record.physical_resource_id, reason)
        if isinstance(raw, str):
            return TerminalResult.failed(record.physical_resource_id, raw)
        if isinstance(raw, TerminalResult):
            # A timeout is always a failure, whatever the step reports
            reason = raw.reason or default_on_timeout(ctx)
            physical_id = raw.physical_resource_id or record.physical_resource_id
            if raw.status != ResultStatus.FAILED:
                logger.warning(
                    f"on_timeout returned {raw.status} for operation={record.operation_id}; "
                    "reporting Failed"
                )
            return TerminalResult.failed(physical_id, reason)
        raise TimeoutHandlerError(
            f"on_timeout must return a reason string, TerminalResult or None, "
            f"got {type(raw).__name__}"
        )
