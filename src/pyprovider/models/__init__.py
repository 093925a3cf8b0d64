"""Core data models for operation orchestration.

Defines the request, the polling schedule, check outcomes, the persisted
waiter state and the terminal result.

Design: Dependency-Free Models
These types have no dependencies on executor or storage modules to
prevent circular imports and enable clean layering.
"""

from pyprovider.models.attempt import (
    AttemptOutcome,
    AttemptRecord,
    Errored,
    IsComplete,
    NotYetComplete,
)
from pyprovider.models.request import OperationRequest, StepContext
from pyprovider.models.result import CheckResult, InitiateResult, TerminalResult
from pyprovider.models.retry import (
    DEFAULT_QUERY_INTERVAL,
    DEFAULT_TOTAL_TIMEOUT,
    ConfigurationError,
    RetryPolicy,
    calculate_retry_policy,
)
from pyprovider.models.status import OperationKind, ResultStatus, WaiterState
from pyprovider.models.waiter_record import WaiterRecord

__all__ = [
    "AttemptOutcome",
    "AttemptRecord",
    "Errored",
    "IsComplete",
    "NotYetComplete",
    "OperationRequest",
    "StepContext",
    "CheckResult",
    "InitiateResult",
    "TerminalResult",
    "DEFAULT_QUERY_INTERVAL",
    "DEFAULT_TOTAL_TIMEOUT",
    "ConfigurationError",
    "RetryPolicy",
    "calculate_retry_policy",
    "OperationKind",
    "ResultStatus",
    "WaiterState",
    "WaiterRecord",
]
