"""
pyprovider: Asynchronous-completion orchestration for Python

Start a long-running external operation once, poll it on a fixed schedule
until it reports completion, and report exactly one result.

Design Pattern: Façade Pattern
This module provides a simplified interface to the framework, hiding the
dispatcher, the waiter state machine and the storage adapters.

Example:
    ```python
    import asyncio
    from datetime import timedelta
    from pyprovider import (
        CheckResult,
        InMemoryNotificationChannel,
        OperationRequest,
        Orchestrator,
        ProviderConfig,
    )

    async def start_export(ctx):
        job_id = await exports.start(ctx.request.properties["Table"])
        return {"physical_resource_id": job_id}

    async def export_finished(ctx):
        job = await exports.describe(ctx.physical_resource_id)
        return CheckResult(job.done, {"Location": job.location})

    async def main():
        config = ProviderConfig(
            on_event=start_export,
            is_complete=export_finished,
            total_timeout=timedelta(minutes=10),
            query_interval=timedelta(seconds=30),
        )
        channel = InMemoryNotificationChannel()
        orchestrator = Orchestrator(config, channel)

        result = await orchestrator.start(
            OperationRequest.create("Create", {"Table": "orders"})
        )
        print(result.to_payload())

    asyncio.run(main())
    ```
"""

# Core types
from pyprovider.models import (
    DEFAULT_QUERY_INTERVAL,
    DEFAULT_TOTAL_TIMEOUT,
    AttemptOutcome,
    AttemptRecord,
    CheckResult,
    ConfigurationError,
    Errored,
    InitiateResult,
    IsComplete,
    NotYetComplete,
    OperationKind,
    OperationRequest,
    ResultStatus,
    RetryPolicy,
    StepContext,
    TerminalResult,
    WaiterRecord,
    WaiterState,
    calculate_retry_policy,
)

# Configuration and logging
from pyprovider.config import ProviderConfig
from pyprovider.instrumentation import ExecutionEvent, ExecutionLogger, LogLevel, LogOptions

# Storage (Adapter pattern)
from pyprovider.storage import (
    DuplicateOperationError,
    InMemoryWaiterStore,
    StorageError,
    WaiterNotFoundError,
    WaiterStore,
)

# Execution
from pyprovider.executor import (
    AttemptError,
    CallbackNotificationChannel,
    EventDispatcher,
    InitiationError,
    InMemoryNotificationChannel,
    NotificationChannel,
    Orchestrator,
    OrchestratorError,
    TimeoutHandlerError,
    WaiterStateError,
    WaiterStateMachine,
    Worker,
    WorkerError,
    WorkerHandle,
)

# Version
__version__ = "0.1.0"

__all__ = [
    # Core types
    "DEFAULT_QUERY_INTERVAL",
    "DEFAULT_TOTAL_TIMEOUT",
    "AttemptOutcome",
    "AttemptRecord",
    "CheckResult",
    "ConfigurationError",
    "Errored",
    "InitiateResult",
    "IsComplete",
    "NotYetComplete",
    "OperationKind",
    "OperationRequest",
    "ResultStatus",
    "RetryPolicy",
    "StepContext",
    "TerminalResult",
    "WaiterRecord",
    "WaiterState",
    "calculate_retry_policy",

    # Configuration and logging
    "ProviderConfig",
    "ExecutionEvent",
    "ExecutionLogger",
    "LogLevel",
    "LogOptions",

    # Storage
    "DuplicateOperationError",
    "InMemoryWaiterStore",
    "StorageError",
    "WaiterNotFoundError",
    "WaiterStore",

    # Execution
    "AttemptError",
    "CallbackNotificationChannel",
    "EventDispatcher",
    "InitiationError",
    "InMemoryNotificationChannel",
    "NotificationChannel",
    "Orchestrator",
    "OrchestratorError",
    "TimeoutHandlerError",
    "WaiterStateError",
    "WaiterStateMachine",
    "Worker",
    "WorkerError",
    "WorkerHandle",

    # Metadata
    "__version__",
]
