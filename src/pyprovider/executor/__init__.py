"""
Executor module - Runtime engine for asynchronous-completion operations.

This module contains the execution components:
- dispatcher: Calls the three steps and normalizes their results
- waiter: Pure POLLING → SUCCEEDED / TIMED_OUT state machine
- notification: Channels that receive the terminal result
- orchestrator: Composition root (in-process and resumable runs)
- worker: Resumes persisted waiters when they are due

Package name "executor" describes what it provides (running operations),
not what it contains.
"""

from pyprovider.executor.dispatcher import (
    AttemptError,
    EventDispatcher,
    InitiationError,
    TimeoutHandlerError,
    default_on_timeout,
)
from pyprovider.executor.notification import (
    CallbackNotificationChannel,
    InMemoryNotificationChannel,
    NotificationChannel,
)
from pyprovider.executor.orchestrator import Orchestrator, OrchestratorError
from pyprovider.executor.waiter import WaiterStateError, WaiterStateMachine
from pyprovider.executor.worker import Worker, WorkerError, WorkerHandle

__all__ = [
    # Dispatcher
    "AttemptError",
    "EventDispatcher",
    "InitiationError",
    "TimeoutHandlerError",
    "default_on_timeout",
    # Notification
    "CallbackNotificationChannel",
    "InMemoryNotificationChannel",
    "NotificationChannel",
    # Orchestrator
    "Orchestrator",
    "OrchestratorError",
    # Waiter state machine
    "WaiterStateError",
    "WaiterStateMachine",
    # Worker
    "Worker",
    "WorkerError",
    "WorkerHandle",
]
