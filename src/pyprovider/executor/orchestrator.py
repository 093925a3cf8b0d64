"""
Orchestrator - runs one operation from initiation to its terminal result.

Two ways to drive the waiter:

In-process (start):
    initiate → check, sleep, check, ... → SUCCEEDED / TIMED_OUT → notify
    The wait between checks is an awaited sleep, so nothing blocks the loop.

Resumable (submit / resume):
    submit() initiates and persists a WaiterRecord; each resume() runs
    exactly one check and persists the transition. A Worker (or any external
    scheduler) calls resume() whenever next_attempt_at has passed, so the
    wait does not have to fit into one process lifetime.

Both paths use the same dispatcher and state machine and therefore reach
the same terminal results. Every request produces exactly one notification.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pyprovider.config import ProviderConfig
from pyprovider.executor.dispatcher import EventDispatcher, InitiationError, TimeoutHandlerError
from pyprovider.executor.notification import NotificationChannel
from pyprovider.executor.waiter import WaiterStateMachine
from pyprovider.models import (
    OperationRequest,
    TerminalResult,
    WaiterRecord,
    WaiterState,
)
from pyprovider.storage.base import DuplicateOperationError, WaiterNotFoundError, WaiterStore

logger = logging.getLogger(__name__)

__all__ = ["Orchestrator", "OrchestratorError"]


class OrchestratorError(Exception):
    """The orchestrator was used in a way its wiring does not support."""

    pass


class Orchestrator:
    """Composition root for one provider.

    Usage:
        orchestrator = Orchestrator(config, notifications)
        result = await orchestrator.start(OperationRequest.create("Create", {"Size": 3}))

    Resumable usage:
        orchestrator = Orchestrator(config, notifications, store=store)
        await orchestrator.submit(request)
        ...
        await orchestrator.resume(request.operation_id)
    """

    def __init__(
        self,
        config: ProviderConfig,
        notifications: NotificationChannel,
        store: WaiterStore | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        dispatcher: EventDispatcher | None = None,
    ):
        """
        Args:
            config: Validated provider configuration
            notifications: Receives exactly one TerminalResult per operation
            store: Required for submit()/resume()
            sleep: Awaitable used between in-process checks (injectable for tests)
            dispatcher: Custom dispatcher (defaults to one built from config)
        """
        self._config = config
        self._notifications = notifications
        self._store = store
        self._sleep = sleep
        self._dispatcher = dispatcher or EventDispatcher(config)
        self._machine = WaiterStateMachine(config.retry_policy)
        self._submitting: set[str] = set()

    def __repr__(self) -> str:
        return (
            f"Orchestrator(policy={self._config.retry_policy}, "
            f"store={self._store!r}, notifications={self._notifications!r})"
        )

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def store(self) -> WaiterStore | None:
        return self._store

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def machine(self) -> WaiterStateMachine:
        return self._machine

    # ========================================================================
    # In-process
    # ========================================================================

    async def start(self, request: OperationRequest) -> TerminalResult:
        """
        Run `request` to completion in this process.

        Returns:
            The TerminalResult that was sent to the notification channel
        """
        initiated = await self._initiate(request)
        if isinstance(initiated, TerminalResult):
            return await self._notify(request.operation_id, initiated)

        record = initiated
        while not record.is_terminal:
            delay = (record.next_attempt_at - datetime.now(UTC)).total_seconds()
            if delay > 0:
                await self._sleep(delay)

            attempt = await self._dispatcher.check_complete(record)
            record = self._machine.advance(record, attempt)

        result = await self._finish(record)
        return await self._notify(request.operation_id, result)

    async def handle_event(self, event: Mapping[str, Any]) -> TerminalResult:
        """Parse a provider event (RequestType, RequestId, ...) and start() it."""
        return await self.start(OperationRequest.from_event(event))

    # ========================================================================
    # Resumable
    # ========================================================================

    async def submit(self, request: OperationRequest) -> TerminalResult | None:
        """
        Initiate `request` and persist its waiter instead of polling here.

        Duplicates are rejected before initiation when the waiter is already
        stored or another submit() of this orchestrator is in flight for the
        same operation_id. Orchestrators in separate processes only collide
        at create_waiter(), after both have initiated; operation_id
        uniqueness across processes is the caller's responsibility.

        Returns:
            The TerminalResult if the operation finished without waiting
            (or initiation failed), None if a waiter was persisted

        Raises:
            OrchestratorError: If no store is configured
            DuplicateOperationError: If a waiter already exists for operation_id
        """
        store = self._require_store()
        operation_id = request.operation_id

        if operation_id in self._submitting:
            raise DuplicateOperationError(f"Submit already in flight: operation_id={operation_id}")
        self._submitting.add(operation_id)

        try:
            if await store.get_waiter(operation_id) is not None:
                raise DuplicateOperationError(f"Waiter already exists: operation_id={operation_id}")

            initiated = await self._initiate(request)
            if isinstance(initiated, TerminalResult):
                return await self._notify(operation_id, initiated)

            await store.create_waiter(initiated)
        finally:
            self._submitting.discard(operation_id)

        logger.debug(
            f"Waiter persisted: operation={operation_id} "
            f"max_attempts={initiated.policy.max_attempts}"
        )
        return None

    async def resume(
        self, operation_id: str, worker_id: str | None = None
    ) -> TerminalResult | None:
        """
        Run exactly one completion check for a persisted waiter.

        The check runs immediately; honouring next_attempt_at is the caller's
        job (the Worker only resumes due waiters).

        The transition is saved only if the stored waiter is still at the
        attempt this call started from and, when `worker_id` is given, still
        claimed by that worker. If another resume got there first (a stale
        claim was released and re-taken), this call discards its result and
        neither runs the timeout step nor notifies.

        Args:
            operation_id: Waiter to advance
            worker_id: Claim owner the save is guarded on

        Returns:
            The TerminalResult if this check finished the waiter, None if it
            keeps polling, had already finished or lost its claim

        Raises:
            OrchestratorError: If no store is configured
            WaiterNotFoundError: If no waiter is stored for operation_id
        """
        store = self._require_store()

        record = await store.get_waiter(operation_id)
        if record is None:
            raise WaiterNotFoundError(f"Waiter not found: operation_id={operation_id}")

        if record.is_terminal:
            logger.debug(f"Waiter already finished: operation={operation_id} state={record.state}")
            return None

        if worker_id is not None and record.locked_by != worker_id:
            logger.warning(
                f"Claim lost before check: operation={operation_id} worker={worker_id} "
                f"owner={record.locked_by}"
            )
            return None

        attempt = await self._dispatcher.check_complete(record)
        advanced = self._machine.advance(record, attempt)

        saved = await store.save_waiter(
            advanced, expected_attempt=record.attempt_number, claimed_by=worker_id
        )
        if not saved:
            logger.warning(
                f"Attempt {attempt.attempt_number} discarded, waiter moved on: "
                f"operation={operation_id} worker={worker_id}"
            )
            return None

        if not advanced.is_terminal:
            return None

        result = await self._finish(advanced)
        return await self._notify(operation_id, result)

    # ========================================================================
    # Shared steps
    # ========================================================================

    async def _initiate(self, request: OperationRequest) -> WaiterRecord | TerminalResult:
        """Run the initiation step; returns a POLLING record or a terminal result."""
        try:
            initiated = await self._dispatcher.initiate(request)
        except InitiationError as e:
            physical_id = request.physical_resource_id or request.operation_id
            return TerminalResult.failed(physical_id, str(e))

        if not initiated.requires_wait:
            return TerminalResult.success(initiated.physical_resource_id, initiated.data)

        return self._machine.begin(request, initiated.physical_resource_id, initiated.data)

    async def _finish(self, record: WaiterRecord) -> TerminalResult:
        """Turn a terminal record into the result to report."""
        if record.state == WaiterState.SUCCEEDED:
            return TerminalResult.success(record.physical_resource_id, record.data)

        try:
            return await self._dispatcher.on_timeout(record)
        except TimeoutHandlerError as e:
            return TerminalResult.failed(record.physical_resource_id, str(e))

    async def _notify(self, operation_id: str, result: TerminalResult) -> TerminalResult:
        await self._notifications.send(operation_id, result)
        logger.info(f"Operation finished: operation={operation_id} result={result}")
        return result

    def _require_store(self) -> WaiterStore:
        if self._store is None:
            raise OrchestratorError("submit() and resume() require a WaiterStore")
        return self._store
