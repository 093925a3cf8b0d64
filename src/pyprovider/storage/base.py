"""
WaiterStore - Abstract interface for persisting resumable waiters.

Design Pattern: Adapter Pattern
WaiterStore defines the target interface that all storage adapters implement.
Different backends (SQLite, Redis, Memory) adapt to this common interface.

Design Principle: Dependency Inversion (SOLID)
The orchestrator and the worker depend on this abstraction, not on concrete
storage implementations. Tests use InMemoryWaiterStore.

A waiter is persisted between two completion checks so the wait does not
have to fit into a single process lifetime. Every record is keyed by
operation_id; uniqueness is the caller's responsibility and is enforced by
create_waiter().
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from pyprovider.models import WaiterRecord

__all__ = [
    "DuplicateOperationError",
    "StorageError",
    "TimerNotificationSource",
    "WaiterNotFoundError",
    "WaiterStore",
]


class StorageError(Exception):
    """
    Storage operation failed.

    Custom exception with context, not generic Exception.
    """

    pass


class DuplicateOperationError(StorageError):
    """A waiter already exists for this operation_id."""

    pass


class WaiterNotFoundError(StorageError):
    """No waiter is stored for this operation_id."""

    pass


class WaiterStore(ABC):
    """
    Abstract storage interface for resumable waiters.

    Every method either succeeds or raises StorageError; none of them log
    and raise.
    """

    async def connect(self) -> None:
        """Open connections. Backends without connections need nothing here."""
        return None

    async def close(self) -> None:
        """Release connections. Explicit cleanup, not relying on GC."""
        return None

    @abstractmethod
    async def create_waiter(self, record: WaiterRecord) -> None:
        """
        Persist a new waiter.

        Args:
            record: Initial record (normally POLLING, attempt 0)

        Raises:
            DuplicateOperationError: If operation_id is already stored
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def save_waiter(
        self,
        record: WaiterRecord,
        expected_attempt: int | None = None,
        claimed_by: str | None = None,
    ) -> bool:
        """
        Overwrite an existing waiter with a newer snapshot.

        The stored claim is replaced by record.locked_by, so saving a record
        produced by WaiterStateMachine.advance() releases the claim.

        The write is a compare-and-set when a guard is given: it only
        happens if the stored attempt_number equals `expected_attempt` and
        the stored claim is held by `claimed_by`. A worker whose claim was
        released and re-taken by another worker loses the race here.

        Returns:
            True if written, False if a guard did not match

        Raises:
            WaiterNotFoundError: If operation_id is not stored
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_waiter(self, operation_id: str) -> WaiterRecord | None:
        """
        Retrieve a waiter.

        Returns:
            WaiterRecord if found, None otherwise
        """
        pass

    @abstractmethod
    async def get_due_waiters(self, now: datetime, limit: int = 100) -> list[WaiterRecord]:
        """
        Get unclaimed POLLING waiters whose next attempt is due.

        Args:
            now: Reference time (timezone-aware)
            limit: Maximum number of records to return

        Returns:
            Records ordered by next_attempt_at (may be empty)
        """
        pass

    @abstractmethod
    async def claim_waiter(self, operation_id: str, worker_id: str) -> bool:
        """
        Atomically claim a due waiter for one attempt.

        Multiple workers can safely call this - only one will succeed.

        Returns:
            True if claimed, False if missing, finished, not yet due or already claimed
        """
        pass

    @abstractmethod
    async def release_stale_claims(self, older_than: timedelta) -> int:
        """
        Release claims held longer than `older_than` (crashed workers).

        Returns:
            Number of waiters released
        """
        pass

    @abstractmethod
    async def get_next_wake_time(self) -> datetime | None:
        """
        Get the earliest next_attempt_at across unclaimed POLLING waiters.

        Returns:
            datetime of the next due attempt, or None if nothing is waiting
        """
        pass

    @abstractmethod
    async def reset(self) -> None:
        """Clear all data (for testing/demos)."""
        pass


@runtime_checkable
class TimerNotificationSource(Protocol):
    """
    Protocol for stores that can wake workers when the schedule changes.

    Stores implementing this set the event whenever a waiter is created,
    rescheduled or released, so a sleeping worker recalculates its next
    wake time instead of waiting out its poll interval.

    Example:
        ```python
        if isinstance(store, TimerNotificationSource):
            await store.timer_notify().wait()
        ```
    """

    def timer_notify(self) -> asyncio.Event:
        """Return the event set when the wake schedule changes."""
        ...
