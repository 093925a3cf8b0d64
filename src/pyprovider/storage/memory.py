"""In-memory storage implementation for pyprovider.

Design Pattern: Adapter Pattern
InMemoryWaiterStore adapts an in-memory dictionary to the WaiterStore interface.

Instance is immediately usable after __init__.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from pyprovider.models import WaiterRecord, WaiterState
from pyprovider.storage.base import (
    DuplicateOperationError,
    WaiterNotFoundError,
    WaiterStore,
)


class InMemoryWaiterStore(WaiterStore):
    """In-memory storage for tests and single-process use.

    Can be substituted for SqliteWaiterStore without changing client code.

    Usage:
        store = InMemoryWaiterStore()
        await store.create_waiter(record)
    """

    def __init__(self):
        # Storage: {operation_id: WaiterRecord}
        self._waiters: dict[str, WaiterRecord] = {}

        self._lock = asyncio.Lock()
        self._timer_notify = asyncio.Event()

    def __repr__(self) -> str:
        """Return string representation of storage instance."""
        return "InMemoryWaiterStore"

    async def create_waiter(self, record: WaiterRecord) -> None:
        async with self._lock:
            if record.operation_id in self._waiters:
                raise DuplicateOperationError(
                    f"Waiter already exists: operation_id={record.operation_id}"
                )
            self._waiters[record.operation_id] = record

        self._timer_notify.set()
        self._timer_notify.clear()

    async def save_waiter(
        self,
        record: WaiterRecord,
        expected_attempt: int | None = None,
        claimed_by: str | None = None,
    ) -> bool:
        async with self._lock:
            stored = self._waiters.get(record.operation_id)
            if stored is None:
                raise WaiterNotFoundError(f"Waiter not found: operation_id={record.operation_id}")
            if expected_attempt is not None and stored.attempt_number != expected_attempt:
                return False
            if claimed_by is not None and stored.locked_by != claimed_by:
                return False
            self._waiters[record.operation_id] = record

        self._timer_notify.set()
        self._timer_notify.clear()
        return True

    async def get_waiter(self, operation_id: str) -> WaiterRecord | None:
        async with self._lock:
            return self._waiters.get(operation_id)

    async def get_due_waiters(self, now: datetime, limit: int = 100) -> list[WaiterRecord]:
        async with self._lock:
            due = [
                record
                for record in self._waiters.values()
                if record.locked_by is None and record.is_due(now)
            ]

        due.sort(key=lambda record: record.next_attempt_at)
        return due[:limit]

    async def claim_waiter(self, operation_id: str, worker_id: str) -> bool:
        async with self._lock:
            record = self._waiters.get(operation_id)
            if record is None:
                return False
            now = datetime.now(UTC)
            if record.state != WaiterState.POLLING or record.locked_by is not None:
                return False
            if not record.is_due(now):
                return False

            self._waiters[operation_id] = replace(record, locked_by=worker_id, updated_at=now)
            return True

    async def release_stale_claims(self, older_than: timedelta) -> int:
        cutoff = datetime.now(UTC) - older_than
        released = 0

        async with self._lock:
            for operation_id, record in list(self._waiters.items()):
                if record.locked_by is not None and record.updated_at < cutoff:
                    self._waiters[operation_id] = replace(record, locked_by=None)
                    released += 1

        if released:
            self._timer_notify.set()
            self._timer_notify.clear()
        return released

    async def get_next_wake_time(self) -> datetime | None:
        async with self._lock:
            times = [
                record.next_attempt_at
                for record in self._waiters.values()
                if record.state == WaiterState.POLLING and record.locked_by is None
            ]
        return min(times) if times else None

    async def reset(self) -> None:
        async with self._lock:
            self._waiters.clear()

    def timer_notify(self) -> asyncio.Event:
        """Return event set whenever the wake schedule changes."""
        return self._timer_notify
