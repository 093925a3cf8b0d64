"""SQLite-backed storage implementation for pyprovider.

Design Pattern: Adapter Pattern
SqliteWaiterStore adapts an SQLite database to the WaiterStore interface.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- Conditional UPDATE for claims (optimistic concurrency)
- Index on (state, next_attempt_at) for efficient due-waiter queries
- Records are pickled; queryable columns are kept alongside
"""

from __future__ import annotations

import asyncio
import pickle
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite

from pyprovider.models import WaiterRecord, WaiterState
from pyprovider.storage.base import (
    DuplicateOperationError,
    StorageError,
    WaiterNotFoundError,
    WaiterStore,
)


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000.0, tz=UTC)


class SqliteWaiterStore(WaiterStore):
    """SQLite-backed durable storage.

    After __init__, the instance is not yet usable. Call connect() first.
    This follows asyncio best practices (no async in __init__).

    Usage:
        store = SqliteWaiterStore("waiters.db")
        await store.connect()
        try:
            await store.create_waiter(record)
        finally:
            await store.close()
    """

    def __init__(self, db_path: str):
        """Initialize storage (connection not opened yet).

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection
        self._timer_notify = asyncio.Event()

    @classmethod
    async def in_memory(cls) -> SqliteWaiterStore:
        """
        Create a connected in-memory SQLite store for testing.

        Example:
            store = await SqliteWaiterStore.in_memory()
        """
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        """Return string representation of storage instance."""
        if self.db_path == ":memory:":
            return "SqliteWaiterStore(in-memory)"
        return f"SqliteWaiterStore({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema.

        Fixed initialization sequence:
        1. Open connection
        2. Enable WAL mode
        3. Create table and index
        """
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit mode for better concurrency
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()

        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        await self._create_schema()
        await self._connection.commit()

    async def _create_schema(self) -> None:
        """Create the waiters table.

        Schema design:
        - UPPERCASE state values matching WaiterState
        - INTEGER timestamps (milliseconds, UTC)
        - record BLOB holds the pickled WaiterRecord
        """
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS waiters (
                operation_id TEXT PRIMARY KEY,
                state TEXT CHECK( state IN ('POLLING','SUCCEEDED','TIMED_OUT') ) NOT NULL,
                attempt_number INTEGER NOT NULL DEFAULT 0,
                next_attempt_at INTEGER NOT NULL,
                locked_by TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                record BLOB NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_waiters_due
            ON waiters(state, next_attempt_at)
        """)

    async def create_waiter(self, record: WaiterRecord) -> None:
        self._check_connected()

        async with self._lock:
            try:
                await self._connection.execute(
                    """
                    INSERT INTO waiters (
                        operation_id, state, attempt_number, next_attempt_at,
                        locked_by, created_at, updated_at, record
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.operation_id,
                        record.state.value,
                        record.attempt_number,
                        _to_millis(record.next_attempt_at),
                        record.locked_by,
                        _to_millis(record.created_at),
                        _to_millis(record.updated_at),
                        pickle.dumps(record),
                    ),
                )
            except aiosqlite.IntegrityError:
                raise DuplicateOperationError(
                    f"Waiter already exists: operation_id={record.operation_id}"
                )
            await self._connection.commit()

        self._timer_notify.set()
        self._timer_notify.clear()

    async def save_waiter(
        self,
        record: WaiterRecord,
        expected_attempt: int | None = None,
        claimed_by: str | None = None,
    ) -> bool:
        """Overwrite a waiter, optionally guarded by attempt number and claim owner.

        The guards are part of the UPDATE's WHERE clause, so the check and
        the write are one atomic statement.
        """
        self._check_connected()

        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE waiters
                SET state = ?,
                    attempt_number = ?,
                    next_attempt_at = ?,
                    locked_by = ?,
                    updated_at = ?,
                    record = ?
                WHERE operation_id = ?
                  AND (? IS NULL OR attempt_number = ?)
                  AND (? IS NULL OR locked_by = ?)
                """,
                (
                    record.state.value,
                    record.attempt_number,
                    _to_millis(record.next_attempt_at),
                    record.locked_by,
                    _to_millis(record.updated_at),
                    pickle.dumps(record),
                    record.operation_id,
                    expected_attempt,
                    expected_attempt,
                    claimed_by,
                    claimed_by,
                ),
            )
            await self._connection.commit()

            if cursor.rowcount == 0:
                cursor = await self._connection.execute(
                    "SELECT 1 FROM waiters WHERE operation_id = ?", (record.operation_id,)
                )
                if await cursor.fetchone() is None:
                    raise WaiterNotFoundError(
                        f"Waiter not found: operation_id={record.operation_id}"
                    )
                return False

        self._timer_notify.set()
        self._timer_notify.clear()
        return True

    async def get_waiter(self, operation_id: str) -> WaiterRecord | None:
        self._check_connected()

        cursor = await self._connection.execute(
            """
            SELECT record, locked_by, updated_at
            FROM waiters
            WHERE operation_id = ?
            """,
            (operation_id,),
        )
        row = await cursor.fetchone()

        if row is None:
            return None
        return self._row_to_record(row)

    async def get_due_waiters(self, now: datetime, limit: int = 100) -> list[WaiterRecord]:
        self._check_connected()

        cursor = await self._connection.execute(
            """
            SELECT record, locked_by, updated_at
            FROM waiters
            WHERE state = ? AND locked_by IS NULL AND next_attempt_at <= ?
            ORDER BY next_attempt_at ASC
            LIMIT ?
            """,
            (WaiterState.POLLING.value, _to_millis(now), limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def claim_waiter(self, operation_id: str, worker_id: str) -> bool:
        """Claim a due waiter (optimistic concurrency).

        Only updates if the waiter is still POLLING, due and unclaimed, so
        concurrent workers cannot both win.
        """
        self._check_connected()

        now = _to_millis(datetime.now(UTC))

        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE waiters
                SET locked_by = ?, updated_at = ?
                WHERE operation_id = ? AND state = ? AND locked_by IS NULL
                  AND next_attempt_at <= ?
                """,
                (worker_id, now, operation_id, WaiterState.POLLING.value, now),
            )
            await self._connection.commit()

        return cursor.rowcount > 0

    async def release_stale_claims(self, older_than: timedelta) -> int:
        self._check_connected()

        cutoff = _to_millis(datetime.now(UTC) - older_than)

        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE waiters
                SET locked_by = NULL
                WHERE state = ? AND locked_by IS NOT NULL AND updated_at < ?
                """,
                (WaiterState.POLLING.value, cutoff),
            )
            await self._connection.commit()

        released = cursor.rowcount
        if released > 0:
            self._timer_notify.set()
            self._timer_notify.clear()
        return released

    async def get_next_wake_time(self) -> datetime | None:
        self._check_connected()

        cursor = await self._connection.execute(
            """
            SELECT MIN(next_attempt_at)
            FROM waiters
            WHERE state = ? AND locked_by IS NULL
            """,
            (WaiterState.POLLING.value,),
        )
        row = await cursor.fetchone()

        if row and row[0] is not None:
            return _from_millis(row[0])
        return None

    async def reset(self) -> None:
        self._check_connected()

        await self._connection.execute("DELETE FROM waiters")
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def timer_notify(self) -> asyncio.Event:
        """Return event set whenever the wake schedule changes."""
        return self._timer_notify

    def _check_connected(self) -> None:
        """Guard clause: Ensure connection is open."""
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")

    @staticmethod
    def _row_to_record(row: tuple) -> WaiterRecord:
        """Unpickle a record; the claim columns are authoritative.

        Row format: 0:record, 1:locked_by, 2:updated_at
        """
        try:
            record = pickle.loads(row[0])
        except Exception as e:
            raise StorageError(f"Failed to deserialize waiter record: {e}")

        return replace(record, locked_by=row[1], updated_at=_from_millis(row[2]))
