"""Redis-based waiter store implementation.

Provides a Redis backend so waiters can be resumed by workers running on
completely separate machines.

Data Structures:
- {prefix}:waiter:{operation_id} (HASH): pickled record plus state, claim
  and schedule fields
- {prefix}:waiters:due (ZSET): unclaimed POLLING waiters (score = next attempt, ms)
- {prefix}:waiters:claimed (ZSET): claimed waiters (score = claim time, ms)

Key Features:
- Atomic operations: Lua scripts keep the hash and both indexes consistent
- Network-accessible: True distributed execution across machines
- Connection pooling: redis-py connection pool for concurrent access

Design: Adapter Pattern
Implements WaiterStore for Redis, adapting the Redis key-value store to the
WaiterStore interface.
"""

from __future__ import annotations

import asyncio
import pickle
from dataclasses import replace
from datetime import UTC, datetime, timedelta

try:
    import redis.asyncio as redis
except ImportError:
    raise ImportError("redis-py is required for RedisWaiterStore. Install with: pip install redis")

from pyprovider.models import WaiterRecord, WaiterState
from pyprovider.storage.base import (
    DuplicateOperationError,
    StorageError,
    WaiterNotFoundError,
    WaiterStore,
)

# KEYS: waiter hash, due zset, claimed zset
# ARGV: record, state, next_attempt_at, operation_id, locked_by, updated_at, mode,
#       attempt_number, expected_attempt, claimed_by
# Returns 1 if written, 0 if the key does (create) or does not (save) exist,
# -1 if a save guard did not match
_WRITE_SCRIPT = """
local exists = redis.call('EXISTS', KEYS[1])
if ARGV[7] == 'create' and exists == 1 then
    return 0
end
if ARGV[7] == 'save' and exists == 0 then
    return 0
end
if ARGV[9] ~= '' and redis.call('HGET', KEYS[1], 'attempt_number') ~= ARGV[9] then
    return -1
end
if ARGV[10] ~= '' and redis.call('HGET', KEYS[1], 'locked_by') ~= ARGV[10] then
    return -1
end

redis.call('HSET', KEYS[1],
    'record', ARGV[1],
    'state', ARGV[2],
    'next_attempt_at', ARGV[3],
    'updated_at', ARGV[6],
    'attempt_number', ARGV[8])

if ARGV[5] == '' then
    redis.call('HDEL', KEYS[1], 'locked_by')
    redis.call('ZREM', KEYS[3], ARGV[4])
    if ARGV[2] == 'POLLING' then
        redis.call('ZADD', KEYS[2], ARGV[3], ARGV[4])
    else
        redis.call('ZREM', KEYS[2], ARGV[4])
    end
else
    redis.call('HSET', KEYS[1], 'locked_by', ARGV[5])
    redis.call('ZREM', KEYS[2], ARGV[4])
    redis.call('ZADD', KEYS[3], ARGV[6], ARGV[4])
end
return 1
"""

# KEYS: waiter hash, due zset, claimed zset
# ARGV: worker_id, now, operation_id
_CLAIM_SCRIPT = """
local state = redis.call('HGET', KEYS[1], 'state')
local locked = redis.call('HEXISTS', KEYS[1], 'locked_by')
local due_at = tonumber(redis.call('HGET', KEYS[1], 'next_attempt_at'))

if state == 'POLLING' and locked == 0 and due_at and due_at <= tonumber(ARGV[2]) then
    redis.call('HSET', KEYS[1], 'locked_by', ARGV[1], 'updated_at', ARGV[2])
    redis.call('ZREM', KEYS[2], ARGV[3])
    redis.call('ZADD', KEYS[3], ARGV[2], ARGV[3])
    return 1
else
    return 0
end
"""

# KEYS: waiter hash, due zset, claimed zset
# ARGV: operation_id, cutoff
_RELEASE_SCRIPT = """
local claimed_at = redis.call('ZSCORE', KEYS[3], ARGV[1])
if not claimed_at or tonumber(claimed_at) >= tonumber(ARGV[2]) then
    return 0
end

redis.call('ZREM', KEYS[3], ARGV[1])
redis.call('HDEL', KEYS[1], 'locked_by')
if redis.call('HGET', KEYS[1], 'state') == 'POLLING' then
    redis.call('ZADD', KEYS[2], redis.call('HGET', KEYS[1], 'next_attempt_at'), ARGV[1])
end
return 1
"""


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


class RedisWaiterStore(WaiterStore):
    """Redis waiter store using connection pooling.

    Design: Adapter Pattern
    Adapts Redis key-value store to the WaiterStore interface.

    Usage:
        store = RedisWaiterStore("redis://localhost:6379")
        await store.connect()

        await store.create_waiter(record)
        claimed = await store.claim_waiter(record.operation_id, "worker-1")
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        max_connections: int = 16,
        key_prefix: str = "pyprovider",
    ):
        """Initialize Redis waiter store.

        Default redis_url works for local development.

        Args:
            redis_url: Redis connection URL
            max_connections: Maximum pool size
            key_prefix: Namespace for every key this store writes
        """
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._prefix = key_prefix
        self._redis: redis.Redis | None = None

        self._timer_notify = asyncio.Event()

    def __repr__(self) -> str:
        return f"RedisWaiterStore({self._redis_url}, prefix={self._prefix})"

    async def connect(self) -> None:
        """Establish Redis connection pool."""
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=False,  # Records are pickled bytes
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> None:
        """Ensure connection established.

        Raises immediately if not connected.
        """
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")

    def _waiter_key(self, operation_id: str) -> str:
        return f"{self._prefix}:waiter:{operation_id}"

    @property
    def _due_key(self) -> str:
        return f"{self._prefix}:waiters:due"

    @property
    def _claimed_key(self) -> str:
        return f"{self._prefix}:waiters:claimed"

    def _keys(self, operation_id: str) -> tuple[str, str, str]:
        return self._waiter_key(operation_id), self._due_key, self._claimed_key

    async def _write(
        self,
        record: WaiterRecord,
        mode: str,
        expected_attempt: int | None = None,
        claimed_by: str | None = None,
    ) -> int:
        return await self._redis.eval(
            _WRITE_SCRIPT,
            3,
            *self._keys(record.operation_id),
            pickle.dumps(record),
            record.state.value,
            _to_millis(record.next_attempt_at),
            record.operation_id,
            record.locked_by or "",
            _to_millis(record.updated_at),
            mode,
            record.attempt_number,
            "" if expected_attempt is None else expected_attempt,
            claimed_by or "",
        )

    async def create_waiter(self, record: WaiterRecord) -> None:
        self._check_connected()

        if await self._write(record, "create") != 1:
            raise DuplicateOperationError(
                f"Waiter already exists: operation_id={record.operation_id}"
            )

        self._timer_notify.set()
        self._timer_notify.clear()

    async def save_waiter(
        self,
        record: WaiterRecord,
        expected_attempt: int | None = None,
        claimed_by: str | None = None,
    ) -> bool:
        self._check_connected()

        written = await self._write(record, "save", expected_attempt, claimed_by)
        if written == 0:
            raise WaiterNotFoundError(f"Waiter not found: operation_id={record.operation_id}")
        if written == -1:
            return False

        self._timer_notify.set()
        self._timer_notify.clear()
        return True

    async def get_waiter(self, operation_id: str) -> WaiterRecord | None:
        self._check_connected()

        blob, locked_by, updated_at = await self._redis.hmget(
            self._waiter_key(operation_id), "record", "locked_by", "updated_at"
        )
        if blob is None:
            return None

        try:
            record = pickle.loads(blob)
        except Exception as e:
            raise StorageError(f"Failed to deserialize waiter record: {e}")

        # The claim fields are authoritative over the pickled snapshot
        return replace(
            record,
            locked_by=locked_by.decode() if locked_by else None,
            updated_at=_from_millis(int(updated_at)) if updated_at else record.updated_at,
        )

    async def get_due_waiters(self, now: datetime, limit: int = 100) -> list[WaiterRecord]:
        self._check_connected()

        members = await self._redis.zrangebyscore(
            self._due_key, 0, _to_millis(now), start=0, num=limit
        )

        due = []
        for member in members:
            record = await self.get_waiter(member.decode())
            if record is not None and record.locked_by is None and record.is_due(now):
                due.append(record)
        return due

    async def claim_waiter(self, operation_id: str, worker_id: str) -> bool:
        """Atomically claim a waiter.

        Uses Lua script for atomic check-and-update.
        Ensures only one worker claims each waiter.
        """
        self._check_connected()

        claimed = await self._redis.eval(
            _CLAIM_SCRIPT,
            3,
            *self._keys(operation_id),
            worker_id,
            _to_millis(datetime.now(UTC)),
            operation_id,
        )
        return claimed == 1

    async def release_stale_claims(self, older_than: timedelta) -> int:
        self._check_connected()

        cutoff = _to_millis(datetime.now(UTC) - older_than)
        stale = await self._redis.zrangebyscore(self._claimed_key, 0, f"({cutoff}")

        released = 0
        for member in stale:
            operation_id = member.decode()
            released += await self._redis.eval(
                _RELEASE_SCRIPT, 3, *self._keys(operation_id), operation_id, cutoff
            )

        if released:
            self._timer_notify.set()
            self._timer_notify.clear()
        return released

    async def get_next_wake_time(self) -> datetime | None:
        """Get the next attempt time from the due sorted set.

        Returns:
            Timestamp of the earliest due attempt, or None if nothing is waiting
        """
        self._check_connected()

        result = await self._redis.zrange(self._due_key, 0, 0, withscores=True)

        if result:
            _, timestamp_ms = result[0]
            return _from_millis(timestamp_ms)

        return None

    async def reset(self) -> None:
        """Reset all data under this store's prefix.

        Only deletes {prefix}:* keys, doesn't affect other Redis data.
        """
        self._check_connected()

        keys = []
        async for key in self._redis.scan_iter(match=f"{self._prefix}:*"):
            keys.append(key)

        if keys:
            await self._redis.delete(*keys)

    def timer_notify(self) -> asyncio.Event:
        """Return event set whenever the wake schedule changes."""
        return self._timer_notify
