"""Storage backends for resumable waiters.

Provides multiple storage implementations behind a common interface:
    - WaiterStore: Abstract interface
    - SqliteWaiterStore: SQLite-backed storage
    - RedisWaiterStore: Redis-backed distributed storage
    - InMemoryWaiterStore: In-memory storage for testing

Design: Adapter Pattern + Dependency Inversion (SOLID)
    All storage implementations adapt to the WaiterStore interface.
    Clients depend on abstraction, not concrete implementations,
    enabling easy swapping between storage backends.
"""

from pyprovider.storage.base import (
    DuplicateOperationError,
    StorageError,
    TimerNotificationSource,
    WaiterNotFoundError,
    WaiterStore,
)
from pyprovider.storage.memory import InMemoryWaiterStore

# Backends with optional drivers are imported on first use


def __getattr__(name: str):
    """Lazy import storage implementations that need a database driver."""
    if name == "RedisWaiterStore":
        from pyprovider.storage.redis import RedisWaiterStore

        return RedisWaiterStore
    elif name == "SqliteWaiterStore":
        from pyprovider.storage.sqlite import SqliteWaiterStore

        return SqliteWaiterStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "DuplicateOperationError",
    "StorageError",
    "TimerNotificationSource",
    "WaiterNotFoundError",
    "WaiterStore",
    "InMemoryWaiterStore",
    "SqliteWaiterStore",
    "RedisWaiterStore",
]
