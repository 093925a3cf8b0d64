"""
Pytest configuration and fixtures for pyprovider tests.

Provides reusable fixtures for storage backends, notification channels,
scripted steps and hypothesis strategies.
"""

import os
import shutil
import tempfile
from collections.abc import AsyncGenerator
from datetime import timedelta
from pathlib import Path
from uuid import uuid4

import pytest
from hypothesis import strategies as st

from pyprovider.executor import InMemoryNotificationChannel
from pyprovider.models import OperationKind, OperationRequest
from pyprovider.storage import InMemoryWaiterStore, SqliteWaiterStore


def pytest_sessionfinish(session, exitstatus):
    """Force cleanup after all tests complete to prevent CI hanging."""
    # In CI environments only, force exit to prevent hanging
    if os.getenv("CI") or os.getenv("GITHUB_ACTIONS"):
        os._exit(exitstatus)


@pytest.fixture
async def memory_store() -> AsyncGenerator[InMemoryWaiterStore, None]:
    """In-memory waiter store with automatic cleanup."""
    store = InMemoryWaiterStore()
    yield store
    await store.reset()


@pytest.fixture
async def sqlite_memory_store() -> AsyncGenerator[SqliteWaiterStore, None]:
    """SQLite in-memory waiter store with automatic cleanup."""
    store = SqliteWaiterStore(":memory:")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def temp_db_path():
    """Temporary database file path with automatic cleanup."""
    tmpdir = Path(tempfile.mkdtemp())
    db_path = tmpdir / "waiters.db"
    yield db_path
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
async def sqlite_file_store(temp_db_path: Path) -> AsyncGenerator[SqliteWaiterStore, None]:
    """SQLite file-based waiter store with automatic cleanup."""
    store = SqliteWaiterStore(str(temp_db_path))
    await store.connect()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sqlite", "redis"])
async def store(request):
    """Every WaiterStore backend. Redis runs only when REDIS_URL is set."""
    if request.param == "memory":
        backend = InMemoryWaiterStore()
    elif request.param == "sqlite":
        backend = SqliteWaiterStore(":memory:")
    else:
        redis_url = os.getenv("REDIS_URL")
        if not redis_url:
            pytest.skip("REDIS_URL not set")
        from pyprovider.storage import RedisWaiterStore

        backend = RedisWaiterStore(redis_url, key_prefix=f"pyprovider-test-{uuid4().hex[:8]}")

    await backend.connect()
    yield backend
    await backend.reset()
    await backend.close()


@pytest.fixture
def notifications() -> InMemoryNotificationChannel:
    """Notification channel that records every result."""
    return InMemoryNotificationChannel()


@pytest.fixture
def create_request() -> OperationRequest:
    """A CREATE request with a fresh operation_id."""
    return OperationRequest.create(OperationKind.CREATE, {"BucketName": "logs"})


class SleepRecorder:
    """Stand-in for asyncio.sleep that returns immediately."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def sleep() -> SleepRecorder:
    """Instant sleep that records requested delays."""
    return SleepRecorder()


class ScriptedStep:
    """Step that records every context and replays scripted results.

    Exceptions in the script are raised; once the script is exhausted the
    last entry repeats.
    """

    def __init__(self, *script):
        self.script = list(script) or [None]
        self.contexts = []

    @property
    def calls(self) -> int:
        return len(self.contexts)

    def __call__(self, ctx):
        self.contexts.append(ctx)
        index = min(len(self.contexts), len(self.script)) - 1
        value = self.script[index]
        if isinstance(value, Exception):
            raise value
        return value


class AsyncScriptedStep(ScriptedStep):
    """Async variant of ScriptedStep."""

    async def __call__(self, ctx):
        return super().__call__(ctx)


@pytest.fixture
def scripted():
    """Factory for sync scripted steps."""
    return ScriptedStep


@pytest.fixture
def async_scripted():
    """Factory for async scripted steps."""
    return AsyncScriptedStep


# Hypothesis strategies for property-based testing


@st.composite
def schedule_strategy(draw):
    """Strategy for (total_timeout, query_interval, max_attempts) triples that divide evenly."""
    interval_ms = draw(st.integers(min_value=1, max_value=600_000))
    attempts = draw(st.integers(min_value=1, max_value=2_000))
    interval = timedelta(milliseconds=interval_ms)
    return interval * attempts, interval, attempts


property_values = st.dictionaries(
    keys=st.text(min_size=1, max_size=20),
    values=st.one_of(st.integers(), st.text(max_size=20), st.booleans()),
    max_size=5,
)
