"""Worker that resumes persisted waiters when their next attempt is due.

Workers sleep until the earliest next_attempt_at in the store, claim every
due waiter atomically and run one completion check per claim through
Orchestrator.resume(). Any number of workers can share one store; a claim
guarantees that each attempt runs on exactly one of them.

Features:
- Event-driven wake-ups (timer notifications) with polling fallback
- Non-blocking attempt execution
- Backpressure via max concurrent waiters
- Stale claim recovery for crashed workers
- Graceful shutdown
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from pyprovider.executor.orchestrator import Orchestrator
from pyprovider.storage.base import TimerNotificationSource, WaiterStore

logger = logging.getLogger(__name__)


class Worker:
    """Worker that polls a WaiterStore and resumes due waiters.

    Design Patterns:
    - Template Method: _run() defines fixed algorithm skeleton
    - Builder: with_poll_interval(), with_max_concurrent_waiters() for configuration

    Default configuration works out of the box, but customizable.

    Usage:
        store = SqliteWaiterStore("waiters.db")
        await store.connect()

        orchestrator = Orchestrator(config, notifications, store=store)
        worker = Worker(store, orchestrator, "worker-1") \\
            .with_poll_interval(0.5) \\
            .with_max_concurrent_waiters(50)

        handle = await worker.start()

        # ... let it run ...

        await handle.shutdown()
    """

    def __init__(self, store: WaiterStore, orchestrator: Orchestrator, worker_id: str):
        """Initialize worker.

        All dependencies passed explicitly, no globals.

        Args:
            store: Storage backend holding the waiters
            orchestrator: Orchestrator wired to the same store
            worker_id: Unique worker identifier, recorded as the claim owner

        Raises:
            WorkerError: If the orchestrator uses a different store
        """
        if orchestrator.store is not store:
            raise WorkerError(
                f"Worker {worker_id}: orchestrator must be wired to the same store "
                f"(worker={store!r}, orchestrator={orchestrator.store!r})"
            )

        self._store = store
        self._orchestrator = orchestrator
        self._worker_id = worker_id
        self._batch_size = 100
        self._claim_timeout = timedelta(minutes=5)
        self._stale_check_interval = 60.0

        self._poll_interval = 1.0
        self._poll_interval_with_jitter = self._jittered(self._poll_interval)

        self._shutdown_event = asyncio.Event()
        self._running = False

        # Keep references so in-flight attempts are not garbage collected
        self._background_tasks: set[asyncio.Task] = set()

        # Backpressure control: Optional semaphore for limiting concurrent attempts
        self._max_concurrent_waiters: asyncio.Semaphore | None = None

        self._supports_timer_notifications = isinstance(store, TimerNotificationSource)

        if self._supports_timer_notifications:
            self._timer_notify = store.timer_notify()
            logger.debug(f"Worker {worker_id}: Event-driven timer notifications enabled")
        else:
            self._timer_notify = None
            logger.debug(f"Worker {worker_id}: Polling-based wake-up (no notifications)")

    def _jittered(self, interval: float) -> float:
        # Spread workers sharing a store so they don't poll in lockstep
        worker_hash = sum(ord(c) for c in self._worker_id)
        jitter_ms = 1 + (worker_hash % 5)
        return interval + (jitter_ms / 1000.0)

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def with_poll_interval(self, interval: float) -> "Worker":
        """Configure polling interval (builder pattern).

        The poll is a fallback: stores with timer notifications wake the
        worker as soon as a waiter is scheduled. Default 1.0 second.

        Args:
            interval: Seconds between store polls

        Returns:
            self for method chaining
        """
        if interval <= 0:
            raise WorkerError(f"poll interval must be positive, got {interval}")
        self._poll_interval = interval
        self._poll_interval_with_jitter = self._jittered(interval)
        return self

    def with_max_concurrent_waiters(self, max_concurrent: int) -> "Worker":
        """Limit how many completion checks run concurrently (builder pattern).

        The permit is acquired BEFORE claiming, so a saturated worker leaves
        due waiters for other workers instead of hoarding claims.

        Example:
            worker = Worker(store, orchestrator, "worker-1").with_max_concurrent_waiters(100)

        Args:
            max_concurrent: Maximum number of checks in flight

        Returns:
            self for method chaining
        """
        if max_concurrent < 1:
            raise WorkerError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self._max_concurrent_waiters = asyncio.Semaphore(max_concurrent)
        return self

    def with_batch_size(self, batch_size: int) -> "Worker":
        """Set how many due waiters are fetched per wake-up (builder pattern).

        Returns:
            self for method chaining
        """
        if batch_size < 1:
            raise WorkerError(f"batch size must be at least 1, got {batch_size}")
        self._batch_size = batch_size
        return self

    def with_claim_timeout(self, timeout: timedelta | float) -> "Worker":
        """Release claims held longer than `timeout` (builder pattern).

        Claims of crashed workers are freed this way. A check that runs
        longer than `timeout` may see its waiter taken over; its result is
        then discarded by Orchestrator.resume(). Default 5 minutes.

        Returns:
            self for method chaining
        """
        if not isinstance(timeout, timedelta):
            timeout = timedelta(seconds=timeout)
        self._claim_timeout = timeout
        return self

    async def start(self) -> "WorkerHandle":
        """Start the worker main loop.

        Returns WorkerHandle immediately, letting caller decide
        whether to await or run concurrently.

        Raises:
            WorkerError: If the worker is already running
        """
        if self._running:
            raise WorkerError(f"Worker {self._worker_id} is already running")

        self._running = True
        self._shutdown_event.clear()
        task = asyncio.create_task(self._run())
        return WorkerHandle(self, task)

    async def _run(self) -> None:
        """Main worker loop using asyncio.wait with FIRST_COMPLETED.

        Concurrently waits on multiple event sources:
        1. Wake sleep (sleeps until the next waiter is due)
        2. Timer notification (wakes when a waiter is scheduled)
        3. Poll fallback (periodic)

        Whichever completes first is handled, then loop repeats. Stale claim
        recovery piggybacks on whichever wake-up comes after its interval.
        """
        logger.info(f"Worker {self._worker_id} started")

        loop = asyncio.get_running_loop()
        last_stale_check = loop.time()
        next_wake = await self._calculate_next_wake()

        try:
            while self._running and not self._shutdown_event.is_set():
                try:
                    pending_tasks = {
                        "shutdown": asyncio.create_task(self._shutdown_event.wait()),
                        "wake": asyncio.create_task(self._create_wake_sleep(next_wake)),
                        "poll": asyncio.create_task(
                            asyncio.sleep(self._poll_interval_with_jitter)
                        ),
                    }
                    if self._supports_timer_notifications:
                        pending_tasks["timer_notify"] = asyncio.create_task(
                            self._timer_notify.wait()
                        )

                    done, pending = await asyncio.wait(
                        pending_tasks.values(),
                        return_when=asyncio.FIRST_COMPLETED,
                    )

                    for task in pending:
                        task.cancel()
                        try:
                            await task
                        except asyncio.CancelledError:
                            pass

                    names = {name for name, task in pending_tasks.items() if task in done}

                    if "shutdown" in names:
                        logger.debug(f"Worker {self._worker_id}: Shutdown signal received")
                        break

                    if loop.time() - last_stale_check >= self._stale_check_interval:
                        last_stale_check = loop.time()
                        await self._recover_stale_claims()

                    if names & {"wake", "poll"}:
                        await self._process_due_waiters()

                    if "timer_notify" in names:
                        logger.debug(f"Worker {self._worker_id}: Timer notification received")

                    next_wake = await self._calculate_next_wake()

                except Exception as e:
                    logger.error(f"Worker {self._worker_id} error: {e}")

            logger.info(
                f"Worker {self._worker_id}: Exiting main loop "
                f"(running={self._running}, shutdown={self._shutdown_event.is_set()})"
            )
        finally:
            logger.info(f"Worker {self._worker_id} stopped")

    async def _create_wake_sleep(self, next_wake: datetime | None) -> None:
        """Sleep until the next waiter is due, or forever if none is scheduled."""
        if next_wake is None:
            # Cancelled when a notification or the poll fires
            await asyncio.sleep(float("inf"))
            return

        delay = (next_wake - datetime.now(UTC)).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)

    async def _calculate_next_wake(self) -> datetime | None:
        try:
            return await self._store.get_next_wake_time()
        except Exception as e:
            logger.warning(f"Worker {self._worker_id}: Failed to get next wake time: {e}")
            return None

    async def _process_due_waiters(self) -> int:
        """Claim every due waiter and start one check per claim.

        Returns:
            Number of waiters claimed by this worker
        """
        now = datetime.now(UTC)

        try:
            due = await self._store.get_due_waiters(now, limit=self._batch_size)
        except Exception as e:
            logger.error(f"Worker {self._worker_id}: Failed to fetch due waiters: {e}")
            return 0

        claimed = 0
        for record in due:
            permit = self._max_concurrent_waiters
            if permit is not None:
                await permit.acquire()

            try:
                won = await self._store.claim_waiter(record.operation_id, self._worker_id)
            except Exception as e:
                logger.warning(
                    f"Worker {self._worker_id}: Failed to claim {record.operation_id}: {e}"
                )
                won = False

            if not won:
                if permit is not None:
                    permit.release()
                logger.debug(
                    f"Waiter already claimed by another worker: operation={record.operation_id}"
                )
                continue

            claimed += 1
            task = asyncio.create_task(self._resume(record.operation_id, permit))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        if claimed:
            logger.debug(f"Worker {self._worker_id} claimed {claimed} due waiter(s)")
        return claimed

    async def _resume(self, operation_id: str, permit: asyncio.Semaphore | None) -> None:
        """Run one check for a claimed waiter.

        A failure leaves the claim in place; stale claim recovery hands the
        waiter to another worker later.
        """
        try:
            result = await self._orchestrator.resume(operation_id, self._worker_id)
            if result is not None:
                logger.info(
                    f"Worker {self._worker_id} finished waiter: "
                    f"operation={operation_id} result={result}"
                )
        except Exception as e:
            logger.error(f"Worker {self._worker_id}: Resume failed for {operation_id}: {e}")
        finally:
            if permit is not None:
                permit.release()

    async def _recover_stale_claims(self) -> None:
        try:
            count = await self._store.release_stale_claims(self._claim_timeout)
            if count > 0:
                logger.info(f"Worker {self._worker_id} recovered {count} stale claims")
        except Exception as e:
            logger.warning(f"Worker {self._worker_id} failed to recover stale claims: {e}")

    async def shutdown(self) -> None:
        """Gracefully shutdown the worker.

        Explicit shutdown, not relying on GC.
        Waits for in-flight checks to complete.
        """
        logger.info(f"Worker {self._worker_id} shutting down...")
        self._running = False
        self._shutdown_event.set()

        if self._background_tasks:
            logger.info(
                f"Worker {self._worker_id}: Waiting for {len(self._background_tasks)} "
                "in-flight checks to complete..."
            )
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
            logger.info(f"Worker {self._worker_id}: All in-flight checks completed")


class WorkerHandle:
    """Handle for controlling a running worker.

    Composition - handle HAS-A worker, not IS-A worker.

    Usage:
        handle = await worker.start()
        await handle.shutdown()
    """

    def __init__(self, worker: Worker, task: asyncio.Task):
        self._worker = worker
        self._task = task

    def worker_id(self) -> str:
        """Return the worker ID."""
        return self._worker.worker_id

    def is_running(self) -> bool:
        """Return True if the worker task is still running."""
        return not self._task.done()

    async def shutdown(self) -> None:
        """Shutdown worker and wait for completion.

        Triggers worker shutdown, then waits for the main task to complete.
        """
        await self._worker.shutdown()
        await self._task

        logger.info("Worker handle closed")

    def abort(self) -> None:
        """Abort the worker immediately without waiting for completion.

        Note: In-flight checks keep their claims until stale claim recovery
        releases them. Prefer shutdown() for normal termination.
        """
        self._worker._running = False
        self._task.cancel()


class WorkerError(Exception):
    """Worker operation failed.

    Custom exception with context for worker errors.
    """

    pass
