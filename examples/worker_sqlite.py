"""
Durable waiters with SQLite and two workers.

This example demonstrates:
- Submitting requests whose waiters are persisted in SQLite
- Two workers sharing one store, each attempt claimed by exactly one worker
- Event-driven wake-ups when a waiter is created or rescheduled
- Graceful worker shutdown once every result has been delivered

Scenario:
- 4 cluster resize requests, each completes on its third status check
- 1 request that never completes and times out
- 2 workers resuming waiters as they fall due

## Run with:
```bash
PYTHONPATH=src python examples/worker_sqlite.py
```
"""

import asyncio
import logging
from collections import Counter
from datetime import timedelta

from pyprovider import (
    InMemoryNotificationChannel,
    OperationRequest,
    Orchestrator,
    ProviderConfig,
    Worker,
)
from pyprovider.storage import SqliteWaiterStore

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

status_checks = Counter()


def resize_cluster(ctx):
    cluster = ctx.request.properties["Cluster"]
    print(f"[{cluster}] resize requested")
    return {"physical_resource_id": cluster}


def resize_finished(ctx):
    cluster = ctx.physical_resource_id
    status_checks[cluster] += 1
    if ctx.request.properties.get("Stuck"):
        return False
    return status_checks[cluster] >= 3


async def main():
    """Submit five requests and let two workers drive them."""
    store = SqliteWaiterStore("data/waiters.db")
    await store.connect()
    await store.reset()

    config = ProviderConfig(
        on_event=resize_cluster,
        is_complete=resize_finished,
        total_timeout=timedelta(seconds=2),
        query_interval=timedelta(milliseconds=250),
    )
    channel = InMemoryNotificationChannel()
    orchestrator = Orchestrator(config, channel, store=store)

    requests = [
        OperationRequest.create("Update", {"Cluster": f"cluster-{n}", "Nodes": 3 + n})
        for n in range(4)
    ]
    requests.append(OperationRequest.create("Update", {"Cluster": "cluster-stuck", "Stuck": True}))
    for request in requests:
        await orchestrator.submit(request)
    logger.info(f"Submitted {len(requests)} requests")

    handles = [
        await Worker(store, orchestrator, f"worker-{n}").with_poll_interval(0.5).start()
        for n in range(2)
    ]

    try:
        for request in requests:
            result = await channel.wait_for(request.operation_id, timeout=10.0)
            print(f"{request.properties['Cluster']}: {result}")
    finally:
        for handle in handles:
            await handle.shutdown()
        await store.close()

    print(f"Status checks per cluster: {dict(status_checks)}")


if __name__ == "__main__":
    asyncio.run(main())
