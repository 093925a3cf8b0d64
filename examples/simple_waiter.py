"""
Simple Waiter Example - In-Process

This example starts a fake export job and polls it until it finishes.

## Pattern Shown: Initiate, Poll, Notify

This variant shows how to:
- Return a physical resource id from the initiation step
- Report progress from the completion check with CheckResult
- Receive exactly one terminal result on a notification channel

## Run with:
```bash
PYTHONPATH=src python examples/simple_waiter.py
```
"""

import asyncio
import logging
from datetime import timedelta
from uuid import uuid4

from pyprovider import (
    CheckResult,
    InMemoryNotificationChannel,
    LogLevel,
    LogOptions,
    OperationRequest,
    Orchestrator,
    ProviderConfig,
)

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


class FakeExportService:
    """Export jobs that finish after a fixed number of status checks."""

    def __init__(self, checks_until_done: int):
        self.checks_until_done = checks_until_done
        self.jobs: dict[str, int] = {}

    async def start(self, table: str) -> str:
        job_id = f"export-{table}-{uuid4().hex[:6]}"
        self.jobs[job_id] = 0
        print(f"Started {job_id}")
        return job_id

    async def describe(self, job_id: str) -> bool:
        self.jobs[job_id] += 1
        print(f"{job_id} status check {self.jobs[job_id]}")
        return self.jobs[job_id] >= self.checks_until_done


exports = FakeExportService(checks_until_done=3)


async def start_export(ctx):
    job_id = await exports.start(ctx.request.properties["Table"])
    return {"physical_resource_id": job_id, "data": {"Table": ctx.request.properties["Table"]}}


async def export_finished(ctx):
    done = await exports.describe(ctx.physical_resource_id)
    return CheckResult(done, {"Location": f"s3://exports/{ctx.physical_resource_id}"})


async def main():
    """Run one export to completion."""
    config = ProviderConfig(
        on_event=start_export,
        is_complete=export_finished,
        total_timeout=timedelta(seconds=5),
        query_interval=timedelta(milliseconds=500),
        log_options=LogOptions(level=LogLevel.ALL),
    )
    channel = InMemoryNotificationChannel()
    orchestrator = Orchestrator(config, channel)

    result = await orchestrator.start(OperationRequest.create("Create", {"Table": "orders"}))

    print(f"Result: {result}")
    print(f"Payload: {result.to_payload()}")


if __name__ == "__main__":
    asyncio.run(main())
