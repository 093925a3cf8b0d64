"""Notification channels that receive terminal results.

The orchestrator hands every TerminalResult to exactly one channel call.
How the result is encoded downstream is the channel's concern; the payload
schema is TerminalResult.to_payload().
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from pyprovider.models import TerminalResult

__all__ = [
    "CallbackNotificationChannel",
    "InMemoryNotificationChannel",
    "NotificationChannel",
]


@runtime_checkable
class NotificationChannel(Protocol):
    """Receives the terminal result of each operation."""

    async def send(self, operation_id: str, result: TerminalResult) -> None:
        """Deliver `result` for `operation_id`. Called once per operation."""
        ...


class CallbackNotificationChannel:
    """Forward results to a sync or async callable.

    Usage:
        channel = CallbackNotificationChannel(lambda op_id, payload: print(op_id, payload))
    """

    def __init__(self, callback: Callable[[str, dict[str, Any]], Any | Awaitable[Any]]):
        self._callback = callback

    async def send(self, operation_id: str, result: TerminalResult) -> None:
        outcome = self._callback(operation_id, result.to_payload())
        if inspect.isawaitable(outcome):
            await outcome


class InMemoryNotificationChannel:
    """Collect results in memory, for tests and embedding.

    Usage:
        channel = InMemoryNotificationChannel()
        ...
        result = await channel.wait_for(operation_id, timeout=5.0)
    """

    def __init__(self):
        self._results: dict[str, TerminalResult] = {}
        self._history: list[tuple[str, TerminalResult]] = []
        self._condition = asyncio.Condition()

    def __repr__(self) -> str:
        return f"InMemoryNotificationChannel(results={len(self._history)})"

    async def send(self, operation_id: str, result: TerminalResult) -> None:
        async with self._condition:
            self._results[operation_id] = result
            self._history.append((operation_id, result))
            self._condition.notify_all()

    def get(self, operation_id: str) -> TerminalResult | None:
        return self._results.get(operation_id)

    @property
    def history(self) -> list[tuple[str, TerminalResult]]:
        """Every (operation_id, result) pair in delivery order."""
        return list(self._history)

    def count(self, operation_id: str) -> int:
        return sum(1 for op_id, _ in self._history if op_id == operation_id)

    async def wait_for(self, operation_id: str, timeout: float | None = None) -> TerminalResult:
        """Wait until a result for `operation_id` arrives.

        Raises:
            TimeoutError: If no result arrives within `timeout` seconds
        """
        async with self._condition:
            await asyncio.wait_for(
                self._condition.wait_for(lambda: operation_id in self._results),
                timeout=timeout,
            )
            return self._results[operation_id]
