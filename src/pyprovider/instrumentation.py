"""Structured execution events for the three orchestration steps.

Every Initiate, CheckComplete and OnTimeout call produces one
ExecutionEvent. ExecutionLogger decides, from LogOptions, whether the event
reaches the standard logging module and how much detail it carries.

Levels (from most to least verbose):
    ALL    every step call
    ERROR  failed checks, timeouts and fatal failures (default)
    FATAL  only failures that end the operation
    OFF    nothing
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, cast

__all__ = [
    "EventSeverity",
    "ExecutionEvent",
    "ExecutionLogger",
    "LogLevel",
    "LogOptions",
]

EXECUTION_LOGGER_NAME = "pyprovider.executions"


class EventSeverity(Enum):
    """How important a single execution event is."""

    INFO = logging.INFO
    ERROR = logging.ERROR
    FATAL = logging.CRITICAL


class LogLevel(Enum):
    """Minimum severity of execution events that get logged."""

    ALL = "ALL"
    ERROR = "ERROR"
    FATAL = "FATAL"
    OFF = "OFF"

    def admits(self, severity: EventSeverity) -> bool:
        """Check if an event of `severity` passes this level."""
        if self == LogLevel.OFF:
            return False
        if self == LogLevel.ALL:
            return True
        if self == LogLevel.ERROR:
            return severity in (EventSeverity.ERROR, EventSeverity.FATAL)
        return severity == EventSeverity.FATAL

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class LogOptions:
    """What the execution logger emits.

    Example:
        # Full execution tracing
        LogOptions(level=LogLevel.ALL, include_execution_data=True)
    """

    level: LogLevel = LogLevel.ERROR
    include_execution_data: bool = False
    """Attach request properties and result data to every record."""

    def __post_init__(self) -> None:
        if not isinstance(self.level, LogLevel):
            object.__setattr__(self, "level", LogLevel(str(self.level).upper()))

    if TYPE_CHECKING:
        OFF: LogOptions
    else:
        OFF = cast("LogOptions", None)


LogOptions.OFF = LogOptions(level=LogLevel.OFF)


@dataclass(frozen=True)
class ExecutionEvent:
    """One step call, as reported to the logging collaborator."""

    step: str
    """One of initiate, check_complete or on_timeout."""

    operation_id: str
    outcome: str
    severity: EventSeverity
    started_at: datetime
    finished_at: datetime
    attempt_number: int = 0
    max_attempts: int | None = None
    physical_resource_id: str | None = None
    error: str | None = None
    properties: Mapping[str, Any] | None = None
    data: Mapping[str, Any] | None = None

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self, include_execution_data: bool = False) -> dict[str, Any]:
        """Flatten into a JSON-friendly dict for `extra=`."""
        record: dict[str, Any] = {
            "step": self.step,
            "operation_id": self.operation_id,
            "outcome": self.outcome,
            "attempt_number": self.attempt_number,
            "max_attempts": self.max_attempts,
            "physical_resource_id": self.physical_resource_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": round(self.duration_ms, 3),
        }
        if self.error is not None:
            record["error"] = self.error
        if include_execution_data:
            record["properties"] = dict(self.properties or {})
            record["data"] = dict(self.data or {})
        return record


@dataclass
class ExecutionLogger:
    """Gate execution events by LogOptions and forward them to `logging`.

    Usage:
        execution_log = ExecutionLogger(LogOptions(level=LogLevel.ALL))
        execution_log.emit(event)
    """

    options: LogOptions = field(default_factory=LogOptions)
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger(EXECUTION_LOGGER_NAME)
    )

    @property
    def enabled(self) -> bool:
        return self.options.level != LogLevel.OFF

    def emit(self, event: ExecutionEvent) -> bool:
        """Log `event` if the configured level admits it.

        Returns:
            True if a record was written
        """
        if not self.options.level.admits(event.severity):
            return False

        attempt = ""
        if event.attempt_number:
            attempt = f" attempt={event.attempt_number}"
            if event.max_attempts is not None:
                attempt += f"/{event.max_attempts}"

        message = (
            f"{event.step} operation={event.operation_id}{attempt} "
            f"outcome={event.outcome} duration_ms={event.duration_ms:.1f}"
        )
        if event.error is not None:
            message += f" error={event.error}"
        if self.options.include_execution_data:
            message += f" properties={dict(event.properties or {})} data={dict(event.data or {})}"

        self.logger.log(
            event.severity.value,
            message,
            extra={"execution_event": event.to_dict(self.options.include_execution_data)},
        )
        return True
