"""Status enumerations for operation orchestration.

Defines the kind of operation being orchestrated, the lifecycle of the
completion waiter, and the final outcome reported to the caller.
"""

from enum import Enum


class OperationKind(Enum):
    """Kind of operation requested by the caller."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"

    @classmethod
    def parse(cls, value: "str | OperationKind") -> "OperationKind":
        """Parse a request type case-insensitively ('create', 'Create', ...)."""
        if isinstance(value, OperationKind):
            return value
        for kind in cls:
            if kind.value.lower() == str(value).lower():
                return kind
        raise ValueError(f"Unknown operation kind: {value!r}")

    def __str__(self) -> str:
        return self.value


class WaiterState(Enum):
    """State of the completion waiter.

    Lifecycle:
        POLLING → SUCCEEDED
        POLLING → TIMED_OUT

    Design: Two Terminal States, One Result Type
        Both terminal states collapse into a TerminalResult; the caller only
        sees success or failure with a reason.
    """

    POLLING = "POLLING"
    """Waiting for the next completion check."""

    SUCCEEDED = "SUCCEEDED"
    """A completion check reported the operation as complete."""

    TIMED_OUT = "TIMED_OUT"
    """Every scheduled completion check ran without completing."""

    @property
    def is_terminal(self) -> bool:
        """Check if this state is terminal (no more attempts)."""
        return self in (WaiterState.SUCCEEDED, WaiterState.TIMED_OUT)

    def __str__(self) -> str:
        return self.value


class ResultStatus(Enum):
    """Final status handed to the notification channel."""

    SUCCESS = "Success"
    FAILED = "Failed"

    def __str__(self) -> str:
        return self.value
