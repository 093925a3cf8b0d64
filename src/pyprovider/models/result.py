"""Values exchanged with the step functions and the notification channel."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pyprovider.models.status import ResultStatus

__all__ = ["CheckResult", "InitiateResult", "TerminalResult"]


@dataclass(frozen=True)
class InitiateResult:
    """What the initiation step reports back.

    All fields are optional: a step that returns None is equivalent to
    InitiateResult().
    """

    physical_resource_id: str | None = None
    """Identity of the external object, if the step assigned one."""

    data: Mapping[str, Any] = field(default_factory=dict)
    """Attributes known right away; merged into the final result data."""

    requires_wait: bool | None = None
    """Whether completion checks are needed. None means "if a check is configured"."""

    @classmethod
    def from_mapping(cls, value: Mapping[str, Any]) -> InitiateResult:
        """Accept snake_case or provider-style keys (PhysicalResourceId, Data)."""
        physical_id = value.get("physical_resource_id", value.get("PhysicalResourceId"))
        data = value.get("data", value.get("Data")) or {}
        requires_wait = value.get("requires_wait", value.get("RequiresWait"))
        return cls(
            physical_resource_id=str(physical_id) if physical_id is not None else None,
            data=dict(data),
            requires_wait=requires_wait,
        )


@dataclass(frozen=True)
class CheckResult:
    """What the completion check reports back."""

    is_complete: bool
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, value: Mapping[str, Any]) -> CheckResult:
        """Accept snake_case or provider-style keys (IsComplete, Data)."""
        is_complete = value.get("is_complete", value.get("IsComplete", False))
        data = value.get("data", value.get("Data")) or {}
        return cls(is_complete=bool(is_complete), data=dict(data))


@dataclass(frozen=True)
class TerminalResult:
    """Final output of one orchestration instance.

    Produced exactly once per OperationRequest. Ownership transfers to the
    notification channel.

    Example:
        result = TerminalResult.success("bucket-123", {"Arn": "..."})
        result.to_payload()
        # {"status": "Success", "physicalResourceId": "bucket-123", "data": {"Arn": "..."}}
    """

    status: ResultStatus
    physical_resource_id: str
    data: Mapping[str, Any] | None = None
    """Result attributes (success only)."""

    reason: str | None = None
    """Human-readable failure reason (failure only)."""

    @classmethod
    def success(
        cls, physical_resource_id: str, data: Mapping[str, Any] | None = None
    ) -> TerminalResult:
        return cls(
            status=ResultStatus.SUCCESS,
            physical_resource_id=physical_resource_id,
            data=dict(data or {}),
        )

    @classmethod
    def failed(cls, physical_resource_id: str, reason: str) -> TerminalResult:
        return cls(
            status=ResultStatus.FAILED,
            physical_resource_id=physical_resource_id,
            reason=reason,
        )

    @property
    def is_success(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    def to_payload(self) -> dict[str, Any]:
        """Render the fixed notification schema."""
        payload: dict[str, Any] = {
            "status": self.status.value,
            "physicalResourceId": self.physical_resource_id,
        }
        if self.is_success:
            payload["data"] = dict(self.data or {})
        else:
            payload["reason"] = self.reason or ""
        return payload

    def __str__(self) -> str:
        if self.is_success:
            return f"Success(physical_resource_id={self.physical_resource_id!r})"
        return f"Failed(physical_resource_id={self.physical_resource_id!r}, reason={self.reason!r})"
