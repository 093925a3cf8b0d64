"""Operation request and the context passed to every step.

An OperationRequest identifies one orchestration instance. It is created
once per external trigger and never mutated; every step receives it inside
an immutable StepContext together with the identity accumulated so far.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from uuid_extensions import uuid7

from pyprovider.models.status import OperationKind

__all__ = ["OperationRequest", "StepContext"]


@dataclass(frozen=True)
class OperationRequest:
    """One request-to-completion run, identified by operation_id.

    Immutable: frozen=True prevents modification after creation. Property
    mappings are copied on construction so the caller's dicts can change
    without affecting a running orchestration.

    Example:
        request = OperationRequest.create(OperationKind.CREATE, {"BucketName": "logs"})
        request = OperationRequest.from_event(event)
    """

    operation_id: str
    """Caller-supplied identifier, stable across every attempt. Must be unique."""

    kind: OperationKind
    """Whether the operation creates, updates or deletes the external object."""

    properties: Mapping[str, Any] = field(default_factory=dict)
    """Desired properties, opaque to the orchestrator."""

    previous_properties: Mapping[str, Any] | None = None
    """Properties before the change (updates only)."""

    physical_resource_id: str | None = None
    """Existing identity of the external object (updates and deletes)."""

    resource_type: str | None = None
    """Informative type name of the external object."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", OperationKind.parse(self.kind))
        object.__setattr__(self, "properties", dict(self.properties))
        if self.previous_properties is not None:
            object.__setattr__(self, "previous_properties", dict(self.previous_properties))

    @classmethod
    def create(
        cls,
        kind: OperationKind | str,
        properties: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> OperationRequest:
        """Build a request with a freshly generated, time-ordered operation_id."""
        operation_id = kwargs.pop("operation_id", None) or str(uuid7())
        return cls(
            operation_id=operation_id,
            kind=kind,
            properties=properties or {},
            **kwargs,
        )

    @classmethod
    def from_event(cls, event: Mapping[str, Any]) -> OperationRequest:
        """
        Parse a provider lifecycle event.

        Recognized keys: RequestType, RequestId, ResourceProperties,
        OldResourceProperties, PhysicalResourceId, ResourceType.

        Raises:
            ValueError: If RequestType or RequestId is missing or unknown
        """
        if "RequestType" not in event:
            raise ValueError("event has no RequestType")
        if not event.get("RequestId"):
            raise ValueError("event has no RequestId")

        return cls(
            operation_id=str(event["RequestId"]),
            kind=OperationKind.parse(event["RequestType"]),
            properties=event.get("ResourceProperties") or {},
            previous_properties=event.get("OldResourceProperties"),
            physical_resource_id=event.get("PhysicalResourceId"),
            resource_type=event.get("ResourceType"),
        )

    def __repr__(self) -> str:
        """Readable representation for debugging."""
        return (
            f"OperationRequest(operation_id={self.operation_id!r}, kind={self.kind}, "
            f"physical_resource_id={self.physical_resource_id!r})"
        )


@dataclass(frozen=True)
class StepContext:
    """Immutable context handed to the initiation, check and timeout steps.

    Threads the request and the identity assigned by the initiation step
    through every call instead of relying on ambient lookup.
    """

    request: OperationRequest

    physical_resource_id: str | None = None
    """Identity assigned by the initiation step (None while initiating)."""

    attempt_number: int = 0
    """Current completion check (1-indexed); 0 outside of polling."""

    last_error: str | None = None
    """Message of the most recent failed completion check, if any."""

    role: str | None = None
    """Execution identity override configured for all steps."""

    @property
    def operation_id(self) -> str:
        return self.request.operation_id

    def with_attempt(self, attempt_number: int) -> StepContext:
        return replace(self, attempt_number=attempt_number)
