"""Tests for requests, outcomes, results and waiter records."""

from datetime import UTC, datetime, timedelta

import pytest

from pyprovider.models import (
    AttemptRecord,
    CheckResult,
    Errored,
    InitiateResult,
    IsComplete,
    NotYetComplete,
    OperationKind,
    OperationRequest,
    ResultStatus,
    RetryPolicy,
    StepContext,
    TerminalResult,
    WaiterRecord,
    WaiterState,
    calculate_retry_policy,
)


# ==============================================================================
# OperationKind / WaiterState
# ==============================================================================


@pytest.mark.parametrize("value", ["Create", "create", "CREATE", OperationKind.CREATE])
def test_operation_kind_parse_is_case_insensitive(value):
    assert OperationKind.parse(value) == OperationKind.CREATE


def test_operation_kind_parse_rejects_unknown():
    with pytest.raises(ValueError, match="Unknown operation kind"):
        OperationKind.parse("Replace")


def test_only_succeeded_and_timed_out_are_terminal():
    assert not WaiterState.POLLING.is_terminal
    assert WaiterState.SUCCEEDED.is_terminal
    assert WaiterState.TIMED_OUT.is_terminal


# ==============================================================================
# OperationRequest
# ==============================================================================


def test_request_copies_properties():
    properties = {"Size": 1}
    request = OperationRequest(operation_id="op-1", kind="Create", properties=properties)

    properties["Size"] = 2

    assert request.properties == {"Size": 1}
    assert request.kind == OperationKind.CREATE


def test_create_generates_unique_operation_ids():
    first = OperationRequest.create(OperationKind.CREATE)
    second = OperationRequest.create(OperationKind.CREATE)

    assert first.operation_id != second.operation_id


def test_create_accepts_explicit_operation_id():
    request = OperationRequest.create("Delete", operation_id="op-7", physical_resource_id="r-1")

    assert request.operation_id == "op-7"
    assert request.kind == OperationKind.DELETE
    assert request.physical_resource_id == "r-1"


def test_from_event_parses_provider_event():
    request = OperationRequest.from_event(
        {
            "RequestType": "Update",
            "RequestId": "req-42",
            "ResourceType": "Custom::Bucket",
            "PhysicalResourceId": "bucket-1",
            "ResourceProperties": {"Versioned": True},
            "OldResourceProperties": {"Versioned": False},
        }
    )

    assert request.operation_id == "req-42"
    assert request.kind == OperationKind.UPDATE
    assert request.physical_resource_id == "bucket-1"
    assert request.properties == {"Versioned": True}
    assert request.previous_properties == {"Versioned": False}
    assert request.resource_type == "Custom::Bucket"


@pytest.mark.parametrize(
    "event",
    [
        {"RequestId": "req-1"},
        {"RequestType": "Create"},
        {"RequestType": "Create", "RequestId": ""},
    ],
)
def test_from_event_requires_type_and_id(event):
    with pytest.raises(ValueError):
        OperationRequest.from_event(event)


def test_step_context_with_attempt_keeps_other_fields():
    request = OperationRequest.create("Create")
    ctx = StepContext(request=request, physical_resource_id="r-1", role="deployer")

    next_ctx = ctx.with_attempt(3)

    assert next_ctx.attempt_number == 3
    assert next_ctx.physical_resource_id == "r-1"
    assert next_ctx.role == "deployer"
    assert next_ctx.operation_id == request.operation_id
    assert ctx.attempt_number == 0


# ==============================================================================
# Outcomes and results
# ==============================================================================


def test_errored_message_falls_back_to_type_name():
    assert Errored(RuntimeError("boom")).message == "boom"
    assert Errored(RuntimeError()).message == "RuntimeError"


def test_attempt_record_is_complete():
    now = datetime.now(UTC)

    assert AttemptRecord(1, now, IsComplete({"a": 1})).is_complete
    assert not AttemptRecord(1, now, NotYetComplete()).is_complete
    assert not AttemptRecord(1, now, Errored(ValueError("x"))).is_complete


def test_outcomes_support_pattern_matching():
    def describe(outcome):
        match outcome:
            case IsComplete(data):
                return f"done {dict(data)}"
            case NotYetComplete():
                return "waiting"
            case Errored(cause):
                return f"failed {cause}"

    assert describe(IsComplete({"k": "v"})) == "done {'k': 'v'}"
    assert describe(NotYetComplete()) == "waiting"
    assert describe(Errored(ValueError("bad"))) == "failed bad"


def test_initiate_result_from_provider_style_mapping():
    result = InitiateResult.from_mapping({"PhysicalResourceId": 123, "Data": {"Arn": "a"}})

    assert result.physical_resource_id == "123"
    assert result.data == {"Arn": "a"}
    assert result.requires_wait is None


def test_check_result_from_mapping():
    assert CheckResult.from_mapping({"IsComplete": True, "Data": {"x": 1}}) == CheckResult(
        True, {"x": 1}
    )
    assert CheckResult.from_mapping({}) == CheckResult(False, {})


def test_success_payload():
    result = TerminalResult.success("bucket-1", {"Arn": "arn:bucket-1"})

    assert result.is_success
    assert result.to_payload() == {
        "status": "Success",
        "physicalResourceId": "bucket-1",
        "data": {"Arn": "arn:bucket-1"},
    }


def test_failed_payload():
    result = TerminalResult.failed("bucket-1", "quota exceeded")

    assert result.status == ResultStatus.FAILED
    assert result.to_payload() == {
        "status": "Failed",
        "physicalResourceId": "bucket-1",
        "reason": "quota exceeded",
    }
    assert "quota exceeded" in str(result)


# ==============================================================================
# WaiterRecord
# ==============================================================================


def make_record(**changes) -> WaiterRecord:
    now = datetime.now(UTC)
    defaults = dict(
        request=OperationRequest.create("Create"),
        policy=calculate_retry_policy(timedelta(seconds=15), timedelta(seconds=5)),
        physical_resource_id="r-1",
        next_attempt_at=now,
        created_at=now,
        updated_at=now,
    )
    defaults.update(changes)
    return WaiterRecord(**defaults)


def test_waiter_record_attempts_remaining():
    record = make_record(attempt_number=1)

    assert record.attempts_remaining == 2
    assert record.operation_id == record.request.operation_id


def test_waiter_record_is_due_only_while_polling():
    now = datetime.now(UTC)
    record = make_record(next_attempt_at=now - timedelta(seconds=1))

    assert record.is_due(now)
    assert not record.is_due(now - timedelta(seconds=2))
    assert not record.evolve(state=WaiterState.SUCCEEDED).is_due(now)


def test_waiter_record_evolve_refreshes_updated_at():
    past = datetime.now(UTC) - timedelta(hours=1)
    record = make_record(updated_at=past)

    evolved = record.evolve(attempt_number=1)

    assert evolved.attempt_number == 1
    assert evolved.updated_at > past
    assert record.attempt_number == 0


def test_default_policy_is_attached_to_records():
    record = make_record(policy=RetryPolicy.DEFAULT)

    assert record.attempts_remaining == 360
