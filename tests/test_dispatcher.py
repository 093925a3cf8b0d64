"""Tests for step dispatch: context building, result normalization, error contract."""

from datetime import timedelta

import pytest

from pyprovider.config import ProviderConfig
from pyprovider.executor.dispatcher import (
    AttemptError,
    EventDispatcher,
    InitiationError,
    TimeoutHandlerError,
    default_on_timeout,
)
from pyprovider.executor.waiter import WaiterStateMachine
from pyprovider.models import (
    CheckResult,
    Errored,
    InitiateResult,
    IsComplete,
    NotYetComplete,
    OperationKind,
    OperationRequest,
    ResultStatus,
    TerminalResult,
)


def make_config(on_event=None, is_complete=None, **kwargs) -> ProviderConfig:
    return ProviderConfig(
        on_event=on_event or (lambda ctx: None),
        is_complete=is_complete,
        **kwargs,
    )


def waiting_record(config: ProviderConfig, request=None, physical_id="r-1", **changes):
    request = request or OperationRequest.create(OperationKind.CREATE)
    record = WaiterStateMachine(config.retry_policy).begin(request, physical_id)
    return record.evolve(**changes) if changes else record


# ==============================================================================
# Initiate
# ==============================================================================


@pytest.mark.asyncio
async def test_create_without_id_uses_operation_id():
    dispatcher = EventDispatcher(make_config())
    request = OperationRequest.create(OperationKind.CREATE)

    result = await dispatcher.initiate(request)

    assert result.physical_resource_id == request.operation_id
    assert result.requires_wait is False


@pytest.mark.asyncio
async def test_update_without_id_keeps_existing_id():
    dispatcher = EventDispatcher(make_config())
    request = OperationRequest.create(OperationKind.UPDATE, physical_resource_id="bucket-1")

    result = await dispatcher.initiate(request)

    assert result.physical_resource_id == "bucket-1"


@pytest.mark.asyncio
async def test_update_may_replace_id():
    dispatcher = EventDispatcher(
        make_config(on_event=lambda ctx: {"PhysicalResourceId": "bucket-2"})
    )
    request = OperationRequest.create(OperationKind.UPDATE, physical_resource_id="bucket-1")

    result = await dispatcher.initiate(request)

    assert result.physical_resource_id == "bucket-2"


@pytest.mark.asyncio
async def test_delete_cannot_change_id():
    dispatcher = EventDispatcher(
        make_config(on_event=lambda ctx: InitiateResult(physical_resource_id="B"))
    )
    request = OperationRequest.create(OperationKind.DELETE, physical_resource_id="A")

    with pytest.raises(InitiationError) as exc_info:
        await dispatcher.initiate(request)

    assert str(exc_info.value) == (
        'DELETE: cannot change the physical resource ID from "A" to "B" during deletion'
    )


@pytest.mark.asyncio
async def test_delete_returning_same_id_is_accepted():
    dispatcher = EventDispatcher(
        make_config(on_event=lambda ctx: InitiateResult(physical_resource_id="A"))
    )
    request = OperationRequest.create(OperationKind.DELETE, physical_resource_id="A")

    result = await dispatcher.initiate(request)

    assert result.physical_resource_id == "A"


@pytest.mark.asyncio
async def test_waiting_defaults_to_configured_check(scripted):
    dispatcher = EventDispatcher(make_config(is_complete=scripted(True)))

    result = await dispatcher.initiate(OperationRequest.create(OperationKind.CREATE))

    assert result.requires_wait is True


@pytest.mark.asyncio
async def test_step_can_skip_waiting(scripted):
    dispatcher = EventDispatcher(
        make_config(on_event=lambda ctx: {"requires_wait": False}, is_complete=scripted(True))
    )

    result = await dispatcher.initiate(OperationRequest.create(OperationKind.CREATE))

    assert result.requires_wait is False


@pytest.mark.asyncio
async def test_waiting_without_check_is_rejected():
    dispatcher = EventDispatcher(make_config(on_event=lambda ctx: {"requires_wait": True}))

    with pytest.raises(InitiationError, match="no is_complete step"):
        await dispatcher.initiate(OperationRequest.create(OperationKind.CREATE))


@pytest.mark.asyncio
async def test_initiate_error_is_wrapped(scripted):
    dispatcher = EventDispatcher(make_config(on_event=scripted(PermissionError("access denied"))))

    with pytest.raises(InitiationError, match="access denied") as exc_info:
        await dispatcher.initiate(OperationRequest.create(OperationKind.CREATE))

    assert isinstance(exc_info.value.__cause__, PermissionError)


@pytest.mark.asyncio
async def test_initiate_rejects_unusable_return_value():
    dispatcher = EventDispatcher(make_config(on_event=lambda ctx: 42))

    with pytest.raises(InitiationError, match="got int"):
        await dispatcher.initiate(OperationRequest.create(OperationKind.CREATE))


@pytest.mark.asyncio
async def test_async_initiate_step_receives_context(async_scripted):
    step = async_scripted({"Data": {"Arn": "arn:1"}})
    dispatcher = EventDispatcher(make_config(on_event=step, role="deployer"))
    request = OperationRequest.create(OperationKind.CREATE, {"Name": "x"})

    result = await dispatcher.initiate(request)

    assert result.data == {"Arn": "arn:1"}
    assert step.calls == 1
    ctx = step.contexts[0]
    assert ctx.request is request
    assert ctx.role == "deployer"
    assert ctx.attempt_number == 0


# ==============================================================================
# CheckComplete
# ==============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "returned, expected",
    [
        (True, IsComplete()),
        (False, NotYetComplete()),
        (None, NotYetComplete()),
        (CheckResult(True, {"k": 1}), IsComplete({"k": 1})),
        (CheckResult(False), NotYetComplete()),
        ({"IsComplete": True, "Data": {"k": 2}}, IsComplete({"k": 2})),
        ({"is_complete": False}, NotYetComplete()),
        (IsComplete({"k": 3}), IsComplete({"k": 3})),
    ],
)
async def test_check_results_are_normalized(scripted, returned, expected):
    config = make_config(is_complete=scripted(returned))
    dispatcher = EventDispatcher(config)

    attempt = await dispatcher.check_complete(waiting_record(config))

    assert attempt.attempt_number == 1
    assert attempt.outcome == expected


@pytest.mark.asyncio
async def test_check_error_becomes_errored(scripted):
    config = make_config(is_complete=scripted(TimeoutError("describe timed out")))
    dispatcher = EventDispatcher(config)

    attempt = await dispatcher.check_complete(waiting_record(config))

    assert isinstance(attempt.outcome, Errored)
    assert isinstance(attempt.outcome.cause, AttemptError)
    assert attempt.outcome.cause.attempt_number == 1
    assert isinstance(attempt.outcome.cause.cause, TimeoutError)
    assert attempt.outcome.message == "describe timed out"


@pytest.mark.asyncio
async def test_check_unusable_return_value_becomes_errored(scripted):
    config = make_config(is_complete=scripted("done"))
    dispatcher = EventDispatcher(config)

    attempt = await dispatcher.check_complete(waiting_record(config))

    assert isinstance(attempt.outcome, Errored)
    assert "got str" in attempt.outcome.message


@pytest.mark.asyncio
async def test_check_context_carries_attempt_and_last_error(async_scripted):
    step = async_scripted(False)
    config = make_config(is_complete=step, role="reader")
    dispatcher = EventDispatcher(config)
    record = waiting_record(config, physical_id="db-1", attempt_number=4, last_error="throttled")

    attempt = await dispatcher.check_complete(record)

    assert attempt.attempt_number == 5
    ctx = step.contexts[0]
    assert ctx.attempt_number == 5
    assert ctx.last_error == "throttled"
    assert ctx.physical_resource_id == "db-1"
    assert ctx.role == "reader"


# ==============================================================================
# OnTimeout
# ==============================================================================


def timed_out_config(on_timeout=None):
    return make_config(
        is_complete=lambda ctx: False,
        on_timeout=on_timeout,
        total_timeout=timedelta(seconds=3),
        query_interval=timedelta(seconds=1),
    )


@pytest.mark.asyncio
async def test_default_timeout_reason_reports_last_error():
    config = timed_out_config()
    dispatcher = EventDispatcher(config)
    record = waiting_record(config, attempt_number=3, last_error="boom")

    result = await dispatcher.on_timeout(record)

    assert result.status == ResultStatus.FAILED
    assert result.physical_resource_id == "r-1"
    assert result.reason == "Operation timed out after 3 attempt(s): boom"


def test_default_timeout_reason_without_error():
    config = timed_out_config()
    ctx = EventDispatcher(config).context_for(
        OperationRequest.create("Create"), "r-1", attempt_number=3
    )

    assert default_on_timeout(ctx) == "Operation timed out after 3 attempt(s)"


@pytest.mark.asyncio
async def test_timeout_step_reason_string(scripted):
    step = scripted("export never finished")
    config = timed_out_config(step)
    dispatcher = EventDispatcher(config)

    result = await dispatcher.on_timeout(waiting_record(config, attempt_number=3))

    assert result.reason == "export never finished"
    assert step.calls == 1
    assert step.contexts[0].attempt_number == 3


@pytest.mark.asyncio
async def test_timeout_step_result_is_forced_to_failed(scripted):
    config = timed_out_config(scripted(TerminalResult.success("other-id", {"x": 1})))
    dispatcher = EventDispatcher(config)

    result = await dispatcher.on_timeout(waiting_record(config, attempt_number=3))

    assert result.status == ResultStatus.FAILED
    assert result.physical_resource_id == "other-id"
    assert result.reason.startswith("Operation timed out after 3 attempt(s)")


@pytest.mark.asyncio
async def test_timeout_step_error_is_fatal(scripted):
    config = timed_out_config(scripted(RuntimeError("cleanup failed")))
    dispatcher = EventDispatcher(config)

    with pytest.raises(TimeoutHandlerError, match="cleanup failed"):
        await dispatcher.on_timeout(waiting_record(config, attempt_number=3))


@pytest.mark.asyncio
async def test_timeout_step_unusable_return_value(scripted):
    config = timed_out_config(scripted(17))
    dispatcher = EventDispatcher(config)

    with pytest.raises(TimeoutHandlerError, match="got int"):
        await dispatcher.on_timeout(waiting_record(config, attempt_number=3))
