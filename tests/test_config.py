"""Tests for ProviderConfig validation and environment loading."""

from dataclasses import FrozenInstanceError
from datetime import timedelta

import pytest

from pyprovider.config import ProviderConfig
from pyprovider.instrumentation import LogLevel, LogOptions
from pyprovider.models import ConfigurationError, RetryPolicy

WAITER_OPTIONS_MESSAGE = (
    '"query_interval", "total_timeout", "log_options", and "disable_logging" '
    'can only be configured if "is_complete" is specified. Otherwise, they have no meaning'
)


def on_event(ctx):
    return None


def is_complete(ctx):
    return True


def test_minimal_config_has_no_waiter():
    config = ProviderConfig(on_event=on_event)

    assert config.requires_waiter is False
    assert config.retry_policy == RetryPolicy.DEFAULT
    assert config.effective_log_options == LogOptions()


def test_waiter_config_computes_retry_policy():
    config = ProviderConfig(
        on_event=on_event,
        is_complete=is_complete,
        total_timeout=timedelta(minutes=10),
        query_interval=timedelta(seconds=30),
    )

    assert config.requires_waiter is True
    assert config.retry_policy.max_attempts == 20
    assert config.retry_policy.interval == timedelta(seconds=30)


def test_numeric_durations_are_normalized():
    config = ProviderConfig(
        on_event=on_event, is_complete=is_complete, total_timeout=60, query_interval=5
    )

    assert config.total_timeout == timedelta(seconds=60)
    assert config.query_interval == timedelta(seconds=5)
    assert config.retry_policy.max_attempts == 12


@pytest.mark.parametrize(
    "option, value",
    [
        ("total_timeout", timedelta(minutes=1)),
        ("query_interval", timedelta(seconds=1)),
        ("log_options", LogOptions(level=LogLevel.ALL)),
        ("disable_logging", True),
        ("disable_logging", False),
    ],
)
def test_waiter_options_require_is_complete(option, value):
    with pytest.raises(ConfigurationError) as exc_info:
        ProviderConfig(on_event=on_event, **{option: value})

    assert str(exc_info.value) == WAITER_OPTIONS_MESSAGE


def test_on_timeout_requires_is_complete():
    with pytest.raises(ConfigurationError, match="on_timeout"):
        ProviderConfig(on_event=on_event, on_timeout=lambda ctx: "late")


def test_steps_must_be_callable():
    with pytest.raises(ConfigurationError, match="on_event"):
        ProviderConfig(on_event="not-a-function")
    with pytest.raises(ConfigurationError, match="is_complete"):
        ProviderConfig(on_event=on_event, is_complete=42)


def test_non_divisible_schedule_fails_at_construction():
    with pytest.raises(ConfigurationError, match="not integrally dividable"):
        ProviderConfig(
            on_event=on_event,
            is_complete=is_complete,
            total_timeout=timedelta(seconds=100),
            query_interval=timedelta(seconds=75),
        )


def test_disable_logging_turns_execution_logging_off():
    config = ProviderConfig(on_event=on_event, is_complete=is_complete, disable_logging=True)

    assert config.effective_log_options.level == LogLevel.OFF


def test_disable_logging_conflicts_with_log_options():
    with pytest.raises(ConfigurationError, match="disable_logging"):
        ProviderConfig(
            on_event=on_event,
            is_complete=is_complete,
            log_options=LogOptions(level=LogLevel.ALL),
            disable_logging=True,
        )


def test_explicit_log_options_are_used():
    options = LogOptions(level=LogLevel.ALL, include_execution_data=True)
    config = ProviderConfig(on_event=on_event, is_complete=is_complete, log_options=options)

    assert config.effective_log_options is options


def test_log_options_accept_level_names():
    assert LogOptions(level="all").level == LogLevel.ALL


def test_config_is_frozen():
    config = ProviderConfig(on_event=on_event)

    with pytest.raises(FrozenInstanceError):
        config.role = "admin"


def test_from_env_reads_tuning():
    environ = {
        "PROVIDER_TOTAL_TIMEOUT": "600",
        "PROVIDER_QUERY_INTERVAL": "30",
        "PROVIDER_LOG_LEVEL": "all",
        "PROVIDER_INCLUDE_EXECUTION_DATA": "true",
        "PROVIDER_ROLE": "deployer",
    }

    config = ProviderConfig.from_env(on_event, is_complete, environ=environ)

    assert config.retry_policy.max_attempts == 20
    assert config.effective_log_options == LogOptions(
        level=LogLevel.ALL, include_execution_data=True
    )
    assert config.role == "deployer"


def test_from_env_defaults_when_unset():
    config = ProviderConfig.from_env(on_event, is_complete, environ={})

    assert config.retry_policy == RetryPolicy.DEFAULT
    assert config.log_options is None
    assert config.disable_logging is None
    assert config.role is None


def test_from_env_disable_logging():
    config = ProviderConfig.from_env(
        on_event, is_complete, environ={"PROVIDER_DISABLE_LOGGING": "1"}
    )

    assert config.effective_log_options == LogOptions.OFF


@pytest.mark.parametrize(
    "environ, match",
    [
        ({"PROVIDER_TOTAL_TIMEOUT": "soon"}, "PROVIDER_TOTAL_TIMEOUT"),
        ({"PROVIDER_LOG_LEVEL": "verbose"}, "PROVIDER_LOG_LEVEL"),
    ],
)
def test_from_env_rejects_bad_values(environ, match):
    with pytest.raises(ConfigurationError, match=match):
        ProviderConfig.from_env(on_event, is_complete, environ=environ)


def test_from_env_without_is_complete_rejects_waiter_tuning():
    with pytest.raises(ConfigurationError) as exc_info:
        ProviderConfig.from_env(on_event, environ={"PROVIDER_QUERY_INTERVAL": "5"})

    assert str(exc_info.value) == WAITER_OPTIONS_MESSAGE
