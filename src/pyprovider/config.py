"""
Provider configuration.

ProviderConfig is the explicit, typed replacement for an option bag: every
option is a named field and the whole object is validated once, eagerly,
in __post_init__. A config that constructs is a config that runs.

Example:
    config = ProviderConfig(
        on_event=start_export,
        is_complete=export_finished,
        total_timeout=timedelta(minutes=10),
        query_interval=timedelta(seconds=30),
    )
    config.retry_policy.max_attempts  # 20
"""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from pyprovider.instrumentation import LogLevel, LogOptions
from pyprovider.models import ConfigurationError, RetryPolicy, StepContext
from pyprovider.models.retry import as_timedelta, calculate_retry_policy

__all__ = ["ConfigurationError", "ProviderConfig", "StepFunction"]

StepFunction = Callable[[StepContext], Any | Awaitable[Any]]
"""A step: takes a StepContext, returns a value or an awaitable of one."""

_WAITER_OPTIONS = ("query_interval", "total_timeout", "log_options", "disable_logging")

_TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ProviderConfig:
    """Wiring and tuning for one provider.

    Only on_event is required. Waiting options are meaningful only when
    is_complete is supplied and are rejected otherwise.
    """

    on_event: StepFunction
    """Initiation step, called exactly once per request."""

    is_complete: StepFunction | None = None
    """Completion check; enables the waiter."""

    on_timeout: StepFunction | None = None
    """Timeout step; a built-in one reports the last check error."""

    total_timeout: timedelta | float | None = None
    """Total waiting budget (default 30 minutes)."""

    query_interval: timedelta | float | None = None
    """Spacing between completion checks (default 5 seconds)."""

    log_options: LogOptions | None = None
    """Execution logging; defaults to errors only without execution data."""

    disable_logging: bool | None = None
    """Turn execution logging off entirely."""

    role: str | None = None
    """Execution identity override passed to every step."""

    retry_policy: RetryPolicy = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not callable(self.on_event):
            raise ConfigurationError('"on_event" must be a callable')

        for name in ("is_complete", "on_timeout"):
            value = getattr(self, name)
            if value is not None and not callable(value):
                raise ConfigurationError(f'"{name}" must be a callable')

        if self.is_complete is None:
            if any(getattr(self, name) is not None for name in _WAITER_OPTIONS):
                raise ConfigurationError(
                    '"query_interval", "total_timeout", "log_options", and "disable_logging" '
                    'can only be configured if "is_complete" is specified. '
                    "Otherwise, they have no meaning"
                )
            if self.on_timeout is not None:
                raise ConfigurationError(
                    '"on_timeout" can only be configured if "is_complete" is specified'
                )

        if self.disable_logging and self.log_options is not None:
            raise ConfigurationError('"log_options" cannot be combined with "disable_logging"')

        total = as_timedelta(self.total_timeout, "total_timeout")
        interval = as_timedelta(self.query_interval, "query_interval")
        object.__setattr__(self, "total_timeout", total)
        object.__setattr__(self, "query_interval", interval)
        object.__setattr__(self, "retry_policy", calculate_retry_policy(total, interval))

    @property
    def requires_waiter(self) -> bool:
        """True if a completion check is configured."""
        return self.is_complete is not None

    @property
    def effective_log_options(self) -> LogOptions:
        """Log options after applying defaults and the opt-out switch."""
        if self.disable_logging:
            return LogOptions.OFF
        if self.log_options is not None:
            return self.log_options
        return LogOptions()

    @classmethod
    def from_env(
        cls,
        on_event: StepFunction,
        is_complete: StepFunction | None = None,
        on_timeout: StepFunction | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> ProviderConfig:
        """
        Build a config whose tuning comes from environment variables.

        Reads PROVIDER_TOTAL_TIMEOUT and PROVIDER_QUERY_INTERVAL (seconds),
        PROVIDER_LOG_LEVEL (ALL/ERROR/FATAL/OFF),
        PROVIDER_INCLUDE_EXECUTION_DATA, PROVIDER_DISABLE_LOGGING and
        PROVIDER_ROLE. Unset variables keep the defaults.

        Raises:
            ConfigurationError: If a value cannot be parsed or the resulting
                configuration is invalid
        """
        env = os.environ if environ is None else environ

        def seconds(name: str) -> timedelta | None:
            raw = env.get(name)
            if raw is None or raw == "":
                return None
            try:
                return timedelta(seconds=float(raw))
            except ValueError:
                raise ConfigurationError(f"{name} must be a number of seconds, got {raw!r}")

        log_options = None
        level = env.get("PROVIDER_LOG_LEVEL")
        include_data = env.get("PROVIDER_INCLUDE_EXECUTION_DATA")
        if level or include_data:
            try:
                log_level = LogLevel((level or LogLevel.ERROR.value).upper())
            except ValueError:
                raise ConfigurationError(f"PROVIDER_LOG_LEVEL is not a log level: {level!r}")
            log_options = LogOptions(
                level=log_level,
                include_execution_data=(include_data or "").lower() in _TRUTHY,
            )

        disable = env.get("PROVIDER_DISABLE_LOGGING")

        return cls(
            on_event=on_event,
            is_complete=is_complete,
            on_timeout=on_timeout,
            total_timeout=seconds("PROVIDER_TOTAL_TIMEOUT"),
            query_interval=seconds("PROVIDER_QUERY_INTERVAL"),
            log_options=log_options,
            disable_logging=disable.lower() in _TRUTHY if disable else None,
            role=env.get("PROVIDER_ROLE") or None,
        )
