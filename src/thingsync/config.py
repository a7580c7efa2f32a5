"""Engine configuration for thingsync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from thingsync._constants import (
    BASE_URL,
    DEFAULT_DEVICE_RETRY_DELAY,
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_GROUP_RETRY_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_SEND_TIMEOUT,
)
from thingsync.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise ConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class EngineConfig:
    """Engine configuration.

    Parameters
    ----------
    base_url : str
        Base URL of the REST API used by :class:`thingsync._transport.RestBackend`.
    max_attempts : int
        Reconciliation attempts per command before the expectation is
        exhausted.
    device_retry_delay : float
        Seconds between expectation ticks for single devices.
    group_retry_delay : float
        Seconds between expectation ticks for groups.
    fetch_timeout : float
        Upper bound in seconds for one snapshot fetch.
    send_timeout : float
        Upper bound in seconds for one command send.
    refresh_parent_group : bool
        Re-reconcile a device's group Thing after a device command settles.
    """

    base_url: str = BASE_URL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    device_retry_delay: float = DEFAULT_DEVICE_RETRY_DELAY
    group_retry_delay: float = DEFAULT_GROUP_RETRY_DELAY
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    send_timeout: float = DEFAULT_SEND_TIMEOUT
    refresh_parent_group: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.device_retry_delay < 0 or self.group_retry_delay < 0:
            raise ConfigError("retry delays must not be negative")
        if self.fetch_timeout <= 0 or self.send_timeout <= 0:
            raise ConfigError("timeouts must be positive")

    def retry_delay(self, *, is_group: bool) -> float:
        """Delay between expectation ticks for the given target kind."""
        return self.group_retry_delay if is_group else self.device_retry_delay

    @classmethod
    def from_env(cls, **overrides: Any) -> EngineConfig:
        """Create configuration from ``THINGSYNC_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        base_url = env.get("THINGSYNC_BASE_URL")
        if base_url is not None:
            config_kwargs["base_url"] = base_url.rstrip("/")

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "THINGSYNC_MAX_ATTEMPTS": ("max_attempts", int),
            "THINGSYNC_DEVICE_RETRY_DELAY": ("device_retry_delay", float),
            "THINGSYNC_GROUP_RETRY_DELAY": ("group_retry_delay", float),
            "THINGSYNC_FETCH_TIMEOUT": ("fetch_timeout", float),
            "THINGSYNC_SEND_TIMEOUT": ("send_timeout", float),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, cast)

        if "refresh_parent_group" not in overrides:
            config_kwargs["refresh_parent_group"] = _env_bool(env.get("THINGSYNC_REFRESH_PARENT_GROUP"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
