from __future__ import annotations

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from relayflow.core.constants import DEFAULT_BRIDGE_NETWORK, DEFAULT_SWAP_TOKEN
from relayflow.core.exceptions import ConfigurationError
from relayflow.resilience.retry import RetryPolicy


class EngineConfig(BaseModel):
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    default_bridge_network: str = DEFAULT_BRIDGE_NETWORK
    default_swap_token: str = DEFAULT_SWAP_TOKEN
    slippage_min: float = Field(default=0.995, gt=0.0, le=1.0)
    slippage_max: float = Field(default=0.999, gt=0.0, le=1.0)
    database_path: str = ":memory:"
    """SQLite database file used by :class:`~relayflow.store.sqlite.SQLiteWorkflowStore`."""
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @model_validator(mode="after")
    def _check_slippage_band(self) -> EngineConfig:
        if self.slippage_min > self.slippage_max:
            raise ValueError("slippage_min must not exceed slippage_max")
        return self

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Create an :class:`EngineConfig` from ``RELAYFLOW_*`` environment variables.

        Reads the following env vars (all optional):

        * ``RELAYFLOW_MAX_RETRIES`` -> ``retry_policy.max_retries``
        * ``RELAYFLOW_BACKOFF_BASE_MS`` -> ``retry_policy.backoff_base_ms``
        * ``RELAYFLOW_BACKOFF_MAX_MS`` -> ``retry_policy.backoff_max_ms``
        * ``RELAYFLOW_DATABASE_PATH`` -> ``database_path``
        * ``RELAYFLOW_LOG_LEVEL`` -> ``log_level``

        Any variable that is not set or is empty is left at its default value.

        Raises:
            ConfigurationError: If a variable holds a value that cannot be
                parsed or fails validation.
        """
        retry_kwargs: dict[str, Any] = {}
        kwargs: dict[str, Any] = {}

        numeric = {
            "RELAYFLOW_MAX_RETRIES": ("max_retries", int),
            "RELAYFLOW_BACKOFF_BASE_MS": ("backoff_base_ms", float),
            "RELAYFLOW_BACKOFF_MAX_MS": ("backoff_max_ms", float),
        }
        for env_name, (field_name, parse) in numeric.items():
            raw = os.environ.get(env_name)
            if not raw:
                continue
            try:
                retry_kwargs[field_name] = parse(raw)
            except ValueError as exc:
                raise ConfigurationError(
                    f"{env_name} must be a number, got {raw!r}",
                    code="INVALID_CONFIG",
                ) from exc

        database_path = os.environ.get("RELAYFLOW_DATABASE_PATH")
        if database_path:
            kwargs["database_path"] = database_path

        log_level = os.environ.get("RELAYFLOW_LOG_LEVEL")
        if log_level:
            kwargs["log_level"] = log_level.upper()

        try:
            if retry_kwargs:
                kwargs["retry_policy"] = RetryPolicy(**retry_kwargs)
            return cls(**kwargs)
        except ValidationError as exc:
            raise ConfigurationError(str(exc), code="INVALID_CONFIG") from exc
