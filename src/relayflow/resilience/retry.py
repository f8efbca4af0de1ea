"""Retry policy with exponential backoff and jitter for failed steps."""

from __future__ import annotations

import random

from pydantic import BaseModel, Field, model_validator


class RetryPolicy(BaseModel):
    """Configurable retry policy with exponential backoff.

    The delay before attempt *n* (1-indexed) is
    ``backoff_base_ms * 2^(n-1) * jitter``, where ``jitter`` is drawn
    uniformly from ``[jitter_min, jitter_max]``, capped at
    ``backoff_max_ms``.

    Attributes:
        max_retries: Maximum number of retry attempts (0 = no retries).
        backoff_base_ms: Base delay in milliseconds.
        backoff_max_ms: Maximum delay in milliseconds.
        jitter_min: Lower bound of the jitter multiplier.
        jitter_max: Upper bound of the jitter multiplier.
    """

    max_retries: int = Field(default=3, ge=0, le=50)
    backoff_base_ms: float = Field(default=1000.0, ge=0.0)
    backoff_max_ms: float = Field(default=30000.0, ge=0.0)
    jitter_min: float = Field(default=0.8, ge=0.0)
    jitter_max: float = Field(default=1.2, ge=0.0)

    @model_validator(mode="after")
    def _check_jitter_band(self) -> RetryPolicy:
        if self.jitter_min > self.jitter_max:
            raise ValueError("jitter_min must not exceed jitter_max")
        return self

    def compute_delay_ms(self, attempt: int, rng: random.Random | None = None) -> float:
        """Compute the backoff delay in milliseconds for *attempt* (1-indexed)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        source = rng if rng is not None else random
        jitter = source.uniform(self.jitter_min, self.jitter_max)  # noqa: S311
        delay = self.backoff_base_ms * (2 ** (attempt - 1)) * jitter
        return min(delay, self.backoff_max_ms)
