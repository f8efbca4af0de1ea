"""Tests for resilience/retry.py: RetryPolicy backoff computation."""
from __future__ import annotations

import random

import pytest
from pydantic import ValidationError

from relayflow.resilience.retry import RetryPolicy


def test_defaults() -> None:
    policy = RetryPolicy()
    assert policy.max_retries == 3
    assert policy.backoff_base_ms == 1000.0
    assert policy.backoff_max_ms == 30000.0


def test_delay_doubles_without_jitter() -> None:
    policy = RetryPolicy(jitter_min=1.0, jitter_max=1.0)
    assert [policy.compute_delay_ms(n) for n in (1, 2, 3, 4)] == [1000, 2000, 4000, 8000]


def test_delay_is_capped() -> None:
    policy = RetryPolicy(jitter_min=1.0, jitter_max=1.0, backoff_max_ms=5000)
    assert policy.compute_delay_ms(10) == 5000


def test_jitter_stays_in_band() -> None:
    policy = RetryPolicy()
    rng = random.Random(11)
    for attempt in (1, 2, 3):
        nominal = 1000 * 2 ** (attempt - 1)
        delay = policy.compute_delay_ms(attempt, rng)
        assert nominal * 0.8 <= delay <= nominal * 1.2


def test_seeded_rng_is_deterministic() -> None:
    policy = RetryPolicy()
    assert policy.compute_delay_ms(2, random.Random(5)) == policy.compute_delay_ms(
        2, random.Random(5)
    )


def test_attempt_must_be_positive() -> None:
    with pytest.raises(ValueError, match="attempt must be >= 1"):
        RetryPolicy().compute_delay_ms(0)


def test_jitter_band_validated() -> None:
    with pytest.raises(ValidationError):
        RetryPolicy(jitter_min=1.5, jitter_max=1.0)


def test_negative_retries_rejected() -> None:
    with pytest.raises(ValidationError):
        RetryPolicy(max_retries=-1)
