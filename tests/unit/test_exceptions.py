"""Tests for core/exceptions.py."""
from __future__ import annotations

from relayflow.core.constants import FailureType
from relayflow.core.exceptions import (
    AdapterError,
    RelayflowError,
    StoreError,
    UnsupportedStepTypeError,
    WorkflowConflictError,
    WorkflowNotFoundError,
    WorkflowStateError,
)


def test_base_error_fields() -> None:
    err = RelayflowError("boom", code="X", details={"a": 1})
    assert str(err) == "boom"
    assert err.message == "boom"
    assert err.details == {"a": 1}
    assert err.is_retryable is False


def test_adapter_error_retry_hint_follows_kind() -> None:
    transient = AdapterError("timeout", "RPC_TIMEOUT", network="chain_b")
    permanent = AdapterError("empty", "NO_LIQUIDITY", kind=FailureType.PERMANENT)
    assert transient.is_retryable is True
    assert permanent.is_retryable is False
    assert transient.details == {"network": "chain_b"}


def test_adapter_error_explicit_retry_hint() -> None:
    err = AdapterError("odd", "GAS_SPIKE", retryable=False)
    assert err.kind == FailureType.TRANSIENT
    assert err.is_retryable is False


def test_workflow_errors_carry_ids() -> None:
    assert WorkflowNotFoundError("wf_1").code == "NOT_FOUND"
    conflict = WorkflowConflictError("wf_2")
    assert conflict.code == "CONFLICT"
    assert conflict.workflow_id == "wf_2"
    assert "wf_2" in str(conflict)


def test_hierarchy() -> None:
    assert issubclass(WorkflowStateError, StoreError)
    assert issubclass(StoreError, RelayflowError)
    assert UnsupportedStepTypeError("teleport").step_type == "teleport"
