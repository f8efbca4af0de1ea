"""Tests for engine/recovery.py: classification, retries and withdrawal."""
from __future__ import annotations

import random
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from relayflow.audit.logger import AuditLogger
from relayflow.audit.sinks import InMemoryAuditSink
from relayflow.core.constants import FailureType, RecoveryReason, StepStatus, StepType
from relayflow.core.exceptions import InvalidTransitionError
from relayflow.core.types import (
    ExecutionContext,
    StepDefinition,
    StepResult,
    Workflow,
    WorkflowDefinition,
)
from relayflow.engine.recovery import RecoveryEngine, classify_failure
from relayflow.networks.mock import ScriptedNetworkAdapter
from relayflow.resilience.retry import RetryPolicy
from relayflow.steps.executor import StepExecutor

if TYPE_CHECKING:
    from tests.conftest import SleepRecorder


STEP = StepDefinition(type="transfer", network="chain_a", token="USDC", amount=Decimal("10"))


def _workflow() -> Workflow:
    definition = WorkflowDefinition(
        name="Recovery",
        source_address="0xSrc",
        destination_address="0xDst",
        steps=[
            StepDefinition(type="onramp", network="chain_a", token="USDC", amount=Decimal("10")),
            StepDefinition(
                type="bridge",
                network="chain_a",
                destination_network="chain_b",
                token="USDC",
                amount=Decimal("10"),
            ),
            STEP,
        ],
    )
    return Workflow(id="wf_rec00001", name=definition.name, total_steps=3, definition=definition)


def _completed(index: int, step_type: StepType, tx_ref: str) -> StepResult:
    return StepResult(
        step_index=index,
        type=step_type,
        status=StepStatus.COMPLETED,
        network="chain_a",
        tx_ref=tx_ref,
        amount=Decimal("10"),
        token="USDC",
    )


async def _first_failure(executor: StepExecutor) -> StepResult:
    ctx = ExecutionContext(
        workflow_id="wf_rec00001", step_index=2, source_address="0xSrc", destination_address="0xDst"
    )
    result = await executor.execute(STEP, ctx)
    assert result.status == StepStatus.FAILED
    return result


@pytest.fixture
def engine(
    adapter: ScriptedNetworkAdapter, audit: AuditLogger, sleep: SleepRecorder
) -> RecoveryEngine:
    executor = StepExecutor(adapter, rng=random.Random(3))
    return RecoveryEngine(
        executor,
        audit,
        policy=RetryPolicy(max_retries=3, backoff_base_ms=100, jitter_min=1.0, jitter_max=1.0),
        rng=random.Random(3),
        sleep=sleep,
    )


# ---------------------------------------------------------------------------
# classify_failure
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "code", ["INSUFFICIENT_BALANCE", "NO_LIQUIDITY", "INVALID_ROUTE", "CONTRACT_REVERTED"]
)
def test_permanent_codes(code: str) -> None:
    assert classify_failure(code) == FailureType.PERMANENT


@pytest.mark.parametrize("code", ["RPC_TIMEOUT", "GAS_SPIKE", "NONCE_CONFLICT", "SOMETHING_NEW"])
def test_other_codes_are_transient(code: str) -> None:
    assert classify_failure(code) == FailureType.TRANSIENT


def test_code_takes_precedence_over_message() -> None:
    assert classify_failure("RPC_TIMEOUT", "no_liquidity mentioned here") == FailureType.TRANSIENT


def test_message_scanned_without_code() -> None:
    assert classify_failure(None, "pool has no_liquidity") == FailureType.PERMANENT
    assert classify_failure("UNKNOWN", "INSUFFICIENT_BALANCE on source") == FailureType.PERMANENT
    assert classify_failure(None, "connection reset") == FailureType.TRANSIENT


def test_missing_everything_is_transient() -> None:
    assert classify_failure(None) == FailureType.TRANSIENT


# ---------------------------------------------------------------------------
# attempt_recovery
# ---------------------------------------------------------------------------


async def test_only_failed_results_enter_recovery(
    engine: RecoveryEngine,
    adapter: ScriptedNetworkAdapter,
    sink: InMemoryAuditSink,
    sleep: SleepRecorder,
) -> None:
    done = _completed(2, StepType.TRANSFER, "0xdone")

    with pytest.raises(InvalidTransitionError) as exc_info:
        await engine.attempt_recovery(_workflow(), done, STEP)

    assert exc_info.value.code == "INVALID_TRANSITION"
    assert adapter.calls == []
    assert sleep.delays == []
    assert sink.events == []


async def test_permanent_failure_is_not_retried(
    engine: RecoveryEngine,
    adapter: ScriptedNetworkAdapter,
    sink: InMemoryAuditSink,
    sleep: SleepRecorder,
) -> None:
    adapter.fail("chain_a", "NO_LIQUIDITY", kind=FailureType.PERMANENT)
    failed = await _first_failure(engine._executor)

    outcome = await engine.attempt_recovery(_workflow(), failed, STEP)

    assert outcome.recovered is False
    assert outcome.reason == RecoveryReason.PERMANENT_FAILURE
    assert outcome.failure_type == FailureType.PERMANENT
    assert outcome.result is None
    assert outcome.attempts == 0
    assert len(adapter.calls) == 1
    assert sleep.delays == []
    assert sink.actions() == ["recovery_started", "permanent_failure_detected"]


async def test_transient_failure_recovers_on_third_attempt(
    engine: RecoveryEngine,
    adapter: ScriptedNetworkAdapter,
    sink: InMemoryAuditSink,
    sleep: SleepRecorder,
) -> None:
    adapter.fail("chain_a", "RPC_TIMEOUT", times=2)
    failed = await _first_failure(engine._executor)

    outcome = await engine.attempt_recovery(_workflow(), failed, STEP)

    assert outcome.recovered is True
    assert outcome.reason == RecoveryReason.RETRY_SUCCESS
    assert outcome.result is not None
    assert outcome.result.status == StepStatus.COMPLETED
    assert outcome.result.retry_count == 2
    assert outcome.attempts == 2
    assert sleep.delays == [0.1, 0.2]
    assert sink.actions() == [
        "recovery_started",
        "retry_attempt",
        "retry_attempt",
        "retry_success",
    ]


async def test_retries_exhausted(
    engine: RecoveryEngine, adapter: ScriptedNetworkAdapter, sink: InMemoryAuditSink
) -> None:
    adapter.fail("chain_a", "GAS_SPIKE", times=4)
    failed = await _first_failure(engine._executor)

    outcome = await engine.attempt_recovery(_workflow(), failed, STEP)

    assert outcome.recovered is False
    assert outcome.reason == RecoveryReason.RETRIES_EXHAUSTED
    assert outcome.attempts == 3
    assert outcome.result is not None
    assert outcome.result.status == StepStatus.FAILED
    assert outcome.result.retry_count == 3
    assert len(adapter.calls) == 4
    assert sink.actions()[-1] == "retries_exhausted"
    assert sink.actions().count("retry_attempt") == 3


async def test_zero_retries_exhausts_immediately(
    adapter: ScriptedNetworkAdapter, audit: AuditLogger, sleep: SleepRecorder
) -> None:
    engine = RecoveryEngine(
        StepExecutor(adapter), audit, policy=RetryPolicy(max_retries=0), sleep=sleep
    )
    adapter.fail("chain_a", "RPC_TIMEOUT")
    failed = await _first_failure(engine._executor)

    outcome = await engine.attempt_recovery(_workflow(), failed, STEP)

    assert outcome.recovered is False
    assert outcome.reason == RecoveryReason.RETRIES_EXHAUSTED
    assert outcome.result is None
    assert sleep.delays == []


async def test_executor_exception_during_retry_becomes_data(
    engine: RecoveryEngine, adapter: ScriptedNetworkAdapter
) -> None:
    adapter.fail("chain_a", "RPC_TIMEOUT")
    failed = await _first_failure(engine._executor)

    async def _boom(*args: object) -> StepResult:
        raise RuntimeError("executor crashed")

    engine._executor.execute = _boom  # type: ignore[method-assign]
    outcome = await engine.attempt_recovery(_workflow(), failed, STEP)

    assert outcome.recovered is False
    assert outcome.result is not None
    assert outcome.result.error == "executor crashed"
    assert outcome.result.error_code == "EXECUTOR_ERROR"


# ---------------------------------------------------------------------------
# execute_withdrawal
# ---------------------------------------------------------------------------


async def test_withdrawal_reverses_in_descending_step_order(
    engine: RecoveryEngine, sink: InMemoryAuditSink
) -> None:
    completed = [
        _completed(0, StepType.ONRAMP, "0xaaa"),
        _completed(1, StepType.BRIDGE, "0xbbb"),
    ]

    reversals = await engine.execute_withdrawal(_workflow(), completed)

    assert [ev.step for ev in reversals] == [1, 0]
    assert [ev.metadata["originalTxRef"] for ev in reversals] == ["0xbbb", "0xaaa"]
    assert reversals[0].metadata["stepType"] == "bridge"
    assert sink.actions() == [
        "withdrawal_started",
        "reversal",
        "reversal",
        "withdrawal_completed",
    ]


async def test_withdrawal_ignores_duplicates_and_failed_results(
    engine: RecoveryEngine,
) -> None:
    first = _completed(0, StepType.ONRAMP, "0xaaa")
    failed = first.model_copy(update={"step_index": 1, "status": StepStatus.FAILED})

    reversals = await engine.execute_withdrawal(_workflow(), [first, first, failed])

    assert [ev.step for ev in reversals] == [0]


async def test_withdrawal_with_nothing_completed(
    engine: RecoveryEngine, sink: InMemoryAuditSink
) -> None:
    reversals = await engine.execute_withdrawal(_workflow(), [])
    assert reversals == []
    assert sink.actions() == ["withdrawal_started", "withdrawal_completed"]
