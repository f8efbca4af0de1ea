"""Tests for steps/executor.py: per-type handlers and failure conversion."""
from __future__ import annotations

import random
from decimal import Decimal

import pytest

from relayflow.core.config import EngineConfig
from relayflow.core.constants import FailureType, StepStatus, StepType
from relayflow.core.exceptions import UnsupportedStepTypeError
from relayflow.core.types import ExecutionContext, StepDefinition
from relayflow.networks.mock import ScriptedNetworkAdapter
from relayflow.steps.executor import StepExecutor


def _ctx(step_index: int = 0) -> ExecutionContext:
    return ExecutionContext(
        workflow_id="wf_test0001",
        step_index=step_index,
        source_address="0xSrc",
        destination_address="0xDst",
    )


def _step(step_type: str, network: str = "chain_a", **kwargs: object) -> StepDefinition:
    return StepDefinition(
        type=step_type, network=network, token="USDC", amount=Decimal("100"), **kwargs
    )


@pytest.fixture
def executor(adapter: ScriptedNetworkAdapter) -> StepExecutor:
    return StepExecutor(adapter, rng=random.Random(7))


# ---------------------------------------------------------------------------
# Onramp
# ---------------------------------------------------------------------------


async def test_onramp_moves_funds_from_provider_to_source(
    executor: StepExecutor, adapter: ScriptedNetworkAdapter
) -> None:
    result = await executor.execute(_step("onramp"), _ctx())

    assert result.status == StepStatus.COMPLETED
    assert result.tx_ref == "0xchain_a_0001"
    assert result.amount == Decimal("100")
    assert result.token == "USDC"
    assert result.fee == Decimal("0.001")
    assert result.metadata["provider"] == "fiat_onramp_sim"
    assert result.metadata["blockHeight"] == "18000001"
    assert result.started_at is not None and result.completed_at is not None
    call = adapter.calls[0]
    assert (call.from_address, call.to_address) == ("fiat_provider", "0xSrc")


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


async def test_bridge_burns_then_mints(
    executor: StepExecutor, adapter: ScriptedNetworkAdapter
) -> None:
    step = _step("bridge", destination_network="chain_c")
    result = await executor.execute(step, _ctx(1))

    assert result.status == StepStatus.COMPLETED
    assert result.step_index == 1
    assert [c.network for c in adapter.calls] == ["chain_a", "chain_c"]
    assert adapter.calls[0].to_address == "bridge_contract"
    assert adapter.calls[1].from_address == "bridge_contract"
    assert adapter.calls[1].to_address == "0xDst"
    assert result.tx_ref == result.metadata["burnTx"] == "0xchain_a_0001"
    assert result.metadata["mintTx"] == "0xchain_c_0002"
    assert result.metadata["destNetwork"] == "chain_c"
    assert result.fee == Decimal("0.002")


async def test_bridge_defaults_destination_network(
    executor: StepExecutor, adapter: ScriptedNetworkAdapter
) -> None:
    await executor.execute(_step("bridge"), _ctx())
    assert adapter.calls[1].network == "chain_b"


async def test_bridge_mint_failure_keeps_burn_reference(
    executor: StepExecutor, adapter: ScriptedNetworkAdapter
) -> None:
    adapter.fail("chain_b", "RPC_TIMEOUT", "RPC endpoint timed out")
    result = await executor.execute(_step("bridge"), _ctx())

    assert result.status == StepStatus.FAILED
    assert result.metadata["burnTx"] == "0xchain_a_0001"
    assert "mintTx" not in result.metadata
    assert result.error_code == "RPC_TIMEOUT"
    assert result.tx_ref is None


# ---------------------------------------------------------------------------
# Swap
# ---------------------------------------------------------------------------


async def test_swap_applies_slippage_band(adapter: ScriptedNetworkAdapter) -> None:
    executor = StepExecutor(
        adapter,
        config=EngineConfig(slippage_min=0.99, slippage_max=0.99),
        rng=random.Random(0),
    )
    step = _step("swap", network="chain_b", destination_token="DAI")
    result = await executor.execute(step, _ctx())

    assert result.status == StepStatus.COMPLETED
    assert result.amount == Decimal("99.000000")
    assert result.token == "DAI"
    assert result.metadata["inputToken"] == "USDC"
    assert result.metadata["outputToken"] == "DAI"
    assert result.metadata["inputAmount"] == "100"
    assert adapter.calls[0].to_address == "dex_router"


async def test_swap_output_stays_inside_default_band(executor: StepExecutor) -> None:
    result = await executor.execute(_step("swap"), _ctx())
    assert Decimal("99.5") <= result.amount <= Decimal("99.9")
    assert result.token == "WETH"


# ---------------------------------------------------------------------------
# Transfer
# ---------------------------------------------------------------------------


async def test_transfer_uses_explicit_to_address(
    executor: StepExecutor, adapter: ScriptedNetworkAdapter
) -> None:
    result = await executor.execute(_step("transfer", to_address="0xElsewhere"), _ctx())
    assert adapter.calls[0].to_address == "0xElsewhere"
    assert result.metadata["to"] == "0xElsewhere"


async def test_transfer_falls_back_to_workflow_destination(
    executor: StepExecutor, adapter: ScriptedNetworkAdapter
) -> None:
    await executor.execute(_step("transfer"), _ctx())
    assert adapter.calls[0].to_address == "0xDst"


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


async def test_adapter_error_becomes_failed_result(
    executor: StepExecutor, adapter: ScriptedNetworkAdapter
) -> None:
    adapter.fail(
        "chain_a", "NO_LIQUIDITY", "No liquidity available", kind=FailureType.PERMANENT
    )
    result = await executor.execute(_step("swap"), _ctx(2))

    assert result.status == StepStatus.FAILED
    assert result.step_index == 2
    assert result.error == "No liquidity available"
    assert result.error_code == "NO_LIQUIDITY"
    assert result.retry_count == 0
    assert result.completed_at is None


async def test_step_metadata_is_carried_into_result(executor: StepExecutor) -> None:
    result = await executor.execute(_step("transfer", metadata={"memo": "rent"}), _ctx())
    assert result.metadata["memo"] == "rent"


async def test_unsupported_step_type_raises(executor: StepExecutor) -> None:
    step = _step("transfer")
    # Simulate a definition whose type has no registered handler.
    executor._handlers.pop(StepType.TRANSFER)
    with pytest.raises(UnsupportedStepTypeError) as exc_info:
        await executor.execute(step, _ctx())
    assert exc_info.value.code == "UNSUPPORTED_STEP_TYPE"
