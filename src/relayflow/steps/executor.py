"""Step executor: turns one step definition into exactly one step result.

Each step type maps to one or more adapter calls. Adapter failures are
converted into a failed :class:`StepResult` here and never propagate past
this boundary. The executor does not retry; that is the recovery engine's
job.
"""
from __future__ import annotations

import random
import time
from decimal import Decimal
from typing import Awaitable, Callable, NamedTuple

import structlog

from relayflow.core.config import EngineConfig
from relayflow.core.constants import (
    BRIDGE_CONTRACT_ADDRESS,
    DEX_ROUTER_ADDRESS,
    FIAT_PROVIDER_ADDRESS,
    UNKNOWN_ERROR_CODE,
    StepStatus,
    StepType,
)
from relayflow.core.exceptions import AdapterError, UnsupportedStepTypeError
from relayflow.core.state_machine import transition
from relayflow.core.types import ExecutionContext, StepDefinition, StepResult, utcnow
from relayflow.networks.base import NetworkAdapter

logger = structlog.get_logger(__name__)

_AMOUNT_QUANTUM = Decimal("0.000001")


def _now_ms() -> int:
    return int(time.monotonic() * 1000)


class _Outcome(NamedTuple):
    tx_ref: str
    amount: Decimal
    token: str
    fee: Decimal


# Handlers fill ``metadata`` as they go so a failure keeps what was known.
_Handler = Callable[
    [StepDefinition, ExecutionContext, dict[str, str]], Awaitable[_Outcome]
]


class StepExecutor:
    """Execute workflow steps against a :class:`NetworkAdapter`.

    Args:
        adapter: The network adapter used for every funds movement.
        config: Engine configuration (bridge/swap defaults, slippage band).
        rng: Random source for the swap slippage draw.
    """

    def __init__(
        self,
        adapter: NetworkAdapter,
        *,
        config: EngineConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._adapter = adapter
        self._config = config or EngineConfig()
        self._rng = rng or random.Random()
        self._handlers: dict[StepType, _Handler] = {
            StepType.ONRAMP: self._execute_onramp,
            StepType.BRIDGE: self._execute_bridge,
            StepType.SWAP: self._execute_swap,
            StepType.TRANSFER: self._execute_transfer,
        }

    def __repr__(self) -> str:
        return f"StepExecutor(adapter={self._adapter!r})"

    @property
    def adapter(self) -> NetworkAdapter:
        return self._adapter

    async def execute(self, step: StepDefinition, context: ExecutionContext) -> StepResult:
        """Run *step* once and return its result.

        Raises:
            UnsupportedStepTypeError: If no handler exists for ``step.type``.
        """
        handler = self._handlers.get(step.type)
        if handler is None:
            raise UnsupportedStepTypeError(step.type)

        status = transition(StepStatus.PENDING, StepStatus.EXECUTING)
        started_at = utcnow()
        start_ms = _now_ms()
        metadata: dict[str, str] = dict(step.metadata)
        logger.debug(
            "step execution started",
            workflow_id=context.workflow_id,
            step=context.step_index,
            step_type=step.type,
            network=step.network,
        )

        try:
            outcome = await handler(step, context, metadata)
        except AdapterError as exc:
            metadata["errorCode"] = exc.code or UNKNOWN_ERROR_CODE
            logger.info(
                "step execution failed",
                workflow_id=context.workflow_id,
                step=context.step_index,
                step_type=step.type,
                network=exc.network or step.network,
                code=metadata["errorCode"],
            )
            return StepResult(
                step_index=context.step_index,
                type=step.type,
                status=transition(status, StepStatus.FAILED),
                network=step.network,
                amount=step.amount,
                token=step.token,
                duration_ms=_now_ms() - start_ms,
                error=exc.message or f"{step.type.capitalize()} failed",
                metadata=metadata,
                started_at=started_at,
            )

        return StepResult(
            step_index=context.step_index,
            type=step.type,
            status=transition(status, StepStatus.COMPLETED),
            network=step.network,
            tx_ref=outcome.tx_ref,
            amount=outcome.amount,
            token=outcome.token,
            fee=outcome.fee,
            duration_ms=_now_ms() - start_ms,
            metadata=metadata,
            started_at=started_at,
            completed_at=utcnow(),
        )

    # ------------------------------------------------------------------
    # Per-type handlers
    # ------------------------------------------------------------------

    async def _execute_onramp(
        self, step: StepDefinition, ctx: ExecutionContext, metadata: dict[str, str]
    ) -> _Outcome:
        metadata["provider"] = "fiat_onramp_sim"
        receipt = await self._adapter.perform_transfer(
            step.network, FIAT_PROVIDER_ADDRESS, ctx.source_address, step.amount, step.token
        )
        metadata["blockHeight"] = str(receipt.block_height)
        return _Outcome(receipt.tx_ref, step.amount, step.token, receipt.fee)

    async def _execute_bridge(
        self, step: StepDefinition, ctx: ExecutionContext, metadata: dict[str, str]
    ) -> _Outcome:
        dest_network = step.destination_network or self._config.default_bridge_network
        metadata.update(
            bridgeProvider="cctp_sim",
            sourceNetwork=step.network,
            destNetwork=dest_network,
        )
        burn = await self._adapter.perform_transfer(
            step.network, ctx.source_address, BRIDGE_CONTRACT_ADDRESS, step.amount, step.token
        )
        # Recorded before the mint leg so a half-finished bridge stays traceable.
        metadata["burnTx"] = burn.tx_ref
        mint = await self._adapter.perform_transfer(
            dest_network,
            BRIDGE_CONTRACT_ADDRESS,
            ctx.destination_address,
            step.amount,
            step.token,
        )
        metadata["mintTx"] = mint.tx_ref
        return _Outcome(burn.tx_ref, step.amount, step.token, burn.fee + mint.fee)

    async def _execute_swap(
        self, step: StepDefinition, ctx: ExecutionContext, metadata: dict[str, str]
    ) -> _Outcome:
        dest_token = step.destination_token or self._config.default_swap_token
        metadata.update(
            dex="uniswap_sim",
            inputToken=step.token,
            outputToken=dest_token,
            inputAmount=str(step.amount),
        )
        receipt = await self._adapter.perform_transfer(
            step.network, ctx.source_address, DEX_ROUTER_ADDRESS, step.amount, step.token
        )
        rate = self._rng.uniform(self._config.slippage_min, self._config.slippage_max)
        output = (step.amount * Decimal(str(rate))).quantize(_AMOUNT_QUANTUM)
        metadata["rate"] = f"{rate:.6f}"
        return _Outcome(receipt.tx_ref, output, dest_token, receipt.fee)

    async def _execute_transfer(
        self, step: StepDefinition, ctx: ExecutionContext, metadata: dict[str, str]
    ) -> _Outcome:
        to_address = step.to_address or ctx.destination_address
        metadata["to"] = to_address
        receipt = await self._adapter.perform_transfer(
            step.network, ctx.source_address, to_address, step.amount, step.token
        )
        return _Outcome(receipt.tx_ref, step.amount, step.token, receipt.fee)
