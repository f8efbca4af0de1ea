from __future__ import annotations

from collections import defaultdict, deque
from decimal import Decimal
from typing import NamedTuple, Union

from relayflow.core.constants import FailureType
from relayflow.core.exceptions import AdapterError
from relayflow.core.types import Receipt
from relayflow.networks.base import NetworkAdapter

# ``None`` stands for "succeed with a generated receipt".
Outcome = Union[Receipt, AdapterError, None]


class TransferCall(NamedTuple):
    network: str
    from_address: str
    to_address: str
    amount: Decimal
    token: str


class ScriptedNetworkAdapter(NetworkAdapter):
    """Deterministic in-memory adapter for testing.

    Outcomes are queued per network and consumed in call order. Once a
    network's queue is empty every call succeeds with a generated receipt.

    Usage::

        adapter = ScriptedNetworkAdapter()
        adapter.fail("chain_b", "RPC_TIMEOUT", times=2)      # two transient failures
        adapter.fail("chain_c", "NO_LIQUIDITY", kind=FailureType.PERMANENT)
        adapter.script("chain_a", None, custom_receipt)      # explicit outcomes

        receipt = await adapter.perform_transfer("chain_a", "0xA", "0xB", Decimal("1"), "USDC")
        adapter.assert_called("chain_a")
    """

    def __init__(self, default_fee: Decimal = Decimal("0.001")) -> None:
        self._default_fee = default_fee
        self._scripts: dict[str, deque[Outcome]] = defaultdict(deque)
        self._counter = 0
        self.calls: list[TransferCall] = []

    # ------------------------------------------------------------------ #
    # Scripting helpers
    # ------------------------------------------------------------------ #

    def script(self, network: str, *outcomes: Outcome) -> ScriptedNetworkAdapter:
        """Queue explicit outcomes for *network*. Returns ``self`` for chaining."""
        self._scripts[network].extend(outcomes)
        return self

    def fail(
        self,
        network: str,
        code: str,
        message: str | None = None,
        *,
        kind: FailureType = FailureType.TRANSIENT,
        times: int = 1,
    ) -> ScriptedNetworkAdapter:
        """Queue *times* failures with *code* for *network*."""
        for _ in range(times):
            self._scripts[network].append(
                AdapterError(
                    message or f"Scripted failure: {code}",
                    code,
                    kind=kind,
                    network=network,
                )
            )
        return self

    def pending(self, network: str) -> int:
        """Number of queued outcomes not yet consumed for *network*."""
        return len(self._scripts[network])

    # ------------------------------------------------------------------ #
    # NetworkAdapter implementation
    # ------------------------------------------------------------------ #

    async def perform_transfer(
        self,
        network: str,
        from_address: str,
        to_address: str,
        amount: Decimal,
        token: str,
    ) -> Receipt:
        self.calls.append(TransferCall(network, from_address, to_address, amount, token))
        self._counter += 1
        queue = self._scripts[network]
        outcome = queue.popleft() if queue else None
        if isinstance(outcome, AdapterError):
            raise outcome
        if outcome is not None:
            return outcome
        return Receipt(
            tx_ref=f"0x{network}_{self._counter:04d}",
            network=network,
            fee=self._default_fee,
            block_height=18_000_000 + self._counter,
            confirm_ms=0,
        )

    # ------------------------------------------------------------------ #
    # Test helpers
    # ------------------------------------------------------------------ #

    def calls_for(self, network: str) -> list[TransferCall]:
        return [c for c in self.calls if c.network == network]

    def assert_called(self, network: str) -> None:
        networks = [c.network for c in self.calls]
        assert network in networks, f"Expected call on '{network}', got: {networks}"
