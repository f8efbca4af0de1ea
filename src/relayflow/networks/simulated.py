"""Simulated networks with configurable latency, fees and reliability.

Each network profile models an independent chain. Randomness comes from an
injectable :class:`random.Random` and waiting from an injectable ``sleep``
coroutine, so a seeded simulator is fully reproducible.
"""

from __future__ import annotations

import asyncio
import random
from decimal import Decimal
from typing import Awaitable, Callable

import structlog
from pydantic import BaseModel, Field

from relayflow.core.constants import FailureType, ReceiptStatus
from relayflow.core.exceptions import AdapterError
from relayflow.core.types import Receipt
from relayflow.networks.base import NetworkAdapter

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class NetworkProfile(BaseModel):
    id: str
    name: str
    type: str
    avg_confirmation_ms: int = Field(..., ge=0)
    base_fee: Decimal = Field(..., ge=0)
    reliability: float = Field(..., ge=0.0, le=1.0)
    description: str = ""


NETWORK_PROFILES: dict[str, NetworkProfile] = {
    "chain_a": NetworkProfile(
        id="chain_a",
        name="Ethereum Mainnet (Sim)",
        type="L1",
        avg_confirmation_ms=12000,
        base_fee=Decimal("0.003"),
        reliability=0.95,
        description="Slow confirmations (~12s), higher fees, reliable",
    ),
    "chain_b": NetworkProfile(
        id="chain_b",
        name="Optimism L2 (Sim)",
        type="L2",
        avg_confirmation_ms=2000,
        base_fee=Decimal("0.0003"),
        reliability=0.9,
        description="Fast confirmations (~2s), low fees, occasional reorgs",
    ),
    "chain_c": NetworkProfile(
        id="chain_c",
        name="Avalanche (Sim)",
        type="Alt-L1",
        avg_confirmation_ms=4000,
        base_fee=Decimal("0.001"),
        reliability=0.8,
        description="Medium speed, intermittent RPC failures",
    ),
}

# (code, message) pairs drawn from when a simulated call fails.
_TRANSIENT_FAILURES: list[tuple[str, str]] = [
    ("RPC_TIMEOUT", "RPC endpoint timed out"),
    ("GAS_SPIKE", "Gas price spiked above threshold"),
    ("NONCE_CONFLICT", "Nonce already used, needs refresh"),
]
_PERMANENT_FAILURES: list[tuple[str, str]] = [
    ("INSUFFICIENT_BALANCE", "Insufficient token balance for operation"),
    ("NO_LIQUIDITY", "No liquidity available for this token pair"),
]
_TRANSIENT_WEIGHT = 0.75


def network_profiles() -> list[NetworkProfile]:
    """Return every built-in network profile."""
    return list(NETWORK_PROFILES.values())


def get_network_profile(network: str) -> NetworkProfile:
    """Look up a built-in network profile.

    Raises:
        KeyError: If *network* is not a known profile.
    """
    if network not in NETWORK_PROFILES:
        available = ", ".join(sorted(NETWORK_PROFILES))
        raise KeyError(f"Unknown network '{network}'. Available: {available}")
    return NETWORK_PROFILES[network]


class SimulatedNetworkAdapter(NetworkAdapter):
    """Network adapter that simulates confirmation latency and random failures.

    Args:
        profiles: Network profiles keyed by id. Defaults to
            :data:`NETWORK_PROFILES`.
        rng: Random source for latency, fees, tx refs and failures.
        sleep: Coroutine used to wait out simulated confirmation time.
        max_latency_ms: Upper bound on the time actually slept per call.
    """

    def __init__(
        self,
        profiles: dict[str, NetworkProfile] | None = None,
        *,
        rng: random.Random | None = None,
        sleep: SleepFn = asyncio.sleep,
        max_latency_ms: int = 500,
    ) -> None:
        self._profiles = dict(profiles) if profiles is not None else dict(NETWORK_PROFILES)
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._max_latency_ms = max_latency_ms

    def __repr__(self) -> str:
        return f"SimulatedNetworkAdapter(networks={sorted(self._profiles)!r})"

    @property
    def profiles(self) -> list[NetworkProfile]:
        return list(self._profiles.values())

    async def perform_transfer(
        self,
        network: str,
        from_address: str,
        to_address: str,
        amount: Decimal,
        token: str,
    ) -> Receipt:
        profile = self._profiles.get(network)
        if profile is None:
            raise AdapterError(
                f"No route to unknown network '{network}'",
                "INVALID_ROUTE",
                kind=FailureType.PERMANENT,
                network=network,
            )

        confirm_ms = round(profile.avg_confirmation_ms * self._rng.uniform(0.5, 1.5))
        await self._sleep(min(confirm_ms, self._max_latency_ms) / 1000)

        if self._rng.random() > profile.reliability:
            error = self._random_failure(network)
            logger.debug(
                "simulated transfer failed",
                network=network,
                code=error.code,
                kind=error.kind,
            )
            raise error

        fee = (profile.base_fee * Decimal(str(self._rng.uniform(0.8, 1.2)))).quantize(
            Decimal("0.000001")
        )
        return Receipt(
            tx_ref=f"0x{self._rng.getrandbits(256):064x}",
            network=network,
            status=ReceiptStatus.CONFIRMED,
            fee=fee,
            block_height=18_000_000 + self._rng.randrange(1_000_000),
            confirm_ms=confirm_ms,
        )

    def _random_failure(self, network: str) -> AdapterError:
        if self._rng.random() < _TRANSIENT_WEIGHT:
            kind, pool = FailureType.TRANSIENT, _TRANSIENT_FAILURES
        else:
            kind, pool = FailureType.PERMANENT, _PERMANENT_FAILURES
        code, message = self._rng.choice(pool)
        return AdapterError(message, code, kind=kind, network=network)
