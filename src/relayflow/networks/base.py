from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal

from relayflow.core.types import Receipt


class NetworkAdapter(ABC):
    """Abstract funds-movement capability over one or more networks.

    Implementations either return a :class:`Receipt` or raise
    :class:`~relayflow.core.exceptions.AdapterError`. The orchestration
    core treats them as untrusted, best-effort services.
    """

    @abstractmethod
    async def perform_transfer(
        self,
        network: str,
        from_address: str,
        to_address: str,
        amount: Decimal,
        token: str,
    ) -> Receipt:
        """Move *amount* of *token* on *network* and return the confirmation."""

    async def close(self) -> None:
        """Release resources held by the adapter."""
