"""Network adapters: the abstract contract, a simulator and a scripted mock."""
from relayflow.networks.base import NetworkAdapter
from relayflow.networks.mock import ScriptedNetworkAdapter, TransferCall
from relayflow.networks.simulated import (
    NETWORK_PROFILES,
    NetworkProfile,
    SimulatedNetworkAdapter,
    get_network_profile,
    network_profiles,
)

__all__ = [
    "NETWORK_PROFILES",
    "NetworkAdapter",
    "NetworkProfile",
    "ScriptedNetworkAdapter",
    "SimulatedNetworkAdapter",
    "TransferCall",
    "get_network_profile",
    "network_profiles",
]
