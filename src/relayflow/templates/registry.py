from __future__ import annotations

from typing import Any

from relayflow.core.types import WorkflowDefinition

TEMPLATES: dict[str, dict[str, Any]] = {
    "cross_chain_swap": {
        "name": "Cross-Chain Swap",
        "description": "Onramp, bridge, swap and transfer across Chain A and Chain B",
        "source_address": "0xSourceWallet001",
        "destination_address": "0xDestWallet001",
        "steps": [
            {"type": "onramp", "network": "chain_a", "token": "USDC", "amount": "100"},
            {
                "type": "bridge",
                "network": "chain_a",
                "destination_network": "chain_b",
                "token": "USDC",
                "amount": "100",
            },
            {
                "type": "swap",
                "network": "chain_b",
                "token": "USDC",
                "destination_token": "WETH",
                "amount": "100",
            },
            {
                "type": "transfer",
                "network": "chain_b",
                "token": "WETH",
                "amount": "100",
                "to_address": "0xDestWallet001",
            },
        ],
    },
    "multi_hop": {
        "name": "Multi-Hop Transfer",
        "description": "Bridge A to C, swap on C, transfer on C",
        "source_address": "0xSourceWallet002",
        "destination_address": "0xDestWallet002",
        "steps": [
            {
                "type": "bridge",
                "network": "chain_a",
                "destination_network": "chain_c",
                "token": "USDC",
                "amount": "250",
            },
            {
                "type": "swap",
                "network": "chain_c",
                "token": "USDC",
                "destination_token": "AVAX",
                "amount": "250",
            },
            {
                "type": "transfer",
                "network": "chain_c",
                "token": "AVAX",
                "amount": "250",
                "to_address": "0xDestWallet002",
            },
        ],
    },
    # Routed through the least reliable networks to exercise recovery.
    "failure_scenario": {
        "name": "Failure Recovery Test",
        "description": "Bridge A to B, swap on B, bridge B to C, transfer on C",
        "source_address": "0xSourceWallet003",
        "destination_address": "0xDestWallet003",
        "steps": [
            {
                "type": "bridge",
                "network": "chain_a",
                "destination_network": "chain_b",
                "token": "USDC",
                "amount": "500",
            },
            {
                "type": "swap",
                "network": "chain_b",
                "token": "USDC",
                "destination_token": "DAI",
                "amount": "500",
            },
            {
                "type": "bridge",
                "network": "chain_b",
                "destination_network": "chain_c",
                "token": "DAI",
                "amount": "500",
            },
            {
                "type": "transfer",
                "network": "chain_c",
                "token": "DAI",
                "amount": "500",
                "to_address": "0xDestWallet003",
            },
        ],
    },
}


def get_template(name: str) -> WorkflowDefinition:
    """Get a pre-built WorkflowDefinition by template name.

    Args:
        name: Template name (e.g., "cross_chain_swap", "multi_hop").

    Returns:
        A fresh WorkflowDefinition built from the template data.

    Raises:
        KeyError: If the template name is not found.
    """
    if name not in TEMPLATES:
        available = ", ".join(sorted(TEMPLATES))
        raise KeyError(f"Unknown template '{name}'. Available: {available}")
    return WorkflowDefinition.model_validate(TEMPLATES[name])


def list_templates() -> list[str]:
    """Return a sorted list of available template names."""
    return sorted(TEMPLATES)
