"""Tests for templates/registry.py."""
from __future__ import annotations

from decimal import Decimal

import pytest

from relayflow.core.constants import StepType
from relayflow.templates.registry import TEMPLATES, get_template, list_templates


def test_list_templates_sorted() -> None:
    assert list_templates() == ["cross_chain_swap", "failure_scenario", "multi_hop"]


@pytest.mark.parametrize("name", sorted(TEMPLATES))
def test_every_template_builds(name: str) -> None:
    definition = get_template(name)
    assert definition.steps
    assert definition.source_address.startswith("0xSourceWallet")


def test_cross_chain_swap_shape() -> None:
    definition = get_template("cross_chain_swap")
    assert [s.type for s in definition.steps] == [
        StepType.ONRAMP,
        StepType.BRIDGE,
        StepType.SWAP,
        StepType.TRANSFER,
    ]
    assert definition.steps[1].destination_network == "chain_b"
    assert definition.steps[2].destination_token == "WETH"
    assert all(s.amount == Decimal("100") for s in definition.steps)
    assert definition.steps[3].to_address == definition.destination_address


def test_templates_return_fresh_definitions() -> None:
    assert get_template("multi_hop") == get_template("multi_hop")
    assert get_template("multi_hop") is not get_template("multi_hop")


def test_unknown_template() -> None:
    with pytest.raises(KeyError, match="Unknown template 'bogus'"):
        get_template("bogus")
