"""Shared test fixtures."""
from __future__ import annotations

import random
from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest

from relayflow.audit.logger import AuditLogger
from relayflow.audit.sinks import InMemoryAuditSink
from relayflow.core.config import EngineConfig
from relayflow.core.types import StepDefinition, WorkflowDefinition
from relayflow.engine.orchestrator import Orchestrator
from relayflow.networks.mock import ScriptedNetworkAdapter
from relayflow.resilience.retry import RetryPolicy
from relayflow.store.memory import InMemoryWorkflowStore
from relayflow.store.sqlite import SQLiteWorkflowStore


class SleepRecorder:
    """Stands in for ``asyncio.sleep`` and records every requested delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def adapter() -> ScriptedNetworkAdapter:
    return ScriptedNetworkAdapter()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def audit(sink: InMemoryAuditSink) -> AuditLogger:
    return AuditLogger([sink])


@pytest.fixture
def store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore()


@pytest.fixture
async def sqlite_store() -> AsyncGenerator[SQLiteWorkflowStore, None]:
    async with SQLiteWorkflowStore(":memory:") as st:
        yield st


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(retry_policy=RetryPolicy(max_retries=3, backoff_base_ms=10))


@pytest.fixture
def orchestrator(
    adapter: ScriptedNetworkAdapter,
    store: InMemoryWorkflowStore,
    audit: AuditLogger,
    config: EngineConfig,
    rng: random.Random,
    sleep: SleepRecorder,
) -> Orchestrator:
    return Orchestrator.create(
        adapter, store=store, audit=audit, config=config, rng=rng, sleep=sleep
    )


@pytest.fixture
def transfer_definition() -> WorkflowDefinition:
    """Single transfer step on chain_a."""
    return WorkflowDefinition(
        name="Single Transfer",
        source_address="0xSrc",
        destination_address="0xDst",
        steps=[
            StepDefinition(type="transfer", network="chain_a", token="USDC", amount=Decimal("10"))
        ],
    )
