from __future__ import annotations

from enum import StrEnum


class WorkflowStatus(StrEnum):
    CREATED = "created"
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    RECOVERING = "recovering"
    RECOVERED = "recovered"
    WITHDRAWAL_PENDING = "withdrawal_pending"
    WITHDRAWN = "withdrawn"


class StepStatus(StrEnum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    RECOVERING = "recovering"
    RECOVERED = "recovered"
    SKIPPED = "skipped"


class StepType(StrEnum):
    ONRAMP = "onramp"
    BRIDGE = "bridge"
    SWAP = "swap"
    TRANSFER = "transfer"


class FailureType(StrEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ReceiptStatus(StrEnum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REVERTED = "reverted"


class AuditStatus(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    INFO = "info"


class RecoveryReason(StrEnum):
    RETRY_SUCCESS = "retry_success"
    RETRIES_EXHAUSTED = "retries_exhausted"
    PERMANENT_FAILURE = "permanent_failure"


# Error codes for which retrying is futile.
PERMANENT_ERROR_CODES: frozenset[str] = frozenset(
    {
        "INSUFFICIENT_BALANCE",
        "NO_LIQUIDITY",
        "INVALID_ROUTE",
        "CONTRACT_REVERTED",
    }
)

UNKNOWN_ERROR_CODE = "UNKNOWN"

DEFAULT_BRIDGE_NETWORK = "chain_b"
DEFAULT_SWAP_TOKEN = "WETH"

# Counterparties used by the step executor for non-wallet legs.
FIAT_PROVIDER_ADDRESS = "fiat_provider"
BRIDGE_CONTRACT_ADDRESS = "bridge_contract"
DEX_ROUTER_ADDRESS = "dex_router"

# Audit step index for workflow-level events.
WORKFLOW_LEVEL_STEP = -1
