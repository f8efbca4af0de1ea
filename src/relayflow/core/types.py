from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, Field

from relayflow.core.constants import ReceiptStatus, StepStatus, StepType, WorkflowStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepDefinition(BaseModel):
    """One step of a workflow template.

    ``destination_network`` is meaningful for bridges and
    ``destination_token`` for swaps; both fall back to engine defaults when
    omitted. ``to_address`` overrides the workflow destination for
    transfers.
    """

    type: StepType
    network: str = Field(..., min_length=1)
    destination_network: str | None = None
    token: str = Field(..., min_length=1)
    destination_token: str | None = None
    amount: Decimal = Field(..., gt=0)
    to_address: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class WorkflowDefinition(BaseModel):
    """Immutable description of a workflow: ordered steps plus endpoints."""

    name: str
    description: str = ""
    steps: list[StepDefinition] = Field(..., min_length=1)
    source_address: str
    destination_address: str

    model_config = {"frozen": True}


class ExecutionContext(BaseModel):
    workflow_id: str
    step_index: int = Field(..., ge=0)
    source_address: str
    destination_address: str


class Receipt(BaseModel):
    """Confirmation returned by a network adapter for a successful transfer."""

    tx_ref: str
    network: str
    status: ReceiptStatus = ReceiptStatus.CONFIRMED
    fee: Decimal = Decimal("0")
    block_height: int = 0
    confirm_ms: int = 0


class StepResult(BaseModel):
    """Outcome of one step attempt.

    ``amount`` and ``token`` describe what the step produced, which differs
    from the definition's input for swaps. ``metadata`` carries provider
    names, linked transaction references and ``errorCode`` on failure.
    """

    step_index: int = Field(..., ge=0)
    type: StepType
    status: StepStatus = StepStatus.PENDING
    network: str
    tx_ref: str | None = None
    amount: Decimal
    token: str
    fee: Decimal | None = None
    duration_ms: int = 0
    retry_count: int = Field(default=0, ge=0)
    error: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def error_code(self) -> str | None:
        return self.metadata.get("errorCode")


class Workflow(BaseModel):
    """Mutable execution record of a workflow, owned by the orchestrator."""

    id: str
    name: str
    description: str = ""
    status: WorkflowStatus = WorkflowStatus.CREATED
    current_step: int = Field(default=0, ge=0)
    total_steps: int = Field(..., ge=1)
    definition: WorkflowDefinition
    step_results: list[StepResult] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def last_result(self) -> StepResult | None:
        """The most recently written step result, if any."""
        return self.step_results[-1] if self.step_results else None

    def completed_results(self) -> list[StepResult]:
        return [r for r in self.step_results if r.status == StepStatus.COMPLETED]


class WorkflowStats(BaseModel):
    """Aggregate counters over all stored workflows.

    Attributes:
        total: Number of workflows.
        completed: Workflows that finished successfully.
        failed: Workflows that ended ``failed`` or ``withdrawn``.
        active: Workflows that are ``pending``, ``executing`` or ``recovering``.
        avg_duration_ms: Mean creation-to-completion time of finished workflows.
    """

    total: int = 0
    completed: int = 0
    failed: int = 0
    active: int = 0
    avg_duration_ms: int = 0

    @property
    def success_rate(self) -> int:
        """Completed workflows as a rounded percentage of the total."""
        if self.total == 0:
            return 0
        return round(self.completed / self.total * 100)
