"""Persistence contract for workflows.

The store is a passive record keeper: the orchestrator computes every new
state and the store only writes it. Stores do guard the structural
invariants of a workflow record and reject writes that would break them.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from uuid import uuid4

from relayflow.core.constants import StepStatus, WorkflowStatus
from relayflow.core.exceptions import WorkflowStateError
from relayflow.core.state_machine import is_terminal
from relayflow.core.types import StepResult, Workflow, WorkflowDefinition, WorkflowStats

# Statuses that stamp ``completed_at``.
FINISHED_STATUSES = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.WITHDRAWN})
FAILED_STATUSES = frozenset({WorkflowStatus.FAILED, WorkflowStatus.WITHDRAWN})
ACTIVE_STATUSES = frozenset(
    {WorkflowStatus.PENDING, WorkflowStatus.EXECUTING, WorkflowStatus.RECOVERING}
)


def new_workflow_id() -> str:
    return f"wf_{uuid4().hex[:8]}"


def check_step_write(
    workflow: Workflow, current_step: int, step_results: Sequence[StepResult]
) -> None:
    """Reject a progress write that would break a workflow invariant.

    Raises:
        WorkflowStateError: If the workflow is terminal, ``current_step``
            would decrease or overflow, there are more results than steps,
            or a completed result follows a non-completed one.
    """
    if is_terminal(workflow.status):
        raise WorkflowStateError(
            f"Workflow {workflow.id} is {workflow.status}; no further step writes allowed",
            code="TERMINAL_WORKFLOW",
        )
    if current_step < workflow.current_step:
        raise WorkflowStateError(
            f"current_step may not decrease ({workflow.current_step} -> {current_step})",
            code="STEP_REGRESSION",
        )
    if current_step > workflow.total_steps:
        raise WorkflowStateError(
            f"current_step {current_step} exceeds total_steps {workflow.total_steps}",
            code="STEP_OVERFLOW",
        )
    if len(step_results) > workflow.total_steps:
        raise WorkflowStateError(
            f"{len(step_results)} results for {workflow.total_steps} steps",
            code="TOO_MANY_RESULTS",
        )
    for index, result in enumerate(step_results):
        if result.status != StepStatus.COMPLETED:
            continue
        if any(r.status != StepStatus.COMPLETED for r in step_results[:index]):
            raise WorkflowStateError(
                f"Step {index} is completed but an earlier step is not",
                code="ORDERING_VIOLATION",
            )


def check_status_write(
    workflow: Workflow, status: WorkflowStatus, expected: WorkflowStatus | None
) -> None:
    """Reject a status write onto a terminal record or a stale expected status.

    Raises:
        WorkflowStateError: ``TERMINAL_WORKFLOW`` if the stored status is
            terminal, ``STATUS_CONFLICT`` if it differs from *expected*.
    """
    if is_terminal(workflow.status):
        raise WorkflowStateError(
            f"Workflow {workflow.id} is {workflow.status}; cannot move to {status}",
            code="TERMINAL_WORKFLOW",
        )
    if expected is not None and workflow.status != expected:
        raise WorkflowStateError(
            f"Workflow {workflow.id} is {workflow.status}, expected {expected}",
            code="STATUS_CONFLICT",
        )


def compute_stats(workflows: Iterable[Workflow]) -> WorkflowStats:
    total = completed = failed = active = 0
    durations: list[float] = []
    for wf in workflows:
        total += 1
        if wf.status == WorkflowStatus.COMPLETED:
            completed += 1
        elif wf.status in FAILED_STATUSES:
            failed += 1
        elif wf.status in ACTIVE_STATUSES:
            active += 1
        if wf.completed_at is not None:
            durations.append((wf.completed_at - wf.created_at).total_seconds() * 1000)
    avg = round(sum(durations) / len(durations)) if durations else 0
    return WorkflowStats(
        total=total, completed=completed, failed=failed, active=active, avg_duration_ms=avg
    )


class WorkflowStore(ABC):
    """Abstract workflow persistence.

    Every operation is keyed by workflow id and atomic per call. Writes
    for a single workflow are serialized. Execution claims live in the
    store so that every orchestrator sharing it sees the same owner.
    """

    @abstractmethod
    async def create_workflow(self, definition: WorkflowDefinition) -> Workflow:
        """Persist a new workflow in ``created`` status and return it."""

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Return the workflow, or ``None`` if the id is unknown."""

    @abstractmethod
    async def update_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        error: str | None = None,
        *,
        expected: WorkflowStatus | None = None,
    ) -> Workflow:
        """Write *status* and *error*, stamp ``updated_at`` and return the record.

        ``completed_at`` is stamped when *status* is ``completed`` or
        ``withdrawn``. With *expected* set the write only happens while the
        stored status still equals it.

        Raises:
            WorkflowNotFoundError: If the id is unknown.
            WorkflowStateError: If the stored status is terminal or is not
                *expected* (see :func:`check_status_write`).
        """

    @abstractmethod
    async def update_step(
        self, workflow_id: str, current_step: int, step_results: Sequence[StepResult]
    ) -> Workflow:
        """Write progress (``current_step`` and the full result list).

        Raises:
            WorkflowNotFoundError: If the id is unknown.
            WorkflowStateError: If the write breaks a workflow invariant.
        """

    @abstractmethod
    async def list_workflows(
        self, status: WorkflowStatus | None = None, limit: int = 50
    ) -> list[Workflow]:
        """Return workflows newest first, optionally filtered by status."""

    @abstractmethod
    async def claim(self, workflow_id: str, owner: str) -> bool:
        """Claim the right to execute *workflow_id* for *owner*.

        Returns ``False`` when another owner holds the claim. Claiming
        again as the current owner succeeds.

        Raises:
            WorkflowNotFoundError: If the id is unknown.
        """

    @abstractmethod
    async def release(self, workflow_id: str, owner: str) -> None:
        """Drop *owner*'s claim; a claim held by anyone else is left alone."""

    async def stats(self) -> WorkflowStats:
        """Aggregate counters over every stored workflow."""
        return compute_stats(await self.list_workflows(limit=-1))

    async def close(self) -> None:
        """Release resources held by the store."""
