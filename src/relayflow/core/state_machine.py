"""Legal status transitions for workflows and individual steps.

This module is the single gate every status change goes through. It is
purely functional: nothing here touches storage or emits events.
"""

from __future__ import annotations

from typing import TypeVar

from relayflow.core.constants import StepStatus, WorkflowStatus
from relayflow.core.exceptions import InvalidTransitionError

WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.CREATED: frozenset({WorkflowStatus.PENDING}),
    WorkflowStatus.PENDING: frozenset({WorkflowStatus.EXECUTING}),
    WorkflowStatus.EXECUTING: frozenset(
        {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.RECOVERING}
    ),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(
        {WorkflowStatus.RECOVERING, WorkflowStatus.WITHDRAWAL_PENDING}
    ),
    WorkflowStatus.RECOVERING: frozenset(
        {
            WorkflowStatus.EXECUTING,
            WorkflowStatus.RECOVERED,
            WorkflowStatus.WITHDRAWAL_PENDING,
        }
    ),
    WorkflowStatus.RECOVERED: frozenset({WorkflowStatus.EXECUTING}),
    WorkflowStatus.WITHDRAWAL_PENDING: frozenset(
        {WorkflowStatus.WITHDRAWN, WorkflowStatus.FAILED}
    ),
    WorkflowStatus.WITHDRAWN: frozenset(),
}

STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.EXECUTING}),
    StepStatus.EXECUTING: frozenset({StepStatus.COMPLETED, StepStatus.FAILED}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset({StepStatus.RECOVERING, StepStatus.SKIPPED}),
    StepStatus.RECOVERING: frozenset({StepStatus.EXECUTING, StepStatus.SKIPPED}),
    StepStatus.RECOVERED: frozenset({StepStatus.EXECUTING}),
    StepStatus.SKIPPED: frozenset(),
}

_S = TypeVar("_S", WorkflowStatus, StepStatus)


def _table(status: WorkflowStatus | StepStatus) -> dict:
    # Workflow and step enums share values, so dispatch on the enum type.
    if isinstance(status, WorkflowStatus):
        return WORKFLOW_TRANSITIONS
    if isinstance(status, StepStatus):
        return STEP_TRANSITIONS
    raise TypeError(f"Not a workflow or step status: {status!r}")


def allowed_transitions(status: _S) -> list[_S]:
    """Return the statuses reachable from *status*, in declaration order."""
    allowed = _table(status).get(status, frozenset())
    return [s for s in type(status) if s in allowed]


def can_transition(current: _S, target: _S) -> bool:
    """Return ``True`` if moving from *current* to *target* is legal."""
    if type(current) is not type(target):
        return False
    return target in _table(current).get(current, frozenset())


def transition(current: _S, target: _S) -> _S:
    """Validate a status change and return *target*.

    Raises:
        InvalidTransitionError: If the transition is not in the table.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target, allowed_transitions(current))
    return target


def is_terminal(status: WorkflowStatus | StepStatus) -> bool:
    """A status is terminal when it has no outgoing transitions."""
    return not _table(status).get(status)
