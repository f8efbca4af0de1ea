from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Sequence

import structlog

from relayflow.core.constants import WorkflowStatus
from relayflow.core.exceptions import WorkflowNotFoundError
from relayflow.core.types import StepResult, Workflow, WorkflowDefinition, utcnow
from relayflow.store.base import (
    FINISHED_STATUSES,
    WorkflowStore,
    check_status_write,
    check_step_write,
    new_workflow_id,
)

logger = structlog.get_logger(__name__)


class InMemoryWorkflowStore(WorkflowStore):
    """Dict-backed store with one :class:`asyncio.Lock` per workflow.

    Reads return deep copies so callers can never mutate stored state
    without going through :meth:`update_status` or :meth:`update_step`.
    """

    def __init__(self) -> None:
        self._workflows: dict[str, Workflow] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._claims: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._workflows)

    async def create_workflow(self, definition: WorkflowDefinition) -> Workflow:
        now = utcnow()
        workflow = Workflow(
            id=new_workflow_id(),
            name=definition.name,
            description=definition.description,
            status=WorkflowStatus.CREATED,
            total_steps=len(definition.steps),
            definition=definition,
            created_at=now,
            updated_at=now,
        )
        self._workflows[workflow.id] = workflow
        logger.debug("workflow stored", workflow_id=workflow.id, steps=workflow.total_steps)
        return workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow is not None else None

    async def update_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        error: str | None = None,
        *,
        expected: WorkflowStatus | None = None,
    ) -> Workflow:
        async with self._locks[workflow_id]:
            current = self._require(workflow_id)
            check_status_write(current, status, expected)
            now = utcnow()
            updated = current.model_copy(
                update={
                    "status": status,
                    "error": error,
                    "updated_at": now,
                    "completed_at": now if status in FINISHED_STATUSES else current.completed_at,
                }
            )
            self._workflows[workflow_id] = updated
            return updated.model_copy(deep=True)

    async def update_step(
        self, workflow_id: str, current_step: int, step_results: Sequence[StepResult]
    ) -> Workflow:
        async with self._locks[workflow_id]:
            current = self._require(workflow_id)
            check_step_write(current, current_step, step_results)
            updated = current.model_copy(
                update={
                    "current_step": current_step,
                    "step_results": [r.model_copy(deep=True) for r in step_results],
                    "updated_at": utcnow(),
                }
            )
            self._workflows[workflow_id] = updated
            return updated.model_copy(deep=True)

    async def list_workflows(
        self, status: WorkflowStatus | None = None, limit: int = 50
    ) -> list[Workflow]:
        matching = [
            wf
            for wf in reversed(self._workflows.values())
            if status is None or wf.status == status
        ]
        # Stable sort keeps insertion order (newest first) among equal timestamps.
        matching.sort(key=lambda wf: wf.created_at, reverse=True)
        if limit >= 0:
            matching = matching[:limit]
        return [wf.model_copy(deep=True) for wf in matching]

    async def claim(self, workflow_id: str, owner: str) -> bool:
        async with self._locks[workflow_id]:
            self._require(workflow_id)
            holder = self._claims.setdefault(workflow_id, owner)
            return holder == owner

    async def release(self, workflow_id: str, owner: str) -> None:
        async with self._locks[workflow_id]:
            if self._claims.get(workflow_id) == owner:
                del self._claims[workflow_id]

    def _require(self, workflow_id: str) -> Workflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow
