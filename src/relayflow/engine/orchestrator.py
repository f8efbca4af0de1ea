"""Orchestrator: drives a workflow from its current step to a terminal status.

The orchestrator owns every status decision. It executes steps strictly in
order, persists progress after every step so an interrupted run resumes at
the first unexecuted step, hands failures to the
:class:`~relayflow.engine.recovery.RecoveryEngine` and, when recovery gives
up, runs the compensating withdrawal and marks the workflow withdrawn.
"""
from __future__ import annotations

import asyncio
import random
from collections.abc import Sequence
from uuid import uuid4

import structlog

from relayflow.audit.logger import AuditLogger
from relayflow.audit.sinks import InMemoryAuditSink
from relayflow.core.config import EngineConfig
from relayflow.core.constants import (
    WORKFLOW_LEVEL_STEP,
    AuditStatus,
    StepStatus,
    WorkflowStatus,
)
from relayflow.core.exceptions import (
    InvalidTransitionError,
    UnsupportedStepTypeError,
    WorkflowConflictError,
    WorkflowNotFoundError,
    WorkflowStateError,
)
from relayflow.core.state_machine import is_terminal, transition
from relayflow.core.types import (
    ExecutionContext,
    StepResult,
    Workflow,
    WorkflowDefinition,
    WorkflowStats,
)
from relayflow.engine.recovery import RecoveryEngine, SleepFn
from relayflow.networks.base import NetworkAdapter
from relayflow.steps.executor import StepExecutor
from relayflow.store.base import WorkflowStore
from relayflow.store.memory import InMemoryWorkflowStore
from relayflow.templates.registry import get_template

logger = structlog.get_logger(__name__)


def terminal_error(result: StepResult) -> str:
    """Error message carried by a withdrawn workflow, prefixed with the error code."""
    message = result.error or "Unknown error"
    code = result.error_code
    if code and code not in message:
        return f"{code}: {message}"
    return message


def _place(results: Sequence[StepResult], index: int, result: StepResult) -> list[StepResult]:
    """Return a copy of *results* with *result* written at slot *index*."""
    placed = list(results)
    if index < len(placed):
        placed[index] = result
    elif index == len(placed):
        placed.append(result)
    else:
        raise WorkflowStateError(
            f"Cannot write result {index} with only {len(placed)} recorded",
            code="RESULT_GAP",
        )
    return placed


class _StoppedExternally(Exception):
    """Unwinds a run whose workflow was made terminal by someone else."""

    def __init__(self, workflow: Workflow) -> None:
        super().__init__(workflow.id)
        self.workflow = workflow


class Orchestrator:
    """Top-level workflow coordinator.

    Args:
        store: Workflow persistence.
        executor: Step executor used for first attempts.
        recovery: Recovery engine used when a step fails.
        audit: Audit logger receiving workflow-level events.

    Example::

        orchestrator = Orchestrator.create(SimulatedNetworkAdapter())
        wf = await orchestrator.create_from_template("cross_chain_swap")
        wf = await orchestrator.execute(wf.id)
        print(wf.status, wf.error)
    """

    def __init__(
        self,
        store: WorkflowStore,
        executor: StepExecutor,
        recovery: RecoveryEngine,
        audit: AuditLogger,
    ) -> None:
        self._store = store
        self._executor = executor
        self._recovery = recovery
        self._audit = audit
        self._owner = f"orch_{uuid4().hex[:8]}"
        self._running: set[str] = set()
        self._tasks: set[asyncio.Task[Workflow]] = set()

    @classmethod
    def create(
        cls,
        adapter: NetworkAdapter,
        *,
        store: WorkflowStore | None = None,
        audit: AuditLogger | None = None,
        config: EngineConfig | None = None,
        rng: random.Random | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> Orchestrator:
        """Wire an orchestrator with its executor and recovery engine.

        Defaults to an in-memory store and an audit logger with a single
        :class:`InMemoryAuditSink`.
        """
        if config is None:
            config = EngineConfig()
        if rng is None:
            rng = random.Random()
        if audit is None:
            audit = AuditLogger([InMemoryAuditSink()])
        if store is None:
            store = InMemoryWorkflowStore()
        executor = StepExecutor(adapter, config=config, rng=rng)
        recovery = RecoveryEngine(
            executor, audit, policy=config.retry_policy, rng=rng, sleep=sleep
        )
        return cls(store, executor, recovery, audit)

    def __repr__(self) -> str:
        return f"Orchestrator(store={self._store!r}, running={len(self._running)})"

    @property
    def audit(self) -> AuditLogger:
        return self._audit

    @property
    def store(self) -> WorkflowStore:
        return self._store

    # ------------------------------------------------------------------
    # Workflow records
    # ------------------------------------------------------------------

    async def create_workflow(self, definition: WorkflowDefinition) -> Workflow:
        """Persist a new workflow in ``created`` status."""
        workflow = await self._store.create_workflow(definition)
        await self._audit.record(
            workflow.id,
            WORKFLOW_LEVEL_STEP,
            "workflow_created",
            definition.steps[0].network,
            AuditStatus.INFO,
            message=(
                f'Workflow "{definition.name}" created with {len(definition.steps)} steps'
            ),
        )
        logger.info("workflow created", workflow_id=workflow.id, steps=workflow.total_steps)
        return workflow

    async def create_from_template(self, name: str) -> Workflow:
        """Create a workflow from a named template.

        Raises:
            KeyError: If the template name is not found.
        """
        return await self.create_workflow(get_template(name))

    async def get_workflow(self, workflow_id: str) -> Workflow:
        """Return the workflow.

        Raises:
            WorkflowNotFoundError: If the id is unknown.
        """
        workflow = await self._store.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def list_workflows(
        self, status: WorkflowStatus | None = None, limit: int = 50
    ) -> list[Workflow]:
        return await self._store.list_workflows(status=status, limit=limit)

    async def stats(self) -> WorkflowStats:
        return await self._store.stats()

    def is_running(self, workflow_id: str) -> bool:
        """Whether an execution of *workflow_id* is in flight on this orchestrator."""
        return workflow_id in self._running

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, workflow_id: str) -> Workflow:
        """Drive the workflow to a terminal status and return it.

        Re-executing a terminal workflow returns it unchanged. A workflow
        made terminal by someone else mid-run stops at the next status or
        progress write and is returned as stored.

        Raises:
            WorkflowNotFoundError: If the id is unknown.
            WorkflowConflictError: If an execution is already in flight here
                or on another orchestrator sharing the store.
            UnsupportedStepTypeError: If a step has no executor; the
                persisted workflow stays resumable at that step.
            InvalidTransitionError: On an illegal status change.
            WorkflowStateError: If the stored status changed under the run
                to another non-terminal status.
        """
        workflow = await self.get_workflow(workflow_id)
        if is_terminal(workflow.status):
            return workflow
        await self._claim(workflow_id)
        try:
            return await self._run_claimed(workflow_id)
        finally:
            await self._release(workflow_id)

    async def submit(self, workflow_id: str) -> asyncio.Task[Workflow]:
        """Start executing in the background and return the task.

        Admission control runs before the task is scheduled, so a
        conflicting request fails here rather than inside the task.

        Raises:
            WorkflowNotFoundError: If the id is unknown.
            WorkflowStateError: If the workflow is already terminal.
            WorkflowConflictError: If an execution is already in flight.
        """
        workflow = await self.get_workflow(workflow_id)
        if is_terminal(workflow.status):
            raise WorkflowStateError(
                f"Workflow already in terminal state: {workflow.status}",
                code="TERMINAL_WORKFLOW",
            )
        await self._claim(workflow_id)
        task = asyncio.create_task(self._run_and_release(workflow_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _claim(self, workflow_id: str) -> None:
        # Local check and add with no await in between: atomic on the event loop.
        if workflow_id in self._running:
            logger.warning("execution rejected, already running", workflow_id=workflow_id)
            raise WorkflowConflictError(workflow_id)
        self._running.add(workflow_id)
        try:
            claimed = await self._store.claim(workflow_id, self._owner)
        except BaseException:
            self._running.discard(workflow_id)
            raise
        if not claimed:
            self._running.discard(workflow_id)
            logger.warning(
                "execution rejected, claimed by another orchestrator",
                workflow_id=workflow_id,
            )
            raise WorkflowConflictError(workflow_id)

    async def _release(self, workflow_id: str) -> None:
        try:
            await self._store.release(workflow_id, self._owner)
        finally:
            self._running.discard(workflow_id)

    async def _run_and_release(self, workflow_id: str) -> Workflow:
        try:
            return await self._run_claimed(workflow_id)
        finally:
            await self._release(workflow_id)

    async def _run_claimed(self, workflow_id: str) -> Workflow:
        # Re-read after claiming: a run that just finished may have moved it on.
        workflow = await self.get_workflow(workflow_id)
        if is_terminal(workflow.status):
            return workflow
        try:
            return await self._drive(workflow)
        except _StoppedExternally as stop:
            return stop.workflow
        except (InvalidTransitionError, UnsupportedStepTypeError) as exc:
            logger.error(
                "workflow execution aborted",
                workflow_id=workflow_id,
                error=str(exc),
                code=exc.code,
            )
            await self._audit.record(
                workflow_id,
                WORKFLOW_LEVEL_STEP,
                "workflow_execution_aborted",
                workflow.definition.steps[0].network,
                AuditStatus.FAILURE,
                message=str(exc),
                metadata={"errorCode": exc.code or ""},
            )
            raise

    async def _set_status(
        self,
        workflow_id: str,
        current: WorkflowStatus,
        target: WorkflowStatus,
        error: str | None = None,
    ) -> WorkflowStatus:
        status = transition(current, target)
        try:
            await self._store.update_status(workflow_id, status, error, expected=current)
        except WorkflowStateError:
            await self._stop_if_terminal(workflow_id)
            raise
        logger.debug("workflow status changed", workflow_id=workflow_id, status=status)
        return status

    async def _enter_executing(self, workflow: Workflow) -> WorkflowStatus:
        """Bring a non-terminal workflow into ``executing``.

        An interrupted ``withdrawal_pending`` run is finished instead and
        ``withdrawn`` is returned.
        """
        status = workflow.status
        if status == WorkflowStatus.CREATED:
            status = await self._set_status(workflow.id, status, WorkflowStatus.PENDING)
        if status == WorkflowStatus.FAILED:
            status = await self._set_status(
                workflow.id, status, WorkflowStatus.RECOVERING, workflow.error
            )
        if status == WorkflowStatus.WITHDRAWAL_PENDING:
            await self._recovery.execute_withdrawal(workflow, workflow.completed_results())
            return await self._set_status(
                workflow.id, status, WorkflowStatus.WITHDRAWN, workflow.error
            )
        if status == WorkflowStatus.EXECUTING:
            logger.info(
                "resuming interrupted workflow",
                workflow_id=workflow.id,
                step=workflow.current_step,
            )
            return status
        return await self._set_status(workflow.id, status, WorkflowStatus.EXECUTING)

    async def _drive(self, workflow: Workflow) -> Workflow:
        status = await self._enter_executing(workflow)
        if is_terminal(status):
            return await self.get_workflow(workflow.id)

        steps = workflow.definition.steps
        await self._audit.record(
            workflow.id,
            WORKFLOW_LEVEL_STEP,
            "workflow_execution_started",
            steps[0].network,
            AuditStatus.INFO,
            message=f"Starting execution from step {workflow.current_step}",
        )

        results: list[StepResult] = list(workflow.step_results)
        for index in range(workflow.current_step, len(steps)):
            await self._stop_if_terminal(workflow.id, index)

            step = steps[index]
            await self._audit.log_step_start(workflow.id, index, step.type, step.network)
            await self._save_progress(workflow.id, index, results)

            result = await self._executor.execute(step, self._context(workflow, index))

            if result.status == StepStatus.FAILED:
                await self._audit.log_step_failure(workflow.id, result)
                results = _place(results, index, result)
                await self._save_progress(workflow.id, index, results)
                status = await self._set_status(
                    workflow.id, status, WorkflowStatus.RECOVERING
                )

                outcome = await self._recovery.attempt_recovery(workflow, result, step)
                if not outcome.recovered or outcome.result is None:
                    error = terminal_error(result)
                    status = await self._set_status(
                        workflow.id, status, WorkflowStatus.WITHDRAWAL_PENDING, error
                    )
                    await self._recovery.execute_withdrawal(workflow, results[:index])
                    results = _place(results, index, outcome.result or result)
                    await self._save_progress(workflow.id, index, results)
                    await self._set_status(
                        workflow.id, status, WorkflowStatus.WITHDRAWN, error
                    )
                    logger.warning(
                        "workflow withdrawn",
                        workflow_id=workflow.id,
                        step=index,
                        reason=outcome.reason,
                        error=error,
                    )
                    return await self.get_workflow(workflow.id)

                result = outcome.result
                status = await self._set_status(
                    workflow.id, status, WorkflowStatus.EXECUTING
                )

            await self._audit.log_step_complete(workflow.id, result)
            results = _place(results, index, result)
            await self._save_progress(workflow.id, index + 1, results)

        await self._set_status(workflow.id, status, WorkflowStatus.COMPLETED)
        await self._audit.record(
            workflow.id,
            WORKFLOW_LEVEL_STEP,
            "workflow_completed",
            steps[-1].network,
            AuditStatus.SUCCESS,
            message=f"Workflow completed successfully. All {len(steps)} steps executed.",
        )
        logger.info("workflow completed", workflow_id=workflow.id, steps=len(steps))
        return await self.get_workflow(workflow.id)

    async def _stop_if_terminal(self, workflow_id: str, step: int | None = None) -> None:
        """Raise :class:`_StoppedExternally` if something else made the workflow terminal."""
        latest = await self.get_workflow(workflow_id)
        if not is_terminal(latest.status):
            return
        logger.warning(
            "workflow marked terminal externally, stopping",
            workflow_id=workflow_id,
            status=latest.status,
            step=step,
        )
        raise _StoppedExternally(latest)

    async def _save_progress(
        self, workflow_id: str, current_step: int, results: Sequence[StepResult]
    ) -> None:
        try:
            await self._store.update_step(workflow_id, current_step, results)
        except WorkflowStateError:
            await self._stop_if_terminal(workflow_id, current_step)
            raise

    @staticmethod
    def _context(workflow: Workflow, index: int) -> ExecutionContext:
        return ExecutionContext(
            workflow_id=workflow.id,
            step_index=index,
            source_address=workflow.definition.source_address,
            destination_address=workflow.definition.destination_address,
        )

    async def wait_all(self) -> None:
        """Wait for every background execution started with :meth:`submit`."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        """Wait for background executions, then close the audit logger and store."""
        await self.wait_all()
        await self._audit.close()
        await self._store.close()
