"""Recovery engine: failure classification, bounded retries, withdrawal.

Given a failed step, the engine decides whether the workflow can continue
(retry, then resume) or must unwind (compensating withdrawal). It never
raises for step failures: every outcome is returned as a
:class:`RecoveryOutcome`.
"""
from __future__ import annotations

import asyncio
import random
from collections.abc import Iterable
from typing import Awaitable, Callable

import structlog
from pydantic import BaseModel

from relayflow.audit.logger import AuditLogger
from relayflow.audit.models import AuditEvent
from relayflow.core.constants import (
    PERMANENT_ERROR_CODES,
    UNKNOWN_ERROR_CODE,
    WORKFLOW_LEVEL_STEP,
    AuditStatus,
    FailureType,
    RecoveryReason,
    StepStatus,
)
from relayflow.core.state_machine import transition
from relayflow.core.types import ExecutionContext, StepDefinition, StepResult, Workflow
from relayflow.resilience.retry import RetryPolicy
from relayflow.steps.executor import StepExecutor

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def classify_failure(code: str | None, message: str | None = None) -> FailureType:
    """Classify a step failure as transient or permanent.

    The error code decides when present. Without a usable code the message
    is scanned for any of the permanent codes. Everything else is
    transient.
    """
    if code and code.upper() != UNKNOWN_ERROR_CODE:
        return (
            FailureType.PERMANENT
            if code.upper() in PERMANENT_ERROR_CODES
            else FailureType.TRANSIENT
        )
    if message:
        upper = message.upper()
        if any(pattern in upper for pattern in PERMANENT_ERROR_CODES):
            return FailureType.PERMANENT
    return FailureType.TRANSIENT


class RecoveryOutcome(BaseModel):
    """Verdict of a recovery attempt.

    Attributes:
        recovered: ``True`` when a retry completed the step.
        reason: Why recovery ended.
        failure_type: Classification of the original failure.
        result: The completed result when recovered, otherwise the last
            failed attempt (``None`` when no retry ran).
        attempts: Number of retries performed.
    """

    recovered: bool
    reason: RecoveryReason
    failure_type: FailureType
    result: StepResult | None = None
    attempts: int = 0


class RecoveryEngine:
    """Bounded-retry recovery and compensating withdrawal.

    Args:
        executor: Step executor used to re-run a failed step.
        audit: Audit logger receiving every recovery event.
        policy: Retry count and backoff parameters.
        rng: Random source for backoff jitter.
        sleep: Coroutine used to wait between attempts.
    """

    def __init__(
        self,
        executor: StepExecutor,
        audit: AuditLogger,
        *,
        policy: RetryPolicy | None = None,
        rng: random.Random | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._executor = executor
        self._audit = audit
        self._policy = policy or RetryPolicy()
        self._rng = rng or random.Random()
        self._sleep = sleep

    def __repr__(self) -> str:
        return f"RecoveryEngine(max_retries={self._policy.max_retries})"

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def attempt_recovery(
        self,
        workflow: Workflow,
        failed: StepResult,
        step: StepDefinition,
    ) -> RecoveryOutcome:
        """Try to recover *failed* by re-running *step*.

        Permanent failures return immediately without retrying. Transient
        failures are retried up to ``policy.max_retries`` times with
        exponential backoff; the first completed attempt wins.

        Raises:
            InvalidTransitionError: If *failed* is not a failed result.
        """
        transition(failed.status, StepStatus.RECOVERING)
        error_code = failed.error_code or UNKNOWN_ERROR_CODE
        failure_type = classify_failure(failed.error_code, failed.error)

        await self._audit.record(
            workflow.id,
            failed.step_index,
            "recovery_started",
            failed.network,
            AuditStatus.INFO,
            message=f"Failure type: {failure_type}, error: {error_code}",
            metadata={"failureType": failure_type.value, "errorCode": error_code},
        )

        if failure_type == FailureType.PERMANENT:
            await self._audit.record(
                workflow.id,
                failed.step_index,
                "permanent_failure_detected",
                failed.network,
                AuditStatus.FAILURE,
                message=f"Permanent failure: {failed.error}. Triggering withdrawal.",
                metadata={"errorCode": error_code},
            )
            logger.info(
                "permanent failure, skipping retries",
                workflow_id=workflow.id,
                step=failed.step_index,
                code=error_code,
            )
            return RecoveryOutcome(
                recovered=False,
                reason=RecoveryReason.PERMANENT_FAILURE,
                failure_type=failure_type,
            )

        context = ExecutionContext(
            workflow_id=workflow.id,
            step_index=failed.step_index,
            source_address=workflow.definition.source_address,
            destination_address=workflow.definition.destination_address,
        )
        last: StepResult | None = None

        for attempt in range(1, self._policy.max_retries + 1):
            delay_ms = self._policy.compute_delay_ms(attempt, self._rng)
            await self._audit.record(
                workflow.id,
                failed.step_index,
                "retry_attempt",
                failed.network,
                AuditStatus.INFO,
                message=(
                    f"Retry {attempt}/{self._policy.max_retries} "
                    f"after {round(delay_ms)}ms backoff"
                ),
                metadata={"attempt": str(attempt), "backoffMs": str(round(delay_ms))},
            )
            await self._sleep(delay_ms / 1000)

            result = await self._retry_once(step, context, failed)
            last = result.model_copy(update={"retry_count": attempt})

            if last.status == StepStatus.COMPLETED:
                await self._audit.record(
                    workflow.id,
                    failed.step_index,
                    "retry_success",
                    last.network,
                    AuditStatus.SUCCESS,
                    tx_ref=last.tx_ref,
                    amount=last.amount,
                    token=last.token,
                    duration_ms=last.duration_ms,
                    fee=last.fee,
                    message=f"Recovered on attempt {attempt}",
                    metadata={"attempt": str(attempt)},
                )
                logger.info(
                    "step recovered",
                    workflow_id=workflow.id,
                    step=failed.step_index,
                    attempt=attempt,
                )
                return RecoveryOutcome(
                    recovered=True,
                    reason=RecoveryReason.RETRY_SUCCESS,
                    failure_type=failure_type,
                    result=last,
                    attempts=attempt,
                )

        await self._audit.record(
            workflow.id,
            failed.step_index,
            "retries_exhausted",
            failed.network,
            AuditStatus.FAILURE,
            message=(
                f"All {self._policy.max_retries} retries exhausted. Triggering withdrawal."
            ),
            metadata={"errorCode": (last.error_code if last else None) or error_code},
        )
        logger.warning(
            "retries exhausted",
            workflow_id=workflow.id,
            step=failed.step_index,
            attempts=self._policy.max_retries,
        )
        return RecoveryOutcome(
            recovered=False,
            reason=RecoveryReason.RETRIES_EXHAUSTED,
            failure_type=failure_type,
            result=last,
            attempts=self._policy.max_retries,
        )

    async def execute_withdrawal(
        self, workflow: Workflow, completed: Iterable[StepResult]
    ) -> list[AuditEvent]:
        """Unwind *completed* steps, most recent first.

        Compensation is recorded as an audit trail: one ``reversal`` event
        per completed step, each carrying the original transaction
        reference. Returns the reversal events in emission order.
        """
        unique: dict[int, StepResult] = {}
        for result in completed:
            if result.status == StepStatus.COMPLETED:
                unique.setdefault(result.step_index, result)
        to_reverse = sorted(unique.values(), key=lambda r: r.step_index, reverse=True)
        anchor_network = workflow.definition.steps[0].network

        await self._audit.record(
            workflow.id,
            WORKFLOW_LEVEL_STEP,
            "withdrawal_started",
            anchor_network,
            AuditStatus.INFO,
            message=f"Reversing {len(to_reverse)} completed steps",
        )

        reversals: list[AuditEvent] = []
        for result in to_reverse:
            event = await self._audit.record(
                workflow.id,
                result.step_index,
                "reversal",
                result.network,
                AuditStatus.INFO,
                tx_ref=result.tx_ref,
                amount=result.amount,
                token=result.token,
                message=(
                    f"Reversing {result.type} on {result.network}: "
                    f"{result.amount} {result.token}"
                ),
                metadata={
                    "stepType": result.type.value,
                    "originalTxRef": result.tx_ref or "none",
                },
            )
            reversals.append(event)

        await self._audit.record(
            workflow.id,
            WORKFLOW_LEVEL_STEP,
            "withdrawal_completed",
            anchor_network,
            AuditStatus.SUCCESS,
            message="All steps reversed. Funds returned to origin.",
        )
        logger.info(
            "withdrawal completed",
            workflow_id=workflow.id,
            reversed_steps=[r.step_index for r in to_reverse],
        )
        return reversals

    async def _retry_once(
        self, step: StepDefinition, context: ExecutionContext, failed: StepResult
    ) -> StepResult:
        try:
            return await self._executor.execute(step, context)
        except Exception as exc:
            logger.error(
                "retry raised",
                workflow_id=context.workflow_id,
                step=context.step_index,
                error=str(exc),
                exc_info=True,
            )
            code = getattr(exc, "code", None) or "EXECUTOR_ERROR"
            return failed.model_copy(
                update={
                    "error": str(exc),
                    "metadata": {**failed.metadata, "errorCode": code},
                }
            )
