"""High-level audit logger that dispatches events to multiple sinks."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

import structlog

from relayflow.audit.models import AuditEvent
from relayflow.audit.sinks import AuditSink
from relayflow.core.constants import AuditStatus
from relayflow.core.types import StepResult

logger = structlog.get_logger(__name__)


class AuditLogger:
    """Fan-out audit dispatcher.

    Sends each :class:`AuditEvent` to every registered
    :class:`AuditSink`.  Sink failures are logged but never propagated
    to the caller.

    Example::

        audit = AuditLogger()
        audit.add_sink(InMemoryAuditSink())
        audit.add_sink(FileAuditSink("/var/log/relayflow-audit.jsonl"))
        await audit.record("wf_1a2b3c4d", -1, "workflow_created", "chain_a", AuditStatus.INFO)
    """

    def __init__(self, sinks: list[AuditSink] | None = None) -> None:
        self._sinks: list[AuditSink] = list(sinks) if sinks else []

    def __repr__(self) -> str:
        return f"AuditLogger(sinks={[type(s).__name__ for s in self._sinks]!r})"

    def add_sink(self, sink: AuditSink) -> AuditLogger:
        """Register a new sink.  Returns ``self`` for chaining."""
        self._sinks.append(sink)
        return self

    async def log(self, event: AuditEvent) -> None:
        """Dispatch *event* to all registered sinks."""
        for sink in self._sinks:
            try:
                await sink.write(event)
            except Exception:
                logger.warning(
                    "audit_sink_error",
                    sink=type(sink).__name__,
                    event_id=event.event_id,
                    exc_info=True,
                )

    async def record(
        self,
        workflow_id: str,
        step: int,
        action: str,
        network: str,
        status: AuditStatus,
        **fields: Any,
    ) -> AuditEvent:
        """Build an :class:`AuditEvent` from keyword fields, dispatch and return it."""
        event = AuditEvent(
            workflow_id=workflow_id,
            step=step,
            action=action,
            network=network,
            status=status,
            **fields,
        )
        await self.log(event)
        return event

    async def log_step_start(
        self, workflow_id: str, step: int, step_type: str, network: str
    ) -> AuditEvent:
        return await self.record(
            workflow_id,
            step,
            f"{step_type}_started",
            network,
            AuditStatus.PENDING,
            message=f"Executing {step_type} on {network}",
        )

    async def log_step_complete(self, workflow_id: str, result: StepResult) -> AuditEvent:
        return await self.record(
            workflow_id,
            result.step_index,
            f"{result.type}_completed",
            result.network,
            AuditStatus.SUCCESS,
            tx_ref=result.tx_ref,
            amount=result.amount,
            token=result.token,
            duration_ms=result.duration_ms,
            fee=result.fee if result.fee is not None else Decimal("0"),
            message=f"{result.type} completed: {result.amount} {result.token}",
        )

    async def log_step_failure(self, workflow_id: str, result: StepResult) -> AuditEvent:
        metadata = {"errorCode": result.error_code} if result.error_code else {}
        return await self.record(
            workflow_id,
            result.step_index,
            f"{result.type}_failed",
            result.network,
            AuditStatus.FAILURE,
            duration_ms=result.duration_ms,
            metadata=metadata,
            message=result.error or "Unknown error",
        )

    async def query(
        self,
        workflow_id: str | None = None,
        network: str | None = None,
        status: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Query all sinks and merge results, limited to *limit* events.

        Results are collected from every sink that supports querying.
        Duplicates (by ``event_id``) are removed and the list is sorted
        by timestamp descending.
        """
        seen_ids: set[str] = set()
        merged: list[AuditEvent] = []
        for sink in self._sinks:
            try:
                events = await sink.query(
                    workflow_id=workflow_id,
                    network=network,
                    status=status,
                    since=since,
                    limit=limit,
                )
                for ev in events:
                    if ev.event_id not in seen_ids:
                        seen_ids.add(ev.event_id)
                        merged.append(ev)
            except Exception:
                logger.warning(
                    "audit_query_error",
                    sink=type(sink).__name__,
                    exc_info=True,
                )
        merged.sort(key=lambda e: e.timestamp, reverse=True)
        return merged[:limit]

    async def close(self) -> None:
        """Close all registered sinks."""
        for sink in self._sinks:
            try:
                await sink.close()
            except Exception:
                logger.warning(
                    "audit_sink_close_error",
                    sink=type(sink).__name__,
                    exc_info=True,
                )
