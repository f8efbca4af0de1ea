"""Audit event data models."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from pydantic import BaseModel, Field

from relayflow.core.constants import AuditStatus


class AuditEvent(BaseModel):
    """An immutable record of a significant workflow transition.

    ``step`` is the step index, or ``-1`` for workflow-level events such as
    creation, execution start, withdrawal start/completion and completion.
    """

    event_id: str = Field(default_factory=lambda: f"log_{uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    workflow_id: str
    step: int
    action: str
    """What happened, e.g. ``"swap_started"``, ``"retry_attempt"``, ``"reversal"``."""
    network: str
    status: AuditStatus
    tx_ref: str | None = None
    amount: Decimal | None = None
    token: str | None = None
    duration_ms: int | None = None
    fee: Decimal | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    message: str | None = None

    model_config = {"frozen": True}
