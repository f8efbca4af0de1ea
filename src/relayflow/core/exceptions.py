from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from relayflow.core.constants import FailureType


class RelayflowError(Exception):
    """Base exception for all relayflow errors.

    Attributes:
        code: Optional machine-readable error code (e.g. ``"NO_LIQUIDITY"``).
        details: Arbitrary key/value context about the error.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    @property
    def is_retryable(self) -> bool:
        """Whether the operation that raised this error can be retried."""
        return False


class ConfigurationError(RelayflowError): ...


class StoreError(RelayflowError): ...


class AdapterError(RelayflowError):
    """A network adapter failed to move funds.

    Raised by :class:`~relayflow.networks.base.NetworkAdapter`
    implementations and always converted into a failed
    :class:`~relayflow.core.types.StepResult` by the step executor.

    Attributes:
        kind: Whether the adapter considers the failure transient or permanent.
        network: The network the operation was attempted on.
        retryable: The adapter's own retry hint.
    """

    def __init__(
        self,
        message: str,
        code: str,
        *,
        kind: FailureType = FailureType.TRANSIENT,
        network: str = "",
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message, code=code, details={"network": network})
        self.kind = kind
        self.network = network
        self.retryable = kind == FailureType.TRANSIENT if retryable is None else retryable

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return self.retryable


class InvalidTransitionError(RelayflowError):
    """A status change was attempted that the state machine does not allow.

    Indicates a programming error; never retried.
    """

    def __init__(self, current: str, target: str, allowed: Iterable[str]) -> None:
        allowed_list = [str(s) for s in allowed]
        super().__init__(
            f"Invalid transition: {current} -> {target}. "
            f"Allowed: [{', '.join(allowed_list)}]",
            code="INVALID_TRANSITION",
            details={"from": str(current), "to": str(target), "allowed": allowed_list},
        )
        self.current = current
        self.target = target
        self.allowed = allowed_list


class UnsupportedStepTypeError(RelayflowError):
    """The step executor has no handler for a step's declared type."""

    def __init__(self, step_type: str) -> None:
        super().__init__(
            f"Unsupported step type: {step_type}",
            code="UNSUPPORTED_STEP_TYPE",
            details={"step_type": str(step_type)},
        )
        self.step_type = step_type


class WorkflowNotFoundError(RelayflowError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            f"Workflow not found: {workflow_id}",
            code="NOT_FOUND",
            details={"workflow_id": workflow_id},
        )
        self.workflow_id = workflow_id


class WorkflowConflictError(RelayflowError):
    """A workflow already has an execution in flight."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            f"Workflow is already executing: {workflow_id}",
            code="CONFLICT",
            details={"workflow_id": workflow_id},
        )
        self.workflow_id = workflow_id


class WorkflowStateError(StoreError):
    """A write would break a persisted workflow invariant."""
