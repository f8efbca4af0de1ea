"""relayflow: orchestration of multi-step cross-network payment workflows."""

from relayflow.__version__ import __version__
from relayflow.core.config import EngineConfig
from relayflow.core.constants import (
    AuditStatus,
    FailureType,
    ReceiptStatus,
    RecoveryReason,
    StepStatus,
    StepType,
    WorkflowStatus,
)
from relayflow.core.exceptions import (
    AdapterError,
    ConfigurationError,
    InvalidTransitionError,
    RelayflowError,
    StoreError,
    UnsupportedStepTypeError,
    WorkflowConflictError,
    WorkflowNotFoundError,
    WorkflowStateError,
)
from relayflow.core.state_machine import (
    allowed_transitions,
    can_transition,
    is_terminal,
    transition,
)
from relayflow.core.types import (
    ExecutionContext,
    Receipt,
    StepDefinition,
    StepResult,
    Workflow,
    WorkflowDefinition,
    WorkflowStats,
)
from relayflow.resilience.retry import RetryPolicy
from relayflow.networks import (
    NetworkAdapter,
    ScriptedNetworkAdapter,
    SimulatedNetworkAdapter,
)
from relayflow.audit import (
    AuditEvent,
    AuditLogger,
    AuditSink,
    FileAuditSink,
    InMemoryAuditSink,
    StructlogAuditSink,
)
from relayflow.steps import StepExecutor
from relayflow.store import InMemoryWorkflowStore, SQLiteWorkflowStore, WorkflowStore
from relayflow.templates import get_template, list_templates
from relayflow.engine import Orchestrator, RecoveryEngine, RecoveryOutcome, classify_failure

__all__ = [
    "__version__",
    # config
    "EngineConfig",
    "RetryPolicy",
    # constants
    "AuditStatus",
    "FailureType",
    "ReceiptStatus",
    "RecoveryReason",
    "StepStatus",
    "StepType",
    "WorkflowStatus",
    # exceptions
    "AdapterError",
    "ConfigurationError",
    "InvalidTransitionError",
    "RelayflowError",
    "StoreError",
    "UnsupportedStepTypeError",
    "WorkflowConflictError",
    "WorkflowNotFoundError",
    "WorkflowStateError",
    # state machine
    "allowed_transitions",
    "can_transition",
    "is_terminal",
    "transition",
    # types
    "ExecutionContext",
    "Receipt",
    "StepDefinition",
    "StepResult",
    "Workflow",
    "WorkflowDefinition",
    "WorkflowStats",
    # networks
    "NetworkAdapter",
    "ScriptedNetworkAdapter",
    "SimulatedNetworkAdapter",
    # audit
    "AuditEvent",
    "AuditLogger",
    "AuditSink",
    "FileAuditSink",
    "InMemoryAuditSink",
    "StructlogAuditSink",
    # execution
    "Orchestrator",
    "RecoveryEngine",
    "RecoveryOutcome",
    "StepExecutor",
    "classify_failure",
    # persistence
    "InMemoryWorkflowStore",
    "SQLiteWorkflowStore",
    "WorkflowStore",
    # templates
    "get_template",
    "list_templates",
]
