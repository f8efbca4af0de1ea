from relayflow.engine.orchestrator import Orchestrator, terminal_error
from relayflow.engine.recovery import RecoveryEngine, RecoveryOutcome, classify_failure

__all__ = [
    "Orchestrator",
    "RecoveryEngine",
    "RecoveryOutcome",
    "classify_failure",
    "terminal_error",
]
