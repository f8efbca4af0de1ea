"""Workflow persistence: the store contract plus in-memory and SQLite backends."""
from relayflow.store.base import WorkflowStore, check_step_write, compute_stats
from relayflow.store.memory import InMemoryWorkflowStore
from relayflow.store.sqlite import SQLiteWorkflowStore

__all__ = [
    "InMemoryWorkflowStore",
    "SQLiteWorkflowStore",
    "WorkflowStore",
    "check_step_write",
    "compute_stats",
]
