from relayflow.audit.logger import AuditLogger
from relayflow.audit.models import AuditEvent
from relayflow.audit.sinks import (
    AuditSink,
    FileAuditSink,
    InMemoryAuditSink,
    StructlogAuditSink,
)

__all__ = [
    "AuditEvent",
    "AuditLogger",
    "AuditSink",
    "FileAuditSink",
    "InMemoryAuditSink",
    "StructlogAuditSink",
]
