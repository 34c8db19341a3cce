"""Audit trail for access to protected resources."""

from .entry import (
    AuditAction,
    AuditEntry,
    AuditOutcome,
    AuditSeverity,
    ResourceType,
    SENSITIVE_RESOURCE_TYPES,
    redact_sensitive,
)
from .sink import AuditSink, SessionAuditSink, SQLAlchemyAuditSink, TransactionalAuditSink
from .recorder import AccessAuditRecorder, AuditFailureChannel, ReplayResult

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditOutcome",
    "AuditSeverity",
    "ResourceType",
    "SENSITIVE_RESOURCE_TYPES",
    "redact_sensitive",
    "AuditSink",
    "SQLAlchemyAuditSink",
    "SessionAuditSink",
    "TransactionalAuditSink",
    "AccessAuditRecorder",
    "AuditFailureChannel",
    "ReplayResult",
]
