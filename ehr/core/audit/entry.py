"""Audit entry model.

An ``AuditEntry`` is an immutable fact about one access attempt: who, what,
when, and how it ended. Entries are constructed once, handed to the sink, and
never edited. The attempt and the outcome of one operation are two separate
entries that share a ``correlation_id``.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from ehr.core.errors import InvalidAuditEntry
from ehr.core.rbac.roles import Module


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""

    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    EXPORT = "EXPORT"
    PRINT = "PRINT"
    OTHER = "OTHER"

    @property
    def is_mutation(self) -> bool:
        return self in MUTATING_ACTIONS


class ResourceType(str, Enum):
    """Kinds of entity an audited access can target."""

    CLIENT = "CLIENT"
    STAFF = "STAFF"
    APPOINTMENT = "APPOINTMENT"
    NOTE = "NOTE"
    BILLING = "BILLING"
    INSURANCE = "INSURANCE"
    SYSTEM = "SYSTEM"
    OTHER = "OTHER"

    @property
    def is_sensitive(self) -> bool:
        return self in SENSITIVE_RESOURCE_TYPES


class AuditOutcome(str, Enum):
    """How an access attempt ended (or that it has just started)."""

    ATTEMPTED = "attempted"
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class AuditSeverity(str, Enum):
    """Severity levels for audit entries, ordered info < warning < critical."""

    INFO = "info"          # Standard operations
    WARNING = "warning"    # Denials and failed operations
    CRITICAL = "critical"  # Malformed authorization input, security-relevant events

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __ge__(self, other):
        if not isinstance(other, AuditSeverity):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other):
        if not isinstance(other, AuditSeverity):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other):
        if not isinstance(other, AuditSeverity):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other):
        if not isinstance(other, AuditSeverity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_RANK = {
    AuditSeverity.INFO: 0,
    AuditSeverity.WARNING: 1,
    AuditSeverity.CRITICAL: 2,
}

MUTATING_ACTIONS = frozenset([AuditAction.CREATE, AuditAction.UPDATE, AuditAction.DELETE])

# Protected health information: access is audited regardless of outcome
SENSITIVE_RESOURCE_TYPES = frozenset([
    ResourceType.CLIENT,
    ResourceType.NOTE,
    ResourceType.BILLING,
    ResourceType.INSURANCE,
])

# Fields redacted from old/new values and details
SENSITIVE_FIELDS = {
    "password",
    "password_hash",
    "token",
    "access_token",
    "refresh_token",
    "api_key",
    "secret",
    "client_secret",
    "ssn",
    "social_security_number",
}


def redact_sensitive(data: Any) -> Any:
    """Return a copy of ``data`` with secret fields redacted."""
    if isinstance(data, Mapping):
        return {
            k: "[REDACTED]" if str(k).lower() in SENSITIVE_FIELDS else redact_sensitive(v)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [redact_sensitive(item) for item in data]
    return data


def _freeze(data: Any) -> Any:
    """Read-only copy: mappings become MappingProxyType, sequences tuples, at every depth."""
    if isinstance(data, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in data.items()})
    elif isinstance(data, (list, tuple)):
        return tuple(_freeze(item) for item in data)
    return data


def _thaw(data: Any) -> Any:
    """Plain dict/list copy of a frozen value."""
    if isinstance(data, Mapping):
        return {k: _thaw(v) for k, v in data.items()}
    elif isinstance(data, tuple):
        return [_thaw(item) for item in data]
    return data


def _frozen_values(values: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    if values is None:
        return None
    return _freeze(redact_sensitive(values))


def new_correlation_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class AuditEntry:
    """
    Immutable audit trail entry.

    Use ``AuditEntry.create`` rather than the constructor: it validates the
    invariants and freezes the value mappings.
    """

    entry_id: str
    correlation_id: str
    timestamp: datetime
    principal_id: str
    action: AuditAction
    resource_type: ResourceType
    outcome: AuditOutcome
    severity: AuditSeverity
    description: str
    resource_id: Optional[str] = None
    module: Optional[Module] = None
    old_values: Optional[Mapping[str, Any]] = None
    new_values: Optional[Mapping[str, Any]] = None
    details: Optional[Mapping[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None

    @classmethod
    def create(
        cls,
        *,
        timestamp: datetime,
        principal_id: str,
        action: AuditAction,
        resource_type: ResourceType,
        outcome: AuditOutcome,
        severity: AuditSeverity,
        description: str,
        resource_id: Optional[Any] = None,
        correlation_id: Optional[str] = None,
        module: Optional[Module] = None,
        old_values: Optional[Mapping[str, Any]] = None,
        new_values: Optional[Mapping[str, Any]] = None,
        details: Optional[Mapping[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> "AuditEntry":
        """
        Factory method to build a validated entry.

        Args:
            timestamp: When the attempt happened (UTC)
            principal_id: ID of the acting staff member
            action: Action performed (READ, CREATE, UPDATE, DELETE, ...)
            resource_type: Type of resource (CLIENT, NOTE, ...)
            outcome: attempted, success, failure or denied
            severity: info, warning or critical
            description: Human-readable summary, must not be empty
            resource_id: ID of the affected resource, if any
            correlation_id: Key shared by an attempt and its outcome
            module: Module the access was checked against
            old_values: Previous values (for updates and deletes)
            new_values: New values (for creates and updates)
            details: Additional context
            ip_address: Client IP address
            user_agent: Client user agent string
            request_id: Request correlation ID

        Raises:
            InvalidAuditEntry: If an invariant is violated
        """
        if not principal_id or not str(principal_id).strip():
            raise InvalidAuditEntry("Audit entry requires a principal id")
        if not description or not description.strip():
            raise InvalidAuditEntry("Audit entry requires a non-empty description")

        action = AuditAction(action)
        resource_type = ResourceType(resource_type)
        outcome = AuditOutcome(outcome)
        severity = AuditSeverity(severity)

        if outcome is AuditOutcome.DENIED and severity < AuditSeverity.WARNING:
            raise InvalidAuditEntry("Denied access must be audited with severity warning or higher")

        return cls(
            entry_id=uuid.uuid4().hex,
            correlation_id=correlation_id or new_correlation_id(),
            timestamp=timestamp,
            principal_id=str(principal_id),
            action=action,
            resource_type=resource_type,
            outcome=outcome,
            severity=severity,
            description=description.strip(),
            resource_id=str(resource_id) if resource_id is not None else None,
            module=Module(module) if module is not None else None,
            old_values=_frozen_values(old_values),
            new_values=_frozen_values(new_values),
            details=_frozen_values(details),
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=request_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Plain, JSON-friendly representation for sinks."""
        return {
            "entry_id": self.entry_id,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
            "principal_id": self.principal_id,
            "action": self.action.value,
            "resource_type": self.resource_type.value,
            "resource_id": self.resource_id,
            "outcome": self.outcome.value,
            "severity": self.severity.value,
            "description": self.description,
            "module": self.module.value if self.module else None,
            "old_values": _thaw(self.old_values),
            "new_values": _thaw(self.new_values),
            "details": _thaw(self.details),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "request_id": self.request_id,
        }
