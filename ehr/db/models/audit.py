"""Audit log model for the EHR service.

This table is IMMUTABLE - ORM event hooks reject UPDATE and DELETE of stored
rows. Retention and deletion are handled outside the application.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import Column, String, DateTime, JSON, Text, Index, event

from ehr.core.errors import ImmutableAuditLogError
from ehr.db.base import Base

if TYPE_CHECKING:
    from ehr.core.audit.entry import AuditEntry


class AuditLog(Base):
    """
    Immutable audit log entry.

    One row per access attempt. An attempt row and its outcome row share a
    ``correlation_id``.
    """
    __tablename__ = "audit_logs"

    id = Column(String(32), primary_key=True)
    correlation_id = Column(String(32), nullable=False, index=True)

    # Actor information
    principal_id = Column(String(64), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)

    # Action details
    action = Column(String(20), nullable=False, index=True)
    resource_type = Column(String(20), nullable=False, index=True)
    resource_id = Column(String(64), nullable=True, index=True)
    module = Column(String(32), nullable=True)
    outcome = Column(String(20), nullable=False, index=True)
    description = Column(Text, nullable=False)

    # Change tracking
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)

    # Metadata
    severity = Column(String(20), nullable=False, default="info", index=True)
    request_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_audit_logs_principal_created", "principal_id", "created_at"),
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.outcome} {self.action} on {self.resource_type} by {self.principal_id}>"

    @classmethod
    def from_entry(cls, entry: "AuditEntry") -> "AuditLog":
        """Map an ``AuditEntry`` onto a new row."""
        data = entry.to_dict()
        return cls(
            id=data["entry_id"],
            correlation_id=data["correlation_id"],
            principal_id=data["principal_id"],
            ip_address=data["ip_address"],
            user_agent=data["user_agent"],
            action=data["action"],
            resource_type=data["resource_type"],
            resource_id=data["resource_id"],
            module=data["module"],
            outcome=data["outcome"],
            description=data["description"],
            old_values=data["old_values"],
            new_values=data["new_values"],
            details=data["details"],
            severity=data["severity"],
            request_id=data["request_id"],
            created_at=entry.timestamp,
        )


@event.listens_for(AuditLog, "before_update")
def _reject_update(mapper, connection, target):
    raise ImmutableAuditLogError(f"Audit log entry {target.id} cannot be modified")


@event.listens_for(AuditLog, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ImmutableAuditLogError(f"Audit log entry {target.id} cannot be deleted")
