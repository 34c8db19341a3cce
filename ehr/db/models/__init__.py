"""Database models for the EHR service."""

from ehr.db.models.audit import AuditLog
from ehr.db.models.staff import Staff
from ehr.db.models.client import ClientRecord

__all__ = [
    "AuditLog",
    "Staff",
    "ClientRecord",
]
