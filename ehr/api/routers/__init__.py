"""API routers for the EHR service."""

from ehr.api.routers import clients, staff

__all__ = ["clients", "staff"]
