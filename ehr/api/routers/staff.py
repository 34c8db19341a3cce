"""Staff directory endpoints."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ehr.api.deps import get_current_principal, get_db, get_guard, get_request_context
from ehr.core.audit import AuditAction, ResourceType
from ehr.core.guard import GuardedOperation, RequestContext, RouteGuard
from ehr.core.principal import Principal
from ehr.core.rbac import Module
from ehr.db.models import Staff

router = APIRouter(prefix="/staff", tags=["staff"])

LIST_STAFF = GuardedOperation(
    Module.STAFF, AuditAction.READ, ResourceType.STAFF, "Listed staff directory",
)
READ_STAFF = GuardedOperation(
    Module.STAFF, AuditAction.READ, ResourceType.STAFF, "Accessed staff profile",
)


class StaffResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool

    class Config:
        from_attributes = True


@router.get("", response_model=List[StaffResponse])
def list_staff(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    guard: RouteGuard = Depends(get_guard),
    context: RequestContext = Depends(get_request_context),
):
    """List staff members."""
    return guard.run(
        principal,
        LIST_STAFF,
        lambda: db.query(Staff).order_by(Staff.last_name, Staff.first_name).all(),
        request=context,
    )


@router.get("/{staff_id}", response_model=StaffResponse)
def get_staff(
    staff_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    guard: RouteGuard = Depends(get_guard),
    context: RequestContext = Depends(get_request_context),
):
    """Get a staff member's profile."""
    def handler():
        staff = db.query(Staff).filter(Staff.id == staff_id).first()
        if not staff:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff member not found")
        return staff

    return guard.run(principal, READ_STAFF.for_resource(staff_id), handler, request=context)
