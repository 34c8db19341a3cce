"""Client record endpoints.

Client records are protected health information: every read and every
mutation goes through the route guard and is audited.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ehr.api.deps import get_current_principal, get_db, get_guard, get_request_context
from ehr.core.audit import AuditAction, ResourceType
from ehr.core.guard import GuardedOperation, MutationResult, RequestContext, RouteGuard
from ehr.core.principal import Principal
from ehr.core.rbac import Module, Role
from ehr.db.models import ClientRecord

router = APIRouter(prefix="/clients", tags=["clients"])


CLIENT_EDITORS = frozenset([Role.ADMIN, Role.CLINICIAN, Role.SCHEDULER])

LIST_CLIENTS = GuardedOperation(
    Module.CLIENTS, AuditAction.READ, ResourceType.CLIENT, "Listed client records",
)
READ_CLIENT = GuardedOperation(
    Module.CLIENTS, AuditAction.READ, ResourceType.CLIENT, "Accessed client data",
)
CREATE_CLIENT = GuardedOperation(
    Module.CLIENTS, AuditAction.CREATE, ResourceType.CLIENT, "Created client record",
    allowed_roles=CLIENT_EDITORS,
)
UPDATE_CLIENT = GuardedOperation(
    Module.CLIENTS, AuditAction.UPDATE, ResourceType.CLIENT, "Updated client record",
    allowed_roles=CLIENT_EDITORS,
)
DELETE_CLIENT = GuardedOperation(
    Module.CLIENTS, AuditAction.DELETE, ResourceType.CLIENT, "Deleted client record",
    allowed_roles=frozenset([Role.ADMIN]),
)


# Schemas
class ClientCreate(BaseModel):
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ClientUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[str] = None


class ClientResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    date_of_birth: Optional[date]
    email: Optional[str]
    phone: Optional[str]
    status: str

    class Config:
        from_attributes = True


def _get_or_404(db: Session, client_id: str) -> ClientRecord:
    client = db.query(ClientRecord).filter(ClientRecord.id == client_id).first()
    if not client:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    return client


# Endpoints
@router.get("", response_model=List[ClientResponse])
def list_clients(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    guard: RouteGuard = Depends(get_guard),
    context: RequestContext = Depends(get_request_context),
):
    """List client records."""
    def handler():
        return db.query(ClientRecord).order_by(ClientRecord.last_name, ClientRecord.first_name).all()

    return guard.run(principal, LIST_CLIENTS, handler, request=context)


@router.get("/{client_id}", response_model=ClientResponse)
def get_client(
    client_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    guard: RouteGuard = Depends(get_guard),
    context: RequestContext = Depends(get_request_context),
):
    """Get a single client record."""
    return guard.run(
        principal,
        READ_CLIENT.for_resource(client_id),
        lambda: _get_or_404(db, client_id),
        request=context,
    )


@router.post("", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
def create_client(
    data: ClientCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    guard: RouteGuard = Depends(get_guard),
    context: RequestContext = Depends(get_request_context),
):
    """Create a client record."""
    def handler():
        client = ClientRecord(**data.model_dump())
        db.add(client)
        db.flush()
        values = client.to_dict()
        return MutationResult(values, resource_id=client.id, new_values=values)

    return guard.run(principal, CREATE_CLIENT, handler, request=context, transaction=db)


@router.put("/{client_id}", response_model=ClientResponse)
def update_client(
    client_id: str,
    data: ClientUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    guard: RouteGuard = Depends(get_guard),
    context: RequestContext = Depends(get_request_context),
):
    """Update a client record."""
    def handler():
        client = _get_or_404(db, client_id)
        before = client.to_dict()
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(client, field, value)
        db.flush()
        after = client.to_dict()
        return MutationResult(after, old_values=before, new_values=after)

    return guard.run(
        principal, UPDATE_CLIENT.for_resource(client_id), handler, request=context, transaction=db,
    )


@router.delete("/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(
    client_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    guard: RouteGuard = Depends(get_guard),
    context: RequestContext = Depends(get_request_context),
):
    """Delete a client record."""
    def handler():
        client = _get_or_404(db, client_id)
        before = client.to_dict()
        db.delete(client)
        db.flush()
        return MutationResult(None, old_values=before)

    guard.run(principal, DELETE_CLIENT.for_resource(client_id), handler, request=context, transaction=db)
