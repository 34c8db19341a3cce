from typing import Generator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from ehr.core.config import Settings
from ehr.core.guard import RequestContext, RouteGuard
from ehr.core.principal import Principal
from ehr.db.models import Staff

# Tokens are issued by the authentication service; this app only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_db(request: Request) -> Generator:
    """Database session dependency."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def decode_token(token: str, settings: Settings) -> str:
    """Return the staff id (``sub``) of a valid access token, or raise JWTError."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    staff_id = payload.get("sub")
    if not staff_id:
        raise JWTError("Token has no subject")
    return staff_id


def get_current_principal(
    request: Request,
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> Principal:
    """Resolve the authenticated principal from a bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authorized to access this route",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    try:
        staff_id = decode_token(token, request.app.state.settings)
    except JWTError:
        raise credentials_exception

    staff = db.query(Staff).filter(Staff.id == staff_id).first()
    if not staff:
        raise credentials_exception
    if not staff.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Your account has been deactivated. Please contact an administrator.",
        )

    # Role is passed through as stored; the guard validates it
    return Principal(id=staff.id, role=staff.role)


def get_request_context(request: Request) -> RequestContext:
    """Client details captured by RequestContextMiddleware."""
    return RequestContext(
        ip_address=getattr(request.state, "client_ip", None),
        user_agent=getattr(request.state, "user_agent", None),
        request_id=getattr(request.state, "request_id", None),
    )


def get_guard(request: Request) -> RouteGuard:
    return request.app.state.guard
