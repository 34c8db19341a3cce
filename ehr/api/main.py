import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ehr import __version__
from ehr.api.middleware import RequestContextMiddleware
from ehr.api.routers import clients, staff
from ehr.common.logger import configure_logging
from ehr.core.audit import AccessAuditRecorder, AuditFailureChannel, AuditSink, SQLAlchemyAuditSink
from ehr.core.config import Settings, get_settings
from ehr.core.errors import AccessDenied, AuditWriteFailure
from ehr.core.guard import RouteGuard
from ehr.core.rbac import (
    ActionPermissionTable,
    AuthorizationEvaluator,
    PermissionTable,
    resolve_rbac_config,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    permission_table: Optional[PermissionTable] = None,
    action_table: Optional[ActionPermissionTable] = None,
    audit_sink: Optional[AuditSink] = None,
) -> FastAPI:
    """
    Build the application.

    The RBAC tables are loaded and validated here, once; an invalid table
    raises ``RBACConfigError`` and the process does not start. Tables passed
    in replace the configured ones.
    """
    settings = settings or get_settings()

    configure_logging(settings)

    if session_factory is None:
        from ehr.db.session import SessionLocal, engine
        from ehr.db.base import Base

        session_factory = SessionLocal

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            Base.metadata.create_all(bind=engine)
            yield
    else:
        lifespan = None

    rbac = resolve_rbac_config(settings.rbac_config_path)
    failure_channel = AuditFailureChannel(max_entries=settings.audit_failure_buffer_size)
    recorder = AccessAuditRecorder(
        audit_sink or SQLAlchemyAuditSink(session_factory),
        failure_channel=failure_channel,
    )
    guard = RouteGuard(
        AuthorizationEvaluator(permission_table or rbac.permissions, action_table or rbac.actions),
        recorder,
        read_failure_policy=settings.audit_read_failure_policy,
    )

    app = FastAPI(
        title=settings.app_name,
        description="Role-based access control and audited access to client records",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.guard = guard
    app.state.audit_recorder = recorder
    app.state.audit_failures = failure_channel

    app.add_middleware(RequestContextMiddleware)

    @app.exception_handler(AccessDenied)
    async def access_denied_handler(request: Request, exc: AccessDenied):
        # Generic on purpose: the caller learns nothing beyond "forbidden"
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": "Forbidden"})

    @app.exception_handler(AuditWriteFailure)
    async def audit_failure_handler(request: Request, exc: AuditWriteFailure):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Audit service unavailable"},
        )

    app.include_router(clients.router, prefix="/api")
    app.include_router(staff.router, prefix="/api")

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "audit_failures_pending": len(failure_channel),
        }

    logger.info(f"{settings.app_name} {__version__} ready")
    return app
