"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import sessionmaker

from ehr.api.main import create_app
from ehr.core.audit import AccessAuditRecorder, AuditFailureChannel
from ehr.core.config import Settings
from ehr.core.guard import RouteGuard
from ehr.core.rbac import AuthorizationEvaluator, default_permission_table
from ehr.db.base import Base
from ehr.db.session import make_engine
from tests.fakes import FailingAuditSink, FixedClock, MemoryAuditSink


# ---------------------------------------------------------------------------
# Core components
# ---------------------------------------------------------------------------


@pytest.fixture
def permission_table():
    return default_permission_table()


@pytest.fixture
def evaluator(permission_table):
    return AuthorizationEvaluator(permission_table)


@pytest.fixture
def memory_sink():
    return MemoryAuditSink()


@pytest.fixture
def failing_sink_factory() -> Callable[..., FailingAuditSink]:
    return FailingAuditSink


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def failure_channel():
    return AuditFailureChannel(max_entries=10)


@pytest.fixture
def recorder(memory_sink, clock, failure_channel):
    return AccessAuditRecorder(memory_sink, clock=clock, failure_channel=failure_channel)


@pytest.fixture
def guard(evaluator, recorder):
    return RouteGuard(evaluator, recorder)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, log_to_file=False, database_url="sqlite://")


@pytest.fixture
def make_client(test_settings, session_factory):
    """Build a TestClient; pass ``audit_sink`` or settings overrides as needed."""

    def _make(audit_sink=None, **overrides) -> TestClient:
        settings = test_settings.model_copy(update=overrides) if overrides else test_settings
        app = create_app(
            settings=settings,
            session_factory=session_factory,
            audit_sink=audit_sink,
        )
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def auth_headers(test_settings) -> Callable[..., dict]:
    """Mint a bearer token for a staff member, as the auth service would."""
    settings = test_settings

    def _headers(staff, expires_in: int = 900) -> dict:
        payload = {
            "sub": staff.id,
            "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            "type": "access",
        }
        token = jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)
        return {"Authorization": f"Bearer {token}"}

    return _headers


def audit_rows(session_factory) -> List:
    """All stored audit rows, oldest first."""
    from ehr.db.models import AuditLog

    session = session_factory()
    try:
        return session.query(AuditLog).order_by(AuditLog.created_at, AuditLog.id).all()
    finally:
        session.close()


@pytest.fixture
def stored_audit_logs(session_factory) -> Callable[[], List]:
    return lambda: audit_rows(session_factory)
