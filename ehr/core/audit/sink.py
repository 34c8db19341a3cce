"""Audit sinks: durable, append-only destinations for audit entries."""

import logging
from typing import Callable, Protocol, TYPE_CHECKING, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ehr.core.errors import AuditWriteFailure
from ehr.db.models.audit import AuditLog

if TYPE_CHECKING:
    from .entry import AuditEntry

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    """Write-only, append-only destination for audit entries."""

    def append(self, entry: "AuditEntry") -> None:
        """Persist ``entry`` or raise. Must not modify earlier entries."""
        ...


@runtime_checkable
class TransactionalAuditSink(Protocol):
    """A sink that can also write inside a caller's open transaction."""

    def append(self, entry: "AuditEntry") -> None:
        ...

    def joined(self, session: Session) -> AuditSink:
        """Return a sink whose writes commit or roll back with ``session``."""
        ...


class SQLAlchemyAuditSink:
    """
    Appends entries to the ``audit_logs`` table.

    Each entry is written in its own short transaction, independent of the
    session serving the request, so an audit row commits even when the
    governed operation later rolls back. ``joined`` gives the opposite: a
    sink bound to the request session, for the outcome of a mutation that
    must commit together with the change it describes.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def append(self, entry: "AuditEntry") -> None:
        db = self.session_factory()
        try:
            db.add(AuditLog.from_entry(entry))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Audit sink rejected entry {entry.entry_id}: {e}")
            raise AuditWriteFailure(entry, e) from e
        finally:
            db.close()

    def joined(self, session: Session) -> "SessionAuditSink":
        return SessionAuditSink(session)


class SessionAuditSink:
    """
    Appends entries inside an existing session's transaction.

    The row is flushed, not committed; whoever owns the session commits or
    rolls back the entry along with the rest of its work.
    """

    def __init__(self, session: Session):
        self.session = session

    def append(self, entry: "AuditEntry") -> None:
        try:
            self.session.add(AuditLog.from_entry(entry))
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Audit sink rejected entry {entry.entry_id} in request transaction: {e}")
            raise AuditWriteFailure(entry, e) from e
