"""Access audit recorder.

Builds well-formed audit entries and hands each one to the sink exactly once.
The recorder never retries: a failed write is reported on the failure channel
and raised as ``AuditWriteFailure`` so the caller can apply its policy.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Deque, List, Mapping, Optional

from ehr.common.logger import AUDIT_FAILURE_LOGGER
from ehr.core.errors import AuditWriteFailure
from ehr.core.rbac.roles import Module
from .entry import (
    AuditAction,
    AuditEntry,
    AuditOutcome,
    AuditSeverity,
    ResourceType,
)
from .sink import AuditSink

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReplayResult:
    replayed: int
    remaining: int


class AuditFailureChannel:
    """
    Monitored error path for audit writes that could not be persisted.

    Every failure is logged at CRITICAL on ``ehr.audit.failures`` and the
    unpersisted entry is kept in a bounded buffer (oldest dropped first) so
    operators can inspect it and, once the store is back, replay it.
    """

    def __init__(self, max_entries: int = 100):
        self._failed: Deque[AuditEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._logger = logging.getLogger(AUDIT_FAILURE_LOGGER)

    def report(self, failure: AuditWriteFailure) -> None:
        """Record a failed audit write."""
        entry = failure.entry
        with self._lock:
            self._failed.append(entry)
        self._logger.critical(
            f"Audit write failed: entry={entry.entry_id} correlation={entry.correlation_id} "
            f"principal={entry.principal_id} action={entry.action.value} "
            f"resource={entry.resource_type.value}:{entry.resource_id} "
            f"outcome={entry.outcome.value} cause={failure.cause!r}"
        )

    def pending(self) -> List[AuditEntry]:
        """Entries that failed to persist, oldest first."""
        with self._lock:
            return list(self._failed)

    def drain(self) -> List[AuditEntry]:
        """Return and clear the buffered entries."""
        with self._lock:
            entries = list(self._failed)
            self._failed.clear()
        return entries

    def replay(self, sink: AuditSink) -> ReplayResult:
        """
        Append each buffered entry to ``sink`` once, oldest first.

        Entries that fail again stay buffered, ahead of any reported while
        the replay ran. Nothing is retried within a call; run it again later.
        """
        pending = self.drain()
        remaining: List[AuditEntry] = []
        for entry in pending:
            try:
                sink.append(entry)
            except Exception as e:
                self._logger.warning(f"Replay of audit entry {entry.entry_id} failed: {e!r}")
                remaining.append(entry)

        with self._lock:
            newer = list(self._failed)
            self._failed.clear()
            self._failed.extend(remaining + newer)

        replayed = len(pending) - len(remaining)
        self._logger.info(f"Replayed {replayed} audit entries, {len(remaining)} still pending")
        return ReplayResult(replayed=replayed, remaining=len(remaining))

    def __len__(self) -> int:
        with self._lock:
            return len(self._failed)


class AccessAuditRecorder:
    """
    Records access attempts to the audit sink.

    Usage:
        recorder = AccessAuditRecorder(SQLAlchemyAuditSink(SessionLocal))

        attempt = recorder.record_attempt(
            principal.id, AuditAction.UPDATE, ResourceType.CLIENT, client_id,
            description="Update client record",
        )
        ... perform the update ...
        recorder.record_success(
            principal.id, AuditAction.UPDATE, ResourceType.CLIENT, client_id,
            description="Update client record",
            correlation_id=attempt.correlation_id,
            old_values=before, new_values=after,
        )
    """

    def __init__(
        self,
        sink: AuditSink,
        clock: Clock = utcnow,
        failure_channel: Optional[AuditFailureChannel] = None,
    ):
        self.sink = sink
        self.clock = clock
        self.failure_channel = failure_channel or AuditFailureChannel()

    def record_access(
        self,
        principal_id: str,
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: Optional[Any] = None,
        *,
        outcome: AuditOutcome,
        severity: AuditSeverity,
        description: str,
        correlation_id: Optional[str] = None,
        module: Optional[Module] = None,
        old_values: Optional[Mapping[str, Any]] = None,
        new_values: Optional[Mapping[str, Any]] = None,
        details: Optional[Mapping[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None,
        sink: Optional[AuditSink] = None,
    ) -> AuditEntry:
        """
        Build one entry and append it to the sink.

        ``sink`` overrides the recorder's sink for this one entry, e.g. a sink
        joined to the request transaction.

        Returns:
            The persisted entry

        Raises:
            InvalidAuditEntry: If the entry would violate its invariants
            AuditWriteFailure: If the sink failed to persist the entry
        """
        entry = AuditEntry.create(
            timestamp=self.clock(),
            principal_id=principal_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            outcome=outcome,
            severity=severity,
            description=description,
            correlation_id=correlation_id,
            module=module,
            old_values=old_values,
            new_values=new_values,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=request_id,
        )

        try:
            (sink if sink is not None else self.sink).append(entry)
        except AuditWriteFailure as e:
            self.failure_channel.report(e)
            raise
        except Exception as e:
            failure = AuditWriteFailure(entry, e)
            self.failure_channel.report(failure)
            raise failure from e

        logger.debug(
            f"Audited {entry.outcome.value} {entry.action.value} on "
            f"{entry.resource_type.value}:{entry.resource_id} by {entry.principal_id}"
        )
        return entry

    def record_attempt(
        self,
        principal_id: str,
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: Optional[Any] = None,
        *,
        description: str,
        **extra: Any,
    ) -> AuditEntry:
        """Record that an operation is about to run."""
        return self.record_access(
            principal_id, action, resource_type, resource_id,
            outcome=AuditOutcome.ATTEMPTED,
            severity=AuditSeverity.INFO,
            description=f"{description} - Attempt",
            **extra,
        )

    def record_success(
        self,
        principal_id: str,
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: Optional[Any] = None,
        *,
        description: str,
        **extra: Any,
    ) -> AuditEntry:
        """Record a completed operation."""
        return self.record_access(
            principal_id, action, resource_type, resource_id,
            outcome=AuditOutcome.SUCCESS,
            severity=AuditSeverity.INFO,
            description=f"{description} - Success",
            **extra,
        )

    def record_failure(
        self,
        principal_id: str,
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: Optional[Any] = None,
        *,
        description: str,
        error: Optional[BaseException] = None,
        **extra: Any,
    ) -> AuditEntry:
        """Record an operation that was allowed but did not complete."""
        suffix = f"Failed: {error}" if error is not None else "Failed"
        return self.record_access(
            principal_id, action, resource_type, resource_id,
            outcome=AuditOutcome.FAILURE,
            severity=AuditSeverity.WARNING,
            description=f"{description} - {suffix}",
            **extra,
        )

    def record_denied(
        self,
        principal_id: str,
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: Optional[Any] = None,
        *,
        description: str,
        severity: AuditSeverity = AuditSeverity.WARNING,
        **extra: Any,
    ) -> AuditEntry:
        """Record a denied attempt. Severity is at least warning."""
        return self.record_access(
            principal_id, action, resource_type, resource_id,
            outcome=AuditOutcome.DENIED,
            severity=severity,
            description=f"{description} - Denied",
            **extra,
        )
