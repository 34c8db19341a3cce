"""Route guard: explicit composition of authorization, audit and handler.

Every guarded call runs the same ordered pipeline of named steps::

    authorize -> record_attempt -> invoke -> record_outcome -> commit

``authorize`` stops the pipeline with ``AccessDenied`` (after auditing the
denial) before the handler can touch the resource. Mutations and reads of
sensitive resource types are audited twice: an attempt entry before the
handler runs and a success or failure entry after, sharing a correlation id.

When a call is given a ``transaction`` (the request's database session), the
guard owns it: handlers only flush, and the guard commits after the outcome
entry is written, or rolls back when the handler, the outcome write or the
commit fails. A mutation's outcome entry is written inside that transaction
when the sink supports it, so the change and its audit row commit together.

Audit write failures:
- denial entries: access stays denied, the failure is alerted
- mutations: fail closed, ``AuditWriteFailure`` propagates
- reads: per ``read_failure_policy`` (alert and continue, or block)
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, FrozenSet, List, Mapping, Optional, Protocol, Tuple

from ehr.core.audit.entry import (
    AuditAction,
    AuditEntry,
    AuditSeverity,
    ResourceType,
    new_correlation_id,
)
from ehr.core.audit.recorder import AccessAuditRecorder
from ehr.core.audit.sink import AuditSink, TransactionalAuditSink
from ehr.core.config import AuditFailurePolicy
from ehr.core.errors import AccessDenied, AuditWriteFailure, AuthorizationInputError
from ehr.core.principal import Principal
from ehr.core.rbac.actions import Action, Resource
from ehr.core.rbac.evaluator import AuthorizationEvaluator
from ehr.core.rbac.roles import Module, Role, parse_module, parse_role

logger = logging.getLogger(__name__)

# Audit resource types that have a row in the action table
RESOURCE_FOR_TYPE = {
    ResourceType.CLIENT: Resource.CLIENT,
    ResourceType.STAFF: Resource.STAFF,
    ResourceType.APPOINTMENT: Resource.APPOINTMENT,
    ResourceType.NOTE: Resource.NOTE,
    ResourceType.BILLING: Resource.BILLING,
}

ACTION_FOR_MUTATION = {
    AuditAction.CREATE: Action.CREATE,
    AuditAction.UPDATE: Action.UPDATE,
    AuditAction.DELETE: Action.DELETE,
}


class Transaction(Protocol):
    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


@dataclass(frozen=True)
class GuardedOperation:
    """What a route is about to do, and who may do it."""

    module: Module
    action: AuditAction
    resource_type: ResourceType
    description: str
    resource_id: Optional[str] = None
    # Coarse route allow-list; empty means any authenticated role
    allowed_roles: FrozenSet[Role] = frozenset()

    def __post_init__(self):
        # A bad module or role name in a route definition fails here, not per request
        object.__setattr__(self, "module", parse_module(self.module))
        object.__setattr__(self, "action", AuditAction(self.action))
        object.__setattr__(self, "resource_type", ResourceType(self.resource_type))
        object.__setattr__(self, "allowed_roles", frozenset(parse_role(r) for r in self.allowed_roles))

    @property
    def is_mutation(self) -> bool:
        return self.action.is_mutation

    @property
    def audited(self) -> bool:
        """Mutations and every access to a sensitive resource are audited."""
        return self.is_mutation or self.resource_type.is_sensitive

    @property
    def required_permission(self) -> Optional[Tuple[Resource, Action]]:
        """The action-table grant a mutation needs, if its resource type has one."""
        resource = RESOURCE_FOR_TYPE.get(self.resource_type)
        action = ACTION_FOR_MUTATION.get(self.action)
        if resource is None or action is None:
            return None
        return resource, action

    def for_resource(self, resource_id: Any) -> "GuardedOperation":
        return replace(self, resource_id=str(resource_id) if resource_id is not None else None)


@dataclass(frozen=True)
class RequestContext:
    """Client details copied into every audit entry of a request."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class MutationResult:
    """
    Optional handler return value for mutations.

    Lets a handler report what it changed once it is known, e.g. the id of a
    newly created record. The guard unwraps it and returns ``value``.
    """

    value: Any
    resource_id: Optional[Any] = None
    old_values: Optional[Mapping[str, Any]] = None
    new_values: Optional[Mapping[str, Any]] = None


@dataclass
class GuardContext:
    """State carried through the pipeline for one call."""

    principal: Principal
    operation: GuardedOperation
    handler: Callable[[], Any]
    request: RequestContext = field(default_factory=RequestContext)
    old_values: Optional[Mapping[str, Any]] = None
    new_values: Optional[Mapping[str, Any]] = None
    transaction: Optional[Transaction] = None
    correlation_id: str = field(default_factory=new_correlation_id)
    entries: List[AuditEntry] = field(default_factory=list)
    # Written inside ``transaction``; moved to ``entries`` once it commits
    staged: List[AuditEntry] = field(default_factory=list)
    result: Any = None

    @property
    def resource_id(self) -> Optional[str]:
        return self.operation.resource_id


Step = Callable[[GuardContext], None]


class RouteGuard:
    """
    Runs guarded operations through the authorize/audit/invoke/commit pipeline.

    Usage:
        guard = RouteGuard(evaluator, recorder)

        client = guard.run(
            principal,
            GuardedOperation(Module.CLIENTS, AuditAction.UPDATE, ResourceType.CLIENT,
                             "Updated client record", resource_id=client_id),
            lambda: update_client(db, client_id, data),
            transaction=db,
        )
    """

    def __init__(
        self,
        evaluator: AuthorizationEvaluator,
        recorder: AccessAuditRecorder,
        read_failure_policy: AuditFailurePolicy = AuditFailurePolicy.ALERT,
    ):
        self.evaluator = evaluator
        self.recorder = recorder
        self.read_failure_policy = AuditFailurePolicy(read_failure_policy)

    @property
    def steps(self) -> Tuple[Tuple[str, Step], ...]:
        return (
            ("authorize", self.authorize),
            ("record_attempt", self.record_attempt),
            ("invoke", self.invoke),
            ("record_outcome", self.record_outcome),
            ("commit", self.commit),
        )

    def run(
        self,
        principal: Principal,
        operation: GuardedOperation,
        handler: Callable[[], Any],
        *,
        request: Optional[RequestContext] = None,
        old_values: Optional[Mapping[str, Any]] = None,
        new_values: Optional[Mapping[str, Any]] = None,
        transaction: Optional[Transaction] = None,
    ) -> Any:
        """
        Run ``handler`` if ``principal`` may perform ``operation``.

        Args:
            transaction: Session the handler works in. The guard commits it
                after a successful outcome and rolls it back on any failure;
                the handler must not commit it itself.

        Returns:
            The handler's result (unwrapped from ``MutationResult``)

        Raises:
            AccessDenied: Denied by role table, action table or allow-list, or malformed role/module
            AuditWriteFailure: A required audit entry could not be persisted
            Exception: Whatever the handler or the commit raised, after auditing it
        """
        ctx = GuardContext(
            principal=principal,
            operation=operation,
            handler=handler,
            request=request or RequestContext(),
            old_values=old_values,
            new_values=new_values,
            transaction=transaction,
        )
        for name, step in self.steps:
            logger.debug(f"Guard step {name} for {operation.action.value} {operation.resource_type.value}")
            step(ctx)
        return ctx.result

    # Pipeline steps

    def authorize(self, ctx: GuardContext) -> None:
        principal, op = ctx.principal, ctx.operation
        try:
            allowed = (
                self.evaluator.authorize(principal.role, op.module)
                and self.evaluator.authorize_route(principal.role, op.allowed_roles)
                and self._action_allowed(principal, op)
            )
        except AuthorizationInputError as e:
            logger.error(
                f"Malformed authorization input for principal {principal.id} "
                f"on {op.module.value}/{op.action.value}: {e}"
            )
            self._audit_denial(ctx, AuditSeverity.CRITICAL, reason=str(e))
            raise AccessDenied() from e

        if not allowed:
            logger.warning(
                f"Access denied: principal {principal.id} role {principal.role_name} "
                f"{op.action.value} {op.resource_type.value}:{op.resource_id} ({op.module.value})"
            )
            self._audit_denial(ctx, AuditSeverity.WARNING)
            raise AccessDenied()

    def record_attempt(self, ctx: GuardContext) -> None:
        if not ctx.operation.audited:
            return
        try:
            entry = self.recorder.record_attempt(
                ctx.principal.id,
                ctx.operation.action,
                ctx.operation.resource_type,
                ctx.resource_id,
                description=ctx.operation.description,
                old_values=ctx.old_values,
                **self._entry_extras(ctx),
            )
        except AuditWriteFailure as e:
            self._handle_write_failure(ctx, "attempt", e)
            return
        ctx.entries.append(entry)

    def invoke(self, ctx: GuardContext) -> None:
        try:
            result = ctx.handler()
        except Exception as e:
            self._rollback(ctx)
            if ctx.operation.audited:
                self._audit_handler_failure(ctx, e)
            raise

        if isinstance(result, MutationResult):
            if result.resource_id is not None:
                ctx.operation = ctx.operation.for_resource(result.resource_id)
            if result.old_values is not None:
                ctx.old_values = result.old_values
            if result.new_values is not None:
                ctx.new_values = result.new_values
            result = result.value
        ctx.result = result

    def record_outcome(self, ctx: GuardContext) -> None:
        if not ctx.operation.audited:
            return
        sink = self._outcome_sink(ctx)
        try:
            entry = self.recorder.record_success(
                ctx.principal.id,
                ctx.operation.action,
                ctx.operation.resource_type,
                ctx.resource_id,
                description=ctx.operation.description,
                old_values=ctx.old_values,
                new_values=ctx.new_values,
                sink=sink,
                **self._entry_extras(ctx),
            )
        except AuditWriteFailure as e:
            self._handle_write_failure(ctx, "outcome", e)
            return
        if sink is not None:
            ctx.staged.append(entry)
        else:
            ctx.entries.append(entry)

    def commit(self, ctx: GuardContext) -> None:
        if ctx.transaction is None:
            return
        try:
            ctx.transaction.commit()
        except Exception as e:
            logger.error(
                f"Commit failed for {ctx.operation.action.value} "
                f"{ctx.operation.resource_type.value}:{ctx.resource_id}: {e}"
            )
            ctx.staged.clear()
            self._rollback(ctx)
            if ctx.operation.audited:
                self._audit_handler_failure(ctx, e)
            raise
        ctx.entries.extend(ctx.staged)
        ctx.staged.clear()

    # Helpers

    def _action_allowed(self, principal: Principal, op: GuardedOperation) -> bool:
        permission = op.required_permission
        if permission is None:
            return True
        resource, action = permission
        return self.evaluator.can(principal.role, resource, action)

    def _outcome_sink(self, ctx: GuardContext) -> Optional[AuditSink]:
        """Sink joined to the request transaction, for a mutation's outcome."""
        sink = self.recorder.sink
        if ctx.transaction is None or not ctx.operation.is_mutation:
            return None
        if not isinstance(sink, TransactionalAuditSink):
            return None
        return sink.joined(ctx.transaction)

    def _rollback(self, ctx: GuardContext) -> None:
        if ctx.transaction is None:
            return
        try:
            ctx.transaction.rollback()
        except Exception as e:
            # The error that triggered the rollback is the one re-raised
            logger.error(f"Rollback failed for correlation {ctx.correlation_id}: {e}")

    def _entry_extras(self, ctx: GuardContext) -> dict:
        return {
            "correlation_id": ctx.correlation_id,
            "module": ctx.operation.module,
            "ip_address": ctx.request.ip_address,
            "user_agent": ctx.request.user_agent,
            "request_id": ctx.request.request_id,
        }

    def _audit_denial(self, ctx: GuardContext, severity: AuditSeverity, reason: Optional[str] = None) -> None:
        details = {"role": ctx.principal.role_name}
        if reason:
            details["reason"] = reason
        try:
            entry = self.recorder.record_denied(
                ctx.principal.id,
                ctx.operation.action,
                ctx.operation.resource_type,
                ctx.resource_id,
                description=ctx.operation.description,
                severity=severity,
                details=details,
                **self._entry_extras(ctx),
            )
        except AuditWriteFailure:
            # Already reported on the failure channel; the request is denied either way
            logger.error(f"Denial of principal {ctx.principal.id} could not be audited")
            return
        ctx.entries.append(entry)

    def _audit_handler_failure(self, ctx: GuardContext, error: Exception) -> None:
        try:
            entry = self.recorder.record_failure(
                ctx.principal.id,
                ctx.operation.action,
                ctx.operation.resource_type,
                ctx.resource_id,
                description=ctx.operation.description,
                error=error,
                old_values=ctx.old_values,
                **self._entry_extras(ctx),
            )
        except AuditWriteFailure:
            # The triggering exception is re-raised by the caller
            logger.error(f"Failed operation of principal {ctx.principal.id} could not be audited")
            return
        ctx.entries.append(entry)

    def _handle_write_failure(self, ctx: GuardContext, phase: str, error: AuditWriteFailure) -> None:
        """Re-raise ``error`` unless policy lets the read continue."""
        if ctx.operation.is_mutation or self.read_failure_policy is AuditFailurePolicy.BLOCK:
            logger.error(
                f"Aborting {ctx.operation.action.value} {ctx.operation.resource_type.value}:"
                f"{ctx.resource_id}: {phase} audit entry not persisted"
            )
            if phase == "outcome":
                # Handler already ran: undo its work
                self._rollback(ctx)
                self._audit_handler_failure(ctx, error)
            raise error
        logger.warning(
            f"Continuing read of {ctx.operation.resource_type.value}:{ctx.resource_id} "
            f"without persisted {phase} audit entry"
        )
