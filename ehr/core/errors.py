"""Error taxonomy for authorization and audit.

Malformed authorization input (unknown role or module) is a configuration or
programming defect and is kept separate from ``AccessDenied``, which is the
normal, expected outcome of a denied request.
"""

from typing import Any, Optional


class RBACConfigError(Exception):
    """Raised when the role/permission table is invalid."""
    pass


class AuthorizationInputError(Exception):
    """Base class for malformed input to the authorization evaluator."""
    pass


class UnknownRoleError(AuthorizationInputError):
    """Raised when a role value is not one of the enumerated roles."""

    def __init__(self, role: Any):
        super().__init__(f"Unknown role: {role!r}")
        self.role = role


class UnknownModuleError(AuthorizationInputError):
    """Raised when a module value is not one of the enumerated modules."""

    def __init__(self, module: Any):
        super().__init__(f"Unknown module: {module!r}")
        self.module = module


class UnknownResourceError(AuthorizationInputError):
    """Raised when a resource value is not one of the enumerated resources."""

    def __init__(self, resource: Any):
        super().__init__(f"Unknown resource: {resource!r}")
        self.resource = resource


class UnknownActionError(AuthorizationInputError):
    """Raised when an action value is not one of the enumerated actions."""

    def __init__(self, action: Any):
        super().__init__(f"Unknown action: {action!r}")
        self.action = action


class AccessDenied(Exception):
    """
    Raised at the boundary when a principal may not perform an operation.

    The message is deliberately generic so that a 403 response does not
    reveal which permission was missing.
    """

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class InvalidAuditEntry(ValueError):
    """Raised when an audit entry would violate its invariants."""
    pass


class AuditWriteFailure(Exception):
    """Raised when the audit sink fails to persist an entry."""

    def __init__(self, entry: Any, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to persist audit entry {getattr(entry, 'entry_id', '?')}: {cause}")
        self.entry = entry
        self.cause = cause


class ImmutableAuditLogError(Exception):
    """Raised on any attempt to update or delete a stored audit entry."""
    pass
