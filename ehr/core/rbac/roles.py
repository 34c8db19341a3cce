"""Role and module definitions for the EHR RBAC model.

Defines the 5 system roles and the module capabilities they map onto:
1. Admin - Full access to all system features and settings
2. Clinician - Client records, documentation, and scheduling
3. Supervisor - Clinical oversight with access to supervised staff records
4. Scheduler - Appointments and client scheduling
5. Biller - Billing, claims, and payments

The role -> module table is configuration data. ``PermissionTable`` freezes it
once it has been validated, so a single instance can be shared by every
request without synchronization.
"""

from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Union

from ehr.core.errors import RBACConfigError, UnknownModuleError, UnknownRoleError


class Role(str, Enum):
    """Identity classes a staff member can be assigned."""

    ADMIN = "admin"
    CLINICIAN = "clinician"
    SUPERVISOR = "supervisor"
    SCHEDULER = "scheduler"
    BILLER = "biller"


class Module(str, Enum):
    """Areas of functionality that can be allowed or denied per role."""

    DASHBOARD = "dashboard"
    CLIENTS = "clients"
    DOCUMENTATION = "documentation"
    SCHEDULE = "schedule"
    MESSAGING = "messaging"
    BILLING = "billing"
    SETTINGS = "settings"
    STAFF = "staff"


def parse_role(value: Union[Role, str]) -> Role:
    """Coerce a value to ``Role``. Unknown values are an error, never a default."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        raise UnknownRoleError(value) from None


def parse_module(value: Union[Module, str]) -> Module:
    """Coerce a value to ``Module``."""
    if isinstance(value, Module):
        return value
    try:
        return Module(value)
    except ValueError:
        raise UnknownModuleError(value) from None


# Module flags per role
DEFAULT_ROLE_PERMISSIONS: Dict[str, Dict[str, bool]] = {
    "admin": {
        "dashboard": True,
        "clients": True,
        "documentation": True,
        "schedule": True,
        "messaging": True,
        "billing": True,
        "settings": True,
        "staff": True,
    },
    "clinician": {
        "dashboard": True,
        "clients": True,
        "documentation": True,
        "schedule": True,
        "messaging": True,
        "billing": False,
        "settings": False,
        "staff": False,
    },
    "supervisor": {
        "dashboard": True,
        "clients": True,
        "documentation": True,
        "schedule": True,
        "messaging": True,
        "billing": True,
        "settings": False,
        "staff": True,
    },
    "scheduler": {
        "dashboard": True,
        "clients": True,
        "documentation": False,
        "schedule": True,
        "messaging": True,
        "billing": False,
        "settings": False,
        "staff": False,
    },
    "biller": {
        "dashboard": True,
        "clients": True,
        "documentation": False,
        "schedule": False,
        "messaging": True,
        "billing": True,
        "settings": False,
        "staff": False,
    },
}


class PermissionTable:
    """
    Immutable, validated mapping from every ``Role`` to its permission set.

    A permission set is the frozen set of modules the role may use. The
    table must be total over ``Role``: construction fails with
    ``RBACConfigError`` if any role is missing, if an unknown role or module
    name appears, or if a module flag is not a boolean.
    """

    def __init__(self, table: Mapping[str, Mapping[str, bool]]):
        self._permissions: Mapping[Role, FrozenSet[Module]] = MappingProxyType(
            self._validate(table)
        )

    @staticmethod
    def _validate(table: Mapping[str, Mapping[str, bool]]) -> Dict[Role, FrozenSet[Module]]:
        if not isinstance(table, Mapping):
            raise RBACConfigError("Role table must be a mapping of role -> module flags")

        permissions: Dict[Role, FrozenSet[Module]] = {}
        for role_key, flags in table.items():
            try:
                role = parse_role(role_key)
            except UnknownRoleError:
                raise RBACConfigError(f"Unknown role in permission table: {role_key!r}") from None
            if role in permissions:
                raise RBACConfigError(f"Duplicate role in permission table: {role.value}")
            if not isinstance(flags, Mapping):
                raise RBACConfigError(f"Module flags for role {role.value} must be a mapping")

            allowed = set()
            seen = set()
            for module_key, flag in flags.items():
                try:
                    module = parse_module(module_key)
                except UnknownModuleError:
                    raise RBACConfigError(
                        f"Unknown module {module_key!r} for role {role.value}"
                    ) from None
                seen.add(module)
                if not isinstance(flag, bool):
                    raise RBACConfigError(
                        f"Flag {role.value}.{module.value} must be a boolean, got {flag!r}"
                    )
                if flag:
                    allowed.add(module)

            # Every module must be stated explicitly
            missing_modules = [m.value for m in Module if m not in seen]
            if missing_modules:
                raise RBACConfigError(
                    f"Role {role.value} is missing module flags: {', '.join(missing_modules)}"
                )
            permissions[role] = frozenset(allowed)

        missing_roles = [r.value for r in Role if r not in permissions]
        if missing_roles:
            raise RBACConfigError(f"Permission table is missing roles: {', '.join(missing_roles)}")

        return permissions

    def modules_for(self, role: Union[Role, str]) -> FrozenSet[Module]:
        """Return the permission set of a role."""
        return self._permissions[parse_role(role)]

    def allows(self, role: Union[Role, str], module: Union[Module, str]) -> bool:
        """Return the table's flag for ``role`` and ``module``."""
        modules = self.modules_for(role)
        return parse_module(module) in modules

    def roles(self) -> Iterable[Role]:
        return self._permissions.keys()

    def as_dict(self) -> Dict[str, Dict[str, bool]]:
        """Return the table in its configuration shape."""
        return {
            role.value: {module.value: module in modules for module in Module}
            for role, modules in self._permissions.items()
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PermissionTable):
            return NotImplemented
        return dict(self._permissions) == dict(other._permissions)

    def __repr__(self) -> str:
        return f"<PermissionTable roles={[r.value for r in self._permissions]}>"


def default_permission_table() -> PermissionTable:
    """Build the built-in permission table."""
    return PermissionTable(DEFAULT_ROLE_PERMISSIONS)
