"""Action-level permissions.

The module table decides which areas of the application a role may open.
This finer table decides which actions a role may take on each kind of
resource, e.g. a biller may read and update a client but not create one.
It is validated and frozen like ``PermissionTable``.
"""

from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Union

from ehr.core.errors import (
    RBACConfigError,
    UnknownActionError,
    UnknownResourceError,
    UnknownRoleError,
)
from .roles import Role, parse_role


class Resource(str, Enum):
    """Kinds of resource actions are granted on."""

    STAFF = "staff"
    CLIENT = "client"
    APPOINTMENT = "appointment"
    NOTE = "note"
    BILLING = "billing"
    MESSAGE = "message"
    SETTING = "setting"
    REPORT = "report"
    DASHBOARD = "dashboard"
    AUDIT = "audit"


class Action(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"


def parse_resource(value: Union[Resource, str]) -> Resource:
    if isinstance(value, Resource):
        return value
    try:
        return Resource(value)
    except ValueError:
        raise UnknownResourceError(value) from None


def parse_action(value: Union[Action, str]) -> Action:
    if isinstance(value, Action):
        return value
    try:
        return Action(value)
    except ValueError:
        raise UnknownActionError(value) from None


_CRUD = ["read", "create", "update", "delete"]

# Allowed actions per role and resource
DEFAULT_ACTION_PERMISSIONS: Dict[str, Dict[str, List[str]]] = {
    "admin": {
        "staff": _CRUD,
        "client": _CRUD,
        "appointment": _CRUD,
        "note": _CRUD,
        "billing": _CRUD,
        "message": _CRUD,
        "setting": _CRUD,
        "report": _CRUD,
        "dashboard": _CRUD,
        "audit": ["read"],
    },
    "clinician": {
        "staff": ["read"],
        "client": ["read", "create", "update"],
        "appointment": ["read", "create", "update"],
        "note": ["read", "create", "update"],
        "billing": ["read", "create"],
        "message": ["read", "create", "update"],
        "setting": ["read"],
        "report": ["read"],
        "dashboard": ["read", "update"],
        "audit": [],
    },
    "supervisor": {
        "staff": ["read"],
        "client": ["read", "create", "update"],
        "appointment": ["read", "create", "update"],
        "note": ["read", "create", "update", "approve"],
        "billing": ["read", "create", "update"],
        "message": ["read", "create", "update"],
        "setting": ["read"],
        "report": ["read", "create"],
        "dashboard": ["read", "update"],
        "audit": ["read"],
    },
    "scheduler": {
        "staff": ["read"],
        "client": ["read", "create", "update"],
        "appointment": _CRUD,
        "note": ["read"],
        "billing": [],
        "message": ["read", "create", "update"],
        "setting": ["read"],
        "report": ["read"],
        "dashboard": ["read", "update"],
        "audit": [],
    },
    "biller": {
        "staff": ["read"],
        "client": ["read", "update"],
        "appointment": ["read"],
        "note": ["read"],
        "billing": _CRUD,
        "message": ["read", "create", "update"],
        "setting": ["read"],
        "report": ["read", "create"],
        "dashboard": ["read", "update"],
        "audit": [],
    },
}


class ActionPermissionTable:
    """
    Immutable mapping ``Role -> Resource -> frozenset[Action]``.

    Must be total: every role lists every resource, with an explicit (possibly
    empty) list of actions. Unknown roles, resources or actions raise
    ``RBACConfigError``.
    """

    def __init__(self, table: Mapping[str, Mapping[str, List[str]]]):
        self._grants = MappingProxyType(self._validate(table))

    @staticmethod
    def _validate(table) -> Dict[Role, Mapping[Resource, FrozenSet[Action]]]:
        if not isinstance(table, Mapping):
            raise RBACConfigError("Action table must be a mapping of role -> resource actions")

        grants: Dict[Role, Mapping[Resource, FrozenSet[Action]]] = {}
        for role_key, resources in table.items():
            try:
                role = parse_role(role_key)
            except UnknownRoleError:
                raise RBACConfigError(f"Unknown role in action table: {role_key!r}") from None
            if role in grants:
                raise RBACConfigError(f"Duplicate role in action table: {role.value}")
            if not isinstance(resources, Mapping):
                raise RBACConfigError(f"Resource actions for role {role.value} must be a mapping")

            per_resource: Dict[Resource, FrozenSet[Action]] = {}
            for resource_key, actions in resources.items():
                try:
                    resource = parse_resource(resource_key)
                except UnknownResourceError:
                    raise RBACConfigError(
                        f"Unknown resource {resource_key!r} for role {role.value}"
                    ) from None
                if not isinstance(actions, (list, tuple)):
                    raise RBACConfigError(
                        f"Actions for {role.value}.{resource.value} must be a list, got {actions!r}"
                    )
                try:
                    per_resource[resource] = frozenset(parse_action(a) for a in actions)
                except UnknownActionError as e:
                    raise RBACConfigError(
                        f"Unknown action {e.action!r} for {role.value}.{resource.value}"
                    ) from None

            missing = [r.value for r in Resource if r not in per_resource]
            if missing:
                raise RBACConfigError(
                    f"Role {role.value} is missing resource actions: {', '.join(missing)}"
                )
            grants[role] = MappingProxyType(per_resource)

        missing_roles = [r.value for r in Role if r not in grants]
        if missing_roles:
            raise RBACConfigError(f"Action table is missing roles: {', '.join(missing_roles)}")
        return grants

    def actions_for(self, role: Union[Role, str], resource: Union[Resource, str]) -> FrozenSet[Action]:
        return self._grants[parse_role(role)][parse_resource(resource)]

    def allows(
        self,
        role: Union[Role, str],
        resource: Union[Resource, str],
        action: Union[Action, str],
    ) -> bool:
        actions = self.actions_for(role, resource)
        return parse_action(action) in actions

    def as_dict(self) -> Dict[str, Dict[str, List[str]]]:
        """Return the table in its configuration shape, actions in declaration order."""
        return {
            role.value: {
                resource.value: [a.value for a in Action if a in actions]
                for resource, actions in resources.items()
            }
            for role, resources in self._grants.items()
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ActionPermissionTable):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def __repr__(self) -> str:
        return f"<ActionPermissionTable roles={[r.value for r in self._grants]}>"


def default_action_table() -> ActionPermissionTable:
    """Build the built-in action table."""
    return ActionPermissionTable(DEFAULT_ACTION_PERMISSIONS)
