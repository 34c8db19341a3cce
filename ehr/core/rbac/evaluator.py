"""Authorization evaluator.

Pure decisions over injected permission tables: no I/O, no shared mutable
state. Denial is a normal ``False`` result; only malformed input (unknown
role, module, resource or action) raises.
"""

from dataclasses import dataclass
from typing import AbstractSet, List, Optional, Union

from .actions import Action, ActionPermissionTable, Resource, default_action_table
from .roles import Module, PermissionTable, Role, parse_module, parse_role


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a module check. Not persisted."""

    allowed: bool
    role: Role
    module: Module

    def __bool__(self) -> bool:
        return self.allowed


class AuthorizationEvaluator:
    """Checks module access and resource actions for a role."""

    def __init__(self, table: PermissionTable, actions: Optional[ActionPermissionTable] = None):
        """
        Initialize with validated permission tables.

        Args:
            table: Role -> module permission table, loaded at process start
            actions: Role -> resource -> actions table; built-in table when omitted
        """
        self.table = table
        self.actions = actions if actions is not None else default_action_table()

    def authorize(self, role: Union[Role, str], module: Union[Module, str]) -> bool:
        """
        Check if ``role`` may use ``module``.

        Raises:
            UnknownRoleError: ``role`` is not an enumerated role
            UnknownModuleError: ``module`` is not an enumerated module
        """
        return self.table.allows(role, module)

    def can(
        self,
        role: Union[Role, str],
        resource: Union[Resource, str],
        action: Union[Action, str],
    ) -> bool:
        """
        Check if ``role`` may perform ``action`` on ``resource``.

        Raises:
            UnknownRoleError, UnknownResourceError, UnknownActionError
        """
        return self.actions.allows(role, resource, action)

    def authorize_route(
        self,
        role: Union[Role, str],
        required_roles: AbstractSet[Union[Role, str]],
    ) -> bool:
        """
        Check ``role`` against a route allow-list.

        An empty ``required_roles`` means any valid role is allowed. The role
        and every member of the allow-list are validated, so a typo in a route
        definition surfaces as ``UnknownRoleError`` instead of a silent deny.
        """
        role = parse_role(role)
        allowed = {parse_role(r) for r in required_roles}
        if not allowed:
            return True
        return role in allowed

    def decide(self, role: Union[Role, str], module: Union[Module, str]) -> AccessDecision:
        """Same as ``authorize`` but returns the decision with its subject."""
        role = parse_role(role)
        module = parse_module(module)
        return AccessDecision(allowed=self.table.allows(role, module), role=role, module=module)

    def accessible_modules(self, role: Union[Role, str]) -> List[Module]:
        """Get the modules a role may use, in declaration order."""
        modules = self.table.modules_for(role)
        return [module for module in Module if module in modules]
