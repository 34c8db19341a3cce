"""RBAC (Role-Based Access Control) module for the EHR service.

This module defines the role/module and role/resource/action permission
models, their configuration loading, and the authorization evaluator.
"""

from .roles import (
    Role,
    Module,
    PermissionTable,
    DEFAULT_ROLE_PERMISSIONS,
    default_permission_table,
    parse_role,
    parse_module,
)
from .actions import (
    Action,
    Resource,
    ActionPermissionTable,
    DEFAULT_ACTION_PERMISSIONS,
    default_action_table,
    parse_action,
    parse_resource,
)
from .loader import RBACConfig, default_rbac_config, load_rbac_config, resolve_rbac_config
from .evaluator import AccessDecision, AuthorizationEvaluator

__all__ = [
    "Role",
    "Module",
    "PermissionTable",
    "DEFAULT_ROLE_PERMISSIONS",
    "default_permission_table",
    "parse_role",
    "parse_module",
    "Action",
    "Resource",
    "ActionPermissionTable",
    "DEFAULT_ACTION_PERMISSIONS",
    "default_action_table",
    "parse_action",
    "parse_resource",
    "RBACConfig",
    "default_rbac_config",
    "load_rbac_config",
    "resolve_rbac_config",
    "AccessDecision",
    "AuthorizationEvaluator",
]
