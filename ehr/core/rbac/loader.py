"""Loading of the RBAC tables from configuration.

Both tables live in one YAML file, or fall back to the built-in defaults.
They are loaded once at process start; any validation error aborts startup.

YAML shape::

    roles:          # module flags
      admin:
        dashboard: true
        ...
    actions:        # allowed actions per resource
      admin:
        client: [read, create, update, delete]
        ...
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import yaml

from ehr.core.errors import RBACConfigError
from .actions import ActionPermissionTable, default_action_table
from .roles import PermissionTable, default_permission_table

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RBACConfig:
    """The validated module and action tables."""

    permissions: PermissionTable
    actions: ActionPermissionTable


def load_rbac_config(path: Union[str, Path]) -> RBACConfig:
    """Load and validate both RBAC tables from a YAML file.

    Args:
        path: Path to the YAML role configuration

    Returns:
        RBACConfig holding the immutable tables

    Raises:
        RBACConfigError: If the file is missing or unparsable, a section is
            absent, or a table is not total over roles
    """
    config_path = Path(path)
    if not config_path.exists():
        raise RBACConfigError(f"Role configuration not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RBACConfigError(f"Invalid YAML in role configuration {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise RBACConfigError(f"Role configuration {config_path} must be a mapping")
    for section in ("roles", "actions"):
        if section not in data:
            raise RBACConfigError(f"Role configuration {config_path} must define a '{section}' mapping")

    config = RBACConfig(
        permissions=PermissionTable(data["roles"]),
        actions=ActionPermissionTable(data["actions"]),
    )
    logger.info(f"Loaded RBAC tables for {len(list(config.permissions.roles()))} roles from {config_path}")
    return config


def default_rbac_config() -> RBACConfig:
    return RBACConfig(permissions=default_permission_table(), actions=default_action_table())


def resolve_rbac_config(path: Optional[Union[str, Path]] = None) -> RBACConfig:
    """Return the configured RBAC tables, or the built-in ones when no path is set."""
    if path:
        return load_rbac_config(path)
    logger.info("No role configuration path set, using built-in RBAC tables")
    return default_rbac_config()
