"""The authenticated actor, as handed over by the authentication layer."""

from dataclasses import dataclass
from typing import Union

from ehr.core.rbac.roles import Role


@dataclass(frozen=True)
class Principal:
    """
    Authenticated staff member.

    ``role`` may hold a raw string from the identity store. It is not coerced
    here, so an unknown value reaches the evaluator and fails there.
    """

    id: str
    role: Union[Role, str]

    @property
    def role_name(self) -> str:
        return self.role.value if isinstance(self.role, Role) else str(self.role)
