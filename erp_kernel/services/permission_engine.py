"""
PermissionEngine -- role-based authorization over an immutable table.

Responsibility:
    Answers "may role R perform action A in module M?" and renders the
    permission list of a role.  The table is injected at construction
    (normally ``get_active_config().permission_table``); there is no runtime
    mutation API.

Architecture position:
    Kernel > Services.  Pure: no session, no clock, no I/O.  Safe for any
    number of concurrent callers without locking.

Invariants enforced:
    - Unknown roles hold no permissions (fail closed).
    - A role with ``has_universal_grant`` is authorized for every
      module/action pair without consulting the table.
    - Any other role is authorized iff it is a member of the exact
      ``(module, action)`` role set.

Failure modes:
    - ValidationError when a module or action string is not a member of the
      closed enumerations.  A well-formed triple never raises.
"""

from __future__ import annotations

from dataclasses import dataclass

from erp_kernel.domain.permissions import (
    Action,
    Module,
    PermissionKey,
    PermissionTable,
)
from erp_kernel.exceptions import AuthorizationError
from erp_kernel.logging_config import get_logger

logger = get_logger("services.permission_engine")


@dataclass(frozen=True)
class RolePermissions:
    """Convenience predicates bound to one role."""

    engine: PermissionEngine
    role: str

    def can(self, module: Module | str, action: Action | str) -> bool:
        return self.engine.is_authorized(self.role, module, action)

    def can_view(self, module: Module | str) -> bool:
        return self.can(module, Action.VIEW)

    def can_create(self, module: Module | str) -> bool:
        return self.can(module, Action.CREATE)

    def can_edit(self, module: Module | str) -> bool:
        return self.can(module, Action.EDIT)

    def can_delete(self, module: Module | str) -> bool:
        return self.can(module, Action.DELETE)

    def can_approve(self, module: Module | str) -> bool:
        return self.can(module, Action.APPROVE)


class PermissionEngine:
    """
    Stateless authorization over a ``PermissionTable``.

    Contract:
        ``is_authorized`` is deterministic for a given table and has no
        side effects.  ``require`` is the raising variant used by services
        before any mutation.
    """

    def __init__(self, table: PermissionTable):
        self._table = table

    @property
    def table(self) -> PermissionTable:
        return self._table

    def has_universal_grant(self, role: str) -> bool:
        definition = self._table.role(role)
        return definition is not None and definition.has_universal_grant

    def is_authorized(
        self,
        role: str,
        module: Module | str,
        action: Action | str,
    ) -> bool:
        """True iff ``role`` may perform ``action`` in ``module``."""
        key = PermissionKey(Module.parse(module), Action.parse(action))

        definition = self._table.role(role)
        if definition is None:
            return False
        if definition.has_universal_grant:
            return True
        return role in self._table.roles_for(key)

    def require(
        self,
        role: str,
        module: Module | str,
        action: Action | str,
    ) -> None:
        """Raise AuthorizationError unless ``role`` is authorized."""
        if not self.is_authorized(role, module, action):
            module_name = Module.parse(module).value
            action_name = Action.parse(action).value
            logger.warning(
                "authorization_denied",
                extra={"role": role, "module_name": module_name, "action": action_name},
            )
            raise AuthorizationError(role, module_name, action_name)

    def get_role_permissions(self, role: str) -> list[PermissionKey]:
        """
        Keys the role holds, in table declaration order.

        A universal-grant role receives every declared key; an unknown role
        receives an empty list.
        """
        definition = self._table.role(role)
        if definition is None:
            return []
        if definition.has_universal_grant:
            return list(self._table.keys())
        return [
            key for key, roles in self._table.grants
            if role in roles
        ]

    def permission_strings(self, role: str) -> list[str]:
        """Render permissions as ``["purchase.approve", ...]``."""
        return [key.as_string() for key in self.get_role_permissions(role)]

    def permissions_for(self, role: str) -> RolePermissions:
        return RolePermissions(self, role)
