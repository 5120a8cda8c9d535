"""
Permission domain types (``erp_kernel.domain.permissions``).

Responsibility
--------------
Pure value objects for role-based authorization: the closed set of
modules and actions, the tagged ``PermissionKey`` pair, role records with
an explicit universal-grant flag, and the immutable ``PermissionTable``
that maps each key to the roles allowed to perform it.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  Tables are built by
``erp_config.loader`` at startup and injected into
``PermissionEngine``; nothing mutates them afterwards.

Invariants enforced
-------------------
* Modules and actions are closed enumerations.  Unknown names are
  rejected when the table is loaded, never silently at call time.
* The wildcard grant is a boolean on the role record
  (``has_universal_grant``), never a sentinel string inside role sets.
* ``PermissionTable.grants`` keeps declaration order so role permission
  lists render stably.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from erp_kernel.exceptions import ValidationError


class Module(str, Enum):
    """Functional business areas (first axis of the permission key)."""

    ENGINEERING = "ENGINEERING"
    PURCHASE = "PURCHASE"
    CONTRACTS = "CONTRACTS"
    SITE = "SITE"
    INVENTORY = "INVENTORY"
    ACCOUNTS = "ACCOUNTS"
    WORKFLOW = "WORKFLOW"
    ADMIN = "ADMIN"
    MASTERS = "MASTERS"

    @classmethod
    def parse(cls, value: Module | str) -> Module:
        """Accept an enum member or its (case-insensitive) name."""
        if isinstance(value, Module):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError("module", f"unknown module '{value}'") from None


class Action(str, Enum):
    """Operation categories (second axis of the permission key)."""

    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    APPROVE = "approve"
    MANAGE = "manage"
    ISSUE = "issue"
    POST = "post"
    REPORT = "report"
    AUDIT = "audit"

    @classmethod
    def parse(cls, value: Action | str) -> Action:
        """Accept an enum member or its (case-insensitive) name."""
        if isinstance(value, Action):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError("action", f"unknown action '{value}'") from None


@dataclass(frozen=True, order=True)
class PermissionKey:
    """Composite ``(module, action)`` key."""

    module: Module
    action: Action

    def as_string(self) -> str:
        """Render as ``purchase.approve``."""
        return f"{self.module.value.lower()}.{self.action.value}"

    def __str__(self) -> str:
        return self.as_string()


@dataclass(frozen=True)
class RoleDefinition:
    """A role record.

    ``has_universal_grant`` authorizes every module/action pair
    unconditionally (e.g. ``SUPER_ADMIN``).
    """

    name: str
    description: str = ""
    has_universal_grant: bool = False


@dataclass(frozen=True)
class PermissionTable:
    """Immutable, versioned module x action -> role-set mapping.

    ``grants`` is an ordered tuple of ``(key, roles)`` pairs in declaration
    order.  ``checksum`` identifies the source configuration.
    """

    version: int
    roles: tuple[RoleDefinition, ...]
    grants: tuple[tuple[PermissionKey, frozenset[str]], ...]
    checksum: str | None = None
    _index: dict[PermissionKey, frozenset[str]] = field(
        init=False, repr=False, compare=False,
    )
    _role_index: dict[str, RoleDefinition] = field(
        init=False, repr=False, compare=False,
    )

    def __post_init__(self) -> None:
        # Frozen dataclass: build lookup indexes once.
        object.__setattr__(self, "_index", dict(self.grants))
        object.__setattr__(self, "_role_index", {r.name: r for r in self.roles})

    def role(self, name: str) -> RoleDefinition | None:
        """Return the role record, or None for an unknown role."""
        return self._role_index.get(name)

    def roles_for(self, key: PermissionKey) -> frozenset[str]:
        """Roles explicitly granted ``key`` (empty when the key is undeclared)."""
        return self._index.get(key, frozenset())

    def keys(self) -> Iterator[PermissionKey]:
        """Declared keys in declaration order."""
        return (key for key, _ in self.grants)

    @property
    def role_names(self) -> tuple[str, ...]:
        return tuple(r.name for r in self.roles)
