"""
Configuration Loader (``erp_config.loader``).

Responsibility
--------------
Loads the YAML permission/settings file and compiles it into a frozen
``CompiledWorkflowConfig``.  The single public entry point for runtime
config is ``erp_config.get_active_config()``.

Invariants enforced
-------------------
* Modules, actions, roles and settings keys are closed sets.  Anything
  unknown is rejected here, at load time, never at call time.
* A universal grant is a flag on the role record, never a ``"*"`` entry
  in a role list.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  of the parsed document.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Structural or vocabulary errors  -> ``PermissionConfigError`` naming the
  offending location (e.g. ``permissions.PURCHASE.approve``).
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from erp_config.schema import CompiledWorkflowConfig, WorkflowSettings
from erp_kernel.domain.permissions import (
    Action,
    Module,
    PermissionKey,
    PermissionTable,
    RoleDefinition,
)
from erp_kernel.exceptions import PermissionConfigError

_TOP_LEVEL_KEYS = frozenset({"version", "roles", "permissions", "settings"})
_ROLE_KEYS = frozenset({"description", "universal_grant"})
_SETTINGS_FIELDS = {f.name: f for f in fields(WorkflowSettings)}
_POSITIVE_NUMBERS = (
    "lock_timeout_seconds",
    "bulk_max_workers",
    "notification_max_attempts",
    "notification_backoff_multiplier",
    "notification_workers",
    "token_ttl_minutes",
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _require_mapping(value: Any, location: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise PermissionConfigError(location, "expected a mapping")
    return value


def parse_module(name: Any, location: str) -> Module:
    try:
        return Module(str(name).strip().upper())
    except ValueError:
        raise PermissionConfigError(location, f"unknown module '{name}'") from None


def parse_action(name: Any, location: str) -> Action:
    try:
        return Action(str(name).strip().lower())
    except ValueError:
        raise PermissionConfigError(location, f"unknown action '{name}'") from None


def parse_roles(data: Any) -> tuple[RoleDefinition, ...]:
    """Parse the ``roles`` mapping into role records, in declaration order."""
    roles = _require_mapping(data, "roles")
    if not roles:
        raise PermissionConfigError("roles", "at least one role must be declared")

    parsed = []
    for name, body in roles.items():
        location = f"roles.{name}"
        body = _require_mapping(body, location)
        unknown = set(body) - _ROLE_KEYS
        if unknown:
            raise PermissionConfigError(location, f"unknown keys {sorted(unknown)}")
        universal = body.get("universal_grant", False)
        if not isinstance(universal, bool):
            raise PermissionConfigError(f"{location}.universal_grant", "expected true or false")
        parsed.append(RoleDefinition(
            name=str(name),
            description=str(body.get("description") or ""),
            has_universal_grant=universal,
        ))
    return tuple(parsed)


def parse_permissions(
    data: Any,
    roles: tuple[RoleDefinition, ...],
) -> tuple[tuple[PermissionKey, frozenset[str]], ...]:
    """Parse ``permissions: MODULE -> action -> [roles]`` in declaration order."""
    known_roles = {r.name for r in roles}
    grants: list[tuple[PermissionKey, frozenset[str]]] = []
    seen: set[PermissionKey] = set()

    for module_name, actions in _require_mapping(data, "permissions").items():
        module_location = f"permissions.{module_name}"
        module = parse_module(module_name, module_location)
        for action_name, role_list in _require_mapping(actions, module_location).items():
            location = f"{module_location}.{action_name}"
            action = parse_action(action_name, location)
            key = PermissionKey(module, action)
            if key in seen:
                raise PermissionConfigError(location, "declared more than once")
            seen.add(key)

            if role_list is None:
                role_list = []
            if not isinstance(role_list, list):
                raise PermissionConfigError(location, "expected a list of roles")
            for role in role_list:
                if role == "*":
                    raise PermissionConfigError(
                        location, "wildcard entries are not allowed; use universal_grant",
                    )
                if role not in known_roles:
                    raise PermissionConfigError(location, f"undeclared role '{role}'")
            grants.append((key, frozenset(role_list)))
    return tuple(grants)


def parse_settings(data: Any) -> WorkflowSettings:
    settings = _require_mapping(data, "settings")
    unknown = set(settings) - set(_SETTINGS_FIELDS)
    if unknown:
        raise PermissionConfigError("settings", f"unknown keys {sorted(unknown)}")

    values: dict[str, Any] = {}
    for name, raw in settings.items():
        location = f"settings.{name}"
        if name == "watchers":
            watchers = {}
            for module_name, ids in _require_mapping(raw, location).items():
                module = parse_module(module_name, f"{location}.{module_name}")
                if not isinstance(ids, list):
                    raise PermissionConfigError(f"{location}.{module_name}", "expected a list")
                watchers[module] = tuple(str(i) for i in ids)
            values[name] = watchers
            continue

        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise PermissionConfigError(location, "expected a number")
        if name in _POSITIVE_NUMBERS and raw <= 0:
            raise PermissionConfigError(location, "must be positive")
        if raw < 0:
            raise PermissionConfigError(location, "must not be negative")
        field_type = _SETTINGS_FIELDS[name].type
        values[name] = int(raw) if field_type == "int" else float(raw)
    return WorkflowSettings(**values)


def compile_config(data: dict[str, Any], source: str | None = None) -> CompiledWorkflowConfig:
    """Validate a parsed YAML document and build the runtime artifact."""
    document = _require_mapping(data, "<root>")
    unknown = set(document) - _TOP_LEVEL_KEYS
    if unknown:
        raise PermissionConfigError("<root>", f"unknown keys {sorted(unknown)}")

    version = document.get("version")
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise PermissionConfigError("version", "expected a positive integer")

    checksum = compute_checksum(document)
    roles = parse_roles(document.get("roles"))
    grants = parse_permissions(document.get("permissions"), roles)
    settings = parse_settings(document.get("settings"))

    return CompiledWorkflowConfig(
        permission_table=PermissionTable(
            version=version,
            roles=roles,
            grants=grants,
            checksum=checksum,
        ),
        settings=settings,
        checksum=checksum,
        source=source,
    )
