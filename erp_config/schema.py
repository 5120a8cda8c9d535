"""
Workflow configuration schema.

``WorkflowSettings`` holds the tunables of the approval core;
``CompiledWorkflowConfig`` is the frozen runtime artifact returned by
``erp_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from erp_kernel.domain.permissions import Module, PermissionTable


@dataclass(frozen=True)
class WorkflowSettings:
    """Operational settings for locking, bulk fan-out, notifications and sessions."""

    lock_timeout_seconds: float = 5.0
    bulk_max_workers: int = 4
    notification_max_attempts: int = 3
    notification_backoff_seconds: float = 0.5
    notification_backoff_multiplier: float = 2.0
    notification_workers: int = 2
    token_ttl_minutes: int = 480
    watchers: Mapping[Module, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class CompiledWorkflowConfig:
    """The sole runtime configuration artifact."""

    permission_table: PermissionTable
    settings: WorkflowSettings
    checksum: str
    source: str | None = None

    @property
    def version(self) -> int:
        return self.permission_table.version
