"""
Audit trail value objects.

``AuditEntry`` is the immutable DTO returned by the audit selector;
``AuditFilter`` carries the optional query filters.  Entries order by
``occurred_at`` with ties broken by the insertion ``seq``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from erp_kernel.domain.permissions import Module


class AuditAction(str, Enum):
    """Auditable state-changing actions of the approval gate."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True)
class AuditRecord:
    """An audit entry to be appended (no seq / id yet)."""

    actor_id: str
    action: AuditAction
    module: Module
    entity_type: str
    entity_id: UUID
    outcome: str
    occurred_at: datetime
    entity_code: str | None = None
    remarks: str | None = None


@dataclass(frozen=True)
class AuditEntry:
    """A persisted, immutable audit entry."""

    seq: int
    entry_id: UUID
    actor_id: str
    action: AuditAction
    module: Module
    entity_type: str
    entity_id: UUID
    outcome: str
    occurred_at: datetime
    entity_code: str | None = None
    remarks: str | None = None


@dataclass(frozen=True)
class AuditFilter:
    """Optional filters for audit queries.  ``date_to`` is exclusive."""

    module: Module | None = None
    action: AuditAction | None = None
    actor_id: str | None = None
    entity_type: str | None = None
    entity_id: UUID | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
