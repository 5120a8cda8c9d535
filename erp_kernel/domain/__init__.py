"""
Pure domain layer.

Value objects and tables for authorization and the approval gate with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from erp_kernel.domain.approval import (
    APPROVAL_GATE,
    DECIDED_STATUSES,
    ENTITY_TYPE_MODULES,
    ApprovableDocument,
    Approve,
    BulkDecisionResult,
    BulkItemResult,
    Decision,
    DecisionResult,
    DocumentStatus,
    EntityRef,
    GateAction,
    Reject,
    make_decision,
    module_for_entity_type,
)
from erp_kernel.domain.audit import AuditAction, AuditEntry, AuditFilter, AuditRecord
from erp_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from erp_kernel.domain.notifications import InboxItem, NotificationEvent, NotificationKind
from erp_kernel.domain.permissions import (
    Action,
    Module,
    PermissionKey,
    PermissionTable,
    RoleDefinition,
)
from erp_kernel.domain.principal import Credentials, Principal

__all__ = [
    "APPROVAL_GATE",
    "DECIDED_STATUSES",
    "ENTITY_TYPE_MODULES",
    "Action",
    "ApprovableDocument",
    "Approve",
    "AuditAction",
    "AuditEntry",
    "AuditFilter",
    "AuditRecord",
    "BulkDecisionResult",
    "BulkItemResult",
    "Clock",
    "Credentials",
    "Decision",
    "DecisionResult",
    "DeterministicClock",
    "DocumentStatus",
    "EntityRef",
    "GateAction",
    "InboxItem",
    "Module",
    "NotificationEvent",
    "NotificationKind",
    "PermissionKey",
    "PermissionTable",
    "Principal",
    "Reject",
    "RoleDefinition",
    "SystemClock",
    "make_decision",
    "module_for_entity_type",
]
