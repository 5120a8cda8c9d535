"""
ORM-level immutability enforcement for approval records.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | When Immutable                  | Why
-----------------------|---------------------------------|------------------------------
AuditEntry             | ALWAYS (from creation)          | Audit trail is append-only
ApprovableEntity       | After status = Approved/Rejected| Decisions are terminal

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires ``before_update`` / ``before_delete`` mapper events before
the SQL for a flushed object reaches the database.  The listeners below
raise ImmutabilityViolationError and the flush is aborted.

The decision path itself writes with a guarded Core UPDATE
(``WHERE status = 'Pending' AND version = :v``), which can never match a
decided row, so it needs no exemption here.

Usage:
    register_immutability_listeners()      # once at startup
    unregister_immutability_listeners()    # tests only
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from erp_kernel.exceptions import ImmutabilityViolationError
from erp_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_DECIDED = ("Approved", "Rejected")

# Row bookkeeping that may change without altering the decision.
_METADATA_FIELDS = frozenset({"updated_at"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **fields):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **fields,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_audit_entry_update(mapper, connection, target):
    """Audit entries are never modified."""
    _blocked(
        "AuditEntry", target.id, "UPDATE",
        "Audit entries are immutable and cannot be modified",
    )


def _check_audit_entry_delete(mapper, connection, target):
    """Audit entries are never deleted."""
    _blocked(
        "AuditEntry", target.id, "DELETE",
        "Audit entries cannot be deleted",
    )


def _was_decided(target) -> bool:
    # Old value when status is changing, current value otherwise.
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0] in _DECIDED
    if not history.added:
        return target.status in _DECIDED
    return False


def _check_document_update(mapper, connection, target):
    """
    Block changes to a document once it has been approved or rejected.

    The Pending -> Approved/Rejected transition itself is allowed: history
    shows the old status as Pending.
    """
    if not _was_decided(target):
        return

    for attr in inspect(target).attrs:
        if attr.key in _METADATA_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(
                target.entity_type, target.id, "UPDATE",
                f"Cannot modify field '{attr.key}' on a decided document",
                field=attr.key,
            )


def _check_document_delete(mapper, connection, target):
    if target.status in _DECIDED:
        _blocked(
            target.entity_type, target.id, "DELETE",
            "Decided documents cannot be deleted",
        )


def _listeners():
    from erp_kernel.models.approvable import ApprovableEntityModel
    from erp_kernel.models.audit_entry import AuditEntryModel

    return (
        (AuditEntryModel, "before_update", _check_audit_entry_update),
        (AuditEntryModel, "before_delete", _check_audit_entry_delete),
        (ApprovableEntityModel, "before_update", _check_document_update),
        (ApprovableEntityModel, "before_delete", _check_document_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: a listener already registered is left alone.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that deliberately violate the rules.
    """
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
