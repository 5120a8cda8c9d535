"""
AuditRecorder -- append-only audit trail for approval gate transitions.

Responsibility:
    Persists one immutable ``AuditEntry`` per committed submit, approve or
    reject, and serves filtered, newest-first queries over the trail.

Architecture position:
    Kernel > Services -- imperative shell, called by ApprovalWorkflowEngine
    after the status transition has committed.

Invariants enforced:
    - Append-only: audit rows are never modified or deleted (ORM listener
      on AuditEntryModel).
    - Each append runs in its own transaction as a single INSERT; the
      caller's transition is already durable and is never rolled back by
      an audit failure.

Failure modes:
    - ``append`` never raises.  A persistence failure is logged as
      ``audit_append_failed`` (AuditDeliveryError), counted, handed to the
      optional ``on_failure`` callback, and reported by returning None.

Audit relevance:
    This IS the audit recorder.  The gateway's audit endpoint reads through
    ``query``/``count``.
"""

from __future__ import annotations

import threading
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from erp_kernel.db.engine import session_scope
from erp_kernel.domain.audit import AuditEntry, AuditFilter, AuditRecord
from erp_kernel.exceptions import AuditDeliveryError
from erp_kernel.logging_config import get_logger
from erp_kernel.models.audit_entry import AuditEntryModel
from erp_kernel.selectors.audit_selector import AuditSelector

logger = get_logger("services.auditor")


class AuditRecorder:
    """
    Records and queries audit entries.

    Contract:
        ``append`` returns the persisted entry, or None when the entry could
        not be persisted.  It is safe to call from several threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        on_failure: Callable[[AuditDeliveryError], None] | None = None,
    ):
        self._session_factory = session_factory
        self._on_failure = on_failure
        self._failures = 0
        self._failures_lock = threading.Lock()

    @property
    def failure_count(self) -> int:
        with self._failures_lock:
            return self._failures

    def append(self, record: AuditRecord) -> AuditEntry | None:
        """Persist ``record`` in its own transaction."""
        try:
            with session_scope(self._session_factory) as session:
                row = AuditEntryModel(
                    actor_id=record.actor_id,
                    action=record.action.value,
                    module=record.module.value,
                    entity_type=record.entity_type,
                    entity_id=record.entity_id,
                    entity_code=record.entity_code,
                    outcome=record.outcome,
                    remarks=record.remarks,
                    occurred_at=record.occurred_at,
                )
                session.add(row)
                session.flush()
                entry = row.to_dto()
        except Exception as exc:
            error = AuditDeliveryError(
                record.action.value, str(record.entity_id), str(exc),
            )
            with self._failures_lock:
                self._failures += 1
            logger.error(
                "audit_append_failed",
                extra={
                    "error_code": error.code,
                    "action": record.action.value,
                    "entity_type": record.entity_type,
                    "entity_id": str(record.entity_id),
                    "reason": str(exc),
                },
            )
            if self._on_failure is not None:
                try:
                    self._on_failure(error)
                except Exception:
                    logger.exception("audit_failure_callback_error")
            return None

        logger.info(
            "audit_entry_appended",
            extra={
                "seq": entry.seq,
                "action": entry.action.value,
                "entity_type": entry.entity_type,
                "entity_id": str(entry.entity_id),
                "outcome": entry.outcome,
            },
        )
        return entry

    def query(
        self,
        audit_filter: AuditFilter | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Matching entries, newest first (``occurred_at``, then ``seq``)."""
        session = self._session_factory()
        try:
            return AuditSelector(session).query(audit_filter, limit=limit, offset=offset)
        finally:
            session.close()

    def count(self, audit_filter: AuditFilter | None = None) -> int:
        session = self._session_factory()
        try:
            return AuditSelector(session).count(audit_filter)
        finally:
            session.close()

    def history(self, entity_type: str, entity_id) -> list[AuditEntry]:
        """Oldest-first history of one document."""
        session = self._session_factory()
        try:
            return AuditSelector(session).for_entity(entity_type, entity_id)
        finally:
            session.close()
