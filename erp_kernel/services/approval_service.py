"""
erp_kernel.services.approval_service -- the approval gate.

Responsibility:
    Moves approvable documents through ``Draft -> Pending -> Approved |
    Rejected``: opening, submission, single and bulk decisions, plus the
    read paths used by approval queues.  After each committed transition it
    appends the audit entry and hands a notification to the emitter.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and sibling services.

Invariants enforced:
    - Preconditions run in a fixed order before any mutation: principal
      present, role authorized, document exists, document in the required
      state.
    - At most one decision per document.  Same-process callers serialize on
      the per-entity lock; every caller writes through a guarded UPDATE
      (``WHERE status = :from AND version = :v``) so a lost race is detected
      at the commit boundary even across processes.
    - Side effects are ordered after the commit: audit first (synchronous),
      then notification (asynchronous).  Neither can undo the transition.
    - Decisions are terminal; there is no reopen path.

Failure modes:
    - AuthenticationError: no principal.
    - AuthorizationError: role lacks the module permission.
    - DocumentNotFoundError: unknown document.
    - InvalidStateError: document not in the required state (unchanged).
    - ConflictError: a concurrent transition committed first.
    - BusyError: per-entity lock not acquired in time.
    - ValidationError: blank reject remarks, bulk reject, bad input.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Mapping, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from erp_kernel.db.engine import session_scope
from erp_kernel.domain.approval import (
    APPROVAL_GATE,
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
    module_for_entity_type,
)
from erp_kernel.domain.audit import AuditAction, AuditRecord
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.notifications import NotificationEvent, NotificationKind
from erp_kernel.domain.permissions import Action, Module
from erp_kernel.domain.principal import Principal
from erp_kernel.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    DocumentNotFoundError,
    DuplicateDocumentError,
    ErpKernelError,
    InvalidStateError,
    ValidationError,
)
from erp_kernel.logging_config import LogContext, get_logger
from erp_kernel.models.approvable import ApprovableEntityModel
from erp_kernel.selectors.document_selector import DocumentSelector
from erp_kernel.services.auditor_service import AuditRecorder
from erp_kernel.services.entity_locks import EntityLockRegistry
from erp_kernel.services.notification_service import NotificationEmitter
from erp_kernel.services.permission_engine import PermissionEngine

logger = get_logger("services.approval")

_DECISION_NOTICE = {
    GateAction.APPROVE: NotificationKind.REQUEST_APPROVED,
    GateAction.REJECT: NotificationKind.REQUEST_REJECTED,
}


class ApprovalWorkflowEngine:
    """
    Single-step approve/reject gate shared by every approvable document.

    Args:
        session_factory: Each unit of work opens its own session, so the
            engine is safe to call from several threads.
        permissions: Authorization over the active permission table.
        auditor: Receives one entry per committed transition.
        emitter: Optional notification fan-out.
        clock: Source of ``decided_at`` and audit timestamps.
        locks: Per-entity lock registry (bounded wait).
        watchers: Module -> principal ids notified on every transition in
            that module, in addition to the requester.
        bulk_max_workers: Parallelism of ``decide_bulk``; 1 runs serially.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        permissions: PermissionEngine,
        auditor: AuditRecorder,
        emitter: NotificationEmitter | None = None,
        clock: Clock | None = None,
        locks: EntityLockRegistry | None = None,
        watchers: Mapping[Module, Sequence[str]] | None = None,
        bulk_max_workers: int = 4,
    ) -> None:
        self._session_factory = session_factory
        self._permissions = permissions
        self._auditor = auditor
        self._emitter = emitter
        self._clock = clock or SystemClock()
        self._locks = locks if locks is not None else EntityLockRegistry()
        self._watchers = {m: tuple(ids) for m, ids in (watchers or {}).items()}
        self._bulk_max_workers = max(1, bulk_max_workers)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _find(self, ref: EntityRef) -> ApprovableDocument | None:
        session = self._session_factory()
        try:
            return DocumentSelector(session).get(ref.entity_type, ref.entity_id)
        finally:
            session.close()

    def get_document(self, ref: EntityRef) -> ApprovableDocument:
        module_for_entity_type(ref.entity_type)
        document = self._find(ref)
        if document is None:
            raise DocumentNotFoundError(ref.entity_type, str(ref.entity_id))
        return document

    def list_pending(
        self,
        module: Module | str | None = None,
        entity_type: str | None = None,
    ) -> list[ApprovableDocument]:
        """Documents awaiting a decision, oldest first."""
        module = Module.parse(module) if module is not None else None
        if entity_type is not None:
            module_for_entity_type(entity_type)
        session = self._session_factory()
        try:
            return DocumentSelector(session).list_by_status(
                DocumentStatus.PENDING, module=module, entity_type=entity_type,
            )
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def open_document(
        self,
        entity_type: str,
        human_code: str,
        requested_by: str,
        submit: bool = False,
    ) -> ApprovableDocument:
        """
        Create a document in ``Draft`` (or directly ``Pending``).

        Opening straight into ``Pending`` counts as a submission by the
        requester: it is audited and watchers are told approval is required.
        """
        module = module_for_entity_type(entity_type)
        human_code = (human_code or "").strip()
        if not human_code:
            raise ValidationError("human_code", "document code is required")
        if not (requested_by or "").strip():
            raise ValidationError("requested_by", "requester is required")

        status = DocumentStatus.PENDING if submit else DocumentStatus.DRAFT
        try:
            with session_scope(self._session_factory) as session:
                row = ApprovableEntityModel(
                    entity_type=entity_type,
                    module=module.value,
                    human_code=human_code,
                    status=status.value,
                    requested_by=requested_by,
                    version=1,
                )
                session.add(row)
                session.flush()
                document = row.to_dto()
        except IntegrityError:
            raise DuplicateDocumentError(entity_type, human_code) from None

        logger.info(
            "document_opened",
            extra={
                "entity_type": entity_type,
                "entity_id": str(document.entity_id),
                "human_code": human_code,
                "status": status.value,
            },
        )

        if submit:
            occurred_at = self._clock.now()
            self._record_audit(document, GateAction.SUBMIT, requested_by, occurred_at)
            self._emit(
                document,
                NotificationKind.APPROVAL_REQUIRED,
                requested_by,
                occurred_at,
                include_requester=False,
            )
        return document

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(self, ref: EntityRef, principal: Principal | None) -> DecisionResult:
        """``Draft -> Pending``.  Owner, or a role with create/edit."""
        if principal is None:
            raise AuthenticationError("no active session")
        module = ref.module

        with LogContext.bind(
            actor_id=principal.id,
            entity_type=ref.entity_type,
            entity_id=str(ref.entity_id),
        ):
            privileged = (
                self._permissions.is_authorized(principal.role, module, Action.CREATE)
                or self._permissions.is_authorized(principal.role, module, Action.EDIT)
            )
            document = self.get_document(ref)
            if not privileged and document.requested_by != principal.id:
                logger.warning(
                    "submit_denied",
                    extra={"role": principal.role, "module_name": module.value},
                )
                raise AuthorizationError(principal.role, module.value, Action.CREATE.value)
            self._require_status(document, GateAction.SUBMIT)

            updated, occurred_at = self._transition(document, GateAction.SUBMIT, principal)

            audit_recorded = self._record_audit(
                updated, GateAction.SUBMIT, principal.id, occurred_at,
            )
            self._emit(
                updated,
                NotificationKind.APPROVAL_REQUIRED,
                principal.id,
                occurred_at,
                include_requester=False,
            )

        return DecisionResult(
            entity_id=updated.entity_id,
            entity_type=updated.entity_type,
            human_code=updated.human_code,
            status=updated.status,
            audit_recorded=audit_recorded,
        )

    def decide(
        self,
        ref: EntityRef,
        principal: Principal | None,
        decision: Decision,
        lock_timeout: float | None = None,
    ) -> DecisionResult:
        """
        ``Pending -> Approved | Rejected``.

        ``lock_timeout`` overrides the registry wait for this call only;
        expiry raises BusyError and leaves the document untouched.
        """
        if principal is None:
            raise AuthenticationError("no active session")
        if not isinstance(decision, (Approve, Reject)):
            raise ValidationError("decision", "expected Approve or Reject")
        module = ref.module

        with LogContext.bind(
            actor_id=principal.id,
            entity_type=ref.entity_type,
            entity_id=str(ref.entity_id),
        ):
            self._permissions.require(principal.role, module, Action.APPROVE)
            document = self.get_document(ref)
            self._require_status(document, decision.action)

            updated, occurred_at = self._transition(
                document, decision.action, principal, remarks=decision.remarks,
                lock_timeout=lock_timeout,
            )

            logger.info(
                "decision_recorded",
                extra={
                    "human_code": updated.human_code,
                    "status": updated.status.value,
                    "version": updated.version,
                },
            )

            audit_recorded = self._record_audit(
                updated, decision.action, principal.id, occurred_at,
                remarks=decision.remarks,
            )
            self._emit(
                updated,
                _DECISION_NOTICE[decision.action],
                principal.id,
                occurred_at,
                remarks=decision.remarks,
            )

        return DecisionResult(
            entity_id=updated.entity_id,
            entity_type=updated.entity_type,
            human_code=updated.human_code,
            status=updated.status,
            decided_by=updated.decided_by,
            decided_at=updated.decided_at,
            remarks=updated.remarks,
            audit_recorded=audit_recorded,
        )

    def decide_bulk(
        self,
        entity_type: str,
        entity_ids: Iterable[UUID],
        principal: Principal | None,
        decision: Decision | None = None,
    ) -> BulkDecisionResult:
        """
        Approve many documents of one type independently.

        Bulk decisions are approve-only.  Every failure, authorization
        included, is reported per item in input order and never aborts the
        rest.
        """
        decision = decision if decision is not None else Approve()
        if isinstance(decision, Reject):
            raise ValidationError("outcome", "bulk decisions are approve-only")
        if principal is None:
            raise AuthenticationError("no active session")
        module_for_entity_type(entity_type)

        ids = list(entity_ids)

        def run(entity_id: UUID) -> BulkItemResult:
            try:
                result = self.decide(EntityRef(entity_type, entity_id), principal, decision)
            except ErpKernelError as exc:
                return BulkItemResult(
                    entity_id=entity_id,
                    error_code=exc.code,
                    error_category=exc.category,
                    message=exc.user_message,
                )
            except Exception:
                logger.exception(
                    "bulk_item_failed",
                    extra={"entity_type": entity_type, "entity_id": str(entity_id)},
                )
                return BulkItemResult(
                    entity_id=entity_id,
                    error_code=ErpKernelError.code,
                    error_category=ErpKernelError.category,
                    message=ErpKernelError.user_message,
                )
            return BulkItemResult(entity_id=entity_id, status=result.status)

        if self._bulk_max_workers > 1 and len(ids) > 1:
            workers = min(self._bulk_max_workers, len(ids))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="erp-bulk") as pool:
                items = tuple(pool.map(run, ids))
        else:
            items = tuple(run(entity_id) for entity_id in ids)

        outcome = BulkDecisionResult(action=decision.action, items=items)
        logger.info(
            "bulk_decision_completed",
            extra={
                "actor": principal.id,
                "bulk_entity_type": entity_type,
                "total": len(items),
                "succeeded": outcome.succeeded,
                "failed": outcome.failed,
            },
        )
        return outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_status(document: ApprovableDocument, action: GateAction) -> None:
        required, _ = APPROVAL_GATE[action]
        if document.status != required:
            logger.info(
                "transition_rejected_state",
                extra={
                    "current_status": document.status.value,
                    "required_status": required.value,
                    "gate_action": action.value,
                },
            )
            raise InvalidStateError(
                document.entity_type,
                str(document.entity_id),
                document.status.value,
                required.value,
            )

    def _transition(
        self,
        document: ApprovableDocument,
        action: GateAction,
        principal: Principal,
        remarks: str | None = None,
        lock_timeout: float | None = None,
    ) -> tuple[ApprovableDocument, datetime]:
        """Apply one gate edge under the entity lock and commit it."""
        from_status, to_status = APPROVAL_GATE[action]
        decided = action != GateAction.SUBMIT

        with self._locks.hold(document.ref, lock_timeout):
            occurred_at = self._clock.now()
            values: dict = {
                "status": to_status.value,
                "version": document.version + 1,
            }
            if decided:
                values.update(
                    decided_by=principal.id,
                    decided_at=occurred_at,
                    remarks=remarks,
                )

            with session_scope(self._session_factory) as session:
                # UPDATE first: the guard is the commit-boundary check.
                result = session.execute(
                    update(ApprovableEntityModel)
                    .where(
                        ApprovableEntityModel.id == document.entity_id,
                        ApprovableEntityModel.entity_type == document.entity_type,
                        ApprovableEntityModel.status == from_status.value,
                        ApprovableEntityModel.version == document.version,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    current = session.execute(
                        select(ApprovableEntityModel.status).where(
                            ApprovableEntityModel.id == document.entity_id,
                        )
                    ).scalar_one_or_none()
                    logger.warning(
                        "transition_conflict",
                        extra={
                            "gate_action": action.value,
                            "expected_version": document.version,
                            "current_status": current,
                        },
                    )
                    raise ConflictError(
                        document.entity_type,
                        str(document.entity_id),
                        current or "missing",
                        from_status.value,
                    )

        if decided:
            updated = replace(
                document,
                status=to_status,
                version=document.version + 1,
                decided_by=principal.id,
                decided_at=occurred_at,
                remarks=remarks,
            )
        else:
            updated = replace(document, status=to_status, version=document.version + 1)
        return updated, occurred_at

    def _record_audit(
        self,
        document: ApprovableDocument,
        action: GateAction,
        actor_id: str,
        occurred_at: datetime,
        remarks: str | None = None,
    ) -> bool:
        entry = self._auditor.append(AuditRecord(
            actor_id=actor_id,
            action=AuditAction(action.value),
            module=document.module,
            entity_type=document.entity_type,
            entity_id=document.entity_id,
            outcome=document.status.value,
            occurred_at=occurred_at,
            entity_code=document.human_code,
            remarks=remarks,
        ))
        return entry is not None

    def _recipients(
        self,
        document: ApprovableDocument,
        actor_id: str,
        include_requester: bool,
    ) -> tuple[str, ...]:
        candidates = [document.requested_by] if include_requester else []
        candidates.extend(self._watchers.get(document.module, ()))
        seen: list[str] = []
        for candidate in candidates:
            if candidate and candidate != actor_id and candidate not in seen:
                seen.append(candidate)
        return tuple(seen)

    def _emit(
        self,
        document: ApprovableDocument,
        kind: NotificationKind,
        actor_id: str,
        occurred_at: datetime,
        remarks: str | None = None,
        include_requester: bool = True,
    ) -> None:
        if self._emitter is None:
            return
        event = NotificationEvent(
            kind=kind,
            entity_type=document.entity_type,
            entity_id=document.entity_id,
            entity_code=document.human_code,
            module=document.module,
            actor_id=actor_id,
            recipients=self._recipients(document, actor_id, include_requester),
            occurred_at=occurred_at,
            remarks=remarks,
        )
        try:
            self._emitter.notify(event)
        except Exception:
            logger.exception("notification_enqueue_failed", extra={"kind": kind.value})
