"""
Tests for the audit trail: recording, querying and immutability.

Invariants tested:
- Entries are returned newest first; equal timestamps fall back to
  insertion order (``seq``).
- Filters combine; ``date_to`` is exclusive.
- Audit entries and decided documents cannot be modified or deleted
  through the ORM.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from erp_kernel.domain.approval import Approve, Reject
from erp_kernel.domain.audit import AuditAction, AuditFilter, AuditRecord
from erp_kernel.domain.permissions import Module
from erp_kernel.exceptions import ImmutabilityViolationError
from erp_kernel.models.approvable import ApprovableEntityModel
from erp_kernel.models.audit_entry import AuditEntryModel

T0 = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)


def _record(
    at=T0,
    action=AuditAction.APPROVE,
    module=Module.PURCHASE,
    actor="approver.one",
    entity_type="PurchaseOrder",
    entity_id=None,
    remarks=None,
):
    outcome = {
        AuditAction.SUBMIT: "Pending",
        AuditAction.APPROVE: "Approved",
        AuditAction.REJECT: "Rejected",
    }[action]
    return AuditRecord(
        actor_id=actor,
        action=action,
        module=module,
        entity_type=entity_type,
        entity_id=entity_id or uuid4(),
        outcome=outcome,
        occurred_at=at,
        entity_code="DOC-1",
        remarks=remarks,
    )


class TestAppend:
    def test_append_returns_entry(self, auditor, captured_logs):
        entry = auditor.append(_record(remarks="fine"))
        assert entry is not None
        assert entry.seq >= 1
        assert entry.action == AuditAction.APPROVE
        assert entry.module == Module.PURCHASE
        assert entry.occurred_at == T0
        assert entry.remarks == "fine"
        assert any(r["message"] == "audit_entry_appended" for r in captured_logs())

    def test_seq_increases(self, auditor):
        first = auditor.append(_record())
        second = auditor.append(_record())
        assert second.seq > first.seq
        assert first.entry_id != second.entry_id


class TestQuery:
    def test_newest_first(self, auditor):
        old = auditor.append(_record(at=T0))
        new = auditor.append(_record(at=T0 + timedelta(hours=1)))
        mid = auditor.append(_record(at=T0 + timedelta(minutes=30)))

        assert [e.seq for e in auditor.query()] == [new.seq, mid.seq, old.seq]

    def test_ties_broken_by_seq(self, auditor):
        first = auditor.append(_record(at=T0))
        second = auditor.append(_record(at=T0))
        third = auditor.append(_record(at=T0))
        assert [e.seq for e in auditor.query()] == [third.seq, second.seq, first.seq]

    def test_filters(self, auditor):
        target = uuid4()
        auditor.append(_record(action=AuditAction.SUBMIT, actor="purchase.officer", entity_id=target))
        auditor.append(_record(action=AuditAction.REJECT, entity_id=target, remarks="no"))
        auditor.append(_record(module=Module.ACCOUNTS, entity_type="Journal", actor="root"))
        auditor.append(_record(module=Module.ENGINEERING, entity_type="BOQ"))

        assert auditor.count() == 4
        assert auditor.count(AuditFilter(module=Module.PURCHASE)) == 2
        assert auditor.count(AuditFilter(action=AuditAction.REJECT)) == 1
        assert auditor.count(AuditFilter(actor_id="root")) == 1
        assert auditor.count(AuditFilter(entity_type="BOQ")) == 1
        assert auditor.count(AuditFilter(entity_id=target)) == 2
        assert auditor.count(AuditFilter(actor_id="approver.one", module=Module.PURCHASE)) == 1
        assert auditor.query(AuditFilter(actor_id="nobody")) == []

    def test_date_range_end_exclusive(self, auditor):
        auditor.append(_record(at=T0 - timedelta(seconds=1)))
        inside = auditor.append(_record(at=T0))
        auditor.append(_record(at=T0 + timedelta(days=1)))

        window = AuditFilter(date_from=T0, date_to=T0 + timedelta(days=1))
        assert [e.seq for e in auditor.query(window)] == [inside.seq]
        assert auditor.count(window) == 1

    def test_pagination(self, auditor):
        entries = [auditor.append(_record(at=T0 + timedelta(minutes=i))) for i in range(5)]
        newest_first = [e.seq for e in reversed(entries)]

        assert [e.seq for e in auditor.query(limit=2)] == newest_first[:2]
        assert [e.seq for e in auditor.query(limit=2, offset=2)] == newest_first[2:4]
        assert [e.seq for e in auditor.query(offset=3)] == newest_first[3:]
        assert auditor.count() == 5

    def test_history_oldest_first(self, workflow, auditor, pending_po, approver, clock):
        clock.advance(60)
        workflow.decide(pending_po, approver, Reject("Price too high"))

        history = auditor.history(pending_po.entity_type, pending_po.entity_id)
        assert [e.action for e in history] == [AuditAction.SUBMIT, AuditAction.REJECT]
        assert [e.actor_id for e in history] == ["purchase.officer", "approver.one"]
        assert history[1].occurred_at - history[0].occurred_at == timedelta(seconds=60)


class TestImmutability:
    """Audit entries and decided documents are write-once through the ORM."""

    def test_audit_entry_update_blocked(self, auditor, session):
        entry = auditor.append(_record())
        row = session.get(AuditEntryModel, entry.seq)
        row.remarks = "edited"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "AuditEntry"

    def test_audit_entry_delete_blocked(self, auditor, session):
        entry = auditor.append(_record())
        session.delete(session.get(AuditEntryModel, entry.seq))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_decided_document_update_blocked(self, workflow, pending_po, approver, session):
        workflow.decide(pending_po, approver, Approve())
        row = session.get(ApprovableEntityModel, pending_po.entity_id)
        row.remarks = "changed my mind"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert "remarks" in exc_info.value.reason

    def test_decided_document_status_change_blocked(self, workflow, pending_po, approver, session):
        workflow.decide(pending_po, approver, Reject("no"))
        row = session.get(ApprovableEntityModel, pending_po.entity_id)
        row.status = "Pending"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_decided_document_delete_blocked(self, workflow, pending_po, approver, session):
        workflow.decide(pending_po, approver, Approve())
        session.delete(session.get(ApprovableEntityModel, pending_po.entity_id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_undecided_document_editable(self, workflow, open_document, session):
        ref = open_document("PurchaseOrder", "PO-EDIT", submit=False)
        row = session.get(ApprovableEntityModel, ref.entity_id)
        row.remarks = "draft note"
        session.flush()
        session.commit()
        assert workflow.get_document(ref).remarks == "draft note"
