"""
Tests for approval domain types (``erp_kernel.domain.approval``).

Invariants tested:
- The gate only has Draft -> Pending and Pending -> Approved | Rejected edges.
- A Reject cannot exist without non-blank remarks.
- Every approvable entity type maps to exactly one module.
"""

import dataclasses
from uuid import uuid4

import pytest

from erp_kernel.domain.approval import (
    APPROVAL_GATE,
    DECIDED_STATUSES,
    ENTITY_TYPE_MODULES,
    ApprovableDocument,
    Approve,
    BulkDecisionResult,
    BulkItemResult,
    DocumentStatus,
    EntityRef,
    GateAction,
    Reject,
    make_decision,
    module_for_entity_type,
)
from erp_kernel.domain.permissions import Module
from erp_kernel.exceptions import UnknownEntityTypeError, ValidationError


class TestDocumentStatus:
    def test_twelve_states(self):
        assert {s.value for s in DocumentStatus} == {
            "Draft", "Pending", "Approved", "Rejected", "Sent", "Received",
            "Closed", "Active", "Planning", "OnHold", "Completed", "Cancelled",
        }

    def test_gate_edges(self):
        assert APPROVAL_GATE[GateAction.SUBMIT] == (DocumentStatus.DRAFT, DocumentStatus.PENDING)
        assert APPROVAL_GATE[GateAction.APPROVE] == (DocumentStatus.PENDING, DocumentStatus.APPROVED)
        assert APPROVAL_GATE[GateAction.REJECT] == (DocumentStatus.PENDING, DocumentStatus.REJECTED)

    def test_decided_states_have_no_outgoing_edges(self):
        sources = {source for source, _ in APPROVAL_GATE.values()}
        assert sources.isdisjoint(DECIDED_STATUSES)


class TestDecisionTypes:
    """The reject-needs-remarks rule lives in the type."""

    def test_approve_without_remarks(self):
        assert Approve().remarks is None
        assert Approve().action is GateAction.APPROVE

    def test_approve_blank_remarks_normalized(self):
        assert Approve("   ").remarks is None
        assert Approve("  ok  ").remarks == "ok"

    def test_reject_trims_remarks(self):
        decision = Reject("  Price too high ")
        assert decision.remarks == "Price too high"
        assert decision.action is GateAction.REJECT

    @pytest.mark.parametrize("remarks", ["", "   ", "\n\t", None])
    def test_reject_requires_remarks(self, remarks):
        with pytest.raises(ValidationError) as exc_info:
            Reject(remarks)
        assert exc_info.value.field == "remarks"
        assert exc_info.value.category == "validation"

    def test_make_decision(self):
        assert make_decision("approve") == Approve()
        assert make_decision("Reject", "No budget") == Reject("No budget")

    def test_make_decision_reject_without_remarks(self):
        with pytest.raises(ValidationError):
            make_decision("reject")

    def test_make_decision_unknown_outcome(self):
        with pytest.raises(ValidationError) as exc_info:
            make_decision("escalate")
        assert exc_info.value.field == "outcome"

    def test_decisions_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            Reject("x").remarks = ""


class TestEntityTypeRegistry:
    def test_purchase_documents(self):
        for entity_type in ("MaterialRequisition", "PurchaseOrder", "Quotation"):
            assert module_for_entity_type(entity_type) is Module.PURCHASE

    def test_engineering_documents(self):
        for entity_type in ("Estimate", "Budget", "BOQ"):
            assert module_for_entity_type(entity_type) is Module.ENGINEERING

    def test_contractor_bill_is_contracts(self):
        assert module_for_entity_type("ContractorBill") is Module.CONTRACTS

    def test_every_type_maps_to_a_module(self):
        assert all(isinstance(m, Module) for m in ENTITY_TYPE_MODULES.values())

    def test_unknown_type_rejected(self):
        with pytest.raises(UnknownEntityTypeError) as exc_info:
            module_for_entity_type("Invoice")
        assert exc_info.value.code == "UNKNOWN_ENTITY_TYPE"
        assert isinstance(exc_info.value, ValidationError)

    def test_entity_ref_module(self):
        ref = EntityRef("GRN", uuid4())
        assert ref.module is Module.SITE
        assert str(ref).startswith("GRN:")


class TestResults:
    def test_document_is_decided(self):
        doc = ApprovableDocument(
            entity_id=uuid4(),
            entity_type="PurchaseOrder",
            module=Module.PURCHASE,
            human_code="PO-1",
            status=DocumentStatus.APPROVED,
            requested_by="someone",
        )
        assert doc.is_decided
        assert doc.ref == EntityRef("PurchaseOrder", doc.entity_id)

    def test_bulk_summary(self):
        items = tuple(
            BulkItemResult(uuid4(), status=DocumentStatus.APPROVED) for _ in range(8)
        ) + tuple(
            BulkItemResult(uuid4(), error_code="INVALID_STATE", error_category="state")
            for _ in range(2)
        )
        result = BulkDecisionResult(GateAction.APPROVE, items)
        assert result.succeeded == 8
        assert result.failed == 2
        assert result.summary() == "8 of 10 approved"

    def test_empty_bulk_summary(self):
        assert BulkDecisionResult(GateAction.APPROVE).summary() == "0 of 0 approved"
