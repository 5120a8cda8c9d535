"""
Approval domain types (``erp_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval gate shared by every approvable
document: the closed status set, the gate's transition table, the
discriminated approve/reject decision type, entity references, and the
per-call and bulk result records.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  May import
only from ``domain/permissions`` and ``exceptions``.

Invariants enforced
-------------------
* The gate only moves ``Draft -> Pending`` (submit) and
  ``Pending -> Approved | Rejected`` (decide).  Decided statuses have no
  outgoing gate edges.
* A ``Reject`` cannot be constructed without non-blank remarks; the rule
  lives in the type, not in a conditional at the call site.
* Every approvable entity type belongs to exactly one module.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union
from uuid import UUID

from erp_kernel.domain.permissions import Module
from erp_kernel.exceptions import UnknownEntityTypeError, ValidationError


# =========================================================================
# Document status
# =========================================================================


class DocumentStatus(str, Enum):
    """Closed set of document states across all approvable entity types."""

    DRAFT = "Draft"
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    SENT = "Sent"
    RECEIVED = "Received"
    CLOSED = "Closed"
    ACTIVE = "Active"
    PLANNING = "Planning"
    ON_HOLD = "OnHold"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class GateAction(str, Enum):
    """Actions the approval gate understands."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"


APPROVAL_GATE: dict[GateAction, tuple[DocumentStatus, DocumentStatus]] = {
    GateAction.SUBMIT: (DocumentStatus.DRAFT, DocumentStatus.PENDING),
    GateAction.APPROVE: (DocumentStatus.PENDING, DocumentStatus.APPROVED),
    GateAction.REJECT: (DocumentStatus.PENDING, DocumentStatus.REJECTED),
}

DECIDED_STATUSES: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.APPROVED,
    DocumentStatus.REJECTED,
})

INITIAL_STATUSES: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.DRAFT,
    DocumentStatus.PENDING,
})


# =========================================================================
# Decisions (discriminated union)
# =========================================================================


@dataclass(frozen=True)
class Approve:
    """Approve outcome; remarks optional."""

    remarks: str | None = None

    action = GateAction.APPROVE

    def __post_init__(self) -> None:
        if self.remarks is not None:
            cleaned = self.remarks.strip()
            object.__setattr__(self, "remarks", cleaned or None)


@dataclass(frozen=True)
class Reject:
    """Reject outcome; remarks mandatory and non-blank after trimming."""

    remarks: str

    action = GateAction.REJECT

    def __post_init__(self) -> None:
        cleaned = (self.remarks or "").strip()
        if not cleaned:
            raise ValidationError("remarks", "remarks are required when rejecting")
        object.__setattr__(self, "remarks", cleaned)


Decision = Union[Approve, Reject]


def make_decision(outcome: str, remarks: str | None = None) -> Decision:
    """Build a decision from boundary strings (``"approve"`` / ``"reject"``)."""
    normalized = (outcome or "").strip().lower()
    if normalized == GateAction.APPROVE.value:
        return Approve(remarks)
    if normalized == GateAction.REJECT.value:
        return Reject(remarks or "")
    raise ValidationError("outcome", f"unknown outcome '{outcome}'")


# =========================================================================
# Entity type registry
# =========================================================================


ENTITY_TYPE_MODULES: dict[str, Module] = {
    # Purchase
    "MaterialRequisition": Module.PURCHASE,
    "PurchaseOrder": Module.PURCHASE,
    "Quotation": Module.PURCHASE,
    "ComparativeStatement": Module.PURCHASE,
    # Engineering
    "Estimate": Module.ENGINEERING,
    "Budget": Module.ENGINEERING,
    "BOQ": Module.ENGINEERING,
    "Drawing": Module.ENGINEERING,
    # Contracts
    "WorkOrder": Module.CONTRACTS,
    "ContractorBill": Module.CONTRACTS,
    "RABill": Module.CONTRACTS,
    "Advance": Module.CONTRACTS,
    # Site
    "GRN": Module.SITE,
    "MaterialIssue": Module.SITE,
    "Transfer": Module.SITE,
    # Accounts
    "Journal": Module.ACCOUNTS,
    "Payment": Module.ACCOUNTS,
}


def module_for_entity_type(entity_type: str) -> Module:
    """Return the owning module, or raise ``UnknownEntityTypeError``."""
    try:
        return ENTITY_TYPE_MODULES[entity_type]
    except KeyError:
        raise UnknownEntityTypeError(entity_type) from None


# =========================================================================
# References and results
# =========================================================================


@dataclass(frozen=True)
class EntityRef:
    """Reference to one approvable document."""

    entity_type: str
    entity_id: UUID

    @property
    def module(self) -> Module:
        return module_for_entity_type(self.entity_type)

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.entity_id}"


@dataclass(frozen=True)
class ApprovableDocument:
    """Immutable snapshot of an approvable entity."""

    entity_id: UUID
    entity_type: str
    module: Module
    human_code: str
    status: DocumentStatus
    requested_by: str
    remarks: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    version: int = 1

    @property
    def ref(self) -> EntityRef:
        return EntityRef(self.entity_type, self.entity_id)

    @property
    def is_decided(self) -> bool:
        return self.status in DECIDED_STATUSES


@dataclass(frozen=True)
class DecisionResult:
    """Result of a successful gate transition.

    ``audit_recorded`` is False when the transition committed but its audit
    entry could not be persisted (surfaced separately, never rolled back).
    """

    entity_id: UUID
    entity_type: str
    human_code: str
    status: DocumentStatus
    decided_by: str | None = None
    decided_at: datetime | None = None
    remarks: str | None = None
    audit_recorded: bool = True


@dataclass(frozen=True)
class BulkItemResult:
    """Per-element outcome of a bulk decision."""

    entity_id: UUID
    status: DocumentStatus | None = None
    error_code: str | None = None
    error_category: str | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error_code is None


@dataclass(frozen=True)
class BulkDecisionResult:
    """Ordered per-element results of a bulk decision."""

    action: GateAction
    items: tuple[BulkItemResult, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.succeeded)

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded

    def summary(self) -> str:
        """Partial-success summary, e.g. ``"8 of 10 approved"``."""
        verb = "approved" if self.action == GateAction.APPROVE else "rejected"
        return f"{self.succeeded} of {len(self.items)} {verb}"
