"""
Module: erp_kernel.models.approvable
Responsibility: ORM persistence for approvable documents (requisitions, purchase
    orders, quotations, BOQs, estimates, contractor bills, ...).

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Status is drawn from the closed DocumentStatus set (check constraint).
    - Rejected rows carry remarks (check constraint).
    - decided_by/decided_at are set iff status is Approved or Rejected
      (check constraint).
    - (entity_type, human_code) is unique.
    - ``version`` increments on every gate transition; guarded UPDATEs use
      it to detect concurrent writers.
    - Decided rows are immutable (ORM listener in db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import TrackedBase, UTCDateTime

if TYPE_CHECKING:
    from erp_kernel.domain.approval import ApprovableDocument

_STATUS_VALUES = (
    "'Draft', 'Pending', 'Approved', 'Rejected', 'Sent', 'Received', "
    "'Closed', 'Active', 'Planning', 'OnHold', 'Completed', 'Cancelled'"
)


class ApprovableEntityModel(TrackedBase):
    """Persistent approvable document."""

    __tablename__ = "approvable_entities"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_approvable_entities_valid_status",
        ),
        CheckConstraint(
            "status <> 'Rejected' OR (remarks IS NOT NULL AND remarks <> '')",
            name="ck_approvable_entities_reject_remarks",
        ),
        CheckConstraint(
            "(status IN ('Approved', 'Rejected') "
            "AND decided_by IS NOT NULL AND decided_at IS NOT NULL) "
            "OR (status NOT IN ('Approved', 'Rejected') "
            "AND decided_by IS NULL AND decided_at IS NULL)",
            name="ck_approvable_entities_decision_stamp",
        ),
        UniqueConstraint(
            "entity_type", "human_code",
            name="uq_approvable_entities_code",
        ),
        Index("ix_approvable_entities_module_status", "module", "status"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    module: Mapped[str] = mapped_column(String(30), nullable=False)
    human_code: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Draft")
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_by: Mapped[str] = mapped_column(String(64), nullable=False)
    decided_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<ApprovableEntity {self.entity_type} {self.human_code} [{self.status}]>"

    def to_dto(self) -> ApprovableDocument:
        from erp_kernel.domain.approval import ApprovableDocument, DocumentStatus
        from erp_kernel.domain.permissions import Module

        return ApprovableDocument(
            entity_id=self.id,
            entity_type=self.entity_type,
            module=Module(self.module),
            human_code=self.human_code,
            status=DocumentStatus(self.status),
            requested_by=self.requested_by,
            remarks=self.remarks,
            decided_by=self.decided_by,
            decided_at=self.decided_at,
            version=self.version,
        )
