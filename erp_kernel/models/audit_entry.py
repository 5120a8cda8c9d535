"""
Module: erp_kernel.models.audit_entry
Responsibility: ORM persistence for the append-only approval audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit rows are append-only; no UPDATE or DELETE (ORM listener).
    - ``seq`` is an auto-incremented insertion sequence; queries order by
      ``occurred_at`` and break ties on ``seq``.

Audit relevance:
    Every submit, approve and reject that commits produces exactly one row,
    attributing actor, action, module, entity and resulting status.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import Base, UTCDateTime, UUIDString

# SQLite only auto-increments an INTEGER PRIMARY KEY.
_SeqType = BigInteger().with_variant(Integer(), "sqlite")


class AuditEntryModel(Base):
    """Audit entry row.  Sacred: never updated or deleted."""

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_module_action", "module", "action"),
        Index("idx_audit_occurred", "occurred_at", "seq"),
    )

    # Insertion sequence doubles as the primary key.
    seq: Mapped[int] = mapped_column(_SeqType, primary_key=True, autoincrement=True)

    id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True, default=uuid4,
    )

    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    module: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    entity_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry #{self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    def to_dto(self):
        from erp_kernel.domain.audit import AuditAction, AuditEntry
        from erp_kernel.domain.permissions import Module

        return AuditEntry(
            seq=self.seq,
            entry_id=self.id,
            actor_id=self.actor_id,
            action=AuditAction(self.action),
            module=Module(self.module),
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            outcome=self.outcome,
            occurred_at=self.occurred_at,
            entity_code=self.entity_code,
            remarks=self.remarks,
        )
