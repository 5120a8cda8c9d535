"""
Module: erp_kernel.selectors.audit_selector
Responsibility: Filtered, paginated reads over the audit trail.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Results are newest first: ``occurred_at`` descending, ties broken by
      insertion ``seq`` descending, so pagination is stable.
    - ``date_to`` is exclusive.

Audit relevance:
    This is the only read path for the audit trail; the gateway's audit
    endpoint and the tests go through it.
"""

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from erp_kernel.domain.audit import AuditEntry, AuditFilter
from erp_kernel.models.audit_entry import AuditEntryModel
from erp_kernel.selectors.base import BaseSelector


class AuditSelector(BaseSelector[AuditEntryModel]):
    """Selector for audit trail queries."""

    def __init__(self, session: Session):
        super().__init__(session)

    @staticmethod
    def _apply_filter(stmt: Select, audit_filter: AuditFilter) -> Select:
        if audit_filter.module is not None:
            stmt = stmt.where(AuditEntryModel.module == audit_filter.module.value)
        if audit_filter.action is not None:
            stmt = stmt.where(AuditEntryModel.action == audit_filter.action.value)
        if audit_filter.actor_id is not None:
            stmt = stmt.where(AuditEntryModel.actor_id == audit_filter.actor_id)
        if audit_filter.entity_type is not None:
            stmt = stmt.where(AuditEntryModel.entity_type == audit_filter.entity_type)
        if audit_filter.entity_id is not None:
            stmt = stmt.where(AuditEntryModel.entity_id == audit_filter.entity_id)
        if audit_filter.date_from is not None:
            stmt = stmt.where(AuditEntryModel.occurred_at >= audit_filter.date_from)
        if audit_filter.date_to is not None:
            stmt = stmt.where(AuditEntryModel.occurred_at < audit_filter.date_to)
        return stmt

    def query(
        self,
        audit_filter: AuditFilter | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Return matching entries, newest first.  ``limit=None`` returns all."""
        stmt = self._apply_filter(select(AuditEntryModel), audit_filter or AuditFilter())
        stmt = stmt.order_by(
            AuditEntryModel.occurred_at.desc(), AuditEntryModel.seq.desc(),
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]

    def count(self, audit_filter: AuditFilter | None = None) -> int:
        stmt = self._apply_filter(
            select(func.count()).select_from(AuditEntryModel),
            audit_filter or AuditFilter(),
        )
        return self.session.execute(stmt).scalar_one()

    def for_entity(self, entity_type: str, entity_id) -> list[AuditEntry]:
        """Full history of one document, oldest first."""
        stmt = (
            select(AuditEntryModel)
            .where(
                AuditEntryModel.entity_type == entity_type,
                AuditEntryModel.entity_id == entity_id,
            )
            .order_by(AuditEntryModel.occurred_at, AuditEntryModel.seq)
        )
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]
