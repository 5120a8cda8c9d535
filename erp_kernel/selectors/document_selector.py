"""
Module: erp_kernel.selectors.document_selector
Responsibility: Read-only access to approvable documents.
Architecture position: Kernel > Selectors.

Failure modes:
    - Returns None or an empty list when nothing matches; never raises on
      absence of data.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from erp_kernel.domain.approval import ApprovableDocument, DocumentStatus
from erp_kernel.domain.permissions import Module
from erp_kernel.models.approvable import ApprovableEntityModel
from erp_kernel.selectors.base import BaseSelector


class DocumentSelector(BaseSelector[ApprovableEntityModel]):
    """Selector for approvable document queries."""

    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, entity_type: str, entity_id: UUID) -> ApprovableDocument | None:
        """Fetch one document by type and id."""
        row = self.session.execute(
            select(ApprovableEntityModel).where(
                ApprovableEntityModel.id == entity_id,
                ApprovableEntityModel.entity_type == entity_type,
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def get_by_code(self, entity_type: str, human_code: str) -> ApprovableDocument | None:
        row = self.session.execute(
            select(ApprovableEntityModel).where(
                ApprovableEntityModel.entity_type == entity_type,
                ApprovableEntityModel.human_code == human_code,
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def list_by_status(
        self,
        status: DocumentStatus,
        module: Module | None = None,
        entity_type: str | None = None,
    ) -> list[ApprovableDocument]:
        """Documents in ``status``, oldest first, optionally narrowed."""
        stmt = select(ApprovableEntityModel).where(
            ApprovableEntityModel.status == status.value,
        )
        if module is not None:
            stmt = stmt.where(ApprovableEntityModel.module == module.value)
        if entity_type is not None:
            stmt = stmt.where(ApprovableEntityModel.entity_type == entity_type)
        stmt = stmt.order_by(
            ApprovableEntityModel.created_at, ApprovableEntityModel.human_code,
        )
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]
