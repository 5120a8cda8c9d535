"""
Module: erp_kernel.models.notification
Responsibility: ORM persistence for in-app notifications.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (recipient, event); only ``is_read`` changes after insert.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import Base, UTCDateTime, UUIDString


class NotificationModel(Base):
    """In-app notification addressed to a single recipient."""

    __tablename__ = "notifications"

    __table_args__ = (
        Index("idx_notifications_recipient", "recipient_id", "is_read"),
    )

    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<Notification {self.kind} -> {self.recipient_id}>"

    def to_dto(self):
        from erp_kernel.domain.notifications import InboxItem, NotificationKind

        return InboxItem(
            notification_id=self.id,
            recipient_id=self.recipient_id,
            kind=NotificationKind(self.kind),
            title=self.title,
            message=self.message,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            read=self.is_read,
            created_at=self.created_at,
        )
