"""
Notification value objects.

A ``NotificationEvent`` is what the workflow engine hands to the emitter
after a transition commits.  Sinks turn it into deliveries (in-app rows,
mail, chat) for each recipient.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from erp_kernel.domain.permissions import Module


class NotificationKind(str, Enum):
    """Kinds of workflow notification."""

    APPROVAL_REQUIRED = "approval_required"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"


@dataclass(frozen=True)
class NotificationEvent:
    """A decided or submitted request, addressed to its interested parties."""

    kind: NotificationKind
    entity_type: str
    entity_id: UUID
    entity_code: str
    module: Module
    actor_id: str
    recipients: tuple[str, ...]
    occurred_at: datetime
    remarks: str | None = None

    @property
    def title(self) -> str:
        return {
            NotificationKind.APPROVAL_REQUIRED: f"{self.entity_type} Approval Required",
            NotificationKind.REQUEST_APPROVED: f"{self.entity_type} Approved",
            NotificationKind.REQUEST_REJECTED: f"{self.entity_type} Rejected",
        }[self.kind]

    @property
    def message(self) -> str:
        if self.kind == NotificationKind.APPROVAL_REQUIRED:
            return f"{self.entity_type} {self.entity_code} requires your approval"
        verb = "approved" if self.kind == NotificationKind.REQUEST_APPROVED else "rejected"
        text = f"{self.entity_type} {self.entity_code} was {verb} by {self.actor_id}"
        if self.remarks:
            text += f": {self.remarks}"
        return text


@dataclass(frozen=True)
class InboxItem:
    """A persisted in-app notification."""

    notification_id: UUID
    recipient_id: str
    kind: NotificationKind
    title: str
    message: str
    entity_type: str
    entity_id: UUID
    read: bool
    created_at: datetime
