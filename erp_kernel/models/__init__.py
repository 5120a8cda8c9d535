"""SQLAlchemy ORM models for the ERP kernel."""

from erp_kernel.models.approvable import ApprovableEntityModel
from erp_kernel.models.audit_entry import AuditEntryModel
from erp_kernel.models.identity import SessionTokenModel, UserModel
from erp_kernel.models.notification import NotificationModel

__all__ = [
    "ApprovableEntityModel",
    "AuditEntryModel",
    "NotificationModel",
    "SessionTokenModel",
    "UserModel",
]
