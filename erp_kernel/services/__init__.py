"""Kernel services -- the imperative shell around the pure domain."""

from erp_kernel.services.approval_service import ApprovalWorkflowEngine
from erp_kernel.services.auditor_service import AuditRecorder
from erp_kernel.services.entity_locks import EntityLockRegistry
from erp_kernel.services.identity_service import (
    DirectoryIdentityProvider,
    IdentityProvider,
)
from erp_kernel.services.notification_service import (
    DatabaseNotificationSink,
    NotificationEmitter,
    NotificationInbox,
    NotificationSink,
)
from erp_kernel.services.permission_engine import PermissionEngine, RolePermissions
from erp_kernel.services.session_store import (
    FileTokenStore,
    MemoryTokenStore,
    SessionStore,
    TokenStore,
)

__all__ = [
    "ApprovalWorkflowEngine",
    "AuditRecorder",
    "DatabaseNotificationSink",
    "DirectoryIdentityProvider",
    "EntityLockRegistry",
    "FileTokenStore",
    "IdentityProvider",
    "MemoryTokenStore",
    "NotificationEmitter",
    "NotificationInbox",
    "NotificationSink",
    "PermissionEngine",
    "RolePermissions",
    "SessionStore",
    "TokenStore",
]
