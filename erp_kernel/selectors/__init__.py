"""Read-only query selectors."""

from erp_kernel.selectors.audit_selector import AuditSelector
from erp_kernel.selectors.base import BaseSelector
from erp_kernel.selectors.document_selector import DocumentSelector

__all__ = ["AuditSelector", "BaseSelector", "DocumentSelector"]
