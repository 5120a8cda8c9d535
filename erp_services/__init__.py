"""
erp_services -- composition root and external boundary of the approval core.

Dependency direction:
    erp_services/ -> erp_kernel/, erp_config/  (allowed)
    erp_kernel/   -> erp_services/             (FORBIDDEN)
"""

from erp_services.gateway import GatewayResponse, WorkflowGateway
from erp_services.workflow_orchestrator import WorkflowOrchestrator

__all__ = ["GatewayResponse", "WorkflowGateway", "WorkflowOrchestrator"]
