"""
ERP Kernel - authorization and approval-workflow core.

Shared by every approval-capable document in the ERP (requisitions,
purchase orders, quotations, BOQs, estimates, contractor bills):
- Static, versioned role/permission table
- Fail-closed permission checks
- Single-step approve/reject gate with per-entity serialization
- Append-only audit trail
- Best-effort asynchronous notifications
"""

__version__ = "0.1.0"
