"""
erp_services.gateway -- transport-agnostic boundary of the approval core.

Responsibility:
    Carries the external contracts (permission check, submit, decide, bulk
    decide, audit trail, login/logout) over plain Python values.  Any RPC
    or REST framework can wrap these methods one-to-one.

Architecture position:
    Services -- outermost layer.  Resolves the bearer token through the
    identity provider before anything reaches the workflow engine, and maps
    the kernel's typed errors onto ``GatewayResponse``.

Invariants enforced:
    - A missing or unresolvable token is answered with 401 and never
      reaches the workflow engine.
    - Every error body names the reason ``category`` so the interface can
      render an actionable message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping
from uuid import UUID

from erp_kernel.domain.approval import EntityRef, make_decision
from erp_kernel.domain.audit import AuditAction, AuditEntry, AuditFilter
from erp_kernel.domain.permissions import Action, Module
from erp_kernel.domain.principal import Credentials, Principal
from erp_kernel.exceptions import (
    AuthenticationError,
    ErpKernelError,
    ValidationError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.services.approval_service import ApprovalWorkflowEngine
from erp_kernel.services.auditor_service import AuditRecorder
from erp_kernel.services.identity_service import IdentityProvider
from erp_kernel.services.permission_engine import PermissionEngine

logger = get_logger("services.gateway")


@dataclass(frozen=True)
class GatewayResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def _error_response(exc: ErpKernelError) -> GatewayResponse:
    return GatewayResponse(
        exc.http_status,
        {
            "error": {
                "code": exc.code,
                "category": exc.category,
                "message": exc.user_message,
            }
        },
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_uuid(value: Any, name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(name, f"'{value}' is not a valid id") from None


def _parse_datetime(value: Any, name: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(name, f"'{value}' is not an ISO date-time") from None


def _entry_body(entry: AuditEntry) -> dict[str, Any]:
    return {
        "seq": entry.seq,
        "id": str(entry.entry_id),
        "actor": entry.actor_id,
        "action": entry.action.value,
        "module": entry.module.value,
        "entityType": entry.entity_type,
        "entityId": str(entry.entity_id),
        "entityCode": entry.entity_code,
        "outcome": entry.outcome,
        "remarks": entry.remarks,
        "occurredAt": _iso(entry.occurred_at),
    }


class WorkflowGateway:
    """Maps boundary calls onto the kernel services."""

    def __init__(
        self,
        workflow: ApprovalWorkflowEngine,
        permissions: PermissionEngine,
        identity: IdentityProvider,
        auditor: AuditRecorder,
    ):
        self._workflow = workflow
        self._permissions = permissions
        self._identity = identity
        self._auditor = auditor

    @classmethod
    def from_orchestrator(cls, orchestrator) -> WorkflowGateway:
        return cls(
            orchestrator.workflow,
            orchestrator.permissions,
            orchestrator.identity,
            orchestrator.auditor,
        )

    def _principal(self, token: str | None) -> Principal:
        if not token or not token.strip():
            raise AuthenticationError("missing bearer token")
        principal = self._identity.resolve_token(token.strip())
        if principal is None:
            raise AuthenticationError("invalid or expired token")
        return principal

    def _handle(self, operation: str, fn: Callable[[], dict[str, Any]]) -> GatewayResponse:
        try:
            return GatewayResponse(200, fn())
        except ErpKernelError as exc:
            logger.info(
                "gateway_request_rejected",
                extra={
                    "operation": operation,
                    "error_code": exc.code,
                    "error_category": exc.category,
                    "status_code": exc.http_status,
                },
            )
            return _error_response(exc)

    # ------------------------------------------------------------------
    # Session boundary
    # ------------------------------------------------------------------

    def login(self, login: str, password: str) -> GatewayResponse:
        def run():
            principal = self._identity.authenticate(Credentials(login, password))
            return {
                "token": principal.token,
                "expiresAt": _iso(principal.expires_at),
                "principal": {
                    "id": principal.id,
                    "displayName": principal.display_name,
                    "role": principal.role,
                    "permissions": self._permissions.permission_strings(principal.role),
                },
            }

        return self._handle("login", run)

    def logout(self, token: str | None) -> GatewayResponse:
        def run():
            if token:
                try:
                    self._identity.revoke(token.strip())
                except ErpKernelError:
                    logger.warning("token_revoke_failed", exc_info=True)
            return {"loggedOut": True}

        return self._handle("logout", run)

    # ------------------------------------------------------------------
    # Workflow contracts
    # ------------------------------------------------------------------

    def permission_check(
        self,
        role: str,
        module: Module | str,
        action: Action | str,
    ) -> GatewayResponse:
        return self._handle(
            "permission_check",
            lambda: {"allowed": self._permissions.is_authorized(role, module, action)},
        )

    def submit(self, token: str | None, entity_type: str, entity_id: Any) -> GatewayResponse:
        def run():
            principal = self._principal(token)
            ref = EntityRef(entity_type, _parse_uuid(entity_id, "entityId"))
            result = self._workflow.submit(ref, principal)
            return {"status": result.status.value}

        return self._handle("submit", run)

    def decide(
        self,
        token: str | None,
        entity_type: str,
        entity_id: Any,
        outcome: str,
        remarks: str | None = None,
    ) -> GatewayResponse:
        def run():
            principal = self._principal(token)
            ref = EntityRef(entity_type, _parse_uuid(entity_id, "entityId"))
            decision = make_decision(outcome, remarks)
            result = self._workflow.decide(ref, principal, decision)
            return {
                "status": result.status.value,
                "decidedAt": _iso(result.decided_at),
                "decidedBy": result.decided_by,
                "auditRecorded": result.audit_recorded,
            }

        return self._handle("decide", run)

    def decide_bulk(
        self,
        token: str | None,
        entity_type: str,
        entity_ids: Iterable[Any],
        outcome: str = "approve",
    ) -> GatewayResponse:
        def run():
            principal = self._principal(token)
            ids = [_parse_uuid(raw, "entityIds") for raw in entity_ids]
            result = self._workflow.decide_bulk(
                entity_type, ids, principal, make_decision(outcome),
            )
            results = []
            for item in result.items:
                if item.succeeded:
                    results.append({"id": str(item.entity_id), "status": item.status.value})
                else:
                    results.append({
                        "id": str(item.entity_id),
                        "error": {
                            "code": item.error_code,
                            "category": item.error_category,
                            "message": item.message,
                        },
                    })
            return {"results": results, "summary": result.summary()}

        return self._handle("decide_bulk", run)

    def audit_trail(
        self,
        token: str | None,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> GatewayResponse:
        """Newest-first audit entries; requires ``ADMIN.audit``."""

        def run():
            principal = self._principal(token)
            self._permissions.require(principal.role, Module.ADMIN, Action.AUDIT)
            audit_filter = self._audit_filter(filters or {})
            entries = self._auditor.query(audit_filter, limit=limit, offset=offset)
            return {
                "entries": [_entry_body(entry) for entry in entries],
                "total": self._auditor.count(audit_filter),
            }

        return self._handle("audit_trail", run)

    @staticmethod
    def _audit_filter(filters: Mapping[str, Any]) -> AuditFilter:
        action = filters.get("action")
        if action is not None:
            try:
                action = AuditAction(str(action).strip().lower())
            except ValueError:
                raise ValidationError("action", f"unknown audit action '{action}'") from None
        module = filters.get("module")
        entity_id = filters.get("entityId")
        return AuditFilter(
            module=Module.parse(module) if module is not None else None,
            action=action,
            actor_id=filters.get("actor"),
            entity_type=filters.get("entityType"),
            entity_id=_parse_uuid(entity_id, "entityId") if entity_id is not None else None,
            date_from=_parse_datetime(filters.get("dateFrom"), "dateFrom"),
            date_to=_parse_datetime(filters.get("dateTo"), "dateTo"),
        )
