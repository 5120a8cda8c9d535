"""
erp_services.workflow_orchestrator -- central DI container for the approval core.

Responsibility:
    Creates every kernel service exactly once from a compiled configuration
    and wires them together.  No kernel service constructs another.

Architecture position:
    Services -- top of the stack.  The only place where configuration
    settings are translated into service arguments.

Invariants enforced:
    - Single-instance lifecycle: one permission engine, one audit recorder,
      one emitter and one lock registry per orchestrator.
    - Immutability listeners are registered before the first unit of work.

Usage:
    init_engine_from_url("sqlite:///erp.db")
    create_tables()
    orchestrator = WorkflowOrchestrator(get_session_factory(), get_active_config())
    orchestrator.workflow.decide(ref, principal, Approve())
    orchestrator.shutdown()
"""

from __future__ import annotations

from typing import Sequence

from sqlalchemy.orm import Session, sessionmaker

from erp_config.schema import CompiledWorkflowConfig
from erp_kernel.db.immutability import register_immutability_listeners
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.logging_config import get_logger
from erp_kernel.services.approval_service import ApprovalWorkflowEngine
from erp_kernel.services.auditor_service import AuditRecorder
from erp_kernel.services.entity_locks import EntityLockRegistry
from erp_kernel.services.identity_service import DirectoryIdentityProvider
from erp_kernel.services.notification_service import (
    DatabaseNotificationSink,
    NotificationEmitter,
    NotificationInbox,
    NotificationSink,
)
from erp_kernel.services.permission_engine import PermissionEngine
from erp_kernel.services.session_store import SessionStore, TokenStore

logger = get_logger("services.orchestrator")


class WorkflowOrchestrator:
    """Builds and owns the approval core's service graph."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: CompiledWorkflowConfig,
        clock: Clock | None = None,
        extra_sinks: Sequence[NotificationSink] = (),
    ) -> None:
        register_immutability_listeners()

        settings = config.settings
        self.config = config
        self.clock = clock or SystemClock()

        self.permissions = PermissionEngine(config.permission_table)
        self.auditor = AuditRecorder(session_factory)
        self.identity = DirectoryIdentityProvider(
            session_factory,
            self.clock,
            token_ttl_minutes=settings.token_ttl_minutes,
        )
        self.emitter = NotificationEmitter(
            [DatabaseNotificationSink(session_factory, self.clock), *extra_sinks],
            max_attempts=settings.notification_max_attempts,
            backoff_seconds=settings.notification_backoff_seconds,
            backoff_multiplier=settings.notification_backoff_multiplier,
            max_workers=settings.notification_workers,
        )
        self.inbox = NotificationInbox(session_factory)
        self.locks = EntityLockRegistry(settings.lock_timeout_seconds)
        self.workflow = ApprovalWorkflowEngine(
            session_factory,
            self.permissions,
            self.auditor,
            emitter=self.emitter,
            clock=self.clock,
            locks=self.locks,
            watchers=settings.watchers,
            bulk_max_workers=settings.bulk_max_workers,
        )

        logger.info(
            "workflow_orchestrator_ready",
            extra={"config_version": config.version, "checksum": config.checksum},
        )

    def session_store(self, token_store: TokenStore | None = None) -> SessionStore:
        """A fresh client session bound to this orchestrator's identity provider."""
        return SessionStore(self.identity, token_store, self.clock)

    def shutdown(self) -> None:
        self.emitter.shutdown()
