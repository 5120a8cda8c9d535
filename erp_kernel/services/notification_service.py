"""
Notification emitter, sinks and the in-app inbox.

Responsibility:
    Fans out ``NotificationEvent``s raised by the workflow engine after a
    transition commits.  Delivery runs on a worker pool; each sink is
    retried with exponential backoff independently of the others.

Architecture position:
    Kernel > Services.  Called by ApprovalWorkflowEngine strictly after the
    status commit and the audit append.

Invariants enforced:
    - ``notify`` never blocks on delivery and never raises to the caller.
    - A delivery failure never rolls back or cancels the decision that
      produced the event.

Failure modes:
    - Exhausted retries are logged as ``notification_delivery_failed``
      (NotificationDeliveryError) and counted in ``failure_count``.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Protocol, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from erp_kernel.db.engine import session_scope
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.notifications import InboxItem, NotificationEvent
from erp_kernel.exceptions import NotificationDeliveryError
from erp_kernel.logging_config import get_logger
from erp_kernel.models.notification import NotificationModel

logger = get_logger("services.notifications")


class NotificationSink(Protocol):
    """A delivery channel (in-app rows, mail, chat, ...)."""

    name: str

    def deliver(self, event: NotificationEvent) -> None:
        """Deliver ``event`` to all of its recipients or raise."""
        ...


class DatabaseNotificationSink:
    """Writes one in-app notification row per recipient."""

    name = "in_app"

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def deliver(self, event: NotificationEvent) -> None:
        created_at = self._clock.now()
        with session_scope(self._session_factory) as session:
            for recipient in event.recipients:
                session.add(NotificationModel(
                    recipient_id=recipient,
                    kind=event.kind.value,
                    title=event.title,
                    message=event.message,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    is_read=False,
                    created_at=created_at,
                ))


class NotificationEmitter:
    """
    Fire-and-forget fan-out to the configured sinks.

    Args:
        sinks: Delivery channels; each gets its own retry loop.
        max_attempts: Attempts per sink before giving up.
        backoff_seconds: Delay before the first retry.
        backoff_multiplier: Growth factor of the delay between retries.
        max_workers: Size of the delivery pool.
        sleep: Injected for tests; defaults to ``time.sleep``.
    """

    def __init__(
        self,
        sinks: Sequence[NotificationSink],
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        backoff_multiplier: float = 2.0,
        max_workers: int = 2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._sinks = tuple(sinks)
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._backoff_multiplier = backoff_multiplier
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="erp-notify",
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._delivered = 0
        self._failures = 0
        self._closed = False

    @property
    def delivered_count(self) -> int:
        with self._lock:
            return self._delivered

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failures

    def notify(self, event: NotificationEvent) -> None:
        """Queue ``event`` for delivery and return immediately."""
        if not event.recipients:
            logger.debug(
                "notification_skipped_no_recipients",
                extra={"kind": event.kind.value, "entity_id": str(event.entity_id)},
            )
            return
        try:
            with self._lock:
                if self._closed:
                    raise RuntimeError("emitter is shut down")
                future = self._executor.submit(self._deliver_all, event)
                self._pending.add(future)
        except RuntimeError:
            logger.warning(
                "notification_dropped",
                extra={"kind": event.kind.value, "entity_id": str(event.entity_id)},
            )
            return
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver_all(self, event: NotificationEvent) -> None:
        for sink in self._sinks:
            self._deliver_with_retry(sink, event)

    def _deliver_with_retry(self, sink: NotificationSink, event: NotificationEvent) -> bool:
        delay = self._backoff_seconds
        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                sink.deliver(event)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "notification_attempt_failed",
                    extra={
                        "sink": sink.name,
                        "kind": event.kind.value,
                        "entity_id": str(event.entity_id),
                        "attempt": attempt,
                        "reason": str(exc),
                    },
                )
                if attempt < self._max_attempts:
                    self._sleep(delay)
                    delay *= self._backoff_multiplier
                continue

            with self._lock:
                self._delivered += 1
            logger.info(
                "notification_delivered",
                extra={
                    "sink": sink.name,
                    "kind": event.kind.value,
                    "entity_id": str(event.entity_id),
                    "recipients": list(event.recipients),
                    "attempt": attempt,
                },
            )
            return True

        error = NotificationDeliveryError(
            sink.name, event.kind.value, self._max_attempts, str(last_error),
        )
        with self._lock:
            self._failures += 1
        logger.error(
            "notification_delivery_failed",
            extra={
                "error_code": error.code,
                "sink": sink.name,
                "kind": event.kind.value,
                "entity_id": str(event.entity_id),
                "attempts": self._max_attempts,
                "reason": str(last_error),
            },
        )
        return False

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for queued deliveries.  True if all finished in time."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait_for_pending)


class NotificationInbox:
    """Read side of in-app notifications."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def list_for(self, recipient_id: str, unread_only: bool = False) -> list[InboxItem]:
        """Notifications for ``recipient_id``, newest first."""
        stmt = select(NotificationModel).where(
            NotificationModel.recipient_id == recipient_id,
        )
        if unread_only:
            stmt = stmt.where(NotificationModel.is_read.is_(False))
        stmt = stmt.order_by(NotificationModel.created_at.desc())
        session = self._session_factory()
        try:
            return [row.to_dto() for row in session.execute(stmt).scalars()]
        finally:
            session.close()

    def unread_count(self, recipient_id: str) -> int:
        stmt = select(func.count()).select_from(NotificationModel).where(
            NotificationModel.recipient_id == recipient_id,
            NotificationModel.is_read.is_(False),
        )
        session = self._session_factory()
        try:
            return session.execute(stmt).scalar_one()
        finally:
            session.close()

    def mark_read(self, recipient_id: str, notification_id: UUID) -> bool:
        """Mark one notification read.  False if it is not the recipient's."""
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(NotificationModel)
                .where(
                    NotificationModel.id == notification_id,
                    NotificationModel.recipient_id == recipient_id,
                )
                .values(is_read=True)
            )
            return result.rowcount == 1

    def mark_all_read(self, recipient_id: str) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(NotificationModel)
                .where(
                    NotificationModel.recipient_id == recipient_id,
                    NotificationModel.is_read.is_(False),
                )
                .values(is_read=True)
            )
            return result.rowcount
