"""
Tests for NotificationEmitter delivery and the in-app inbox.

Invariants tested:
- Each sink is retried with exponential backoff, independently.
- Exhausted retries are counted and logged, never raised.
- The inbox only lets a recipient touch their own notifications.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from erp_kernel.domain.notifications import NotificationEvent, NotificationKind
from erp_kernel.domain.permissions import Module
from erp_kernel.services.notification_service import (
    DatabaseNotificationSink,
    NotificationEmitter,
)

WHEN = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)


def _event(kind=NotificationKind.REQUEST_APPROVED, recipients=("purchase.officer",), remarks=None):
    return NotificationEvent(
        kind=kind,
        entity_type="PurchaseOrder",
        entity_id=uuid4(),
        entity_code="PO-2024-001",
        module=Module.PURCHASE,
        actor_id="approver.one",
        recipients=tuple(recipients),
        occurred_at=WHEN,
        remarks=remarks,
    )


class TestEventText:
    def test_approval_required(self):
        event = _event(NotificationKind.APPROVAL_REQUIRED)
        assert event.title == "PurchaseOrder Approval Required"
        assert event.message == "PurchaseOrder PO-2024-001 requires your approval"

    def test_approved_without_remarks(self):
        assert _event().message == "PurchaseOrder PO-2024-001 was approved by approver.one"


class TestNotificationEmitter:
    def test_retry_then_success(self, make_recording_sink, captured_logs):
        sink = make_recording_sink(failures=2)
        delays = []
        emitter = NotificationEmitter(
            [sink], max_attempts=3, backoff_seconds=0.5, backoff_multiplier=2.0,
            sleep=delays.append,
        )
        try:
            emitter.notify(_event())
            assert emitter.flush(timeout=10)
        finally:
            emitter.shutdown()

        assert sink.attempts == 3
        assert len(sink.events) == 1
        assert delays == [0.5, 1.0]
        assert emitter.delivered_count == 1
        assert emitter.failure_count == 0

        attempts = [r for r in captured_logs() if r["message"] == "notification_attempt_failed"]
        assert [r["attempt"] for r in attempts] == [1, 2]

    def test_exhausted_retries(self, make_recording_sink, captured_logs):
        sink = make_recording_sink(failures=10)
        delays = []
        emitter = NotificationEmitter(
            [sink], max_attempts=3, backoff_seconds=1, sleep=delays.append,
        )
        try:
            emitter.notify(_event())
            assert emitter.flush(timeout=10)
        finally:
            emitter.shutdown()

        assert sink.attempts == 3
        assert sink.events == []
        assert delays == [1, 2.0]
        assert emitter.failure_count == 1

        failed = [r for r in captured_logs() if r["message"] == "notification_delivery_failed"]
        assert len(failed) == 1
        assert failed[0]["error_code"] == "NOTIFICATION_DELIVERY_FAILED"
        assert failed[0]["sink"] == "recording"
        assert failed[0]["attempts"] == 3

    def test_sinks_are_independent(self, make_recording_sink):
        broken = make_recording_sink(failures=10)
        healthy = make_recording_sink()
        emitter = NotificationEmitter(
            [broken, healthy], max_attempts=2, backoff_seconds=0, sleep=lambda _: None,
        )
        try:
            emitter.notify(_event())
            assert emitter.flush(timeout=10)
        finally:
            emitter.shutdown()

        assert len(healthy.events) == 1
        assert emitter.failure_count == 1
        assert emitter.delivered_count == 1

    def test_no_recipients_skipped(self, make_recording_sink):
        sink = make_recording_sink()
        emitter = NotificationEmitter([sink], sleep=lambda _: None)
        try:
            emitter.notify(_event(recipients=()))
            assert emitter.flush(timeout=10)
        finally:
            emitter.shutdown()
        assert sink.attempts == 0

    def test_notify_after_shutdown_is_dropped(self, make_recording_sink, captured_logs):
        sink = make_recording_sink()
        emitter = NotificationEmitter([sink], sleep=lambda _: None)
        emitter.shutdown()

        emitter.notify(_event())

        assert sink.attempts == 0
        assert any(r["message"] == "notification_dropped" for r in captured_logs())

    def test_flush_with_nothing_pending(self, make_recording_sink):
        emitter = NotificationEmitter([make_recording_sink()])
        try:
            assert emitter.flush(timeout=0) is True
        finally:
            emitter.shutdown()

    def test_max_attempts_validated(self):
        with pytest.raises(ValueError):
            NotificationEmitter([], max_attempts=0)


class TestInbox:
    def _deliver(self, session_factory, clock, event):
        DatabaseNotificationSink(session_factory, clock).deliver(event)

    def test_one_row_per_recipient(self, session_factory, clock, inbox):
        self._deliver(session_factory, clock, _event(recipients=("a.user", "b.user")))
        assert len(inbox.list_for("a.user")) == 1
        assert len(inbox.list_for("b.user")) == 1
        assert inbox.list_for("c.user") == []

    def test_newest_first(self, session_factory, clock, inbox):
        first = _event(NotificationKind.APPROVAL_REQUIRED)
        self._deliver(session_factory, clock, first)
        clock.advance(60)
        second = _event(NotificationKind.REQUEST_REJECTED, remarks="Price too high")
        self._deliver(session_factory, clock, second)

        items = inbox.list_for("purchase.officer")
        assert [item.kind for item in items] == [
            NotificationKind.REQUEST_REJECTED,
            NotificationKind.APPROVAL_REQUIRED,
        ]
        assert items[0].created_at == clock.now()
        assert items[0].message.endswith(": Price too high")

    def test_mark_read(self, session_factory, clock, inbox):
        self._deliver(session_factory, clock, _event())
        self._deliver(session_factory, clock, _event())
        assert inbox.unread_count("purchase.officer") == 2

        item = inbox.list_for("purchase.officer")[0]
        assert inbox.mark_read("purchase.officer", item.notification_id) is True
        assert inbox.unread_count("purchase.officer") == 1
        assert len(inbox.list_for("purchase.officer", unread_only=True)) == 1

    def test_cannot_mark_someone_elses(self, session_factory, clock, inbox):
        self._deliver(session_factory, clock, _event(recipients=("a.user",)))
        item = inbox.list_for("a.user")[0]
        assert inbox.mark_read("b.user", item.notification_id) is False
        assert inbox.unread_count("a.user") == 1

    def test_mark_all_read(self, session_factory, clock, inbox):
        for _ in range(3):
            self._deliver(session_factory, clock, _event())
        assert inbox.mark_all_read("purchase.officer") == 3
        assert inbox.unread_count("purchase.officer") == 0
        assert inbox.mark_all_read("purchase.officer") == 0
