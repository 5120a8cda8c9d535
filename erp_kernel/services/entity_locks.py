"""
EntityLockRegistry -- per-entity mutual exclusion with bounded waits.

Responsibility:
    Serializes gate transitions on the same document inside one process.
    Transitions on different documents never contend.

Architecture position:
    Kernel > Services.  In-process only; the guarded UPDATE in
    ApprovalWorkflowEngine is what holds the at-most-one-decision guarantee
    across processes.

Failure modes:
    - BusyError when the lock is not acquired within the timeout.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from erp_kernel.domain.approval import EntityRef
from erp_kernel.exceptions import BusyError
from erp_kernel.logging_config import get_logger

logger = get_logger("services.entity_locks")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class EntityLockRegistry:
    """
    One lock per entity reference, created on first use.

    An entry lives only while some caller holds or waits on it, so decided
    documents do not pin a lock for the life of the process.
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self._timeout = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[EntityRef, _Entry] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def _checkout(self, ref: EntityRef) -> _Entry:
        with self._guard:
            entry = self._locks.get(ref)
            if entry is None:
                entry = _Entry()
                self._locks[ref] = entry
            entry.users += 1
            return entry

    def _checkin(self, ref: EntityRef, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[ref]

    @contextmanager
    def hold(self, ref: EntityRef, timeout: float | None = None) -> Iterator[None]:
        """Hold the entity's lock for the duration of the block."""
        wait = self._timeout if timeout is None else timeout
        entry = self._checkout(ref)
        try:
            if not entry.lock.acquire(timeout=wait):
                logger.warning(
                    "entity_lock_timeout",
                    extra={
                        "entity_type": ref.entity_type,
                        "entity_id": str(ref.entity_id),
                        "timeout_seconds": wait,
                    },
                )
                raise BusyError(ref.entity_type, str(ref.entity_id), wait)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(ref, entry)

    def __len__(self) -> int:
        """Entities currently held or waited on."""
        with self._guard:
            return len(self._locks)
