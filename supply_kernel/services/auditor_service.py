"""
Audit writers -- the record of who purged what.

Responsibility:
    ``AuditWriter`` is the audit collaborator the purge engine talks to.
    ``StoreAuditWriter`` appends one record per event under
    ``/<collection>/<uuid>`` in the key-path store, shaped
    ``{uid, user, action, details, timestamp}``.

Architecture position:
    Kernel > Services -- imperative shell, called by PurgeService after the
    store writes of a purge have landed.

Invariants enforced:
    - Append-only: every event gets a fresh key; nothing is overwritten.
    - Timestamps come from the injected Clock.

Failure modes:
    - Store errors propagate; the caller decides whether the purge is
      reported as complete.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any
from uuid import uuid4

from supply_kernel.domain.authorization import Actor
from supply_kernel.domain.clock import Clock, SystemClock
from supply_kernel.logging_config import get_logger
from supply_kernel.store.base import KeyPathStore, join_path

logger = get_logger("services.auditor")


class AuditWriter(ABC):
    """Audit collaborator contract."""

    @abstractmethod
    def log_event(self, actor: Actor, action: str, details: dict[str, Any]) -> str | None:
        """Record an event; returns the record's path when one was written."""


class StoreAuditWriter(AuditWriter):
    """Writes audit records into the key-path store."""

    def __init__(
        self,
        store: KeyPathStore,
        clock: Clock | None = None,
        collection: str = "auditLogs",
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._collection = collection

    def log_event(self, actor: Actor, action: str, details: dict[str, Any]) -> str | None:
        if not actor.uid or not actor.email:
            logger.warning("audit_event_skipped", extra={"action": action})
            return None

        path = join_path(self._collection, str(uuid4()))
        self._store.update(
            {
                path: {
                    "uid": actor.uid,
                    "user": actor.email,
                    "action": action,
                    "details": details,
                    "timestamp": self._clock.now_iso(),
                }
            }
        )
        logger.info("audit_event_recorded", extra={"action": action, "audit_path": path})
        return path
