"""
DependencyChecker -- may a receipt be purged, and what goes with it?

Responsibility:
    For a receive log, collects the batches it created and scans the
    snapshot for logs that reference them.  An acknowledged transfer of
    any of those batches blocks the purge outright; otherwise every
    referencing voucher is reported as a downstream log that the purge
    will cascade-delete.

Architecture position:
    Kernel > Services -- read-only over a StoreSnapshot.  Called by
    PurgeService before any write and by operators ahead of confirmation.

Invariants enforced:
    - A non-Pending transfer touching a created batch always blocks; the
      checker never reports downstream logs for a blocked receipt.
    - Fails closed on unreadable records: a transfer or downstream voucher
      that could not be parsed blocks the purge when it names a created
      batch, or when its batch references cannot be read at all.
    - A receipt that created no batches is never blocked and has no
      downstream logs.
"""

from __future__ import annotations

from typing import Any

from supply_kernel.domain.ledger import DownstreamRef, PurgeSafety
from supply_kernel.domain.records import LogTable, ReceiveLog, TransferStatus
from supply_kernel.domain.snapshot import StoreSnapshot
from supply_kernel.logging_config import get_logger

logger = get_logger("services.dependency_checker")

BLOCKED_REASON = (
    "Cannot purge this receiving voucher. An item from this batch was part of a "
    "transfer that has already been acknowledged by another facility. This action "
    "would corrupt data integrity across facilities."
)

UNREADABLE_REASON = (
    "Cannot purge this receiving voucher. A transaction that may draw on a batch "
    "from this receipt could not be read, so its effect cannot be checked or reversed. "
    "Repair the record and try again."
)

# Scanned for downstream references, in reporting order.
DOWNSTREAM_TABLES: tuple[tuple[LogTable, str], ...] = (
    (LogTable.DISPENSE, "Dispense"),
    (LogTable.RIS, "RIS"),
    (LogTable.RO, "RO"),
    (LogTable.WRITE_OFF, "Write-Off"),
    (LogTable.RETURN, "Return"),
    (LogTable.TRANSFER, "Transfer"),
)


def raw_batch_ids(raw: dict[str, Any]) -> set[str] | None:
    """Batch ids named by a raw log's ``items``; ``None`` if unreadable."""
    items = raw.get("items")
    if items is None:
        return set()
    if isinstance(items, dict):
        items = list(items.values())
    if not isinstance(items, list):
        return None
    ids: set[str] = set()
    for item in items:
        if not isinstance(item, dict) or item.get("inventoryItemId") is None:
            return None
        ids.add(str(item["inventoryItemId"]))
    return ids


class DependencyChecker:
    """Receive-purge safety check over one snapshot."""

    def __init__(self, snapshot: StoreSnapshot):
        self._snapshot = snapshot

    def check_receive_purge_safety(self, receive_log: ReceiveLog) -> PurgeSafety:
        created = set(receive_log.affected_inventory_item_ids)
        if not created:
            return PurgeSafety(blocked=False)

        blocking = tuple(
            log.id
            for log in self._snapshot.records(LogTable.TRANSFER)
            if log.status != TransferStatus.PENDING
            and any(item.inventory_item_id in created for item in log.items)
        )
        if blocking:
            logger.info(
                "receive_purge_blocked",
                extra={"receive_log_id": receive_log.id, "blocking_log_ids": list(blocking)},
            )
            return PurgeSafety(
                blocked=True,
                reason=BLOCKED_REASON,
                blocking_log_ids=blocking,
            )

        unreadable = self._unreadable_dependents(created)
        if unreadable:
            logger.warning(
                "receive_purge_blocked_unreadable",
                extra={"receive_log_id": receive_log.id, "blocking_log_ids": list(unreadable)},
            )
            return PurgeSafety(
                blocked=True,
                reason=UNREADABLE_REASON,
                blocking_log_ids=unreadable,
            )

        downstream: list[DownstreamRef] = []
        for table, label in DOWNSTREAM_TABLES:
            for log in self._snapshot.records(table):
                if any(item.inventory_item_id in created for item in log.items):
                    downstream.append(
                        DownstreamRef(
                            table=table,
                            id=log.id,
                            type=label,
                            reference=log.control_number,
                        )
                    )

        logger.debug(
            "receive_purge_checked",
            extra={"receive_log_id": receive_log.id, "downstream_count": len(downstream)},
        )
        return PurgeSafety(blocked=False, downstream=tuple(downstream))

    def _unreadable_dependents(self, created: set[str]) -> tuple[str, ...]:
        found: list[str] = []
        for table, _ in DOWNSTREAM_TABLES:
            for raw in self._snapshot.unparsed_records(table):
                batch_ids = raw_batch_ids(raw)
                if batch_ids is None or batch_ids & created:
                    found.append(str(raw.get("id")))
        return tuple(found)
