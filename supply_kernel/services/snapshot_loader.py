"""
SnapshotLoader -- one bulk read of the store into typed records.

Responsibility:
    Reads every source log collection and every master collection once,
    parses each raw dict into its typed record, and returns an immutable
    ``StoreSnapshot`` that ledger requests and the safety checker work from.

Architecture position:
    Kernel > Services -- imperative shell.  The only component that turns
    raw store dicts into domain records.

Invariants enforced:
    - Scan order is deterministic: collections in ``LogTable`` order,
      records in the store's stable per-collection order.  Balance ties
      between identical timestamps are broken by this order.
    - A malformed record is skipped and logged; it never aborts the load.
      Skipped log records keep their raw dict in ``StoreSnapshot.unparsed``
      so safety checks can still see what they reference.

Failure modes:
    - Store errors propagate unchanged.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timezone, tzinfo
from typing import Any

from supply_kernel.domain.records import (
    LogRecord,
    LogTable,
    MasterTable,
    parse_batch,
    parse_facility,
    parse_item_master,
    parse_record,
    parse_storage_location,
    parse_supplier,
)
from supply_kernel.domain.snapshot import StoreSnapshot
from supply_kernel.exceptions import MalformedRecordError
from supply_kernel.logging_config import get_logger
from supply_kernel.store.base import KeyPathStore

logger = get_logger("services.snapshot_loader")


class SnapshotLoader:
    """Builds a StoreSnapshot from a key-path store."""

    def __init__(self, store: KeyPathStore, default_tz: tzinfo = timezone.utc):
        self._store = store
        self._default_tz = default_tz

    def load(self) -> StoreSnapshot:
        skipped: list[MalformedRecordError] = []

        logs: dict[LogTable, tuple[LogRecord, ...]] = {}
        unparsed: dict[LogTable, tuple[dict[str, Any], ...]] = {}
        for table in LogTable:
            parsed: list[LogRecord] = []
            failed: list[dict[str, Any]] = []
            for raw in self._store.read_collection(table.value):
                try:
                    parsed.append(parse_record(table, raw, self._default_tz))
                except MalformedRecordError as exc:
                    self._skip(exc, skipped)
                    failed.append(raw)
            logs[table] = tuple(parsed)
            if failed:
                unparsed[table] = tuple(failed)

        snapshot = StoreSnapshot(
            logs=logs,
            batches=self._load_master(MasterTable.INVENTORY_ITEMS, parse_batch, skipped),
            facilities=self._load_master(MasterTable.FACILITIES, parse_facility, skipped),
            suppliers=self._load_master(MasterTable.SUPPLIERS, parse_supplier, skipped),
            item_masters=self._load_master(MasterTable.ITEM_MASTERS, parse_item_master, skipped),
            storage_locations=self._load_master(
                MasterTable.STORAGE_LOCATIONS, parse_storage_location, skipped
            ),
            skipped=tuple(skipped),
            unparsed=unparsed,
        )

        logger.info(
            "snapshot_loaded",
            extra={
                "log_count": sum(len(v) for v in logs.values()),
                "batch_count": len(snapshot.batches),
                "skipped_count": len(skipped),
            },
        )
        return snapshot

    def _load_master(
        self,
        table: MasterTable,
        parse: Callable[[dict[str, Any]], Any],
        skipped: list[MalformedRecordError],
    ) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for raw in self._store.read_collection(table.value):
            try:
                item = parse(raw)
            except MalformedRecordError as exc:
                self._skip(exc, skipped)
                continue
            except (KeyError, TypeError, ValueError) as exc:
                self._skip(
                    MalformedRecordError(table.value, raw.get("id"), f"{type(exc).__name__}: {exc}"),
                    skipped,
                )
                continue
            result[item.id] = item
        return result

    @staticmethod
    def _skip(exc: MalformedRecordError, skipped: list[MalformedRecordError]) -> None:
        skipped.append(exc)
        logger.warning(
            "record_skipped",
            extra={
                "error_code": exc.code,
                "source_table": exc.log_table,
                "record_id": exc.record_id,
                "reason": exc.reason,
            },
        )
