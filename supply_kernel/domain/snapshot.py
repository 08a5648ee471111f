"""
StoreSnapshot -- typed, point-in-time view of the store.

Pure data.  Built by ``services.snapshot_loader`` and read by selectors
and the dependency checker.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from supply_kernel.domain.records import (
    Facility,
    InventoryBatch,
    ItemMaster,
    LogRecord,
    LogTable,
    StorageLocation,
    Supplier,
)
from supply_kernel.exceptions import MalformedRecordError


@dataclass(frozen=True)
class StoreSnapshot:
    """Every source log and master record, parsed."""

    logs: dict[LogTable, tuple[LogRecord, ...]]
    batches: dict[str, InventoryBatch]
    facilities: dict[str, Facility] = field(default_factory=dict)
    suppliers: dict[str, Supplier] = field(default_factory=dict)
    item_masters: dict[str, ItemMaster] = field(default_factory=dict)
    storage_locations: dict[str, StorageLocation] = field(default_factory=dict)
    skipped: tuple[MalformedRecordError, ...] = ()
    # Raw dicts of the log records that failed to parse, by collection.
    unparsed: dict[LogTable, tuple[dict[str, Any], ...]] = field(default_factory=dict)

    def records(self, table: LogTable) -> tuple[LogRecord, ...]:
        return self.logs.get(table, ())

    def unparsed_records(self, table: LogTable) -> tuple[dict[str, Any], ...]:
        return self.unparsed.get(table, ())

    def all_records(self) -> Iterator[LogRecord]:
        """Every source record in scan order."""
        for table in LogTable:
            yield from self.records(table)

    def find_log(self, table: LogTable, log_id: str) -> LogRecord | None:
        for record in self.records(table):
            if record.id == log_id:
                return record
        return None

    def locate_log(self, log_id: str) -> LogRecord | None:
        """Find a log by id across every source collection."""
        for record in self.all_records():
            if record.id == log_id:
                return record
        return None

    def facility_names(self) -> dict[str, str]:
        return {f.id: f.name for f in self.facilities.values()}

    def supplier_names(self) -> dict[str, str]:
        return {s.id: s.name for s in self.suppliers.values()}

    def batch_facility_id(self, batch: InventoryBatch) -> str | None:
        """Facility a batch is stored at, through its storage location."""
        location = self.storage_locations.get(batch.storage_location_id or "")
        return location.facility_id if location else None
