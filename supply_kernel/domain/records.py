"""
Records -- Typed source records read from the transaction log store.

Responsibility:
    Defines the closed family of stock-affecting log records (one frozen
    dataclass per source collection), the master data the ledger resolves
    against, and ``parse_record`` which turns a raw store dict (camelCase
    keys, ISO timestamps) into the right variant.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Every variant carries its source collection as ``log_table``; a
      record can always be located for deletion.
    - Line items stay attached to the record they were parsed from; there
      is no shared mutable item list between records.
    - Timestamps are timezone-aware.  Naive store timestamps are read in
      the configured default zone.

Failure modes:
    - MalformedRecordError when a record has no id, no parsable timestamp,
      or a non-numeric quantity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Callable, ClassVar, Union

from supply_kernel.exceptions import MalformedRecordError


class LogTable(str, Enum):
    """Source collections the ledger reads from."""

    RECEIVE = "receiveLogs"
    DISPENSE = "dispenseLogs"
    RIS = "risLogs"
    RO = "roLogs"
    TRANSFER = "transferLogs"
    WRITE_OFF = "writeOffLogs"
    RETURN = "returnLogs"
    INTERNAL_RETURN = "internalReturnLogs"
    ADJUSTMENT = "adjustmentLogs"
    PHYSICAL_COUNT = "physicalCounts"
    CONSIGNMENT_CONSUMPTION = "consignmentConsumptionLogs"


class MasterTable(str, Enum):
    """Reference collections the ledger resolves ids against."""

    INVENTORY_ITEMS = "inventoryItems"
    FACILITIES = "facilities"
    SUPPLIERS = "suppliers"
    ITEM_MASTERS = "itemMasters"
    STORAGE_LOCATIONS = "storageLocations"


class TransferStatus(str, Enum):
    PENDING = "Pending"
    RECEIVED = "Received"
    DISCREPANCY = "Discrepancy"


class PhysicalCountStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    PENDING_REVIEW = "Pending Review"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ItemType(str, Enum):
    CONSUMABLE = "Consumable"
    EQUIPMENT = "Equipment"
    ASSET = "PPE"


# ---------------------------------------------------------------------------
# Master data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryBatch:
    """A physical stock lot for one item master at one storage location."""

    id: str
    item_master_id: str
    quantity: int
    storage_location_id: str | None = None
    batch_number: str | None = None
    expiry_date: str | None = None
    purchase_cost: float = 0.0
    supplier_id: str | None = None
    is_consignment: bool = False


@dataclass(frozen=True)
class Facility:
    id: str
    name: str
    status: str = "Active"


@dataclass(frozen=True)
class StorageLocation:
    id: str
    name: str
    facility_id: str | None


@dataclass(frozen=True)
class Supplier:
    id: str
    name: str


@dataclass(frozen=True)
class ItemMaster:
    id: str
    name: str
    unit: str = ""
    item_type: str = ItemType.CONSUMABLE.value
    brand: str | None = None


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionItem:
    """One batch line of a stock-moving voucher."""

    inventory_item_id: str
    quantity: int


@dataclass(frozen=True)
class ReceiveLine:
    """One received line; the batch it produced is listed on the log."""

    item_master_id: str
    quantity: int
    unit_cost: float = 0.0
    batch_number: str | None = None
    expiry_date: str | None = None


@dataclass(frozen=True)
class CountLine:
    inventory_item_id: str
    system_quantity: int
    counted_quantity: int | None = None
    reason_code: str | None = None


# ---------------------------------------------------------------------------
# Transaction logs (closed tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceiveLog:
    log_table: ClassVar[LogTable] = LogTable.RECEIVE

    id: str
    control_number: str
    timestamp: datetime
    facility_id: str | None
    supplier_id: str | None
    items: tuple[ReceiveLine, ...]
    affected_inventory_item_ids: tuple[str, ...] = ()
    is_consignment: bool = False


@dataclass(frozen=True)
class VoucherLog:
    """Shared shape of the per-batch vouchers (dispense, RIS, RO, ...)."""

    id: str
    control_number: str
    timestamp: datetime
    facility_id: str | None
    items: tuple[TransactionItem, ...]


@dataclass(frozen=True)
class DispenseLog(VoucherLog):
    log_table: ClassVar[LogTable] = LogTable.DISPENSE

    dispensed_to: str = ""
    is_free_of_charge: bool = False


@dataclass(frozen=True)
class RISLog(VoucherLog):
    log_table: ClassVar[LogTable] = LogTable.RIS

    requested_by: str = ""
    purpose: str = ""


@dataclass(frozen=True)
class ROLog(VoucherLog):
    log_table: ClassVar[LogTable] = LogTable.RO

    ordered_to: str = ""
    purpose: str = ""


@dataclass(frozen=True)
class WriteOffLog(VoucherLog):
    log_table: ClassVar[LogTable] = LogTable.WRITE_OFF

    reason: str = ""
    sub_reason: str | None = None


@dataclass(frozen=True)
class ReturnLog(VoucherLog):
    log_table: ClassVar[LogTable] = LogTable.RETURN

    supplier_id: str | None = None
    reason: str = ""
    is_consignment_return: bool = False


@dataclass(frozen=True)
class InternalReturnLog(VoucherLog):
    log_table: ClassVar[LogTable] = LogTable.INTERNAL_RETURN

    returned_by: str = ""
    reason: str = ""
    original_dispense_id: str | None = None


@dataclass(frozen=True)
class TransferLog:
    log_table: ClassVar[LogTable] = LogTable.TRANSFER

    id: str
    control_number: str
    timestamp: datetime
    from_facility_id: str | None
    to_facility_id: str | None
    items: tuple[TransactionItem, ...]
    status: TransferStatus = TransferStatus.PENDING
    is_consignment: bool = False
    acknowledgement_timestamp: datetime | None = None
    received_items: tuple[TransactionItem, ...] = ()

    @property
    def is_acknowledged(self) -> bool:
        """Any non-Pending status means the destination has signed for it."""
        return self.status != TransferStatus.PENDING

    def received_quantity(self, item: TransactionItem) -> int:
        """Quantity the destination actually booked in for one sent line."""
        if self.status != TransferStatus.DISCREPANCY:
            return item.quantity
        for received in self.received_items:
            if received.inventory_item_id == item.inventory_item_id:
                return received.quantity
        return 0


@dataclass(frozen=True)
class AdjustmentLog:
    log_table: ClassVar[LogTable] = LogTable.ADJUSTMENT

    id: str
    control_number: str
    timestamp: datetime
    facility_id: str | None
    inventory_item_id: str
    item_master_id: str
    from_quantity: int
    to_quantity: int
    reason: str = ""
    is_consignment: bool = False

    @property
    def variance(self) -> int:
        return self.to_quantity - self.from_quantity


@dataclass(frozen=True)
class PhysicalCount:
    log_table: ClassVar[LogTable] = LogTable.PHYSICAL_COUNT

    id: str
    name: str
    facility_id: str | None
    status: PhysicalCountStatus
    items: tuple[CountLine, ...]
    reviewed_timestamp: datetime | None = None


@dataclass(frozen=True)
class ConsignmentConsumptionLog:
    log_table: ClassVar[LogTable] = LogTable.CONSIGNMENT_CONSUMPTION

    id: str
    dispense_log_id: str
    control_number: str
    facility_id: str | None
    timestamp: datetime | None
    items: tuple[TransactionItem, ...] = ()


LogRecord = Union[
    ReceiveLog,
    DispenseLog,
    RISLog,
    ROLog,
    WriteOffLog,
    ReturnLog,
    InternalReturnLog,
    TransferLog,
    AdjustmentLog,
    PhysicalCount,
    ConsignmentConsumptionLog,
]

RECORD_TYPES: tuple[type, ...] = (
    ReceiveLog,
    DispenseLog,
    RISLog,
    ROLog,
    WriteOffLog,
    ReturnLog,
    InternalReturnLog,
    TransferLog,
    AdjustmentLog,
    PhysicalCount,
    ConsignmentConsumptionLog,
)

RECORD_TYPE_BY_TABLE: dict[LogTable, type] = {
    cls.log_table: cls for cls in RECORD_TYPES
}


# ---------------------------------------------------------------------------
# Parsing raw store dicts
# ---------------------------------------------------------------------------


def parse_timestamp(value: Any, default_tz: tzinfo = timezone.utc) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are read in ``default_tz``."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value)
    else:
        raise ValueError(f"Cannot parse timestamp from {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=default_tz)
    return parsed


def _optional_timestamp(value: Any, default_tz: tzinfo) -> datetime | None:
    if value in (None, ""):
        return None
    return parse_timestamp(value, default_tz)


def _int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"Boolean is not a quantity: {value!r}")
    return int(value)


def _transaction_items(raw: Any) -> tuple[TransactionItem, ...]:
    return tuple(
        TransactionItem(
            inventory_item_id=str(item["inventoryItemId"]),
            quantity=_int(item.get("quantity")),
        )
        for item in (raw or [])
    )


def _voucher_fields(raw: dict[str, Any], tz: tzinfo) -> dict[str, Any]:
    return {
        "id": str(raw["id"]),
        "control_number": raw.get("controlNumber", ""),
        "timestamp": parse_timestamp(raw.get("timestamp"), tz),
        "facility_id": raw.get("facilityId"),
        "items": _transaction_items(raw.get("items")),
    }


def _parse_receive(raw: dict[str, Any], tz: tzinfo) -> ReceiveLog:
    return ReceiveLog(
        id=str(raw["id"]),
        control_number=raw.get("controlNumber", ""),
        timestamp=parse_timestamp(raw.get("timestamp"), tz),
        facility_id=raw.get("facilityId"),
        supplier_id=raw.get("supplierId"),
        items=tuple(
            ReceiveLine(
                item_master_id=str(line["itemMasterId"]),
                quantity=_int(line.get("quantity")),
                unit_cost=float(line.get("unitCost") or 0),
                batch_number=line.get("batchNumber"),
                expiry_date=line.get("expiryDate"),
            )
            for line in (raw.get("items") or [])
        ),
        affected_inventory_item_ids=tuple(
            str(i) for i in (raw.get("affectedInventoryItemIds") or [])
        ),
        is_consignment=bool(raw.get("isConsignment")),
    )


def _parse_dispense(raw: dict[str, Any], tz: tzinfo) -> DispenseLog:
    return DispenseLog(
        **_voucher_fields(raw, tz),
        dispensed_to=raw.get("dispensedTo", ""),
        is_free_of_charge=bool(raw.get("isFreeOfCharge")),
    )


def _parse_ris(raw: dict[str, Any], tz: tzinfo) -> RISLog:
    return RISLog(
        **_voucher_fields(raw, tz),
        requested_by=raw.get("requestedBy", ""),
        purpose=raw.get("purpose", ""),
    )


def _parse_ro(raw: dict[str, Any], tz: tzinfo) -> ROLog:
    return ROLog(
        **_voucher_fields(raw, tz),
        ordered_to=raw.get("orderedTo", ""),
        purpose=raw.get("purpose", ""),
    )


def _parse_write_off(raw: dict[str, Any], tz: tzinfo) -> WriteOffLog:
    return WriteOffLog(
        **_voucher_fields(raw, tz),
        reason=raw.get("reason", ""),
        sub_reason=raw.get("subReason"),
    )


def _parse_return(raw: dict[str, Any], tz: tzinfo) -> ReturnLog:
    return ReturnLog(
        **_voucher_fields(raw, tz),
        supplier_id=raw.get("supplierId"),
        reason=raw.get("reason", ""),
        is_consignment_return=bool(raw.get("isConsignmentReturn")),
    )


def _parse_internal_return(raw: dict[str, Any], tz: tzinfo) -> InternalReturnLog:
    return InternalReturnLog(
        **_voucher_fields(raw, tz),
        returned_by=raw.get("returnedBy", ""),
        reason=raw.get("reason", ""),
        original_dispense_id=raw.get("originalDispenseId"),
    )


def _parse_transfer(raw: dict[str, Any], tz: tzinfo) -> TransferLog:
    return TransferLog(
        id=str(raw["id"]),
        control_number=raw.get("controlNumber", ""),
        timestamp=parse_timestamp(raw.get("timestamp"), tz),
        from_facility_id=raw.get("fromFacilityId"),
        to_facility_id=raw.get("toFacilityId"),
        items=_transaction_items(raw.get("items")),
        status=TransferStatus(raw.get("status") or TransferStatus.PENDING.value),
        is_consignment=bool(raw.get("isConsignment")),
        acknowledgement_timestamp=_optional_timestamp(
            raw.get("acknowledgementTimestamp"), tz
        ),
        received_items=_transaction_items(raw.get("receivedItems")),
    )


def _parse_adjustment(raw: dict[str, Any], tz: tzinfo) -> AdjustmentLog:
    return AdjustmentLog(
        id=str(raw["id"]),
        control_number=raw.get("controlNumber", ""),
        timestamp=parse_timestamp(raw.get("timestamp"), tz),
        facility_id=raw.get("facilityId"),
        inventory_item_id=str(raw["inventoryItemId"]),
        item_master_id=str(raw["itemMasterId"]),
        from_quantity=_int(raw.get("fromQuantity")),
        to_quantity=_int(raw.get("toQuantity")),
        reason=raw.get("reason", ""),
        is_consignment=bool(raw.get("isConsignment")),
    )


def _parse_physical_count(raw: dict[str, Any], tz: tzinfo) -> PhysicalCount:
    return PhysicalCount(
        id=str(raw["id"]),
        name=raw.get("name", ""),
        facility_id=raw.get("facilityId"),
        status=PhysicalCountStatus(raw.get("status") or PhysicalCountStatus.PENDING.value),
        items=tuple(
            CountLine(
                inventory_item_id=str(line["inventoryItemId"]),
                system_quantity=_int(line.get("systemQuantity")),
                counted_quantity=(
                    None
                    if line.get("countedQuantity") is None
                    else _int(line["countedQuantity"])
                ),
                reason_code=line.get("reasonCode"),
            )
            for line in (raw.get("items") or [])
        ),
        reviewed_timestamp=_optional_timestamp(raw.get("reviewedTimestamp"), tz),
    )


def _parse_consumption(raw: dict[str, Any], tz: tzinfo) -> ConsignmentConsumptionLog:
    return ConsignmentConsumptionLog(
        id=str(raw["id"]),
        dispense_log_id=str(raw.get("dispenseLogId", "")),
        control_number=raw.get("controlNumber", ""),
        facility_id=raw.get("facilityId"),
        timestamp=_optional_timestamp(raw.get("timestamp"), tz),
        items=_transaction_items(raw.get("items")),
    )


_PARSERS: dict[LogTable, Callable[[dict[str, Any], tzinfo], Any]] = {
    LogTable.RECEIVE: _parse_receive,
    LogTable.DISPENSE: _parse_dispense,
    LogTable.RIS: _parse_ris,
    LogTable.RO: _parse_ro,
    LogTable.WRITE_OFF: _parse_write_off,
    LogTable.RETURN: _parse_return,
    LogTable.INTERNAL_RETURN: _parse_internal_return,
    LogTable.TRANSFER: _parse_transfer,
    LogTable.ADJUSTMENT: _parse_adjustment,
    LogTable.PHYSICAL_COUNT: _parse_physical_count,
    LogTable.CONSIGNMENT_CONSUMPTION: _parse_consumption,
}


def parse_record(
    table: LogTable,
    raw: dict[str, Any],
    default_tz: tzinfo = timezone.utc,
) -> LogRecord:
    """
    Parse one raw store record into its typed variant.

    Raises:
        MalformedRecordError: if required fields are missing or invalid.
    """
    try:
        return _PARSERS[table](raw, default_tz)
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedRecordError(
            log_table=table.value,
            record_id=raw.get("id") if isinstance(raw, dict) else None,
            reason=f"{type(exc).__name__}: {exc}",
        ) from exc


def parse_batch(raw: dict[str, Any]) -> InventoryBatch:
    """Parse an inventory batch record."""
    try:
        return InventoryBatch(
            id=str(raw["id"]),
            item_master_id=str(raw["itemMasterId"]),
            quantity=_int(raw.get("quantity")),
            storage_location_id=raw.get("storageLocationId"),
            batch_number=raw.get("batchNumber"),
            expiry_date=raw.get("expiryDate"),
            purchase_cost=float(raw.get("purchaseCost") or 0),
            supplier_id=raw.get("supplierId"),
            is_consignment=bool(raw.get("isConsignment")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedRecordError(
            log_table=MasterTable.INVENTORY_ITEMS.value,
            record_id=raw.get("id"),
            reason=f"{type(exc).__name__}: {exc}",
        ) from exc


def parse_facility(raw: dict[str, Any]) -> Facility:
    return Facility(
        id=str(raw["id"]),
        name=raw.get("name") or "N/A",
        status=raw.get("status", "Active"),
    )


def parse_storage_location(raw: dict[str, Any]) -> StorageLocation:
    return StorageLocation(
        id=str(raw["id"]),
        name=raw.get("name", ""),
        facility_id=raw.get("facilityId"),
    )


def parse_supplier(raw: dict[str, Any]) -> Supplier:
    return Supplier(id=str(raw["id"]), name=raw.get("name") or "N/A")


def parse_item_master(raw: dict[str, Any]) -> ItemMaster:
    return ItemMaster(
        id=str(raw["id"]),
        name=raw.get("name", ""),
        unit=raw.get("unit", ""),
        item_type=raw.get("itemType", ItemType.CONSUMABLE.value),
        brand=raw.get("brand"),
    )
