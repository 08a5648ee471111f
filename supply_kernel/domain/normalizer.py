"""
Normalizer -- turns every source log variant into LedgerTransactions.

Responsibility:
    Holds the per-request lookup context (facility names, supplier names,
    batch details, consumption-log linkage) and the exhaustive
    ``normalize(record, context)`` dispatch with one extraction rule per
    record variant.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The context is
    built once per ledger request by the selector and passed down.

Invariants enforced:
    - Exhaustive dispatch: every variant in ``records.RECORD_TYPES`` has a
      registered rule; a missing rule fails at import time.
    - A line is attributed to an item master only through the batch it
      names, and only when the batch's consignment flag matches the view.
    - Unresolvable facility and supplier references become "N/A"; an
      unresolvable batch drops only that line.  Neither aborts the build.
    - Physical-count variance rows are never purgeable.

Failure modes:
    - UnsupportedLogTypeError if ``normalize`` is handed an object that is
      not one of the record variants.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from supply_kernel.domain.ledger import EntryType, LedgerTransaction, LedgerView
from supply_kernel.domain.records import (
    RECORD_TYPES,
    AdjustmentLog,
    ConsignmentConsumptionLog,
    DispenseLog,
    InternalReturnLog,
    InventoryBatch,
    LogRecord,
    LogTable,
    PhysicalCount,
    PhysicalCountStatus,
    ReceiveLog,
    ReturnLog,
    RISLog,
    ROLog,
    TransactionItem,
    TransferLog,
    VoucherLog,
    WriteOffLog,
)
from supply_kernel.exceptions import ResolutionError, UnsupportedLogTypeError

NOT_AVAILABLE = "N/A"


def consumption_source_id(dispense_log_id: str, prefixes: Iterable[str]) -> str:
    """Strip the voucher-type prefix from a consumption log's back-link."""
    alternatives = "|".join(re.escape(p) for p in prefixes)
    if not alternatives:
        return dispense_log_id
    return re.sub(rf"^({alternatives})-", "", dispense_log_id)


def index_consumption_logs(
    logs: Iterable[ConsignmentConsumptionLog],
    prefixes: Iterable[str],
) -> dict[str, tuple[str, ...]]:
    """Map source log id -> ids of the consumption logs it spawned."""
    prefixes = tuple(prefixes)
    linked: dict[str, list[str]] = {}
    for log in logs:
        source_id = consumption_source_id(log.dispense_log_id, prefixes)
        linked.setdefault(source_id, []).append(log.id)
    return {source_id: tuple(ids) for source_id, ids in linked.items()}


def record_in_view(
    record: LogRecord,
    view: LedgerView,
    batches: Mapping[str, InventoryBatch],
    consignment_write_off_prefix: str = "C-WO-",
) -> bool:
    """
    Whether ``record`` belongs to the stock family ``view`` covers.

    Receipts, transfers and adjustments carry their own consignment flag.
    Supplier returns must match on both their flag and their batches.  Other
    vouchers follow the batches they name; a voucher none of whose
    batches still resolve cannot be placed and is accepted by either view.
    """
    if isinstance(record, (ReceiveLog, TransferLog, AdjustmentLog)):
        return record.is_consignment == view.is_consignment
    if isinstance(record, ReturnLog) and record.is_consignment_return != view.is_consignment:
        return False
    if (
        isinstance(record, WriteOffLog)
        and not view.is_consignment
        and record.control_number.startswith(consignment_write_off_prefix)
    ):
        return False
    resolved = [
        batches[line.inventory_item_id]
        for line in record.items
        if line.inventory_item_id in batches
    ]
    if not resolved:
        return True
    return any(batch.is_consignment == view.is_consignment for batch in resolved)


@dataclass
class LedgerContext:
    """
    Lookup maps for one ledger request.

    Contract:
        Built once per request; never re-scans collections.  Failed
        lookups are collected in ``unresolved`` for the caller to log.
    """

    view: LedgerView
    facility_names: Mapping[str, str]
    supplier_names: Mapping[str, str]
    batches: Mapping[str, InventoryBatch]
    consumption_by_source: Mapping[str, tuple[str, ...]]
    purgeable_tables: frozenset[LogTable]
    consignment_write_off_prefix: str = "C-WO-"
    unresolved: list[ResolutionError] = field(default_factory=list)

    def facility_name(self, facility_id: str | None) -> str:
        name = self.facility_names.get(facility_id) if facility_id else None
        if name is None:
            self.unresolved.append(ResolutionError("facility", facility_id))
            return NOT_AVAILABLE
        return name

    def supplier_name(self, supplier_id: str | None) -> str:
        name = self.supplier_names.get(supplier_id) if supplier_id else None
        if name is None:
            self.unresolved.append(ResolutionError("supplier", supplier_id))
            return NOT_AVAILABLE
        return name

    def batch(self, inventory_item_id: str) -> InventoryBatch | None:
        batch = self.batches.get(inventory_item_id)
        if batch is None:
            self.unresolved.append(ResolutionError("batch", inventory_item_id))
        return batch

    def in_view(self, batch: InventoryBatch) -> bool:
        return batch.is_consignment == self.view.is_consignment

    def is_purgeable(self, table: LogTable) -> bool:
        return table in self.purgeable_tables


Normalizer = Callable[[Any, LedgerContext], list[LedgerTransaction]]

_NORMALIZERS: dict[type, Normalizer] = {}

R = TypeVar("R")


def _normalizes(record_type: type[R]) -> Callable[[Normalizer], Normalizer]:
    def register(fn: Normalizer) -> Normalizer:
        _NORMALIZERS[record_type] = fn
        return fn

    return register


def normalize(record: LogRecord, context: LedgerContext) -> list[LedgerTransaction]:
    """
    Normalize one source record into zero or more ledger transactions.

    Transactions are returned for every item master the record touches;
    each carries ``item_master_id`` so the caller can index them.

    Raises:
        UnsupportedLogTypeError: if the record is not a known variant.
    """
    rule = _NORMALIZERS.get(type(record))
    if rule is None:
        raise UnsupportedLogTypeError(type(record).__name__)
    return rule(record, context)


# ---------------------------------------------------------------------------
# Receive
# ---------------------------------------------------------------------------


@_normalizes(ReceiveLog)
def _receive(log: ReceiveLog, ctx: LedgerContext) -> list[LedgerTransaction]:
    if log.is_consignment != ctx.view.is_consignment:
        return []
    facility_name = ctx.facility_name(log.facility_id)
    details = f"From: {ctx.supplier_name(log.supplier_id)}"
    return [
        LedgerTransaction(
            log_id=log.id,
            log_table=log.log_table,
            date=log.timestamp,
            type=EntryType.RECEIVE.value,
            reference=log.control_number,
            details=details,
            facility_id=log.facility_id,
            facility_name=facility_name,
            quantity_in=line.quantity,
            quantity_out=0,
            is_purgeable=ctx.is_purgeable(log.log_table),
            transaction_items=(),
            affected_inventory_item_ids=log.affected_inventory_item_ids,
            item_master_id=line.item_master_id,
            view=ctx.view,
        )
        for line in log.items
    ]


# ---------------------------------------------------------------------------
# Per-batch vouchers
# ---------------------------------------------------------------------------


def _voucher_rows(
    log: VoucherLog,
    ctx: LedgerContext,
    entry_type: EntryType,
    details: str,
    inbound: bool = False,
    consumption_linked: bool = False,
) -> list[LedgerTransaction]:
    rows: list[LedgerTransaction] = []
    facility_name: str | None = None
    consumption_ids = ctx.consumption_by_source.get(log.id, ()) if consumption_linked else ()
    for line in log.items:
        batch = ctx.batch(line.inventory_item_id)
        if batch is None or not ctx.in_view(batch):
            continue
        if facility_name is None:
            facility_name = ctx.facility_name(log.facility_id)
        rows.append(
            LedgerTransaction(
                log_id=log.id,
                log_table=log.log_table,
                date=log.timestamp,
                type=entry_type.value,
                reference=log.control_number,
                details=details,
                facility_id=log.facility_id,
                facility_name=facility_name,
                quantity_in=line.quantity if inbound else 0,
                quantity_out=0 if inbound else line.quantity,
                is_purgeable=ctx.is_purgeable(log.log_table),
                transaction_items=log.items,
                consumption_log_ids=consumption_ids,
                item_master_id=batch.item_master_id,
                view=ctx.view,
            )
        )
    return rows


@_normalizes(DispenseLog)
def _dispense(log: DispenseLog, ctx: LedgerContext) -> list[LedgerTransaction]:
    return _voucher_rows(
        log, ctx, EntryType.DISPENSE, f"To: {log.dispensed_to}", consumption_linked=True
    )


@_normalizes(RISLog)
def _ris(log: RISLog, ctx: LedgerContext) -> list[LedgerTransaction]:
    return _voucher_rows(
        log, ctx, EntryType.RIS, f"To: {log.requested_by}", consumption_linked=True
    )


@_normalizes(ROLog)
def _ro(log: ROLog, ctx: LedgerContext) -> list[LedgerTransaction]:
    return _voucher_rows(
        log, ctx, EntryType.RO, f"To: {log.ordered_to}", consumption_linked=True
    )


@_normalizes(WriteOffLog)
def _write_off(log: WriteOffLog, ctx: LedgerContext) -> list[LedgerTransaction]:
    # Consignment write-off vouchers never show on the standard card
    if not ctx.view.is_consignment and log.control_number.startswith(
        ctx.consignment_write_off_prefix
    ):
        return []
    return _voucher_rows(
        log, ctx, EntryType.WRITE_OFF, f"Reason: {log.reason}", consumption_linked=True
    )


@_normalizes(ReturnLog)
def _return(log: ReturnLog, ctx: LedgerContext) -> list[LedgerTransaction]:
    if log.is_consignment_return != ctx.view.is_consignment:
        return []
    return _voucher_rows(log, ctx, EntryType.RETURN, "To Supplier")


@_normalizes(InternalReturnLog)
def _internal_return(log: InternalReturnLog, ctx: LedgerContext) -> list[LedgerTransaction]:
    return _voucher_rows(
        log, ctx, EntryType.INTERNAL_RETURN, f"From: {log.returned_by}", inbound=True
    )


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


@_normalizes(TransferLog)
def _transfer(log: TransferLog, ctx: LedgerContext) -> list[LedgerTransaction]:
    if log.is_consignment != ctx.view.is_consignment:
        return []
    rows: list[LedgerTransaction] = []
    purgeable = ctx.is_purgeable(log.log_table)
    for line in log.items:
        batch = ctx.batch(line.inventory_item_id)
        if batch is None:
            continue
        rows.append(
            LedgerTransaction(
                log_id=log.id,
                log_table=log.log_table,
                date=log.timestamp,
                type=EntryType.TRANSFER_OUT.value,
                reference=log.control_number,
                details=f"To: {ctx.facility_name(log.to_facility_id)}",
                facility_id=log.from_facility_id,
                facility_name=ctx.facility_name(log.from_facility_id),
                quantity_in=0,
                quantity_out=line.quantity,
                is_purgeable=purgeable,
                item_master_id=batch.item_master_id,
                view=ctx.view,
            )
        )
        if not log.is_acknowledged or log.acknowledgement_timestamp is None:
            continue
        received = log.received_quantity(line)
        if received > 0:
            rows.append(
                LedgerTransaction(
                    log_id=log.id,
                    log_table=log.log_table,
                    date=log.acknowledgement_timestamp,
                    type=EntryType.TRANSFER_IN.value,
                    reference=log.control_number,
                    details=f"From: {ctx.facility_name(log.from_facility_id)}",
                    facility_id=log.to_facility_id,
                    facility_name=ctx.facility_name(log.to_facility_id),
                    quantity_in=received,
                    quantity_out=0,
                    is_purgeable=purgeable,
                    item_master_id=batch.item_master_id,
                    view=ctx.view,
                )
            )
    return rows


# ---------------------------------------------------------------------------
# Adjustments and counts
# ---------------------------------------------------------------------------


@_normalizes(AdjustmentLog)
def _adjustment(log: AdjustmentLog, ctx: LedgerContext) -> list[LedgerTransaction]:
    if log.is_consignment != ctx.view.is_consignment:
        return []
    variance = log.variance
    return [
        LedgerTransaction(
            log_id=log.id,
            log_table=log.log_table,
            date=log.timestamp,
            type=EntryType.ADJUSTMENT.value,
            reference=log.control_number,
            details=f"Reason: {log.reason}",
            facility_id=log.facility_id,
            facility_name=ctx.facility_name(log.facility_id),
            quantity_in=max(variance, 0),
            quantity_out=max(-variance, 0),
            is_purgeable=ctx.is_purgeable(log.log_table),
            # Signed variance: reversal applies the negation
            transaction_items=(TransactionItem(log.inventory_item_id, variance),),
            item_master_id=log.item_master_id,
            view=ctx.view,
        )
    ]


@_normalizes(PhysicalCount)
def _physical_count(count: PhysicalCount, ctx: LedgerContext) -> list[LedgerTransaction]:
    if count.status != PhysicalCountStatus.COMPLETED or count.reviewed_timestamp is None:
        return []
    rows: list[LedgerTransaction] = []
    for line in count.items:
        batch = ctx.batch(line.inventory_item_id)
        if batch is None or not ctx.in_view(batch):
            continue
        counted = line.system_quantity if line.counted_quantity is None else line.counted_quantity
        variance = counted - line.system_quantity
        if variance == 0:
            continue
        rows.append(
            LedgerTransaction(
                log_id=count.id,
                log_table=count.log_table,
                date=count.reviewed_timestamp,
                type=EntryType.COUNT_ADJUSTMENT.value,
                reference=count.name,
                details=f"Variance Reason: {line.reason_code or NOT_AVAILABLE}",
                facility_id=count.facility_id,
                facility_name=ctx.facility_name(count.facility_id),
                quantity_in=max(variance, 0),
                quantity_out=max(-variance, 0),
                is_purgeable=False,
                item_master_id=batch.item_master_id,
                view=ctx.view,
            )
        )
    return rows


@_normalizes(ConsignmentConsumptionLog)
def _consumption(log: ConsignmentConsumptionLog, ctx: LedgerContext) -> list[LedgerTransaction]:
    # Side-channel only: located for cascade deletes, never rendered
    return []


_unregistered = [cls.__name__ for cls in RECORD_TYPES if cls not in _NORMALIZERS]
if _unregistered:
    raise UnsupportedLogTypeError(", ".join(_unregistered))
