"""
Ledger DTOs -- normalized transactions, balance-annotated entries, windows.

Responsibility:
    Defines the common shape every source log is normalized into
    (``LedgerTransaction``), the balance-annotated row the reconstructor
    produces (``LedgerEntry``), the display window, and the result types of
    the receive-purge safety check.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - quantity_in and quantity_out are non-negative and never both positive.
    - transaction_items always belong to the log named by log_id.
    - A transaction carries the view it was built in.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime, time, tzinfo
from enum import Enum

from supply_kernel.domain.records import LogTable, TransactionItem


class LedgerView(str, Enum):
    """Which stock family a ledger covers."""

    STANDARD = "standard"
    CONSIGNMENT = "consignment"

    @property
    def is_consignment(self) -> bool:
        return self is LedgerView.CONSIGNMENT


class EntryType(str, Enum):
    """Display labels for ledger rows."""

    RECEIVE = "Receive"
    DISPENSE = "Dispense"
    RIS = "RIS"
    RO = "RO"
    WRITE_OFF = "Write-Off"
    RETURN = "Return"
    INTERNAL_RETURN = "Internal Return"
    TRANSFER_OUT = "Transfer Out"
    TRANSFER_IN = "Transfer In"
    ADJUSTMENT = "Adjustment"
    COUNT_ADJUSTMENT = "Count Adjustment"


@dataclass(frozen=True)
class LedgerTransaction:
    """A single stock movement for one item master, before balancing."""

    log_id: str
    log_table: LogTable
    date: datetime
    type: str
    reference: str
    details: str
    facility_id: str | None
    facility_name: str
    quantity_in: int
    quantity_out: int
    is_purgeable: bool
    transaction_items: tuple[TransactionItem, ...] = ()
    affected_inventory_item_ids: tuple[str, ...] = ()
    consumption_log_ids: tuple[str, ...] = ()
    item_master_id: str = ""
    # View the row was built for; purges are planned under the same view.
    view: LedgerView = LedgerView.STANDARD

    def __post_init__(self) -> None:
        if self.quantity_in < 0 or self.quantity_out < 0:
            raise ValueError(
                f"Ledger quantities must be non-negative: "
                f"in={self.quantity_in}, out={self.quantity_out}"
            )
        if self.quantity_in > 0 and self.quantity_out > 0:
            raise ValueError(
                f"Ledger transaction {self.log_table.value}/{self.log_id} "
                f"has both quantity_in and quantity_out"
            )

    @property
    def delta(self) -> int:
        """Signed effect on the balance."""
        return self.quantity_in - self.quantity_out

    def with_balance(self, balance: int) -> LedgerEntry:
        values = {f.name: getattr(self, f.name) for f in fields(LedgerTransaction)}
        return LedgerEntry(**values, balance=balance)


@dataclass(frozen=True)
class LedgerEntry(LedgerTransaction):
    """A ledger transaction with its running balance inside the window."""

    balance: int = field(kw_only=True)


@dataclass(frozen=True)
class LedgerWindow:
    """Optional facility filter and inclusive calendar-day range."""

    facility_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None

    def start_bound(self, tz: tzinfo) -> datetime | None:
        """Start of ``start_date`` (00:00:00) in ``tz``."""
        if self.start_date is None:
            return None
        return datetime.combine(self.start_date, time.min, tzinfo=tz)

    def end_bound(self, tz: tzinfo) -> datetime | None:
        """End of ``end_date`` (23:59:59.999999) in ``tz``."""
        if self.end_date is None:
            return None
        return datetime.combine(self.end_date, time.max, tzinfo=tz)

    def matches_facility(self, facility_id: str | None) -> bool:
        return not self.facility_id or facility_id == self.facility_id


@dataclass(frozen=True)
class DownstreamRef:
    """A log that references a batch created by the receipt being purged."""

    table: LogTable
    id: str
    type: str
    reference: str


@dataclass(frozen=True)
class PurgeSafety:
    """Outcome of the receive-purge dependency check."""

    blocked: bool
    reason: str | None = None
    downstream: tuple[DownstreamRef, ...] = ()
    blocking_log_ids: tuple[str, ...] = ()
