"""
Pure domain layer.

This module contains the record types, ledger DTOs and the ledger
reconstruction logic with NO dependencies on:
- ORM (SQLAlchemy)
- The key-path store
- I/O

All domain objects are immutable and deterministic.
"""

from supply_kernel.domain.authorization import (
    Actor,
    PurgeAuthorization,
    Role,
    authorize_purge,
)
from supply_kernel.domain.balance import apply_window, opening_balance
from supply_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from supply_kernel.domain.ledger import (
    DownstreamRef,
    EntryType,
    LedgerEntry,
    LedgerTransaction,
    LedgerView,
    LedgerWindow,
    PurgeSafety,
)
from supply_kernel.domain.normalizer import LedgerContext, normalize
from supply_kernel.domain.records import (
    LogRecord,
    LogTable,
    MasterTable,
    TransactionItem,
    TransferStatus,
    parse_record,
)
from supply_kernel.domain.snapshot import StoreSnapshot

__all__ = [
    "Actor",
    "Clock",
    "DeterministicClock",
    "DownstreamRef",
    "EntryType",
    "LedgerContext",
    "LedgerEntry",
    "LedgerTransaction",
    "LedgerView",
    "LedgerWindow",
    "LogRecord",
    "LogTable",
    "MasterTable",
    "PurgeAuthorization",
    "PurgeSafety",
    "Role",
    "StoreSnapshot",
    "SystemClock",
    "TransactionItem",
    "TransferStatus",
    "apply_window",
    "authorize_purge",
    "normalize",
    "opening_balance",
    "parse_record",
]
