"""Kernel services: snapshot loading, ledger reports, safety checks, purges."""

from supply_kernel.domain.snapshot import StoreSnapshot
from supply_kernel.services.snapshot_loader import SnapshotLoader
from supply_kernel.services.auditor_service import AuditWriter, StoreAuditWriter
from supply_kernel.services.dependency_checker import DependencyChecker
from supply_kernel.services.ledger_service import LedgerReport, LedgerService
from supply_kernel.services.purge_service import (
    PurgePlan,
    PurgeResult,
    PurgeService,
    reversal_deltas,
)

__all__ = [
    "AuditWriter",
    "DependencyChecker",
    "LedgerReport",
    "LedgerService",
    "PurgePlan",
    "PurgeResult",
    "PurgeService",
    "SnapshotLoader",
    "StoreAuditWriter",
    "StoreSnapshot",
    "reversal_deltas",
]
