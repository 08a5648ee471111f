"""
PurgeService -- destructive reversal of a single ledger transaction.

Responsibility:
    Deletes the source log behind a purgeable ledger entry, puts its
    quantity effect back on the batches it touched, cascades to the
    records that only exist because of it (consignment consumption logs,
    batches created by a receipt and the vouchers that drew on them) and
    writes an audit record.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes a KeyPathStore,
    SnapshotLoader, DependencyChecker and an AuditWriter.  Accepts only a
    PurgeAuthorization capability, never a bare user.

Invariants enforced:
    - Preconditions are re-checked against a fresh snapshot: the log must
      still exist, its table must be purgeable in the view, the log must
      belong to the view's stock family, and a receipt must pass the
      dependency check.  Nothing is written otherwise.
    - The existence of the source log and of every cascaded log is also a
      precondition of the store write, so of two concurrent purges of one
      log only the first lands; the second raises LogNotFoundError and
      changes nothing.
    - Reversals are applied as increments, never read-then-write.
    - A batch deleted by the purge is never also adjusted.
    - Reversal sign by source: stock-out vouchers and transfers add back,
      internal returns subtract, adjustments apply the negated variance,
      receipts delete their batches instead.

Failure modes:
    - UnauthorizedPurgeError: capability minted for the wrong role.
    - EntryNotPurgeableError: entry or table not purgeable in the view, or
      the log belongs to the other stock family.
    - LogNotFoundError: log already gone (second purge of the same id).
    - PurgeBlockedError: receipt with an acknowledged transfer downstream,
      or with a dependent log that could not be read.
    - PartialPurgeFailure: deletes committed but a per-batch reversal
      failed (two-phase mode only).  Pending reversals are written to a
      reconciliation record for an operator.

Audit relevance:
    Every successful purge writes one audit record naming the actor, the
    view's purge action and the purged log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4
from zoneinfo import ZoneInfo

from supply_config.schema import LedgerViewPolicy, SupplyConfig
from supply_kernel.domain.authorization import PurgeAuthorization
from supply_kernel.domain.clock import Clock, SystemClock
from supply_kernel.domain.ledger import (
    DownstreamRef,
    LedgerTransaction,
    LedgerView,
)
from supply_kernel.domain.normalizer import index_consumption_logs, record_in_view
from supply_kernel.domain.records import (
    AdjustmentLog,
    LogRecord,
    LogTable,
    MasterTable,
    ReceiveLog,
)
from supply_kernel.domain.snapshot import StoreSnapshot
from supply_kernel.exceptions import (
    EntryNotPurgeableError,
    LogNotFoundError,
    MissingPathError,
    PartialPurgeFailure,
    PurgeBlockedError,
    UnauthorizedPurgeError,
)
from supply_kernel.logging_config import LogContext, get_logger
from supply_kernel.services.auditor_service import AuditWriter, StoreAuditWriter
from supply_kernel.services.dependency_checker import DependencyChecker
from supply_kernel.services.snapshot_loader import SnapshotLoader
from supply_kernel.store.base import KeyPathStore, join_path, split_path

logger = get_logger("services.purge")

# Logs whose creation took stock out of a batch.
STOCK_OUT_TABLES = frozenset(
    {
        LogTable.DISPENSE,
        LogTable.RIS,
        LogTable.RO,
        LogTable.WRITE_OFF,
        LogTable.RETURN,
        LogTable.TRANSFER,
    }
)

# Logs that may have spawned consignment consumption records.
CONSUMPTION_LINKED_TABLES = frozenset(
    {LogTable.DISPENSE, LogTable.RIS, LogTable.RO, LogTable.WRITE_OFF}
)

SINGLE_PHASE = "single_phase"
TWO_PHASE = "two_phase"


def reversal_deltas(record: LogRecord) -> dict[str, int]:
    """
    Per-batch quantity change that undoes ``record``.

    Receipts and non-stock records return nothing: a receipt's batches are
    deleted rather than adjusted.
    """
    deltas: dict[str, int] = {}
    if isinstance(record, AdjustmentLog):
        if record.variance:
            deltas[record.inventory_item_id] = -record.variance
        return deltas
    if record.log_table in STOCK_OUT_TABLES:
        sign = 1
    elif record.log_table == LogTable.INTERNAL_RETURN:
        sign = -1
    else:
        return deltas
    for item in record.items:
        deltas[item.inventory_item_id] = deltas.get(item.inventory_item_id, 0) + sign * item.quantity
    return {batch_id: delta for batch_id, delta in deltas.items() if delta}


def log_path(table: LogTable, log_id: str) -> str:
    return join_path(table.value, log_id)


def batch_path(batch_id: str) -> str:
    return join_path(MasterTable.INVENTORY_ITEMS.value, batch_id)


def quantity_path(batch_id: str) -> str:
    return join_path(MasterTable.INVENTORY_ITEMS.value, batch_id, "quantity")


@dataclass(frozen=True)
class PurgePlan:
    """Everything a purge will delete and adjust, computed before any write."""

    log_table: LogTable
    log_id: str
    delete_paths: tuple[str, ...]
    reversals: tuple[tuple[str, int], ...]
    deleted_batch_ids: tuple[str, ...] = ()
    cascaded: tuple[DownstreamRef, ...] = ()
    consumption_log_ids: tuple[str, ...] = ()
    skipped_batch_ids: tuple[str, ...] = ()
    # Logs whose reversal is applied; each must still exist when the deletes land.
    required_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class PurgeResult:
    """Outcome of a completed purge."""

    log_table: LogTable
    log_id: str
    mode: str
    deleted_paths: tuple[str, ...]
    applied_reversals: tuple[tuple[str, int], ...]
    deleted_batch_ids: tuple[str, ...] = ()
    cascaded: tuple[DownstreamRef, ...] = ()
    consumption_log_ids: tuple[str, ...] = ()
    audit_path: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class PurgeService:
    """
    Purge engine.

    Contract:
        ``purge(entry, authorization, view)`` either completes every step
        and returns a PurgeResult, or raises one of the typed purge errors.
        In single-phase mode the deletes and increments land in one atomic
        store update, so any failure leaves the store untouched.

    Non-goals:
        - No automatic retry of a failed purge.
        - No re-creation of deleted logs after a partial failure.
    """

    def __init__(
        self,
        store: KeyPathStore,
        config: SupplyConfig,
        auditor: AuditWriter | None = None,
        clock: Clock | None = None,
    ):
        self._store = store
        self._config = config
        self._clock = clock or SystemClock()
        self._auditor = auditor or StoreAuditWriter(
            store, self._clock, config.purge.audit_collection
        )

    @property
    def single_phase(self) -> bool:
        return self._config.purge.single_phase and self._store.supports_atomic_increments

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def purge(
        self,
        entry: LedgerTransaction,
        authorization: PurgeAuthorization,
        view: LedgerView | None = None,
    ) -> PurgeResult:
        """
        Purge the log behind a ledger entry.

        The purge runs under the view the entry was built in.  An explicit
        ``view`` that disagrees with the entry is rejected.
        """
        if not entry.is_purgeable:
            raise EntryNotPurgeableError(entry.log_table.value, entry.log_id)
        if view is not None and view is not entry.view:
            raise EntryNotPurgeableError(entry.log_table.value, entry.log_id)
        return self.purge_log(
            entry.log_table,
            entry.log_id,
            authorization,
            entry.view,
            summary={"type": entry.type, "reference": entry.reference, "details": entry.details},
        )

    def purge_log(
        self,
        log_table: LogTable,
        log_id: str,
        authorization: PurgeAuthorization,
        view: LedgerView = LedgerView.STANDARD,
        summary: dict[str, Any] | None = None,
    ) -> PurgeResult:
        """Purge a log addressed by table and id."""
        self._check_authorization(authorization)
        actor = authorization.actor

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=actor.uid,
            log_table=log_table.value,
            log_id=log_id,
        ):
            logger.info("purge_started", extra={"view": view.value})

            policy = self._config.view_policy(view.value)
            plan = self.plan(log_table, log_id, view)
            mode = SINGLE_PHASE if self.single_phase else TWO_PHASE

            if mode == SINGLE_PHASE:
                self._apply_single_phase(plan)
            else:
                self._apply_two_phase(plan)

            details = {
                "purgedLog": summary or {"type": log_table.value, "reference": log_id},
                "logTable": log_table.value,
                "logId": log_id,
                "deletedBatchIds": list(plan.deleted_batch_ids),
                "cascaded": [{"table": ref.table.value, "id": ref.id} for ref in plan.cascaded],
                "consumptionLogIds": list(plan.consumption_log_ids),
            }
            audit_path = self._auditor.log_event(actor, policy.audit_action, details)

            logger.info(
                "purge_completed",
                extra={
                    "mode": mode,
                    "deleted_count": len(plan.delete_paths),
                    "reversal_count": len(plan.reversals),
                    "cascaded_count": len(plan.cascaded),
                },
            )
            return PurgeResult(
                log_table=log_table,
                log_id=log_id,
                mode=mode,
                deleted_paths=plan.delete_paths,
                applied_reversals=plan.reversals,
                deleted_batch_ids=plan.deleted_batch_ids,
                cascaded=plan.cascaded,
                consumption_log_ids=plan.consumption_log_ids,
                audit_path=audit_path,
                details=details,
            )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(
        self,
        log_table: LogTable,
        log_id: str,
        view: LedgerView = LedgerView.STANDARD,
        snapshot: StoreSnapshot | None = None,
    ) -> PurgePlan:
        """
        Work out every delete and reversal for a purge without writing.

        Raises:
            EntryNotPurgeableError: table not purgeable in ``view``, or the
                log belongs to the other stock family.
            LogNotFoundError: the log does not exist.
            PurgeBlockedError: receipt blocked by an acknowledged transfer.
        """
        policy = self._config.view_policy(view.value)
        self._check_purgeable(policy, log_table, log_id)

        snapshot = snapshot or SnapshotLoader(
            self._store, ZoneInfo(self._config.timezone)
        ).load()
        record = snapshot.find_log(log_table, log_id)
        if record is None:
            raise LogNotFoundError(log_table.value, log_id)
        if not record_in_view(
            record, view, snapshot.batches, policy.consignment_write_off_prefix
        ):
            logger.warning("purge_view_mismatch", extra={"view": view.value})
            raise EntryNotPurgeableError(log_table.value, log_id)

        consumption_index = index_consumption_logs(
            snapshot.records(LogTable.CONSIGNMENT_CONSUMPTION),
            self._config.purge.consumption_link_prefixes,
        )

        delete_paths: list[str] = [log_path(log_table, log_id)]
        consumption_ids: list[str] = []
        deltas: dict[str, int] = {}
        deleted_batches: tuple[str, ...] = ()
        cascaded: tuple[DownstreamRef, ...] = ()

        def absorb(target: LogRecord) -> None:
            for batch_id, delta in reversal_deltas(target).items():
                deltas[batch_id] = deltas.get(batch_id, 0) + delta
            if target.log_table in CONSUMPTION_LINKED_TABLES:
                for consumption_id in consumption_index.get(target.id, ()):
                    if consumption_id not in consumption_ids:
                        consumption_ids.append(consumption_id)

        if isinstance(record, ReceiveLog):
            safety = DependencyChecker(snapshot).check_receive_purge_safety(record)
            if safety.blocked:
                logger.warning(
                    "purge_blocked",
                    extra={"blocking_log_ids": list(safety.blocking_log_ids)},
                )
                raise PurgeBlockedError(
                    log_id=log_id,
                    reason=safety.reason or "",
                    blocking_log_ids=safety.blocking_log_ids,
                )
            deleted_batches = record.affected_inventory_item_ids
            delete_paths.extend(batch_path(batch_id) for batch_id in deleted_batches)
            cascaded = safety.downstream
            for ref in cascaded:
                delete_paths.append(log_path(ref.table, ref.id))
                downstream = snapshot.find_log(ref.table, ref.id)
                if downstream is not None:
                    absorb(downstream)
        else:
            absorb(record)

        delete_paths.extend(
            log_path(LogTable.CONSIGNMENT_CONSUMPTION, consumption_id)
            for consumption_id in consumption_ids
        )

        reversals: list[tuple[str, int]] = []
        skipped: list[str] = []
        for batch_id, delta in deltas.items():
            if batch_id in deleted_batches or delta == 0:
                continue
            if batch_id not in snapshot.batches:
                skipped.append(batch_id)
                continue
            reversals.append((batch_id, delta))
        if skipped:
            logger.warning("reversal_target_missing", extra={"batch_ids": skipped})

        return PurgePlan(
            log_table=log_table,
            log_id=log_id,
            delete_paths=tuple(dict.fromkeys(delete_paths)),
            reversals=tuple(reversals),
            deleted_batch_ids=tuple(deleted_batches),
            cascaded=cascaded,
            consumption_log_ids=tuple(consumption_ids),
            skipped_batch_ids=tuple(skipped),
            required_paths=(log_path(log_table, log_id),)
            + tuple(log_path(ref.table, ref.id) for ref in cascaded),
        )

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def _delete(self, plan: PurgePlan, increments: dict[str, int] | None = None) -> None:
        try:
            self._store.update(
                {path: None for path in plan.delete_paths},
                increments=increments,
                require_present=plan.required_paths,
            )
        except MissingPathError as exc:
            # Another purge removed one of these logs after we planned.
            logger.warning("purge_lost_race", extra={"path": exc.path})
            table, log_id = split_path(exc.path)[:2]
            raise LogNotFoundError(table, log_id) from exc

    def _apply_single_phase(self, plan: PurgePlan) -> None:
        self._delete(
            plan,
            {quantity_path(batch_id): delta for batch_id, delta in plan.reversals},
        )

    def _apply_two_phase(self, plan: PurgePlan) -> None:
        self._delete(plan)

        applied: list[tuple[str, int]] = []
        for position, (batch_id, delta) in enumerate(plan.reversals):
            try:
                self._store.increment(quantity_path(batch_id), delta)
            except Exception as exc:
                pending = plan.reversals[position:]
                logger.error(
                    "quantity_reversal_failed",
                    extra={
                        "batch_id": batch_id,
                        "delta": delta,
                        "applied_count": len(applied),
                        "pending_count": len(pending),
                    },
                    exc_info=True,
                )
                reconciliation_path = self._record_reconciliation(plan, tuple(applied), pending, exc)
                raise PartialPurgeFailure(
                    log_table=plan.log_table.value,
                    log_id=plan.log_id,
                    failed_step=f"reverse_quantity:{batch_id}",
                    deleted_paths=plan.delete_paths,
                    applied_reversals=tuple(applied),
                    pending_reversals=pending,
                    cause=exc,
                    reconciliation_path=reconciliation_path,
                ) from exc
            applied.append((batch_id, delta))

    def _record_reconciliation(
        self,
        plan: PurgePlan,
        applied: tuple[tuple[str, int], ...],
        pending: tuple[tuple[str, int], ...],
        cause: Exception,
    ) -> str | None:
        path = join_path(self._config.purge.reconciliation_collection, str(uuid4()))
        record = {
            "logTable": plan.log_table.value,
            "logId": plan.log_id,
            "deletedPaths": list(plan.delete_paths),
            "appliedReversals": [{"inventoryItemId": b, "delta": d} for b, d in applied],
            "pendingReversals": [{"inventoryItemId": b, "delta": d} for b, d in pending],
            "error": f"{type(cause).__name__}: {cause}",
            "timestamp": self._clock.now_iso(),
        }
        try:
            self._store.update({path: record})
        except Exception:
            logger.error("reconciliation_record_failed", extra={"path": path}, exc_info=True)
            return None
        return path

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_authorization(self, authorization: PurgeAuthorization) -> None:
        required = self._config.purge.privileged_role
        if (
            not isinstance(authorization, PurgeAuthorization)
            or authorization.granted_role != required
            or authorization.actor.role != required
        ):
            actor = getattr(authorization, "actor", None)
            raise UnauthorizedPurgeError(
                actor_id=getattr(actor, "uid", ""),
                role=getattr(actor, "role", None),
                required_role=required,
            )

    @staticmethod
    def _check_purgeable(policy: LedgerViewPolicy, log_table: LogTable, log_id: str) -> None:
        if log_table.value not in policy.purgeable_tables:
            raise EntryNotPurgeableError(log_table.value, log_id)
