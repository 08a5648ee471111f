"""
LedgerSelector -- per-item ledgers built from a snapshot.

Responsibility:
    Builds the one-time ``itemMasterId -> [LedgerTransaction]`` index for a
    ledger view, answers ``transactions`` (the unsorted, unfiltered ledger
    for one item) and ``ledger`` (the windowed, balance-annotated ledger),
    and lists the item masters an operator can page through.

Architecture position:
    Kernel > Selectors -- read-only.  Combines the snapshot with the view
    policy from configuration and delegates the per-record rules to
    ``domain.normalizer`` and the balance walk to ``domain.balance``.

Invariants enforced:
    - Lookup maps and the per-view index are built once per selector and
      reused for every item.
    - Unresolved references never fail a build; each distinct one is
      logged once at WARNING.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import tzinfo
from zoneinfo import ZoneInfo

from supply_config.schema import SupplyConfig
from supply_kernel.domain.balance import apply_window
from supply_kernel.domain.ledger import (
    LedgerEntry,
    LedgerTransaction,
    LedgerView,
    LedgerWindow,
)
from supply_kernel.domain.normalizer import (
    LedgerContext,
    index_consumption_logs,
    normalize,
)
from supply_kernel.domain.records import ItemMaster, ItemType, LogTable
from supply_kernel.domain.snapshot import StoreSnapshot
from supply_kernel.logging_config import get_logger
from supply_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.ledger")

NAVIGABLE_ITEM_TYPES = frozenset({ItemType.CONSUMABLE.value, ItemType.EQUIPMENT.value})


class LedgerSelector(BaseSelector):
    """Read-only ledger queries over one snapshot."""

    def __init__(self, snapshot: StoreSnapshot, config: SupplyConfig):
        super().__init__(snapshot)
        self.config = config
        self.tz: tzinfo = ZoneInfo(config.timezone)
        self._indexes: dict[LedgerView, dict[str, tuple[LedgerTransaction, ...]]] = {}

    def context(self, view: LedgerView) -> LedgerContext:
        """Lookup context for one view, built from the snapshot."""
        policy = self.config.view_policy(view.value)
        return LedgerContext(
            view=view,
            facility_names=self.snapshot.facility_names(),
            supplier_names=self.snapshot.supplier_names(),
            batches=self.snapshot.batches,
            consumption_by_source=index_consumption_logs(
                self.snapshot.records(LogTable.CONSIGNMENT_CONSUMPTION),
                self.config.purge.consumption_link_prefixes,
            ),
            purgeable_tables=frozenset(LogTable(t) for t in policy.purgeable_tables),
            consignment_write_off_prefix=policy.consignment_write_off_prefix,
        )

    def index(self, view: LedgerView) -> dict[str, tuple[LedgerTransaction, ...]]:
        """Every item master's transactions in ``view``, in scan order."""
        cached = self._indexes.get(view)
        if cached is not None:
            return cached

        ctx = self.context(view)
        grouped: dict[str, list[LedgerTransaction]] = defaultdict(list)
        for record in self.snapshot.all_records():
            for transaction in normalize(record, ctx):
                grouped[transaction.item_master_id].append(transaction)

        seen: set[tuple[str, str | None]] = set()
        for unresolved in ctx.unresolved:
            key = (unresolved.kind, unresolved.ref_id)
            if key in seen:
                continue
            seen.add(key)
            logger.warning(
                "reference_unresolved",
                extra={
                    "view": view.value,
                    "ref_kind": unresolved.kind,
                    "ref_id": unresolved.ref_id,
                },
            )

        index = {item_id: tuple(rows) for item_id, rows in grouped.items()}
        self._indexes[view] = index
        logger.info(
            "ledger_index_built",
            extra={
                "view": view.value,
                "item_count": len(index),
                "transaction_count": sum(len(rows) for rows in index.values()),
                "unresolved_count": len(seen),
            },
        )
        return index

    def transactions(
        self,
        item_master_id: str,
        view: LedgerView = LedgerView.STANDARD,
    ) -> list[LedgerTransaction]:
        """Unsorted, unwindowed transactions touching one item master."""
        return list(self.index(view).get(item_master_id, ()))

    def ledger(
        self,
        item_master_id: str,
        view: LedgerView = LedgerView.STANDARD,
        window: LedgerWindow | None = None,
    ) -> list[LedgerEntry]:
        """Balance-annotated ledger for one item master, newest first."""
        entries = apply_window(self.transactions(item_master_id, view), window, self.tz)
        logger.info(
            "ledger_built",
            extra={
                "item_master_id": item_master_id,
                "view": view.value,
                "entry_count": len(entries),
            },
        )
        return entries

    def navigable_items(
        self,
        view: LedgerView = LedgerView.STANDARD,
        facility_id: str | None = None,
    ) -> list[ItemMaster]:
        """
        Item masters an operator can page through in ``view``, by name.

        Consumables and equipment only.  The consignment view lists only
        masters with consignment stock.  With ``facility_id`` the list is
        restricted to masters stocked at that facility in the view's
        stock family.
        """
        stocked: set[str] | None = None
        if view.is_consignment or facility_id:
            stocked = {
                batch.item_master_id
                for batch in self.snapshot.batches.values()
                if batch.is_consignment == view.is_consignment
                and (not facility_id or self.snapshot.batch_facility_id(batch) == facility_id)
            }
        items = [
            item
            for item in self.snapshot.item_masters.values()
            if item.item_type in NAVIGABLE_ITEM_TYPES
            and (stocked is None or item.id in stocked)
        ]
        return sorted(items, key=lambda item: item.name.casefold())

    def neighbours(
        self,
        item_master_id: str,
        view: LedgerView = LedgerView.STANDARD,
        facility_id: str | None = None,
    ) -> tuple[ItemMaster | None, ItemMaster | None]:
        """Previous and next navigable item around ``item_master_id``."""
        items = self.navigable_items(view, facility_id)
        ids = [item.id for item in items]
        if item_master_id not in ids:
            return None, None
        position = ids.index(item_master_id)
        previous = items[position - 1] if position > 0 else None
        following = items[position + 1] if position + 1 < len(items) else None
        return previous, following
