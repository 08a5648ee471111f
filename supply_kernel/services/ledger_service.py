"""
LedgerService -- facade producing a stock-card report for one item.

Loads a fresh snapshot, builds the requested view's ledger through
LedgerSelector and packages it with the opening and closing balances the
printed stock card needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from zoneinfo import ZoneInfo

from supply_config.schema import SupplyConfig
from supply_kernel.domain.balance import opening_balance, sort_chronologically
from supply_kernel.domain.ledger import LedgerEntry, LedgerView, LedgerWindow
from supply_kernel.domain.records import ItemMaster
from supply_kernel.domain.snapshot import StoreSnapshot
from supply_kernel.exceptions import ResolutionError
from supply_kernel.logging_config import LogContext, get_logger
from supply_kernel.selectors.ledger_selector import LedgerSelector
from supply_kernel.services.snapshot_loader import SnapshotLoader
from supply_kernel.store.base import KeyPathStore

logger = get_logger("services.ledger")


@dataclass(frozen=True)
class LedgerReport:
    """One item's ledger in one view and window."""

    item_master: ItemMaster
    view: LedgerView
    window: LedgerWindow
    entries: tuple[LedgerEntry, ...]
    opening_balance: int
    closing_balance: int

    @property
    def is_empty(self) -> bool:
        return not self.entries


class LedgerService:
    """Read facade over SnapshotLoader and LedgerSelector."""

    def __init__(self, store: KeyPathStore, config: SupplyConfig):
        self._store = store
        self._config = config

    def snapshot(self) -> StoreSnapshot:
        return SnapshotLoader(self._store, ZoneInfo(self._config.timezone)).load()

    def selector(self, snapshot: StoreSnapshot | None = None) -> LedgerSelector:
        return LedgerSelector(snapshot or self.snapshot(), self._config)

    def report(
        self,
        item_master_id: str,
        view: LedgerView = LedgerView.STANDARD,
        window: LedgerWindow | None = None,
        snapshot: StoreSnapshot | None = None,
    ) -> LedgerReport:
        """
        Build the ledger report for one item master.

        Raises:
            ResolutionError: if the item master does not exist.
        """
        window = window or LedgerWindow()
        with LogContext.bind(item_master_id=item_master_id):
            selector = self.selector(snapshot)
            item_master = selector.snapshot.item_masters.get(item_master_id)
            if item_master is None:
                raise ResolutionError("item_master", item_master_id)

            transactions = selector.transactions(item_master_id, view)
            entries = selector.ledger(item_master_id, view, window)
            opening = opening_balance(sort_chronologically(transactions), window, selector.tz)
            closing = entries[0].balance if entries else opening

            logger.info(
                "ledger_report_built",
                extra={
                    "view": view.value,
                    "entry_count": len(entries),
                    "opening_balance": opening,
                    "closing_balance": closing,
                },
            )
            return LedgerReport(
                item_master=item_master,
                view=view,
                window=window,
                entries=tuple(entries),
                opening_balance=opening,
                closing_balance=closing,
            )
