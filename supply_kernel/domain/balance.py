"""
Balance reconstruction -- running balances over a display window.

Responsibility:
    Sorts normalized transactions chronologically, carries an opening
    balance forward from everything before the window's start date, and
    annotates each visible transaction with its post-delta balance.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Sorting is stable: transactions with identical timestamps keep the
      order in which the ledger builder scanned them.
    - For the ascending visible list, ``entries[i].balance ==
      opening_balance + sum(delta[0..i])``.
    - Output is newest first (display order); reversing it restores the
      ascending order the balances were computed in.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import timezone, tzinfo

from supply_kernel.domain.ledger import LedgerEntry, LedgerTransaction, LedgerWindow


def sort_chronologically(
    transactions: Iterable[LedgerTransaction],
) -> list[LedgerTransaction]:
    """Stable ascending sort by transaction date."""
    return sorted(transactions, key=lambda t: t.date)


def opening_balance(
    transactions: Iterable[LedgerTransaction],
    window: LedgerWindow,
    tz: tzinfo = timezone.utc,
) -> int:
    """
    Signed sum of every facility-matching transaction strictly before the
    window's start.  Zero when the window has no start date.
    """
    start = window.start_bound(tz)
    if start is None:
        return 0
    return sum(
        t.delta
        for t in transactions
        if window.matches_facility(t.facility_id) and t.date < start
    )


def visible_transactions(
    ordered: Sequence[LedgerTransaction],
    window: LedgerWindow,
    tz: tzinfo = timezone.utc,
) -> list[LedgerTransaction]:
    """Transactions inside the facility filter and the inclusive date range."""
    start = window.start_bound(tz)
    end = window.end_bound(tz)
    return [
        t
        for t in ordered
        if window.matches_facility(t.facility_id)
        and (start is None or t.date >= start)
        and (end is None or t.date <= end)
    ]


def running_balances(
    ordered: Iterable[LedgerTransaction],
    opening: int = 0,
) -> list[LedgerEntry]:
    """Annotate ascending transactions with cumulative balances."""
    balance = opening
    entries: list[LedgerEntry] = []
    for transaction in ordered:
        balance += transaction.delta
        entries.append(transaction.with_balance(balance))
    return entries


def apply_window(
    transactions: Iterable[LedgerTransaction],
    window: LedgerWindow | None = None,
    tz: tzinfo = timezone.utc,
) -> list[LedgerEntry]:
    """
    Reconstruct the balance-annotated ledger for a window.

    Args:
        transactions: Normalized transactions in scan order (any order).
        window: Facility filter and date range; ``None`` means unfiltered.
        tz: Zone in which the window's calendar days are interpreted.

    Returns:
        LedgerEntry list, newest first.  Empty input gives an empty list.
    """
    window = window or LedgerWindow()
    ordered = sort_chronologically(transactions)
    opening = opening_balance(ordered, window, tz)
    entries = running_balances(visible_transactions(ordered, window, tz), opening)
    entries.reverse()
    return entries
