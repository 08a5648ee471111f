"""
Stock card output -- CSV export and printable text card.

Read-only consumers of the LedgerEntry list produced by the balance
reconstructor.  Entries are rendered in the order given (newest first).
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from datetime import date, datetime

from supply_kernel.domain.ledger import LedgerEntry, LedgerView
from supply_kernel.services.ledger_service import LedgerReport

CSV_HEADERS = ("Date", "Type", "Facility", "Reference", "Details", "In", "Out", "Balance")

W = 110

TITLES = {
    LedgerView.STANDARD: "Supply Ledger / Stock Card",
    LedgerView.CONSIGNMENT: "Consignment Supply Ledger / Stock Card",
}


def _fmt_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _fmt_day(value: date | None, placeholder: str) -> str:
    return value.isoformat() if value else placeholder


def _fmt_in(entry: LedgerEntry) -> str:
    return f"+{entry.quantity_in}" if entry.quantity_in > 0 else ""


def _fmt_out(entry: LedgerEntry) -> str:
    return f"-{entry.quantity_out}" if entry.quantity_out > 0 else ""


def export_csv(entries: Iterable[LedgerEntry]) -> str:
    """CSV text with one row per entry, quantities unsigned."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for entry in entries:
        writer.writerow(
            (
                entry.date.isoformat(),
                entry.type,
                entry.facility_name,
                entry.reference,
                entry.details,
                entry.quantity_in or "",
                entry.quantity_out or "",
                entry.balance,
            )
        )
    return buffer.getvalue()


def render_stock_card(
    report: LedgerReport,
    facility_name: str | None = None,
    printed_at: datetime | None = None,
) -> str:
    """Plain-text stock card for one report."""
    window = report.window
    item = report.item_master
    lines: list[str] = []

    lines.append("=" * W)
    lines.append(TITLES[report.view].center(W))
    lines.append("=" * W)
    lines.append(f"  Item:       {item.name}")
    lines.append(f"  Unit:       {item.unit or 'N/A'}")
    if window.facility_id:
        lines.append(f"  Facility:   {facility_name or window.facility_id}")
    else:
        lines.append("  Facility:   All Facilities")
    lines.append(
        f"  Date Range: {_fmt_day(window.start_date, 'Start')} to {_fmt_day(window.end_date, 'End')}"
    )
    if printed_at is not None:
        lines.append(f"  Printed:    {_fmt_timestamp(printed_at)}")
    lines.append("")

    header = (
        f"  {'Date':<19} {'Type':<16} {'Facility':<18} {'Reference':<16} "
        f"{'Details':<20} {'In':>6} {'Out':>6} {'Balance':>8}"
    )
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))

    if not report.entries:
        lines.append("  No transactions in this period.")
    for entry in report.entries:
        lines.append(
            f"  {_fmt_timestamp(entry.date):<19} {entry.type[:16]:<16} "
            f"{entry.facility_name[:18]:<18} {entry.reference[:16]:<16} "
            f"{entry.details[:20]:<20} {_fmt_in(entry):>6} {_fmt_out(entry):>6} "
            f"{entry.balance:>8}"
        )

    lines.append("")
    lines.append(f"  Opening balance: {report.opening_balance}")
    lines.append(f"  Closing balance: {report.closing_balance}")
    lines.append("")
    return "\n".join(lines)
