"""Read-only renderers for ledger output."""

from supply_kernel.reporting.stock_card import CSV_HEADERS, export_csv, render_stock_card

__all__ = ["CSV_HEADERS", "export_csv", "render_stock_card"]
