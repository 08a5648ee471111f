"""Read-only selectors over a store snapshot."""

from supply_kernel.selectors.base import BaseSelector
from supply_kernel.selectors.ledger_selector import LedgerSelector

__all__ = ["BaseSelector", "LedgerSelector"]
