"""
Supply Kernel - ledger reconstruction and purge engine

Rebuilds per-item stock ledgers from heterogeneous transaction logs:
- Normalization of every stock-affecting log type
- Running balances with opening-balance carry-forward
- Administrative purge with cascade cleanup
- Safety checks before reversing a receipt
"""

__version__ = "0.1.0"
