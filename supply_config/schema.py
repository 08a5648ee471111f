"""
Configuration Schema (``supply_config.schema``).

Responsibility
--------------
Frozen dataclass definitions for a supply-ledger configuration set: the
per-view ledger policy, the purge policy, and the store settings.

Architecture position
---------------------
**Config layer** -- pure data definitions with no I/O.  Consumed by
``supply_config.loader`` (which builds them from YAML) and by the kernel's
selectors and services (which read them).

Invariants enforced
-------------------
* All dataclasses are ``frozen=True``; a loaded configuration never
  changes for the life of a request.
* ``LedgerViewPolicy.purgeable_tables`` holds source collection names
  exactly as stored (``dispenseLogs``, ``receiveLogs`` ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LedgerViewPolicy:
    """How one ledger view (standard or consignment) is built and purged."""

    name: str
    purgeable_tables: frozenset[str]
    audit_action: str
    # Write-off vouchers with this control-number prefix are hidden from
    # the standard view; unused by the consignment view.
    consignment_write_off_prefix: str = "C-WO-"


@dataclass(frozen=True)
class PurgePolicy:
    """Who may purge and how the purge is applied."""

    privileged_role: str = "System Administrator"
    consumption_link_prefixes: tuple[str, ...] = ("dispense", "ris", "ro", "woff")
    single_phase: bool = True
    reconciliation_collection: str = "purgeReconciliation"
    audit_collection: str = "auditLogs"


@dataclass(frozen=True)
class StoreSettings:
    """Connection settings for the relational store."""

    database_url: str | None = None
    transaction_max_retries: int = 25
    echo: bool = False


@dataclass(frozen=True)
class SupplyConfig:
    """Root configuration object."""

    config_id: str
    version: int
    timezone: str
    views: dict[str, LedgerViewPolicy]
    purge: PurgePolicy = field(default_factory=PurgePolicy)
    store: StoreSettings = field(default_factory=StoreSettings)
    checksum: str = ""

    def view_policy(self, view: str) -> LedgerViewPolicy:
        """Policy for a view name.

        Raises:
            KeyError: if the configuration has no such view.
        """
        return self.views[view]
