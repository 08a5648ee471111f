"""
Configuration Loader (``supply_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``supply_config.schema`` dataclasses.  Runtime callers go through
``supply_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  configuration for identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown timezone or bad value types  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from supply_config.schema import (
    LedgerViewPolicy,
    PurgePolicy,
    StoreSettings,
    SupplyConfig,
)

REQUIRED_VIEWS = ("standard", "consignment")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_view_policy(name: str, data: dict[str, Any]) -> LedgerViewPolicy:
    """Parse a LedgerViewPolicy from a dict."""
    tables = data["purgeable_tables"]
    if not isinstance(tables, list):
        raise ValueError(f"views.{name}.purgeable_tables must be a list, got {tables!r}")
    return LedgerViewPolicy(
        name=name,
        purgeable_tables=frozenset(str(t) for t in tables),
        audit_action=data["audit_action"],
        consignment_write_off_prefix=data.get("consignment_write_off_prefix", "C-WO-"),
    )


def parse_purge_policy(data: dict[str, Any]) -> PurgePolicy:
    """Parse a PurgePolicy from a dict."""
    prefixes = data.get("consumption_link_prefixes", list(PurgePolicy.consumption_link_prefixes))
    return PurgePolicy(
        privileged_role=data["privileged_role"],
        consumption_link_prefixes=tuple(str(p) for p in prefixes),
        single_phase=bool(data.get("single_phase", True)),
        reconciliation_collection=data.get("reconciliation_collection", "purgeReconciliation"),
        audit_collection=data.get("audit_collection", "auditLogs"),
    )


def parse_store_settings(data: dict[str, Any]) -> StoreSettings:
    """Parse StoreSettings from a dict."""
    retries = int(data.get("transaction_max_retries", 25))
    if retries < 1:
        raise ValueError(f"store.transaction_max_retries must be >= 1, got {retries}")
    return StoreSettings(
        database_url=data.get("database_url"),
        transaction_max_retries=retries,
        echo=bool(data.get("echo", False)),
    )


def parse_timezone(value: Any) -> str:
    """Validate an IANA zone name; ``UTC`` when absent."""
    name = str(value or "UTC")
    try:
        ZoneInfo(name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Unknown timezone {name!r}") from exc
    return name


def parse_config(data: dict[str, Any]) -> SupplyConfig:
    """
    Parse the root configuration mapping.

    Raises:
        KeyError: if ``config_id``, ``version``, ``views`` or a required
            view is missing.
        ValueError: on malformed values.
    """
    views_data = data["views"]
    views = {name: parse_view_policy(name, views_data[name]) for name in REQUIRED_VIEWS}
    for name, view_data in views_data.items():
        if name not in views:
            views[name] = parse_view_policy(name, view_data)
    return SupplyConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        timezone=parse_timezone(data.get("timezone")),
        views=views,
        purge=parse_purge_policy(data["purge"]),
        store=parse_store_settings(data.get("store") or {}),
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> SupplyConfig:
    """Load and parse one configuration file."""
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
