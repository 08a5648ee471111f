"""
supply_config -- single public entrypoint for supply-ledger configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()``.  Selectors and services receive the returned
    ``SupplyConfig``; they never read configuration files themselves.

Architecture position:
    Configuration -- sits beside ``supply_kernel``.  The kernel's domain
    layer does not import from here; selectors and services take the
    config as a constructor argument.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the given name.
    - ``KeyError`` / ``ValueError`` -- schema failures in the set.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``SUPPLY_CONFIG_TRACE`` log entry carrying the config_id, version and
    checksum, which ties every purge back to the policy that allowed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from supply_config.loader import load_config_file
from supply_config.schema import (
    LedgerViewPolicy,
    PurgePolicy,
    StoreSettings,
    SupplyConfig,
)

_logger = logging.getLogger("supply_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(name: str = "default", config_dir: Path | None = None) -> SupplyConfig:
    """Load the named configuration set.

    Args:
        name: Set name; resolves to ``<config_dir>/<name>.yaml``.
        config_dir: Override path to the sets directory.
            Defaults to supply_config/sets/.

    Raises:
        FileNotFoundError: If the set does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value is malformed.
    """
    sets_dir = Path(config_dir) if config_dir else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    config = load_config_file(path)

    _logger.info(
        "SUPPLY_CONFIG_TRACE",
        extra={
            "trace_type": "SUPPLY_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "view_count": len(config.views),
        },
    )
    return config


__all__ = [
    "LedgerViewPolicy",
    "PurgePolicy",
    "StoreSettings",
    "SupplyConfig",
    "get_active_config",
]
