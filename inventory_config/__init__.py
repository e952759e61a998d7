"""
inventory_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the parsed settings by
    constructor injection and never read files or environment variables
    themselves.

Architecture position:
    Configuration -- sits beside ``inventory_kernel`` and below
    ``inventory_services``.  The kernel MUST NEVER import from
    ``inventory_config``; the wiring factory in ``inventory_services``
    translates settings into constructor arguments.

Resolution order:
    1. The ``path`` argument.
    2. ``$INVENTORY_CONFIG``.
    3. The packaged ``defaults.yaml``.
    ``$INVENTORY_DATABASE_URL`` then overrides ``store.database_url``.

Failure modes:
    - ``FileNotFoundError`` -- the named file does not exist.
    - ``ValueError`` -- schema validation failures (the message names the key).

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``INVENTORY_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying every movement written by the process to the exact
    configuration that governed it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from inventory_config.loader import compute_checksum, load_configuration, parse_configuration
from inventory_config.schema import (
    ConcurrencySettings,
    CostingSettings,
    InventoryConfiguration,
    LoggingSettings,
    PermissionSettings,
    ReceivingSettings,
    StoreSettings,
)

_logger = logging.getLogger("inventory_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "INVENTORY_CONFIG"
DATABASE_URL_ENV_VAR = "INVENTORY_DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> InventoryConfiguration:
    """Load, validate and return the active configuration.

    Args:
        path: Explicit configuration file.  Falls back to
            ``$INVENTORY_CONFIG`` and then the packaged defaults.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If validation fails.
    """
    source = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    config = load_configuration(source)

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        config = replace(config, store=replace(config.store, database_url=database_url))

    _logger.info(
        "INVENTORY_CONFIG_TRACE",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "config_checksum": config.checksum,
            "config_source": str(source),
            "database_override": bool(database_url),
            "role_count": len(config.permissions.role_grants),
        },
    )
    return config


__all__ = [
    "ConcurrencySettings",
    "CostingSettings",
    "InventoryConfiguration",
    "LoggingSettings",
    "PermissionSettings",
    "ReceivingSettings",
    "StoreSettings",
    "compute_checksum",
    "get_active_config",
    "parse_configuration",
]
