"""
InventoryConfiguration schema.

The typed form of the YAML configuration file.  The loader parses YAML into
these frozen dataclasses; the wiring factory reads nothing else.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StoreSettings:
    """Connection settings for the persistent store."""

    database_url: str = "sqlite:///inventory.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout_seconds: int = 30
    create_tables: bool = False


@dataclass(frozen=True)
class ConcurrencySettings:
    """Compare-and-swap retry policy and post-write verification."""

    max_attempts: int = 3
    backoff_base_seconds: float = 0.01
    backoff_max_seconds: float = 0.25
    verify_after_write: bool = True


@dataclass(frozen=True)
class CostingSettings:
    """Weighted-average cost rounding, cost variance and purchase-price variance thresholds."""

    decimal_places: int = 4
    significant_variance_percent: Decimal = Decimal("10")
    price_variance_percent: Decimal = Decimal("5")


@dataclass(frozen=True)
class ReceivingSettings:
    """Per-line receiving requirements."""

    require_batch_number: bool = False
    require_expiry_date: bool = False


@dataclass(frozen=True)
class PermissionSettings:
    """Role name -> granted actions.  ``"*"`` grants every action."""

    role_grants: Mapping[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryConfiguration:
    """Complete runtime configuration.

    ``checksum`` is the SHA-256 of the parsed source document and identifies
    the exact configuration a process ran with.
    """

    config_id: str
    version: int
    store: StoreSettings = field(default_factory=StoreSettings)
    concurrency: ConcurrencySettings = field(default_factory=ConcurrencySettings)
    costing: CostingSettings = field(default_factory=CostingSettings)
    receiving: ReceivingSettings = field(default_factory=ReceivingSettings)
    permissions: PermissionSettings = field(default_factory=PermissionSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    checksum: str = ""
