"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Reads the YAML configuration file and parses it into the typed
``inventory_config.schema`` dataclasses.  Runtime callers go through
``inventory_config.get_active_config()``.

Invariants enforced
-------------------
* Every parse error raises ``ValueError`` naming the offending key; there
  are no silent fallbacks for values that are present but malformed.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` is deterministic for identical parsed documents.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range or mistyped values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import (
    ConcurrencySettings,
    CostingSettings,
    InventoryConfiguration,
    LoggingSettings,
    PermissionSettings,
    ReceivingSettings,
    StoreSettings,
)

_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be a mapping")
    return value


def _int(section: str, data: dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{section}.{key}' must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"'{section}.{key}' must be >= {minimum}, got {value}")
    return value


def _float(section: str, data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{section}.{key}' must be a number, got {value!r}")
    if value < 0:
        raise ValueError(f"'{section}.{key}' cannot be negative")
    return float(value)


def _bool(section: str, data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"'{section}.{key}' must be true or false, got {value!r}")
    return value


def parse_store(data: dict[str, Any]) -> StoreSettings:
    url = data.get("database_url", StoreSettings.database_url)
    if not isinstance(url, str) or not url:
        raise ValueError("'store.database_url' must be a non-empty string")
    return StoreSettings(
        database_url=url,
        echo=_bool("store", data, "echo", False),
        pool_size=_int("store", data, "pool_size", 20, 1),
        max_overflow=_int("store", data, "max_overflow", 10, 0),
        pool_timeout_seconds=_int("store", data, "pool_timeout_seconds", 30, 1),
        create_tables=_bool("store", data, "create_tables", False),
    )


def parse_concurrency(data: dict[str, Any]) -> ConcurrencySettings:
    settings = ConcurrencySettings(
        max_attempts=_int("concurrency", data, "max_attempts", 3, 1),
        backoff_base_seconds=_float("concurrency", data, "backoff_base_seconds", 0.01),
        backoff_max_seconds=_float("concurrency", data, "backoff_max_seconds", 0.25),
        verify_after_write=_bool("concurrency", data, "verify_after_write", True),
    )
    if settings.backoff_max_seconds < settings.backoff_base_seconds:
        raise ValueError(
            "'concurrency.backoff_max_seconds' must be >= 'backoff_base_seconds'"
        )
    return settings


def _decimal(section: str, data: dict[str, Any], key: str, default: str) -> Decimal:
    raw = data.get(key, default)
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"'{section}.{key}' is not a number: {raw!r}") from None
    if not value.is_finite() or value < 0:
        raise ValueError(f"'{section}.{key}' must be >= 0")
    return value


def parse_costing(data: dict[str, Any]) -> CostingSettings:
    return CostingSettings(
        decimal_places=_int("costing", data, "decimal_places", 4, 0),
        significant_variance_percent=_decimal("costing", data, "significant_variance_percent", "10"),
        price_variance_percent=_decimal("costing", data, "price_variance_percent", "5"),
    )


def parse_receiving(data: dict[str, Any]) -> ReceivingSettings:
    return ReceivingSettings(
        require_batch_number=_bool("receiving", data, "require_batch_number", False),
        require_expiry_date=_bool("receiving", data, "require_expiry_date", False),
    )


def parse_permissions(data: dict[str, Any]) -> PermissionSettings:
    roles = data.get("roles") or {}
    if not isinstance(roles, dict):
        raise ValueError("'permissions.roles' must be a mapping of role -> actions")
    grants: dict[str, tuple[str, ...]] = {}
    for role, actions in roles.items():
        if isinstance(actions, str):
            actions = [actions]
        if not isinstance(actions, list) or not all(isinstance(a, str) for a in actions):
            raise ValueError(f"'permissions.roles.{role}' must be a list of action names")
        grants[str(role)] = tuple(actions)
    return PermissionSettings(role_grants=grants)


def parse_logging(data: dict[str, Any]) -> LoggingSettings:
    level = str(data.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"'logging.level' is not a logging level: {level!r}")
    return LoggingSettings(level=level)


def parse_configuration(data: dict[str, Any]) -> InventoryConfiguration:
    """
    Parse a full configuration document.

    Raises:
        ValueError: on any malformed section or value.
    """
    return InventoryConfiguration(
        config_id=str(data.get("config_id", "default")),
        version=_int("root", data, "version", 1, 1),
        store=parse_store(_section(data, "store")),
        concurrency=parse_concurrency(_section(data, "concurrency")),
        costing=parse_costing(_section(data, "costing")),
        receiving=parse_receiving(_section(data, "receiving")),
        permissions=parse_permissions(_section(data, "permissions")),
        logging=parse_logging(_section(data, "logging")),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> InventoryConfiguration:
    return parse_configuration(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
