"""
Configuration-driven construction of InventoryOperations.

``build_operations(config)`` is what a process calls once at startup: it
configures logging, initializes the database engine, installs the ORM
immutability listeners, optionally creates the schema, and hands a
SqlAlchemyInventoryStore to ``InventoryOperations.from_store``.
"""

from __future__ import annotations

from inventory_config import InventoryConfiguration
from inventory_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from inventory_kernel.db.immutability import register_immutability_listeners
from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.costing import WeightedAverageCostCalculator
from inventory_kernel.domain.principal import RoleBasedPermissionChecker
from inventory_kernel.logging_config import configure_logging, get_logger
from inventory_kernel.services.audit_sink import AuditSink
from inventory_kernel.services.sequence_service import SequenceService
from inventory_kernel.services.stock_validation import ReceiptRules
from inventory_kernel.store.sqlalchemy_store import SqlAlchemyInventoryStore
from inventory_services.operations import InventoryOperations

logger = get_logger("services.wiring")


def build_operations(
    config: InventoryConfiguration,
    clock: Clock | None = None,
    audit_sink: AuditSink | None = None,
) -> InventoryOperations:
    """Create InventoryOperations backed by the configured database.

    Args:
        config: The active configuration (see ``get_active_config``).
        clock: Optional clock for deterministic runs.
        audit_sink: Optional sink; defaults to logging every record.
    """
    configure_logging(level=config.logging.level)

    store_settings = config.store
    init_engine_from_url(
        store_settings.database_url,
        echo=store_settings.echo,
        pool_size=store_settings.pool_size,
        max_overflow=store_settings.max_overflow,
        pool_timeout=store_settings.pool_timeout_seconds,
    )
    register_immutability_listeners()
    if store_settings.create_tables:
        create_tables()
        with session_scope() as session:
            SequenceService(session).initialize_sequences()

    concurrency = config.concurrency
    operations = InventoryOperations.from_store(
        SqlAlchemyInventoryStore(get_session_factory()),
        RoleBasedPermissionChecker(config.permissions.role_grants),
        clock=clock,
        audit_sink=audit_sink,
        cost_calculator=WeightedAverageCostCalculator(
            places=config.costing.decimal_places,
            significant_variance_percent=config.costing.significant_variance_percent,
            price_variance_percent=config.costing.price_variance_percent,
        ),
        receipt_rules=ReceiptRules(
            require_batch_number=config.receiving.require_batch_number,
            require_expiry_date=config.receiving.require_expiry_date,
        ),
        max_attempts=concurrency.max_attempts,
        backoff_base_seconds=concurrency.backoff_base_seconds,
        backoff_max_seconds=concurrency.backoff_max_seconds,
        verify_after_write=concurrency.verify_after_write,
    )
    logger.info(
        "inventory_operations_ready",
        extra={"config_id": config.config_id, "config_version": config.version},
    )
    return operations
