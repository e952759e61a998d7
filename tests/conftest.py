"""
Pytest fixtures for the inventory kernel test suite.

Provides:
- In-memory stores for both engine paths (compensating and atomic)
- A SQLite-backed SqlAlchemyInventoryStore for persistence tests
- Principals for each default role, a deterministic clock, and factories
  for stocked products and purchase orders

Environment Variables:
- INVENTORY_TEST_DATABASE_URL: PostgreSQL URL for tests marked ``postgres``.
  When unset those tests are skipped.
"""

import json
import logging
import os
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from inventory_config import DEFAULT_CONFIG_PATH
from inventory_config.loader import load_configuration
from inventory_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from inventory_kernel.db.immutability import register_immutability_listeners
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.direction import MovementCause
from inventory_kernel.domain.dtos import NewPurchaseOrderLine
from inventory_kernel.domain.principal import Principal, RoleBasedPermissionChecker
from inventory_kernel.domain.workflow import PurchaseOrderStatus
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_kernel.services.sequence_service import SequenceService
from inventory_kernel.store.sqlalchemy_store import SqlAlchemyInventoryStore
from inventory_services.operations import InventoryOperations
from tests.fakes import InMemoryInventoryStore, RecordingAuditSink

POSTGRES_URL_ENV_VAR = "INVENTORY_TEST_DATABASE_URL"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture inventory_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ops):
            ops.process_sale(...)
            logs = captured_logs()
            assert any(r["message"] == "sale_processed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Time, identity and permissions
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture(scope="session")
def role_grants():
    """Role grants from the packaged default configuration."""
    return load_configuration(DEFAULT_CONFIG_PATH).permissions.role_grants


@pytest.fixture
def permissions(role_grants) -> RoleBasedPermissionChecker:
    return RoleBasedPermissionChecker(role_grants)


def _principal(*roles: str) -> Principal:
    return Principal(id=uuid4(), roles=frozenset(roles), display_name="/".join(roles))


@pytest.fixture
def admin() -> Principal:
    return _principal("admin")


@pytest.fixture
def cashier() -> Principal:
    return _principal("cashier")


@pytest.fixture
def supervisor() -> Principal:
    return _principal("shift_supervisor")


@pytest.fixture
def receiver() -> Principal:
    return _principal("receiver")


@pytest.fixture
def purchaser() -> Principal:
    return _principal("purchasing")


@pytest.fixture
def purchasing_manager() -> Principal:
    return _principal("purchasing_manager")


@pytest.fixture
def inventory_manager() -> Principal:
    return _principal("inventory_manager")


@pytest.fixture
def nobody() -> Principal:
    return _principal()


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def store() -> InMemoryInventoryStore:
    """In-memory store without atomic batches (compensating engine path)."""
    return InMemoryInventoryStore(atomic_batches=False)


@pytest.fixture
def atomic_store() -> InMemoryInventoryStore:
    """In-memory store with atomic batches (native engine path)."""
    return InMemoryInventoryStore(atomic_batches=True)


@pytest.fixture(params=["compensating", "atomic"])
def any_store(request) -> InMemoryInventoryStore:
    """Runs the test once per engine path."""
    return InMemoryInventoryStore(atomic_batches=request.param == "atomic")


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def sqlite_store():
    """A SqlAlchemyInventoryStore over a fresh in-memory SQLite database."""
    init_engine_from_url("sqlite://")
    register_immutability_listeners()
    create_tables()
    with session_scope() as session:
        SequenceService(session).initialize_sequences()
    yield SqlAlchemyInventoryStore(get_session_factory())
    reset_engine()


@pytest.fixture
def pg_store():
    """A SqlAlchemyInventoryStore over PostgreSQL, rebuilt for each test."""
    url = os.environ.get(POSTGRES_URL_ENV_VAR)
    if not url:
        pytest.skip(f"{POSTGRES_URL_ENV_VAR} not set")
    init_engine_from_url(url, pool_size=10)
    register_immutability_listeners()
    drop_tables()
    create_tables()
    with session_scope() as session:
        SequenceService(session).initialize_sequences()
    yield SqlAlchemyInventoryStore(get_session_factory())
    drop_tables()
    reset_engine()


# =============================================================================
# Operations
# =============================================================================


@pytest.fixture
def make_ops(permissions, clock, audit_sink):
    """Build InventoryOperations around a given store, without backoff sleeps."""

    def _make(store, **kwargs) -> InventoryOperations:
        kwargs.setdefault("backoff_base_seconds", 0)
        kwargs.setdefault("backoff_max_seconds", 0)
        return InventoryOperations.from_store(
            store,
            permissions,
            clock=clock,
            audit_sink=audit_sink,
            **kwargs,
        )

    return _make


@pytest.fixture
def ops(make_ops, any_store) -> InventoryOperations:
    """InventoryOperations over an in-memory store, once per engine path."""
    return make_ops(any_store)


@pytest.fixture
def stocked_product(ops, admin):
    """
    Create a product and bring it to ``quantity`` through an adjustment, so
    its ledger replays to the stored quantity.
    """
    counter = iter(range(1, 10_000))

    def _create(
        quantity: int = 10,
        unit_cost: Decimal = Decimal("10.0000"),
        minimum_stock: int = 0,
        sku: str | None = None,
    ):
        product = ops.create_product(
            sku or f"SKU-{next(counter):04d}",
            "Test product",
            admin,
            unit_cost=unit_cost,
            minimum_stock=minimum_stock,
        )
        if quantity:
            result = ops.adjust_stock(
                product.id,
                MovementCause.ADJUSTMENT_IN,
                quantity,
                admin,
                reason="opening stock",
            )
            assert result.success, result.error
        return ops.get_product(product.id)

    return _create


_ORDER_PATH = (
    PurchaseOrderStatus.PENDING_APPROVAL,
    PurchaseOrderStatus.APPROVED,
    PurchaseOrderStatus.SENT_TO_SUPPLIER,
)


@pytest.fixture
def purchase_order(ops, admin):
    """
    Create a purchase order and walk it to ``status`` (default: sent).

    ``lines`` is a list of ``(product_id, ordered_quantity, unit_cost)``.
    """
    counter = iter(range(1, 10_000))

    def _create(lines, status=PurchaseOrderStatus.SENT_TO_SUPPLIER, supplier_id="default"):
        order = ops.create_purchase_order(
            f"PO-{next(counter):05d}",
            uuid4() if supplier_id == "default" else supplier_id,
            [NewPurchaseOrderLine(p, q, Decimal(c)) for p, q, c in lines],
            admin,
        )
        for target in _ORDER_PATH:
            if order.status is status:
                break
            order = ops.transition_order_status(order.id, target, admin)
        return order

    return _create
