"""Tests for the structured logging system (inventory_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from inventory_kernel.domain.direction import MovementCause
from inventory_kernel.exceptions import NegativeStockError
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "inventory_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("movement_created", extra={"sequence": 42, "stock_after": 7})

        record = _parse_log(stream)
        assert record["sequence"] == 42
        assert record["stock_after"] == 7

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        product_id = str(uuid4())
        LogContext.set(operation_id="S-1", product_id=product_id)
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["operation_id"] == "S-1"
        assert record["product_id"] == product_id

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(operation_id="from-context")
        get_logger("test").info("collision", extra={"operation_id": "from-extra"})

        assert _parse_log(stream)["operation_id"] == "from-context"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        product_id = uuid4()
        try:
            raise NegativeStockError(product_id, "sale", 2, 5)
        except NegativeStockError:
            get_logger("test").error("movement_rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "NEGATIVE_STOCK"
        assert record["exc_kind"] == "validation"
        assert record["exc_product_id"] == str(product_id)
        assert record["exc_shortfall"] == 3

    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "with_values",
            extra={
                "movement_id": uid,
                "unit_cost": Decimal("11.0000"),
                "cause": MovementCause.SALE,
                "roles": frozenset({"cashier"}),
            },
        )

        record = _parse_log(stream)
        assert record["movement_id"] == str(uid)
        assert record["unit_cost"] == "11.0000"
        assert record["cause"] == "sale"
        assert record["roles"] == ["cashier"]

    def test_level_filtering(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]

    def test_configure_is_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)
        get_logger("test").info("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "y"}

    def test_clear(self):
        LogContext.set(operation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(operation_id="outer")
        with LogContext.bind(operation_id="inner", purchase_order_id=uuid4()):
            assert LogContext.get_all()["operation_id"] == "inner"
            assert "purchase_order_id" in LogContext.get_all()
        assert LogContext.get_all() == {"operation_id": "outer"}

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(sale_id="S-1"):
            assert LogContext.get_all() == {}

    def test_additive_set(self):
        LogContext.set(operation_id="a")
        LogContext.set(product_id="b")
        assert LogContext.get_all() == {"operation_id": "a", "product_id": "b"}

    def test_set_rejects_unknown_field(self):
        with pytest.raises(TypeError):
            LogContext.set(sale_id="S-1")

    def test_values_are_stored_as_strings(self):
        product_id = uuid4()
        LogContext.set(product_id=product_id)
        assert LogContext.get_all() == {"product_id": str(product_id)}
