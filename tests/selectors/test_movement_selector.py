"""
Tests for MovementSelector (paginated movement history).
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from inventory_kernel.domain.direction import MovementCause
from inventory_kernel.domain.dtos import SaleLine
from inventory_kernel.exceptions import ProductNotFoundError
from inventory_kernel.selectors.movement_selector import MovementSelector


@pytest.fixture
def product_with_history(ops, admin, clock, stocked_product):
    """A product with 1 opening adjustment and 5 damage entries, a minute apart."""
    product = stocked_product(10)
    for _ in range(5):
        clock.advance(60)
        ops.adjust_stock(product.id, MovementCause.DAMAGE, 1, admin, reason="breakage")
    return product


class TestHistory:

    def test_newest_first(self, ops, product_with_history):
        page = ops.get_movement_history(product_with_history.id)

        assert page.total == 6
        assert len(page.items) == 6
        sequences = [m.sequence for m in page.items]
        assert sequences == sorted(sequences, reverse=True)
        assert page.items[-1].cause is MovementCause.ADJUSTMENT_IN
        assert not page.has_more

    def test_pagination(self, ops, product_with_history):
        first = ops.get_movement_history(product_with_history.id, limit=4)
        second = ops.get_movement_history(product_with_history.id, limit=4, offset=4)

        assert first.has_more
        assert not second.has_more
        assert len(second.items) == 2
        assert not {m.id for m in first.items} & {m.id for m in second.items}

    def test_time_range(self, ops, clock, product_with_history):
        start = clock.now() - timedelta(seconds=180)
        page = ops.get_movement_history(
            product_with_history.id, since=start, until=clock.now()
        )
        # since is inclusive, until exclusive: t-180, t-120, t-60.
        assert page.total == 3
        assert all(start <= m.created_at < clock.now() for m in page.items)

    def test_limit_is_capped(self, ops, product_with_history):
        page = ops.get_movement_history(product_with_history.id, limit=10_000)
        assert page.limit == MovementSelector.MAX_PAGE_SIZE

    @pytest.mark.parametrize("kwargs", [{"limit": 0}, {"offset": -1}])
    def test_bad_paging(self, ops, product_with_history, kwargs):
        with pytest.raises(ValueError):
            ops.get_movement_history(product_with_history.id, **kwargs)

    def test_inverted_range(self, ops, clock, product_with_history):
        with pytest.raises(ValueError):
            ops.get_movement_history(
                product_with_history.id, since=clock.now(), until=clock.now() - timedelta(1)
            )

    def test_unknown_product(self, ops):
        with pytest.raises(ProductNotFoundError):
            ops.get_movement_history(uuid4())

    def test_product_without_movements(self, ops, admin):
        product = ops.create_product("SKU-EMPTY", "Empty", admin)
        page = ops.get_movement_history(product.id)
        assert page.items == ()
        assert page.total == 0


class TestForReference:

    def test_returns_every_movement_of_an_operation(self, ops, cashier, supervisor, stocked_product):
        a = stocked_product(10)
        b = stocked_product(10)
        ops.process_sale("S-1", [SaleLine(a.id, 1), SaleLine(b.id, 2)], cashier)
        ops.void_sale("S-1", supervisor)

        movements = MovementSelector(ops.store).for_reference("S-1")
        assert len(movements) == 4
        assert sum(1 for m in movements if m.is_reversal) == 2
