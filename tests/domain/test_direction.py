"""
Unit tests for the movement direction resolver.

Verifies:
- Every cause maps to exactly one direction
- Unknown causes are rejected, never defaulted
- Reversals flip the direction of the cause they reverse
- Only adjustment_out may go negative
"""

import pytest

from inventory_kernel.domain.direction import (
    Direction,
    MovementCause,
    allows_negative_stock,
    parse_cause,
    resolve,
    resolve_for_movement,
)
from inventory_kernel.exceptions import UnknownCauseError

OUT_CAUSES = {
    MovementCause.SALE,
    MovementCause.ADJUSTMENT_OUT,
    MovementCause.TRANSFER_OUT,
    MovementCause.RETURN_OUT,
    MovementCause.DAMAGE,
    MovementCause.SHRINKAGE,
}


class TestResolve:
    """Tests for resolve()."""

    @pytest.mark.parametrize("cause", list(MovementCause))
    def test_every_cause_resolves(self, cause):
        expected = Direction.OUT if cause in OUT_CAUSES else Direction.IN
        assert resolve(cause) is expected

    def test_string_values_resolve(self):
        assert resolve("purchase_receipt") is Direction.IN
        assert resolve("sale") is Direction.OUT

    @pytest.mark.parametrize("bad", ["SALE", "restock", "", None, 3])
    def test_unknown_cause_raises(self, bad):
        with pytest.raises(UnknownCauseError) as exc_info:
            resolve(bad)
        assert exc_info.value.code == "UNKNOWN_CAUSE"
        assert exc_info.value.cause == bad

    def test_resolution_is_deterministic(self):
        assert all(resolve(c) is resolve(c) for c in MovementCause)


class TestReversalDirection:
    """Tests for resolve_for_movement()."""

    @pytest.mark.parametrize("cause", list(MovementCause))
    def test_reversal_is_opposite(self, cause):
        assert resolve_for_movement(cause, is_reversal=True) is resolve(cause).opposite

    def test_non_reversal_matches_cause(self):
        assert resolve_for_movement(MovementCause.SALE, is_reversal=False) is Direction.OUT


class TestDirectionValues:

    def test_signs(self):
        assert Direction.IN.sign == 1
        assert Direction.OUT.sign == -1

    def test_opposites(self):
        assert Direction.IN.opposite is Direction.OUT
        assert Direction.OUT.opposite is Direction.IN


class TestNegativeOverride:

    def test_only_adjustment_out_allows_negative(self):
        allowed = {c for c in MovementCause if allows_negative_stock(c)}
        assert allowed == {MovementCause.ADJUSTMENT_OUT}

    def test_parse_cause_passes_members_through(self):
        assert parse_cause(MovementCause.DAMAGE) is MovementCause.DAMAGE
