"""Tests for TokenAmount conversions, rounding direction and arithmetic."""

from __future__ import annotations

from decimal import Decimal

import pytest

from src.models.tokens import BalanceSnapshot, TokenAmount
from tests.factories import ARIO_AO, ARIO_BASE, ETH_BASE


class TestConversions:
    """Smallest-unit <-> human-unit conversions."""

    def test_from_units_exact(self):
        amt = TokenAmount.from_units(ARIO_AO, Decimal("1.5"))
        assert amt.raw == 1_500_000
        assert amt.units == Decimal("1.5")

    def test_units_back_to_raw_exact(self):
        for value in ("0.000001", "123.456789", "400000", "0"):
            amt = TokenAmount.from_units(ARIO_AO, value)
            assert TokenAmount.from_units(ARIO_AO, amt.units).raw == amt.raw
            assert amt.units == Decimal(value)

    def test_send_amount_rounds_down(self):
        amt = TokenAmount.from_units(ARIO_AO, Decimal("1.0000009"))
        assert amt.raw == 1_000_000

    def test_required_amount_rounds_up(self):
        amt = TokenAmount.from_units(ARIO_AO, Decimal("1.0000001"), round_up=True)
        assert amt.raw == 1_000_001

    def test_round_up_exact_value_unchanged(self):
        assert TokenAmount.from_units(ARIO_AO, "2.5", round_up=True).raw == 2_500_000

    def test_eighteen_decimals(self):
        amt = TokenAmount.from_units(ETH_BASE, "0.0005")
        assert amt.raw == 500_000_000_000_000

    def test_from_raw_accepts_string(self):
        assert TokenAmount.from_raw(ARIO_AO, "42").raw == 42


class TestArithmetic:
    """Add, subtract and compare within one token only."""

    def test_add_and_sub(self):
        a = TokenAmount.from_raw(ARIO_AO, 10)
        b = TokenAmount.from_raw(ARIO_AO, 3)
        assert (a + b).raw == 13
        assert (a - b).raw == 7

    def test_comparisons(self):
        a = TokenAmount.from_raw(ARIO_AO, 10)
        b = TokenAmount.from_raw(ARIO_AO, 3)
        assert a > b and b < a and a >= a and b <= a

    def test_token_mismatch_rejected(self):
        with pytest.raises(ValueError, match="Token mismatch"):
            _ = TokenAmount.from_raw(ARIO_AO, 1) + TokenAmount.from_raw(ARIO_BASE, 1)

    def test_str_shows_symbol(self):
        assert str(TokenAmount.from_units(ARIO_AO, "1234.5")) == "1,234.500000 ARIO"


class TestBalanceSnapshot:
    def test_snapshot_exposes_amount_fields(self):
        snap = BalanceSnapshot(owner="x", amount=TokenAmount.from_raw(ARIO_AO, 2_000_000))
        assert snap.token == ARIO_AO
        assert snap.raw == 2_000_000
        assert snap.units == Decimal(2)
        assert snap.observed_at.tzinfo is not None

    def test_snapshot_is_immutable(self):
        snap = BalanceSnapshot(owner="x", amount=TokenAmount.zero(ARIO_AO))
        with pytest.raises(AttributeError):
            snap.owner = "y"  # type: ignore[misc]
