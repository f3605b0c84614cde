"""
tests/unit/test_quote_engine.py - Tests for dex/quote_engine.py

Critical tests for:
- Constant-product output with fee on input (buy) / output (sell)
- Fees are strictly lossy on a round trip
- InvalidQuoteError on zero reserves and bad inputs
- Fee tiers and slippage checks
"""

from decimal import Decimal

import pytest

from core.constants import ErrorCode, ListingCategory, TradeSide
from core.exceptions import InvalidQuoteError, SlippageExceededError
from core.models import FeeStructure, PoolState
from dex.quote_engine import (
    BELOW_THRESHOLD_FEES,
    COMMUNITY_FEES,
    CREATOR_FEES,
    check_slippage,
    compute_quote,
    constant_product_out,
    fee_structure_for,
    quote_buy,
    quote_sell,
    spot_price,
)


class TestConstantProduct:
    """Core AMM math."""

    def test_buy_without_fee(self):
        """100/100 pool, 10 in -> 100*10/110 out."""
        quote = compute_quote("100", "100", "0", TradeSide.BUY, "10", "0")
        assert quote.amount_out == Decimal("100") * Decimal("10") / Decimal("110")
        assert quote.fee_amount == 0

    def test_buy_fee_taken_from_input(self):
        quote = compute_quote("100", "100", "0.01", TradeSide.BUY, "10", "0")
        net_in = Decimal("10") - Decimal("0.1")
        assert quote.fee_amount == Decimal("0.1")
        assert quote.amount_out == constant_product_out(Decimal("100"), Decimal("100"), net_in)

    def test_sell_fee_taken_from_output(self):
        quote = compute_quote("100", "100", "0.01", TradeSide.SELL, "10", "0")
        gross = constant_product_out(Decimal("100"), Decimal("100"), Decimal("10"))
        assert quote.fee_amount == gross * Decimal("0.01")
        assert quote.amount_out == gross - quote.fee_amount

    def test_min_amount_out_applies_slippage(self):
        quote = compute_quote("100", "100", "0", TradeSide.BUY, "10", "0.05")
        assert quote.min_amount_out == quote.amount_out * Decimal("0.95")

    def test_price_is_sol_per_token(self):
        buy = compute_quote("100", "100", "0", TradeSide.BUY, "10", "0")
        sell = compute_quote("100", "100", "0", TradeSide.SELL, "10", "0")
        assert buy.price == Decimal("10") / buy.amount_out
        assert sell.price == sell.amount_out / Decimal("10")

    def test_slippage_is_non_negative_price_impact(self):
        small = compute_quote("1000", "1000", "0.01", TradeSide.BUY, "1", "0")
        large = compute_quote("1000", "1000", "0.01", TradeSide.BUY, "100", "0")
        assert small.slippage >= 0
        assert large.slippage > small.slippage


class TestQuoteProperties:
    """Properties that must hold for any positive reserves and fee in [0, 1)."""

    @pytest.mark.parametrize("sol_reserve,token_reserve", [
        ("1", "1"),
        ("100", "2500000"),
        ("85.5", "1000000000"),
        ("50000", "12"),
    ])
    @pytest.mark.parametrize("fee_rate", ["0.0001", "0.0035", "0.015", "0.3"])
    def test_round_trip_is_lossy(self, sol_reserve, token_reserve, fee_rate):
        """Buy then sell the bought tokens: SOL back <= SOL in."""
        amount_in = Decimal("0.5")
        buy = compute_quote(sol_reserve, token_reserve, fee_rate, TradeSide.BUY, amount_in, "0")

        # Sell into the pool as it stands after the buy
        sol_after = Decimal(sol_reserve) + amount_in - buy.fee_amount
        tokens_after = Decimal(token_reserve) - buy.amount_out
        sell = compute_quote(sol_after, tokens_after, fee_rate, TradeSide.SELL, buy.amount_out, "0")

        assert sell.amount_out <= amount_in
        assert sell.amount_out >= 0
        assert buy.amount_out >= 0

    def test_round_trip_without_fee_returns_input(self):
        """Fee-free round trip gives the input back, up to Decimal rounding."""
        buy = compute_quote("100", "2500000", "0", TradeSide.BUY, "0.5", "0")
        sell = compute_quote(
            Decimal("100.5"), Decimal("2500000") - buy.amount_out, "0", TradeSide.SELL, buy.amount_out, "0"
        )
        assert abs(sell.amount_out - Decimal("0.5")) < Decimal("1e-20")

    @pytest.mark.parametrize("side", [TradeSide.BUY, TradeSide.SELL])
    def test_zero_reserve_raises(self, side):
        with pytest.raises(InvalidQuoteError) as exc_info:
            compute_quote("0", "100", "0.01", side, "1", "0.05")
        assert exc_info.value.code == ErrorCode.QUOTE_INVALID

        with pytest.raises(InvalidQuoteError):
            compute_quote("100", "0", "0.01", side, "1", "0.05")


class TestQuoteValidation:
    """Rejected inputs."""

    def test_non_positive_amount(self):
        with pytest.raises(InvalidQuoteError):
            compute_quote("100", "100", "0", TradeSide.BUY, "0", "0")

    def test_fee_rate_out_of_range(self):
        with pytest.raises(InvalidQuoteError):
            compute_quote("100", "100", "1", TradeSide.BUY, "1", "0")

    def test_slippage_out_of_range(self):
        with pytest.raises(InvalidQuoteError):
            compute_quote("100", "100", "0", TradeSide.BUY, "1", "1")

    def test_dust_buy_quotes_positive(self):
        """A dust buy against a pool with one indivisible token still quotes positive."""
        quote = compute_quote("1000000", "1", "0", TradeSide.BUY, "0.000001", "0")
        assert quote.amount_out > 0


class TestPoolHelpers:
    """Pool-level wrappers."""

    @pytest.fixture
    def pool(self):
        return PoolState(
            token_mint="MINT",
            sol_reserve=Decimal("200"),
            token_reserve=Decimal("1000"),
            fees=FeeStructure(protocol_fee=Decimal("0.0025"), creator_fee=Decimal("0.001")),
        )

    def test_quote_buy_uses_total_fee_rate(self, pool):
        quote = quote_buy(pool, Decimal("1"), Decimal("0.05"))
        assert quote.side is TradeSide.BUY
        assert quote.fee_pct == Decimal("0.0035")

    def test_quote_sell(self, pool):
        quote = quote_sell(pool, Decimal("10"), Decimal("0.05"))
        assert quote.side is TradeSide.SELL
        assert quote.amount_out < Decimal("2")

    def test_spot_price(self, pool):
        assert spot_price(pool) == Decimal("0.2")

    def test_spot_price_empty_pool(self):
        empty = PoolState(token_mint="X", sol_reserve=Decimal("0"), token_reserve=Decimal("10"))
        with pytest.raises(InvalidQuoteError):
            spot_price(empty)


class TestFeeTiers:
    """fee_structure_for()"""

    def test_below_threshold(self):
        assert fee_structure_for("99999", ListingCategory.CREATOR) == BELOW_THRESHOLD_FEES
        assert BELOW_THRESHOLD_FEES.total_rate == Decimal("0.01")

    def test_creator_above_threshold(self):
        fees = fee_structure_for("100000", ListingCategory.CREATOR)
        assert fees == CREATOR_FEES
        assert fees.total_rate == Decimal("0.015")

    def test_community_above_threshold(self):
        fees = fee_structure_for("250000", ListingCategory.COMMUNITY)
        assert fees == COMMUNITY_FEES
        assert fees.total_rate == Decimal("0.0035")


class TestCheckSlippage:
    def test_within_tolerance(self):
        quote = compute_quote("100", "100", "0", TradeSide.BUY, "10", "0.05")
        check_slippage(quote, quote.min_amount_out)

    def test_below_minimum_raises(self):
        quote = compute_quote("100", "100", "0", TradeSide.BUY, "10", "0.05")
        with pytest.raises(SlippageExceededError) as exc_info:
            check_slippage(quote, quote.min_amount_out - Decimal("0.0001"))
        assert exc_info.value.code == ErrorCode.SLIPPAGE_EXCEEDED
        assert isinstance(exc_info.value, InvalidQuoteError)
