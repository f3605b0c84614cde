"""
dex/quote_engine.py - Constant-product quoting with fee decomposition.

Pool invariant: sol_reserve * token_reserve = k.

Buy (SOL -> token):
    fee      = amount_in * fee_rate            (taken from the input)
    net_in   = amount_in - fee
    out      = token_reserve * net_in / (sol_reserve + net_in)

Sell (token -> SOL):
    gross    = sol_reserve * amount_in / (token_reserve + amount_in)
    fee      = gross * fee_rate                (taken from the output)
    out      = gross - fee

min_amount_out = out * (1 - max_slippage). Prices are SOL per token.
Every function here is pure; nothing touches the network.
"""

from decimal import Decimal
from typing import Union

from core.constants import FEE_TIER_MARKET_CAP, ListingCategory, TradeSide
from core.exceptions import InvalidQuoteError, SlippageExceededError
from core.math import ONE, ZERO, non_negative, safe_decimal
from core.models import FeeStructure, PoolState, Quote

Amount = Union[str, int, Decimal]


# =============================================================================
# FEE TIERS
# =============================================================================

BELOW_THRESHOLD_FEES = FeeStructure(protocol_fee=Decimal("0.01"))
CREATOR_FEES = FeeStructure(protocol_fee=Decimal("0.005"), creator_fee=Decimal("0.01"))
COMMUNITY_FEES = FeeStructure(protocol_fee=Decimal("0.0025"), creator_fee=Decimal("0.001"))


def fee_structure_for(market_cap: Amount, category: ListingCategory) -> FeeStructure:
    """
    Fee tier for a pool.

    Below the market cap threshold only the protocol fee applies. Above it,
    creator pools pay a higher creator share than community pools.
    """
    if safe_decimal(market_cap) < FEE_TIER_MARKET_CAP:
        return BELOW_THRESHOLD_FEES
    if category is ListingCategory.CREATOR:
        return CREATOR_FEES
    return COMMUNITY_FEES


# =============================================================================
# CORE MATH
# =============================================================================

def _validate(
    sol_reserve: Decimal,
    token_reserve: Decimal,
    fee_rate: Decimal,
    amount_in: Decimal,
    max_slippage: Decimal,
) -> None:
    details = {
        "sol_reserve": str(sol_reserve),
        "token_reserve": str(token_reserve),
        "fee_rate": str(fee_rate),
        "amount_in": str(amount_in),
        "max_slippage": str(max_slippage),
    }
    if sol_reserve <= 0 or token_reserve <= 0:
        raise InvalidQuoteError("Pool reserves must be positive", details=details)
    if amount_in <= 0:
        raise InvalidQuoteError("Trade amount must be positive", details=details)
    if not (ZERO <= fee_rate < ONE):
        raise InvalidQuoteError("Fee rate must be in [0, 1)", details=details)
    if not (ZERO <= max_slippage < ONE):
        raise InvalidQuoteError("Max slippage must be in [0, 1)", details=details)


def constant_product_out(reserve_in: Decimal, reserve_out: Decimal, amount_in: Decimal) -> Decimal:
    """Output of swapping amount_in against the pool, before fees."""
    return reserve_out * amount_in / (reserve_in + amount_in)


def compute_quote(
    sol_reserve: Amount,
    token_reserve: Amount,
    fee_rate: Amount,
    side: TradeSide,
    amount_in: Amount,
    max_slippage: Amount,
) -> Quote:
    """
    Quote a trade against raw reserves.

    Args:
        sol_reserve: SOL side of the pool
        token_reserve: Token side of the pool
        fee_rate: Total fee rate (protocol + creator + base), fraction
        side: BUY spends SOL, SELL spends tokens
        amount_in: SOL (buy) or tokens (sell) going in
        max_slippage: Tolerance applied to the output, fraction

    Returns:
        Quote

    Raises:
        InvalidQuoteError: Non-positive reserves or amount, rates out of
            range, or a non-positive output
    """
    sol_r = safe_decimal(sol_reserve)
    tok_r = safe_decimal(token_reserve)
    rate = safe_decimal(fee_rate)
    amount = safe_decimal(amount_in)
    slip = safe_decimal(max_slippage)
    _validate(sol_r, tok_r, rate, amount, slip)

    spot = sol_r / tok_r

    if side is TradeSide.BUY:
        fee = amount * rate
        out = constant_product_out(sol_r, tok_r, amount - fee)
    else:
        gross = constant_product_out(tok_r, sol_r, amount)
        fee = gross * rate
        out = gross - fee

    if out <= 0:
        raise InvalidQuoteError(
            "Computed output is not positive",
            details={"side": side.value, "amount_in": str(amount), "amount_out": str(out)},
        )

    if side is TradeSide.BUY:
        price = amount / out
        impact = (price - spot) / spot
    else:
        price = out / amount
        impact = (spot - price) / spot

    return Quote(
        side=side,
        amount_in=amount,
        amount_out=out,
        min_amount_out=out * (ONE - slip),
        price=price,
        slippage=non_negative(impact),
        fee_amount=non_negative(fee),
        fee_pct=rate,
    )


# =============================================================================
# POOL-LEVEL HELPERS
# =============================================================================

def quote_buy(pool: PoolState, sol_amount: Amount, max_slippage: Amount) -> Quote:
    """Quote spending sol_amount SOL on the pool's token."""
    return compute_quote(
        pool.sol_reserve, pool.token_reserve, pool.fees.total_rate,
        TradeSide.BUY, sol_amount, max_slippage,
    )


def quote_sell(pool: PoolState, token_amount: Amount, max_slippage: Amount) -> Quote:
    """Quote selling token_amount tokens for SOL."""
    return compute_quote(
        pool.sol_reserve, pool.token_reserve, pool.fees.total_rate,
        TradeSide.SELL, token_amount, max_slippage,
    )


def spot_price(pool: PoolState) -> Decimal:
    """SOL per token at the current reserves."""
    if pool.sol_reserve <= 0 or pool.token_reserve <= 0:
        raise InvalidQuoteError(
            "Pool reserves must be positive",
            details={"token_mint": pool.token_mint},
        )
    return pool.sol_reserve / pool.token_reserve


def check_slippage(quote: Quote, actual_out: Amount) -> None:
    """
    Raise when an executed output fell below the quote's minimum.

    Raises:
        SlippageExceededError
    """
    actual = safe_decimal(actual_out)
    if actual < quote.min_amount_out:
        raise SlippageExceededError(
            "Executed output below minimum",
            details={
                "side": quote.side.value,
                "min_amount_out": str(quote.min_amount_out),
                "actual_out": str(actual),
            },
        )
