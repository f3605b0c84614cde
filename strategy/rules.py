"""
strategy/rules.py - Listing filters, snipe strategies and sizing.

Evaluation of a listing:
1. Filters run in FILTER_ORDER; the first failing filter rejects it.
2. Strategies are tried in STRATEGY_ORDER; the first match wins. There is
   no fallback when none match.
3. The matched strategy's multiplier and the risk multiplier size the
   trade, capped at max_sol_per_trade.
"""

from decimal import Decimal
from enum import Enum
from typing import Callable, NamedTuple, Optional

from config.settings import SniperSettings
from core.constants import (
    HIGH_VOLUME_FACTOR,
    LOW_MARKET_CAP_SOL,
    RISK_ALLOCATION_FACTOR,
    ListingCategory,
)
from core.math import ONE, ZERO
from core.models import Listing


class SnipeStrategy(str, Enum):
    """Why a listing is worth entering."""
    CREATOR_TOKEN = "creator_token"
    COMMUNITY_TOKEN = "community_token"
    HIGH_VOLUME = "high_volume"
    LOW_MARKET_CAP = "low_market_cap"
    FLYWHEEL_ACTIVE = "flywheel_active"


# =============================================================================
# FILTERS
# =============================================================================

class FilterResult(NamedTuple):
    """Result of a listing filter."""
    passed: bool
    reject_reason: str | None = None
    details: dict | None = None


PASS = FilterResult(True)


def filter_whitelist(listing: Listing, settings: SniperSettings) -> FilterResult:
    if settings.whitelisted_tokens and listing.token_mint not in settings.whitelisted_tokens:
        return FilterResult(False, "not_whitelisted")
    return PASS


def filter_blacklist(listing: Listing, settings: SniperSettings) -> FilterResult:
    if listing.token_mint in settings.blacklisted_tokens:
        return FilterResult(False, "blacklisted")
    return PASS


def filter_market_cap(listing: Listing, settings: SniperSettings) -> FilterResult:
    if not (settings.min_market_cap <= listing.market_cap <= settings.max_market_cap):
        return FilterResult(
            False,
            "market_cap_out_of_range",
            {
                "market_cap": str(listing.market_cap),
                "min": str(settings.min_market_cap),
                "max": str(settings.max_market_cap),
            },
        )
    return PASS


def filter_liquidity(listing: Listing, settings: SniperSettings) -> FilterResult:
    if listing.liquidity < settings.min_liquidity_sol:
        return FilterResult(
            False,
            "liquidity_too_low",
            {"liquidity": str(listing.liquidity), "min": str(settings.min_liquidity_sol)},
        )
    return PASS


def filter_volume(listing: Listing, settings: SniperSettings) -> FilterResult:
    if listing.volume_24h < settings.volume_threshold:
        return FilterResult(
            False,
            "volume_too_low",
            {"volume_24h": str(listing.volume_24h), "min": str(settings.volume_threshold)},
        )
    return PASS


FILTER_ORDER: tuple[Callable[[Listing, SniperSettings], FilterResult], ...] = (
    filter_whitelist,
    filter_blacklist,
    filter_market_cap,
    filter_liquidity,
    filter_volume,
)


def apply_filters(listing: Listing, settings: SniperSettings) -> FilterResult:
    """Run every filter; return the first rejection or PASS."""
    for check in FILTER_ORDER:
        result = check(listing, settings)
        if not result.passed:
            return result
    return PASS


# =============================================================================
# STRATEGY EVALUATORS
# =============================================================================

def _creator_token(listing: Listing, settings: SniperSettings) -> bool:
    return listing.category is ListingCategory.CREATOR and listing.has_flywheel


def _community_token(listing: Listing, settings: SniperSettings) -> bool:
    return listing.category is ListingCategory.COMMUNITY


def _high_volume(listing: Listing, settings: SniperSettings) -> bool:
    return listing.volume_24h > settings.volume_threshold * HIGH_VOLUME_FACTOR


def _low_market_cap(listing: Listing, settings: SniperSettings) -> bool:
    return listing.market_cap < LOW_MARKET_CAP_SOL


def _flywheel_active(listing: Listing, settings: SniperSettings) -> bool:
    return listing.has_flywheel and listing.flywheel_activity > 0


STRATEGY_EVALUATORS: dict[SnipeStrategy, Callable[[Listing, SniperSettings], bool]] = {
    SnipeStrategy.CREATOR_TOKEN: _creator_token,
    SnipeStrategy.COMMUNITY_TOKEN: _community_token,
    SnipeStrategy.HIGH_VOLUME: _high_volume,
    SnipeStrategy.LOW_MARKET_CAP: _low_market_cap,
    SnipeStrategy.FLYWHEEL_ACTIVE: _flywheel_active,
}

STRATEGY_ORDER: tuple[SnipeStrategy, ...] = (
    SnipeStrategy.CREATOR_TOKEN,
    SnipeStrategy.COMMUNITY_TOKEN,
    SnipeStrategy.HIGH_VOLUME,
    SnipeStrategy.LOW_MARKET_CAP,
    SnipeStrategy.FLYWHEEL_ACTIVE,
)

STRATEGY_MULTIPLIERS: dict[SnipeStrategy, Decimal] = {
    SnipeStrategy.CREATOR_TOKEN: Decimal("1.0"),
    SnipeStrategy.COMMUNITY_TOKEN: Decimal("0.7"),
    SnipeStrategy.HIGH_VOLUME: Decimal("1.2"),
    SnipeStrategy.LOW_MARKET_CAP: Decimal("0.8"),
    SnipeStrategy.FLYWHEEL_ACTIVE: Decimal("1.1"),
}


def match_strategy(listing: Listing, settings: SniperSettings) -> Optional[SnipeStrategy]:
    """
    First strategy in STRATEGY_ORDER that accepts the listing.

    Returns None when a filter rejects the listing or no strategy matches.
    """
    if not apply_filters(listing, settings).passed:
        return None
    for strategy in STRATEGY_ORDER:
        if STRATEGY_EVALUATORS[strategy](listing, settings):
            return strategy
    return None


# =============================================================================
# SIZING
# =============================================================================

def risk_multiplier(listing: Listing, settings: SniperSettings) -> Decimal:
    """Reduced allocation for very small market caps."""
    if listing.market_cap < settings.risk_market_cap:
        return RISK_ALLOCATION_FACTOR
    return ONE


def size_trade(strategy: SnipeStrategy, listing: Listing, settings: SniperSettings) -> Decimal:
    """
    SOL to spend on a matched listing.

    Returns:
        max_sol_per_trade * strategy multiplier * risk multiplier, capped
        at max_sol_per_trade and never negative
    """
    amount = settings.max_sol_per_trade * STRATEGY_MULTIPLIERS[strategy] * risk_multiplier(listing, settings)
    return max(ZERO, min(amount, settings.max_sol_per_trade))
