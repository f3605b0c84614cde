"""
tests/unit/test_rules.py - Listing filters, strategy order and sizing.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from config.settings import SniperSettings
from core.constants import ListingCategory
from core.models import Listing
from strategy.rules import (
    FILTER_ORDER,
    STRATEGY_EVALUATORS,
    STRATEGY_MULTIPLIERS,
    STRATEGY_ORDER,
    SnipeStrategy,
    apply_filters,
    match_strategy,
    risk_multiplier,
    size_trade,
)


def make_listing(**overrides) -> Listing:
    fields = {
        "token_mint": "MINT_A",
        "launch_time": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "price": Decimal("0.001"),
        "market_cap": Decimal("50000"),
        "liquidity": Decimal("5"),
        "volume_24h": Decimal("2000"),
        "category": ListingCategory.COMMUNITY,
    }
    fields.update(overrides)
    return Listing(**fields)


@pytest.fixture
def settings():
    return SniperSettings(max_market_cap=Decimal("1000000"))


class TestFilters:
    """apply_filters() rejects with the first failing filter."""

    def test_passes_defaults(self, settings):
        assert apply_filters(make_listing(), settings).passed

    def test_blacklisted(self, settings):
        settings.blacklisted_tokens = ["MINT_A"]
        result = apply_filters(make_listing(), settings)
        assert not result.passed
        assert result.reject_reason == "blacklisted"

    def test_whitelist_excludes_others(self, settings):
        settings.whitelisted_tokens = ["OTHER"]
        assert apply_filters(make_listing(), settings).reject_reason == "not_whitelisted"

    def test_market_cap_range(self, settings):
        settings.min_market_cap = Decimal("100000")
        result = apply_filters(make_listing(), settings)
        assert result.reject_reason == "market_cap_out_of_range"
        assert result.details["market_cap"] == "50000"

    def test_liquidity(self, settings):
        result = apply_filters(make_listing(liquidity=Decimal("0.001")), settings)
        assert result.reject_reason == "liquidity_too_low"

    def test_volume(self, settings):
        result = apply_filters(make_listing(volume_24h=Decimal("10")), settings)
        assert result.reject_reason == "volume_too_low"

    def test_first_failure_wins(self, settings):
        """Blacklist is checked before liquidity."""
        settings.blacklisted_tokens = ["MINT_A"]
        result = apply_filters(make_listing(liquidity=Decimal("0")), settings)
        assert result.reject_reason == "blacklisted"

    def test_filter_order_is_fixed(self):
        names = [f.__name__ for f in FILTER_ORDER]
        assert names == [
            "filter_whitelist",
            "filter_blacklist",
            "filter_market_cap",
            "filter_liquidity",
            "filter_volume",
        ]


class TestStrategyMatching:
    """First match in STRATEGY_ORDER wins."""

    def test_order(self):
        assert STRATEGY_ORDER == (
            SnipeStrategy.CREATOR_TOKEN,
            SnipeStrategy.COMMUNITY_TOKEN,
            SnipeStrategy.HIGH_VOLUME,
            SnipeStrategy.LOW_MARKET_CAP,
            SnipeStrategy.FLYWHEEL_ACTIVE,
        )

    def test_every_strategy_has_evaluator_and_multiplier(self):
        for strategy in SnipeStrategy:
            assert strategy in STRATEGY_EVALUATORS
            assert strategy in STRATEGY_MULTIPLIERS

    def test_creator_with_flywheel(self, settings):
        listing = make_listing(category=ListingCategory.CREATOR, has_flywheel=True)
        assert match_strategy(listing, settings) is SnipeStrategy.CREATOR_TOKEN

    def test_community_beats_high_volume(self, settings):
        listing = make_listing(volume_24h=Decimal("50000"))
        assert match_strategy(listing, settings) is SnipeStrategy.COMMUNITY_TOKEN

    def test_creator_without_flywheel_falls_to_high_volume(self, settings):
        listing = make_listing(category=ListingCategory.CREATOR, volume_24h=Decimal("50000"))
        assert match_strategy(listing, settings) is SnipeStrategy.HIGH_VOLUME

    def test_low_market_cap(self, settings):
        listing = make_listing(category=ListingCategory.CREATOR, market_cap=Decimal("5000"))
        assert match_strategy(listing, settings) is SnipeStrategy.LOW_MARKET_CAP

    def test_no_match_has_no_fallback(self, settings):
        listing = make_listing(category=ListingCategory.CREATOR)
        assert match_strategy(listing, settings) is None

    def test_filtered_listing_never_matches(self, settings):
        settings.blacklisted_tokens = ["MINT_A"]
        assert match_strategy(make_listing(), settings) is None


class TestSizing:
    """size_trade() and risk_multiplier()"""

    def test_risk_multiplier_below_threshold(self, settings):
        listing = make_listing(market_cap=Decimal("500"))
        assert risk_multiplier(listing, settings) == Decimal("0.5")

    def test_risk_multiplier_above_threshold(self, settings):
        assert risk_multiplier(make_listing(), settings) == Decimal("1")

    def test_size_community(self, settings):
        amount = size_trade(SnipeStrategy.COMMUNITY_TOKEN, make_listing(), settings)
        assert amount == Decimal("0.1") * Decimal("0.7")

    def test_size_capped_at_max(self, settings):
        """HIGH_VOLUME's 1.2 multiplier never exceeds max_sol_per_trade."""
        amount = size_trade(SnipeStrategy.HIGH_VOLUME, make_listing(), settings)
        assert amount == settings.max_sol_per_trade

    def test_size_with_risk_reduction(self, settings):
        listing = make_listing(market_cap=Decimal("500"))
        amount = size_trade(SnipeStrategy.LOW_MARKET_CAP, listing, settings)
        assert amount == Decimal("0.1") * Decimal("0.8") * Decimal("0.5")
