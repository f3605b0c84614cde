# PATH: strategy/__init__.py
"""Strategy package for HEAVENBOT: listing rules, scanner, copy-trade tracker."""

from strategy.rules import SnipeStrategy, apply_filters, match_strategy, size_trade
from strategy.scanner import OpportunityScanner
from strategy.tracker import CounterpartyTracker, should_track

__all__ = [
    "CounterpartyTracker",
    "OpportunityScanner",
    "SnipeStrategy",
    "apply_filters",
    "match_strategy",
    "should_track",
    "size_trade",
]
