"""
dex - Exchange pricing and adapter contract.

- quote_engine.py: constant-product quoting and fee tiers
- adapter.py: ExchangeAdapter base class
"""

from dex.adapter import ExchangeAdapter
from dex.quote_engine import (
    check_slippage,
    compute_quote,
    fee_structure_for,
    quote_buy,
    quote_sell,
    spot_price,
)

__all__ = [
    "ExchangeAdapter",
    "check_slippage",
    "compute_quote",
    "fee_structure_for",
    "quote_buy",
    "quote_sell",
    "spot_price",
]
