"""
dex/adapter.py - Exchange adapter contract.

Concrete adapters own everything exchange-specific: pool-key derivation,
instruction byte layout, launchpad and trader-history endpoints. The
engine only ever sees this interface. Quotes are derived here from
get_pool_state() through the quote engine so every adapter prices trades
the same way.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

from config.settings import ExchangeSettings
from core.models import Listing, PoolState, Quote, TraderTrade
from core.math import safe_decimal
from dex.quote_engine import quote_buy, quote_sell, spot_price


class ExchangeAdapter(ABC):
    """
    Base class for exchange adapters.

    Usage:
        class MyExchange(ExchangeAdapter):
            async def get_pool_state(self, token_mint): ...
            ...

        quote = await adapter.get_buy_quote(mint, Decimal("0.1"))
        ix = await adapter.create_buy_instruction(mint, quote.amount_in,
                                                  quote.min_amount_out, owner)
    """

    def __init__(self, max_slippage: Decimal = Decimal("0.05")):
        self.max_slippage = safe_decimal(max_slippage)

    @classmethod
    def from_settings(cls, settings: ExchangeSettings) -> "ExchangeAdapter":
        """Build from the exchange config section. Override to read program_id, api_url."""
        return cls(max_slippage=settings.max_slippage)

    # -------------------------------------------------------------------------
    # Exchange-specific (implemented by concrete adapters)
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_pool_state(self, token_mint: str) -> PoolState:
        """Current reserves and fee rates of the token's pool."""

    @abstractmethod
    async def create_buy_instruction(
        self,
        token_mint: str,
        sol_amount: Decimal,
        min_token_amount: Decimal,
        owner: str,
    ) -> Any:
        """Instruction handle spending sol_amount on token_mint."""

    @abstractmethod
    async def create_sell_instruction(
        self,
        token_mint: str,
        token_amount: Decimal,
        min_sol_amount: Decimal,
        owner: str,
    ) -> Any:
        """Instruction handle selling token_amount of token_mint."""

    @abstractmethod
    async def scan_new_launches(self) -> list[Listing]:
        """Recently launched pools, newest last."""

    @abstractmethod
    async def get_trader_trades(self, address: str) -> list[TraderTrade]:
        """Recent trades by a counterparty."""

    @abstractmethod
    async def get_token_balance(self, owner: str, token_mint: str) -> Decimal:
        """Token units held by owner."""

    # -------------------------------------------------------------------------
    # Shared behaviour
    # -------------------------------------------------------------------------

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    async def get_buy_quote(
        self,
        token_mint: str,
        sol_amount: Decimal,
        max_slippage: Optional[Decimal] = None,
    ) -> Quote:
        pool = await self.get_pool_state(token_mint)
        slippage = self.max_slippage if max_slippage is None else max_slippage
        return quote_buy(pool, sol_amount, slippage)

    async def get_sell_quote(
        self,
        token_mint: str,
        token_amount: Decimal,
        max_slippage: Optional[Decimal] = None,
    ) -> Quote:
        pool = await self.get_pool_state(token_mint)
        slippage = self.max_slippage if max_slippage is None else max_slippage
        return quote_sell(pool, token_amount, slippage)

    async def get_token_price(self, token_mint: str) -> Decimal:
        """Spot price in SOL per token."""
        return spot_price(await self.get_pool_state(token_mint))
