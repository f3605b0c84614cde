# PATH: strategy/tracker.py
"""
Counterparty Tracker: follows profitable traders and mirrors their trades.

TRACKING RULES:
  - whitelisted traders are always tracked
  - blacklisted traders are never tracked
  - otherwise: total_trades >= min_trader_trades,
               win_rate >= min_trader_profit,
               total_volume >= min_trader_balance
  - at most max_traders are tracked

COPY RULES (per new trade):
  - new = no live or archived position already mirrors its trade id
  - live copy positions < max_traders
  - copy amount = trade amount * copy_percentage, capped at max_sol_per_trade
  - buys need SOL to cover the copy amount
  - sells need a nonzero holding of the token

Each tick refreshes every tracked trader's performance from their fetched
trades, untracks traders that no longer qualify, then runs exit checks on
copy positions (including "mirrored trade was closed by its owner").
A failure on one trader is logged and skipped; the loop never stops on it.
"""

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from config.settings import CopyTraderSettings
from core.constants import PositionOrigin, TradeSide
from core.exceptions import EngineError, InsufficientBalanceError
from core.locks import AsyncRWLock
from core.logging import get_logger
from core.math import ZERO, safe_div
from core.models import Position, TrackedTrader, TraderTrade
from core.time import now_utc
from dex.adapter import ExchangeAdapter
from execution.positions import PositionManager

if TYPE_CHECKING:
    from data.journal import TradeJournal
    from monitoring.metrics import MetricsChannel

logger = get_logger(__name__, subsystem="copy_trader")


def should_track(trader: TrackedTrader, settings: CopyTraderSettings) -> bool:
    if trader.address in settings.whitelisted_traders:
        return True
    if trader.address in settings.blacklisted_traders:
        return False
    return (
        trader.total_trades >= settings.min_trader_trades
        and trader.win_rate >= settings.min_trader_profit
        and trader.total_volume >= settings.min_trader_balance
    )


def copy_amount(trade: TraderTrade, settings: CopyTraderSettings) -> Decimal:
    """SOL to mirror for trade."""
    return min(trade.amount_sol * settings.copy_percentage, settings.max_sol_per_trade)


def refresh_performance(trader: TrackedTrader, trades: List[TraderTrade]) -> TrackedTrader:
    """Recompute trader aggregates from their fetched trades (in place)."""
    if not trades:
        return trader
    settled = [t for t in trades if t.pnl_sol is not None]
    wins = sum(1 for t in settled if t.pnl_sol > 0)
    trader.total_trades = len(trades)
    trader.total_volume = sum((t.amount_sol for t in trades), ZERO)
    trader.total_profit = sum((t.pnl_sol for t in settled), ZERO)
    trader.win_rate = safe_div(wins, len(settled)) if settled else trader.win_rate
    stamps = [t.timestamp for t in trades if t.timestamp is not None]
    trader.last_activity = max(stamps) if stamps else now_utc()
    return trader


class CounterpartyTracker:
    """
    Owns the followed-trader map and the latest trade snapshot per trader.

    Usage:
        tracker = CounterpartyTracker(adapter, positions, settings, journal=journal)
        tracker.initialize()
        await tracker.start()
    """

    def __init__(
        self,
        adapter: ExchangeAdapter,
        positions: PositionManager,
        settings: CopyTraderSettings,
        metrics: Optional["MetricsChannel"] = None,
        journal: Optional["TradeJournal"] = None,
    ):
        self.adapter = adapter
        self.positions = positions
        self.settings = settings
        self.metrics = metrics
        self.journal = journal

        self.running = False
        self._traders: Dict[str, TrackedTrader] = {}
        self._lock = AsyncRWLock()
        # trader address -> {trade_id: trade} from the latest refresh
        self._latest: Dict[str, Dict[str, TraderTrade]] = {}

    # =========================================================================
    # TRACKED SET
    # =========================================================================

    def initialize(self, traders: Optional[List[TrackedTrader]] = None) -> int:
        """
        Seed the tracked map from journaled traders plus the whitelist.

        Called before the loop starts, so no lock is taken.

        Returns:
            Number of traders tracked
        """
        candidates = list(traders) if traders is not None else []
        if traders is None and self.journal:
            try:
                candidates = self.journal.load_traders()
            except EngineError as e:
                logger.warning(f"Trader load failed: {e}", extra={"context": {"error_code": e.code.value}})

        known = {t.address for t in candidates}
        candidates.extend(
            TrackedTrader(address=a, is_verified=True)
            for a in self.settings.whitelisted_traders
            if a not in known
        )

        for trader in candidates:
            if len(self._traders) >= self.settings.max_traders:
                break
            if should_track(trader, self.settings):
                self._traders[trader.address] = trader

        logger.info(
            f"Tracking {len(self._traders)} traders",
            extra={"context": {"candidates": len(candidates), "max_traders": self.settings.max_traders}},
        )
        return len(self._traders)

    async def add_trader(self, trader: TrackedTrader) -> bool:
        if not should_track(trader, self.settings):
            return False
        async with self._lock.write():
            if trader.address not in self._traders and len(self._traders) >= self.settings.max_traders:
                return False
            self._traders[trader.address] = trader
        return True

    async def remove_trader(self, address: str) -> bool:
        async with self._lock.write():
            self._latest.pop(address, None)
            return self._traders.pop(address, None) is not None

    async def get_traders(self) -> List[TrackedTrader]:
        async with self._lock.read():
            return list(self._traders.values())

    def is_origin_closed(self, position: Position) -> bool:
        """True if the mirrored trade's latest snapshot reports it closed/sold."""
        if not position.origin_trade_id:
            return False
        trade = self._latest.get(position.trader_address or "", {}).get(position.origin_trade_id)
        return trade is not None and trade.is_closed

    # =========================================================================
    # COPYING
    # =========================================================================

    async def should_copy(self, trade: TraderTrade) -> bool:
        """Capacity and balance eligibility of a new trade."""
        live = await self.positions.count_live(PositionOrigin.COPY)
        if live >= self.settings.max_traders:
            return False

        amount = copy_amount(trade, self.settings)
        if amount <= 0:
            return False

        if trade.side is TradeSide.BUY:
            balance = await self.positions.ledger.get_balance(self.positions.wallet)
            return balance >= amount

        held = await self.adapter.get_token_balance(self.positions.wallet, trade.token_mint)
        return held > 0

    async def copy_trade(self, trade: TraderTrade) -> Optional[Position]:
        context = {"trader": trade.trader, "trade_id": trade.trade_id, "token_mint": trade.token_mint}
        try:
            position = await self.positions.open_position(
                token_mint=trade.token_mint,
                origin=PositionOrigin.COPY,
                side=trade.side,
                amount_sol=copy_amount(trade, self.settings),
                trader_address=trade.trader,
                origin_trade_id=trade.trade_id,
                use_bundler=self.settings.use_bundler,
            )
        except InsufficientBalanceError as e:
            logger.info(f"Copy skipped: {e}", extra={"context": context})
            return None
        except EngineError as e:
            logger.warning(
                f"Copy trade failed: {e}",
                extra={"context": {**context, "error_code": e.code.value}},
            )
            if self.metrics:
                self.metrics.record_copy_trade(False)
            return None
        return position

    async def process_trader(self, trader: TrackedTrader) -> int:
        """
        Refresh one trader and mirror their new trades.

        Returns:
            Number of positions opened
        """
        trades = await self.adapter.get_trader_trades(trader.address)

        async with self._lock.write():
            refresh_performance(trader, trades)
            keep = should_track(trader, self.settings)
            if keep:
                self._latest[trader.address] = {t.trade_id: t for t in trades}
            else:
                self._traders.pop(trader.address, None)
                self._latest.pop(trader.address, None)

        if self.journal:
            try:
                self.journal.record_trader(trader)
            except EngineError as e:
                logger.warning(f"Journal write failed: {e}", extra={"context": {"trader": trader.address}})

        if not keep:
            logger.info(
                "Trader no longer qualifies, untracked",
                extra={"context": {"trader": trader.address, "win_rate": str(trader.win_rate)}},
            )
            return 0

        opened = 0
        for trade in trades:
            if trade.is_closed or await self.positions.has_origin_trade(trade.trade_id):
                continue
            if not await self.should_copy(trade):
                continue
            if await self.copy_trade(trade) is not None:
                opened += 1
        return opened

    # =========================================================================
    # LOOP
    # =========================================================================

    async def tick(self) -> int:
        opened = 0
        for trader in await self.get_traders():
            try:
                opened += await self.process_trader(trader)
            except EngineError as e:
                logger.warning(
                    f"Trader refresh failed: {e}",
                    extra={"context": {"trader": trader.address, "error_code": e.code.value}},
                )
                if self.metrics:
                    self.metrics.increment("copy_trader_errors")
            except (AttributeError, KeyError, ValueError, TypeError) as e:
                logger.error(
                    f"Trader refresh crashed: {type(e).__name__}: {e}",
                    extra={"context": {"trader": trader.address}},
                    exc_info=True,
                )
                if self.metrics:
                    self.metrics.increment("copy_trader_errors")

        await self.positions.process_positions(PositionOrigin.COPY, self.is_origin_closed)

        if self.metrics:
            async with self._lock.read():
                self.metrics.gauge("tracked_traders", len(self._traders))
            self.metrics.gauge("active_copy_positions", await self.positions.count_live(PositionOrigin.COPY))
        return opened

    async def start(self) -> None:
        """Tick every delay_ms until stop()."""
        self.running = True
        logger.info("Copy trader started", extra={"context": {"copy_percentage": str(self.settings.copy_percentage)}})
        while self.running:
            try:
                await self.tick()
            except EngineError as e:
                logger.error(f"Copy trader tick failed: {e}", extra={"context": {"error_code": e.code.value}})
            except Exception as e:
                logger.error(f"Unexpected copy trader tick error: {type(e).__name__}: {e}", exc_info=True)
            if self.running:
                await asyncio.sleep(self.settings.delay_ms / 1000)
        logger.info("Copy trader stopped")

    def stop(self) -> None:
        self.running = False

    async def get_status(self) -> Dict[str, Any]:
        async with self._lock.read():
            tracked = len(self._traders)
        return {
            "is_running": self.running,
            "active_copy_trades": await self.positions.count_live(PositionOrigin.COPY),
            "tracked_traders": tracked,
            "max_traders": self.settings.max_traders,
            "copy_percentage": str(self.settings.copy_percentage),
        }
