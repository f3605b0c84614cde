# PATH: strategy/scanner.py
"""
Opportunity Scanner: turns newly launched pools into snipe positions.

SCAN CONTRACT:
  1. Fetch listings from the exchange adapter.
  2. Keep listings with launch_time > last_scan (the watermark).
  3. First matching strategy wins (strategy.rules.STRATEGY_ORDER).
  4. Size the trade and hand it to the position manager.
  5. Advance the watermark to the end of the tick, even when steps 1-4
     failed part-way, so stale listings are never reprocessed.

After scanning, snipe positions are checked for take-profit / stop-loss.
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from config.settings import SniperSettings
from core.constants import PositionOrigin, TradeSide
from core.exceptions import EngineError
from core.logging import get_logger
from core.models import Listing, Position
from core.time import now_utc
from dex.adapter import ExchangeAdapter
from execution.positions import PositionManager
from strategy.rules import match_strategy, size_trade

if TYPE_CHECKING:
    from data.journal import TradeJournal
    from monitoring.metrics import MetricsChannel

logger = get_logger(__name__, subsystem="sniper")


class OpportunityScanner:
    """Periodic listing scanner feeding the position manager."""

    def __init__(
        self,
        adapter: ExchangeAdapter,
        positions: PositionManager,
        settings: SniperSettings,
        metrics: Optional["MetricsChannel"] = None,
        journal: Optional["TradeJournal"] = None,
        start_time: Optional[datetime] = None,
    ):
        self.adapter = adapter
        self.positions = positions
        self.settings = settings
        self.metrics = metrics
        self.journal = journal
        self.running = False
        self.last_scan: datetime = start_time or now_utc()
        self.listings_seen = 0
        self.listings_matched = 0

    def new_listings(self, listings: List[Listing]) -> List[Listing]:
        return [listing for listing in listings if listing.launch_time > self.last_scan]

    async def evaluate(self, listing: Listing) -> Optional[Position]:
        """Match, size and open a position for one listing."""
        strategy = match_strategy(listing, self.settings)
        if strategy is None:
            return None
        self.listings_matched += 1

        amount = size_trade(strategy, listing, self.settings)
        context = {"token_mint": listing.token_mint, "strategy": strategy.value, "amount_sol": str(amount)}
        logger.info(f"Listing matched {strategy.value}", extra={"context": context})
        if amount <= 0:
            return None

        try:
            return await self.positions.open_position(
                token_mint=listing.token_mint,
                origin=PositionOrigin.SNIPE,
                side=TradeSide.BUY,
                amount_sol=amount,
                strategy=strategy.value,
                use_bundler=self.settings.use_bundler,
                max_slippage=self.settings.max_slippage,
            )
        except EngineError as e:
            logger.warning(
                f"Snipe failed: {e}",
                extra={"context": {**context, "error_code": e.code.value}},
            )
            if self.metrics:
                self.metrics.record_snipe(False)
            return None

    async def scan(self) -> List[Position]:
        """
        One scan pass.

        Returns:
            Positions opened this pass
        """
        opened: List[Position] = []
        try:
            listings = self.new_listings(await self.adapter.scan_new_launches())
            self.listings_seen += len(listings)
            for listing in listings:
                if self.journal:
                    try:
                        self.journal.record_listing(listing)
                    except EngineError as e:
                        logger.warning(f"Journal write failed: {e}", extra={"context": {"token_mint": listing.token_mint}})
                try:
                    position = await self.evaluate(listing)
                except (AttributeError, KeyError, ValueError, TypeError) as e:
                    logger.error(
                        f"Listing evaluation crashed: {type(e).__name__}: {e}",
                        extra={"context": {"token_mint": listing.token_mint}},
                        exc_info=True,
                    )
                    if self.metrics:
                        self.metrics.increment("scan_errors")
                    continue
                if position is not None:
                    opened.append(position)
        except EngineError as e:
            logger.warning(f"Scan failed: {e}", extra={"context": {"error_code": e.code.value}})
            if self.metrics:
                self.metrics.increment("scan_errors")
        except (AttributeError, KeyError, ValueError, TypeError) as e:
            # Malformed adapter payload
            logger.error(f"Scan failed: {type(e).__name__}: {e}", exc_info=True)
            if self.metrics:
                self.metrics.increment("scan_errors")
        finally:
            self.last_scan = now_utc()
        return opened

    async def tick(self) -> List[Position]:
        opened = await self.scan()
        await self.positions.process_positions(PositionOrigin.SNIPE)
        if self.metrics:
            self.metrics.gauge("active_snipes", await self.positions.count_live(PositionOrigin.SNIPE))
        return opened

    async def start(self) -> None:
        """Tick every launch_detection_delay_ms until stop()."""
        self.running = True
        logger.info("Sniper started", extra={"context": {"max_sol_per_trade": str(self.settings.max_sol_per_trade)}})
        while self.running:
            try:
                await self.tick()
            except EngineError as e:
                logger.error(f"Sniper tick failed: {e}", extra={"context": {"error_code": e.code.value}})
            except Exception as e:
                logger.error(f"Unexpected sniper tick error: {type(e).__name__}: {e}", exc_info=True)
            if self.running:
                await asyncio.sleep(self.settings.launch_detection_delay_ms / 1000)
        logger.info("Sniper stopped")

    def stop(self) -> None:
        self.running = False

    async def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.running,
            "active_snipes": await self.positions.count_live(PositionOrigin.SNIPE),
            "last_scan": self.last_scan.isoformat(),
            "listings_seen": self.listings_seen,
            "listings_matched": self.listings_matched,
        }
