# PATH: execution/positions.py
"""
Position Lifecycle Manager: entries, exit monitoring and unwinds for both
snipes and mirrored copy-trades.

LIFECYCLE CONTRACT:
===================
  open_position()
    guards  → amount > 0, live positions < max_concurrent_trades,
              trades today < max_daily_trades, loss today < max_daily_loss_sol
    buy     → SOL balance must cover amount_sol
    sell    → wallet must already hold the token (mirrored sells only)
    submit  → direct: awaited inline, outcome applied before returning
              bundled: position stays PENDING until the bundle result arrives

  PENDING  → EXECUTED  entry confirmed; entry price and time recorded
  PENDING  → FAILED    entry failed; archived and evicted
  EXECUTED → CLOSED    unwind confirmed; archived and evicted

EXIT CONTRACT:
==============
  gain = (current - entry) / entry, negated for SELL-side positions
  close when gain >= profit_taking                → TAKE_PROFIT
  close when gain <= -stop_loss                   → STOP_LOSS
  copy-trades also close when the mirrored trade is reported closed
                                                  → ORIGIN_CLOSED
  BUY positions unwind with a sell of token_amount.
  SELL positions unwind with a buy-back of amount_sol.
  A failed unwind leaves the position EXECUTED; the next tick retries.
  A bundled unwind in flight sets close_pending and is not resubmitted.
===================
"""

from collections import deque
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, List, Optional, Tuple

from config.settings import TradingSettings
from core.constants import (
    POSITION_ARCHIVE_SIZE,
    CloseReason,
    PositionOrigin,
    PositionStatus,
    TradeSide,
)
from core.exceptions import EngineError, InsufficientBalanceError, ValidationError
from core.locks import AsyncRWLock
from core.logging import get_logger, log_trade
from core.math import ZERO, relative_change, safe_decimal, safe_div
from core.models import BundleResult, BundleTransaction, Position
from core.time import now_utc, today_utc
from dex.adapter import ExchangeAdapter
from execution.executor import DirectExecutor
from execution.state_machine import advance_position

if TYPE_CHECKING:
    from chains.ledger import LedgerClient
    from data.journal import TradeJournal
    from execution.bundler import BundleEngine
    from monitoring.metrics import MetricsChannel

logger = get_logger(__name__, subsystem="positions")

OriginClosedCheck = Callable[[Position], bool]


def exit_reason(
    entry_price: Decimal,
    current_price: Decimal,
    profit_taking: Decimal,
    stop_loss: Decimal,
    side: TradeSide = TradeSide.BUY,
) -> Optional[CloseReason]:
    """
    Exit condition for a position at current_price.

    Example:
        >>> exit_reason(Decimal("1.0"), Decimal("1.21"), Decimal("0.2"), Decimal("0.1"))
        <CloseReason.TAKE_PROFIT: 'take_profit'>
        >>> exit_reason(Decimal("1.0"), Decimal("1.05"), Decimal("0.2"), Decimal("0.1")) is None
        True
    """
    gain = relative_change(entry_price, current_price)
    if side is TradeSide.SELL:
        gain = -gain
    if gain >= profit_taking:
        return CloseReason.TAKE_PROFIT
    if gain <= -stop_loss:
        return CloseReason.STOP_LOSS
    return None


def realized_pnl(position: Position, exit_price: Decimal) -> Decimal:
    """SOL gained or lost by a position unwound at exit_price."""
    if not position.entry_price:
        return ZERO
    gain = relative_change(position.entry_price, exit_price)
    if position.side is TradeSide.SELL:
        gain = -gain
    return position.amount_sol * gain


class PositionManager:
    """
    Owns the live position working set.

    All mutation happens here under the collection's write lock; quotes,
    balance reads and submissions run outside it.
    """

    def __init__(
        self,
        adapter: ExchangeAdapter,
        executor: DirectExecutor,
        ledger: "LedgerClient",
        settings: TradingSettings,
        bundler: Optional["BundleEngine"] = None,
        metrics: Optional["MetricsChannel"] = None,
        journal: Optional["TradeJournal"] = None,
        max_slippage: Decimal = Decimal("0.05"),
        archive_size: int = POSITION_ARCHIVE_SIZE,
    ):
        self.adapter = adapter
        self.executor = executor
        self.ledger = ledger
        self.settings = settings
        self.bundler = bundler
        self.metrics = metrics
        self.journal = journal
        self.max_slippage = max_slippage

        self._positions: Dict[str, Position] = {}
        self._lock = AsyncRWLock()
        self._archive: Deque[Position] = deque(maxlen=archive_size)
        self._bundled: set = set()

        self._day: date = today_utc()
        self._daily_trades = 0
        self._daily_loss = ZERO

        if bundler is not None:
            bundler.add_result_listener(self.on_bundle_result)

    @property
    def wallet(self) -> str:
        return self.executor.wallet

    # =========================================================================
    # GUARDS
    # =========================================================================

    def _roll_day(self) -> None:
        today = today_utc()
        if today != self._day:
            self._day = today
            self._daily_trades = 0
            self._daily_loss = ZERO

    def _check_daily_limits(self) -> None:
        self._roll_day()
        if self._daily_trades >= self.settings.max_daily_trades:
            raise ValidationError(
                "Daily trade limit reached",
                details={"max_daily_trades": self.settings.max_daily_trades},
            )
        if self._daily_loss >= self.settings.max_daily_loss_sol:
            raise ValidationError(
                "Daily loss limit reached",
                details={
                    "daily_loss_sol": str(self._daily_loss),
                    "max_daily_loss_sol": str(self.settings.max_daily_loss_sol),
                },
            )

    def _check_capacity_locked(self) -> None:
        live = len(self._positions)
        if live >= self.settings.max_concurrent_trades:
            raise ValidationError(
                "Max concurrent trades reached",
                details={"live": live, "max_concurrent_trades": self.settings.max_concurrent_trades},
            )

    async def _require_sol(self, amount_sol: Decimal) -> None:
        balance = await self.ledger.get_balance(self.wallet)
        if balance < amount_sol:
            raise InsufficientBalanceError(
                "Insufficient SOL balance",
                details={"balance": str(balance), "required": str(amount_sol)},
            )

    # =========================================================================
    # INSTRUCTIONS
    # =========================================================================

    async def _buy_leg(self, token_mint: str, amount_sol: Decimal, slippage: Decimal) -> Tuple[Any, Decimal, Decimal]:
        """Returns (instruction, expected token amount, quoted price)."""
        await self._require_sol(amount_sol)
        quote = await self.adapter.get_buy_quote(token_mint, amount_sol, slippage)
        ix = await self.adapter.create_buy_instruction(token_mint, amount_sol, quote.min_amount_out, self.wallet)
        return ix, quote.amount_out, quote.price

    async def _sell_leg(self, token_mint: str, token_amount: Decimal, slippage: Decimal) -> Tuple[Any, Decimal, Decimal]:
        """Returns (instruction, expected SOL amount, quoted price)."""
        quote = await self.adapter.get_sell_quote(token_mint, token_amount, slippage)
        ix = await self.adapter.create_sell_instruction(token_mint, token_amount, quote.min_amount_out, self.wallet)
        return ix, quote.amount_out, quote.price

    async def _held_tokens_for(self, token_mint: str, amount_sol: Decimal) -> Decimal:
        held = await self.adapter.get_token_balance(self.wallet, token_mint)
        if held <= 0:
            raise InsufficientBalanceError(
                "No holding to mirror a sell",
                details={"token_mint": token_mint},
            )
        price = await self.adapter.get_token_price(token_mint)
        wanted = safe_div(amount_sol, price)
        return min(held, wanted) if wanted > 0 else held

    # =========================================================================
    # OPEN
    # =========================================================================

    async def open_position(
        self,
        token_mint: str,
        origin: PositionOrigin,
        side: TradeSide,
        amount_sol: Decimal,
        strategy: Optional[str] = None,
        trader_address: Optional[str] = None,
        origin_trade_id: Optional[str] = None,
        use_bundler: bool = False,
        max_slippage: Optional[Decimal] = None,
    ) -> Position:
        """
        Open a position and submit its entry.

        Returns:
            The position. PENDING when handed to the bundle engine,
            otherwise EXECUTED or FAILED.

        Raises:
            ValidationError: Bad amount or a guard rejected the trade
            InsufficientBalanceError: Not enough SOL (buy) or no holding (sell)
            InvalidQuoteError: Pool cannot quote the trade
        """
        amount_sol = safe_decimal(amount_sol)
        if amount_sol <= 0:
            raise ValidationError("Trade amount must be positive", details={"amount_sol": str(amount_sol)})

        async with self._lock.read():
            self._check_capacity_locked()
        self._check_daily_limits()

        slippage = self.max_slippage if max_slippage is None else max_slippage
        if side is TradeSide.BUY:
            ix, token_amount, price = await self._buy_leg(token_mint, amount_sol, slippage)
        else:
            tokens = await self._held_tokens_for(token_mint, amount_sol)
            ix, amount_sol, price = await self._sell_leg(token_mint, tokens, slippage)
            token_amount = tokens

        position = Position(
            token_mint=token_mint,
            origin=origin,
            side=side,
            amount_sol=amount_sol,
            token_amount=token_amount,
            strategy=strategy,
            trader_address=trader_address,
            origin_trade_id=origin_trade_id,
            quoted_price=price,
        )

        async with self._lock.write():
            self._check_capacity_locked()
            self._positions[position.id] = position
        self._daily_trades += 1

        context = {"position_id": position.id, "token_mint": token_mint, "origin": origin.value}
        logger.info(
            f"Opening {origin.value} position: {side.value} {amount_sol} SOL",
            extra={"context": {**context, "strategy": strategy, "trader": trader_address}},
        )

        bundled = use_bundler and self.bundler is not None
        if bundled:
            try:
                await self.bundler.add_transaction(BundleTransaction(position.id, (ix,)))
            except ValidationError as e:
                await self._complete_open(position.id, False, None, str(e))
                return position
            self._bundled.add(position.id)
            return position

        result = await self.executor.execute([ix], context)
        await self._complete_open(position.id, result.is_success, result.signature, result.error_message)
        return position

    async def _complete_open(
        self,
        position_id: str,
        success: bool,
        signature: Optional[str],
        error: Optional[str],
    ) -> Optional[Position]:
        async with self._lock.write():
            position = self._positions.get(position_id)
            if position is None or position.status is not PositionStatus.PENDING:
                return None
            position.signature = signature
            if success:
                advance_position(position, PositionStatus.EXECUTED)
                position.entry_price = position.quoted_price
                position.entry_time = now_utc()
            else:
                advance_position(position, PositionStatus.FAILED, reason=error or "")
                position.error = error
                self._evict_locked(position)

        context = {"position_id": position.id, "token_mint": position.token_mint, "signature": signature}
        if success:
            log_trade(
                logger,
                position.id,
                position.status.value,
                signature=signature,
                token_mint=position.token_mint,
                side=position.side.value,
                amount_sol=str(position.amount_sol),
                entry_price=str(position.entry_price),
            )
        else:
            logger.warning(f"Position entry failed: {error}", extra={"context": context})

        if self.metrics:
            if position.origin is PositionOrigin.SNIPE:
                self.metrics.record_snipe(success, position.amount_sol)
            else:
                self.metrics.record_copy_trade(success, position.amount_sol)
        self._journal(position, "open" if success else None, signature, position.entry_price)
        return position

    # =========================================================================
    # EXIT MONITORING
    # =========================================================================

    async def process_positions(
        self,
        origin: Optional[PositionOrigin] = None,
        origin_closed: Optional[OriginClosedCheck] = None,
    ) -> int:
        """
        Check every executed position for an exit and unwind those that hit one.

        Args:
            origin: Only positions opened by this subsystem
            origin_closed: Reports whether a copy-trade's mirrored trade
                was closed by its owner

        Returns:
            Number of unwinds that completed or were handed to the bundler
        """
        async with self._lock.read():
            candidates = [
                p for p in self._positions.values()
                if p.status is PositionStatus.EXECUTED
                and not p.close_pending
                and (origin is None or p.origin is origin)
            ]

        closed = 0
        for position in candidates:
            try:
                price = await self.adapter.get_token_price(position.token_mint)
            except EngineError as e:
                logger.warning(
                    f"Price lookup failed: {e}",
                    extra={"context": {"position_id": position.id, "token_mint": position.token_mint}},
                )
                if self.metrics:
                    self.metrics.increment("position_price_errors")
                continue

            reason = exit_reason(
                position.entry_price or position.quoted_price,
                price,
                self.settings.profit_taking,
                self.settings.stop_loss,
                position.side,
            )
            if reason is None and origin_closed is not None and origin_closed(position):
                reason = CloseReason.ORIGIN_CLOSED
            if reason is None:
                continue

            if await self.close_position(position.id, reason, price):
                closed += 1
        return closed

    async def close_position(
        self,
        position_id: str,
        reason: CloseReason = CloseReason.MANUAL,
        exit_price: Optional[Decimal] = None,
    ) -> bool:
        """
        Unwind an executed position through the path it was opened on.

        Returns:
            True if the unwind confirmed or was handed to the bundler
        """
        async with self._lock.read():
            position = self._positions.get(position_id)
            if position is None or position.status is not PositionStatus.EXECUTED or position.close_pending:
                return False

        context = {"position_id": position.id, "token_mint": position.token_mint, "reason": reason.value}
        try:
            if position.side is TradeSide.BUY:
                ix, _, quoted = await self._sell_leg(position.token_mint, position.token_amount, self.max_slippage)
            else:
                ix, _, quoted = await self._buy_leg(position.token_mint, position.amount_sol, self.max_slippage)
        except EngineError as e:
            self._close_failed(position, e, context)
            return False

        exit_price = exit_price if exit_price is not None else quoted

        if position.id in self._bundled:
            async with self._lock.write():
                position.close_pending = True
                position.close_reason = reason
                position.exit_price = exit_price
            try:
                await self.bundler.add_transaction(BundleTransaction(position.id, (ix,)))
            except EngineError as e:
                async with self._lock.write():
                    position.close_pending = False
                self._close_failed(position, e, context)
                return False
            logger.info("Unwind queued for bundling", extra={"context": context})
            return True

        result = await self.executor.execute([ix], context)
        if not result.is_success:
            logger.warning(
                f"Unwind {result.outcome.value}, retrying next tick: {result.error_message}",
                extra={"context": {**context, "signature": result.signature}},
            )
            if self.metrics:
                self.metrics.increment("position_close_errors")
            return False

        await self._finalize_close(position.id, reason, exit_price, result.signature)
        return True

    def _close_failed(self, position: Position, error: EngineError, context: Dict[str, Any]) -> None:
        logger.warning(
            f"Unwind failed, retrying next tick: {error}",
            extra={"context": {**context, "error_code": error.code.value}},
        )
        if self.metrics:
            self.metrics.increment("position_close_errors")

    async def _finalize_close(
        self,
        position_id: str,
        reason: CloseReason,
        exit_price: Decimal,
        signature: Optional[str],
    ) -> Optional[Position]:
        async with self._lock.write():
            position = self._positions.get(position_id)
            if position is None or position.status is not PositionStatus.EXECUTED:
                return None
            advance_position(position, PositionStatus.CLOSED, reason=reason.value)
            position.close_pending = False
            position.close_reason = reason
            position.close_signature = signature
            position.exit_price = exit_price
            position.closed_at = now_utc()
            position.realized_pnl = realized_pnl(position, exit_price)
            self._evict_locked(position)

        self._roll_day()
        if position.realized_pnl < 0:
            self._daily_loss += -position.realized_pnl

        logger.info(
            f"Position closed ({reason.value}) pnl={position.realized_pnl} SOL",
            extra={"context": {
                "position_id": position.id,
                "token_mint": position.token_mint,
                "entry_price": str(position.entry_price),
                "exit_price": str(exit_price),
                "signature": signature,
            }},
        )
        if self.metrics:
            self.metrics.record_position_closed(reason.value, position.realized_pnl)
        self._journal(position, "close", signature, exit_price)
        return position

    def _evict_locked(self, position: Position) -> None:
        self._positions.pop(position.id, None)
        self._bundled.discard(position.id)
        self._archive.append(position)

    # =========================================================================
    # BUNDLE OUTCOMES
    # =========================================================================

    async def on_bundle_result(self, result: BundleResult) -> None:
        """Apply a bundle's terminal outcome to the positions it carried."""
        for position_id in result.position_ids:
            async with self._lock.read():
                position = self._positions.get(position_id)
            if position is None:
                continue

            if position.status is PositionStatus.PENDING:
                await self._complete_open(position_id, result.success, result.signature, result.error)
            elif position.close_pending:
                if result.success:
                    await self._finalize_close(
                        position_id,
                        position.close_reason or CloseReason.MANUAL,
                        position.exit_price or position.entry_price or ZERO,
                        result.signature,
                    )
                else:
                    async with self._lock.write():
                        position.close_pending = False
                    logger.warning(
                        f"Bundled unwind {result.status.value}, retrying next tick",
                        extra={"context": {"position_id": position_id, "bundle_id": result.bundle_id}},
                    )

    # =========================================================================
    # JOURNAL
    # =========================================================================

    def _journal(
        self,
        position: Position,
        action: Optional[str],
        signature: Optional[str],
        price: Optional[Decimal],
    ) -> None:
        if not self.journal:
            return
        try:
            self.journal.record_position(position)
            if action:
                side = position.side if action == "open" else position.side.opposite
                self.journal.record_trade(position, side, action, signature, price)
        except EngineError as e:
            logger.warning(f"Journal write failed: {e}", extra={"context": {"position_id": position.id}})

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_positions(self, origin: Optional[PositionOrigin] = None) -> List[Position]:
        async with self._lock.read():
            return [p for p in self._positions.values() if origin is None or p.origin is origin]

    async def get_position(self, position_id: str) -> Optional[Position]:
        async with self._lock.read():
            position = self._positions.get(position_id)
        if position is not None:
            return position
        return next((p for p in self._archive if p.id == position_id), None)

    async def count_live(self, origin: Optional[PositionOrigin] = None) -> int:
        return len(await self.get_positions(origin))

    async def has_origin_trade(self, trade_id: str) -> bool:
        """True if a live or archived position already mirrors trade_id."""
        async with self._lock.read():
            if any(p.origin_trade_id == trade_id for p in self._positions.values()):
                return True
        return any(p.origin_trade_id == trade_id for p in self._archive)

    def get_archive(self, limit: Optional[int] = None) -> List[Position]:
        archive = list(self._archive)
        return archive[-limit:] if limit else archive

    async def get_status(self) -> Dict[str, Any]:
        async with self._lock.read():
            live = list(self._positions.values())
        self._roll_day()
        return {
            "active_positions": len(live),
            "pending": sum(1 for p in live if p.status is PositionStatus.PENDING),
            "executed": sum(1 for p in live if p.status is PositionStatus.EXECUTED),
            "closing": sum(1 for p in live if p.close_pending),
            "snipe_positions": sum(1 for p in live if p.origin is PositionOrigin.SNIPE),
            "copy_positions": sum(1 for p in live if p.origin is PositionOrigin.COPY),
            "archived": len(self._archive),
            "daily_trades": self._daily_trades,
            "daily_loss_sol": str(self._daily_loss),
            "max_concurrent_trades": self.settings.max_concurrent_trades,
        }
