# PATH: core/models.py
"""
Core data models for HEAVENBOT.

MONEY CONTRACT:
  Every SOL/token amount and price is a Decimal. Serialized forms (to_dict)
  carry them as strings so JSONL records round-trip without float drift.
  Lamport-denominated fees (priority fee, fee paid) are plain ints.

OWNERSHIP CONTRACT:
  - Listing, Quote, TraderTrade, BundleTransaction, BundleResult are frozen
    values; they are passed between subsystems by value.
  - Position is mutated only by the Position Lifecycle Manager.
  - Bundle is mutated only by the Bundle Engine.
  - TrackedTrader is mutated only by the Counterparty Tracker.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.constants import (
    BundleStatus,
    CloseReason,
    ListingCategory,
    PositionOrigin,
    PositionStatus,
    TradeSide,
)
from core.math import ZERO, safe_decimal
from core.time import now_utc, parse_timestamp


def new_id(prefix: str) -> str:
    """Generate a short unique identifier, e.g. "pos_3f9a1c2b7d4e"."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# MARKET DATA
# =============================================================================

@dataclass(frozen=True)
class FeeStructure:
    """Fee rates charged by a pool, as fractions (0.01 = 1%)."""
    protocol_fee: Decimal = ZERO
    creator_fee: Decimal = ZERO
    base_fee: Decimal = ZERO

    @property
    def total_rate(self) -> Decimal:
        return self.protocol_fee + self.creator_fee + self.base_fee

    def to_dict(self) -> Dict[str, str]:
        return {
            "protocol_fee": str(self.protocol_fee),
            "creator_fee": str(self.creator_fee),
            "base_fee": str(self.base_fee),
            "total_rate": str(self.total_rate),
        }


@dataclass(frozen=True)
class PoolState:
    """Reserves of a SOL/token constant-product pool."""
    token_mint: str
    sol_reserve: Decimal
    token_reserve: Decimal
    fees: FeeStructure = field(default_factory=FeeStructure)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_mint": self.token_mint,
            "sol_reserve": str(self.sol_reserve),
            "token_reserve": str(self.token_reserve),
            "fees": self.fees.to_dict(),
        }


@dataclass(frozen=True)
class Listing:
    """A newly launched pool as observed by the scanner."""
    token_mint: str
    launch_time: datetime
    price: Decimal = ZERO
    market_cap: Decimal = ZERO
    liquidity: Decimal = ZERO
    volume_24h: Decimal = ZERO
    category: ListingCategory = ListingCategory.COMMUNITY
    has_flywheel: bool = False
    flywheel_activity: Decimal = ZERO
    creator: Optional[str] = None
    pool_address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Listing":
        return cls(
            token_mint=data["token_mint"],
            launch_time=parse_timestamp(data["launch_time"]),
            price=safe_decimal(data.get("price")),
            market_cap=safe_decimal(data.get("market_cap")),
            liquidity=safe_decimal(data.get("liquidity")),
            volume_24h=safe_decimal(data.get("volume_24h")),
            category=ListingCategory(data.get("category", ListingCategory.COMMUNITY.value)),
            has_flywheel=bool(data.get("has_flywheel", False)),
            flywheel_activity=safe_decimal(data.get("flywheel_activity")),
            creator=data.get("creator"),
            pool_address=data.get("pool_address"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_mint": self.token_mint,
            "launch_time": self.launch_time.isoformat(),
            "price": str(self.price),
            "market_cap": str(self.market_cap),
            "liquidity": str(self.liquidity),
            "volume_24h": str(self.volume_24h),
            "category": self.category.value,
            "has_flywheel": self.has_flywheel,
            "flywheel_activity": str(self.flywheel_activity),
            "creator": self.creator,
            "pool_address": self.pool_address,
        }


@dataclass(frozen=True)
class Quote:
    """
    Result of constant-product quoting.

    amount_out is the expected output after fees; min_amount_out applies the
    slippage tolerance. slippage is the price impact against the pool spot
    price, fees included.
    """
    side: TradeSide
    amount_in: Decimal
    amount_out: Decimal
    min_amount_out: Decimal
    price: Decimal
    slippage: Decimal
    fee_amount: Decimal
    fee_pct: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {
            "side": self.side.value,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "min_amount_out": str(self.min_amount_out),
            "price": str(self.price),
            "slippage": str(self.slippage),
            "fee_amount": str(self.fee_amount),
            "fee_pct": str(self.fee_pct),
        }


# =============================================================================
# COUNTERPARTIES
# =============================================================================

@dataclass(frozen=True)
class TraderTrade:
    """A trade made by a followed counterparty."""
    trade_id: str
    trader: str
    token_mint: str
    side: TradeSide
    amount_sol: Decimal
    token_amount: Decimal = ZERO
    price: Decimal = ZERO
    timestamp: Optional[datetime] = None
    status: str = "open"
    pnl_sol: Optional[Decimal] = None

    @property
    def is_closed(self) -> bool:
        return self.status in ("closed", "sold")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraderTrade":
        pnl = data.get("pnl_sol")
        ts = data.get("timestamp")
        return cls(
            trade_id=str(data["trade_id"]),
            trader=data["trader"],
            token_mint=data["token_mint"],
            side=TradeSide(data["side"]),
            amount_sol=safe_decimal(data.get("amount_sol")),
            token_amount=safe_decimal(data.get("token_amount")),
            price=safe_decimal(data.get("price")),
            timestamp=parse_timestamp(ts) if ts is not None else None,
            status=data.get("status", "open"),
            pnl_sol=safe_decimal(pnl) if pnl is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "trader": self.trader,
            "token_mint": self.token_mint,
            "side": self.side.value,
            "amount_sol": str(self.amount_sol),
            "token_amount": str(self.token_amount),
            "price": str(self.price),
            "timestamp": _iso(self.timestamp),
            "status": self.status,
            "pnl_sol": str(self.pnl_sol) if self.pnl_sol is not None else None,
        }


@dataclass
class TrackedTrader:
    """Aggregate performance of a followed counterparty."""
    address: str
    total_trades: int = 0
    win_rate: Decimal = ZERO
    total_profit: Decimal = ZERO
    total_volume: Decimal = ZERO
    is_verified: bool = False
    risk_score: Decimal = ZERO
    last_activity: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackedTrader":
        last = data.get("last_activity")
        return cls(
            address=data["address"],
            total_trades=int(data.get("total_trades", 0)),
            win_rate=safe_decimal(data.get("win_rate")),
            total_profit=safe_decimal(data.get("total_profit")),
            total_volume=safe_decimal(data.get("total_volume")),
            is_verified=bool(data.get("is_verified", False)),
            risk_score=safe_decimal(data.get("risk_score")),
            last_activity=parse_timestamp(last) if last else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "total_trades": self.total_trades,
            "win_rate": str(self.win_rate),
            "total_profit": str(self.total_profit),
            "total_volume": str(self.total_volume),
            "is_verified": self.is_verified,
            "risk_score": str(self.risk_score),
            "last_activity": _iso(self.last_activity),
        }


# =============================================================================
# POSITIONS
# =============================================================================

@dataclass
class Position:
    """
    An open (or archived) trade tracked for an exit condition.

    side is the entry side: BUY for snipes and mirrored buys, SELL for
    mirrored sells. amount_sol is SOL spent (buy) or received (sell).
    """
    token_mint: str
    origin: PositionOrigin
    side: TradeSide
    amount_sol: Decimal
    id: str = field(default_factory=lambda: new_id("pos"))
    token_amount: Decimal = ZERO
    status: PositionStatus = PositionStatus.PENDING
    strategy: Optional[str] = None
    trader_address: Optional[str] = None
    origin_trade_id: Optional[str] = None
    quoted_price: Decimal = ZERO
    entry_price: Optional[Decimal] = None
    entry_time: Optional[datetime] = None
    created_at: datetime = field(default_factory=now_utc)
    signature: Optional[str] = None
    close_pending: bool = False
    close_reason: Optional[CloseReason] = None
    close_signature: Optional[str] = None
    exit_price: Optional[Decimal] = None
    closed_at: Optional[datetime] = None
    realized_pnl: Optional[Decimal] = None
    error: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return self.status in (PositionStatus.PENDING, PositionStatus.EXECUTED)

    def to_dict(self) -> Dict[str, Any]:
        def dec(value: Optional[Decimal]) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "id": self.id,
            "token_mint": self.token_mint,
            "origin": self.origin.value,
            "side": self.side.value,
            "amount_sol": str(self.amount_sol),
            "token_amount": str(self.token_amount),
            "status": self.status.value,
            "strategy": self.strategy,
            "trader_address": self.trader_address,
            "origin_trade_id": self.origin_trade_id,
            "quoted_price": str(self.quoted_price),
            "entry_price": dec(self.entry_price),
            "entry_time": _iso(self.entry_time),
            "created_at": self.created_at.isoformat(),
            "signature": self.signature,
            "close_reason": self.close_reason.value if self.close_reason else None,
            "close_signature": self.close_signature,
            "exit_price": dec(self.exit_price),
            "closed_at": _iso(self.closed_at),
            "realized_pnl": dec(self.realized_pnl),
            "error": self.error,
        }


# =============================================================================
# BUNDLES
# =============================================================================

@dataclass(frozen=True)
class BundleTransaction:
    """
    One trade's instructions queued for batched submission.

    instructions are opaque handles produced by the exchange adapter.
    """
    position_id: str
    instructions: tuple
    tx_id: str = field(default_factory=lambda: new_id("tx"))
    created_at: datetime = field(default_factory=now_utc)


@dataclass
class Bundle:
    """A batch of transactions submitted together with one priority fee."""
    priority_fee: int
    id: str = field(default_factory=lambda: new_id("bundle"))
    transactions: List[BundleTransaction] = field(default_factory=list)
    created_at: datetime = field(default_factory=now_utc)
    target_slot: Optional[int] = None
    status: BundleStatus = BundleStatus.PENDING
    signature: Optional[str] = None
    submitted_at: Optional[datetime] = None
    compute_unit_limit: int = 0

    @property
    def size(self) -> int:
        return len(self.transactions)

    @property
    def instruction_count(self) -> int:
        return sum(len(tx.instructions) for tx in self.transactions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "size": self.size,
            "tx_ids": [tx.tx_id for tx in self.transactions],
            "position_ids": [tx.position_id for tx in self.transactions],
            "created_at": self.created_at.isoformat(),
            "target_slot": self.target_slot,
            "priority_fee": self.priority_fee,
            "status": self.status.value,
            "signature": self.signature,
            "submitted_at": _iso(self.submitted_at),
        }


@dataclass(frozen=True)
class BundleResult:
    """Terminal outcome of one bundle. Append-only."""
    bundle_id: str
    status: BundleStatus
    tx_count: int
    priority_fee: int
    fee_paid_lamports: int = 0
    signature: Optional[str] = None
    error: Optional[str] = None
    tx_ids: tuple = ()
    position_ids: tuple = ()
    created_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    completed_at: datetime = field(default_factory=now_utc)

    @property
    def success(self) -> bool:
        return self.status is BundleStatus.CONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bundle_id": self.bundle_id,
            "status": self.status.value,
            "success": self.success,
            "tx_count": self.tx_count,
            "tx_ids": list(self.tx_ids),
            "position_ids": list(self.position_ids),
            "priority_fee": self.priority_fee,
            "fee_paid_lamports": self.fee_paid_lamports,
            "signature": self.signature,
            "error": self.error,
            "created_at": _iso(self.created_at),
            "submitted_at": _iso(self.submitted_at),
            "completed_at": self.completed_at.isoformat(),
        }
