# PATH: core/constants.py
"""
Constants for HEAVENBOT.

Contains enums, defaults, and protocol constants shared by every subsystem.
Lifecycle enums (PositionStatus, BundleStatus) live here so that models,
state machines and persistence agree on the same string values.
"""

from decimal import Decimal
from enum import Enum
from typing import Final

# =============================================================================
# LEDGER UNITS
# =============================================================================

LAMPORTS_PER_SOL: Final[int] = 1_000_000_000

# Base fee charged per transaction signature
LAMPORTS_PER_SIGNATURE: Final[int] = 5000

# Hard cap the runtime enforces on a single transaction's compute budget
MAX_COMPUTE_UNIT_LIMIT: Final[int] = 1_400_000

# =============================================================================
# ENGINE DEFAULTS
# =============================================================================

# Bounded retention windows
BUNDLE_RESULT_HISTORY: Final[int] = 1000
POSITION_ARCHIVE_SIZE: Final[int] = 1000
METRIC_SAMPLE_LIMIT: Final[int] = 1000
ALERT_HISTORY_LIMIT: Final[int] = 1000
HEALTH_HISTORY_LIMIT: Final[int] = 100

# Submission retry: attempt N sleeps SUBMIT_BACKOFF_MS * N before retrying
SUBMIT_MAX_ATTEMPTS: Final[int] = 3
SUBMIT_BACKOFF_MS: Final[int] = 100

# Confirmation polling
CONFIRM_MAX_POLLS: Final[int] = 30
CONFIRM_POLL_INTERVAL_S: Final[float] = 1.0

# Opportunity strategy thresholds
HIGH_VOLUME_FACTOR: Final[Decimal] = Decimal("10")
LOW_MARKET_CAP_SOL: Final[Decimal] = Decimal("10000")
RISK_ALLOCATION_FACTOR: Final[Decimal] = Decimal("0.5")

# Fee tier boundary (market cap below this pays protocol fee only)
FEE_TIER_MARKET_CAP: Final[Decimal] = Decimal("100000")

METRICS_PREFIX: Final[str] = "heavenbot_"


class ListingCategory(str, Enum):
    """Who launched the pool."""
    CREATOR = "creator"
    COMMUNITY = "community"


class TradeSide(str, Enum):
    """Direction of a trade relative to SOL."""
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "TradeSide":
        return TradeSide.SELL if self is TradeSide.BUY else TradeSide.BUY


class PositionOrigin(str, Enum):
    """Which subsystem opened a position."""
    SNIPE = "snipe"
    COPY = "copy"


class PositionStatus(str, Enum):
    """Position lifecycle states."""
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"
    CLOSED = "closed"


class BundleStatus(str, Enum):
    """Bundle lifecycle states."""
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class TxStatus(str, Enum):
    """Ledger-reported status of a submitted signature."""
    PENDING = "pending"
    OK = "ok"
    ERR = "err"


class CloseReason(str, Enum):
    """Why a position was closed."""
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    ORIGIN_CLOSED = "origin_closed"
    MANUAL = "manual"


class AlertLevel(str, Enum):
    """Alert severity."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(str, Enum):
    """Stable machine-readable error codes."""
    # Validation
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CONFIG_INVALID = "CONFIG_INVALID"
    # Balance
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    # Quotes
    QUOTE_INVALID = "QUOTE_INVALID"
    SLIPPAGE_EXCEEDED = "SLIPPAGE_EXCEEDED"
    # Transactions
    TX_SUBMIT_FAILED = "TX_SUBMIT_FAILED"
    TX_CONFIRM_FAILED = "TX_CONFIRM_FAILED"
    TX_CONFIRM_TIMEOUT = "TX_CONFIRM_TIMEOUT"
    # Infra
    NETWORK_ERROR = "NETWORK_ERROR"
    RPC_ERROR = "RPC_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    # State machines
    INVALID_TRANSITION = "INVALID_TRANSITION"
    UNKNOWN = "UNKNOWN"
