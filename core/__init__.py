"""
core - Core utilities and models for HEAVENBOT.

This package contains:
- models.py: Data models (Listing, Quote, Position, Bundle, BundleResult)
- constants.py: Enums and engine defaults
- exceptions.py: Typed exceptions with error codes
- math.py: Decimal helpers (no float money)
- time.py: UTC timestamps and ages
- locks.py: Readers-writer lock for shared working sets
- logging.py: Structured JSON logging
"""

from core.constants import (
    BundleStatus,
    CloseReason,
    ErrorCode,
    ListingCategory,
    PositionOrigin,
    PositionStatus,
    TradeSide,
    TxStatus,
)
from core.exceptions import (
    ConfigError,
    DatabaseError,
    EngineError,
    InsufficientBalanceError,
    InvalidQuoteError,
    InvalidTransitionError,
    NetworkError,
    RPCError,
    SlippageExceededError,
    TransactionError,
    ValidationError,
)
from core.locks import AsyncRWLock
from core.logging import get_logger, setup_logging
from core.models import (
    Bundle,
    BundleResult,
    BundleTransaction,
    FeeStructure,
    Listing,
    PoolState,
    Position,
    Quote,
    TrackedTrader,
    TraderTrade,
)

__all__ = [
    # Constants
    "BundleStatus",
    "CloseReason",
    "ErrorCode",
    "ListingCategory",
    "PositionOrigin",
    "PositionStatus",
    "TradeSide",
    "TxStatus",
    # Exceptions
    "ConfigError",
    "DatabaseError",
    "EngineError",
    "InsufficientBalanceError",
    "InvalidQuoteError",
    "InvalidTransitionError",
    "NetworkError",
    "RPCError",
    "SlippageExceededError",
    "TransactionError",
    "ValidationError",
    # Models
    "Bundle",
    "BundleResult",
    "BundleTransaction",
    "FeeStructure",
    "Listing",
    "PoolState",
    "Position",
    "Quote",
    "TrackedTrader",
    "TraderTrade",
    # Utilities
    "AsyncRWLock",
    "get_logger",
    "setup_logging",
]
