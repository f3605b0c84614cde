# PATH: core/exceptions.py
"""
Typed exceptions for HEAVENBOT.

Every error carries a stable ErrorCode and a details dict so per-tick loops
can log it with context and keep going. Only ConfigError is fatal, and only
at startup.
"""

from typing import Optional

from core.constants import ErrorCode


class EngineError(Exception):
    """Base exception for HEAVENBOT."""

    default_code = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def __str__(self):
        return f"[{self.code.value}] {self.message}"

    def to_dict(self) -> dict:
        return {
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(EngineError):
    """Bad input or configuration value."""
    default_code = ErrorCode.VALIDATION_FAILED


class ConfigError(ValidationError):
    """Configuration rejected at startup."""
    default_code = ErrorCode.CONFIG_INVALID


class InsufficientBalanceError(EngineError):
    """Wallet cannot cover the requested trade."""
    default_code = ErrorCode.INSUFFICIENT_BALANCE


class InvalidQuoteError(EngineError):
    """Quote cannot be computed from the given pool state."""
    default_code = ErrorCode.QUOTE_INVALID


class SlippageExceededError(InvalidQuoteError):
    """Executed output fell below the minimum acceptable output."""
    default_code = ErrorCode.SLIPPAGE_EXCEEDED


class TransactionError(EngineError):
    """Submission or confirmation failure."""

    default_code = ErrorCode.TX_SUBMIT_FAILED

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[dict] = None,
        signature: Optional[str] = None,
    ):
        super().__init__(message, code, details)
        self.signature = signature
        if signature:
            self.details.setdefault("signature", signature)


class NetworkError(EngineError):
    """Collaborator unreachable."""
    default_code = ErrorCode.NETWORK_ERROR


class RPCError(NetworkError):
    """JSON-RPC call failed on every endpoint."""
    default_code = ErrorCode.RPC_ERROR


class DatabaseError(EngineError):
    """Persistence failure."""
    default_code = ErrorCode.DATABASE_ERROR


class InvalidTransitionError(EngineError):
    """Lifecycle transition not allowed from the current state."""
    default_code = ErrorCode.INVALID_TRANSITION
