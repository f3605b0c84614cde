# PATH: execution/submission.py
"""
Transaction submission with bounded retry, and confirmation polling.

RETRY CONTRACT:
  - Up to max_attempts sends; after failed attempt N (N < max_attempts)
    sleep backoff_ms * N. Defaults: 3 attempts, 100ms/200ms backoff.
  - Each attempt rebuilds the transaction (fresh blockhash).
  - Exhaustion raises TransactionError(TX_SUBMIT_FAILED); the caller
    records it as terminal. Nothing is requeued.

CONFIRMATION CONTRACT:
  - Poll signature status up to max_polls times, interval_s apart.
  - OK and ERR are returned as soon as seen; still PENDING after the last
    poll means timeout. The submitted transaction is not rolled back.
  - Status lookups that raise are logged and count as a pending poll.

sleep is injectable so tests can observe the backoff schedule.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from chains.ledger import LedgerClient, SignatureStatus
from chains.transactions import TransactionSigner
from core.constants import (
    CONFIRM_MAX_POLLS,
    CONFIRM_POLL_INTERVAL_S,
    SUBMIT_BACKOFF_MS,
    SUBMIT_MAX_ATTEMPTS,
    ErrorCode,
    TxStatus,
)
from core.exceptions import EngineError, TransactionError
from core.logging import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class RetryPolicy:
    max_attempts: int = SUBMIT_MAX_ATTEMPTS
    backoff_ms: int = SUBMIT_BACKOFF_MS
    sleep: Sleep = field(default=asyncio.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Backoff after failed attempt number `attempt`, in seconds."""
        return self.backoff_ms * attempt / 1000


@dataclass
class ConfirmationPolicy:
    max_polls: int = CONFIRM_MAX_POLLS
    interval_s: float = CONFIRM_POLL_INTERVAL_S
    sleep: Sleep = field(default=asyncio.sleep, repr=False)


async def submit_with_retry(
    send: Callable[[], Awaitable[str]],
    policy: RetryPolicy,
    context: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Call send() until it returns a signature or attempts run out.

    Args:
        send: Builds, signs and submits one attempt; returns the signature
        policy: Attempt count, backoff and sleep function
        context: Extra log context (bundle_id, position_id, ...)

    Returns:
        Signature of the successful attempt

    Raises:
        TransactionError: All attempts failed
    """
    context = context or {}
    last_error: Optional[EngineError] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await send()
        except EngineError as e:
            last_error = e
            logger.warning(
                f"Submission attempt {attempt}/{policy.max_attempts} failed: {e}",
                extra={"context": {**context, "attempt": attempt, "error_code": e.code.value}},
            )
            if attempt < policy.max_attempts:
                await policy.sleep(policy.delay_for(attempt))

    raise TransactionError(
        f"Submission failed after {policy.max_attempts} attempts: {last_error}",
        code=ErrorCode.TX_SUBMIT_FAILED,
        details={**context, "attempts": policy.max_attempts},
    ) from last_error


async def await_confirmation(
    ledger: LedgerClient,
    signature: str,
    policy: ConfirmationPolicy,
    context: Optional[Dict[str, Any]] = None,
) -> SignatureStatus:
    """
    Poll until the signature is OK or ERR, or polls run out.

    Returns:
        Final SignatureStatus; PENDING means the polling window expired
    """
    context = context or {}
    for poll in range(1, policy.max_polls + 1):
        try:
            status = await ledger.get_transaction_status(signature)
            if status.status is not TxStatus.PENDING:
                return status
        except (EngineError, AttributeError, KeyError, ValueError, TypeError) as e:
            logger.debug(
                f"Status poll {poll} failed: {e}",
                extra={"context": {**context, "signature": signature}},
            )
        if poll < policy.max_polls:
            await policy.sleep(policy.interval_s)

    return SignatureStatus(TxStatus.PENDING)


class TransactionSubmitter:
    """
    Builds, signs and sends transactions for the engine wallet.

    Shared by the direct executor and the bundle engine so both paths use
    the same retry and confirmation policy.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        signer: TransactionSigner,
        retry: Optional[RetryPolicy] = None,
        confirmation: Optional[ConfirmationPolicy] = None,
        skip_preflight: bool = False,
    ):
        self.ledger = ledger
        self.signer = signer
        self.retry = retry or RetryPolicy()
        self.confirmation = confirmation or ConfirmationPolicy()
        self.skip_preflight = skip_preflight

    @property
    def wallet(self) -> str:
        return self.signer.pubkey

    async def _send_once(self, instructions: Sequence[Any], unit_limit: int, unit_price: int) -> str:
        blockhash = await self.ledger.get_latest_blockhash()
        try:
            raw = self.signer.build(instructions, blockhash, unit_limit, unit_price)
        except (AttributeError, KeyError, ValueError, TypeError) as e:
            raise TransactionError(
                f"Transaction build failed: {type(e).__name__}: {e}",
                code=ErrorCode.TX_SUBMIT_FAILED,
                details={"blockhash": blockhash, "instructions": len(instructions)},
            ) from e
        return await self.ledger.send_transaction(raw, skip_preflight=self.skip_preflight)

    async def submit(
        self,
        instructions: Sequence[Any],
        unit_limit: int,
        unit_price: int,
        context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Submit with retry; returns the signature."""
        return await submit_with_retry(
            lambda: self._send_once(instructions, unit_limit, unit_price),
            self.retry,
            context,
        )

    async def confirm(self, signature: str, context: Optional[Dict[str, Any]] = None) -> SignatureStatus:
        return await await_confirmation(self.ledger, signature, self.confirmation, context)
