# PATH: execution/executor.py
"""
Direct (unbundled) trade execution.

DIRECT EXECUTION CONTRACT:
==========================
  execute(instructions, context) → ExecutionResult
    - submit with the shared retry policy
    - poll confirmation (30 x 1s by default)
    - success only when the ledger reports OK

  Outcomes:
    CONFIRMED   → success, signature set
    SUBMIT      → retries exhausted, no signature
    ONCHAIN     → landed with an error, signature set
    TIMEOUT     → still pending after the polling window, signature set
==========================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from core.constants import MAX_COMPUTE_UNIT_LIMIT, ErrorCode, TxStatus
from core.exceptions import TransactionError
from core.logging import get_logger
from core.time import now_ms
from execution.submission import TransactionSubmitter

logger = get_logger(__name__)


class ExecutionOutcome(str, Enum):
    CONFIRMED = "confirmed"
    SUBMIT_FAILED = "submit_failed"
    ONCHAIN_FAILED = "onchain_failed"
    TIMEOUT = "timeout"


@dataclass
class ExecutionResult:
    """Result of a direct execution."""
    outcome: ExecutionOutcome
    signature: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    latency_ms: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.outcome is ExecutionOutcome.CONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "is_success": self.is_success,
            "signature": self.signature,
            "error_message": self.error_message,
            "error_code": self.error_code.value if self.error_code else None,
            "latency_ms": self.latency_ms,
            "metadata": self.metadata,
        }


class DirectExecutor:
    """
    Sends one trade as its own transaction and waits for the outcome.

    Compute budget: compute_unit_limit per trade instruction (capped at the
    runtime maximum), priced at compute_unit_price micro-lamports.
    """

    def __init__(
        self,
        submitter: TransactionSubmitter,
        compute_unit_limit: int,
        compute_unit_price: int,
    ):
        self.submitter = submitter
        self.compute_unit_limit = compute_unit_limit
        self.compute_unit_price = compute_unit_price

    @property
    def wallet(self) -> str:
        return self.submitter.wallet

    async def execute(
        self,
        instructions: Sequence[Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult:
        context = context or {}
        start_ms = now_ms()
        unit_limit = min(self.compute_unit_limit * max(1, len(instructions)), MAX_COMPUTE_UNIT_LIMIT)

        try:
            signature = await self.submitter.submit(
                instructions, unit_limit, self.compute_unit_price, context
            )
        except TransactionError as e:
            return ExecutionResult(
                outcome=ExecutionOutcome.SUBMIT_FAILED,
                error_message=str(e),
                error_code=e.code,
                latency_ms=now_ms() - start_ms,
            )

        status = await self.submitter.confirm(signature, context)
        latency_ms = now_ms() - start_ms

        if status.status is TxStatus.OK:
            outcome, error, code = ExecutionOutcome.CONFIRMED, None, None
        elif status.status is TxStatus.ERR:
            outcome, error, code = ExecutionOutcome.ONCHAIN_FAILED, status.error, ErrorCode.TX_CONFIRM_FAILED
        else:
            outcome, error, code = ExecutionOutcome.TIMEOUT, "Confirmation timed out", ErrorCode.TX_CONFIRM_TIMEOUT

        logger.info(
            f"Direct execution {outcome.value}",
            extra={"context": {**context, "signature": signature, "latency_ms": latency_ms}},
        )
        return ExecutionResult(
            outcome=outcome,
            signature=signature,
            error_message=error,
            error_code=code,
            latency_ms=latency_ms,
            metadata={"slot": status.slot},
        )
