"""
chains/ledger.py - Ledger adapter over Solana JSON-RPC.

CONTRACT (what the engine relies on):
- get_balance(account) -> SOL as Decimal
- get_slot() -> current slot height
- get_latest_blockhash() -> base58 blockhash string
- send_transaction(raw, skip_preflight) -> signature; node rejection raises
  TransactionError, unreachable nodes raise RPCError
- get_transaction_status(signature) -> SignatureStatus (PENDING | OK | ERR)
- get_recent_prioritization_fees(accounts) -> micro-lamport fees, newest
  slot first
"""

import base64
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from core.constants import ErrorCode, TxStatus
from core.exceptions import RPCError, TransactionError
from core.logging import get_logger
from core.math import lamports_to_sol
from chains.providers import RPCProvider

logger = get_logger(__name__)

CONFIRMED_LEVELS = ("confirmed", "finalized")


@dataclass(frozen=True)
class SignatureStatus:
    """Ledger view of one submitted signature."""
    status: TxStatus
    error: Optional[str] = None
    slot: Optional[int] = None


class LedgerClient:
    """
    Ledger adapter backed by an RPCProvider.

    Usage:
        ledger = LedgerClient(RPCProvider(config.solana.rpc_urls))
        balance = await ledger.get_balance(wallet_pubkey)
    """

    def __init__(self, provider: RPCProvider, commitment: str = "confirmed"):
        self.provider = provider
        self.commitment = commitment

    async def close(self) -> None:
        await self.provider.close()

    async def ping(self) -> bool:
        """True when the node reports itself healthy."""
        response = await self.provider.call("getHealth")
        return response.result == "ok"

    async def get_balance(self, account: str) -> Decimal:
        response = await self.provider.call(
            "getBalance", [account, {"commitment": self.commitment}]
        )
        return lamports_to_sol(int(_value(response.result)))

    async def get_slot(self) -> int:
        response = await self.provider.call("getSlot", [{"commitment": self.commitment}])
        return int(response.result)

    async def get_latest_blockhash(self) -> str:
        response = await self.provider.call(
            "getLatestBlockhash", [{"commitment": self.commitment}]
        )
        value = _value(response.result)
        blockhash = value.get("blockhash") if isinstance(value, dict) else None
        if not isinstance(blockhash, str) or not blockhash:
            raise RPCError(
                "Missing blockhash in RPC response",
                details={"method": "getLatestBlockhash", "result": str(response.result)[:200]},
            )
        return blockhash

    async def send_transaction(self, raw: bytes, skip_preflight: bool = False) -> str:
        """
        Submit a signed, serialized transaction.

        Args:
            raw: Serialized transaction bytes
            skip_preflight: Skip node-side simulation

        Returns:
            Transaction signature (base58)

        Raises:
            TransactionError: Node rejected the transaction
            RPCError: No endpoint reachable
        """
        params = [
            base64.b64encode(raw).decode("ascii"),
            {
                "encoding": "base64",
                "skipPreflight": skip_preflight,
                "preflightCommitment": self.commitment,
                "maxRetries": 0,
            },
        ]
        try:
            response = await self.provider.call("sendTransaction", params)
        except RPCError as e:
            rpc_error = e.details.get("rpc_error")
            if rpc_error:
                logger.warning(
                    "Transaction rejected by node",
                    extra={"context": {"rpc_error": rpc_error}},
                )
                raise TransactionError(
                    f"Transaction rejected: {rpc_error.get('message', rpc_error)}",
                    code=ErrorCode.TX_SUBMIT_FAILED,
                    details={"rpc_error": rpc_error},
                ) from e
            raise
        return str(response.result)

    async def get_transaction_status(self, signature: str) -> SignatureStatus:
        response = await self.provider.call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        statuses = _value(response.result) or []
        entry = statuses[0] if statuses else None
        if not entry:
            return SignatureStatus(TxStatus.PENDING)
        if entry.get("err") is not None:
            return SignatureStatus(TxStatus.ERR, error=str(entry["err"]), slot=entry.get("slot"))
        if entry.get("confirmationStatus") in CONFIRMED_LEVELS:
            return SignatureStatus(TxStatus.OK, slot=entry.get("slot"))
        return SignatureStatus(TxStatus.PENDING, slot=entry.get("slot"))

    async def get_recent_prioritization_fees(
        self, accounts: Optional[list[str]] = None
    ) -> list[int]:
        response = await self.provider.call(
            "getRecentPrioritizationFees", [accounts or []]
        )
        entries = [e for e in (response.result or []) if isinstance(e, dict)]
        entries.sort(key=lambda e: e.get("slot", 0), reverse=True)
        return [max(0, int(e.get("prioritizationFee", 0))) for e in entries]


def _value(result: Any) -> Any:
    """Unwrap the {"context": ..., "value": ...} envelope when present."""
    if isinstance(result, dict) and "value" in result:
        return result["value"]
    return result
