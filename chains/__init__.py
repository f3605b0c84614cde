"""
chains - Ledger access for HEAVENBOT.

- providers.py: JSON-RPC transport with endpoint failover
- ledger.py: ledger adapter (balances, slots, submission, status, fees)
- transactions.py: compute budget + signing
"""

from chains.ledger import LedgerClient, SignatureStatus
from chains.providers import RPCProvider, RPCResponse, RPCStats
from chains.transactions import TransactionSigner, compute_budget_instructions

__all__ = [
    "LedgerClient",
    "RPCProvider",
    "RPCResponse",
    "RPCStats",
    "SignatureStatus",
    "TransactionSigner",
    "compute_budget_instructions",
]
