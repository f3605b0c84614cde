"""
chains/transactions.py - Transaction assembly and signing.

Compute-budget instructions always come first, followed by the trade
instructions in the order given. The payer is the engine wallet.
"""

import json
from pathlib import Path
from typing import Sequence

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.transaction import VersionedTransaction

from core.exceptions import ConfigError, ValidationError


def compute_budget_instructions(unit_limit: int, unit_price: int) -> list[Instruction]:
    """
    Build the compute-budget prefix.

    Args:
        unit_limit: Compute units requested for the whole transaction
        unit_price: Priority fee in micro-lamports per compute unit
    """
    if unit_limit <= 0 or unit_price < 0:
        raise ValidationError(
            "Invalid compute budget",
            details={"unit_limit": unit_limit, "unit_price": unit_price},
        )
    return [set_compute_unit_limit(unit_limit), set_compute_unit_price(unit_price)]


class TransactionSigner:
    """Signs v0 transactions with the engine wallet."""

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @classmethod
    def from_file(cls, path: str | Path) -> "TransactionSigner":
        """Load a Solana CLI keypair file (JSON array of 64 bytes)."""
        keypair_path = Path(path).expanduser()
        try:
            secret = json.loads(keypair_path.read_text(encoding="utf-8"))
            return cls(Keypair.from_bytes(bytes(secret)))
        except (OSError, ValueError, TypeError) as e:
            raise ConfigError(
                f"Failed to load wallet: {e}",
                details={"wallet_path": str(keypair_path)},
            ) from e

    @classmethod
    def from_base58(cls, secret: str) -> "TransactionSigner":
        try:
            return cls(Keypair.from_base58_string(secret.strip()))
        except ValueError as e:
            raise ConfigError(f"Invalid base58 wallet secret: {e}") from e

    @property
    def pubkey(self) -> str:
        return str(self._keypair.pubkey())

    def build(
        self,
        instructions: Sequence[Instruction],
        blockhash: str,
        unit_limit: int,
        unit_price: int,
    ) -> bytes:
        """
        Compile, sign and serialize a transaction.

        Returns:
            Wire-format transaction bytes ready for send_transaction
        """
        if not instructions:
            raise ValidationError("Transaction has no instructions")

        ixs = compute_budget_instructions(unit_limit, unit_price) + list(instructions)
        message = MessageV0.try_compile(
            self._keypair.pubkey(), ixs, [], Hash.from_string(blockhash)
        )
        return bytes(VersionedTransaction(message, [self._keypair]))
