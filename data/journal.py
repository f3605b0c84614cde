# PATH: data/journal.py
"""
Append-only JSONL trade journal.

One file per record kind under journal_dir:
    trades.jsonl, positions.jsonl, listings.jsonl, traders.jsonl,
    bundles.jsonl, bundle_results.jsonl

Every line is one JSON object with an "id" and a "recorded_at" stamp. A
record written twice under the same id (e.g. a position on open and on
close) keeps both lines on disk; the in-memory index holds the latest.

The journal is an audit trail and a warm-start source for tracked traders.
Engine state never depends on it: callers catch DatabaseError, log it and
carry on.
"""

import json
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from core.constants import TradeSide
from core.exceptions import DatabaseError
from core.logging import get_logger
from core.math import ZERO, safe_decimal
from core.models import Bundle, BundleResult, Listing, Position, TrackedTrader, new_id
from core.time import now_iso, now_utc, parse_timestamp

logger = get_logger(__name__)

RECORD_KINDS = ("trades", "positions", "listings", "traders", "bundles", "bundle_results")


class TradeJournal:
    """JSONL persistence with an in-memory index by record id."""

    def __init__(self, journal_dir: Path):
        self.journal_dir = Path(journal_dir)
        try:
            self.journal_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DatabaseError(
                f"Cannot create journal directory: {e}",
                details={"journal_dir": str(self.journal_dir)},
            ) from e

        self._index: Dict[str, Dict[str, Dict[str, Any]]] = {kind: {} for kind in RECORD_KINDS}
        for kind in RECORD_KINDS:
            for record in self._read(kind):
                self._index[kind][record["id"]] = record

        logger.info(
            "Journal opened",
            extra={"context": {"journal_dir": str(self.journal_dir), **self._counts()}},
        )

    # =========================================================================
    # FILE I/O
    # =========================================================================

    def _path(self, kind: str) -> Path:
        if kind not in self._index:
            raise DatabaseError(f"Unknown record kind: {kind}", details={"kind": kind})
        return self.journal_dir / f"{kind}.jsonl"

    def _read(self, kind: str) -> List[Dict[str, Any]]:
        path = self.journal_dir / f"{kind}.jsonl"
        if not path.exists():
            return []
        records = []
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        records.append(json.loads(line))
                    except json.JSONDecodeError as e:
                        raise DatabaseError(
                            f"Corrupt journal line in {path.name}:{line_no}",
                            details={"path": str(path), "line": line_no},
                        ) from e
        except OSError as e:
            raise DatabaseError(f"Cannot read {path}: {e}", details={"path": str(path)}) from e
        return records

    def _write(self, kind: str, records: Iterable[Dict[str, Any]], mode: str) -> None:
        path = self._path(kind)
        try:
            with open(path, mode, encoding="utf-8") as f:
                for record in records:
                    f.write(json.dumps(record) + "\n")
        except OSError as e:
            raise DatabaseError(f"Cannot write {path}: {e}", details={"path": str(path)}) from e

    def _append(self, kind: str, record_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        record = {**payload, "id": record_id, "recorded_at": now_iso()}
        self._write(kind, [record], "a")
        self._index[kind][record_id] = record
        return record

    def _counts(self) -> Dict[str, int]:
        return {kind: len(records) for kind, records in self._index.items()}

    # =========================================================================
    # RECORD
    # =========================================================================

    def record_trade(
        self,
        position: Position,
        side: TradeSide,
        action: str,
        signature: Optional[str] = None,
        price: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        """Record one executed leg (action: "open" or "close") of a position."""
        return self._append("trades", new_id("trade"), {
            "position_id": position.id,
            "token_mint": position.token_mint,
            "origin": position.origin.value,
            "side": side.value,
            "action": action,
            "amount_sol": str(position.amount_sol),
            "token_amount": str(position.token_amount),
            "price": str(price) if price is not None else None,
            "signature": signature,
        })

    def record_position(self, position: Position) -> Dict[str, Any]:
        return self._append("positions", position.id, position.to_dict())

    def record_listing(self, listing: Listing) -> Dict[str, Any]:
        return self._append("listings", listing.token_mint, listing.to_dict())

    def record_trader(self, trader: TrackedTrader) -> Dict[str, Any]:
        return self._append("traders", trader.address, trader.to_dict())

    def record_bundle(self, bundle: Bundle) -> Dict[str, Any]:
        return self._append("bundles", bundle.id, bundle.to_dict())

    def record_bundle_result(self, result: BundleResult) -> Dict[str, Any]:
        return self._append("bundle_results", result.bundle_id, result.to_dict())

    # =========================================================================
    # QUERY
    # =========================================================================

    def get(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        self._path(kind)
        return self._index[kind].get(record_id)

    def get_position(self, position_id: str) -> Optional[Dict[str, Any]]:
        return self.get("positions", position_id)

    def get_listing(self, token_mint: str) -> Optional[Dict[str, Any]]:
        return self.get("listings", token_mint)

    def get_trader(self, address: str) -> Optional[TrackedTrader]:
        record = self.get("traders", address)
        return TrackedTrader.from_dict(record) if record else None

    def get_bundle_result(self, bundle_id: str) -> Optional[Dict[str, Any]]:
        return self.get("bundle_results", bundle_id)

    def load_traders(self) -> List[TrackedTrader]:
        """Latest snapshot of every journaled trader."""
        return [TrackedTrader.from_dict(r) for r in self._index["traders"].values()]

    def get_total_trades(self) -> int:
        return len(self._index["trades"])

    def get_daily_pnl(self, day: Optional[date] = None) -> Decimal:
        """Realised PnL of positions closed on the given UTC day."""
        day = day or now_utc().date()
        total = ZERO
        for record in self._index["positions"].values():
            closed_at = record.get("closed_at")
            if not closed_at or record.get("realized_pnl") is None:
                continue
            if parse_timestamp(closed_at).date() == day:
                total += safe_decimal(record["realized_pnl"])
        return total

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def cleanup_old_records(self, days: int) -> int:
        """
        Drop records older than `days` from disk and the index.

        Returns:
            Number of lines removed across all files
        """
        cutoff = now_utc() - timedelta(days=days)
        removed = 0
        for kind in RECORD_KINDS:
            records = self._read(kind)
            kept = [r for r in records if parse_timestamp(r["recorded_at"]) >= cutoff]
            if len(kept) == len(records):
                continue
            removed += len(records) - len(kept)
            self._write(kind, kept, "w")
            self._index[kind] = {r["id"]: r for r in kept}

        if removed:
            logger.info(
                f"Journal cleanup removed {removed} records",
                extra={"context": {"retention_days": days}},
            )
        return removed

    def stats(self) -> Dict[str, Any]:
        return {
            "journal_dir": str(self.journal_dir),
            "records": self._counts(),
            "total_trades": self.get_total_trades(),
            "daily_pnl": str(self.get_daily_pnl()),
        }
