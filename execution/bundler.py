# PATH: execution/bundler.py
"""
Bundle Engine: batches trade transactions and submits them together.

BUNDLE CONTRACT:
================
Formation:
  - A transaction joins the most recently opened pending bundle while it
    has room (size < max_bundle_size); otherwise a new bundle is opened
    with a freshly computed priority fee.
  - Appending N transactions with max size k yields ceil(N / k) bundles,
    each with at most k transactions, in creation order.

Submission trigger (checked every tick, first match wins):
  FULL        → size >= max_bundle_size
  AGED        → age > max_bundle_time_ms
  TARGET_SLOT → target slot set and current slot >= target slot

Submission:
  - All transactions' instructions are concatenated behind one compute
    budget prefix: limit = compute_unit_limit * instruction count (capped
    at MAX_COMPUTE_UNIT_LIMIT), price = the bundle's priority fee.
  - Up to 3 attempts, 100ms * attempt backoff. Exhaustion → FAILED.
  - A bundle is submitted at most once and never requeued.

Confirmation:
  - One background task per submitted bundle polls status (30 x 1s).
  - OK → CONFIRMED, ERR → FAILED, still pending → TIMED_OUT.
  - Each terminal outcome appends one BundleResult; the history keeps the
    BUNDLE_RESULT_HISTORY most recent results.

Priority fee:
  max(base_fee * multiplier, most recent network fee), where a missing
  network sample counts as base_fee.

Locking:
  pending bundles, active bundles and results each have their own
  AsyncRWLock. Network calls run outside every lock.
================
"""

import asyncio
import math
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Sequence

from config.settings import BundlerSettings
from core.constants import (
    BUNDLE_RESULT_HISTORY,
    LAMPORTS_PER_SIGNATURE,
    MAX_COMPUTE_UNIT_LIMIT,
    BundleStatus,
    TxStatus,
)
from core.exceptions import EngineError, TransactionError, ValidationError
from core.locks import AsyncRWLock
from core.logging import get_logger
from core.math import safe_decimal
from core.models import Bundle, BundleResult, BundleTransaction
from core.time import age_ms, now_utc
from execution.state_machine import advance_bundle
from execution.submission import TransactionSubmitter

if TYPE_CHECKING:
    from data.journal import TradeJournal
    from monitoring.metrics import MetricsChannel

logger = get_logger(__name__, subsystem="bundler")

ResultListener = Callable[[BundleResult], Awaitable[None]]


class SubmitTrigger(str, Enum):
    FULL = "full"
    AGED = "aged"
    TARGET_SLOT = "target_slot"


# =============================================================================
# PURE RULES
# =============================================================================

def compute_priority_fee(base_fee: int, multiplier: Decimal, network_fees: Sequence[int]) -> int:
    """
    Priority fee in micro-lamports per compute unit.

    Args:
        base_fee: Configured compute unit price
        multiplier: Bias applied to base_fee
        network_fees: Recent network fees, most recent first

    Example:
        >>> compute_priority_fee(100, Decimal("1.5"), [200])
        200
        >>> compute_priority_fee(100, Decimal("1.5"), [50])
        150
    """
    floor = (Decimal(base_fee) * safe_decimal(multiplier)).to_integral_value(rounding=ROUND_DOWN)
    network = network_fees[0] if network_fees else 0
    return max(0, int(floor), int(network))


def submission_trigger(
    bundle: Bundle,
    max_bundle_size: int,
    max_bundle_time_ms: int,
    current_slot: Optional[int] = None,
    now=None,
) -> Optional[SubmitTrigger]:
    """First submission trigger that applies to bundle, or None."""
    if bundle.size >= max_bundle_size:
        return SubmitTrigger.FULL
    if age_ms(bundle.created_at, now) > max_bundle_time_ms:
        return SubmitTrigger.AGED
    if bundle.target_slot is not None and current_slot is not None and current_slot >= bundle.target_slot:
        return SubmitTrigger.TARGET_SLOT
    return None


def bundle_compute_limit(bundle: Bundle, per_instruction_limit: int) -> int:
    return min(per_instruction_limit * max(1, bundle.instruction_count), MAX_COMPUTE_UNIT_LIMIT)


def expected_bundle_count(transactions: int, max_bundle_size: int) -> int:
    return math.ceil(transactions / max_bundle_size) if transactions else 0


# =============================================================================
# ENGINE
# =============================================================================

class BundleEngine:
    """
    Accumulates BundleTransactions and drives bundles to a terminal outcome.

    Usage:
        engine = BundleEngine(settings, submitter, compute_unit_limit=200_000,
                              base_priority_fee=1_000_000)
        engine.add_result_listener(position_manager.on_bundle_result)
        await engine.add_transaction(tx)
        await engine.tick()
    """

    def __init__(
        self,
        settings: BundlerSettings,
        submitter: TransactionSubmitter,
        compute_unit_limit: int,
        base_priority_fee: int,
        metrics: Optional["MetricsChannel"] = None,
        journal: Optional["TradeJournal"] = None,
        fee_accounts: Optional[List[str]] = None,
        history_limit: int = BUNDLE_RESULT_HISTORY,
    ):
        self.settings = settings
        self.submitter = submitter
        self.compute_unit_limit = compute_unit_limit
        self.base_priority_fee = base_priority_fee
        self.metrics = metrics
        self.journal = journal
        self.fee_accounts = fee_accounts or []
        self.history_limit = history_limit

        self.running = False
        self._pending: List[Bundle] = []
        self._pending_lock = AsyncRWLock()
        self._active: Dict[str, Bundle] = {}
        self._active_lock = AsyncRWLock()
        self._results: List[BundleResult] = []
        self._results_lock = AsyncRWLock()
        self._listeners: List[ResultListener] = []
        self._confirm_tasks: set = set()

    def add_result_listener(self, listener: ResultListener) -> None:
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Formation
    # -------------------------------------------------------------------------

    def _append_if_room(self, tx: BundleTransaction) -> Optional[str]:
        """Caller holds the pending write lock."""
        if self._pending and self._pending[-1].size < self.settings.max_bundle_size:
            bundle = self._pending[-1]
            bundle.transactions.append(tx)
            return bundle.id
        return None

    async def add_transaction(self, tx: BundleTransaction) -> str:
        """
        Queue a transaction for batched submission.

        Returns:
            Id of the bundle the transaction joined

        Raises:
            ValidationError: Transaction has no instructions (when
                bundle_validation is on)
        """
        if self.settings.bundle_validation and not tx.instructions:
            raise ValidationError(
                "Bundle transaction has no instructions",
                details={"tx_id": tx.tx_id, "position_id": tx.position_id},
            )

        async with self._pending_lock.write():
            bundle_id = self._append_if_room(tx)
        if bundle_id:
            return bundle_id

        fee = await self.current_priority_fee()

        async with self._pending_lock.write():
            # Another caller may have opened a bundle while the fee was fetched
            bundle_id = self._append_if_room(tx)
            if bundle_id:
                return bundle_id
            bundle = Bundle(priority_fee=fee, target_slot=self.settings.target_block)
            bundle.transactions.append(tx)
            self._pending.append(bundle)

        logger.info(
            "Bundle opened",
            extra={"context": {"bundle_id": bundle.id, "priority_fee": fee}},
        )
        return bundle.id

    async def current_priority_fee(self) -> int:
        try:
            network_fees = await self.submitter.ledger.get_recent_prioritization_fees(self.fee_accounts)
        except EngineError as e:
            logger.warning(
                f"Prioritization fee lookup failed, using configured floor: {e}",
                extra={"context": {"error_code": e.code.value}},
            )
            network_fees = []
        return compute_priority_fee(
            self.base_priority_fee, self.settings.priority_fee_multiplier, network_fees
        )

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def _current_slot(self) -> Optional[int]:
        async with self._pending_lock.read():
            needs_slot = any(b.target_slot is not None for b in self._pending)
        if not needs_slot:
            return None
        try:
            return await self.submitter.ledger.get_slot()
        except EngineError as e:
            logger.warning(f"Slot lookup failed: {e}", extra={"context": {"error_code": e.code.value}})
            return None

    async def process_pending(self) -> List[Bundle]:
        """
        Submit every pending bundle whose trigger fired.

        Returns:
            Bundles taken off the pending list this tick
        """
        if not self.settings.auto_submit:
            return []

        current_slot = await self._current_slot()
        now = now_utc()
        async with self._pending_lock.write():
            ready = [
                b for b in self._pending
                if submission_trigger(
                    b, self.settings.max_bundle_size, self.settings.max_bundle_time_ms, current_slot, now
                )
            ]
            for bundle in ready:
                self._pending.remove(bundle)

        for bundle in ready:
            await self._submit(bundle)
        return ready

    async def flush(self) -> List[Bundle]:
        """Submit every pending bundle now, ignoring triggers."""
        async with self._pending_lock.write():
            ready, self._pending = self._pending, []
        for bundle in ready:
            await self._submit(bundle)
        return ready

    async def _submit(self, bundle: Bundle) -> None:
        context = {"bundle_id": bundle.id, "tx_count": bundle.size}
        instructions = [ix for tx in bundle.transactions for ix in tx.instructions]
        bundle.compute_unit_limit = bundle_compute_limit(bundle, self.compute_unit_limit)

        try:
            signature = await self.submitter.submit(
                instructions, bundle.compute_unit_limit, bundle.priority_fee, context
            )
        except TransactionError as e:
            advance_bundle(bundle, BundleStatus.FAILED, reason=str(e))
            await self._record_result(bundle, error=str(e))
            return
        except (AttributeError, KeyError, ValueError, TypeError) as e:
            error = f"{type(e).__name__}: {e}"
            logger.error(f"Bundle submission crashed: {error}", extra={"context": context}, exc_info=True)
            advance_bundle(bundle, BundleStatus.FAILED, reason=error)
            await self._record_result(bundle, error=error)
            return

        bundle.signature = signature
        bundle.submitted_at = now_utc()
        advance_bundle(bundle, BundleStatus.SUBMITTED)
        async with self._active_lock.write():
            self._active[bundle.id] = bundle
        if self.journal:
            try:
                self.journal.record_bundle(bundle)
            except EngineError as e:
                logger.warning(f"Journal write failed: {e}", extra={"context": context})

        logger.info(
            "Bundle submitted",
            extra={"context": {**context, "signature": signature, "priority_fee": bundle.priority_fee}},
        )

        task = asyncio.create_task(self._confirm(bundle))
        self._confirm_tasks.add(task)
        task.add_done_callback(self._confirm_tasks.discard)

    async def _confirm(self, bundle: Bundle) -> None:
        context = {"bundle_id": bundle.id}
        status = await self.submitter.confirm(bundle.signature, context)

        if status.status is TxStatus.OK:
            target, error = BundleStatus.CONFIRMED, None
        elif status.status is TxStatus.ERR:
            target, error = BundleStatus.FAILED, status.error or "Transaction failed on-chain"
        else:
            target, error = BundleStatus.TIMED_OUT, "Confirmation timed out"

        async with self._active_lock.write():
            advance_bundle(bundle, target, reason=error or "")

        await self._record_result(bundle, error=error)

    async def monitor_active(self) -> int:
        """Evict active bundles that reached a terminal state."""
        async with self._active_lock.write():
            done = [
                bid for bid, b in self._active.items()
                if b.status is not BundleStatus.SUBMITTED
            ]
            for bid in done:
                del self._active[bid]
        return len(done)

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def _fee_paid(self, bundle: Bundle) -> int:
        if bundle.status not in (BundleStatus.CONFIRMED, BundleStatus.FAILED) or not bundle.signature:
            return 0
        priority = math.ceil(bundle.compute_unit_limit * bundle.priority_fee / 1_000_000)
        return LAMPORTS_PER_SIGNATURE + priority

    async def _record_result(self, bundle: Bundle, error: Optional[str] = None) -> BundleResult:
        result = BundleResult(
            bundle_id=bundle.id,
            status=bundle.status,
            tx_count=bundle.size,
            priority_fee=bundle.priority_fee,
            fee_paid_lamports=self._fee_paid(bundle),
            signature=bundle.signature,
            error=error,
            tx_ids=tuple(tx.tx_id for tx in bundle.transactions),
            position_ids=tuple(tx.position_id for tx in bundle.transactions),
            created_at=bundle.created_at,
            submitted_at=bundle.submitted_at,
        )
        await self.record_result(result)

        log = logger.info if result.success else logger.warning
        log(
            f"Bundle {result.status.value}",
            extra={"context": {"bundle_id": bundle.id, "signature": bundle.signature, "error": error}},
        )

        if self.metrics:
            self.metrics.record_bundle(result.success, result.tx_count, result.fee_paid_lamports)
        if self.journal:
            try:
                self.journal.record_bundle_result(result)
            except EngineError as e:
                logger.warning(f"Journal write failed: {e}", extra={"context": {"bundle_id": bundle.id}})

        for listener in self._listeners:
            try:
                await listener(result)
            except EngineError as e:
                logger.error(
                    f"Bundle result listener failed: {e}",
                    extra={"context": {"bundle_id": bundle.id, "error_code": e.code.value}},
                )
            except (AttributeError, KeyError, ValueError, TypeError) as e:
                logger.error(
                    f"Bundle result listener crashed: {type(e).__name__}: {e}",
                    extra={"context": {"bundle_id": bundle.id}},
                    exc_info=True,
                )
        return result

    async def record_result(self, result: BundleResult) -> None:
        """Append to the bounded result history."""
        async with self._results_lock.write():
            self._results.append(result)
            self._trim_locked()

    def _trim_locked(self) -> None:
        overflow = len(self._results) - self.history_limit
        if overflow > 0:
            del self._results[:overflow]

    async def trim_history(self) -> None:
        async with self._results_lock.write():
            self._trim_locked()

    async def get_results(self, limit: Optional[int] = None) -> List[BundleResult]:
        async with self._results_lock.read():
            results = list(self._results)
        return results[-limit:] if limit else results

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    async def tick(self) -> None:
        await self.process_pending()
        await self.monitor_active()
        await self.trim_history()

    async def start(self) -> None:
        """Run ticks every max_bundle_time_ms until stop()."""
        self.running = True
        logger.info("Bundle engine started", extra={"context": {"max_bundle_size": self.settings.max_bundle_size}})
        interval = self.settings.max_bundle_time_ms / 1000
        while self.running:
            try:
                await self.tick()
            except EngineError as e:
                logger.error(f"Bundle tick failed: {e}", extra={"context": {"error_code": e.code.value}})
                if self.metrics:
                    self.metrics.increment("bundler_tick_errors")
            except Exception as e:
                logger.error(f"Unexpected bundle tick error: {type(e).__name__}: {e}", exc_info=True)
                if self.metrics:
                    self.metrics.increment("bundler_tick_errors")
            if self.running:
                await asyncio.sleep(interval)
        logger.info("Bundle engine stopped")

    def stop(self) -> None:
        self.running = False

    async def wait_for_confirmations(self) -> None:
        """Wait for every in-flight confirmation task."""
        if self._confirm_tasks:
            await asyncio.gather(*list(self._confirm_tasks))

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def pending_bundles(self) -> List[Bundle]:
        async with self._pending_lock.read():
            return list(self._pending)

    async def active_bundles(self) -> List[Bundle]:
        async with self._active_lock.read():
            return list(self._active.values())

    async def get_stats(self) -> Dict[str, Any]:
        results = await self.get_results()
        total = len(results)
        successful = sum(1 for r in results if r.success)
        return {
            "total_bundles": total,
            "successful_bundles": successful,
            "failed_bundles": total - successful,
            "success_rate": round(successful / total, 4) if total else 0.0,
            "average_bundle_size": round(sum(r.tx_count for r in results) / total, 2) if total else 0.0,
            "total_fees_paid_lamports": sum(r.fee_paid_lamports for r in results),
        }

    async def get_status(self) -> Dict[str, Any]:
        async with self._pending_lock.read():
            pending = len(self._pending)
            pending_txs = sum(b.size for b in self._pending)
        async with self._active_lock.read():
            active = len(self._active)
        async with self._results_lock.read():
            total_results = len(self._results)
        return {
            "is_running": self.running,
            "pending_bundles": pending,
            "pending_transactions": pending_txs,
            "active_bundles": active,
            "total_results": total_results,
        }
