# PATH: engine/supervisor.py
"""
Engine Supervisor: wires the subsystems together and runs their loops.

SUPERVISOR CONTRACT:
  - Subsystems are built only for enabled config sections; the position
    manager always exists because sniper and copy-trader share it.
  - start() spawns one asyncio task per enabled subsystem, plus the
    metrics drain task and (when monitoring is enabled) the health loop.
  - stop() clears every running flag. In-flight ticks finish; nothing is
    cancelled mid-submission. Then pending confirmations are awaited, the
    metrics queue is drained and HTTP clients are closed.
  - Health check: exchange ping + wallet SOL balance >= min_sol_balance.
    A failed check is recorded and raises a warning alert.
"""

import asyncio
from typing import Any, Dict, List, Optional

from chains.ledger import LedgerClient
from chains.transactions import TransactionSigner
from config.settings import EngineConfig
from core.constants import AlertLevel
from core.exceptions import EngineError
from core.logging import get_logger
from core.time import now_ms
from data.journal import TradeJournal
from dex.adapter import ExchangeAdapter
from execution.bundler import BundleEngine
from execution.executor import DirectExecutor
from execution.positions import PositionManager
from execution.submission import RetryPolicy, TransactionSubmitter
from monitoring.alerts import AlertManager
from monitoring.health import HealthCheckResult, HealthMonitor
from monitoring.metrics import MetricsChannel, MetricsRegistry
from strategy.scanner import OpportunityScanner
from strategy.tracker import CounterpartyTracker

logger = get_logger(__name__, subsystem="supervisor")


class EngineSupervisor:
    """
    Owns the engine's subsystems and their tasks.

    Usage:
        supervisor = EngineSupervisor(config, adapter, ledger, signer, journal)
        await supervisor.start()
        ...
        await supervisor.stop()
    """

    def __init__(
        self,
        config: EngineConfig,
        adapter: ExchangeAdapter,
        ledger: LedgerClient,
        signer: TransactionSigner,
        journal: Optional[TradeJournal] = None,
        metrics: Optional[MetricsChannel] = None,
        submitter: Optional[TransactionSubmitter] = None,
    ):
        self.config = config
        self.adapter = adapter
        self.ledger = ledger
        self.journal = journal
        self.metrics = metrics or MetricsChannel(
            MetricsRegistry(),
            AlertManager(config.monitoring.alert_webhook),
            maxsize=config.monitoring.metrics_queue_size,
        )
        self.health = HealthMonitor()

        self.submitter = submitter or TransactionSubmitter(
            ledger,
            signer,
            retry=RetryPolicy(max_attempts=config.solana.max_retries),
        )
        executor = DirectExecutor(
            self.submitter,
            config.exchange.compute_unit_limit,
            config.exchange.compute_unit_price,
        )

        self.bundler: Optional[BundleEngine] = None
        if config.bundler.enabled:
            self.bundler = BundleEngine(
                config.bundler,
                self.submitter,
                compute_unit_limit=config.exchange.compute_unit_limit,
                base_priority_fee=config.exchange.compute_unit_price,
                metrics=self.metrics,
                journal=journal,
            )

        self.positions = PositionManager(
            adapter,
            executor,
            ledger,
            config.trading,
            bundler=self.bundler,
            metrics=self.metrics,
            journal=journal,
            max_slippage=config.exchange.max_slippage,
        )

        self.scanner: Optional[OpportunityScanner] = None
        if config.sniper.enabled:
            self.scanner = OpportunityScanner(
                adapter, self.positions, config.sniper, metrics=self.metrics, journal=journal
            )

        self.tracker: Optional[CounterpartyTracker] = None
        if config.copy_trader.enabled:
            self.tracker = CounterpartyTracker(
                adapter, self.positions, config.copy_trader, metrics=self.metrics, journal=journal
            )

        self.running = False
        self.last_balance = None
        self._tasks: List[asyncio.Task] = []

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Spawn the subsystem tasks. Returns once they are scheduled."""
        if self.running:
            return
        self.running = True

        if self.tracker is not None:
            self.tracker.initialize()

        self._tasks.append(asyncio.create_task(self.metrics.run(), name="metrics"))
        if self.scanner is not None:
            self._tasks.append(asyncio.create_task(self.scanner.start(), name="sniper"))
        if self.tracker is not None:
            self._tasks.append(asyncio.create_task(self.tracker.start(), name="copy_trader"))
        if self.bundler is not None:
            self._tasks.append(asyncio.create_task(self.bundler.start(), name="bundler"))
        if self.config.monitoring.enabled:
            self._tasks.append(asyncio.create_task(self._health_loop(), name="health"))

        logger.info(
            "Engine started",
            extra={"context": {"tasks": [t.get_name() for t in self._tasks], **self.config.summary()}},
        )

    async def stop(self) -> None:
        """Graceful drain: finish in-flight ticks, then release resources."""
        if not self.running:
            return
        self.running = False
        for subsystem in (self.scanner, self.tracker, self.bundler):
            if subsystem is not None:
                subsystem.stop()

        loop_tasks = [t for t in self._tasks if t.get_name() != "metrics"]
        results = await asyncio.gather(*loop_tasks, return_exceptions=True)
        for task, result in zip(loop_tasks, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Task {task.get_name()} ended with error: {result}",
                    extra={"context": {"task": task.get_name()}},
                )

        if self.bundler is not None:
            await self.bundler.tick()
            await self.bundler.wait_for_confirmations()
            await self.bundler.monitor_active()

        await self.metrics.stop()
        metrics_tasks = [t for t in self._tasks if t.get_name() == "metrics"]
        await asyncio.gather(*metrics_tasks, return_exceptions=True)
        self._tasks.clear()

        await self.adapter.close()
        await self.ledger.close()
        logger.info("Engine stopped")

    async def wait(self) -> None:
        """Block until every spawned task has finished."""
        await asyncio.gather(*self._tasks, return_exceptions=True)

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def check_health(self) -> HealthCheckResult:
        start = now_ms()
        exchange_ok = False
        balance_ok = False
        error: Optional[str] = None

        try:
            exchange_ok = await self.adapter.ping()
            self.last_balance = await self.ledger.get_balance(self.submitter.wallet)
            balance_ok = self.last_balance >= self.config.monitoring.min_sol_balance
            self.metrics.gauge("sol_balance", self.last_balance)
        except EngineError as e:
            error = str(e)
        except (AttributeError, KeyError, ValueError, TypeError) as e:
            error = f"{type(e).__name__}: {e}"
            logger.error(f"Health check crashed: {error}", exc_info=True)

        result = HealthCheckResult(
            healthy=exchange_ok and balance_ok,
            checks={"exchange": exchange_ok, "balance": balance_ok},
            error=error,
            latency_ms=now_ms() - start,
        )
        self.health.record(result)
        self.metrics.record_health_check(result.healthy)

        if not result.healthy:
            self.metrics.alert(
                AlertLevel.WARNING,
                "Health check failed",
                error or ("Exchange unreachable" if not exchange_ok else "SOL balance below minimum"),
                sol_balance=str(self.last_balance),
                min_sol_balance=str(self.config.monitoring.min_sol_balance),
            )
        return result

    async def _health_loop(self) -> None:
        interval = self.config.monitoring.health_check_interval_secs
        while self.running:
            await self.check_health()
            if self.journal and self.config.storage.retention_days > 0:
                try:
                    self.journal.cleanup_old_records(self.config.storage.retention_days)
                except EngineError as e:
                    logger.warning(f"Journal cleanup failed: {e}")
            slept = 0.0
            # Sleep in short steps so stop() is not held up by a long interval
            while self.running and slept < interval:
                await asyncio.sleep(min(1.0, interval - slept))
                slept += 1.0

    # =========================================================================
    # STATUS
    # =========================================================================

    async def get_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "is_running": self.running,
            "sniper_enabled": self.scanner is not None,
            "copy_trader_enabled": self.tracker is not None,
            "bundler_enabled": self.bundler is not None,
            "positions": await self.positions.get_status(),
            "sol_balance": str(self.last_balance) if self.last_balance is not None else None,
            "health": self.health.to_dict(),
            "metrics": self.metrics.stats.to_dict(),
        }
        status["active_positions"] = status["positions"]["active_positions"]
        if self.scanner is not None:
            sniper = await self.scanner.get_status()
            status["sniper"] = sniper
            status["last_scan"] = sniper["last_scan"]
        if self.tracker is not None:
            copy_status = await self.tracker.get_status()
            status["copy_trader"] = copy_status
            status["tracked_traders"] = copy_status["tracked_traders"]
        if self.bundler is not None:
            bundler = await self.bundler.get_status()
            status["bundler"] = bundler
            status["pending_bundles"] = bundler["pending_bundles"]
            status["active_bundles"] = bundler["active_bundles"]
        if self.journal is not None:
            status["total_trades"] = self.journal.get_total_trades()
            status["daily_pnl"] = str(self.journal.get_daily_pnl())
        return status
