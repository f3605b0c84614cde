# PATH: monitoring/metrics.py
"""
Metrics registry and the non-blocking channel that feeds it.

CHANNEL CONTRACT:
  - Engine code calls MetricsChannel.emit()/record_*(); these never await
    and never raise. A full queue drops the event and counts the drop.
  - One drain task (run()) applies events to the registry and hands alert
    events to the AlertManager, so a slow webhook only delays the drain.

REGISTRY CONTRACT:
  - counters: monotonically increasing ints
  - gauges: last value wins
  - histograms: the METRIC_SAMPLE_LIMIT most recent samples
  - every update stamps the metric's last-update time
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Deque, Dict, Optional, Union

from core.constants import AlertLevel, METRIC_SAMPLE_LIMIT, METRICS_PREFIX
from core.logging import get_logger
from core.time import now_iso, now_ms
from monitoring.alerts import Alert, AlertManager

logger = get_logger(__name__)

Number = Union[int, float, Decimal]


# =============================================================================
# REGISTRY
# =============================================================================

class MetricsRegistry:
    """In-process metric store with Prometheus text export."""

    def __init__(self, sample_limit: int = METRIC_SAMPLE_LIMIT):
        self.sample_limit = sample_limit
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.histograms: Dict[str, Deque[float]] = {}
        self.updated_at: Dict[str, int] = {}

    def increment(self, name: str, value: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + value
        self.updated_at[name] = now_ms()

    def set_gauge(self, name: str, value: Number) -> None:
        self.gauges[name] = float(value)
        self.updated_at[name] = now_ms()

    def observe(self, name: str, value: Number) -> None:
        samples = self.histograms.get(name)
        if samples is None:
            samples = deque(maxlen=self.sample_limit)
            self.histograms[name] = samples
        samples.append(float(value))
        self.updated_at[name] = now_ms()

    def counter(self, name: str) -> int:
        return self.counters.get(name, 0)

    def gauge(self, name: str) -> Optional[float]:
        return self.gauges.get(name)

    def histogram_summary(self, name: str) -> Dict[str, float]:
        samples = list(self.histograms.get(name, ()))
        if not samples:
            return {"count": 0, "sum": 0.0, "min": 0.0, "max": 0.0, "avg": 0.0}
        total = sum(samples)
        return {
            "count": len(samples),
            "sum": total,
            "min": min(samples),
            "max": max(samples),
            "avg": total / len(samples),
        }

    def snapshot(self) -> Dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "histograms": {name: self.histogram_summary(name) for name in self.histograms},
            "timestamp": now_iso(),
        }

    def export_prometheus(self) -> str:
        """Prometheus text exposition format."""
        lines = []
        for name, value in sorted(self.counters.items()):
            metric = f"{METRICS_PREFIX}{name}"
            lines.append(f"# TYPE {metric} counter")
            lines.append(f"{metric} {value}")
        for name, value in sorted(self.gauges.items()):
            metric = f"{METRICS_PREFIX}{name}"
            lines.append(f"# TYPE {metric} gauge")
            lines.append(f"{metric} {value}")
        for name in sorted(self.histograms):
            metric = f"{METRICS_PREFIX}{name}"
            summary = self.histogram_summary(name)
            lines.append(f"# TYPE {metric} summary")
            lines.append(f"{metric}_count {summary['count']}")
            lines.append(f"{metric}_sum {summary['sum']}")
        return "\n".join(lines) + ("\n" if lines else "")


# =============================================================================
# CHANNEL
# =============================================================================

@dataclass(frozen=True)
class MetricEvent:
    """One queued registry update."""
    kind: str  # counter | gauge | histogram
    name: str
    value: Number = 1


@dataclass(frozen=True)
class AlertEvent:
    alert: Alert


@dataclass
class ChannelStats:
    emitted: int = 0
    applied: int = 0
    dropped: int = 0
    alert_failures: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "emitted": self.emitted,
            "applied": self.applied,
            "dropped": self.dropped,
            "alert_failures": self.alert_failures,
        }


class MetricsChannel:
    """
    Fire-and-forget front end for metrics and alerts.

    Usage:
        channel = MetricsChannel(MetricsRegistry(), AlertManager(webhook))
        task = asyncio.create_task(channel.run())
        channel.record_snipe(success=True, amount_sol=Decimal("0.1"))
        ...
        await channel.stop()
    """

    def __init__(
        self,
        registry: Optional[MetricsRegistry] = None,
        alerts: Optional[AlertManager] = None,
        maxsize: int = 10_000,
    ):
        self.registry = registry or MetricsRegistry()
        self.alerts = alerts or AlertManager()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._running = False
        self.stats = ChannelStats()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # -------------------------------------------------------------------------
    # Producer side (never blocks)
    # -------------------------------------------------------------------------

    def emit(self, event: Union[MetricEvent, AlertEvent]) -> bool:
        """Queue an event; False if the queue was full."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            return False
        self.stats.emitted += 1
        return True

    def increment(self, name: str, value: int = 1) -> None:
        self.emit(MetricEvent("counter", name, value))

    def gauge(self, name: str, value: Number) -> None:
        self.emit(MetricEvent("gauge", name, value))

    def observe(self, name: str, value: Number) -> None:
        self.emit(MetricEvent("histogram", name, value))

    def alert(self, level: AlertLevel, title: str, message: str, **metadata: Any) -> None:
        self.emit(AlertEvent(Alert(level=level, title=title, message=message, metadata=metadata)))

    def record_snipe(self, success: bool, amount_sol: Number = 0) -> None:
        if success:
            self.increment("snipes_successful")
            self.observe("snipe_amount_sol", amount_sol)
        else:
            self.increment("snipes_failed")

    def record_copy_trade(self, success: bool, amount_sol: Number = 0) -> None:
        if success:
            self.increment("copy_trades_successful")
            self.observe("copy_trade_amount_sol", amount_sol)
        else:
            self.increment("copy_trades_failed")

    def record_bundle(self, success: bool, tx_count: int, fee_paid_lamports: int = 0) -> None:
        self.increment("bundles_successful" if success else "bundles_failed")
        self.observe("bundle_size", tx_count)
        if success:
            self.observe("bundle_fee_lamports", fee_paid_lamports)

    def record_position_closed(self, reason: str, pnl_sol: Number) -> None:
        self.increment(f"positions_closed_{reason}")
        self.observe("position_pnl_sol", pnl_sol)

    def record_health_check(self, healthy: bool) -> None:
        self.increment("health_checks_passed" if healthy else "health_checks_failed")

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    async def _apply(self, event: Union[MetricEvent, AlertEvent]) -> None:
        if isinstance(event, AlertEvent):
            delivered = await self.alerts.deliver(event.alert)
            if not delivered:
                self.stats.alert_failures += 1
        elif event.kind == "counter":
            self.registry.increment(event.name, int(event.value))
        elif event.kind == "gauge":
            self.registry.set_gauge(event.name, event.value)
        elif event.kind == "histogram":
            self.registry.observe(event.name, event.value)
        else:
            logger.warning(
                f"Unknown metric kind: {event.kind}",
                extra={"context": {"metric": event.name}},
            )
            return
        self.stats.applied += 1

    async def drain(self) -> int:
        """Apply everything currently queued. Returns the number applied."""
        count = 0
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._apply(event)
            finally:
                self._queue.task_done()
            count += 1
        return count

    async def run(self) -> None:
        """Drain loop; exits after stop() once the queue is empty."""
        self._running = True
        while self._running or not self._queue.empty():
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            try:
                await self._apply(event)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        self._running = False
        await self.drain()
        await self.alerts.close()
