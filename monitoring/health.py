# PATH: monitoring/health.py
"""
Health check history for the supervisor's health loop.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from core.constants import HEALTH_HISTORY_LIMIT
from core.time import now_iso


@dataclass
class HealthCheckResult:
    """One run of the health loop."""
    healthy: bool
    checks: Dict[str, bool] = field(default_factory=dict)
    error: Optional[str] = None
    latency_ms: int = 0
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "checks": self.checks,
            "error": self.error,
            "latency_ms": self.latency_ms,
            "timestamp": self.timestamp,
        }


class HealthMonitor:
    """Bounded history of health checks plus running totals."""

    def __init__(self, history_limit: int = HEALTH_HISTORY_LIMIT):
        self.history: Deque[HealthCheckResult] = deque(maxlen=history_limit)
        self.passed = 0
        self.failed = 0
        self.consecutive_failures = 0

    def record(self, result: HealthCheckResult) -> None:
        self.history.append(result)
        if result.healthy:
            self.passed += 1
            self.consecutive_failures = 0
        else:
            self.failed += 1
            self.consecutive_failures += 1

    @property
    def latest(self) -> Optional[HealthCheckResult]:
        return self.history[-1] if self.history else None

    @property
    def success_rate(self) -> float:
        total = self.passed + self.failed
        if total == 0:
            return 0.0
        return self.passed / total

    def to_dict(self) -> Dict[str, Any]:
        latest = self.latest
        return {
            "healthy": latest.healthy if latest else None,
            "total_checks": self.passed + self.failed,
            "success_rate": round(self.success_rate, 3),
            "consecutive_failures": self.consecutive_failures,
            "last_check": latest.to_dict() if latest else None,
        }
