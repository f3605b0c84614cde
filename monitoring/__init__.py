# PATH: monitoring/__init__.py
"""
Monitoring package for HEAVENBOT.

- metrics.py: MetricsRegistry + non-blocking MetricsChannel
- alerts.py: AlertManager with webhook delivery
- health.py: HealthMonitor history
"""

from monitoring.alerts import Alert, AlertManager
from monitoring.health import HealthCheckResult, HealthMonitor
from monitoring.metrics import (
    AlertEvent,
    MetricEvent,
    MetricsChannel,
    MetricsRegistry,
)

__all__ = [
    "Alert",
    "AlertEvent",
    "AlertManager",
    "HealthCheckResult",
    "HealthMonitor",
    "MetricEvent",
    "MetricsChannel",
    "MetricsRegistry",
]
