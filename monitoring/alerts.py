# PATH: monitoring/alerts.py
"""
Operator alerts with optional webhook delivery.

Alerts are kept in a bounded history. When a webhook URL is configured each
alert is POSTed as JSON; delivery failures are logged and counted, never
raised.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

import httpx

from core.constants import ALERT_HISTORY_LIMIT, AlertLevel
from core.logging import get_logger
from core.time import now_iso

logger = get_logger(__name__)


@dataclass(frozen=True)
class Alert:
    level: AlertLevel
    title: str
    message: str
    timestamp: str = field(default_factory=now_iso)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }


class AlertManager:
    """Stores alerts and forwards them to a webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 5.0,
        history_limit: int = ALERT_HISTORY_LIMIT,
    ):
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self._client = client
        self.history: Deque[Alert] = deque(maxlen=history_limit)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def deliver(self, alert: Alert) -> bool:
        """
        Record an alert and send it to the webhook if one is configured.

        Returns:
            False only when webhook delivery was attempted and failed
        """
        self.history.append(alert)
        logger.log(
            _LOG_LEVELS[alert.level],
            f"ALERT {alert.title}: {alert.message}",
            extra={"context": {"alert_level": alert.level.value, **alert.metadata}},
        )

        if not self.webhook_url:
            return True

        client = await self._get_client()
        try:
            resp = await client.post(self.webhook_url, json=alert.to_dict())
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                f"Alert webhook delivery failed: {e}",
                extra={"context": {"title": alert.title}},
            )
            return False
        return True

    def get_recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [a.to_dict() for a in list(self.history)[-limit:]]

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


_LOG_LEVELS = {
    AlertLevel.INFO: logging.INFO,
    AlertLevel.WARNING: logging.WARNING,
    AlertLevel.ERROR: logging.ERROR,
    AlertLevel.CRITICAL: logging.CRITICAL,
}
