# PATH: core/logging.py
"""
Structured logging for HEAVENBOT.

Contextual fields are passed only via extra={"context": {...}}; never as
logger kwargs. Global context (run_id, mode) is merged into every record.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Global context that gets added to all log entries
_global_context: dict[str, Any] = {}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Output format:
    {
        "timestamp": "2026-01-04T12:00:00.000+00:00",
        "level": "INFO",
        "logger": "strategy.scanner",
        "message": "Listing matched",
        "context": {"token": "...", "strategy": "creator_token"}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = dict(_global_context)
        if getattr(record, "context", None):
            context.update(record.context)

        if record.exc_info:
            context["exception"] = self.formatException(record.exc_info)

        if context:
            log_entry["context"] = context

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        base = f"{timestamp} | {record.levelname:<8} | {record.name} | {record.getMessage()}"

        context = getattr(record, "context", None)
        if context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in list(context.items())[:4])
            if len(context) > 4:
                ctx_str += f", ... (+{len(context) - 4} more)"
            base += f" | {ctx_str}"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that merges default context into every entry."""

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra") or {}
        context = {**self.extra, **extra.get("context", {})}
        kwargs["extra"] = {"context": context}
        return msg, kwargs


def set_global_context(**kwargs: Any) -> None:
    """
    Set global context that gets added to all log entries.

    Example:
        set_global_context(run_id="run_20260104_120000", mode="live")
    """
    _global_context.update(kwargs)


def clear_global_context() -> None:
    """Clear global logging context."""
    _global_context.clear()


def get_global_context() -> dict[str, Any]:
    return dict(_global_context)


def get_logger(name: str, **context: Any) -> ContextAdapter:
    """
    Get a logger with optional default context.

    Args:
        name: Logger name (typically __name__)
        **context: Default context for all log entries from this logger

    Example:
        logger = get_logger(__name__, subsystem="bundler")
        logger.info("Bundle submitted", extra={"context": {"bundle_id": bid}})
    """
    return ContextAdapter(logging.getLogger(name), context)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """
    Setup logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON formatting on the console
        log_file: Optional file path; file output is always JSON
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Suppress noisy loggers
    for noisy in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def log_trade(
    logger: ContextAdapter,
    position_id: str,
    status: str,
    signature: Optional[str] = None,
    **extra: Any,
) -> None:
    """Log a trade lifecycle event with standard context."""
    logger.info(
        f"Trade: {position_id[:8]} | {status}",
        extra={
            "context": {
                "position_id": position_id,
                "status": status,
                "signature": signature,
                **extra,
            }
        },
    )


def log_error(
    logger: ContextAdapter,
    error: Exception,
    message: str,
    **extra: Any,
) -> None:
    """Log an error with its code and details."""
    code = getattr(getattr(error, "code", None), "value", type(error).__name__)
    logger.error(
        f"[{code}] {message}: {error}",
        extra={
            "context": {
                "error_code": code,
                **getattr(error, "details", {}),
                **extra,
            }
        },
    )
