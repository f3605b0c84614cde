# PATH: config/settings.py
"""
Engine configuration.

One dataclass per YAML section. Defaults are the production defaults; a
YAML file only needs to name what it overrides. Environment variables
(loaded from .env) win over file values for secrets and endpoints:

    SOLANA_RPC_URL      -> solana.rpc_urls (single endpoint)
    WALLET_PATH         -> solana.wallet_path
    HEAVEN_PROGRAM_ID   -> exchange.program_id
    ALERT_WEBHOOK_URL   -> monitoring.alert_webhook

validate_config() is the startup gate: the engine never starts with a
config it rejects.
"""

import os
from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from core.exceptions import ConfigError
from core.math import safe_decimal

from config import CONFIG_DIR

DEFAULT_CONFIG_FILE = CONFIG_DIR / "engine.yaml"


@dataclass
class SolanaSettings:
    rpc_urls: list = field(default_factory=lambda: ["https://api.mainnet-beta.solana.com"])
    wallet_path: str = "~/.config/solana/id.json"
    commitment: str = "confirmed"
    max_retries: int = 3
    retry_delay_ms: int = 1000
    timeout_seconds: int = 10


@dataclass
class ExchangeSettings:
    program_id: str = ""
    api_url: str = ""
    compute_unit_limit: int = 200_000
    # Micro-lamports per compute unit
    compute_unit_price: int = 1_000_000
    max_slippage: Decimal = Decimal("0.05")


@dataclass
class SniperSettings:
    enabled: bool = True
    max_sol_per_trade: Decimal = Decimal("0.1")
    min_liquidity_sol: Decimal = Decimal("0.01")
    max_slippage: Decimal = Decimal("0.1")
    min_market_cap: Decimal = Decimal("0")
    max_market_cap: Decimal = Decimal("1000000")
    volume_threshold: Decimal = Decimal("1000")
    launch_detection_delay_ms: int = 100
    # Allocation is halved below this market cap
    risk_market_cap: Decimal = Decimal("1000")
    use_bundler: bool = False
    blacklisted_tokens: list = field(default_factory=list)
    whitelisted_tokens: list = field(default_factory=list)


@dataclass
class CopyTraderSettings:
    enabled: bool = False
    max_sol_per_trade: Decimal = Decimal("0.05")
    copy_percentage: Decimal = Decimal("0.1")
    max_traders: int = 10
    min_trader_balance: Decimal = Decimal("1.0")
    min_trader_profit: Decimal = Decimal("0.05")
    min_trader_trades: int = 10
    delay_ms: int = 500
    use_bundler: bool = False
    blacklisted_traders: list = field(default_factory=list)
    whitelisted_traders: list = field(default_factory=list)


@dataclass
class BundlerSettings:
    enabled: bool = False
    max_bundle_size: int = 10
    max_bundle_time_ms: int = 1000
    priority_fee_multiplier: Decimal = Decimal("1.5")
    target_block: Optional[int] = None
    auto_submit: bool = True
    bundle_validation: bool = True


@dataclass
class TradingSettings:
    max_concurrent_trades: int = 5
    trade_timeout_secs: int = 30
    profit_taking: Decimal = Decimal("0.2")
    stop_loss: Decimal = Decimal("0.1")
    max_daily_trades: int = 100
    max_daily_loss_sol: Decimal = Decimal("1.0")
    risk_per_trade: Decimal = Decimal("0.02")


@dataclass
class StorageSettings:
    journal_dir: str = "data/journal"
    retention_days: int = 30


@dataclass
class MonitoringSettings:
    enabled: bool = True
    health_check_interval_secs: int = 60
    alert_webhook: Optional[str] = None
    min_sol_balance: Decimal = Decimal("0.01")
    metrics_queue_size: int = 10_000


@dataclass
class EngineConfig:
    """Full engine configuration."""
    solana: SolanaSettings = field(default_factory=SolanaSettings)
    exchange: ExchangeSettings = field(default_factory=ExchangeSettings)
    sniper: SniperSettings = field(default_factory=SniperSettings)
    copy_trader: CopyTraderSettings = field(default_factory=CopyTraderSettings)
    bundler: BundlerSettings = field(default_factory=BundlerSettings)
    trading: TradingSettings = field(default_factory=TradingSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)

    def summary(self) -> dict[str, Any]:
        """Non-secret overview for status output."""
        return {
            "rpc_endpoints": len(self.solana.rpc_urls),
            "program_id": self.exchange.program_id,
            "sniper_enabled": self.sniper.enabled,
            "copy_trader_enabled": self.copy_trader.enabled,
            "bundler_enabled": self.bundler.enabled,
            "max_concurrent_trades": self.trading.max_concurrent_trades,
            "profit_taking": str(self.trading.profit_taking),
            "stop_loss": str(self.trading.stop_loss),
        }


# =============================================================================
# LOADING
# =============================================================================

def _coerce(default: Any, value: Any) -> Any:
    """Coerce a YAML value to the type of the field default."""
    if value is None:
        return default
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, Decimal):
        return safe_decimal(value, default)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, list):
        return list(value) if isinstance(value, (list, tuple)) else [value]
    return value


def _build_section(cls, data: Optional[dict]):
    section = cls()
    if not data:
        return section
    for f in fields(cls):
        if f.name in data:
            setattr(section, f.name, _coerce(getattr(section, f.name), data[f.name]))
    return section


def config_from_dict(data: dict[str, Any]) -> EngineConfig:
    """Build an EngineConfig from parsed YAML. Unknown keys are ignored."""
    data = data or {}
    return EngineConfig(
        solana=_build_section(SolanaSettings, data.get("solana")),
        exchange=_build_section(ExchangeSettings, data.get("exchange")),
        sniper=_build_section(SniperSettings, data.get("sniper")),
        copy_trader=_build_section(CopyTraderSettings, data.get("copy_trader")),
        bundler=_build_section(BundlerSettings, data.get("bundler")),
        trading=_build_section(TradingSettings, data.get("trading")),
        storage=_build_section(StorageSettings, data.get("storage")),
        monitoring=_build_section(MonitoringSettings, data.get("monitoring")),
    )


def apply_env_overrides(config: EngineConfig) -> EngineConfig:
    rpc_url = os.getenv("SOLANA_RPC_URL")
    if rpc_url:
        config.solana.rpc_urls = [rpc_url]
    wallet_path = os.getenv("WALLET_PATH")
    if wallet_path:
        config.solana.wallet_path = wallet_path
    program_id = os.getenv("HEAVEN_PROGRAM_ID")
    if program_id:
        config.exchange.program_id = program_id
    webhook = os.getenv("ALERT_WEBHOOK_URL")
    if webhook:
        config.monitoring.alert_webhook = webhook
    return config


def load_engine_config(config_path: Path | None = None) -> EngineConfig:
    """
    Load engine configuration from a YAML file and the environment.

    Args:
        config_path: Path to YAML file (default: config/engine.yaml)

    Returns:
        EngineConfig (not yet validated)

    Raises:
        ConfigError: If the file is missing or not a mapping
    """
    load_dotenv()
    path = Path(config_path) if config_path else DEFAULT_CONFIG_FILE

    if not path.exists():
        raise ConfigError(
            f"Config file not found: {path}",
            details={"path": str(path)},
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", details={"path": str(path)}) from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {path}", details={"path": str(path)})

    return apply_env_overrides(config_from_dict(data))


# =============================================================================
# VALIDATION
# =============================================================================

def _fraction_in(value: Decimal, low: Decimal, high: Decimal, *, low_open: bool) -> bool:
    if low_open:
        return low < value <= high
    return low <= value < high


def validate_config(config: EngineConfig) -> None:
    """
    Reject configurations the engine must never start with.

    Raises:
        ConfigError: On the first invalid setting, naming it in details
    """
    def fail(setting: str, message: str, value: Any) -> None:
        raise ConfigError(message, details={"setting": setting, "value": str(value)})

    zero, one = Decimal("0"), Decimal("1")

    if not config.solana.rpc_urls or not all(config.solana.rpc_urls):
        fail("solana.rpc_urls", "Solana RPC URL cannot be empty", config.solana.rpc_urls)
    if not config.exchange.program_id:
        fail("exchange.program_id", "Exchange program ID cannot be empty", config.exchange.program_id)
    if config.trading.max_concurrent_trades <= 0:
        fail(
            "trading.max_concurrent_trades",
            "Max concurrent trades must be greater than 0",
            config.trading.max_concurrent_trades,
        )
    if config.sniper.enabled and config.sniper.max_sol_per_trade <= 0:
        fail(
            "sniper.max_sol_per_trade",
            "Sniper max SOL per trade must be greater than 0",
            config.sniper.max_sol_per_trade,
        )
    if config.sniper.min_market_cap > config.sniper.max_market_cap:
        fail("sniper.min_market_cap", "Sniper market cap range is empty", config.sniper.min_market_cap)
    if config.copy_trader.enabled:
        if not _fraction_in(config.copy_trader.copy_percentage, zero, one, low_open=True):
            fail(
                "copy_trader.copy_percentage",
                "Copy percentage must be in (0, 1]",
                config.copy_trader.copy_percentage,
            )
        if config.copy_trader.max_traders <= 0:
            fail("copy_trader.max_traders", "Max traders must be greater than 0", config.copy_trader.max_traders)
    if config.bundler.max_bundle_size <= 0:
        fail("bundler.max_bundle_size", "Max bundle size must be greater than 0", config.bundler.max_bundle_size)
    if config.bundler.max_bundle_time_ms <= 0:
        fail("bundler.max_bundle_time_ms", "Max bundle time must be greater than 0", config.bundler.max_bundle_time_ms)
    if config.bundler.priority_fee_multiplier < 0:
        fail(
            "bundler.priority_fee_multiplier",
            "Priority fee multiplier cannot be negative",
            config.bundler.priority_fee_multiplier,
        )
    for name in ("profit_taking", "stop_loss"):
        value = getattr(config.trading, name)
        if not _fraction_in(value, zero, one, low_open=True):
            fail(f"trading.{name}", f"{name} must be in (0, 1]", value)
    for name, value in (
        ("exchange.max_slippage", config.exchange.max_slippage),
        ("sniper.max_slippage", config.sniper.max_slippage),
    ):
        if not _fraction_in(value, zero, one, low_open=False):
            fail(name, "Slippage must be in [0, 1)", value)
    if config.exchange.compute_unit_limit <= 0:
        fail(
            "exchange.compute_unit_limit",
            "Compute unit limit must be greater than 0",
            config.exchange.compute_unit_limit,
        )
