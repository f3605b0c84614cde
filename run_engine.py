#!/usr/bin/env python3
"""
run_engine.py - CLI entrypoint for HEAVENBOT.

Usage:
    heavenbot start --adapter my_exchange.adapter:HeavenAdapter
    heavenbot sniper --config config/engine.yaml --adapter pkg.mod:Adapter
    heavenbot copy-trade --adapter pkg.mod:Adapter --log-level DEBUG
    heavenbot bundler --adapter pkg.mod:Adapter --json-logs
    heavenbot status --config config/engine.yaml
"""

import asyncio
import importlib
import json
import signal
import sys
from pathlib import Path
from typing import Optional

import click

from chains.ledger import LedgerClient
from chains.providers import RPCProvider
from chains.transactions import TransactionSigner
from config.settings import EngineConfig, load_engine_config, validate_config
from core.exceptions import ConfigError, EngineError
from core.logging import get_logger, log_error, set_global_context, setup_logging
from data.journal import TradeJournal
from dex.adapter import ExchangeAdapter
from engine.supervisor import EngineSupervisor

logger = get_logger("heavenbot.cli")

VERSION = "0.3.0"

# Graceful shutdown flag
_shutdown_requested = False


def handle_shutdown(signum: int, frame: object) -> None:
    """Handle shutdown signals."""
    global _shutdown_requested
    _shutdown_requested = True
    logger.info("Shutdown requested", extra={"context": {"signal": signum}})


def load_adapter_class(path: str) -> type:
    """
    Resolve "package.module:ClassName" to an ExchangeAdapter subclass.

    Raises:
        ConfigError: Bad path, missing class, or not an ExchangeAdapter
    """
    module_name, _, class_name = path.partition(":")
    if not module_name or not class_name:
        raise ConfigError("Adapter must be given as module:Class", details={"adapter": path})
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import adapter module: {e}", details={"adapter": path}) from e
    cls = getattr(module, class_name, None)
    if not isinstance(cls, type) or not issubclass(cls, ExchangeAdapter):
        raise ConfigError("Adapter is not an ExchangeAdapter subclass", details={"adapter": path})
    return cls


def load_config(config_path: Optional[str]) -> EngineConfig:
    config = load_engine_config(Path(config_path) if config_path else None)
    validate_config(config)
    return config


async def run_supervisor(config: EngineConfig, adapter_path: str) -> None:
    adapter = load_adapter_class(adapter_path).from_settings(config.exchange)
    provider = RPCProvider(config.solana.rpc_urls, timeout_seconds=config.solana.timeout_seconds)
    ledger = LedgerClient(provider, commitment=config.solana.commitment)
    signer = TransactionSigner.from_file(config.solana.wallet_path)
    journal = TradeJournal(Path(config.storage.journal_dir))

    supervisor = EngineSupervisor(config, adapter, ledger, signer, journal=journal)
    set_global_context(wallet=signer.pubkey)
    await supervisor.start()

    try:
        while not _shutdown_requested:
            await asyncio.sleep(0.5)
    finally:
        await supervisor.stop()
        click.echo(json.dumps(await supervisor.get_status(), indent=2, default=str))


def run(
    config_path: Optional[str],
    adapter_path: str,
    log_level: str,
    json_logs: bool,
    mode: str,
    sniper: Optional[bool] = None,
    copy_trader: Optional[bool] = None,
    bundler: Optional[bool] = None,
) -> None:
    setup_logging(level=log_level, json_output=json_logs)
    set_global_context(service="heavenbot", version=VERSION, mode=mode)

    try:
        config = load_engine_config(Path(config_path) if config_path else None)
        # None keeps the config file value
        if sniper is not None:
            config.sniper.enabled = sniper
        if copy_trader is not None:
            config.copy_trader.enabled = copy_trader
        if bundler:
            config.bundler.enabled = True
            config.sniper.use_bundler = True
            config.copy_trader.use_bundler = True
        validate_config(config)
    except ConfigError as e:
        log_error(logger, e, "Invalid configuration")
        sys.exit(2)

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    logger.info("Starting HEAVENBOT", extra={"context": config.summary()})
    try:
        asyncio.run(run_supervisor(config, adapter_path))
    except EngineError as e:
        logger.error(f"Engine error: {e}", extra={"context": e.to_dict()}, exc_info=True)
        sys.exit(1)


# =============================================================================
# COMMANDS
# =============================================================================

def engine_options(func):
    func = click.option(
        "--json-logs/--no-json-logs",
        default=False,
        help="Use JSON log format",
    )(func)
    func = click.option(
        "--log-level",
        "-l",
        default="INFO",
        type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
        help="Log level",
    )(func)
    func = click.option(
        "--adapter",
        "-a",
        required=True,
        help="Exchange adapter class as module:Class",
    )(func)
    func = click.option(
        "--config",
        "-c",
        "config_path",
        default=None,
        type=click.Path(dir_okay=False),
        help="Engine YAML config (default: config/engine.yaml)",
    )(func)
    return func


@click.group()
@click.version_option(VERSION, prog_name="heavenbot")
def cli() -> None:
    """HEAVENBOT execution engine."""


@cli.command()
@engine_options
def start(config_path: Optional[str], adapter: str, log_level: str, json_logs: bool) -> None:
    """Run every subsystem enabled in the config."""
    run(config_path, adapter, log_level, json_logs, "all")


@cli.command()
@engine_options
def sniper(config_path: Optional[str], adapter: str, log_level: str, json_logs: bool) -> None:
    """Run the listing sniper only."""
    run(config_path, adapter, log_level, json_logs, "sniper", sniper=True, copy_trader=False)


@cli.command("copy-trade")
@engine_options
def copy_trade(config_path: Optional[str], adapter: str, log_level: str, json_logs: bool) -> None:
    """Run the copy trader only."""
    run(config_path, adapter, log_level, json_logs, "copy_trade", sniper=False, copy_trader=True)


@cli.command()
@engine_options
def bundler(config_path: Optional[str], adapter: str, log_level: str, json_logs: bool) -> None:
    """Run sniper and copy trader with bundled submission."""
    run(
        config_path, adapter, log_level, json_logs, "bundler",
        sniper=True, copy_trader=True, bundler=True,
    )


@cli.command()
@click.option("--config", "-c", "config_path", default=None, type=click.Path(dir_okay=False))
def status(config_path: Optional[str]) -> None:
    """Validate the config and print its summary."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(2)
    click.echo(json.dumps(config.summary(), indent=2))


if __name__ == "__main__":
    cli()
