# PATH: tests/integration/test_engine_flow.py
"""
Integration tests for the engine supervisor.

Real subsystems, journal on disk; the exchange and ledger are faked at
the boundary (see conftest).
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from config.settings import EngineConfig
from core.constants import ListingCategory, PositionOrigin, PositionStatus
from core.exceptions import RPCError
from core.models import Listing
from core.time import now_utc
from data.journal import TradeJournal
from engine.supervisor import EngineSupervisor

pytestmark = pytest.mark.integration


def fresh_listing(mint="MINT_A"):
    return Listing(
        token_mint=mint,
        launch_time=now_utc() + timedelta(minutes=1),
        market_cap=Decimal("50000"),
        liquidity=Decimal("5"),
        volume_24h=Decimal("2000"),
        category=ListingCategory.COMMUNITY,
    )


@pytest.fixture
def config():
    cfg = EngineConfig()
    cfg.monitoring.enabled = False
    cfg.sniper.launch_detection_delay_ms = 10
    return cfg


@pytest.fixture
def journal(tmp_path):
    return TradeJournal(tmp_path / "journal")


def build(config, exchange, ledger, signer, submitter, journal):
    return EngineSupervisor(config, exchange, ledger, signer, journal=journal, submitter=submitter)


class TestWiring:
    def test_only_enabled_subsystems_built(self, config, exchange, ledger, signer, submitter, journal):
        supervisor = build(config, exchange, ledger, signer, submitter, journal)
        assert supervisor.scanner is not None
        assert supervisor.tracker is None
        assert supervisor.bundler is None

    def test_all_subsystems(self, config, exchange, ledger, signer, submitter, journal):
        config.copy_trader.enabled = True
        config.bundler.enabled = True
        supervisor = build(config, exchange, ledger, signer, submitter, journal)
        assert supervisor.tracker is not None
        assert supervisor.bundler is not None
        assert supervisor.positions.bundler is supervisor.bundler


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, config, exchange, ledger, signer, submitter, journal):
        supervisor = build(config, exchange, ledger, signer, submitter, journal)
        result = await supervisor.check_health()

        assert result.healthy
        assert result.checks == {"exchange": True, "balance": True}
        assert supervisor.last_balance == Decimal("10")

    @pytest.mark.asyncio
    async def test_low_balance_alerts(self, config, exchange, ledger, signer, submitter, journal):
        ledger.get_balance.return_value = Decimal("0.001")
        supervisor = build(config, exchange, ledger, signer, submitter, journal)
        result = await supervisor.check_health()
        await supervisor.metrics.drain()

        assert not result.healthy
        assert result.checks["balance"] is False
        assert supervisor.metrics.alerts.get_recent()[0]["title"] == "Health check failed"
        assert supervisor.metrics.registry.counter("health_checks_failed") == 1

    @pytest.mark.asyncio
    async def test_ledger_error_recorded(self, config, exchange, ledger, signer, submitter, journal):
        ledger.get_balance.side_effect = RPCError("down")
        supervisor = build(config, exchange, ledger, signer, submitter, journal)
        result = await supervisor.check_health()

        assert not result.healthy
        assert "down" in result.error
        assert supervisor.health.to_dict()["consecutive_failures"] == 1


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_start_snipe_stop(self, config, exchange, ledger, signer, submitter, journal):
        exchange.listings = [fresh_listing()]
        supervisor = build(config, exchange, ledger, signer, submitter, journal)

        await supervisor.start()
        assert supervisor.running
        for _ in range(50):
            if await supervisor.positions.count_live(PositionOrigin.SNIPE):
                break
            await asyncio.sleep(0.01)
        await supervisor.stop()

        status = await supervisor.get_status()
        assert status["is_running"] is False
        assert status["active_positions"] == 1
        assert status["sniper"]["listings_matched"] == 1
        assert status["total_trades"] == 1

        position = (await supervisor.positions.get_positions())[0]
        assert journal.get_position(position.id)["status"] == PositionStatus.EXECUTED.value
        assert journal.get_listing("MINT_A") is not None
        ledger.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, config, exchange, ledger, signer, submitter, journal):
        supervisor = build(config, exchange, ledger, signer, submitter, journal)
        await supervisor.stop()
        ledger.close.assert_not_awaited()


class TestBundledSnipe:
    @pytest.mark.asyncio
    async def test_snipe_executes_through_bundle(self, config, exchange, ledger, signer, submitter, journal):
        config.bundler.enabled = True
        config.bundler.auto_submit = False
        config.sniper.use_bundler = True
        exchange.listings = [fresh_listing()]
        supervisor = build(config, exchange, ledger, signer, submitter, journal)

        opened = await supervisor.scanner.tick()
        assert opened[0].status is PositionStatus.PENDING
        assert len(await supervisor.bundler.pending_bundles()) == 1

        await supervisor.bundler.flush()
        await supervisor.bundler.wait_for_confirmations()

        position = await supervisor.positions.get_position(opened[0].id)
        assert position.status is PositionStatus.EXECUTED
        stats = await supervisor.bundler.get_stats()
        assert stats["successful_bundles"] == 1

    @pytest.mark.asyncio
    async def test_stop_submits_aged_bundle(self, config, exchange, ledger, signer, submitter, journal):
        config.bundler.enabled = True
        config.sniper.use_bundler = True
        exchange.listings = [fresh_listing()]
        supervisor = build(config, exchange, ledger, signer, submitter, journal)

        opened = await supervisor.scanner.tick()
        bundle = (await supervisor.bundler.pending_bundles())[0]
        bundle.created_at -= timedelta(hours=1)

        # Loops not spawned; stop() only runs the drain
        supervisor.running = True
        await supervisor.stop()

        results = await supervisor.bundler.get_results()
        assert len(results) == 1
        assert results[0].position_ids == (opened[0].id,)
        assert await supervisor.bundler.pending_bundles() == []
        assert await supervisor.bundler.active_bundles() == []
        position = await supervisor.positions.get_position(opened[0].id)
        assert position.status is PositionStatus.EXECUTED
