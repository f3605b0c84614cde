"""
tests/unit/test_bundler.py - Tests for execution/bundler.py

Critical tests for:
- N transactions with max size k form ceil(N/k) bundles, in order
- Submission triggers (full, aged, target slot)
- Priority fee floor vs network sample
- Result history bounded to the most recent entries
- Submit -> confirm -> result flow, including retry exhaustion
- A bundle that cannot be built still records a FAILED result
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from chains.ledger import SignatureStatus
from config.settings import BundlerSettings
from core.constants import BundleStatus, PositionOrigin, PositionStatus, TradeSide, TxStatus
from core.exceptions import RPCError, ValidationError
from core.models import Bundle, BundleResult, BundleTransaction
from execution.bundler import (
    BundleEngine,
    SubmitTrigger,
    bundle_compute_limit,
    compute_priority_fee,
    expected_bundle_count,
    submission_trigger,
)
from execution.positions import PositionManager


def make_tx(position_id="pos_1", instructions=("ix",)):
    return BundleTransaction(position_id=position_id, instructions=tuple(instructions))


@pytest.fixture
def engine(bundler_settings, submitter):
    return BundleEngine(bundler_settings, submitter, compute_unit_limit=200_000, base_priority_fee=1000)


class TestPriorityFee:
    def test_network_fee_above_floor(self):
        assert compute_priority_fee(100, Decimal("1.5"), [200]) == 200

    def test_floor_above_network_fee(self):
        assert compute_priority_fee(100, Decimal("1.5"), [50]) == 150

    def test_uses_most_recent_sample(self):
        assert compute_priority_fee(100, Decimal("1"), [120, 900]) == 120

    def test_missing_sample_uses_floor(self):
        assert compute_priority_fee(100, Decimal("0.5"), []) == 50


class TestSubmissionTrigger:
    def test_full(self):
        bundle = Bundle(priority_fee=1, transactions=[make_tx(), make_tx(), make_tx()])
        assert submission_trigger(bundle, 3, 1000) is SubmitTrigger.FULL

    def test_aged(self):
        bundle = Bundle(priority_fee=1, transactions=[make_tx()])
        later = bundle.created_at + timedelta(milliseconds=1001)
        assert submission_trigger(bundle, 3, 1000, now=later) is SubmitTrigger.AGED

    def test_not_yet(self):
        bundle = Bundle(priority_fee=1, transactions=[make_tx()])
        later = bundle.created_at + timedelta(milliseconds=500)
        assert submission_trigger(bundle, 3, 1000, now=later) is None

    def test_target_slot(self):
        bundle = Bundle(priority_fee=1, transactions=[make_tx()], target_slot=50)
        now = bundle.created_at
        assert submission_trigger(bundle, 3, 1000, current_slot=49, now=now) is None
        assert submission_trigger(bundle, 3, 1000, current_slot=50, now=now) is SubmitTrigger.TARGET_SLOT


class TestComputeLimit:
    def test_scales_with_instructions(self):
        bundle = Bundle(priority_fee=1, transactions=[make_tx(instructions=("a", "b")), make_tx()])
        assert bundle_compute_limit(bundle, 200_000) == 600_000

    def test_capped(self):
        bundle = Bundle(priority_fee=1, transactions=[make_tx() for _ in range(10)])
        assert bundle_compute_limit(bundle, 200_000) == 1_400_000


class TestFormation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [1, 3, 4, 7, 9])
    async def test_ceil_bundles_in_order(self, engine, count):
        txs = [make_tx(f"pos_{i}") for i in range(count)]
        for tx in txs:
            await engine.add_transaction(tx)

        bundles = await engine.pending_bundles()
        assert len(bundles) == expected_bundle_count(count, 3)
        assert all(b.size <= 3 for b in bundles)
        flattened = [tx for b in bundles for tx in b.transactions]
        assert flattened == txs

    @pytest.mark.asyncio
    async def test_concurrent_adds_respect_size(self, engine):
        await asyncio.gather(*(engine.add_transaction(make_tx(f"pos_{i}")) for i in range(7)))
        bundles = await engine.pending_bundles()
        assert len(bundles) == 3
        assert sum(b.size for b in bundles) == 7

    @pytest.mark.asyncio
    async def test_new_bundle_gets_priority_fee(self, engine, ledger):
        ledger.get_recent_prioritization_fees.return_value = [5000]
        await engine.add_transaction(make_tx())
        bundle = (await engine.pending_bundles())[0]
        assert bundle.priority_fee == 5000

    @pytest.mark.asyncio
    async def test_fee_lookup_failure_uses_floor(self, engine, ledger):
        ledger.get_recent_prioritization_fees.side_effect = RPCError("down")
        await engine.add_transaction(make_tx())
        assert (await engine.pending_bundles())[0].priority_fee == 1500

    @pytest.mark.asyncio
    async def test_empty_instructions_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.add_transaction(make_tx(instructions=()))
        assert await engine.pending_bundles() == []


class TestSubmission:
    @pytest.mark.asyncio
    async def test_full_bundle_confirms(self, engine, ledger, signer):
        listener = AsyncMock()
        engine.add_result_listener(listener)
        for i in range(3):
            await engine.add_transaction(make_tx(f"pos_{i}"))

        submitted = await engine.process_pending()
        assert len(submitted) == 1
        await engine.wait_for_confirmations()

        # One transaction carrying every instruction
        instructions, _, limit, price = signer.build.call_args.args
        assert instructions == ["ix", "ix", "ix"]
        assert limit == 600_000
        assert price == 1500

        results = await engine.get_results()
        assert len(results) == 1
        result = results[0]
        assert result.status is BundleStatus.CONFIRMED
        assert result.position_ids == ("pos_0", "pos_1", "pos_2")
        assert result.fee_paid_lamports == 5000 + 900
        listener.assert_awaited_once_with(result)

        assert await engine.monitor_active() == 1
        assert await engine.active_bundles() == []

    @pytest.mark.asyncio
    async def test_partial_bundle_waits(self, engine):
        await engine.add_transaction(make_tx())
        assert await engine.process_pending() == []
        assert len(await engine.pending_bundles()) == 1

    @pytest.mark.asyncio
    async def test_on_chain_error_fails_bundle(self, engine, ledger):
        ledger.get_transaction_status.return_value = SignatureStatus(TxStatus.ERR, error="boom")
        await engine.add_transaction(make_tx())
        await engine.flush()
        await engine.wait_for_confirmations()

        result = (await engine.get_results())[0]
        assert result.status is BundleStatus.FAILED
        assert result.error == "boom"
        assert result.fee_paid_lamports > 0

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self, engine, ledger):
        ledger.get_transaction_status.return_value = SignatureStatus(TxStatus.PENDING)
        await engine.add_transaction(make_tx())
        await engine.flush()
        await engine.wait_for_confirmations()

        result = (await engine.get_results())[0]
        assert result.status is BundleStatus.TIMED_OUT
        assert result.fee_paid_lamports == 0

    @pytest.mark.asyncio
    async def test_retry_exhaustion_fails_without_requeue(self, engine, ledger, sleeps):
        ledger.send_transaction.side_effect = RPCError("rejected")
        await engine.add_transaction(make_tx())
        await engine.flush()

        result = (await engine.get_results())[0]
        assert result.status is BundleStatus.FAILED
        assert result.signature is None
        assert result.fee_paid_lamports == 0
        assert ledger.send_transaction.await_count == 3
        assert [c.args[0] for c in sleeps.await_args_list] == [0.1, 0.2]
        assert await engine.pending_bundles() == []
        assert await engine.active_bundles() == []

    @pytest.mark.asyncio
    async def test_auto_submit_off_waits_for_flush(self, submitter):
        settings = BundlerSettings(enabled=True, max_bundle_size=1, auto_submit=False)
        engine = BundleEngine(settings, submitter, compute_unit_limit=200_000, base_priority_fee=1000)
        await engine.add_transaction(make_tx())

        assert await engine.process_pending() == []
        assert len(await engine.flush()) == 1
        await engine.wait_for_confirmations()
        assert (await engine.get_stats())["successful_bundles"] == 1


class TestBuildFailure:
    @pytest.mark.asyncio
    async def test_build_error_fails_bundle(self, engine, ledger, signer):
        signer.build.side_effect = ValueError("bad instruction")
        await engine.add_transaction(make_tx())
        await engine.flush()

        results = await engine.get_results()
        assert len(results) == 1
        assert results[0].status is BundleStatus.FAILED
        assert "bad instruction" in results[0].error
        assert ledger.send_transaction.await_count == 0
        assert await engine.pending_bundles() == []
        assert await engine.active_bundles() == []

    @pytest.mark.asyncio
    async def test_crash_does_not_stop_other_bundles(self, engine, submitter):
        for i in range(4):
            await engine.add_transaction(make_tx(f"pos_{i}"))
        submitter.submit = AsyncMock(side_effect=[KeyError("recent_blockhash"), "SIG_2"])

        assert len(await engine.flush()) == 2
        await engine.wait_for_confirmations()

        statuses = [r.status for r in await engine.get_results()]
        assert statuses == [BundleStatus.FAILED, BundleStatus.CONFIRMED]
        assert await engine.pending_bundles() == []

    @pytest.mark.asyncio
    async def test_build_error_fails_positions(self, exchange, executor, ledger, signer, trading_settings, engine):
        manager = PositionManager(exchange, executor, ledger, trading_settings, bundler=engine)
        position = await manager.open_position(
            "MINT_A", PositionOrigin.SNIPE, TradeSide.BUY, Decimal("1"), use_bundler=True
        )
        assert position.status is PositionStatus.PENDING

        signer.build.side_effect = ValueError("bad instruction")
        await engine.flush()

        assert position.status is PositionStatus.FAILED
        assert (await engine.get_results())[0].position_ids == (position.id,)


class TestHistory:
    @pytest.mark.asyncio
    async def test_keeps_most_recent(self, engine):
        for i in range(1050):
            await engine.record_result(
                BundleResult(bundle_id=f"b{i}", status=BundleStatus.CONFIRMED, tx_count=1, priority_fee=1)
            )
        results = await engine.get_results()
        assert len(results) == 1000
        assert results[0].bundle_id == "b50"
        assert results[-1].bundle_id == "b1049"
        assert len(await engine.get_results(limit=5)) == 5

    @pytest.mark.asyncio
    async def test_stats(self, engine):
        await engine.record_result(
            BundleResult(bundle_id="a", status=BundleStatus.CONFIRMED, tx_count=2, priority_fee=1, fee_paid_lamports=10)
        )
        await engine.record_result(
            BundleResult(bundle_id="b", status=BundleStatus.FAILED, tx_count=4, priority_fee=1)
        )
        stats = await engine.get_stats()
        assert stats["total_bundles"] == 2
        assert stats["success_rate"] == 0.5
        assert stats["average_bundle_size"] == 3.0
        assert stats["total_fees_paid_lamports"] == 10

    @pytest.mark.asyncio
    async def test_status_counts(self, engine):
        await engine.add_transaction(make_tx())
        status = await engine.get_status()
        assert status["pending_bundles"] == 1
        assert status["pending_transactions"] == 1
        assert status["is_running"] is False
