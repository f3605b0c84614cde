"""
tests/unit/test_chains.py - RPC failover, ledger parsing and signing.
"""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from chains.ledger import LedgerClient
from chains.providers import RPCProvider, RPCResponse
from chains.transactions import TransactionSigner, compute_budget_instructions
from core.constants import TxStatus
from core.exceptions import ConfigError, RPCError, TransactionError, ValidationError


def rpc_client(responses):
    """AsyncClient whose endpoints answer from a {url: (status, body)} map."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url).rstrip("/")
        calls.append((url, json.loads(request.content)))
        status, body = responses[url]
        return httpx.Response(status, json=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), calls


def rpc_ledger(result):
    provider = MagicMock()
    provider.call = AsyncMock(return_value=RPCResponse(result=result, latency_ms=1, endpoint_used="x"))
    provider.close = AsyncMock()
    return LedgerClient(provider), provider


class TestRPCProvider:
    @pytest.mark.asyncio
    async def test_failover_to_second_endpoint(self):
        client, calls = rpc_client({
            "https://a.example": (503, {}),
            "https://b.example": (200, {"jsonrpc": "2.0", "id": 1, "result": 42}),
        })
        provider = RPCProvider(["https://a.example", "https://b.example"], client=client)

        response = await provider.call("getSlot")
        assert response.result == 42
        assert response.endpoint_used == "https://b.example"
        assert [c[1]["method"] for c in calls] == ["getSlot", "getSlot"]

        stats = provider.get_stats_summary()
        assert stats["https://a.example"]["success_rate"] == 0.0
        assert stats["https://b.example"]["success_rate"] == 1.0

    @pytest.mark.asyncio
    async def test_rpc_error_carried_in_details(self):
        error = {"code": -32002, "message": "Transaction simulation failed"}
        client, _ = rpc_client({"https://a.example": (200, {"jsonrpc": "2.0", "id": 1, "error": error})})
        provider = RPCProvider(["https://a.example"], client=client)

        with pytest.raises(RPCError) as exc_info:
            await provider.call("sendTransaction", ["tx"])
        assert exc_info.value.details["rpc_error"] == error
        assert exc_info.value.details["endpoints_tried"] == 1

    @pytest.mark.asyncio
    async def test_no_endpoints(self):
        with pytest.raises(RPCError):
            await RPCProvider([]).call("getHealth")

    def test_api_key_placeholder(self, monkeypatch):
        monkeypatch.delenv("HELIUS_API_KEY", raising=False)
        urls = ["https://rpc.helius.xyz/?api-key=${HELIUS_API_KEY}", "https://api.example"]
        assert RPCProvider(urls).rpc_urls == ["https://api.example"]

        monkeypatch.setenv("HELIUS_API_KEY", "k1")
        assert RPCProvider(urls).rpc_urls[0] == "https://rpc.helius.xyz/?api-key=k1"


class TestLedgerClient:
    @pytest.mark.asyncio
    async def test_balance_in_sol(self):
        ledger, provider = rpc_ledger({"context": {"slot": 1}, "value": 2_500_000_000})
        assert await ledger.get_balance("W") == Decimal("2.5")
        assert provider.call.await_args.args[0] == "getBalance"

    @pytest.mark.asyncio
    async def test_blockhash(self):
        ledger, _ = rpc_ledger({"value": {"blockhash": "HASH", "lastValidBlockHeight": 9}})
        assert await ledger.get_latest_blockhash() == "HASH"

    @pytest.mark.asyncio
    async def test_missing_blockhash(self):
        ledger, _ = rpc_ledger({"value": {}})
        with pytest.raises(RPCError):
            await ledger.get_latest_blockhash()

    @pytest.mark.asyncio
    async def test_send_rejected_is_transaction_error(self):
        ledger, provider = rpc_ledger(None)
        provider.call.side_effect = RPCError("failed", details={"rpc_error": {"message": "blockhash not found"}})
        with pytest.raises(TransactionError) as exc_info:
            await ledger.send_transaction(b"raw")
        assert "blockhash not found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_send_unreachable_stays_rpc_error(self):
        ledger, provider = rpc_ledger(None)
        provider.call.side_effect = RPCError("all down", details={"rpc_error": None})
        with pytest.raises(RPCError):
            await ledger.send_transaction(b"raw")

    @pytest.mark.asyncio
    async def test_send_encodes_base64(self):
        ledger, provider = rpc_ledger("SIG")
        assert await ledger.send_transaction(b"\x01\x02", skip_preflight=True) == "SIG"
        params = provider.call.await_args.args[1]
        assert params[0] == "AQI="
        assert params[1]["skipPreflight"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entry,expected", [
        (None, TxStatus.PENDING),
        ({"slot": 5, "err": None, "confirmationStatus": "processed"}, TxStatus.PENDING),
        ({"slot": 5, "err": None, "confirmationStatus": "confirmed"}, TxStatus.OK),
        ({"slot": 5, "err": None, "confirmationStatus": "finalized"}, TxStatus.OK),
        ({"slot": 5, "err": {"InstructionError": [0, "Custom"]}, "confirmationStatus": "confirmed"}, TxStatus.ERR),
    ])
    async def test_status_mapping(self, entry, expected):
        ledger, _ = rpc_ledger({"context": {"slot": 6}, "value": [entry]})
        status = await ledger.get_transaction_status("SIG")
        assert status.status is expected

    @pytest.mark.asyncio
    async def test_prioritization_fees_newest_first(self):
        ledger, _ = rpc_ledger([
            {"slot": 10, "prioritizationFee": 100},
            {"slot": 12, "prioritizationFee": 300},
            {"slot": 11, "prioritizationFee": 200},
        ])
        assert await ledger.get_recent_prioritization_fees() == [300, 200, 100]

    @pytest.mark.asyncio
    async def test_ping(self):
        ledger, _ = rpc_ledger("ok")
        assert await ledger.ping()


class TestTransactionSigner:
    def test_compute_budget_prefix(self):
        assert len(compute_budget_instructions(200_000, 1000)) == 2
        with pytest.raises(ValidationError):
            compute_budget_instructions(0, 1000)

    def test_build_signs_with_budget_first(self):
        keypair = Keypair()
        signer = TransactionSigner(keypair)
        program = Pubkey.new_unique()
        ix = Instruction(program, b"\x01", [AccountMeta(keypair.pubkey(), True, True)])

        raw = signer.build([ix], str(Hash.default()), 200_000, 1000)
        tx = VersionedTransaction.from_bytes(raw)

        assert len(tx.message.instructions) == 3
        assert tx.message.account_keys[0] == keypair.pubkey()
        assert tx.message.account_keys[tx.message.instructions[2].program_id_index] == program
        assert signer.pubkey == str(keypair.pubkey())

    def test_build_without_instructions(self):
        with pytest.raises(ValidationError):
            TransactionSigner(Keypair()).build([], str(Hash.default()), 1, 1)

    def test_from_file(self, tmp_path):
        keypair = Keypair()
        path = tmp_path / "id.json"
        path.write_text(json.dumps(list(bytes(keypair))))
        assert TransactionSigner.from_file(path).pubkey == str(keypair.pubkey())

    def test_from_file_missing(self, tmp_path):
        with pytest.raises(ConfigError):
            TransactionSigner.from_file(tmp_path / "nope.json")

    def test_from_base58(self):
        keypair = Keypair()
        assert TransactionSigner.from_base58(str(keypair)).pubkey == str(keypair.pubkey())
