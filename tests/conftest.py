# PATH: tests/conftest.py
"""
Pytest configuration and fixtures for HEAVENBOT tests.

Collaborators at the ledger and exchange boundary are faked here:
- FakeExchange: in-memory ExchangeAdapter with settable pools and prices
- ledger: MagicMock with AsyncMock ledger methods (always OK by default)
- signer: MagicMock signer returning fixed bytes
"""

import sys
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from chains.ledger import SignatureStatus  # noqa: E402
from config.settings import BundlerSettings, CopyTraderSettings, SniperSettings, TradingSettings  # noqa: E402
from core.constants import TxStatus  # noqa: E402
from core.exceptions import InvalidQuoteError  # noqa: E402
from core.models import FeeStructure, PoolState  # noqa: E402
from dex.adapter import ExchangeAdapter  # noqa: E402
from execution.executor import DirectExecutor  # noqa: E402
from execution.submission import ConfirmationPolicy, RetryPolicy, TransactionSubmitter  # noqa: E402

WALLET = "Wa11et1111111111111111111111111111111111111"


def pytest_configure(config):
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


class FakeExchange(ExchangeAdapter):
    """In-memory exchange. Instructions are plain tuples."""

    def __init__(self):
        super().__init__(max_slippage=Decimal("0.05"))
        self.pools = {}
        self.prices = {}
        self.listings = []
        self.trader_trades = {}
        self.token_balances = {}
        self.instructions = []
        self.healthy = True

    def add_pool(self, mint, sol_reserve="1000", token_reserve="1000", fee_rate="0"):
        self.pools[mint] = PoolState(
            token_mint=mint,
            sol_reserve=Decimal(sol_reserve),
            token_reserve=Decimal(token_reserve),
            fees=FeeStructure(base_fee=Decimal(fee_rate)),
        )

    async def get_pool_state(self, token_mint):
        if token_mint not in self.pools:
            raise InvalidQuoteError("Unknown pool", details={"token_mint": token_mint})
        return self.pools[token_mint]

    async def get_token_price(self, token_mint):
        if token_mint in self.prices:
            return self.prices[token_mint]
        return await super().get_token_price(token_mint)

    async def create_buy_instruction(self, token_mint, sol_amount, min_token_amount, owner):
        ix = ("buy", token_mint, sol_amount, min_token_amount, owner)
        self.instructions.append(ix)
        return ix

    async def create_sell_instruction(self, token_mint, token_amount, min_sol_amount, owner):
        ix = ("sell", token_mint, token_amount, min_sol_amount, owner)
        self.instructions.append(ix)
        return ix

    async def scan_new_launches(self):
        return list(self.listings)

    async def get_trader_trades(self, address):
        return list(self.trader_trades.get(address, []))

    async def get_token_balance(self, owner, token_mint):
        return self.token_balances.get(token_mint, Decimal("0"))

    async def ping(self):
        return self.healthy


@pytest.fixture
def exchange():
    fake = FakeExchange()
    fake.add_pool("MINT_A")
    return fake


@pytest.fixture
def ledger():
    """Ledger client double: funded wallet, every signature lands OK."""
    mock = MagicMock()
    mock.get_balance = AsyncMock(return_value=Decimal("10"))
    mock.get_slot = AsyncMock(return_value=100)
    mock.get_latest_blockhash = AsyncMock(return_value="11111111111111111111111111111111")
    mock.send_transaction = AsyncMock(return_value="SIG_1")
    mock.get_transaction_status = AsyncMock(return_value=SignatureStatus(TxStatus.OK, slot=101))
    mock.get_recent_prioritization_fees = AsyncMock(return_value=[])
    mock.ping = AsyncMock(return_value=True)
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def signer():
    mock = MagicMock()
    mock.pubkey = WALLET
    mock.build = MagicMock(return_value=b"signed-tx")
    return mock


@pytest.fixture
def sleeps():
    """Records every sleep requested by retry/confirmation policies."""
    return AsyncMock()


@pytest.fixture
def submitter(ledger, signer, sleeps):
    return TransactionSubmitter(
        ledger,
        signer,
        retry=RetryPolicy(sleep=sleeps),
        confirmation=ConfirmationPolicy(max_polls=3, sleep=sleeps),
    )


@pytest.fixture
def executor(submitter):
    return DirectExecutor(submitter, compute_unit_limit=200_000, compute_unit_price=1_000_000)


@pytest.fixture
def trading_settings():
    return TradingSettings()


@pytest.fixture
def sniper_settings():
    return SniperSettings()


@pytest.fixture
def copy_settings():
    return CopyTraderSettings(enabled=True, min_trader_trades=2, min_trader_balance=Decimal("0.5"))


@pytest.fixture
def bundler_settings():
    return BundlerSettings(enabled=True, max_bundle_size=3, max_bundle_time_ms=1000)
