"""
Integration tests for BinanceTrader against the Binance futures testnet.

Read-only: these tests query balance, positions, precision and prices and
never place orders.

Prerequisites:
- Binance futures testnet credentials in .env or the environment:
  BINANCE_API_KEY=your_testnet_key
  BINANCE_API_SECRET=your_testnet_secret
- Active internet connection for testnet access

Run with:
    pytest -m integration tests/integration
"""

import os

import pytest
from dotenv import load_dotenv

from src.core.config import is_placeholder
from src.core.models import BalanceSnapshot
from src.execution.binance_trader import BinanceTrader


# Mark all tests in this module as integration tests
pytestmark = pytest.mark.integration


@pytest.fixture(scope="module")
def testnet_credentials():
    """Verify testnet credentials are available."""
    load_dotenv()
    api_key = os.getenv('BINANCE_API_KEY')
    api_secret = os.getenv('BINANCE_API_SECRET')

    if not api_key or not api_secret:
        pytest.skip(
            "Testnet credentials not found. "
            "Set BINANCE_API_KEY and BINANCE_API_SECRET in .env"
        )

    if is_placeholder(api_key) or is_placeholder(api_secret):
        pytest.skip(
            "Testnet credentials appear to be placeholder values. "
            "Please set actual Binance testnet API credentials."
        )

    return api_key, api_secret


@pytest.fixture(scope="module")
def trader(testnet_credentials):
    api_key, api_secret = testnet_credentials
    return BinanceTrader(api_key, api_secret, testnet=True)


def test_balance(trader):
    """Test balance query returns a normalized snapshot."""
    balance = trader.get_balance()

    assert isinstance(balance, BalanceSnapshot)
    assert balance.wallet_balance >= 0
    assert balance.available_balance >= 0


def test_balance_served_from_cache(trader):
    """Test a second balance read within the TTL returns the same snapshot."""
    first = trader.get_balance()
    second = trader.get_balance()

    assert first is second


def test_positions_are_non_zero(trader):
    """Test every returned position carries a positive quantity."""
    for position in trader.get_positions():
        assert position.quantity > 0
        assert position.side in ("long", "short")


def test_btcusdt_precision(trader):
    """Test BTCUSDT precision rules come from exchangeInfo filters."""
    spec = trader.precision.resolve("BTCUSDT")

    assert spec.tick_size > 0
    assert spec.step_size > 0


def test_market_price(trader):
    """Test ticker price is positive and rounds onto the tick grid."""
    price = trader.get_market_price("BTCUSDT")

    assert price > 0
    assert trader.precision.round_price("BTCUSDT", price) == pytest.approx(price, rel=1e-3)


def test_order_history(trader):
    """Test order history only contains filled orders."""
    history = trader.get_order_history(limit=10, symbol="BTCUSDT")

    assert all(entry.status == "FILLED" for entry in history)
