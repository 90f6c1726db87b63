"""
Unit tests for HyperliquidTrader with mocked SDK clients.
"""

from unittest.mock import MagicMock

import pytest
from eth_account import Account
from hyperliquid.utils.error import ClientError

from src.core.exceptions import ConfigurationError, NotFoundError, VenueRejection
from src.execution.hyperliquid_trader import HyperliquidTrader, to_coin, to_symbol


PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

OK_FILLED = {
    "status": "ok",
    "response": {"type": "order", "data": {"statuses": [{"filled": {"oid": 77, "totalSz": "0.01"}}]}},
}


@pytest.fixture
def info():
    info = MagicMock()
    info.meta.return_value = {"universe": [
        {"name": "BTC", "szDecimals": 5},
        {"name": "ETH", "szDecimals": 4},
    ]}
    info.all_mids.return_value = {"BTC": "67250.12", "ETH": "2500.5"}
    info.frontend_open_orders.return_value = []
    return info


@pytest.fixture
def exchange():
    exchange = MagicMock()
    exchange.update_leverage.return_value = {"status": "ok"}
    exchange.order.return_value = OK_FILLED
    exchange.cancel.return_value = {
        "status": "ok", "response": {"type": "cancel", "data": {"statuses": ["success"]}}
    }
    return exchange


@pytest.fixture
def trader(info, exchange):
    return HyperliquidTrader(
        PRIVATE_KEY, testnet=True, info=info, exchange=exchange, sleep=lambda s: None
    )


class TestSymbols:

    def test_to_coin(self):
        assert to_coin("BTCUSDT") == "BTC"
        assert to_coin("ETH") == "ETH"
        assert to_coin("USDT") == "USDT"

    def test_to_symbol(self):
        assert to_symbol("SOL") == "SOLUSDT"


class TestConstruction:

    def test_wallet_address_derived(self, trader):
        assert trader.wallet_address == Account.from_key(PRIVATE_KEY).address

    def test_explicit_wallet_address(self, info, exchange):
        trader = HyperliquidTrader(
            PRIVATE_KEY, wallet_address="0xabc", info=info, exchange=exchange
        )
        assert trader.wallet_address == "0xabc"

    def test_invalid_key(self):
        with pytest.raises(ConfigurationError, match="Invalid Hyperliquid private key"):
            HyperliquidTrader("nonsense")


class TestAccountState:

    def test_balance(self, trader, info):
        info.user_state.return_value = {
            "marginSummary": {"accountValue": "1000", "totalMarginUsed": "200"},
            "assetPositions": [{"position": {"coin": "BTC", "szi": "0.1", "unrealizedPnl": "50"}}],
        }

        balance = trader.get_balance()

        assert balance.wallet_balance == 950.0
        assert balance.available_balance == 800.0
        assert balance.unrealized_profit == 50.0

    def test_positions(self, trader, info):
        info.user_state.return_value = {
            "marginSummary": {},
            "assetPositions": [
                {"position": {"coin": "BTC", "szi": "-0.5", "entryPx": "42000",
                              "positionValue": "20500", "unrealizedPnl": "500",
                              "leverage": {"type": "isolated", "value": 5},
                              "liquidationPx": "50000"}},
                {"position": {"coin": "ETH", "szi": "0.0", "positionValue": "0"}},
            ],
        }

        positions = trader.get_positions()

        assert len(positions) == 1
        pos = positions[0]
        assert pos.symbol == "BTCUSDT"
        assert pos.side == "short"
        assert pos.quantity == 0.5
        assert pos.mark_price == 41000.0
        assert pos.leverage == 5

    def test_precision_from_meta(self, trader):
        spec = trader.precision.resolve("BTCUSDT")

        assert spec.quantity_precision == 5
        assert spec.price_precision == 1
        assert spec.sig_figs == 5


class TestOrders:

    def test_open_long_ioc_limit(self, trader, exchange):
        result = trader.open_long("BTCUSDT", quantity=0.01, leverage=5)

        exchange.update_leverage.assert_called_once_with(5, "BTC", is_cross=False)
        args, kwargs = exchange.order.call_args
        assert args[0] == "BTC"
        assert args[1] is True
        assert args[2] == 0.01
        assert args[3] == 67923.0  # 1% through the mid, 5 significant figures
        assert args[4] == {"limit": {"tif": "Ioc"}}
        assert kwargs == {"reduce_only": False}
        assert result.order_id == "77"
        assert result.status == "FILLED"

    def test_stop_loss_trigger(self, trader, exchange):
        exchange.order.return_value = {
            "status": "ok",
            "response": {"data": {"statuses": [{"resting": {"oid": 88}}]}},
        }

        result = trader.set_stop_loss("BTCUSDT", "long", 0.01, 60001.23)

        args, kwargs = exchange.order.call_args
        assert args[1] is False
        assert args[3] == 60001.0
        assert args[4] == {"trigger": {"triggerPx": 60001.0, "isMarket": True, "tpsl": "sl"}}
        assert kwargs == {"reduce_only": True}
        assert result.status == "NEW"

    def test_take_profit_tpsl(self, trader, exchange):
        trader.set_take_profit("BTCUSDT", "short", 0.01, 60000)

        args, _ = exchange.order.call_args
        assert args[4]["trigger"]["tpsl"] == "tp"

    def test_order_status_error(self, trader, exchange):
        exchange.order.return_value = {
            "status": "ok",
            "response": {"data": {"statuses": [{"error": "Insufficient margin"}]}},
        }

        with pytest.raises(VenueRejection, match="Insufficient margin"):
            trader.close_short("BTCUSDT", quantity=0.01)

    def test_exchange_err_status(self, trader, exchange):
        exchange.update_leverage.return_value = {"status": "err", "response": "bad leverage"}

        with pytest.raises(VenueRejection, match="bad leverage"):
            trader.set_leverage("BTCUSDT", 50)

    def test_client_error_not_retried(self, trader, exchange):
        exchange.order.side_effect = ClientError(429, None, "rate limited", {})

        with pytest.raises(VenueRejection, match="rate limited") as exc:
            trader.close_long("BTCUSDT", quantity=0.01)

        assert exc.value.status_code == 429
        assert exchange.order.call_count == 1

    def test_missing_mid(self, trader):
        with pytest.raises(NotFoundError, match="DOGEUSDT"):
            trader.get_market_price("DOGEUSDT")

    def test_cancel_stop_orders_by_type(self, trader, info, exchange):
        info.frontend_open_orders.return_value = [
            {"coin": "BTC", "oid": 1, "orderType": "Limit", "side": "B", "sz": "0.01"},
            {"coin": "BTC", "oid": 2, "orderType": "Stop Market", "side": "A",
             "triggerPx": "60000"},
            {"coin": "BTC", "oid": 3, "orderType": "Take Profit Market", "side": "A"},
            {"coin": "ETH", "oid": 4, "orderType": "Stop Market", "side": "A"},
        ]

        report = trader.cancel_stop_orders("BTCUSDT")

        assert report.cancelled == ["2", "3"]
        assert [c.args for c in exchange.cancel.call_args_list] == [("BTC", 2), ("BTC", 3)]

    def test_cancel_error_status(self, trader, exchange):
        exchange.cancel.return_value = {
            "status": "ok",
            "response": {"data": {"statuses": [{"error": "Order was never placed"}]}},
        }

        with pytest.raises(VenueRejection, match="never placed"):
            trader._cancel_order("BTCUSDT", "5")

    def test_cancel_all_orders(self, trader, info, exchange):
        info.frontend_open_orders.return_value = [
            {"coin": "BTC", "oid": 1, "orderType": "Limit", "side": "B"},
            {"coin": "BTC", "oid": 2, "orderType": "Stop Market", "side": "A"},
        ]

        trader.cancel_all_orders("BTCUSDT")

        assert exchange.cancel.call_count == 2
