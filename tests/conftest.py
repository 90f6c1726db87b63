"""
Pytest configuration and shared fixtures for Execution Gateway tests.

This module provides:
- FakeTrader: in-memory Trader recording every venue call
- Common fixtures for precision rules, positions and exchange metadata
- Test data generators
"""

import itertools
from typing import Dict, List, Optional

import pytest

from src.core.exceptions import GatewayError
from src.core.models import (
    BalanceSnapshot,
    OpenOrder,
    OrderRequest,
    OrderResult,
    PositionSnapshot,
    PrecisionSpec,
)
from src.execution.trader import Trader


class FakeTrader(Trader):
    """
    Trader whose venue is a handful of lists and counters.

    Tests preload positions, open_orders and specs, then assert on
    submitted, leverage_calls and cancelled. Setting fail_cancel_ids makes
    those cancels raise GatewayError.
    """

    exchange = "fake"
    supports_market_orders = True

    def __init__(self, market_price: float = 100.0, **kwargs):
        kwargs.setdefault("sleep", lambda seconds: None)
        super().__init__(**kwargs)
        self.market_price = market_price
        self.balance = BalanceSnapshot(wallet_balance=1000.0, available_balance=1000.0)
        self.positions: List[PositionSnapshot] = []
        self.open_orders: List[OpenOrder] = []
        self.specs: Dict[str, PrecisionSpec] = {
            "BTCUSDT": PrecisionSpec(
                symbol="BTCUSDT",
                price_precision=1,
                quantity_precision=3,
                tick_size=0.1,
                step_size=0.001,
            ),
        }
        self.submitted: List[OrderRequest] = []
        self.leverage_calls: List[tuple] = []
        self.cancelled: List[str] = []
        self.cancel_all_calls: List[str] = []
        self.fail_cancel_ids: set = set()
        self.fail_cancel_all: bool = False
        self.fail_submit: Optional[Exception] = None
        self.balance_fetches = 0
        self.position_fetches = 0
        self._ids = itertools.count(1)

    def _fetch_balance(self) -> BalanceSnapshot:
        self.balance_fetches += 1
        return self.balance

    def _fetch_positions(self) -> List[PositionSnapshot]:
        self.position_fetches += 1
        return list(self.positions)

    def _fetch_precision(self) -> Dict[str, PrecisionSpec]:
        return dict(self.specs)

    def _change_leverage(self, symbol: str, leverage: int) -> None:
        self.leverage_calls.append((symbol, leverage))

    def _submit_order(self, request: OrderRequest) -> OrderResult:
        if self.fail_submit is not None:
            raise self.fail_submit
        self.submitted.append(request)
        return OrderResult(order_id=str(next(self._ids)), symbol=request.symbol)

    def _list_open_orders(self, symbol: str) -> List[OpenOrder]:
        return [order for order in self.open_orders if order.symbol == symbol]

    def _cancel_order(self, symbol: str, order_id: str) -> None:
        if order_id in self.fail_cancel_ids:
            raise GatewayError(f"cancel {order_id} rejected")
        self.cancelled.append(order_id)

    def get_market_price(self, symbol: str) -> float:
        return self.market_price

    def cancel_all_orders(self, symbol: str) -> None:
        if self.fail_cancel_all:
            raise GatewayError("cancel all rejected")
        self.cancel_all_calls.append(symbol)


@pytest.fixture
def fake_trader():
    """Provide a FakeTrader with BTCUSDT precision and no positions."""
    return FakeTrader()


@pytest.fixture
def long_position():
    """Provide an open BTCUSDT long at 5x."""
    return PositionSnapshot(
        symbol="BTCUSDT",
        side="long",
        quantity=0.5,
        entry_price=40000.0,
        mark_price=41000.0,
        leverage=5,
        unrealized_pnl=500.0,
    )


@pytest.fixture
def short_position():
    """Provide an open ETHUSDT short at 10x."""
    return PositionSnapshot(
        symbol="ETHUSDT",
        side="short",
        quantity=2.0,
        entry_price=2500.0,
        mark_price=2450.0,
        leverage=10,
        unrealized_pnl=100.0,
    )


@pytest.fixture
def exchange_info():
    """Provide a Binance-style exchangeInfo payload with two symbols."""
    return {
        "symbols": [
            {
                "symbol": "BTCUSDT",
                "pricePrecision": 2,
                "quantityPrecision": 3,
                "filters": [
                    {"filterType": "PRICE_FILTER", "tickSize": "0.10"},
                    {"filterType": "LOT_SIZE", "stepSize": "0.001"},
                ],
            },
            {
                "symbol": "ETHUSDT",
                "pricePrecision": 2,
                "quantityPrecision": 3,
                "filters": [
                    {"filterType": "PRICE_FILTER", "tickSize": "0.01"},
                    {"filterType": "LOT_SIZE", "stepSize": "0.001"},
                ],
            },
        ]
    }


@pytest.fixture
def mixed_open_orders():
    """Provide one limit order plus a stop-loss and a take-profit on BTCUSDT."""
    return [
        OpenOrder(order_id="1", symbol="BTCUSDT", order_type="LIMIT", side="BUY"),
        OpenOrder(order_id="2", symbol="BTCUSDT", order_type="STOP_MARKET", side="SELL"),
        OpenOrder(order_id="3", symbol="BTCUSDT", order_type="TAKE_PROFIT_MARKET", side="SELL"),
    ]
