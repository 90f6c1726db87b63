"""
Binance USDⓈ-M futures trader.

Request signing (HMAC API key) is handled entirely by python-binance's
synchronous Client; this backend maps its payloads onto the gateway's
records and translates its errors into the gateway taxonomy:

- BinanceAPIException (venue answered with an error) -> VenueRejection
- requests timeouts / connection errors -> TransientNetworkError (retried)

The account is assumed to be in hedge mode: every order names its
positionSide (LONG/SHORT), which already restricts a closing order to
reducing that side, so reduceOnly is never sent. Positions are isolated
margin; the margin type is switched once per symbol with a 3 second
cooldown after an actual change.
"""

import threading
from typing import Any, Callable, Dict, List, Optional

from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException
from loguru import logger

from src.core.exceptions import ConfigurationError, TransientNetworkError, VenueRejection
from src.core.models import (
    BalanceSnapshot,
    OpenOrder,
    OrderHistoryEntry,
    OrderRequest,
    OrderResult,
    PositionSnapshot,
    PrecisionSpec,
)
from .precision import parse_symbol_filters
from .trader import Trader
from .transport import TRANSIENT_ERRORS


NO_NEED_TO_CHANGE = "No need to change"
MARGIN_TYPE_UNCHANGED_CODE = -4046
MAX_HISTORY_LIMIT = 1000
DEFAULT_MARGIN_TYPE_COOLDOWN = 3.0


class BinanceTrader(Trader):
    """
    Trader backed by the Binance futures REST API.

    Attributes:
        client: python-binance Client
        testnet: Whether the client targets the futures testnet
        margin_type_cooldown: Seconds to block after a margin type change

    Examples:
        >>> trader = BinanceTrader(api_key, api_secret, testnet=True)
        >>> trader.get_balance().available_balance
        1000.0
    """

    exchange = "binance"
    supports_market_orders = True

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = False,
        client: Optional[Client] = None,
        margin_type_cooldown: float = DEFAULT_MARGIN_TYPE_COOLDOWN,
        **kwargs
    ):
        """
        Initialize the trader.

        Args:
            api_key: Binance API key
            api_secret: Binance API secret
            testnet: Use the futures testnet
            client: Pre-built Client (tests); built from the keys when None
            margin_type_cooldown: Seconds to wait after switching margin type
            **kwargs: Forwarded to Trader (cache_ttl, leverage_cooldown, ...)

        Raises:
            ConfigurationError: If credentials are empty
        """
        if client is None:
            if not api_key or not api_secret:
                raise ConfigurationError("Binance api_key and api_secret are required")
            client = Client(api_key, api_secret, testnet=testnet, ping=False)

        self.client = client
        self.testnet = testnet
        self.margin_type_cooldown = margin_type_cooldown
        self._isolated: set = set()
        self._isolated_lock = threading.Lock()
        super().__init__(**kwargs)

        logger.info(f"BinanceTrader initialized ({'testnet' if testnet else 'mainnet'})")

    def _call(self, description: str, method: Callable[..., Any], **params) -> Any:
        """Invoke a Client method through the retrying transport."""

        def attempt() -> Any:
            try:
                return method(**params)
            except BinanceAPIException as e:
                raise VenueRejection(
                    f"{description} rejected: {e.message} (code {e.code})",
                    status_code=e.status_code,
                    body=str(e),
                    code=e.code,
                ) from e
            except BinanceRequestException as e:
                raise VenueRejection(f"{description}: invalid response: {e}") from e
            except TRANSIENT_ERRORS as e:
                raise TransientNetworkError(f"{description}: {e}") from e

        return self.transport.call(attempt, description=description)

    def _fetch_balance(self) -> BalanceSnapshot:
        account = self._call("futures_account", self.client.futures_account)
        balance = BalanceSnapshot(
            wallet_balance=float(account["totalWalletBalance"]),
            available_balance=float(account["availableBalance"]),
            unrealized_profit=float(account["totalUnrealizedProfit"]),
        )
        logger.info(
            f"Binance balance: wallet={balance.wallet_balance:.2f} "
            f"available={balance.available_balance:.2f} "
            f"unrealized={balance.unrealized_profit:.2f}"
        )
        return balance

    def _fetch_positions(self) -> List[PositionSnapshot]:
        raw_positions = self._call(
            "futures_position_information", self.client.futures_position_information
        )

        positions = []
        for pos in raw_positions:
            amount = float(pos.get("positionAmt", 0))
            if amount == 0:
                continue

            position_side = pos.get("positionSide", "BOTH")
            if position_side in ("LONG", "SHORT"):
                side = position_side.lower()
            else:
                side = "long" if amount > 0 else "short"

            positions.append(PositionSnapshot(
                symbol=pos["symbol"],
                side=side,
                quantity=abs(amount),
                entry_price=float(pos.get("entryPrice", 0)),
                mark_price=float(pos.get("markPrice", 0)),
                leverage=max(1, int(float(pos.get("leverage", 1)))),
                unrealized_pnl=float(pos.get("unRealizedProfit", 0)),
                liquidation_price=float(pos.get("liquidationPrice", 0)),
            ))
        return positions

    def _fetch_precision(self) -> Dict[str, PrecisionSpec]:
        info = self._call("futures_exchange_info", self.client.futures_exchange_info)
        return {
            entry["symbol"]: parse_symbol_filters(entry)
            for entry in info.get("symbols", [])
        }

    def _change_leverage(self, symbol: str, leverage: int) -> None:
        try:
            self._call(
                "futures_change_leverage",
                self.client.futures_change_leverage,
                symbol=symbol,
                leverage=leverage,
            )
        except VenueRejection as e:
            if NO_NEED_TO_CHANGE in str(e):
                logger.debug(f"{symbol} leverage already {leverage}x on Binance")
                return
            raise

    def _prepare_symbol(self, symbol: str) -> None:
        """Switch symbol to isolated margin once per process."""
        with self._isolated_lock:
            if symbol in self._isolated:
                return

        try:
            self._call(
                "futures_change_margin_type",
                self.client.futures_change_margin_type,
                symbol=symbol,
                marginType="ISOLATED",
            )
        except VenueRejection as e:
            if e.code != MARGIN_TYPE_UNCHANGED_CODE and NO_NEED_TO_CHANGE not in str(e):
                raise
            logger.debug(f"{symbol} margin type already ISOLATED")
        else:
            logger.info(f"{symbol} margin type set to ISOLATED")
            if self.margin_type_cooldown > 0:
                self._sleep(self.margin_type_cooldown)

        with self._isolated_lock:
            self._isolated.add(symbol)

    def _submit_order(self, request: OrderRequest) -> OrderResult:
        params: Dict[str, Any] = {
            "symbol": request.symbol,
            "side": request.side,
            "positionSide": request.position_side.upper(),
            "type": request.order_type,
            "quantity": self.precision.format_quantity(request.symbol, request.quantity),
        }
        if request.order_type == "LIMIT":
            params["price"] = self.precision.format_price(request.symbol, request.price)
            params["timeInForce"] = "IOC"
        if request.is_trigger:
            params["stopPrice"] = self.precision.format_price(
                request.symbol, request.trigger_price
            )
            params["workingType"] = "CONTRACT_PRICE"

        order = self._call("futures_create_order", self.client.futures_create_order, **params)
        return OrderResult(
            order_id=str(order["orderId"]),
            symbol=order.get("symbol", request.symbol),
            status=order.get("status", "NEW"),
        )

    def _list_open_orders(self, symbol: str) -> List[OpenOrder]:
        orders = self._call(
            "futures_get_open_orders", self.client.futures_get_open_orders, symbol=symbol
        )
        return [
            OpenOrder(
                order_id=str(order["orderId"]),
                symbol=order.get("symbol", symbol),
                order_type=order.get("type", ""),
                side=order.get("side", ""),
                quantity=float(order.get("origQty", 0)),
                price=float(order.get("price", 0)),
                stop_price=float(order.get("stopPrice", 0)),
            )
            for order in orders
        ]

    def _cancel_order(self, symbol: str, order_id: str) -> None:
        self._call(
            "futures_cancel_order",
            self.client.futures_cancel_order,
            symbol=symbol,
            orderId=int(order_id),
        )

    def get_market_price(self, symbol: str) -> float:
        ticker = self._call(
            "futures_symbol_ticker", self.client.futures_symbol_ticker, symbol=symbol
        )
        return float(ticker["price"])

    def cancel_all_orders(self, symbol: str) -> None:
        self._call(
            "futures_cancel_all_open_orders",
            self.client.futures_cancel_all_open_orders,
            symbol=symbol,
        )
        logger.info(f"Cancelled all open orders for {symbol}")

    def get_order_history(
        self,
        start_time: int = 0,
        end_time: int = 0,
        limit: int = 500,
        symbol: Optional[str] = None
    ) -> List[OrderHistoryEntry]:
        """
        Return filled orders for a symbol, optionally bounded by time (ms).

        Binance only serves order history per symbol, so a call without one
        logs a warning and returns []. limit is clamped to 1..1000; non-FILLED
        orders are dropped.
        """
        if not symbol:
            logger.warning("Binance order history requires a symbol; returning no orders")
            return []

        params: Dict[str, Any] = {
            "symbol": symbol,
            "limit": min(max(limit, 1), MAX_HISTORY_LIMIT),
        }
        if start_time > 0:
            params["startTime"] = start_time
        if end_time > 0:
            params["endTime"] = end_time

        orders = self._call("futures_get_all_orders", self.client.futures_get_all_orders, **params)

        history = [
            OrderHistoryEntry(
                order_id=str(order["orderId"]),
                symbol=order["symbol"],
                side=order.get("side", ""),
                position_side=order.get("positionSide", ""),
                order_type=order.get("type", ""),
                status=order["status"],
                executed_qty=float(order.get("executedQty", 0)),
                avg_price=float(order.get("avgPrice", 0)),
                time=int(order.get("time", 0)),
                update_time=int(order.get("updateTime", 0)),
            )
            for order in orders
            if order.get("status") == "FILLED"
        ]
        logger.info(f"Fetched {len(history)} filled orders from Binance")
        return history
