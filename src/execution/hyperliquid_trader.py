"""
Hyperliquid perpetuals trader.

Signing is internal to hyperliquid-python-sdk: this backend only supplies
normalized order parameters to Exchange and reads account state through
Info. Symbols are mapped between the gateway's 'BTCUSDT' form and
Hyperliquid's coin names ('BTC').

Venue rules:
- Sizes are rounded to the coin's szDecimals
- Prices are rounded to 5 significant figures
- Entries and exits are IOC limits priced 1% through the market
- Stop-loss / take-profit are reduce-only trigger-market orders
"""

from typing import Any, Callable, Dict, List, Optional

from eth_account import Account
from hyperliquid.exchange import Exchange
from hyperliquid.info import Info
from hyperliquid.utils import constants
from hyperliquid.utils.error import ClientError, ServerError
from loguru import logger

from src.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    TransientNetworkError,
    VenueRejection,
)
from src.core.models import (
    BalanceSnapshot,
    OpenOrder,
    OrderRequest,
    OrderResult,
    PositionSnapshot,
    PrecisionSpec,
)
from .precision import DEFAULT_SIG_FIGS
from .trader import Trader
from .transport import TRANSIENT_ERRORS


QUOTE_SUFFIX = "USDT"
MAX_PRICE_DECIMALS = 6

# frontend_open_orders orderType -> gateway order type
ORDER_TYPES = {
    "Limit": "LIMIT",
    "Market": "MARKET",
    "Stop Market": "STOP_MARKET",
    "Stop Limit": "STOP",
    "Take Profit Market": "TAKE_PROFIT_MARKET",
    "Take Profit Limit": "TAKE_PROFIT",
}


def to_coin(symbol: str) -> str:
    """
    Convert a gateway symbol to a Hyperliquid coin name.

    Examples:
        >>> to_coin("BTCUSDT")
        'BTC'
        >>> to_coin("ETH")
        'ETH'
    """
    if symbol.endswith(QUOTE_SUFFIX) and len(symbol) > len(QUOTE_SUFFIX):
        return symbol[:-len(QUOTE_SUFFIX)]
    return symbol


def to_symbol(coin: str) -> str:
    return f"{coin}{QUOTE_SUFFIX}"


class HyperliquidTrader(Trader):
    """
    Trader backed by hyperliquid-python-sdk.

    The SDK clients contact the venue when constructed, so they are built
    on first use unless injected.

    Attributes:
        wallet_address: Account address whose state is queried
        testnet: Whether the testnet API is used

    Examples:
        >>> trader = HyperliquidTrader(private_key="0x...", testnet=True)
        >>> trader.get_positions()
        [PositionSnapshot(symbol='BTCUSDT', side='long', ...)]
    """

    exchange = "hyperliquid"
    supports_market_orders = False

    def __init__(
        self,
        private_key: str,
        wallet_address: Optional[str] = None,
        testnet: bool = False,
        info: Optional[Info] = None,
        exchange: Optional[Exchange] = None,
        **kwargs
    ):
        """
        Initialize the trader.

        Args:
            private_key: Hex private key of the trading (or API) wallet
            wallet_address: Account address; derived from the key when None
            testnet: Use the Hyperliquid testnet
            info: Pre-built Info client (tests)
            exchange: Pre-built Exchange client (tests)
            **kwargs: Forwarded to Trader

        Raises:
            ConfigurationError: If the private key cannot be parsed
        """
        try:
            self.wallet = Account.from_key(private_key)
        except Exception as e:
            raise ConfigurationError(f"Invalid Hyperliquid private key: {e}") from e

        self.wallet_address = wallet_address or self.wallet.address
        self.testnet = testnet
        self.base_url = constants.TESTNET_API_URL if testnet else constants.MAINNET_API_URL
        self._info = info
        self._exchange = exchange
        super().__init__(**kwargs)

        logger.info(
            f"HyperliquidTrader initialized for {self.wallet_address} "
            f"({'testnet' if testnet else 'mainnet'})"
        )

    @property
    def info(self) -> Info:
        if self._info is None:
            self._info = self._call("Info()", Info, self.base_url, skip_ws=True)
        return self._info

    @property
    def sdk(self) -> Exchange:
        if self._exchange is None:
            self._exchange = self._call(
                "Exchange()",
                Exchange,
                self.wallet,
                self.base_url,
                account_address=self.wallet_address,
            )
        return self._exchange

    def _call(self, description: str, method: Callable[..., Any], *args, **kwargs) -> Any:
        """Invoke an SDK method through the retrying transport."""

        def attempt() -> Any:
            try:
                return method(*args, **kwargs)
            except ClientError as e:
                raise VenueRejection(
                    f"{description} rejected: {e.error_message}",
                    status_code=e.status_code,
                    body=str(e.error_message),
                ) from e
            except ServerError as e:
                raise VenueRejection(
                    f"{description} failed on server: {e.message}",
                    status_code=e.status_code,
                    body=str(e.message),
                ) from e
            except TRANSIENT_ERRORS as e:
                raise TransientNetworkError(f"{description}: {e}") from e

        return self.transport.call(attempt, description=description)

    def _exchange_call(self, description: str, method_name: str, *args, **kwargs) -> Dict[str, Any]:
        """Call an Exchange action and reject non-ok responses."""
        response = self._call(description, getattr(self.sdk, method_name), *args, **kwargs)
        if not isinstance(response, dict) or response.get("status") != "ok":
            raise VenueRejection(f"{description} rejected: {response}", body=str(response))
        return response

    def _fetch_balance(self) -> BalanceSnapshot:
        state = self._call("user_state", self.info.user_state, self.wallet_address)
        summary = state.get("marginSummary", {})
        account_value = float(summary.get("accountValue", 0))
        margin_used = float(summary.get("totalMarginUsed", 0))
        unrealized = sum(
            float(entry["position"].get("unrealizedPnl", 0))
            for entry in state.get("assetPositions", [])
        )

        return BalanceSnapshot(
            wallet_balance=account_value - unrealized,
            available_balance=account_value - margin_used,
            unrealized_profit=unrealized,
        )

    def _fetch_positions(self) -> List[PositionSnapshot]:
        state = self._call("user_state", self.info.user_state, self.wallet_address)

        positions = []
        for entry in state.get("assetPositions", []):
            pos = entry["position"]
            size = float(pos.get("szi", 0))
            if size == 0:
                continue

            leverage = pos.get("leverage") or {}
            positions.append(PositionSnapshot(
                symbol=to_symbol(pos["coin"]),
                side="long" if size > 0 else "short",
                quantity=abs(size),
                entry_price=float(pos.get("entryPx") or 0),
                mark_price=float(pos.get("positionValue") or 0) / abs(size),
                leverage=max(1, int(leverage.get("value", 1))),
                unrealized_pnl=float(pos.get("unrealizedPnl") or 0),
                liquidation_price=float(pos.get("liquidationPx") or 0),
            ))
        return positions

    def _fetch_precision(self) -> Dict[str, PrecisionSpec]:
        meta = self._call("meta", self.info.meta)
        specs = {}
        for asset in meta.get("universe", []):
            sz_decimals = int(asset.get("szDecimals", 0))
            symbol = to_symbol(asset["name"])
            specs[symbol] = PrecisionSpec(
                symbol=symbol,
                price_precision=max(0, MAX_PRICE_DECIMALS - sz_decimals),
                quantity_precision=sz_decimals,
                sig_figs=DEFAULT_SIG_FIGS,
            )
        return specs

    def _change_leverage(self, symbol: str, leverage: int) -> None:
        self._exchange_call(
            f"update_leverage {symbol}",
            "update_leverage",
            leverage,
            to_coin(symbol),
            is_cross=False,
        )

    def _submit_order(self, request: OrderRequest) -> OrderResult:
        coin = to_coin(request.symbol)
        is_buy = request.side == "BUY"

        if request.is_trigger:
            order_type = {
                "trigger": {
                    "triggerPx": request.trigger_price,
                    "isMarket": True,
                    "tpsl": "sl" if request.order_type == "STOP_MARKET" else "tp",
                }
            }
            limit_price = request.trigger_price
        else:
            order_type = {"limit": {"tif": "Ioc"}}
            limit_price = request.price

        response = self._exchange_call(
            f"order {request.symbol}",
            "order",
            coin,
            is_buy,
            request.quantity,
            limit_price,
            order_type,
            reduce_only=request.reduce_only,
        )
        return self._parse_order_status(request.symbol, response)

    @staticmethod
    def _parse_order_status(symbol: str, response: Dict[str, Any]) -> OrderResult:
        statuses = response.get("response", {}).get("data", {}).get("statuses", [])
        if not statuses:
            return OrderResult(order_id="", symbol=symbol, status="UNKNOWN")

        status = statuses[0]
        if isinstance(status, dict):
            if "error" in status:
                raise VenueRejection(
                    f"Order rejected for {symbol}: {status['error']}",
                    body=str(status["error"]),
                )
            if "filled" in status:
                return OrderResult(
                    order_id=str(status["filled"].get("oid", "")),
                    symbol=symbol,
                    status="FILLED",
                )
            if "resting" in status:
                return OrderResult(
                    order_id=str(status["resting"].get("oid", "")),
                    symbol=symbol,
                    status="NEW",
                )
        return OrderResult(order_id="", symbol=symbol, status=str(status))

    def _list_open_orders(self, symbol: str) -> List[OpenOrder]:
        coin = to_coin(symbol)
        orders = self._call(
            "frontend_open_orders", self.info.frontend_open_orders, self.wallet_address
        )
        return [
            OpenOrder(
                order_id=str(order["oid"]),
                symbol=symbol,
                order_type=ORDER_TYPES.get(order.get("orderType", ""), "LIMIT"),
                side="BUY" if order.get("side") == "B" else "SELL",
                quantity=float(order.get("sz") or 0),
                price=float(order.get("limitPx") or 0),
                stop_price=float(order.get("triggerPx") or 0),
            )
            for order in orders
            if order.get("coin") == coin
        ]

    def _cancel_order(self, symbol: str, order_id: str) -> None:
        response = self._exchange_call(
            f"cancel {symbol} {order_id}", "cancel", to_coin(symbol), int(order_id)
        )
        statuses = response.get("response", {}).get("data", {}).get("statuses", [])
        for status in statuses:
            if isinstance(status, dict) and "error" in status:
                raise VenueRejection(
                    f"Cancel {order_id} rejected: {status['error']}",
                    body=str(status["error"]),
                )

    def get_market_price(self, symbol: str) -> float:
        mids = self._call("all_mids", self.info.all_mids)
        coin = to_coin(symbol)
        if coin not in mids:
            raise NotFoundError(f"No Hyperliquid price for {symbol}")
        return float(mids[coin])

    def cancel_all_orders(self, symbol: str) -> None:
        orders = self._list_open_orders(symbol)
        for order in orders:
            self._cancel_order(symbol, order.order_id)
        logger.info(f"Cancelled {len(orders)} open orders for {symbol}")
