"""
Aster DEX futures trader.

Aster exposes a Binance-style REST API authenticated by an API wallet:
every private request is signed by WalletSigner (EIP-191 over the
ABI-encoded canonical parameters) and sent through RetryingTransport, which
re-signs each attempt with a fresh nonce.

The account runs in one-way mode (positionSide BOTH). Entries and exits are
IOC limit orders priced 1% through the market; exits and protective orders
carry reduceOnly.
"""

import time
from typing import Any, Dict, List, Optional

from loguru import logger

from src.core.models import (
    BalanceSnapshot,
    OpenOrder,
    OrderRequest,
    OrderResult,
    PositionSnapshot,
    PrecisionSpec,
)
from .precision import parse_symbol_filters
from .signing import WalletSigner
from .trader import Trader
from .transport import DEFAULT_MAX_ATTEMPTS, RetryingTransport


ASTER_BASE_URL = "https://fapi.asterdex.com"
QUOTE_ASSET = "USDT"


class AsterTrader(Trader):
    """
    Trader backed by the Aster futures API.

    Attributes:
        signer: WalletSigner holding the API wallet key
        transport: Signing RetryingTransport bound to the Aster base URL

    Examples:
        >>> trader = AsterTrader(user="0x...", signer="0x...", private_key="...")
        >>> trader.get_market_price("BTCUSDT")
        67250.1
    """

    exchange = "aster"
    supports_market_orders = False

    def __init__(
        self,
        user: str,
        signer: str,
        private_key: str,
        base_url: str = ASTER_BASE_URL,
        transport: Optional[RetryingTransport] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        **kwargs
    ):
        """
        Initialize the trader.

        Args:
            user: Main wallet address
            signer: API wallet address
            private_key: API wallet private key (hex, with or without 0x)
            base_url: REST root
            transport: Pre-built transport (tests); built from the signer when None
            max_attempts: Retry bound for the built transport
            **kwargs: Forwarded to Trader (cache_ttl, leverage_cooldown, sleep, ...)

        Raises:
            ConfigurationError: If an address or the private key is invalid
        """
        self.signer = WalletSigner(user=user, signer=signer, private_key=private_key)
        if transport is None:
            transport = RetryingTransport(
                base_url,
                signer=self.signer,
                max_attempts=max_attempts,
                sleep=kwargs.get("sleep", time.sleep),
            )
        super().__init__(transport=transport, **kwargs)

        logger.info(f"AsterTrader initialized for {self.signer.user}")

    def _fetch_balance(self) -> BalanceSnapshot:
        balances = self.transport.request("GET", "/fapi/v3/balance")

        for entry in balances:
            if entry.get("asset") == QUOTE_ASSET:
                return BalanceSnapshot(
                    wallet_balance=float(entry.get("balance", 0)),
                    available_balance=float(entry.get("availableBalance", 0)),
                    unrealized_profit=float(entry.get("crossUnPnl", 0)),
                )

        logger.warning(f"No {QUOTE_ASSET} balance on Aster account, reporting zero")
        return BalanceSnapshot(wallet_balance=0.0, available_balance=0.0)

    def _fetch_positions(self) -> List[PositionSnapshot]:
        raw_positions = self.transport.request("GET", "/fapi/v3/positionRisk")

        positions = []
        for pos in raw_positions:
            amount = float(pos.get("positionAmt") or 0)
            if amount == 0:
                continue

            positions.append(PositionSnapshot(
                symbol=pos["symbol"],
                side="long" if amount > 0 else "short",
                quantity=abs(amount),
                entry_price=float(pos.get("entryPrice") or 0),
                mark_price=float(pos.get("markPrice") or 0),
                leverage=max(1, int(float(pos.get("leverage") or 1))),
                unrealized_pnl=float(pos.get("unRealizedProfit") or 0),
                liquidation_price=float(pos.get("liquidationPrice") or 0),
            ))
        return positions

    def _fetch_precision(self) -> Dict[str, PrecisionSpec]:
        info = self.transport.request("GET", "/fapi/v3/exchangeInfo", signed=False)
        return {
            entry["symbol"]: parse_symbol_filters(entry)
            for entry in info.get("symbols", [])
        }

    def _change_leverage(self, symbol: str, leverage: int) -> None:
        self.transport.request(
            "POST", "/fapi/v3/leverage", {"symbol": symbol, "leverage": leverage}
        )

    def _submit_order(self, request: OrderRequest) -> OrderResult:
        params: Dict[str, Any] = {
            "symbol": request.symbol,
            "positionSide": "BOTH",
            "side": request.side,
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
            params["timeInForce"] = "GTC"
        if request.reduce_only:
            params["reduceOnly"] = "true"

        logger.debug(f"Aster order params: {params}")
        order = self.transport.request("POST", "/fapi/v3/order", params)
        return OrderResult(
            order_id=str(order.get("orderId", "")),
            symbol=order.get("symbol", request.symbol),
            status=order.get("status", "NEW"),
        )

    def _list_open_orders(self, symbol: str) -> List[OpenOrder]:
        orders = self.transport.request("GET", "/fapi/v3/openOrders", {"symbol": symbol})
        return [
            OpenOrder(
                order_id=str(order["orderId"]),
                symbol=order.get("symbol", symbol),
                order_type=order.get("type", ""),
                side=order.get("side", ""),
                quantity=float(order.get("origQty") or 0),
                price=float(order.get("price") or 0),
                stop_price=float(order.get("stopPrice") or 0),
            )
            for order in orders
        ]

    def _cancel_order(self, symbol: str, order_id: str) -> None:
        self.transport.request(
            "DELETE", "/fapi/v3/order", {"symbol": symbol, "orderId": int(order_id)}
        )

    def get_market_price(self, symbol: str) -> float:
        ticker = self.transport.request(
            "GET", "/fapi/v3/ticker/price", {"symbol": symbol}, signed=False
        )
        return float(ticker["price"])

    def cancel_all_orders(self, symbol: str) -> None:
        self.transport.request("DELETE", "/fapi/v3/allOpenOrders", {"symbol": symbol})
        logger.info(f"Cancelled all open orders for {symbol}")
