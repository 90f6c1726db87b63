"""
Trader capability interface and order lifecycle.

Trader is the single interface the decision cycle talks to. It owns the
venue-independent lifecycle (cancel stale orders, set leverage, price the
order aggressively, round, submit, clean up) and delegates the venue
primitives to one subclass per exchange:

- BinanceTrader: API-key venue, signing inside python-binance
- AsterTrader: API-wallet venue, EIP-191 signatures built locally
- HyperliquidTrader: SDK venue, signing inside hyperliquid-python-sdk

Position lifecycle per (symbol, side):
    FLAT --open--> OPEN --set_stop_loss / set_take_profit--> OPEN --close--> FLAT

Balance and positions are served from a TTL cache that is not invalidated
by the trader's own orders, so snapshots may lag a fill by up to one TTL.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional
from loguru import logger

from src.core.exceptions import GatewayError, NotFoundError
from src.core.models import (
    BalanceSnapshot,
    CancelReport,
    CleanupResult,
    OpenOrder,
    OrderHistoryEntry,
    OrderRequest,
    OrderResult,
    PositionSnapshot,
    PrecisionSpec,
)
from src.core.state_store import AccountStateStore, DEFAULT_TTL_SECONDS
from .precision import PrecisionRegistry
from .transport import RetryingTransport


DEFAULT_LEVERAGE_COOLDOWN = 5.0
DEFAULT_SLIPPAGE = 0.01


def normalize_side(side: str) -> str:
    """
    Normalize a position side to 'long' or 'short'.

    Raises:
        ValueError: If side is neither.
    """
    normalized = side.strip().lower() if isinstance(side, str) else ""
    if normalized not in ("long", "short"):
        raise ValueError(f"side must be 'long' or 'short', got {side!r}")
    return normalized


class Trader(ABC):
    """
    Abstract trader: one account on one venue.

    Subclasses implement the venue primitives (_fetch_balance,
    _fetch_positions, _fetch_precision, _change_leverage, _submit_order,
    _list_open_orders, _cancel_order, get_market_price, cancel_all_orders)
    and inherit the lifecycle operations.

    Attributes:
        exchange: Venue key ('binance', 'aster', 'hyperliquid')
        supports_market_orders: Whether entries and exits use MARKET orders;
            otherwise they are IOC limits priced through the book
        state: Balance/position TTL cache
        precision: Per-symbol rounding rules
        transport: Bounded-retry executor for venue calls
        leverage_cooldown: Seconds to block after a leverage change
        slippage: Fraction added to (buy) or removed from (sell) the market
            price for aggressive limit orders

    Examples:
        >>> trader = create_trader(trader_config, settings)
        >>> trader.open_long("BTCUSDT", quantity=0.01, leverage=5)
        OrderResult(order_id='123', symbol='BTCUSDT', status='NEW', cleanup=[...])
        >>> trader.close_long("BTCUSDT")   # quantity 0 closes the whole position
    """

    exchange: str = ""
    supports_market_orders: bool = False

    def __init__(
        self,
        transport: Optional[RetryingTransport] = None,
        cache_ttl: float = DEFAULT_TTL_SECONDS,
        leverage_cooldown: float = DEFAULT_LEVERAGE_COOLDOWN,
        slippage: float = DEFAULT_SLIPPAGE,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        if not 0 <= slippage < 1:
            raise ValueError(f"slippage must be in [0, 1), got {slippage}")

        self.transport = transport or RetryingTransport(sleep=sleep)
        self.state = AccountStateStore(ttl=cache_ttl, clock=clock)
        self.precision = PrecisionRegistry(self._fetch_precision, venue=self.exchange)
        self.leverage_cooldown = leverage_cooldown
        self.slippage = slippage
        self._sleep = sleep

        self._leverage: Dict[str, int] = {}
        self._leverage_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Venue primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def _fetch_balance(self) -> BalanceSnapshot:
        """Query the venue for the account balance."""

    @abstractmethod
    def _fetch_positions(self) -> List[PositionSnapshot]:
        """Query the venue for open positions (non-zero size only)."""

    @abstractmethod
    def _fetch_precision(self) -> Dict[str, PrecisionSpec]:
        """Query exchange metadata and return rules for every symbol."""

    @abstractmethod
    def _change_leverage(self, symbol: str, leverage: int) -> None:
        """Issue the remote leverage change."""

    @abstractmethod
    def _submit_order(self, request: OrderRequest) -> OrderResult:
        """Send a normalized order and return the venue's acknowledgement."""

    @abstractmethod
    def _list_open_orders(self, symbol: str) -> List[OpenOrder]:
        """Return resting orders for symbol."""

    @abstractmethod
    def _cancel_order(self, symbol: str, order_id: str) -> None:
        """Cancel one resting order."""

    @abstractmethod
    def get_market_price(self, symbol: str) -> float:
        """Return the latest traded or mid price for symbol."""

    @abstractmethod
    def cancel_all_orders(self, symbol: str) -> None:
        """Cancel every resting order for symbol."""

    def _prepare_symbol(self, symbol: str) -> None:
        """Venue-specific setup before an entry order (e.g. margin mode)."""

    # ------------------------------------------------------------------
    # Account state
    # ------------------------------------------------------------------

    def get_balance(self) -> BalanceSnapshot:
        return self.state.get_balance(self._fetch_balance)

    def get_positions(self) -> List[PositionSnapshot]:
        return self.state.get_positions(self._fetch_positions)

    def get_position(self, symbol: str, side: Optional[str] = None) -> Optional[PositionSnapshot]:
        """
        Find the cached position for symbol, optionally filtered by side.

        Returns:
            The first matching PositionSnapshot, or None when flat.
        """
        wanted = normalize_side(side) if side is not None else None
        for position in self.get_positions():
            if position.symbol == symbol and (wanted is None or position.side == wanted):
                return position
        return None

    # ------------------------------------------------------------------
    # Leverage
    # ------------------------------------------------------------------

    def _known_leverage(self, symbol: str) -> Optional[int]:
        with self._leverage_lock:
            known = self._leverage.get(symbol)
        if known is not None:
            return known

        # Seed from a still-valid position snapshot without querying the venue
        for position in self.state.peek_positions() or []:
            if position.symbol == symbol:
                return position.leverage
        return None

    def set_leverage(self, symbol: str, leverage: int) -> bool:
        """
        Set symbol leverage, skipping the call when it is already in effect.

        After a remote change the call blocks for leverage_cooldown seconds
        so the venue applies the setting before the next order.

        Args:
            symbol: Trading pair
            leverage: Target leverage, at least 1

        Returns:
            bool: True if a remote change was issued, False if skipped

        Raises:
            ValueError: If leverage is below 1
        """
        if leverage < 1:
            raise ValueError(f"leverage must be at least 1, got {leverage}")

        if self._known_leverage(symbol) == leverage:
            logger.debug(f"{symbol} leverage already {leverage}x, skipping change")
            return False

        self._change_leverage(symbol, leverage)
        with self._leverage_lock:
            self._leverage[symbol] = leverage

        logger.info(f"{symbol} leverage set to {leverage}x on {self.exchange}")
        if self.leverage_cooldown > 0:
            logger.debug(f"Waiting {self.leverage_cooldown}s for leverage change to apply")
            self._sleep(self.leverage_cooldown)
        return True

    # ------------------------------------------------------------------
    # Order construction
    # ------------------------------------------------------------------

    def aggressive_price(self, market_price: float, order_side: str) -> float:
        """Price a limit order through the book toward an immediate fill."""
        if order_side == "BUY":
            return market_price * (1 + self.slippage)
        return market_price * (1 - self.slippage)

    def _build_fill_order(
        self,
        symbol: str,
        order_side: str,
        position_side: str,
        quantity: float,
        reduce_only: bool
    ) -> OrderRequest:
        rounded_qty = self.precision.round_quantity(symbol, quantity)
        if rounded_qty <= 0:
            raise ValueError(f"Quantity {quantity} rounds to zero for {symbol}")

        if self.supports_market_orders:
            return OrderRequest(
                symbol=symbol,
                side=order_side,
                position_side=position_side,
                order_type="MARKET",
                quantity=rounded_qty,
                reduce_only=reduce_only,
            )

        market_price = self.get_market_price(symbol)
        limit_price = self.precision.round_price(
            symbol, self.aggressive_price(market_price, order_side)
        )
        return OrderRequest(
            symbol=symbol,
            side=order_side,
            position_side=position_side,
            order_type="LIMIT",
            quantity=rounded_qty,
            price=limit_price,
            reduce_only=reduce_only,
        )

    def best_effort(self, step: str, action: Callable[[], object]) -> CleanupResult:
        """
        Run a non-critical step, converting its failure into a CleanupResult.

        A CancelReport with failed cancels also counts as a failed step.
        """
        try:
            outcome = action()
        except (GatewayError, ValueError) as e:
            logger.warning(f"{step} failed (continuing): {e}")
            return CleanupResult(step=step, success=False, error=str(e))

        if isinstance(outcome, CancelReport) and outcome.failed:
            return CleanupResult(
                step=step,
                success=False,
                error=f"{len(outcome.failed)} of "
                      f"{len(outcome.failed) + len(outcome.cancelled)} cancels failed",
            )
        return CleanupResult(step=step, success=True)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def open_position(self, symbol: str, side: str, quantity: float, leverage: int) -> OrderResult:
        """
        Open or add to a position.

        Steps: best-effort cancel of stale orders, leverage, venue setup,
        aggressive pricing, rounding, submission. The caller is responsible
        for not opening a side that is already open.

        Args:
            symbol: Trading pair
            side: 'long' or 'short'
            quantity: Base quantity before rounding
            leverage: Target leverage

        Returns:
            OrderResult: Venue acknowledgement with the stale-order cleanup
                outcome in cleanup

        Raises:
            ValueError: Invalid side, quantity or leverage
            GatewayError: Leverage change, precision lookup or submission failed
        """
        side = normalize_side(side)
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")

        cleanup = [
            self.best_effort("cancel_all_orders", lambda: self.cancel_all_orders(symbol))
        ]
        self.set_leverage(symbol, leverage)
        self._prepare_symbol(symbol)

        order_side = "BUY" if side == "long" else "SELL"
        request = self._build_fill_order(symbol, order_side, side, quantity, reduce_only=False)
        result = self._submit_order(request)

        logger.info(
            f"Opened {side} {symbol}: qty={request.quantity} "
            f"type={request.order_type} order_id={result.order_id}"
        )
        return result.model_copy(update={"cleanup": cleanup})

    def close_position(self, symbol: str, side: str, quantity: float = 0.0) -> OrderResult:
        """
        Reduce or close a position.

        A quantity of 0 closes the whole position, sized from the cached
        position snapshot. After the close, resting stop-loss and
        take-profit orders for the symbol are cancelled best-effort.

        Raises:
            NotFoundError: quantity is 0 and no position exists for
                symbol/side (no order is sent)
        """
        side = normalize_side(side)
        if quantity < 0:
            raise ValueError(f"quantity must not be negative, got {quantity}")

        if quantity == 0:
            position = self.get_position(symbol, side)
            if position is None:
                raise NotFoundError(f"No {side} position found for {symbol}")
            quantity = position.quantity

        order_side = "SELL" if side == "long" else "BUY"
        request = self._build_fill_order(symbol, order_side, side, quantity, reduce_only=True)
        result = self._submit_order(request)
        logger.info(
            f"Closed {side} {symbol}: qty={request.quantity} order_id={result.order_id}"
        )

        cleanup = [
            self.best_effort("cancel_stop_orders", lambda: self.cancel_stop_orders(symbol))
        ]
        return result.model_copy(update={"cleanup": cleanup})

    def open_long(self, symbol: str, quantity: float, leverage: int) -> OrderResult:
        return self.open_position(symbol, "long", quantity, leverage)

    def open_short(self, symbol: str, quantity: float, leverage: int) -> OrderResult:
        return self.open_position(symbol, "short", quantity, leverage)

    def close_long(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        return self.close_position(symbol, "long", quantity)

    def close_short(self, symbol: str, quantity: float = 0.0) -> OrderResult:
        return self.close_position(symbol, "short", quantity)

    def _place_trigger(
        self,
        order_type: str,
        symbol: str,
        side: str,
        quantity: float,
        trigger_price: float
    ) -> OrderResult:
        side = normalize_side(side)
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        if trigger_price <= 0:
            raise ValueError(f"trigger price must be positive, got {trigger_price}")

        request = OrderRequest(
            symbol=symbol,
            side="SELL" if side == "long" else "BUY",
            position_side=side,
            order_type=order_type,
            quantity=self.precision.round_quantity(symbol, quantity),
            trigger_price=self.precision.round_price(symbol, trigger_price),
            reduce_only=True,
        )
        result = self._submit_order(request)
        logger.info(
            f"{order_type} set for {side} {symbol} at {request.trigger_price} "
            f"(qty={request.quantity})"
        )
        return result

    def set_stop_loss(
        self,
        symbol: str,
        side: str,
        quantity: float,
        stop_price: float
    ) -> OrderResult:
        """Place a reduce-only stop-market order against a position."""
        return self._place_trigger("STOP_MARKET", symbol, side, quantity, stop_price)

    def set_take_profit(
        self,
        symbol: str,
        side: str,
        quantity: float,
        take_profit_price: float
    ) -> OrderResult:
        """Place a reduce-only take-profit-market order against a position."""
        return self._place_trigger(
            "TAKE_PROFIT_MARKET", symbol, side, quantity, take_profit_price
        )

    def cancel_stop_orders(self, symbol: str) -> CancelReport:
        """
        Cancel every stop-loss and take-profit order for symbol.

        Each cancel is attempted independently; failures are logged and
        collected in the report instead of stopping the loop.

        Raises:
            GatewayError: Only if listing open orders fails.
        """
        report = CancelReport(symbol=symbol)
        for order in self._list_open_orders(symbol):
            if not order.is_protective:
                continue
            try:
                self._cancel_order(symbol, order.order_id)
            except GatewayError as e:
                logger.warning(f"Failed to cancel {order.order_type} {order.order_id}: {e}")
                report.failed[order.order_id] = str(e)
            else:
                logger.info(f"Cancelled {order.order_type} {order.order_id} for {symbol}")
                report.cancelled.append(order.order_id)

        if not report.cancelled and not report.failed:
            logger.debug(f"No stop orders to cancel for {symbol}")
        return report

    def format_quantity(self, symbol: str, quantity: float) -> str:
        """Format quantity as the venue-legal decimal string for symbol."""
        return self.precision.format_quantity(symbol, quantity)

    def get_order_history(
        self,
        start_time: int = 0,
        end_time: int = 0,
        limit: int = 500
    ) -> List[OrderHistoryEntry]:
        """
        Return filled orders. Venues without history support return [].
        """
        logger.debug(f"Order history not supported on {self.exchange}")
        return []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(exchange='{self.exchange}')"
