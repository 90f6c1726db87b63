"""
Venue-independent trading records with validation.

This module defines the fixed schemas every trader backend produces and
consumes, so orchestration code never touches venue-specific payloads:
- PrecisionSpec: Per-symbol rounding rules
- PositionSnapshot / BalanceSnapshot: Normalized account state
- TradeIntent: One decision produced by the upstream decision engine
- OrderRequest / OrderResult: Normalized order submission and outcome
- OpenOrder / CancelReport / CleanupResult: Order housekeeping results
- OrderHistoryEntry: Filled order record
- SignedRequest: Wallet-signed request parameters
- ActionRecord: Execution record of one intent within a cycle
"""

from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime, timezone


OPEN_ACTIONS = ("open_long", "open_short")
CLOSE_ACTIONS = ("close_long", "close_short")
UPDATE_ACTIONS = ("update_stop_loss", "update_take_profit")
IDLE_ACTIONS = ("hold", "wait")
KNOWN_ACTIONS = OPEN_ACTIONS + CLOSE_ACTIONS + UPDATE_ACTIONS + IDLE_ACTIONS

PROTECTIVE_ORDER_TYPES = frozenset(
    {"STOP_MARKET", "TAKE_PROFIT_MARKET", "STOP", "TAKE_PROFIT"}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PrecisionSpec(BaseModel):
    """
    Immutable rounding rules for one symbol.

    When tick_size/step_size are known they take priority over the decimal
    precision. sig_figs, when set, rounds prices to a fixed number of
    significant figures instead (used by venues that quote that way).

    Attributes:
        symbol: Trading pair (e.g., 'BTCUSDT')
        price_precision: Decimal places for prices
        quantity_precision: Decimal places for quantities
        tick_size: Minimum price increment (0 when unknown)
        step_size: Minimum quantity increment (0 when unknown)
        sig_figs: Significant figures for prices (None when unused)

    Examples:
        >>> spec = PrecisionSpec(
        ...     symbol="BTCUSDT",
        ...     price_precision=2,
        ...     quantity_precision=3,
        ...     tick_size=0.1,
        ...     step_size=0.001
        ... )
        >>> spec.tick_size
        0.1
    """

    model_config = {"frozen": True}

    symbol: str = Field(min_length=1, description="Trading pair symbol")
    price_precision: int = Field(default=2, ge=0, description="Price decimals")
    quantity_precision: int = Field(default=3, ge=0, description="Quantity decimals")
    tick_size: float = Field(default=0.0, ge=0, description="Price increment")
    step_size: float = Field(default=0.0, ge=0, description="Quantity increment")
    sig_figs: Optional[int] = Field(
        default=None,
        ge=1,
        description="Significant figures for prices"
    )


class PositionSnapshot(BaseModel):
    """
    Immutable, venue-independent view of one open position.

    Quantity is always positive; direction lives in side, never in the sign
    of the quantity.

    Attributes:
        symbol: Trading pair (e.g., 'BTCUSDT')
        side: Position direction ('long' or 'short')
        quantity: Absolute position size in base currency
        entry_price: Average entry price
        mark_price: Current mark price
        leverage: Position leverage
        unrealized_pnl: Unrealized profit in quote currency
        liquidation_price: Liquidation price (0 when the venue reports none)

    Examples:
        >>> pos = PositionSnapshot(
        ...     symbol="BTCUSDT",
        ...     side="long",
        ...     quantity=0.5,
        ...     entry_price=40000.0,
        ...     mark_price=41000.0,
        ...     leverage=5,
        ...     unrealized_pnl=500.0
        ... )
        >>> pos.margin_used
        4100.0
    """

    model_config = {"frozen": True}

    symbol: str = Field(min_length=1, description="Trading pair symbol")
    side: Literal["long", "short"] = Field(description="Position direction")
    quantity: float = Field(gt=0, description="Absolute position size")
    entry_price: float = Field(ge=0, description="Average entry price")
    mark_price: float = Field(ge=0, description="Current mark price")
    leverage: int = Field(default=1, ge=1, description="Position leverage")
    unrealized_pnl: float = Field(default=0.0, description="Unrealized profit")
    liquidation_price: float = Field(
        default=0.0,
        ge=0,
        description="Liquidation price"
    )

    @property
    def notional(self) -> float:
        """Position value at the mark price."""
        return self.quantity * self.mark_price

    @property
    def margin_used(self) -> float:
        """Margin held by the position at its leverage."""
        return self.notional / self.leverage

    @property
    def unrealized_pnl_pct(self) -> float:
        """
        Leveraged unrealized return relative to entry, in percent.

        Returns 0.0 when the entry price is unknown.
        """
        if self.entry_price <= 0:
            return 0.0
        move = (self.mark_price - self.entry_price) / self.entry_price
        if self.side == "short":
            move = -move
        return move * self.leverage * 100


class BalanceSnapshot(BaseModel):
    """
    Immutable account balance view.

    Attributes:
        wallet_balance: Balance excluding unrealized profit
        available_balance: Balance free for new margin
        unrealized_profit: Sum of open positions' unrealized profit

    Examples:
        >>> bal = BalanceSnapshot(
        ...     wallet_balance=1000.0,
        ...     available_balance=800.0,
        ...     unrealized_profit=-25.0
        ... )
        >>> bal.total_equity
        975.0
    """

    model_config = {"frozen": True}

    wallet_balance: float = Field(description="Wallet balance")
    available_balance: float = Field(description="Available balance")
    unrealized_profit: float = Field(default=0.0, description="Unrealized profit")

    @property
    def total_equity(self) -> float:
        return self.wallet_balance + self.unrealized_profit


class TradeIntent(BaseModel):
    """
    One trading decision for a symbol.

    Unknown action strings are accepted so they can be sequenced last and
    reported as failed by the executor rather than dropped silently.

    Attributes:
        symbol: Trading pair (e.g., 'BTCUSDT')
        action: One of KNOWN_ACTIONS
        leverage: Target leverage for opens
        quantity: Explicit base quantity for opens
        position_size_usd: Notional size for opens when quantity is absent
        stop_loss: Stop-loss trigger price
        take_profit: Take-profit trigger price
        confidence: Decision confidence (0-100), informational
        reasoning: Decision rationale, informational

    Examples:
        >>> intent = TradeIntent(symbol="btcusdt", action="open_long",
        ...                      leverage=5, position_size_usd=100.0)
        >>> intent.symbol
        'BTCUSDT'
        >>> intent.is_open
        True
    """

    model_config = {"frozen": True}

    symbol: str = Field(min_length=1, description="Trading pair symbol")
    action: str = Field(min_length=1, description="Decision action")
    leverage: Optional[int] = Field(default=None, ge=1)
    quantity: Optional[float] = Field(default=None, gt=0)
    position_size_usd: Optional[float] = Field(default=None, gt=0)
    stop_loss: Optional[float] = Field(default=None, gt=0)
    take_profit: Optional[float] = Field(default=None, gt=0)
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    reasoning: str = ""

    @model_validator(mode="after")
    def normalize_symbol(self) -> "TradeIntent":
        """Uppercase the symbol and lowercase the action."""
        object.__setattr__(self, "symbol", self.symbol.strip().upper())
        object.__setattr__(self, "action", self.action.strip().lower())
        return self

    @property
    def is_open(self) -> bool:
        return self.action in OPEN_ACTIONS

    @property
    def is_close(self) -> bool:
        return self.action in CLOSE_ACTIONS

    @property
    def side(self) -> Optional[str]:
        """Position side the action refers to, or None."""
        if self.action.endswith("_long"):
            return "long"
        if self.action.endswith("_short"):
            return "short"
        return None


class OrderRequest(BaseModel):
    """
    Normalized order handed to a venue backend.

    Prices and quantities are already rounded to the symbol's precision.
    price is None for MARKET orders; trigger_price is set only for
    STOP_MARKET and TAKE_PROFIT_MARKET.
    """

    model_config = {"frozen": True}

    symbol: str = Field(min_length=1)
    side: Literal["BUY", "SELL"]
    position_side: Literal["long", "short"]
    order_type: Literal["MARKET", "LIMIT", "STOP_MARKET", "TAKE_PROFIT_MARKET"]
    quantity: float = Field(gt=0)
    price: Optional[float] = Field(default=None, gt=0)
    trigger_price: Optional[float] = Field(default=None, gt=0)
    reduce_only: bool = False

    @model_validator(mode="after")
    def validate_prices(self) -> "OrderRequest":
        """Ensure each order type carries the price it needs."""
        if self.order_type == "LIMIT" and self.price is None:
            raise ValueError("LIMIT order requires a price")
        if self.order_type in ("STOP_MARKET", "TAKE_PROFIT_MARKET") \
                and self.trigger_price is None:
            raise ValueError(f"{self.order_type} order requires a trigger_price")
        return self

    @property
    def is_trigger(self) -> bool:
        return self.order_type in ("STOP_MARKET", "TAKE_PROFIT_MARKET")


class CleanupResult(BaseModel):
    """Outcome of one best-effort housekeeping step."""

    model_config = {"frozen": True}

    step: str
    success: bool
    error: Optional[str] = None


class OrderResult(BaseModel):
    """
    Normalized outcome of a submitted order.

    cleanup carries the secondary results of best-effort steps (cancelling
    stale orders before an open, cancelling residual stops after a close).
    A failed cleanup step never turns a filled order into a failure.
    """

    model_config = {"frozen": True}

    order_id: str
    symbol: str
    status: str = "NEW"
    cleanup: List[CleanupResult] = Field(default_factory=list)

    @property
    def cleanup_failed(self) -> bool:
        return any(not step.success for step in self.cleanup)


class OpenOrder(BaseModel):
    """Normalized resting order."""

    model_config = {"frozen": True}

    order_id: str
    symbol: str
    order_type: str
    side: str = ""
    quantity: float = 0.0
    price: float = 0.0
    stop_price: float = 0.0

    @property
    def is_protective(self) -> bool:
        """True for stop-loss and take-profit orders."""
        return self.order_type.upper() in PROTECTIVE_ORDER_TYPES


class CancelReport(BaseModel):
    """
    Result of cancelling a symbol's protective orders.

    Individual cancel failures are collected in failed (order id -> error)
    instead of aborting the remaining cancels.
    """

    symbol: str
    cancelled: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed


class OrderHistoryEntry(BaseModel):
    """Filled order record from the venue's order history."""

    model_config = {"frozen": True}

    order_id: str
    symbol: str
    side: str
    position_side: str = ""
    order_type: str = ""
    status: str = "FILLED"
    executed_qty: float = 0.0
    avg_price: float = 0.0
    time: int = 0
    update_time: int = 0

    @property
    def total_value(self) -> float:
        return self.executed_qty * self.avg_price


class SignedRequest(BaseModel):
    """
    Request parameters after wallet signing.

    params already contains every field sent to the venue, including the
    user, signer, nonce and signature fields.
    """

    model_config = {"frozen": True}

    params: Dict[str, Any]
    nonce: int = Field(gt=0)
    signature: str = Field(pattern=r"^0x[0-9a-f]{130}$")


class ActionRecord(BaseModel):
    """
    Execution record of one intent in a decision cycle.

    Not frozen: the executor fills in quantity, price and order id as the
    action progresses.
    """

    action: str
    symbol: str
    quantity: float = 0.0
    leverage: int = 0
    price: float = 0.0
    order_id: str = ""
    success: bool = False
    error: str = ""
    cleanup: List[CleanupResult] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utcnow)
