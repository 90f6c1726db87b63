"""
Decision cycle execution for one trader.

This module runs a batch of trade intents against a Trader:
- Intents are sequenced (closes, opens, then the rest)
- Each intent runs to completion before the next starts
- A fixed pause follows every successful action, hold and wait included
- One intent's failure is recorded and never aborts the rest of the cycle

Every intent yields an ActionRecord describing what was sent and whether it
succeeded, so the caller can log or persist the cycle.
"""

import time
from typing import Any, Callable, Dict, Iterable, List, Optional
from loguru import logger

from src.core.config import GatewayConfig
from src.core.exceptions import GatewayError, NotFoundError
from src.core.models import ActionRecord, TradeIntent
from src.execution.trader import Trader
from .sequencer import sequence_intents


class DecisionExecutor:
    """
    Executes decision cycles against a single trader.

    Action semantics:
        open_long / open_short: Rejected if the same side is already open.
            Quantity comes from the intent, or position_size_usd divided by
            the market price. Stop-loss and take-profit from the intent are
            placed best-effort after the open.
        close_long / close_short: Close the whole position.
        update_stop_loss / update_take_profit: Cancel the symbol's existing
            stop orders best-effort, then place the new trigger for the full
            position.
        hold / wait: No-op.

    Configuration:
        default_leverage (int): Leverage for opens without one (default: 5)
        action_pause_seconds (float): Pause after each successful action,
            hold and wait included (default: 1.0)

    Examples:
        >>> executor = DecisionExecutor.from_config(trader, load_config())
        >>> records = executor.execute_cycle([
        ...     TradeIntent(symbol="BTCUSDT", action="open_long", position_size_usd=100),
        ... ])
        >>> records[0].success
        True
    """

    def __init__(
        self,
        trader: Trader,
        config: Optional[Dict[str, Any]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize executor with configuration.

        Args:
            trader (Trader): Trader the intents are executed against
            config (Dict[str, Any], optional): Configuration overrides
            sleep: Blocking sleep used for the inter-action pause
        """
        default_config = {
            "default_leverage": 5,
            "action_pause_seconds": 1.0,
        }
        self._config = {**default_config, **(config or {})}
        self.trader = trader
        self._sleep = sleep

        self._cycles_run: int = 0
        self._actions_succeeded: int = 0
        self._actions_failed: int = 0

        self._handlers: Dict[str, Callable[[TradeIntent, ActionRecord], None]] = {
            "open_long": self._execute_open,
            "open_short": self._execute_open,
            "close_long": self._execute_close,
            "close_short": self._execute_close,
            "update_stop_loss": self._execute_update_protection,
            "update_take_profit": self._execute_update_protection,
            "hold": self._execute_idle,
            "wait": self._execute_idle,
        }

    @classmethod
    def from_config(
        cls,
        trader: Trader,
        settings: GatewayConfig,
        sleep: Callable[[float], None] = time.sleep
    ) -> "DecisionExecutor":
        """Build an executor using the gateway's leverage and pause settings."""
        return cls(
            trader,
            {
                "default_leverage": settings.default_leverage,
                "action_pause_seconds": settings.action_pause_seconds,
            },
            sleep=sleep,
        )

    def execute_cycle(self, intents: Iterable[TradeIntent]) -> List[ActionRecord]:
        """
        Sequence and execute one batch of intents.

        Every successful intent, hold and wait included, is followed by
        action_pause_seconds of sleep. Failed intents are not.

        Args:
            intents: Decisions for this cycle, in any order

        Returns:
            List[ActionRecord]: One record per intent, in execution order
        """
        ordered = sequence_intents(intents)
        self._cycles_run += 1
        logger.info(
            f"Executing cycle #{self._cycles_run} on {self.trader.exchange}: "
            f"{len(ordered)} decisions"
        )

        records = []
        for intent in ordered:
            record = self.execute(intent)
            records.append(record)

            pause = self._config["action_pause_seconds"]
            if record.success and pause > 0:
                self._sleep(pause)

        succeeded = sum(1 for record in records if record.success)
        logger.info(
            f"Cycle #{self._cycles_run} finished: {succeeded}/{len(records)} succeeded"
        )
        return records

    def execute(self, intent: TradeIntent) -> ActionRecord:
        """
        Execute a single intent, capturing any gateway failure in the record.

        Programming errors (anything other than GatewayError or ValueError)
        propagate.
        """
        record = ActionRecord(action=intent.action, symbol=intent.symbol)
        handler = self._handlers.get(intent.action)

        if handler is None:
            record.error = f"Unknown action: {intent.action}"
            logger.error(f"Skipping {intent.symbol}: {record.error}")
            self._actions_failed += 1
            return record

        try:
            handler(intent, record)
        except (GatewayError, ValueError) as e:
            record.success = False
            record.error = str(e)
            self._actions_failed += 1
            logger.error(f"{intent.action} {intent.symbol} failed: {e}")
            return record

        record.success = True
        self._actions_succeeded += 1
        return record

    def _execute_open(self, intent: TradeIntent, record: ActionRecord) -> None:
        side = intent.side
        existing = self.trader.get_position(intent.symbol, side)
        if existing is not None:
            raise ValueError(
                f"{intent.symbol} already has a {side} position "
                f"({existing.quantity}); refusing to open another"
            )

        price = self.trader.get_market_price(intent.symbol)
        if intent.quantity is not None:
            quantity = intent.quantity
        elif intent.position_size_usd is not None:
            quantity = intent.position_size_usd / price
        else:
            raise ValueError(f"{intent.action} {intent.symbol} has no size")

        leverage = intent.leverage or self._config["default_leverage"]
        record.quantity = quantity
        record.price = price
        record.leverage = leverage

        result = self.trader.open_position(intent.symbol, side, quantity, leverage)
        record.order_id = result.order_id
        record.cleanup = list(result.cleanup)
        logger.info(
            f"{intent.action} {intent.symbol}: qty={quantity:.6f} @ ~{price} "
            f"x{leverage} order={result.order_id}"
        )

        if intent.stop_loss:
            record.cleanup.append(self.trader.best_effort(
                "set_stop_loss",
                lambda: self.trader.set_stop_loss(intent.symbol, side, quantity, intent.stop_loss),
            ))
        if intent.take_profit:
            record.cleanup.append(self.trader.best_effort(
                "set_take_profit",
                lambda: self.trader.set_take_profit(
                    intent.symbol, side, quantity, intent.take_profit
                ),
            ))

    def _execute_close(self, intent: TradeIntent, record: ActionRecord) -> None:
        result = self.trader.close_position(intent.symbol, intent.side, 0)
        record.order_id = result.order_id
        record.cleanup = list(result.cleanup)
        logger.info(f"{intent.action} {intent.symbol}: order={result.order_id}")

    def _execute_update_protection(self, intent: TradeIntent, record: ActionRecord) -> None:
        trigger = intent.stop_loss if intent.action == "update_stop_loss" else intent.take_profit
        if trigger is None:
            raise ValueError(f"{intent.action} {intent.symbol} has no trigger price")

        position = self.trader.get_position(intent.symbol)
        if position is None:
            raise NotFoundError(f"No position for {intent.symbol} to protect")

        record.quantity = position.quantity
        record.price = trigger
        record.cleanup.append(self.trader.best_effort(
            "cancel_stop_orders", lambda: self.trader.cancel_stop_orders(intent.symbol)
        ))

        if intent.action == "update_stop_loss":
            result = self.trader.set_stop_loss(
                intent.symbol, position.side, position.quantity, trigger
            )
        else:
            result = self.trader.set_take_profit(
                intent.symbol, position.side, position.quantity, trigger
            )
        record.order_id = result.order_id
        logger.info(
            f"{intent.action} {intent.symbol} ({position.side}) -> {trigger}"
        )

    def _execute_idle(self, intent: TradeIntent, record: ActionRecord) -> None:
        logger.debug(f"{intent.action} {intent.symbol}: no action")

    @property
    def cycles_run(self) -> int:
        return self._cycles_run

    @property
    def actions_succeeded(self) -> int:
        return self._actions_succeeded

    @property
    def actions_failed(self) -> int:
        return self._actions_failed
