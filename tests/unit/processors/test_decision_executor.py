"""
Unit tests for DecisionExecutor.

Tests cover:
- Per-action behavior (open, close, protection updates, idle, unknown)
- Cycle ordering and pause handling
- Failure isolation between intents
- Best-effort protective orders after an open
"""

import pytest

from src.core.config import load_config
from src.core.exceptions import VenueRejection
from src.core.models import TradeIntent
from src.processors.decision_executor import DecisionExecutor
from conftest import FakeTrader


@pytest.fixture
def trader():
    return FakeTrader(market_price=40000.0)


@pytest.fixture
def pauses():
    return []


@pytest.fixture
def executor(trader, pauses):
    return DecisionExecutor(trader, sleep=pauses.append)


class TestOpen:

    def test_open_sized_from_usd(self, executor, trader):
        record = executor.execute(TradeIntent(
            symbol="BTCUSDT", action="open_long", position_size_usd=400.0, leverage=10
        ))

        assert record.success is True
        assert record.quantity == pytest.approx(0.01)
        assert record.price == 40000.0
        assert record.leverage == 10
        assert record.order_id == "1"
        assert trader.submitted[0].quantity == 0.01
        assert trader.leverage_calls == [("BTCUSDT", 10)]

    def test_explicit_quantity_and_default_leverage(self, executor, trader):
        record = executor.execute(TradeIntent(
            symbol="BTCUSDT", action="open_short", quantity=0.02
        ))

        assert record.success is True
        assert record.leverage == 5
        assert trader.submitted[0].side == "SELL"

    def test_configured_default_leverage(self, trader):
        executor = DecisionExecutor(trader, {"default_leverage": 3})

        executor.execute(TradeIntent(symbol="BTCUSDT", action="open_long", quantity=0.01))

        assert trader.leverage_calls == [("BTCUSDT", 3)]

    def test_rejected_when_side_already_open(self, executor, trader, long_position):
        trader.positions = [long_position]

        record = executor.execute(TradeIntent(
            symbol="BTCUSDT", action="open_long", quantity=0.01
        ))

        assert record.success is False
        assert "already has a long position" in record.error
        assert trader.submitted == []

    def test_opposite_side_allowed(self, executor, trader, long_position):
        trader.positions = [long_position]

        record = executor.execute(TradeIntent(
            symbol="BTCUSDT", action="open_short", quantity=0.01
        ))

        assert record.success is True

    def test_no_size(self, executor, trader):
        record = executor.execute(TradeIntent(symbol="BTCUSDT", action="open_long"))

        assert record.success is False
        assert "has no size" in record.error

    def test_protection_placed_after_open(self, executor, trader):
        record = executor.execute(TradeIntent(
            symbol="BTCUSDT", action="open_long", quantity=0.01,
            stop_loss=38000.0, take_profit=45000.0
        ))

        types = [r.order_type for r in trader.submitted]
        assert types == ["MARKET", "STOP_MARKET", "TAKE_PROFIT_MARKET"]
        assert [c.step for c in record.cleanup] == [
            "cancel_all_orders", "set_stop_loss", "set_take_profit"
        ]
        assert record.success is True

    def test_failed_protection_keeps_open_successful(self, executor, trader):
        original = trader._submit_order

        def submit(request):
            if request.is_trigger:
                raise VenueRejection("Order would immediately trigger")
            return original(request)

        trader._submit_order = submit

        record = executor.execute(TradeIntent(
            symbol="BTCUSDT", action="open_long", quantity=0.01, stop_loss=41000.0
        ))

        assert record.success is True
        assert record.cleanup[-1].success is False
        assert "immediately trigger" in record.cleanup[-1].error


class TestClose:

    def test_close_whole_position(self, executor, trader, long_position):
        trader.positions = [long_position]

        record = executor.execute(TradeIntent(symbol="BTCUSDT", action="close_long"))

        assert record.success is True
        assert trader.submitted[0].quantity == 0.5
        assert trader.submitted[0].reduce_only is True

    def test_close_without_position(self, executor, trader):
        record = executor.execute(TradeIntent(symbol="BTCUSDT", action="close_short"))

        assert record.success is False
        assert "No short position" in record.error
        assert trader.submitted == []


class TestUpdateProtection:

    def test_update_stop_loss(self, executor, trader, long_position, mixed_open_orders):
        trader.positions = [long_position]
        trader.open_orders = mixed_open_orders

        record = executor.execute(TradeIntent(
            symbol="BTCUSDT", action="update_stop_loss", stop_loss=39500.0
        ))

        assert record.success is True
        assert trader.cancelled == ["2", "3"]
        request = trader.submitted[0]
        assert request.order_type == "STOP_MARKET"
        assert request.quantity == 0.5
        assert request.trigger_price == 39500.0

    def test_update_take_profit(self, executor, trader, long_position):
        trader.positions = [long_position]

        record = executor.execute(TradeIntent(
            symbol="BTCUSDT", action="update_take_profit", take_profit=45000.0
        ))

        assert record.success is True
        assert trader.submitted[0].order_type == "TAKE_PROFIT_MARKET"

    def test_update_without_position(self, executor):
        record = executor.execute(TradeIntent(
            symbol="BTCUSDT", action="update_stop_loss", stop_loss=39500.0
        ))

        assert record.success is False
        assert "No position" in record.error

    def test_update_without_price(self, executor):
        record = executor.execute(TradeIntent(symbol="BTCUSDT", action="update_take_profit"))

        assert record.success is False
        assert "no trigger price" in record.error

    def test_cancel_failure_does_not_block_update(
        self, executor, trader, long_position, mixed_open_orders
    ):
        trader.positions = [long_position]
        trader.open_orders = mixed_open_orders
        trader.fail_cancel_ids = {"2"}

        record = executor.execute(TradeIntent(
            symbol="BTCUSDT", action="update_stop_loss", stop_loss=39500.0
        ))

        assert record.success is True
        assert record.cleanup[0].success is False
        assert len(trader.submitted) == 1


class TestIdleAndUnknown:

    def test_hold_is_noop(self, executor, trader):
        record = executor.execute(TradeIntent(symbol="BTCUSDT", action="hold"))

        assert record.success is True
        assert trader.submitted == []

    def test_unknown_action(self, executor):
        record = executor.execute(TradeIntent(symbol="BTCUSDT", action="rebalance"))

        assert record.success is False
        assert record.error == "Unknown action: rebalance"


class TestCycle:

    def test_closes_run_before_opens(self, executor, trader, long_position):
        trader.positions = [long_position]

        records = executor.execute_cycle([
            TradeIntent(symbol="ETHUSDT", action="hold"),
            TradeIntent(symbol="BTCUSDT", action="open_short", quantity=0.01),
            TradeIntent(symbol="BTCUSDT", action="close_long"),
        ])

        assert [r.action for r in records] == ["close_long", "open_short", "hold"]
        assert all(r.success for r in records)

    def test_pause_after_every_success(self, executor, trader, pauses):
        executor.execute_cycle([
            TradeIntent(symbol="BTCUSDT", action="open_long", quantity=0.01),
            TradeIntent(symbol="BTCUSDT", action="close_short"),  # fails: no position
            TradeIntent(symbol="BTCUSDT", action="wait"),
        ])

        # open_long and wait succeed, close_short does not
        assert pauses == [1.0, 1.0]

    def test_no_pause_after_failure(self, executor, pauses):
        executor.execute_cycle([TradeIntent(symbol="BTCUSDT", action="rebalance")])

        assert pauses == []

    def test_failure_does_not_abort_cycle(self, executor, trader):
        records = executor.execute_cycle([
            TradeIntent(symbol="BTCUSDT", action="close_long"),
            TradeIntent(symbol="BTCUSDT", action="open_long", quantity=0.01),
        ])

        assert [r.success for r in records] == [False, True]
        assert executor.actions_failed == 1
        assert executor.actions_succeeded == 1
        assert executor.cycles_run == 1

    def test_zero_pause(self, trader, pauses):
        executor = DecisionExecutor(trader, {"action_pause_seconds": 0}, sleep=pauses.append)

        executor.execute_cycle([
            TradeIntent(symbol="BTCUSDT", action="open_long", quantity=0.01),
        ])

        assert pauses == []

    def test_programming_errors_propagate(self, executor, trader):
        def broken(symbol):
            raise KeyError("bug")

        trader.get_market_price = broken

        with pytest.raises(KeyError):
            executor.execute(TradeIntent(symbol="BTCUSDT", action="open_long", quantity=0.01))


class TestFromConfig:

    @pytest.fixture
    def settings(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            "default_leverage: 20\n"
            "action_pause_seconds: 0\n"
            "traders:\n"
            "  - id: bn\n"
            "    name: Binance\n"
            "    exchange: binance\n"
            "    api_key: key123\n"
            "    api_secret: secret456\n"
        )
        return load_config(config_path, env_file=tmp_path / ".env")

    def test_leverage_and_pause_from_yaml(self, trader, pauses, settings):
        executor = DecisionExecutor.from_config(trader, settings, sleep=pauses.append)

        record = executor.execute_cycle([
            TradeIntent(symbol="BTCUSDT", action="open_long", quantity=0.01),
        ])[0]

        assert record.leverage == 20
        assert trader.leverage_calls == [("BTCUSDT", 20)]
        assert pauses == []

    def test_intent_leverage_wins(self, trader, pauses, settings):
        executor = DecisionExecutor.from_config(trader, settings, sleep=pauses.append)

        executor.execute(TradeIntent(
            symbol="BTCUSDT", action="open_short", quantity=0.01, leverage=3
        ))

        assert trader.leverage_calls == [("BTCUSDT", 3)]
