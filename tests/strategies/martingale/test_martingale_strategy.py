"""Tests for MartingaleStrategy"""

import asyncio
from decimal import Decimal

import pytest

from tradebot.api.models import OrderFill, OrderSide, OrderType
from tradebot.config.schemas import BotType
from tradebot.core.events import EventType
from tradebot.core.exceptions import ConfigurationError, StrategyStateError
from tradebot.strategies.martingale import MartingaleStrategy, MartingaleStrategyParams


@pytest.fixture
def make_martingale(paper_exchange, config_factory, sim_time, recorder, stop_after):
    def factory(metadata=None, **overrides):
        config = config_factory(BotType.MARTINGALE, metadata=metadata or {}, **overrides)
        strategy = MartingaleStrategy(paper_exchange, config, time_provider=sim_time)
        recorder.attach(strategy)
        stop_after.append(strategy)
        return strategy

    return factory


class TestMartingaleParams:
    """Test martingale settings"""

    def test_defaults(self):
        """Test defaults"""
        params = MartingaleStrategyParams.from_metadata({})

        assert params.step_multiplier == Decimal("2.0")
        assert params.max_orders == 5
        assert params.entry_trigger.price_drop_percentage == Decimal("2.0")
        assert params.exit_strategy.profit_percentage == Decimal("1.0")

    def test_order_size_for_step(self):
        """Test step sizes grow geometrically"""
        params = MartingaleStrategyParams.from_metadata(
            {"base_order_size": "50", "step_multiplier": "1.5"}
        )

        assert params.order_size_for_step(0) == Decimal("50")
        assert params.order_size_for_step(2) == Decimal("112.5")

    def test_total_potential_investment(self):
        """Test the sum over a full sequence"""
        params = MartingaleStrategyParams.from_metadata({"max_orders": 3})
        assert params.total_potential_investment == Decimal("700")

    @pytest.mark.parametrize(
        "metadata",
        [
            {"step_multiplier": "1.0"},
            {"step_multiplier": "6"},
            {"max_orders": 1},
            {"max_orders": 11},
            {"entry_trigger": {"price_drop_percentage": "0"}},
        ],
    )
    def test_invalid_settings(self, metadata):
        """Test out-of-range settings are rejected"""
        with pytest.raises(ConfigurationError):
            MartingaleStrategyParams.from_metadata(metadata)


class TestMartingaleEntries:
    """Test the searching phase and averaging down"""

    async def test_initial_reference_is_current_price(self, make_martingale):
        """Test initialization seeds the trackers from the live price"""
        strategy = make_martingale()
        await strategy.start()

        assert strategy.position.highest_price_seen == Decimal("2400")
        assert strategy.position.entry_reference_price == Decimal("2400")
        assert strategy.entry_trigger_price() == Decimal("2352")

    async def test_first_entry_on_drop(self, make_martingale, paper_exchange, recorder):
        """Test a 2% drop from the high places the base order"""
        strategy = make_martingale()
        await strategy.start()

        await paper_exchange.set_price("ETH", Decimal("2352"))

        request = paper_exchange.placed_orders[-1]
        assert request.type == OrderType.MARKET
        assert request.side == OrderSide.BUY
        assert request.size == Decimal("0.0425")

        position = strategy.get_position()
        assert position.is_in_position
        assert len(position.orders) == 1
        assert position.orders[0].amount_usd == Decimal("100")
        assert position.orders[0].filled
        assert position.total_position == Decimal("0.0425")
        assert position.average_entry_price == Decimal("2352")
        assert position.profit_target_price == Decimal("2352") * Decimal("1.01")
        assert position.next_order_size == Decimal("200")

        placed = recorder.of_type(EventType.ENTRY_ORDER_PLACED)[0]
        assert placed.data["order"]["order_number"] == 1

    async def test_no_entry_above_trigger(self, make_martingale, paper_exchange):
        """Test smaller drops do nothing"""
        strategy = make_martingale()
        await strategy.start()

        await paper_exchange.set_price("ETH", Decimal("2353"))

        assert paper_exchange.placed_orders == []
        assert not strategy.position.is_in_position

    async def test_reference_trails_new_highs(self, make_martingale, paper_exchange):
        """Test the entry reference follows the price up while searching"""
        strategy = make_martingale()
        await strategy.start()

        await paper_exchange.set_price("ETH", Decimal("2500"))
        assert strategy.position.entry_reference_price == Decimal("2500")

        await paper_exchange.set_price("ETH", Decimal("2460"))
        assert paper_exchange.placed_orders == []

        await paper_exchange.set_price("ETH", Decimal("2450"))
        assert strategy.position.is_in_position

    async def test_averaging_down_doubles_size(self, make_martingale, paper_exchange):
        """Test a further drop below the last entry adds the next step"""
        strategy = make_martingale()
        await strategy.start()

        await paper_exchange.set_price("ETH", Decimal("2352"))
        await paper_exchange.set_price("ETH", Decimal("2304.96"))

        position = strategy.position
        assert [order.amount_usd for order in position.orders] == [Decimal("100"), Decimal("200")]
        assert [order.order_number for order in position.orders] == [1, 2]
        assert position.total_position == Decimal("0.0425") + Decimal("0.0868")
        assert position.average_entry_price == position.total_invested / position.total_position
        assert position.next_order_size == Decimal("400")
        assert position.next_order_size == strategy.params.order_size_for_step(len(position.orders))

    async def test_max_orders_cap(self, make_martingale, paper_exchange):
        """Test the sequence stops at max_orders entries"""
        strategy = make_martingale({"max_orders": 2})
        await strategy.start()

        for price in ("2352", "2304.96", "2258.86"):
            await paper_exchange.set_price("ETH", Decimal(price))

        assert len(strategy.position.orders) == 2
        assert len(paper_exchange.placed_orders) == 2

    async def test_investment_cap(self, make_martingale, paper_exchange):
        """Test no entry may push total invested past the safety limit"""
        strategy = make_martingale(
            {"safety_controls": {"max_position_multiple": "2"}},
            investment_size=Decimal("100"),
        )
        await strategy.start()

        await paper_exchange.set_price("ETH", Decimal("2352"))
        await paper_exchange.set_price("ETH", Decimal("2304.96"))

        assert strategy.max_investment == Decimal("200")
        assert len(strategy.position.orders) == 1
        assert not strategy.can_place_order()

    async def test_rejected_entry(self, make_martingale, paper_exchange, recorder):
        """Test a rejected entry leaves the strategy searching"""
        strategy = make_martingale()
        await strategy.start()
        paper_exchange.reject_next_orders(1, "insufficient margin")

        await paper_exchange.set_price("ETH", Decimal("2352"))

        assert not strategy.position.is_in_position
        assert recorder.of_type(EventType.ORDER_ERROR)[0].data == {"error": "insufficient margin"}

    async def test_fill_for_unrecorded_entry_is_adopted(self, make_martingale, paper_exchange):
        """Test a buy fill with an unknown id becomes the next entry"""
        strategy = make_martingale()
        await strategy.start()

        await paper_exchange.emit_fill(
            OrderFill(
                symbol="ETH",
                order_id="early-fill",
                side=OrderSide.BUY,
                size=Decimal("0.05"),
                price=Decimal("2000"),
            )
        )

        order = strategy.position.find_order("early-fill")
        assert order is not None
        assert order.filled
        assert order.amount_usd == Decimal("100")
        assert strategy.position.is_in_position
        assert strategy.position.next_order_size == Decimal("200")


class TestMartingaleExit:
    """Test profit exits and sequence reset"""

    async def test_exit_at_profit_target_resets(self, make_martingale, paper_exchange, recorder):
        """Test reaching the target sells everything and restarts the sequence"""
        strategy = make_martingale()
        await strategy.start()
        await paper_exchange.set_price("ETH", Decimal("2352"))
        await paper_exchange.set_price("ETH", Decimal("2304.96"))
        invested = strategy.position.total_invested
        size = strategy.position.total_position

        await paper_exchange.set_price("ETH", Decimal("2400"))

        exit_request = paper_exchange.placed_orders[-1]
        assert exit_request.side == OrderSide.SELL
        assert exit_request.reduce_only
        assert exit_request.size == size

        exit_event = recorder.of_type(EventType.EXIT_ORDER_PLACED)[0]
        assert exit_event.data["exit_price"] == Decimal("2400")
        assert exit_event.data["total_invested"] == invested
        assert exit_event.data["profit"] > 0

        assert strategy.get_state().profits == size * Decimal("2400") - invested
        position = strategy.position
        assert not position.is_in_position
        assert position.orders == []
        assert position.total_position == Decimal("0")
        assert position.next_order_size == Decimal("100")
        assert position.entry_reference_price == Decimal("2400")
        assert position.highest_price_seen == Decimal("2400")

    async def test_no_entry_while_exit_pending(self, make_martingale, paper_exchange):
        """Test an unfilled exit blocks further entries"""
        strategy = make_martingale()
        await strategy.start()

        await paper_exchange.set_price("ETH", Decimal("2352"))
        await strategy.process_price_update(Decimal("2400"))

        assert strategy.position.pending_exit_order_id is not None
        assert paper_exchange.pending_fill_count == 1

        await strategy.process_price_update(Decimal("2200"))

        assert len(paper_exchange.placed_orders) == 2

    async def test_partial_exit_fill(self, make_martingale, paper_exchange):
        """Test a partial exit fill only reduces the position"""
        strategy = make_martingale()
        await strategy.start()
        await paper_exchange.set_price("ETH", Decimal("2352"))

        await paper_exchange.emit_fill(
            OrderFill(
                symbol="ETH",
                order_id="exit-part",
                side=OrderSide.SELL,
                size=Decimal("0.02"),
                price=Decimal("2360"),
            )
        )

        assert strategy.position.is_in_position
        assert strategy.position.total_position == Decimal("0.0225")
        assert strategy.get_state().profits == Decimal("0")

    async def test_exit_proceeds_accumulate_across_partial_fills(
        self, make_martingale, paper_exchange
    ):
        """Test realized profit counts every exit fill, not only the last"""
        strategy = make_martingale()
        await strategy.start()
        await paper_exchange.set_price("ETH", Decimal("2352"))
        invested = strategy.position.total_invested

        for order_id, size, price in (
            ("exit-1", Decimal("0.02"), Decimal("2360")),
            ("exit-2", Decimal("0.0225"), Decimal("2370")),
        ):
            await paper_exchange.emit_fill(
                OrderFill(
                    symbol="ETH", order_id=order_id, side=OrderSide.SELL, size=size, price=price
                )
            )

        proceeds = Decimal("0.02") * Decimal("2360") + Decimal("0.0225") * Decimal("2370")
        expected = proceeds - invested
        assert strategy.get_state().profits == expected
        assert not strategy.position.is_in_position
        assert strategy.position.exit_proceeds == Decimal("0")

    async def test_sell_fill_while_flat_is_ignored(self, make_martingale, paper_exchange, recorder):
        """Test a sell with no open sequence books nothing"""
        strategy = make_martingale()
        await strategy.start()

        await paper_exchange.emit_fill(
            OrderFill(
                symbol="ETH",
                order_id="stray-sell",
                side=OrderSide.SELL,
                size=Decimal("0.5"),
                price=Decimal("2400"),
            )
        )

        assert strategy.get_state().profits == Decimal("0")
        assert strategy.get_state().total_position == Decimal("0")
        assert strategy.position.entry_reference_price == Decimal("2400")
        assert recorder.of_type(EventType.ORDER_FILLED) == []

    async def test_stop_loss_signal_on_fill(self, make_martingale, paper_exchange, recorder):
        """Test risk signals are evaluated against the average entry"""
        strategy = make_martingale(stop_loss=Decimal("5"))
        await strategy.start()
        await paper_exchange.set_price("ETH", Decimal("2352"))

        await paper_exchange.emit_fill(
            OrderFill(
                symbol="ETH",
                order_id="deep-buy",
                side=OrderSide.BUY,
                size=Decimal("0.001"),
                price=Decimal("2200"),
            )
        )

        assert recorder.of_type(EventType.STOP_LOSS_TRIGGERED)


class TestMartingaleControls:
    """Test manual triggers, polling and statistics"""

    async def test_manual_triggers_require_running(self, make_martingale):
        """Test manual triggers on a stopped strategy raise"""
        strategy = make_martingale()

        with pytest.raises(StrategyStateError):
            await strategy.trigger_manual_entry()
        with pytest.raises(StrategyStateError):
            await strategy.trigger_manual_exit()

    async def test_manual_entry_and_exit(self, make_martingale, paper_exchange):
        """Test manual entry at the current price, then manual exit"""
        strategy = make_martingale()
        await strategy.start()

        with pytest.raises(StrategyStateError, match="Not in position"):
            await strategy.trigger_manual_exit()

        assert await strategy.trigger_manual_entry()
        await paper_exchange.deliver_fills()

        with pytest.raises(StrategyStateError, match="Already in position"):
            await strategy.trigger_manual_entry()

        assert await strategy.trigger_manual_exit()
        await paper_exchange.deliver_fills()
        assert not strategy.position.is_in_position

    async def test_price_poll_drives_entries(self, make_martingale, paper_exchange):
        """Test the polling timer checks the trigger without a price feed"""
        strategy = make_martingale()
        strategy.price_poll_interval = 0.01
        await strategy.start()

        paper_exchange._prices["ETH"] = Decimal("2300")

        for _ in range(50):
            if strategy.position.orders:
                break
            await asyncio.sleep(0.01)

        assert len(strategy.position.orders) == 1

    async def test_update_config_recomputes_next_size(self, make_martingale, paper_exchange):
        """Test a new step multiplier applies to the next entry"""
        strategy = make_martingale()
        await strategy.start()
        await paper_exchange.set_price("ETH", Decimal("2352"))

        await strategy.update_config({"metadata": {"step_multiplier": "3"}})

        assert strategy.position.next_order_size == Decimal("300")
        assert strategy.position.is_in_position

    async def test_statistics(self, make_martingale, paper_exchange):
        """Test martingale statistics"""
        strategy = make_martingale()
        await strategy.start()
        await paper_exchange.set_price("ETH", Decimal("2352"))

        stats = strategy.get_statistics()

        assert stats["strategy"] == "martingale"
        assert stats["martingale_position"]["is_in_position"]
        assert stats["martingale_position"]["total_orders"] == 1
        assert stats["martingale_config"]["step_multiplier"] == Decimal("2.0")
        assert stats["triggers"]["entry_reference_price"] == Decimal("2352")
        assert stats["triggers"]["entry_trigger_price"] == Decimal("2352") * Decimal("0.98")
