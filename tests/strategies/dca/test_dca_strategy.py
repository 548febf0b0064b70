"""Tests for DCAStrategy"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from tradebot.api.models import OrderFill, OrderSide, OrderType
from tradebot.config.schemas import BotType
from tradebot.core.events import EventType
from tradebot.core.exceptions import StrategyStateError
from tradebot.strategies.dca import DCAStrategy


@pytest.fixture
def make_dca(paper_exchange, config_factory, sim_time, recorder, stop_after):
    def factory(metadata=None, **overrides):
        settings = {
            "symbol": "BTC",
            "investment_size": Decimal("5000"),
            "max_position": Decimal("1"),
            "metadata": metadata or {},
            **overrides,
        }
        config = config_factory(BotType.DCA, **settings)
        strategy = DCAStrategy(paper_exchange, config, time_provider=sim_time)
        # Keep the scheduler out of the way; tests fire orders directly
        strategy.first_order_delay = 3600
        recorder.attach(strategy)
        stop_after.append(strategy)
        return strategy

    return factory


def sell_fill(size, price, order_id="sell-1"):
    return OrderFill(
        symbol="BTC",
        order_id=order_id,
        side=OrderSide.SELL,
        size=Decimal(size),
        price=Decimal(price),
    )


class TestDCAOrdering:
    """Test scheduled buys and their caps"""

    async def test_place_order_and_fill(self, make_dca, paper_exchange, recorder):
        """Test one firing places a market buy that updates the position on fill"""
        dca = make_dca()
        await dca.start()

        assert await dca.place_next_order()
        request = paper_exchange.placed_orders[-1]
        assert request.type == OrderType.MARKET
        assert request.side == OrderSide.BUY
        assert request.size == Decimal("0.0025")

        assert await paper_exchange.deliver_fills() == 1

        position = dca.get_position()
        assert position.total_orders == 1
        assert position.current_position == Decimal("0.0025")
        assert position.total_invested == Decimal("100")
        assert position.average_cost == Decimal("40000")
        assert position.daily_orders_count == 1
        assert position.orders_history[0].filled
        assert dca.get_state().total_position == Decimal("0.0025")

        assert EventType.ORDER_PLACED in recorder.types()
        filled = recorder.of_type(EventType.ORDER_FILLED)[0]
        assert filled.data["position"]["total_orders"] == 1

    async def test_daily_cap_resets_next_day(self, make_dca, paper_exchange, sim_time):
        """Test the daily cap blocks until the calendar day changes"""
        dca = make_dca()
        await dca.start()

        assert await dca.place_next_order()
        await paper_exchange.deliver_fills()
        assert not await dca.place_next_order()

        sim_time.advance(timedelta(days=1))

        assert await dca.place_next_order()
        assert dca.position.daily_orders_count == 1

    async def test_lifetime_cap(self, make_dca, paper_exchange, sim_time):
        """Test max_orders counts filled buys for the lifetime of the strategy"""
        dca = make_dca({"max_orders": 2})
        await dca.start()

        for _ in range(2):
            assert await dca.place_next_order()
            await paper_exchange.deliver_fills()
            sim_time.advance(timedelta(days=1))

        assert not await dca.place_next_order()
        assert dca.position.total_orders == 2

    async def test_max_position_cap(self, make_dca, paper_exchange, sim_time):
        """Test no buy is placed once the position reaches max_position"""
        dca = make_dca(max_position=Decimal("0.0025"))
        await dca.start()

        assert await dca.place_next_order()
        await paper_exchange.deliver_fills()
        sim_time.advance(timedelta(days=1))

        assert not dca.can_place_order()
        assert not await dca.place_next_order()

    async def test_average_cost_across_buys(self, make_dca, paper_exchange, sim_time):
        """Test average cost is total invested over total bought"""
        dca = make_dca()
        await dca.start()

        await dca.place_next_order()
        await paper_exchange.deliver_fills()
        sim_time.advance(timedelta(days=1))
        await paper_exchange.set_price("BTC", Decimal("30000"))
        await dca.place_next_order()
        await paper_exchange.deliver_fills()

        position = dca.position
        assert position.current_position == Decimal("0.0025") + Decimal("0.003333")
        assert position.total_invested == Decimal("100") + Decimal("0.003333") * Decimal("30000")
        assert position.average_cost == position.total_invested / position.current_position
        assert Decimal("30000") < position.average_cost < Decimal("40000")

    async def test_rejected_order(self, make_dca, paper_exchange, recorder):
        """Test a rejected buy emits an order error and does not count"""
        dca = make_dca()
        await dca.start()
        paper_exchange.reject_next_orders(1, "insufficient balance")

        assert not await dca.place_next_order()

        assert dca.position.daily_orders_count == 0
        assert recorder.of_type(EventType.ORDER_ERROR)[0].data == {"error": "insufficient balance"}

    async def test_exchange_exception(self, make_dca, paper_exchange, recorder):
        """Test an exchange exception is reported, not raised"""
        dca = make_dca()
        await dca.start()
        paper_exchange.place_order = AsyncMock(side_effect=RuntimeError("timeout"))

        assert not await dca.place_next_order()
        assert recorder.of_type(EventType.ORDER_ERROR)[0].data == {"error": "timeout"}

    async def test_no_order_while_stopped_or_paused(self, make_dca, paper_exchange):
        """Test firings are skipped unless running and connected"""
        dca = make_dca()
        assert not await dca.place_next_order()

        await dca.start()
        await paper_exchange.simulate_disconnect()

        assert not await dca.place_next_order()
        assert paper_exchange.placed_orders == []

    async def test_manual_order(self, make_dca):
        """Test manual triggers require a running strategy"""
        dca = make_dca()
        with pytest.raises(StrategyStateError):
            await dca.trigger_manual_order()

        await dca.start()
        assert await dca.trigger_manual_order()

    async def test_reset_daily_order_count(self, make_dca, sim_time):
        """Test the midnight reset clears the counter"""
        dca = make_dca()
        dca.position.daily_orders_count = 1
        sim_time.advance(timedelta(hours=5))

        await dca.reset_daily_order_count()

        assert dca.position.daily_orders_count == 0
        assert dca.position.last_daily_reset == sim_time.now()


class TestDCAFills:
    """Test cost basis and risk signals"""

    async def test_sell_keeps_cost_basis(self, make_dca, paper_exchange):
        """Test sells shrink the position but not the invested amount"""
        dca = make_dca()
        await dca.start()
        await dca.place_next_order()
        await paper_exchange.deliver_fills()

        await paper_exchange.emit_fill(sell_fill("0.001", "45000"))

        assert dca.position.current_position == Decimal("0.0015")
        assert dca.position.total_invested == Decimal("100")
        assert dca.position.average_cost == Decimal("40000")
        assert dca.position.total_orders == 1

    async def test_oversized_sell_floors_position(self, make_dca, paper_exchange):
        """Test the position never goes negative"""
        dca = make_dca()
        await dca.start()
        await dca.place_next_order()
        await paper_exchange.deliver_fills()

        await paper_exchange.emit_fill(sell_fill("1", "45000"))

        assert dca.position.current_position == Decimal("0")

    async def test_stop_loss_signal(self, make_dca, paper_exchange, recorder):
        """Test a fill below average cost minus stop_loss percent emits a signal"""
        dca = make_dca(stop_loss=Decimal("5"))
        await dca.start()
        await dca.place_next_order()
        await paper_exchange.deliver_fills()

        await paper_exchange.emit_fill(sell_fill("0.0001", "37000"))

        signal = recorder.of_type(EventType.STOP_LOSS_TRIGGERED)[0]
        assert signal.data["stop_loss_price"] == Decimal("38000")
        assert signal.data["average_cost"] == Decimal("40000")
        assert recorder.of_type(EventType.TAKE_PROFIT_TRIGGERED) == []

    async def test_take_profit_signal(self, make_dca, paper_exchange, recorder):
        """Test a fill above average cost plus take_profit percent emits a signal"""
        dca = make_dca(take_profit=Decimal("10"))
        await dca.start()
        await dca.place_next_order()
        await paper_exchange.deliver_fills()

        await paper_exchange.emit_fill(sell_fill("0.0001", "45000"))

        signal = recorder.of_type(EventType.TAKE_PROFIT_TRIGGERED)[0]
        assert signal.data["take_profit_price"] == Decimal("44000")

    async def test_metadata_risk_settings_take_precedence(self, make_dca, paper_exchange, recorder):
        """Test a risk_management block overrides top-level percentages"""
        dca = make_dca(
            {"risk_management": {"stop_loss": {"enabled": False, "percentage": "5"}}},
            stop_loss=Decimal("5"),
        )
        await dca.start()
        await dca.place_next_order()
        await paper_exchange.deliver_fills()

        await paper_exchange.emit_fill(sell_fill("0.0001", "30000"))

        assert recorder.of_type(EventType.STOP_LOSS_TRIGGERED) == []


class TestDCALifecycle:
    """Test the scheduler and statistics"""

    async def test_scheduler_places_first_order(self, make_dca, paper_exchange):
        """Test the recurring task fires after its initial delay"""
        dca = make_dca()
        dca.first_order_delay = 0
        await dca.start()

        for _ in range(50):
            if dca.position.orders_history:
                break
            await asyncio.sleep(0.01)

        assert len(dca.position.orders_history) == 1
        assert len(paper_exchange.placed_orders) == 1

    async def test_stop_cancels_timers(self, make_dca):
        """Test stopping cancels every periodic task"""
        dca = make_dca()
        await dca.start()
        assert len(dca._tasks) == 2

        await dca.stop()

        assert dca._tasks == []

    async def test_update_config_keeps_position(self, make_dca, paper_exchange):
        """Test a configuration change preserves accumulated state"""
        dca = make_dca()
        await dca.start()
        await dca.place_next_order()
        await paper_exchange.deliver_fills()

        await dca.update_config({"metadata": {"order_size": "150"}})

        assert dca.is_running
        assert dca.params.order_size == Decimal("150")
        assert dca.position.total_orders == 1

    async def test_unreachable_daily_cap_is_allowed(self, make_dca):
        """Test a daily cap above the interval's capacity only warns"""
        dca = make_dca({"max_daily_orders": 3})
        assert dca.params.max_possible_daily_orders == 1

    async def test_statistics(self, make_dca, paper_exchange, sim_time):
        """Test DCA statistics"""
        dca = make_dca()
        await dca.start()
        await dca.place_next_order()
        await paper_exchange.deliver_fills()

        stats = dca.get_statistics()

        assert stats["strategy"] == "dca"
        assert stats["dca_position"]["total_orders"] == 1
        assert stats["dca_position"]["current_value"] == Decimal("100")
        assert stats["dca_position"]["unrealized_pnl"] == Decimal("0")
        assert stats["dca_config"]["interval_hours"] == 24
        assert stats["next_order_estimate"] == (sim_time.now() + timedelta(hours=24)).isoformat()
