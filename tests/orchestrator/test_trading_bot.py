"""Tests for TradingBot"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from tradebot.api.exceptions import PriceUnavailableError
from tradebot.api.models import OrderFill, OrderSide
from tradebot.config.schemas import BotType, LegacyGridConfig
from tradebot.core.events import EventType
from tradebot.core.exceptions import ConfigurationError
from tradebot.orchestrator import TradeRecord, TradingBot, normalize_config
from tradebot.strategies import DCAStrategy, GridStrategy, PlaceholderStrategy

LEGACY_GRID = {
    "symbol": "ETH",
    "investmentSize": "1000",
    "maxPosition": "10",
    "gridQuantity": 10,
    "upperBound": "2880",
    "lowerBound": "1920",
    "activeLevels": 2,
}


@pytest.fixture
def make_bot(paper_exchange, config_factory, sim_time, stop_after):
    def factory(config=None, **kwargs):
        if config is None:
            config = config_factory(
                BotType.DCA,
                symbol="BTC",
                investment_size=Decimal("5000"),
                max_position=Decimal("1"),
            )
        bot = TradingBot(paper_exchange, config, time_provider=sim_time, **kwargs)
        if isinstance(bot.strategy, DCAStrategy):
            bot.strategy.first_order_delay = 3600
        stop_after.append(bot.strategy)
        return bot

    return factory


class TestNormalizeConfig:
    """Test accepted configuration shapes"""

    def test_current_config_passthrough(self, config_factory):
        """Test a TradingBotConfig is used as is"""
        config = config_factory(BotType.DCA)

        normalized, legacy = normalize_config(config)

        assert normalized is config
        assert legacy is None

    def test_dict_with_bot_type(self):
        """Test dicts carrying a bot type validate as TradingBotConfig"""
        normalized, legacy = normalize_config(
            {
                "botType": "martingale",
                "symbol": "SOL",
                "investment_size": "500",
                "max_position": "5",
            }
        )

        assert normalized.bot_type == BotType.MARTINGALE
        assert normalized.investment_size == Decimal("500")
        assert legacy is None

    def test_legacy_camel_case_dict(self):
        """Test flat camelCase dicts are read as legacy grid configs"""
        normalized, legacy = normalize_config(LEGACY_GRID)

        assert normalized.bot_type == BotType.GRID
        assert normalized.investment_size == Decimal("1000")
        assert normalized.metadata["grid_quantity"] == 10
        assert normalized.metadata["upper_bound"] == Decimal("2880")
        assert legacy.active_levels == 2

    def test_legacy_model(self):
        """Test a LegacyGridConfig instance is converted"""
        legacy_model = LegacyGridConfig(
            symbol="BTC", investment_amount=Decimal("100"), max_position=Decimal("1")
        )

        normalized, legacy = normalize_config(legacy_model)

        assert legacy is legacy_model
        assert normalized.symbol == "BTC"

    def test_invalid_dict(self):
        """Test validation failures become ConfigurationError"""
        with pytest.raises(ConfigurationError, match="Invalid bot configuration"):
            normalize_config({"bot_type": "dca", "symbol": "BTC"})


class TestTradingBotLifecycle:
    """Test strategy construction and event relay"""

    def test_strategy_built_by_factory(self, make_bot, config_factory):
        """Test the bot type picks the strategy"""
        assert isinstance(make_bot().strategy, DCAStrategy)
        assert isinstance(make_bot(LEGACY_GRID).strategy, GridStrategy)
        assert isinstance(make_bot(config_factory(BotType.SIGNAL)).strategy, PlaceholderStrategy)

    async def test_events_forwarded(self, make_bot):
        """Test strategy events reach bot listeners"""
        bot = make_bot()
        received = []
        bot.on(EventType.STARTED, received.append)

        await bot.start()

        assert bot.is_active()
        assert [event.event_type for event in received] == [EventType.STARTED]
        assert received[0].strategy == "dca"

    async def test_failing_listener_isolated(self, make_bot):
        """Test a failing bot listener does not affect others"""
        bot = make_bot()
        received = []

        async def broken(event):
            raise RuntimeError("listener bug")

        bot.on(EventType.STARTED, broken)
        bot.on(EventType.STARTED, received.append)

        await bot.start()

        assert len(received) == 1

    async def test_off_removes_listener(self, make_bot):
        """Test removed listeners are not called"""
        bot = make_bot()
        received = []
        bot.on(EventType.STARTED, received.append)
        bot.off(EventType.STARTED, received.append)

        await bot.start()

        assert received == []

    async def test_start_failure_propagates(self, make_bot, config_factory):
        """Test strategy start errors are re-raised"""
        bot = make_bot(config_factory(BotType.DCA, symbol="DOGE"))

        with pytest.raises(PriceUnavailableError):
            await bot.start()

    async def test_stop(self, make_bot):
        """Test stop stops the strategy"""
        bot = make_bot()
        await bot.start()

        await bot.stop()

        assert not bot.is_active()
        assert not bot.get_state().is_active

    def test_queries(self, make_bot, paper_exchange):
        """Test query passthroughs"""
        bot = make_bot(bot_id="bot-1")

        bot.update_bot_id("bot-2")

        assert bot.get_bot_type() == "dca"
        assert bot.get_exchange() is paper_exchange
        assert bot.strategy.bot_id == "bot-2"
        assert bot.get_statistics()["strategy"] == "dca"


class TestTradeLogging:
    """Test fill side effects"""

    async def test_fill_logged(self, make_bot, paper_exchange):
        """Test fills become trade records with the exchange fee"""
        metrics_logger = AsyncMock()
        bot = make_bot(metrics_logger=metrics_logger, bot_id="bot-1", user_id="user-1")
        await bot.start()

        await bot.strategy.place_next_order()
        await paper_exchange.deliver_fills()

        metrics_logger.log_trade.assert_awaited_once()
        record = metrics_logger.log_trade.await_args.args[0]
        assert isinstance(record, TradeRecord)
        assert record.bot_id == "bot-1"
        assert record.user_id == "user-1"
        assert record.symbol == "BTC"
        assert record.side == "buy"
        assert record.price == Decimal("40000")
        assert record.size == Decimal("0.0025")
        assert record.fee == Decimal("0.02")
        assert record.size_usd == Decimal("100")
        assert record.order_id == "paper-000001"
        assert record.to_dict()["role"] == "maker"

    async def test_fee_estimated_when_missing(self, make_bot, paper_exchange):
        """Test a fill without a fee gets the estimated rate"""
        metrics_logger = AsyncMock()
        bot = make_bot(metrics_logger=metrics_logger, bot_id="bot-1", user_id="user-1")
        await bot.start()

        await paper_exchange.emit_fill(
            OrderFill(
                symbol="BTC",
                order_id="external",
                side=OrderSide.SELL,
                size=Decimal("0.001"),
                price=Decimal("41000"),
            )
        )

        record = metrics_logger.log_trade.await_args.args[0]
        assert record.fee == Decimal("41000") * Decimal("0.001") * Decimal("0.0002")
        assert record.side == "sell"

    async def test_no_logging_without_ids(self, make_bot, paper_exchange):
        """Test anonymous bots do not log trades"""
        metrics_logger = AsyncMock()
        bot = make_bot(metrics_logger=metrics_logger, bot_id="bot-1")
        await bot.start()

        await bot.strategy.place_next_order()
        await paper_exchange.deliver_fills()

        metrics_logger.log_trade.assert_not_awaited()

    async def test_logger_failure_isolated(self, make_bot, paper_exchange):
        """Test a failing trade logger does not reach the strategy or listeners"""
        metrics_logger = AsyncMock()
        metrics_logger.log_trade.side_effect = RuntimeError("db down")
        bot = make_bot(metrics_logger=metrics_logger, bot_id="bot-1", user_id="user-1")
        received = []
        bot.on(EventType.ORDER_FILLED, received.append)
        await bot.start()

        await bot.strategy.place_next_order()
        await paper_exchange.deliver_fills()

        assert len(received) == 1
        assert bot.strategy.position.total_orders == 1

    async def test_order_metadata_updated(self, make_bot, paper_exchange):
        """Test the metadata updater sees the bot and current price"""
        updater = AsyncMock()
        bot = make_bot(order_metadata_updater=updater, bot_id="bot-1", user_id="user-1")
        await bot.start()

        await bot.strategy.place_next_order()
        await paper_exchange.deliver_fills()

        payload = updater.update_order_metadata.await_args.args[0]
        assert payload["bot_id"] == "bot-1"
        assert payload["orders"] == []
        assert payload["current_price"] == Decimal("40000")


class TestUpdateConfig:
    """Test configuration updates through the bot"""

    async def test_bot_type_change_rejected(self, make_bot):
        """Test the bot type is fixed"""
        bot = make_bot()

        with pytest.raises(ConfigurationError, match="bot_type cannot be changed"):
            await bot.update_config({"bot_type": "grid"})

    async def test_same_bot_type_allowed(self, make_bot):
        """Test repeating the current bot type is accepted"""
        bot = make_bot()

        await bot.update_config({"botType": "dca", "metadata": {"order_size": "200"}})

        assert bot.config.metadata["order_size"] == "200"
        assert bot.strategy.params.order_size == Decimal("200")

    async def test_legacy_update_translated(self, make_bot):
        """Test flat legacy keys are routed to config fields and metadata"""
        bot = make_bot(dict(LEGACY_GRID))

        await bot.update_config({"gridQuantity": 20, "maxPosition": Decimal("2")})

        assert bot.config.max_position == Decimal("2")
        assert bot.config.metadata["grid_quantity"] == 20
        assert bot.strategy.params.grid_quantity == 20
        assert bot.legacy_config.grid_quantity == 20
        assert bot.legacy_config.max_position == Decimal("2")

    async def test_invalid_update(self, make_bot):
        """Test strategy validation errors propagate"""
        bot = make_bot()

        with pytest.raises(ConfigurationError):
            await bot.update_config({"metadata": {"interval_hours": 0}})

        assert bot.strategy.params.interval_hours == 24
