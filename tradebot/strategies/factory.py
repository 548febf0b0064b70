"""
StrategyFactory - builds the strategy for a bot type.

Bot types without an implementation resolve to PlaceholderStrategy so the
orchestrator can treat every type uniformly.
"""

from dataclasses import dataclass
from typing import Any

from tradebot.api.exchange_protocol import IExchange
from tradebot.config.schemas import BotType, TradingBotConfig
from tradebot.core.exceptions import ConfigurationError
from tradebot.core.time_provider import TimeProvider
from tradebot.strategies.base import BaseTradingStrategy
from tradebot.strategies.dca import DCAStrategy
from tradebot.strategies.grid import GridStrategy
from tradebot.strategies.martingale import MartingaleStrategy
from tradebot.strategies.placeholder import PlaceholderStrategy
from tradebot.strategies.portfolio import PortfolioStrategy
from tradebot.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StrategyInfo:
    """Catalogue entry for one bot type."""

    type: BotType
    name: str
    strategy_class: type[BaseTradingStrategy] | None = None

    @property
    def implemented(self) -> bool:
        return self.strategy_class is not None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "name": self.name, "implemented": self.implemented}


_STRATEGIES: dict[BotType, StrategyInfo] = {
    BotType.GRID: StrategyInfo(BotType.GRID, "Grid Trading", GridStrategy),
    BotType.MARTINGALE: StrategyInfo(
        BotType.MARTINGALE, "Martingale (Trailing Buy)", MartingaleStrategy
    ),
    BotType.DCA: StrategyInfo(BotType.DCA, "Dollar Cost Averaging", DCAStrategy),
    BotType.ARBITRAGE: StrategyInfo(BotType.ARBITRAGE, "Smart Arbitrage"),
    BotType.PORTFOLIO: StrategyInfo(BotType.PORTFOLIO, "Smart Portfolio", PortfolioStrategy),
    BotType.FLYWHEEL: StrategyInfo(BotType.FLYWHEEL, "Flywheel"),
    BotType.TWAP_VWAP: StrategyInfo(BotType.TWAP_VWAP, "TWAP/VWAP/Iceberg"),
    BotType.SIGNAL: StrategyInfo(BotType.SIGNAL, "TradingView Signal Bot"),
}


class StrategyFactory:
    """Maps ``BotType`` to a concrete strategy constructor."""

    @staticmethod
    def parse_bot_type(value: str | BotType) -> BotType:
        """
        Raises:
            ConfigurationError: If *value* is not a known bot type
        """
        try:
            return BotType(value)
        except ValueError as e:
            raise ConfigurationError(f"Unsupported bot type: {value}") from e

    @staticmethod
    def create_strategy(
        exchange: IExchange,
        config: TradingBotConfig,
        bot_id: str | None = None,
        user_id: str | None = None,
        time_provider: TimeProvider | None = None,
    ) -> BaseTradingStrategy:
        bot_type = StrategyFactory.parse_bot_type(config.bot_type)
        info = _STRATEGIES[bot_type]

        logger.info("creating_strategy", bot_type=bot_type.value, symbol=config.symbol)

        if info.strategy_class is None:
            logger.warning(
                "strategy_not_implemented_using_placeholder",
                bot_type=bot_type.value,
                strategy_name=info.name,
            )
            return PlaceholderStrategy(exchange, config, info.name, bot_id, user_id, time_provider)

        return info.strategy_class(exchange, config, bot_id, user_id, time_provider)

    @staticmethod
    def get_supported_strategies() -> list[dict[str, Any]]:
        return [info.to_dict() for info in _STRATEGIES.values()]

    @staticmethod
    def is_implemented(bot_type: str | BotType) -> bool:
        return _STRATEGIES[StrategyFactory.parse_bot_type(bot_type)].implemented
