"""Configuration management modules"""

from tradebot.config.manager import ConfigManager
from tradebot.config.schemas import (
    AppConfig,
    BotEntry,
    BotType,
    InvestmentUnit,
    LegacyGridConfig,
    StrategyConfig,
    StrategyParams,
    TradingBotConfig,
)

__all__ = [
    "ConfigManager",
    "AppConfig",
    "BotEntry",
    "BotType",
    "InvestmentUnit",
    "LegacyGridConfig",
    "StrategyConfig",
    "StrategyParams",
    "TradingBotConfig",
]
