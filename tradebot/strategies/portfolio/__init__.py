"""Portfolio rebalancing strategy package"""

from .portfolio_config import PortfolioLimits, PortfolioStrategyParams, TradingSettings
from .portfolio_strategy import (
    AssetPosition,
    PortfolioPosition,
    PortfolioStrategy,
    RebalanceEvent,
    RebalanceOrder,
)

__all__ = [
    "PortfolioStrategyParams",
    "PortfolioLimits",
    "TradingSettings",
    "PortfolioStrategy",
    "PortfolioPosition",
    "AssetPosition",
    "RebalanceOrder",
    "RebalanceEvent",
]
