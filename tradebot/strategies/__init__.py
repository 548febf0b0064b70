"""Strategy state machines and the factory that builds them"""

from .base import BaseTradingStrategy, StrategyState, VolumeMetrics
from .dca import DCAStrategy
from .factory import StrategyFactory, StrategyInfo
from .grid import GridStrategy
from .martingale import MartingaleStrategy
from .placeholder import PlaceholderStrategy
from .portfolio import PortfolioStrategy
from .risk_signals import RiskManagementSettings, RiskRule, RiskSignal, evaluate_risk_signals

__all__ = [
    "BaseTradingStrategy",
    "StrategyState",
    "VolumeMetrics",
    "StrategyFactory",
    "StrategyInfo",
    "GridStrategy",
    "DCAStrategy",
    "MartingaleStrategy",
    "PortfolioStrategy",
    "PlaceholderStrategy",
    "RiskManagementSettings",
    "RiskRule",
    "RiskSignal",
    "evaluate_risk_signals",
]
