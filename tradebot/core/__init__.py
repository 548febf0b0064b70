"""Core engine primitives"""

from tradebot.core.events import EventType, StrategyEvent
from tradebot.core.exceptions import ConfigurationError, StrategyStateError, TradeBotError
from tradebot.core.time_provider import (
    LiveTimeProvider,
    SimulatedTimeProvider,
    TimeProvider,
)

__all__ = [
    "EventType",
    "StrategyEvent",
    "TradeBotError",
    "ConfigurationError",
    "StrategyStateError",
    "TimeProvider",
    "LiveTimeProvider",
    "SimulatedTimeProvider",
]
