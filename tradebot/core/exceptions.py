"""Engine-level exceptions raised by strategies and the factory"""


class TradeBotError(Exception):
    """Base exception for the strategy engine"""

    pass


class ConfigurationError(TradeBotError, ValueError):
    """Raised when a strategy or grid configuration is invalid"""

    pass


class StrategyStateError(TradeBotError):
    """Raised when an operation is not allowed in the strategy's current state"""

    pass
