"""Bot orchestration: the façade callers drive a strategy through"""

from .trading_bot import (
    OrderMetadataUpdater,
    TradeMetricsLogger,
    TradeRecord,
    TradingBot,
    normalize_config,
)

__all__ = [
    "TradingBot",
    "TradeRecord",
    "TradeMetricsLogger",
    "OrderMetadataUpdater",
    "normalize_config",
]
