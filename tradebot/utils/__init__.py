"""Utility modules"""

from tradebot.utils.logger import LoggerMixin, get_logger, log_context, setup_logging
from tradebot.utils.order_size import (
    OrderSizeResult,
    calculate_dca_order_size,
    calculate_grid_order_size,
    calculate_martingale_order_size,
    calculate_order_size,
    calculate_portfolio_order_size,
    round_size,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "log_context",
    "LoggerMixin",
    "OrderSizeResult",
    "calculate_order_size",
    "calculate_grid_order_size",
    "calculate_dca_order_size",
    "calculate_martingale_order_size",
    "calculate_portfolio_order_size",
    "round_size",
]
