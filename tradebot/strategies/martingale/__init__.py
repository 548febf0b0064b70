"""Martingale strategy package"""

from .martingale_config import (
    EntryTrigger,
    ExitStrategy,
    MartingaleStrategyParams,
    SafetyControls,
)
from .martingale_strategy import MartingaleOrder, MartingalePosition, MartingaleStrategy

__all__ = [
    "MartingaleStrategyParams",
    "EntryTrigger",
    "ExitStrategy",
    "SafetyControls",
    "MartingaleStrategy",
    "MartingalePosition",
    "MartingaleOrder",
]
