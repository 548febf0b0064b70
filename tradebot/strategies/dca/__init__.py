"""DCA strategy package"""

from .dca_config import DCAStrategyParams
from .dca_strategy import DCAOrder, DCAPosition, DCAStrategy

__all__ = [
    "DCAStrategyParams",
    "DCAStrategy",
    "DCAPosition",
    "DCAOrder",
]
