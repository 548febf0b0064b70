"""Exchange contract: protocol, data models and errors"""

from tradebot.api.exceptions import (
    ExchangeAPIError,
    NotConnectedError,
    PriceUnavailableError,
)
from tradebot.api.exchange_protocol import IExchange
from tradebot.api.models import (
    CancelOrderRequest,
    CancelOrderResponse,
    ExchangeEvent,
    OpenOrder,
    OrderFill,
    OrderRequest,
    OrderResponse,
    OrderSide,
    OrderType,
    PriceUpdate,
)

__all__ = [
    "IExchange",
    "OrderRequest",
    "OrderResponse",
    "CancelOrderRequest",
    "CancelOrderResponse",
    "OpenOrder",
    "OrderFill",
    "PriceUpdate",
    "OrderSide",
    "OrderType",
    "ExchangeEvent",
    "ExchangeAPIError",
    "NotConnectedError",
    "PriceUnavailableError",
]
