"""
Exchange-facing data structures.

Order requests and responses, fills, open orders and price ticks exchanged
between strategies and an exchange collaborator. All prices and sizes are
Decimal.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


class OrderSide(str, Enum):
    """Order side"""

    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type"""

    LIMIT = "limit"
    MARKET = "market"


class ExchangeEvent(str, Enum):
    """Connectivity events an exchange emits to its listeners"""

    RECONNECTED = "reconnected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class OrderRequest:
    """Request to place a single order."""

    symbol: str
    side: OrderSide
    size: Decimal
    price: Decimal | None = None  # None for market orders
    type: OrderType = OrderType.LIMIT
    reduce_only: bool = False
    client_order_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "size": str(self.size),
            "price": str(self.price) if self.price is not None else None,
            "type": self.type.value,
            "reduce_only": self.reduce_only,
        }


@dataclass
class OrderResponse:
    """Result of a placement. A failed placement carries ``error`` and no id."""

    success: bool
    order_id: str | None = None
    error: str | None = None
    immediately_filled: bool = False
    fill_price: Decimal | None = None
    fill_size: Decimal | None = None

    @classmethod
    def failure(cls, error: str) -> "OrderResponse":
        return cls(success=False, error=error)


@dataclass
class CancelOrderRequest:
    symbol: str
    order_id: str


@dataclass
class CancelOrderResponse:
    success: bool
    order_id: str
    error: str | None = None


@dataclass
class OpenOrder:
    """An order resting on the exchange."""

    order_id: str
    symbol: str
    side: OrderSide
    size: Decimal
    price: Decimal | None
    type: OrderType = OrderType.LIMIT
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderFill:
    """
    Execution report for one of our orders.

    Exchange-specific fields (fee, liquidity flag, ...) travel in ``extra``.
    """

    symbol: str
    order_id: str
    side: OrderSide
    size: Decimal
    price: Decimal
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def notional(self) -> Decimal:
        """Fill value in quote currency."""
        return self.price * self.size

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "order_id": self.order_id,
            "side": self.side.value,
            "size": str(self.size),
            "price": str(self.price),
            "timestamp": self.timestamp.isoformat(),
            **self.extra,
        }


@dataclass
class PriceUpdate:
    """Last-trade or mid price tick for a symbol."""

    symbol: str
    price: Decimal
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


FillCallback = Callable[[OrderFill], Awaitable[None]]
PriceCallback = Callable[[PriceUpdate], Awaitable[None]]
ExchangeEventCallback = Callable[..., Awaitable[None]]
