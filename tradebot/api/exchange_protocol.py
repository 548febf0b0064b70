"""IExchange - Protocol for exchange collaborators.

Defines the interface that both real venue adapters and the in-memory
PaperExchange implement so any strategy can run against either.
Fill routing is an explicit registry owned by the exchange: strategies
subscribe for their own symbol and only receive fills for it.
"""

from decimal import Decimal
from typing import Protocol, runtime_checkable

from tradebot.api.models import (
    CancelOrderRequest,
    CancelOrderResponse,
    ExchangeEvent,
    ExchangeEventCallback,
    FillCallback,
    OpenOrder,
    OrderRequest,
    OrderResponse,
    PriceCallback,
)


@runtime_checkable
class IExchange(Protocol):
    """Abstraction for exchange operations used by the strategies."""

    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    def is_connected(self) -> bool:
        ...

    async def get_current_price(self, symbol: str) -> Decimal:
        ...

    async def get_size_precision(self, symbol: str) -> int:
        ...

    async def subscribe_to_price_updates(self, symbol: str, callback: PriceCallback) -> None:
        ...

    async def unsubscribe_from_price_updates(self, symbol: str, callback: PriceCallback) -> None:
        ...

    async def place_order(self, request: OrderRequest) -> OrderResponse:
        ...

    async def place_orders(self, requests: list[OrderRequest]) -> list[OrderResponse]:
        ...

    async def cancel_order(self, request: CancelOrderRequest) -> CancelOrderResponse:
        ...

    async def cancel_orders(
        self, requests: list[CancelOrderRequest]
    ) -> list[CancelOrderResponse]:
        ...

    async def cancel_all_orders(self, symbol: str | None = None) -> int:
        ...

    async def get_open_orders(self, symbol: str | None = None) -> list[OpenOrder]:
        ...

    async def subscribe_to_order_fills(
        self, callback: FillCallback, symbol: str | None = None
    ) -> None:
        ...

    async def unsubscribe_from_order_fills(self, callback: FillCallback) -> None:
        ...

    def on(self, event: ExchangeEvent, callback: ExchangeEventCallback) -> None:
        ...

    def off(self, event: ExchangeEvent, callback: ExchangeEventCallback) -> None:
        ...
