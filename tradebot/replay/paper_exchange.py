"""
Paper exchange - in-memory implementation of ``IExchange``.

Prices are set by the caller; resting limit orders are matched whenever a
price moves through them:

- Limit buy fills when ``price <= order price``
- Limit sell fills when ``price >= order price``
- Market orders, and limit orders that already cross, fill at once at the
  current price

Fills are queued and handed to fill subscribers by ``deliver_fills()``.
With ``auto_deliver`` the delivery is scheduled on the event loop after each
immediate fill, the way a live fill stream would arrive.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

from tradebot.api.exceptions import NotConnectedError, PriceUnavailableError
from tradebot.api.models import (
    CancelOrderRequest,
    CancelOrderResponse,
    ExchangeEvent,
    ExchangeEventCallback,
    FillCallback,
    OpenOrder,
    OrderFill,
    OrderRequest,
    OrderResponse,
    OrderSide,
    OrderType,
    PriceCallback,
    PriceUpdate,
)
from tradebot.core.time_provider import LiveTimeProvider, TimeProvider
from tradebot.utils.logger import get_logger
from tradebot.utils.order_size import DEFAULT_SIZE_DECIMALS

logger = get_logger(__name__)


class PaperExchange:
    """Simulated exchange for dry runs and tests."""

    def __init__(
        self,
        prices: dict[str, Decimal] | None = None,
        size_precision: dict[str, int] | None = None,
        fee_rate: Decimal = Decimal("0.0002"),
        auto_deliver: bool = True,
        time_provider: TimeProvider | None = None,
    ) -> None:
        self._prices: dict[str, Decimal] = {k: Decimal(v) for k, v in (prices or {}).items()}
        self._size_precision = size_precision or {}
        self._fee_rate = fee_rate
        self._auto_deliver = auto_deliver
        self._time = time_provider or LiveTimeProvider()
        self._connected = False

        self._open_orders: dict[str, OpenOrder] = {}
        self._order_counter = 0
        self._pending_fills: list[OrderFill] = []
        self._rejections: list[str] = []

        # symbol -> callbacks; the None key receives fills for every symbol
        self._fill_subscribers: dict[str | None, list[FillCallback]] = {}
        self._price_subscribers: dict[str, list[PriceCallback]] = {}
        self._listeners: dict[ExchangeEvent, list[ExchangeEventCallback]] = {}
        self._delivery_tasks: set[asyncio.Task] = set()

        # History, mostly for assertions
        self.placed_orders: list[OrderRequest] = []
        self.cancelled_order_ids: list[str] = []
        self.fills: list[OrderFill] = []

    # =====================================================================
    # Connection
    # =====================================================================

    async def connect(self) -> None:
        self._connected = True
        logger.info("paper_exchange_connected")

    async def disconnect(self) -> None:
        self._connected = False
        for task in list(self._delivery_tasks):
            task.cancel()
        logger.info("paper_exchange_disconnected")

    def is_connected(self) -> bool:
        return self._connected

    def on(self, event: ExchangeEvent, callback: ExchangeEventCallback) -> None:
        callbacks = self._listeners.setdefault(event, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def off(self, event: ExchangeEvent, callback: ExchangeEventCallback) -> None:
        callbacks = self._listeners.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    async def _emit(self, event: ExchangeEvent, *args: Any) -> None:
        for callback in list(self._listeners.get(event, [])):
            await callback(*args)

    async def simulate_disconnect(self) -> None:
        self._connected = False
        await self._emit(ExchangeEvent.DISCONNECTED)

    async def simulate_reconnect(self) -> None:
        self._connected = True
        await self._emit(ExchangeEvent.RECONNECTED)

    async def simulate_error(self, error: Exception) -> None:
        await self._emit(ExchangeEvent.ERROR, error)

    def _require_connection(self) -> None:
        if not self._connected:
            raise NotConnectedError("Paper exchange is not connected")

    # =====================================================================
    # Market data
    # =====================================================================

    async def get_current_price(self, symbol: str) -> Decimal:
        self._require_connection()
        price = self._prices.get(symbol)
        if price is None:
            raise PriceUnavailableError(f"No price for {symbol}")
        return price

    async def get_size_precision(self, symbol: str) -> int:
        return self._size_precision.get(symbol, DEFAULT_SIZE_DECIMALS)

    async def subscribe_to_price_updates(self, symbol: str, callback: PriceCallback) -> None:
        callbacks = self._price_subscribers.setdefault(symbol, [])
        if callback not in callbacks:
            callbacks.append(callback)

    async def unsubscribe_from_price_updates(self, symbol: str, callback: PriceCallback) -> None:
        callbacks = self._price_subscribers.get(symbol, [])
        if callback in callbacks:
            callbacks.remove(callback)

    async def set_price(self, symbol: str, price: Decimal) -> int:
        """
        Move the market to *price*: match resting orders, notify price
        subscribers, then deliver the resulting fills.

        Returns the number of orders filled by the move.
        """
        price = Decimal(price)
        self._prices[symbol] = price
        filled = self._match_resting_orders(symbol, price)

        update = PriceUpdate(symbol=symbol, price=price, timestamp=self._time.now())
        for callback in list(self._price_subscribers.get(symbol, [])):
            await callback(update)

        await self.deliver_fills()
        return filled

    # =====================================================================
    # Orders
    # =====================================================================

    def reject_next_orders(self, count: int = 1, error: str = "rejected by paper exchange") -> None:
        """Make the next *count* placements fail with *error*."""
        self._rejections.extend([error] * count)

    def _next_order_id(self) -> str:
        self._order_counter += 1
        return f"paper-{self._order_counter:06d}"

    async def place_order(self, request: OrderRequest) -> OrderResponse:
        if not self._connected:
            return OrderResponse.failure("not connected")
        if self._rejections:
            return OrderResponse.failure(self._rejections.pop(0))
        if request.size <= 0:
            return OrderResponse.failure("order size must be positive")
        if request.type == OrderType.LIMIT and (request.price is None or request.price <= 0):
            return OrderResponse.failure("limit order requires a positive price")

        market_price = self._prices.get(request.symbol)
        order_id = self._next_order_id()
        self.placed_orders.append(request)

        if market_price is not None and self._crosses(request, market_price):
            fill = self._make_fill(
                order_id, request.symbol, request.side, request.size, market_price
            )
            self._queue_fill(fill)
            logger.debug(
                "paper_order_filled_on_placement",
                order_id=order_id,
                side=request.side.value,
                price=str(market_price),
                size=str(request.size),
            )
            if self._auto_deliver:
                self._schedule_delivery()
            return OrderResponse(
                success=True,
                order_id=order_id,
                immediately_filled=True,
                fill_price=market_price,
                fill_size=request.size,
            )

        if request.type == OrderType.MARKET:
            return OrderResponse.failure(f"no market price for {request.symbol}")

        self._open_orders[order_id] = OpenOrder(
            order_id=order_id,
            symbol=request.symbol,
            side=request.side,
            size=request.size,
            price=request.price,
            type=request.type,
            timestamp=self._time.now(),
        )
        return OrderResponse(success=True, order_id=order_id)

    async def place_orders(self, requests: list[OrderRequest]) -> list[OrderResponse]:
        return [await self.place_order(request) for request in requests]

    async def cancel_order(self, request: CancelOrderRequest) -> CancelOrderResponse:
        order = self._open_orders.get(request.order_id)
        if order is None or order.symbol != request.symbol:
            return CancelOrderResponse(
                success=False, order_id=request.order_id, error="order not found"
            )
        del self._open_orders[request.order_id]
        self.cancelled_order_ids.append(request.order_id)
        return CancelOrderResponse(success=True, order_id=request.order_id)

    async def cancel_orders(self, requests: list[CancelOrderRequest]) -> list[CancelOrderResponse]:
        return [await self.cancel_order(request) for request in requests]

    async def cancel_all_orders(self, symbol: str | None = None) -> int:
        order_ids = [
            order_id
            for order_id, order in self._open_orders.items()
            if symbol is None or order.symbol == symbol
        ]
        for order_id in order_ids:
            del self._open_orders[order_id]
        self.cancelled_order_ids.extend(order_ids)
        return len(order_ids)

    async def get_open_orders(self, symbol: str | None = None) -> list[OpenOrder]:
        return [
            order
            for order in self._open_orders.values()
            if symbol is None or order.symbol == symbol
        ]

    @staticmethod
    def _crosses(request: OrderRequest, market_price: Decimal) -> bool:
        if request.type == OrderType.MARKET:
            return True
        if request.side == OrderSide.BUY:
            return request.price >= market_price
        return request.price <= market_price

    def _match_resting_orders(self, symbol: str, price: Decimal) -> int:
        matched = [
            order
            for order in self._open_orders.values()
            if order.symbol == symbol
            and (
                (order.side == OrderSide.BUY and price <= order.price)
                or (order.side == OrderSide.SELL and price >= order.price)
            )
        ]
        for order in matched:
            del self._open_orders[order.order_id]
            self._queue_fill(
                self._make_fill(order.order_id, symbol, order.side, order.size, order.price)
            )
        return len(matched)

    # =====================================================================
    # Fills
    # =====================================================================

    def _make_fill(
        self, order_id: str, symbol: str, side: OrderSide, size: Decimal, price: Decimal
    ) -> OrderFill:
        return OrderFill(
            symbol=symbol,
            order_id=order_id,
            side=side,
            size=size,
            price=price,
            timestamp=self._time.now(),
            extra={"fee": price * size * self._fee_rate},
        )

    def _queue_fill(self, fill: OrderFill) -> None:
        self._pending_fills.append(fill)
        self.fills.append(fill)

    async def emit_fill(self, fill: OrderFill) -> None:
        """Queue an externally built fill and deliver it."""
        self._queue_fill(fill)
        await self.deliver_fills()

    def _schedule_delivery(self) -> None:
        task = asyncio.create_task(self.deliver_fills())
        self._delivery_tasks.add(task)
        task.add_done_callback(self._delivery_tasks.discard)

    async def deliver_fills(self) -> int:
        """Hand every queued fill to its subscribers, oldest first."""
        delivered = 0
        while self._pending_fills:
            fill = self._pending_fills.pop(0)
            callbacks = self._fill_subscribers.get(fill.symbol, []) + self._fill_subscribers.get(
                None, []
            )
            for callback in callbacks:
                await callback(fill)
            delivered += 1
        return delivered

    @property
    def pending_fill_count(self) -> int:
        return len(self._pending_fills)

    async def subscribe_to_order_fills(
        self, callback: FillCallback, symbol: str | None = None
    ) -> None:
        callbacks = self._fill_subscribers.setdefault(symbol, [])
        if callback not in callbacks:
            callbacks.append(callback)

    async def unsubscribe_from_order_fills(self, callback: FillCallback) -> None:
        for callbacks in self._fill_subscribers.values():
            if callback in callbacks:
                callbacks.remove(callback)
