"""
GridStrategy - limit-order grid with clean-slate reconciliation.

Lifecycle: initialize (levels generated around the live price) → start
(stray orders cancelled, nearest levels on each side placed in one batch)
→ fills → stop.

Every fill triggers a full reconciliation: all other live orders are
cancelled and a fresh selection is placed around the fill price. The
selection ignores previously executed levels, so a level can be traded
again in later cycles.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from tradebot.api.exchange_protocol import IExchange
from tradebot.api.models import (
    CancelOrderRequest,
    OrderFill,
    OrderRequest,
    OrderSide,
    OrderType,
    PriceUpdate,
)
from tradebot.config.schemas import InvestmentUnit, StrategyConfig
from tradebot.core.events import EventType
from tradebot.core.time_provider import TimeProvider
from tradebot.strategies.base import BaseTradingStrategy
from tradebot.strategies.grid.grid_calculator import (
    GeneratedGridLevel,
    GridGenerationResult,
    GridParams,
    generate_grid_levels,
    get_deterministic_active_levels,
)
from tradebot.strategies.grid.grid_config import GridStrategyParams
from tradebot.utils.order_size import calculate_grid_order_size


@dataclass
class LiveGridOrder:
    """A placed grid order waiting for a fill."""

    price: Decimal
    side: OrderSide
    level_index: int
    size: Decimal


@dataclass
class GridPosition:
    """
    Grid bookkeeping.

    Invariant: indices of ``active_orders`` never appear in
    ``executed_levels``; a level leaves the executed set only when a later
    reconciliation places it again.
    """

    base_position: Decimal = Decimal("0")
    quote_balance: Decimal = Decimal("0")
    nearest_index: int = 0
    grid_levels: list[GeneratedGridLevel] = field(default_factory=list)
    active_orders: dict[str, LiveGridOrder] = field(default_factory=dict)
    executed_levels: set[int] = field(default_factory=set)
    filled_orders: int = 0
    # Orders whose cancel failed; a fill may still arrive for them
    unconfirmed_orders: dict[str, LiveGridOrder] = field(default_factory=dict)

    def live_level_indices(self) -> set[int]:
        return {order.level_index for order in self.active_orders.values()}


class GridStrategy(BaseTradingStrategy):
    """Grid trading strategy."""

    strategy_type = "grid"

    # Upper bound on orders sent in one batch; extra levels are dropped
    MAX_ORDERS_PER_BATCH = 10

    params: GridStrategyParams

    def __init__(
        self,
        exchange: IExchange,
        config: StrategyConfig,
        bot_id: str | None = None,
        user_id: str | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        super().__init__(exchange, config, bot_id, user_id, time_provider)
        self.position = GridPosition(quote_balance=self._initial_quote_balance())
        self.generation: GridGenerationResult | None = None

    @classmethod
    def parse_params(cls, config: StrategyConfig) -> GridStrategyParams:
        return GridStrategyParams.from_metadata(config.metadata)

    @property
    def grid_params(self) -> GridParams:
        return self.params.to_grid_params()

    def _initial_quote_balance(self) -> Decimal:
        if self.config.investment_unit == InvestmentUnit.USD:
            return self.config.investment_size
        return Decimal("0")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _on_initialize(self) -> None:
        await self._load_size_precision()
        self._set_generation(generate_grid_levels(self.grid_params, self.state.current_price))
        self.logger.info(
            "grid_initialized",
            levels=len(self.position.grid_levels),
            lower_bound=str(self.generation.lower_bound),
            upper_bound=str(self.generation.upper_bound),
            active_levels=self.params.active_levels,
        )

    async def _on_start(self) -> None:
        await self._cancel_all_orders()
        await self._place_initial_orders()
        await self._subscribe_fills()
        await self._subscribe_price_feed()

    async def _on_stop(self) -> None:
        await self._cancel_all_orders()

    async def _recover_after_reconnect(self) -> None:
        self.position.active_orders.clear()
        await self._cancel_all_orders()
        await self._refresh_price()
        if not self._is_running:
            return
        await self._place_initial_orders()
        await self._subscribe_fills()
        await self.emit(
            EventType.GRID_RECONCILED, {"reason": "reconnected", **self._order_summary()}
        )

    # -------------------------------------------------------------------------
    # Fills & prices
    # -------------------------------------------------------------------------

    async def _process_fill(self, fill: OrderFill) -> None:
        self._apply_fill_to_position(fill)
        self.state.current_price = fill.price

        await self._cancel_remaining_orders()
        if not self._is_running:
            return
        await self._place_fresh_orders()

        self._update_volume_metrics(fill)
        self._mark_to_market()

        await self.emit(EventType.ORDER_FILLED, {"fill": fill.to_dict()})
        await self.emit(EventType.GRID_RECONCILED, {"reason": "fill", **self._order_summary()})

    async def _process_price_update(self, update: PriceUpdate) -> None:
        self.state.current_price = update.price
        self._mark_to_market()

    def _apply_fill_to_position(self, fill: OrderFill) -> None:
        order = self.position.active_orders.pop(fill.order_id, None)
        if order is None:
            order = self.position.unconfirmed_orders.pop(fill.order_id, None)
        if order is None:
            self.logger.warning("fill_for_unknown_order", order_id=fill.order_id)
            return

        if fill.side == OrderSide.BUY:
            self.position.base_position += fill.size
            self.position.quote_balance -= fill.notional
        else:
            self.position.base_position -= fill.size
            self.position.quote_balance += fill.notional

        self.position.executed_levels.add(order.level_index)
        self.position.filled_orders += 1
        self.state.total_position = self.position.base_position

        self.logger.info(
            "grid_level_filled",
            level_index=order.level_index,
            side=fill.side.value,
            size=str(fill.size),
            price=str(fill.price),
            base_position=str(self.position.base_position),
            quote_balance=str(self.position.quote_balance),
        )

    def _mark_to_market(self) -> None:
        """Profit = current quote + base valued at the last price - starting quote."""
        self.state.profits = (
            self.position.quote_balance
            + self.position.base_position * self.state.current_price
            - self._initial_quote_balance()
        )

    # -------------------------------------------------------------------------
    # Order management
    # -------------------------------------------------------------------------

    def _set_generation(self, generation: GridGenerationResult) -> None:
        self.generation = generation
        self.position.grid_levels = generation.levels
        self.position.nearest_index = generation.nearest_index

    async def _place_initial_orders(self) -> None:
        generation, active = get_deterministic_active_levels(
            self.grid_params,
            self.state.current_price,
            self.position.executed_levels,
        )
        self._set_generation(generation)

        if not active.all_levels:
            self.logger.warning("no_levels_available", current_price=str(self.state.current_price))
            return
        await self._place_orders_for_levels(active.all_levels)

    async def _place_fresh_orders(self) -> None:
        generation, active = get_deterministic_active_levels(
            self.grid_params,
            self.state.current_price,
            frozenset(),
        )
        self._set_generation(generation)
        if active.all_levels:
            await self._place_orders_for_levels(active.all_levels)

    async def _place_orders_for_levels(self, levels: list[GeneratedGridLevel]) -> int:
        """Bulk-place one order per level. Returns the number accepted."""
        if len(levels) > self.MAX_ORDERS_PER_BATCH:
            self.logger.error(
                "order_batch_capped",
                requested=len(levels),
                limit=self.MAX_ORDERS_PER_BATCH,
            )
            levels = levels[: self.MAX_ORDERS_PER_BATCH]
        if not levels:
            return 0

        sizing = calculate_grid_order_size(
            self.config.investment_size,
            self.params.grid_quantity,
            self.state.current_price,
            investment_unit=self.config.investment_unit.value,
            size_decimals=self.size_decimals,
            symbol=self.config.symbol,
        )
        if sizing.order_size <= 0:
            self.logger.warning("order_size_rounds_to_zero", details=sizing.calculation_details)
            return 0

        requests = [
            OrderRequest(
                symbol=self.config.symbol,
                side=level.side,
                size=sizing.order_size,
                price=level.price,
                type=OrderType.LIMIT,
            )
            for level in levels
        ]
        responses = await self.exchange.place_orders(requests)

        if not self._is_running:
            # Stopped while the batch was in flight
            stray = [r.order_id for r in responses if r.success and r.order_id]
            await self._cancel_order_ids(stray)
            return 0

        placed = 0
        for level, request, response in zip(levels, requests, responses):
            if response.success and response.order_id:
                self.position.active_orders[response.order_id] = LiveGridOrder(
                    price=level.price,
                    side=level.side,
                    level_index=level.index,
                    size=request.size,
                )
                self.position.executed_levels.discard(level.index)
                placed += 1
            else:
                self.logger.warning(
                    "grid_order_rejected",
                    side=request.side.value,
                    price=str(request.price),
                    error=response.error or "unknown error",
                )

        self.logger.info(
            "grid_orders_placed",
            placed=placed,
            requested=len(requests),
            order_size=str(sizing.order_size),
        )
        return placed

    async def _cancel_remaining_orders(self) -> None:
        failed = await self._cancel_order_ids(list(self.position.active_orders))
        for order_id in failed:
            order = self.position.active_orders.get(order_id)
            if order is not None:
                self.position.unconfirmed_orders[order_id] = order
        self.position.active_orders.clear()

    async def _cancel_order_ids(self, order_ids: list[str]) -> list[str]:
        """Cancel in bulk. Returns the ids whose cancel did not succeed."""
        if not order_ids:
            return []
        try:
            responses = await self.exchange.cancel_orders(
                [CancelOrderRequest(symbol=self.config.symbol, order_id=oid) for oid in order_ids]
            )
        except Exception as e:
            self.logger.error("bulk_cancel_failed", count=len(order_ids), error=str(e))
            return list(order_ids)
        failed = []
        for response in responses:
            if not response.success:
                self.logger.warning(
                    "cancel_failed", order_id=response.order_id, error=response.error
                )
                failed.append(response.order_id)
        return failed

    async def _cancel_all_orders(self) -> None:
        try:
            cancelled = await self.exchange.cancel_all_orders(self.config.symbol)
            self.logger.debug("all_orders_cancelled", count=cancelled)
        except Exception as e:
            self.logger.error("cancel_all_failed", error=str(e))
        self.position.active_orders.clear()

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def _order_summary(self) -> dict[str, Any]:
        return {
            "current_price": self.state.current_price,
            "active_orders": len(self.position.active_orders),
            "level_indices": sorted(self.position.live_level_indices()),
        }

    def get_statistics(self) -> dict[str, Any]:
        stats = super().get_statistics()
        stats.update(
            {
                "active_orders": len(self.position.active_orders),
                "filled_orders": self.position.filled_orders,
                "executed_levels": len(self.position.executed_levels),
                "grid_levels": len(self.position.grid_levels),
                "active_levels": self.params.active_levels,
                "grid_mode": self.params.grid_mode.value,
                "base_position": self.position.base_position,
                "quote_balance": self.position.quote_balance,
                "upper_bound": self.generation.upper_bound if self.generation else None,
                "lower_bound": self.generation.lower_bound if self.generation else None,
            }
        )
        return stats
