"""
DCAStrategy - scheduled market buys with daily and lifetime caps.

A recurring task places one market buy per interval; a second task resets
the daily counter at midnight. Average cost is tracked over buy fills only:
sells shrink the position but leave ``total_invested`` and
``average_cost`` untouched.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from tradebot.api.exchange_protocol import IExchange
from tradebot.api.models import OrderFill, OrderRequest, OrderSide, OrderType
from tradebot.config.schemas import StrategyConfig
from tradebot.core.events import EventType
from tradebot.core.exceptions import StrategyStateError
from tradebot.core.time_provider import TimeProvider
from tradebot.strategies.base import BaseTradingStrategy
from tradebot.strategies.dca.dca_config import DCAStrategyParams
from tradebot.strategies.risk_signals import RiskManagementSettings, evaluate_risk_signals
from tradebot.utils.order_size import calculate_dca_order_size

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR


@dataclass
class DCAOrder:
    """One placed DCA buy."""

    id: str
    timestamp: datetime
    price: Decimal
    size: Decimal
    side: OrderSide
    amount_usd: Decimal
    filled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "price": str(self.price),
            "size": str(self.size),
            "side": self.side.value,
            "amount_usd": str(self.amount_usd),
            "filled": self.filled,
        }


@dataclass
class DCAPosition:
    """Accumulated DCA position."""

    total_orders: int = 0
    total_invested: Decimal = Decimal("0")
    average_cost: Decimal = Decimal("0")
    current_position: Decimal = Decimal("0")
    daily_orders_count: int = 0
    last_order_time: datetime | None = None
    last_daily_reset: datetime | None = None
    orders_history: list[DCAOrder] = field(default_factory=list)

    def apply_fill(self, side: OrderSide, size: Decimal, price: Decimal) -> None:
        if side == OrderSide.BUY:
            self.total_invested += size * price
            self.current_position += size
            if self.current_position > 0:
                self.average_cost = self.total_invested / self.current_position
            self.total_orders += 1
        else:
            # Cost basis stays on buys only
            self.current_position = max(Decimal("0"), self.current_position - size)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_orders": self.total_orders,
            "total_invested": str(self.total_invested),
            "average_cost": str(self.average_cost),
            "current_position": str(self.current_position),
            "daily_orders_count": self.daily_orders_count,
            "last_order_time": self.last_order_time.isoformat() if self.last_order_time else None,
        }


class DCAStrategy(BaseTradingStrategy):
    """Dollar-cost averaging strategy."""

    strategy_type = "dca"

    # Delay before the first scheduled buy after start
    FIRST_ORDER_DELAY = 5.0

    params: DCAStrategyParams

    def __init__(
        self,
        exchange: IExchange,
        config: StrategyConfig,
        bot_id: str | None = None,
        user_id: str | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        super().__init__(exchange, config, bot_id, user_id, time_provider)
        self.position = DCAPosition(last_daily_reset=self.time_provider.now())
        self.first_order_delay = self.FIRST_ORDER_DELAY
        self._placing_order = False
        self._warn_on_unreachable_daily_cap()

    @classmethod
    def parse_params(cls, config: StrategyConfig) -> DCAStrategyParams:
        return DCAStrategyParams.from_metadata(config.metadata)

    def _apply_config(self, config: StrategyConfig, params: Any) -> None:
        super()._apply_config(config, params)
        self._warn_on_unreachable_daily_cap()

    def _warn_on_unreachable_daily_cap(self) -> None:
        if self.params.max_daily_orders > self.params.max_possible_daily_orders:
            self.logger.warning(
                "daily_cap_unreachable",
                max_daily_orders=self.params.max_daily_orders,
                interval_hours=self.params.interval_hours,
            )

    @property
    def risk_settings(self) -> RiskManagementSettings:
        return RiskManagementSettings.resolve(self.config, self.params.risk_management)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _on_start(self) -> None:
        await self._subscribe_fills()
        self._start_periodic(
            "dca_order",
            self.params.interval_hours * SECONDS_PER_HOUR,
            self.place_next_order,
            initial_delay=self.first_order_delay,
        )
        self._start_periodic(
            "daily_reset",
            SECONDS_PER_DAY,
            self.reset_daily_order_count,
            initial_delay=self.time_provider.seconds_until_midnight(),
        )
        self.logger.info(
            "dca_schedule_armed",
            interval_hours=self.params.interval_hours,
            order_size=str(self.params.order_size),
            max_daily_orders=self.params.max_daily_orders,
            max_orders=self.params.max_orders,
        )

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    async def reset_daily_order_count(self) -> None:
        self.logger.info("daily_order_count_reset", was=self.position.daily_orders_count)
        self.position.daily_orders_count = 0
        self.position.last_daily_reset = self.time_provider.now()

    def can_place_order(self) -> bool:
        """Lifetime, daily and position caps. Logs the first cap that blocks."""
        if self.time_provider.is_new_day(self.position.last_daily_reset):
            self.position.daily_orders_count = 0
            self.position.last_daily_reset = self.time_provider.now()

        if self.position.total_orders >= self.params.max_orders:
            self.logger.info(
                "dca_max_orders_reached",
                total_orders=self.position.total_orders,
                max_orders=self.params.max_orders,
            )
            return False
        if self.position.daily_orders_count >= self.params.max_daily_orders:
            self.logger.info(
                "dca_daily_limit_reached",
                daily_orders=self.position.daily_orders_count,
                max_daily_orders=self.params.max_daily_orders,
            )
            return False
        if self.position.current_position >= self.config.max_position:
            self.logger.info(
                "dca_max_position_reached",
                position=str(self.position.current_position),
                max_position=str(self.config.max_position),
            )
            return False
        return True

    def calculate_order_size(self, current_price: Decimal) -> Decimal:
        return calculate_dca_order_size(
            self.params.order_size,
            self.params.min_order_size,
            self.params.max_order_size,
            current_price,
        )

    async def place_next_order(self) -> bool:
        """
        One scheduled firing. Returns True when a buy was accepted.

        Skips silently while stopped, paused, already placing, or when a cap
        blocks the order.
        """
        if not self._is_running or self._is_paused or self._placing_order:
            return False

        self._placing_order = True
        try:
            if not self.can_place_order():
                return False

            price = await self._refresh_price()
            if not self._is_running:
                return False

            size = self.calculate_order_size(price)
            request = OrderRequest(
                symbol=self.config.symbol,
                side=OrderSide.BUY,
                size=size,
                price=price,
                type=OrderType.MARKET,
            )
            response = await self.exchange.place_order(request)
            if not self._is_running:
                return False

            if not response.success:
                self.logger.error("dca_order_rejected", error=response.error)
                await self.emit(EventType.ORDER_ERROR, {"error": response.error})
                return False

            now = self.time_provider.now()
            order = DCAOrder(
                id=response.order_id or f"dca_{int(now.timestamp() * 1000)}",
                timestamp=now,
                price=price,
                size=size,
                side=OrderSide.BUY,
                amount_usd=size * price,
                filled=response.immediately_filled,
            )
            self.position.orders_history.append(order)
            self.position.daily_orders_count += 1
            self.position.last_order_time = now

            self.logger.info(
                "dca_order_placed",
                order_id=order.id,
                size=str(size),
                price=str(price),
                daily_orders=self.position.daily_orders_count,
            )
            await self.emit(EventType.ORDER_PLACED, {"order": order.to_dict()})
            return True

        except Exception as e:
            self.logger.error("dca_order_failed", error=str(e))
            await self.emit(EventType.ORDER_ERROR, {"error": str(e)})
            return False
        finally:
            self._placing_order = False

    async def trigger_manual_order(self) -> bool:
        """Place the next order now, outside the schedule."""
        if not self._is_running:
            raise StrategyStateError("Strategy must be running to trigger a manual order")
        self.logger.info("dca_manual_order_triggered")
        return await self.place_next_order()

    # -------------------------------------------------------------------------
    # Fills
    # -------------------------------------------------------------------------

    async def _process_fill(self, fill: OrderFill) -> None:
        self.position.apply_fill(fill.side, fill.size, fill.price)
        self.state.total_position = self.position.current_position
        self.state.current_price = fill.price
        self._update_volume_metrics(fill)

        for order in self.position.orders_history:
            if order.id == fill.order_id:
                order.filled = True

        self.logger.info(
            "dca_position_updated",
            side=fill.side.value,
            position=str(self.position.current_position),
            average_cost=str(self.position.average_cost),
            total_orders=self.position.total_orders,
        )

        for signal in evaluate_risk_signals(
            self.risk_settings,
            fill.price,
            self.position.average_cost,
            self.position.current_position,
        ):
            self.logger.warning(
                signal.event_type.value, **{k: str(v) for k, v in signal.data.items()}
            )
            await self.emit(signal.event_type, signal.data)

        await self.emit(
            EventType.ORDER_FILLED,
            {"fill": fill.to_dict(), "position": self.position.to_dict()},
        )

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_position(self) -> DCAPosition:
        return copy.deepcopy(self.position)

    def next_order_estimate(self) -> datetime | None:
        if not self._is_running or self.position.last_order_time is None:
            return None
        return self.position.last_order_time + timedelta(hours=self.params.interval_hours)

    def get_statistics(self) -> dict[str, Any]:
        stats = super().get_statistics()
        position = self.position
        current_value = position.current_position * self.state.current_price
        unrealized_pnl = current_value - position.total_invested
        unrealized_pnl_pct = (
            unrealized_pnl / position.total_invested * 100
            if position.total_invested > 0
            else Decimal("0")
        )
        next_order = self.next_order_estimate()

        stats.update(
            {
                "dca_position": {
                    **position.to_dict(),
                    "current_value": current_value,
                    "unrealized_pnl": unrealized_pnl,
                    "unrealized_pnl_percent": unrealized_pnl_pct,
                    "max_daily_orders": self.params.max_daily_orders,
                    "max_orders": self.params.max_orders,
                },
                "dca_config": {
                    "interval_hours": self.params.interval_hours,
                    "order_size": self.params.order_size,
                    "min_order_size": self.params.min_order_size,
                    "max_order_size": self.params.max_order_size,
                },
                "next_order_estimate": next_order.isoformat() if next_order else None,
            }
        )
        return stats
