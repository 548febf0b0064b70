"""
MartingaleStrategy - buy drops with geometrically growing size, exit the
whole position at a profit over the average entry.

Two phases per sequence:

- searching: the entry reference follows new highs; a drop of
  ``price_drop_percentage`` below it places the first entry
- in position: a further drop of the same percentage below the last entry
  adds the next, larger step; reaching ``profit_percentage`` over the
  average entry sells everything in one market order

A full exit fill resets the sequence; only the price trackers survive.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from tradebot.api.exchange_protocol import IExchange
from tradebot.api.models import OrderFill, OrderRequest, OrderSide, OrderType, PriceUpdate
from tradebot.config.schemas import StrategyConfig
from tradebot.core.events import EventType
from tradebot.core.exceptions import StrategyStateError
from tradebot.core.time_provider import TimeProvider
from tradebot.strategies.base import BaseTradingStrategy
from tradebot.strategies.martingale.martingale_config import MartingaleStrategyParams
from tradebot.strategies.risk_signals import RiskManagementSettings, evaluate_risk_signals
from tradebot.utils.order_size import calculate_martingale_order_size

HUNDRED = Decimal("100")


@dataclass
class MartingaleOrder:
    """One entry of a sequence."""

    id: str
    timestamp: datetime
    price: Decimal
    size: Decimal
    order_number: int  # 1-based position in the sequence
    amount_usd: Decimal
    filled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "price": str(self.price),
            "size": str(self.size),
            "order_number": self.order_number,
            "amount_usd": str(self.amount_usd),
            "filled": self.filled,
        }


@dataclass
class MartingalePosition:
    """
    Current sequence.

    Invariant: ``next_order_size == base_order_size * step_multiplier ** len(orders)``.
    """

    next_order_size: Decimal
    orders: list[MartingaleOrder] = field(default_factory=list)
    total_position: Decimal = Decimal("0")
    total_invested: Decimal = Decimal("0")
    average_entry_price: Decimal = Decimal("0")
    highest_price_seen: Decimal = Decimal("0")
    entry_reference_price: Decimal = Decimal("0")
    is_in_position: bool = False
    profit_target_price: Decimal = Decimal("0")
    pending_exit_order_id: str | None = None
    exit_proceeds: Decimal = Decimal("0")

    def find_order(self, order_id: str) -> MartingaleOrder | None:
        for order in self.orders:
            if order.id == order_id:
                return order
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "orders": [order.to_dict() for order in self.orders],
            "total_position": str(self.total_position),
            "total_invested": str(self.total_invested),
            "average_entry_price": str(self.average_entry_price),
            "highest_price_seen": str(self.highest_price_seen),
            "entry_reference_price": str(self.entry_reference_price),
            "is_in_position": self.is_in_position,
            "next_order_size": str(self.next_order_size),
            "profit_target_price": str(self.profit_target_price),
            "exit_proceeds": str(self.exit_proceeds),
        }


class MartingaleStrategy(BaseTradingStrategy):
    """Martingale averaging-down strategy."""

    strategy_type = "martingale"

    PRICE_POLL_INTERVAL = 30.0

    params: MartingaleStrategyParams

    def __init__(
        self,
        exchange: IExchange,
        config: StrategyConfig,
        bot_id: str | None = None,
        user_id: str | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        super().__init__(exchange, config, bot_id, user_id, time_provider)
        self.position = MartingalePosition(next_order_size=self.params.base_order_size)
        self.price_poll_interval = self.PRICE_POLL_INTERVAL
        self._processing_signal = False
        self._warn_on_investment_limit()

    @classmethod
    def parse_params(cls, config: StrategyConfig) -> MartingaleStrategyParams:
        return MartingaleStrategyParams.from_metadata(config.metadata)

    def _apply_config(self, config: StrategyConfig, params: Any) -> None:
        super()._apply_config(config, params)
        self.position.next_order_size = self.params.order_size_for_step(len(self.position.orders))
        self._warn_on_investment_limit()

    @property
    def max_investment(self) -> Decimal:
        return self.config.investment_size * self.params.safety_controls.max_position_multiple

    @property
    def risk_settings(self) -> RiskManagementSettings:
        return RiskManagementSettings.resolve(self.config, self.params.risk_management)

    def _warn_on_investment_limit(self) -> None:
        potential = self.params.total_potential_investment
        if potential > self.max_investment:
            self.logger.warning(
                "sequence_exceeds_investment_limit",
                total_potential_investment=str(potential),
                max_investment=str(self.max_investment),
            )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _on_initialize(self) -> None:
        await self._load_size_precision()
        if not self.position.is_in_position:
            self.position.highest_price_seen = self.state.current_price
            self.position.entry_reference_price = self.state.current_price

    async def _on_start(self) -> None:
        await self._subscribe_fills()
        await self._subscribe_price_feed()
        self._start_periodic("price_poll", self.price_poll_interval, self._poll_price)
        self.logger.info(
            "martingale_started",
            entry_drop_pct=str(self.params.entry_trigger.price_drop_percentage),
            exit_profit_pct=str(self.params.exit_strategy.profit_percentage),
            step_multiplier=str(self.params.step_multiplier),
            max_orders=self.params.max_orders,
        )

    async def _poll_price(self) -> None:
        if self._processing_signal:
            return
        price = await self._refresh_price()
        if self._is_running:
            await self.process_price_update(price)

    async def _process_price_update(self, update: PriceUpdate) -> None:
        if self._is_running:
            await self.process_price_update(update.price)
        else:
            self.state.current_price = update.price

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------

    def entry_trigger_price(self) -> Decimal:
        drop = self.params.entry_trigger.price_drop_percentage / HUNDRED
        return self.position.entry_reference_price * (1 - drop)

    def exit_target_price(self) -> Decimal:
        profit = self.params.exit_strategy.profit_percentage / HUNDRED
        return self.position.average_entry_price * (1 + profit)

    async def process_price_update(self, price: Decimal) -> None:
        """Track highs, then check the entry or exit condition for *price*."""
        position = self.position
        self.state.current_price = price

        if price > position.highest_price_seen:
            position.highest_price_seen = price
            if not position.is_in_position:
                position.entry_reference_price = price

        if position.is_in_position and position.average_entry_price > 0:
            if price >= self.exit_target_price():
                await self.execute_exit_order(price)
                return

        if position.entry_reference_price > 0 and price <= self.entry_trigger_price():
            self.logger.info(
                "entry_trigger_hit",
                price=str(price),
                reference=str(position.entry_reference_price),
            )
            await self.execute_entry_order(price)

    def can_place_order(self) -> bool:
        """Sequence length and total-investment caps."""
        position = self.position
        if len(position.orders) >= self.params.max_orders:
            self.logger.info(
                "martingale_max_orders_reached",
                orders=len(position.orders),
                max_orders=self.params.max_orders,
            )
            return False
        if position.pending_exit_order_id is not None:
            return False

        projected = position.total_invested + position.next_order_size
        if projected > self.max_investment:
            self.logger.info(
                "martingale_investment_limit_reached",
                projected=str(projected),
                max_investment=str(self.max_investment),
            )
            return False
        return True

    async def execute_entry_order(self, price: Decimal) -> bool:
        """Place the next step of the sequence. Returns True when accepted."""
        if self._processing_signal or not self._is_running:
            return False
        self._processing_signal = True
        try:
            if not self.can_place_order():
                return False

            order_number = len(self.position.orders) + 1
            amount_usd = self.position.next_order_size
            sizing = calculate_martingale_order_size(
                amount_usd, price, size_decimals=self.size_decimals, symbol=self.config.symbol
            )
            if sizing.order_size <= 0:
                self.logger.warning("order_size_rounds_to_zero", details=sizing.calculation_details)
                return False

            response = await self.exchange.place_order(
                OrderRequest(
                    symbol=self.config.symbol,
                    side=OrderSide.BUY,
                    size=sizing.order_size,
                    price=price,
                    type=OrderType.MARKET,
                )
            )
            if not self._is_running:
                return False
            if not response.success:
                self.logger.error("entry_order_rejected", error=response.error)
                await self.emit(EventType.ORDER_ERROR, {"error": response.error})
                return False

            now = self.time_provider.now()
            order_id = response.order_id or f"martingale_{int(now.timestamp() * 1000)}"
            order = self.position.find_order(order_id)
            if order is None:
                order = MartingaleOrder(
                    id=order_id,
                    timestamp=now,
                    price=price,
                    size=sizing.order_size,
                    order_number=order_number,
                    amount_usd=amount_usd,
                )
                self.position.orders.append(order)

            self.position.is_in_position = True
            self.position.entry_reference_price = price
            step = len(self.position.orders)
            self.position.next_order_size = self.params.order_size_for_step(step)

            self.logger.info(
                "entry_order_placed",
                order_number=order.order_number,
                amount_usd=str(amount_usd),
                size=str(sizing.order_size),
                next_order_size=str(self.position.next_order_size),
            )
            await self.emit(EventType.ENTRY_ORDER_PLACED, {"order": order.to_dict()})
            return True

        except Exception as e:
            self.logger.error("entry_order_failed", error=str(e))
            await self.emit(EventType.ORDER_ERROR, {"error": str(e)})
            return False
        finally:
            self._processing_signal = False

    async def execute_exit_order(self, price: Decimal) -> bool:
        """Sell the whole position at market. Returns True when accepted."""
        position = self.position
        if (
            self._processing_signal
            or not self._is_running
            or not position.is_in_position
            or position.total_position <= 0
            or position.pending_exit_order_id is not None
        ):
            return False
        self._processing_signal = True
        try:
            response = await self.exchange.place_order(
                OrderRequest(
                    symbol=self.config.symbol,
                    side=OrderSide.SELL,
                    size=position.total_position,
                    price=price,
                    type=OrderType.MARKET,
                    reduce_only=True,
                )
            )
            if not self._is_running:
                return False
            if not response.success:
                self.logger.error("exit_order_rejected", error=response.error)
                await self.emit(EventType.ORDER_ERROR, {"error": response.error})
                return False

            position.pending_exit_order_id = response.order_id or "exit"
            profit = (price - position.average_entry_price) * position.total_position
            profit_pct = (
                profit / position.total_invested * HUNDRED
                if position.total_invested > 0
                else Decimal("0")
            )

            self.logger.info(
                "exit_order_placed",
                order_id=response.order_id,
                size=str(position.total_position),
                expected_profit=str(profit),
            )
            await self.emit(
                EventType.EXIT_ORDER_PLACED,
                {
                    "order_id": response.order_id,
                    "profit": profit,
                    "profit_percent": profit_pct,
                    "total_invested": position.total_invested,
                    "average_entry_price": position.average_entry_price,
                    "exit_price": price,
                },
            )
            return True

        except Exception as e:
            self.logger.error("exit_order_failed", error=str(e))
            await self.emit(EventType.ORDER_ERROR, {"error": str(e)})
            return False
        finally:
            self._processing_signal = False

    async def trigger_manual_entry(self) -> bool:
        if not self._is_running:
            raise StrategyStateError("Strategy must be running to trigger manual entry")
        if self.position.is_in_position:
            raise StrategyStateError("Already in position - cannot trigger manual entry")
        return await self.execute_entry_order(self.state.current_price)

    async def trigger_manual_exit(self) -> bool:
        if not self._is_running:
            raise StrategyStateError("Strategy must be running to trigger manual exit")
        if not self.position.is_in_position:
            raise StrategyStateError("Not in position - cannot trigger manual exit")
        return await self.execute_exit_order(self.state.current_price)

    # -------------------------------------------------------------------------
    # Fills
    # -------------------------------------------------------------------------

    async def _process_fill(self, fill: OrderFill) -> None:
        if fill.side == OrderSide.SELL and not self.position.is_in_position:
            self.logger.warning(
                "martingale_sell_fill_ignored",
                order_id=fill.order_id,
                size=str(fill.size),
                price=str(fill.price),
            )
            return

        if fill.side == OrderSide.BUY:
            self._apply_entry_fill(fill)
        else:
            self._apply_exit_fill(fill)

        self.state.total_position = self.position.total_position
        self.state.current_price = fill.price
        self._update_volume_metrics(fill)

        await self.emit(
            EventType.ORDER_FILLED,
            {"fill": fill.to_dict(), "position": self.position.to_dict()},
        )

        if self.position.is_in_position:
            for signal in evaluate_risk_signals(
                self.risk_settings,
                fill.price,
                self.position.average_entry_price,
                self.position.total_position,
            ):
                await self.emit(signal.event_type, signal.data)

            if fill.price >= self.exit_target_price():
                await self.execute_exit_order(fill.price)

    def _apply_entry_fill(self, fill: OrderFill) -> None:
        position = self.position

        order = position.find_order(fill.order_id)
        if order is None:
            # Fill arrived before the placement response was recorded
            order = MartingaleOrder(
                id=fill.order_id,
                timestamp=fill.timestamp,
                price=fill.price,
                size=fill.size,
                order_number=len(position.orders) + 1,
                amount_usd=fill.notional,
            )
            position.orders.append(order)
        order.filled = True

        position.total_invested += fill.notional
        position.total_position += fill.size
        if position.total_position > 0:
            position.average_entry_price = position.total_invested / position.total_position
        position.is_in_position = True
        position.profit_target_price = self.exit_target_price()
        position.next_order_size = self.params.order_size_for_step(len(position.orders))

        self.logger.info(
            "martingale_position_updated",
            total_position=str(position.total_position),
            total_invested=str(position.total_invested),
            average_entry_price=str(position.average_entry_price),
            profit_target_price=str(position.profit_target_price),
        )

    def _apply_exit_fill(self, fill: OrderFill) -> None:
        position = self.position
        position.exit_proceeds += fill.notional
        remaining = max(Decimal("0"), position.total_position - fill.size)

        if remaining > 0:
            position.total_position = remaining
            return

        realized = position.exit_proceeds - position.total_invested
        self.state.profits += realized
        self.logger.info("martingale_sequence_closed", realized_profit=str(realized))
        self._reset_position(fill.price)

    def _reset_position(self, current_price: Decimal) -> None:
        self.position = MartingalePosition(
            next_order_size=self.params.base_order_size,
            highest_price_seen=current_price,
            entry_reference_price=current_price,
        )

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_position(self) -> MartingalePosition:
        return copy.deepcopy(self.position)

    def get_statistics(self) -> dict[str, Any]:
        stats = super().get_statistics()
        position = self.position
        price = self.state.current_price

        current_value = position.total_position * price
        unrealized_pnl = current_value - position.total_invested
        unrealized_pnl_pct = (
            unrealized_pnl / position.total_invested * HUNDRED
            if position.total_invested > 0
            else Decimal("0")
        )
        drop_from_high = (
            (position.highest_price_seen - price) / position.highest_price_seen * HUNDRED
            if position.highest_price_seen > 0
            else Decimal("0")
        )

        stats.update(
            {
                "martingale_position": {
                    "is_in_position": position.is_in_position,
                    "total_orders": len(position.orders),
                    "total_position": position.total_position,
                    "total_invested": position.total_invested,
                    "average_entry_price": position.average_entry_price,
                    "current_value": current_value,
                    "unrealized_pnl": unrealized_pnl,
                    "unrealized_pnl_percent": unrealized_pnl_pct,
                    "profit_target_price": position.profit_target_price,
                    "next_order_size": position.next_order_size,
                    "highest_price_seen": position.highest_price_seen,
                    "current_drop_from_high": drop_from_high,
                },
                "martingale_config": {
                    "step_multiplier": self.params.step_multiplier,
                    "max_orders": self.params.max_orders,
                    "base_order_size": self.params.base_order_size,
                    "entry_trigger": self.params.entry_trigger.price_drop_percentage,
                    "exit_target": self.params.exit_strategy.profit_percentage,
                    "max_position_multiple": self.params.safety_controls.max_position_multiple,
                },
                "triggers": {
                    "entry_reference_price": position.entry_reference_price,
                    "entry_trigger_price": self.entry_trigger_price(),
                    "profit_target_price": position.profit_target_price,
                },
            }
        )
        return stats
