"""
PortfolioStrategy - keep several assets near their target weights.

Two timers run while started: a price refresh that recomputes values and
drift, and a rebalance check. A rebalance needs both a drift of at least
``rebalance_threshold`` and ``rebalance_interval`` hours since the previous
one; drift alone never forces an early rebalance.

Unfilled limit orders older than ``limit_order_timeout_minutes`` are
cancelled on the rebalance timer. Stop-loss and take-profit apply to the
whole book: total value against ``investment_size``.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from tradebot.api.exchange_protocol import IExchange
from tradebot.api.models import (
    CancelOrderRequest,
    OrderFill,
    OrderRequest,
    OrderSide,
    OrderType,
)
from tradebot.config.schemas import StrategyConfig
from tradebot.core.events import EventType
from tradebot.core.exceptions import StrategyStateError
from tradebot.core.time_provider import TimeProvider
from tradebot.strategies.base import BaseTradingStrategy
from tradebot.strategies.portfolio.portfolio_config import PortfolioStrategyParams
from tradebot.strategies.risk_signals import RiskManagementSettings, evaluate_risk_signals
from tradebot.utils.order_size import DCA_SIZE_DECIMALS, calculate_portfolio_order_size

ZERO = Decimal("0")


@dataclass
class AssetPosition:
    symbol: str
    target_allocation: Decimal
    current_amount: Decimal = ZERO
    current_value_usd: Decimal = ZERO
    current_price: Decimal = ZERO
    current_allocation: Decimal = ZERO
    drift: Decimal = ZERO
    last_price_update: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "target_allocation": self.target_allocation,
            "current_allocation": self.current_allocation,
            "drift": self.drift,
            "current_amount": self.current_amount,
            "current_value": self.current_value_usd,
            "current_price": self.current_price,
        }


@dataclass
class RebalanceOrder:
    symbol: str
    side: OrderSide
    target_amount: Decimal
    estimated_usd_value: Decimal
    timestamp: datetime
    order_id: str | None = None
    filled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "target_amount": self.target_amount,
            "estimated_usd_value": self.estimated_usd_value,
            "timestamp": self.timestamp,
            "order_id": self.order_id,
            "filled": self.filled,
        }


@dataclass
class RebalanceEvent:
    """One entry of the rebalance history log."""

    timestamp: datetime
    trigger_reason: str
    max_drift_before: Decimal
    orders_placed: list[RebalanceOrder]
    estimated_total_value: Decimal
    success: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "trigger_reason": self.trigger_reason,
            "max_drift_before": self.max_drift_before,
            "orders_placed": [order.to_dict() for order in self.orders_placed],
            "estimated_total_value": self.estimated_total_value,
            "success": self.success,
        }


@dataclass
class PortfolioPosition:
    assets: dict[str, AssetPosition] = field(default_factory=dict)
    total_portfolio_value: Decimal = ZERO
    max_drift: Decimal = ZERO
    last_rebalance_time: datetime | None = None
    pending_rebalance_orders: dict[str, RebalanceOrder] = field(default_factory=dict)
    rebalance_history: list[RebalanceEvent] = field(default_factory=list)

    @property
    def holdings_value(self) -> Decimal:
        return sum((asset.current_value_usd for asset in self.assets.values()), ZERO)


class PortfolioStrategy(BaseTradingStrategy):
    """Multi-asset allocation keeper."""

    strategy_type = "portfolio"

    PRICE_REFRESH_INTERVAL = 60.0
    REBALANCE_CHECK_INTERVAL = 300.0

    params: PortfolioStrategyParams

    def __init__(
        self,
        exchange: IExchange,
        config: StrategyConfig,
        bot_id: str | None = None,
        user_id: str | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        super().__init__(exchange, config, bot_id, user_id, time_provider)
        self.size_decimals = DCA_SIZE_DECIMALS
        self.price_refresh_interval = self.PRICE_REFRESH_INTERVAL
        self.rebalance_check_interval = self.REBALANCE_CHECK_INTERVAL
        self._processing_rebalance = False
        self._active_risk_signals: set[EventType] = set()
        self._setup_portfolio()

    @classmethod
    def parse_params(cls, config: StrategyConfig) -> PortfolioStrategyParams:
        return PortfolioStrategyParams.from_metadata(config.metadata)

    def _apply_config(self, config: StrategyConfig, params: Any) -> None:
        previous = self.position
        super()._apply_config(config, params)
        self._setup_portfolio(previous)

    def _setup_portfolio(self, previous: PortfolioPosition | None = None) -> None:
        self.primary_symbol = self.determine_primary_symbol()
        self.position = PortfolioPosition(
            assets={
                symbol: AssetPosition(symbol=symbol, target_allocation=weight)
                for symbol, weight in self.params.target_allocations.items()
            }
        )
        if previous is not None:
            # Holdings survive a config change; only targets move
            for symbol, asset in self.position.assets.items():
                old = previous.assets.get(symbol)
                if old is not None:
                    asset.current_amount = old.current_amount
                    asset.current_price = old.current_price
                    asset.current_value_usd = old.current_value_usd
            self.position.last_rebalance_time = previous.last_rebalance_time
            self.position.rebalance_history = previous.rebalance_history
        else:
            self.rehydrate(self.params.initial_holdings)

        for symbol, weight in self.params.allocations_outside_limits().items():
            self.logger.warning(
                "allocation_outside_limits",
                asset=symbol,
                allocation=str(weight),
                min_allocation=str(self.params.portfolio_limits.min_allocation_percentage),
                max_allocation=str(self.params.portfolio_limits.max_allocation_percentage),
            )

        self.logger.info(
            "portfolio_configured",
            assets=len(self.position.assets),
            primary_symbol=self.primary_symbol,
            rebalance_threshold=str(self.params.rebalance_threshold),
            rebalance_interval=self.params.rebalance_interval,
        )

    def determine_primary_symbol(self) -> str:
        """``config.symbol`` when it holds the (joint) highest weight, else the heaviest asset."""
        allocations = self.params.target_allocations
        highest = max(allocations.values())
        if allocations.get(self.config.symbol) == highest:
            return self.config.symbol
        return max(allocations, key=lambda symbol: allocations[symbol])

    def rehydrate(self, holdings: dict[str, Decimal]) -> None:
        """Seed asset amounts from previously persisted holdings."""
        for symbol, amount in holdings.items():
            asset = self.position.assets.get(symbol)
            if asset is None:
                self.logger.warning("holding_for_unknown_asset", asset=symbol)
                continue
            asset.current_amount = Decimal(amount)
            asset.current_value_usd = asset.current_amount * asset.current_price
        if holdings:
            self.recalculate_allocations()

    def handles_symbol(self, symbol: str) -> bool:
        return symbol in self.position.assets

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _refresh_price(self) -> Decimal:
        await self.refresh_prices()
        return self.state.current_price

    async def _on_initialize(self) -> None:
        self.recalculate_allocations()

    async def _on_start(self) -> None:
        await self._subscribe_fills()
        self._start_periodic(
            "price_refresh", self.price_refresh_interval, self._refresh_and_recalculate
        )
        self._start_periodic("rebalance_check", self.rebalance_check_interval, self.check_rebalance)

    async def _subscribe_fills(self) -> None:
        # Fills for every configured asset, not only config.symbol
        await self.exchange.subscribe_to_order_fills(self.handle_order_fill)
        self._fills_subscribed = True

    async def _refresh_and_recalculate(self) -> None:
        await self.refresh_prices()
        self.recalculate_allocations()
        await self.check_risk_signals()

    # -------------------------------------------------------------------------
    # Valuation
    # -------------------------------------------------------------------------

    async def refresh_prices(self) -> None:
        """Fetch every asset's price. A failing asset keeps its last price."""
        now = self.time_provider.now()
        for symbol, asset in self.position.assets.items():
            try:
                price = await self.exchange.get_current_price(symbol)
            except Exception as e:
                self.logger.error("asset_price_refresh_failed", asset=symbol, error=str(e))
                continue
            asset.current_price = price
            asset.current_value_usd = asset.current_amount * price
            asset.last_price_update = now
            if symbol == self.primary_symbol:
                self.state.current_price = price

    def recalculate_allocations(self) -> None:
        """
        Recompute total value, current weights and drift.

        With no holdings yet the portfolio is all cash: ``investment_size``
        counts as the total and every asset sits at weight 0, so drift equals
        the target weight and the first rebalance check buys in.
        """
        position = self.position
        holdings = position.holdings_value

        if holdings > 0:
            position.total_portfolio_value = holdings
        else:
            position.total_portfolio_value = self.config.investment_size

        max_drift = ZERO
        for asset in position.assets.values():
            if holdings > 0:
                asset.current_allocation = asset.current_value_usd / holdings
            else:
                asset.current_allocation = ZERO
            asset.drift = abs(asset.current_allocation - asset.target_allocation)
            max_drift = max(max_drift, asset.drift)
        position.max_drift = max_drift

        primary = position.assets.get(self.primary_symbol)
        if primary is not None:
            self.state.total_position = primary.current_amount

    @property
    def risk_settings(self) -> RiskManagementSettings:
        return RiskManagementSettings.resolve(self.config, self.params.risk_management)

    async def check_risk_signals(self) -> list[EventType]:
        """
        Signal stop-loss / take-profit for the portfolio as a whole.

        Each signal fires once when its threshold is crossed and re-arms
        after the value moves back inside it.
        """
        holdings = self.position.holdings_value
        if holdings <= 0:
            self._active_risk_signals.clear()
            return []

        signals = evaluate_risk_signals(
            self.risk_settings, holdings, self.config.investment_size, holdings
        )
        triggered = {signal.event_type for signal in signals}
        fired: list[EventType] = []
        for signal in signals:
            if signal.event_type in self._active_risk_signals:
                continue
            self.logger.warning(
                "portfolio_risk_threshold_crossed",
                signal=signal.event_type.value,
                portfolio_value=str(holdings),
                investment_size=str(self.config.investment_size),
            )
            await self.emit(signal.event_type, {**signal.data, "scope": "portfolio"})
            fired.append(signal.event_type)
        self._active_risk_signals = triggered
        return fired

    # -------------------------------------------------------------------------
    # Rebalancing
    # -------------------------------------------------------------------------

    def interval_elapsed(self) -> bool:
        last = self.position.last_rebalance_time
        if last is None:
            return True
        return self.time_provider.now() - last >= timedelta(hours=self.params.rebalance_interval)

    def should_rebalance(self) -> bool:
        if self.position.max_drift < self.params.rebalance_threshold:
            return False
        if not self.interval_elapsed():
            self.logger.info(
                "rebalance_deferred_by_interval",
                max_drift=str(self.position.max_drift),
                next_rebalance=self.next_rebalance_time(),
            )
            return False
        return True

    async def expire_stale_orders(self) -> list[RebalanceOrder]:
        """Cancel limit rebalance orders left unfilled past the timeout."""
        settings = self.params.trading_config
        if settings.order_type != OrderType.LIMIT:
            return []

        cutoff = self.time_provider.now() - timedelta(minutes=settings.limit_order_timeout_minutes)
        expired: list[RebalanceOrder] = []
        for symbol, order in list(self.position.pending_rebalance_orders.items()):
            if order.timestamp > cutoff or order.order_id is None:
                continue
            try:
                response = await self.exchange.cancel_order(
                    CancelOrderRequest(symbol=symbol, order_id=order.order_id)
                )
            except Exception as e:
                self.logger.error("rebalance_order_cancel_failed", asset=symbol, error=str(e))
                continue
            if not response.success:
                # Still pending; a fill may yet arrive
                self.logger.warning(
                    "rebalance_order_cancel_rejected", asset=symbol, error=response.error
                )
                continue
            del self.position.pending_rebalance_orders[symbol]
            expired.append(order)
            self.logger.info(
                "rebalance_order_expired",
                asset=symbol,
                order_id=order.order_id,
                timeout_minutes=settings.limit_order_timeout_minutes,
            )
        return expired

    async def check_rebalance(self) -> bool:
        """Rebalance when drift and interval both allow. Returns True if one ran."""
        if self._processing_rebalance or not self._is_running:
            return False
        await self.expire_stale_orders()
        if not self.should_rebalance():
            return False
        self.logger.info(
            "rebalance_triggered",
            max_drift=str(self.position.max_drift),
            threshold=str(self.params.rebalance_threshold),
        )
        return await self.execute_rebalance("drift_threshold") is not None

    def calculate_rebalance_orders(self) -> list[RebalanceOrder]:
        position = self.position
        total = position.total_portfolio_value
        min_amount = self.params.portfolio_limits.min_rebalance_amount
        now = self.time_provider.now()

        orders: list[RebalanceOrder] = []
        if total <= 0:
            return orders

        for symbol, asset in position.assets.items():
            delta = total * asset.target_allocation - asset.current_value_usd
            if abs(delta) < min_amount:
                continue
            if asset.current_price <= 0:
                self.logger.warning("rebalance_skipped_no_price", asset=symbol)
                continue
            size = calculate_portfolio_order_size(delta, asset.current_price, self.size_decimals)
            if size <= 0:
                continue
            orders.append(
                RebalanceOrder(
                    symbol=symbol,
                    side=OrderSide.BUY if delta > 0 else OrderSide.SELL,
                    target_amount=size,
                    estimated_usd_value=abs(delta),
                    timestamp=now,
                )
            )
        return orders

    def _order_price(self, order: RebalanceOrder) -> Decimal:
        price = self.position.assets[order.symbol].current_price
        settings = self.params.trading_config
        if settings.order_type != OrderType.LIMIT:
            return price
        if order.side == OrderSide.BUY:
            return price * (1 + settings.slippage_tolerance)
        return price * (1 - settings.slippage_tolerance)

    async def execute_rebalance(self, reason: str) -> RebalanceEvent | None:
        """
        Place one order per drifted asset and log the rebalance.

        Returns the recorded event, or None when nothing needed trading or a
        rebalance was already in progress.
        """
        if self._processing_rebalance:
            return None
        self._processing_rebalance = True
        try:
            orders = self.calculate_rebalance_orders()
            if not orders:
                self.logger.info("rebalance_not_needed", reason=reason)
                return None

            placed: list[RebalanceOrder] = []
            for order in orders:
                request = OrderRequest(
                    symbol=order.symbol,
                    side=order.side,
                    size=order.target_amount,
                    price=self._order_price(order),
                    type=self.params.trading_config.order_type,
                )
                try:
                    response = await self.exchange.place_order(request)
                except Exception as e:
                    self.logger.error("rebalance_order_failed", asset=order.symbol, error=str(e))
                    continue
                if not response.success:
                    self.logger.error(
                        "rebalance_order_rejected", asset=order.symbol, error=response.error
                    )
                    continue

                order.order_id = response.order_id
                self.position.pending_rebalance_orders[order.symbol] = order
                placed.append(order)
                self.logger.info(
                    "rebalance_order_placed",
                    asset=order.symbol,
                    side=order.side.value,
                    size=str(order.target_amount),
                    usd_value=str(order.estimated_usd_value),
                    order_id=response.order_id,
                )

            event = RebalanceEvent(
                timestamp=self.time_provider.now(),
                trigger_reason=reason,
                max_drift_before=self.position.max_drift,
                orders_placed=placed,
                estimated_total_value=self.position.total_portfolio_value,
                success=bool(placed),
            )
            self.position.rebalance_history.append(event)
            self.position.last_rebalance_time = event.timestamp

            self.logger.info("rebalance_executed", reason=reason, orders_placed=len(placed))
            await self.emit(
                EventType.REBALANCE_EXECUTED,
                {"event": event.to_dict(), "orders": [order.to_dict() for order in placed]},
            )
            return event

        except Exception as e:
            self.logger.error("rebalance_error", reason=reason, error=str(e))
            await self.emit(EventType.REBALANCE_ERROR, {"reason": reason, "error": str(e)})
            return None
        finally:
            self._processing_rebalance = False

    async def trigger_manual_rebalance(self) -> RebalanceEvent | None:
        if not self._is_running:
            raise StrategyStateError("Strategy must be running to trigger manual rebalance")
        self.logger.info("manual_rebalance_triggered")
        return await self.execute_rebalance("manual_trigger")

    # -------------------------------------------------------------------------
    # Fills
    # -------------------------------------------------------------------------

    async def _process_fill(self, fill: OrderFill) -> None:
        asset = self.position.assets[fill.symbol]
        if fill.side == OrderSide.BUY:
            asset.current_amount += fill.size
        else:
            asset.current_amount = max(ZERO, asset.current_amount - fill.size)
        asset.current_price = fill.price
        asset.current_value_usd = asset.current_amount * fill.price
        asset.last_price_update = fill.timestamp
        if fill.symbol == self.primary_symbol:
            self.state.current_price = fill.price

        self._update_volume_metrics(fill)
        self.recalculate_allocations()

        pending = self.position.pending_rebalance_orders.pop(fill.symbol, None)
        if pending is not None:
            pending.filled = True
            self.logger.info("rebalance_order_filled", asset=fill.symbol, order_id=pending.order_id)

        self.logger.info(
            "portfolio_position_updated",
            asset=fill.symbol,
            amount=str(asset.current_amount),
            allocation=str(asset.current_allocation),
        )
        await self.emit(
            EventType.ORDER_FILLED,
            {"fill": fill.to_dict(), "asset": asset.to_dict()},
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_position(self) -> PortfolioPosition:
        return copy.deepcopy(self.position)

    def get_asset_details(self, symbol: str) -> AssetPosition | None:
        asset = self.position.assets.get(symbol)
        return copy.deepcopy(asset) if asset is not None else None

    def simulate_allocation(self, allocations: dict[str, Decimal]) -> dict[str, Any]:
        """Values and amounts the portfolio would hold at *allocations* and current prices."""
        total = self.position.total_portfolio_value
        prices = {symbol: asset.current_price for symbol, asset in self.position.assets.items()}
        values = {symbol: total * Decimal(weight) for symbol, weight in allocations.items()}
        amounts = {
            symbol: value / prices[symbol] if prices.get(symbol) else ZERO
            for symbol, value in values.items()
        }
        return {
            "current_prices": prices,
            "simulated_values": values,
            "simulated_amounts": amounts,
            "total_value": total,
        }

    def next_rebalance_time(self) -> datetime | None:
        if self.position.last_rebalance_time is None:
            return None
        return self.position.last_rebalance_time + timedelta(hours=self.params.rebalance_interval)

    def get_statistics(self) -> dict[str, Any]:
        stats = super().get_statistics()
        position = self.position
        initial_value = self.config.investment_size
        total_return = position.total_portfolio_value - initial_value
        total_return_pct = total_return / initial_value * 100 if initial_value > 0 else ZERO
        next_rebalance = self.next_rebalance_time()

        stats.update(
            {
                "portfolio_summary": {
                    "total_assets": len(position.assets),
                    "total_value": position.total_portfolio_value,
                    "initial_value": initial_value,
                    "total_return": total_return,
                    "total_return_percent": total_return_pct,
                    "max_drift": position.max_drift,
                    "last_rebalance_time": position.last_rebalance_time,
                    "rebalance_count": len(position.rebalance_history),
                },
                "allocations": [asset.to_dict() for asset in position.assets.values()],
                "portfolio_config": {
                    "primary_symbol": self.primary_symbol,
                    "rebalance_threshold": self.params.rebalance_threshold,
                    "rebalance_interval": self.params.rebalance_interval,
                    "order_type": self.params.trading_config.order_type.value,
                    "slippage_tolerance": self.params.trading_config.slippage_tolerance,
                    "limit_order_timeout_minutes": (
                        self.params.trading_config.limit_order_timeout_minutes
                    ),
                    "min_rebalance_amount": self.params.portfolio_limits.min_rebalance_amount,
                },
                "triggers": {
                    "current_max_drift": position.max_drift,
                    "drift_threshold": self.params.rebalance_threshold,
                    "next_rebalance_check": next_rebalance.isoformat() if next_rebalance else None,
                    "needs_rebalance": position.max_drift >= self.params.rebalance_threshold,
                },
                "rebalancing": {
                    "pending_orders": len(position.pending_rebalance_orders),
                    "is_processing": self._processing_rebalance,
                    "recent_events": [event.to_dict() for event in position.rebalance_history[-5:]],
                },
            }
        )
        return stats
