"""
BaseTradingStrategy - Abstract base class for all strategy state machines.

Every strategy (grid, DCA, martingale, portfolio, placeholder) is a single
logical actor driven by three event sources: price updates, order fills and
its own timers. This module supplies what they share:

- StrategyState / VolumeMetrics snapshots
- Listener registry and event emission
- Lifecycle template (initialize → start → stop) with exchange wiring
- Periodic asyncio tasks owned by the strategy and cancelled on stop
- A non-reentrant fill handler boundary that turns exceptions into
  ``error`` events instead of letting them escape
"""

import asyncio
import copy
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from tradebot.api.exchange_protocol import IExchange
from tradebot.api.models import ExchangeEvent, OrderFill, OrderSide, PriceUpdate
from tradebot.config.schemas import StrategyConfig
from tradebot.core.events import EventType, StrategyEvent
from tradebot.core.exceptions import ConfigurationError
from tradebot.core.time_provider import LiveTimeProvider, TimeProvider
from tradebot.utils.logger import get_logger
from tradebot.utils.order_size import DEFAULT_SIZE_DECIMALS

EventListener = Callable[[StrategyEvent], Awaitable[None] | None]


# =============================================================================
# State snapshots
# =============================================================================


@dataclass
class VolumeMetrics:
    """Traded volume in base asset and USD."""

    total_volume: Decimal = Decimal("0")
    buy_volume: Decimal = Decimal("0")
    sell_volume: Decimal = Decimal("0")
    total_volume_usd: Decimal = Decimal("0")
    buy_volume_usd: Decimal = Decimal("0")
    sell_volume_usd: Decimal = Decimal("0")

    def record(self, side: OrderSide, size: Decimal, price: Decimal) -> None:
        volume_usd = size * price
        self.total_volume += size
        self.total_volume_usd += volume_usd
        if side == OrderSide.BUY:
            self.buy_volume += size
            self.buy_volume_usd += volume_usd
        else:
            self.sell_volume += size
            self.sell_volume_usd += volume_usd

    def to_dict(self) -> dict[str, str]:
        return {
            "total_volume": str(self.total_volume),
            "buy_volume": str(self.buy_volume),
            "sell_volume": str(self.sell_volume),
            "total_volume_usd": str(self.total_volume_usd),
            "buy_volume_usd": str(self.buy_volume_usd),
            "sell_volume_usd": str(self.sell_volume_usd),
        }


@dataclass
class StrategyState:
    """Common strategy state. Callers only ever receive copies."""

    is_active: bool = False
    current_price: Decimal = Decimal("0")
    total_position: Decimal = Decimal("0")  # signed, base asset
    profits: Decimal = Decimal("0")
    trades: int = 0
    volume: VolumeMetrics = field(default_factory=VolumeMetrics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_active": self.is_active,
            "current_price": str(self.current_price),
            "total_position": str(self.total_position),
            "profits": str(self.profits),
            "trades": self.trades,
            "volume": self.volume.to_dict(),
        }


# =============================================================================
# Base strategy
# =============================================================================


class BaseTradingStrategy(ABC):
    """
    Abstract base for strategy state machines.

    Subclasses implement:
    - parse_params(): validate strategy-specific metadata
    - _on_start(): place initial orders, arm timers, subscribe to feeds
    - _process_fill(): react to one fill of this strategy's symbol

    and may override the _on_initialize / _on_stop / _process_price_update /
    _recover_after_reconnect hooks.
    """

    strategy_type: str = "base"

    def __init__(
        self,
        exchange: IExchange,
        config: StrategyConfig,
        bot_id: str | None = None,
        user_id: str | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        self.exchange = exchange
        self.config = config
        self.params = self.parse_params(config)
        self.bot_id = bot_id
        self.user_id = user_id
        self.time_provider = time_provider or LiveTimeProvider()
        self.state = StrategyState()
        self.size_decimals = DEFAULT_SIZE_DECIMALS
        self.logger = get_logger(
            f"tradebot.strategies.{self.strategy_type}",
            strategy=self.strategy_type,
            symbol=config.symbol,
        )

        self._listeners: dict[EventType, list[EventListener]] = {}
        self._tasks: list[asyncio.Task] = []
        self._is_initialized = False
        self._is_running = False
        self._is_paused = False
        self._processing_fill = False
        self._fills_subscribed = False
        self._price_feed_subscribed = False
        self._exchange_handlers_registered = False

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @classmethod
    @abstractmethod
    def parse_params(cls, config: StrategyConfig) -> Any:
        """Validate strategy metadata. Raises ConfigurationError."""
        ...

    def _apply_config(self, config: StrategyConfig, params: Any) -> None:
        self.config = config
        self.params = params
        self._is_initialized = False

    async def update_config(self, updates: dict[str, Any]) -> None:
        """
        Apply a partial configuration update.

        The new configuration is validated before anything is touched; a
        running strategy is stopped, updated and restarted.

        Raises:
            ConfigurationError: If the merged configuration is invalid
        """
        try:
            new_config = self.config.merged(updates)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration update: {e}") from e
        new_params = self.parse_params(new_config)

        was_running = self._is_running
        if was_running:
            await self.stop()

        self._apply_config(new_config, new_params)
        self.logger.info("config_updated", keys=sorted(updates), restarting=was_running)

        if was_running:
            await self.start()

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on(self, event_type: EventType, listener: EventListener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    async def emit(
        self, event_type: EventType, data: dict[str, Any] | None = None
    ) -> StrategyEvent:
        """Deliver an event to its listeners; listener failures are logged only."""
        event = StrategyEvent.create(event_type, self.strategy_type, self.config.symbol, data)
        for listener in list(self._listeners.get(event_type, [])):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(
                    "event_listener_failed", event_type=event_type.value, error=str(e)
                )
        return event

    async def _handle_error(self, context: str, error: Exception) -> None:
        self.logger.error("strategy_error", context=context, error=str(error), exc_info=error)
        await self.emit(EventType.ERROR, {"context": context, "error": str(error)})

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def is_paused(self) -> bool:
        return self._is_paused

    def is_active(self) -> bool:
        return self._is_running and self.state.is_active

    def get_exchange(self) -> IExchange:
        return self.exchange

    def get_state(self) -> StrategyState:
        return copy.deepcopy(self.state)

    async def initialize(self) -> None:
        """Connect, read the current price and run the strategy's own setup."""
        try:
            if not self.exchange.is_connected():
                await self.exchange.connect()
            await self._refresh_price()
            await self._on_initialize()
        except Exception as e:
            await self._handle_error("initialize", e)
            raise

        self._is_initialized = True
        self.logger.info("strategy_initialized", current_price=str(self.state.current_price))
        await self.emit(EventType.INITIALIZED, {"current_price": self.state.current_price})

    async def start(self) -> None:
        if self._is_running:
            self.logger.warning("strategy_already_running")
            return
        if not self._is_initialized:
            await self.initialize()

        self._is_running = True
        self._is_paused = False
        self.state.is_active = True
        self._register_exchange_handlers()

        try:
            await self._on_start()
        except Exception as e:
            self._is_running = False
            self.state.is_active = False
            await self._cancel_tasks()
            self._remove_exchange_handlers()
            await self._handle_error("start", e)
            raise

        self.logger.info("strategy_started")
        await self.emit(EventType.STARTED)

    async def stop(self) -> None:
        if not self._is_running:
            return

        self._is_running = False
        self.state.is_active = False
        self._processing_fill = False

        await self._cancel_tasks()
        self._remove_exchange_handlers()
        await self._unsubscribe_feeds()
        await self._on_stop()

        self.logger.info("strategy_stopped")
        await self.emit(EventType.STOPPED)

    async def _on_initialize(self) -> None:
        pass

    @abstractmethod
    async def _on_start(self) -> None:
        ...

    async def _on_stop(self) -> None:
        pass

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    async def handle_order_fill(self, fill: OrderFill) -> None:
        """
        Entry point for fills.

        Fills for other symbols, fills while stopped or paused, and fills
        arriving while a previous one is still being processed are ignored.
        """
        if not self._is_running or self._is_paused or not self.handles_symbol(fill.symbol):
            return
        if self._processing_fill:
            self.logger.debug("fill_dropped_while_processing", order_id=fill.order_id)
            return

        self._processing_fill = True
        try:
            await self._process_fill(fill)
        except Exception as e:
            await self._handle_error("order_fill", e)
        finally:
            self._processing_fill = False

    async def handle_price_update(self, update: PriceUpdate) -> None:
        if not self.handles_symbol(update.symbol) or self._is_paused:
            return
        try:
            await self._process_price_update(update)
        except Exception as e:
            await self._handle_error("price_update", e)

    def handles_symbol(self, symbol: str) -> bool:
        return symbol == self.config.symbol

    @abstractmethod
    async def _process_fill(self, fill: OrderFill) -> None:
        ...

    async def _process_price_update(self, update: PriceUpdate) -> None:
        self.state.current_price = update.price

    def _update_volume_metrics(self, fill: OrderFill) -> None:
        self.state.volume.record(fill.side, fill.size, fill.price)
        self.state.trades += 1

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_statistics(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy_type,
            "symbol": self.config.symbol,
            "is_running": self._is_running,
            "is_paused": self._is_paused,
            "current_price": self.state.current_price,
            "total_trades": self.state.trades,
            "total_profits": self.state.profits,
            "current_position": self.state.total_position,
            "volume": self.state.volume.to_dict(),
        }

    # -------------------------------------------------------------------------
    # Exchange helpers
    # -------------------------------------------------------------------------

    async def _refresh_price(self) -> Decimal:
        price = await self.exchange.get_current_price(self.config.symbol)
        self.state.current_price = price
        return price

    async def _load_size_precision(self) -> int:
        try:
            self.size_decimals = await self.exchange.get_size_precision(self.config.symbol)
        except Exception as e:
            self.logger.warning("size_precision_unavailable", error=str(e))
            self.size_decimals = DEFAULT_SIZE_DECIMALS
        return self.size_decimals

    async def _subscribe_fills(self) -> None:
        await self.exchange.subscribe_to_order_fills(
            self.handle_order_fill, symbol=self.config.symbol
        )
        self._fills_subscribed = True

    async def _subscribe_price_feed(self) -> None:
        await self.exchange.subscribe_to_price_updates(
            self.config.symbol, self.handle_price_update
        )
        self._price_feed_subscribed = True

    async def _unsubscribe_feeds(self) -> None:
        try:
            if self._fills_subscribed:
                await self.exchange.unsubscribe_from_order_fills(self.handle_order_fill)
            if self._price_feed_subscribed:
                await self.exchange.unsubscribe_from_price_updates(
                    self.config.symbol, self.handle_price_update
                )
        except Exception as e:
            self.logger.warning("unsubscribe_failed", error=str(e))
        finally:
            self._fills_subscribed = False
            self._price_feed_subscribed = False

    def _register_exchange_handlers(self) -> None:
        if self._exchange_handlers_registered:
            return
        self.exchange.on(ExchangeEvent.DISCONNECTED, self._on_exchange_disconnected)
        self.exchange.on(ExchangeEvent.RECONNECTED, self._on_exchange_reconnected)
        self.exchange.on(ExchangeEvent.ERROR, self._on_exchange_error)
        self._exchange_handlers_registered = True

    def _remove_exchange_handlers(self) -> None:
        if not self._exchange_handlers_registered:
            return
        self.exchange.off(ExchangeEvent.DISCONNECTED, self._on_exchange_disconnected)
        self.exchange.off(ExchangeEvent.RECONNECTED, self._on_exchange_reconnected)
        self.exchange.off(ExchangeEvent.ERROR, self._on_exchange_error)
        self._exchange_handlers_registered = False

    async def _on_exchange_disconnected(self, *args: Any) -> None:
        if self._is_running:
            self._is_paused = True
            self.logger.warning("exchange_disconnected_strategy_paused")

    async def _on_exchange_reconnected(self, *args: Any) -> None:
        if not self._is_running:
            return
        self._is_paused = False
        self.logger.info("exchange_reconnected_resuming")
        try:
            await self._recover_after_reconnect()
        except Exception as e:
            await self._handle_error("reconnect", e)

    async def _on_exchange_error(self, error: Any = None, *args: Any) -> None:
        await self.emit(EventType.ERROR, {"context": "exchange", "error": str(error)})

    async def _recover_after_reconnect(self) -> None:
        await self._refresh_price()

    # -------------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------------

    def _start_periodic(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        initial_delay: float | None = None,
    ) -> asyncio.Task:
        """Run *callback* every *interval* seconds until the strategy stops."""
        task = asyncio.create_task(
            self._periodic_loop(name, interval, callback, initial_delay),
            name=f"{self.strategy_type}:{self.config.symbol}:{name}",
        )
        self._tasks.append(task)
        return task

    async def _periodic_loop(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        initial_delay: float | None,
    ) -> None:
        delay = interval if initial_delay is None else initial_delay
        while self._is_running:
            try:
                await asyncio.sleep(delay)
                delay = interval
                if not self._is_running:
                    break
                if self._is_paused:
                    self.logger.debug("timer_skipped_while_paused", timer=name)
                    continue
                await callback()
            except asyncio.CancelledError:
                break
            except Exception as e:
                await self._handle_error(name, e)

    async def _cancel_tasks(self) -> None:
        tasks, self._tasks = self._tasks, []
        current = asyncio.current_task()
        pending = [task for task in tasks if task is not current and not task.done()]
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
