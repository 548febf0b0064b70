"""
TradingBot - façade over one strategy instance.

Accepts both the current ``TradingBotConfig`` and the flat legacy grid
shape, builds the strategy through the factory, forwards its events and
feeds fills to the optional trade logger and order-metadata collaborators.
"""

import inspect
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from tradebot.api.exchange_protocol import IExchange
from tradebot.config.schemas import LegacyGridConfig, TradingBotConfig
from tradebot.core.events import EventType, StrategyEvent
from tradebot.core.exceptions import ConfigurationError
from tradebot.core.time_provider import TimeProvider
from tradebot.strategies.base import BaseTradingStrategy, EventListener, StrategyState
from tradebot.strategies.factory import StrategyFactory
from tradebot.utils.logger import LoggerMixin, log_context

# Fee estimate when the exchange does not report one
ESTIMATED_FEE_RATE = Decimal("0.0002")

LEGACY_TOP_LEVEL_KEYS = {
    "symbol": "symbol",
    "investment_amount": "investment_size",
    "investmentSize": "investment_size",
    "max_position": "max_position",
    "maxPosition": "max_position",
    "stop_loss": "stop_loss",
    "stopLoss": "stop_loss",
    "take_profit": "take_profit",
    "takeProfit": "take_profit",
}

LEGACY_GRID_KEYS = {
    "grid_spacing": "grid_spacing",
    "gridSpacing": "grid_spacing",
    "grid_quantity": "grid_quantity",
    "gridQuantity": "grid_quantity",
    "grid_mode": "grid_mode",
    "gridMode": "grid_mode",
    "upper_bound": "upper_bound",
    "upperBound": "upper_bound",
    "lower_bound": "lower_bound",
    "lowerBound": "lower_bound",
    "base_price": "base_price",
    "basePrice": "base_price",
    "active_levels": "active_levels",
    "activeLevels": "active_levels",
}

# Legacy spellings -> LegacyGridConfig field names
LEGACY_FIELD_NAMES = {
    **LEGACY_GRID_KEYS,
    "investmentSize": "investment_amount",
    "investment_size": "investment_amount",
    "maxPosition": "max_position",
    "stopLoss": "stop_loss",
    "takeProfit": "take_profit",
}


@dataclass
class TradeRecord:
    """One fill, as handed to the trade logger."""

    bot_id: str
    user_id: str
    symbol: str
    side: str
    price: Decimal
    size: Decimal
    order_id: str | None
    fee: Decimal
    size_usd: Decimal
    role: str = "maker"
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bot_id": self.bot_id,
            "user_id": self.user_id,
            "symbol": self.symbol,
            "side": self.side,
            "price": str(self.price),
            "size": str(self.size),
            "order_id": self.order_id,
            "fee": str(self.fee),
            "role": self.role,
            "size_usd": str(self.size_usd),
            **self.extra,
        }


@runtime_checkable
class TradeMetricsLogger(Protocol):
    async def log_trade(self, record: TradeRecord) -> None:
        ...


@runtime_checkable
class OrderMetadataUpdater(Protocol):
    async def update_order_metadata(self, payload: dict[str, Any]) -> None:
        ...


def normalize_config(
    config: TradingBotConfig | LegacyGridConfig | dict[str, Any],
) -> tuple[TradingBotConfig, LegacyGridConfig | None]:
    """
    Convert any accepted configuration shape to ``TradingBotConfig``.

    Returns the normalised config and, for legacy input, the legacy config.

    Raises:
        ConfigurationError: If the configuration does not validate
    """
    if isinstance(config, TradingBotConfig):
        return config, None
    if isinstance(config, LegacyGridConfig):
        return config.to_trading_bot_config(), config

    try:
        if "bot_type" in config or "botType" in config:
            data = dict(config)
            if "botType" in data:
                data["bot_type"] = data.pop("botType")
            return TradingBotConfig.model_validate(data), None
        legacy = LegacyGridConfig.model_validate(
            {LEGACY_FIELD_NAMES.get(k, k): v for k, v in config.items()}
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid bot configuration: {e}") from e
    return legacy.to_trading_bot_config(), legacy


def _fill_record_fields(fill: dict[str, Any]) -> tuple[Decimal, Decimal, Decimal]:
    price = Decimal(str(fill["price"]))
    size = Decimal(str(fill["size"]))
    if fill.get("fee") is not None:
        fee = Decimal(str(fill["fee"]))
    else:
        fee = price * size * ESTIMATED_FEE_RATE
    return price, size, fee


class TradingBot(LoggerMixin):
    """Runs one strategy and relays its events to the caller."""

    def __init__(
        self,
        exchange: IExchange,
        config: TradingBotConfig | LegacyGridConfig | dict[str, Any],
        metrics_logger: TradeMetricsLogger | None = None,
        bot_id: str | None = None,
        user_id: str | None = None,
        order_metadata_updater: OrderMetadataUpdater | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        self.metrics_logger = metrics_logger
        self.order_metadata_updater = order_metadata_updater
        self.bot_id = bot_id
        self.user_id = user_id

        self.config, self.legacy_config = normalize_config(config)
        self.strategy: BaseTradingStrategy = StrategyFactory.create_strategy(
            exchange, self.config, bot_id, user_id, time_provider
        )
        self._listeners: dict[EventType, list[EventListener]] = {}
        self._setup_strategy_event_handlers()

    def _log_context(self) -> dict[str, Any]:
        return {"bot_id": self.bot_id, "bot_type": self.config.bot_type.value}

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on(self, event_type: EventType, listener: EventListener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def _setup_strategy_event_handlers(self) -> None:
        for event_type in EventType:
            self.strategy.on(event_type, self._forward_event)

    async def _forward_event(self, event: StrategyEvent) -> None:
        if event.event_type == EventType.ORDER_FILLED and "fill" in event.data:
            await self._handle_order_fill_logging(event.data["fill"])

        for listener in list(self._listeners.get(event.event_type, [])):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(
                    "bot_listener_failed", event_type=event.event_type.value, error=str(e)
                )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        try:
            with log_context(**self._log_context()):
                await self.strategy.initialize()
        except Exception as e:
            self.logger.error("bot_initialize_failed", error=str(e))
            raise

    async def start(self) -> None:
        try:
            with log_context(**self._log_context()):
                await self.strategy.start()
        except Exception as e:
            self.logger.error("bot_start_failed", error=str(e))
            raise

    async def stop(self) -> None:
        try:
            with log_context(**self._log_context()):
                await self.strategy.stop()
        except Exception as e:
            self.logger.error("bot_stop_failed", error=str(e))
            raise

    async def update_config(self, updates: dict[str, Any]) -> None:
        """
        Apply a partial update in either the current or the legacy shape.

        Raises:
            ConfigurationError: If the update is invalid or changes the bot type
        """
        requested_type = updates.get("bot_type", updates.get("botType"))
        if requested_type is not None:
            if StrategyFactory.parse_bot_type(requested_type) != self.config.bot_type:
                raise ConfigurationError("bot_type cannot be changed on a running bot")

        if self.legacy_config is not None and requested_type is None:
            strategy_updates = self._translate_legacy_update(updates)
        else:
            strategy_updates = {
                k: v for k, v in updates.items() if k not in ("bot_type", "botType")
            }

        try:
            with log_context(**self._log_context()):
                await self.strategy.update_config(strategy_updates)
        except Exception as e:
            self.logger.error("bot_update_config_failed", error=str(e))
            raise

        self.config = self.strategy.config
        if self.legacy_config is not None:
            self.legacy_config = self.legacy_config.model_copy(
                update={
                    LEGACY_FIELD_NAMES.get(k, k): v
                    for k, v in updates.items()
                    if k in LEGACY_FIELD_NAMES or k in LEGACY_TOP_LEVEL_KEYS
                }
            )

    @staticmethod
    def _translate_legacy_update(updates: dict[str, Any]) -> dict[str, Any]:
        translated: dict[str, Any] = {}
        metadata: dict[str, Any] = dict(updates.get("metadata", {}))
        for key, value in updates.items():
            if key in LEGACY_TOP_LEVEL_KEYS:
                translated[LEGACY_TOP_LEVEL_KEYS[key]] = value
            elif key in LEGACY_GRID_KEYS:
                metadata[LEGACY_GRID_KEYS[key]] = value
        if metadata:
            translated["metadata"] = metadata
        return translated

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_state(self) -> StrategyState:
        return self.strategy.get_state()

    def get_statistics(self) -> dict[str, Any]:
        return self.strategy.get_statistics()

    def get_bot_type(self) -> str:
        return self.config.bot_type.value

    def is_active(self) -> bool:
        return self.strategy.is_active()

    def get_exchange(self) -> IExchange:
        return self.strategy.get_exchange()

    def update_bot_id(self, bot_id: str) -> None:
        self.bot_id = bot_id
        self.strategy.bot_id = bot_id

    # -------------------------------------------------------------------------
    # Fill side effects
    # -------------------------------------------------------------------------

    async def _handle_order_fill_logging(self, fill: dict[str, Any]) -> None:
        """Trade logging and metadata refresh; failures never reach the strategy."""
        if not self.bot_id or not self.user_id:
            return

        if self.metrics_logger is not None:
            try:
                await self.metrics_logger.log_trade(self._build_trade_record(fill))
            except Exception as e:
                self.logger.error("trade_log_failed", error=str(e))

        if self.order_metadata_updater is not None:
            try:
                await self.order_metadata_updater.update_order_metadata(
                    {
                        "bot_id": self.bot_id,
                        "orders": [],
                        "current_price": self.strategy.get_state().current_price,
                    }
                )
            except Exception as e:
                self.logger.error("order_metadata_update_failed", error=str(e))

    def _build_trade_record(self, fill: dict[str, Any]) -> TradeRecord:
        price, size, fee = _fill_record_fields(fill)
        known = {"symbol", "order_id", "side", "size", "price", "timestamp", "fee"}
        return TradeRecord(
            bot_id=self.bot_id or "",
            user_id=self.user_id or "",
            symbol=fill["symbol"],
            side=fill["side"],
            price=price,
            size=size,
            order_id=str(fill["order_id"]) if fill.get("order_id") is not None else None,
            fee=fee,
            size_usd=price * size,
            extra={k: v for k, v in fill.items() if k not in known},
        )
