"""Strategy event types and the event payload delivered to listeners."""

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Events a strategy emits."""

    # Lifecycle
    INITIALIZED = "initialized"
    STARTED = "started"
    STOPPED = "stopped"
    ERROR = "error"

    # Orders
    ORDER_PLACED = "order_placed"
    ORDER_FILLED = "order_filled"
    ORDER_ERROR = "order_error"

    # Risk signals
    STOP_LOSS_TRIGGERED = "stop_loss_triggered"
    TAKE_PROFIT_TRIGGERED = "take_profit_triggered"

    # Grid
    GRID_RECONCILED = "grid_reconciled"

    # Martingale
    ENTRY_ORDER_PLACED = "entry_order_placed"
    EXIT_ORDER_PLACED = "exit_order_placed"

    # Portfolio
    REBALANCE_EXECUTED = "rebalance_executed"
    REBALANCE_ERROR = "rebalance_error"


@dataclass
class StrategyEvent:
    """Event payload delivered to strategy listeners."""

    event_type: EventType
    strategy: str
    symbol: str
    timestamp: str
    data: dict[str, Any]

    @classmethod
    def create(
        cls,
        event_type: EventType,
        strategy: str,
        symbol: str,
        data: dict[str, Any] | None = None,
    ) -> "StrategyEvent":
        """
        Create a new event stamped with the current UTC time.

        Args:
            event_type: Type of event
            strategy: Emitting strategy kind (grid, dca, ...)
            symbol: Symbol the strategy trades
            data: Event-specific data
        """
        return cls(
            event_type=event_type,
            strategy=strategy,
            symbol=symbol,
            timestamp=datetime.now(timezone.utc).isoformat(),
            data=data or {},
        )

    def to_json(self) -> str:
        """Serialize to JSON with Decimals rendered as strings."""
        event_dict = asdict(self)
        event_dict["event_type"] = self.event_type.value
        event_dict["data"] = self._convert_decimals(event_dict["data"])
        return json.dumps(event_dict)

    @classmethod
    def from_json(cls, json_str: str) -> "StrategyEvent":
        event_dict = json.loads(json_str)
        event_dict["event_type"] = EventType(event_dict["event_type"])
        return cls(**event_dict)

    @staticmethod
    def _convert_decimals(value: Any) -> Any:
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, dict):
            return {key: StrategyEvent._convert_decimals(item) for key, item in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return [StrategyEvent._convert_decimals(item) for item in value]
        return value
