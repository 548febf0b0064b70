"""DCA strategy settings parsed from ``StrategyConfig.metadata``."""

from decimal import Decimal

from pydantic import Field, model_validator

from tradebot.config.schemas import StrategyParams
from tradebot.strategies.risk_signals import RiskManagementSettings


class DCAStrategyParams(StrategyParams):
    """Recurring-buy settings. Order sizes are in USD."""

    interval_hours: float = Field(default=24, ge=1, le=168, description="Hours between buys")
    order_size: Decimal = Field(default=Decimal("100"), gt=0)
    max_orders: int = Field(default=30, ge=1, description="Lifetime cap on filled buys")
    max_daily_orders: int = Field(default=1, ge=1)
    min_order_size: Decimal = Field(default=Decimal("50"), gt=0)
    max_order_size: Decimal = Field(default=Decimal("200"), gt=0)
    risk_management: RiskManagementSettings | None = None

    @model_validator(mode="after")
    def validate_order_size_range(self) -> "DCAStrategyParams":
        """order_size must sit inside [min_order_size, max_order_size]."""
        if self.min_order_size > self.order_size:
            raise ValueError(
                f"min_order_size ({self.min_order_size}) cannot be greater than "
                f"order_size ({self.order_size})"
            )
        if self.max_order_size < self.order_size:
            raise ValueError(
                f"max_order_size ({self.max_order_size}) cannot be less than "
                f"order_size ({self.order_size})"
            )
        return self

    @property
    def max_possible_daily_orders(self) -> int:
        """Firings that fit into one day at the configured interval."""
        return int(24 // self.interval_hours)
