"""Martingale strategy settings parsed from ``StrategyConfig.metadata``."""

from decimal import Decimal

from pydantic import BaseModel, Field

from tradebot.config.schemas import StrategyParams
from tradebot.strategies.risk_signals import RiskManagementSettings


class EntryTrigger(BaseModel):
    price_drop_percentage: Decimal = Field(default=Decimal("2.0"), gt=0, lt=100)


class ExitStrategy(BaseModel):
    profit_percentage: Decimal = Field(default=Decimal("1.0"), gt=0)


class SafetyControls(BaseModel):
    max_position_multiple: Decimal = Field(
        default=Decimal("10"),
        gt=0,
        description="Cap on total invested, as a multiple of investment_size",
    )


class MartingaleStrategyParams(StrategyParams):
    """Martingale sequence settings. Order sizes are in USD."""

    step_multiplier: Decimal = Field(default=Decimal("2.0"), ge=Decimal("1.1"), le=Decimal("5.0"))
    max_orders: int = Field(default=5, ge=2, le=10)
    base_order_size: Decimal = Field(default=Decimal("100"), gt=0)
    entry_trigger: EntryTrigger = Field(default_factory=EntryTrigger)
    exit_strategy: ExitStrategy = Field(default_factory=ExitStrategy)
    safety_controls: SafetyControls = Field(default_factory=SafetyControls)
    risk_management: RiskManagementSettings | None = None

    def order_size_for_step(self, orders_placed: int) -> Decimal:
        """USD size of the next entry after *orders_placed* entries."""
        return self.base_order_size * self.step_multiplier**orders_placed

    @property
    def total_potential_investment(self) -> Decimal:
        """USD committed if every step of a sequence is taken."""
        return sum(
            (self.order_size_for_step(i) for i in range(self.max_orders)),
            Decimal("0"),
        )
