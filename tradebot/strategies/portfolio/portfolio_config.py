"""Portfolio rebalancing settings parsed from ``StrategyConfig.metadata``."""

from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from tradebot.api.models import OrderType
from tradebot.config.schemas import StrategyParams
from tradebot.strategies.risk_signals import RiskManagementSettings

ALLOCATION_SUM_TOLERANCE = Decimal("0.001")
MIN_ASSETS = 2
MAX_ASSETS = 10


class TradingSettings(BaseModel):
    order_type: OrderType = Field(default=OrderType.LIMIT)
    slippage_tolerance: Decimal = Field(default=Decimal("0.01"), ge=0, le=Decimal("0.05"))
    limit_order_timeout_minutes: int = Field(default=30, ge=1, le=60)


class PortfolioLimits(BaseModel):
    min_allocation_percentage: Decimal = Field(default=Decimal("0.05"), ge=0, le=1)
    max_allocation_percentage: Decimal = Field(default=Decimal("0.6"), gt=0, le=1)
    min_rebalance_amount: Decimal = Field(
        default=Decimal("10"), ge=0, description="Smallest USD delta worth trading"
    )


class PortfolioStrategyParams(StrategyParams):
    """Target weights and rebalance rules. Allocations are fractions of 1."""

    target_allocations: dict[str, Decimal] = Field(..., description="symbol -> weight")
    rebalance_threshold: Decimal = Field(
        default=Decimal("0.05"), ge=Decimal("0.01"), le=Decimal("0.20")
    )
    rebalance_interval: float = Field(
        default=24, ge=1, le=168, description="Minimum hours between rebalances"
    )
    trading_config: TradingSettings = Field(default_factory=TradingSettings)
    portfolio_limits: PortfolioLimits = Field(default_factory=PortfolioLimits)
    initial_holdings: dict[str, Decimal] = Field(
        default_factory=dict, description="symbol -> amount already held"
    )
    risk_management: RiskManagementSettings | None = None

    @model_validator(mode="after")
    def validate_allocations(self) -> "PortfolioStrategyParams":
        count = len(self.target_allocations)
        if count < MIN_ASSETS or count > MAX_ASSETS:
            raise ValueError(f"Portfolio must have {MIN_ASSETS}-{MAX_ASSETS} assets, got {count}")

        for symbol, weight in self.target_allocations.items():
            if weight <= 0:
                raise ValueError(f"Target allocation for {symbol} must be positive")

        total = sum(self.target_allocations.values(), Decimal("0"))
        if abs(total - 1) > ALLOCATION_SUM_TOLERANCE:
            raise ValueError(f"Target allocations must sum to 1.0, got {total:.4f}")

        for symbol, amount in self.initial_holdings.items():
            if amount < 0:
                raise ValueError(f"Initial holding for {symbol} cannot be negative")
        return self

    def allocations_outside_limits(self) -> dict[str, Decimal]:
        """Assets whose target weight falls outside ``portfolio_limits``."""
        limits = self.portfolio_limits
        return {
            symbol: weight
            for symbol, weight in self.target_allocations.items()
            if weight < limits.min_allocation_percentage
            or weight > limits.max_allocation_percentage
        }
