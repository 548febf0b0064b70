"""
Stop-loss / take-profit signal evaluation.

Strategies only *signal* these conditions as events; closing the position
is left to whoever listens.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from tradebot.config.schemas import StrategyConfig
from tradebot.core.events import EventType

HUNDRED = Decimal("100")


class RiskRule(BaseModel):
    """One threshold, as a percentage distance from average cost."""

    enabled: bool = Field(default=False)
    percentage: Decimal = Field(default=Decimal("5"), gt=0)


class RiskManagementSettings(BaseModel):
    """Optional ``risk_management`` block of strategy metadata."""

    stop_loss: RiskRule | None = None
    take_profit: RiskRule | None = None

    @classmethod
    def resolve(
        cls,
        config: StrategyConfig,
        settings: "RiskManagementSettings | None",
    ) -> "RiskManagementSettings":
        """
        Metadata settings win; otherwise fall back to the top-level
        ``stop_loss`` / ``take_profit`` percentages of the config.
        """
        if settings is not None:
            return settings
        return cls(
            stop_loss=RiskRule(enabled=True, percentage=config.stop_loss)
            if config.stop_loss is not None
            else None,
            take_profit=RiskRule(enabled=True, percentage=config.take_profit)
            if config.take_profit is not None
            else None,
        )


@dataclass(frozen=True)
class RiskSignal:
    event_type: EventType
    data: dict[str, Any]


def evaluate_risk_signals(
    settings: RiskManagementSettings,
    current_price: Decimal,
    average_cost: Decimal,
    position: Decimal,
) -> list[RiskSignal]:
    """Return the stop-loss / take-profit signals *current_price* triggers."""
    if average_cost <= 0:
        return []

    signals: list[RiskSignal] = []

    if settings.stop_loss is not None and settings.stop_loss.enabled:
        stop_price = average_cost * (1 - settings.stop_loss.percentage / HUNDRED)
        if current_price <= stop_price:
            signals.append(
                RiskSignal(
                    EventType.STOP_LOSS_TRIGGERED,
                    {
                        "current_price": current_price,
                        "stop_loss_price": stop_price,
                        "average_cost": average_cost,
                        "position": position,
                    },
                )
            )

    if settings.take_profit is not None and settings.take_profit.enabled:
        target_price = average_cost * (1 + settings.take_profit.percentage / HUNDRED)
        if current_price >= target_price:
            signals.append(
                RiskSignal(
                    EventType.TAKE_PROFIT_TRIGGERED,
                    {
                        "current_price": current_price,
                        "take_profit_price": target_price,
                        "average_cost": average_cost,
                        "position": position,
                    },
                )
            )

    return signals
