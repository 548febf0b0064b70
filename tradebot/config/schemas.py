"""
Pydantic schemas for configuration validation.
Defines the common strategy configuration, the legacy flat grid shape,
and the application file that lists bots.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from tradebot.core.exceptions import ConfigurationError

ParamsT = TypeVar("ParamsT", bound="StrategyParams")


class BotType(str, Enum):
    """Bot kinds the factory can build"""

    GRID = "grid"
    MARTINGALE = "martingale"
    DCA = "dca"
    ARBITRAGE = "arbitrage"
    PORTFOLIO = "portfolio"
    FLYWHEEL = "flywheel"
    TWAP_VWAP = "twap_vwap"
    SIGNAL = "signal"


class InvestmentUnit(str, Enum):
    """Unit ``investment_size`` is expressed in"""

    USD = "usd"
    ASSET = "asset"


class StrategyConfig(BaseModel):
    """Configuration shared by every strategy"""

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., min_length=1, description="Asset symbol (e.g., 'ETH')")
    investment_size: Decimal = Field(..., gt=0, description="Capital allocated to the strategy")
    investment_unit: InvestmentUnit = Field(
        default=InvestmentUnit.USD,
        description="Whether investment_size is USD or base asset",
    )
    max_position: Decimal = Field(..., gt=0, description="Maximum position in base asset")
    stop_loss: Decimal | None = Field(
        default=None, gt=0, le=100, description="Stop-loss percentage"
    )
    take_profit: Decimal | None = Field(
        default=None, gt=0, description="Take-profit percentage"
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Strategy-specific settings"
    )

    def merged(self, updates: dict[str, Any]) -> "StrategyConfig":
        """
        Return a validated copy with *updates* applied.

        ``metadata`` is merged key by key; every other field is replaced.
        """
        data = self.model_dump()
        for key, value in updates.items():
            if key == "metadata" and isinstance(value, dict):
                data["metadata"] = {**data["metadata"], **value}
            else:
                data[key] = value
        return type(self).model_validate(data)


class TradingBotConfig(StrategyConfig):
    """Strategy configuration tagged with the bot kind"""

    bot_type: BotType = Field(..., description="Which strategy to run")


class LegacyGridConfig(BaseModel):
    """Flat grid configuration shape that predates bot types"""

    symbol: str = Field(..., min_length=1)
    grid_spacing: Decimal = Field(default=Decimal("0.01"), gt=0)
    grid_quantity: int = Field(default=10, ge=2)
    investment_amount: Decimal = Field(..., gt=0)
    max_position: Decimal = Field(..., gt=0)
    upper_bound: Decimal | None = Field(default=None, gt=0)
    lower_bound: Decimal | None = Field(default=None, gt=0)
    base_price: Decimal | None = Field(default=None, gt=0)
    stop_loss: Decimal | None = Field(default=None, gt=0)
    take_profit: Decimal | None = Field(default=None, gt=0)
    grid_mode: str = Field(default="arithmetic", pattern="^(arithmetic|geometric)$")
    active_levels: int = Field(default=2, ge=1, le=10)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_trading_bot_config(self) -> TradingBotConfig:
        """Move the grid-specific fields into metadata under the grid bot type."""
        grid_metadata: dict[str, Any] = {
            "grid_spacing": self.grid_spacing,
            "grid_quantity": self.grid_quantity,
            "grid_mode": self.grid_mode,
            "active_levels": self.active_levels,
        }
        for key in ("upper_bound", "lower_bound", "base_price"):
            value = getattr(self, key)
            if value is not None:
                grid_metadata[key] = value

        metadata = {**self.metadata, **grid_metadata}
        investment_unit = metadata.pop("investment_type", InvestmentUnit.USD.value)

        return TradingBotConfig(
            bot_type=BotType.GRID,
            symbol=self.symbol,
            investment_size=self.investment_amount,
            investment_unit=investment_unit,
            max_position=self.max_position,
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
            metadata=metadata,
        )


class StrategyParams(BaseModel):
    """Base for strategy-specific settings parsed from ``StrategyConfig.metadata``"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @classmethod
    def from_metadata(cls: type[ParamsT], metadata: dict[str, Any] | None) -> ParamsT:
        """
        Parse and validate strategy metadata.

        Raises:
            ConfigurationError: If validation fails
        """
        try:
            return cls.model_validate(metadata or {})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid {cls.__name__}: {e}") from e

    def to_yaml(self) -> str:
        """Serialize to YAML string."""
        data = self.model_dump(mode="json")
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_yaml(cls: type[ParamsT], yaml_str: str) -> ParamsT:
        """Load from YAML string."""
        return cls.from_metadata(yaml.safe_load(yaml_str))


class BotEntry(BaseModel):
    """One bot in the application file"""

    name: str = Field(..., min_length=1, max_length=100, description="Bot name")
    exchange: str = Field(default="paper", description="Exchange adapter identifier")
    dry_run: bool = Field(default=True, description="Trade against the paper exchange")
    auto_start: bool = Field(default=False, description="Start the bot on load")
    strategy: TradingBotConfig


class AppConfig(BaseModel):
    """Application-wide configuration"""

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )
    log_dir: str = Field(default="logs", description="Directory for log files")
    log_to_file: bool = Field(default=True, description="Enable file logging")
    log_to_console: bool = Field(default=True, description="Enable console logging")
    json_logs: bool = Field(default=False, description="Use JSON format for logs")

    # Bots
    bots: list[BotEntry] = Field(default_factory=list, description="Bot configurations")

    @model_validator(mode="after")
    def validate_unique_names(self) -> "AppConfig":
        """Bot names identify bots and must be unique"""
        names = [bot.name for bot in self.bots]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate bot names: {', '.join(duplicates)}")
        return self
