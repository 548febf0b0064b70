"""
Grid strategy settings.

Parsed from ``StrategyConfig.metadata``; both snake_case and camelCase keys
are accepted (``grid_quantity`` / ``gridQuantity``) since older configs were
written in camelCase.
"""

from decimal import Decimal

from pydantic import AliasChoices, Field, model_validator

from tradebot.config.schemas import StrategyParams
from tradebot.strategies.grid.grid_calculator import GridParams, GridSpacing


class GridStrategyParams(StrategyParams):
    """Grid-specific settings."""

    grid_spacing: Decimal = Field(
        default=Decimal("0.01"),
        gt=0,
        validation_alias=AliasChoices("grid_spacing", "gridSpacing"),
        description="Percentage spacing between levels (informational when bounds are set)",
    )
    grid_quantity: int = Field(
        default=10,
        ge=2,
        le=200,
        validation_alias=AliasChoices("grid_quantity", "gridQuantity"),
    )
    grid_mode: GridSpacing = Field(
        default=GridSpacing.ARITHMETIC,
        validation_alias=AliasChoices("grid_mode", "gridMode"),
    )
    upper_bound: Decimal | None = Field(
        default=None, gt=0, validation_alias=AliasChoices("upper_bound", "upperBound")
    )
    lower_bound: Decimal | None = Field(
        default=None, gt=0, validation_alias=AliasChoices("lower_bound", "lowerBound")
    )
    base_price: Decimal | None = Field(
        default=None, gt=0, validation_alias=AliasChoices("base_price", "basePrice")
    )
    active_levels: int = Field(
        default=2,
        ge=1,
        le=10,
        validation_alias=AliasChoices("active_levels", "activeLevels"),
        description="Live orders kept on each side of the market",
    )

    @model_validator(mode="after")
    def validate_price_bounds(self) -> "GridStrategyParams":
        """If both bounds are given, upper must be > lower."""
        if self.upper_bound is not None and self.lower_bound is not None:
            if self.upper_bound <= self.lower_bound:
                raise ValueError("upper_bound must be greater than lower_bound")
        return self

    def to_grid_params(self) -> GridParams:
        return GridParams(
            grid_quantity=self.grid_quantity,
            grid_mode=self.grid_mode,
            upper_bound=self.upper_bound,
            lower_bound=self.lower_bound,
            base_price=self.base_price,
            active_levels=self.active_levels,
        )
